"""Core backend operations: vault, config lookup, ledger and webhooks."""
from .ledger import get_order, update_order_status
from .merchants import MerchantWebhookInfo, get_merchant_webhook_url
from .operations import get_operation, list_operations, run_operation
from .processor_config import PaymentConfig, get_processor_config
from .vault import (
    CredentialVault,
    IntegrityError,
    MalformedEnvelopeError,
    VaultError,
    get_vault,
)
from .webhook_dispatcher import DeliveryResult, WebhookDispatcher, backoff_delay, deliver_webhook
from .webhook_events import create_webhook_event, get_webhook_event, list_due_webhook_events

__all__ = [
    "CredentialVault",
    "DeliveryResult",
    "IntegrityError",
    "MalformedEnvelopeError",
    "MerchantWebhookInfo",
    "PaymentConfig",
    "VaultError",
    "WebhookDispatcher",
    "backoff_delay",
    "create_webhook_event",
    "deliver_webhook",
    "get_merchant_webhook_url",
    "get_operation",
    "get_order",
    "get_processor_config",
    "get_vault",
    "get_webhook_event",
    "list_due_webhook_events",
    "list_operations",
    "run_operation",
    "update_order_status",
]
