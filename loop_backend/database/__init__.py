"""Database package for the backend operations."""
from .connection import close_db, get_session_factory, init_db, session_scope
from .models import (
    Base,
    Merchant,
    Order,
    ProcessorConfig,
    Transaction,
    WebhookEvent,
)

__all__ = [
    "Base",
    "Merchant",
    "Order",
    "ProcessorConfig",
    "Transaction",
    "WebhookEvent",
    "close_db",
    "get_session_factory",
    "init_db",
    "session_scope",
]
