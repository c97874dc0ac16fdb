"""
Catalogue of the remotely invokable backend operations.

Every operation is declared with the timeout and automatic-retry count the
invoking framework applies to it. Webhook delivery gets no automatic retries:
its retries are scheduled by hand from the persisted ``next_retry_at``.

:func:`run_operation` applies a declaration in-process: one session per
attempt, committed on success, with the timeout enforced per attempt and
exponential backoff between attempts.
"""
import asyncio
import time
from dataclasses import dataclass
from typing import Any, Awaitable, Callable, Dict, List, Optional

import structlog
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker
from tenacity import (
    AsyncRetrying,
    RetryCallState,
    retry_if_not_exception_type,
    stop_after_attempt,
    wait_exponential,
)
from tenacity.wait import wait_base

from loop_backend.core.ledger import get_order, update_order_status
from loop_backend.core.merchants import get_merchant_webhook_url
from loop_backend.core.processor_config import get_processor_config
from loop_backend.core.vault import VaultError
from loop_backend.core.webhook_dispatcher import deliver_webhook
from loop_backend.core.webhook_events import create_webhook_event
from loop_backend.database.connection import session_scope
from loop_backend.monitoring.metrics import metrics

logger = structlog.get_logger(__name__)

CRUD_TIMEOUT_SECONDS = 30.0
CRUD_RETRIES = 3
DELIVERY_TIMEOUT_SECONDS = 60.0

# Key and envelope failures fail the operation on the first attempt
NON_RETRYABLE_ERRORS = (VaultError,)


class UnknownOperationError(Exception):
    """Raised when an operation name is not in the catalogue."""

    pass


@dataclass(frozen=True)
class OperationDefinition:
    """A registered operation and its execution policy."""

    name: str
    func: Callable[..., Awaitable[Any]]
    start_to_close_timeout: float
    retries: int


_registry: Dict[str, OperationDefinition] = {}


def register_operation(
    name: str,
    func: Callable[..., Awaitable[Any]],
    start_to_close_timeout: float,
    retries: int,
) -> OperationDefinition:
    """
    Declare an operation.

    Args:
        name: Name the operation is invoked by
        func: Coroutine function taking a session as its first argument
        start_to_close_timeout: Deadline for one attempt (seconds)
        retries: Automatic retries after the first attempt

    Returns:
        OperationDefinition: The registered declaration
    """
    if name in _registry:
        raise ValueError(f"Operation already registered: {name}")
    definition = OperationDefinition(
        name=name,
        func=func,
        start_to_close_timeout=start_to_close_timeout,
        retries=retries,
    )
    _registry[name] = definition
    return definition


def get_operation(name: str) -> OperationDefinition:
    """Look up a declared operation by name."""
    try:
        return _registry[name]
    except KeyError:
        raise UnknownOperationError(f"Unknown operation: {name}") from None


def list_operations() -> List[OperationDefinition]:
    """All declared operations, in registration order."""
    return list(_registry.values())


def _log_retry(name: str, retry_state: RetryCallState) -> None:
    error = retry_state.outcome.exception() if retry_state.outcome else None
    metrics.record_operation_retry(name)
    logger.warning(
        "operation_retry_scheduled",
        operation=name,
        attempt=retry_state.attempt_number,
        error=str(error),
    )


async def run_operation(
    name: str,
    session_factory: Optional[async_sessionmaker[AsyncSession]] = None,
    wait: Optional[wait_base] = None,
    **kwargs: Any,
) -> Any:
    """
    Execute a declared operation under its timeout and retry policy.

    Args:
        name: Operation name
        session_factory: Optional session factory (defaults to the process-wide one)
        wait: Optional tenacity wait strategy between retries
        **kwargs: Operation arguments (everything but the session)

    Returns:
        Any: The operation's result

    Raises:
        UnknownOperationError: If the operation is not declared
        VaultError: Credential envelope failures, never retried
        Exception: The last error once retries are exhausted
    """
    definition = get_operation(name)

    async def _attempt() -> Any:
        async with session_scope(session_factory) as db:
            return await definition.func(db, **kwargs)

    started = time.perf_counter()
    retrying = AsyncRetrying(
        stop=stop_after_attempt(definition.retries + 1),
        wait=wait or wait_exponential(multiplier=1, min=1, max=10),
        retry=retry_if_not_exception_type(NON_RETRYABLE_ERRORS),
        before_sleep=lambda state: _log_retry(name, state),
        reraise=True,
    )

    try:
        async for attempt in retrying:
            with attempt:
                result = await asyncio.wait_for(
                    _attempt(), timeout=definition.start_to_close_timeout
                )
    except Exception as e:
        metrics.record_operation(name, "error", time.perf_counter() - started)
        logger.error(
            "operation_failed",
            operation=name,
            error=str(e),
            error_type=type(e).__name__,
        )
        raise

    metrics.record_operation(name, "success", time.perf_counter() - started)
    return result


register_operation("getProcessorConfig", get_processor_config, CRUD_TIMEOUT_SECONDS, CRUD_RETRIES)
register_operation("updateOrderStatus", update_order_status, CRUD_TIMEOUT_SECONDS, CRUD_RETRIES)
register_operation("getOrder", get_order, CRUD_TIMEOUT_SECONDS, CRUD_RETRIES)
register_operation(
    "getMerchantWebhookUrl", get_merchant_webhook_url, CRUD_TIMEOUT_SECONDS, CRUD_RETRIES
)
register_operation("deliverWebhook", deliver_webhook, DELIVERY_TIMEOUT_SECONDS, 0)
register_operation("createWebhookEvent", create_webhook_event, CRUD_TIMEOUT_SECONDS, CRUD_RETRIES)
