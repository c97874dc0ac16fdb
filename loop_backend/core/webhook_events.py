"""
Webhook event store.

Creates the pending delivery records the dispatcher works through, and
answers the "which deliveries are due" query a retry poller runs.
"""
import uuid
from datetime import datetime, timezone
from typing import Any, Dict, List, Optional

import structlog
from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from loop_backend.database.models import WebhookEvent, as_optional_uuid, as_uuid
from loop_backend.monitoring.metrics import metrics

logger = structlog.get_logger(__name__)

STATUS_PENDING = "pending"
STATUS_DELIVERED = "delivered"
STATUS_FAILED = "failed"


async def create_webhook_event(
    db: AsyncSession,
    merchant_id: uuid.UUID,
    order_id: Optional[uuid.UUID],
    event_type: str,
    payload: Dict[str, Any],
    workflow_id: Optional[str] = None,
) -> uuid.UUID:
    """
    Create a pending webhook event.

    Store errors (e.g. a foreign-key violation for an unknown merchant or
    order) propagate to the caller.

    Args:
        db: Database session
        merchant_id: Merchant the notification is owed to
        order_id: Optional related order
        event_type: Event type (e.g. 'payment.captured')
        payload: JSON payload to deliver
        workflow_id: Optional workflow correlation id

    Returns:
        uuid.UUID: Identifier of the new event
    """
    event = WebhookEvent(
        id=uuid.uuid4(),
        merchant_id=as_uuid(merchant_id),
        order_id=as_optional_uuid(order_id),
        event_type=event_type,
        payload=payload,
        status=STATUS_PENDING,
        attempts=0,
        workflow_id=workflow_id,
    )
    db.add(event)
    await db.flush()

    metrics.record_webhook_event_created(event_type)
    logger.info(
        "webhook_event_created",
        webhook_event_id=str(event.id),
        event_type=event_type,
    )

    return event.id


async def get_webhook_event(
    db: AsyncSession, webhook_event_id: uuid.UUID
) -> Optional[WebhookEvent]:
    """Get a webhook event by id, or None."""
    return await db.get(WebhookEvent, as_uuid(webhook_event_id))


async def list_due_webhook_events(
    db: AsyncSession,
    now: Optional[datetime] = None,
    limit: int = 100,
) -> List[WebhookEvent]:
    """
    List pending events whose retry time has come.

    Served by the ``next_retry_at`` index. Events that were never attempted
    have no retry time and are not returned; their first delivery is driven
    by the workflow that created them.

    Args:
        db: Database session
        now: Reference time (defaults to the current UTC time)
        limit: Maximum number of events to return

    Returns:
        List[WebhookEvent]: Due events, oldest retry time first
    """
    now = now or datetime.now(timezone.utc)
    stmt = (
        select(WebhookEvent)
        .where(
            WebhookEvent.status == STATUS_PENDING,
            WebhookEvent.next_retry_at.is_not(None),
            WebhookEvent.next_retry_at <= now,
        )
        .order_by(WebhookEvent.next_retry_at)
        .limit(limit)
    )
    result = await db.execute(stmt)
    return list(result.scalars().all())
