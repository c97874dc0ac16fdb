"""
Order status updates and the transaction audit trail.

Orders are only ever mutated through :func:`update_order_status`;
transactions are append-only.
"""
import uuid
from datetime import datetime, timezone
from typing import Any, Dict, Optional

import structlog
from sqlalchemy import select, update
from sqlalchemy.ext.asyncio import AsyncSession

from loop_backend.database.models import Order, Transaction, as_uuid

logger = structlog.get_logger(__name__)

TRANSACTION_TYPE_BY_STATUS = {
    "captured": "capture",
    "authorized": "authorization",
}
DEFAULT_TRANSACTION_TYPE = "authorization"


def transaction_type_for_status(status: str) -> str:
    """Map an order status onto the type of the transaction it records."""
    return TRANSACTION_TYPE_BY_STATUS.get(status, DEFAULT_TRANSACTION_TYPE)


def transaction_status_for_status(status: str) -> str:
    """A failed order records a failed transaction; anything else succeeded."""
    return "failed" if status == "failed" else "success"


async def update_order_status(
    db: AsyncSession,
    order_id: uuid.UUID,
    status: str,
    processor_order_id: Optional[str] = None,
    processor_transaction_id: Optional[str] = None,
) -> None:
    """
    Update an order's status and record the processor transaction.

    The processor order id is only overwritten when provided. When a
    processor transaction id is supplied the order is re-read for its amount
    and a Transaction row is appended.

    Unknown order ids are a silent no-op: the update touches zero rows and
    the re-read finds nothing, so no transaction is written. Callers must not
    expect an error for a missing order.

    Both statements go through ``db``; they become durable together when the
    caller commits the session.

    Args:
        db: Database session
        order_id: Order identifier
        status: New order status (pending/authorized/captured/failed/...)
        processor_order_id: Optional processor-assigned order id
        processor_transaction_id: Optional processor transaction id
    """
    order_id = as_uuid(order_id)
    values: Dict[str, Any] = {
        "status": status,
        "updated_at": datetime.now(timezone.utc),
    }
    if processor_order_id:
        values["processor_order_id"] = processor_order_id

    result = await db.execute(update(Order).where(Order.id == order_id).values(**values))

    if processor_transaction_id:
        amount = await db.scalar(select(Order.amount).where(Order.id == order_id))

        if amount is not None:
            db.add(
                Transaction(
                    order_id=order_id,
                    type=transaction_type_for_status(status),
                    amount=amount,
                    status=transaction_status_for_status(status),
                    processor_transaction_id=processor_transaction_id,
                )
            )

    await db.flush()

    logger.info(
        "order_status_updated",
        order_id=str(order_id),
        status=status,
        processor_order_id=processor_order_id,
        rows_updated=result.rowcount,
    )


async def get_order(db: AsyncSession, order_id: uuid.UUID) -> Optional[Order]:
    """
    Get an order by id.

    Args:
        db: Database session
        order_id: Order identifier

    Returns:
        Optional[Order]: The order, or None if it does not exist
    """
    return await db.get(Order, as_uuid(order_id))
