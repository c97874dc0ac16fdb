"""SQLAlchemy database models for the order, transaction and webhook store."""
import uuid
from datetime import datetime
from typing import Any, Dict, Optional, Union

from sqlalchemy import (
    JSON,
    Boolean,
    DateTime,
    ForeignKey,
    Index,
    Integer,
    String,
    Text,
    Uuid,
    func,
)
from sqlalchemy.dialects.postgresql import JSONB
from sqlalchemy.orm import DeclarativeBase, Mapped, mapped_column

# JSONB on PostgreSQL, plain JSON on every other dialect
JSONType = JSON().with_variant(JSONB(), "postgresql")


def as_uuid(value: Union[uuid.UUID, str]) -> uuid.UUID:
    """
    Coerce an identifier to ``uuid.UUID``.

    Remote callers send ids as strings; the generic ``Uuid`` column only binds
    ``uuid.UUID`` values on backends without a native UUID type.

    Raises:
        ValueError: If the string is not a valid UUID
    """
    if isinstance(value, uuid.UUID):
        return value
    return uuid.UUID(str(value))


def as_optional_uuid(value: Optional[Union[uuid.UUID, str]]) -> Optional[uuid.UUID]:
    """Like :func:`as_uuid`, passing None through."""
    return None if value is None else as_uuid(value)


class Base(DeclarativeBase):
    """Base class for all database models."""

    pass


class Merchant(Base):
    """
    Merchant accounts.

    Read-only from the backend operations; only the webhook URL and
    signing secret are consulted.
    """

    __tablename__ = "merchants"

    id: Mapped[uuid.UUID] = mapped_column(Uuid, primary_key=True, default=uuid.uuid4)
    name: Mapped[str] = mapped_column(String(255), nullable=False)
    email: Mapped[str] = mapped_column(String(255), nullable=False, unique=True)
    password_hash: Mapped[str] = mapped_column(Text, nullable=False)
    webhook_url: Mapped[str | None] = mapped_column(Text, nullable=True)
    webhook_secret: Mapped[str | None] = mapped_column(Text, nullable=True)
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), nullable=False, default=func.now()
    )
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        nullable=False,
        default=func.now(),
        onupdate=func.now(),
    )

    def __repr__(self) -> str:
        """String representation of Merchant."""
        return f"<Merchant(id={self.id}, email={self.email})>"


class ProcessorConfig(Base):
    """
    Per-merchant payment processor configuration.

    Credentials are stored as an encrypted envelope produced by the
    credential vault.
    """

    __tablename__ = "processor_configs"

    id: Mapped[uuid.UUID] = mapped_column(Uuid, primary_key=True, default=uuid.uuid4)
    merchant_id: Mapped[uuid.UUID] = mapped_column(
        Uuid, ForeignKey("merchants.id", ondelete="CASCADE"), nullable=False
    )
    processor: Mapped[str] = mapped_column(String(50), nullable=False)
    credentials_encrypted: Mapped[str] = mapped_column(Text, nullable=False)
    priority: Mapped[int] = mapped_column(Integer, nullable=False, default=1)
    enabled: Mapped[bool] = mapped_column(Boolean, nullable=False, default=True)
    test_mode: Mapped[bool] = mapped_column(Boolean, nullable=False, default=True)
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), nullable=False, default=func.now()
    )
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        nullable=False,
        default=func.now(),
        onupdate=func.now(),
    )

    __table_args__ = (Index("processor_configs_merchant_id_idx", "merchant_id"),)

    def __repr__(self) -> str:
        """String representation of ProcessorConfig."""
        return (
            f"<ProcessorConfig(id={self.id}, merchant_id={self.merchant_id}, "
            f"processor={self.processor})>"
        )


class Order(Base):
    """
    Orders placed through a merchant.

    Mutated only through status updates; never deleted by the backend
    operations.
    """

    __tablename__ = "orders"

    id: Mapped[uuid.UUID] = mapped_column(Uuid, primary_key=True, default=uuid.uuid4)
    merchant_id: Mapped[uuid.UUID] = mapped_column(
        Uuid, ForeignKey("merchants.id", ondelete="CASCADE"), nullable=False
    )
    external_id: Mapped[str] = mapped_column(String(255), nullable=False)
    amount: Mapped[int] = mapped_column(Integer, nullable=False)
    currency: Mapped[str] = mapped_column(String(3), nullable=False, default="USD")
    status: Mapped[str] = mapped_column(String(50), nullable=False, default="pending")
    processor: Mapped[str | None] = mapped_column(String(50), nullable=True)
    processor_order_id: Mapped[str | None] = mapped_column(String(255), nullable=True)
    order_metadata: Mapped[Dict[str, Any] | None] = mapped_column(
        "metadata", JSONType, nullable=True, default=dict
    )
    customer_id: Mapped[str | None] = mapped_column(String(255), nullable=True)
    customer_email: Mapped[str | None] = mapped_column(String(255), nullable=True)
    description: Mapped[str | None] = mapped_column(Text, nullable=True)
    return_url: Mapped[str | None] = mapped_column(Text, nullable=True)
    cancel_url: Mapped[str | None] = mapped_column(Text, nullable=True)
    workflow_id: Mapped[str | None] = mapped_column(String(255), nullable=True)
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), nullable=False, default=func.now()
    )
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        nullable=False,
        default=func.now(),
        onupdate=func.now(),
    )

    __table_args__ = (
        Index("orders_merchant_id_idx", "merchant_id"),
        Index("orders_external_id_idx", "external_id"),
        Index("orders_status_idx", "status"),
        Index("orders_created_at_idx", "created_at"),
    )

    def __repr__(self) -> str:
        """String representation of Order."""
        return (
            f"<Order(id={self.id}, merchant_id={self.merchant_id}, "
            f"amount={self.amount}, status={self.status})>"
        )


class Transaction(Base):
    """
    Processor transaction audit trail.

    Append-only: rows are inserted and never updated.
    """

    __tablename__ = "transactions"

    id: Mapped[uuid.UUID] = mapped_column(Uuid, primary_key=True, default=uuid.uuid4)
    order_id: Mapped[uuid.UUID] = mapped_column(
        Uuid, ForeignKey("orders.id", ondelete="CASCADE"), nullable=False
    )
    type: Mapped[str] = mapped_column(String(50), nullable=False)
    amount: Mapped[int] = mapped_column(Integer, nullable=False)
    status: Mapped[str] = mapped_column(String(50), nullable=False, default="pending")
    processor_transaction_id: Mapped[str | None] = mapped_column(String(255), nullable=True)
    processor_response: Mapped[Dict[str, Any] | None] = mapped_column(JSONType, nullable=True)
    error_code: Mapped[str | None] = mapped_column(String(100), nullable=True)
    error_message: Mapped[str | None] = mapped_column(Text, nullable=True)
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), nullable=False, default=func.now()
    )

    __table_args__ = (Index("transactions_order_id_idx", "order_id"),)

    def __repr__(self) -> str:
        """String representation of Transaction."""
        return (
            f"<Transaction(id={self.id}, order_id={self.order_id}, "
            f"type={self.type}, status={self.status})>"
        )


class WebhookEvent(Base):
    """
    Outbound merchant notifications and their delivery bookkeeping.

    Created as ``pending``; each delivery attempt bumps ``attempts`` and moves
    the row to ``delivered``, back to ``pending`` with a ``next_retry_at``, or
    to ``failed`` once transport retries are exhausted.
    """

    __tablename__ = "webhook_events"

    id: Mapped[uuid.UUID] = mapped_column(Uuid, primary_key=True, default=uuid.uuid4)
    merchant_id: Mapped[uuid.UUID] = mapped_column(
        Uuid, ForeignKey("merchants.id", ondelete="CASCADE"), nullable=False
    )
    order_id: Mapped[uuid.UUID | None] = mapped_column(
        Uuid, ForeignKey("orders.id", ondelete="SET NULL"), nullable=True
    )
    event_type: Mapped[str] = mapped_column(String(100), nullable=False)
    payload: Mapped[Dict[str, Any]] = mapped_column(JSONType, nullable=False)
    status: Mapped[str] = mapped_column(String(50), nullable=False, default="pending")
    attempts: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    last_attempt_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)
    next_retry_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)
    delivered_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)
    workflow_id: Mapped[str | None] = mapped_column(String(255), nullable=True)
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), nullable=False, default=func.now()
    )

    __table_args__ = (
        Index("webhook_events_merchant_id_idx", "merchant_id"),
        Index("webhook_events_status_idx", "status"),
        Index("webhook_events_next_retry_at_idx", "next_retry_at"),
    )

    def __repr__(self) -> str:
        """String representation of WebhookEvent."""
        return (
            f"<WebhookEvent(id={self.id}, type={self.event_type}, "
            f"status={self.status}, attempts={self.attempts})>"
        )
