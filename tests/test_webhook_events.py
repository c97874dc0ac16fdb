"""
Tests for the webhook event store and merchant webhook lookup.
"""
import uuid
from datetime import timedelta

import pytest
from sqlalchemy import update
from sqlalchemy.exc import IntegrityError as StoreIntegrityError
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from loop_backend.core.merchants import get_merchant_webhook_url
from loop_backend.core.webhook_events import (
    create_webhook_event,
    get_webhook_event,
    list_due_webhook_events,
)
from loop_backend.database.models import Merchant, Order, WebhookEvent
from tests.conftest import FIXED_NOW


class TestCreateWebhookEvent:
    """Test suite for create_webhook_event."""

    @pytest.mark.unit
    @pytest.mark.asyncio
    async def test_created_event_is_pending(
        self,
        session_factory: async_sessionmaker[AsyncSession],
        merchant: Merchant,
        order: Order,
    ) -> None:
        """A new event reads back as pending with zero attempts."""
        async with session_factory() as session:
            event_id = await create_webhook_event(
                session,
                merchant_id=merchant.id,
                order_id=order.id,
                event_type="payment.captured",
                payload={"order_id": str(order.id), "amount": 2500},
                workflow_id="wf-123",
            )
            await session.commit()

        async with session_factory() as session:
            event = await get_webhook_event(session, event_id)

        assert isinstance(event_id, uuid.UUID)
        assert event is not None
        assert event.status == "pending"
        assert event.attempts == 0
        assert event.order_id == order.id
        assert event.payload == {"order_id": str(order.id), "amount": 2500}
        assert event.workflow_id == "wf-123"
        assert event.next_retry_at is None
        assert event.delivered_at is None

    @pytest.mark.unit
    @pytest.mark.asyncio
    async def test_order_is_optional(self, test_db: AsyncSession, merchant: Merchant) -> None:
        event_id = await create_webhook_event(
            test_db, merchant.id, None, "merchant.updated", {"field": "webhook_url"}
        )

        event = await get_webhook_event(test_db, event_id)
        assert event is not None
        assert event.order_id is None

    @pytest.mark.unit
    @pytest.mark.asyncio
    async def test_unknown_merchant_propagates_store_error(
        self, test_db: AsyncSession
    ) -> None:
        """Foreign-key violations are hard errors for the caller."""
        with pytest.raises(StoreIntegrityError):
            await create_webhook_event(
                test_db, uuid.uuid4(), None, "payment.captured", {"amount": 1}
            )

    @pytest.mark.unit
    @pytest.mark.asyncio
    async def test_missing_event_reads_none(self, test_db: AsyncSession) -> None:
        assert await get_webhook_event(test_db, uuid.uuid4()) is None


class TestListDueWebhookEvents:
    """Test suite for list_due_webhook_events."""

    @pytest.mark.unit
    @pytest.mark.asyncio
    async def test_only_due_pending_events_are_listed(
        self, test_db: AsyncSession, merchant: Merchant
    ) -> None:
        ids = {}
        for name in ("due_late", "due_early", "future", "failed", "never_tried"):
            ids[name] = await create_webhook_event(
                test_db, merchant.id, None, "payment.captured", {"name": name}
            )

        schedule = {
            "due_late": ("pending", FIXED_NOW - timedelta(minutes=1)),
            "due_early": ("pending", FIXED_NOW - timedelta(hours=1)),
            "future": ("pending", FIXED_NOW + timedelta(minutes=5)),
            "failed": ("failed", FIXED_NOW - timedelta(hours=2)),
        }
        for name, (status, next_retry_at) in schedule.items():
            await test_db.execute(
                update(WebhookEvent)
                .where(WebhookEvent.id == ids[name])
                .values(status=status, next_retry_at=next_retry_at)
            )
        await test_db.flush()

        due = await list_due_webhook_events(test_db, now=FIXED_NOW)

        assert [event.id for event in due] == [ids["due_early"], ids["due_late"]]

    @pytest.mark.unit
    @pytest.mark.asyncio
    async def test_limit(self, test_db: AsyncSession, merchant: Merchant) -> None:
        for i in range(3):
            event_id = await create_webhook_event(
                test_db, merchant.id, None, "payment.captured", {"i": i}
            )
            await test_db.execute(
                update(WebhookEvent)
                .where(WebhookEvent.id == event_id)
                .values(next_retry_at=FIXED_NOW - timedelta(minutes=i + 1))
            )
        await test_db.flush()

        assert len(await list_due_webhook_events(test_db, now=FIXED_NOW, limit=2)) == 2


class TestGetMerchantWebhookUrl:
    """Test suite for get_merchant_webhook_url."""

    @pytest.mark.unit
    @pytest.mark.asyncio
    async def test_returns_url_and_secret(self, test_db: AsyncSession, merchant: Merchant) -> None:
        info = await get_merchant_webhook_url(test_db, merchant.id)

        assert info.url == "https://merchant.test/webhooks"
        assert info.secret == "whsec_test_secret"

    @pytest.mark.unit
    @pytest.mark.asyncio
    async def test_unknown_merchant_returns_nones(self, test_db: AsyncSession) -> None:
        info = await get_merchant_webhook_url(test_db, uuid.uuid4())

        assert info.url is None
        assert info.secret is None

    @pytest.mark.unit
    @pytest.mark.asyncio
    async def test_merchant_without_secret(self, test_db: AsyncSession) -> None:
        bare = Merchant(
            name="No Secret Ltd",
            email="ops@nosecret.test",
            password_hash="x",
            webhook_url="https://nosecret.test/hook",
        )
        test_db.add(bare)
        await test_db.flush()

        info = await get_merchant_webhook_url(test_db, bare.id)

        assert info.url == "https://nosecret.test/hook"
        assert info.secret is None
