"""Merchant webhook endpoint lookup."""
import uuid
from typing import Optional

from pydantic import BaseModel
from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from loop_backend.database.models import Merchant, as_uuid


class MerchantWebhookInfo(BaseModel):
    """Where and how to deliver a merchant's webhooks."""

    url: Optional[str] = None
    secret: Optional[str] = None


async def get_merchant_webhook_url(
    db: AsyncSession, merchant_id: uuid.UUID
) -> MerchantWebhookInfo:
    """
    Read a merchant's webhook URL and signing secret.

    An unknown merchant, or one without a URL or secret, yields None for the
    missing fields rather than an error.
    """
    stmt = select(Merchant.webhook_url, Merchant.webhook_secret).where(
        Merchant.id == as_uuid(merchant_id)
    )
    row = (await db.execute(stmt)).first()
    if row is None:
        return MerchantWebhookInfo()

    return MerchantWebhookInfo(url=row.webhook_url or None, secret=row.webhook_secret or None)
