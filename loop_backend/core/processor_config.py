"""Processor configuration lookup with credential decryption."""
import json
import uuid
from typing import Dict, Optional

import structlog
from pydantic import BaseModel, Field
from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from loop_backend.core.vault import CredentialVault, get_vault
from loop_backend.database.models import ProcessorConfig, as_uuid

logger = structlog.get_logger(__name__)


class PaymentConfig(BaseModel):
    """Decrypted processor configuration handed to a processor workflow."""

    merchant_id: uuid.UUID = Field(..., description="Merchant identifier")
    processor: str = Field(..., description="Processor name (e.g. stripe, razorpay)")
    test_mode: bool = Field(..., description="Whether the processor runs in test mode")
    credentials: Dict[str, str] = Field(
        default_factory=dict, description="Decrypted processor credentials"
    )


async def get_processor_config(
    db: AsyncSession,
    merchant_id: uuid.UUID,
    processor: str,
    vault: Optional[CredentialVault] = None,
) -> Optional[PaymentConfig]:
    """
    Fetch and decrypt a merchant's configuration for one processor.

    Absence is a valid outcome (the merchant has not configured the
    processor) and returns None. Decryption failures propagate to the caller.

    Args:
        db: Database session
        merchant_id: Merchant identifier
        processor: Processor name
        vault: Optional vault (uses the process-wide vault if not provided)

    Returns:
        Optional[PaymentConfig]: Decrypted configuration, or None

    Raises:
        VaultError: If the credential envelope is malformed or tampered with
    """
    merchant_id = as_uuid(merchant_id)
    stmt = (
        select(ProcessorConfig)
        .where(
            ProcessorConfig.merchant_id == merchant_id,
            ProcessorConfig.processor == processor,
        )
        .order_by(ProcessorConfig.priority, ProcessorConfig.created_at)
        .limit(1)
    )
    result = await db.execute(stmt)
    config = result.scalar_one_or_none()

    if config is None:
        logger.debug(
            "processor_config_not_found",
            merchant_id=str(merchant_id),
            processor=processor,
        )
        return None

    vault = vault or get_vault()
    credentials = json.loads(vault.decrypt(config.credentials_encrypted))

    logger.debug(
        "processor_config_retrieved",
        merchant_id=str(merchant_id),
        processor=processor,
    )

    return PaymentConfig(
        merchant_id=merchant_id,
        processor=processor,
        test_mode=config.test_mode,
        credentials=credentials,
    )
