"""
Tests for processor configuration lookup.
"""
import json
import uuid

import pytest
from sqlalchemy.ext.asyncio import AsyncSession

from loop_backend.core.processor_config import PaymentConfig, get_processor_config
from loop_backend.core.vault import CredentialVault, IntegrityError, MalformedEnvelopeError
from loop_backend.database.models import Merchant, ProcessorConfig


async def _add_config(
    db: AsyncSession,
    vault: CredentialVault,
    merchant: Merchant,
    processor: str,
    credentials: dict,
    priority: int = 1,
    test_mode: bool = True,
) -> ProcessorConfig:
    config = ProcessorConfig(
        merchant_id=merchant.id,
        processor=processor,
        credentials_encrypted=vault.encrypt(json.dumps(credentials)),
        priority=priority,
        test_mode=test_mode,
    )
    db.add(config)
    await db.flush()
    return config


class TestGetProcessorConfig:
    """Test suite for get_processor_config."""

    @pytest.mark.unit
    @pytest.mark.asyncio
    async def test_returns_decrypted_credentials(
        self, test_db: AsyncSession, vault: CredentialVault, merchant: Merchant
    ) -> None:
        """A matching row is decrypted into a credential mapping."""
        await _add_config(
            test_db,
            vault,
            merchant,
            "stripe",
            {"secret_key": "sk_test_abc", "publishable_key": "pk_test_abc"},
            test_mode=False,
        )

        config = await get_processor_config(test_db, merchant.id, "stripe", vault=vault)

        assert isinstance(config, PaymentConfig)
        assert config.merchant_id == merchant.id
        assert config.processor == "stripe"
        assert config.test_mode is False
        assert config.credentials == {
            "secret_key": "sk_test_abc",
            "publishable_key": "pk_test_abc",
        }

    @pytest.mark.unit
    @pytest.mark.asyncio
    async def test_missing_config_returns_none(
        self, test_db: AsyncSession, vault: CredentialVault, merchant: Merchant
    ) -> None:
        """No row for the (merchant, processor) pair is not an error."""
        await _add_config(test_db, vault, merchant, "stripe", {"secret_key": "sk_test_abc"})

        assert await get_processor_config(test_db, merchant.id, "razorpay", vault=vault) is None
        assert await get_processor_config(test_db, uuid.uuid4(), "stripe", vault=vault) is None

    @pytest.mark.unit
    @pytest.mark.asyncio
    async def test_lowest_priority_value_wins(
        self, test_db: AsyncSession, vault: CredentialVault, merchant: Merchant
    ) -> None:
        """With several rows for the pair, the first by priority is used."""
        await _add_config(test_db, vault, merchant, "razorpay", {"key_id": "backup"}, priority=2)
        await _add_config(test_db, vault, merchant, "razorpay", {"key_id": "primary"}, priority=1)

        config = await get_processor_config(test_db, merchant.id, "razorpay", vault=vault)

        assert config is not None
        assert config.credentials == {"key_id": "primary"}

    @pytest.mark.unit
    @pytest.mark.asyncio
    async def test_tampered_credentials_propagate(
        self, test_db: AsyncSession, vault: CredentialVault, merchant: Merchant
    ) -> None:
        """A blob sealed under a different key is a hard error."""
        other_vault = CredentialVault("some-other-key-that-is-long-enough!!")
        await _add_config(test_db, other_vault, merchant, "stripe", {"secret_key": "sk"})

        with pytest.raises(IntegrityError):
            await get_processor_config(test_db, merchant.id, "stripe", vault=vault)

    @pytest.mark.unit
    @pytest.mark.asyncio
    async def test_malformed_credentials_propagate(
        self, test_db: AsyncSession, vault: CredentialVault, merchant: Merchant
    ) -> None:
        """A blob that is not an envelope is a hard error."""
        test_db.add(
            ProcessorConfig(
                merchant_id=merchant.id,
                processor="stripe",
                credentials_encrypted="plain-text-credentials",
            )
        )
        await test_db.flush()

        with pytest.raises(MalformedEnvelopeError):
            await get_processor_config(test_db, merchant.id, "stripe", vault=vault)
