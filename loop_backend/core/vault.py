"""
Credential vault for processor credential blobs.

Credentials are sealed with AES-256-GCM under a key derived from the
configured ``encryption_key`` (SHA-256 of the secret). The stored envelope is
``hex(iv):hex(tag):hex(ciphertext)``.
"""
import hashlib
import os
from functools import lru_cache

import structlog
from cryptography.exceptions import InvalidTag
from cryptography.hazmat.primitives.ciphers.aead import AESGCM

from loop_backend.config import get_settings
from loop_backend.monitoring.metrics import metrics

logger = structlog.get_logger(__name__)

IV_LENGTH = 16
TAG_LENGTH = 16
ENVELOPE_DELIMITER = ":"


class VaultError(Exception):
    """Base exception for credential envelope errors."""

    pass


class IntegrityError(VaultError):
    """Raised when the envelope's authentication tag does not verify."""

    pass


class MalformedEnvelopeError(VaultError):
    """Raised when an envelope cannot be parsed."""

    pass


def derive_key(secret: str) -> bytes:
    """
    Derive the 256-bit symmetric key from a shared secret.

    Args:
        secret: Configured secret of any length

    Returns:
        bytes: 32-byte key
    """
    return hashlib.sha256(secret.encode("utf-8")).digest()


class CredentialVault:
    """
    Encrypts and decrypts credential blobs with a single static key.

    There is no key rotation: one vault (and one key) per process.
    """

    def __init__(self, secret: str):
        """
        Initialize vault.

        Args:
            secret: Shared secret the key is derived from
        """
        self._aead = AESGCM(derive_key(secret))

    def encrypt(self, plaintext: str) -> str:
        """
        Seal plaintext into an envelope.

        Args:
            plaintext: UTF-8 text to encrypt

        Returns:
            str: ``iv:tag:ciphertext`` envelope, each part hex-encoded
        """
        iv = os.urandom(IV_LENGTH)
        sealed = self._aead.encrypt(iv, plaintext.encode("utf-8"), None)
        ciphertext, tag = sealed[:-TAG_LENGTH], sealed[-TAG_LENGTH:]
        return ENVELOPE_DELIMITER.join((iv.hex(), tag.hex(), ciphertext.hex()))

    def decrypt(self, envelope: str) -> str:
        """
        Open an envelope produced by :meth:`encrypt`.

        Args:
            envelope: ``iv:tag:ciphertext`` envelope

        Returns:
            str: Decrypted plaintext

        Raises:
            MalformedEnvelopeError: If the envelope does not have exactly three
                hex-encoded parts or the IV has the wrong length
            IntegrityError: If the authentication tag does not verify
        """
        parts = envelope.split(ENVELOPE_DELIMITER)
        if len(parts) != 3:
            metrics.record_decrypt_failure("malformed")
            raise MalformedEnvelopeError(
                f"Envelope must have 3 parts, got {len(parts)}"
            )

        try:
            iv, tag, ciphertext = (bytes.fromhex(part) for part in parts)
        except ValueError as e:
            metrics.record_decrypt_failure("malformed")
            raise MalformedEnvelopeError(f"Envelope is not hex-encoded: {e}") from e

        if len(iv) != IV_LENGTH:
            metrics.record_decrypt_failure("malformed")
            raise MalformedEnvelopeError(
                f"IV must be {IV_LENGTH} bytes, got {len(iv)}"
            )

        if len(tag) != TAG_LENGTH:
            metrics.record_decrypt_failure("integrity")
            raise IntegrityError("Authentication tag has the wrong length")

        try:
            plaintext = self._aead.decrypt(iv, ciphertext + tag, None)
        except InvalidTag as e:
            metrics.record_decrypt_failure("integrity")
            logger.error("credential_envelope_integrity_failed")
            raise IntegrityError("Credential envelope failed authentication") from e

        try:
            return plaintext.decode("utf-8")
        except UnicodeDecodeError as e:
            # Authenticated but not text; only possible if sealed outside encrypt()
            raise MalformedEnvelopeError("Decrypted credentials are not UTF-8") from e


@lru_cache()
def get_vault() -> CredentialVault:
    """
    Get the process-wide vault keyed by ``Settings.encryption_key``.

    Returns:
        CredentialVault: Cached vault instance
    """
    return CredentialVault(get_settings().encryption_key)
