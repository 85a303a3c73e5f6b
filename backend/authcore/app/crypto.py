"""Encryption of TOTP secrets at rest."""
from __future__ import annotations

import base64
import binascii
import os
import re
from typing import TYPE_CHECKING, Final

from cryptography.exceptions import InvalidTag
from cryptography.hazmat.primitives.ciphers.aead import AESGCM

from .errors import ConfigurationError, DecryptFailure, InvalidEncryptionEnvelope
from .logging import get_logger

if TYPE_CHECKING:
    from .config import Settings

__all__ = ["ENVELOPE_PREFIX", "MfaSecretCipher"]


ENVELOPE_PREFIX: Final[str] = "enc:"
DEFAULT_KEY_ID: Final[str] = "v1"
PASSTHROUGH_KEY_ID: Final[str] = "dev"

_NONCE_SIZE: Final[int] = 12
_KEY_SIZE: Final[int] = 32
_B64URL = re.compile(r"[A-Za-z0-9_-]+")

logger = get_logger("authcore.crypto")


def _b64url_encode(raw: bytes) -> str:
    return base64.urlsafe_b64encode(raw).rstrip(b"=").decode("ascii")


def _b64url_decode(value: str) -> bytes:
    if not _B64URL.fullmatch(value):
        raise InvalidEncryptionEnvelope()
    try:
        return base64.urlsafe_b64decode(value + "=" * (-len(value) % 4))
    except (binascii.Error, ValueError) as exc:
        raise InvalidEncryptionEnvelope() from exc


class MfaSecretCipher:
    """AES-256-GCM envelope encryption, or passthrough when no key is configured.

    Envelopes look like ``enc:<keyId>:<nonce>:<ciphertext>`` with unpadded
    URL-safe base64 fields. Values without the ``enc:`` prefix are treated
    as legacy plaintext and returned unchanged by :meth:`decrypt`.
    """

    def __init__(self, key: bytes | None, *, key_id: str | None = None) -> None:
        if key is not None and len(key) != _KEY_SIZE:
            raise ConfigurationError("MFA encryption key must be 32 bytes (AES-256)")
        self._aead = AESGCM(key) if key is not None else None
        self.key_id = key_id or (DEFAULT_KEY_ID if key is not None else PASSTHROUGH_KEY_ID)
        if ":" in self.key_id:
            raise ConfigurationError("MFA key id must not contain ':'")

    @classmethod
    def passthrough(cls) -> "MfaSecretCipher":
        return cls(None)

    @classmethod
    def from_settings(cls, settings: "Settings") -> "MfaSecretCipher":
        """Build the cipher from ``settings.crypto``; passthrough is refused in production."""

        encoded_key = settings.crypto.mfa_encryption_key
        if encoded_key is None:
            if settings.is_production:
                raise ConfigurationError(
                    "CRYPTO_MFA_ENCRYPTION_KEY must be configured in production"
                )
            logger.warning("mfa_secret_passthrough", env=settings.env)
            return cls(None, key_id=settings.crypto.mfa_key_id)
        try:
            key = base64.b64decode(encoded_key, validate=True)
        except (binascii.Error, ValueError) as exc:
            raise ConfigurationError("MFA encryption key must be valid base64") from exc
        return cls(key, key_id=settings.crypto.mfa_key_id)

    @property
    def passthrough_mode(self) -> bool:
        return self._aead is None

    def encrypt(self, plaintext: str) -> str:
        if self._aead is None:
            return plaintext
        nonce = os.urandom(_NONCE_SIZE)
        ciphertext = self._aead.encrypt(nonce, plaintext.encode("utf-8"), None)
        return f"{ENVELOPE_PREFIX}{self.key_id}:{_b64url_encode(nonce)}:{_b64url_encode(ciphertext)}"

    def decrypt(self, value: str) -> str:
        if self._aead is None or not value.startswith(ENVELOPE_PREFIX):
            return value
        parts = value.split(":")
        if len(parts) != 4 or not all(parts[1:]):
            raise InvalidEncryptionEnvelope()
        nonce = _b64url_decode(parts[2])
        ciphertext = _b64url_decode(parts[3])
        if len(nonce) != _NONCE_SIZE:
            raise InvalidEncryptionEnvelope()
        try:
            plaintext = self._aead.decrypt(nonce, ciphertext, None)
        except InvalidTag as exc:
            raise DecryptFailure() from exc
        return plaintext.decode("utf-8")

    def is_encrypted(self, value: str | None) -> bool:
        if self._aead is None or value is None:
            return False
        return value.startswith(ENVELOPE_PREFIX)
