"""Time-based one-time passwords (RFC 6238) on top of ``pyotp``."""
from __future__ import annotations

import re
import time
from typing import Final
from urllib.parse import quote

import pyotp

CODE_DIGITS: Final[int] = 6
TIME_STEP_SECONDS: Final[int] = 30
VALID_WINDOW: Final[int] = 1

_CODE_PATTERN = re.compile(r"[0-9]{6}")


def _build_totp(secret: str) -> pyotp.TOTP:
    return pyotp.TOTP(secret, digits=CODE_DIGITS, interval=TIME_STEP_SECONDS)


class TotpEngine:
    """Six digit, 30 second TOTP with one step of clock drift tolerance."""

    def generate_secret(self) -> str:
        """Return a random 160-bit secret encoded as unpadded Base32."""

        return pyotp.random_base32()

    def generate_for_time(self, secret: str, epoch_seconds: int | float) -> str:
        return _build_totp(secret).at(int(epoch_seconds))

    def verify(self, secret: str, code: str | None, *, for_time: int | float | None = None) -> bool:
        """Check ``code`` against the previous, current and next time step."""

        if code is None or len(code) != CODE_DIGITS or not _CODE_PATTERN.fullmatch(code):
            return False
        moment = int(time.time() if for_time is None else for_time)
        return bool(_build_totp(secret).verify(code, for_time=moment, valid_window=VALID_WINDOW))

    def otpauth_url(self, issuer: str, label: str, secret: str) -> str:
        """Provisioning URI understood by authenticator apps."""

        encoded_issuer = quote(issuer, safe="")
        encoded_label = quote(label, safe="")
        return (
            f"otpauth://totp/{encoded_issuer}:{encoded_label}"
            f"?secret={secret}&issuer={encoded_issuer}"
        )


__all__ = ["CODE_DIGITS", "TIME_STEP_SECONDS", "TotpEngine", "VALID_WINDOW"]
