"""Password hashing and access token signing capabilities."""
from __future__ import annotations

import base64
import hashlib
import json
import secrets
from typing import Any, Final, Mapping

import jwt
from argon2 import PasswordHasher as _Argon2
from argon2.exceptions import InvalidHash, VerificationError
from cryptography.hazmat.primitives.asymmetric import rsa
from jwt.algorithms import RSAAlgorithm

REQUIRED_CLAIMS: Final[tuple[str, ...]] = ("iss", "sub", "aud", "iat", "exp", "mfa")


def hash_token(token: str) -> str:
    """One-way digest used to persist bearer secrets (refresh tokens, backup codes)."""

    return hashlib.sha256(token.encode("utf-8")).hexdigest()


def _random_kid() -> str:
    return base64.urlsafe_b64encode(secrets.token_bytes(8)).rstrip(b"=").decode("ascii")


class PasswordHasher:
    """Capability interface: hash and verify account passwords."""

    def hash(self, plaintext: str) -> str:  # pragma: no cover - interface
        raise NotImplementedError

    def matches(self, plaintext: str, digest: str) -> bool:  # pragma: no cover - interface
        raise NotImplementedError


class Argon2PasswordHasher(PasswordHasher):
    """Argon2id hashing backed by ``argon2-cffi``."""

    def __init__(self, hasher: _Argon2 | None = None) -> None:
        self._hasher = hasher or _Argon2()

    def hash(self, plaintext: str) -> str:
        return self._hasher.hash(plaintext)

    def matches(self, plaintext: str, digest: str) -> bool:
        if not digest:
            return False
        try:
            return self._hasher.verify(digest, plaintext)
        except (VerificationError, InvalidHash):
            return False


class TokenSigner:
    """Capability interface: sign access token claims and publish verification keys."""

    algorithm: str = ""
    key_id: str = ""

    def sign(self, claims: Mapping[str, Any]) -> str:
        return jwt.encode(
            dict(claims),
            self._signing_key(),
            algorithm=self.algorithm,
            headers={"kid": self.key_id, "typ": "JWT"},
        )

    def decode(self, token: str, *, audience: str, issuer: str) -> dict[str, Any]:
        """Verify ``token`` and return its claims; raises :class:`jwt.InvalidTokenError`."""

        return jwt.decode(
            token,
            self._verification_key(),
            algorithms=[self.algorithm],
            audience=audience,
            issuer=issuer,
            options={"require": list(REQUIRED_CLAIMS)},
        )

    def public_jwk_set(self) -> dict[str, list[dict[str, Any]]]:
        return {"keys": [self._public_jwk()]}

    def _signing_key(self) -> Any:  # pragma: no cover - interface
        raise NotImplementedError

    def _verification_key(self) -> Any:  # pragma: no cover - interface
        raise NotImplementedError

    def _public_jwk(self) -> dict[str, Any]:  # pragma: no cover - interface
        raise NotImplementedError


class RsaTokenSigner(TokenSigner):
    """RS256 signer; game servers verify with the published JWK set."""

    algorithm = "RS256"

    def __init__(self, private_key: rsa.RSAPrivateKey, *, key_id: str | None = None) -> None:
        self._private_key = private_key
        self._public_key = private_key.public_key()
        # A fresh kid per key lets JWKS caches notice a rotation.
        self.key_id = key_id or _random_kid()

    @classmethod
    def generate(cls, *, key_size: int = 2048, key_id: str | None = None) -> "RsaTokenSigner":
        """Create a signer around an in-memory key (development and tests)."""

        private_key = rsa.generate_private_key(public_exponent=65537, key_size=key_size)
        return cls(private_key, key_id=key_id)

    def _signing_key(self) -> rsa.RSAPrivateKey:
        return self._private_key

    def _verification_key(self) -> rsa.RSAPublicKey:
        return self._public_key

    def _public_jwk(self) -> dict[str, Any]:
        jwk = json.loads(RSAAlgorithm.to_jwk(self._public_key))
        jwk.update({"kid": self.key_id, "use": "sig", "alg": self.algorithm})
        return jwk


class HmacTokenSigner(TokenSigner):
    """HS256 signer over a shared secret for local development.

    A symmetric key has no public half, so the published JWK set is empty and
    verifiers must be given the secret out of band.
    """

    algorithm = "HS256"

    def __init__(self, secret: str) -> None:
        if len(secret.encode("utf-8")) < 32:
            raise ValueError("HS256 secret must be at least 32 bytes")
        self._secret = secret
        self.key_id = hashlib.sha256(secret.encode("utf-8")).hexdigest()[:32]

    def _signing_key(self) -> str:
        return self._secret

    def _verification_key(self) -> str:
        return self._secret

    def public_jwk_set(self) -> dict[str, list[dict[str, Any]]]:
        return {"keys": []}


__all__ = [
    "Argon2PasswordHasher",
    "HmacTokenSigner",
    "PasswordHasher",
    "REQUIRED_CLAIMS",
    "RsaTokenSigner",
    "TokenSigner",
    "hash_token",
]
