"""Access token codec (sign, then encrypt) and opaque refresh token values."""

from __future__ import annotations

import hashlib
import json
import secrets
import time
from typing import Any, Callable

from authsvc.core.errors import ExpiredCredential, MalformedCredential
from authsvc.core.keys import KeyMaterial

ACCESS_TOKEN_TYPE = "access"
MIN_SECRET_BYTES = 32
REQUIRED_CLAIMS = ("id", "iat", "exp")
MAX_CLAIMS_BYTES = 4096
# Encrypted form of a MAX_CLAIMS_BYTES claim set stays well under this.
MAX_TOKEN_LENGTH = 16384


def generate_opaque_secret(byte_length: int = 40) -> str:
    """Random hex string from the OS CSPRNG; 2 hex chars per byte."""
    if byte_length < MIN_SECRET_BYTES:
        raise ValueError(f"byte_length must be at least {MIN_SECRET_BYTES}")
    return secrets.token_hex(byte_length)


def hash_refresh_token(token: str) -> str:
    """SHA256 hash of refresh token for storage."""
    return hashlib.sha256(token.encode("utf-8")).hexdigest()


class CredentialCodec:
    """Mints and introspects access tokens. Purely cryptographic: no I/O, no shared mutable state."""

    def __init__(self, keys: KeyMaterial, clock: Callable[[], float] = time.time) -> None:
        self.keys = keys
        self._clock = clock

    def now(self) -> int:
        return int(self._clock())

    def mint(self, claims: dict[str, Any], ttl_seconds: int) -> str:
        if ttl_seconds <= 0:
            raise ValueError("ttl_seconds must be positive")
        issued_at = self.now()
        payload = {**claims, "type": ACCESS_TOKEN_TYPE, "iat": issued_at, "exp": issued_at + ttl_seconds}
        if len(json.dumps(payload, separators=(",", ":"))) > MAX_CLAIMS_BYTES:
            raise ValueError(f"claim set exceeds {MAX_CLAIMS_BYTES} bytes")
        signed = self.keys.sign(payload)
        return self.keys.encrypt_for(signed.encode("utf-8"))

    def introspect(self, token: str) -> dict[str, Any]:
        """Decrypt, verify signature, then expiry. Raises a CredentialError subclass on failure."""
        if not token or not isinstance(token, str):
            raise MalformedCredential()
        if len(token) > MAX_TOKEN_LENGTH:
            raise MalformedCredential()
        plaintext = self.keys.decrypt_with(token.strip())
        try:
            signed = plaintext.decode("utf-8")
        except UnicodeDecodeError as e:
            raise MalformedCredential() from e
        claims = self.keys.verify(signed)
        if claims.get("type") != ACCESS_TOKEN_TYPE:
            raise MalformedCredential("Token is not an access token.")
        if any(name not in claims for name in REQUIRED_CLAIMS):
            raise MalformedCredential()
        exp = claims["exp"]
        if isinstance(exp, bool) or not isinstance(exp, (int, float)):
            raise MalformedCredential()
        if self.now() >= exp:
            raise ExpiredCredential()
        return claims

