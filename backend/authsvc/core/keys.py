"""RSA key pair used to sign (RS256) and encrypt (RSA-OAEP-256 + A256GCM) access tokens.

Built once at startup and shared read-only by every request handler.
"""

from __future__ import annotations

import json
import logging
from dataclasses import dataclass
from typing import Any

from cryptography.exceptions import UnsupportedAlgorithm
from cryptography.hazmat.primitives import serialization
from cryptography.hazmat.primitives.asymmetric import rsa
from jose import jwe, jws
from jose.exceptions import JOSEError, JWSError

from authsvc.config import Settings
from authsvc.core.errors import InvalidSignature, KeyMaterialError, MalformedCredential

logger = logging.getLogger(__name__)

SIGNING_ALGORITHM = "RS256"
KEY_WRAP_ALGORITHM = "RSA-OAEP-256"
CONTENT_ENCRYPTION = "A256GCM"
MIN_KEY_SIZE = 2048


def _load_private_key(pem: str) -> rsa.RSAPrivateKey:
    try:
        key = serialization.load_pem_private_key(pem.encode("utf-8"), password=None)
    except (ValueError, TypeError, UnsupportedAlgorithm) as e:
        raise KeyMaterialError(f"JWT_PRIVATE_KEY is not a valid unencrypted PEM private key: {type(e).__name__}") from e
    if not isinstance(key, rsa.RSAPrivateKey):
        raise KeyMaterialError("JWT_PRIVATE_KEY must be an RSA key")
    return key


def _load_public_key(pem: str) -> rsa.RSAPublicKey:
    try:
        key = serialization.load_pem_public_key(pem.encode("utf-8"))
    except (ValueError, TypeError, UnsupportedAlgorithm) as e:
        raise KeyMaterialError(f"JWT_PUBLIC_KEY is not a valid PEM public key: {type(e).__name__}") from e
    if not isinstance(key, rsa.RSAPublicKey):
        raise KeyMaterialError("JWT_PUBLIC_KEY must be an RSA key")
    return key


@dataclass(frozen=True)
class KeyMaterial:
    private_pem: str
    public_pem: str

    @classmethod
    def from_pem(cls, private_pem: str, public_pem: str) -> KeyMaterial:
        """Validate and normalize a PEM key pair. Raises KeyMaterialError when unusable."""
        if not private_pem or not private_pem.strip():
            raise KeyMaterialError("JWT_PRIVATE_KEY is not set")
        if not public_pem or not public_pem.strip():
            raise KeyMaterialError("JWT_PUBLIC_KEY is not set")
        private_key = _load_private_key(private_pem.strip())
        public_key = _load_public_key(public_pem.strip())
        if private_key.key_size < MIN_KEY_SIZE:
            raise KeyMaterialError(f"RSA key must be at least {MIN_KEY_SIZE} bits, got {private_key.key_size}")
        if private_key.public_key().public_numbers() != public_key.public_numbers():
            raise KeyMaterialError("JWT_PUBLIC_KEY does not match JWT_PRIVATE_KEY")
        normalized_private = private_key.private_bytes(
            encoding=serialization.Encoding.PEM,
            format=serialization.PrivateFormat.PKCS8,
            encryption_algorithm=serialization.NoEncryption(),
        ).decode("utf-8")
        normalized_public = public_key.public_bytes(
            encoding=serialization.Encoding.PEM,
            format=serialization.PublicFormat.SubjectPublicKeyInfo,
        ).decode("utf-8")
        logger.info("Loaded %d-bit RSA key pair for access tokens", private_key.key_size)
        return cls(private_pem=normalized_private, public_pem=normalized_public)

    @classmethod
    def from_settings(cls, settings: Settings) -> KeyMaterial:
        return cls.from_pem(settings.jwt_private_key, settings.jwt_public_key)

    def __repr__(self) -> str:
        return "KeyMaterial(<redacted>)"

    def sign(self, payload: dict[str, Any]) -> str:
        """Compact JWS (RS256) over the JSON-encoded payload."""
        return jws.sign(payload, self.private_pem, headers={"typ": "JWT"}, algorithm=SIGNING_ALGORITHM)

    def verify(self, signed_token: str) -> dict[str, Any]:
        """Check the RS256 signature and return the decoded claims. No expiry check here."""
        try:
            header = jws.get_unverified_header(signed_token)
            jws.get_unverified_claims(signed_token)
        except JWSError as e:
            raise MalformedCredential() from e
        if header.get("alg") != SIGNING_ALGORITHM:
            raise InvalidSignature()
        try:
            payload = jws.verify(signed_token, self.public_pem, algorithms=[SIGNING_ALGORITHM])
        except JWSError as e:
            raise InvalidSignature() from e
        try:
            claims = json.loads(payload)
        except ValueError as e:
            raise MalformedCredential() from e
        if not isinstance(claims, dict):
            raise MalformedCredential()
        return claims

    def encrypt_for(self, plaintext: bytes) -> str:
        """Compact JWE for the public key holder of the private half (this service)."""
        token = jwe.encrypt(
            plaintext,
            self.public_pem,
            encryption=CONTENT_ENCRYPTION,
            algorithm=KEY_WRAP_ALGORITHM,
            cty="JWT",
        )
        return token.decode("ascii") if isinstance(token, bytes) else token

    def decrypt_with(self, ciphertext: str) -> bytes:
        try:
            header = jwe.get_unverified_header(ciphertext)
        except (JOSEError, ValueError) as e:
            raise MalformedCredential() from e
        if header.get("alg") != KEY_WRAP_ALGORITHM or header.get("enc") != CONTENT_ENCRYPTION:
            raise MalformedCredential()
        # Minted tokens are never compressed.
        if "zip" in header:
            raise MalformedCredential()
        try:
            plaintext = jwe.decrypt(ciphertext, self.private_pem)
        except (JOSEError, ValueError) as e:
            raise MalformedCredential() from e
        if plaintext is None:
            raise MalformedCredential()
        return plaintext
