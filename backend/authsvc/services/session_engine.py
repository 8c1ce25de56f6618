"""Session lifecycle: register, login, refresh (rotation), logout, verify.

Every transition is guarded by the client and account gates. Access tokens are
stateless (verified cryptographically); refresh tokens are opaque and tracked by
the RefreshTokenStore. Principal and client binding on refresh always comes from
the stored refresh token record, never from the caller.
"""

from __future__ import annotations

import asyncio
import logging
from contextlib import contextmanager
from dataclasses import dataclass
from datetime import datetime, timedelta, timezone
from typing import Any, Awaitable, Callable, Iterator, Optional

from prometheus_client import Counter

from authsvc.config import Settings
from authsvc.core.auth import dummy_verify, hash_password, verify_client_secret, verify_password
from authsvc.core.errors import (
    AccountInactive,
    AuthError,
    InvalidCredentials,
    InvalidOrExpiredToken,
    MalformedCredential,
    MissingCredentials,
    UnauthorizedClient,
)
from authsvc.core.tokens import CredentialCodec, generate_opaque_secret
from authsvc.services.stores import (
    ClientRecord,
    ClientRegistry,
    PrincipalRecord,
    RefreshTokenStore,
    UserDirectory,
    normalize_email,
)

logger = logging.getLogger(__name__)

SESSION_OPERATIONS = Counter(
    "authsvc_session_operations_total",
    "Session engine transitions by operation and outcome",
    ["operation", "outcome"],
)


@contextmanager
def _observe(operation: str) -> Iterator[None]:
    try:
        yield
    except AuthError as e:
        SESSION_OPERATIONS.labels(operation=operation, outcome=e.kind.value).inc()
        raise
    SESSION_OPERATIONS.labels(operation=operation, outcome="success").inc()


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


async def _no_commit() -> None:
    return None


@dataclass(frozen=True)
class PrincipalSummary:
    id: str
    name: str
    email: str


@dataclass(frozen=True)
class RegisteredPrincipal:
    id: str
    name: str
    email: str
    created_at: Optional[datetime]


@dataclass(frozen=True)
class IssuedTokens:
    access_token: str
    refresh_token: str
    access_token_ttl: int
    refresh_token_ttl: int
    refresh_token_expires_at: datetime
    principal: Optional[PrincipalSummary] = None


@dataclass(frozen=True)
class VerifiedPrincipal:
    principal_id: str
    client_id: Optional[str]
    email: Optional[str]
    is_active: bool


def verify_access_token(codec: CredentialCodec, access_token: str) -> VerifiedPrincipal:
    """Stateless check: the isActive claim is trusted for the lifetime of the token. No store access."""
    with _observe("verify"):
        if not access_token:
            raise MalformedCredential("Access token is required.")
        claims = codec.introspect(access_token)
        if not claims.get("isActive"):
            raise AccountInactive("Account is inactive.")
        return VerifiedPrincipal(
            principal_id=claims["id"],
            client_id=claims.get("clientId"),
            email=claims.get("email"),
            is_active=True,
        )


class SessionEngine:
    def __init__(
        self,
        codec: CredentialCodec,
        refresh_tokens: RefreshTokenStore,
        users: UserDirectory,
        clients: ClientRegistry,
        *,
        access_token_ttl: int = 900,
        refresh_token_ttl: int = 604800,
        refresh_token_bytes: int = 40,
        require_client_auth: bool = True,
        clock: Callable[[], datetime] = _utcnow,
        commit: Callable[[], Awaitable[None]] = _no_commit,
    ) -> None:
        self.codec = codec
        self.refresh_tokens = refresh_tokens
        self.users = users
        self.clients = clients
        self.access_token_ttl = access_token_ttl
        self.refresh_token_ttl = refresh_token_ttl
        self.refresh_token_bytes = refresh_token_bytes
        self.require_client_auth = require_client_auth
        self._clock = clock
        # Makes a transition durable before its result reaches the caller.
        self._commit = commit

    @classmethod
    def from_settings(
        cls,
        settings: Settings,
        codec: CredentialCodec,
        refresh_tokens: RefreshTokenStore,
        users: UserDirectory,
        clients: ClientRegistry,
        commit: Callable[[], Awaitable[None]] = _no_commit,
    ) -> SessionEngine:
        return cls(
            codec,
            refresh_tokens,
            users,
            clients,
            commit=commit,
            access_token_ttl=settings.access_token_expire_seconds,
            refresh_token_ttl=settings.refresh_token_expire_seconds,
            refresh_token_bytes=settings.refresh_token_bytes,
            require_client_auth=settings.require_client_auth,
        )

    async def authenticate_client(self, client_id: Optional[str], client_secret: Optional[str]) -> ClientRecord:
        if not client_id or not client_secret:
            raise UnauthorizedClient("Client credentials are required.")
        client = await self.clients.find_active(client_id)
        if client is None:
            await asyncio.to_thread(dummy_verify, client_secret)
            raise UnauthorizedClient()
        if not await asyncio.to_thread(verify_client_secret, client_secret, client.client_secret_hash):
            raise UnauthorizedClient()
        return client

    async def _client_gate(self, client_id: Optional[str], client_secret: Optional[str]) -> Optional[str]:
        """Authenticated client id, or None when client auth is optional and nothing was presented."""
        if client_id or client_secret or self.require_client_auth:
            client = await self.authenticate_client(client_id, client_secret)
            return client.client_id
        return None

    async def register(
        self,
        name: str,
        email: str,
        password: str,
        client_id: Optional[str] = None,
        client_secret: Optional[str] = None,
    ) -> RegisteredPrincipal:
        with _observe("register"):
            if not name or not email or not password:
                raise MissingCredentials("Name, email, and password are required.")
            await self._client_gate(client_id, client_secret)
            password_hash = await asyncio.to_thread(hash_password, password)
            user = await self.users.create_user(name=name, email=normalize_email(email), password_hash=password_hash)
            await self._commit()
            logger.info("Registered user %s", user.id)
            return RegisteredPrincipal(id=user.id, name=user.name, email=user.email, created_at=user.created_at)

    async def login(
        self,
        email: str,
        password: str,
        client_id: Optional[str] = None,
        client_secret: Optional[str] = None,
        device: str = "unknown",
        ip_address: Optional[str] = None,
    ) -> IssuedTokens:
        with _observe("login"):
            if not email or not password:
                raise MissingCredentials("Email and password are required.")
            bound_client_id = await self._client_gate(client_id, client_secret)
            user = await self.users.get_by_email(normalize_email(email))
            if user is None:
                await asyncio.to_thread(dummy_verify, password)
                raise InvalidCredentials()
            if not await asyncio.to_thread(verify_password, password, user.password_hash):
                raise InvalidCredentials()
            # Account state only after the password matched, so it is never disclosed to guessers.
            if not user.can_authenticate:
                raise AccountInactive()
            issued = await self._issue(user, bound_client_id, device, ip_address)
            await self._commit()
            logger.info("Login user=%s client=%s", user.id, bound_client_id)
            return IssuedTokens(
                access_token=issued.access_token,
                refresh_token=issued.refresh_token,
                access_token_ttl=issued.access_token_ttl,
                refresh_token_ttl=issued.refresh_token_ttl,
                refresh_token_expires_at=issued.refresh_token_expires_at,
                principal=PrincipalSummary(id=user.id, name=user.name, email=user.email),
            )

    async def refresh(
        self,
        refresh_token: str,
        device: Optional[str] = "unknown",
        ip_address: Optional[str] = None,
        *,
        client_id: Optional[str] = None,
    ) -> IssuedTokens:
        """Rotate: retire the presented refresh token and issue a new pair bound to the same user/client."""
        with _observe("refresh"):
            if not refresh_token:
                raise MissingCredentials("Refresh token is required.")
            record = await self.refresh_tokens.find_valid(refresh_token, client_id=client_id)
            if record is None:
                raise InvalidOrExpiredToken()
            user = await self.users.get_by_id(record.user_id)
            if user is None or not user.can_authenticate:
                raise AccountInactive()
            if not await self.refresh_tokens.revoke(refresh_token):
                logger.warning("Refresh token for user %s already rotated or revoked concurrently", record.user_id)
                raise InvalidOrExpiredToken()
            issued = await self._issue(
                user,
                record.client_id,
                device or record.device,
                ip_address or record.ip_address,
            )
            await self._commit()
            logger.info("Rotated refresh token user=%s client=%s", user.id, record.client_id)
            return issued

    async def logout(self, refresh_token: str) -> None:
        with _observe("logout"):
            if not refresh_token:
                raise MissingCredentials("Refresh token is required.")
            record = await self.refresh_tokens.find_valid(refresh_token)
            if record is None:
                raise InvalidOrExpiredToken()
            if not await self.refresh_tokens.revoke(refresh_token):
                raise InvalidOrExpiredToken()
            await self._commit()
            logger.info("Logout user=%s client=%s", record.user_id, record.client_id)

    def verify(self, access_token: str) -> VerifiedPrincipal:
        return verify_access_token(self.codec, access_token)

    async def revoke_all_for_principal(self, user_id: str) -> int:
        count = await self.refresh_tokens.revoke_all_for_principal(user_id)
        await self._commit()
        logger.info("Revoked %d refresh tokens for user %s", count, user_id)
        return count

    def _access_claims(self, user: PrincipalRecord, client_id: Optional[str]) -> dict[str, Any]:
        return {
            "id": user.id,
            "clientId": client_id,
            "email": user.email,
            "isActive": user.can_authenticate,
        }

    async def _issue(
        self,
        user: PrincipalRecord,
        client_id: Optional[str],
        device: Optional[str],
        ip_address: Optional[str],
    ) -> IssuedTokens:
        access_token = self.codec.mint(self._access_claims(user, client_id), self.access_token_ttl)
        refresh_value = generate_opaque_secret(self.refresh_token_bytes)
        expires_at = self._clock() + timedelta(seconds=self.refresh_token_ttl)
        await self.refresh_tokens.create(
            user_id=user.id,
            client_id=client_id,
            token=refresh_value,
            expires_at=expires_at,
            device=device,
            ip_address=ip_address,
        )
        return IssuedTokens(
            access_token=access_token,
            refresh_token=refresh_value,
            access_token_ttl=self.access_token_ttl,
            refresh_token_ttl=self.refresh_token_ttl,
            refresh_token_expires_at=expires_at,
        )
