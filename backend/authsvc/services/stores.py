"""Persistence contracts consumed by the session engine.

The engine owns no storage. Refresh tokens, users and clients are reached through
these protocols; SQL implementations live in `sql_stores`, in-memory ones in
`memory_stores`.
"""

from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime
from typing import Optional, Protocol


@dataclass(frozen=True)
class RefreshTokenRecord:
    token_hash: str
    user_id: str
    client_id: Optional[str]
    expires_at: datetime
    revoked: bool = False
    device: Optional[str] = None
    ip_address: Optional[str] = None
    created_at: Optional[datetime] = None
    revoked_at: Optional[datetime] = None

    def is_valid(self, now: datetime) -> bool:
        return not self.revoked and now < self.expires_at


@dataclass(frozen=True)
class PrincipalRecord:
    id: str
    name: str
    email: str
    password_hash: str
    is_active: bool = True
    is_deleted: bool = False
    created_at: Optional[datetime] = None

    @property
    def can_authenticate(self) -> bool:
        return self.is_active and not self.is_deleted


@dataclass(frozen=True)
class ClientRecord:
    client_id: str
    client_name: str
    client_secret_hash: str
    is_active: bool = True


class RefreshTokenStore(Protocol):
    async def create(
        self,
        *,
        user_id: str,
        client_id: Optional[str],
        token: str,
        expires_at: datetime,
        device: Optional[str] = None,
        ip_address: Optional[str] = None,
    ) -> RefreshTokenRecord:
        """Insert a new token. Raises RefreshTokenConflict instead of overwriting."""
        ...

    async def find_valid(
        self, token: str, *, user_id: Optional[str] = None, client_id: Optional[str] = None
    ) -> Optional[RefreshTokenRecord]:
        """Record for `token` only if not revoked and not expired (and matching the filters)."""
        ...

    async def revoke(self, token: str) -> bool:
        """Atomically flip revoked false -> true. True only for the caller that flipped it."""
        ...

    async def revoke_all_for_principal(self, user_id: str) -> int: ...

    async def purge(self, older_than: datetime) -> int:
        """Delete tokens expired before, or revoked before, `older_than`."""
        ...


class UserDirectory(Protocol):
    async def get_by_email(self, email: str) -> Optional[PrincipalRecord]: ...

    async def get_by_id(self, user_id: str) -> Optional[PrincipalRecord]: ...

    async def create_user(self, *, name: str, email: str, password_hash: str) -> PrincipalRecord:
        """Raises EmailAlreadyRegistered when the normalized email is taken."""
        ...


class ClientRegistry(Protocol):
    async def find_active(self, client_id: str) -> Optional[ClientRecord]: ...

    async def create_client(self, *, client_id: str, client_name: str, client_secret_hash: str) -> ClientRecord: ...


def normalize_email(email: str) -> str:
    return email.strip().lower()
