"""In-process stores for tests and local development. Thread-safe, not durable."""

from __future__ import annotations

import threading
import uuid
from dataclasses import replace
from datetime import datetime, timezone
from typing import Callable, Optional

from authsvc.core.errors import EmailAlreadyRegistered, RefreshTokenConflict
from authsvc.core.tokens import hash_refresh_token
from authsvc.services.stores import ClientRecord, PrincipalRecord, RefreshTokenRecord, normalize_email


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


class MemoryRefreshTokenStore:
    def __init__(self, clock: Callable[[], datetime] = _utcnow) -> None:
        self._clock = clock
        self._lock = threading.Lock()
        self._tokens: dict[str, RefreshTokenRecord] = {}

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
        token_hash = hash_refresh_token(token)
        record = RefreshTokenRecord(
            token_hash=token_hash,
            user_id=user_id,
            client_id=client_id,
            expires_at=expires_at,
            device=device,
            ip_address=ip_address,
            created_at=self._clock(),
        )
        with self._lock:
            if token_hash in self._tokens:
                raise RefreshTokenConflict("refresh token value already stored")
            self._tokens[token_hash] = record
        return record

    async def find_valid(
        self, token: str, *, user_id: Optional[str] = None, client_id: Optional[str] = None
    ) -> Optional[RefreshTokenRecord]:
        with self._lock:
            record = self._tokens.get(hash_refresh_token(token))
        if record is None or not record.is_valid(self._clock()):
            return None
        if user_id is not None and record.user_id != user_id:
            return None
        if client_id is not None and record.client_id != client_id:
            return None
        return record

    async def revoke(self, token: str) -> bool:
        token_hash = hash_refresh_token(token)
        with self._lock:
            record = self._tokens.get(token_hash)
            if record is None or record.revoked:
                return False
            self._tokens[token_hash] = replace(record, revoked=True, revoked_at=self._clock())
            return True

    async def revoke_all_for_principal(self, user_id: str) -> int:
        now = self._clock()
        count = 0
        with self._lock:
            for token_hash, record in self._tokens.items():
                if record.user_id == user_id and not record.revoked:
                    self._tokens[token_hash] = replace(record, revoked=True, revoked_at=now)
                    count += 1
        return count

    async def purge(self, older_than: datetime) -> int:
        with self._lock:
            stale = [
                token_hash
                for token_hash, record in self._tokens.items()
                if record.expires_at < older_than or (record.revoked_at is not None and record.revoked_at < older_than)
            ]
            for token_hash in stale:
                del self._tokens[token_hash]
        return len(stale)

    def records(self) -> list[RefreshTokenRecord]:
        with self._lock:
            return list(self._tokens.values())


class MemoryUserDirectory:
    def __init__(self) -> None:
        self._lock = threading.Lock()
        self._users: dict[str, PrincipalRecord] = {}

    async def get_by_email(self, email: str) -> Optional[PrincipalRecord]:
        normalized = normalize_email(email)
        with self._lock:
            return next((u for u in self._users.values() if u.email == normalized), None)

    async def get_by_id(self, user_id: str) -> Optional[PrincipalRecord]:
        with self._lock:
            return self._users.get(user_id)

    async def create_user(self, *, name: str, email: str, password_hash: str) -> PrincipalRecord:
        normalized = normalize_email(email)
        with self._lock:
            if any(u.email == normalized for u in self._users.values()):
                raise EmailAlreadyRegistered()
            user = PrincipalRecord(
                id=str(uuid.uuid4()),
                name=name.strip(),
                email=normalized,
                password_hash=password_hash,
                created_at=_utcnow(),
            )
            self._users[user.id] = user
        return user

    def set_state(self, user_id: str, *, is_active: bool | None = None, is_deleted: bool | None = None) -> None:
        """Account suspension / soft delete, normally done by the user admin flows."""
        with self._lock:
            user = self._users[user_id]
            self._users[user_id] = replace(
                user,
                is_active=user.is_active if is_active is None else is_active,
                is_deleted=user.is_deleted if is_deleted is None else is_deleted,
            )


class MemoryClientRegistry:
    def __init__(self) -> None:
        self._lock = threading.Lock()
        self._clients: dict[str, ClientRecord] = {}

    async def find_active(self, client_id: str) -> Optional[ClientRecord]:
        with self._lock:
            client = self._clients.get(client_id)
        if client is None or not client.is_active:
            return None
        return client

    async def create_client(self, *, client_id: str, client_name: str, client_secret_hash: str) -> ClientRecord:
        client = ClientRecord(client_id=client_id, client_name=client_name, client_secret_hash=client_secret_hash)
        with self._lock:
            if client_id in self._clients:
                raise ValueError(f"client {client_id} already exists")
            self._clients[client_id] = client
        return client

    def deactivate(self, client_id: str) -> None:
        with self._lock:
            self._clients[client_id] = replace(self._clients[client_id], is_active=False)
