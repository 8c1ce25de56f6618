"""SQLAlchemy-backed stores bound to one request-scoped AsyncSession."""

from __future__ import annotations

import asyncio
import logging
from contextlib import contextmanager
from datetime import datetime, timezone
from typing import Iterator, Optional

from sqlalchemy import delete, or_, select, update
from sqlalchemy.exc import DisconnectionError, IntegrityError, InterfaceError, OperationalError
from sqlalchemy.exc import TimeoutError as PoolTimeoutError
from sqlalchemy.ext.asyncio import AsyncSession

from authsvc.core.errors import EmailAlreadyRegistered, PersistenceUnavailable, RefreshTokenConflict
from authsvc.core.tokens import hash_refresh_token
from authsvc.models.client import Client
from authsvc.models.refresh_token import RefreshToken
from authsvc.models.user import User
from authsvc.services.stores import ClientRecord, PrincipalRecord, RefreshTokenRecord, normalize_email

logger = logging.getLogger(__name__)

_UNAVAILABLE_ERRORS = (
    OperationalError,
    InterfaceError,
    DisconnectionError,
    PoolTimeoutError,
    asyncio.TimeoutError,
    ConnectionError,
)


@contextmanager
def store_errors(operation: str) -> Iterator[None]:
    """Translate driver/connection failures into PersistenceUnavailable. No retries."""
    try:
        yield
    except _UNAVAILABLE_ERRORS as e:
        logger.warning("Store unavailable during %s: %s", operation, type(e).__name__)
        raise PersistenceUnavailable() from e


def _token_record(row: RefreshToken) -> RefreshTokenRecord:
    return RefreshTokenRecord(
        token_hash=row.token_hash,
        user_id=row.user_id,
        client_id=row.client_id,
        expires_at=row.expires_at,
        revoked=row.revoked,
        device=row.device,
        ip_address=row.ip_address,
        created_at=row.created_at,
        revoked_at=row.revoked_at,
    )


def _principal_record(user: User) -> PrincipalRecord:
    return PrincipalRecord(
        id=user.id,
        name=user.name,
        email=user.email,
        password_hash=user.password_hash,
        is_active=user.is_active,
        is_deleted=user.is_deleted,
        created_at=user.created_at,
    )


class SqlRefreshTokenStore:
    def __init__(self, session: AsyncSession) -> None:
        self.session = session

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
        row = RefreshToken(
            user_id=user_id,
            client_id=client_id,
            token_hash=hash_refresh_token(token),
            expires_at=expires_at,
            revoked=False,
            device=device[:255] if device else None,
            ip_address=ip_address[:45] if ip_address else None,
        )
        with store_errors("refresh_token.create"):
            self.session.add(row)
            try:
                await self.session.flush()
            except IntegrityError as e:
                raise RefreshTokenConflict("refresh token could not be stored") from e
        return _token_record(row)

    async def find_valid(
        self, token: str, *, user_id: Optional[str] = None, client_id: Optional[str] = None
    ) -> Optional[RefreshTokenRecord]:
        stmt = select(RefreshToken).where(
            RefreshToken.token_hash == hash_refresh_token(token),
            RefreshToken.revoked.is_(False),
            RefreshToken.expires_at > datetime.now(timezone.utc),
        )
        if user_id is not None:
            stmt = stmt.where(RefreshToken.user_id == user_id)
        if client_id is not None:
            stmt = stmt.where(RefreshToken.client_id == client_id)
        with store_errors("refresh_token.find_valid"):
            r = await self.session.execute(stmt)
            row = r.scalar_one_or_none()
        return _token_record(row) if row is not None else None

    async def revoke(self, token: str) -> bool:
        # Single conditional UPDATE: concurrent revokers block on the row lock and then match zero rows.
        stmt = (
            update(RefreshToken)
            .where(
                RefreshToken.token_hash == hash_refresh_token(token),
                RefreshToken.revoked.is_(False),
            )
            .values(revoked=True, revoked_at=datetime.now(timezone.utc))
            .execution_options(synchronize_session=False)
        )
        with store_errors("refresh_token.revoke"):
            r = await self.session.execute(stmt)
        return r.rowcount == 1

    async def revoke_all_for_principal(self, user_id: str) -> int:
        stmt = (
            update(RefreshToken)
            .where(RefreshToken.user_id == user_id, RefreshToken.revoked.is_(False))
            .values(revoked=True, revoked_at=datetime.now(timezone.utc))
            .execution_options(synchronize_session=False)
        )
        with store_errors("refresh_token.revoke_all"):
            r = await self.session.execute(stmt)
        return r.rowcount or 0

    async def purge(self, older_than: datetime) -> int:
        stmt = delete(RefreshToken).where(
            or_(
                RefreshToken.expires_at < older_than,
                RefreshToken.revoked_at < older_than,
            )
        )
        with store_errors("refresh_token.purge"):
            r = await self.session.execute(stmt.execution_options(synchronize_session=False))
        return r.rowcount or 0


class SqlUserDirectory:
    def __init__(self, session: AsyncSession) -> None:
        self.session = session

    async def get_by_email(self, email: str) -> Optional[PrincipalRecord]:
        with store_errors("user.get_by_email"):
            r = await self.session.execute(select(User).where(User.email == normalize_email(email)))
            user = r.scalar_one_or_none()
        return _principal_record(user) if user is not None else None

    async def get_by_id(self, user_id: str) -> Optional[PrincipalRecord]:
        with store_errors("user.get_by_id"):
            r = await self.session.execute(select(User).where(User.id == user_id))
            user = r.scalar_one_or_none()
        return _principal_record(user) if user is not None else None

    async def create_user(self, *, name: str, email: str, password_hash: str) -> PrincipalRecord:
        user = User(name=name.strip(), email=normalize_email(email), password_hash=password_hash)
        with store_errors("user.create"):
            try:
                async with self.session.begin_nested():
                    self.session.add(user)
            except IntegrityError as e:
                raise EmailAlreadyRegistered() from e
            await self.session.refresh(user)
        return _principal_record(user)


class SqlClientRegistry:
    def __init__(self, session: AsyncSession) -> None:
        self.session = session

    async def find_active(self, client_id: str) -> Optional[ClientRecord]:
        with store_errors("client.find_active"):
            r = await self.session.execute(
                select(Client).where(Client.client_id == client_id, Client.is_active.is_(True))
            )
            client = r.scalar_one_or_none()
        if client is None:
            return None
        return ClientRecord(
            client_id=client.client_id,
            client_name=client.client_name,
            client_secret_hash=client.client_secret_hash,
            is_active=client.is_active,
        )

    async def create_client(self, *, client_id: str, client_name: str, client_secret_hash: str) -> ClientRecord:
        client = Client(client_id=client_id, client_name=client_name, client_secret_hash=client_secret_hash)
        with store_errors("client.create"):
            self.session.add(client)
            await self.session.flush()
        return ClientRecord(
            client_id=client.client_id,
            client_name=client.client_name,
            client_secret_hash=client.client_secret_hash,
        )


async def commit_session(session: AsyncSession) -> None:
    """Commit the request's unit of work; a failed commit surfaces as PersistenceUnavailable."""
    with store_errors("commit"):
        await session.commit()
