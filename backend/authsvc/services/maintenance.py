"""Scheduled cleanup: delete refresh tokens that expired or were revoked long enough ago."""

import logging
from datetime import datetime, timedelta, timezone

from authsvc.config import settings
from authsvc.core.errors import PersistenceUnavailable
from authsvc.services.stores import RefreshTokenStore

logger = logging.getLogger(__name__)


async def purge_refresh_tokens(store: RefreshTokenStore, grace_days: int | None = None) -> int:
    """Delete tokens expired or revoked more than `grace_days` ago. Valid tokens are never touched."""
    days = grace_days if grace_days is not None else settings.refresh_token_purge_grace_days
    cutoff = datetime.now(timezone.utc) - timedelta(days=days)
    count = await store.purge(cutoff)
    logger.info("Purged %d refresh tokens older than %s", count, cutoff.isoformat())
    return count


async def scheduled_refresh_token_purge() -> None:
    """APScheduler job: own session and transaction, failures logged (no caller to report to)."""
    from authsvc.db.session import async_session_maker
    from authsvc.services.sql_stores import SqlRefreshTokenStore, commit_session

    try:
        async with async_session_maker() as session:
            await purge_refresh_tokens(SqlRefreshTokenStore(session))
            await commit_session(session)
    except PersistenceUnavailable:
        logger.warning("Refresh token purge skipped: store unavailable")
