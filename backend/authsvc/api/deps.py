"""FastAPI dependencies: session engine per request, current principal from the access token."""

from functools import partial
from typing import Annotated

from fastapi import Depends, Request
from sqlalchemy.ext.asyncio import AsyncSession

from authsvc.config import settings
from authsvc.core.tokens import CredentialCodec
from authsvc.db.session import get_db
from authsvc.services.session_engine import SessionEngine, VerifiedPrincipal, verify_access_token
from authsvc.services.sql_stores import SqlClientRegistry, SqlRefreshTokenStore, SqlUserDirectory, commit_session

ACCESS_TOKEN_COOKIE = "accessToken"
REFRESH_TOKEN_COOKIE = "refreshToken"


def get_codec(request: Request) -> CredentialCodec:
    """Codec built in app lifespan from the loaded key pair."""
    codec = getattr(request.app.state, "codec", None)
    if codec is None:
        raise RuntimeError("Key material not loaded; ensure app lifespan has run.")
    return codec


async def get_session_engine(
    session: Annotated[AsyncSession, Depends(get_db)],
    codec: Annotated[CredentialCodec, Depends(get_codec)],
) -> SessionEngine:
    return SessionEngine.from_settings(
        settings,
        codec,
        SqlRefreshTokenStore(session),
        SqlUserDirectory(session),
        SqlClientRegistry(session),
        commit=partial(commit_session, session),
    )


def get_access_token(request: Request) -> str | None:
    """Bearer header first, then the httpOnly cookie."""
    auth_header = request.headers.get("Authorization")
    if auth_header and auth_header.startswith("Bearer "):
        token = auth_header[7:].strip()
        if token:
            return token
    return request.cookies.get(ACCESS_TOKEN_COOKIE) or None


def get_current_principal(
    request: Request,
    codec: Annotated[CredentialCodec, Depends(get_codec)],
) -> VerifiedPrincipal:
    """Codec only: verifying an access token never opens a database session."""
    return verify_access_token(codec, get_access_token(request) or "")


def client_ip(request: Request) -> str:
    return request.client.host if request.client else "unknown"
