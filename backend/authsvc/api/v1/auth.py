"""Auth: signup, login, refresh (rotation), logout, verify."""

from typing import Annotated, Any

from fastapi import APIRouter, Cookie, Depends, Header, Request, Response
from pydantic import BaseModel

from authsvc.api.deps import (
    ACCESS_TOKEN_COOKIE,
    REFRESH_TOKEN_COOKIE,
    client_ip,
    get_current_principal,
    get_session_engine,
)
from authsvc.config import settings
from authsvc.core.rate_limit import limiter, login_limit
from authsvc.services.session_engine import IssuedTokens, SessionEngine, VerifiedPrincipal

router = APIRouter(prefix="/auth", tags=["auth"])


class SignupBody(BaseModel):
    name: str
    email: str
    password: str


class LoginBody(BaseModel):
    email: str
    password: str


class RefreshBody(BaseModel):
    refresh_token: str | None = None


class ApiResponse(BaseModel):
    status: bool = True
    message: str
    data: dict[str, Any] | None = None


def _cookie_options() -> dict[str, Any]:
    return {
        "httponly": True,
        "secure": settings.secure_cookies,
        "samesite": settings.cookie_samesite,
    }


def _set_token_cookies(response: Response, tokens: IssuedTokens) -> None:
    cookie_options = _cookie_options()
    response.set_cookie(ACCESS_TOKEN_COOKIE, tokens.access_token, max_age=tokens.access_token_ttl, **cookie_options)
    response.set_cookie(REFRESH_TOKEN_COOKIE, tokens.refresh_token, max_age=tokens.refresh_token_ttl, **cookie_options)


def _token_payload(tokens: IssuedTokens) -> dict[str, Any]:
    return {
        "accessToken": tokens.access_token,
        "refreshToken": tokens.refresh_token,
        "accessTokenExpiresIn": tokens.access_token_ttl,
        "refreshTokenExpiresIn": tokens.refresh_token_ttl,
    }


def _presented_refresh_token(cookie_value: str | None, body: RefreshBody | None) -> str:
    if cookie_value:
        return cookie_value
    if body is not None and body.refresh_token:
        return body.refresh_token.strip()
    return ""


@router.post(
    "/signup",
    status_code=201,
    response_model=ApiResponse,
    summary="Register a new user",
    responses={
        400: {"description": "Name, email and password required"},
        401: {"description": "Unauthorized client"},
        409: {"description": "Email already registered"},
    },
)
@router.post("/register", status_code=201, response_model=ApiResponse, include_in_schema=False)
async def signup(
    engine: Annotated[SessionEngine, Depends(get_session_engine)],
    body: SignupBody,
    x_client_id: Annotated[str | None, Header()] = None,
    x_client_secret: Annotated[str | None, Header()] = None,
) -> ApiResponse:
    user = await engine.register(body.name, body.email, body.password, x_client_id, x_client_secret)
    return ApiResponse(
        message="User registered successfully",
        data={
            "user": {
                "id": user.id,
                "name": user.name,
                "email": user.email,
                "createdAt": user.created_at.isoformat() if user.created_at else None,
            }
        },
    )


@router.post(
    "/login",
    response_model=ApiResponse,
    summary="Login with email and password",
    responses={
        401: {"description": "Invalid credentials or unauthorized client"},
        403: {"description": "Account inactive or deleted"},
    },
)
@limiter.limit(login_limit)
async def login(
    request: Request,
    response: Response,
    engine: Annotated[SessionEngine, Depends(get_session_engine)],
    body: LoginBody,
    x_client_id: Annotated[str | None, Header()] = None,
    x_client_secret: Annotated[str | None, Header()] = None,
) -> ApiResponse:
    tokens = await engine.login(
        body.email,
        body.password,
        client_id=x_client_id,
        client_secret=x_client_secret,
        device=request.headers.get("user-agent") or "unknown",
        ip_address=client_ip(request),
    )
    _set_token_cookies(response, tokens)
    principal = tokens.principal
    data: dict[str, Any] = {
        "user": {"id": principal.id, "name": principal.name, "email": principal.email} if principal else None
    }
    if settings.tokens_in_body:
        data["tokens"] = _token_payload(tokens)
    return ApiResponse(message="Login successful", data=data)


@router.post(
    "/refresh",
    response_model=ApiResponse,
    summary="Exchange refresh token for new access and refresh tokens",
    responses={
        400: {"description": "Refresh token required"},
        401: {"description": "Refresh token invalid, expired or already used"},
        403: {"description": "Account inactive or deleted"},
    },
)
async def refresh_tokens(
    request: Request,
    response: Response,
    engine: Annotated[SessionEngine, Depends(get_session_engine)],
    body: RefreshBody | None = None,
    refresh_cookie: Annotated[str | None, Cookie(alias=REFRESH_TOKEN_COOKIE)] = None,
) -> ApiResponse:
    """Rotation: the presented refresh token is retired; a new pair is issued."""
    tokens = await engine.refresh(
        _presented_refresh_token(refresh_cookie, body),
        device=request.headers.get("user-agent") or "unknown",
        ip_address=client_ip(request),
    )
    _set_token_cookies(response, tokens)
    data: dict[str, Any] = {}
    if settings.tokens_in_body:
        data["tokens"] = _token_payload(tokens)
    return ApiResponse(message="Tokens refreshed successfully", data=data)


@router.post(
    "/logout",
    response_model=ApiResponse,
    summary="Revoke the refresh token and clear cookies",
    responses={
        400: {"description": "Refresh token required"},
        401: {"description": "Refresh token invalid, expired or already revoked"},
    },
)
async def logout(
    response: Response,
    engine: Annotated[SessionEngine, Depends(get_session_engine)],
    body: RefreshBody | None = None,
    refresh_cookie: Annotated[str | None, Cookie(alias=REFRESH_TOKEN_COOKIE)] = None,
) -> ApiResponse:
    await engine.logout(_presented_refresh_token(refresh_cookie, body))
    response.delete_cookie(ACCESS_TOKEN_COOKIE, **_cookie_options())
    response.delete_cookie(REFRESH_TOKEN_COOKIE, **_cookie_options())
    return ApiResponse(message="Logged out successfully")


@router.get(
    "/verify",
    response_model=ApiResponse,
    summary="Validate the access token",
    responses={
        401: {"description": "Missing, expired, tampered or malformed access token"},
        403: {"description": "Account inactive"},
    },
)
async def verify(principal: Annotated[VerifiedPrincipal, Depends(get_current_principal)]) -> ApiResponse:
    return ApiResponse(
        message="Token is valid",
        data={
            "userId": principal.principal_id,
            "clientId": principal.client_id,
            "email": principal.email,
            "isActive": principal.is_active,
        },
    )
