"""Map session error kinds to HTTP responses. Bodies never carry tokens, secrets or stack traces."""

import logging

from fastapi import FastAPI, Request
from fastapi.responses import JSONResponse

from authsvc.core.errors import AuthError, ErrorKind

logger = logging.getLogger(__name__)

STATUS_BY_KIND: dict[ErrorKind, int] = {
    ErrorKind.UNAUTHORIZED_CLIENT: 401,
    ErrorKind.INVALID_CREDENTIALS: 401,
    ErrorKind.ACCOUNT_INACTIVE: 403,
    ErrorKind.INVALID_OR_EXPIRED_TOKEN: 401,
    ErrorKind.EXPIRED_CREDENTIAL: 401,
    ErrorKind.INVALID_SIGNATURE: 401,
    ErrorKind.MALFORMED_CREDENTIAL: 401,
    ErrorKind.PERSISTENCE_UNAVAILABLE: 503,
    ErrorKind.EMAIL_ALREADY_REGISTERED: 409,
    ErrorKind.MISSING_CREDENTIALS: 400,
}

RETRY_AFTER_SECONDS = 5


def error_body(message: str, data: dict | None = None) -> dict:
    return {"status": False, "error": message, "data": data}


async def auth_error_handler(request: Request, exc: AuthError) -> JSONResponse:
    status_code = STATUS_BY_KIND.get(exc.kind, 401)
    headers = {}
    if exc.kind is ErrorKind.PERSISTENCE_UNAVAILABLE:
        headers["Retry-After"] = str(RETRY_AFTER_SECONDS)
        logger.warning("%s %s: session store unavailable", request.method, request.url.path)
    return JSONResponse(
        status_code=status_code,
        content=error_body(exc.message, {"kind": exc.kind.value}),
        headers=headers,
    )


def install_error_handlers(app: FastAPI) -> None:
    app.add_exception_handler(AuthError, auth_error_handler)
