"""Error kinds raised by the token lifecycle. Transport maps kinds to status codes."""

from __future__ import annotations

from enum import Enum


class ErrorKind(str, Enum):
    UNAUTHORIZED_CLIENT = "UnauthorizedClient"
    INVALID_CREDENTIALS = "InvalidCredentials"
    ACCOUNT_INACTIVE = "AccountInactive"
    INVALID_OR_EXPIRED_TOKEN = "InvalidOrExpiredToken"
    EXPIRED_CREDENTIAL = "ExpiredCredential"
    INVALID_SIGNATURE = "InvalidSignature"
    MALFORMED_CREDENTIAL = "MalformedCredential"
    PERSISTENCE_UNAVAILABLE = "PersistenceUnavailable"
    EMAIL_ALREADY_REGISTERED = "EmailAlreadyRegistered"
    MISSING_CREDENTIALS = "MissingCredentials"


class AuthError(Exception):
    """Terminal failure of a session operation. `message` is safe to show to callers."""

    kind: ErrorKind
    default_message = "Authentication failed."

    def __init__(self, message: str | None = None) -> None:
        self.message = message or self.default_message
        super().__init__(self.message)


class UnauthorizedClient(AuthError):
    kind = ErrorKind.UNAUTHORIZED_CLIENT
    default_message = "Unauthorized client."


class InvalidCredentials(AuthError):
    kind = ErrorKind.INVALID_CREDENTIALS
    default_message = "Invalid credentials."


class AccountInactive(AuthError):
    kind = ErrorKind.ACCOUNT_INACTIVE
    default_message = "Account is inactive or deleted."


class InvalidOrExpiredToken(AuthError):
    kind = ErrorKind.INVALID_OR_EXPIRED_TOKEN
    default_message = "Invalid or expired refresh token."


class CredentialError(AuthError):
    """Access token introspection failure."""

    kind = ErrorKind.MALFORMED_CREDENTIAL


class ExpiredCredential(CredentialError):
    kind = ErrorKind.EXPIRED_CREDENTIAL
    default_message = "Access token has expired."


class InvalidSignature(CredentialError):
    kind = ErrorKind.INVALID_SIGNATURE
    default_message = "Access token signature is invalid."


class MalformedCredential(CredentialError):
    kind = ErrorKind.MALFORMED_CREDENTIAL
    default_message = "Access token is malformed."


class PersistenceUnavailable(AuthError):
    kind = ErrorKind.PERSISTENCE_UNAVAILABLE
    default_message = "Session store is temporarily unavailable."


class EmailAlreadyRegistered(AuthError):
    kind = ErrorKind.EMAIL_ALREADY_REGISTERED
    default_message = "User with this email already exists."


class MissingCredentials(AuthError):
    kind = ErrorKind.MISSING_CREDENTIALS
    default_message = "Required credentials are missing."


class RefreshTokenConflict(Exception):
    """A store refused to overwrite an existing refresh token value."""


class KeyMaterialError(RuntimeError):
    """Signing/encryption keys are absent or unusable; the process must not start."""
