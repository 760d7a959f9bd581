"""Error taxonomy for the session subsystem.

Messages on these exceptions are safe to show to clients. Provider-specific
error shapes never leave the identity adapters; they are translated into the
classes below at that boundary.
"""

from __future__ import annotations

import enum


class AuthErrorKind(str, enum.Enum):
    INVALID_CREDENTIALS = "invalid_credentials"
    ACCOUNT_NOT_CONFIRMED = "account_not_confirmed"
    ACCOUNT_NOT_FOUND = "account_not_found"
    ACCOUNT_INACTIVE = "account_inactive"
    RATE_LIMITED = "rate_limited"
    PROVIDER_UNAVAILABLE = "provider_unavailable"
    INVALID_TOKEN = "invalid_token"
    TOKEN_EXPIRED = "token_expired"
    SESSION_EXPIRED = "session_expired"
    REFRESH_FAILED = "refresh_failed"


TERMINAL_ERROR_KINDS = frozenset(
    {
        AuthErrorKind.INVALID_CREDENTIALS,
        AuthErrorKind.INVALID_TOKEN,
        AuthErrorKind.ACCOUNT_NOT_FOUND,
    }
)


class SessionServiceError(Exception):
    default_message = "Session service error"

    def __init__(self, message: str | None = None) -> None:
        super().__init__(message or self.default_message)

    @property
    def message(self) -> str:
        return str(self)


class AuthError(SessionServiceError):
    kind: AuthErrorKind

    @property
    def retryable(self) -> bool:
        return self.kind == AuthErrorKind.PROVIDER_UNAVAILABLE


class InvalidCredentialsError(AuthError):
    kind = AuthErrorKind.INVALID_CREDENTIALS
    default_message = "Incorrect email or password"


class AccountNotConfirmedError(AuthError):
    kind = AuthErrorKind.ACCOUNT_NOT_CONFIRMED
    default_message = "User account not confirmed"


class AccountNotFoundError(AuthError):
    kind = AuthErrorKind.ACCOUNT_NOT_FOUND
    default_message = "User profile not found"


class AccountInactiveError(AuthError):
    kind = AuthErrorKind.ACCOUNT_INACTIVE
    default_message = "Account is not active. Please contact support."


class RateLimitedError(AuthError):
    kind = AuthErrorKind.RATE_LIMITED
    default_message = "Too many attempts. Please try again later"


class ProviderUnavailableError(AuthError):
    kind = AuthErrorKind.PROVIDER_UNAVAILABLE
    default_message = "Identity provider is temporarily unavailable"


class InvalidTokenError(AuthError):
    kind = AuthErrorKind.INVALID_TOKEN
    default_message = "Invalid or expired token"


class TokenExpiredError(AuthError):
    kind = AuthErrorKind.TOKEN_EXPIRED
    default_message = "Token has expired"


class SessionExpiredError(AuthError):
    kind = AuthErrorKind.SESSION_EXPIRED
    default_message = "Session expired"


class RefreshFailedError(AuthError):
    kind = AuthErrorKind.REFRESH_FAILED
    default_message = "Token refresh failed. Please login again."


class SessionNotFoundError(SessionServiceError):
    default_message = "Session not found"


class ValidationError(SessionServiceError):
    default_message = "Invalid request"


class StoreUnavailableError(SessionServiceError):
    default_message = "Session store is temporarily unavailable"
