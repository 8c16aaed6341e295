"""
Token lifecycle error taxonomy.

Every failure on the token lifecycle path is one of the kinds below. The
session orchestrator is the only layer that turns them into HTTP status
codes, redirects and cookie mutations; it switches on ``kind``, never on
the message text.
"""

from enum import Enum
from typing import Optional


class ErrorKind(str, Enum):
    """Failure categories surfaced by the token lifecycle."""

    UPSTREAM_AUTH = "upstream_auth_error"
    UPSTREAM_UNAVAILABLE = "upstream_unavailable"
    MALFORMED_UPSTREAM_RESPONSE = "malformed_upstream_response"
    NO_REFRESH_TOKEN = "no_refresh_token"
    REFRESH_EXPIRED = "refresh_expired"
    MALFORMED_CALLBACK_STATE = "invalid_state"


class TokenLifecycleError(Exception):
    """Base exception for categorized token lifecycle failures"""

    kind: ErrorKind

    def __init__(self, message: str):
        super().__init__(message)
        self.message = message


class UpstreamAuthError(TokenLifecycleError):
    """
    Keycloak rejected the request (non-success HTTP status).

    The upstream body is kept for diagnostics only. It is excluded from
    ``str()`` so it never lands in a log line or a response by accident.
    """

    kind = ErrorKind.UPSTREAM_AUTH

    def __init__(self, status_code: int, body: str, upstream_error: Optional[str] = None):
        super().__init__(f"Token endpoint returned HTTP {status_code}")
        self.status_code = status_code
        self.body = body
        self.upstream_error = upstream_error


class UpstreamUnavailable(TokenLifecycleError):
    """Network failure or timeout talking to Keycloak. Retryable by the caller."""

    kind = ErrorKind.UPSTREAM_UNAVAILABLE


class MalformedUpstreamResponse(TokenLifecycleError):
    """Keycloak answered 2xx but the body violates the token response contract."""

    kind = ErrorKind.MALFORMED_UPSTREAM_RESPONSE


class NoRefreshToken(TokenLifecycleError):
    """Refresh was requested without a refresh cookie."""

    kind = ErrorKind.NO_REFRESH_TOKEN


class RefreshExpired(TokenLifecycleError):
    """The presented refresh token is no longer accepted by Keycloak."""

    kind = ErrorKind.REFRESH_EXPIRED


class MalformedCallbackState(TokenLifecycleError):
    """Callback state is missing, expired, tampered or not bound to this browser."""

    kind = ErrorKind.MALFORMED_CALLBACK_STATE


class TokenVerificationError(Exception):
    """A presented access token failed signature, issuer or expiry checks"""
    pass


class InvalidResetToken(Exception):
    """Password reset token is unknown, already used or expired"""
    pass


class DirectoryError(Exception):
    """The identity provider's admin API refused or failed a directory call"""
    pass


__all__ = [
    "ErrorKind",
    "TokenLifecycleError",
    "UpstreamAuthError",
    "UpstreamUnavailable",
    "MalformedUpstreamResponse",
    "NoRefreshToken",
    "RefreshExpired",
    "MalformedCallbackState",
    "TokenVerificationError",
    "InvalidResetToken",
    "DirectoryError",
]
