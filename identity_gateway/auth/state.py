"""
Callback state binding.

The ``state`` sent to Keycloak is a random value. A copy travels in a
short-lived, signed, http-only cookie scoped to the callback path, so the
callback can prove the authorization response belongs to a login this
browser started. The cookie is SameSite=Lax because it has to survive the
top-level redirect back from Keycloak.
"""

import hmac
import logging
import secrets
from dataclasses import dataclass
from datetime import datetime, timedelta, timezone
from typing import Optional
from urllib.parse import urlparse

import jwt
from jwt.exceptions import ExpiredSignatureError, InvalidTokenError

from identity_gateway.auth.cookies import SecureCookieRecord
from identity_gateway.config import Settings
from identity_gateway.errors import MalformedCallbackState

logger = logging.getLogger(__name__)

STATE_COOKIE_NAME = "kc_oauth_state"
STATE_JWT_ALGORITHM = "HS256"
STATE_JWT_AUDIENCE = "identity-gateway:callback"


@dataclass(frozen=True)
class LoginAttempt:
    """A login started by this browser."""

    state: str
    return_to: Optional[str] = None


class StateBinder:
    """Issues and verifies the state-binding cookie."""

    def __init__(self, settings: Settings):
        self.secret = settings.STATE_SECRET
        self.ttl_seconds = settings.STATE_TTL_SECONDS
        self.cookie_path = urlparse(settings.KEYCLOAK_REDIRECT_URI).path or "/"
        self.domain = settings.COOKIE_DOMAIN
        self.secure = settings.COOKIE_SECURE

    def new_attempt(self, return_to: Optional[str] = None) -> LoginAttempt:
        return LoginAttempt(state=secrets.token_urlsafe(32), return_to=return_to)

    def bind(self, attempt: LoginAttempt) -> SecureCookieRecord:
        """Sign the attempt into the state cookie."""
        now = datetime.now(timezone.utc)
        payload = {
            "state": attempt.state,
            "aud": STATE_JWT_AUDIENCE,
            "iat": now,
            "exp": now + timedelta(seconds=self.ttl_seconds),
        }
        if attempt.return_to:
            payload["return_to"] = attempt.return_to

        token = jwt.encode(payload, self.secret, algorithm=STATE_JWT_ALGORITHM)
        return self._record(token, self.ttl_seconds)

    def clear(self) -> SecureCookieRecord:
        return self._record("", 0)

    def verify(self, returned_state: Optional[str], state_cookie: Optional[str]) -> LoginAttempt:
        """
        Check the state returned by Keycloak against the bound cookie.

        Raises:
            MalformedCallbackState: Missing, expired, tampered or mismatched state
        """
        if not returned_state:
            raise MalformedCallbackState("Callback is missing the state parameter")
        if not state_cookie:
            raise MalformedCallbackState("No login attempt is bound to this browser")

        try:
            decoded = jwt.decode(
                state_cookie,
                self.secret,
                algorithms=[STATE_JWT_ALGORITHM],
                audience=STATE_JWT_AUDIENCE,
                options={"require": ["exp", "iat", "state"]},
            )
        except ExpiredSignatureError:
            raise MalformedCallbackState("Login attempt has expired")
        except InvalidTokenError as e:
            logger.warning(f"Rejected state cookie: {type(e).__name__}")
            raise MalformedCallbackState("State binding is invalid")

        bound_state = decoded.get("state")
        if not isinstance(bound_state, str) or not hmac.compare_digest(
            bound_state.encode("utf-8"), returned_state.encode("utf-8")
        ):
            raise MalformedCallbackState("State does not match the login attempt")

        return LoginAttempt(state=bound_state, return_to=decoded.get("return_to"))

    def _record(self, value: str, max_age: int) -> SecureCookieRecord:
        return SecureCookieRecord(
            name=STATE_COOKIE_NAME,
            value=value,
            max_age=max_age,
            path=self.cookie_path,
            domain=self.domain,
            secure=self.secure,
            same_site="lax",
        )


__all__ = ["STATE_COOKIE_NAME", "LoginAttempt", "StateBinder"]
