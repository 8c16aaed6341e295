"""
Refresh token cookie handling.

The refresh token never reaches browser script. It is stored in an
http-only, SameSite=Strict cookie that the browser only sends back to the
refresh endpoint. Issue and clear always use the same name, path, domain
and flags so browsers never keep a stale duplicate.
"""

import logging
from dataclasses import dataclass
from typing import Optional

from starlette.requests import Request
from starlette.responses import Response

from identity_gateway.config import Settings

logger = logging.getLogger(__name__)

AUTH_ROUTE_PREFIX = "/api/auth"
REFRESH_COOKIE_NAME = "kc_refresh_token"
REFRESH_COOKIE_PATH = f"{AUTH_ROUTE_PREFIX}/refresh"


@dataclass(frozen=True)
class SecureCookieRecord:
    """A cookie ready to be written as a Set-Cookie header."""

    name: str
    value: str
    max_age: int
    path: str
    domain: Optional[str]
    secure: bool
    http_only: bool = True
    same_site: str = "strict"

    def __repr__(self) -> str:
        # value deliberately omitted
        return (
            f"SecureCookieRecord(name={self.name!r}, max_age={self.max_age}, "
            f"path={self.path!r}, domain={self.domain!r}, secure={self.secure})"
        )

    @property
    def is_deletion(self) -> bool:
        return self.max_age == 0


class RefreshCookieStore:
    """
    Encodes and decodes the refresh token cookie.

    Knows nothing about token semantics; validity is Keycloak's call.
    """

    def __init__(self, settings: Settings):
        self.max_age = settings.REFRESH_COOKIE_MAX_AGE
        self.domain = settings.COOKIE_DOMAIN
        self.secure = settings.COOKIE_SECURE

    def _record(self, value: str, max_age: int) -> SecureCookieRecord:
        return SecureCookieRecord(
            name=REFRESH_COOKIE_NAME,
            value=value,
            max_age=max_age,
            path=REFRESH_COOKIE_PATH,
            domain=self.domain,
            secure=self.secure,
        )

    def issue(self, refresh_token: str) -> SecureCookieRecord:
        """Build the cookie carrying a freshly obtained refresh token."""
        if not refresh_token:
            raise ValueError("Refusing to issue an empty refresh token cookie")
        return self._record(refresh_token, self.max_age)

    def clear(self) -> SecureCookieRecord:
        """Build the deletion cookie (empty value, zero lifetime)."""
        return self._record("", 0)

    def extract(self, request: Request) -> Optional[str]:
        """
        Read the refresh token from the inbound Cookie header.

        Returns:
            The cookie value, or None if absent or empty
        """
        value = request.cookies.get(REFRESH_COOKIE_NAME)
        return value or None

    @staticmethod
    def apply(response: Response, record: SecureCookieRecord) -> None:
        """Write the record onto the outgoing response."""
        response.set_cookie(
            key=record.name,
            value=record.value,
            max_age=record.max_age,
            path=record.path,
            domain=record.domain,
            secure=record.secure,
            httponly=record.http_only,
            samesite=record.same_site,
        )
        logger.debug(
            "Cookie %s %s",
            record.name,
            "cleared" if record.is_deletion else "issued",
            extra={"cookie_path": record.path},
        )


__all__ = [
    "AUTH_ROUTE_PREFIX",
    "REFRESH_COOKIE_NAME",
    "REFRESH_COOKIE_PATH",
    "SecureCookieRecord",
    "RefreshCookieStore",
]
