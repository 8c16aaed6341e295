"""
Session orchestration for the token lifecycle.

Sequences exchange -> cookie -> response for each lifecycle request:

1. Login-initiate: redirect to Keycloak with a fresh, browser-bound state
2. Callback: exchange the code, set the refresh cookie, hand the access
   token to the front end in a URL fragment
3. Refresh: rotate the refresh cookie, return a new access token in the body
4. Logout: clear the refresh cookie, point at Keycloak's end-session endpoint

There is no server-side session store. Cookies are only written onto the
response of the request that observed a successful exchange, so a failed
or abandoned exchange can never leave partial cookie state behind.
"""

import logging
from typing import Optional
from urllib.parse import urlencode, urlparse

from fastapi import status
from fastapi.responses import JSONResponse, RedirectResponse
from starlette.requests import Request

from identity_gateway.auth.cookies import RefreshCookieStore
from identity_gateway.auth.state import StateBinder
from identity_gateway.auth.token_client import TokenExchangeClient
from identity_gateway.config import Settings
from identity_gateway.errors import (
    ErrorKind,
    NoRefreshToken,
    RefreshExpired,
    TokenLifecycleError,
)
from identity_gateway.models import ErrorResponse, LogoutResponse, TokenResponse

logger = logging.getLogger(__name__)

OIDC_SCOPE = "openid profile email"

# Front-end facing descriptions; upstream bodies are never forwarded.
CALLBACK_ERROR_DESCRIPTIONS = {
    ErrorKind.UPSTREAM_AUTH: "The identity provider rejected the sign-in.",
    ErrorKind.UPSTREAM_UNAVAILABLE: "The identity provider is unavailable. Please try again.",
    ErrorKind.MALFORMED_UPSTREAM_RESPONSE: "The identity provider returned an unexpected response.",
    ErrorKind.MALFORMED_CALLBACK_STATE: "The sign-in attempt could not be verified. Please start again.",
}


def _error_response(status_code: int, kind: ErrorKind, message: str) -> JSONResponse:
    body = ErrorResponse(error=kind.value, message=message)
    headers = {"WWW-Authenticate": "Bearer"} if status_code == status.HTTP_401_UNAUTHORIZED else None
    return JSONResponse(status_code=status_code, content=body.model_dump(), headers=headers)


class SessionOrchestrator:
    """
    Stateful core of the token lifecycle, scoped to one request at a time.

    Args:
        settings: Application settings
        token_client: Keycloak token endpoint client
        cookie_store: Refresh cookie codec
        state_binder: Callback state binding
    """

    def __init__(
        self,
        settings: Settings,
        token_client: TokenExchangeClient,
        cookie_store: RefreshCookieStore,
        state_binder: StateBinder,
    ):
        self.settings = settings
        self.token_client = token_client
        self.cookie_store = cookie_store
        self.state_binder = state_binder

    # =========================================================================
    # Login-initiate
    # =========================================================================

    def authorization_url(self, state: str) -> str:
        params = {
            "client_id": self.settings.KEYCLOAK_CLIENT_ID,
            "response_type": "code",
            "scope": OIDC_SCOPE,
            "redirect_uri": self.settings.KEYCLOAK_REDIRECT_URI,
            "state": state,
        }
        return f"{self.settings.authorization_endpoint}?{urlencode(params)}"

    def begin_login(self, redirect_uri: Optional[str] = None) -> RedirectResponse:
        """
        Redirect the browser to Keycloak's authorization endpoint.

        Args:
            redirect_uri: Optional front-end location to return to; honoured
                only when it shares the configured front-end origin
        """
        attempt = self.state_binder.new_attempt(return_to=self._safe_return_to(redirect_uri))

        response = RedirectResponse(
            url=self.authorization_url(attempt.state),
            status_code=status.HTTP_302_FOUND,
        )
        RefreshCookieStore.apply(response, self.state_binder.bind(attempt))

        logger.info("Login initiated", extra={"has_return_to": attempt.return_to is not None})
        return response

    def _safe_return_to(self, redirect_uri: Optional[str]) -> Optional[str]:
        if not redirect_uri:
            return None

        allowed = urlparse(self.settings.FRONTEND_CALLBACK_URL)
        requested = urlparse(redirect_uri)
        if (requested.scheme, requested.netloc) != (allowed.scheme, allowed.netloc):
            logger.warning("Ignoring redirect_uri outside the front-end origin")
            return None

        return requested._replace(fragment="").geturl()

    # =========================================================================
    # Callback
    # =========================================================================

    async def complete_login(
        self,
        code: Optional[str],
        state: Optional[str],
        state_cookie: Optional[str],
        idp_error: Optional[str] = None,
    ) -> RedirectResponse:
        """
        Finish the authorization code flow.

        On success the refresh cookie is set and the browser lands on the
        front end with the access token in the URL fragment. On any failure
        the browser lands on the front end with a categorized error only.
        """
        try:
            attempt = self.state_binder.verify(state, state_cookie)
        except TokenLifecycleError as e:
            logger.warning("Callback rejected", extra={"error_kind": e.kind.value})
            return self._callback_failure(
                "invalid_state", CALLBACK_ERROR_DESCRIPTIONS[e.kind]
            )

        target = attempt.return_to or self.settings.FRONTEND_CALLBACK_URL

        if idp_error or not code:
            logger.info(
                "Identity provider returned no authorization code",
                extra={"idp_error": idp_error or "missing_code"},
            )
            return self._callback_failure(
                "authentication_failed",
                "Sign-in was cancelled or denied.",
                target=target,
            )

        try:
            tokens = await self.token_client.exchange_authorization_code(code)
        except TokenLifecycleError as e:
            log = logger.error if e.kind is ErrorKind.MALFORMED_UPSTREAM_RESPONSE else logger.warning
            log("Authorization code exchange failed", extra={"error_kind": e.kind.value})
            return self._callback_failure(
                "authentication_failed",
                CALLBACK_ERROR_DESCRIPTIONS[e.kind],
                target=target,
            )

        fragment = urlencode({
            "access_token": tokens.access_token,
            "expires_in": tokens.expires_in,
            "token_type": "Bearer",
        })
        response = RedirectResponse(
            url=f"{_without_fragment(target)}#{fragment}",
            status_code=status.HTTP_302_FOUND,
        )
        RefreshCookieStore.apply(response, self.cookie_store.issue(tokens.refresh_token))
        RefreshCookieStore.apply(response, self.state_binder.clear())

        logger.info("Login completed", extra={"expires_in": tokens.expires_in})
        return response

    def _callback_failure(
        self,
        error: str,
        description: str,
        target: Optional[str] = None,
    ) -> RedirectResponse:
        fragment = urlencode({"error": error, "error_description": description})
        response = RedirectResponse(
            url=f"{_without_fragment(target or self.settings.FRONTEND_CALLBACK_URL)}#{fragment}",
            status_code=status.HTTP_302_FOUND,
        )
        RefreshCookieStore.apply(response, self.state_binder.clear())
        return response

    # =========================================================================
    # Refresh
    # =========================================================================

    async def refresh(self, request: Request) -> JSONResponse:
        """
        Rotate the refresh cookie and return a new access token.

        - no cookie: 401 no_refresh_token, cookie untouched
        - Keycloak rejects the token: cookie cleared, 401 refresh_expired
        - malformed Keycloak response: 502, cookie untouched
        - Keycloak unreachable: 503, cookie kept (or cleared + 401 when
          CLEAR_COOKIE_ON_UPSTREAM_UNAVAILABLE is set)
        """
        refresh_token = self.cookie_store.extract(request)
        if refresh_token is None:
            error = NoRefreshToken("No refresh token found")
            logger.info("Refresh without cookie", extra={"error_kind": error.kind.value})
            return _error_response(status.HTTP_401_UNAUTHORIZED, error.kind, error.message)

        try:
            tokens = await self.token_client.refresh(refresh_token)
        except TokenLifecycleError as e:
            return self._refresh_failure(e)

        body = TokenResponse(access_token=tokens.access_token, expires_in=tokens.expires_in)
        response = JSONResponse(content=body.model_dump())
        RefreshCookieStore.apply(response, self.cookie_store.issue(tokens.refresh_token))

        logger.info("Refresh token rotated", extra={"expires_in": tokens.expires_in})
        return response

    def _refresh_failure(self, error: TokenLifecycleError) -> JSONResponse:
        kind = error.kind

        if kind is ErrorKind.MALFORMED_UPSTREAM_RESPONSE:
            logger.error("Refresh failed: malformed token response", extra={"error_kind": kind.value})
            return _error_response(
                status.HTTP_502_BAD_GATEWAY,
                kind,
                "The identity provider returned an unexpected response",
            )

        if kind is ErrorKind.UPSTREAM_UNAVAILABLE and not self.settings.CLEAR_COOKIE_ON_UPSTREAM_UNAVAILABLE:
            logger.warning("Refresh failed: identity provider unavailable", extra={"error_kind": kind.value})
            return _error_response(
                status.HTTP_503_SERVICE_UNAVAILABLE,
                kind,
                "The identity provider is unavailable, retry later",
            )

        expired = RefreshExpired("Refresh token expired")
        logger.info(
            "Refresh failed, clearing cookie",
            extra={"error_kind": expired.kind.value, "cause": kind.value},
        )
        response = _error_response(status.HTTP_401_UNAUTHORIZED, expired.kind, expired.message)
        RefreshCookieStore.apply(response, self.cookie_store.clear())
        return response

    # =========================================================================
    # Logout
    # =========================================================================

    def logout_url(self) -> str:
        params = {
            "client_id": self.settings.KEYCLOAK_CLIENT_ID,
            "post_logout_redirect_uri": self.settings.POST_LOGOUT_REDIRECT_URI,
        }
        return f"{self.settings.logout_endpoint}?{urlencode(params)}"

    def logout(self) -> JSONResponse:
        """Clear the refresh cookie. Safe to call without one."""
        body = LogoutResponse(message="Logged out successfully", logout_url=self.logout_url())
        response = JSONResponse(content=body.model_dump())
        RefreshCookieStore.apply(response, self.cookie_store.clear())
        logger.info("Logout")
        return response

    def logout_redirect(self) -> RedirectResponse:
        return RedirectResponse(url=self.logout_url(), status_code=status.HTTP_302_FOUND)


def _without_fragment(url: str) -> str:
    return url.split("#", 1)[0]


__all__ = ["SessionOrchestrator", "OIDC_SCOPE"]
