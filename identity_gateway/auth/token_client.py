"""
Keycloak token endpoint client.

Performs the two token acquisition grants used by the gateway:

- authorization_code: exchanges the callback code for a token pair
- refresh_token: rotates a refresh token into a new token pair

The client owns no state. Every failure is raised as one of the
categorized lifecycle errors so callers never inspect raw upstream bodies.
"""

import logging
from typing import Any, Dict

import httpx

from identity_gateway.config import Settings
from identity_gateway.errors import (
    MalformedUpstreamResponse,
    UpstreamAuthError,
    UpstreamUnavailable,
)
from identity_gateway.models import TokenPair

logger = logging.getLogger(__name__)

REQUIRED_TOKEN_FIELDS = ("access_token", "refresh_token", "expires_in", "token_type")


class TokenExchangeClient:
    """
    Talks to ``{issuer}/protocol/openid-connect/token``.

    Args:
        settings: Application settings
        http_client: Shared async HTTP client
    """

    def __init__(self, settings: Settings, http_client: httpx.AsyncClient):
        self.settings = settings
        self.http_client = http_client
        self.timeout = httpx.Timeout(settings.TOKEN_REQUEST_TIMEOUT_SECONDS)

    async def exchange_authorization_code(self, code: str) -> TokenPair:
        """
        Exchange an authorization code for tokens.

        The redirect_uri must be byte-identical to the one sent on the
        authorization redirect, so both come from KEYCLOAK_REDIRECT_URI.

        Raises:
            UpstreamAuthError: Keycloak rejected the code
            UpstreamUnavailable: Network failure or timeout
            MalformedUpstreamResponse: Response violates the token contract
        """
        payload = {
            "grant_type": "authorization_code",
            "client_id": self.settings.KEYCLOAK_CLIENT_ID,
            "client_secret": self.settings.KEYCLOAK_CLIENT_SECRET,
            "code": code,
            "redirect_uri": self.settings.KEYCLOAK_REDIRECT_URI,
        }
        return await self._request_tokens(payload)

    async def refresh(self, refresh_token: str) -> TokenPair:
        """
        Rotate a refresh token into a new token pair.

        Raises:
            UpstreamAuthError: Refresh token expired, revoked or already used
            UpstreamUnavailable: Network failure or timeout
            MalformedUpstreamResponse: Response violates the token contract
        """
        payload = {
            "grant_type": "refresh_token",
            "client_id": self.settings.KEYCLOAK_CLIENT_ID,
            "client_secret": self.settings.KEYCLOAK_CLIENT_SECRET,
            "refresh_token": refresh_token,
        }
        return await self._request_tokens(payload)

    async def _request_tokens(self, payload: Dict[str, str]) -> TokenPair:
        grant_type = payload["grant_type"]

        try:
            response = await self.http_client.post(
                self.settings.token_endpoint,
                data=payload,
                headers={"Content-Type": "application/x-www-form-urlencoded"},
                timeout=self.timeout,
            )
        except httpx.TimeoutException as e:
            logger.warning(
                "Token endpoint timed out",
                extra={"grant_type": grant_type},
            )
            raise UpstreamUnavailable(f"Token endpoint timed out: {type(e).__name__}") from e
        except httpx.RequestError as e:
            logger.warning(
                "Token endpoint unreachable",
                extra={"grant_type": grant_type, "exception_type": type(e).__name__},
            )
            raise UpstreamUnavailable(f"Token endpoint unreachable: {type(e).__name__}") from e

        if not response.is_success:
            upstream_error = _upstream_error_code(response)
            logger.info(
                "Token endpoint rejected request",
                extra={
                    "grant_type": grant_type,
                    "status_code": response.status_code,
                    "upstream_error": upstream_error,
                },
            )
            raise UpstreamAuthError(response.status_code, response.text, upstream_error)

        try:
            body = response.json()
        except ValueError as e:
            logger.error(
                "Token endpoint returned a non-JSON body",
                extra={"grant_type": grant_type, "status_code": response.status_code},
            )
            raise MalformedUpstreamResponse("Token response is not JSON") from e

        return parse_token_pair(body, grant_type=grant_type)


def parse_token_pair(body: Any, grant_type: str = "unknown") -> TokenPair:
    """
    Validate a token endpoint body and build a TokenPair.

    Missing or wrongly typed fields are a contract violation; nothing is
    ever substituted with a default.

    Raises:
        MalformedUpstreamResponse: If any required field is absent or invalid
    """
    if not isinstance(body, dict):
        logger.error("Token response is not a JSON object", extra={"grant_type": grant_type})
        raise MalformedUpstreamResponse("Token response is not a JSON object")

    missing = [name for name in REQUIRED_TOKEN_FIELDS if body.get(name) in (None, "")]
    if missing:
        logger.error(
            "Token response missing required fields",
            extra={"grant_type": grant_type, "missing_fields": missing},
        )
        raise MalformedUpstreamResponse(
            f"Token response missing required fields: {', '.join(missing)}"
        )

    access_token = body["access_token"]
    refresh_token = body["refresh_token"]
    token_type = body["token_type"]
    expires_in = body["expires_in"]

    if not all(isinstance(v, str) for v in (access_token, refresh_token, token_type)):
        raise MalformedUpstreamResponse("Token response fields have unexpected types")

    # bool is an int subclass; "true" is not a lifetime
    if isinstance(expires_in, bool) or not isinstance(expires_in, int) or expires_in <= 0:
        raise MalformedUpstreamResponse("Token response has an invalid expires_in")

    if token_type.lower() != "bearer":
        raise MalformedUpstreamResponse(f"Unsupported token_type: {token_type}")

    return TokenPair(
        access_token=access_token,
        refresh_token=refresh_token,
        expires_in=expires_in,
        token_type="Bearer",
    )


def _upstream_error_code(response: httpx.Response) -> str:
    """Pull the OAuth 'error' code for logging; never the description."""
    if not response.headers.get("content-type", "").startswith("application/json"):
        return "unknown"
    try:
        data = response.json()
    except ValueError:
        return "unknown"
    if isinstance(data, dict) and isinstance(data.get("error"), str):
        return data["error"]
    return "unknown"


__all__ = ["TokenExchangeClient", "parse_token_pair", "REQUIRED_TOKEN_FIELDS"]
