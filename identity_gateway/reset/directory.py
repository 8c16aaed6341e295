"""
Keycloak admin REST client for the password reset flow.

Authenticates as the gateway's confidential client (client_credentials
grant); the client's service account needs the realm-management
``view-users`` and ``manage-users`` roles.
"""

import logging
from typing import Any, Dict, Optional

import httpx

from identity_gateway.config import Settings
from identity_gateway.errors import DirectoryError

logger = logging.getLogger(__name__)


class KeycloakDirectory:
    """
    User lookup and password updates through the realm admin API.

    Args:
        settings: Application settings
        http_client: Shared async HTTP client
    """

    def __init__(self, settings: Settings, http_client: httpx.AsyncClient):
        self.settings = settings
        self.http_client = http_client
        self.timeout = httpx.Timeout(settings.TOKEN_REQUEST_TIMEOUT_SECONDS)

    async def _admin_token(self) -> str:
        payload = {
            "grant_type": "client_credentials",
            "client_id": self.settings.KEYCLOAK_CLIENT_ID,
            "client_secret": self.settings.KEYCLOAK_CLIENT_SECRET,
        }
        response = await self._send("POST", self.settings.token_endpoint, data=payload)
        try:
            token = response.json().get("access_token")
        except (ValueError, AttributeError) as e:
            raise DirectoryError("Service account token response is not a JSON object") from e

        if not isinstance(token, str) or not token:
            raise DirectoryError("Service account token response has no access_token")
        return token

    async def _send(self, method: str, url: str, **kwargs: Any) -> httpx.Response:
        try:
            response = await self.http_client.request(method, url, timeout=self.timeout, **kwargs)
        except httpx.RequestError as e:
            logger.warning(
                "Keycloak admin API unreachable",
                extra={"exception_type": type(e).__name__},
            )
            raise DirectoryError(f"Keycloak unreachable: {type(e).__name__}") from e

        if not response.is_success:
            logger.warning(
                "Keycloak admin API call failed",
                extra={"method": method, "status_code": response.status_code},
            )
            raise DirectoryError(f"Keycloak admin API returned HTTP {response.status_code}")

        return response

    def _auth_headers(self, token: str) -> Dict[str, str]:
        return {"Authorization": f"Bearer {token}"}

    async def find_user_id_by_email(self, email: str) -> Optional[str]:
        """
        Look up a user by exact email.

        Returns:
            The Keycloak user id, or None when no user has that email

        Raises:
            DirectoryError: If the admin API fails
        """
        token = await self._admin_token()
        response = await self._send(
            "GET",
            f"{self.settings.admin_base_url}/users",
            params={"email": email, "exact": "true"},
            headers=self._auth_headers(token),
        )

        try:
            users = response.json()
        except ValueError as e:
            raise DirectoryError("User search returned a non-JSON body") from e

        if not isinstance(users, list):
            raise DirectoryError("User search returned an unexpected body")

        for user in users:
            if not isinstance(user, dict):
                continue
            if str(user.get("email", "")).lower() == email.lower() and user.get("id"):
                return user["id"]

        return None

    async def set_password(self, user_id: str, new_password: str) -> None:
        """
        Replace a user's password (non-temporary credential).

        Raises:
            DirectoryError: If the admin API fails
        """
        token = await self._admin_token()
        await self._send(
            "PUT",
            f"{self.settings.admin_base_url}/users/{user_id}/reset-password",
            json={"type": "password", "value": new_password, "temporary": False},
            headers=self._auth_headers(token),
        )
        logger.info("Password updated", extra={"subject_id": user_id})


__all__ = ["KeycloakDirectory"]
