"""
Access token verification against the realm JWKS.

This module handles:
- Fetching and caching the Keycloak realm JWKS (JSON Web Key Set)
- Verifying access tokens presented as Bearer credentials
- Validating signature, issuer, expiry and (optionally) audience

Verification happens before any claim is read; the claims extractor only
ever sees the output of ``verify_access_token``.
"""

import time
from typing import Any, Dict, Optional

import httpx
from jose import jwk, jwt, JWTError
from jose.exceptions import ExpiredSignatureError, JWKError, JWTClaimsError

from identity_gateway.config import Settings
from identity_gateway.errors import TokenVerificationError


def extract_bearer_token(authorization: Optional[str]) -> Optional[str]:
    """
    Extract a Bearer token from an Authorization header value.

    Returns:
        The token, or None if the header is absent or not a Bearer credential
    """
    if not authorization:
        return None

    parts = authorization.split()
    if len(parts) != 2 or parts[0].lower() != "bearer":
        return None

    return parts[1]


class AccessTokenVerifier:
    """
    Verifies Keycloak-signed access tokens.

    The JWKS is cached for JWKS_CACHE_SECONDS and refetched once when a
    token references an unknown ``kid`` (key rotation).
    """

    def __init__(self, settings: Settings, http_client: httpx.AsyncClient):
        self.settings = settings
        self.http_client = http_client
        self._jwks_cache: Optional[Dict[str, Any]] = None
        self._jwks_cache_time: float = 0.0

    async def fetch_jwks(self, force_refresh: bool = False) -> Dict[str, Any]:
        """
        Fetch the realm JWKS with caching.

        Raises:
            TokenVerificationError: If the JWKS endpoint is unreachable or invalid
        """
        current_time = time.time()
        cache_ttl = self.settings.JWKS_CACHE_SECONDS

        if (
            not force_refresh
            and self._jwks_cache
            and (current_time - self._jwks_cache_time) < cache_ttl
        ):
            return self._jwks_cache

        try:
            response = await self.http_client.get(
                self.settings.jwks_uri,
                timeout=self.settings.TOKEN_REQUEST_TIMEOUT_SECONDS,
            )
            response.raise_for_status()
            jwks_data = response.json()
        except (httpx.HTTPError, ValueError) as e:
            raise TokenVerificationError(f"Unable to load realm JWKS: {type(e).__name__}") from e

        if not isinstance(jwks_data, dict) or "keys" not in jwks_data:
            raise TokenVerificationError("Invalid JWKS response: missing 'keys' field")

        self._jwks_cache = jwks_data
        self._jwks_cache_time = current_time
        return jwks_data

    @staticmethod
    def get_signing_key(token: str, jwks: Dict[str, Any]) -> Optional[Dict[str, Any]]:
        """
        Find the JWKS entry matching the token's ``kid``.

        Raises:
            TokenVerificationError: If the token header is malformed or has no kid
        """
        try:
            unverified_header = jwt.get_unverified_header(token)
        except JWTError as e:
            raise TokenVerificationError(f"Failed to decode token header: {e}")

        kid = unverified_header.get("kid")
        if not kid:
            raise TokenVerificationError("Token header missing 'kid' (Key ID)")

        for key in jwks.get("keys", []):
            if key.get("kid") == kid:
                return key

        return None

    async def verify_access_token(self, token: str) -> Dict[str, Any]:
        """
        Verify and decode an access token.

        Returns:
            Dictionary of verified token claims

        Raises:
            TokenVerificationError: If the token is invalid, expired or foreign
        """
        jwks = await self.fetch_jwks()

        signing_key = self.get_signing_key(token, jwks)
        if not signing_key:
            jwks = await self.fetch_jwks(force_refresh=True)
            signing_key = self.get_signing_key(token, jwks)

            if not signing_key:
                raise TokenVerificationError(
                    "Unable to find matching signing key in JWKS. "
                    "Token may be from a different realm or keys may have rotated."
                )

        try:
            public_key = jwk.construct(signing_key, algorithm="RS256")
        except (JWTError, JWKError) as e:
            # JWKError is not a JWTError; raised for non-RSA or malformed keys
            raise TokenVerificationError(f"Failed to construct public key from JWK: {e}")

        audience = self.settings.KEYCLOAK_AUDIENCE

        try:
            claims = jwt.decode(
                token,
                public_key.to_pem().decode("utf-8"),
                algorithms=["RS256"],
                audience=audience,
                issuer=self.settings.issuer,
                options={
                    "verify_signature": True,
                    "verify_aud": audience is not None,
                    "verify_iat": True,
                    "verify_exp": True,
                    "verify_nbf": True,
                    "verify_iss": True,
                    "verify_sub": True,
                    "verify_at_hash": False,
                    "leeway": 10,
                },
            )
        except ExpiredSignatureError:
            raise TokenVerificationError("Access token has expired")
        except JWTClaimsError as e:
            raise TokenVerificationError(f"Invalid token claims: {e}")
        except JWTError as e:
            raise TokenVerificationError(f"Token verification failed: {e}")

        return claims


__all__ = ["AccessTokenVerifier", "extract_bearer_token"]
