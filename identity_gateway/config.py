"""
Configuration module for the Identity Gateway.

This module uses Pydantic Settings to load and validate environment variables
for the Keycloak realm, the refresh-token cookie, callback state binding,
and the password reset token store.

Environment variables are loaded from .env file or system environment.
"""

from functools import lru_cache
from typing import List, Optional
from urllib.parse import urlparse

from pydantic import Field, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    """
    Application settings loaded from environment variables.

    All configuration for the identity provider, cookies, state binding
    and ambient service concerns are defined here.
    """

    # =========================================================================
    # Keycloak Configuration (OIDC Authorization Code Flow)
    # =========================================================================

    KEYCLOAK_URL: str = Field(
        ...,
        description="Keycloak base URL (e.g., https://sso.example.com)",
        min_length=1,
    )

    KEYCLOAK_REALM: str = Field(
        ...,
        description="Keycloak realm name",
        min_length=1,
    )

    KEYCLOAK_CLIENT_ID: str = Field(
        ...,
        description="Confidential client ID registered in the realm",
        min_length=1,
    )

    KEYCLOAK_CLIENT_SECRET: str = Field(
        ...,
        description="Client secret for the confidential client",
        min_length=1,
    )

    KEYCLOAK_REDIRECT_URI: str = Field(
        ...,
        description="Callback URI registered in Keycloak (e.g., https://gw.example.com/api/auth/callback)",
        min_length=1,
    )

    KEYCLOAK_AUDIENCE: Optional[str] = Field(
        None,
        description="Expected 'aud' of access tokens (audience check skipped when unset)",
    )

    # =========================================================================
    # Front-end Locations
    # =========================================================================

    FRONTEND_CALLBACK_URL: str = Field(
        default="http://localhost:5173/",
        description="Front-end location receiving the access token in the URL fragment",
    )

    POST_LOGOUT_REDIRECT_URI: str = Field(
        default="http://localhost:3000",
        description="Where Keycloak sends the browser after IdP-side logout",
    )

    # =========================================================================
    # Refresh Token Cookie
    # =========================================================================

    REFRESH_COOKIE_MAX_AGE: int = Field(
        default=2592000,
        description="Refresh cookie lifetime in seconds (default 30 days)",
        ge=60,
    )

    COOKIE_DOMAIN: Optional[str] = Field(
        None,
        description="Cookie domain (host-only cookie when unset)",
    )

    COOKIE_SECURE: bool = Field(
        default=False,
        description="Set the Secure flag (required when served over HTTPS)",
    )

    CLEAR_COOKIE_ON_UPSTREAM_UNAVAILABLE: bool = Field(
        default=False,
        description="Clear the refresh cookie when Keycloak is unreachable during refresh",
    )

    # =========================================================================
    # Callback State Binding
    # =========================================================================

    STATE_SECRET: str = Field(
        ...,
        description="Secret for signing the state-binding cookie (must be cryptographically secure)",
        min_length=32,
    )

    STATE_TTL_SECONDS: int = Field(
        default=600,
        description="Lifetime of a login attempt's state binding",
        ge=30,
        le=3600,
    )

    # =========================================================================
    # Outbound Calls
    # =========================================================================

    TOKEN_REQUEST_TIMEOUT_SECONDS: float = Field(
        default=10.0,
        description="Timeout for calls to the Keycloak token endpoint",
        gt=0,
        le=60,
    )

    JWKS_CACHE_SECONDS: int = Field(
        default=3600,
        description="Time to cache realm JWKS keys in seconds",
        ge=60,
        le=86400,
    )

    # =========================================================================
    # Password Reset
    # =========================================================================

    RESET_TOKEN_TTL_SECONDS: int = Field(
        default=3600,
        description="Lifetime of a password reset token (default 1 hour)",
        ge=60,
    )

    RESET_TOKEN_STORE_URL: Optional[str] = Field(
        None,
        description="redis:// URL for reset tokens (in-process store when unset)",
    )

    # =========================================================================
    # Server Configuration
    # =========================================================================

    ALLOWED_ORIGINS: Optional[str] = Field(
        None,
        description="Comma-separated list of allowed CORS origins (leave empty for no CORS)",
    )

    LOG_LEVEL: str = Field(
        default="INFO",
        description="Logging level",
    )

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=True,
        extra="ignore",
    )

    # =========================================================================
    # Computed Properties
    # =========================================================================

    @property
    def issuer(self) -> str:
        """Realm issuer URL, also the base of every OIDC endpoint."""
        return f"{self.KEYCLOAK_URL.rstrip('/')}/realms/{self.KEYCLOAK_REALM}"

    @property
    def token_endpoint(self) -> str:
        return f"{self.issuer}/protocol/openid-connect/token"

    @property
    def authorization_endpoint(self) -> str:
        return f"{self.issuer}/protocol/openid-connect/auth"

    @property
    def logout_endpoint(self) -> str:
        return f"{self.issuer}/protocol/openid-connect/logout"

    @property
    def jwks_uri(self) -> str:
        return f"{self.issuer}/protocol/openid-connect/certs"

    @property
    def admin_base_url(self) -> str:
        return f"{self.KEYCLOAK_URL.rstrip('/')}/admin/realms/{self.KEYCLOAK_REALM}"

    @property
    def allowed_origins_list(self) -> List[str]:
        """
        Parse and return ALLOWED_ORIGINS as a list.

        Returns:
            List of allowed origin URLs, or empty list if not configured.
        """
        if not self.ALLOWED_ORIGINS:
            return []

        return [
            origin.strip()
            for origin in self.ALLOWED_ORIGINS.split(",")
            if origin.strip()
        ]

    # =========================================================================
    # Validators
    # =========================================================================

    @field_validator(
        "KEYCLOAK_URL",
        "KEYCLOAK_REDIRECT_URI",
        "FRONTEND_CALLBACK_URL",
        "POST_LOGOUT_REDIRECT_URI",
    )
    @classmethod
    def validate_absolute_url(cls, v: str) -> str:
        """
        Validate that a configured location is an absolute http(s) URL.

        Raises:
            ValueError: If the scheme or host is missing
        """
        parsed = urlparse(v)
        if parsed.scheme not in ("http", "https") or not parsed.netloc:
            raise ValueError(
                f"Invalid URL: '{v}'. Expected an absolute http(s) URL"
            )
        return v

    @field_validator("LOG_LEVEL")
    @classmethod
    def validate_log_level(cls, v: str) -> str:
        allowed_levels = ["DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"]

        level = v.upper()
        if level not in allowed_levels:
            raise ValueError(
                f"LOG_LEVEL must be one of {allowed_levels}, got: {v}"
            )

        return level

    @field_validator("RESET_TOKEN_STORE_URL")
    @classmethod
    def validate_store_url(cls, v: Optional[str]) -> Optional[str]:
        if v and urlparse(v).scheme not in ("redis", "rediss"):
            raise ValueError("RESET_TOKEN_STORE_URL must be a redis:// or rediss:// URL")
        return v or None


# =============================================================================
# Settings Singleton
# =============================================================================

@lru_cache()
def get_settings() -> Settings:
    """
    Get or create a singleton Settings instance.

    This function is cached so that the settings are loaded only once
    during the application lifecycle.

    Returns:
        Settings instance with all configuration loaded and validated.

    Raises:
        ValidationError: If required environment variables are missing
                        or invalid.
    """
    return Settings()


# =============================================================================
# Configuration Helpers
# =============================================================================

def validate_configuration(settings: Settings) -> dict:
    """
    Validate deployment-sensitive settings and return a status report.

    Called during application startup; errors are logged, not raised.

    Returns:
        Dictionary with validation status and any warnings.
    """
    errors = []
    warnings = []

    redirect = urlparse(settings.KEYCLOAK_REDIRECT_URI)

    if redirect.scheme == "https" and not settings.COOKIE_SECURE:
        errors.append("COOKIE_SECURE is disabled while the callback is served over HTTPS")

    if not redirect.path.endswith("/callback"):
        warnings.append("KEYCLOAK_REDIRECT_URI does not point at the /callback route")

    if urlparse(settings.KEYCLOAK_URL).scheme != "https":
        warnings.append("KEYCLOAK_URL is not HTTPS (token exchange must be encrypted in production)")

    if settings.CLEAR_COOKIE_ON_UPSTREAM_UNAVAILABLE:
        warnings.append("Refresh cookie is cleared on transient Keycloak outages")

    if not settings.RESET_TOKEN_STORE_URL:
        warnings.append("Reset tokens are kept in-process (not shared between workers)")

    return {
        "valid": len(errors) == 0,
        "errors": errors,
        "warnings": warnings,
        "issuer": settings.issuer,
        "refresh_cookie_max_age": settings.REFRESH_COOKIE_MAX_AGE,
    }
