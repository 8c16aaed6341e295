"""
Data Models Module

This module defines Pydantic models for request/response validation
and data serialization throughout the identity gateway.

Models are organized by functional area:
- Token models (token pairs from Keycloak, access token responses)
- Password reset models
- Health and error models
"""

from datetime import datetime, timezone
from typing import Optional, List

from pydantic import BaseModel, Field, EmailStr


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


# ============================================================================
# Token Models
# ============================================================================

class TokenPair(BaseModel):
    """
    Tokens returned by the Keycloak token endpoint.

    Lives only for the duration of one request. Token values are hidden
    from repr so the model can be logged or shown in tracebacks safely.
    """
    access_token: str = Field(..., repr=False, description="Signed access token")
    refresh_token: str = Field(..., repr=False, description="Signed refresh token")
    expires_in: int = Field(..., description="Access token lifetime in seconds")
    token_type: str = Field(default="Bearer", description="Token type reported by Keycloak")


class TokenResponse(BaseModel):
    """Access token handed to the browser after a successful refresh."""
    access_token: str = Field(..., description="Short-lived access token")
    expires_in: int = Field(..., description="Token expiration time in seconds")
    token_type: str = Field(default="Bearer", description="Token type")


class LogoutResponse(BaseModel):
    """Logout acknowledgement with the IdP-side logout location."""
    message: str = Field(..., description="Human-readable status")
    logout_url: str = Field(..., description="Keycloak end-session URL")


class UserProfile(BaseModel):
    """Authorization facts exposed to the front end."""
    user_id: str = Field(..., description="Subject identifier")
    roles: List[str] = Field(default_factory=list, description="Derived role names")
    username: Optional[str] = Field(None, description="preferred_username claim")
    email: Optional[str] = Field(None, description="email claim")


# ============================================================================
# Password Reset Models
# ============================================================================

class PasswordResetRequest(BaseModel):
    """Request model for starting a password reset."""
    email: EmailStr = Field(..., description="Account email address")


class PasswordResetConfirm(BaseModel):
    """Request model for redeeming a password reset token."""
    token: str = Field(..., min_length=1, description="Reset token from the notification")
    new_password: str = Field(..., min_length=8, repr=False, description="New password")


class MessageResponse(BaseModel):
    """Generic acknowledgement."""
    message: str = Field(..., description="Human-readable status")


# ============================================================================
# Health Check Models
# ============================================================================

class HealthResponse(BaseModel):
    """Health check response model."""
    status: str = Field(..., description="Service health status")
    service: str = Field(..., description="Service name")
    flow: Optional[str] = Field(None, description="OAuth flow served")
    timestamp: datetime = Field(default_factory=_utcnow, description="Check timestamp")


# ============================================================================
# Error Models
# ============================================================================

class ErrorResponse(BaseModel):
    """Standardized error response model."""
    error: str = Field(..., description="Error type or code")
    message: str = Field(..., description="Human-readable error message")
