"""
Authentication routes for the Keycloak authorization code flow.

The browser never sees the refresh token: it lives in an http-only cookie
scoped to /api/auth/refresh. The access token reaches the front end once
in a URL fragment after login and afterwards in refresh response bodies.
"""

from typing import Optional

from fastapi import APIRouter, Depends, Query, Request
from fastapi.responses import JSONResponse, RedirectResponse

from identity_gateway.auth.cookies import AUTH_ROUTE_PREFIX
from identity_gateway.auth.orchestrator import SessionOrchestrator
from identity_gateway.auth.state import STATE_COOKIE_NAME
from identity_gateway.dependencies import get_orchestrator
from identity_gateway.models import (
    ErrorResponse,
    HealthResponse,
    LogoutResponse,
    TokenResponse,
)


# =============================================================================
# Router Setup
# =============================================================================

auth_router = APIRouter(
    prefix=AUTH_ROUTE_PREFIX,
    tags=["authentication"],
)


# =============================================================================
# Login / Callback
# =============================================================================

@auth_router.get("/login", response_class=RedirectResponse, status_code=302)
async def login(
    redirect_uri: Optional[str] = Query(None, description="Front-end location to return to"),
    orchestrator: SessionOrchestrator = Depends(get_orchestrator),
):
    """
    Initiate the authorization code flow.

    Sets a short-lived state-binding cookie and redirects the browser to
    Keycloak's login page.
    """
    return orchestrator.begin_login(redirect_uri)


@auth_router.get("/callback", response_class=RedirectResponse, status_code=302)
async def callback(
    request: Request,
    code: Optional[str] = Query(None, description="Authorization code from Keycloak"),
    state: Optional[str] = Query(None, description="State parameter for CSRF protection"),
    error: Optional[str] = Query(None, description="Error code if authentication failed"),
    orchestrator: SessionOrchestrator = Depends(get_orchestrator),
):
    """
    Handle the redirect back from Keycloak.

    Success lands on the front end with
    ``#access_token=...&expires_in=...&token_type=Bearer`` and sets the
    refresh cookie. Failure lands on the front end with
    ``#error=...&error_description=...`` and sets no refresh cookie.
    """
    return await orchestrator.complete_login(
        code=code,
        state=state,
        state_cookie=request.cookies.get(STATE_COOKIE_NAME),
        idp_error=error,
    )


# =============================================================================
# Refresh / Logout
# =============================================================================

@auth_router.post(
    "/refresh",
    response_model=TokenResponse,
    responses={
        401: {"model": ErrorResponse},
        502: {"model": ErrorResponse},
        503: {"model": ErrorResponse},
    },
)
async def refresh(
    request: Request,
    orchestrator: SessionOrchestrator = Depends(get_orchestrator),
) -> JSONResponse:
    """Exchange the refresh cookie for a new access token and rotated cookie."""
    return await orchestrator.refresh(request)


@auth_router.post("/logout", response_model=LogoutResponse)
async def logout(orchestrator: SessionOrchestrator = Depends(get_orchestrator)) -> JSONResponse:
    """Clear the refresh cookie and return Keycloak's end-session URL."""
    return orchestrator.logout()


@auth_router.get("/logout-redirect", response_class=RedirectResponse, status_code=302)
async def logout_redirect(orchestrator: SessionOrchestrator = Depends(get_orchestrator)):
    return orchestrator.logout_redirect()


@auth_router.get("/health", response_model=HealthResponse)
async def auth_health() -> HealthResponse:
    return HealthResponse(
        status="healthy",
        service="identity-gateway-auth",
        flow="Authorization Code",
    )


__all__ = ["auth_router"]
