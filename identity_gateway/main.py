"""
FastAPI Identity Gateway Application Factory
=============================================

Entry point for the gateway that sits between a browser front end and a
Keycloak realm.

Architecture:
    Browser SPA → Identity Gateway (this service) → Keycloak

Routers:
    - /api/auth/*   : Token lifecycle (login, callback, refresh, logout)
                      and password reset
    - /api/me       : Authorization facts of the caller (bearer token)
    - /health       : Health check endpoint

Environment Variables Required:
    - KEYCLOAK_URL: Keycloak base URL (e.g., "https://sso.example.com")
    - KEYCLOAK_REALM: Realm name
    - KEYCLOAK_CLIENT_ID / KEYCLOAK_CLIENT_SECRET: Confidential client credentials
    - KEYCLOAK_REDIRECT_URI: Callback registered in Keycloak
    - STATE_SECRET: Secret for signing the state-binding cookie (32+ chars)
    - LOG_LEVEL: Logging level (default: INFO)

Running the Service:
    Development:
        uvicorn identity_gateway.main:app --reload --host 0.0.0.0 --port 8080

    Production:
        uvicorn identity_gateway.main:app --host 0.0.0.0 --port 8080 --workers 4
        (set RESET_TOKEN_STORE_URL so reset tokens are shared between workers)
"""

import logging
import sys
from contextlib import asynccontextmanager
from typing import Dict, Optional

import httpx
import uvicorn
from fastapi import Depends, FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse

from identity_gateway import __version__
from identity_gateway.auth.claims import AuthorizationFacts
from identity_gateway.auth.cookies import RefreshCookieStore
from identity_gateway.auth.orchestrator import SessionOrchestrator
from identity_gateway.auth.routes import auth_router
from identity_gateway.auth.state import StateBinder
from identity_gateway.auth.token_client import TokenExchangeClient
from identity_gateway.auth.verifier import AccessTokenVerifier
from identity_gateway.config import Settings, get_settings, validate_configuration
from identity_gateway.models import UserProfile
from identity_gateway.policy.evaluator import AccessPolicy, default_policy
from identity_gateway.policy.middleware import AccessPolicyMiddleware, get_authorization_facts
from identity_gateway.reset.directory import KeycloakDirectory
from identity_gateway.reset.notifier import LoggingNotifier, ResetNotifier
from identity_gateway.reset.routes import reset_router
from identity_gateway.reset.service import PasswordResetService
from identity_gateway.reset.store import ResetTokenStore, create_reset_token_store

SERVICE_NAME = "identity-gateway"


# Configure structured JSON logging
def setup_logging(log_level: str = "INFO") -> None:
    """
    Configure structured logging for the application.

    Args:
        log_level: Logging level (DEBUG, INFO, WARNING, ERROR, CRITICAL)
    """
    logging.basicConfig(
        level=getattr(logging, log_level.upper()),
        format='{"timestamp": "%(asctime)s", "level": "%(levelname)s", "logger": "%(name)s", "message": "%(message)s", "module": "%(module)s", "function": "%(funcName)s"}',
        handlers=[logging.StreamHandler(sys.stdout)]
    )


class AppState:
    """
    Application state container.

    Holds the shared HTTP client and the components built on top of it.
    Everything here is created once per application; nothing is per user.
    """

    def __init__(
        self,
        settings: Settings,
        http_client: httpx.AsyncClient,
        reset_store: ResetTokenStore,
        notifier: ResetNotifier,
        policy: AccessPolicy,
    ):
        self.settings = settings
        self.http_client = http_client
        self.reset_store = reset_store
        self.policy = policy

        self.verifier = AccessTokenVerifier(settings, http_client)
        self.orchestrator = SessionOrchestrator(
            settings=settings,
            token_client=TokenExchangeClient(settings, http_client),
            cookie_store=RefreshCookieStore(settings),
            state_binder=StateBinder(settings),
        )
        self.reset_service = PasswordResetService(
            store=reset_store,
            directory=KeycloakDirectory(settings, http_client),
            notifier=notifier,
            ttl_seconds=settings.RESET_TOKEN_TTL_SECONDS,
        )

    async def close(self) -> None:
        await self.reset_store.close()
        await self.http_client.aclose()


@asynccontextmanager
async def lifespan(app: FastAPI):
    """
    Application lifespan manager.

    Startup tasks:
        - Configure logging
        - Report configuration warnings

    Shutdown tasks:
        - Close the reset token store and the shared HTTP client
    """
    app_state: AppState = app.state.app_state
    settings = app_state.settings

    setup_logging(settings.LOG_LEVEL)
    logger = logging.getLogger("identity_gateway.main")

    report = validate_configuration(settings)
    for error in report["errors"]:
        logger.error(f"Configuration error: {error}")
    for warning in report["warnings"]:
        logger.warning(f"Configuration warning: {warning}")

    logger.info(
        "Identity gateway started",
        extra={
            "service": SERVICE_NAME,
            "version": __version__,
            "issuer": report["issuer"],
            "log_level": settings.LOG_LEVEL,
        }
    )

    yield

    logger.info("Shutting down identity gateway")
    await app_state.close()
    logger.info("Identity gateway shutdown complete")


def create_app(
    settings: Optional[Settings] = None,
    http_client: Optional[httpx.AsyncClient] = None,
    reset_store: Optional[ResetTokenStore] = None,
    notifier: Optional[ResetNotifier] = None,
    policy: Optional[AccessPolicy] = None,
) -> FastAPI:
    """
    Application factory function.

    Creates and configures the FastAPI application instance with:
        - Lifespan management
        - Access policy and CORS middleware
        - Route handlers
        - Exception handlers

    Collaborators can be injected for tests; anything omitted is built from
    settings.

    Returns:
        FastAPI: Configured application instance
    """
    settings = settings or get_settings()

    app_state = AppState(
        settings=settings,
        http_client=http_client or httpx.AsyncClient(
            timeout=httpx.Timeout(settings.TOKEN_REQUEST_TIMEOUT_SECONDS)
        ),
        reset_store=reset_store or create_reset_token_store(settings.RESET_TOKEN_STORE_URL),
        notifier=notifier or LoggingNotifier(),
        policy=policy or default_policy(),
    )

    app = FastAPI(
        title="Identity Gateway",
        description="Keycloak token lifecycle and access policy for browser clients",
        version=__version__,
        lifespan=lifespan,
        docs_url="/docs",
        redoc_url="/redoc"
    )
    app.state.app_state = app_state

    app.add_middleware(
        AccessPolicyMiddleware,
        policy=app_state.policy,
        verifier=app_state.verifier,
    )

    # Added last so it wraps the policy middleware and answers preflights
    origins = settings.allowed_origins_list
    if origins:
        app.add_middleware(
            CORSMiddleware,
            allow_origins=origins,
            allow_credentials=True,
            allow_methods=["GET", "POST", "OPTIONS"],
            allow_headers=["Authorization", "Content-Type"],
        )

    app.include_router(auth_router)
    app.include_router(reset_router)

    @app.get("/health", tags=["System"])
    async def health_check() -> Dict[str, str]:
        """
        Health check endpoint.

        Returns:
            dict: Service health information
        """
        return {
            "status": "ok",
            "service": SERVICE_NAME,
            "version": __version__
        }

    @app.get("/api/me", response_model=UserProfile, tags=["Identity"])
    async def me(facts: AuthorizationFacts = Depends(get_authorization_facts)) -> UserProfile:
        """Return the caller's subject and derived roles."""
        claims = facts.raw_claims
        return UserProfile(
            user_id=facts.subject_id,
            roles=sorted(facts.role_set),
            username=claims.get("preferred_username"),
            email=claims.get("email"),
        )

    @app.exception_handler(Exception)
    async def global_exception_handler(request: Request, exc: Exception) -> JSONResponse:
        """
        Global exception handler for unhandled errors.

        Logs the error type and returns a standardized error response. The
        exception text is not echoed back since it can carry upstream data.
        """
        logger = logging.getLogger("identity_gateway.main")
        logger.error(
            f"Unhandled exception: {type(exc).__name__}",
            extra={
                "path": request.url.path,
                "method": request.method,
                "exception_type": type(exc).__name__
            },
            exc_info=True
        )

        return JSONResponse(
            status_code=500,
            content={
                "error": "internal_server_error",
                "message": "An unexpected error occurred",
            }
        )

    return app


app = create_app()


if __name__ == "__main__":
    uvicorn.run(
        "identity_gateway.main:app",
        host="0.0.0.0",
        port=8080,
        log_level=get_settings().LOG_LEVEL.lower(),
    )
