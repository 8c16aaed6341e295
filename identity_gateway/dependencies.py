"""
FastAPI dependencies resolving shared components from application state.
"""

from fastapi import HTTPException, Request, status

from identity_gateway.auth.orchestrator import SessionOrchestrator
from identity_gateway.reset.service import PasswordResetService


def _app_state(request: Request):
    state = getattr(request.app.state, "app_state", None)
    if state is None:
        raise HTTPException(
            status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
            detail="Service not initialized",
        )
    return state


def get_orchestrator(request: Request) -> SessionOrchestrator:
    """Session orchestrator built at application start."""
    return _app_state(request).orchestrator


def get_reset_service(request: Request) -> PasswordResetService:
    return _app_state(request).reset_service
