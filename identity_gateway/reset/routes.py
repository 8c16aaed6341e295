"""
Password reset routes.

Both routes are public. The request route always answers 202 with the
same message so it cannot be used to discover registered addresses.
"""

import logging

from fastapi import APIRouter, Depends, HTTPException, status

from identity_gateway.auth.cookies import AUTH_ROUTE_PREFIX
from identity_gateway.dependencies import get_reset_service
from identity_gateway.errors import DirectoryError, InvalidResetToken
from identity_gateway.models import MessageResponse, PasswordResetConfirm, PasswordResetRequest
from identity_gateway.reset.service import PasswordResetService

logger = logging.getLogger(__name__)

reset_router = APIRouter(
    prefix=AUTH_ROUTE_PREFIX,
    tags=["password-reset"],
)

RESET_REQUESTED_MESSAGE = "If the address is registered, a reset link has been sent"


@reset_router.post(
    "/reset-password-request",
    response_model=MessageResponse,
    status_code=status.HTTP_202_ACCEPTED,
)
async def request_password_reset(
    body: PasswordResetRequest,
    service: PasswordResetService = Depends(get_reset_service),
) -> MessageResponse:
    """Start a password reset for an email address."""
    try:
        await service.request_reset(body.email)
    except DirectoryError as e:
        logger.error(f"Password reset request failed: {e}")
        raise HTTPException(
            status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
            detail="Password reset is temporarily unavailable",
        )

    return MessageResponse(message=RESET_REQUESTED_MESSAGE)


@reset_router.post("/reset-password", response_model=MessageResponse)
async def reset_password(
    body: PasswordResetConfirm,
    service: PasswordResetService = Depends(get_reset_service),
) -> MessageResponse:
    """
    Redeem a reset token.

    Raises:
        HTTPException: 400 for unknown, used or expired tokens; 503 when
            Keycloak cannot apply the new password
    """
    try:
        await service.confirm_reset(body.token, body.new_password)
    except InvalidResetToken as e:
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail=str(e))
    except DirectoryError as e:
        logger.error(f"Password update failed: {e}")
        raise HTTPException(
            status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
            detail="Password reset is temporarily unavailable",
        )

    return MessageResponse(message="Password has been reset")


__all__ = ["reset_router"]
