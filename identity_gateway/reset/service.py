"""
Password reset service.

Issues single-use, time-limited reset tokens and redeems them through the
identity provider's admin API.
"""

import logging
import secrets

from identity_gateway.errors import InvalidResetToken
from identity_gateway.reset.directory import KeycloakDirectory
from identity_gateway.reset.notifier import ResetNotifier
from identity_gateway.reset.store import ResetTokenStore

logger = logging.getLogger(__name__)


class PasswordResetService:
    """
    Orchestrates reset token issue and redemption.

    Args:
        store: Reset token store
        directory: Identity provider user directory
        notifier: Delivers the token to the account holder
        ttl_seconds: Token lifetime
    """

    def __init__(
        self,
        store: ResetTokenStore,
        directory: KeycloakDirectory,
        notifier: ResetNotifier,
        ttl_seconds: int = 3600,
    ):
        self.store = store
        self.directory = directory
        self.notifier = notifier
        self.ttl_seconds = ttl_seconds

    async def request_reset(self, email: str) -> None:
        """
        Issue a reset token for the account registered to ``email``.

        Unknown addresses are accepted silently so callers cannot discover
        registered accounts.

        Raises:
            DirectoryError: If the user lookup fails
        """
        user_id = await self.directory.find_user_id_by_email(email)
        if user_id is None:
            logger.info("Password reset requested for unknown email")
            return

        token = secrets.token_urlsafe(32)
        await self.store.put(token, user_id, self.ttl_seconds)
        await self.notifier.send_reset_token(email, token)

        logger.info(
            "Password reset token issued",
            extra={"subject_id": user_id, "ttl_seconds": self.ttl_seconds},
        )

    async def confirm_reset(self, token: str, new_password: str) -> None:
        """
        Redeem a reset token and set the new password.

        The token is consumed before the password update, so it cannot be
        used twice even if the update fails.

        Raises:
            InvalidResetToken: Unknown, already used or expired token
            DirectoryError: If the password update fails
        """
        pending = await self.store.consume(token)
        if pending is None:
            raise InvalidResetToken("Invalid or expired reset token")

        await self.directory.set_password(pending.subject_id, new_password)
        logger.info("Password reset completed", extra={"subject_id": pending.subject_id})


__all__ = ["PasswordResetService"]
