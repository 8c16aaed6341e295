"""Delivery of password reset tokens to account holders."""

import logging
from abc import ABC, abstractmethod

logger = logging.getLogger(__name__)


class ResetNotifier(ABC):
    """Interface for reset token delivery (email, SMS, ...)."""

    @abstractmethod
    async def send_reset_token(self, email: str, token: str) -> None:
        """Deliver ``token`` to the holder of ``email``."""


class LoggingNotifier(ResetNotifier):
    """
    Development notifier.

    Logs that a reset was issued for a recipient. The token itself is never
    written to the log.
    """

    async def send_reset_token(self, email: str, token: str) -> None:
        logger.info("Password reset issued", extra={"recipient": email})


__all__ = ["ResetNotifier", "LoggingNotifier"]
