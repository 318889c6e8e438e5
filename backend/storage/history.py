"""
Delivery History

Sent-mail log used for the per-sender recipient limit, and the
correlation log linking replies and forwards to their source message.
"""

import logging
import time
from abc import ABC, abstractmethod
from typing import List

logger = logging.getLogger(__name__)


class DeliveryHistory(ABC):

    @abstractmethod
    async def log(
        self,
        sender: str,
        action: str,
        message_id: str,
        recipients: List[str],
        success: bool,
    ) -> None:
        """Record one send attempt, one row per recipient."""

    @abstractmethod
    async def count_recent_recipients(self, sender: str, window_hours: int) -> int:
        """Recipients the sender successfully wrote to within the window."""

    @abstractmethod
    async def log_correlation(self, action: str, message_id: str, recipients: str) -> None:
        """Record that the message with message_id was replied to or forwarded."""


class SqlDeliveryHistory(DeliveryHistory):
    """History kept in the application database."""

    async def log(
        self,
        sender: str,
        action: str,
        message_id: str,
        recipients: List[str],
        success: bool,
    ) -> None:
        from storage.database import log_sentmail

        await log_sentmail(sender, action, message_id, recipients, success)

    async def count_recent_recipients(self, sender: str, window_hours: int) -> int:
        from storage.database import count_sentmail_recipients

        return await count_sentmail_recipients(sender, time.time() - window_hours * 3600)

    async def log_correlation(self, action: str, message_id: str, recipients: str) -> None:
        from storage.database import log_maillog

        await log_maillog(action, message_id, recipients)
        logger.debug("Logged %s of %s", action, message_id)
