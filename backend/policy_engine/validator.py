"""
Send Validation

Checks an outgoing message against the recipient policies before it
is assembled.
"""

import logging

from compose.exceptions import ConfigurationError, TooManyRecipientsError
from config import Settings

logger = logging.getLogger(__name__)


async def check_time_limit(history, sender: str, new_recipients: int, settings: Settings) -> None:
    """
    Enforce the rolling-window recipient limit for a sender.

    Args:
        history: Delivery history collaborator, or None if not configured
        sender: User sending the message
        new_recipients: Recipients of the message about to be sent
        settings: Administrator settings

    Raises:
        ConfigurationError: The limit is enabled without a delivery history
        TooManyRecipientsError: The limit would be exceeded
    """
    limit = settings.max_timelimit
    if not limit:
        return

    if history is None or settings.sentmail_driver == "none":
        logger.error(
            "The permission for the maximum number of recipients per time "
            "period has been enabled, but no backend for the sent-mail "
            "logging has been configured."
        )
        raise ConfigurationError(
            "The system is not properly configured. A detailed error "
            "description has been logged for the administrator."
        )

    recent = await history.count_recent_recipients(sender, settings.limit_period_hours)
    if recent + new_recipients > limit:
        raise TooManyRecipientsError(
            f"You are not allowed to send messages to more than {limit} "
            f"recipients within {settings.limit_period_hours} hours."
        )
