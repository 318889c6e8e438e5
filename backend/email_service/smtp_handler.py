"""
SMTP Handler

Mail transport submitting assembled messages via aiosmtplib.
"""

import logging
from abc import ABC, abstractmethod
from email.message import Message
from email.utils import getaddresses, parseaddr
from typing import List

import aiosmtplib

from compose.exceptions import TransportError
from config import Settings, settings as default_settings

logger = logging.getLogger(__name__)


class MailTransport(ABC):

    @abstractmethod
    async def submit(self, recipients: List[str], message: Message) -> None:
        """Deliver message to recipients. Raises TransportError."""


class SmtpTransport(MailTransport):
    """Submits messages to the configured SMTP server."""

    def __init__(self, settings: Settings = default_settings):
        self.settings = settings

    async def submit(self, recipients: List[str], message: Message) -> None:
        envelope = [addr for _, addr in getaddresses(recipients) if addr]
        sender = parseaddr(message.get("From", ""))[1]

        try:
            smtp = aiosmtplib.SMTP(
                hostname=self.settings.smtp_host,
                port=self.settings.smtp_port,
                start_tls=self.settings.smtp_start_tls,
                timeout=self.settings.smtp_timeout,
            )

            await smtp.connect()

            if self.settings.smtp_username:
                await smtp.login(self.settings.smtp_username, self.settings.smtp_password)

            await smtp.send_message(message, sender=sender, recipients=envelope)

            await smtp.quit()

        except aiosmtplib.SMTPException as e:
            logger.error("SMTP submission failed: %s", e)
            raise TransportError(str(e))
        except OSError as e:
            logger.error("SMTP connection failed: %s", e)
            raise TransportError(str(e))

        logger.debug("Submitted %s to %d recipients", message.get("Message-ID"), len(envelope))
