"""
Attachment Linker

Moves pending attachments to durable storage and replaces them with
download links in the message body.
"""

import logging
import time
from datetime import date
from typing import Optional
from urllib.parse import urlencode

from compose.context import Preferences
from compose.exceptions import PolicyError
from compose.session import ComposeSession
from config import Settings
from policy_engine.rules import ComposeRules
from storage.blobs import BlobStorage

logger = logging.getLogger(__name__)

LINK_ATTACH_PATH = "attachments"


def link_expiry(keep_months: int, today: Optional[date] = None) -> date:
    """First day of the month keep_months after today."""
    today = today or date.today()
    months = today.month - 1 + keep_months
    return date(today.year + months // 12, months % 12 + 1, 1)


class AttachmentLinker:

    def __init__(self, storage: BlobStorage, settings: Settings):
        self.storage = storage
        self.settings = settings

    async def link(self, session: ComposeSession, user: str, prefs: Preferences) -> str:
        """
        Store every pending attachment under attachments/<user>/<timestamp>
        and return the link trailer. The pending copies are deleted.

        Raises:
            PolicyError: Linked attachments are disabled
        """
        allowed, reason = ComposeRules(self.settings, prefs).can_link()
        if not allowed:
            raise PolicyError(reason)

        ts = int(time.time())
        path = f"{LINK_ATTACH_PATH}/{user}/{ts}"

        trailer = "Attachments"
        if prefs.delete_attachments_monthly:
            expiry = link_expiry(prefs.delete_attachments_monthly_keep)
            trailer += f" (Links will expire on {expiry.strftime('%x')})"

        for slot, att in session.attachments.items():
            data = await session.read(slot)
            await self.storage.write(path, att.name, data)
            query = urlencode({"u": user, "t": ts, "f": att.name})
            trailer += f"\n{self.settings.link_base_url}?{query}"

        await session.remove_all()
        logger.info("Linked attachments for %s under %s", user, path)
        return trailer
