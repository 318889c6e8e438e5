"""
Compose Rules

Administrative and per-user rules deciding how a message is assembled
and what is kept after it has been sent.
"""

from dataclasses import dataclass
from typing import Optional, Tuple

from compose.context import Preferences
from compose.models import EncryptMode
from config import Settings


@dataclass
class ModeRequirements:
    """Requirements for a signing/encryption mode."""
    name: str
    requires_crypto: bool


class ComposeRules:
    """
    Rules for composing and delivering a message.

    Combines the administrator settings with the user's preferences.
    """

    MODE_REQUIREMENTS = {
        EncryptMode.NONE: ModeRequirements(
            name="None",
            requires_crypto=False,
        ),
        EncryptMode.SIGN: ModeRequirements(
            name="S/MIME Sign",
            requires_crypto=True,
        ),
        EncryptMode.ENCRYPT: ModeRequirements(
            name="S/MIME Encrypt",
            requires_crypto=True,
        ),
        EncryptMode.SIGN_ENCRYPT: ModeRequirements(
            name="S/MIME Sign/Encrypt",
            requires_crypto=True,
        ),
    }

    def __init__(self, settings: Settings, prefs: Preferences):
        self.settings = settings
        self.prefs = prefs

    def get_requirements(self, mode: EncryptMode) -> ModeRequirements:
        return self.MODE_REQUIREMENTS[mode]

    def can_use_mode(self, mode: EncryptMode, has_crypto: bool) -> Tuple[bool, Optional[str]]:
        """
        Check if a signing/encryption mode can be used.

        Returns:
            Tuple of (can_use, reason_if_not)
        """
        req = self.get_requirements(mode)
        if req.requires_crypto and not has_crypto:
            return False, f"{req.name} is not available: S/MIME support is not configured."
        return True, None

    def use_link_mode(self, session_requested: bool) -> bool:
        """Attachments are replaced by links."""
        return session_requested or self.settings.link_all_attachments

    def can_link(self) -> Tuple[bool, Optional[str]]:
        if not self.settings.link_attachments:
            return False, "Linked attachments are forbidden."
        return True, None

    def save_sent_copy(self, user_requested: bool, sent_folder: Optional[str]) -> bool:
        """A copy of the message goes to the sent folder."""
        if not sent_folder:
            return False
        if self.prefs.save_sent_mail_locked:
            return self.prefs.save_sent_mail
        return user_requested

    def strip_attachments_from_copy(self, user_accepted: bool) -> bool:
        policy = self.prefs.save_attachments
        if policy == "never":
            return True
        return policy.startswith("prompt") and not user_accepted

    def read_receipt_allowed(self, requested: bool) -> bool:
        return requested and self.settings.allow_receipts
