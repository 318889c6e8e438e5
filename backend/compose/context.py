"""
Request Context

Explicit per-request state passed into every compose operation:
the user, their identity and preferences, and a settings snapshot.
"""

from dataclasses import dataclass, field
from email.headerregistry import Address
from email.utils import getaddresses, parseaddr
from typing import List, Literal, Optional

from pydantic import BaseModel

from config import Settings, settings as default_settings


class Preferences(BaseModel):
    """User preferences that influence composition and delivery."""

    sent_mail_folder: str = "Sent"
    drafts_folder: str = "Drafts"
    save_sent_mail: bool = True
    save_sent_mail_locked: bool = False
    save_attachments: Literal["always", "never", "prompt_yes", "prompt_no"] = "always"
    unseen_drafts: bool = False
    subscribe: bool = True

    save_recipients: bool = False
    add_source: str = "personal"

    reply_quote: bool = True
    reply_headers: bool = False
    attrib_text: str = "Quoting %f:"
    forward_bodytext: bool = True
    compose_html: bool = False
    reply_format: bool = False

    delete_attachments_monthly: bool = False
    delete_attachments_monthly_keep: int = 6


@dataclass
class Identity:
    """The sending identity of the current user."""
    from_addr: str
    name: str = ""
    reply_to: str = ""
    alt_addresses: List[str] = field(default_factory=list)
    bcc_addresses: List[str] = field(default_factory=list)

    @property
    def formatted_from(self) -> str:
        if self.name:
            local, _, domain = self.from_addr.partition("@")
            return str(Address(self.name, local, domain))
        return self.from_addr

    def all_addresses(self) -> List[str]:
        """Bare, lower-cased addresses that belong to this user."""
        addrs = [parseaddr(self.from_addr)[1]]
        addrs.extend(addr for _, addr in getaddresses(self.alt_addresses))
        if self.reply_to:
            addrs.append(parseaddr(self.reply_to)[1])
        return [a.lower() for a in addrs if a]


@dataclass
class RequestContext:
    user: str
    identity: Identity
    prefs: Preferences = field(default_factory=Preferences)
    settings: Settings = field(default_factory=lambda: default_settings)
    remote_addr: str = "127.0.0.1"
    rich_text: bool = False
    passphrase: Optional[str] = None

    @property
    def mail_domain(self) -> str:
        return self.settings.mail_domain
