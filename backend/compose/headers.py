"""
Reply and Forward Headers

Derives the recipient, subject and threading headers of a reply or a
forward from the message being answered.
"""

import re
from email.header import decode_header, make_header
from email.headerregistry import Address
from email.message import Message
from email.utils import getaddresses
from typing import Dict, List, Optional, Union

from .context import Identity
from .models import HeaderSet

REPLY_ACTIONS = ("reply", "reply_all", "reply_list", "all")

_PREFIX_RE = re.compile(
    r"^(?:\s*(?:re|fwd?|aw|sv|antw)\s*(?:\[\d+\])?\s*:|\s*\[[^\]]*\])+\s*",
    re.IGNORECASE,
)
_FWD_TRAILER_RE = re.compile(r"\s*\((?:fwd)\)\s*$", re.IGNORECASE)
_MAILTO_RE = re.compile(r"<mailto:([^>?]+)", re.IGNORECASE)


def decode_header_value(value) -> str:
    """Decode RFC 2047 encoded words in a header value."""
    if value is None:
        return ""
    try:
        return str(make_header(decode_header(str(value))))
    except (UnicodeDecodeError, LookupError):
        return str(value)


def base_subject(subject: Optional[str]) -> str:
    """
    Strip reply and forward prefixes and bracketed list tags.

    "[list] Re: Fwd: Hello (fwd)" becomes "Hello".
    """
    subject = decode_header_value(subject).strip()
    previous = None
    while subject != previous:
        previous = subject
        subject = _PREFIX_RE.sub("", subject)
        subject = _FWD_TRAILER_RE.sub("", subject).strip()
    return subject


def format_address(name: str, addr: str) -> str:
    if "@" not in addr:
        return addr
    local, _, domain = addr.rpartition("@")
    return str(Address(name, local, domain))


def _address_list(message: Message, header: str) -> List[tuple]:
    values = [decode_header_value(v) for v in message.get_all(header, [])]
    return [(name, addr) for name, addr in getaddresses(values) if addr]


def _threading(message: Message) -> Dict[str, str]:
    message_id = (message.get("Message-ID") or "").strip()
    references = " ".join((message.get("References") or "").split())
    if message_id:
        references = f"{references} {message_id}".strip()
    return {"in_reply_to": message_id, "references": references}


def _reply_subject(message: Message) -> Dict[str, str]:
    subject = base_subject(message.get("Subject"))
    if not subject:
        return {"subject": "Re:", "title": "Reply"}
    return {"subject": f"Re: {subject}", "title": f"Reply: {subject}"}


def list_reply_address(message: Message) -> Optional[str]:
    """The posting address of a mailing list message, if any."""
    list_post = message.get("List-Post")
    if not list_post:
        return None
    match = _MAILTO_RE.search(str(list_post))
    return match.group(1).strip() if match else None


def _reply(message: Message, to: Optional[str]) -> HeaderSet:
    if not to:
        to = decode_header_value(message.get("Reply-To")) or decode_header_value(message.get("From"))
    return HeaderSet(to=to or "", **_reply_subject(message), **_threading(message))


def _reply_all(message: Message, identity: Identity) -> HeaderSet:
    seen = set(identity.all_addresses())

    def take(header: str) -> List[str]:
        taken = []
        for name, addr in _address_list(message, header):
            if addr.lower() in seen:
                continue
            seen.add(addr.lower())
            taken.append(format_address(name, addr))
        return taken

    reply_to = take("Reply-To")
    sender = take("From")
    others = take("To") + take("Cc")

    if reply_to:
        to, cc = reply_to, sender + others
    else:
        to, cc = sender, others
    if not to:
        to, cc = cc, []

    bcc = [format_address(name, addr) for name, addr in _address_list(message, "Bcc")]
    for addr in identity.bcc_addresses:
        if addr not in bcc:
            bcc.append(addr)

    return HeaderSet(
        to=", ".join(to),
        cc=", ".join(cc),
        bcc=", ".join(bcc),
        **_reply_subject(message),
        **_threading(message),
    )


def _reply_list(message: Message) -> Optional[HeaderSet]:
    address = list_reply_address(message)
    if address is None:
        return None
    return HeaderSet(to=address, **_reply_subject(message), **_threading(message))


def build_reply_headers(
    action: str,
    message: Message,
    identity: Identity,
    to: Optional[str] = None,
) -> Union[HeaderSet, Dict[str, Optional[HeaderSet]], None]:
    """
    Build the headers of a reply.

    Args:
        action: "reply", "reply_all", "reply_list" or "all"
        message: Message being answered
        identity: Sending identity; its addresses are never replied to
        to: Explicit To override for "reply"

    Returns:
        HeaderSet for one variant; a dict of every variant for "all";
        None for "reply_list" on a message without list headers
    """
    if action == "reply":
        return _reply(message, to)
    if action == "reply_all":
        return _reply_all(message, identity)
    if action == "reply_list":
        return _reply_list(message)
    if action == "all":
        return {
            "reply": _reply(message, to),
            "reply_all": _reply_all(message, identity),
            "reply_list": _reply_list(message),
        }
    raise ValueError(f"Unknown reply action: {action}")


def build_forward_headers(message: Message) -> HeaderSet:
    """Build the headers of a forward."""
    subject = base_subject(message.get("Subject"))
    return HeaderSet(
        subject=f"Fwd: {subject}" if subject else "Fwd:",
        title=f"Forward: {subject}" if subject else "Forward",
        in_reply_to=(message.get("Message-ID") or "").strip(),
    )


def forward_attachment_subject(messages: List[Message]) -> str:
    """Subject for forwarding messages as attachments."""
    if len(messages) != 1:
        return f"Fwd: {len(messages)} Forwarded Messages"
    subject = base_subject(messages[0].get("Subject")) or "[No Subject]"
    if len(subject) > 80:
        subject = subject[:80] + "..."
    return f"Fwd: {subject}"
