"""
Message Text Extractor

Recovers the body text of a stored message for reply, forward and
draft resume.
"""

import logging
from email.message import Message
from typing import Iterator, Optional, Tuple

from compose.models import TextResult
from .flowed import to_fixed
from .html_filters import html_to_text, sanitize_html, tidy_html

logger = logging.getLogger(__name__)

TRUNCATED_MARKER = "\n[Truncated Text]"


def walk_parts(message: Message, prefix: str = "") -> Iterator[Tuple[str, Message]]:
    """
    Yield (part id, part) in IMAP section numbering.

    A single-part message has the id "1"; children of a multipart are
    numbered from 1 below their parent.
    """
    if not message.is_multipart():
        yield prefix or "1", message
        return

    if prefix:
        yield prefix, message
    else:
        yield "0", message

    for i, child in enumerate(message.get_payload(), 1):
        child_id = f"{prefix}.{i}" if prefix else str(i)
        if child.get_content_type() == "message/rfc822":
            yield child_id, child
            continue
        yield from walk_parts(child, child_id)


def _is_attachment(part: Message) -> bool:
    disposition = (part.get("Content-Disposition") or "").split(";")[0].strip().lower()
    return disposition == "attachment"


def find_body(message: Message, subtype: Optional[str] = None) -> Optional[Tuple[str, Message]]:
    """
    Find the body part of a message.

    Args:
        message: Parsed message
        subtype: "html" or "plain"; None takes plain text, then HTML

    Returns:
        Tuple of (part id, part), or None if the message has no text body
    """
    wanted = [subtype] if subtype else ["plain", "html"]
    for want in wanted:
        for part_id, part in walk_parts(message):
            if part.is_multipart() or _is_attachment(part):
                continue
            if part.get_content_type() == f"text/{want}":
                return part_id, part
    return None


def quote_text(text: str) -> str:
    lines = []
    for line in text.split("\n"):
        if line.startswith(">"):
            lines.append(">" + line)
        elif line:
            lines.append("> " + line)
        else:
            lines.append(">")
    return "\n".join(lines)


def decode_part(part: Message) -> str:
    payload = part.get_payload(decode=True) or b""
    charset = part.get_content_charset() or "us-ascii"
    try:
        return payload.decode(charset, errors="replace")
    except LookupError:
        logger.debug("Unknown charset %s, decoding as utf-8", charset)
        return payload.decode("utf-8", errors="replace")


def extract_message_text(
    message: Message,
    prefer_html: bool = False,
    rich_text: bool = False,
    reply_limit: int = 0,
    quote: bool = False,
    email_charset: str = "us-ascii",
) -> Optional[TextResult]:
    """
    Extract the body text of a message.

    Args:
        message: Parsed source message
        prefer_html: Use the HTML body when there is one
        rich_text: The client can render HTML
        reply_limit: Character ceiling, 0 for none; longer text is truncated
        quote: Add a level of quoting to plain text, as for a reply
        email_charset: Default send charset

    Returns:
        TextResult, or None if the message has no text body
    """
    mode = "text"
    found = None
    if prefer_html and rich_text:
        found = find_body(message, "html")
        if found is not None:
            mode = "html"
    if found is None:
        found = find_body(message)
    if found is None:
        return None

    part_id, part = found
    text = decode_part(part)

    if reply_limit and len(text) > reply_limit:
        text = text[:reply_limit] + TRUNCATED_MARKER

    if mode == "html":
        text = tidy_html(sanitize_html(text))
    else:
        flowed = (part.get_param("format") or "").lower() == "flowed"
        if part.get_content_subtype() == "html":
            # Converted HTML is handled as plain text from here on.
            text = html_to_text(sanitize_html(text))
            flowed = False

        if flowed:
            delsp = (part.get_param("delsp") or "").lower() == "yes"
            text = to_fixed(text, delsp=delsp)
        else:
            text = "\n".join(line.rstrip() for line in text.replace("\r\n", "\n").split("\n"))
        if quote:
            text = quote_text(text)

    part_charset = (part.get_content_charset() or "us-ascii").lower()
    charset = email_charset
    if part_charset not in ("us-ascii", email_charset.lower()):
        charset = "utf-8"

    return TextResult(text=text, mode=mode, part_id=part_id, charset=charset)
