"""
Reply and Forward Text

Builds the proposed body of a reply or forward: the quoted source text
framed by an attribution line or a header block.
"""

import logging
import re
from email.message import Message
from email.mime.message import MIMEMessage
from email.utils import getaddresses, parsedate_to_datetime
from typing import Dict, List, Optional

from compose.context import RequestContext
from compose.headers import (
    build_forward_headers,
    build_reply_headers,
    decode_header_value,
    forward_attachment_subject,
)
from compose.models import ComposeText, TextResult
from compose.session import ComposeSession
from .html_filters import text_to_html
from .text_extractor import extract_message_text

logger = logging.getLogger(__name__)

NO_BODY_TEXT = "[No message body text]"
FORWARDED_MESSAGE_NAME = "Forwarded Message"

_MACRO_RE = re.compile(r"%(.)")


def _message_date(message: Message):
    value = message.get("Date")
    if not value:
        return None
    try:
        return parsedate_to_datetime(value)
    except (TypeError, ValueError):
        return None


def expand_attribution(template: str, message: Message) -> str:
    """
    Expand the attribution macros of template.

    %n newline, %% percent, %f sender, %a sender address, %p sender name,
    %r raw date, %d short date, %x locale date, %c locale date and time,
    %m Message-ID, %s subject.
    """
    sender = decode_header_value(message.get("From"))
    parsed = getaddresses([sender])
    name, addr = parsed[0] if parsed else ("", "")
    date = _message_date(message)

    values = {
        "n": "\n",
        "%": "%",
        "f": sender,
        "a": addr,
        "p": name or addr,
        "r": message.get("Date", ""),
        "d": date.strftime("%a, %d %b %Y") if date else "",
        "x": date.strftime("%x") if date else "",
        "c": date.strftime("%c") if date else "",
        "m": (message.get("Message-ID") or "").strip(),
        "s": decode_header_value(message.get("Subject")),
    }
    return _MACRO_RE.sub(lambda m: values.get(m.group(1), m.group(0)), template)


def header_block(message: Message) -> str:
    """Right-aligned summary of the source message headers."""
    rows = []
    for label in ("Date", "From", "Reply-To", "Subject", "To", "Cc"):
        value = decode_header_value(message.get(label))
        if value:
            rows.append((label + ":", " ".join(value.split())))
    if not rows:
        return ""
    width = max(len(label) for label, _ in rows)
    return "\n".join(f"{label.rjust(width)} {value}" for label, value in rows)


def _extract(message: Message, ctx: RequestContext, quote: bool = False) -> Optional[TextResult]:
    return extract_message_text(
        message,
        prefer_html=ctx.prefs.compose_html or ctx.prefs.reply_format,
        rich_text=ctx.rich_text,
        reply_limit=ctx.settings.reply_limit,
        quote=quote,
        email_charset=ctx.settings.email_charset,
    )


def reply_message(
    action: str,
    message: Message,
    ctx: RequestContext,
    to: Optional[str] = None,
) -> ComposeText:
    """
    Propose the body and headers of a reply.

    Args:
        action: "reply", "reply_all", "reply_list" or "all"
        message: Message being answered
        ctx: Request context
        to: Explicit To override for "reply"
    """
    headers = build_reply_headers(action, message, ctx.identity, to)
    charset = ctx.settings.email_charset

    if not ctx.prefs.reply_quote:
        return ComposeText(body="", headers=headers, format="text", charset=charset)

    result = _extract(message, ctx, quote=True)
    sender = decode_header_value(message.get("From"))

    if ctx.prefs.reply_headers:
        pre = f"----- Message from {sender} ---------\n{header_block(message)}\n\n"
        post = f"\n\n----- End message from {sender} -----\n"
    else:
        pre = expand_attribution(ctx.prefs.attrib_text, message) + "\n\n"
        post = ""

    if result is None:
        return ComposeText(body=pre + NO_BODY_TEXT + post, headers=headers, charset=charset)

    if result.mode == "html":
        body = (
            f"<p>{text_to_html(pre.strip())}</p>"
            f'<blockquote type="cite">{result.text}</blockquote>'
        )
        if post:
            body += f"<p>{text_to_html(post.strip())}</p>"
    else:
        body = pre + result.text + post

    return ComposeText(body=body, headers=headers, format=result.mode, charset=result.charset)


def forward_message(message: Message, ctx: RequestContext) -> ComposeText:
    """Propose the body and headers of an inline forward."""
    headers = build_forward_headers(message)
    charset = ctx.settings.email_charset

    if not ctx.prefs.forward_bodytext:
        return ComposeText(body="", headers=headers, format="text", charset=charset)

    result = _extract(message, ctx)
    sender = decode_header_value(message.get("From"))

    pre = f"\n----- Forwarded message from {sender} -----\n{header_block(message)}\n\n"
    post = "\n\n----- End forwarded message -----\n"

    if result is None:
        return ComposeText(body=pre + NO_BODY_TEXT + post, headers=headers, charset=charset)

    if result.mode == "html":
        body = text_to_html(pre) + result.text + text_to_html(post)
    else:
        body = pre + result.text + post

    return ComposeText(body=body, headers=headers, format=result.mode, charset=result.charset)


async def attach_messages(session: ComposeSession, messages: List[Message]) -> Dict[str, str]:
    """
    Attach messages to the session as message/rfc822 parts.

    Returns:
        Dict with the derived subject
    """
    for message in messages:
        part = MIMEMessage(message)
        part.set_param("name", FORWARDED_MESSAGE_NAME)
        await session.add_from_part(part)

    return {"subject": forward_attachment_subject(messages)}
