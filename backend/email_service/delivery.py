"""
Delivery

Validates, assembles, submits and files an outgoing message.
"""

import copy
import logging
from dataclasses import dataclass
from email.message import Message
from email.header import Header
from email.utils import formataddr, formatdate, getaddresses, make_msgid, parseaddr, quote
from typing import Callable, List, Optional

from compose.context import RequestContext
from compose.exceptions import StorageError, TransportError
from compose.models import BuildOptions, HeaderSet, SendOptions, SendResult
from compose.recipients import explode, parse_recipients, split_group
from compose.session import ComposeSession
from policy_engine.rules import ComposeRules
from policy_engine.validator import check_time_limit
from .mime_builder import MimeAssembler
from .parts import text_part

logger = logging.getLogger(__name__)

PRIORITY_LABELS = {
    1: "1 (Highest)",
    2: "2 (High)",
    3: "3 (Normal)",
    4: "4 (Low)",
    5: "5 (Lowest)",
}


@dataclass
class DeliveryServices:
    """Collaborators used to deliver and file messages."""
    transport: object
    folders: Optional[object] = None
    history: Optional[object] = None
    address_book: Optional[object] = None
    crypto: Optional[object] = None
    image_inliner: Optional[object] = None
    linker: Optional[object] = None
    trailer_hook: Optional[Callable[[str], str]] = None

    def assembler(self, ctx: RequestContext, session: ComposeSession) -> MimeAssembler:
        return MimeAssembler(
            ctx,
            session,
            crypto=self.crypto,
            image_inliner=self.image_inliner,
            linker=self.linker,
            address_book=self.address_book,
            trailer_hook=self.trailer_hook,
        )


def _envelope(addresses: List[str]) -> List[str]:
    return [addr for _, addr in getaddresses(addresses) if addr]


def message_headers(
    ctx: RequestContext,
    headers: HeaderSet,
    recipient_headers: dict,
    message_id: str,
    options: SendOptions,
) -> List[tuple]:
    """Header lines of an outgoing message, in order."""
    rules = ComposeRules(ctx.settings, ctx.prefs)
    identity = ctx.identity
    lines = [
        ("Message-ID", message_id),
        ("Date", formatdate(localtime=True)),
    ]

    if options.priority in PRIORITY_LABELS:
        lines.append(("X-Priority", PRIORITY_LABELS[options.priority]))

    if rules.read_receipt_allowed(options.read_receipt):
        lines.append(("Disposition-Notification-To", identity.from_addr))

    lines.append(("From", identity.formatted_from))

    if identity.reply_to and parseaddr(identity.reply_to)[1].lower() != identity.from_addr.lower():
        lines.append(("Reply-To", identity.reply_to))

    to = recipient_headers.get("to", "")
    cc = recipient_headers.get("cc", "")
    if to:
        lines.append(("To", to))
    elif not cc:
        lines.append(("To", "undisclosed-recipients:;"))
    if cc:
        lines.append(("Cc", cc))

    lines.append(("Subject", headers.subject or ""))

    if options.reply_type == "reply":
        if headers.references:
            lines.append(("References", headers.references))
        if headers.in_reply_to:
            lines.append(("In-Reply-To", headers.in_reply_to))

    lines.append(("User-Agent", options.user_agent or ctx.settings.user_agent))

    for name, value in ctx.settings.extra_headers.items():
        lines.append((name, value))

    return lines


ADDRESS_HEADERS = ("From", "To", "Cc", "Bcc", "Reply-To", "Disposition-Notification-To")
_GROUP_SPECIALS = set('()<>@,:;."[]')


def _encode_mailboxes(text: str) -> List[str]:
    return [formataddr(pair, charset="utf-8") for pair in getaddresses([text]) if pair[1]]


def _encode_group_name(name: str) -> str:
    if not name.isascii():
        return Header(name, "utf-8").encode()
    if _GROUP_SPECIALS.intersection(name):
        return f'"{quote(name)}"'
    return name


def encode_addresses(value: str) -> str:
    """RFC 2047 encode an address list, keeping group syntax intact."""
    pieces = []
    for token in explode(value):
        group = split_group(token)
        if group is None:
            pieces.extend(_encode_mailboxes(token))
            continue
        name, members = group
        pieces.append(f"{_encode_group_name(name)}: {', '.join(_encode_mailboxes(members))};")
    return ", ".join(pieces)


def encode_header(name: str, value: str):
    """RFC 2047 encode a header value that is not plain ASCII."""
    if value.isascii():
        return value
    if name in ADDRESS_HEADERS:
        return encode_addresses(value)
    return Header(value, "utf-8", header_name=name)


def _apply_headers(message: Message, lines: List[tuple]) -> None:
    for name, _ in lines:
        del message[name]
    for name, value in lines:
        message[name] = encode_header(name, value)


def strip_attachments(message: Message, charset: str = "utf-8") -> Message:
    """
    Copy of message with every part after the body replaced by a note
    naming the removed attachment.
    """
    if message.get_content_type() != "multipart/mixed":
        return message

    stripped = copy.deepcopy(message)
    parts = stripped.get_payload()
    for i in range(1, len(parts)):
        old = parts[i]
        note = (
            "[Attachment stripped: Original attachment type: "
            f'"{old.get_content_type()}", name: "{old.get_filename() or old.get_param("name") or ""}"]'
        )
        parts[i] = text_part(note, "plain", charset)
    return stripped


async def save_recipients(ctx: RequestContext, address_book, recipients: List[str]) -> List[str]:
    """
    Add recipients that are not yet known to the address book.

    Returns:
        Warnings for contacts that could not be added
    """
    prefs = ctx.prefs
    if not prefs.save_recipients or address_book is None or not prefs.add_source:
        return []

    parsed = [(name, addr) for name, addr in getaddresses(recipients) if addr]
    existing = set(await address_book.existing(prefs.add_source, [addr for _, addr in parsed]))

    warnings = []
    for name, addr in parsed:
        if addr.lower() in existing:
            continue
        existing.add(addr.lower())
        name = name.strip("\"'") or addr.partition("@")[0]
        try:
            await address_book.import_contact(prefs.add_source, name, addr)
            logger.info("Added %s to the address book of %s", addr, ctx.user)
        except StorageError as e:
            logger.warning("Could not add %s to the address book: %s", addr, e)
            warnings.append(f"Could not add {addr} to the address book.")
    return warnings


async def _set_source_flags(folders, options: SendOptions) -> Optional[str]:
    if folders is None or options.reply_index is None:
        return None

    folder, uid = options.reply_index
    try:
        if options.reply_type == "reply":
            await folders.set_flags(folder, uid, ["\\Answered"], ["\\Flagged"])
        elif options.reply_type == "forward":
            await folders.set_flags(folder, uid, ["$Forwarded"])
    except StorageError as e:
        logger.warning("Could not flag %s/%s: %s", folder, uid, e)
        return "Could not set flags on the original message."
    return None


async def build_and_send_message(
    ctx: RequestContext,
    session: ComposeSession,
    services: DeliveryServices,
    body: str,
    headers: HeaderSet,
    charset: str = "utf-8",
    html: bool = False,
    options: Optional[SendOptions] = None,
) -> SendResult:
    """
    Build and send a message, then file a copy and clean up.

    Args:
        ctx: Request context
        session: Compose session holding the attachments
        services: Delivery collaborators
        body: Message body
        headers: To/Cc/Bcc/Subject and threading headers
        charset: Charset of the body
        html: body is HTML
        options: Send options

    Returns:
        SendResult; degraded steps are reported as warnings

    Raises:
        ValidationError, ConfigurationError, CryptoError, TransportError
    """
    options = options or SendOptions()
    settings = ctx.settings
    prefs = ctx.prefs
    rules = ComposeRules(settings, prefs)

    recipients = parse_recipients(
        {"to": headers.to, "cc": headers.cc, "bcc": headers.bcc},
        ctx.mail_domain,
        settings.max_recipients,
    )

    await check_time_limit(services.history, ctx.user, recipients.count, settings)

    message_id = make_msgid(domain=ctx.mail_domain)
    header_lines = message_headers(ctx, headers, recipients.headers, message_id, options)

    assembled = await services.assembler(ctx, session).build_variants(
        recipients.addresses,
        body,
        charset,
        BuildOptions(html=html, encrypt=options.encrypt, sender=ctx.identity.from_addr),
    )

    action = options.reply_type or "new"
    for variant in assembled.variants:
        _apply_headers(variant.message, header_lines)
        error = None
        try:
            await services.transport.submit(_envelope(variant.recipients), variant.message)
        except TransportError as e:
            logger.error("Sending %s failed: %s", message_id, e.message)
            error = e

        if services.history is not None:
            await services.history.log(ctx.user, action, message_id, _envelope(variant.recipients), error is None)

        if error is not None:
            raise TransportError(f"There was an error sending your message: {error.message}")

    warnings = []

    if options.reply_type and headers.in_reply_to and settings.use_maillog and services.history is not None:
        await services.history.log_correlation(
            options.reply_type,
            headers.in_reply_to,
            ", ".join(recipients.addresses),
        )

    flag_warning = await _set_source_flags(services.folders, options)
    if flag_warning:
        warnings.append(flag_warning)

    logger.info(
        "%s Message sent to %s from %s",
        ctx.remote_addr,
        ", ".join(recipients.addresses),
        ctx.user,
    )

    sent_saved = False
    sent_folder = options.sent_folder
    if services.folders is not None and rules.save_sent_copy(options.save_sent, sent_folder):
        sent_copy = assembled.sent_copy.message
        if not any(v is assembled.sent_copy for v in assembled.variants):
            _apply_headers(sent_copy, header_lines)
        if headers.bcc and recipients.headers.get("bcc"):
            sent_copy["Bcc"] = encode_header("Bcc", recipients.headers["bcc"])

        if rules.strip_attachments_from_copy(options.save_attachments):
            sent_copy = strip_attachments(sent_copy, charset)

        try:
            if not await services.folders.exists(sent_folder):
                await services.folders.create(sent_folder, prefs.subscribe)
            await services.folders.append(sent_folder, sent_copy.as_bytes(), ["\\Seen"])
            sent_saved = True
        except StorageError as e:
            logger.warning("Could not save sent message to %s: %s", sent_folder, e)
            warnings.append(f"Message sent successfully, but not saved to {sent_folder}")

    try:
        await session.remove_all()
    except StorageError as e:
        logger.warning("Could not remove attachments of %s: %s", session.cache_id, e)
        warnings.append("Message sent successfully, but its attachments could not be removed")

    warnings.extend(await save_recipients(ctx, services.address_book, recipients.addresses))

    return SendResult(
        sent_saved=sent_saved,
        message_id=message_id,
        recipients=recipients.addresses,
        warnings=warnings,
    )
