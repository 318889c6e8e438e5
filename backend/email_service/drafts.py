"""
Drafts

Saving, resuming and session-expiry recovery of unsent messages.
"""

import hashlib
import logging
from email.message import Message
from email.utils import formatdate, getaddresses, make_msgid
from typing import Dict, Optional

from compose.context import RequestContext
from compose.exceptions import ConfigurationError, StorageError, StorageWriteError
from compose.headers import decode_header_value
from compose.models import BuildOptions, ComposeText, HeaderSet
from compose.recipients import RECIPIENT_FIELDS, parse_address_list
from compose.session import ComposeSession
from storage.blobs import BlobStorage
from .delivery import DeliveryServices, encode_header
from .text_extractor import extract_message_text, walk_parts

logger = logging.getLogger(__name__)

SESSION_DRAFT_PATH = "drafts"


def _session_draft_key(user: str) -> str:
    return hashlib.md5(user.encode()).hexdigest()


async def build_draft(
    ctx: RequestContext,
    session: ComposeSession,
    services: DeliveryServices,
    headers: HeaderSet,
    body: str,
    charset: str = "utf-8",
    html: bool = False,
) -> Message:
    """
    Build a draft message: no trailer, no image inlining, attachments
    embedded. Address headers are validated but may be empty.
    """
    message = (
        await services.assembler(ctx, session).build(
            [], body, charset, BuildOptions(html=html, final=False)
        )
    ).message

    lines = [
        ("Date", formatdate(localtime=True)),
        ("From", ctx.identity.formatted_from),
    ]
    for field in RECIPIENT_FIELDS:
        value = getattr(headers, field)
        if value:
            _, header, _ = parse_address_list(value, ctx.mail_domain)
            lines.append((field.capitalize(), header))
    lines.append(("Subject", headers.subject or ""))
    lines.append(("Message-ID", make_msgid(domain=ctx.mail_domain)))

    for name, value in lines:
        del message[name]
        message[name] = encode_header(name, value)
    return message


async def _store_draft(ctx: RequestContext, services: DeliveryServices, data: bytes) -> Optional[int]:
    prefs = ctx.prefs
    folder = prefs.drafts_folder
    if not folder:
        raise ConfigurationError("Saving the draft failed. No draft folder specified.")
    if services.folders is None:
        raise ConfigurationError("Saving the draft failed. No folder store is configured.")

    try:
        if not await services.folders.exists(folder):
            await services.folders.create(folder, prefs.subscribe)
    except StorageError as e:
        logger.error("Could not create drafts folder %s: %s", folder, e)
        raise StorageWriteError("Saving the draft failed. Could not create a drafts folder.")

    flags = ["\\Draft"]
    if not prefs.unseen_drafts:
        flags.append("\\Seen")

    try:
        return await services.folders.append(folder, data, flags)
    except StorageError as e:
        raise StorageWriteError(
            f"Saving the draft failed. This is what the server said: {e.message}"
        )


async def save_draft(
    ctx: RequestContext,
    session: ComposeSession,
    services: DeliveryServices,
    headers: HeaderSet,
    body: str,
    charset: str = "utf-8",
    html: bool = False,
) -> Dict[str, object]:
    """
    Save the message to the drafts folder.

    Returns:
        Dict with the folder, the UID of the draft and a notice

    Raises:
        ConfigurationError: No drafts folder is set
        StorageWriteError: The folder could not be created or written
    """
    message = await build_draft(ctx, session, services, headers, body, charset, html)
    uid = await _store_draft(ctx, services, message.as_bytes())

    session.draft_uid = uid
    session.modified = True

    folder = ctx.prefs.drafts_folder
    logger.info("Saved draft for %s to %s", ctx.user, folder)
    return {
        "folder": folder,
        "uid": uid,
        "notice": f'The draft has been saved to the "{folder}" folder.',
    }


def _matching_identity(ctx: RequestContext, message: Message) -> Optional[str]:
    own = set(ctx.identity.all_addresses())
    for _, addr in getaddresses([decode_header_value(message.get("From"))]):
        if addr.lower() in own:
            return ctx.identity.from_addr
    return None


async def resume_draft(
    ctx: RequestContext,
    session: ComposeSession,
    services: DeliveryServices,
    uid: int,
) -> ComposeText:
    """
    Load a draft back into a compose session.

    The body text is extracted and every other top-level part is added
    to the session as an attachment.
    """
    if services.folders is None:
        raise ConfigurationError("No folder store is configured.")

    message = await services.folders.fetch_message(ctx.prefs.drafts_folder, uid)

    result = extract_message_text(
        message,
        prefer_html=ctx.prefs.compose_html,
        rich_text=ctx.rich_text,
        email_charset=ctx.settings.email_charset,
    )
    body_id = result.part_id if result else None

    if message.is_multipart() and message.get_content_type() != "multipart/alternative":
        for part_id, part in walk_parts(message):
            if "." in part_id or part_id == "0":
                continue
            if body_id and (body_id == part_id or body_id.startswith(part_id + ".")):
                continue
            await session.add_from_part(part)

    session.draft_uid = uid
    session.modified = True

    headers = HeaderSet(
        to=decode_header_value(message.get("To")),
        cc=decode_header_value(message.get("Cc")),
        bcc=decode_header_value(message.get("Bcc")),
        subject=decode_header_value(message.get("Subject")),
    )
    return ComposeText(
        body=result.text if result else "",
        headers=headers,
        format=result.mode if result else "text",
        charset=result.charset if result else ctx.settings.email_charset,
        identity=_matching_identity(ctx, message),
    )


async def session_expire_draft(
    ctx: RequestContext,
    session: ComposeSession,
    services: DeliveryServices,
    storage: BlobStorage,
    headers: HeaderSet,
    body: str,
    charset: str = "utf-8",
    html: bool = False,
) -> None:
    """Keep the message being composed when the session expires."""
    message = await build_draft(ctx, session, services, headers, body, charset, html)
    await storage.write(SESSION_DRAFT_PATH, _session_draft_key(ctx.user), message.as_bytes())
    logger.info("Stored session-expiry draft for %s", ctx.user)


async def recover_session_expire_draft(
    ctx: RequestContext,
    services: DeliveryServices,
    storage: BlobStorage,
) -> Optional[str]:
    """
    Move a session-expiry draft into the drafts folder.

    Returns:
        A notice for the user, or None if there was nothing to recover
    """
    key = _session_draft_key(ctx.user)
    if not await storage.exists(SESSION_DRAFT_PATH, key):
        return None

    data = await storage.read(SESSION_DRAFT_PATH, key)
    await _store_draft(ctx, services, data)
    await storage.delete(SESSION_DRAFT_PATH, key)

    logger.info("Recovered session-expiry draft for %s", ctx.user)
    return (
        "A message you were composing when your session expired has been "
        "recovered. You may resume composing your message by going to your "
        "Drafts folder."
    )
