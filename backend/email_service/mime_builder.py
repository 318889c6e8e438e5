"""
MIME Message Builder

Assembles the body text, pending attachments, inline images, linked
attachments and the signing/encryption transform of a compose session
into the MIME tree that is sent or saved.

Nesting, outermost first:

    multipart/mixed           attachments, link info, public key, vCard
      multipart/alternative   only for HTML messages
        text/plain            format=flowed
        multipart/related     inline images, final messages only
          text/html
"""

import logging
import os
from email.message import Message
from email.mime.multipart import MIMEMultipart
from typing import Callable, List, Optional

from compose.context import RequestContext
from compose.exceptions import ConfigurationError, PolicyError
from compose.models import AssembledMessage, BuildOptions, EncryptMode, MessageVariant
from compose.session import ComposeSession
from policy_engine.rules import ComposeRules
from .flowed import to_flowed
from .html_filters import html_to_text, text_to_html, tidy_html
from .parts import text_part

logger = logging.getLogger(__name__)

TEXT_DESCRIPTION = "Plaintext Version of Message"
HTML_DESCRIPTION = "HTML Version of Message"
LINK_INFO_DESCRIPTION = "Attachment Information"


def _is_mixed(part: Message) -> bool:
    return part.get_content_type() == "multipart/mixed"


class MimeAssembler:
    """
    Builds outgoing MIME trees for one compose session.

    Args:
        ctx: Request context
        session: Compose session holding the pending attachments
        crypto: Signing/encryption transform
        image_inliner: Inliner for remote images of HTML messages
        linker: Linker for link-mode attachments
        address_book: Address book providing the user's vCard
        trailer_hook: Transform applied to the trailer text
    """

    def __init__(
        self,
        ctx: RequestContext,
        session: ComposeSession,
        crypto=None,
        image_inliner=None,
        linker=None,
        address_book=None,
        trailer_hook: Optional[Callable[[str], str]] = None,
    ):
        self.ctx = ctx
        self.session = session
        self.crypto = crypto
        self.image_inliner = image_inliner
        self.linker = linker
        self.address_book = address_book
        self.trailer_hook = trailer_hook
        self.rules = ComposeRules(ctx.settings, ctx.prefs)
        self._link_trailer: Optional[str] = None

    def load_trailer(self) -> str:
        """Trailer text appended to final messages, or an empty string."""
        path = self.ctx.settings.trailer_file
        if not path.is_file():
            return ""
        trailer = os.path.expandvars(path.read_text(encoding="utf-8"))
        if self.trailer_hook is not None:
            trailer = self.trailer_hook(trailer)
        return "\n" + trailer if trailer else ""

    async def _link_attachments(self) -> Optional[str]:
        if self._link_trailer is None and self.session.number_of_attachments():
            if self.linker is None:
                allowed, reason = self.rules.can_link()
                if not allowed:
                    raise PolicyError(reason)
                raise ConfigurationError("Attachment linking is not configured.")
            self._link_trailer = await self.linker.link(self.session, self.ctx.user, self.ctx.prefs)
        return self._link_trailer

    async def _vcard_part(self) -> Optional[Message]:
        if self.address_book is None:
            logger.warning("vCard requested but no address book is configured")
            return None
        vcard = await self.address_book.own_vcard(self.ctx.user, self.ctx.identity)
        name = (self.session.vcard_name or self.ctx.identity.name or self.ctx.user) + ".vcf"
        part = text_part(vcard, "x-vcard", "utf-8", disposition=None)
        part.add_header("Content-Disposition", "attachment", filename=name)
        return part

    async def _apply_crypto(
        self,
        root: Message,
        recipients: List[str],
        options: BuildOptions,
    ) -> Message:
        allowed, reason = self.rules.can_use_mode(options.encrypt, self.crypto is not None)
        if not allowed:
            raise ConfigurationError(reason)

        passphrase = self.ctx.passphrase
        if options.encrypt is EncryptMode.SIGN:
            return await self.crypto.sign(root, passphrase)

        targets = list(recipients)
        if options.sender and not options.encrypt.per_recipient:
            targets.append(options.sender)
        if options.encrypt is EncryptMode.ENCRYPT:
            return await self.crypto.encrypt(root, targets)
        return await self.crypto.sign_and_encrypt(root, targets, passphrase)

    async def build(
        self,
        recipients: List[str],
        body: str,
        charset: str = "utf-8",
        options: Optional[BuildOptions] = None,
    ) -> MessageVariant:
        """
        Build one message.

        Args:
            recipients: Recipients this variant is built for
            body: Body text, HTML if options.html is set
            charset: Charset of the text parts
            options: Build options

        Returns:
            MessageVariant whose message is the base part

        Raises:
            PolicyError, StorageReadError, CryptoError, PassphraseRequiredError
        """
        options = options or BuildOptions()
        settings = self.ctx.settings

        html_body = None
        if options.html:
            html_body = tidy_html(body)
            text_body = html_to_text(html_body)
        else:
            text_body = body

        if options.final and settings.append_trailer:
            trailer = self.load_trailer()
            if trailer:
                text_body += trailer
                if html_body is not None:
                    html_body += text_to_html(trailer)

        link_trailer = None
        if (
            options.attachments
            and options.final
            and self.rules.use_link_mode(self.session.link_attachments)
        ):
            link_trailer = await self._link_attachments()

        if html_body is None:
            if link_trailer:
                text_body += "\n-----\n" + link_trailer
            body_part = text_part(to_flowed(text_body, delsp=True), "plain", charset, flowed=True)
        else:
            plain = text_part(
                to_flowed(text_body, delsp=True),
                "plain",
                charset,
                flowed=True,
                description=TEXT_DESCRIPTION,
            )
            html = text_part(html_body, "html", charset, description=HTML_DESCRIPTION)
            if options.final and self.image_inliner is not None:
                html = await self.image_inliner.inline(html)
            body_part = MIMEMultipart("alternative")
            body_part.attach(plain)
            body_part.attach(html)

        root = body_part
        if html_body is not None and link_trailer:
            root = MIMEMultipart("mixed")
            root.attach(body_part)
            root.attach(text_part(link_trailer, "plain", charset, description=LINK_INFO_DESCRIPTION))
        elif options.attachments and link_trailer is None and self.session.number_of_attachments():
            root = MIMEMultipart("mixed")
            root.attach(body_part)
            for slot in self.session.attachments:
                root.attach(await self.session.build(slot))

        extras = []
        if self.session.attach_public_key:
            if self.crypto is None:
                logger.warning("Public key requested but no crypto transform is configured")
            else:
                extras.append(self.crypto.public_key_part())
        if self.session.attach_vcard:
            vcard = await self._vcard_part()
            if vcard is not None:
                extras.append(vcard)
        if extras:
            if not _is_mixed(root):
                wrapper = MIMEMultipart("mixed")
                wrapper.attach(root)
                root = wrapper
            for extra in extras:
                root.attach(extra)

        if options.encrypt is not EncryptMode.NONE:
            root = await self._apply_crypto(root, recipients, options)

        if "MIME-Version" not in root:
            root["MIME-Version"] = "1.0"

        return MessageVariant(message=root, recipients=list(recipients))

    async def build_variants(
        self,
        recipients: List[str],
        body: str,
        charset: str = "utf-8",
        options: Optional[BuildOptions] = None,
    ) -> AssembledMessage:
        """
        Build every message needed to deliver to recipients.

        Per-recipient encryption yields one variant per recipient plus a
        separate sent-folder copy encrypted for the sender; otherwise a
        single variant serves both purposes.
        """
        options = options or BuildOptions()

        if not options.encrypt.per_recipient:
            variant = await self.build(recipients, body, charset, options)
            return AssembledMessage(variants=[variant], sent_copy=variant)

        variants = []
        for recipient in recipients:
            variants.append(await self.build([recipient], body, charset, options))
        sender = options.sender or self.ctx.identity.from_addr
        sent_copy = await self.build([sender], body, charset, options)
        return AssembledMessage(variants=variants, sent_copy=sent_copy)
