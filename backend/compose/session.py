"""
Compose Session

The unit of in-progress message authoring. Owns the pending attachments
of one compose window and their backing blobs.

A session is not locked internally: callers must not run two requests
for the same cache id at the same time.
"""

import logging
import mimetypes
from email import encoders
from email.message import Message
from email.mime.base import MIMEBase
from email.mime.message import MIMEMessage
from email.parser import BytesParser
from email.policy import compat32
from typing import Any, Dict, Iterable, List, Optional, Tuple, Union
from uuid import uuid4

from config import Settings, settings as default_settings
from storage.blobs import BlobStorage
from .exceptions import (
    AttachmentLimitError,
    ComposeError,
    EmptyFileError,
    SizeExceededError,
    TransferError,
)
from .models import Attachment, BlobLocator, StorageKind, UploadedFile, UploadError

logger = logging.getLogger(__name__)

ATTACH_PATH = "compose"
DEFAULT_TYPE = "application/octet-stream"


def sniff_content_type(data: bytes) -> Optional[str]:
    """Guess a MIME type from the leading bytes using libmagic."""
    import magic

    detected = magic.from_buffer(data[:4096], mime=True)
    if not detected or detected == DEFAULT_TYPE:
        return None
    return detected


def type_from_filename(filename: str) -> Optional[str]:
    guessed, _ = mimetypes.guess_type(filename or "", strict=False)
    return guessed


class ComposeSession:
    """
    Pending attachments and compose flags for one cache id.

    Slot ids are assigned in increasing order and stay stable until
    the attachment is removed.
    """

    def __init__(
        self,
        cache_id: Optional[str],
        storages: Dict[StorageKind, BlobStorage],
        settings: Settings = default_settings,
    ):
        self.cache_id = cache_id or uuid4().hex
        self._storages = storages
        self._settings = settings
        self._slots: Dict[int, Attachment] = {}
        self._next_slot = 0
        self._size = 0

        self.attach_public_key = False
        self.attach_vcard = False
        self.vcard_name = ""
        self.link_attachments = False
        self.draft_uid: Optional[int] = None
        self.modified = False

    # Accounting

    @property
    def size(self) -> int:
        """Aggregate size of all attachments in bytes."""
        return self._size

    @property
    def attachments(self) -> Dict[int, Attachment]:
        return dict(self._slots)

    def number_of_attachments(self) -> int:
        return len(self._slots)

    def remaining_slots(self) -> Optional[int]:
        """Attachments still allowed, or None when there is no limit."""
        limit = self._settings.attach_count_limit
        if not limit:
            return None
        return max(limit - len(self._slots), 0)

    def remaining_bytes(self) -> Optional[int]:
        """Bytes still allowed, or None when there is no limit."""
        limit = self._settings.attach_size_limit
        if not limit:
            return None
        return max(limit - self._size, 0)

    def max_attachment_size(self) -> int:
        """Largest single file that can still be attached."""
        remaining = self.remaining_bytes()
        upload_limit = self._settings.file_upload_limit
        return upload_limit if remaining is None else min(upload_limit, remaining)

    def attachment_info(self) -> List[Dict[str, Any]]:
        return [
            {
                "number": slot,
                "name": att.name,
                "type": att.content_type,
                "size": att.size,
                "description": att.description or "",
            }
            for slot, att in self._slots.items()
        ]

    def _check_limits(self, name: str, size: int) -> None:
        remaining = self.remaining_bytes()
        if remaining is not None and size > remaining:
            raise SizeExceededError(
                f'Attached file "{name}" exceeds the attachment size limits. File NOT attached.'
            )
        slots = self.remaining_slots()
        if slots is not None and slots <= 0:
            raise AttachmentLimitError(
                f'Did not attach "{name}": the maximum number of attachments has been reached.'
            )

    # Adding

    async def add_from_upload(self, upload: UploadedFile) -> int:
        """
        Add an uploaded file.

        The declared type wins unless it is the generic octet-stream type;
        then the content is sniffed, then the file extension is tried.

        Returns:
            The new slot id
        """
        name = upload.filename
        if upload.error is UploadError.SIZE:
            raise TransferError(
                f'Did not attach "{name}" as the maximum allowed upload size has been exceeded.'
            )
        if upload.error is UploadError.PARTIAL:
            raise TransferError(f'Did not attach "{name}" as it was only partially uploaded.')
        if upload.error is not None:
            raise TransferError(
                f'Did not attach "{name}" as the server configuration did not allow the file to be uploaded.'
            )
        if upload.size == 0:
            raise EmptyFileError(f'Did not attach "{name}" as the file was empty.')

        self._check_limits(name, upload.size)

        content_type = upload.content_type
        if not content_type or content_type == DEFAULT_TYPE:
            content_type = (
                sniff_content_type(upload.data)
                or type_from_filename(name)
                or DEFAULT_TYPE
            )

        return await self._store(name, content_type, upload.data)

    async def add_from_part(self, part: Message) -> int:
        """
        Add an attachment from an existing MIME part.

        The part's payload is released once it has been persisted.
        """
        content_type = part.get_content_type()
        name = part.get_filename() or part.get_param("name") or ""

        if content_type == "message/rfc822":
            inner = part.get_payload(0) if part.is_multipart() else part.get_payload()
            data = inner.as_bytes() if isinstance(inner, Message) else str(inner).encode()
        elif part.is_multipart():
            data = part.as_bytes()
        else:
            data = part.get_payload(decode=True) or b""

        self._check_limits(name, len(data))

        if content_type == DEFAULT_TYPE:
            content_type = (
                type_from_filename(name)
                or sniff_content_type(data)
                or DEFAULT_TYPE
            )

        slot = await self._store(
            name,
            content_type,
            data,
            description=part.get("Content-Description"),
            charset=part.get_content_charset(),
        )
        part.set_payload(None)
        return slot

    async def add_files_from_upload(self, uploads: Iterable[UploadedFile]) -> Tuple[bool, List[str]]:
        """
        Add a batch of uploads.

        Returns:
            Tuple of (all files attached, notices for the user)
        """
        success = True
        notices = []
        for upload in uploads:
            try:
                await self.add_from_upload(upload)
                notices.append(f'Added "{upload.filename}" as an attachment.')
            except ComposeError as e:
                notices.append(e.message)
                success = False
        return success, notices

    async def _store(
        self,
        name: str,
        content_type: str,
        data: bytes,
        description: Optional[str] = None,
        charset: Optional[str] = None,
    ) -> int:
        kind = StorageKind(self._settings.attachment_storage)
        storage = self._storages[kind]

        await storage.gc(ATTACH_PATH, self._settings.attachment_gc_seconds)

        locator = BlobLocator(kind, ATTACH_PATH, uuid4().hex)
        await storage.write(locator.path, locator.key, data)

        slot = self._next_slot
        self._next_slot += 1
        self._slots[slot] = Attachment(
            name=name,
            content_type=content_type,
            size=len(data),
            locator=locator,
            description=description,
            charset=charset,
        )
        self._size += len(data)
        self.modified = True

        logger.debug("Stored attachment %s (%d bytes) in slot %d", name, len(data), slot)
        return slot

    # Removing and updating

    async def remove(self, slots: Union[int, Iterable[int]]) -> List[str]:
        """
        Delete attachments.

        Returns:
            Names of the removed attachments; unknown ids are skipped

        Raises:
            StorageWriteError: A blob could not be deleted; that slot and
                any after it are kept
        """
        if isinstance(slots, int):
            slots = [slots]

        names = []
        for slot in list(slots):
            att = self._slots.get(slot)
            if att is None:
                continue
            await self._storages[att.locator.kind].delete(att.locator.path, att.locator.key)
            del self._slots[slot]
            self._size -= att.size
            names.append(att.name)
            self.modified = True

        return names

    async def remove_all(self) -> List[str]:
        return await self.remove(list(self._slots))

    def update(self, slot: int, description: Optional[str] = None) -> None:
        att = self._slots.get(slot)
        if att is not None:
            att.description = description
            self.modified = True

    async def read(self, slot: int) -> bytes:
        att = self._slots[slot]
        return await self._storages[att.locator.kind].read(att.locator.path, att.locator.key)

    async def build(self, slot: int) -> Message:
        """
        Materialize an attachment as a MIME part with its contents.

        Raises:
            StorageReadError: If the backing blob is gone
        """
        att = self._slots[slot]
        data = await self.read(slot)

        if att.content_type == "message/rfc822":
            part = MIMEMessage(BytesParser(policy=compat32).parsebytes(data))
        elif att.content_type.startswith("multipart/"):
            part = BytesParser(policy=compat32).parsebytes(data)
            del part["Content-Disposition"]
            del part["Content-Description"]
            del part["MIME-Version"]
        else:
            maintype, _, subtype = att.content_type.partition("/")
            part = MIMEBase(maintype, subtype or "octet-stream")
            part.set_payload(data)
            encoders.encode_base64(part)
            if att.charset and maintype == "text":
                part.set_param("charset", att.charset)

        if att.name:
            part.set_param("name", att.name)
            part.add_header("Content-Disposition", att.disposition, filename=att.name)
        else:
            part.add_header("Content-Disposition", att.disposition)
        if att.description:
            part["Content-Description"] = att.description

        return part

    # Flags

    def set_attach_public_key(self, attach: bool) -> None:
        self.attach_public_key = attach
        self.modified = True

    def set_attach_vcard(self, attach: bool, name: str = "") -> None:
        self.attach_vcard = attach
        self.vcard_name = name
        self.modified = True

    def set_link_attachments(self, attach: bool) -> None:
        self.link_attachments = attach
        self.modified = True

    # Serialization

    def to_dict(self) -> Dict[str, Any]:
        return {
            "cache_id": self.cache_id,
            "next_slot": self._next_slot,
            "slots": {str(k): v.to_dict() for k, v in self._slots.items()},
            "attach_public_key": self.attach_public_key,
            "attach_vcard": self.attach_vcard,
            "vcard_name": self.vcard_name,
            "link_attachments": self.link_attachments,
            "draft_uid": self.draft_uid,
        }

    @classmethod
    def from_dict(
        cls,
        data: Dict[str, Any],
        storages: Dict[StorageKind, BlobStorage],
        settings: Settings = default_settings,
    ) -> "ComposeSession":
        session = cls(data["cache_id"], storages, settings)
        for key, value in data.get("slots", {}).items():
            att = Attachment.from_dict(value)
            session._slots[int(key)] = att
            session._size += att.size
        session._next_slot = data.get("next_slot", len(session._slots))
        session.attach_public_key = data.get("attach_public_key", False)
        session.attach_vcard = data.get("attach_vcard", False)
        session.vcard_name = data.get("vcard_name", "")
        session.link_attachments = data.get("link_attachments", False)
        session.draft_uid = data.get("draft_uid")
        return session
