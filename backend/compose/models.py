"""
Compose Data Models
"""

from dataclasses import asdict, dataclass, field
from email.message import Message
from enum import Enum
from typing import Any, Dict, List, Optional, Tuple


class StorageKind(Enum):
    FILE = "file"
    VFS = "vfs"


class UploadError(Enum):
    """Transfer failures reported by the upload layer."""
    SIZE = "size"
    PARTIAL = "partial"
    REJECTED = "rejected"


class EncryptMode(Enum):
    NONE = "none"
    SIGN = "sign"
    ENCRYPT = "encrypt"
    SIGN_ENCRYPT = "sign_encrypt"

    @property
    def per_recipient(self) -> bool:
        """S/MIME envelopes are built one recipient at a time."""
        return self in (EncryptMode.ENCRYPT, EncryptMode.SIGN_ENCRYPT)


@dataclass(frozen=True)
class BlobLocator:
    """Where the bytes of a pending attachment live."""
    kind: StorageKind
    path: str
    key: str


@dataclass
class Attachment:
    """One pending outgoing file."""
    name: str
    content_type: str
    size: int
    locator: BlobLocator
    disposition: str = "attachment"
    description: Optional[str] = None
    charset: Optional[str] = None

    def to_dict(self) -> Dict[str, Any]:
        data = asdict(self)
        data["locator"] = {
            "kind": self.locator.kind.value,
            "path": self.locator.path,
            "key": self.locator.key,
        }
        return data

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "Attachment":
        loc = data["locator"]
        return cls(
            name=data["name"],
            content_type=data["content_type"],
            size=data["size"],
            locator=BlobLocator(StorageKind(loc["kind"]), loc["path"], loc["key"]),
            disposition=data.get("disposition", "attachment"),
            description=data.get("description"),
            charset=data.get("charset"),
        )


@dataclass
class UploadedFile:
    """A file received by the HTTP layer."""
    filename: str
    content_type: str
    data: bytes = b""
    error: Optional[UploadError] = None

    @property
    def size(self) -> int:
        return len(self.data)


@dataclass
class AddressGroup:
    name: str
    members: List[str] = field(default_factory=list)


@dataclass
class RecipientSet:
    """Validated recipients of an outgoing message."""
    addresses: List[str]
    headers: Dict[str, str]
    groups: List[AddressGroup] = field(default_factory=list)

    @property
    def count(self) -> int:
        return len(self.addresses)


@dataclass
class HeaderSet:
    to: str = ""
    cc: str = ""
    bcc: str = ""
    subject: str = ""
    in_reply_to: str = ""
    references: str = ""
    title: str = ""


@dataclass
class TextResult:
    text: str
    mode: str
    part_id: str
    charset: str


@dataclass
class ComposeText:
    """Body and headers proposed for a reply, forward or resumed draft."""
    body: str
    headers: Any
    format: str = "text"
    charset: Optional[str] = None
    identity: Optional[str] = None


@dataclass
class BuildOptions:
    """
    Options for a single assembly.

    html: body is HTML; a text rendering is derived for the alternative part.
    final: message will be sent (trailer, image inlining); False for drafts.
    attachments: include pending attachments.
    encrypt: signing/encryption transform applied to the root part.
    sender: sender address, added to multi-recipient encryption targets.
    """
    html: bool = False
    final: bool = True
    attachments: bool = True
    encrypt: EncryptMode = EncryptMode.NONE
    sender: Optional[str] = None


@dataclass
class MessageVariant:
    """One concrete MIME tree and the recipients it is built for."""
    message: Message
    recipients: List[str]


@dataclass
class AssembledMessage:
    variants: List[MessageVariant]
    sent_copy: MessageVariant


@dataclass
class SendOptions:
    """
    Options for build_and_send_message.

    save_sent: user asked for a sent-mail copy.
    sent_folder: folder receiving the copy.
    save_attachments: user accepted keeping attachments in the copy.
    reply_type: "reply" or "forward" when answering a message.
    reply_index: (folder, uid) of the message being answered.
    priority: X-Priority value 1-5.
    read_receipt: request a disposition notification.
    """
    save_sent: bool = False
    sent_folder: Optional[str] = None
    save_attachments: bool = False
    reply_type: Optional[str] = None
    reply_index: Optional[Tuple[str, int]] = None
    encrypt: EncryptMode = EncryptMode.NONE
    priority: Optional[int] = None
    read_receipt: bool = False
    user_agent: Optional[str] = None


@dataclass
class SendResult:
    sent_saved: bool
    message_id: str
    recipients: List[str]
    warnings: List[str] = field(default_factory=list)
