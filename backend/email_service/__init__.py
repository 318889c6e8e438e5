from .delivery import DeliveryServices, build_and_send_message
from .drafts import save_draft, resume_draft, session_expire_draft, recover_session_expire_draft
from .imap_handler import FolderStore, ImapFolderStore
from .mime_builder import MimeAssembler
from .replies import reply_message, forward_message, attach_messages
from .smtp_handler import MailTransport, SmtpTransport
from .text_extractor import extract_message_text

__all__ = [
    "DeliveryServices",
    "build_and_send_message",
    "save_draft",
    "resume_draft",
    "session_expire_draft",
    "recover_session_expire_draft",
    "FolderStore",
    "ImapFolderStore",
    "MimeAssembler",
    "reply_message",
    "forward_message",
    "attach_messages",
    "MailTransport",
    "SmtpTransport",
    "extract_message_text",
]
