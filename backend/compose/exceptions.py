"""
Compose Exceptions

Every error carries a machine-readable ``kind`` so the HTTP layer can
report it without string matching.
"""

from typing import Optional


class ComposeError(Exception):
    """Base exception for compose and delivery failures."""

    kind = "compose"

    def __init__(self, message: str, hint: Optional[str] = None):
        super().__init__(message)
        self.message = message
        self.hint = hint


class ValidationError(ComposeError):
    """User input must be corrected before retrying."""
    kind = "validation"


class InvalidAddressError(ValidationError):
    kind = "invalid_address"


class NoRecipientsError(ValidationError):
    kind = "no_recipients"


class TooManyRecipientsError(ValidationError):
    kind = "too_many_recipients"


class SizeExceededError(ValidationError):
    kind = "size_exceeded"


class EmptyFileError(ValidationError):
    kind = "empty_file"


class TransferError(ValidationError):
    """Upload did not arrive intact."""
    kind = "transfer"


class AttachmentLimitError(ValidationError):
    kind = "attachment_limit"


class StorageError(ComposeError):
    """Blob or folder storage failure."""
    kind = "storage"


class StorageWriteError(StorageError):
    kind = "storage_write"


class StorageReadError(StorageError):
    kind = "storage_read"


class CryptoError(ComposeError):
    """Signing or encryption failed."""
    kind = "crypto"


class PassphraseRequiredError(CryptoError):
    """The private key is locked; the caller must prompt for a passphrase."""
    kind = "passphrase_required"


class TransportError(ComposeError):
    """Mail submission failed."""
    kind = "transport"


class ConfigurationError(ComposeError):
    """A policy is enabled but the collaborator it needs is not."""
    kind = "configuration"


class PolicyError(ComposeError):
    """An administrative policy forbids the requested action."""
    kind = "policy"
