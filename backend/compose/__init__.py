"""
Compose Package

Compose sessions, recipients and reply/forward headers.
"""

from .context import Identity, Preferences, RequestContext
from .exceptions import ComposeError
from .models import EncryptMode, HeaderSet, StorageKind

__all__ = [
    "Identity",
    "Preferences",
    "RequestContext",
    "ComposeError",
    "EncryptMode",
    "HeaderSet",
    "StorageKind",
]
