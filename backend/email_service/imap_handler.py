"""
IMAP Handler

Folder store for sent copies, drafts and source messages.
Uses imapclient for IMAP operations.
"""

import email
import logging
import re
from abc import ABC, abstractmethod
from email.message import Message
from email.policy import compat32
from typing import List, Optional

from imapclient import IMAPClient
from imapclient.exceptions import IMAPClientError

from compose.exceptions import StorageError, StorageReadError, StorageWriteError
from config import Settings, settings as default_settings

logger = logging.getLogger(__name__)

_APPENDUID_RE = re.compile(rb"APPENDUID \d+ (\d+)")


class FolderStore(ABC):

    @abstractmethod
    async def exists(self, folder: str) -> bool:
        pass

    @abstractmethod
    async def create(self, folder: str, subscribe: bool = False) -> bool:
        pass

    @abstractmethod
    async def append(self, folder: str, data: bytes, flags: List[str]) -> Optional[int]:
        """Store a message. Returns its UID when the server reports one."""

    @abstractmethod
    async def set_flags(
        self,
        folder: str,
        uid: int,
        add: List[str],
        remove: Optional[List[str]] = None,
    ) -> None:
        pass

    @abstractmethod
    async def fetch_message(self, folder: str, uid: int) -> Message:
        pass


class ImapFolderStore(FolderStore):
    """Folder store backed by the configured IMAP server."""

    def __init__(self, settings: Settings = default_settings):
        self.settings = settings

    def _connect(self) -> IMAPClient:
        client = IMAPClient(
            self.settings.imap_host,
            port=self.settings.imap_port,
            ssl=self.settings.imap_ssl,
        )
        client.login(self.settings.imap_username, self.settings.imap_password)
        return client

    async def exists(self, folder: str) -> bool:
        try:
            client = self._connect()
            try:
                return client.folder_exists(folder)
            finally:
                client.logout()
        except (IMAPClientError, OSError) as e:
            raise StorageReadError(f"Could not check folder {folder}: {e}")

    async def create(self, folder: str, subscribe: bool = False) -> bool:
        try:
            client = self._connect()
            try:
                client.create_folder(folder)
                if subscribe:
                    client.subscribe_folder(folder)
            finally:
                client.logout()
        except (IMAPClientError, OSError) as e:
            logger.error("Failed to create folder %s: %s", folder, e)
            raise StorageWriteError(f"Could not create folder {folder}: {e}")

        logger.info("Created folder %s", folder)
        return True

    async def append(self, folder: str, data: bytes, flags: List[str]) -> Optional[int]:
        try:
            client = self._connect()
            try:
                response = client.append(folder, data, flags=flags)
            finally:
                client.logout()
        except (IMAPClientError, OSError) as e:
            logger.error("Failed to append to %s: %s", folder, e)
            raise StorageWriteError(f"Could not save message to {folder}: {e}")

        match = _APPENDUID_RE.search(response or b"")
        return int(match.group(1)) if match else None

    async def set_flags(
        self,
        folder: str,
        uid: int,
        add: List[str],
        remove: Optional[List[str]] = None,
    ) -> None:
        try:
            client = self._connect()
            try:
                client.select_folder(folder)
                if add:
                    client.add_flags([uid], add)
                if remove:
                    client.remove_flags([uid], remove)
            finally:
                client.logout()
        except (IMAPClientError, OSError) as e:
            raise StorageError(f"Could not set flags on {folder}/{uid}: {e}")

    async def fetch_message(self, folder: str, uid: int) -> Message:
        try:
            client = self._connect()
            try:
                client.select_folder(folder, readonly=True)
                data = client.fetch([uid], ["RFC822"])
            finally:
                client.logout()
        except (IMAPClientError, OSError) as e:
            raise StorageReadError(f"Could not fetch {folder}/{uid}: {e}")

        if uid not in data:
            raise StorageReadError(f"Message {uid} not found in {folder}")
        return email.message_from_bytes(data[uid][b"RFC822"], policy=compat32)
