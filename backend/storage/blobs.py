"""
Blob Storage

Backing storage for pending attachments, linked attachments and
session-expiry drafts. Two kinds share one interface:

- file: plain files below a root directory (transient storage)
- vfs: rows in the application database (object store)
"""

import logging
import time
from abc import ABC, abstractmethod
from pathlib import Path

from compose.exceptions import StorageReadError, StorageWriteError
from compose.models import StorageKind

logger = logging.getLogger(__name__)


class BlobStorage(ABC):
    """Keyed byte storage grouped by path."""

    kind: StorageKind

    @abstractmethod
    async def write(self, path: str, key: str, data: bytes) -> None:
        """Store data, replacing any existing blob. Raises StorageWriteError."""

    @abstractmethod
    async def read(self, path: str, key: str) -> bytes:
        """Load a blob. Raises StorageReadError if it is gone."""

    @abstractmethod
    async def delete(self, path: str, key: str) -> None:
        """Remove a blob; missing blobs are ignored. Raises StorageWriteError."""

    @abstractmethod
    async def rename(self, path: str, key: str, new_path: str, new_key: str) -> None:
        """Move a blob. Raises StorageWriteError."""

    @abstractmethod
    async def exists(self, path: str, key: str) -> bool:
        pass

    @abstractmethod
    async def gc(self, path: str, max_age: int) -> int:
        """Delete blobs under path older than max_age seconds."""


class FileBlobStorage(BlobStorage):

    kind = StorageKind.FILE

    def __init__(self, root: Path):
        self.root = Path(root)

    def _file(self, path: str, key: str) -> Path:
        target = (self.root / path / key).resolve()
        if self.root.resolve() not in target.parents:
            raise StorageWriteError(f"Invalid storage key: {path}/{key}")
        return target

    async def write(self, path: str, key: str, data: bytes) -> None:
        target = self._file(path, key)
        try:
            target.parent.mkdir(parents=True, exist_ok=True)
            target.write_bytes(data)
            target.chmod(0o600)
        except OSError as e:
            logger.error("Failed to write blob %s/%s: %s", path, key, e)
            raise StorageWriteError(f"Could not store {key}: {e}")

    async def read(self, path: str, key: str) -> bytes:
        try:
            return self._file(path, key).read_bytes()
        except OSError as e:
            raise StorageReadError(f"Could not read {key}: {e}")

    async def delete(self, path: str, key: str) -> None:
        try:
            self._file(path, key).unlink(missing_ok=True)
        except OSError as e:
            logger.error("Failed to delete blob %s/%s: %s", path, key, e)
            raise StorageWriteError(f"Could not delete {key}: {e}")

    async def rename(self, path: str, key: str, new_path: str, new_key: str) -> None:
        target = self._file(new_path, new_key)
        try:
            target.parent.mkdir(parents=True, exist_ok=True)
            self._file(path, key).replace(target)
        except OSError as e:
            logger.error("Failed to move blob %s/%s: %s", path, key, e)
            raise StorageWriteError(f"Could not move {key}: {e}")

    async def exists(self, path: str, key: str) -> bool:
        return self._file(path, key).is_file()

    async def gc(self, path: str, max_age: int) -> int:
        directory = self.root / path
        if not directory.is_dir():
            return 0

        cutoff = time.time() - max_age
        removed = 0
        for entry in directory.iterdir():
            if entry.is_file() and entry.stat().st_mtime < cutoff:
                entry.unlink(missing_ok=True)
                removed += 1

        if removed:
            logger.info("Garbage collected %d blobs from %s", removed, path)
        return removed


class SqlBlobStorage(BlobStorage):

    kind = StorageKind.VFS

    async def write(self, path: str, key: str, data: bytes) -> None:
        from storage.database import write_blob

        try:
            await write_blob(path, key, data)
        except Exception as e:
            logger.error("Failed to write blob %s/%s: %s", path, key, e)
            raise StorageWriteError(f"Could not store {key}: {e}")

    async def read(self, path: str, key: str) -> bytes:
        from storage.database import read_blob

        data = await read_blob(path, key)
        if data is None:
            raise StorageReadError(f"Could not read {key}: no such blob")
        return data

    async def delete(self, path: str, key: str) -> None:
        from storage.database import delete_blob

        try:
            await delete_blob(path, key)
        except Exception as e:
            logger.error("Failed to delete blob %s/%s: %s", path, key, e)
            raise StorageWriteError(f"Could not delete {key}: {e}")

    async def rename(self, path: str, key: str, new_path: str, new_key: str) -> None:
        from storage.database import rename_blob

        if not await rename_blob(path, key, new_path, new_key):
            raise StorageWriteError(f"Could not move {key}: no such blob")

    async def exists(self, path: str, key: str) -> bool:
        from storage.database import read_blob

        return await read_blob(path, key) is not None

    async def gc(self, path: str, max_age: int) -> int:
        from storage.database import purge_blobs

        removed = await purge_blobs(path, time.time() - max_age)
        if removed:
            logger.info("Garbage collected %d blobs from %s", removed, path)
        return removed


def create_blob_storages(root: Path) -> dict:
    """Backends for every storage kind, keyed by StorageKind."""
    return {
        StorageKind.FILE: FileBlobStorage(root),
        StorageKind.VFS: SqlBlobStorage(),
    }
