"""
Compose Session Store

Persists compose sessions between requests, keyed by cache id.
"""

import logging
from typing import Dict, Optional

from compose.models import StorageKind
from compose.session import ComposeSession
from config import Settings, settings as default_settings
from .blobs import BlobStorage

logger = logging.getLogger(__name__)


class SessionStore:
    """Database-backed session store."""

    def __init__(
        self,
        storages: Dict[StorageKind, BlobStorage],
        settings: Settings = default_settings,
    ):
        self.storages = storages
        self.settings = settings

    async def open(self, cache_id: Optional[str] = None) -> ComposeSession:
        """Recover the session for cache_id, or start a new one."""
        if cache_id:
            session = await self.load(cache_id)
            if session is not None:
                return session
        return ComposeSession(cache_id, self.storages, self.settings)

    async def load(self, cache_id: str) -> Optional[ComposeSession]:
        from storage.database import load_compose_session

        data = await load_compose_session(cache_id)
        if data is None:
            return None
        return ComposeSession.from_dict(data, self.storages, self.settings)

    async def save(self, session: ComposeSession) -> None:
        from storage.database import save_compose_session

        if not session.modified:
            return
        await save_compose_session(session.cache_id, session.to_dict())
        session.modified = False

    async def discard(self, session: ComposeSession) -> None:
        """Purge the attachments of a session and forget it."""
        from storage.database import delete_compose_session

        await session.remove_all()
        await delete_compose_session(session.cache_id)
        logger.debug("Discarded compose session %s", session.cache_id)
