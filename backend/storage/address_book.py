"""
Address Book

Contact search for address expansion and import of new recipients.
"""

import logging
import sqlite3
from abc import ABC, abstractmethod
from typing import Dict, List

from compose.exceptions import StorageWriteError

logger = logging.getLogger(__name__)


class AddressBook(ABC):

    @abstractmethod
    async def search(self, source: str, term: str) -> List[Dict[str, str]]:
        """Contacts whose name or address contains term."""

    @abstractmethod
    async def existing(self, source: str, emails: List[str]) -> List[str]:
        """The lower-cased subset of emails already present in source."""

    @abstractmethod
    async def import_contact(self, source: str, name: str, email: str) -> None:
        pass

    @abstractmethod
    async def own_vcard(self, user: str, identity) -> str:
        """vCard of the current user."""


class SqlAddressBook(AddressBook):
    """Address book kept in the application database."""

    async def search(self, source: str, term: str) -> List[Dict[str, str]]:
        from storage.database import search_contacts

        return await search_contacts(source, term)

    async def existing(self, source: str, emails: List[str]) -> List[str]:
        from storage.database import contacts_with_emails

        return await contacts_with_emails(source, emails)

    async def import_contact(self, source: str, name: str, email: str) -> None:
        from storage.database import import_contact

        try:
            await import_contact(source, name, email)
        except sqlite3.Error as e:
            raise StorageWriteError(f"Could not add {email} to the address book: {e}")

    async def own_vcard(self, user: str, identity) -> str:
        name = identity.name or user
        return "\r\n".join([
            "BEGIN:VCARD",
            "VERSION:3.0",
            f"FN:{name}",
            f"N:{name};;;;",
            f"EMAIL;TYPE=INTERNET:{identity.from_addr}",
            "END:VCARD",
            "",
        ])
