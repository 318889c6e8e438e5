"""
Crypto Transform Interface

Signing and encryption of an assembled MIME part.
"""

from abc import ABC, abstractmethod
from email.message import Message
from typing import List, Optional


class CryptoTransform(ABC):
    """
    Applies a signature and/or encryption envelope to a MIME part.

    Operations that need the private key raise PassphraseRequiredError
    when it is locked and no passphrase was given.
    """

    @abstractmethod
    async def sign(self, part: Message, passphrase: Optional[str] = None) -> Message:
        pass

    @abstractmethod
    async def encrypt(self, part: Message, recipients: List[str]) -> Message:
        pass

    @abstractmethod
    async def sign_and_encrypt(
        self,
        part: Message,
        recipients: List[str],
        passphrase: Optional[str] = None,
    ) -> Message:
        pass

    @abstractmethod
    def public_key_part(self) -> Message:
        """The user's public certificate as an attachable part."""
