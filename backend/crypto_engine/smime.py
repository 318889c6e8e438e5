"""
S/MIME Transform

PKCS#7 signing and enveloping of outgoing messages. Recipient
certificates are looked up in the local certificate store.
"""

import logging
from email import encoders, message_from_bytes
from email.message import Message
from email.mime.base import MIMEBase
from email.policy import compat32
from email.utils import getaddresses
from typing import Awaitable, Callable, List, Optional

from cryptography import x509
from cryptography.hazmat.primitives import hashes, serialization
from cryptography.hazmat.primitives.serialization import pkcs7

from compose.exceptions import CryptoError, PassphraseRequiredError
from .base import CryptoTransform

logger = logging.getLogger(__name__)

PASSPHRASE_HINT = "smime_passphrase_dialog"

CertificateLookup = Callable[[str], Awaitable[Optional[str]]]


async def _lookup_certificate(email: str) -> Optional[str]:
    from storage.database import get_recipient_certificate

    return await get_recipient_certificate(email)


def _to_message(data: bytes) -> Message:
    # Output starts with its own MIME-Version header.
    message = message_from_bytes(data, policy=compat32)
    del message["MIME-Version"]
    return message


class SMimeTransform(CryptoTransform):
    """
    S/MIME using the user's certificate and private key.

    Args:
        certificate: PEM certificate of the user
        private_key: PEM private key, possibly passphrase protected
        lookup: Coroutine returning a recipient's PEM certificate
    """

    def __init__(
        self,
        certificate: bytes,
        private_key: bytes,
        lookup: CertificateLookup = _lookup_certificate,
    ):
        self.certificate = x509.load_pem_x509_certificate(certificate)
        self._private_key_pem = private_key
        self._lookup = lookup

    def _private_key(self, passphrase: Optional[str]):
        password = passphrase.encode() if passphrase else None
        try:
            return serialization.load_pem_private_key(self._private_key_pem, password=password)
        except TypeError:
            if password is not None:
                # Key is not encrypted.
                return serialization.load_pem_private_key(self._private_key_pem, password=None)
            raise PassphraseRequiredError(
                "The S/MIME passphrase is required to sign this message.",
                hint=PASSPHRASE_HINT,
            )
        except ValueError as e:
            logger.warning("Could not unlock S/MIME key: %s", e)
            raise PassphraseRequiredError(
                "The S/MIME passphrase is incorrect.",
                hint=PASSPHRASE_HINT,
            )

    async def _recipient_certificates(self, recipients: List[str]) -> List[x509.Certificate]:
        certificates = []
        for _, addr in getaddresses(recipients):
            if not addr:
                continue
            pem = await self._lookup(addr.lower())
            if not pem:
                raise CryptoError(f"No S/MIME public key found for {addr}.")
            certificates.append(x509.load_pem_x509_certificate(pem.encode()))
        if not certificates:
            raise CryptoError("No recipients to encrypt the message for.")
        return certificates

    def _sign_bytes(self, part: Message, passphrase: Optional[str]) -> bytes:
        key = self._private_key(passphrase)
        try:
            return (
                pkcs7.PKCS7SignatureBuilder()
                .set_data(part.as_bytes())
                .add_signer(self.certificate, key, hashes.SHA256())
                .sign(serialization.Encoding.SMIME, [pkcs7.PKCS7Options.DetachedSignature])
            )
        except ValueError as e:
            raise CryptoError(f"Could not sign the message: {e}")

    def _encrypt_bytes(self, data: bytes, certificates: List[x509.Certificate]) -> bytes:
        builder = pkcs7.PKCS7EnvelopeBuilder().set_data(data)
        for certificate in certificates:
            builder = builder.add_recipient(certificate)
        try:
            return builder.encrypt(serialization.Encoding.SMIME, [])
        except ValueError as e:
            raise CryptoError(f"Could not encrypt the message: {e}")

    async def sign(self, part: Message, passphrase: Optional[str] = None) -> Message:
        return _to_message(self._sign_bytes(part, passphrase))

    async def encrypt(self, part: Message, recipients: List[str]) -> Message:
        certificates = await self._recipient_certificates(recipients)
        return _to_message(self._encrypt_bytes(part.as_bytes(), certificates))

    async def sign_and_encrypt(
        self,
        part: Message,
        recipients: List[str],
        passphrase: Optional[str] = None,
    ) -> Message:
        certificates = await self._recipient_certificates(recipients)
        signed = _to_message(self._sign_bytes(part, passphrase))
        return _to_message(self._encrypt_bytes(signed.as_bytes(), certificates))

    def public_key_part(self) -> Message:
        part = MIMEBase("application", "pkix-cert")
        part.set_payload(self.certificate.public_bytes(serialization.Encoding.DER))
        encoders.encode_base64(part)
        part.add_header("Content-Disposition", "attachment", filename="public_key.crt")
        part["Content-Description"] = "S/MIME Public Key"
        return part
