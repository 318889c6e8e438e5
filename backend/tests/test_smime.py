"""
Tests for the S/MIME transform.
"""

from datetime import datetime, timedelta, timezone

import pytest
from cryptography import x509
from cryptography.hazmat.primitives import hashes, serialization
from cryptography.hazmat.primitives.asymmetric import rsa
from cryptography.x509.oid import NameOID

from compose.exceptions import CryptoError, PassphraseRequiredError
from crypto_engine.smime import PASSPHRASE_HINT, SMimeTransform
from email_service.parts import text_part


def make_identity(email: str, passphrase: bytes = None):
    key = rsa.generate_private_key(public_exponent=65537, key_size=2048)
    name = x509.Name([
        x509.NameAttribute(NameOID.COMMON_NAME, email),
        x509.NameAttribute(NameOID.EMAIL_ADDRESS, email),
    ])
    now = datetime.now(timezone.utc)
    certificate = (
        x509.CertificateBuilder()
        .subject_name(name)
        .issuer_name(name)
        .public_key(key.public_key())
        .serial_number(x509.random_serial_number())
        .not_valid_before(now - timedelta(days=1))
        .not_valid_after(now + timedelta(days=30))
        .add_extension(x509.SubjectAlternativeName([x509.RFC822Name(email)]), critical=False)
        .sign(key, hashes.SHA256())
    )
    encryption = (
        serialization.BestAvailableEncryption(passphrase)
        if passphrase
        else serialization.NoEncryption()
    )
    key_pem = key.private_bytes(
        serialization.Encoding.PEM,
        serialization.PrivateFormat.PKCS8,
        encryption,
    )
    return certificate.public_bytes(serialization.Encoding.PEM), key_pem


@pytest.fixture(scope="module")
def alice():
    return make_identity("alice@example.com")


@pytest.fixture(scope="module")
def locked_alice():
    return make_identity("alice@example.com", b"secret")


@pytest.fixture(scope="module")
def bob():
    return make_identity("bob@x.com")


@pytest.fixture
def lookup(bob):
    certificates = {"bob@x.com": bob[0].decode()}

    async def _lookup(email):
        return certificates.get(email)

    return _lookup


class TestSign:

    @pytest.mark.asyncio
    async def test_detached_signature(self, alice, lookup):
        transform = SMimeTransform(*alice, lookup=lookup)

        signed = await transform.sign(text_part("hello"))

        assert signed.get_content_type() == "multipart/signed"
        assert signed["MIME-Version"] is None
        content, signature = signed.get_payload()
        assert content.get_payload().strip() == "hello"
        assert signature.get_content_type().endswith("pkcs7-signature")

    @pytest.mark.asyncio
    async def test_locked_key_needs_passphrase(self, locked_alice, lookup):
        transform = SMimeTransform(*locked_alice, lookup=lookup)

        with pytest.raises(PassphraseRequiredError) as exc:
            await transform.sign(text_part("hello"))

        assert exc.value.hint == PASSPHRASE_HINT

    @pytest.mark.asyncio
    async def test_wrong_passphrase(self, locked_alice, lookup):
        transform = SMimeTransform(*locked_alice, lookup=lookup)

        with pytest.raises(PassphraseRequiredError) as exc:
            await transform.sign(text_part("hello"), "wrong")

        assert "incorrect" in exc.value.message

    @pytest.mark.asyncio
    async def test_correct_passphrase(self, locked_alice, lookup):
        transform = SMimeTransform(*locked_alice, lookup=lookup)

        signed = await transform.sign(text_part("hello"), "secret")

        assert signed.get_content_type() == "multipart/signed"

    @pytest.mark.asyncio
    async def test_passphrase_ignored_for_unlocked_key(self, alice, lookup):
        signed = await SMimeTransform(*alice, lookup=lookup).sign(text_part("hello"), "unused")

        assert signed.get_content_type() == "multipart/signed"


class TestEncrypt:

    @pytest.mark.asyncio
    async def test_envelope(self, alice, lookup):
        encrypted = await SMimeTransform(*alice, lookup=lookup).encrypt(
            text_part("hello"), ["Bob <bob@x.com>"]
        )

        assert encrypted.get_content_type().endswith("pkcs7-mime")
        assert encrypted["MIME-Version"] is None
        assert b"hello" not in encrypted.as_bytes()

    @pytest.mark.asyncio
    async def test_missing_recipient_certificate(self, alice, lookup):
        with pytest.raises(CryptoError) as exc:
            await SMimeTransform(*alice, lookup=lookup).encrypt(text_part("hello"), ["carol@x.com"])

        assert exc.value.message == "No S/MIME public key found for carol@x.com."

    @pytest.mark.asyncio
    async def test_sign_and_encrypt(self, locked_alice, lookup):
        transform = SMimeTransform(*locked_alice, lookup=lookup)

        with pytest.raises(PassphraseRequiredError):
            await transform.sign_and_encrypt(text_part("hello"), ["bob@x.com"])

        encrypted = await transform.sign_and_encrypt(text_part("hello"), ["bob@x.com"], "secret")
        assert encrypted.get_content_type().endswith("pkcs7-mime")


class TestPublicKeyPart:

    def test_certificate_attached_as_der(self, alice):
        part = SMimeTransform(*alice).public_key_part()

        assert part.get_content_type() == "application/pkix-cert"
        assert part.get_filename() == "public_key.crt"
        certificate = x509.load_der_x509_certificate(part.get_payload(decode=True))
        assert certificate.public_bytes(serialization.Encoding.PEM) == alice[0]
