"""
Tests for the SMTP transport and IMAP folder store with the network
clients mocked out.
"""

from email.mime.text import MIMEText
from unittest.mock import AsyncMock, MagicMock, patch

import aiosmtplib
import pytest
from imapclient.exceptions import IMAPClientError

from compose.exceptions import StorageReadError, StorageWriteError, TransportError
from email_service.imap_handler import ImapFolderStore
from email_service.smtp_handler import SmtpTransport


def _message():
    message = MIMEText("Hello", "plain", "utf-8")
    message["From"] = "Alice Example <alice@example.com>"
    message["To"] = "bob@example.org"
    message["Message-ID"] = "<m1@example.com>"
    return message


def _smtp_client():
    client = MagicMock()
    client.connect = AsyncMock()
    client.login = AsyncMock()
    client.send_message = AsyncMock()
    client.quit = AsyncMock()
    return client


class TestSmtpTransport:

    @pytest.mark.asyncio
    async def test_submit_uses_envelope_addresses(self, settings):
        client = _smtp_client()
        with patch("email_service.smtp_handler.aiosmtplib.SMTP", return_value=client):
            await SmtpTransport(settings).submit(
                ["Bob <bob@example.org>", "carol@example.net"], _message()
            )

        client.connect.assert_awaited_once()
        client.login.assert_not_called()
        _, kwargs = client.send_message.call_args
        assert kwargs["sender"] == "alice@example.com"
        assert kwargs["recipients"] == ["bob@example.org", "carol@example.net"]
        client.quit.assert_awaited_once()

    @pytest.mark.asyncio
    async def test_submit_logs_in_with_credentials(self, make_settings):
        settings = make_settings(smtp_username="alice", smtp_password="secret")
        client = _smtp_client()
        with patch("email_service.smtp_handler.aiosmtplib.SMTP", return_value=client):
            await SmtpTransport(settings).submit(["bob@example.org"], _message())

        client.login.assert_awaited_once_with("alice", "secret")

    @pytest.mark.asyncio
    async def test_smtp_error_becomes_transport_error(self, settings):
        client = _smtp_client()
        client.send_message.side_effect = aiosmtplib.SMTPException("550 Mailbox unavailable")
        with patch("email_service.smtp_handler.aiosmtplib.SMTP", return_value=client):
            with pytest.raises(TransportError) as exc:
                await SmtpTransport(settings).submit(["bob@example.org"], _message())

        assert "550" in exc.value.message

    @pytest.mark.asyncio
    async def test_connection_error_becomes_transport_error(self, settings):
        client = _smtp_client()
        client.connect.side_effect = ConnectionRefusedError("Connection refused")
        with patch("email_service.smtp_handler.aiosmtplib.SMTP", return_value=client):
            with pytest.raises(TransportError):
                await SmtpTransport(settings).submit(["bob@example.org"], _message())


class TestImapFolderStore:

    @pytest.fixture
    def client(self):
        client = MagicMock()
        with patch("email_service.imap_handler.IMAPClient", return_value=client):
            yield client

    @pytest.mark.asyncio
    async def test_append_returns_uid(self, settings, client):
        client.append.return_value = b"[APPENDUID 1700000000 42] APPEND completed"

        uid = await ImapFolderStore(settings).append("Sent", b"data", ["\\Seen"])

        assert uid == 42
        client.append.assert_called_once_with("Sent", b"data", flags=["\\Seen"])
        client.logout.assert_called_once()

    @pytest.mark.asyncio
    async def test_append_without_uidplus(self, settings, client):
        client.append.return_value = b"APPEND completed"

        assert await ImapFolderStore(settings).append("Sent", b"data", []) is None

    @pytest.mark.asyncio
    async def test_append_failure(self, settings, client):
        client.append.side_effect = IMAPClientError("over quota")

        with pytest.raises(StorageWriteError) as exc:
            await ImapFolderStore(settings).append("Sent", b"data", [])

        assert "over quota" in exc.value.message
        client.logout.assert_called_once()

    @pytest.mark.asyncio
    async def test_create_and_subscribe(self, settings, client):
        assert await ImapFolderStore(settings).create("Sent", subscribe=True)

        client.create_folder.assert_called_once_with("Sent")
        client.subscribe_folder.assert_called_once_with("Sent")

    @pytest.mark.asyncio
    async def test_set_flags(self, settings, client):
        await ImapFolderStore(settings).set_flags("INBOX", 7, ["\\Answered"], ["$Forwarded"])

        client.select_folder.assert_called_once_with("INBOX")
        client.add_flags.assert_called_once_with([7], ["\\Answered"])
        client.remove_flags.assert_called_once_with([7], ["$Forwarded"])

    @pytest.mark.asyncio
    async def test_fetch_message(self, settings, client):
        client.fetch.return_value = {7: {b"RFC822": _message().as_bytes()}}

        message = await ImapFolderStore(settings).fetch_message("INBOX", 7)

        assert message["Message-ID"] == "<m1@example.com>"

    @pytest.mark.asyncio
    async def test_fetch_missing_message(self, settings, client):
        client.fetch.return_value = {}

        with pytest.raises(StorageReadError):
            await ImapFolderStore(settings).fetch_message("INBOX", 7)
