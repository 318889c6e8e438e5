"""
Tests for the compose session attachment store.
"""

import email
from email.mime.application import MIMEApplication
from email.mime.multipart import MIMEMultipart
from email.mime.text import MIMEText
from email.policy import compat32
from unittest.mock import patch

import pytest

from compose.exceptions import (
    AttachmentLimitError,
    EmptyFileError,
    SizeExceededError,
    StorageReadError,
    StorageWriteError,
    TransferError,
)
from compose.models import StorageKind, UploadedFile, UploadError
from compose.session import ComposeSession


def upload(name="report.pdf", content_type="application/pdf", data=b"%PDF-1.4 data", error=None):
    return UploadedFile(filename=name, content_type=content_type, data=data, error=error)


class TestAddFromUpload:

    @pytest.mark.asyncio
    async def test_declared_type_is_kept(self, session):
        slot = await session.add_from_upload(upload())

        att = session.attachments[slot]
        assert att.content_type == "application/pdf"
        assert att.size == len(b"%PDF-1.4 data")
        assert session.size == att.size
        assert session.modified is True

    @pytest.mark.asyncio
    async def test_octet_stream_is_sniffed(self, session):
        with patch("compose.session.sniff_content_type", return_value="image/png") as sniff:
            slot = await session.add_from_upload(
                upload("blob.bin", "application/octet-stream", b"\x89PNG\r\n")
            )

        sniff.assert_called_once()
        assert session.attachments[slot].content_type == "image/png"

    @pytest.mark.asyncio
    async def test_extension_used_when_sniffing_fails(self, session):
        with patch("compose.session.sniff_content_type", return_value=None):
            slot = await session.add_from_upload(upload("notes.txt", "", b"plain words"))

        assert session.attachments[slot].content_type == "text/plain"

    @pytest.mark.asyncio
    async def test_falls_back_to_octet_stream(self, session):
        with patch("compose.session.sniff_content_type", return_value=None):
            slot = await session.add_from_upload(upload("mystery", "", b"\x00\x01"))

        assert session.attachments[slot].content_type == "application/octet-stream"

    @pytest.mark.asyncio
    async def test_empty_file_rejected(self, session):
        with pytest.raises(EmptyFileError) as exc:
            await session.add_from_upload(upload(data=b""))

        assert "was empty" in exc.value.message
        assert session.number_of_attachments() == 0

    @pytest.mark.asyncio
    @pytest.mark.parametrize("error,fragment", [
        (UploadError.SIZE, "maximum allowed upload size"),
        (UploadError.PARTIAL, "partially uploaded"),
        (UploadError.REJECTED, "server configuration"),
    ])
    async def test_transfer_errors(self, session, error, fragment):
        with pytest.raises(TransferError) as exc:
            await session.add_from_upload(upload(error=error))

        assert fragment in exc.value.message
        assert session.number_of_attachments() == 0

    @pytest.mark.asyncio
    async def test_size_limit_leaves_store_unchanged(self, storages, make_settings):
        session = ComposeSession(None, storages, make_settings(attach_size_limit=20))
        await session.add_from_upload(upload(data=b"x" * 15))
        blobs_before = list(storages[StorageKind.FILE].root.rglob("*"))

        with pytest.raises(SizeExceededError):
            await session.add_from_upload(upload("big.pdf", data=b"y" * 6))

        assert session.number_of_attachments() == 1
        assert session.size == 15
        assert list(storages[StorageKind.FILE].root.rglob("*")) == blobs_before

    @pytest.mark.asyncio
    async def test_attachment_count_limit(self, storages, make_settings):
        session = ComposeSession(None, storages, make_settings(attach_count_limit=1))
        await session.add_from_upload(upload())

        assert session.remaining_slots() == 0
        with pytest.raises(AttachmentLimitError):
            await session.add_from_upload(upload("second.pdf"))

    @pytest.mark.asyncio
    async def test_batch_upload_collects_notices(self, session):
        success, notices = await session.add_files_from_upload([
            upload("a.pdf"),
            upload("empty.pdf", data=b""),
        ])

        assert success is False
        assert notices[0] == 'Added "a.pdf" as an attachment.'
        assert "empty.pdf" in notices[1]
        assert session.number_of_attachments() == 1

    @pytest.mark.asyncio
    async def test_vfs_storage_kind(self, storages, make_settings):
        session = ComposeSession(None, storages, make_settings(attachment_storage="vfs"))
        slot = await session.add_from_upload(upload())

        assert session.attachments[slot].locator.kind is StorageKind.VFS
        assert storages[StorageKind.VFS].writes == 1


class TestAccounting:

    def test_limits_unbounded_by_default(self, session):
        assert session.remaining_slots() is None
        assert session.remaining_bytes() is None
        assert session.max_attachment_size() == session._settings.file_upload_limit

    @pytest.mark.asyncio
    async def test_max_attachment_size_uses_remaining_bytes(self, storages, make_settings):
        session = ComposeSession(None, storages, make_settings(attach_size_limit=100))
        await session.add_from_upload(upload(data=b"z" * 40))

        assert session.remaining_bytes() == 60
        assert session.max_attachment_size() == 60

    @pytest.mark.asyncio
    async def test_size_tracks_adds_and_removes(self, session):
        first = await session.add_from_upload(upload(data=b"a" * 10))
        await session.add_from_upload(upload("b.pdf", data=b"b" * 5))

        await session.remove(first)

        assert session.size == sum(a.size for a in session.attachments.values()) == 5

    @pytest.mark.asyncio
    async def test_slot_ids_are_not_reused(self, session):
        first = await session.add_from_upload(upload())
        await session.remove(first)
        second = await session.add_from_upload(upload())

        assert second > first


class TestRemoval:

    @pytest.mark.asyncio
    async def test_remove_returns_names_and_deletes_blob(self, session, storages):
        slot = await session.add_from_upload(upload())
        locator = session.attachments[slot].locator

        names = await session.remove([slot])

        assert names == ["report.pdf"]
        assert not await storages[StorageKind.FILE].exists(locator.path, locator.key)

    @pytest.mark.asyncio
    async def test_remove_unknown_slot_is_ignored(self, session):
        await session.add_from_upload(upload())

        assert await session.remove([42]) == []
        assert session.number_of_attachments() == 1

    @pytest.mark.asyncio
    async def test_remove_all(self, session):
        await session.add_from_upload(upload("a.pdf"))
        await session.add_from_upload(upload("b.pdf"))

        assert sorted(await session.remove_all()) == ["a.pdf", "b.pdf"]
        assert session.size == 0

    @pytest.mark.asyncio
    async def test_failed_delete_keeps_slot_and_size(self, storages, make_settings):
        session = ComposeSession(None, storages, make_settings(attachment_storage="vfs"))
        kept = await session.add_from_upload(upload("a.txt", "text/plain", b"hello"))
        storages[StorageKind.VFS].fail_delete = True

        with pytest.raises(StorageWriteError):
            await session.remove(kept)

        assert kept in session.attachments
        assert session.size == sum(a.size for a in session.attachments.values()) == 5

        storages[StorageKind.VFS].fail_delete = False
        assert await session.remove(kept) == ["a.txt"]
        assert session.size == 0

    @pytest.mark.asyncio
    async def test_update_description(self, session):
        slot = await session.add_from_upload(upload())
        session.update(slot, "Quarterly numbers")

        assert session.attachment_info()[0]["description"] == "Quarterly numbers"


class TestBuild:

    @pytest.mark.asyncio
    async def test_build_part_contains_bytes(self, session):
        slot = await session.add_from_upload(upload(data=b"binary\x00content"))
        session.update(slot, "The report")

        part = await session.build(slot)

        assert part.get_content_type() == "application/pdf"
        assert part.get_filename() == "report.pdf"
        assert part["Content-Transfer-Encoding"] == "base64"
        assert part["Content-Description"] == "The report"
        assert part.get_payload(decode=True) == b"binary\x00content"

    @pytest.mark.asyncio
    async def test_build_after_blob_lost(self, session, storages):
        slot = await session.add_from_upload(upload())
        locator = session.attachments[slot].locator
        await storages[StorageKind.FILE].delete(locator.path, locator.key)

        with pytest.raises(StorageReadError):
            await session.build(slot)

    @pytest.mark.asyncio
    async def test_build_message_attachment(self, session, sample_message):
        from email.mime.message import MIMEMessage

        slot = await session.add_from_part(MIMEMessage(sample_message))
        part = await session.build(slot)

        assert part.get_content_type() == "message/rfc822"
        assert part.get_payload(0)["Subject"] == "Re: [team] Quarterly report"


class TestAddFromPart:

    @pytest.mark.asyncio
    async def test_payload_released_after_store(self, session):
        part = MIMEApplication(b"spreadsheet", "vnd.ms-excel")
        part.add_header("Content-Disposition", "attachment", filename="sheet.xls")
        part["Content-Description"] = "Budget"

        slot = await session.add_from_part(part)

        att = session.attachments[slot]
        assert att.name == "sheet.xls"
        assert att.content_type == "application/vnd.ms-excel"
        assert att.description == "Budget"
        assert await session.read(slot) == b"spreadsheet"
        assert part.get_payload() is None

    @pytest.mark.asyncio
    async def test_text_part_keeps_charset(self, session):
        part = MIMEText("Grüße", "plain", "utf-8")
        part.add_header("Content-Disposition", "attachment", filename="greeting.txt")

        slot = await session.add_from_part(part)
        built = await session.build(slot)

        assert session.attachments[slot].charset == "utf-8"
        assert built.get_content_charset() == "utf-8"

    @pytest.mark.asyncio
    async def test_octet_stream_part_typed_by_name(self, session):
        raw = (
            b"Content-Type: application/octet-stream; name=\"photo.jpg\"\r\n"
            b"Content-Transfer-Encoding: base64\r\n\r\n"
            b"/9j/4AAQ\r\n"
        )
        part = email.message_from_bytes(raw, policy=compat32)

        slot = await session.add_from_part(part)

        assert session.attachments[slot].content_type == "image/jpeg"

    @pytest.mark.asyncio
    async def test_multipart_part_keeps_every_child(self, session):
        related = MIMEMultipart("related")
        related.attach(MIMEText("first", "plain", "utf-8"))
        related.attach(MIMEText("second", "plain", "utf-8"))

        slot = await session.add_from_part(related)
        built = await session.build(slot)

        assert session.attachments[slot].content_type == "multipart/related"
        assert built.is_multipart()
        assert built["Content-Transfer-Encoding"] is None
        children = built.get_payload()
        assert [c.get_payload(decode=True) for c in children] == [b"first", b"second"]
        assert built.get_boundary() in built.as_string()


class TestSerialization:

    @pytest.mark.asyncio
    async def test_to_dict_from_dict(self, session, storages, settings):
        slot = await session.add_from_upload(upload())
        session.set_attach_vcard(True, "alice")
        session.draft_uid = 7

        restored = ComposeSession.from_dict(session.to_dict(), storages, settings)

        assert restored.cache_id == session.cache_id
        assert restored.size == session.size
        assert restored.attach_vcard is True
        assert restored.vcard_name == "alice"
        assert restored.draft_uid == 7
        assert await restored.read(slot) == b"%PDF-1.4 data"
        assert await restored.add_from_upload(upload("next.pdf")) == slot + 1
