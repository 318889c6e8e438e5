import os
import sys
import tempfile
from pathlib import Path

import pytest
import pytest_asyncio

backend_path = Path(__file__).parent.parent
sys.path.insert(0, str(backend_path))

os.environ.setdefault("SECRET_KEY", "test-secret-key-for-testing-only")
os.environ.setdefault("API_TOKEN", "test-api-token")
os.environ.setdefault("MAIL_DOMAIN", "example.com")
os.environ.setdefault("DATA_DIR", tempfile.mkdtemp(prefix="compose-tests-"))

from compose.context import Identity, Preferences, RequestContext  # noqa: E402
from compose.models import StorageKind  # noqa: E402
from compose.session import ComposeSession  # noqa: E402
from config import Settings  # noqa: E402
from storage.blobs import FileBlobStorage  # noqa: E402

from fakes import (  # noqa: E402
    FakeAddressBook,
    FakeFolderStore,
    FakeHistory,
    FakeTransport,
    MemoryBlobStorage,
)


@pytest.fixture
def make_settings(tmp_path):
    def _make(**overrides):
        values = {
            "data_dir": tmp_path / "data",
            "mail_domain": "example.com",
            "config_dir": tmp_path / "config",
        }
        values.update(overrides)
        return Settings(**values)
    return _make


@pytest.fixture
def settings(make_settings):
    return make_settings()


@pytest.fixture
def storages(tmp_path):
    return {
        StorageKind.FILE: FileBlobStorage(tmp_path / "blobs"),
        StorageKind.VFS: MemoryBlobStorage(),
    }


@pytest.fixture
def session(storages, settings):
    return ComposeSession(None, storages, settings)


@pytest.fixture
def identity():
    return Identity(
        from_addr="alice@example.com",
        name="Alice Example",
        alt_addresses=["alice@old.example.com"],
    )


@pytest.fixture
def ctx(identity, settings):
    return RequestContext(
        user="alice",
        identity=identity,
        prefs=Preferences(),
        settings=settings,
        remote_addr="192.0.2.10",
    )


@pytest.fixture
def transport():
    return FakeTransport()


@pytest.fixture
def folders():
    return FakeFolderStore()


@pytest.fixture
def history():
    return FakeHistory()


@pytest.fixture
def address_book():
    return FakeAddressBook()


@pytest_asyncio.fixture
async def db():
    from config import settings as app_settings
    from storage.database import close_db, init_database

    await init_database()
    yield
    await close_db()
    app_settings.db_path.unlink(missing_ok=True)


@pytest.fixture
def sample_message_bytes():
    return (
        b"From: Bob Sender <bob@example.org>\r\n"
        b"To: Alice Example <alice@example.com>, carol@example.net\r\n"
        b"Cc: dave@example.net, alice@old.example.com\r\n"
        b"Subject: Re: [team] Quarterly report\r\n"
        b"Date: Tue, 03 Mar 2026 10:15:00 +0000\r\n"
        b"Message-ID: <source-1@example.org>\r\n"
        b"References: <root@example.org>\r\n"
        b"MIME-Version: 1.0\r\n"
        b"Content-Type: text/plain; charset=us-ascii\r\n"
        b"\r\n"
        b"Numbers are attached.\r\n"
        b"See you Friday.   \r\n"
    )


@pytest.fixture
def sample_message(sample_message_bytes):
    import email
    from email.policy import compat32
    return email.message_from_bytes(sample_message_bytes, policy=compat32)
