import pytest
from fastapi.testclient import TestClient

from fakes import FakeAddressBook, FakeFolderStore, FakeHistory, FakeTransport


@pytest.fixture
def fake_services():
    from email_service.delivery import DeliveryServices

    return DeliveryServices(
        transport=FakeTransport(),
        folders=FakeFolderStore(),
        history=FakeHistory(),
        address_book=FakeAddressBook({"bob@example.org": "Bob Sender"}),
    )


@pytest.fixture
def client(fake_services):
    from api.dependencies import get_services
    from main import app

    app.dependency_overrides[get_services] = lambda: fake_services
    with TestClient(app) as client:
        yield client
    app.dependency_overrides.clear()


@pytest.fixture
def valid_token(client):
    from config import settings
    response = client.post(
        "/api/v1/auth/token",
        json={"app_secret": settings.api_token}
    )
    assert response.status_code == 200
    return response.json()["access_token"]


@pytest.fixture
def auth(valid_token):
    return {"Authorization": f"Bearer {valid_token}"}


@pytest.fixture
def cache_id(client, auth):
    response = client.post("/api/v1/compose/sessions", headers=auth)
    assert response.status_code == 200
    return response.json()["cache_id"]


class TestAuthRoutes:

    def test_health(self, client):
        response = client.get("/health")
        assert response.status_code == 200
        assert response.json()["status"] == "healthy"

    def test_token_generation_success(self, client):
        from config import settings
        response = client.post(
            "/api/v1/auth/token",
            json={"app_secret": settings.api_token}
        )
        assert response.status_code == 200
        data = response.json()
        assert "access_token" in data
        assert data["token_type"] == "bearer"

    def test_token_generation_invalid_secret(self, client):
        response = client.post(
            "/api/v1/auth/token",
            json={"app_secret": "wrong-secret"}
        )
        assert response.status_code == 401

    def test_auth_status_endpoint(self, client, auth):
        response = client.get("/api/v1/auth/status", headers=auth)
        assert response.status_code == 200
        assert response.json() == {"authenticated": True, "user": "frontend"}

    def test_compose_requires_token(self, client):
        response = client.post("/api/v1/compose/sessions")
        assert response.status_code == 401

    def test_invalid_token(self, client):
        response = client.post(
            "/api/v1/compose/sessions",
            headers={"Authorization": "Bearer not-a-token"}
        )
        assert response.status_code == 401


class TestSessionRoutes:

    def test_create_session(self, client, auth):
        response = client.post("/api/v1/compose/sessions", headers=auth)
        assert response.status_code == 200
        data = response.json()
        assert data["cache_id"]
        assert data["attachments"] == []
        assert data["size"] == 0

    def test_upload_and_list(self, client, auth, cache_id):
        response = client.post(
            f"/api/v1/compose/sessions/{cache_id}/attachments",
            headers=auth,
            files=[
                ("files", ("notes.txt", b"hello", "text/plain")),
                ("files", ("empty.txt", b"", "text/plain")),
            ],
        )
        assert response.status_code == 200
        data = response.json()
        assert data["success"] is False
        assert data["notices"][0] == 'Added "notes.txt" as an attachment.'
        assert "empty.txt" in data["notices"][1]

        session = client.get(f"/api/v1/compose/sessions/{cache_id}", headers=auth).json()
        assert [a["name"] for a in session["attachments"]] == ["notes.txt"]
        assert session["size"] == 5

    def test_describe_and_delete_attachment(self, client, auth, cache_id):
        client.post(
            f"/api/v1/compose/sessions/{cache_id}/attachments",
            headers=auth,
            files=[("files", ("notes.txt", b"hello", "text/plain"))],
        )

        response = client.patch(
            f"/api/v1/compose/sessions/{cache_id}/attachments/0",
            headers=auth,
            json={"description": "Meeting notes"},
        )
        assert response.json()["attachments"][0]["description"] == "Meeting notes"

        response = client.delete(f"/api/v1/compose/sessions/{cache_id}/attachments/0", headers=auth)
        assert response.json() == {"success": True, "removed": ["notes.txt"]}

    def test_session_options(self, client, auth, cache_id):
        response = client.put(
            f"/api/v1/compose/sessions/{cache_id}/options",
            headers=auth,
            json={"link_attachments": True},
        )
        assert response.status_code == 200

    def test_discard_session(self, client, auth, cache_id):
        response = client.delete(f"/api/v1/compose/sessions/{cache_id}", headers=auth)
        assert response.json()["success"] is True


class TestSendRoutes:

    def test_send(self, client, auth, cache_id, fake_services):
        response = client.post(
            f"/api/v1/compose/sessions/{cache_id}/send",
            headers=auth,
            json={"to": "bob@example.org", "subject": "Hi", "body": "Hello"},
        )
        assert response.status_code == 200
        data = response.json()
        assert data["success"] is True
        assert data["recipients"] == ["bob@example.org"]
        assert data["sent_saved"] is True

        envelope, message = fake_services.transport.submitted[0]
        assert envelope == ["bob@example.org"]
        assert message["From"] == "frontend@example.com"
        assert len(fake_services.folders.folders["Sent"]) == 1

    def test_invalid_address(self, client, auth, cache_id):
        response = client.post(
            f"/api/v1/compose/sessions/{cache_id}/send",
            headers=auth,
            json={"to": "jörg@example.org", "body": "Hello"},
        )
        assert response.status_code == 400
        data = response.json()
        assert data["success"] is False
        assert data["error_kind"] == "invalid_address"

    def test_transport_failure(self, client, auth, cache_id, fake_services):
        fake_services.transport.fail = True

        response = client.post(
            f"/api/v1/compose/sessions/{cache_id}/send",
            headers=auth,
            json={"to": "bob@example.org", "body": "Hello"},
        )
        assert response.status_code == 502
        assert response.json()["error_kind"] == "transport"

    def test_link_mode_forbidden(self, client, auth, cache_id):
        client.post(
            f"/api/v1/compose/sessions/{cache_id}/attachments",
            headers=auth,
            files=[("files", ("notes.txt", b"hello", "text/plain"))],
        )
        client.put(
            f"/api/v1/compose/sessions/{cache_id}/options",
            headers=auth,
            json={"link_attachments": True},
        )

        response = client.post(
            f"/api/v1/compose/sessions/{cache_id}/send",
            headers=auth,
            json={"to": "bob@example.org", "body": "Hello"},
        )
        assert response.status_code == 403
        assert response.json()["error"] == "Linked attachments are forbidden."

        session = client.get(f"/api/v1/compose/sessions/{cache_id}", headers=auth).json()
        assert len(session["attachments"]) == 1

    def test_save_draft(self, client, auth, cache_id, fake_services):
        response = client.post(
            f"/api/v1/compose/sessions/{cache_id}/draft",
            headers=auth,
            json={"to": "bob@example.org", "subject": "Later", "body": "Unfinished"},
        )
        assert response.status_code == 200
        data = response.json()
        assert data["folder"] == "Drafts"
        assert data["notice"] == 'The draft has been saved to the "Drafts" folder.'

        resumed = client.post(
            f"/api/v1/compose/sessions/{cache_id}/resume",
            headers=auth,
            params={"uid": data["uid"]},
        ).json()
        assert resumed["body"] == "Unfinished"
        assert resumed["headers"]["subject"] == "Later"


class TestReplyRoutes:

    def test_reply(self, client, auth, fake_services, sample_message_bytes):
        uid = fake_services.folders.put("INBOX", sample_message_bytes)

        response = client.post(
            "/api/v1/compose/reply",
            headers=auth,
            json={"uid": uid, "action": "reply_all"},
        )
        assert response.status_code == 200
        data = response.json()
        assert data["headers"]["to"] == "Bob Sender <bob@example.org>"
        assert data["headers"]["subject"] == "Re: Quarterly report"
        assert "> Numbers are attached." in data["body"]

    def test_reply_unknown_action(self, client, auth):
        response = client.post(
            "/api/v1/compose/reply",
            headers=auth,
            json={"uid": 1, "action": "bounce"},
        )
        assert response.status_code == 422

    def test_missing_message(self, client, auth):
        response = client.post("/api/v1/compose/reply", headers=auth, json={"uid": 999})
        assert response.status_code == 500
        assert response.json()["error_kind"] == "storage_read"

    def test_forward_inline(self, client, auth, cache_id, fake_services, sample_message_bytes):
        uid = fake_services.folders.put("INBOX", sample_message_bytes)

        response = client.post(
            f"/api/v1/compose/sessions/{cache_id}/forward",
            headers=auth,
            json={"uids": [uid]},
        )
        data = response.json()
        assert data["headers"]["subject"] == "Fwd: Quarterly report"
        assert "----- Forwarded message from" in data["body"]

    def test_forward_several_as_attachments(self, client, auth, cache_id, fake_services, sample_message_bytes):
        uids = [fake_services.folders.put("INBOX", sample_message_bytes) for _ in range(2)]

        response = client.post(
            f"/api/v1/compose/sessions/{cache_id}/forward",
            headers=auth,
            json={"uids": uids},
        )
        assert response.json()["headers"] == {"subject": "Fwd: 2 Forwarded Messages"}

        session = client.get(f"/api/v1/compose/sessions/{cache_id}", headers=auth).json()
        assert [a["type"] for a in session["attachments"]] == ["message/rfc822", "message/rfc822"]

    def test_expand_addresses(self, client, auth):
        response = client.get("/api/v1/compose/addresses/expand", headers=auth, params={"text": "bob"})
        assert response.json() == {"matches": ["Bob Sender <bob@example.org>"]}
