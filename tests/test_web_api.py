from __future__ import annotations

import asyncio
import io
from typing import Dict

import pytest

pytest.importorskip("fastapi")
pytest.importorskip("httpx")

from fastapi.testclient import TestClient
from PIL import Image

from backoffice.services.documents import DocumentRepository
from backoffice.services.mailer import MailDeliveryError
from backoffice.services.uploads import UPLOAD_COLLECTION
from backoffice.web import create_app


class RecordingMailer:
    def __init__(self) -> None:
        self.sent = []

    def send_password_reset(self, recipient: str, name: str, token: str) -> str:
        self.sent.append((recipient, token))
        return token


class FailingMailer:
    def send_password_reset(self, recipient: str, name: str, token: str) -> str:
        raise MailDeliveryError("SMTP is not configured")


def _png_bytes(color: str = "red") -> bytes:
    buffer = io.BytesIO()
    Image.new("RGB", (32, 32), color).save(buffer, format="PNG")
    return buffer.getvalue()


@pytest.fixture()
def mailer() -> RecordingMailer:
    return RecordingMailer()


@pytest.fixture()
def client(temp_config, repository: DocumentRepository, mailer: RecordingMailer) -> TestClient:
    app = create_app(repository, config=temp_config, mailer=mailer)
    return TestClient(app)


def _login(client: TestClient, email: str, password: str) -> Dict[str, str]:
    response = client.post("/api/auth/login", json={"email": email, "password": password})
    assert response.status_code == 200, response.text
    client.cookies.clear()
    return {"Authorization": f"Bearer {response.json()['access_token']}"}


@pytest.fixture()
def root_headers(client: TestClient) -> Dict[str, str]:
    client.app.state.accounts.create_super_admin("Root", "root@example.com", "rootpass1")
    return _login(client, "root@example.com", "rootpass1")


@pytest.fixture()
def admin_headers(client: TestClient) -> Dict[str, str]:
    client.app.state.accounts.register("Editor", "editor@example.com", "editorpass1")
    return _login(client, "editor@example.com", "editorpass1")


def test_login_sets_session_cookie(client: TestClient) -> None:
    client.app.state.accounts.create_super_admin("Root", "root@example.com", "rootpass1")

    assert client.get("/api/auth/me").json() == {"error": "Not authenticated"}

    failed = client.post("/api/auth/login", json={"email": "root@example.com", "password": "nope"})
    assert failed.status_code == 401
    assert failed.json() == {"error": "Invalid email or password"}

    response = client.post("/api/auth/login", json={"email": "root@example.com", "password": "rootpass1"})
    assert response.status_code == 200
    body = response.json()
    assert body["token_type"] == "bearer"
    assert body["user"]["role"] == "super_admin"
    assert "password" not in body["user"]
    assert "backoffice_session" in response.cookies

    me = client.get("/api/auth/me")
    assert me.status_code == 200
    assert me.json()["user"]["email"] == "root@example.com"

    client.post("/api/auth/logout")
    client.cookies.clear()
    assert client.get("/api/auth/me").status_code == 401


def test_password_checks_run_off_the_event_loop(client: TestClient, monkeypatch: pytest.MonkeyPatch) -> None:
    accounts = client.app.state.accounts
    accounts.create_super_admin("Root", "root@example.com", "rootpass1")
    seen = []

    def _tracked(method):
        def wrapper(*args):
            try:
                asyncio.get_running_loop()
            except RuntimeError:
                seen.append((method.__name__, "worker"))
            else:
                seen.append((method.__name__, "event loop"))
            return method(*args)

        return wrapper

    monkeypatch.setattr(accounts, "authenticate", _tracked(accounts.authenticate))
    monkeypatch.setattr(accounts, "register", _tracked(accounts.register))

    assert client.post("/api/auth/login", json={"email": "root@example.com", "password": "rootpass1"}).status_code == 200
    registered = client.post(
        "/api/auth/register",
        json={"name": "Bia", "email": "bia@example.com", "password": "password123", "confirmPassword": "password123"},
    )
    assert registered.status_code == 201
    assert seen == [("authenticate", "worker"), ("register", "worker")]


def test_register_validation_and_duplicates(client: TestClient) -> None:
    mismatch = client.post(
        "/api/auth/register",
        json={"name": "Ana", "email": "ana@example.com", "password": "password123", "confirmPassword": "password321"},
    )
    assert mismatch.status_code == 400
    assert mismatch.json()["error"] == "Invalid data"
    assert mismatch.json()["details"]["fieldErrors"] == {"confirmPassword": ["Passwords do not match"]}

    payload = {"name": "Ana", "email": "ana@example.com", "password": "password123", "confirmPassword": "password123"}
    created = client.post("/api/auth/register", json=payload)
    assert created.status_code == 201
    assert created.json()["email"] == "ana@example.com"

    duplicate = client.post("/api/auth/register", json=payload)
    assert duplicate.status_code == 409
    assert duplicate.json() == {"error": "Email already registered"}


def test_admin_management_requires_super_admin(
    client: TestClient, root_headers: Dict[str, str], admin_headers: Dict[str, str]
) -> None:
    denied = client.get("/api/admins", headers=admin_headers)
    assert denied.status_code == 403
    assert denied.json() == {"error": "Access denied"}

    pending = client.get("/api/admins", params={"status": "pending"}, headers=root_headers).json()["data"]
    assert [admin["email"] for admin in pending] == ["editor@example.com"]
    editor_id = pending[0]["_id"]

    approved = client.patch(f"/api/admins/{editor_id}/approve", headers=root_headers)
    assert approved.json()["message"] == "Admin approved"
    again = client.patch(f"/api/admins/{editor_id}/approve", headers=root_headers)
    assert again.json()["message"] == "Admin already approved"

    me = client.get("/api/auth/me", headers=root_headers).json()["user"]
    self_delete = client.delete(f"/api/admins/{me['_id']}", headers=root_headers)
    assert self_delete.status_code == 400

    deleted = client.delete(f"/api/admins/{editor_id}", headers=root_headers)
    assert deleted.json() == {"message": "Admin deleted"}
    assert client.get("/api/auth/me", headers=admin_headers).status_code == 401


def test_book_crud_cycle(client: TestClient, admin_headers: Dict[str, str]) -> None:
    assert client.post("/api/books", json={"title": "Livro"}).status_code == 401

    invalid = client.post("/api/books", json={"author": "Ana"}, headers=admin_headers)
    assert invalid.status_code == 400
    assert invalid.json()["details"]["fieldErrors"] == {"title": ["Field required"]}

    created = client.post("/api/books", json={"title": "Livro Bom", "author": "Ana"}, headers=admin_headers)
    assert created.status_code == 201
    book = created.json()
    assert book["slug"] == "livro-bom"
    assert book["id"] == book["_id"]
    assert book["published"] is False

    assert client.get(f"/api/books/{book['_id']}").status_code == 401
    detail = client.get(f"/api/books/{book['_id']}", headers=admin_headers)
    assert detail.json()["title"] == "Livro Bom"

    updated = client.put(f"/api/books/{book['_id']}", json={"title": "Livro Melhor"}, headers=admin_headers)
    assert updated.json()["slug"] == "livro-melhor"

    assert client.get("/api/books").json() == []
    published = client.patch(f"/api/books/{book['_id']}/publish", headers=admin_headers)
    assert published.json()["published_at"]
    assert [item["title"] for item in client.get("/api/books").json()] == ["Livro Melhor"]

    envelope = client.get("/api/books", params={"page": 1, "pageSize": 10}).json()
    assert envelope["pagination"]["total"] == 1

    deleted = client.delete(f"/api/books/{book['_id']}", headers=admin_headers)
    assert deleted.json() == {"message": "Book deleted"}

    missing = client.get(f"/api/books/{book['_id']}", headers=admin_headers)
    assert missing.status_code == 404
    assert missing.json() == {"error": "Book not found"}

    malformed = client.put("/api/books/123", json={"title": "X"}, headers=admin_headers)
    assert malformed.status_code == 400
    assert malformed.json() == {"error": "Invalid id"}


def test_cd_public_detail_and_tracks(client: TestClient, admin_headers: Dict[str, str]) -> None:
    created = client.post(
        "/api/cds",
        json={"title": "Ao Vivo", "company": "Selo", "tracks": [{"name": "Um"}, {"name": "Dois"}]},
        headers=admin_headers,
    )
    assert created.status_code == 201
    cd = created.json()
    assert [track["name"] for track in cd["track"]] == ["Um", "Dois"]
    first_id, second_id = [track["_id"] for track in cd["track"]]

    public = client.get("/api/cds/ao-vivo")
    assert public.status_code == 200
    assert public.json()["_id"] == cd["_id"]
    missing = client.get("/api/cds/does-not-exist")
    assert missing.status_code == 404
    assert missing.json() is None

    appended = client.post(
        f"/api/cds/{cd['_id']}/tracks", json={"track": {"name": "Três"}}, headers=admin_headers
    )
    assert appended.status_code == 201
    third_id = appended.json()["track"]["_id"]

    reordered = client.put(
        f"/api/cds/{cd['_id']}/tracks/reorder", json={"order": [third_id, first_id]}, headers=admin_headers
    )
    assert reordered.json()["order"] == [third_id, first_id, second_id]

    removed = client.delete(f"/api/cds/{cd['_id']}/tracks/{second_id}", headers=admin_headers)
    assert removed.json() == {"message": "Track removed"}

    other = client.post("/api/cds", json={"title": "Outro", "tracks": [{"name": "Alheia"}]}, headers=admin_headers)
    foreign_id = other.json()["track"][0]["_id"]
    foreign = client.delete(f"/api/cds/{cd['_id']}/tracks/{foreign_id}", headers=admin_headers)
    assert foreign.status_code == 404
    assert foreign.json() == {"error": "CdTrack not found"}
    assert client.get(f"/api/cd-tracks/{foreign_id}", headers=admin_headers).status_code == 200

    standalone = client.get("/api/cd-tracks", headers=admin_headers).json()
    assert sorted(track["name"] for track in standalone) == ["Alheia", "Três", "Um"]

    renamed = client.put(f"/api/cd-tracks/{first_id}", json={"name": "Um (ao vivo)"}, headers=admin_headers)
    assert renamed.json()["name"] == "Um (ao vivo)"

    client.delete(f"/api/cd-tracks/{third_id}", headers=admin_headers)
    detail = client.get(f"/api/cds/{cd['_id']}").json()
    assert [track["name"] for track in detail["track"]] == ["Um (ao vivo)"]


def test_dvd_video_url_is_validated(client: TestClient, admin_headers: Dict[str, str]) -> None:
    rejected = client.post(
        "/api/dvds", json={"title": "Show", "videoUrl": "https://example.com/video"}, headers=admin_headers
    )
    assert rejected.status_code == 400
    assert rejected.json()["details"]["fieldErrors"] == {"videoUrl": ["Provide a Vimeo or YouTube URL"]}

    accepted = client.post(
        "/api/dvds", json={"title": "Show", "videoUrl": "https://vimeo.com/123456"}, headers=admin_headers
    )
    assert accepted.status_code == 201


def test_messages_flow(client: TestClient, admin_headers: Dict[str, str]) -> None:
    invalid = client.post(
        "/api/messages",
        json={"name": "Ana", "email": "not-an-email", "city": "Recife", "state": "PE", "message": "Oi"},
        headers=admin_headers,
    )
    assert invalid.status_code == 400
    assert "email" in invalid.json()["details"]["fieldErrors"]

    message = client.post(
        "/api/messages",
        json={"name": "Ana", "email": "ana@example.com", "city": "Recife", "state": "PE", "message": "Oi"},
        headers=admin_headers,
    ).json()
    assert message["publicada"] is False
    assert message["response"] == ""

    answered = client.put(f"/api/messages/{message['_id']}", json={"response": " Olá! "}, headers=admin_headers)
    assert answered.json()["response"] == "Olá!"

    unpublished = client.patch(f"/api/messages/{message['_id']}/unpublish", headers=admin_headers)
    assert unpublished.json()["publicada"] is False


def test_lyrics_list_requires_admin(client: TestClient, admin_headers: Dict[str, str]) -> None:
    assert client.get("/api/lyrics").status_code == 401

    client.post("/api/lyrics", json={"title": "Letra"}, headers=admin_headers)
    listed = client.get("/api/lyrics", headers=admin_headers).json()

    assert listed["pagination"] == {"page": 1, "limit": 20, "total": 1, "totalPages": 1}


def test_upload_lifecycle(
    client: TestClient, admin_headers: Dict[str, str], repository: DocumentRepository
) -> None:
    files = {"file": ("cover.png", _png_bytes(), "image/png")}
    assert client.post("/api/upload", files=files).status_code == 401

    created = client.post("/api/upload", files=files, data={"folder": "covers"}, headers=admin_headers)
    assert created.status_code == 201
    upload = created.json()
    assert upload["url"].startswith("/uploads/covers/")

    duplicate = client.post("/api/upload", files=files, headers=admin_headers)
    assert duplicate.status_code == 200
    assert duplicate.json()["_id"] == upload["_id"]

    served = client.get(upload["url"])
    assert served.status_code == 200
    assert served.content == _png_bytes()
    assert client.get("/uploads/../secret.txt").status_code == 404

    missing_file = client.post("/api/upload", data={"folder": "covers"}, headers=admin_headers)
    assert missing_file.status_code == 400
    assert missing_file.json() == {"error": "File is required"}

    unsupported = client.post(
        "/api/upload", files={"file": ("notes.txt", b"hello", "text/plain")}, headers=admin_headers
    )
    assert unsupported.json() == {"error": "Unsupported file type"}

    book = client.post(
        "/api/books", json={"title": "Com Capa", "cover": upload["_id"]}, headers=admin_headers
    ).json()
    assert book["cover"]["_id"] == upload["_id"]

    in_use = client.delete(f"/api/upload/{upload['_id']}", headers=admin_headers)
    assert in_use.status_code == 400
    assert in_use.json()["related"][0]["ref"] == book["_id"]

    client.delete(f"/api/books/{book['_id']}", headers=admin_headers)
    assert repository.get(UPLOAD_COLLECTION, upload["_id"])["deleted"] is True
    assert client.delete(f"/api/upload/{upload['_id']}", headers=admin_headers).json() == {"message": "File deleted"}
    assert client.delete("/api/upload/xyz", headers=admin_headers).json() == {"error": "Invalid id"}


def test_media_dashboard_and_usage(client: TestClient, admin_headers: Dict[str, str]) -> None:
    client.post("/api/upload", files={"file": ("a.png", _png_bytes("blue"), "image/png")}, headers=admin_headers)
    client.post("/api/books", json={"title": "Livro"}, headers=admin_headers)

    media = client.get("/api/media", params={"type": "image"}, headers=admin_headers).json()
    assert [item["name"] for item in media["data"]] == ["a.png"]

    usage = client.get("/api/storage/usage", headers=admin_headers).json()["usage"]
    assert usage["files"] == 1

    dashboard = client.get("/api/dashboard", headers=admin_headers).json()
    assert dashboard["collections"]["books"]["total"] == 1
    assert dashboard["storage"]["files"] == 1
    assert client.get("/api/dashboard").status_code == 401


def test_forgot_password(client: TestClient, mailer: RecordingMailer, temp_config, repository) -> None:
    unknown = client.post("/api/auth/forgot-password", json={"email": "ghost@example.com"})
    assert unknown.status_code == 200
    assert mailer.sent == []

    client.app.state.accounts.register("Eva", "eva@example.com", "password123")
    client.post("/api/auth/forgot-password", json={"email": "eva@example.com"})
    token = mailer.sent[0][1]

    reset = client.post(
        "/api/auth/forgot-password/reset",
        json={"token": token, "password": "brandnew99", "confirmPassword": "brandnew99"},
    )
    assert reset.json() == {"message": "Password updated"}
    _login(client, "eva@example.com", "brandnew99")

    reused = client.post(
        "/api/auth/forgot-password/reset",
        json={"token": token, "password": "brandnew99", "confirmPassword": "brandnew99"},
    )
    assert reused.status_code == 400
    assert reused.json() == {"error": "Invalid token"}

    failing = TestClient(create_app(repository, config=temp_config, mailer=FailingMailer()))
    broken = failing.post("/api/auth/forgot-password", json={"email": "eva@example.com"})
    assert broken.status_code == 500
    assert broken.json() == {"error": "Failed to send email"}


def test_admin_shell_gate(client: TestClient, root_headers: Dict[str, str], admin_headers: Dict[str, str]) -> None:
    index = client.get("/", follow_redirects=False)
    assert index.headers["location"] == "/admin"

    anonymous = client.get("/admin/books", follow_redirects=False)
    assert anonymous.status_code == 307
    assert anonymous.headers["location"] == "/auth/login?callbackUrl=/admin/books"

    shell = client.get("/admin/books", headers=admin_headers)
    assert shell.status_code == 200
    assert "__BACKOFFICE_ROOT_PATH__" not in shell.text

    bounced = client.get("/admin/users", headers=admin_headers, follow_redirects=False)
    assert bounced.headers["location"] == "/admin"
    assert client.get("/admin/users", headers=root_headers).status_code == 200

    login_page = client.get("/auth/login")
    assert login_page.status_code == 200
    assert "__BACKOFFICE_ROOT_PATH__" not in login_page.text
