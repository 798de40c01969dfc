from __future__ import annotations

import sqlite3

import pytest

pytest.importorskip("fastapi")
pytest.importorskip("httpx")

from fastapi.testclient import TestClient

from portal.config import AppConfig
from portal.services.auth import AuthService, SessionSigner
from portal.services.storage import ContentRepository, PersistenceError
from portal.web import create_app


@pytest.fixture()
def client(temp_config: AppConfig, repository: ContentRepository) -> TestClient:
    return TestClient(create_app(repository, config=temp_config))


def _create_account(
    repository: ContentRepository,
    email: str,
    role: str,
    *,
    batches=(),
) -> int:
    service = AuthService(repository, SessionSigner("test-secret"))
    return service.create_user(email, "pw", role, assigned_batches=batches)


def _login(client: TestClient, email: str) -> None:
    response = client.post("/api/auth/login", json={"email": email, "password": "pw"})
    assert response.status_code == 200, response.text


@pytest.fixture()
def admin_client(client: TestClient, repository: ContentRepository) -> TestClient:
    _create_account(repository, "owner@example.com", "super_admin")
    _login(client, "owner@example.com")
    return client


def test_visitor_without_cookies_reaches_ads_access(client: TestClient) -> None:
    response = client.get("/", follow_redirects=False)
    assert response.status_code == 303
    assert response.headers["location"] == "/key-generation"

    page = client.get("/key-generation")
    assert page.status_code == 200
    assert "Continue with ads" in page.text
    assert "1 hours" in page.text

    ads = client.get("/key-generation/ads")
    assert ads.headers["set-cookie"] == "ads=true; Max-Age=3600; Path=/"
    assert 'content="2;url=/"' in ads.text

    protected = client.get("/batches")
    assert protected.status_code == 200
    assert 'id="ads-container"' in protected.text
    assert protected.text.count("monetag.js") == 1


def test_verified_cookie_renders_without_ads(client: TestClient) -> None:
    response = client.get("/set-verified.html?duration=7200", follow_redirects=False)
    assert response.status_code == 303
    assert response.headers["set-cookie"] == "verified=true; Max-Age=7200; Path=/"

    client.cookies.set("verified", "true")
    page = client.get("/")
    assert page.status_code == 200
    assert "ads-container" not in page.text
    assert "monetag.js" not in page.text


def test_set_verified_falls_back_to_configured_duration(client: TestClient) -> None:
    response = client.get("/set-verified.html?duration=soon", follow_redirects=False)

    assert response.headers["set-cookie"] == "verified=true; Max-Age=3600; Path=/"


def test_server_choice_redirects_after_delay(client: TestClient) -> None:
    page = client.get("/key-generation/server/2")

    assert page.status_code == 200
    assert "server=2&amp;redirect=set-verified" in page.text
    assert 'content="3;url=/set-verified.html?duration=3600"' in page.text
    assert client.get("/key-generation/server/3").status_code == 404


def test_admin_api_requires_session(client: TestClient) -> None:
    assert client.post("/api/batches", json={"name": "X"}).status_code == 401
    assert client.get("/api/settings/monetization").status_code == 401
    assert client.get("/api/auth/me").status_code == 401


def test_content_lifecycle(admin_client: TestClient) -> None:
    created = admin_client.post("/api/batches", json={"name": "JEE", "description": "2026"})
    assert created.status_code == 201
    assert created.json()["message"] == "Batch created successfully"
    batch_id = created.json()["batch"]["id"]

    subject = admin_client.post("/api/subjects", json={"batch_id": batch_id, "name": "Physics"})
    subject_id = subject.json()["subject"]["id"]
    chapter = admin_client.post("/api/chapters", json={"subject_id": subject_id, "title": "Waves"})
    assert chapter.json()["chapter"]["order_index"] == 1
    lecture = admin_client.post(
        "/api/lectures",
        json={
            "chapter_id": chapter.json()["chapter"]["id"],
            "title": "Sound",
            "video_url": "https://youtu.be/s",
            "dpp_url": "https://example.com/dpp.pdf",
        },
    )
    assert lecture.status_code == 201
    assert lecture.json()["lecture"]["uploaded_by"] == "owner@example.com"

    listing = admin_client.get("/api/batches").json()["batches"]
    assert listing[0]["subjects"][0]["chapters"][0]["lectures"][0]["title"] == "Sound"

    admin_client.cookies.set("verified", "true")
    page = admin_client.get(f"/batch/{batch_id}")
    assert "Sound" in page.text and "DPP" in page.text

    assert admin_client.delete(f"/api/batches/{batch_id}").status_code == 200
    assert admin_client.delete(f"/api/batches/{batch_id}").status_code == 404
    assert admin_client.get("/api/batches").json()["batches"] == []


def test_unknown_parent_is_reported(admin_client: TestClient) -> None:
    response = admin_client.post("/api/subjects", json={"batch_id": 404, "name": "Ghost"})

    assert response.status_code == 404


def test_live_class_status_updates(admin_client: TestClient, repository: ContentRepository) -> None:
    batch_id = repository.add_batch("Live batch")
    subject_id = repository.add_subject(batch_id, "Maths")
    chapter_id = repository.add_chapter(subject_id, "Limits")

    created = admin_client.post(
        "/api/live-classes",
        json={
            "title": "Limits live",
            "batch_id": batch_id,
            "subject_id": subject_id,
            "chapter_id": chapter_id,
            "scheduled_at": "2026-06-01T10:00:00",
            "live_url": "https://meet.example.com/limits",
        },
    )
    assert created.status_code == 201
    live_id = created.json()["live_class"]["id"]

    updated = admin_client.put(f"/api/live-classes/{live_id}/status", json={"status": "live"})
    assert updated.json()["message"] == "Live class marked live"

    admin_client.cookies.set("verified", "true")
    page = admin_client.get("/live-classes")
    assert "Join" in page.text and "Live batch" in page.text

    bad = admin_client.put(f"/api/live-classes/{live_id}/status", json={"status": "paused"})
    assert bad.status_code == 422


def test_uploader_limited_to_assigned_batches(
    client: TestClient, repository: ContentRepository
) -> None:
    assigned = repository.add_batch("Assigned")
    other = repository.add_batch("Other")
    assigned_subject = repository.add_subject(assigned, "Chem")
    other_subject = repository.add_subject(other, "Bio")
    _create_account(repository, "up@example.com", "uploader", batches=[assigned])
    _login(client, "up@example.com")

    assert client.post("/api/batches", json={"name": "Nope"}).status_code == 403
    allowed = client.post("/api/chapters", json={"subject_id": assigned_subject, "title": "Bonds"})
    assert allowed.status_code == 201
    denied = client.post("/api/chapters", json={"subject_id": other_subject, "title": "Cells"})
    assert denied.status_code == 403
    chapter_id = allowed.json()["chapter"]["id"]
    assert client.delete(f"/api/chapters/{chapter_id}").status_code == 403


def test_user_management_rules(admin_client: TestClient, repository: ContentRepository) -> None:
    created = admin_client.post(
        "/api/users",
        json={"email": "Helper@Example.com", "password": "pw", "role": "admin"},
    )
    assert created.status_code == 201
    assert created.json()["user"]["email"] == "helper@example.com"
    assert "password_hash" not in created.json()["user"]

    duplicate = admin_client.post(
        "/api/users",
        json={"email": "helper@example.com", "password": "pw", "role": "uploader"},
    )
    assert duplicate.status_code == 400

    owner = repository.find_user_by_email("owner@example.com")
    assert admin_client.delete(f"/api/users/{owner.id}").status_code == 403

    emails = [user["email"] for user in admin_client.get("/api/users").json()["users"]]
    assert emails == ["owner@example.com", "helper@example.com"]


def test_admin_cannot_create_admins(client: TestClient, repository: ContentRepository) -> None:
    _create_account(repository, "admin@example.com", "admin")
    _login(client, "admin@example.com")

    response = client.post(
        "/api/users", json={"email": "x@example.com", "password": "pw", "role": "admin"}
    )

    assert response.status_code == 403


def test_admin_cannot_manage_users(client: TestClient, repository: ContentRepository) -> None:
    _create_account(repository, "admin@example.com", "admin")
    helper_id = _create_account(repository, "helper@example.com", "uploader")
    _login(client, "admin@example.com")

    listed = client.get("/api/users")
    created = client.post(
        "/api/users", json={"email": "x@example.com", "password": "pw", "role": "uploader"}
    )
    deleted = client.delete(f"/api/users/{helper_id}")

    assert listed.status_code == 403
    assert created.status_code == 403
    assert deleted.status_code == 403
    assert deleted.json()["message"] == "Not allowed to manage users"
    assert repository.find_user_by_email("x@example.com") is None
    assert repository.get_user(helper_id) is not None


def test_deleted_user_identity_is_dropped(
    admin_client: TestClient, repository: ContentRepository
) -> None:
    helper_id = _create_account(repository, "helper@example.com", "admin")
    helper = TestClient(admin_client.app)
    _login(helper, "helper@example.com")
    identity = admin_client.app.state.portal.identity
    assert len(identity) == 2

    assert admin_client.delete(f"/api/users/{helper_id}").status_code == 200
    assert len(identity) == 1
    assert helper.get("/api/auth/me").status_code == 401

    admin_client.post("/api/auth/logout")
    assert len(identity) == 0
    assert admin_client.app.state.portal.content.snapshot.loaded is False


def test_rejected_session_is_signed_out(client: TestClient, repository: ContentRepository) -> None:
    user_id = _create_account(repository, "gone@example.com", "admin")
    _login(client, "gone@example.com")
    portal = client.app.state.portal
    assert portal.content.snapshot.loaded

    repository.remove_user(user_id)
    response = client.get("/api/auth/me")

    assert response.status_code == 401
    assert response.json()["message"] == "Account no longer exists"
    assert len(portal.identity) == 0
    assert portal.content.snapshot.loaded is False


def test_gate_settings_round_trip(admin_client: TestClient) -> None:
    initial = admin_client.get("/api/settings/monetization").json()
    assert initial["settings"]["access_duration"] == 3600
    assert len(initial["duration_options"]) == 7
    assert initial["instructions"]

    payload = {
        "access_duration": 86400,
        "server1_url": "https://short.example/one",
        "server2_url": "https://short.example/two",
        "linkshortify_enabled": False,
    }
    saved = admin_client.put("/api/settings/monetization", json=payload)
    assert saved.status_code == 200
    assert saved.json()["message"] == "Settings saved successfully"
    assert saved.json()["duration_label"] == "1 days"

    assert admin_client.get("/api/settings/monetization").json()["settings"] == payload
    assert "1 days" in admin_client.get("/key-generation").text

    ads = admin_client.get("/key-generation/ads")
    assert ads.headers["set-cookie"] == "ads=true; Max-Age=86400; Path=/"


def test_gate_settings_reject_unlisted_duration(admin_client: TestClient) -> None:
    response = admin_client.put(
        "/api/settings/monetization",
        json={"access_duration": 1000, "server1_url": "a", "server2_url": "b"},
    )

    assert response.status_code == 422


def test_backup_and_restore_endpoints(
    admin_client: TestClient, repository: ContentRepository
) -> None:
    repository.add_batch("Before backup")
    created = admin_client.post("/api/backups")
    assert created.status_code == 201
    backup_date = created.json()["backup"]["backup_date"]

    admin_client.post("/api/batches", json={"name": "After backup"})
    listed = admin_client.get("/api/backups").json()["backups"]
    assert listed[0]["backup_date"] == backup_date

    restored = admin_client.post("/api/backups/restore", json={"backup_date": backup_date})
    assert restored.status_code == 200
    names = [batch["name"] for batch in admin_client.get("/api/batches").json()["batches"]]
    assert names == ["Before backup"]

    missing = admin_client.post("/api/backups/restore", json={"backup_date": "1990-01-01"})
    assert missing.status_code == 404


def test_logout_ends_session(admin_client: TestClient) -> None:
    assert admin_client.get("/api/auth/me").json()["user"]["role"] == "super_admin"

    response = admin_client.post("/api/auth/logout")

    assert response.json()["message"] == "Signed out"
    assert admin_client.get("/api/auth/me").status_code == 401


def test_failed_write_reports_message_and_keeps_snapshot(
    admin_client: TestClient, repository: ContentRepository, monkeypatch: pytest.MonkeyPatch
) -> None:
    assert admin_client.post("/api/batches", json={"name": "Kept"}).status_code == 201
    content = admin_client.app.state.portal.content
    version = content.snapshot.version

    def _fail(*args, **kwargs):
        raise PersistenceError("disk full")

    monkeypatch.setattr(repository, "add_batch", _fail)
    response = admin_client.post("/api/batches", json={"name": "Lost"})

    assert response.status_code == 500
    assert response.json()["message"] == "Failed to create batch"
    assert content.snapshot.version == version
    names = [batch["name"] for batch in admin_client.get("/api/batches").json()["batches"]]
    assert names == ["Kept"]


def test_key_generation_survives_malformed_settings(
    client: TestClient, temp_config: AppConfig
) -> None:
    with sqlite3.connect(temp_config.database_file) as connection:
        connection.execute(
            "INSERT INTO settings(key, value, updated_at) VALUES (?, ?, ?)",
            ("monetization", "not json", "2026-01-01T00:00:00"),
        )

    page = client.get("/key-generation")
    assert page.status_code == 200
    assert "1 hours" in page.text

    ads = client.get("/key-generation/ads")
    assert ads.status_code == 200
    assert ads.headers["set-cookie"] == "ads=true; Max-Age=3600; Path=/"


def test_key_generation_survives_settings_load_failure(
    client: TestClient, repository: ContentRepository, monkeypatch: pytest.MonkeyPatch
) -> None:
    def _fail(key):
        raise PersistenceError("database is locked")

    monkeypatch.setattr(repository, "get_setting", _fail)

    page = client.get("/key-generation")
    assert page.status_code == 200
    assert "1 hours" in page.text
    ads = client.get("/key-generation/ads")
    assert ads.headers["set-cookie"] == "ads=true; Max-Age=3600; Path=/"
