import pytest
from werkzeug.security import generate_password_hash

from app.portal import create_app
from app.portal.auth import _login_attempts
from app.portal.db import session_scope
from app.portal.models import Account, AuditEvent, Base, Role

FAST_HASH = "pbkdf2:sha256:1000"


@pytest.fixture()
def app(tmp_path, monkeypatch):
    monkeypatch.setenv("SECRET_KEY", "test-secret")
    monkeypatch.setenv("JWT_SECRET", "test-jwt-secret")
    monkeypatch.setenv("DATABASE_URL", f"sqlite:///{tmp_path/'test.db'}")
    monkeypatch.setenv("ENV", "test")
    monkeypatch.setenv("PASSWORD_HASH_METHOD", FAST_HASH)
    _login_attempts.clear()

    app = create_app()

    engine = app.extensions["sqlalchemy_engine"]
    Base.metadata.create_all(bind=engine)

    with session_scope(app) as s:
        s.add_all(
            [
                Account(name="Admin", email="admin@city.gov", password_hash=generate_password_hash("adminpass1", method=FAST_HASH), role=Role.ADMIN),
                Account(name="Sam", email="sam@city.gov", password_hash=generate_password_hash("staffpass1", method=FAST_HASH), role=Role.STAFF),
            ]
        )

    yield app
    _login_attempts.clear()


@pytest.fixture()
def client(app):
    return app.test_client()


def _login(client, email, password):
    r = client.post("/api/auth/login", json={"email": email, "password": password})
    assert r.status_code == 200, r.json
    return {"Authorization": f"Bearer {r.json['token']}"}


def _register_alice(client):
    r = client.post("/api/auth/register", json={"name": "Alice", "email": "Alice@Example.com", "password": "password123"})
    assert r.status_code == 201
    return r.json


def _report_pothole(client, headers):
    r = client.post(
        "/api/issues",
        headers=headers,
        json={
            "title": "Pothole on Main Street",
            "description": "Large pothole near the bus stop, about 30cm wide.",
            "category": "INFRASTRUCTURE",
            "location": "Main St & 3rd Ave",
        },
    )
    assert r.status_code == 201, r.json
    return r.json


def test_health_ok(client):
    r = client.get("/health")
    assert r.status_code == 200
    assert r.json["ok"] is True
    assert client.get("/healthz").data == b"ok"


def test_register_and_login(client):
    body = _register_alice(client)
    assert body["email"] == "alice@example.com"
    assert body["role"] == "CITIZEN"
    assert "password_hash" not in body

    r = client.post("/api/auth/register", json={"name": "Alice", "email": "ALICE@example.com", "password": "password123"})
    assert r.status_code == 409
    assert r.json == {"error": "DuplicateIdentifier", "message": "Email already exists: alice@example.com"}

    r = client.post("/api/auth/login", json={"email": "ALICE@EXAMPLE.COM", "password": "password123"})
    assert r.status_code == 200
    assert r.json["token_type"] == "Bearer"
    assert r.json["user"]["role"] == "CITIZEN"


def test_register_validation_error(client):
    r = client.post("/api/auth/register", json={"name": "Alice", "email": "alice@example.com", "password": "short"})
    assert r.status_code == 400
    assert r.json["message"] == "Password must be at least 8 characters"


def test_bad_login_is_audited_and_generic(app, client):
    r = client.post("/api/auth/login", json={"email": "admin@city.gov", "password": "wrong-password"})
    assert r.status_code == 401
    assert r.json["message"] == "Invalid email or password"

    with session_scope(app) as s:
        actions = [e.action for e in s.query(AuditEvent).all()]
    assert actions == ["auth.login_failed"]


def test_login_rate_limited(client):
    for _ in range(5):
        assert client.post("/api/auth/login", json={"email": "x@example.com", "password": "nope-nope"}).status_code == 401
    assert client.post("/api/auth/login", json={"email": "x@example.com", "password": "nope-nope"}).status_code == 429


def test_issue_routes_require_token(client):
    assert client.get("/api/issues").status_code == 401
    r = client.get("/api/issues", headers={"Authorization": "Bearer not-a-token"})
    assert r.status_code == 401
    assert r.json["error"] == "InvalidToken"


def test_issue_lifecycle_over_http(app, client):
    alice = _register_alice(client)
    citizen = _login(client, "alice@example.com", "password123")
    admin = _login(client, "admin@city.gov", "adminpass1")
    staff = _login(client, "sam@city.gov", "staffpass1")

    issue = _report_pothole(client, citizen)
    assert issue["status"] == "OPEN"
    assert issue["priority"] == "MEDIUM"
    assert issue["reporter"]["id"] == alice["id"]
    url = f"/api/issues/{issue['id']}"

    r = client.patch(f"{url}/status", headers=citizen, json={"status": "IN_PROGRESS"})
    assert r.status_code == 403
    assert r.json["error"] == "Forbidden"

    r = client.patch(f"{url}/status", headers=admin, json={"status": "RESOLVED"})
    assert r.status_code == 409
    assert r.json["error"] == "InvalidTransition"

    sam_id = client.post("/api/auth/login", json={"email": "sam@city.gov", "password": "staffpass1"}).json["user"]["id"]
    r = client.patch(f"{url}/assign", headers=admin, json={"assignee_id": sam_id})
    assert r.status_code == 200
    assert r.json["assignee"]["email"] == "sam@city.gov"

    assert client.patch(f"{url}/status", headers=staff, json={"status": "in_progress"}).status_code == 200
    r = client.patch(f"{url}/status", headers=staff, json={"status": "RESOLVED"})
    assert r.status_code == 200
    assert r.json["resolved_at"] is not None

    assert client.patch(f"{url}/status", headers=staff, json={"status": "CLOSED"}).status_code == 403
    r = client.patch(f"{url}/status", headers=admin, json={"status": "CLOSED"})
    assert r.status_code == 200
    assert r.json["status"] == "CLOSED"

    r = client.put(url, headers=admin, json={"priority": "HIGH"})
    assert r.status_code == 409
    assert r.json["error"] == "IssueLocked"

    with session_scope(app) as s:
        actions = [e.action for e in s.query(AuditEvent).filter(AuditEvent.entity_type == "Issue").all()]
    assert actions == ["issue.create", "issue.assign", "issue.status_change", "issue.status_change", "issue.status_change"]


def test_edit_list_delete_restore_over_http(client):
    _register_alice(client)
    citizen = _login(client, "alice@example.com", "password123")
    admin = _login(client, "admin@city.gov", "adminpass1")
    staff = _login(client, "sam@city.gov", "staffpass1")

    issue = _report_pothole(client, citizen)
    url = f"/api/issues/{issue['id']}"

    r = client.put(url, headers=citizen, json={"priority": "high", "location": "Main St & 4th Ave"})
    assert r.status_code == 200
    assert r.json["priority"] == "HIGH"

    r = client.get("/api/issues?priority=HIGH", headers=staff)
    assert [i["id"] for i in r.json] == [issue["id"]]
    assert client.get("/api/issues?priority=BOGUS", headers=staff).status_code == 400

    assert client.delete(url, headers=staff).status_code == 403
    assert client.delete(url, headers=admin).status_code == 204
    assert client.delete(url, headers=admin).status_code == 409

    assert client.get(url, headers=citizen).status_code == 404
    assert client.get("/api/issues", headers=citizen).json == []
    assert client.get("/api/issues?include_deleted=true", headers=citizen).json == []
    assert [i["id"] for i in client.get("/api/issues?include_deleted=true", headers=admin).json] == [issue["id"]]

    r = client.post(f"{url}/restore", headers=admin)
    assert r.status_code == 200
    assert r.json["deleted_at"] is None
    assert client.get(url, headers=citizen).status_code == 200


def test_assign_requires_assignee_key(client):
    _register_alice(client)
    citizen = _login(client, "alice@example.com", "password123")
    admin = _login(client, "admin@city.gov", "adminpass1")
    issue = _report_pothole(client, citizen)

    r = client.patch(f"/api/issues/{issue['id']}/assign", headers=admin, json={})
    assert r.status_code == 400
    r = client.patch(f"/api/issues/{issue['id']}/assign", headers=admin, json={"assignee_id": None})
    assert r.status_code == 200
    assert r.json["assignee"] is None


def test_unknown_issue_is_404(client):
    admin = _login(client, "admin@city.gov", "adminpass1")
    r = client.get("/api/issues/9999", headers=admin)
    assert r.status_code == 404
    assert r.json["error"] == "IssueNotFound"


def test_malformed_auth_bodies_are_400(client):
    r = client.post("/api/auth/register", json=["x"])
    assert r.status_code == 400
    assert r.json["message"] == "Request body must be a JSON object."

    r = client.post("/api/auth/register", json={"name": 123, "email": "alice@example.com", "password": "password123"})
    assert r.status_code == 400
    assert r.json["message"] == "Name must be a string"

    r = client.post("/api/auth/login", json={"email": "admin@city.gov", "password": 12345678})
    assert r.status_code == 400
    assert r.json["error"] == "ValidationError"

    assert client.post("/api/auth/login", json=["admin@city.gov"]).status_code == 400


def test_malformed_issue_input_is_400(client):
    _register_alice(client)
    citizen = _login(client, "alice@example.com", "password123")
    admin = _login(client, "admin@city.gov", "adminpass1")

    r = client.post(
        "/api/issues",
        headers=citizen,
        json={
            "title": 12345678901,
            "description": "Large pothole near the bus stop, about 30cm wide.",
            "category": "INFRASTRUCTURE",
            "location": "Main St & 3rd Ave",
        },
    )
    assert r.status_code == 400
    assert r.json["message"] == "Title must be a string"

    issue = _report_pothole(client, citizen)
    r = client.patch(f"/api/issues/{issue['id']}/assign", headers=admin, json={"assignee_id": True})
    assert r.status_code == 400
    assert r.json["message"] == "assignee_id must be an integer or null"
