from __future__ import annotations

from pathlib import Path

import pytest

from vault import create_app
from vault.common.audit import Actor, AuditEntry
from vault.common.storage import UploadedPayload
from vault.common.token_store import revoked_tokens
from vault.extensions import db
from vault.models import User
from vault.services import build_services


class RecordingAudit:
    def __init__(self) -> None:
        self.entries: list[AuditEntry] = []

    def append(self, entry: AuditEntry) -> None:
        self.entries.append(entry)
        return None

    def actions(self) -> list[str]:
        return [entry.action.value for entry in self.entries]


def make_payload(name: str = "contract.pdf", data: bytes = b"%PDF-1.4 contract", mime_type: str = "application/pdf") -> UploadedPayload:
    return UploadedPayload(original_name=name, mime_type=mime_type, data=data)


@pytest.fixture
def app(tmp_path: Path):
    db_path = tmp_path / "test.db"

    app = create_app(
        {
            "TESTING": True,
            "SQLALCHEMY_DATABASE_URI": f"sqlite:///{db_path}",
            "JWT_SECRET_KEY": "test-secret-key-at-least-32-bytes-long",
            "MAX_UPLOAD_SIZE_BYTES": 1024 * 1024,
            "FRONTEND_ORIGINS": ["http://localhost:5173"],
        }
    )

    with app.app_context():
        db.create_all()

        alice = User(username="alice", full_name="Alice Doe", is_active=True)
        alice.set_password("alicepass")
        admin = User(username="admin", full_name="Ada Admin", is_active=True, is_admin=True)
        admin.set_password("adminpass")

        db.session.add_all([alice, admin])
        db.session.commit()

    yield app

    with app.app_context():
        db.session.remove()
        db.drop_all()
    revoked_tokens.clear()


@pytest.fixture
def client(app):
    return app.test_client()


@pytest.fixture
def recorder() -> RecordingAudit:
    return RecordingAudit()


@pytest.fixture
def services(app, recorder):
    with app.app_context():
        yield build_services(recorder)


@pytest.fixture
def admin_actor(services) -> Actor:
    admin = User.query.filter_by(username="admin").one()
    return Actor(user_id=admin.id, ip_address="127.0.0.1", user_agent="pytest")


def access_token(client, username: str = "alice", password: str = "alicepass") -> str:
    response = client.post("/auth/login", json={"username": username, "password": password})
    assert response.status_code == 200
    return response.get_json()["access_token"]


def auth_headers(client, username: str = "alice", password: str = "alicepass") -> dict[str, str]:
    return {"Authorization": f"Bearer {access_token(client, username, password)}"}
