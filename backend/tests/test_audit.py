from __future__ import annotations

from sqlalchemy.exc import OperationalError
from sqlalchemy.orm import Session

from conftest import auth_headers
from vault.common.audit import Actor, AuditEntry, DatabaseAuditRecorder, enrich_logs
from vault.extensions import db
from vault.models import AuditAction, AuditLog, Folder, User
from vault.services import build_services


def test_audit_rows_carry_actor_details(app):
    with app.app_context():
        admin = User.query.filter_by(username="admin").one()
        services = build_services()
        services.folders.create("Root", None, Actor(user_id=admin.id, ip_address="10.0.0.1", user_agent="ua/1"))

        row = AuditLog.query.filter_by(action="folder_created").one()
        assert row.user_id == admin.id
        assert row.ip_address == "10.0.0.1"
        assert row.user_agent == "ua/1"
        assert row.resource_type == "folder"


def test_failed_audit_write_does_not_fail_the_operation(app, monkeypatch):
    with app.app_context():
        admin = User.query.filter_by(username="admin").one()
        services = build_services(DatabaseAuditRecorder())

        def broken_savepoint(*args, **kwargs):
            raise OperationalError("SAVEPOINT sp", {}, Exception("audit table is locked"))

        monkeypatch.setattr(Session, "begin_nested", broken_savepoint)

        folder = services.folders.create("Root", None, Actor(user_id=admin.id))

        monkeypatch.undo()
        assert db.session.get(Folder, folder.id) is not None
        assert AuditLog.query.count() == 0


def test_enrich_logs_labels_system_and_missing_users(app):
    with app.app_context():
        alice = User.query.filter_by(username="alice").one()
        recorder = DatabaseAuditRecorder()
        recorder.append(AuditEntry(action=AuditAction.LOGIN, actor=Actor(user_id=alice.id)))
        recorder.append(AuditEntry(action=AuditAction.USER_CREATED, actor=Actor.system()))
        # A row pointing at a user id that does not exist.
        db.session.add(AuditLog(user_id=424242, action=AuditAction.DOWNLOAD.value))
        db.session.commit()

        enriched = enrich_logs(AuditLog.query.order_by(AuditLog.id.asc()).all())
        assert [item["user_name"] for item in enriched] == ["Alice Doe", "System", "Unknown user"]


def test_audit_log_api_is_admin_only_and_exports_csv(client):
    alice = auth_headers(client)
    assert client.get("/api/audit-logs", headers=alice).status_code == 403

    admin = auth_headers(client, "admin", "adminpass")
    listing = client.get("/api/audit-logs?action=login", headers=admin)
    assert listing.status_code == 200
    payload = listing.get_json()
    assert payload["pagination"]["total"] == 2
    assert {item["user_name"] for item in payload["items"]} == {"Alice Doe", "Ada Admin"}

    export = client.get("/api/audit-logs?export=csv", headers=admin)
    assert export.status_code == 200
    assert export.headers["Content-Type"].startswith("text/csv")
    assert export.get_data(as_text=True).splitlines()[0].startswith("id,created_at,user_id,user_name")

    recent = client.get("/api/audit-logs/recent?limit=1", headers=alice)
    assert recent.status_code == 200
    assert [item["action"] for item in recent.get_json()["items"]] == ["login"]


def test_share_log_records_folder_shares(client, app):
    admin = auth_headers(client, "admin", "adminpass")
    folder_id = client.post("/api/folders", json={"name": "Shared"}, headers=admin).get_json()["item"]["id"]

    logged = client.post("/api/share/log", json={"resource_type": "folder", "resource_id": folder_id}, headers=admin)
    assert logged.status_code == 201

    invalid = client.post("/api/share/log", json={"resource_type": "user", "resource_id": 1}, headers=admin)
    assert invalid.status_code == 400

    with app.app_context():
        row = AuditLog.query.filter_by(action="folder_shared").one()
        assert row.resource_id == folder_id
