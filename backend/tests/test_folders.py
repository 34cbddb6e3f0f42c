from __future__ import annotations

import io

import pytest
from sqlalchemy.exc import SQLAlchemyError

from conftest import auth_headers, make_payload
from vault.common.errors import NotFoundError, PartialFailureError, ValidationError
from vault.common.storage import validate_node_name
from vault.extensions import db
from vault.files.versions import FileMetadata
from vault.models import AuditLog, Folder, StoredFile


def _upload(services, actor, contract_id: str, folder_id: int | None, name: str = "contract.pdf") -> StoredFile:
    return services.versions.create(
        FileMetadata(
            contract_id=contract_id,
            supplier="Acme",
            folder_id=folder_id,
            payload=make_payload(name),
            uploaded_by=actor.user_id,
        ),
        actor,
    )


def test_node_names_are_cleaned_or_rejected():
    assert validate_node_name("  Contracts 2025 ") == "Contracts 2025"
    assert validate_node_name("a/b:c") == "a_b_c"

    for invalid in ["", "   ", "///", "..", "x" * 256, None]:
        with pytest.raises(ValidationError):
            validate_node_name(invalid)


def test_path_runs_from_root_to_folder(services, admin_actor):
    root = services.folders.create("Root", None, admin_actor)
    sub = services.folders.create("Sub", root.id, admin_actor)
    leaf = services.folders.create("Leaf", sub.id, admin_actor)

    path = services.folders.get_path(leaf.id)
    assert [folder.name for folder in path] == ["Root", "Sub", "Leaf"]
    assert path[0].parent_id is None
    assert path[-1].id == leaf.id


def test_path_stops_on_a_cyclic_parent_chain(services, admin_actor):
    first = services.folders.create("First", None, admin_actor)
    second = services.folders.create("Second", first.id, admin_actor)
    # Corrupt the stored tree directly; the service never allows this.
    first.parent_id = second.id
    db.session.commit()

    path = services.folders.get_path(second.id)
    assert [folder.id for folder in path] == [first.id, second.id]


def test_create_requires_existing_parent(services, admin_actor):
    with pytest.raises(NotFoundError):
        services.folders.create("Orphan", 9999, admin_actor)


def test_delete_root_removes_subfolders_and_files(services, admin_actor, recorder):
    root = services.folders.create("Root", None, admin_actor)
    sub = services.folders.create("Sub", root.id, admin_actor)
    file_in_sub = _upload(services, admin_actor, "C-1", sub.id)
    file_in_root = _upload(services, admin_actor, "C-2", root.id)
    services.lifecycle.soft_delete(file_in_root.id, admin_actor)
    root_id, sub_id = root.id, sub.id
    file_ids = [file_in_sub.id, file_in_root.id]

    summary = services.folders.delete_recursive(root_id, admin_actor)

    assert summary.folders_deleted == 2
    assert summary.files_purged == 2
    for folder_id in (root_id, sub_id):
        with pytest.raises(NotFoundError):
            services.folders.get(folder_id)
    for file_id in file_ids:
        with pytest.raises(NotFoundError):
            services.lifecycle.get_including_deleted(file_id)
    assert recorder.actions().count("folder_deleted") == 1


def test_delete_handles_deep_trees(services, admin_actor, recorder):
    depth = 1200
    parent_id = None
    folder_ids: list[int] = []
    for level in range(depth):
        folder = Folder(name=f"level-{level}", parent_id=parent_id, owner_user_id=admin_actor.user_id)
        db.session.add(folder)
        db.session.flush()
        folder_ids.append(folder.id)
        parent_id = folder.id
    db.session.commit()

    assert len(services.folders.get_path(folder_ids[-1])) == depth

    summary = services.folders.delete_recursive(folder_ids[0], admin_actor)

    assert summary.folders_deleted == depth
    assert Folder.query.count() == 0
    assert recorder.actions() == ["folder_deleted"]


def test_failed_delete_rolls_back_everything(services, admin_actor, monkeypatch):
    root = services.folders.create("Root", None, admin_actor)
    sub = services.folders.create("Sub", root.id, admin_actor)
    _upload(services, admin_actor, "C-1", root.id)
    _upload(services, admin_actor, "C-2", sub.id)
    root_id = root.id

    original = services.lifecycle.purge_folder_contents
    calls = {"count": 0}

    def flaky(folder_id: int) -> int:
        calls["count"] += 1
        if calls["count"] == 2:
            raise SQLAlchemyError("disk went away")
        return original(folder_id)

    monkeypatch.setattr(services.lifecycle, "purge_folder_contents", flaky)

    with pytest.raises(PartialFailureError):
        services.folders.delete_recursive(root_id, admin_actor)

    assert Folder.query.count() == 2
    assert StoredFile.query.count() == 2


def test_move_rejects_cycles(services, admin_actor):
    root = services.folders.create("Root", None, admin_actor)
    sub = services.folders.create("Sub", root.id, admin_actor)

    with pytest.raises(ValidationError) as error:
        services.folders.move(root.id, sub.id, admin_actor)
    assert error.value.code == "INVALID_MOVE"

    with pytest.raises(ValidationError):
        services.folders.move(root.id, root.id, admin_actor)

    other = services.folders.create("Other", None, admin_actor)
    moved = services.folders.move(sub.id, other.id, admin_actor)
    assert moved.parent_id == other.id


def test_update_with_bad_name_leaves_folder_in_place(services, admin_actor, recorder):
    target = services.folders.create("Target", None, admin_actor)
    folder = services.folders.create("Drafts", None, admin_actor)

    with pytest.raises(ValidationError) as error:
        services.folders.update(folder.id, admin_actor, name="///", parent_id=target.id)
    assert error.value.code == "INVALID_NAME"

    assert services.folders.get(folder.id).parent_id is None
    assert recorder.actions() == ["folder_created", "folder_created"]


def test_update_renames_and_moves_with_one_audit_entry(services, admin_actor, recorder):
    target = services.folders.create("Target", None, admin_actor)
    folder = services.folders.create("Drafts", None, admin_actor)

    updated = services.folders.update(folder.id, admin_actor, name="Signed", parent_id=target.id)

    assert (updated.name, updated.parent_id) == ("Signed", target.id)
    assert recorder.actions() == ["folder_created", "folder_created", "move"]
    assert 'renamed from "Drafts"' in recorder.entries[-1].details


def test_patch_with_valid_parent_and_bad_name_changes_nothing(client, app):
    admin = auth_headers(client, "admin", "adminpass")
    target_id = client.post("/api/folders", json={"name": "Target"}, headers=admin).get_json()["item"]["id"]
    folder_id = client.post("/api/folders", json={"name": "Drafts"}, headers=admin).get_json()["item"]["id"]

    response = client.patch(f"/api/folders/{folder_id}", json={"parent_id": target_id, "name": "///"}, headers=admin)
    assert response.status_code == 400
    assert response.get_json()["error"]["code"] == "INVALID_NAME"

    unchanged = client.get(f"/api/folders/{folder_id}", headers=admin).get_json()["item"]
    assert (unchanged["name"], unchanged["parent_id"]) == ("Drafts", None)

    with app.app_context():
        assert AuditLog.query.filter_by(action="move").count() == 0


def test_folder_api_mutations_require_admin(client, app):
    alice = auth_headers(client)
    denied = client.post("/api/folders", json={"name": "Nope", "parent_id": None}, headers=alice)
    assert denied.status_code == 403

    admin = auth_headers(client, "admin", "adminpass")
    created = client.post("/api/folders", json={"name": "Contracts", "parent_id": None}, headers=admin)
    assert created.status_code == 201
    folder_id = created.get_json()["item"]["id"]

    child = client.post("/api/folders", json={"name": "2025", "parent_id": folder_id}, headers=admin)
    assert child.status_code == 201
    child_id = child.get_json()["item"]["id"]

    roots = client.get("/api/folders/root", headers=alice)
    assert [item["name"] for item in roots.get_json()["items"]] == ["Contracts"]

    path = client.get(f"/api/folders/{child_id}/path", headers=alice)
    assert [item["name"] for item in path.get_json()["items"]] == ["Contracts", "2025"]

    renamed = client.patch(f"/api/folders/{child_id}", json={"name": "FY2025"}, headers=admin)
    assert renamed.status_code == 200
    assert renamed.get_json()["item"]["name"] == "FY2025"

    cyclic = client.patch(f"/api/folders/{folder_id}", json={"parent_id": child_id}, headers=admin)
    assert cyclic.status_code == 400
    assert cyclic.get_json()["error"]["code"] == "INVALID_MOVE"

    deleted = client.delete(f"/api/folders/{folder_id}", headers=admin)
    assert deleted.status_code == 200
    assert deleted.get_json()["folders_deleted"] == 2

    missing = client.get(f"/api/folders/{child_id}", headers=alice)
    assert missing.status_code == 404

    with app.app_context():
        actions = [row.action for row in AuditLog.query.order_by(AuditLog.id.asc()).all()]
        assert actions.count("folder_created") == 2
        assert actions.count("folder_renamed") == 1
        assert actions.count("folder_deleted") == 1


def test_folder_content_lists_children_and_active_files(client, app):
    admin = auth_headers(client, "admin", "adminpass")
    folder_id = client.post("/api/folders", json={"name": "Root"}, headers=admin).get_json()["item"]["id"]
    client.post("/api/folders", json={"name": "Sub", "parent_id": folder_id}, headers=admin)

    upload = client.post(
        "/api/files/upload",
        data={
            "file": (io.BytesIO(b"%PDF-1.4"), "a.pdf"),
            "contract_id": "C-10",
            "supplier": "Acme",
            "folder_id": str(folder_id),
        },
        headers=admin,
        content_type="multipart/form-data",
    )
    assert upload.status_code == 201

    content = client.get(f"/api/folders/{folder_id}/content", headers=admin).get_json()
    assert [item["name"] for item in content["folders"]] == ["Sub"]
    assert [item["original_name"] for item in content["files"]] == ["a.pdf"]
    assert [item["name"] for item in content["path"]] == ["Root"]
