from __future__ import annotations

import io

import pytest

from conftest import auth_headers, make_payload
from vault.common.errors import NotFoundError, ValidationError
from vault.files.versions import FileMetadata
from vault.models import AuditLog, LinkedVersion, RootVersion


def _metadata(actor, contract_id: str = "C-1", previous_version_id: int | None = None) -> FileMetadata:
    return FileMetadata(
        contract_id=contract_id,
        supplier="Acme",
        folder_id=None,
        payload=make_payload(),
        uploaded_by=actor.user_id,
        previous_version_id=previous_version_id,
    )


def test_replace_links_new_version_to_predecessor(services, admin_actor, recorder):
    first = services.versions.create(_metadata(admin_actor), admin_actor)
    first_id = first.id

    second = services.versions.replace(first_id, make_payload("contract-v2.pdf", b"%PDF-1.4 v2"), admin_actor)

    assert second.version == 2
    assert second.version_link == LinkedVersion(previous_id=first_id)
    assert second.contract_id == "C-1"

    versions = services.versions.get_versions(second.id)
    assert [item.version for item in versions] == [1, 2]
    assert versions[0].version_link == RootVersion()
    assert versions[0].is_deleted is True
    assert versions[0].deleted_by == admin_actor.user_id
    assert recorder.actions() == ["upload", "replacement"]


def test_replacing_a_soft_deleted_file_is_not_found(services, admin_actor):
    item = services.versions.create(_metadata(admin_actor), admin_actor)
    services.lifecycle.soft_delete(item.id, admin_actor)

    with pytest.raises(NotFoundError):
        services.versions.replace(item.id, make_payload(), admin_actor)


def test_dangling_previous_version_starts_a_new_chain(services, admin_actor):
    item = services.versions.create(_metadata(admin_actor, previous_version_id=987654), admin_actor)

    assert item.version == 1
    assert item.version_link == RootVersion()


def test_soft_deleted_predecessor_still_counts(services, admin_actor):
    first = services.versions.create(_metadata(admin_actor), admin_actor)
    services.lifecycle.soft_delete(first.id, admin_actor)

    second = services.versions.create(_metadata(admin_actor, previous_version_id=first.id), admin_actor)

    assert second.version == 2
    assert [item.id for item in services.versions.get_versions(second.id)] == [first.id, second.id]


def test_versions_are_strictly_increasing_across_a_long_chain(services, admin_actor):
    current = services.versions.create(_metadata(admin_actor), admin_actor)
    for _ in range(4):
        current = services.versions.replace(current.id, make_payload(), admin_actor)

    versions = services.versions.get_versions(current.id)
    numbers = [item.version for item in versions]
    assert numbers == [1, 2, 3, 4, 5]
    assert all(later > earlier for earlier, later in zip(numbers, numbers[1:]))

    # Any member of the chain resolves the whole lineage.
    assert [item.id for item in services.versions.lineage(versions[0].id)] == [item.id for item in versions]


def test_move_carries_every_version(services, admin_actor, recorder):
    target = services.folders.create("Archive", None, admin_actor)
    first = services.versions.create(_metadata(admin_actor), admin_actor)
    second = services.versions.replace(first.id, make_payload(), admin_actor)

    moved = services.versions.move(second.id, target.id, admin_actor)

    assert {item.folder_id for item in moved} == {target.id}
    assert len(moved) == 2
    assert recorder.actions()[-1] == "move"


def test_version_api_flow(client, app):
    headers = auth_headers(client)
    upload = client.post(
        "/api/files/upload",
        data={
            "file": (io.BytesIO(b"%PDF-1.4 first"), "contract.pdf"),
            "contract_id": "C-7",
            "supplier": "Acme",
        },
        headers=headers,
        content_type="multipart/form-data",
    )
    assert upload.status_code == 201
    first_id = upload.get_json()["item"]["id"]

    replaced = client.post(
        f"/api/files/{first_id}/version",
        data={"file": (io.BytesIO(b"%PDF-1.4 second"), "contract.pdf")},
        headers=headers,
        content_type="multipart/form-data",
    )
    assert replaced.status_code == 201
    second = replaced.get_json()["item"]
    assert second["version"] == 2
    assert second["previous_version_id"] == first_id

    versions = client.get(f"/api/files/{second['id']}/versions", headers=headers)
    assert [item["version"] for item in versions.get_json()["items"]] == [1, 2]

    mine = client.get("/api/files/my", headers=headers)
    assert [item["id"] for item in mine.get_json()["items"]] == [second["id"]]

    with app.app_context():
        actions = [row.action for row in AuditLog.query.all()]
        assert actions.count("replacement") == 1
        assert actions.count("delete") == 0


def test_new_version_must_share_its_predecessor_folder(services, admin_actor):
    first_folder = services.folders.create("A", None, admin_actor)
    second_folder = services.folders.create("B", None, admin_actor)
    first = services.versions.create(
        FileMetadata(
            contract_id="C-1",
            supplier="Acme",
            folder_id=first_folder.id,
            payload=make_payload(),
            uploaded_by=admin_actor.user_id,
        ),
        admin_actor,
    )

    with pytest.raises(ValidationError) as error:
        services.versions.create(
            FileMetadata(
                contract_id="C-2",
                supplier="Acme",
                folder_id=second_folder.id,
                payload=make_payload(),
                uploaded_by=admin_actor.user_id,
                previous_version_id=first.id,
            ),
            admin_actor,
        )
    assert error.value.code == "VERSION_FOLDER_MISMATCH"

    second = services.versions.create(
        FileMetadata(
            contract_id="C-2",
            supplier="Acme",
            folder_id=first_folder.id,
            payload=make_payload(),
            uploaded_by=admin_actor.user_id,
            previous_version_id=first.id,
        ),
        admin_actor,
    )
    second_id = second.id

    services.folders.delete_recursive(first_folder.id, admin_actor)

    # Deleting the folder took the whole chain, so nothing is left half-linked.
    with pytest.raises(NotFoundError):
        services.versions.get_versions(second_id)
    assert services.folders.get(second_folder.id).name == "B"
