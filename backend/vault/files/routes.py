from __future__ import annotations

import io

from flask import Blueprint, current_app, jsonify, request, send_file
from flask_jwt_extended import jwt_required

from ..common.audit import Actor, AuditEntry
from ..common.db import atomic
from ..common.errors import APIError, ValidationError
from ..common.params import parse_int, parse_iso_datetime, parse_nullable_int
from ..common.rbac import admin_required, current_user
from ..common.storage import read_upload
from ..models import AuditAction, StoredFile, User
from ..services import get_services
from .versions import FileMetadata


files_bp = Blueprint("files", __name__, url_prefix="/api")


def _items(files: list[StoredFile]):  # type: ignore[no-untyped-def]
    return jsonify({"items": [item.to_dict() for item in files]})


def _readable_file(file_id: int, user: User) -> StoredFile:
    """Active files for everyone; admins may also read soft-deleted versions."""
    lifecycle = get_services().lifecycle
    if user.is_admin:
        return lifecycle.get_including_deleted(file_id)
    return lifecycle.get_active(file_id)


def _send_payload(item: StoredFile, user: User, action: AuditAction, as_attachment: bool):  # type: ignore[no-untyped-def]
    services = get_services()
    with atomic():
        services.audit.append(
            AuditEntry(
                action=action,
                actor=Actor.from_request(user),
                resource_type="file",
                resource_id=item.id,
                details=f"File {action.value}: {item.original_name}",
            )
        )
    return send_file(
        io.BytesIO(item.payload),
        as_attachment=as_attachment,
        download_name=item.original_name,
        mimetype=item.mime_type,
    )


@files_bp.get("/files/my")
@jwt_required()
def my_files():
    user = current_user(required=True)
    assert user is not None
    return _items(get_services().lifecycle.list_by_user(user.id))


@files_bp.get("/files/all")
@admin_required
def all_files():
    return _items(get_services().lifecycle.list_all())


@files_bp.get("/files/recent")
@jwt_required()
def recent_files():
    user = current_user(required=True)
    assert user is not None
    default_limit = int(current_app.config["RECENT_FILES_LIMIT"])
    limit = min(100, max(1, parse_int(request.args.get("limit", default_limit), "limit")))
    user_id = None if user.is_admin else user.id
    return _items(get_services().lifecycle.list_recent(limit=limit, user_id=user_id))


@files_bp.get("/files/shared")
@jwt_required()
def shared_files():
    user = current_user(required=True)
    assert user is not None
    return _items(get_services().lifecycle.list_shared(user.id))


@files_bp.get("/files/search")
@jwt_required()
def search_files():
    files = get_services().lifecycle.search(
        contract_id=(request.args.get("contract_id") or "").strip() or None,
        uploader_id=parse_nullable_int(request.args.get("uploader_id"), "uploader_id"),
        start=parse_iso_datetime(request.args.get("start"), "start"),
        end=parse_iso_datetime(request.args.get("end"), "end"),
        mime_type=(request.args.get("type") or "").strip().lower() or None,
    )
    return _items(files)


@files_bp.get("/stats")
@jwt_required()
def stats():
    return jsonify(get_services().lifecycle.stats())


@files_bp.post("/files/upload")
@jwt_required()
def upload_file():
    user = current_user(required=True)
    assert user is not None

    payload = read_upload(request.files.get("file"))
    metadata = FileMetadata(
        contract_id=request.form.get("contract_id") or "",
        supplier=request.form.get("supplier") or "",
        folder_id=parse_nullable_int(request.form.get("folder_id"), "folder_id"),
        payload=payload,
        uploaded_by=user.id,
        previous_version_id=parse_nullable_int(request.form.get("previous_version_id"), "previous_version_id"),
    )
    item = get_services().versions.create(metadata, Actor.from_request(user))
    return jsonify({"item": item.to_dict()}), 201


@files_bp.post("/files/<int:file_id>/version")
@jwt_required()
def upload_version(file_id: int):
    user = current_user(required=True)
    assert user is not None

    payload = read_upload(request.files.get("file"))
    item = get_services().versions.replace(file_id, payload, Actor.from_request(user))
    return jsonify({"item": item.to_dict()}), 201


@files_bp.get("/files/<int:file_id>/versions")
@jwt_required()
def list_versions(file_id: int):
    return _items(get_services().versions.get_versions(file_id))


@files_bp.get("/files/<int:file_id>/download")
@jwt_required()
def download_file(file_id: int):
    user = current_user(required=True)
    assert user is not None
    item = _readable_file(file_id, user)
    return _send_payload(item, user, AuditAction.DOWNLOAD, as_attachment=True)


@files_bp.get("/files/<int:file_id>/preview")
@jwt_required()
def preview_file(file_id: int):
    user = current_user(required=True)
    assert user is not None
    item = _readable_file(file_id, user)
    if not (item.mime_type == "application/pdf" or item.mime_type.startswith("image/")):
        raise APIError(415, "PREVIEW_UNSUPPORTED", "Only PDF and image files can be previewed.")
    return _send_payload(item, user, AuditAction.PREVIEW, as_attachment=False)


@files_bp.patch("/files/<int:file_id>/move")
@admin_required
def move_file(file_id: int):
    payload = request.get_json(silent=True) or {}
    if "folder_id" not in payload:
        raise ValidationError("folder_id is required (null moves the file out of every folder).")
    folder_id = parse_nullable_int(payload.get("folder_id"), "folder_id")
    chain = get_services().versions.move(file_id, folder_id, Actor.from_request(current_user()))
    current = next(item for item in chain if item.id == file_id)
    return jsonify({"item": current.to_dict(), "moved_versions": len(chain)})


@files_bp.delete("/files/<int:file_id>")
@admin_required
def delete_file(file_id: int):
    item = get_services().lifecycle.soft_delete(file_id, Actor.from_request(current_user()))
    return jsonify({"item": item.to_dict()})
