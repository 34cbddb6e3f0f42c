from __future__ import annotations

from flask import Blueprint, jsonify, request
from flask_jwt_extended import jwt_required

from ..common.audit import Actor
from ..common.errors import ValidationError
from ..common.params import parse_nullable_int
from ..common.rbac import admin_required, current_user
from ..services import get_services


folders_bp = Blueprint("folders", __name__, url_prefix="/api/folders")


@folders_bp.get("/root")
@jwt_required()
def list_roots():
    folders = get_services().folders.get_roots()
    return jsonify({"items": [folder.to_dict() for folder in folders]})


@folders_bp.get("/<int:folder_id>")
@jwt_required()
def get_folder(folder_id: int):
    folder = get_services().folders.get(folder_id)
    return jsonify({"item": folder.to_dict()})


@folders_bp.get("/<int:folder_id>/children")
@jwt_required()
def list_children(folder_id: int):
    services = get_services()
    services.folders.get(folder_id)
    children = services.folders.get_children(folder_id)
    return jsonify({"items": [folder.to_dict() for folder in children]})


@folders_bp.get("/<int:folder_id>/path")
@jwt_required()
def folder_path(folder_id: int):
    path = get_services().folders.get_path(folder_id)
    return jsonify({"items": [folder.to_dict() for folder in path]})


@folders_bp.get("/<int:folder_id>/files")
@jwt_required()
def list_folder_files(folder_id: int):
    services = get_services()
    services.folders.get(folder_id)
    files = services.lifecycle.list_by_folder(folder_id)
    return jsonify({"items": [item.to_dict() for item in files]})


@folders_bp.get("/<int:folder_id>/content")
@jwt_required()
def folder_content(folder_id: int):
    services = get_services()
    folder = services.folders.get(folder_id)
    return jsonify(
        {
            "folder": folder.to_dict(),
            "path": [item.to_dict() for item in services.folders.get_path(folder_id)],
            "folders": [item.to_dict() for item in services.folders.get_children(folder_id)],
            "files": [item.to_dict() for item in services.lifecycle.list_by_folder(folder_id)],
        }
    )


@folders_bp.post("")
@admin_required
def create_folder():
    payload = request.get_json(silent=True) or {}
    parent_id = parse_nullable_int(payload.get("parent_id"), "parent_id")
    folder = get_services().folders.create(payload.get("name"), parent_id, Actor.from_request(current_user()))
    return jsonify({"item": folder.to_dict()}), 201


@folders_bp.patch("/<int:folder_id>")
@admin_required
def update_folder(folder_id: int):
    payload = request.get_json(silent=True) or {}
    if "name" not in payload and "parent_id" not in payload:
        raise ValidationError("Provide a name or a parent_id to update.", code="EMPTY_UPDATE")

    changes = {}
    if "name" in payload:
        changes["name"] = payload.get("name")
    if "parent_id" in payload:
        changes["parent_id"] = parse_nullable_int(payload.get("parent_id"), "parent_id")
    folder = get_services().folders.update(folder_id, Actor.from_request(current_user()), **changes)
    return jsonify({"item": folder.to_dict()})


@folders_bp.delete("/<int:folder_id>")
@admin_required
def delete_folder(folder_id: int):
    summary = get_services().folders.delete_recursive(folder_id, Actor.from_request(current_user()))
    return jsonify({"deleted": True, **summary.to_dict()})
