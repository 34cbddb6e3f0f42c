from __future__ import annotations

import csv
import io
from datetime import datetime, timezone

from flask import Blueprint, current_app, jsonify, request
from flask_jwt_extended import jwt_required
from sqlalchemy import or_

from ..common.audit import Actor, AuditEntry, enrich_logs
from ..common.db import atomic
from ..common.errors import APIError, ValidationError
from ..common.params import parse_int, parse_iso_datetime
from ..common.rbac import admin_required, current_user
from ..models import AuditAction, AuditLog
from ..services import get_services


audit_bp = Blueprint("audit", __name__, url_prefix="/api")

SHARE_ACTIONS = {
    "file": AuditAction.FILE_SHARED,
    "folder": AuditAction.FOLDER_SHARED,
}


def _filtered_query():
    from_dt = parse_iso_datetime(request.args.get("from"), "from")
    to_dt = parse_iso_datetime(request.args.get("to"), "to")
    q = (request.args.get("q") or "").strip()
    action = (request.args.get("action") or "").strip()
    user_id = request.args.get("user_id")

    query = AuditLog.query
    if from_dt is not None:
        query = query.filter(AuditLog.created_at >= from_dt)
    if to_dt is not None:
        query = query.filter(AuditLog.created_at <= to_dt)
    if action:
        query = query.filter(AuditLog.action == action)
    if user_id not in (None, ""):
        query = query.filter(AuditLog.user_id == parse_int(user_id, "user_id"))
    if q:
        wildcard = f"%{q}%"
        query = query.filter(
            or_(
                AuditLog.action.ilike(wildcard),
                AuditLog.resource_type.ilike(wildcard),
                AuditLog.details.ilike(wildcard),
            )
        )

    return query


def _csv_response(rows: list[AuditLog]):  # type: ignore[no-untyped-def]
    buffer = io.StringIO()
    writer = csv.writer(buffer)
    writer.writerow(
        ["id", "created_at", "user_id", "user_name", "action", "resource_type", "resource_id", "details", "ip_address", "user_agent"]
    )
    for row in enrich_logs(rows):
        writer.writerow(
            [
                row["id"],
                row["created_at"],
                row["user_id"],
                row["user_name"],
                row["action"],
                row["resource_type"],
                row["resource_id"],
                row["details"],
                row["ip_address"],
                row["user_agent"],
            ]
        )

    return (
        buffer.getvalue(),
        200,
        {
            "Content-Type": "text/csv; charset=utf-8",
            "Content-Disposition": f'attachment; filename="audit-logs-{datetime.now(timezone.utc).strftime("%Y%m%d%H%M%S")}.csv"',
        },
    )


@audit_bp.get("/audit-logs")
@admin_required
def list_logs():
    query = _filtered_query()

    export = (request.args.get("export") or "").strip().lower()
    if export == "csv":
        rows = query.order_by(AuditLog.created_at.desc(), AuditLog.id.desc()).limit(10000).all()
        return _csv_response(rows)

    try:
        page = max(1, int(request.args.get("page", "1")))
        page_size = min(200, max(1, int(request.args.get("page_size", "50"))))
    except ValueError as error:
        raise APIError(400, "INVALID_PARAMETER", "page and page_size must be integers.") from error

    total = query.count()
    items = (
        query.order_by(AuditLog.created_at.desc(), AuditLog.id.desc())
        .offset((page - 1) * page_size)
        .limit(page_size)
        .all()
    )

    return jsonify(
        {
            "items": enrich_logs(items),
            "pagination": {
                "page": page,
                "page_size": page_size,
                "total": total,
                "total_pages": (total + page_size - 1) // page_size,
            },
        }
    )


@audit_bp.get("/audit-logs/recent")
@jwt_required()
def recent_logs():
    user = current_user(required=True)
    assert user is not None
    limit = min(100, max(1, parse_int(request.args.get("limit", "10"), "limit")))

    query = AuditLog.query
    if not user.is_admin:
        query = query.filter(AuditLog.user_id == user.id)
    items = query.order_by(AuditLog.created_at.desc(), AuditLog.id.desc()).limit(limit).all()
    return jsonify({"items": enrich_logs(items)})


@audit_bp.post("/share/log")
@jwt_required()
def log_share():
    user = current_user(required=True)
    assert user is not None

    payload = request.get_json(silent=True) or {}
    resource_type = (payload.get("resource_type") or "").strip().lower()
    action = SHARE_ACTIONS.get(resource_type)
    if action is None:
        raise ValidationError("resource_type must be 'file' or 'folder'.", code="INVALID_RESOURCE_TYPE")
    resource_id = parse_int(payload.get("resource_id"), "resource_id")

    services = get_services()
    if action == AuditAction.FILE_SHARED:
        name = services.lifecycle.get_active(resource_id).original_name
    else:
        name = services.folders.get(resource_id).name

    with atomic():
        row = services.audit.append(
            AuditEntry(
                action=action,
                actor=Actor.from_request(user),
                resource_type=resource_type,
                resource_id=resource_id,
                details=f"{resource_type.capitalize()} shared: {name}",
            )
        )
    current_app.logger.info("user %s shared %s %s", user.id, resource_type, resource_id)
    return jsonify({"logged": row is not None}), 201
