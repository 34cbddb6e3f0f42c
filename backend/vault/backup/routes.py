from __future__ import annotations

from flask import Blueprint, Response, request, stream_with_context

from ..common.audit import Actor
from ..common.rbac import admin_required, current_user
from ..services import get_services


backup_bp = Blueprint("backup", __name__, url_prefix="/api/backup")


@backup_bp.get("")
@admin_required
def download_backup():
    archive = get_services().backups.build_archive(
        request.args.get("range"),
        Actor.from_request(current_user()),
        start=request.args.get("start"),
        end=request.args.get("end"),
    )
    return Response(
        stream_with_context(archive.chunks),
        mimetype="application/zip",
        headers={
            "Content-Disposition": f'attachment; filename="{archive.filename}"',
            "X-Backup-File-Count": str(len(archive.files)),
        },
    )
