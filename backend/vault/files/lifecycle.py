from __future__ import annotations

from datetime import datetime, timedelta
from typing import Any

from flask import current_app
from sqlalchemy import func

from ..common.audit import Actor, AuditEntry, AuditRecorder
from ..common.db import atomic
from ..common.errors import InvalidTransitionError, NotFoundError
from ..extensions import db
from ..models import AuditAction, FileState, StoredFile, User, utc_now


ALLOWED_TRANSITIONS: dict[FileState, frozenset[FileState]] = {
    FileState.ACTIVE: frozenset({FileState.SOFT_DELETED, FileState.PURGED}),
    FileState.SOFT_DELETED: frozenset({FileState.PURGED}),
    FileState.PURGED: frozenset(),
}


def ensure_transition(current: FileState, target: FileState) -> None:
    if target not in ALLOWED_TRANSITIONS[current]:
        raise InvalidTransitionError(current.value, target.value)


def _active_query():
    return StoredFile.query.filter(StoredFile.is_deleted.is_(False))


class LifecycleManager:
    """Soft-delete and permanent-purge transitions for stored files, plus active listings."""

    def __init__(self, audit: AuditRecorder) -> None:
        self.audit = audit

    def get_active(self, file_id: int) -> StoredFile:
        item = _active_query().filter(StoredFile.id == file_id).one_or_none()
        if item is None:
            raise NotFoundError("File not found.", code="FILE_NOT_FOUND")
        return item

    def get_including_deleted(self, file_id: int) -> StoredFile:
        item = db.session.get(StoredFile, file_id)
        if item is None:
            raise NotFoundError("File not found.", code="FILE_NOT_FOUND")
        return item

    def find_including_deleted(self, file_id: int) -> StoredFile | None:
        return db.session.get(StoredFile, file_id)

    def mark_deleted(self, item: StoredFile, by_user_id: int | None) -> StoredFile:
        """ACTIVE -> SOFT_DELETED without an audit entry. Does not commit."""
        if item.state == FileState.SOFT_DELETED:
            return item
        ensure_transition(item.state, FileState.SOFT_DELETED)
        item.is_deleted = True
        item.deleted_at = utc_now()
        item.deleted_by = by_user_id
        db.session.flush()
        return item

    def soft_delete(self, file_id: int, actor: Actor) -> StoredFile:
        with atomic():
            item = self.get_including_deleted(file_id)
            if item.state == FileState.SOFT_DELETED:
                return item
            self.mark_deleted(item, actor.user_id)
            self.audit.append(
                AuditEntry(
                    action=AuditAction.DELETE,
                    actor=actor,
                    resource_type="file",
                    resource_id=item.id,
                    details=f"File deleted: {item.original_name} (contract: {item.contract_id})",
                )
            )
        return item

    def purge(self, file_id: int) -> bool:
        """Hard-delete a file row whatever its state. Returns False if it was already gone. Does not commit."""
        item = db.session.get(StoredFile, file_id)
        if item is None:
            current_app.logger.debug("purge skipped, file %s already gone", file_id)
            return False
        ensure_transition(item.state, FileState.PURGED)
        db.session.delete(item)
        db.session.flush()
        return True

    def purge_folder_contents(self, folder_id: int) -> int:
        file_ids = [
            row[0]
            for row in db.session.query(StoredFile.id)
            .filter(StoredFile.folder_id == folder_id)
            .order_by(StoredFile.version.desc(), StoredFile.id.desc())
            .all()
        ]
        return sum(1 for file_id in file_ids if self.purge(file_id))

    def list_by_user(self, user_id: int) -> list[StoredFile]:
        return _active_query().filter(StoredFile.uploaded_by == user_id).order_by(StoredFile.uploaded_at.desc()).all()

    def list_by_folder(self, folder_id: int) -> list[StoredFile]:
        return (
            _active_query()
            .filter(StoredFile.folder_id == folder_id)
            .order_by(StoredFile.original_name.asc(), StoredFile.id.asc())
            .all()
        )

    def list_all(self) -> list[StoredFile]:
        return _active_query().order_by(StoredFile.uploaded_at.desc()).all()

    def list_recent(self, limit: int = 10, user_id: int | None = None) -> list[StoredFile]:
        query = _active_query()
        if user_id is not None:
            query = query.filter(StoredFile.uploaded_by == user_id)
        return query.order_by(StoredFile.uploaded_at.desc()).limit(limit).all()

    def list_shared(self, user_id: int) -> list[StoredFile]:
        return _active_query().filter(StoredFile.uploaded_by != user_id).order_by(StoredFile.uploaded_at.desc()).all()

    def search(
        self,
        *,
        contract_id: str | None = None,
        uploader_id: int | None = None,
        start: datetime | None = None,
        end: datetime | None = None,
        mime_type: str | None = None,
    ) -> list[StoredFile]:
        query = _active_query()
        if contract_id:
            query = query.filter(StoredFile.contract_id.ilike(f"%{contract_id}%"))
        if uploader_id is not None:
            query = query.filter(StoredFile.uploaded_by == uploader_id)
        if start is not None:
            query = query.filter(StoredFile.uploaded_at >= start)
        if end is not None:
            query = query.filter(StoredFile.uploaded_at <= end)
        if mime_type:
            query = query.filter(StoredFile.mime_type.ilike(f"{mime_type}%"))
        return query.order_by(StoredFile.uploaded_at.desc()).limit(500).all()

    def stats(self) -> dict[str, Any]:
        week_ago = utc_now() - timedelta(days=7)
        total_files, total_size = (
            db.session.query(func.count(StoredFile.id), func.coalesce(func.sum(StoredFile.size), 0))
            .filter(StoredFile.is_deleted.is_(False))
            .one()
        )
        recent_uploads = _active_query().filter(StoredFile.uploaded_at >= week_ago).count()
        active_users = User.query.filter(User.is_active.is_(True)).count()
        return {
            "total_files": int(total_files or 0),
            "total_size": int(total_size or 0),
            "recent_uploads": recent_uploads,
            "active_users": active_users,
        }
