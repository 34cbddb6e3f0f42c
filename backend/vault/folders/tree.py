from __future__ import annotations

from dataclasses import dataclass
from typing import Any

from flask import current_app
from sqlalchemy.exc import SQLAlchemyError

from ..common.audit import Actor, AuditEntry, AuditRecorder
from ..common.db import atomic
from ..common.errors import NotFoundError, PartialFailureError, ValidationError
from ..common.storage import validate_node_name
from ..extensions import db
from ..files.lifecycle import LifecycleManager
from ..models import AuditAction, Folder


# Marks an update field the caller left out, since None means "move to root".
UNCHANGED: Any = object()


@dataclass(frozen=True)
class DeletionSummary:
    folder_id: int
    folders_deleted: int
    files_purged: int

    def to_dict(self) -> dict[str, int]:
        return {
            "folder_id": self.folder_id,
            "folders_deleted": self.folders_deleted,
            "files_purged": self.files_purged,
        }


class FolderTree:
    def __init__(self, lifecycle: LifecycleManager, audit: AuditRecorder) -> None:
        self.lifecycle = lifecycle
        self.audit = audit

    def get(self, folder_id: int) -> Folder:
        folder = db.session.get(Folder, folder_id)
        if folder is None:
            raise NotFoundError("Folder not found.", code="FOLDER_NOT_FOUND")
        return folder

    def get_roots(self) -> list[Folder]:
        return Folder.query.filter(Folder.parent_id.is_(None)).order_by(Folder.name.asc(), Folder.id.asc()).all()

    def get_children(self, parent_id: int) -> list[Folder]:
        return Folder.query.filter(Folder.parent_id == parent_id).order_by(Folder.name.asc(), Folder.id.asc()).all()

    def get_path(self, folder_id: int) -> list[Folder]:
        """Folders from the root down to ``folder_id``.

        The walk never takes more steps than there are folder rows, so a cycle
        or dangling parent in stored data ends it instead of looping.
        """
        folder = self.get(folder_id)
        max_steps = Folder.query.count()
        path: list[Folder] = []
        seen: set[int] = set()
        current: Folder | None = folder
        while current is not None:
            if current.id in seen or len(path) >= max_steps:
                current_app.logger.warning("folder %s has a cyclic parent chain", folder_id)
                break
            seen.add(current.id)
            path.append(current)
            if current.parent_id is None:
                break
            parent = db.session.get(Folder, current.parent_id)
            if parent is None:
                current_app.logger.warning(
                    "folder %s references missing parent %s", current.id, current.parent_id
                )
            current = parent
        path.reverse()
        return path

    def path_names(self, folder_id: int) -> list[str]:
        return [folder.name for folder in self.get_path(folder_id)]

    def is_descendant(self, folder: Folder, maybe_descendant: Folder | None) -> bool:
        """True when ``maybe_descendant`` is ``folder`` or lies below it."""
        seen: set[int] = set()
        current = maybe_descendant
        while current is not None and current.id not in seen:
            if current.id == folder.id:
                return True
            seen.add(current.id)
            current = db.session.get(Folder, current.parent_id) if current.parent_id is not None else None
        return False

    def create(self, name: str | None, parent_id: int | None, actor: Actor) -> Folder:
        cleaned = validate_node_name(name)
        if actor.user_id is None:
            raise ValidationError("Folders need an owning user.", code="OWNER_REQUIRED")

        with atomic():
            if parent_id is not None:
                self.get(parent_id)
            folder = Folder(name=cleaned, parent_id=parent_id, owner_user_id=actor.user_id)
            db.session.add(folder)
            db.session.flush([folder])
            self.audit.append(
                AuditEntry(
                    action=AuditAction.FOLDER_CREATED,
                    actor=actor,
                    resource_type="folder",
                    resource_id=folder.id,
                    details=f"Folder created: {cleaned}",
                )
            )
        return folder

    def rename(self, folder_id: int, new_name: str | None, actor: Actor) -> Folder:
        return self.update(folder_id, actor, name=new_name)

    def move(self, folder_id: int, new_parent_id: int | None, actor: Actor) -> Folder:
        return self.update(folder_id, actor, parent_id=new_parent_id)

    def update(self, folder_id: int, actor: Actor, name: Any = UNCHANGED, parent_id: Any = UNCHANGED) -> Folder:
        """Rename and/or move a folder as one change with one audit entry.

        The name is checked before anything is touched, so a bad name leaves
        the folder where it was.
        """
        cleaned = None if name is UNCHANGED else validate_node_name(name)
        with atomic():
            folder = self.get(folder_id)
            previous_name = folder.name
            moving = parent_id is not UNCHANGED and parent_id != folder.parent_id
            target: Folder | None = None
            if moving and parent_id is not None:
                target = self.get(parent_id)
                if self.is_descendant(folder, target):
                    raise ValidationError(
                        "Cannot move a folder into itself or one of its subfolders.",
                        code="INVALID_MOVE",
                    )
            if cleaned is not None:
                folder.name = cleaned
            if moving:
                folder.parent_id = parent_id
            db.session.flush()

            if moving:
                details = f'Folder moved: {folder.name} -> {target.name if target else "root"}'
                if cleaned is not None and cleaned != previous_name:
                    details += f' (renamed from "{previous_name}")'
                action = AuditAction.MOVE
            elif cleaned is not None:
                details = f'Folder renamed: "{previous_name}" -> "{cleaned}"'
                action = AuditAction.FOLDER_RENAMED
            else:
                return folder
            self.audit.append(
                AuditEntry(
                    action=action,
                    actor=actor,
                    resource_type="folder",
                    resource_id=folder.id,
                    details=details,
                )
            )
        return folder

    def delete_recursive(self, folder_id: int, actor: Actor) -> DeletionSummary:
        """Purge a folder, its files and every descendant in one transaction.

        Post-order over an explicit worklist: a folder's files are purged when
        it is first visited, its children are processed next, and its own row
        goes last. Rows removed concurrently by another call are skipped.
        """
        with atomic():
            root = self.get(folder_id)
            root_name = root.name
            folders_deleted = 0
            files_purged = 0
            stack: list[tuple[int, bool]] = [(root.id, False)]
            visited: set[int] = set()
            current_id = root.id
            try:
                while stack:
                    current_id, expanded = stack.pop()
                    if expanded:
                        deleted = Folder.query.filter(Folder.id == current_id).delete(synchronize_session="fetch")
                        folders_deleted += deleted
                        continue
                    if current_id in visited:
                        continue
                    visited.add(current_id)
                    files_purged += self.lifecycle.purge_folder_contents(current_id)
                    stack.append((current_id, True))
                    child_ids = [
                        row[0]
                        for row in db.session.query(Folder.id)
                        .filter(Folder.parent_id == current_id)
                        .order_by(Folder.id.desc())
                        .all()
                    ]
                    stack.extend((child_id, False) for child_id in child_ids if child_id not in visited)
            except SQLAlchemyError as error:
                current_app.logger.exception("recursive delete of folder %s failed at folder %s", folder_id, current_id)
                raise PartialFailureError(
                    "Folder deletion was aborted; no changes were applied.",
                    details={"folder_id": folder_id, "failed_at": current_id},
                ) from error

            self.audit.append(
                AuditEntry(
                    action=AuditAction.FOLDER_DELETED,
                    actor=actor,
                    resource_type="folder",
                    resource_id=folder_id,
                    details=(
                        f"Folder deleted (recursive): {root_name} "
                        f"({folders_deleted} folders, {files_purged} files)"
                    ),
                )
            )

        current_app.logger.info(
            "folder %s deleted: %s folders, %s files purged", folder_id, folders_deleted, files_purged
        )
        return DeletionSummary(folder_id=folder_id, folders_deleted=folders_deleted, files_purged=files_purged)
