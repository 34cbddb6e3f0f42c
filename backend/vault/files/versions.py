from __future__ import annotations

from dataclasses import dataclass

from flask import current_app
from sqlalchemy.exc import IntegrityError

from ..common.audit import Actor, AuditEntry, AuditRecorder
from ..common.db import atomic
from ..common.errors import ConflictError, NotFoundError, ValidationError
from ..common.storage import UploadedPayload
from ..extensions import db
from ..models import AuditAction, Folder, LinkedVersion, RootVersion, StoredFile, VersionLink
from .contracts import CONTRACT_CONFLICT_MESSAGE, ContractUniquenessGuard
from .lifecycle import LifecycleManager


@dataclass(frozen=True)
class FileMetadata:
    contract_id: str
    supplier: str
    folder_id: int | None
    payload: UploadedPayload
    uploaded_by: int
    previous_version_id: int | None = None


class FileVersionChain:
    """Creates file rows, links successive versions and reads version history.

    Replacement keeps history: the predecessor is soft-deleted and the new row
    links back to it, so every chain walks down to a version 1 root.
    """

    def __init__(self, guard: ContractUniquenessGuard, lifecycle: LifecycleManager, audit: AuditRecorder) -> None:
        self.guard = guard
        self.lifecycle = lifecycle
        self.audit = audit

    def resolve_link(self, previous_version_id: int | None) -> tuple[VersionLink, int]:
        """Return the link to store and the version number it implies.

        Soft-deleted predecessors count; a dangling reference starts a new chain.
        """
        if previous_version_id is None:
            return RootVersion(), 1
        previous = self.lifecycle.find_including_deleted(previous_version_id)
        if previous is None:
            current_app.logger.info("previous version %s not found, starting a new chain", previous_version_id)
            return RootVersion(), 1
        return LinkedVersion(previous_id=previous.id), previous.version + 1

    def _ensure_same_folder(self, metadata: FileMetadata) -> None:
        # A chain lives in one folder, so purging a folder takes whole chains with it.
        if metadata.previous_version_id is None:
            return
        previous = self.lifecycle.find_including_deleted(metadata.previous_version_id)
        if previous is not None and previous.folder_id != metadata.folder_id:
            raise ValidationError(
                "A new version must be stored in the same folder as its previous version.",
                code="VERSION_FOLDER_MISMATCH",
                details={"previous_version_id": previous.id, "folder_id": previous.folder_id},
            )

    def _insert(self, metadata: FileMetadata, contract_id: str) -> StoredFile:
        supplier = (metadata.supplier or "").strip()
        if not supplier:
            raise ValidationError("Supplier is required and cannot be empty.", code="INVALID_SUPPLIER")

        link, version = self.resolve_link(metadata.previous_version_id)
        item = StoredFile(
            contract_id=contract_id,
            supplier=supplier,
            folder_id=metadata.folder_id,
            filename=metadata.payload.original_name,
            original_name=metadata.payload.original_name,
            mime_type=metadata.payload.mime_type,
            size=metadata.payload.size,
            payload=metadata.payload.data,
            uploaded_by=metadata.uploaded_by,
            version=version,
        )
        item.version_link = link
        db.session.add(item)
        try:
            db.session.flush([item])
        except IntegrityError as error:
            if "contract_id" not in str(error.orig):
                raise
            raise ConflictError(
                CONTRACT_CONFLICT_MESSAGE,
                code="CONTRACT_ID_CONFLICT",
                details={"contract_id": contract_id},
            ) from error
        return item

    def create(self, metadata: FileMetadata, actor: Actor) -> StoredFile:
        with atomic():
            contract_id = self.guard.check_available(metadata.contract_id)
            if metadata.folder_id is not None and db.session.get(Folder, metadata.folder_id) is None:
                raise NotFoundError("Folder not found.", code="FOLDER_NOT_FOUND")
            self._ensure_same_folder(metadata)
            item = self._insert(metadata, contract_id)
            self.audit.append(
                AuditEntry(
                    action=AuditAction.UPLOAD,
                    actor=actor,
                    resource_type="file",
                    resource_id=item.id,
                    details=(
                        f"File uploaded: {item.original_name} "
                        f"(contract: {item.contract_id}, supplier: {item.supplier}, version: {item.version})"
                    ),
                )
            )
        return item

    def replace(self, existing_id: int, payload: UploadedPayload, actor: Actor) -> StoredFile:
        with atomic():
            existing = self.lifecycle.get_active(existing_id)
            # The predecessor must leave the active set before its successor
            # takes over the contract ID.
            self.lifecycle.mark_deleted(existing, actor.user_id)
            item = self._insert(
                FileMetadata(
                    contract_id=existing.contract_id,
                    supplier=existing.supplier,
                    folder_id=existing.folder_id,
                    payload=payload,
                    uploaded_by=actor.user_id if actor.user_id is not None else existing.uploaded_by,
                    previous_version_id=existing.id,
                ),
                existing.contract_id,
            )
            self.audit.append(
                AuditEntry(
                    action=AuditAction.REPLACEMENT,
                    actor=actor,
                    resource_type="file",
                    resource_id=item.id,
                    details=(
                        f"File replaced: {item.original_name} v{item.version} "
                        f"(replaced {existing.original_name} v{existing.version})"
                    ),
                )
            )
        return item

    def get_versions(self, file_id: int) -> list[StoredFile]:
        current: StoredFile | None = self.lifecycle.get_including_deleted(file_id)
        collected: list[StoredFile] = []
        seen: set[int] = set()
        while current is not None and current.id not in seen:
            seen.add(current.id)
            collected.append(current)
            link = current.version_link
            if isinstance(link, RootVersion):
                break
            current = self.lifecycle.find_including_deleted(link.previous_id)
        return sorted(collected, key=lambda item: item.version)

    def lineage(self, file_id: int) -> list[StoredFile]:
        """Every row of the chain ``file_id`` belongs to, successors included."""
        chain = self.get_versions(file_id)
        known = {item.id for item in chain}
        frontier = [item.id for item in chain]
        while frontier:
            successors = StoredFile.query.filter(StoredFile.previous_version_id.in_(frontier)).all()
            frontier = []
            for successor in successors:
                if successor.id in known:
                    continue
                known.add(successor.id)
                chain.append(successor)
                frontier.append(successor.id)
        return sorted(chain, key=lambda item: (item.version, item.id))

    def move(self, file_id: int, folder_id: int | None, actor: Actor) -> list[StoredFile]:
        """Move a file and every version of it to ``folder_id``."""
        with atomic():
            item = self.lifecycle.get_active(file_id)
            if folder_id is not None and db.session.get(Folder, folder_id) is None:
                raise NotFoundError("Folder not found.", code="FOLDER_NOT_FOUND")
            previous_folder_id = item.folder_id
            chain = self.lineage(file_id)
            for version in chain:
                version.folder_id = folder_id
            db.session.flush()
            self.audit.append(
                AuditEntry(
                    action=AuditAction.MOVE,
                    actor=actor,
                    resource_type="file",
                    resource_id=item.id,
                    details=(
                        f"File moved: {item.original_name} "
                        f"(folder {previous_folder_id or 'root'} -> {folder_id or 'root'}, {len(chain)} versions)"
                    ),
                )
            )
        return chain
