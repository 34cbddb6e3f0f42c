from __future__ import annotations

import enum
from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Any, Union

from argon2 import PasswordHasher
from argon2.exceptions import VerificationError, VerifyMismatchError
from sqlalchemy import text
from sqlalchemy.orm import deferred

from .extensions import db


pwd_hasher = PasswordHasher()

# SQLite only autoincrements INTEGER PRIMARY KEY columns.
BigIntId = db.BigInteger().with_variant(db.Integer(), "sqlite")


def utc_now() -> datetime:
    return datetime.now(timezone.utc)


def _isoformat(value: datetime | None) -> str | None:
    return value.isoformat() if value else None


class AuditAction(str, enum.Enum):
    LOGIN = "login"
    LOGIN_FAILED = "login_failed"
    LOGOUT = "logout"
    UPLOAD = "upload"
    REPLACEMENT = "replacement"
    DOWNLOAD = "download"
    PREVIEW = "preview"
    DELETE = "delete"
    MOVE = "move"
    FOLDER_CREATED = "folder_created"
    FOLDER_RENAMED = "folder_renamed"
    FOLDER_DELETED = "folder_deleted"
    FILE_SHARED = "file_shared"
    FOLDER_SHARED = "folder_shared"
    BACKUP_EXECUTED = "backup_executed"
    USER_CREATED = "user_created"
    USER_UPDATED = "user_updated"


class FileState(str, enum.Enum):
    ACTIVE = "active"
    SOFT_DELETED = "soft_deleted"
    PURGED = "purged"


@dataclass(frozen=True)
class RootVersion:
    """First file of a version chain."""


@dataclass(frozen=True)
class LinkedVersion:
    previous_id: int


VersionLink = Union[RootVersion, LinkedVersion]


class User(db.Model):
    __tablename__ = "users"

    id = db.Column(BigIntId, primary_key=True)
    username = db.Column(db.String(120), unique=True, nullable=False, index=True)
    full_name = db.Column(db.String(255), nullable=False)
    password_hash = db.Column(db.String(255), nullable=False)
    is_admin = db.Column(db.Boolean, default=False, nullable=False)
    is_active = db.Column(db.Boolean, default=True, nullable=False)
    failed_login_attempts = db.Column(db.Integer, default=0, nullable=False)
    locked_until = db.Column(db.DateTime(timezone=True), nullable=True)
    last_login = db.Column(db.DateTime(timezone=True), nullable=True)
    created_at = db.Column(db.DateTime(timezone=True), nullable=False, default=utc_now)

    def set_password(self, password: str) -> None:
        self.password_hash = pwd_hasher.hash(password)

    def verify_password(self, password: str) -> bool:
        try:
            return pwd_hasher.verify(self.password_hash, password)
        except (VerifyMismatchError, VerificationError):
            return False

    def to_dict(self) -> dict[str, Any]:
        return {
            "id": self.id,
            "username": self.username,
            "full_name": self.full_name,
            "is_admin": self.is_admin,
            "is_active": self.is_active,
            "last_login": _isoformat(self.last_login),
            "created_at": _isoformat(self.created_at),
        }


class Folder(db.Model):
    __tablename__ = "folders"

    id = db.Column(BigIntId, primary_key=True)
    name = db.Column(db.String(255), nullable=False)
    parent_id = db.Column(BigIntId, db.ForeignKey("folders.id"), nullable=True, index=True)
    owner_user_id = db.Column(BigIntId, db.ForeignKey("users.id"), nullable=False, index=True)
    created_at = db.Column(db.DateTime(timezone=True), nullable=False, default=utc_now)

    @property
    def is_root(self) -> bool:
        return self.parent_id is None

    def to_dict(self) -> dict[str, Any]:
        return {
            "id": self.id,
            "name": self.name,
            "parent_id": self.parent_id,
            "is_root": self.is_root,
            "owner_user_id": self.owner_user_id,
            "created_at": _isoformat(self.created_at),
        }


class StoredFile(db.Model):
    __tablename__ = "files"

    id = db.Column(BigIntId, primary_key=True)
    contract_id = db.Column(db.String(255), nullable=False, index=True)
    supplier = db.Column(db.String(255), nullable=False, default="")
    folder_id = db.Column(BigIntId, db.ForeignKey("folders.id"), nullable=True, index=True)
    filename = db.Column(db.String(255), nullable=False)
    original_name = db.Column(db.String(255), nullable=False)
    mime_type = db.Column(db.String(255), nullable=False)
    size = db.Column(db.BigInteger, nullable=False)
    payload = deferred(db.Column(db.LargeBinary, nullable=False))
    uploaded_by = db.Column(BigIntId, db.ForeignKey("users.id"), nullable=False, index=True)
    uploaded_at = db.Column(db.DateTime(timezone=True), nullable=False, default=utc_now, index=True)
    version = db.Column(db.Integer, nullable=False, default=1)
    # No FK: a purged predecessor leaves the successor's chain readable.
    previous_version_id = db.Column(BigIntId, nullable=True, index=True)
    is_deleted = db.Column(db.Boolean, nullable=False, default=False)
    deleted_at = db.Column(db.DateTime(timezone=True), nullable=True)
    deleted_by = db.Column(BigIntId, nullable=True)

    __table_args__ = (
        db.CheckConstraint("version >= 1", name="ck_files_version_positive"),
        db.Index(
            "uq_files_active_contract_id",
            "contract_id",
            unique=True,
            postgresql_where=text("is_deleted = false"),
            sqlite_where=text("is_deleted = 0"),
        ),
    )

    @property
    def state(self) -> FileState:
        return FileState.SOFT_DELETED if self.is_deleted else FileState.ACTIVE

    @property
    def version_link(self) -> VersionLink:
        if self.previous_version_id is None:
            return RootVersion()
        return LinkedVersion(previous_id=self.previous_version_id)

    @version_link.setter
    def version_link(self, link: VersionLink) -> None:
        if isinstance(link, LinkedVersion):
            self.previous_version_id = link.previous_id
        else:
            self.previous_version_id = None

    def to_dict(self) -> dict[str, Any]:
        return {
            "id": self.id,
            "contract_id": self.contract_id,
            "supplier": self.supplier,
            "folder_id": self.folder_id,
            "filename": self.filename,
            "original_name": self.original_name,
            "mime_type": self.mime_type,
            "size": self.size,
            "uploaded_by": self.uploaded_by,
            "uploaded_at": _isoformat(self.uploaded_at),
            "version": self.version,
            "previous_version_id": self.previous_version_id,
            "is_deleted": self.is_deleted,
            "deleted_at": _isoformat(self.deleted_at),
            "deleted_by": self.deleted_by,
        }


class AuditLog(db.Model):
    __tablename__ = "audit_logs"

    id = db.Column(BigIntId, primary_key=True)
    user_id = db.Column(BigIntId, db.ForeignKey("users.id", ondelete="SET NULL"), nullable=True, index=True)
    action = db.Column(db.String(64), nullable=False, index=True)
    resource_type = db.Column(db.String(64), nullable=True)
    resource_id = db.Column(BigIntId, nullable=True)
    details = db.Column(db.Text, nullable=True)
    ip_address = db.Column(db.String(128), nullable=True)
    user_agent = db.Column(db.String(512), nullable=True)
    created_at = db.Column(db.DateTime(timezone=True), nullable=False, default=utc_now, index=True)

    def to_dict(self) -> dict[str, Any]:
        return {
            "id": self.id,
            "user_id": self.user_id,
            "action": self.action,
            "resource_type": self.resource_type,
            "resource_id": self.resource_id,
            "details": self.details,
            "ip_address": self.ip_address,
            "user_agent": self.user_agent,
            "created_at": _isoformat(self.created_at),
        }
