from __future__ import annotations

from dataclasses import dataclass
from typing import Any, Iterable, Protocol

from flask import current_app, has_request_context, request
from sqlalchemy.exc import InvalidRequestError, SQLAlchemyError

from ..extensions import db
from ..models import AuditAction, AuditLog, User


UNKNOWN = "unknown"
SYSTEM_USER_LABEL = "System"
UNKNOWN_USER_LABEL = "Unknown user"


def _request_actor_ip() -> str | None:
    if not has_request_context():
        return None
    forwarded = request.headers.get("X-Forwarded-For") or ""
    if forwarded.strip():
        return forwarded.split(",", 1)[0].strip()
    return request.remote_addr or None


def _request_user_agent() -> str | None:
    if not has_request_context():
        return None
    value = (request.headers.get("User-Agent") or "").strip()
    return value or None


@dataclass(frozen=True)
class Actor:
    """Who performed an operation, and from where."""

    user_id: int | None
    ip_address: str = UNKNOWN
    user_agent: str = UNKNOWN

    @classmethod
    def from_request(cls, user: User | None) -> "Actor":
        return cls(
            user_id=user.id if user is not None else None,
            ip_address=_request_actor_ip() or UNKNOWN,
            user_agent=_request_user_agent() or UNKNOWN,
        )

    @classmethod
    def system(cls) -> "Actor":
        return cls(user_id=None)


@dataclass(frozen=True)
class AuditEntry:
    action: AuditAction
    actor: Actor
    resource_type: str | None = None
    resource_id: int | None = None
    details: str | None = None


class AuditRecorder(Protocol):
    def append(self, entry: AuditEntry) -> AuditLog | None: ...


class DatabaseAuditRecorder:
    """Writes audit rows inside a SAVEPOINT of the caller's transaction.

    A failed write is logged and dropped; it never propagates into the
    operation being recorded.
    """

    def append(self, entry: AuditEntry) -> AuditLog | None:
        row = AuditLog(
            user_id=entry.actor.user_id,
            action=AuditAction(entry.action).value,
            resource_type=entry.resource_type,
            resource_id=entry.resource_id,
            details=entry.details,
            ip_address=entry.actor.ip_address,
            user_agent=entry.actor.user_agent,
        )
        try:
            with db.session.begin_nested():
                db.session.add(row)
                db.session.flush([row])
        except SQLAlchemyError:
            current_app.logger.warning(
                "Audit write failed for action=%s resource=%s:%s",
                row.action,
                entry.resource_type,
                entry.resource_id,
                exc_info=True,
            )
            # Keep the outer commit from retrying the broken INSERT.
            try:
                db.session.expunge(row)
            except InvalidRequestError:
                pass
            return None

        return row


def enrich_logs(logs: Iterable[AuditLog]) -> list[dict[str, Any]]:
    """Attach the acting user's display name to each log, for presentation only."""
    items = list(logs)
    user_ids = {log.user_id for log in items if log.user_id is not None}
    names: dict[int, str] = {}
    if user_ids:
        rows = db.session.query(User.id, User.full_name).filter(User.id.in_(user_ids)).all()
        names = {row[0]: row[1] for row in rows}

    enriched: list[dict[str, Any]] = []
    for log in items:
        payload = log.to_dict()
        if log.user_id is None:
            payload["user_name"] = SYSTEM_USER_LABEL
        else:
            payload["user_name"] = names.get(log.user_id, UNKNOWN_USER_LABEL)
        enriched.append(payload)
    return enriched
