from __future__ import annotations

from datetime import datetime, timedelta, timezone
from typing import Any

from flask import Blueprint, current_app, jsonify, request
from flask_jwt_extended import create_access_token, get_jwt, jwt_required
from sqlalchemy import func

from ..common.audit import Actor, AuditEntry
from ..common.errors import APIError
from ..common.rbac import current_user
from ..common.token_store import revoked_tokens
from ..extensions import db
from ..models import AuditAction, User, utc_now
from ..services import get_services


auth_bp = Blueprint("auth", __name__, url_prefix="/auth")


def _as_utc(value: datetime | None) -> datetime | None:
    # SQLite hands timestamps back without tzinfo; they are stored as UTC.
    if value is None or value.tzinfo is not None:
        return value
    return value.replace(tzinfo=timezone.utc)


def _token_response(user: User) -> dict[str, Any]:
    access_token = create_access_token(identity=str(user.id), additional_claims={"is_admin": user.is_admin})
    return {
        "access_token": access_token,
        "user": user.to_dict(),
    }


def _record(action: AuditAction, actor: Actor, user: User | None, details: str) -> None:
    get_services().audit.append(
        AuditEntry(
            action=action,
            actor=actor,
            resource_type="user",
            resource_id=user.id if user is not None else None,
            details=details,
        )
    )


@auth_bp.post("/login")
def login():
    payload = request.get_json(silent=True) or {}
    username = (payload.get("username") or "").strip()
    password = payload.get("password") or ""

    if not username or not password:
        raise APIError(400, "INVALID_CREDENTIALS", "Username and password are required.")

    now = utc_now()
    user = User.query.filter(func.lower(User.username) == username.lower()).one_or_none()
    actor = Actor.from_request(user)

    locked_until = _as_utc(user.locked_until) if user is not None else None
    if user is not None and locked_until is not None and locked_until > now:
        _record(AuditAction.LOGIN_FAILED, actor, user, f"Login attempt on locked account: {username}")
        db.session.commit()
        raise APIError(
            423,
            "ACCOUNT_LOCKED",
            "Account is temporarily locked after repeated failed logins.",
            {"locked_until": locked_until.isoformat()},
        )

    if user is None or not user.is_active or not user.verify_password(password):
        details = f"Failed login: {username}"
        if user is not None and user.is_active:
            user.failed_login_attempts = (user.failed_login_attempts or 0) + 1
            if user.failed_login_attempts >= int(current_app.config["LOGIN_MAX_FAILED_ATTEMPTS"]):
                user.locked_until = now + timedelta(minutes=int(current_app.config["LOGIN_LOCK_MINUTES"]))
                user.failed_login_attempts = 0
                details = f"Failed login: {username} (account locked)"
                current_app.logger.warning("account %s locked until %s", user.id, user.locked_until.isoformat())
        _record(AuditAction.LOGIN_FAILED, actor, user, details)
        db.session.commit()
        raise APIError(401, "INVALID_CREDENTIALS", "Invalid username or password.")

    user.failed_login_attempts = 0
    user.locked_until = None
    user.last_login = now
    _record(AuditAction.LOGIN, actor, user, f"Login: {user.username}")
    db.session.commit()

    return jsonify(_token_response(user))


@auth_bp.post("/logout")
@jwt_required()
def logout():
    user = current_user(required=True)
    assert user is not None

    claims = get_jwt()
    revoked_tokens.revoke(claims["jti"], int(claims["exp"]))
    _record(AuditAction.LOGOUT, Actor.from_request(user), user, f"Logout: {user.username}")
    db.session.commit()
    return jsonify({"logged_out": True})


@auth_bp.get("/me")
@jwt_required()
def me():
    user = current_user(required=True)
    assert user is not None
    return jsonify({"user": user.to_dict()})
