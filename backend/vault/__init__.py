from __future__ import annotations

from typing import Any

from dotenv import load_dotenv
from flask import Flask, jsonify
from flask_jwt_extended import JWTManager

from .audit.routes import audit_bp
from .auth.routes import auth_bp
from .backup.routes import backup_bp
from .common.audit import AuditRecorder
from .common.errors import error_payload, register_error_handlers
from .common.token_store import revoked_tokens
from .config import Config
from .extensions import cors, db, jwt, migrate
from .files.routes import files_bp
from .folders.routes import folders_bp
from .services import EXTENSION_KEY, build_services


load_dotenv()


def _register_jwt_handlers(jwt_manager: JWTManager) -> None:
    @jwt_manager.unauthorized_loader
    def unauthorized(reason: str):  # type: ignore[no-untyped-def]
        return jsonify(error_payload("UNAUTHENTICATED", "Missing or invalid authentication token.", {"reason": reason})), 401

    @jwt_manager.invalid_token_loader
    def invalid_token(reason: str):  # type: ignore[no-untyped-def]
        return jsonify(error_payload("INVALID_TOKEN", "Invalid token.", {"reason": reason})), 401

    @jwt_manager.expired_token_loader
    def expired_token(jwt_header, jwt_payload):  # type: ignore[no-untyped-def]
        return jsonify(error_payload("TOKEN_EXPIRED", "Token has expired.")), 401

    @jwt_manager.token_in_blocklist_loader
    def token_revoked(jwt_header, jwt_payload) -> bool:  # type: ignore[no-untyped-def]
        return revoked_tokens.is_revoked(jwt_payload["jti"])

    @jwt_manager.revoked_token_loader
    def revoked_token(jwt_header, jwt_payload):  # type: ignore[no-untyped-def]
        return jsonify(error_payload("TOKEN_REVOKED", "Token has been revoked.")), 401


def create_app(config_override: dict[str, Any] | None = None, audit: AuditRecorder | None = None) -> Flask:
    app = Flask(__name__)
    app.config.from_object(Config)
    if config_override:
        app.config.update(config_override)
    app.logger.setLevel(app.config["LOG_LEVEL"])

    db.init_app(app)
    migrate.init_app(app, db)
    jwt.init_app(app)
    _register_jwt_handlers(jwt)
    cors.init_app(app, resources={r"/*": {"origins": app.config["FRONTEND_ORIGINS"]}})

    app.extensions[EXTENSION_KEY] = build_services(audit)

    app.register_blueprint(auth_bp)
    app.register_blueprint(folders_bp)
    app.register_blueprint(files_bp)
    app.register_blueprint(audit_bp)
    app.register_blueprint(backup_bp)

    @app.get("/health")
    def healthcheck():
        return {"status": "ok"}

    register_error_handlers(app)

    return app
