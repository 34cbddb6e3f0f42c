from __future__ import annotations

import os
from datetime import timedelta
from pathlib import Path


BASE_DIR = Path(__file__).resolve().parents[1]

DEFAULT_ALLOWED_MIME_TYPES = (
    "application/pdf",
    "application/msword",
    "application/vnd.openxmlformats-officedocument.wordprocessingml.document",
    "application/vnd.ms-excel",
    "application/vnd.openxmlformats-officedocument.spreadsheetml.sheet",
    "application/vnd.ms-powerpoint",
    "application/vnd.openxmlformats-officedocument.presentationml.presentation",
    "application/zip",
    "application/x-zip-compressed",
    "application/x-rar-compressed",
    "application/x-tar",
    "application/gzip",
)


def env_bool(name: str, default: bool = False) -> bool:
    raw = os.getenv(name)
    if raw is None:
        return default
    return raw.strip().lower() in {"1", "true", "yes", "on"}


def env_int(name: str, default: int) -> int:
    raw = os.getenv(name)
    if raw is None:
        return default
    try:
        return int(raw)
    except ValueError:
        return default


def env_str(name: str, default: str) -> str:
    raw = os.getenv(name)
    if raw is None:
        return default
    cleaned = raw.strip()
    return cleaned or default


def env_list(name: str, default: tuple[str, ...]) -> tuple[str, ...]:
    raw = os.getenv(name)
    if raw is None:
        return default
    values = tuple(value.strip().lower() for value in raw.split(",") if value.strip())
    return values or default


def env_origins() -> list[str]:
    raw_origins = os.getenv("FRONTEND_ORIGINS")
    if raw_origins:
        origins = [origin.strip() for origin in raw_origins.split(",") if origin.strip()]
        if origins:
            return origins
    return ["http://localhost:5173", "http://127.0.0.1:5173"]


class Config:
    SQLALCHEMY_DATABASE_URI = os.getenv("DATABASE_URL", f"sqlite:///{BASE_DIR / 'vault.db'}")
    SQLALCHEMY_TRACK_MODIFICATIONS = False

    JWT_SECRET_KEY = os.getenv("JWT_SECRET_KEY", "dev-jwt-secret-key-change-me-at-least-32-bytes")
    JWT_ACCESS_TOKEN_EXPIRES = timedelta(minutes=env_int("ACCESS_TOKEN_EXPIRES_MINUTES", 30))

    FRONTEND_ORIGINS = env_origins()
    LOG_LEVEL = env_str("LOG_LEVEL", "INFO").upper()

    MAX_UPLOAD_SIZE_BYTES = env_int("MAX_UPLOAD_SIZE_BYTES", 50 * 1024 * 1024)
    ALLOWED_MIME_TYPES = env_list("ALLOWED_MIME_TYPES", DEFAULT_ALLOWED_MIME_TYPES)
    ALLOW_ANY_IMAGE = env_bool("ALLOW_ANY_IMAGE", True)
    RECENT_FILES_LIMIT = max(1, env_int("RECENT_FILES_LIMIT", 10))

    LOGIN_MAX_FAILED_ATTEMPTS = max(1, env_int("LOGIN_MAX_FAILED_ATTEMPTS", 5))
    LOGIN_LOCK_MINUTES = max(1, env_int("LOGIN_LOCK_MINUTES", 15))

    BACKUP_COMPRESSION_LEVEL = min(9, max(0, env_int("BACKUP_COMPRESSION_LEVEL", 9)))

    # Multipart overhead on top of the largest accepted payload.
    MAX_CONTENT_LENGTH = env_int("MAX_CONTENT_LENGTH", MAX_UPLOAD_SIZE_BYTES + 1024 * 1024)
