from __future__ import annotations

from datetime import datetime, timezone

from .errors import APIError


def parse_int(value: str | int | None, field_name: str) -> int:
    try:
        return int(value or "")
    except (TypeError, ValueError) as error:
        raise APIError(400, "INVALID_PARAMETER", f"{field_name} must be an integer.") from error


def parse_nullable_int(value: str | int | None, field_name: str) -> int | None:
    if value in (None, "", "null"):
        return None
    try:
        return int(value)
    except (TypeError, ValueError) as error:
        raise APIError(400, "INVALID_PARAMETER", f"{field_name} must be an integer or null.") from error


def parse_iso_datetime(value: str | None, field_name: str) -> datetime | None:
    if value in (None, ""):
        return None
    raw = value.strip()
    if raw.endswith("Z"):
        raw = raw[:-1] + "+00:00"
    try:
        parsed = datetime.fromisoformat(raw)
    except ValueError as error:
        raise APIError(400, "INVALID_PARAMETER", f"{field_name} must be an ISO-8601 datetime.") from error
    if parsed.tzinfo is None:
        parsed = parsed.replace(tzinfo=timezone.utc)
    return parsed.astimezone(timezone.utc)
