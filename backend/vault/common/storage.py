from __future__ import annotations

import re
from dataclasses import dataclass
from pathlib import PurePosixPath

from flask import current_app
from werkzeug.datastructures import FileStorage

from .errors import ValidationError


MAX_NAME_LENGTH = 255
DEFAULT_FILE_NAME = "unnamed_file"
INVALID_NAME_CHARS = re.compile(r'[\\/:*?"<>|]')
CONTROL_CHARS = re.compile(r"[\x00-\x1f\x7f]")


def validate_node_name(name: str | None) -> str:
    """Clean a folder name or reject it.

    Path separators and reserved characters become ``_``; a name made only of
    such characters is rejected.
    """
    if not isinstance(name, str):
        raise ValidationError("Folder name is required.", code="INVALID_NAME")

    cleaned = CONTROL_CHARS.sub("", name).strip()
    if not cleaned:
        raise ValidationError("Folder name cannot be empty or whitespace only.", code="INVALID_NAME")
    if len(cleaned) > MAX_NAME_LENGTH:
        raise ValidationError(f"Folder name must be <= {MAX_NAME_LENGTH} characters.", code="INVALID_NAME")
    if not INVALID_NAME_CHARS.sub("", cleaned).strip():
        raise ValidationError("Folder name contains only invalid characters.", code="INVALID_NAME")
    if cleaned in {".", ".."}:
        raise ValidationError("Reserved name.", code="INVALID_NAME")

    return INVALID_NAME_CHARS.sub("_", cleaned)


def sanitize_file_name(original_name: str | None) -> str:
    # Drop any client-side directory part, whichever separator it used.
    base = PurePosixPath((original_name or "").replace("\\", "/")).name
    sanitized = INVALID_NAME_CHARS.sub("_", CONTROL_CHARS.sub("", base)).strip()
    if not sanitized or sanitized in {".", ".."}:
        sanitized = DEFAULT_FILE_NAME

    if len(sanitized) <= MAX_NAME_LENGTH:
        return sanitized

    suffix = PurePosixPath(sanitized).suffix
    if len(suffix) >= MAX_NAME_LENGTH:
        return sanitized[:MAX_NAME_LENGTH]
    return sanitized[: MAX_NAME_LENGTH - len(suffix)] + suffix


def is_mime_type_allowed(mime_type: str | None) -> bool:
    normalized = (mime_type or "").split(";", 1)[0].strip().lower()
    if not normalized:
        return False
    if current_app.config.get("ALLOW_ANY_IMAGE", True) and normalized.startswith("image/"):
        return True
    return normalized in set(current_app.config["ALLOWED_MIME_TYPES"])


@dataclass(frozen=True)
class UploadedPayload:
    original_name: str
    mime_type: str
    data: bytes

    @property
    def size(self) -> int:
        return len(self.data)


def read_upload(file_obj: FileStorage | None) -> UploadedPayload:
    """Validate a multipart upload and read it fully into memory."""
    if file_obj is None:
        raise ValidationError("Multipart field 'file' is required.", code="INVALID_FILE")

    mime_type = (file_obj.mimetype or "").strip().lower()
    if not is_mime_type_allowed(mime_type):
        raise ValidationError(
            "File type is not allowed.",
            code="MIME_TYPE_NOT_ALLOWED",
            details={"mime_type": mime_type},
        )

    max_size = int(current_app.config["MAX_UPLOAD_SIZE_BYTES"])
    data = file_obj.stream.read(max_size + 1)
    if not data:
        raise ValidationError("File is empty.", code="INVALID_FILE")
    if len(data) > max_size:
        raise ValidationError(
            "File exceeds max upload size.",
            code="UPLOAD_TOO_LARGE",
            details={"max_size": max_size},
            status_code=413,
        )

    return UploadedPayload(
        original_name=sanitize_file_name(file_obj.filename),
        mime_type=mime_type,
        data=data,
    )
