from __future__ import annotations

import enum
import io
import zipfile
from collections.abc import Iterator
from dataclasses import dataclass
from datetime import date, datetime, time, timedelta, timezone
from pathlib import PurePosixPath

from flask import current_app

from ..common.audit import Actor, AuditEntry, AuditRecorder
from ..common.db import atomic
from ..common.errors import ValidationError
from ..extensions import db
from ..folders.tree import FolderTree
from ..models import AuditAction, StoredFile, utc_now


class BackupRange(str, enum.Enum):
    CURRENT_WEEK = "week"
    CURRENT_MONTH = "month"
    CURRENT_YEAR = "year"
    PREVIOUS_YEAR = "lastYear"
    CUSTOM = "custom"


END_OF_DAY = time(23, 59, 59, 999999)


@dataclass(frozen=True)
class DateWindow:
    range: BackupRange
    start: datetime
    end: datetime
    label: str

    @property
    def filename(self) -> str:
        return f"{self.label}.zip"


def _parse_day(value: str | None, field_name: str) -> date:
    try:
        return date.fromisoformat((value or "").strip())
    except ValueError as error:
        raise ValidationError(
            f"{field_name} must be a date formatted as YYYY-MM-DD.",
            code="INVALID_DATE",
        ) from error


def resolve_range(
    range_name: str | None,
    start: str | None = None,
    end: str | None = None,
    now: datetime | None = None,
) -> DateWindow:
    now = (now or utc_now()).astimezone(timezone.utc)
    try:
        selected = BackupRange((range_name or BackupRange.CURRENT_MONTH.value).strip())
    except ValueError as error:
        raise ValidationError(
            "range must be one of week, month, year, lastYear, custom.",
            code="INVALID_RANGE",
        ) from error

    label = f"backup-{selected.value}-{now.date().isoformat()}"
    if selected == BackupRange.CURRENT_WEEK:
        return DateWindow(selected, now - timedelta(days=7), now, label)
    if selected == BackupRange.CURRENT_MONTH:
        first = datetime(now.year, now.month, 1, tzinfo=timezone.utc)
        return DateWindow(selected, first, now, label)
    if selected == BackupRange.CURRENT_YEAR:
        return DateWindow(selected, datetime(now.year, 1, 1, tzinfo=timezone.utc), now, label)
    if selected == BackupRange.PREVIOUS_YEAR:
        year = now.year - 1
        return DateWindow(
            selected,
            datetime(year, 1, 1, tzinfo=timezone.utc),
            datetime.combine(date(year, 12, 31), END_OF_DAY, tzinfo=timezone.utc),
            label,
        )

    if not start or not end:
        raise ValidationError("A custom range requires start and end (YYYY-MM-DD).", code="INVALID_RANGE")
    start_day = _parse_day(start, "start")
    end_day = _parse_day(end, "end")
    if start_day > end_day:
        raise ValidationError("start must not be after end.", code="INVALID_RANGE")
    return DateWindow(
        selected,
        datetime.combine(start_day, time.min, tzinfo=timezone.utc),
        datetime.combine(end_day, END_OF_DAY, tzinfo=timezone.utc),
        f"backup-{start_day.isoformat()}-{end_day.isoformat()}",
    )


class _ChunkSink(io.RawIOBase):
    """Write-only, non-seekable target that hands written bytes back in chunks."""

    def __init__(self) -> None:
        super().__init__()
        self._chunks: list[bytes] = []

    def writable(self) -> bool:
        return True

    def write(self, data) -> int:  # type: ignore[no-untyped-def, override]
        chunk = bytes(data)
        if chunk:
            self._chunks.append(chunk)
        return len(chunk)

    def drain(self) -> bytes:
        chunks, self._chunks = self._chunks, []
        return b"".join(chunks)


@dataclass
class BackupArchive:
    window: DateWindow
    files: list[StoredFile]
    chunks: Iterator[bytes]

    @property
    def filename(self) -> str:
        return self.window.filename


class BackupArchiver:
    def __init__(self, folders: FolderTree, audit: AuditRecorder) -> None:
        self.folders = folders
        self.audit = audit

    def select_latest(self, start: datetime, end: datetime) -> list[StoredFile]:
        """Active files uploaded in [start, end] that no other selected file supersedes."""
        selected = (
            StoredFile.query.filter(
                StoredFile.is_deleted.is_(False),
                StoredFile.uploaded_at >= start,
                StoredFile.uploaded_at <= end,
            )
            .order_by(StoredFile.uploaded_at.asc(), StoredFile.id.asc())
            .all()
        )
        superseded = {item.previous_version_id for item in selected if item.previous_version_id is not None}
        return [item for item in selected if item.id not in superseded]

    def entry_name(self, item: StoredFile, path_cache: dict[int, str] | None = None) -> str:
        if item.folder_id is None:
            return item.original_name
        cache = path_cache if path_cache is not None else {}
        folder_path = cache.get(item.folder_id)
        if folder_path is None:
            folder_path = "/".join(self.folders.path_names(item.folder_id))
            cache[item.folder_id] = folder_path
        return f"{folder_path}/{item.original_name}" if folder_path else item.original_name

    @staticmethod
    def _unique(name: str, used: set[str]) -> str:
        if name not in used:
            used.add(name)
            return name
        path = PurePosixPath(name)
        counter = 2
        while True:
            candidate = str(path.with_name(f"{path.stem} ({counter}){path.suffix}"))
            if candidate not in used:
                used.add(candidate)
                return candidate
            counter += 1

    def stream(self, files: list[StoredFile], written: list[int] | None = None) -> Iterator[bytes]:
        """Yield a zip archive of ``files`` chunk by chunk, loading one payload at a time.

        Ids of the files that made it into the archive are appended to ``written``.
        """
        sink = _ChunkSink()
        used: set[str] = set()
        path_cache: dict[int, str] = {}
        level = int(current_app.config.get("BACKUP_COMPRESSION_LEVEL", 9))
        with zipfile.ZipFile(sink, mode="w", compression=zipfile.ZIP_DEFLATED, compresslevel=level) as archive:
            for item in files:
                payload = db.session.query(StoredFile.payload).filter(StoredFile.id == item.id).scalar()
                if payload is None:
                    current_app.logger.warning("backup skipped file %s, payload is gone", item.id)
                    continue
                name = self._unique(self.entry_name(item, path_cache), used)
                info = zipfile.ZipInfo(name, date_time=_zip_timestamp(item.uploaded_at))
                info.compress_type = zipfile.ZIP_DEFLATED
                info.external_attr = 0o644 << 16
                archive.writestr(info, payload, compresslevel=level)
                if written is not None:
                    written.append(item.id)
                chunk = sink.drain()
                if chunk:
                    yield chunk
        tail = sink.drain()
        if tail:
            yield tail

    def build_archive(
        self,
        range_name: str | None,
        actor: Actor,
        start: str | None = None,
        end: str | None = None,
        now: datetime | None = None,
    ) -> BackupArchive:
        window = resolve_range(range_name, start, end, now=now)
        files = self.select_latest(window.start, window.end)

        def chunks() -> Iterator[bytes]:
            written: list[int] = []
            yield from self.stream(files, written)
            with atomic():
                self.audit.append(
                    AuditEntry(
                        action=AuditAction.BACKUP_EXECUTED,
                        actor=actor,
                        resource_type="backup",
                        resource_id=None,
                        details=f"Backup executed: {window.range.value} ({len(written)} files)",
                    )
                )
            current_app.logger.info("backup %s streamed with %s of %s files", window.filename, len(written), len(files))

        return BackupArchive(window=window, files=files, chunks=chunks())


def _zip_timestamp(value: datetime | None) -> tuple[int, int, int, int, int, int]:
    stamp = value or utc_now()
    # Zip timestamps cannot predate 1980.
    if stamp.year < 1980:
        return (1980, 1, 1, 0, 0, 0)
    return (stamp.year, stamp.month, stamp.day, stamp.hour, stamp.minute, stamp.second)
