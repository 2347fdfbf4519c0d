"""Translation status classification."""

from __future__ import annotations

from datetime import datetime
from enum import Enum
from typing import Iterable, Optional

from pydantic import BaseModel


class FileStatus(str, Enum):
    """Translation status of a tracked file."""

    UNTRANSLATED = "untranslated"
    OUTDATED = "outdated"
    UP_TO_DATE = "up_to_date"


def classify(source_hash: str, recorded_hash: Optional[str]) -> FileStatus:
    """Compare the upstream hash with the hash recorded at translation time.

    Hashes are compared as plain strings. Only a missing record (None) means
    the file was never translated; any recorded value that differs, including
    an empty string, marks the file outdated.
    """
    if recorded_hash is None:
        return FileStatus.UNTRANSLATED
    if recorded_hash != source_hash:
        return FileStatus.OUTDATED
    return FileStatus.UP_TO_DATE


def extension_of(path: str) -> str:
    """Return the lowercased suffix after the last dot of the file name."""
    name = path.rsplit("/", 1)[-1]
    if "." not in name:
        return ""
    return name.rsplit(".", 1)[-1].lower()


class FileRecord(BaseModel):
    """Resolved status of one tracked file.

    Attributes:
        path: Repository-relative path using ``/`` separators.
        source_hash: Content hash at the source reference.
        size: Size in bytes at the source reference.
        recorded_hash: Hash recorded by the last successful translation, if any.
        status: Derived from ``source_hash`` and ``recorded_hash``.
        extension: Lowercased extension without the dot.
        last_translated_at: Timestamp of the last successful translation, if any.
    """

    path: str
    source_hash: str
    size: int
    recorded_hash: Optional[str] = None
    status: FileStatus
    extension: str
    last_translated_at: Optional[datetime] = None

    @property
    def name(self) -> str:
        return self.path.rsplit("/", 1)[-1]


class StatusStats(BaseModel):
    """Per-status counts over a set of records."""

    total: int = 0
    untranslated: int = 0
    outdated: int = 0
    up_to_date: int = 0


def status_stats(records: Iterable[FileRecord]) -> StatusStats:
    """Count records per status.

    Args:
        records: Resolved records, typically the output of a project resolution.

    Returns:
        StatusStats: Totals where ``total`` equals the sum of the three buckets.
    """
    stats = StatusStats()
    for record in records:
        stats.total += 1
        if record.status is FileStatus.UNTRANSLATED:
            stats.untranslated += 1
        elif record.status is FileStatus.OUTDATED:
            stats.outdated += 1
        else:
            stats.up_to_date += 1
    return stats


def files_to_translate(
    records: Iterable[FileRecord], *, include_outdated: bool = True
) -> list[FileRecord]:
    """Return records that still need a translation pass."""
    wanted = {FileStatus.UNTRANSLATED}
    if include_outdated:
        wanted.add(FileStatus.OUTDATED)
    return [record for record in records if record.status in wanted]


__all__ = [
    "FileStatus",
    "FileRecord",
    "StatusStats",
    "classify",
    "extension_of",
    "status_stats",
    "files_to_translate",
]
