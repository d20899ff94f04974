"""Plain data types shared by the session, the segment store and file sync."""

from __future__ import annotations

import re
import uuid
from dataclasses import dataclass, field
from datetime import datetime, timezone
from enum import Enum
from pathlib import Path
from typing import Any, Iterable

SCHEMA_VERSION = 1

# sensor_data_2025-11-17_14-30-00.csv
_DATA_DATE_RE = re.compile(r"^sensor_data_(\d{4}-\d{2}-\d{2})_(\d{2}-\d{2}-\d{2})")


def _new_id() -> str:
    return str(uuid.uuid4())


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


def parse_iso(value: str) -> datetime:
    """Parse an ISO-8601 timestamp, accepting a trailing ``Z`` for UTC."""
    if not isinstance(value, str):
        raise ValueError(f"timestamp must be a string, got {type(value).__name__}")
    if value.endswith("Z"):
        value = value[:-1] + "+00:00"
    return datetime.fromisoformat(value)


class ActivityAction(str, Enum):
    STARTED = "started"
    STOPPED = "stopped"


class SyncState(str, Enum):
    PENDING = "pending"  # known from device metadata, not yet transferred
    TRANSFERRING = "transferring"
    SYNCED = "synced"  # present in the local data folder


class SourceDevice(str, Enum):
    WATCH = "watch"
    PHONE = "phone"


@dataclass(frozen=True)
class ActivityEvent:
    """A single start or stop mark for one activity label."""

    label: str
    action: ActivityAction
    elapsed_seconds: float  # seconds since recording start
    wall_clock_time: datetime = field(default_factory=_utcnow)
    id: str = field(default_factory=_new_id)

    def to_dict(self) -> dict[str, Any]:
        return {
            "id": self.id,
            "label": self.label,
            "action": self.action.value,
            "elapsedSeconds": self.elapsed_seconds,
            "wallClockTime": self.wall_clock_time.isoformat(),
        }

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "ActivityEvent":
        return cls(
            id=str(data["id"]),
            label=str(data["label"]),
            action=ActivityAction(data["action"]),
            elapsed_seconds=float(data["elapsedSeconds"]),
            wall_clock_time=parse_iso(data["wallClockTime"]),
        )


def ranges_overlap(a_start: float, a_end: float, b_start: float, b_end: float) -> bool:
    """True when two intervals share more than an endpoint."""
    return not (a_end <= b_start or a_start >= b_end)


@dataclass(frozen=True)
class Segment:
    """A labeled interval in recording-elapsed seconds."""

    start_seconds: float
    end_seconds: float
    tags: tuple[str, ...]
    id: str = field(default_factory=_new_id)
    created_at: datetime = field(default_factory=_utcnow)

    def __post_init__(self) -> None:
        # Accept any iterable of tags but store an immutable, ordered tuple.
        if not isinstance(self.tags, tuple):
            object.__setattr__(self, "tags", tuple(self.tags))
        object.__setattr__(self, "start_seconds", float(self.start_seconds))
        object.__setattr__(self, "end_seconds", float(self.end_seconds))

    @property
    def duration(self) -> float:
        return self.end_seconds - self.start_seconds

    def overlaps(self, other: "Segment") -> bool:
        return ranges_overlap(
            self.start_seconds, self.end_seconds, other.start_seconds, other.end_seconds
        )

    def contains(self, time_seconds: float) -> bool:
        return self.start_seconds <= time_seconds <= self.end_seconds

    def has_tag(self, tag: str) -> bool:
        return tag in self.tags

    def to_dict(self) -> dict[str, Any]:
        return {
            "id": self.id,
            "startTime": self.start_seconds,
            "endTime": self.end_seconds,
            "tags": list(self.tags),
            "createdAt": self.created_at.isoformat(),
        }

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "Segment":
        tags = data["tags"]
        if not isinstance(tags, list):
            raise ValueError(f"segment tags must be a list, got {type(tags).__name__}")
        return cls(
            id=str(data["id"]),
            start_seconds=float(data["startTime"]),
            end_seconds=float(data["endTime"]),
            tags=tuple(str(t) for t in tags),
            created_at=parse_iso(data["createdAt"]),
        )


@dataclass
class SegmentRecord:
    """All segments labeling one raw data file."""

    file_id: str
    segments: list[Segment] = field(default_factory=list)
    schema_version: int = SCHEMA_VERSION

    def to_dict(self) -> dict[str, Any]:
        return {
            "fileId": self.file_id,
            "version": self.schema_version,
            "segments": [s.to_dict() for s in self.segments],
        }

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "SegmentRecord":
        segments = data.get("segments", [])
        if not isinstance(segments, list):
            raise ValueError("'segments' must be a list")
        return cls(
            file_id=str(data["fileId"]),
            segments=[Segment.from_dict(s) for s in segments],
            schema_version=int(data.get("version", SCHEMA_VERSION)),
        )


@dataclass
class FileDescriptor:
    """Metadata for one raw recording, wherever it currently lives."""

    name: str
    size: int
    creation_time: datetime
    modification_time: datetime | None = None
    sync_state: SyncState = SyncState.SYNCED
    source_device: SourceDevice = SourceDevice.WATCH
    path: Path | None = None

    def __post_init__(self) -> None:
        if self.modification_time is None:
            self.modification_time = self.creation_time

    @property
    def data_date(self) -> datetime:
        """Collection time parsed from the file name, else the creation time."""
        match = _DATA_DATE_RE.match(self.name)
        if not match:
            return self.creation_time
        date_part, time_part = match.groups()
        try:
            return datetime.strptime(f"{date_part} {time_part}", "%Y-%m-%d %H-%M-%S")
        except ValueError:
            return self.creation_time


class FileSortOption(str, Enum):
    NAME_ASCENDING = "name-asc"
    NAME_DESCENDING = "name-desc"
    NEWEST_FIRST = "newest"
    OLDEST_FIRST = "oldest"
    LARGEST_FIRST = "largest"
    SMALLEST_FIRST = "smallest"


def sort_files(
    files: Iterable[FileDescriptor],
    option: FileSortOption = FileSortOption.NEWEST_FIRST,
) -> list[FileDescriptor]:
    """Return *files* ordered for display."""
    files = list(files)
    if option is FileSortOption.NAME_ASCENDING:
        return sorted(files, key=lambda f: f.name)
    if option is FileSortOption.NAME_DESCENDING:
        return sorted(files, key=lambda f: f.name, reverse=True)
    if option is FileSortOption.OLDEST_FIRST:
        return sorted(files, key=lambda f: f.data_date)
    if option is FileSortOption.LARGEST_FIRST:
        return sorted(files, key=lambda f: f.size, reverse=True)
    if option is FileSortOption.SMALLEST_FIRST:
        return sorted(files, key=lambda f: f.size)
    return sorted(files, key=lambda f: f.data_date, reverse=True)
