"""Sidecar storage for activity segments.

Every raw sensor file ``name.csv`` may have a ``name.segments.json`` next to
it holding the labeled intervals for that recording. Labels are an auxiliary
annotation layer: a missing or unreadable sidecar reads as "no segments" and
is logged, never raised.

Every write replaces the whole record. Writes go to a temp file in the same
directory which is then renamed over the sidecar, so readers never see a
partially written file.
"""

from __future__ import annotations

import json
import logging
import os
import tempfile
import time
from dataclasses import dataclass, field
from enum import Enum
from pathlib import Path
from typing import Iterable

from sensorlabel.models import SCHEMA_VERSION, Segment, SegmentRecord, ranges_overlap

logger = logging.getLogger(__name__)

SIDECAR_SUFFIX = ".segments.json"
CSV_HEADER = "filename,start_time,end_time,tag"


class LoadStatus(str, Enum):
    OK = "ok"
    ABSENT = "absent"
    CORRUPT = "corrupt"
    UNSUPPORTED = "unsupported"  # written by a newer schema version


@dataclass
class LoadResult:
    status: LoadStatus
    segments: list[Segment] = field(default_factory=list)
    error: str | None = None

    @property
    def ok(self) -> bool:
        return self.status is LoadStatus.OK


def write_json_atomic(path: Path, data: dict) -> None:
    """Write *data* as JSON to *path* via a temp file and rename."""
    path.parent.mkdir(parents=True, exist_ok=True)
    fd, tmp_name = tempfile.mkstemp(prefix=f".{path.name}.", suffix=".tmp", dir=path.parent)
    tmp_path = Path(tmp_name)
    try:
        with os.fdopen(fd, "w", encoding="utf-8") as fh:
            json.dump(data, fh, indent=2, sort_keys=True)
            fh.write("\n")
        tmp_path.replace(path)
    except Exception:
        try:
            tmp_path.unlink()
        except OSError as exc:
            logger.debug("Could not remove temp file %s: %s", tmp_path, exc)
        raise


def _csv_rows(file_id: str, segments: Iterable[Segment]) -> list[str]:
    """One row per (segment, tag) pair. Labels are written as-is, unescaped."""
    rows = []
    for segment in segments:
        for tag in segment.tags:
            rows.append(f"{file_id},{segment.start_seconds},{segment.end_seconds},{tag}")
    return rows


class SegmentStore:
    """Keyed store of segment records, one sidecar file per raw data file."""

    def __init__(self, folder: str | Path, raw_extension: str = ".csv") -> None:
        self.folder = Path(folder).expanduser()
        self.raw_extension = raw_extension

    def sidecar_path(self, file_id: str) -> Path:
        """Path of the sidecar for *file_id*: raw extension swapped for .segments.json."""
        base = file_id
        if self.raw_extension and base.endswith(self.raw_extension):
            base = base[: -len(self.raw_extension)]
        return self.folder / f"{base}{SIDECAR_SUFFIX}"

    # ------------------------------------------------------------------
    # Load / save
    # ------------------------------------------------------------------

    def load_result(self, file_id: str) -> LoadResult:
        """Load segments for *file_id*, reporting why nothing was found."""
        path = self.sidecar_path(file_id)
        if not path.exists():
            return LoadResult(LoadStatus.ABSENT)

        try:
            raw = json.loads(path.read_text(encoding="utf-8"))
            if not isinstance(raw, dict):
                raise ValueError("sidecar root is not an object")
            version = int(raw.get("version", SCHEMA_VERSION))
            if version > SCHEMA_VERSION:
                return LoadResult(
                    LoadStatus.UNSUPPORTED,
                    error=f"schema version {version} is newer than {SCHEMA_VERSION}",
                )
            record = SegmentRecord.from_dict(raw)
        except (OSError, ValueError, KeyError, TypeError) as exc:
            # json.JSONDecodeError is a ValueError
            return LoadResult(LoadStatus.CORRUPT, error=str(exc))

        return LoadResult(LoadStatus.OK, segments=record.segments)

    def load(self, file_id: str) -> list[Segment]:
        """Return the segments for *file_id*; empty when absent or unreadable."""
        result = self.load_result(file_id)
        if result.status in (LoadStatus.CORRUPT, LoadStatus.UNSUPPORTED):
            logger.error("Error loading segments for %s: %s", file_id, result.error)
        return result.segments

    def save(self, file_id: str, segments: Iterable[Segment]) -> Path:
        """Replace the whole record for *file_id* with *segments*."""
        record = SegmentRecord(file_id=file_id, segments=list(segments))
        path = self.sidecar_path(file_id)
        write_json_atomic(path, record.to_dict())
        logger.info("Saved %d segments for %s", len(record.segments), file_id)
        return path

    def _load_for_update(self, file_id: str) -> list[Segment] | None:
        """Load for read-modify-write; None when the record must not be overwritten."""
        result = self.load_result(file_id)
        if result.status is LoadStatus.UNSUPPORTED:
            logger.warning(
                "Not modifying segments for %s: %s", file_id, result.error
            )
            return None
        if result.status is LoadStatus.CORRUPT:
            logger.error("Error loading segments for %s: %s", file_id, result.error)
        return result.segments

    # ------------------------------------------------------------------
    # CRUD
    # ------------------------------------------------------------------

    def add(self, file_id: str, segment: Segment) -> None:
        self.add_many(file_id, [segment])

    def add_many(self, file_id: str, segments: Iterable[Segment]) -> None:
        current = self._load_for_update(file_id)
        if current is None:
            return
        current.extend(segments)
        self.save(file_id, current)

    def update(self, file_id: str, segment: Segment) -> bool:
        """Replace the stored segment with the same id. Returns False if absent."""
        current = self._load_for_update(file_id)
        if current is None:
            return False
        for i, existing in enumerate(current):
            if existing.id == segment.id:
                current[i] = segment
                self.save(file_id, current)
                return True
        return False

    def delete(self, file_id: str, segment_id: str) -> None:
        current = self._load_for_update(file_id)
        if current is None:
            return
        self.save(file_id, [s for s in current if s.id != segment_id])

    def delete_all(self, file_id: str) -> bool:
        """Remove the sidecar for *file_id*. Returns True if a file was removed."""
        path = self.sidecar_path(file_id)
        try:
            path.unlink()
        except FileNotFoundError:
            return False
        except OSError as exc:
            logger.error("Could not delete segments for %s: %s", file_id, exc)
            return False
        logger.info("Deleted all segments for %s", file_id)
        return True

    # ------------------------------------------------------------------
    # Queries
    # ------------------------------------------------------------------

    def query_by_tag(self, file_id: str, tag: str) -> list[Segment]:
        return [s for s in self.load(file_id) if s.has_tag(tag)]

    def query_by_range(self, file_id: str, start: float, end: float) -> list[Segment]:
        """Segments overlapping [start, end]. Touching endpoints do not overlap."""
        return [
            s for s in self.load(file_id)
            if ranges_overlap(s.start_seconds, s.end_seconds, start, end)
        ]

    # ------------------------------------------------------------------
    # Export
    # ------------------------------------------------------------------

    def raw_file_ids(self) -> list[str]:
        """Names of raw data files in the store folder, sorted."""
        if not self.folder.is_dir():
            return []
        return sorted(
            p.name for p in self.folder.iterdir()
            if p.is_file()
            and p.name.endswith(self.raw_extension)
            and not p.name.endswith(SIDECAR_SUFFIX)
        )

    def export_csv(self, file_id: str) -> str:
        """Segments of one file as CSV: filename,start_time,end_time,tag."""
        lines = [CSV_HEADER, *_csv_rows(file_id, self.load(file_id))]
        return "\n".join(lines) + "\n"

    def export_all_csv(self) -> str:
        """Segments of every raw file in the folder as one CSV document."""
        lines = [CSV_HEADER]
        for file_id in self.raw_file_ids():
            lines.extend(_csv_rows(file_id, self.load(file_id)))
        return "\n".join(lines) + "\n"

    def write_export(self, dest_dir: str | Path) -> Path:
        """Write :meth:`export_all_csv` to ``activity_labels_<ts>.csv`` in *dest_dir*."""
        dest_dir = Path(dest_dir).expanduser()
        dest_dir.mkdir(parents=True, exist_ok=True)
        csv = self.export_all_csv()
        stamp = time.time_ns() // 1_000_000
        out = dest_dir / f"activity_labels_{stamp}.csv"
        while out.exists():
            stamp += 1
            out = dest_dir / f"activity_labels_{stamp}.csv"
        out.write_text(csv, encoding="utf-8")
        logger.info("Exported labels CSV: %d rows to %s", csv.count("\n") - 1, out)
        return out
