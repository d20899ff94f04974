"""Merge local, pending and in-flight recordings into one file list.

Local evidence wins: a file present in the data folder is synced even if
the device still reports it as pending. Names the caller has marked as in
flight show as transferring until they turn up locally, at which point they
leave the in-flight set on their own. There is no acknowledgement channel.
"""

from __future__ import annotations

import logging
import time
from dataclasses import replace
from datetime import datetime
from pathlib import Path
from typing import Callable, Iterable

from sensorlabel.models import FileDescriptor, SourceDevice, SyncState
from sensorlabel.segments import SIDECAR_SUFFIX

logger = logging.getLogger(__name__)


def reconcile(
    synced_files: Iterable[FileDescriptor],
    pending_files: Iterable[FileDescriptor],
    transferring: Iterable[str],
) -> tuple[list[FileDescriptor], set[str]]:
    """Return the merged file list and the in-flight names that have completed.

    Inputs are not modified.
    """
    synced = [replace(f, sync_state=SyncState.SYNCED) for f in synced_files]
    synced_names = {f.name for f in synced}
    in_flight = set(transferring)

    merged = list(synced)
    seen = set(synced_names)
    for f in pending_files:
        if f.name in seen:
            continue
        seen.add(f.name)
        merged.append(replace(f, sync_state=SyncState.PENDING))

    merged = [
        replace(f, sync_state=SyncState.TRANSFERRING) if f.name in in_flight else f
        for f in merged
    ]
    return merged, in_flight & synced_names


class FileSyncReconciler:
    """Holds the in-flight set between refreshes.

    The set lives in memory only; a new process starts with nothing in
    flight. With *transfer_timeout* set, a name in flight for longer than
    that many seconds is dropped so the file shows as pending again.
    """

    def __init__(
        self,
        transfer_timeout: float | None = None,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        self.transfer_timeout = transfer_timeout
        self._clock = clock
        self._transferring: dict[str, float] = {}

    @property
    def transferring(self) -> set[str]:
        return set(self._transferring)

    def mark_transferring(self, name: str) -> None:
        self._transferring.setdefault(name, self._clock())
        logger.info("Requesting download of: %s", name)

    def clear(self) -> None:
        self._transferring.clear()

    def refresh(
        self,
        synced_files: Iterable[FileDescriptor],
        pending_files: Iterable[FileDescriptor],
    ) -> list[FileDescriptor]:
        synced_files = list(synced_files)
        pending_files = list(pending_files)
        self._expire_stuck()

        files, completed = reconcile(synced_files, pending_files, self._transferring)
        if completed:
            logger.info("Completed transfers: %s", ", ".join(sorted(completed)))
            for name in completed:
                self._transferring.pop(name, None)

        logger.info(
            "Refreshed file list: %d synced, %d pending, %d transferring",
            len(synced_files), len(pending_files), len(self._transferring),
        )
        return files

    def _expire_stuck(self) -> None:
        if self.transfer_timeout is None:
            return
        now = self._clock()
        stuck = [
            name for name, since in self._transferring.items()
            if now - since > self.transfer_timeout
        ]
        for name in stuck:
            logger.warning(
                "Transfer of %s still not complete after %.0fs; showing as pending",
                name, self.transfer_timeout,
            )
            del self._transferring[name]


# ---------------------------------------------------------------------------
# Local files
# ---------------------------------------------------------------------------

def _creation_time(st) -> datetime:
    # st_birthtime exists on macOS/BSD; elsewhere mtime is the closest stand-in.
    return datetime.fromtimestamp(getattr(st, "st_birthtime", st.st_mtime))


def describe_file(
    path: Path,
    sync_state: SyncState = SyncState.SYNCED,
    source_device: SourceDevice = SourceDevice.WATCH,
) -> FileDescriptor:
    st = path.stat()
    return FileDescriptor(
        name=path.name,
        size=st.st_size,
        creation_time=_creation_time(st),
        modification_time=datetime.fromtimestamp(st.st_mtime),
        sync_state=sync_state,
        source_device=source_device,
        path=path,
    )


def list_raw_files(folder: str | Path, extension: str = ".csv") -> list[FileDescriptor]:
    """Describe every raw data file in *folder* as synced."""
    folder = Path(folder).expanduser()
    if not folder.is_dir():
        return []
    files = []
    for path in sorted(folder.iterdir()):
        if not path.is_file() or not path.name.endswith(extension):
            continue
        if path.name.endswith(SIDECAR_SUFFIX):
            continue
        try:
            files.append(describe_file(path))
        except OSError as exc:
            logger.warning("Could not stat %s: %s", path, exc)
    return files


def newest_file(files: Iterable[FileDescriptor]) -> FileDescriptor | None:
    """The most recently created file, or None for an empty list."""
    return max(files, key=lambda f: f.creation_time, default=None)


def delete_files(files: Iterable[FileDescriptor]) -> int:
    """Delete the local copies of synced *files*. Returns how many were removed.

    Pending and in-flight entries have no local copy and are skipped.
    Failures are logged per file and do not stop the loop.
    """
    deleted = 0
    for f in files:
        if f.sync_state is not SyncState.SYNCED or f.path is None:
            continue
        try:
            f.path.unlink()
        except FileNotFoundError:
            logger.debug("Already gone: %s", f.path)
            continue
        except OSError as exc:
            logger.error("Error deleting file %s: %s", f.path, exc)
            continue
        deleted += 1
        logger.info("Deleted file: %s", f.name)
    return deleted
