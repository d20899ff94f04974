"""Link to the wearable that records the raw sensor files.

:class:`RemoteLink` is the interface the rest of the package talks to.
:class:`FolderLink` implements it over a folder the device's recordings
show up in (a mount point or an inbox a transfer tool fills). Files there
that are not yet in the local data folder are pending.
"""

from __future__ import annotations

import json
import logging
import shutil
from abc import ABC, abstractmethod
from dataclasses import replace
from pathlib import Path

from sensorlabel.models import FileDescriptor, SyncState
from sensorlabel.sync import list_raw_files

logger = logging.getLogger(__name__)

COLLECTION_STATE_FILE = "collection.json"


class RemoteLink(ABC):
    """What the companion needs from the device link. Requests are fire-and-forget."""

    @property
    @abstractmethod
    def is_reachable(self) -> bool: ...

    @property
    @abstractmethod
    def pending_files(self) -> list[FileDescriptor]: ...

    @abstractmethod
    def request_file(self, name: str) -> None: ...

    @abstractmethod
    def request_metadata_update(self) -> None: ...

    @abstractmethod
    def request_sync_from_watch(self) -> None: ...

    @abstractmethod
    def request_delete_synced_files_on_watch(self) -> None: ...

    @abstractmethod
    def request_delete_all_files_on_watch(self) -> None: ...

    @abstractmethod
    def send_data_collection_state(self, enabled: bool) -> None: ...


class FolderLink(RemoteLink):
    """A device whose recordings are visible as files in *device_folder*."""

    def __init__(
        self,
        device_folder: str | Path,
        local_folder: str | Path,
        extension: str = ".csv",
    ) -> None:
        self.device_folder = Path(device_folder).expanduser()
        self.local_folder = Path(local_folder).expanduser()
        self.extension = extension
        self._pending: list[FileDescriptor] = []
        if self.is_reachable:
            self.request_metadata_update()

    @property
    def is_reachable(self) -> bool:
        return self.device_folder.is_dir()

    @property
    def pending_files(self) -> list[FileDescriptor]:
        return list(self._pending)

    def _local_names(self) -> set[str]:
        return {f.name for f in list_raw_files(self.local_folder, self.extension)}

    def request_metadata_update(self) -> None:
        """Rescan the device for files not yet copied locally."""
        if not self.is_reachable:
            logger.warning("Device folder %s not reachable", self.device_folder)
            self._pending = []
            return
        local = self._local_names()
        self._pending = [
            replace(f, sync_state=SyncState.PENDING)
            for f in list_raw_files(self.device_folder, self.extension)
            if f.name not in local
        ]
        logger.debug("Device reports %d pending files", len(self._pending))

    def request_file(self, name: str) -> None:
        src = self.device_folder / name
        if not self.is_reachable or not src.is_file():
            logger.warning("Cannot fetch %s: not on device", name)
            return
        self.local_folder.mkdir(parents=True, exist_ok=True)
        try:
            shutil.copy2(src, self.local_folder / name)
        except OSError as exc:
            logger.error("Transfer of %s failed: %s", name, exc)
            return
        logger.info("Transferred %s", name)
        self.request_metadata_update()

    def request_sync_from_watch(self) -> None:
        self.request_metadata_update()
        for f in self.pending_files:
            self.request_file(f.name)

    def _delete_on_device(self, names: list[str]) -> int:
        deleted = 0
        for name in names:
            try:
                (self.device_folder / name).unlink()
            except OSError as exc:
                logger.error("Error deleting %s on device: %s", name, exc)
                continue
            deleted += 1
        return deleted

    def request_delete_synced_files_on_watch(self) -> None:
        """Remove device copies of files that already exist locally."""
        if not self.is_reachable:
            return
        local = self._local_names()
        names = [
            f.name for f in list_raw_files(self.device_folder, self.extension)
            if f.name in local
        ]
        deleted = self._delete_on_device(names)
        logger.info("Deleted %d synced files on device", deleted)
        self.request_metadata_update()

    def request_delete_all_files_on_watch(self) -> None:
        if not self.is_reachable:
            return
        names = [f.name for f in list_raw_files(self.device_folder, self.extension)]
        deleted = self._delete_on_device(names)
        logger.info("Deleted %d of %d files on device", deleted, len(names))
        self.request_metadata_update()

    def send_data_collection_state(self, enabled: bool) -> None:
        if not self.is_reachable:
            logger.warning("Cannot send collection state: device not reachable")
            return
        state_path = self.device_folder / COLLECTION_STATE_FILE
        state_path.write_text(json.dumps({"enabled": enabled}) + "\n", encoding="utf-8")
        logger.info("Data collection %s", "enabled" if enabled else "disabled")
