"""Recording session: activity start/stop marks and the segments derived from them.

A session is Idle or Active. While Active every toggle appends an
:class:`ActivityEvent`, writes the whole session to a JSON checkpoint so it
survives the process being killed, then re-derives the segment list and
saves it (full overwrite) for the raw file being recorded.

Inconsistent logs never raise: a second start for an already open label
replaces the open start, and a stop with no open start is dropped.
"""

from __future__ import annotations

import json
import logging
import time
from dataclasses import dataclass, field
from datetime import datetime, timezone
from pathlib import Path
from typing import Callable, Iterable

from sensorlabel.models import ActivityAction, ActivityEvent, Segment
from sensorlabel.segments import SegmentStore, write_json_atomic

logger = logging.getLogger(__name__)


class SessionError(Exception):
    """Base class for recording session errors."""


class NotRecordingError(SessionError):
    """An activity was marked while no recording is in progress."""


@dataclass
class RecordingSessionState:
    is_recording: bool = False
    start_time: datetime | None = None
    events: list[ActivityEvent] = field(default_factory=list)
    active_labels: set[str] = field(default_factory=set)
    current_file_id: str | None = None


def active_labels_from(events: Iterable[ActivityEvent]) -> set[str]:
    """Labels whose latest event (by elapsed time, then log order) is a start."""
    latest: dict[str, ActivityAction] = {}
    for event in sorted(events, key=lambda e: e.elapsed_seconds):
        latest[event.label] = event.action
    return {label for label, action in latest.items() if action is ActivityAction.STARTED}


def derive_segments(events: Iterable[ActivityEvent], total_duration: float) -> list[Segment]:
    """Turn an activity event log into one single-tag segment per start/stop pair.

    Events are processed by elapsed time; ties keep log order. Labels still
    open at the end get a segment ending at *total_duration*, which must be
    at least the latest event's elapsed time.
    """
    segments: list[Segment] = []
    open_starts: dict[str, float] = {}

    for event in sorted(events, key=lambda e: e.elapsed_seconds):
        if event.action is ActivityAction.STARTED:
            if event.label in open_starts:
                logger.debug(
                    "Activity '%s' started again at %.1fs; dropping start at %.1fs",
                    event.label, event.elapsed_seconds, open_starts[event.label],
                )
            open_starts[event.label] = event.elapsed_seconds
        elif event.label in open_starts:
            segments.append(Segment(
                start_seconds=open_starts.pop(event.label),
                end_seconds=event.elapsed_seconds,
                tags=(event.label,),
            ))
        else:
            logger.debug(
                "Ignoring stop for '%s' at %.1fs with no open start",
                event.label, event.elapsed_seconds,
            )

    for label, start in sorted(open_starts.items(), key=lambda kv: kv[1]):
        segments.append(Segment(start_seconds=start, end_seconds=total_duration, tags=(label,)))

    return segments


class RecordingSession:
    """Tracks activity marks during one recording, checkpointed to *checkpoint_path*.

    *store* receives the derived segments after every change, keyed by the
    current raw file id. *clock* returns unix seconds and exists for tests.
    """

    def __init__(
        self,
        checkpoint_path: str | Path,
        store: SegmentStore | None = None,
        clock: Callable[[], float] = time.time,
        on_change: Callable[[RecordingSessionState], None] | None = None,
    ) -> None:
        self.checkpoint_path = Path(checkpoint_path).expanduser()
        self.store = store
        self._clock = clock
        self._on_change = on_change

        self.is_recording: bool = False
        self._start_ts: float | None = None
        self._events: list[ActivityEvent] = []
        self._active: set[str] = set()
        self.current_file_id: str | None = None

        self._restore()

    # ------------------------------------------------------------------
    # State
    # ------------------------------------------------------------------

    @property
    def start_time(self) -> datetime | None:
        if self._start_ts is None:
            return None
        return datetime.fromtimestamp(self._start_ts, timezone.utc)

    @property
    def events(self) -> list[ActivityEvent]:
        return list(self._events)

    @property
    def active_labels(self) -> set[str]:
        return set(self._active)

    @property
    def elapsed_seconds(self) -> float:
        if self._start_ts is None:
            return 0.0
        return max(0.0, self._clock() - self._start_ts)

    @property
    def state(self) -> RecordingSessionState:
        return RecordingSessionState(
            is_recording=self.is_recording,
            start_time=self.start_time,
            events=self.events,
            active_labels=self.active_labels,
            current_file_id=self.current_file_id,
        )

    # ------------------------------------------------------------------
    # Transitions
    # ------------------------------------------------------------------

    def start_recording(self, current_file_id: str | None = None) -> None:
        """Begin a new session. Calling this while recording starts over."""
        if self.is_recording:
            logger.info("Recording already active; restarting session")
        self._start_ts = self._clock()
        self.is_recording = True
        self._events = []
        self._active = set()
        self.current_file_id = current_file_id
        self._save_checkpoint()
        logger.info("Recording session started (file=%s)", current_file_id or "none")
        self._notify()

    def toggle_activity(self, label: str, current_file_id: str | None = None) -> ActivityEvent:
        """Start *label* if it is not active, otherwise stop it."""
        if not self.is_recording or self._start_ts is None:
            logger.warning("Cannot mark activity '%s': not recording", label)
            raise NotRecordingError(f"Cannot mark '{label}': no recording in progress.")

        if current_file_id is not None:
            self.current_file_id = current_file_id

        now = self._clock()
        event = self._append_toggle(label, self._next_elapsed(now), now)
        self._save_checkpoint()
        logger.info(
            "Activity '%s' %s at %.1fs", label, event.action.value, event.elapsed_seconds
        )

        self._persist_segments(event.elapsed_seconds)
        self._notify()
        return event

    def stop_recording(self) -> list[ActivityEvent]:
        """End the session, closing every open activity. Returns the full event log."""
        if not self.is_recording or self._start_ts is None:
            logger.info("Stop requested with no active recording")
            self._clear_checkpoint()
            return []

        now = self._clock()
        elapsed = self._next_elapsed(now)
        started_order = [
            e.label for e in self._events if e.action is ActivityAction.STARTED
        ]
        still_open = [
            label for label in dict.fromkeys(started_order) if label in self._active
        ]
        for label in still_open:
            self._append_toggle(label, elapsed, now)
        if still_open:
            logger.info("Auto-stopped %d open activities at %.1fs", len(still_open), elapsed)

        self._persist_segments(elapsed)
        events = list(self._events)

        self.is_recording = False
        self._start_ts = None
        self._events = []
        self._active = set()
        self.current_file_id = None
        self._clear_checkpoint()
        logger.info("Recording session stopped - %d events recorded", len(events))
        self._notify()
        return events

    def derive_segments(self, total_duration: float) -> list[Segment]:
        """Segments for the current event log; does not modify the session."""
        return derive_segments(self._events, total_duration)

    # ------------------------------------------------------------------
    # Internals
    # ------------------------------------------------------------------

    def _next_elapsed(self, now: float) -> float:
        # Never earlier than a logged event, even if the wall clock stepped back.
        elapsed = max(0.0, now - self._start_ts)
        return max([elapsed] + [e.elapsed_seconds for e in self._events])

    def _append_toggle(self, label: str, elapsed: float, now: float) -> ActivityEvent:
        if label in self._active:
            self._active.discard(label)
            action = ActivityAction.STOPPED
        else:
            self._active.add(label)
            action = ActivityAction.STARTED
        event = ActivityEvent(
            label=label,
            action=action,
            elapsed_seconds=elapsed,
            wall_clock_time=datetime.fromtimestamp(now, timezone.utc),
        )
        self._events.append(event)
        return event

    def _persist_segments(self, total_duration: float) -> None:
        if self.store is None:
            return
        if not self.current_file_id:
            logger.info("No raw file to attach segments to")
            return
        segments = self.derive_segments(total_duration)
        try:
            self.store.save(self.current_file_id, segments)
        except OSError as exc:
            logger.error("Could not save segments for %s: %s", self.current_file_id, exc)

    def _notify(self) -> None:
        if self._on_change is not None:
            self._on_change(self.state)

    def _save_checkpoint(self) -> None:
        data = {
            "startTime": self._start_ts,
            "currentFileId": self.current_file_id,
            "events": [e.to_dict() for e in self._events],
            "activeLabels": sorted(self._active),
        }
        write_json_atomic(self.checkpoint_path, data)

    def _clear_checkpoint(self) -> None:
        try:
            self.checkpoint_path.unlink()
        except FileNotFoundError:
            pass

    def _restore(self) -> None:
        """Resume a session left behind by a previous process, if any."""
        if not self.checkpoint_path.exists():
            return
        try:
            data = json.loads(self.checkpoint_path.read_text(encoding="utf-8"))
            start_ts = float(data["startTime"])
            events = [ActivityEvent.from_dict(e) for e in data.get("events", [])]
            current_file_id = data.get("currentFileId")
        except (OSError, ValueError, KeyError, TypeError) as exc:
            logger.warning(
                "Ignoring unreadable session checkpoint %s: %s", self.checkpoint_path, exc
            )
            return

        self._start_ts = start_ts
        self.is_recording = True
        self._events = events
        self._active = active_labels_from(events)
        self.current_file_id = current_file_id
        logger.info(
            "Restored recording session from %s with %d events",
            self.start_time.isoformat(), len(events),
        )
