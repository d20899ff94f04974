"""Tests for session module: toggling, checkpoints, segment derivation."""

import json
import random
from pathlib import Path

import pytest

from sensorlabel.models import ActivityAction, ActivityEvent
from sensorlabel.segments import SegmentStore
from sensorlabel.session import (
    NotRecordingError,
    RecordingSession,
    active_labels_from,
    derive_segments,
)

T0 = 1_700_000_000.0


class FakeClock:
    def __init__(self, now: float = T0) -> None:
        self.now = now

    def __call__(self) -> float:
        return self.now

    def at(self, offset: float) -> None:
        self.now = T0 + offset


def _event(label: str, action: ActivityAction, t: float) -> ActivityEvent:
    return ActivityEvent(label=label, action=action, elapsed_seconds=t)


@pytest.fixture
def clock() -> FakeClock:
    return FakeClock()


@pytest.fixture
def store(tmp_path: Path) -> SegmentStore:
    return SegmentStore(tmp_path / "data")


@pytest.fixture
def session(tmp_path: Path, store: SegmentStore, clock: FakeClock) -> RecordingSession:
    return RecordingSession(tmp_path / "session.json", store=store, clock=clock)


class TestScenarios:
    def test_start_then_stop_one_activity(self, session, clock):
        session.start_recording()
        clock.at(5)
        assert session.toggle_activity("Walking").action is ActivityAction.STARTED
        clock.at(12)
        assert session.toggle_activity("Walking").action is ActivityAction.STOPPED

        segments = session.derive_segments(20)
        assert len(segments) == 1
        assert segments[0].start_seconds == 5
        assert segments[0].end_seconds == 12
        assert segments[0].tags == ("Walking",)

    def test_stop_recording_closes_open_activity(self, session, clock):
        session.start_recording()
        clock.at(3)
        session.toggle_activity("Running")
        clock.at(30)
        events = session.stop_recording()

        assert events[-1].label == "Running"
        assert events[-1].action is ActivityAction.STOPPED
        assert events[-1].elapsed_seconds == 30

        segments = derive_segments(events, 30)
        assert [(s.start_seconds, s.end_seconds, s.tags) for s in segments] == [
            (3, 30, ("Running",))
        ]


class TestToggleActivity:
    def test_raises_when_idle(self, session, tmp_path):
        with pytest.raises(NotRecordingError):
            session.toggle_activity("Walking")
        assert session.events == []
        assert session.active_labels == set()
        assert not (tmp_path / "session.json").exists()

    def test_tracks_active_labels(self, session, clock):
        session.start_recording()
        clock.at(1)
        session.toggle_activity("Walking")
        clock.at(2)
        session.toggle_activity("Talking")
        assert session.active_labels == {"Walking", "Talking"}
        clock.at(3)
        session.toggle_activity("Walking")
        assert session.active_labels == {"Talking"}

    def test_elapsed_is_relative_to_start(self, session, clock):
        clock.at(100)
        session.start_recording()
        clock.at(107.5)
        event = session.toggle_activity("Sitting")
        assert event.elapsed_seconds == pytest.approx(7.5)

    def test_writes_checkpoint_every_call(self, session, clock, tmp_path):
        session.start_recording()
        clock.at(4)
        session.toggle_activity("Walking")
        data = json.loads((tmp_path / "session.json").read_text(encoding="utf-8"))
        assert data["startTime"] == T0
        assert [e["label"] for e in data["events"]] == ["Walking"]
        assert data["activeLabels"] == ["Walking"]

    def test_saves_segments_for_current_file(self, session, clock, store):
        session.start_recording(current_file_id="sensor_data_a.csv")
        clock.at(2)
        session.toggle_activity("Walking")
        clock.at(6)
        session.toggle_activity("Walking")
        clock.at(8)
        session.toggle_activity("Stairs")

        saved = store.load("sensor_data_a.csv")
        spans = sorted((s.start_seconds, s.end_seconds, s.tags) for s in saved)
        # Stairs is still open and runs to the time of the last toggle.
        assert spans == [(2, 6, ("Walking",)), (8, 8, ("Stairs",))]

    def test_file_id_per_call_overrides_start(self, session, clock, store):
        session.start_recording(current_file_id="old.csv")
        clock.at(1)
        session.toggle_activity("Walking", current_file_id="new.csv")
        assert store.load("new.csv")
        assert store.load("old.csv") == []
        assert session.current_file_id == "new.csv"

    def test_no_file_id_means_nothing_saved(self, session, clock, store):
        session.start_recording()
        clock.at(1)
        session.toggle_activity("Walking")
        assert not store.folder.exists() or list(store.folder.iterdir()) == []

    def test_on_change_is_notified(self, tmp_path, clock):
        states = []
        session = RecordingSession(tmp_path / "s.json", clock=clock, on_change=states.append)
        session.start_recording()
        clock.at(1)
        session.toggle_activity("Walking")
        session.stop_recording()
        assert [s.is_recording for s in states] == [True, True, False]
        assert states[1].active_labels == {"Walking"}


class TestStartStop:
    def test_start_while_recording_starts_over(self, session, clock):
        session.start_recording()
        clock.at(5)
        session.toggle_activity("Walking")
        clock.at(10)
        session.start_recording()
        assert session.is_recording
        assert session.events == []
        assert session.active_labels == set()
        assert session.elapsed_seconds == 0

    def test_stop_clears_state_and_checkpoint(self, session, clock, tmp_path):
        session.start_recording()
        clock.at(2)
        session.toggle_activity("Walking")
        session.stop_recording()
        assert not session.is_recording
        assert session.start_time is None
        assert session.events == []
        assert session.active_labels == set()
        assert not (tmp_path / "session.json").exists()

    def test_stop_adds_one_event_per_open_label(self, session, clock):
        session.start_recording()
        clock.at(1)
        session.toggle_activity("A")
        clock.at(2)
        session.toggle_activity("B")
        clock.at(3)
        session.toggle_activity("C")
        clock.at(4)
        session.toggle_activity("B")
        before = len(session.events)
        open_count = len(session.active_labels)

        clock.at(9)
        events = session.stop_recording()
        assert len(events) == before + open_count
        assert [e.label for e in events[before:]] == ["A", "C"]
        assert all(e.elapsed_seconds == 9 for e in events[before:])

    def test_stop_persists_final_segments(self, session, clock, store):
        session.start_recording(current_file_id="rec.csv")
        clock.at(3)
        session.toggle_activity("Running")
        clock.at(30)
        session.stop_recording()
        saved = store.load("rec.csv")
        assert [(s.start_seconds, s.end_seconds) for s in saved] == [(3, 30)]

    def test_clock_stepping_back_never_inverts_segments(self, session, store, clock):
        session.start_recording(current_file_id="rec.csv")
        clock.at(10)
        session.toggle_activity("A")
        clock.at(5)
        event = session.toggle_activity("B")
        assert event.elapsed_seconds == 10
        saved = store.load("rec.csv")
        assert saved
        assert all(s.end_seconds >= s.start_seconds for s in saved)

        clock.at(2)
        session.stop_recording()
        final = store.load("rec.csv")
        assert sorted(s.tags for s in final) == [("A",), ("B",)]
        assert all(s.end_seconds >= s.start_seconds for s in final)

    def test_stop_when_idle_returns_empty(self, session):
        assert session.stop_recording() == []


class TestCheckpointRestore:
    def test_restores_running_session(self, tmp_path, store, clock):
        path = tmp_path / "session.json"
        first = RecordingSession(path, store=store, clock=clock)
        first.start_recording(current_file_id="rec.csv")
        clock.at(5)
        first.toggle_activity("Walking")
        clock.at(6)
        first.toggle_activity("Talking")
        clock.at(7)
        first.toggle_activity("Talking")

        second = RecordingSession(path, store=store, clock=clock)
        assert second.is_recording
        assert second.current_file_id == "rec.csv"
        assert second.events == first.events
        assert second.active_labels == {"Walking"}

        clock.at(9)
        assert second.toggle_activity("Walking").action is ActivityAction.STOPPED

    def test_checkpoint_with_bad_timestamp_is_ignored(self, tmp_path, clock):
        path = tmp_path / "session.json"
        path.write_text(
            json.dumps({
                "startTime": T0,
                "currentFileId": "rec.csv",
                "events": [{
                    "id": "e1", "label": "Walking", "action": "started",
                    "elapsedSeconds": 1.0, "wallClockTime": 5,
                }],
                "activeLabels": ["Walking"],
            }),
            encoding="utf-8",
        )
        session = RecordingSession(path, clock=clock)
        assert not session.is_recording

    def test_corrupt_checkpoint_is_ignored(self, tmp_path, clock):
        path = tmp_path / "session.json"
        path.write_text("{not json", encoding="utf-8")
        session = RecordingSession(path, clock=clock)
        assert not session.is_recording
        with pytest.raises(NotRecordingError):
            session.toggle_activity("Walking")


class TestDeriveSegments:
    def test_empty_log(self):
        assert derive_segments([], 10) == []

    def test_last_start_wins(self):
        events = [
            _event("Walking", ActivityAction.STARTED, 1),
            _event("Walking", ActivityAction.STARTED, 4),
            _event("Walking", ActivityAction.STOPPED, 6),
        ]
        segments = derive_segments(events, 10)
        assert [(s.start_seconds, s.end_seconds) for s in segments] == [(4, 6)]

    def test_orphan_stop_is_dropped(self):
        events = [
            _event("Walking", ActivityAction.STOPPED, 2),
            _event("Sitting", ActivityAction.STARTED, 3),
            _event("Sitting", ActivityAction.STOPPED, 5),
        ]
        segments = derive_segments(events, 10)
        assert [(s.start_seconds, s.end_seconds, s.tags) for s in segments] == [
            (3, 5, ("Sitting",))
        ]

    def test_sorts_by_elapsed_time(self):
        events = [
            _event("Walking", ActivityAction.STOPPED, 8),
            _event("Walking", ActivityAction.STARTED, 2),
        ]
        segments = derive_segments(events, 10)
        assert [(s.start_seconds, s.end_seconds) for s in segments] == [(2, 8)]

    def test_ties_keep_log_order(self):
        start_then_stop = [
            _event("A", ActivityAction.STARTED, 5),
            _event("A", ActivityAction.STOPPED, 5),
        ]
        assert [(s.start_seconds, s.end_seconds) for s in derive_segments(start_then_stop, 9)] == [
            (5, 5)
        ]

        stop_then_start = [
            _event("A", ActivityAction.STOPPED, 5),
            _event("A", ActivityAction.STARTED, 5),
        ]
        # The stop comes first and has nothing to close; the start stays open.
        assert [(s.start_seconds, s.end_seconds) for s in derive_segments(stop_then_start, 9)] == [
            (5, 9)
        ]

    def test_open_labels_end_at_total_duration(self):
        events = [
            _event("B", ActivityAction.STARTED, 4),
            _event("A", ActivityAction.STARTED, 1),
        ]
        segments = derive_segments(events, 12)
        assert [(s.tags, s.start_seconds, s.end_seconds) for s in segments] == [
            (("A",), 1, 12),
            (("B",), 4, 12),
        ]

    def test_each_segment_has_one_tag_and_fresh_id(self):
        events = [
            _event("A", ActivityAction.STARTED, 1),
            _event("A", ActivityAction.STOPPED, 2),
            _event("A", ActivityAction.STARTED, 3),
            _event("A", ActivityAction.STOPPED, 4),
        ]
        segments = derive_segments(events, 5)
        assert all(len(s.tags) == 1 for s in segments)
        assert len({s.id for s in segments}) == 2

    def test_start_never_after_end_for_random_logs(self):
        rng = random.Random(1234)
        labels = ["Walking", "Running", "Sitting"]
        for _ in range(200):
            events = [
                _event(
                    rng.choice(labels),
                    rng.choice([ActivityAction.STARTED, ActivityAction.STOPPED]),
                    round(rng.uniform(0, 60), 1),
                )
                for _ in range(rng.randint(0, 12))
            ]
            total = max((e.elapsed_seconds for e in events), default=0.0)
            for segment in derive_segments(events, total):
                assert segment.start_seconds <= segment.end_seconds

    def test_every_start_yields_at_most_one_segment(self):
        events = [
            _event("A", ActivityAction.STARTED, 0),
            _event("A", ActivityAction.STOPPED, 1),
            _event("A", ActivityAction.STARTED, 2),
        ]
        segments = derive_segments(events, 7)
        assert [(s.start_seconds, s.end_seconds) for s in segments] == [(0, 1), (2, 7)]

    def test_does_not_mutate_session(self, session, clock):
        session.start_recording()
        clock.at(1)
        session.toggle_activity("A")
        before = session.events
        session.derive_segments(5)
        session.derive_segments(5)
        assert session.events == before
        assert session.active_labels == {"A"}


class TestActiveLabelsFrom:
    def test_latest_event_decides(self):
        events = [
            _event("A", ActivityAction.STARTED, 1),
            _event("B", ActivityAction.STARTED, 2),
            _event("A", ActivityAction.STOPPED, 3),
        ]
        assert active_labels_from(events) == {"B"}
