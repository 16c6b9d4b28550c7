"""Tests for the append-only event log, its recovery rules, and backups."""

from __future__ import annotations

from datetime import datetime, timedelta, timezone
from pathlib import Path

import pytest

from learnpath.config import Settings
from learnpath.events import TrackingEvent
from learnpath.exceptions import BackupNotFound, StoreCorrupt, StoreLocked
from learnpath.learner_profile import LearningProfile
from learnpath.store import EventStore, FileLock, LogRecord, decode_record, encode_record, scan_log
from learnpath.store.event_store import LOCK_FILENAME
from learnpath.store.records import CorruptLog, RecordError
from learnpath.telemetry import STORE_RECOVERED, TIMESTAMP_CLAMPED, capture_events


def _record(seq: int) -> LogRecord:
    return LogRecord(
        seq=seq,
        record_type="event",
        timestamp=datetime(2024, 5, 1, tzinfo=timezone.utc),
        data={"kind": "TimeLogged", "payload": {"activity": "reading", "duration_minutes": 15}},
    )


def test_record_codec_rejects_tampered_line() -> None:
    line = encode_record(_record(1))
    assert decode_record(line).seq == 1

    with pytest.raises(RecordError):
        decode_record(line.replace(b"reading", b"writing"))
    with pytest.raises(RecordError):
        decode_record(line.rstrip(b"\n"))


def test_scan_log_requires_increasing_sequence() -> None:
    data = encode_record(_record(2)) + encode_record(_record(2))
    with pytest.raises(CorruptLog):
        scan_log(data)


def test_append_assigns_monotonic_ids_and_reads_restart(store: EventStore) -> None:
    first = store.append(TrackingEvent.exercise("ex-1"))
    second = store.append(TrackingEvent.time_logged("reading", 30))

    assert (first, second) == (1, 2)
    assert store.last_event_id() == 2

    view = store.read_all()
    assert [event.event_id for event in view] == [1, 2]
    assert [event.event_id for event in view] == [1, 2]
    assert [event.kind for event in view] == ["ExerciseCompleted", "TimeLogged"]


def test_append_clamps_backwards_timestamp_but_keeps_occurred_at(store: EventStore) -> None:
    now = datetime.now(timezone.utc)
    store.append(TrackingEvent.exercise("ex-1").model_copy(update={"timestamp": now}))
    backdated = TrackingEvent.exercise("ex-2", occurred_at=now - timedelta(days=3))
    backdated = backdated.model_copy(update={"timestamp": now - timedelta(hours=1)})

    with capture_events() as events:
        store.append(backdated)

    stored = list(store.read_all())
    assert stored[1].timestamp == stored[0].timestamp
    assert stored[1].occurred_at == now - timedelta(days=3)
    assert [event.name for event in events] == [TIMESTAMP_CLAMPED]


def test_open_truncates_partial_trailing_record(settings: Settings, store: EventStore) -> None:
    store.append(TrackingEvent.exercise("ex-1"))
    store.append(TrackingEvent.exercise("ex-2"))
    with store.log_path.open("ab") as handle:
        handle.write(b'{"seq": 3, "record_type": "ev')

    with capture_events() as events:
        reopened = EventStore.from_settings(settings)

    assert [event.event_id for event in reopened.read_all()] == [1, 2]
    assert reopened.log_path.read_bytes().endswith(b"\n")
    assert [event.name for event in events] == [STORE_RECOVERED]
    assert reopened.append(TrackingEvent.exercise("ex-3")) == 3


def test_open_rejects_corrupt_record_before_valid_ones(settings: Settings, store: EventStore) -> None:
    store.append(TrackingEvent.exercise("ex-1"))
    store.append(TrackingEvent.exercise("ex-2"))
    data = store.log_path.read_bytes()
    store.log_path.write_bytes(data.replace(b"ex-1", b"ex-9", 1))

    with pytest.raises(StoreCorrupt) as excinfo:
        EventStore.from_settings(settings)
    assert excinfo.value.details["line"] == 1


def test_open_removes_orphaned_temp_files(settings: Settings, store: EventStore) -> None:
    orphan = store.root / ".events.jsonl.deadbeef.tmp"
    orphan.write_bytes(b"half written")

    EventStore.from_settings(settings)

    assert not orphan.exists()


def test_append_times_out_while_another_writer_holds_the_lock(tmp_path: Path) -> None:
    store = EventStore(tmp_path / "profile", lock_timeout_ms=100)
    with FileLock(store.root / LOCK_FILENAME):
        with pytest.raises(StoreLocked) as excinfo:
            store.append(TrackingEvent.exercise("ex-1"))
    assert "Retry" in excinfo.value.message
    assert list(store.read_all()) == []


def test_lock_is_reentrant(tmp_path: Path) -> None:
    lock = FileLock(tmp_path / "events.lock", timeout_ms=50)
    with lock:
        with lock:
            assert lock.held
        assert lock.held
    assert not lock.held


def test_backup_and_restore_round_trip(store: EventStore) -> None:
    store.append(TrackingEvent.exercise("ex-1"))
    handle = store.backup()
    store.append(TrackingEvent.exercise("ex-2"))
    store.append(TrackingEvent.exercise("ex-3"))
    store.save_snapshot("progress-weekly", {"last_event_id": 3})

    assert handle.record_count == 1
    assert [backup.backup_id for backup in store.list_backups()] == [handle.backup_id]

    restored = store.restore(store.resolve_backup(handle.backup_id))

    assert restored == 1
    assert [event.payload.exercise_id for event in store.read_all()] == ["ex-1"]
    assert store.load_snapshot("progress-weekly") is None


def test_restore_unknown_backup_fails(store: EventStore) -> None:
    with pytest.raises(BackupNotFound):
        store.restore("20240101T000000000000Z")
    with pytest.raises(BackupNotFound):
        store.resolve_backup("missing")


def test_unreadable_snapshot_cache_is_not_fatal(store: EventStore) -> None:
    store.save_snapshot("progress-weekly", {"last_event_id": 0})
    assert store.load_snapshot("progress-weekly") == {"last_event_id": 0}

    (store.root / "snapshots.json").write_text("{not json", encoding="utf-8")

    assert store.load_snapshot("progress-weekly") is None


def test_profile_round_trip_and_corruption(store: EventStore) -> None:
    assert store.load_profile() is None
    profile = LearningProfile(profile_id="Ada Lovelace", display_name="Ada")
    store.save_profile(profile)

    loaded = store.load_profile()
    assert loaded is not None
    assert loaded.profile_id == "ada-lovelace"
    assert loaded.target_completion_date == profile.target_completion_date

    (store.root / "profile.json").write_text('{"profile_id": ""}', encoding="utf-8")
    with pytest.raises(StoreCorrupt):
        store.load_profile()
