"""Crash-safe, append-only event log plus sidecar caches for one learner profile."""

from __future__ import annotations

import json
import logging
import os
import uuid
from datetime import datetime, timezone
from pathlib import Path
from typing import Any, Callable, Dict, Generic, Iterable, Iterator, List, Optional, Sequence, Tuple, TypeVar, Union

from pydantic import BaseModel, ValidationError

from ..assessment_result import AssessmentKind, AssessmentResult
from ..events import TrackingEvent, utc
from ..exceptions import BackupNotFound, StoreCorrupt, StoreIOFailure, StoreLocked
from ..learner_profile import LearningProfile
from ..progress_snapshot import UnlockedAchievement
from ..quality_report import QualityReport
from ..telemetry import STORE_RECOVERED, TIMESTAMP_CLAMPED, emit_event
from .locking import FileLock
from .records import CorruptLog, LogRecord, RecordType, ScanResult, decode_record, encode_record, scan_log

logger = logging.getLogger(__name__)

LOG_FILENAME = "events.jsonl"
SNAPSHOT_FILENAME = "snapshots.json"
PROFILE_FILENAME = "profile.json"
LOCK_FILENAME = "events.lock"
BACKUP_DIRNAME = "backups"
TEMP_SUFFIX = ".tmp"

T = TypeVar("T")

PendingRecord = Tuple[RecordType, Dict[str, Any], datetime]


class BackupHandle(BaseModel):
    backup_id: str
    path: Path
    created_at: datetime
    record_count: int = 0


class RecordView(Generic[T]):
    """Lazy, restartable view over one record type in log order.

    Each iteration opens the log afresh, so a view never observes a torn
    write: writers replace the file by rename while open handles keep
    reading the previous version.
    """

    def __init__(self, store: "EventStore", record_type: RecordType, convert: Callable[[LogRecord], T]) -> None:
        self._store = store
        self._record_type = record_type
        self._convert = convert

    def __iter__(self) -> Iterator[T]:
        for record in self._store.iter_records():
            if record.record_type == self._record_type:
                yield self._convert(record)


def _event_data(event: TrackingEvent) -> Dict[str, Any]:
    return event.model_dump(mode="json", exclude={"event_id", "timestamp"})


def _to_event(record: LogRecord) -> TrackingEvent:
    return TrackingEvent.model_validate({**record.data, "event_id": record.seq, "timestamp": record.timestamp})


def _to_assessment(record: LogRecord) -> AssessmentResult:
    return AssessmentResult.model_validate(record.data)


def _to_quality_report(record: LogRecord) -> QualityReport:
    return QualityReport.model_validate(record.data)


def _to_achievement(record: LogRecord) -> UnlockedAchievement:
    return UnlockedAchievement.model_validate(record.data)


class EventStore:
    """Single point of persistence and write serialization for a profile directory.

    Layout::

        <root>/events.jsonl     append-only log, one checksummed record per line
        <root>/snapshots.json   derived caches keyed by kind
        <root>/profile.json     learner profile
        <root>/events.lock      advisory lock held by writers
        <root>/backups/         full copies of the log
    """

    def __init__(self, root: Union[str, Path], *, lock_timeout_ms: int = 5000) -> None:
        self._root = Path(root).expanduser()
        try:
            self._root.mkdir(parents=True, exist_ok=True)
        except OSError as exc:
            raise StoreIOFailure(f"Cannot create store directory {self._root}: {exc}") from exc
        self._log_path = self._root / LOG_FILENAME
        self._snapshot_path = self._root / SNAPSHOT_FILENAME
        self._profile_path = self._root / PROFILE_FILENAME
        self._backup_dir = self._root / BACKUP_DIRNAME
        self._lock = FileLock(self._root / LOCK_FILENAME, lock_timeout_ms)
        self._open()

    @classmethod
    def from_settings(cls, settings: Any, profile_id: Optional[str] = None) -> "EventStore":
        return cls(settings.profile_dir(profile_id), lock_timeout_ms=settings.lock_timeout_ms)

    @property
    def root(self) -> Path:
        return self._root

    @property
    def log_path(self) -> Path:
        return self._log_path

    # ------------------------------------------------------------------
    # Open and recovery
    # ------------------------------------------------------------------

    def _open(self) -> None:
        scan = self._scan()
        if scan.needs_truncation:
            with self._lock:
                self._remove_orphans()
                scan = self._scan()
                if scan.needs_truncation:
                    self._truncate(scan)
            return
        if not self._orphan_temp_files():
            return
        # Orphan cleanup is opportunistic; a busy writer just defers it.
        try:
            with self._lock:
                self._remove_orphans()
        except StoreLocked:
            logger.debug("Skipping orphan cleanup in %s while another writer holds the lock", self._root)

    def _orphan_temp_files(self) -> List[Path]:
        return sorted(self._root.glob(f".*{TEMP_SUFFIX}"))

    def _remove_orphans(self) -> None:
        for path in self._orphan_temp_files():
            try:
                path.unlink()
                logger.info("Removed orphaned temp file %s", path)
            except FileNotFoundError:
                continue
            except OSError:
                logger.warning("Could not remove orphaned temp file %s", path, exc_info=True)

    def _read_bytes(self) -> bytes:
        try:
            return self._log_path.read_bytes()
        except FileNotFoundError:
            return b""
        except OSError as exc:
            raise StoreIOFailure(f"Cannot read event log {self._log_path}: {exc}") from exc

    def _scan(self, data: Optional[bytes] = None) -> ScanResult:
        payload = self._read_bytes() if data is None else data
        try:
            return scan_log(payload)
        except CorruptLog as exc:
            raise StoreCorrupt(str(self._log_path), exc.line_number, exc.reason) from exc

    def _truncate(self, scan: ScanResult) -> None:
        dropped = scan.total_length - scan.valid_length
        data = self._read_bytes()[: scan.valid_length]
        self._atomic_write(self._log_path, data)
        logger.warning(
            "Recovered event log %s: dropped %d bytes of malformed trailing record at line %d (%s)",
            self._log_path,
            dropped,
            scan.error_line,
            scan.error,
        )
        emit_event(
            STORE_RECOVERED,
            path=str(self._log_path),
            dropped_bytes=dropped,
            line=scan.error_line,
            reason=scan.error,
        )

    # ------------------------------------------------------------------
    # Low-level writes
    # ------------------------------------------------------------------

    def _atomic_write(self, target: Path, data: bytes) -> None:
        temp = target.parent / f".{target.name}.{uuid.uuid4().hex}{TEMP_SUFFIX}"
        try:
            with temp.open("wb") as handle:
                handle.write(data)
                handle.flush()
                os.fsync(handle.fileno())
            os.replace(temp, target)
            self._fsync_directory(target.parent)
        except OSError as exc:
            try:
                temp.unlink()
            except OSError:
                logger.debug("Temp file %s already gone", temp)
            raise StoreIOFailure(f"Failed to write {target}: {exc}") from exc

    @staticmethod
    def _fsync_directory(path: Path) -> None:
        fd = os.open(path, os.O_RDONLY)
        try:
            os.fsync(fd)
        finally:
            os.close(fd)

    def _append_records(self, entries: Sequence[PendingRecord]) -> List[LogRecord]:
        """Append ``entries`` in order with a single atomic rewrite of the log."""
        with self._lock:
            current = self._read_bytes()
            scan = self._scan(current)
            if scan.needs_truncation:
                self._truncate(scan)
                current = current[: scan.valid_length]

            floor = scan.last_timestamp
            seq = scan.last_seq
            records: List[LogRecord] = []
            for record_type, data, timestamp in entries:
                requested = utc(timestamp)
                stamped = requested
                if floor is not None and requested < floor:
                    stamped = floor
                    logger.warning(
                        "Clamped %s timestamp %s up to %s to keep the log ordered",
                        record_type,
                        requested.isoformat(),
                        floor.isoformat(),
                    )
                    emit_event(
                        TIMESTAMP_CLAMPED,
                        record_type=record_type,
                        requested=requested,
                        clamped_to=floor,
                    )
                seq += 1
                floor = stamped
                records.append(LogRecord(seq=seq, record_type=record_type, timestamp=stamped, data=data))

            if records:
                self._atomic_write(self._log_path, current + b"".join(encode_record(record) for record in records))
                logger.debug("Appended records %d-%d to %s", records[0].seq, records[-1].seq, self._log_path)
            return records

    def _append_record(self, record_type: RecordType, data: Dict[str, Any], timestamp: datetime) -> LogRecord:
        return self._append_records([(record_type, data, timestamp)])[0]

    def locked(self) -> FileLock:
        """The re-entrant write lock, for callers that read and then append as one step."""
        return self._lock

    # ------------------------------------------------------------------
    # Log API
    # ------------------------------------------------------------------

    def append(self, event: TrackingEvent) -> int:
        """Append a tracking event and return its store-assigned id."""
        record = self._append_record("event", _event_data(event), event.timestamp)
        return record.seq

    def append_assessment(self, result: AssessmentResult) -> int:
        return self._append_record("assessment", result.model_dump(mode="json"), result.created_at).seq

    def append_assessment_revision(
        self,
        period_tag: str,
        kind: AssessmentKind,
        build: Callable[[int], AssessmentResult],
    ) -> AssessmentResult:
        """Number the next revision of ``(period_tag, kind)`` and append it while holding the lock."""
        with self._lock:
            revisions = [
                result.revision
                for result in self.read_assessments()
                if result.period_tag == period_tag and result.kind == kind
            ]
            result = build(max(revisions, default=0) + 1)
            self.append_assessment(result)
            return result

    def append_quality_report(self, report: QualityReport) -> int:
        return self._append_record("quality_report", report.model_dump(mode="json"), report.created_at).seq

    def append_quality_scan(self, report: QualityReport, event: TrackingEvent) -> int:
        """Append a report and its QualityScan event together; returns the event id."""
        records = self._append_records(
            [
                ("quality_report", report.model_dump(mode="json"), report.created_at),
                ("event", _event_data(event), event.timestamp),
            ]
        )
        return records[-1].seq

    def append_achievement(self, achievement: UnlockedAchievement) -> int:
        return self._append_record("achievement", achievement.model_dump(mode="json"), achievement.unlocked_at).seq

    def append_achievements_if_absent(self, entries: Iterable[UnlockedAchievement]) -> List[UnlockedAchievement]:
        """Persist the entries not yet credited and return exactly those."""
        with self._lock:
            credited = {entry.achievement_id for entry in self.read_achievements()}
            fresh: List[UnlockedAchievement] = []
            for entry in entries:
                if entry.achievement_id in credited:
                    continue
                credited.add(entry.achievement_id)
                fresh.append(entry)
            self._append_records(
                [("achievement", entry.model_dump(mode="json"), entry.unlocked_at) for entry in fresh]
            )
            return fresh

    def iter_records(self) -> Iterator[LogRecord]:
        try:
            handle = self._log_path.open("rb")
        except FileNotFoundError:
            return
        except OSError as exc:
            raise StoreIOFailure(f"Cannot read event log {self._log_path}: {exc}") from exc
        with handle:
            for line_number, line in enumerate(handle, start=1):
                try:
                    yield decode_record(line)
                except ValueError as exc:
                    raise StoreCorrupt(str(self._log_path), line_number, str(exc)) from exc

    def read_all(self) -> RecordView[TrackingEvent]:
        return RecordView(self, "event", _to_event)

    def read_assessments(self) -> RecordView[AssessmentResult]:
        return RecordView(self, "assessment", _to_assessment)

    def read_quality_reports(self) -> RecordView[QualityReport]:
        return RecordView(self, "quality_report", _to_quality_report)

    def read_achievements(self) -> RecordView[UnlockedAchievement]:
        return RecordView(self, "achievement", _to_achievement)

    def last_event_id(self) -> int:
        return self._scan().last_seq

    # ------------------------------------------------------------------
    # Snapshot cache
    # ------------------------------------------------------------------

    def _load_snapshot_file(self) -> Dict[str, Any]:
        try:
            raw = json.loads(self._snapshot_path.read_text(encoding="utf-8"))
        except FileNotFoundError:
            return {}
        except (OSError, ValueError):
            logger.warning("Snapshot cache %s is unreadable; ignoring it", self._snapshot_path, exc_info=True)
            return {}
        if not isinstance(raw, dict):
            logger.warning("Snapshot cache %s is not a mapping; ignoring it", self._snapshot_path)
            return {}
        return raw

    def save_snapshot(self, kind: str, blob: Dict[str, Any]) -> None:
        with self._lock:
            snapshots = self._load_snapshot_file()
            snapshots[kind] = {
                "saved_at": datetime.now(timezone.utc).isoformat(),
                "blob": blob,
            }
            payload = json.dumps(snapshots, indent=2, sort_keys=True).encode("utf-8")
            self._atomic_write(self._snapshot_path, payload)

    def load_snapshot(self, kind: str) -> Optional[Dict[str, Any]]:
        """Return the cached blob for ``kind``; any failure yields None so callers recompute."""
        entry = self._load_snapshot_file().get(kind)
        if not isinstance(entry, dict) or not isinstance(entry.get("blob"), dict):
            return None
        return entry["blob"]

    def clear_snapshots(self) -> None:
        with self._lock:
            try:
                self._snapshot_path.unlink()
            except FileNotFoundError:
                return
            except OSError as exc:
                raise StoreIOFailure(f"Cannot remove snapshot cache {self._snapshot_path}: {exc}") from exc

    # ------------------------------------------------------------------
    # Profile
    # ------------------------------------------------------------------

    def save_profile(self, profile: LearningProfile) -> LearningProfile:
        with self._lock:
            payload = json.dumps(profile.model_dump(mode="json"), indent=2).encode("utf-8")
            self._atomic_write(self._profile_path, payload)
        return profile

    def load_profile(self) -> Optional[LearningProfile]:
        try:
            raw = self._profile_path.read_text(encoding="utf-8")
        except FileNotFoundError:
            return None
        except OSError as exc:
            raise StoreIOFailure(f"Cannot read profile {self._profile_path}: {exc}") from exc
        try:
            return LearningProfile.model_validate_json(raw)
        except ValidationError as exc:
            raise StoreCorrupt(str(self._profile_path), 1, str(exc)) from exc

    # ------------------------------------------------------------------
    # Backups
    # ------------------------------------------------------------------

    def _backup_path(self, backup_id: str) -> Path:
        return self._backup_dir / f"{backup_id}.jsonl"

    def backup(self) -> BackupHandle:
        with self._lock:
            data = self._read_bytes()
            scan = self._scan(data)
            created_at = datetime.now(timezone.utc)
            backup_id = f"{created_at:%Y%m%dT%H%M%S%fZ}"
            try:
                self._backup_dir.mkdir(parents=True, exist_ok=True)
            except OSError as exc:
                raise StoreIOFailure(f"Cannot create backup directory {self._backup_dir}: {exc}") from exc
            target = self._backup_path(backup_id)
            self._atomic_write(target, data[: scan.valid_length])
        logger.info("Backed up %d records to %s", len(scan.records), target)
        return BackupHandle(backup_id=backup_id, path=target, created_at=created_at, record_count=len(scan.records))

    def list_backups(self) -> List[BackupHandle]:
        handles: List[BackupHandle] = []
        if not self._backup_dir.is_dir():
            return handles
        for path in sorted(self._backup_dir.glob("*.jsonl")):
            try:
                created_at = datetime.strptime(path.stem, "%Y%m%dT%H%M%S%fZ").replace(tzinfo=timezone.utc)
            except ValueError:
                created_at = datetime.fromtimestamp(path.stat().st_mtime, tz=timezone.utc)
            handles.append(BackupHandle(backup_id=path.stem, path=path, created_at=created_at))
        return handles

    def resolve_backup(self, backup_id: str) -> BackupHandle:
        path = self._backup_path(backup_id)
        if not path.is_file():
            raise BackupNotFound(backup_id)
        for handle in self.list_backups():
            if handle.backup_id == backup_id:
                return handle
        raise BackupNotFound(backup_id)

    def restore(self, handle: Union[BackupHandle, str]) -> int:
        """Replace the log with a backup copy and drop caches derived from the old log."""
        backup_id = handle if isinstance(handle, str) else handle.backup_id
        path = self._backup_path(backup_id) if isinstance(handle, str) else Path(handle.path)
        if not path.is_file():
            raise BackupNotFound(backup_id)
        try:
            data = path.read_bytes()
        except OSError as exc:
            raise StoreIOFailure(f"Cannot read backup {path}: {exc}") from exc
        try:
            scan = scan_log(data)
        except CorruptLog as exc:
            raise StoreCorrupt(str(path), exc.line_number, exc.reason) from exc

        with self._lock:
            self._atomic_write(self._log_path, data[: scan.valid_length])
            self.clear_snapshots()
        logger.warning("Restored %s from backup %s (%d records)", self._log_path, backup_id, len(scan.records))
        return len(scan.records)


__all__ = [
    "BACKUP_DIRNAME",
    "BackupHandle",
    "EventStore",
    "LOCK_FILENAME",
    "LOG_FILENAME",
    "PROFILE_FILENAME",
    "RecordView",
    "SNAPSHOT_FILENAME",
]
