"""Read-only projection of stored state into exportable reports."""

from __future__ import annotations

import logging
from datetime import date, datetime, timezone
from typing import Iterable, Optional, TypeVar

from pydantic import BaseModel, Field, ValidationError

from . import dashboard
from .assessment_result import AssessmentResult
from .config import Settings
from .learner_profile import LearningProfile
from .periods import local_date, validate_period
from .progress_snapshot import Period, ProgressSnapshot
from .quality_report import QualityReport
from .store import EventStore
from .tracker import Tracker, snapshot_kind

logger = logging.getLogger(__name__)

EXPORT_FORMATS = ("json", "text")


class ReportSnapshot(BaseModel):
    profile: Optional[LearningProfile] = None
    latest_assessment: Optional[AssessmentResult] = None
    latest_quality: Optional[QualityReport] = None
    progress_snapshot: ProgressSnapshot
    generated_at: datetime = Field(default_factory=lambda: datetime.now(timezone.utc))
    as_of: Optional[date] = None


T = TypeVar("T")


def _last(items: Iterable[T]) -> Optional[T]:
    latest: Optional[T] = None
    for item in items:
        latest = item
    return latest


class Reporter:
    def __init__(self, store: EventStore, settings: Settings) -> None:
        self._store = store
        self._settings = settings

    def progress(self, period: Period = "weekly") -> ProgressSnapshot:
        """Cached snapshot when it is current with the log, otherwise a fresh summary."""
        resolved = validate_period(period)
        cached = self._store.load_snapshot(snapshot_kind(resolved))
        if cached is not None and cached.get("last_event_id") == self._store.last_event_id():
            try:
                return ProgressSnapshot.model_validate(cached)
            except ValidationError:
                logger.warning("Discarding unreadable %s snapshot cache", resolved, exc_info=True)
        return Tracker(self._store, self._settings).summary(resolved)

    def snapshot(self, period: Period = "weekly") -> ReportSnapshot:
        generated_at = datetime.now(timezone.utc)
        return ReportSnapshot(
            profile=self._store.load_profile(),
            latest_assessment=_last(self._store.read_assessments()),
            latest_quality=_last(self._store.read_quality_reports()),
            progress_snapshot=self.progress(period),
            generated_at=generated_at,
            as_of=local_date(generated_at, self._settings.tzinfo),
        )

    def export(self, format_hint: str = "json", *, period: Period = "weekly") -> bytes:
        hint = (format_hint or "").strip().lower()
        if hint not in EXPORT_FORMATS:
            raise ValueError(f"Unsupported export format '{format_hint}'; expected one of {', '.join(EXPORT_FORMATS)}.")
        report = self.snapshot(period)
        if hint == "json":
            return (report.model_dump_json(indent=2) + "\n").encode("utf-8")
        return dashboard.render(report).encode("utf-8")


__all__ = ["EXPORT_FORMATS", "ReportSnapshot", "Reporter"]
