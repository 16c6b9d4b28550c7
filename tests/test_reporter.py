from __future__ import annotations

import json
from datetime import date

import pytest

from learnpath.assessment_result import AssessmentResult
from learnpath.config import Settings
from learnpath.dashboard import progress_bar, suggestions
from learnpath.events import TrackingEvent
from learnpath.learner_profile import LearningProfile
from learnpath.progress_snapshot import PeriodAggregate, ProgressSnapshot
from learnpath.reporter import Reporter
from learnpath.store import EventStore
from learnpath.tracker import Tracker


def test_json_export_contains_every_section(store: EventStore, settings: Settings) -> None:
    store.save_profile(LearningProfile(profile_id="default", display_name="Ada"))
    Tracker(store, settings).record(TrackingEvent.exercise("ex-1"))

    payload = json.loads(Reporter(store, settings).export("json"))

    assert set(payload) == {"profile", "latest_assessment", "latest_quality", "progress_snapshot", "generated_at", "as_of"}
    assert payload["profile"]["display_name"] == "Ada"
    assert payload["latest_assessment"] is None
    assert payload["progress_snapshot"]["completed_exercises"] == 1


def test_text_export_renders_dashboard(store: EventStore, settings: Settings) -> None:
    store.save_profile(LearningProfile(profile_id="default", display_name="Ada", current_stage=2))
    Tracker(store, settings).record(TrackingEvent.exercise("ex-1"))

    text = Reporter(store, settings).export("TEXT").decode("utf-8")

    assert "Learning Progress Dashboard: Ada" in text
    assert "Stage 2: Ownership" in text
    assert "First Steps" in text
    assert "Suggestions" in text


def test_unknown_export_format_is_rejected(store: EventStore, settings: Settings) -> None:
    with pytest.raises(ValueError):
        Reporter(store, settings).export("pdf")


def test_reporter_prefers_current_cache_and_recomputes_stale_one(store: EventStore, settings: Settings) -> None:
    Tracker(store, settings).record(TrackingEvent.exercise("ex-1"))
    reporter = Reporter(store, settings)

    cached = store.load_snapshot("progress-weekly")
    assert cached is not None
    store.save_snapshot("progress-weekly", {**cached, "completed_exercises": 99})
    assert reporter.progress("weekly").completed_exercises == 99

    store.save_snapshot("progress-weekly", {**cached, "completed_exercises": 99, "last_event_id": 0})
    assert reporter.progress("weekly").completed_exercises == 1


def test_progress_bar_renders_fraction() -> None:
    assert progress_bar(50.0, width=10) == "[#####.....]  50.0%"
    assert progress_bar(150.0, width=4) == "[####] 100.0%"


def test_suggestions_follow_progress_and_profile() -> None:
    snapshot = ProgressSnapshot(
        period="weekly",
        buckets=[PeriodAggregate(period_start=date(2024, 5, 6), total_hours=2.0)],
        completion_rate=10.0,
        total_hours=2.0,
        average_quality_score=95.0,
        event_count=3,
        streak_days=1,
    )
    profile = LearningProfile(profile_id="default", weekly_hour_goal=6, current_stage=2)

    advice = suggestions(snapshot, profile, today=date(2024, 5, 8))

    assert advice[0].startswith("Just getting started")
    assert any("code quality is outstanding" in line for line in advice)
    assert any("2.0 of your 6 weekly hours" in line for line in advice)
    assert advice[-1].startswith("Ownership and borrowing")
    assert not any("Restart your streak" in line for line in advice)


def test_weekly_goal_uses_the_current_week_not_the_last_active_one() -> None:
    snapshot = ProgressSnapshot(
        period="weekly",
        buckets=[PeriodAggregate(period_start=date(2024, 5, 6), total_hours=8.0)],
        total_hours=8.0,
        event_count=1,
    )
    profile = LearningProfile(profile_id="default", weekly_hour_goal=6)

    assert not any("weekly hours" in line for line in suggestions(snapshot, profile, today=date(2024, 5, 9)))
    assert any("0.0 of your 6 weekly hours" in line for line in suggestions(snapshot, profile, today=date(2024, 5, 20)))


def test_text_export_shows_stage_progress_and_sub_scores(store: EventStore, settings: Settings) -> None:
    tracker = Tracker(store, settings)
    tracker.record(TrackingEvent.exercise("ex-1", stage=1))
    tracker.record(TrackingEvent.exercise("ex-2", "in_progress", stage=1))
    store.append_assessment(
        AssessmentResult(
            assessment_id="weekly-week-01-r1",
            period_tag="week-01",
            kind="weekly",
            knowledge_test=82.0,
            code_quality=88.0,
            practice_completion=90.0,
            overall=86.8,
            pass_threshold=75.0,
            passed=True,
        )
    )

    text = Reporter(store, settings).export("text").decode("utf-8")

    assert "1 completed, 1 in progress, 0 skipped" in text
    assert "Stage 1  [" in text and "50.0%" in text
    assert "knowledge test 82.0 | code quality 88.0 | practice completion 90.0" in text
