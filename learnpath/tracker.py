"""Progress aggregation, streaks, and achievement unlocking over the event log."""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from datetime import date, datetime, timedelta
from typing import Dict, Iterable, List, Optional, Set, Tuple

from .achievements import AchievementDefinition, build_ladders
from .config import Settings
from .events import ExercisePayload, ExerciseStatus, KnowledgePayload, QualityScanPayload, TimePayload, TrackingEvent
from .learner_profile import STAGES, LearningProfile, get_stage
from .periods import local_date, period_start, validate_period
from .progress_snapshot import (
    LearningPathRecommendation,
    Period,
    PeriodAggregate,
    ProgressSnapshot,
    UnlockedAchievement,
)
from .store import EventStore
from .telemetry import ACHIEVEMENT_UNLOCKED, TRACKING_EVENT_RECORDED, emit_event

logger = logging.getLogger(__name__)

SNAPSHOT_PREFIX = "progress-"
RECOMMENDATION_LIMIT = 5

# Breaks ties between attempts recorded for the same instant.
_STATUS_RANK: Dict[str, int] = {"skipped": 0, "in_progress": 1, "completed": 2}


def snapshot_kind(period: Period) -> str:
    return f"{SNAPSHOT_PREFIX}{period}"


def unique_events(events: Iterable[TrackingEvent]) -> List[TrackingEvent]:
    """Drop repeated facts, keeping the first occurrence in log order."""
    seen: Set[Tuple[str, str, str]] = set()
    unique: List[TrackingEvent] = []
    for event in events:
        key = event.dedupe_key()
        if key in seen:
            continue
        seen.add(key)
        unique.append(event)
    return unique


def streak_ending(days: Set[date], last: Optional[date]) -> int:
    """Length of the consecutive run of ``days`` that ends on ``last``."""
    if last is None or last not in days:
        return 0
    length = 0
    cursor = last
    while cursor in days:
        length += 1
        cursor -= timedelta(days=1)
    return length


def longest_streak(days: Set[date]) -> int:
    longest = 0
    for day in days:
        if day - timedelta(days=1) in days:
            continue
        longest = max(longest, streak_ending(days, _run_end(days, day)))
    return longest


def _run_end(days: Set[date], start: date) -> date:
    cursor = start
    while cursor + timedelta(days=1) in days:
        cursor += timedelta(days=1)
    return cursor


def _rate(completed: int, touched: int) -> float:
    if touched == 0:
        return 0.0
    return round(min(100.0, 100.0 * completed / touched), 2)


@dataclass
class _Bucket:
    completed: Set[str] = field(default_factory=set)
    touched: Set[str] = field(default_factory=set)
    minutes: int = 0

    def aggregate(self, start: date) -> PeriodAggregate:
        return PeriodAggregate(
            period_start=start,
            completed_exercises=len(self.completed),
            total_hours=round(self.minutes / 60.0, 2),
            completion_rate=_rate(len(self.completed), len(self.touched)),
        )


class _Replay:
    """Running lifetime metrics, advanced one event at a time in log order."""

    def __init__(self, settings: Settings) -> None:
        self._tz = settings.tzinfo
        self.completed: Set[str] = set()
        self.touched: Set[str] = set()
        # exercise id -> (occurred_at, status rank, status) of its latest attempt
        self.statuses: Dict[str, Tuple[datetime, int, ExerciseStatus]] = {}
        self.stages: Dict[str, Tuple[datetime, int]] = {}
        self.first_seen: Dict[str, datetime] = {}
        self.minutes = 0
        self.quality_scores: List[float] = []
        self.knowledge_scores: List[float] = []
        self.streak_days: Set[date] = set()

    def apply(self, event: TrackingEvent) -> None:
        payload = event.payload
        if isinstance(payload, ExercisePayload):
            exercise_id = payload.exercise_id
            self.touched.add(exercise_id)
            attempt = (event.occurred_at, _STATUS_RANK[payload.status], payload.status)
            self.statuses[exercise_id] = max(self.statuses.get(exercise_id, attempt), attempt)
            self.first_seen[exercise_id] = min(self.first_seen.get(exercise_id, event.occurred_at), event.occurred_at)
            if payload.stage is not None:
                tagged = (event.occurred_at, payload.stage)
                self.stages[exercise_id] = max(self.stages.get(exercise_id, tagged), tagged)
            if payload.status == "completed":
                self.completed.add(payload.exercise_id)
        elif isinstance(payload, TimePayload):
            self.minutes += payload.duration_minutes
        elif isinstance(payload, QualityScanPayload):
            self.quality_scores.append(payload.quality_score)
        elif isinstance(payload, KnowledgePayload):
            self.knowledge_scores.append(payload.score)
        if event.counts_toward_streak():
            self.streak_days.add(local_date(event.occurred_at, self._tz))

    @property
    def hours(self) -> float:
        return self.minutes / 60.0

    @property
    def current_streak(self) -> int:
        latest = max(self.streak_days) if self.streak_days else None
        return streak_ending(self.streak_days, latest)

    @property
    def average_quality(self) -> Optional[float]:
        if not self.quality_scores:
            return None
        return sum(self.quality_scores) / len(self.quality_scores)

    @property
    def knowledge_average(self) -> Optional[float]:
        if not self.knowledge_scores:
            return None
        return sum(self.knowledge_scores) / len(self.knowledge_scores)

    def status_of(self, exercise_id: str) -> ExerciseStatus:
        """Completed once ever completed, otherwise the status of the latest attempt."""
        if exercise_id in self.completed:
            return "completed"
        return self.statuses[exercise_id][2]

    def count_status(self, status: ExerciseStatus) -> int:
        return sum(1 for exercise_id in self.touched if self.status_of(exercise_id) == status)

    def stage_progress(self) -> Dict[int, float]:
        totals: Dict[int, List[int]] = {}
        for exercise_id, (_, stage) in self.stages.items():
            counts = totals.setdefault(stage, [0, 0])
            counts[1] += 1
            if exercise_id in self.completed:
                counts[0] += 1
        return {stage: _rate(done, total) for stage, (done, total) in sorted(totals.items())}

    def open_exercises(self) -> Dict[int, List[str]]:
        """In-progress exercise ids per stage, oldest first; every tagged stage is a key."""
        grouped: Dict[int, List[str]] = {}
        for exercise_id in sorted(self.stages, key=lambda item: (self.first_seen[item], item)):
            bucket = grouped.setdefault(self.stages[exercise_id][1], [])
            if self.status_of(exercise_id) == "in_progress":
                bucket.append(exercise_id)
        return grouped

    def metric_values(self) -> Dict[str, Optional[float]]:
        return {
            "completed_exercises": float(len(self.completed)),
            "exercise_streak_days": float(self.current_streak),
            "cumulative_hours": self.hours,
            "average_quality_score": self.average_quality,
        }


def current_stage(open_by_stage: Dict[int, List[str]], profile: Optional[LearningProfile] = None) -> int:
    """First stage with open exercises; otherwise the stage after the furthest one worked on.

    Never falls behind the profile's own stage when nothing is open.
    """
    for stage in STAGES:
        if open_by_stage.get(stage.number):
            return stage.number
    floor = profile.current_stage if profile is not None else 1
    if not open_by_stage:
        return floor
    return max(floor, min(max(open_by_stage) + 1, len(STAGES)))


def _unlock(definition: AchievementDefinition, event: TrackingEvent) -> UnlockedAchievement:
    return UnlockedAchievement(
        achievement_id=definition.achievement_id,
        metric=definition.metric,
        threshold=definition.threshold,
        name=definition.name,
        description=definition.description,
        rarity=definition.rarity,
        unlocked_at=event.timestamp,
        event_id=event.event_id,
    )


class Tracker:
    """Records learning events and derives progress snapshots from the log."""

    def __init__(self, store: EventStore, settings: Settings) -> None:
        self._store = store
        self._settings = settings

    # ------------------------------------------------------------------
    # Recording
    # ------------------------------------------------------------------

    def record(self, event: TrackingEvent, *, period: Period = "weekly") -> List[UnlockedAchievement]:
        """Append ``event`` and return the achievements it newly unlocked."""
        with self._store.locked():
            event_id = self._store.append(event)
            unlocks = self._replay_unlocks(self._store.read_all())
            fresh = self._store.append_achievements_if_absent(unlocks)
        emit_event(
            TRACKING_EVENT_RECORDED,
            event_id=event_id,
            kind=event.kind,
            occurred_at=event.occurred_at,
        )

        for entry in fresh:
            logger.info("Unlocked achievement %s (%s)", entry.achievement_id, entry.name)
            emit_event(
                ACHIEVEMENT_UNLOCKED,
                achievement_id=entry.achievement_id,
                metric=entry.metric,
                threshold=entry.threshold,
                event_id=entry.event_id,
            )

        self.summary(period, persist=True)
        return fresh

    # ------------------------------------------------------------------
    # Derivation
    # ------------------------------------------------------------------

    def _replay_unlocks(self, events: Iterable[TrackingEvent]) -> List[UnlockedAchievement]:
        ladders = build_ladders(self._settings)
        replay = _Replay(self._settings)
        unlocked: List[UnlockedAchievement] = []
        for event in unique_events(events):
            replay.apply(event)
            values = replay.metric_values()
            for metric, ladder in ladders.items():
                for definition in ladder.fire(values[metric]):
                    unlocked.append(_unlock(definition, event))
        return unlocked

    def achievements(self) -> List[UnlockedAchievement]:
        """Credited achievements ordered by unlock time, including any not yet persisted."""
        credited: List[UnlockedAchievement] = []
        known: Set[str] = set()
        for entry in self._store.read_achievements():
            if entry.achievement_id not in known:
                known.add(entry.achievement_id)
                credited.append(entry)
        pending = [
            entry for entry in self._replay_unlocks(self._store.read_all()) if entry.achievement_id not in known
        ]
        merged = credited + pending
        merged.sort(key=lambda entry: (entry.unlocked_at, entry.event_id, entry.metric, entry.threshold))
        return merged

    def summary(self, period: str = "weekly", *, persist: bool = False) -> ProgressSnapshot:
        resolved = validate_period(period)
        tz = self._settings.tzinfo
        events = unique_events(self._store.read_all())

        replay = _Replay(self._settings)
        buckets: Dict[date, _Bucket] = {}
        for event in events:
            replay.apply(event)
            start = period_start(local_date(event.occurred_at, tz), resolved)
            payload = event.payload
            if isinstance(payload, ExercisePayload):
                bucket = buckets.setdefault(start, _Bucket())
                bucket.touched.add(payload.exercise_id)
                if payload.status == "completed":
                    bucket.completed.add(payload.exercise_id)
            elif isinstance(payload, TimePayload):
                buckets.setdefault(start, _Bucket()).minutes += payload.duration_minutes

        average_quality = replay.average_quality
        knowledge_average = replay.knowledge_average
        snapshot = ProgressSnapshot(
            period=resolved,
            buckets=[buckets[start].aggregate(start) for start in sorted(buckets)],
            completed_exercises=len(replay.completed),
            in_progress_exercises=replay.count_status("in_progress"),
            skipped_exercises=replay.count_status("skipped"),
            stage_progress=replay.stage_progress(),
            total_hours=round(replay.hours, 2),
            completion_rate=_rate(len(replay.completed), len(replay.touched)),
            streak_days=replay.current_streak,
            longest_streak_days=longest_streak(replay.streak_days),
            average_quality_score=round(average_quality, 2) if average_quality is not None else None,
            knowledge_average=round(knowledge_average, 2) if knowledge_average is not None else None,
            unlocked_achievements=self.achievements(),
            event_count=len(events),
            last_event_id=self._store.last_event_id(),
        )
        if persist:
            self._store.save_snapshot(snapshot_kind(resolved), snapshot.model_dump(mode="json"))
        return snapshot

    def recommend(self, profile: Optional[LearningProfile] = None) -> LearningPathRecommendation:
        replay = _Replay(self._settings)
        for event in unique_events(self._store.read_all()):
            replay.apply(event)

        open_by_stage = replay.open_exercises()
        stage = get_stage(current_stage(open_by_stage, profile))
        progress = replay.stage_progress().get(stage.number, 0.0)
        next_exercises = open_by_stage.get(stage.number, [])[:RECOMMENDATION_LIMIT]

        if next_exercises:
            overall = len(replay.completed) / len(replay.touched)
            confidence = round((overall + progress / 100.0) / 2.0, 4)
            count = len(next_exercises)
            reasoning = (
                f"Based on your progress, finish {count} open exercise{'' if count == 1 else 's'} in "
                f"{stage.name} ({progress:.0f}% complete); the stage is planned for about "
                f"{stage.estimated_weeks} weeks."
            )
        else:
            confidence = 0.0
            reasoning = f"No exercises are open. Start {stage.name} or revisit earlier stages with a small project."

        return LearningPathRecommendation(
            recommended_stage=stage.number,
            stage_name=stage.name,
            stage_progress=progress,
            next_exercises=next_exercises,
            estimated_weeks=stage.estimated_weeks,
            confidence_score=confidence,
            reasoning=reasoning,
        )

    # ------------------------------------------------------------------
    # Window helpers
    # ------------------------------------------------------------------

    def _window(self, start: date, end: date) -> Iterable[TrackingEvent]:
        tz = self._settings.tzinfo
        for event in unique_events(self._store.read_all()):
            if start <= local_date(event.occurred_at, tz) < end:
                yield event

    def completed_exercise_ids(self, start: date, end: date, stage: Optional[int] = None) -> Set[str]:
        """Distinct exercises completed in ``[start, end)``, optionally limited to one stage."""
        completed: Set[str] = set()
        for event in self._window(start, end):
            payload = event.payload
            if not isinstance(payload, ExercisePayload) or payload.status != "completed":
                continue
            if stage is not None and payload.stage != stage:
                continue
            completed.add(payload.exercise_id)
        return completed

    def knowledge_average(self, start: date, end: date) -> Optional[float]:
        scores = [
            event.payload.score for event in self._window(start, end) if isinstance(event.payload, KnowledgePayload)
        ]
        if not scores:
            return None
        return round(sum(scores) / len(scores), 2)


__all__ = [
    "RECOMMENDATION_LIMIT",
    "SNAPSHOT_PREFIX",
    "Tracker",
    "current_stage",
    "longest_streak",
    "snapshot_kind",
    "streak_ending",
    "unique_events",
]
