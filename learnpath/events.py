"""Immutable tracking events: the raw facts every progress aggregate is derived from."""

from __future__ import annotations

import json
from datetime import datetime, timezone
from typing import Any, Dict, Literal, Optional, Tuple, Type, Union

from pydantic import BaseModel, ConfigDict, Field, field_validator, model_validator

EventKind = Literal["ExerciseCompleted", "TimeLogged", "KnowledgeCheck", "QualityScan"]
ExerciseStatus = Literal["completed", "in_progress", "skipped"]

EXERCISE_COMPLETED: EventKind = "ExerciseCompleted"
TIME_LOGGED: EventKind = "TimeLogged"
KNOWLEDGE_CHECK: EventKind = "KnowledgeCheck"
QUALITY_SCAN: EventKind = "QualityScan"


def utc(value: datetime) -> datetime:
    """Return ``value`` as an aware UTC datetime; naive values are taken to be UTC."""
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc)


def _now() -> datetime:
    return datetime.now(timezone.utc)


class ExercisePayload(BaseModel):
    model_config = ConfigDict(extra="forbid", frozen=True)

    exercise_id: str = Field(min_length=1)
    status: ExerciseStatus = "completed"
    stage: Optional[int] = Field(default=None, ge=1)
    score: Optional[float] = Field(default=None, ge=0.0, le=100.0)


class TimePayload(BaseModel):
    model_config = ConfigDict(extra="forbid", frozen=True)

    activity: str = Field(min_length=1)
    duration_minutes: int = Field(ge=0)


class KnowledgePayload(BaseModel):
    model_config = ConfigDict(extra="forbid", frozen=True)

    check_id: str = Field(min_length=1)
    score: float = Field(ge=0.0, le=100.0)


class QualityScanPayload(BaseModel):
    model_config = ConfigDict(extra="forbid", frozen=True)

    report_id: str
    quality_score: float = Field(ge=0.0, le=100.0)
    gate_passed: bool


EventPayload = Union[ExercisePayload, TimePayload, KnowledgePayload, QualityScanPayload]

PAYLOAD_MODELS: Dict[str, Type[BaseModel]] = {
    EXERCISE_COMPLETED: ExercisePayload,
    TIME_LOGGED: TimePayload,
    KNOWLEDGE_CHECK: KnowledgePayload,
    QUALITY_SCAN: QualityScanPayload,
}


class TrackingEvent(BaseModel):
    """A single learning fact.

    ``timestamp`` is when the fact was recorded and is kept non-decreasing by
    the store. ``occurred_at`` is when the activity happened and drives every
    calendar computation, so backfilled events land on the right day.
    """

    model_config = ConfigDict(frozen=True)

    event_id: int = Field(default=0, ge=0)
    timestamp: datetime = Field(default_factory=_now)
    occurred_at: datetime
    kind: EventKind
    payload: EventPayload

    @model_validator(mode="before")
    @classmethod
    def _coerce_payload(cls, data: Any) -> Any:
        if not isinstance(data, dict):
            return data
        data = dict(data)
        model = PAYLOAD_MODELS.get(data.get("kind", ""))
        payload = data.get("payload")
        if model is not None and isinstance(payload, dict):
            data["payload"] = model.model_validate(payload)
        if data.get("occurred_at") is None:
            data["occurred_at"] = data.get("timestamp") or _now()
        return data

    @model_validator(mode="after")
    def _payload_matches_kind(self) -> "TrackingEvent":
        expected = PAYLOAD_MODELS[self.kind]
        if not isinstance(self.payload, expected):
            raise ValueError(f"{self.kind} events require a {expected.__name__} payload")
        return self

    @field_validator("timestamp", "occurred_at")
    @classmethod
    def _as_utc(cls, value: datetime) -> datetime:
        return utc(value)

    # ------------------------------------------------------------------
    # Constructors
    # ------------------------------------------------------------------

    @classmethod
    def exercise(
        cls,
        exercise_id: str,
        status: ExerciseStatus = "completed",
        *,
        stage: Optional[int] = None,
        score: Optional[float] = None,
        occurred_at: Optional[datetime] = None,
    ) -> "TrackingEvent":
        return cls(
            kind=EXERCISE_COMPLETED,
            occurred_at=occurred_at,
            payload=ExercisePayload(exercise_id=exercise_id.strip(), status=status, stage=stage, score=score),
        )

    @classmethod
    def time_logged(
        cls,
        activity: str,
        duration_minutes: int,
        *,
        occurred_at: Optional[datetime] = None,
    ) -> "TrackingEvent":
        return cls(
            kind=TIME_LOGGED,
            occurred_at=occurred_at,
            payload=TimePayload(activity=activity.strip(), duration_minutes=duration_minutes),
        )

    @classmethod
    def knowledge_check(
        cls,
        check_id: str,
        score: float,
        *,
        occurred_at: Optional[datetime] = None,
    ) -> "TrackingEvent":
        return cls(
            kind=KNOWLEDGE_CHECK,
            occurred_at=occurred_at,
            payload=KnowledgePayload(check_id=check_id.strip(), score=score),
        )

    @classmethod
    def quality_scan(
        cls,
        report_id: str,
        quality_score: float,
        gate_passed: bool,
        *,
        occurred_at: Optional[datetime] = None,
    ) -> "TrackingEvent":
        return cls(
            kind=QUALITY_SCAN,
            occurred_at=occurred_at,
            payload=QualityScanPayload(report_id=report_id, quality_score=quality_score, gate_passed=gate_passed),
        )

    # ------------------------------------------------------------------
    # Derived views
    # ------------------------------------------------------------------

    def dedupe_key(self) -> Tuple[str, str, str]:
        """Identity of the underlying fact, independent of when it was recorded."""
        body = json.dumps(self.payload.model_dump(mode="json"), sort_keys=True)
        return (self.kind, self.occurred_at.isoformat(), body)

    def counts_toward_streak(self) -> bool:
        if isinstance(self.payload, ExercisePayload):
            return self.payload.status != "skipped"
        if isinstance(self.payload, TimePayload):
            return self.payload.duration_minutes >= 1
        return False


__all__ = [
    "EXERCISE_COMPLETED",
    "EventKind",
    "EventPayload",
    "ExercisePayload",
    "ExerciseStatus",
    "KNOWLEDGE_CHECK",
    "KnowledgePayload",
    "PAYLOAD_MODELS",
    "QUALITY_SCAN",
    "QualityScanPayload",
    "TIME_LOGGED",
    "TimePayload",
    "TrackingEvent",
    "utc",
]
