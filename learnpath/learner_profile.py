"""Learner profile model and the fixed curriculum stages it progresses through."""

from __future__ import annotations

from dataclasses import dataclass
from datetime import date, datetime, timezone
from typing import Optional

from pydantic import BaseModel, Field, field_validator, model_validator


@dataclass(frozen=True)
class LearningStage:
    number: int
    key: str
    name: str
    description: str
    estimated_weeks: int


STAGES: tuple[LearningStage, ...] = (
    LearningStage(
        1,
        "basics",
        "Stage 1: Basics",
        "Toolchain setup, syntax, primitive types, and control flow.",
        3,
    ),
    LearningStage(
        2,
        "ownership",
        "Stage 2: Ownership",
        "Ownership, borrowing, and lifetimes.",
        2,
    ),
    LearningStage(
        3,
        "advanced-concepts",
        "Stage 3: Advanced Concepts",
        "Structs, enums, error handling, generics, and traits.",
        2,
    ),
    LearningStage(
        4,
        "ecosystem",
        "Stage 4: Ecosystem",
        "Package tooling, common libraries, async programming, and web frameworks.",
        2,
    ),
    LearningStage(
        5,
        "projects",
        "Stage 5: Projects",
        "Applied projects: web services, systems tooling, and a blockchain demo.",
        3,
    ),
)


def get_stage(number: int) -> LearningStage:
    for stage in STAGES:
        if stage.number == number:
            return stage
    raise ValueError(f"Unknown stage {number}; expected 1-{len(STAGES)}.")


def _now() -> datetime:
    return datetime.now(timezone.utc)


def normalize_profile_id(value: str) -> str:
    """Lowercase, hyphenated id that is safe to use as one directory name."""
    normalized = value.strip().lower().replace(" ", "-")
    if not normalized:
        raise ValueError("Profile id cannot be empty.")
    if "/" in normalized or "\\" in normalized or normalized in (".", ".."):
        raise ValueError(f"Profile id '{value}' must be a plain name without path separators.")
    return normalized


class LearningProfile(BaseModel):
    profile_id: str
    display_name: str = ""
    start_date: date = Field(default_factory=lambda: _now().date())
    target_completion_date: Optional[date] = None
    weekly_hour_goal: int = Field(default=10, gt=0)
    current_stage: int = Field(default=1, ge=1, le=len(STAGES))
    archived: bool = False
    created_at: datetime = Field(default_factory=_now)
    last_updated: datetime = Field(default_factory=_now)

    @field_validator("profile_id")
    @classmethod
    def _normalize_id(cls, value: str) -> str:
        return normalize_profile_id(value)

    @model_validator(mode="after")
    def _check_dates(self) -> "LearningProfile":
        if self.target_completion_date is None:
            total_weeks = sum(stage.estimated_weeks for stage in STAGES)
            self.target_completion_date = date.fromordinal(self.start_date.toordinal() + total_weeks * 7)
        if self.target_completion_date < self.start_date:
            raise ValueError("target_completion_date cannot be earlier than start_date")
        return self

    @property
    def stage(self) -> LearningStage:
        return get_stage(self.current_stage)

    def week_number(self, on: date) -> int:
        """1-based learning week containing ``on``; days before the start count as week 1."""
        elapsed = (on - self.start_date).days
        return max(elapsed // 7, 0) + 1


__all__ = [
    "LearningProfile",
    "LearningStage",
    "STAGES",
    "get_stage",
    "normalize_profile_id",
]
