"""Derived progress state: period buckets, streaks, and unlocked achievements."""

from __future__ import annotations

from datetime import date, datetime
from typing import Dict, List, Literal, Optional

from pydantic import BaseModel, ConfigDict, Field

Period = Literal["daily", "weekly", "monthly"]
AchievementMetric = Literal[
    "exercise_streak_days",
    "average_quality_score",
    "cumulative_hours",
    "completed_exercises",
]
AchievementRarity = Literal["common", "rare", "epic", "legendary"]


class PeriodAggregate(BaseModel):
    period_start: date
    completed_exercises: int = Field(default=0, ge=0)
    total_hours: float = Field(default=0.0, ge=0.0)
    completion_rate: float = Field(default=0.0, ge=0.0, le=100.0)


class UnlockedAchievement(BaseModel):
    """An achievement credited once, with the time of the event that first earned it."""

    model_config = ConfigDict(frozen=True)

    achievement_id: str
    metric: AchievementMetric
    threshold: int
    name: str
    description: str
    rarity: AchievementRarity = "common"
    unlocked_at: datetime
    event_id: int = Field(ge=0)


class ProgressSnapshot(BaseModel):
    period: Period
    buckets: List[PeriodAggregate] = Field(default_factory=list)
    completed_exercises: int = 0
    in_progress_exercises: int = 0
    skipped_exercises: int = 0
    stage_progress: Dict[int, float] = Field(default_factory=dict)
    total_hours: float = 0.0
    completion_rate: float = 0.0
    streak_days: int = 0
    longest_streak_days: int = 0
    average_quality_score: Optional[float] = None
    knowledge_average: Optional[float] = None
    unlocked_achievements: List[UnlockedAchievement] = Field(default_factory=list)
    event_count: int = 0
    last_event_id: int = 0

    def bucket_for(self, period_start: date) -> Optional[PeriodAggregate]:
        for bucket in self.buckets:
            if bucket.period_start == period_start:
                return bucket
        return None


class LearningPathRecommendation(BaseModel):
    """Where to focus next: the first stage with unfinished work and its open exercises."""

    recommended_stage: int = Field(ge=1)
    stage_name: str
    stage_progress: float = Field(default=0.0, ge=0.0, le=100.0)
    next_exercises: List[str] = Field(default_factory=list)
    estimated_weeks: int = Field(default=0, ge=0)
    confidence_score: float = Field(default=0.0, ge=0.0, le=1.0)
    reasoning: str


__all__ = [
    "AchievementMetric",
    "AchievementRarity",
    "LearningPathRecommendation",
    "Period",
    "PeriodAggregate",
    "ProgressSnapshot",
    "UnlockedAchievement",
]
