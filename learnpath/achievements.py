"""Achievement catalogue and threshold ladders.

Each metric has a sorted ladder of integer thresholds taken from settings.
A ladder keeps a watermark (the highest threshold already credited) so a
rung fires at most once, and a single jump across several rungs fires all
of them in ascending order.
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import Dict, Iterable, List, Optional, Sequence, Tuple

from .config import Settings
from .progress_snapshot import AchievementMetric, AchievementRarity

RARITIES: Tuple[AchievementRarity, ...] = ("common", "rare", "epic", "legendary")

METRICS: Tuple[AchievementMetric, ...] = (
    "completed_exercises",
    "exercise_streak_days",
    "cumulative_hours",
    "average_quality_score",
)

# id prefix, rung names, fallback name, description template
_CATALOGUE: Dict[str, Tuple[str, Sequence[str], str, str]] = {
    "completed_exercises": (
        "exercises",
        ("First Steps", "Code Warrior", "Exercise Veteran"),
        "Exercise Master",
        "Complete {threshold} distinct exercises.",
    ),
    "exercise_streak_days": (
        "streak",
        ("On a Roll", "Steady Habit", "Unstoppable"),
        "Streak Legend",
        "Practice on {threshold} consecutive days.",
    ),
    "cumulative_hours": (
        "hours",
        ("Getting Invested", "Dedicated Learner", "Centurion"),
        "Time Lord",
        "Log {threshold} hours of study.",
    ),
    "average_quality_score": (
        "quality",
        ("Clean Coder", "Craftsperson", "Perfectionist"),
        "Quality Legend",
        "Keep the average code quality score at {threshold} or above.",
    ),
}


@dataclass(frozen=True)
class AchievementDefinition:
    achievement_id: str
    metric: AchievementMetric
    threshold: int
    name: str
    description: str
    rarity: AchievementRarity


def rarity_for(position: int) -> AchievementRarity:
    return RARITIES[min(position, len(RARITIES) - 1)]


def ladder_thresholds(settings: Settings, metric: AchievementMetric) -> List[int]:
    ladders = {
        "completed_exercises": settings.exercise_ladder,
        "exercise_streak_days": settings.streak_ladder,
        "cumulative_hours": settings.hours_ladder,
        "average_quality_score": settings.quality_ladder,
    }
    return sorted(set(ladders[metric]))


def define(metric: AchievementMetric, thresholds: Iterable[int]) -> List[AchievementDefinition]:
    prefix, names, fallback, description = _CATALOGUE[metric]
    definitions: List[AchievementDefinition] = []
    for position, threshold in enumerate(sorted(set(thresholds))):
        name = names[position] if position < len(names) else f"{fallback} {threshold}"
        definitions.append(
            AchievementDefinition(
                achievement_id=f"{prefix}-{threshold}",
                metric=metric,
                threshold=threshold,
                name=name,
                description=description.format(threshold=threshold),
                rarity=rarity_for(position),
            )
        )
    return definitions


def build_catalogue(settings: Settings) -> Dict[AchievementMetric, List[AchievementDefinition]]:
    return {metric: define(metric, ladder_thresholds(settings, metric)) for metric in METRICS}


class AchievementLadder:
    """Watermarked ladder for one metric."""

    def __init__(self, definitions: Sequence[AchievementDefinition], watermark: int = 0) -> None:
        self._definitions = sorted(definitions, key=lambda item: item.threshold)
        self._watermark = watermark

    @property
    def watermark(self) -> int:
        return self._watermark

    def fire(self, value: Optional[float]) -> List[AchievementDefinition]:
        """Return every rung newly reached by ``value``, lowest first, and advance the watermark."""
        if value is None:
            return []
        fired = [
            definition
            for definition in self._definitions
            if self._watermark < definition.threshold <= value
        ]
        if fired:
            self._watermark = fired[-1].threshold
        return fired


def build_ladders(settings: Settings) -> Dict[AchievementMetric, AchievementLadder]:
    return {metric: AchievementLadder(definitions) for metric, definitions in build_catalogue(settings).items()}


__all__ = [
    "AchievementDefinition",
    "AchievementLadder",
    "METRICS",
    "RARITIES",
    "build_catalogue",
    "build_ladders",
    "define",
    "ladder_thresholds",
    "rarity_for",
]
