from __future__ import annotations

from datetime import date

import pytest

from learnpath.achievements import AchievementLadder, define, rarity_for
from learnpath.exceptions import InvalidPeriod
from learnpath.learner_profile import LearningProfile
from learnpath.periods import period_start, stage_tag, validate_period, week_tag, week_window


def test_period_truncation() -> None:
    day = date(2024, 5, 9)
    assert period_start(day, "daily") == day
    assert period_start(day, "weekly") == date(2024, 5, 6)
    assert period_start(day, "monthly") == date(2024, 5, 1)


def test_validate_period_normalizes_and_rejects() -> None:
    assert validate_period(" Weekly ") == "weekly"
    with pytest.raises(InvalidPeriod):
        validate_period("fortnightly")


def test_week_tags_follow_profile_start() -> None:
    profile = LearningProfile(profile_id="default", start_date=date(2024, 5, 1))
    assert week_tag(date(2024, 5, 1), profile) == "week-01"
    assert week_tag(date(2024, 5, 15), profile) == "week-03"
    assert week_window(date(2024, 5, 16), profile) == (date(2024, 5, 15), date(2024, 5, 22))


def test_week_tags_without_profile_use_iso_weeks() -> None:
    assert week_tag(date(2024, 5, 9)) == "week-19"
    assert week_window(date(2024, 5, 9)) == (date(2024, 5, 6), date(2024, 5, 13))


def test_stage_tag_validates_stage() -> None:
    assert stage_tag(3) == "stage-3"
    with pytest.raises(ValueError):
        stage_tag(6)


def test_catalogue_names_and_rarity_by_rung() -> None:
    definitions = define("cumulative_hours", [100, 10, 50, 500, 1000])
    assert [definition.achievement_id for definition in definitions] == [
        "hours-10",
        "hours-50",
        "hours-100",
        "hours-500",
        "hours-1000",
    ]
    assert definitions[0].name == "Getting Invested"
    assert definitions[4].name == "Time Lord 1000"
    assert [definition.rarity for definition in definitions] == ["common", "rare", "epic", "legendary", "legendary"]
    assert rarity_for(0) == "common"


def test_ladder_watermark_prevents_refiring() -> None:
    ladder = AchievementLadder(define("exercise_streak_days", [7, 14, 30]))

    assert [item.threshold for item in ladder.fire(15)] == [7, 14]
    assert ladder.fire(3) == []
    assert ladder.fire(14) == []
    assert [item.threshold for item in ladder.fire(30)] == [30]
    assert ladder.fire(None) == []
    assert ladder.watermark == 30
