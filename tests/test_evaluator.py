from __future__ import annotations

import itertools
import threading
import time
from concurrent.futures import ThreadPoolExecutor
from pathlib import Path
from typing import List, Optional, Tuple

import pytest

from learnpath.assessment_result import AssessmentResult, EvaluationInputs
from learnpath.config import Settings
from learnpath.evaluator import Evaluator, build_feedback, practice_completion
from learnpath.exceptions import MisconfiguredWeights, MissingQualityData, NoExercises
from learnpath.quality_report import QualityReport
from learnpath.store import EventStore
from learnpath.telemetry import ASSESSMENT_RECORDED, capture_events


def _report(store: EventStore, score: float, *, report_id: str = "qr-1", period_tag: Optional[str] = "week-01") -> None:
    store.append_quality_report(
        QualityReport(
            report_id=report_id,
            scanned_path="/projects/demo",
            period_tag=period_tag,
            coverage_pct=90.0,
            lint_issue_count=0,
            format_violation_count=0,
            audit_vulnerability_count=0,
            quality_score=score,
            min_score=80.0,
            gate_passed=score >= 80.0,
        )
    )


def test_weighted_overall_matches_worked_example(store: EventStore, settings: Settings) -> None:
    _report(store, 88.0)
    evaluator = Evaluator(store, settings)

    with capture_events() as events:
        result = evaluator.evaluate(
            "week-01",
            "weekly",
            EvaluationInputs(knowledge_test_raw=82, completed_count=9, total_count=10),
        )

    assert result.practice_completion == pytest.approx(90.0)
    assert result.code_quality == pytest.approx(88.0)
    assert result.overall == pytest.approx(86.8)
    assert result.pass_threshold == settings.weekly_target_score
    assert result.passed is True
    assert result.quality_report_id == "qr-1"
    assert result.feedback == []
    assert [event.name for event in events] == [ASSESSMENT_RECORDED]


def test_reruns_create_new_revisions_and_history_is_newest_first(store: EventStore, settings: Settings) -> None:
    _report(store, 88.0)
    evaluator = Evaluator(store, settings)
    inputs = EvaluationInputs(knowledge_test_raw=60, completed_count=5, total_count=10)

    first = evaluator.evaluate("week-01", "weekly", inputs)
    second = evaluator.evaluate("week-01", "weekly", inputs)

    assert (first.revision, second.revision) == (1, 2)
    assert [result.revision for result in evaluator.history()] == [2, 1]
    assert list(store.read_all()) == []


def test_stage_assessment_uses_stage_threshold_and_report_reference(store: EventStore, settings: Settings) -> None:
    _report(store, 50.0, report_id="qr-old", period_tag="week-02")
    result = Evaluator(store, settings).evaluate(
        "stage-2",
        "stage",
        EvaluationInputs(knowledge_test_raw=80, quality_report_ref="qr-old", completed_count=20, total_count=20),
    )

    assert result.pass_threshold == settings.stage_pass_score
    assert result.code_quality == 50.0
    assert result.overall == pytest.approx(0.3 * 80 + 0.4 * 50 + 0.3 * 100)
    assert result.passed is True


def test_practice_completion_is_capped_and_requires_exercises() -> None:
    assert practice_completion(12, 10, "week-01") == 100.0
    with pytest.raises(NoExercises):
        practice_completion(0, 0, "week-01")


def test_missing_quality_report_fails(store: EventStore, settings: Settings) -> None:
    _report(store, 90.0, period_tag="week-07")
    evaluator = Evaluator(store, settings)

    with pytest.raises(MissingQualityData):
        evaluator.evaluate("week-01", "weekly", EvaluationInputs(knowledge_test_raw=80, completed_count=1, total_count=1))
    with pytest.raises(MissingQualityData):
        evaluator.evaluate(
            "week-01",
            "weekly",
            EvaluationInputs(knowledge_test_raw=80, quality_report_ref="nope", completed_count=1, total_count=1),
        )
    assert list(store.read_assessments()) == []


def test_misconfigured_weights_fail_before_evaluation(store: EventStore, tmp_path: Path) -> None:
    settings = Settings(data_dir=tmp_path, knowledge_test_weight=0.5, code_quality_weight=0.4, practice_weight=0.3)
    with pytest.raises(MisconfiguredWeights):
        Evaluator(store, settings)


def test_feedback_names_weakest_score_then_strengths() -> None:
    feedback = build_feedback(
        {"knowledge_test": 60.0, "code_quality": 60.0, "practice_completion": 95.0},
        pass_threshold=75.0,
        strength_score=90.0,
    )

    assert len(feedback) == 2
    assert feedback[0].startswith("Improve knowledge test")
    assert feedback[1] == "Strength: practice completion at 95.0."


def test_feedback_is_empty_when_nothing_stands_out() -> None:
    scores = {"knowledge_test": 80.0, "code_quality": 90.0, "practice_completion": 75.0}
    assert build_feedback(scores, pass_threshold=75.0, strength_score=90.0) == []


def test_concurrent_evaluations_get_distinct_revisions(
    store: EventStore, settings: Settings, monkeypatch: pytest.MonkeyPatch
) -> None:
    _report(store, 88.0)
    reading = threading.Event()
    read_history = store.read_assessments

    def slow_read_history() -> List[AssessmentResult]:
        history = list(read_history())
        if not reading.is_set():
            reading.set()
            time.sleep(0.2)
        return history

    monkeypatch.setattr(store, "read_assessments", slow_read_history)
    evaluator = Evaluator(store, settings)
    inputs = EvaluationInputs(knowledge_test_raw=70, completed_count=8, total_count=10)

    with ThreadPoolExecutor(max_workers=2) as pool:
        first = pool.submit(evaluator.evaluate, "week-01", "weekly", inputs)
        assert reading.wait(5)
        second = pool.submit(evaluator.evaluate, "week-01", "weekly", inputs)
        results = [first.result(), second.result()]

    assert sorted(result.revision for result in results) == [1, 2]
    assert sorted(result.assessment_id for result in results) == ["weekly-week-01-r1", "weekly-week-01-r2"]


WEIGHT_TRIPLES = [
    (1.0, 0.0, 0.0),
    (0.0, 1.0, 0.0),
    (0.0, 0.0, 1.0),
    (0.3, 0.4, 0.3),
    (0.5, 0.5, 0.0),
    (0.2, 0.3, 0.5),
    (1 / 3, 1 / 3, 1 / 3),
    (0.05, 0.9, 0.05),
]


@pytest.mark.parametrize("weights", WEIGHT_TRIPLES)
def test_overall_stays_in_range_for_valid_weights(
    store: EventStore, tmp_path: Path, weights: Tuple[float, float, float]
) -> None:
    knowledge_weight, quality_weight, practice_weight = weights
    settings = Settings(
        data_dir=tmp_path,
        knowledge_test_weight=knowledge_weight,
        code_quality_weight=quality_weight,
        practice_weight=practice_weight,
    )
    evaluator = Evaluator(store, settings)

    extremes = itertools.product((0.0, 55.5, 100.0), (0.0, 100.0), (0, 3, 4))
    for index, (knowledge, quality, completed) in enumerate(extremes):
        tag = f"week-{index:02d}"
        _report(store, quality, report_id=f"qr-{index}", period_tag=tag)
        result = evaluator.evaluate(
            tag, "weekly", EvaluationInputs(knowledge_test_raw=knowledge, completed_count=completed, total_count=4)
        )

        expected = knowledge_weight * knowledge + quality_weight * quality + practice_weight * 25.0 * completed
        assert 0.0 <= result.overall <= 100.0
        assert result.overall == pytest.approx(min(100.0, expected), abs=1e-3)
