"""Weighted scoring of weekly and stage assessments."""

from __future__ import annotations

import logging
from typing import Dict, List, Optional

from .assessment_result import AssessmentKind, AssessmentResult, EvaluationInputs
from .config import Settings
from .exceptions import MissingQualityData, NoExercises
from .quality_report import QualityReport
from .store import EventStore
from .telemetry import ASSESSMENT_RECORDED, emit_event

logger = logging.getLogger(__name__)

# Tie-break order when two sub-scores are equally weak or strong.
SUB_SCORE_PRIORITY = ("knowledge_test", "code_quality", "practice_completion")

SUB_SCORE_LABELS: Dict[str, str] = {
    "knowledge_test": "knowledge test",
    "code_quality": "code quality",
    "practice_completion": "practice completion",
}

IMPROVEMENT_HINTS: Dict[str, str] = {
    "knowledge_test": "review this period's lessons and retake the knowledge check",
    "code_quality": "fix lint and formatting issues and raise test coverage",
    "practice_completion": "finish the remaining planned exercises",
}


def practice_completion(completed_count: int, total_count: int, period_tag: str) -> float:
    if total_count == 0:
        raise NoExercises(period_tag)
    return min(100.0, 100.0 * completed_count / total_count)


def build_feedback(scores: Dict[str, float], pass_threshold: float, strength_score: float) -> List[str]:
    """Improvement for the weakest sub-score below the threshold first, then one line per strength."""
    feedback: List[str] = []
    weakest = min(SUB_SCORE_PRIORITY, key=lambda name: scores[name])
    if scores[weakest] < pass_threshold:
        feedback.append(
            f"Improve {SUB_SCORE_LABELS[weakest]} ({scores[weakest]:.1f} < {pass_threshold:.1f}): "
            f"{IMPROVEMENT_HINTS[weakest]}."
        )
    for name in SUB_SCORE_PRIORITY:
        if scores[name] > strength_score:
            feedback.append(f"Strength: {SUB_SCORE_LABELS[name]} at {scores[name]:.1f}.")
    return feedback


class Evaluator:
    """Combines knowledge, quality, and practice signals into an AssessmentResult."""

    def __init__(self, store: EventStore, settings: Settings) -> None:
        settings.validate_weights()
        self._store = store
        self._settings = settings

    def pass_threshold(self, kind: AssessmentKind) -> float:
        if kind == "stage":
            return self._settings.stage_pass_score
        return self._settings.weekly_target_score

    def _quality_report(self, period_tag: str, report_ref: Optional[str]) -> QualityReport:
        latest: Optional[QualityReport] = None
        for report in self._store.read_quality_reports():
            if report_ref:
                if report.report_id == report_ref:
                    return report
                continue
            if report.period_tag == period_tag:
                latest = report
        if latest is None:
            raise MissingQualityData(period_tag, report_ref)
        return latest

    def evaluate(self, period_tag: str, kind: AssessmentKind, inputs: EvaluationInputs) -> AssessmentResult:
        practice = practice_completion(inputs.completed_count, inputs.total_count, period_tag)
        report = self._quality_report(period_tag, inputs.quality_report_ref)
        weights = self._settings.weights()
        scores = {
            "knowledge_test": inputs.knowledge_test_raw,
            "code_quality": report.quality_score,
            "practice_completion": practice,
        }
        overall = sum(weights[name] * scores[name] for name in SUB_SCORE_PRIORITY)
        overall = round(min(100.0, max(0.0, overall)), 4)

        threshold = self.pass_threshold(kind)
        feedback = build_feedback(scores, threshold, self._settings.strength_score)

        def build(revision: int) -> AssessmentResult:
            return AssessmentResult(
                assessment_id=f"{kind}-{period_tag}-r{revision}",
                period_tag=period_tag,
                kind=kind,
                revision=revision,
                knowledge_test=scores["knowledge_test"],
                code_quality=scores["code_quality"],
                practice_completion=practice,
                overall=overall,
                pass_threshold=threshold,
                passed=overall >= threshold,
                quality_report_id=report.report_id,
                feedback=feedback,
            )

        result = self._store.append_assessment_revision(period_tag, kind, build)
        logger.info(
            "Recorded %s assessment %s revision %d: overall %.2f (%s)",
            kind,
            period_tag,
            result.revision,
            overall,
            "passed" if result.passed else "failed",
        )
        emit_event(
            ASSESSMENT_RECORDED,
            assessment_id=result.assessment_id,
            period_tag=period_tag,
            kind=kind,
            overall=overall,
            passed=result.passed,
        )
        return result

    def history(self) -> List[AssessmentResult]:
        """Every recorded revision, newest first."""
        return list(reversed(list(self._store.read_assessments())))

    def latest(self) -> Optional[AssessmentResult]:
        history = self.history()
        return history[0] if history else None


__all__ = [
    "Evaluator",
    "SUB_SCORE_PRIORITY",
    "build_feedback",
    "practice_completion",
]
