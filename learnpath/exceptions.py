"""Domain errors raised by the store, evaluator, quality gate, and tracker."""

from __future__ import annotations

from typing import Any, Dict, List, Optional

from pydantic import BaseModel


class LearnpathError(Exception):
    """Base exception for all learnpath errors."""

    default_code = "LEARNPATH_ERROR"

    def __init__(
        self,
        message: str,
        code: Optional[str] = None,
        details: Optional[Dict[str, Any]] = None,
    ) -> None:
        self.message = message
        self.code = code or self.default_code
        self.details = details or {}
        super().__init__(self.message)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "error": self.code,
            "message": self.message,
            "details": self.details,
        }


# ----------------------------------------------------------------------
# Store
# ----------------------------------------------------------------------


class StoreError(LearnpathError):
    default_code = "STORE_ERROR"


class StoreCorrupt(StoreError):
    """Raised when the event log fails structural or checksum validation."""

    default_code = "STORE_CORRUPT"

    def __init__(self, path: str, line_number: int, reason: str) -> None:
        super().__init__(
            f"Event log {path} is corrupt at line {line_number}: {reason}",
            details={"path": path, "line": line_number, "reason": reason},
        )


class StoreLocked(StoreError):
    """Raised when the store lock cannot be acquired before the timeout."""

    default_code = "STORE_LOCKED"

    def __init__(self, path: str, timeout_ms: int) -> None:
        super().__init__(
            f"Could not lock {path} within {timeout_ms} ms; another learnpath command is writing. "
            "Retry in a moment.",
            details={"path": path, "timeout_ms": timeout_ms},
        )


class BackupNotFound(StoreError):
    default_code = "BACKUP_NOT_FOUND"

    def __init__(self, backup_id: str) -> None:
        super().__init__(f"Backup not found: {backup_id}", details={"backup_id": backup_id})


class StoreIOFailure(StoreError):
    default_code = "STORE_IO_FAILURE"


# ----------------------------------------------------------------------
# Evaluator
# ----------------------------------------------------------------------


class EvaluatorError(LearnpathError):
    default_code = "EVALUATOR_ERROR"


class NoExercises(EvaluatorError):
    default_code = "NO_EXERCISES"

    def __init__(self, period_tag: str) -> None:
        super().__init__(
            f"No exercises are planned for {period_tag}; practice completion is undefined.",
            details={"period_tag": period_tag},
        )


class MissingQualityData(EvaluatorError):
    default_code = "MISSING_QUALITY_DATA"

    def __init__(self, period_tag: str, report_ref: Optional[str] = None) -> None:
        if report_ref:
            message = f"Quality report {report_ref} was not found."
        else:
            message = f"No quality report exists for {period_tag}; run quality-check first."
        super().__init__(message, details={"period_tag": period_tag, "report_ref": report_ref})


class MissingKnowledgeData(EvaluatorError):
    default_code = "MISSING_KNOWLEDGE_DATA"

    def __init__(self, period_tag: str) -> None:
        super().__init__(
            f"No knowledge check score for {period_tag}; pass --knowledge-score or run track-knowledge.",
            details={"period_tag": period_tag},
        )


class MisconfiguredWeights(EvaluatorError):
    default_code = "MISCONFIGURED_WEIGHTS"

    def __init__(self, weights: Dict[str, float], reason: str) -> None:
        super().__init__(
            f"Assessment weights are misconfigured ({reason}): {weights}",
            details={"weights": weights, "reason": reason},
        )


# ----------------------------------------------------------------------
# Tracker
# ----------------------------------------------------------------------


class TrackerError(LearnpathError):
    default_code = "TRACKER_ERROR"


class InvalidPeriod(TrackerError):
    default_code = "INVALID_PERIOD"

    def __init__(self, period: str) -> None:
        super().__init__(
            f"Unknown period '{period}'; expected daily, weekly, or monthly.",
            details={"period": period},
        )


# ----------------------------------------------------------------------
# Quality gate
# ----------------------------------------------------------------------


class GateViolation(BaseModel):
    """A single threshold a quality report failed to meet."""

    check: str
    actual: float
    threshold: float
    message: str


class GateFailure(LearnpathError):
    """Raised with every violated threshold so all of them can be fixed in one pass."""

    default_code = "GATE_FAILURE"

    def __init__(self, report_id: str, violations: List[GateViolation]) -> None:
        self.report_id = report_id
        self.violations = list(violations)
        summary = "; ".join(violation.message for violation in self.violations)
        super().__init__(
            f"Quality gate failed for report {report_id}: {summary}",
            details={
                "report_id": report_id,
                "violations": [violation.model_dump() for violation in self.violations],
            },
        )


__all__ = [
    "BackupNotFound",
    "EvaluatorError",
    "GateFailure",
    "GateViolation",
    "InvalidPeriod",
    "LearnpathError",
    "MisconfiguredWeights",
    "MissingKnowledgeData",
    "MissingQualityData",
    "NoExercises",
    "StoreCorrupt",
    "StoreError",
    "StoreIOFailure",
    "StoreLocked",
    "TrackerError",
]
