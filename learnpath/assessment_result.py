"""Data models for weekly and stage assessment results."""

from __future__ import annotations

from datetime import datetime, timezone
from typing import List, Literal, Optional

from pydantic import BaseModel, ConfigDict, Field


AssessmentKind = Literal["weekly", "stage"]


class EvaluationInputs(BaseModel):
    """Raw signals combined into one assessment."""

    knowledge_test_raw: float = Field(ge=0.0, le=100.0)
    quality_report_ref: Optional[str] = None
    completed_count: int = Field(ge=0)
    total_count: int = Field(ge=0)


class AssessmentResult(BaseModel):
    """Immutable outcome of one evaluation run; re-runs create a new revision."""

    model_config = ConfigDict(frozen=True)

    assessment_id: str
    period_tag: str
    kind: AssessmentKind
    revision: int = Field(default=1, ge=1)
    knowledge_test: float = Field(ge=0.0, le=100.0)
    code_quality: float = Field(ge=0.0, le=100.0)
    practice_completion: float = Field(ge=0.0, le=100.0)
    overall: float = Field(ge=0.0, le=100.0)
    pass_threshold: float = Field(ge=0.0, le=100.0)
    passed: bool
    quality_report_id: Optional[str] = None
    feedback: List[str] = Field(default_factory=list)
    created_at: datetime = Field(default_factory=lambda: datetime.now(timezone.utc))

    def sub_scores(self) -> dict[str, float]:
        return {
            "knowledge_test": self.knowledge_test,
            "code_quality": self.code_quality,
            "practice_completion": self.practice_completion,
        }


__all__ = [
    "AssessmentKind",
    "AssessmentResult",
    "EvaluationInputs",
]
