"""Data models for raw quality metrics and the reports derived from them."""

from __future__ import annotations

from datetime import datetime, timezone
from typing import Optional

from pydantic import BaseModel, ConfigDict, Field, model_validator


class RawMetrics(BaseModel):
    """Flat record produced by external format, lint, audit, and coverage runners."""

    model_config = ConfigDict(extra="ignore")

    coverage_pct: float = Field(default=0.0, ge=0.0, le=100.0)
    lint_issue_count: int = Field(default=0, ge=0)
    format_violation_count: int = Field(default=0, ge=0)
    audit_vulnerability_count: int = Field(default=0, ge=0)


class QualityReport(BaseModel):
    model_config = ConfigDict(frozen=True)

    report_id: str
    scanned_path: str
    period_tag: Optional[str] = None
    coverage_pct: float = Field(ge=0.0, le=100.0)
    lint_issue_count: int = Field(ge=0)
    format_violation_count: int = Field(ge=0)
    audit_vulnerability_count: int = Field(ge=0)
    quality_score: float = Field(ge=0.0, le=100.0)
    min_score: float = Field(ge=0.0, le=100.0)
    gate_passed: bool
    created_at: datetime = Field(default_factory=lambda: datetime.now(timezone.utc))

    @model_validator(mode="after")
    def _gate_consistent(self) -> "QualityReport":
        expected = self.quality_score >= self.min_score and self.audit_vulnerability_count == 0
        if self.gate_passed != expected:
            raise ValueError(
                "gate_passed must equal (quality_score >= min_score and audit_vulnerability_count == 0)"
            )
        return self


__all__ = ["QualityReport", "RawMetrics"]
