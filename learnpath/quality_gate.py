"""Turns raw tool metrics into a scored QualityReport and enforces the gate."""

from __future__ import annotations

import logging
import uuid
from datetime import datetime, timezone
from typing import List, Optional

from .config import Settings
from .events import TrackingEvent
from .exceptions import GateFailure, GateViolation
from .quality_report import QualityReport, RawMetrics
from .store import EventStore
from .telemetry import QUALITY_REPORT_RECORDED, emit_event

logger = logging.getLogger(__name__)


def score_metrics(metrics: RawMetrics, settings: Settings) -> float:
    """100 minus lint and format penalties and the coverage shortfall, clamped to [0, 100]."""
    score = (
        100.0
        - metrics.lint_issue_count * settings.lint_penalty
        - metrics.format_violation_count * settings.format_penalty
        - max(0.0, settings.min_coverage - metrics.coverage_pct)
    )
    return round(min(100.0, max(0.0, score)), 2)


def gate_violations(report: QualityReport, min_score: float) -> List[GateViolation]:
    violations: List[GateViolation] = []
    if report.quality_score < min_score:
        violations.append(
            GateViolation(
                check="quality_score",
                actual=report.quality_score,
                threshold=min_score,
                message=f"quality score {report.quality_score:.2f} is below the minimum {min_score:.2f}",
            )
        )
    if report.audit_vulnerability_count > 0:
        violations.append(
            GateViolation(
                check="audit_vulnerability_count",
                actual=float(report.audit_vulnerability_count),
                threshold=0.0,
                message=f"{report.audit_vulnerability_count} known vulnerabilities in dependencies",
            )
        )
    return violations


class QualityGate:
    def __init__(self, store: EventStore, settings: Settings) -> None:
        self._store = store
        self._settings = settings

    def aggregate(
        self,
        metrics: RawMetrics,
        scanned_path: str,
        period_tag: Optional[str] = None,
        *,
        min_score: Optional[float] = None,
    ) -> QualityReport:
        threshold = self._settings.min_quality_score if min_score is None else min_score
        score = score_metrics(metrics, self._settings)
        return QualityReport(
            report_id=uuid.uuid4().hex[:12],
            scanned_path=scanned_path,
            period_tag=period_tag,
            coverage_pct=metrics.coverage_pct,
            lint_issue_count=metrics.lint_issue_count,
            format_violation_count=metrics.format_violation_count,
            audit_vulnerability_count=metrics.audit_vulnerability_count,
            quality_score=score,
            min_score=threshold,
            gate_passed=score >= threshold and metrics.audit_vulnerability_count == 0,
            created_at=datetime.now(timezone.utc),
        )

    def record(self, report: QualityReport) -> QualityReport:
        """Persist the report and the matching QualityScan event in one write."""
        self._store.append_quality_scan(
            report,
            TrackingEvent.quality_scan(
                report.report_id,
                report.quality_score,
                report.gate_passed,
                occurred_at=report.created_at,
            ),
        )
        logger.info(
            "Recorded quality report %s for %s: score %.2f, gate %s",
            report.report_id,
            report.scanned_path,
            report.quality_score,
            "passed" if report.gate_passed else "failed",
        )
        emit_event(
            QUALITY_REPORT_RECORDED,
            report_id=report.report_id,
            period_tag=report.period_tag,
            quality_score=report.quality_score,
            gate_passed=report.gate_passed,
        )
        return report

    def check_gate(self, report: QualityReport, min_score: Optional[float] = None) -> None:
        """Raise GateFailure listing every violated threshold."""
        threshold = self._settings.min_quality_score if min_score is None else min_score
        violations = gate_violations(report, threshold)
        if violations:
            raise GateFailure(report.report_id, violations)

    def latest(self, period_tag: Optional[str] = None) -> Optional[QualityReport]:
        latest: Optional[QualityReport] = None
        for report in self._store.read_quality_reports():
            if period_tag is None or report.period_tag == period_tag:
                latest = report
        return latest


__all__ = ["QualityGate", "gate_violations", "score_metrics"]
