from __future__ import annotations

import os
from pathlib import Path
from typing import List

import pytest
from pydantic import ValidationError

from learnpath.config import Settings
from learnpath.exceptions import GateFailure
from learnpath.quality_gate import QualityGate, score_metrics
from learnpath.quality_report import QualityReport, RawMetrics
from learnpath.store import EventStore


def test_score_applies_penalties_and_coverage_shortfall(settings: Settings) -> None:
    metrics = RawMetrics(coverage_pct=70.0, lint_issue_count=3, format_violation_count=2)
    assert score_metrics(metrics, settings) == pytest.approx(100 - 6 - 2 - 10)


def test_score_is_clamped_to_range(settings: Settings) -> None:
    assert score_metrics(RawMetrics(coverage_pct=0.0, lint_issue_count=500), settings) == 0.0
    assert score_metrics(RawMetrics(coverage_pct=100.0), settings) == 100.0


def test_vulnerabilities_veto_a_high_score(store: EventStore, settings: Settings) -> None:
    gate = QualityGate(store, settings)
    report = gate.aggregate(RawMetrics(coverage_pct=95.0, audit_vulnerability_count=1), "/projects/demo", "week-01")

    assert report.quality_score == 100.0
    assert report.gate_passed is False


def test_report_rejects_inconsistent_gate_flag() -> None:
    fields = dict(
        report_id="qr-1",
        scanned_path="/projects/demo",
        coverage_pct=90.0,
        lint_issue_count=0,
        format_violation_count=0,
        audit_vulnerability_count=1,
        quality_score=95.0,
        min_score=80.0,
    )
    assert QualityReport(gate_passed=False, **fields).gate_passed is False
    with pytest.raises(ValidationError):
        QualityReport(gate_passed=True, **fields)


def test_check_gate_lists_every_violation(store: EventStore, settings: Settings) -> None:
    gate = QualityGate(store, settings)
    report = gate.aggregate(
        RawMetrics(coverage_pct=40.0, lint_issue_count=5, audit_vulnerability_count=2),
        "/projects/demo",
    )

    with pytest.raises(GateFailure) as excinfo:
        gate.check_gate(report, 80.0)

    assert [violation.check for violation in excinfo.value.violations] == [
        "quality_score",
        "audit_vulnerability_count",
    ]
    assert excinfo.value.to_dict()["error"] == "GATE_FAILURE"


def test_check_gate_passes_clean_report(store: EventStore, settings: Settings) -> None:
    gate = QualityGate(store, settings)
    report = gate.aggregate(RawMetrics(coverage_pct=85.0, lint_issue_count=1), "/projects/demo")
    gate.check_gate(report, 90.0)


def test_record_persists_report_and_scan_event(store: EventStore, settings: Settings) -> None:
    gate = QualityGate(store, settings)
    first = gate.record(gate.aggregate(RawMetrics(coverage_pct=85.0), "/projects/demo", "week-01"))
    second = gate.record(gate.aggregate(RawMetrics(coverage_pct=60.0), "/projects/demo", "week-02"))

    events = list(store.read_all())
    assert [event.kind for event in events] == ["QualityScan", "QualityScan"]
    assert events[0].payload.report_id == first.report_id
    assert gate.latest().report_id == second.report_id
    assert gate.latest("week-01").report_id == first.report_id
    assert gate.latest("week-09") is None


def test_record_writes_report_and_scan_event_together(
    store: EventStore, settings: Settings, monkeypatch: pytest.MonkeyPatch
) -> None:
    replaced: List[str] = []
    real_replace = os.replace

    def replace_once(src: str, dst: str) -> None:
        replaced.append(Path(dst).name)
        if len(replaced) > 1:
            raise OSError("disk full")
        real_replace(src, dst)

    monkeypatch.setattr(os, "replace", replace_once)
    gate = QualityGate(store, settings)
    report = gate.record(gate.aggregate(RawMetrics(coverage_pct=90.0), "/projects/demo", "week-01"))

    assert replaced == ["events.jsonl"]
    records = list(store.iter_records())
    assert [record.record_type for record in records] == ["quality_report", "event"]
    assert records[1].seq == records[0].seq + 1
    assert [event.payload.report_id for event in store.read_all()] == [report.report_id]
