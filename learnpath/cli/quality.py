"""``quality-check``: score raw tool metrics and enforce the quality gate."""

from __future__ import annotations

import argparse
import json
import sys
from pathlib import Path
from typing import Any, Dict, List, Optional

from ..quality_report import QualityReport, RawMetrics
from .common import EXIT_OK, Context, UsageError, build_parser, emit, run


def _load_metrics(args: argparse.Namespace) -> RawMetrics:
    values: Dict[str, Any] = {}
    if args.metrics_file is not None:
        try:
            loaded = json.loads(Path(args.metrics_file).read_text(encoding="utf-8"))
        except OSError as exc:
            raise UsageError(f"Cannot read metrics file {args.metrics_file}: {exc}") from exc
        except json.JSONDecodeError as exc:
            raise UsageError(f"Metrics file {args.metrics_file} is not valid JSON: {exc}") from exc
        if not isinstance(loaded, dict):
            raise UsageError(f"Metrics file {args.metrics_file} must contain a JSON object.")
        values.update(loaded)
    overrides = {
        "coverage_pct": args.coverage,
        "lint_issue_count": args.lint_issues,
        "format_violation_count": args.format_violations,
        "audit_vulnerability_count": args.vulnerabilities,
    }
    values.update({key: value for key, value in overrides.items() if value is not None})
    return RawMetrics.model_validate(values)


def _format_report(report: QualityReport) -> str:
    gate = "PASSED" if report.gate_passed else "FAILED"
    return "\n".join(
        [
            f"Quality report {report.report_id} for {report.scanned_path} ({report.period_tag or 'untagged'})",
            f"  coverage             {report.coverage_pct:6.1f}%",
            f"  lint issues          {report.lint_issue_count:6d}",
            f"  format violations    {report.format_violation_count:6d}",
            f"  vulnerabilities      {report.audit_vulnerability_count:6d}",
            f"  quality score        {report.quality_score:6.1f}  (minimum {report.min_score:.1f}) gate {gate}",
        ]
    )


def quality_check(ctx: Context, args: argparse.Namespace) -> int:
    scanned = Path(args.path).expanduser()
    if not scanned.exists():
        raise UsageError(f"Path to scan does not exist: {scanned}")
    period_tag = args.period_tag or ctx.current_week()[0]
    gate = ctx.quality_gate()
    report = gate.aggregate(_load_metrics(args), str(scanned), period_tag, min_score=args.min_score)
    gate.record(report)
    emit(ctx, report.model_dump(mode="json"), _format_report(report))
    return EXIT_OK


def quality_gate(ctx: Context, args: argparse.Namespace) -> int:
    gate = ctx.quality_gate()
    if args.report:
        report = next((item for item in ctx.store.read_quality_reports() if item.report_id == args.report), None)
    else:
        report = gate.latest(args.period_tag)
    if report is None:
        raise UsageError("No quality report to check; run 'quality-check --path PATH' first.")
    min_score = ctx.settings.min_quality_score if args.min_score is None else args.min_score
    gate.check_gate(report, min_score)
    emit(
        ctx,
        {"report_id": report.report_id, "quality_score": report.quality_score, "min_score": min_score, "passed": True},
        f"Quality gate passed: {report.quality_score:.1f} >= {min_score:.1f}, no known vulnerabilities.",
    )
    return EXIT_OK


def build() -> argparse.ArgumentParser:
    parser, add_command = build_parser("quality-check", "Score code quality metrics and enforce the quality gate.")

    check = add_command("quality-check", "Aggregate raw metrics for a path and record the report.", quality_check)
    check.add_argument("--path", required=True, help="Project directory the metrics describe.")
    check.add_argument("--metrics-file", type=Path, help="JSON file with raw metric fields.")
    check.add_argument("--coverage", type=float, help="Test coverage percentage.")
    check.add_argument("--lint-issues", type=int, help="Number of lint findings.")
    check.add_argument("--format-violations", type=int, help="Number of formatting violations.")
    check.add_argument("--vulnerabilities", type=int, help="Number of known dependency vulnerabilities.")
    check.add_argument("--period-tag", help="Period the report belongs to (default: current week).")
    check.add_argument("--min-score", type=float, help="Gate threshold recorded with the report.")

    gate = add_command("quality-gate", "Fail unless the latest report clears the gate.", quality_gate)
    gate.add_argument("--min-score", type=float, help="Minimum quality score (default from config).")
    gate.add_argument("--report", help="Check this report id instead of the latest one.")
    gate.add_argument("--period-tag", help="Check the latest report for this period.")
    return parser


def main(argv: Optional[List[str]] = None) -> int:
    args = build().parse_args(argv)
    return run(args)


if __name__ == "__main__":
    sys.exit(main())
