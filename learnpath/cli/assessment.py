"""``assessment``: weekly and stage evaluations plus their revision history."""

from __future__ import annotations

import argparse
import sys
from datetime import date
from typing import List, Optional

from ..assessment_result import AssessmentResult, EvaluationInputs
from ..exceptions import MissingKnowledgeData
from ..learner_profile import get_stage
from ..periods import stage_tag
from .common import EXIT_OK, Context, build_parser, emit, run


def _format_result(result: AssessmentResult) -> str:
    verdict = "PASSED" if result.passed else "NOT PASSED"
    lines = [
        f"{result.kind.capitalize()} assessment {result.period_tag} (revision {result.revision})",
        f"  knowledge test       {result.knowledge_test:6.1f}",
        f"  code quality         {result.code_quality:6.1f}",
        f"  practice completion  {result.practice_completion:6.1f}",
        f"  overall              {result.overall:6.1f}  (threshold {result.pass_threshold:.1f}) {verdict}",
    ]
    if result.feedback:
        lines.append("Feedback:")
        lines.extend(f"  - {entry}" for entry in result.feedback)
    return "\n".join(lines)


def _knowledge_score(
    ctx: Context, explicit: Optional[float], period_tag: str, start: date, end: date
) -> float:
    if explicit is not None:
        return explicit
    average = ctx.tracker().knowledge_average(start, end)
    if average is None:
        raise MissingKnowledgeData(period_tag)
    return average


def weekly_assessment(ctx: Context, args: argparse.Namespace) -> int:
    period_tag, start, end = ctx.current_week()
    completed = ctx.tracker().completed_exercise_ids(start, end)
    inputs = EvaluationInputs(
        knowledge_test_raw=_knowledge_score(ctx, args.knowledge_score, period_tag, start, end),
        quality_report_ref=args.quality_report,
        completed_count=len(completed),
        total_count=ctx.settings.weekly_exercise_target if args.total is None else args.total,
    )
    result = ctx.evaluator().evaluate(period_tag, "weekly", inputs)
    emit(ctx, result.model_dump(mode="json"), _format_result(result))
    return EXIT_OK


def stage_assessment(ctx: Context, args: argparse.Namespace) -> int:
    stage = get_stage(args.stage)
    period_tag = stage_tag(stage.number)
    completed = ctx.tracker().completed_exercise_ids(date.min, date.max, stage=stage.number)
    report_ref = args.quality_report
    if report_ref is None:
        latest = ctx.quality_gate().latest()
        report_ref = latest.report_id if latest is not None else None
    inputs = EvaluationInputs(
        knowledge_test_raw=_knowledge_score(ctx, args.knowledge_score, period_tag, date.min, date.max),
        quality_report_ref=report_ref,
        completed_count=len(completed),
        total_count=ctx.settings.stage_exercise_target if args.total is None else args.total,
    )
    result = ctx.evaluator().evaluate(period_tag, "stage", inputs)
    emit(ctx, result.model_dump(mode="json"), _format_result(result))
    return EXIT_OK


def assessment_history(ctx: Context, args: argparse.Namespace) -> int:
    history = ctx.evaluator().history()
    if args.period_tag:
        history = [result for result in history if result.period_tag == args.period_tag]
    lines: List[str] = []
    for result in history:
        verdict = "pass" if result.passed else "fail"
        lines.append(
            f"{result.created_at:%Y-%m-%d %H:%M}  {result.period_tag:<10} r{result.revision:<3} "
            f"{result.kind:<6} {result.overall:6.1f}  {verdict}"
        )
    emit(ctx, [result.model_dump(mode="json") for result in history], "\n".join(lines) or "No assessments recorded.")
    return EXIT_OK


def _add_scoring_options(command: argparse.ArgumentParser) -> None:
    command.add_argument("--knowledge-score", type=float, help="Knowledge test score (0-100).")
    command.add_argument("--total", type=int, help="Number of exercises planned for the period.")
    command.add_argument("--quality-report", help="Quality report id to score code quality from.")


def build() -> argparse.ArgumentParser:
    parser, add_command = build_parser("assessment", "Evaluate weekly and stage learning assessments.")

    weekly = add_command("weekly-assessment", "Evaluate the current learning week.", weekly_assessment)
    _add_scoring_options(weekly)

    stage = add_command("stage-assessment", "Evaluate a learning stage.", stage_assessment)
    stage.add_argument("--stage", type=int, required=True, help="Stage number (1-5).")
    _add_scoring_options(stage)

    history = add_command("assessment-history", "List every assessment revision, newest first.", assessment_history)
    history.add_argument("--period-tag", help="Only show one period, e.g. week-03 or stage-2.")
    return parser


def main(argv: Optional[List[str]] = None) -> int:
    args = build().parse_args(argv)
    return run(args)


if __name__ == "__main__":
    sys.exit(main())
