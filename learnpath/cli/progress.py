"""``progress-tracker``: record activity, manage the profile, and report progress."""

from __future__ import annotations

import argparse
import sys
from datetime import datetime, timezone
from pathlib import Path
from typing import Any, Dict, List, Optional

from ..dashboard import suggestions
from ..events import TrackingEvent
from ..exceptions import StoreIOFailure
from ..learner_profile import STAGES, LearningProfile
from ..periods import PERIODS
from ..progress_snapshot import ProgressSnapshot, UnlockedAchievement
from ..reporter import EXPORT_FORMATS
from .common import EXIT_OK, Context, UsageError, build_parser, emit, parse_day, parse_timestamp, run

# ----------------------------------------------------------------------
# Formatting
# ----------------------------------------------------------------------


def _format_profile(profile: LearningProfile) -> str:
    stage = profile.stage
    return "\n".join(
        [
            f"Profile      {profile.profile_id}{' (archived)' if profile.archived else ''}",
            f"Name         {profile.display_name or '-'}",
            f"Stage        {stage.name} ({stage.number}/{len(STAGES)}, ~{stage.estimated_weeks} weeks)",
            f"Started      {profile.start_date}",
            f"Target       {profile.target_completion_date}",
            f"Weekly goal  {profile.weekly_hour_goal} h",
        ]
    )


def _format_unlocks(unlocked: List[UnlockedAchievement]) -> List[str]:
    return [f"Achievement unlocked: {entry.name} ({entry.rarity}) - {entry.description}" for entry in unlocked]


def _format_summary(snapshot: ProgressSnapshot) -> str:
    lines = [
        f"Completed exercises  {snapshot.completed_exercises}",
        f"In progress          {snapshot.in_progress_exercises}",
        f"Skipped              {snapshot.skipped_exercises}",
        f"Completion rate      {snapshot.completion_rate:.1f}%",
        f"Total hours          {snapshot.total_hours:.1f}",
        f"Current streak       {snapshot.streak_days} days (longest {snapshot.longest_streak_days})",
    ]
    if snapshot.average_quality_score is not None:
        lines.append(f"Average quality      {snapshot.average_quality_score:.1f}")
    if snapshot.knowledge_average is not None:
        lines.append(f"Knowledge average    {snapshot.knowledge_average:.1f}")
    for number, progress in snapshot.stage_progress.items():
        lines.append(f"Stage {number} progress     {progress:.1f}%")
    lines.append(f"Achievements         {len(snapshot.unlocked_achievements)}")
    if snapshot.buckets:
        lines.append(f"{snapshot.period.capitalize()} buckets:")
        for bucket in snapshot.buckets:
            lines.append(
                f"  {bucket.period_start.isoformat()}  {bucket.completed_exercises:3d} exercises  "
                f"{bucket.total_hours:6.1f} h  {bucket.completion_rate:5.1f}%"
            )
    return "\n".join(lines)


# ----------------------------------------------------------------------
# Tracking
# ----------------------------------------------------------------------


def _ensure_active(ctx: Context) -> None:
    profile = ctx.profile()
    if profile is not None and profile.archived:
        raise UsageError(f"Profile '{profile.profile_id}' is archived; activity can no longer be tracked.")


def _record(ctx: Context, event: TrackingEvent, message: str) -> int:
    _ensure_active(ctx)
    unlocked = ctx.tracker().record(event)
    emit(
        ctx,
        {"recorded": event.model_dump(mode="json"), "unlocked": [entry.model_dump(mode="json") for entry in unlocked]},
        "\n".join([message, *_format_unlocks(unlocked)]),
    )
    return EXIT_OK


def track_exercise(ctx: Context, args: argparse.Namespace) -> int:
    event = TrackingEvent.exercise(
        args.exercise,
        args.status,
        stage=args.stage,
        score=args.score,
        occurred_at=parse_timestamp(args.at, ctx.settings),
    )
    return _record(ctx, event, f"Recorded exercise {event.payload.exercise_id} as {args.status}.")


def track_time(ctx: Context, args: argparse.Namespace) -> int:
    event = TrackingEvent.time_logged(
        args.activity,
        args.duration_min,
        occurred_at=parse_timestamp(args.at, ctx.settings),
    )
    return _record(ctx, event, f"Logged {args.duration_min} minutes of {event.payload.activity}.")


def track_knowledge(ctx: Context, args: argparse.Namespace) -> int:
    event = TrackingEvent.knowledge_check(
        args.check,
        args.score,
        occurred_at=parse_timestamp(args.at, ctx.settings),
    )
    return _record(ctx, event, f"Recorded knowledge check {event.payload.check_id}: {args.score:.1f}.")


# ----------------------------------------------------------------------
# Reporting
# ----------------------------------------------------------------------


def progress_summary(ctx: Context, args: argparse.Namespace) -> int:
    snapshot = ctx.tracker().summary(args.period)
    emit(ctx, snapshot.model_dump(mode="json"), _format_summary(snapshot))
    return EXIT_OK


def recommend(ctx: Context, args: argparse.Namespace) -> int:
    profile = ctx.profile()
    tracker = ctx.tracker()
    recommendation = tracker.recommend(profile)
    advice = suggestions(tracker.summary("weekly"), profile, ctx.today())

    lines = [
        f"Recommended stage  {recommendation.stage_name} ({recommendation.stage_progress:.1f}% complete)",
        f"Confidence         {recommendation.confidence_score * 100:.1f}%",
        f"Reasoning          {recommendation.reasoning}",
    ]
    if recommendation.next_exercises:
        lines.append("Next exercises:")
        lines.extend(f"  {index}. {exercise_id}" for index, exercise_id in enumerate(recommendation.next_exercises, 1))
    if advice:
        lines.append("Suggestions:")
        lines.extend(f"  {index}. {line}" for index, line in enumerate(advice, 1))
    emit(ctx, {**recommendation.model_dump(mode="json"), "suggestions": advice}, "\n".join(lines))
    return EXIT_OK


def achievements(ctx: Context, args: argparse.Namespace) -> int:
    unlocked = ctx.tracker().achievements()
    lines = [
        f"{entry.unlocked_at:%Y-%m-%d}  [{entry.rarity:<9}] {entry.name}: {entry.description}" for entry in unlocked
    ]
    emit(ctx, [entry.model_dump(mode="json") for entry in unlocked], "\n".join(lines) or "No achievements yet.")
    return EXIT_OK


def export(ctx: Context, args: argparse.Namespace) -> int:
    payload = ctx.reporter().export(args.format, period=args.period)
    if args.output is None:
        sys.stdout.write(payload.decode("utf-8"))
        return EXIT_OK
    target = Path(args.output).expanduser()
    try:
        target.write_bytes(payload)
    except OSError as exc:
        raise StoreIOFailure(f"Cannot write export to {target}: {exc}") from exc
    emit(ctx, {"output": str(target), "bytes": len(payload)}, f"Exported {args.format} report to {target}.")
    return EXIT_OK


# ----------------------------------------------------------------------
# Profile lifecycle
# ----------------------------------------------------------------------


def init(ctx: Context, args: argparse.Namespace) -> int:
    existing = ctx.profile()
    if existing is not None and not args.force:
        raise UsageError(f"Profile '{existing.profile_id}' already exists; use profile-edit or --force.")
    fields: Dict[str, Any] = {
        "profile_id": ctx.settings.profile_id,
        "display_name": args.name or "",
        "weekly_hour_goal": args.weekly_hours,
        "current_stage": args.stage,
    }
    start = parse_day(args.start_date)
    if start is not None:
        fields["start_date"] = start
    target = parse_day(args.target_date)
    if target is not None:
        fields["target_completion_date"] = target
    profile = ctx.store.save_profile(LearningProfile.model_validate(fields))
    emit(ctx, profile.model_dump(mode="json"), f"Initialised profile in {ctx.store.root}\n{_format_profile(profile)}")
    return EXIT_OK


def profile_show(ctx: Context, args: argparse.Namespace) -> int:
    profile = ctx.require_profile()
    emit(ctx, profile.model_dump(mode="json"), _format_profile(profile))
    return EXIT_OK


def profile_edit(ctx: Context, args: argparse.Namespace) -> int:
    profile = ctx.require_profile()
    updates: Dict[str, Any] = {}
    if args.name is not None:
        updates["display_name"] = args.name
    if args.start_date is not None:
        updates["start_date"] = parse_day(args.start_date)
    if args.target_date is not None:
        updates["target_completion_date"] = parse_day(args.target_date)
    if args.weekly_hours is not None:
        updates["weekly_hour_goal"] = args.weekly_hours
    if args.stage is not None:
        updates["current_stage"] = args.stage
    if not updates:
        raise UsageError("Nothing to change; pass at least one profile option such as --name or --stage.")
    updates["last_updated"] = datetime.now(timezone.utc)
    edited = LearningProfile.model_validate({**profile.model_dump(), **updates})
    ctx.store.save_profile(edited)
    emit(ctx, edited.model_dump(mode="json"), _format_profile(edited))
    return EXIT_OK


def profile_archive(ctx: Context, args: argparse.Namespace) -> int:
    profile = ctx.require_profile()
    archived = LearningProfile.model_validate(
        {**profile.model_dump(), "archived": True, "last_updated": datetime.now(timezone.utc)}
    )
    ctx.store.save_profile(archived)
    emit(ctx, archived.model_dump(mode="json"), f"Archived profile {archived.profile_id}.")
    return EXIT_OK


# ----------------------------------------------------------------------
# Backups
# ----------------------------------------------------------------------


def backup(ctx: Context, args: argparse.Namespace) -> int:
    handle = ctx.store.backup()
    emit(ctx, handle.model_dump(mode="json"), f"Backed up {handle.record_count} records as {handle.backup_id}.")
    return EXIT_OK


def backups(ctx: Context, args: argparse.Namespace) -> int:
    handles = ctx.store.list_backups()
    lines = [f"{handle.backup_id}  {handle.created_at:%Y-%m-%d %H:%M:%S}" for handle in handles]
    emit(ctx, [handle.model_dump(mode="json") for handle in handles], "\n".join(lines) or "No backups.")
    return EXIT_OK


def restore(ctx: Context, args: argparse.Namespace) -> int:
    handle = ctx.store.resolve_backup(args.backup)
    count = ctx.store.restore(handle)
    emit(
        ctx,
        {"backup_id": handle.backup_id, "record_count": count},
        f"Restored {count} records from backup {handle.backup_id}.",
    )
    return EXIT_OK


# ----------------------------------------------------------------------
# Parser
# ----------------------------------------------------------------------


def _add_profile_options(command: argparse.ArgumentParser, *, defaults: bool) -> None:
    command.add_argument("--name", help="Display name.")
    command.add_argument("--start-date", help="Start date (YYYY-MM-DD).")
    command.add_argument("--target-date", help="Target completion date (YYYY-MM-DD).")
    command.add_argument("--weekly-hours", type=int, default=10 if defaults else None, help="Weekly hour goal.")
    command.add_argument(
        "--stage",
        type=int,
        default=1 if defaults else None,
        choices=[stage.number for stage in STAGES],
        help="Current learning stage.",
    )


def build() -> argparse.ArgumentParser:
    parser, add_command = build_parser("progress-tracker", "Track learning activity and report progress.")

    exercise = add_command("track-exercise", "Record an exercise attempt.", track_exercise)
    exercise.add_argument("--exercise", required=True, help="Exercise id.")
    exercise.add_argument("--status", required=True, choices=["completed", "in_progress", "skipped"])
    exercise.add_argument("--stage", type=int, help="Stage the exercise belongs to.")
    exercise.add_argument("--score", type=float, help="Exercise score (0-100).")
    exercise.add_argument("--at", help="When it happened (ISO-8601, default now).")

    time_logged = add_command("track-time", "Log study time.", track_time)
    time_logged.add_argument("--activity", required=True, help="What you worked on.")
    time_logged.add_argument("--duration-min", type=int, required=True, help="Duration in minutes.")
    time_logged.add_argument("--at", help="When it happened (ISO-8601, default now).")

    knowledge = add_command("track-knowledge", "Record a knowledge check score.", track_knowledge)
    knowledge.add_argument("--check", required=True, help="Knowledge check id.")
    knowledge.add_argument("--score", type=float, required=True, help="Score (0-100).")
    knowledge.add_argument("--at", help="When it happened (ISO-8601, default now).")

    summary = add_command("progress-summary", "Show aggregated progress.", progress_summary)
    summary.add_argument("--period", default="weekly", help=f"One of: {', '.join(PERIODS)}.")

    add_command("recommend", "Recommend the next stage and exercises to work on.", recommend)
    add_command("achievements", "List unlocked achievements.", achievements)

    exporter = add_command("export", "Export a progress report.", export)
    exporter.add_argument("--format", default="json", choices=list(EXPORT_FORMATS))
    exporter.add_argument("--output", help="Write to this file instead of stdout.")
    exporter.add_argument("--period", default="weekly", help=f"One of: {', '.join(PERIODS)}.")

    init_command = add_command("init", "Create the learner profile.", init)
    _add_profile_options(init_command, defaults=True)
    init_command.add_argument("--force", action="store_true", help="Overwrite an existing profile.")

    add_command("profile-show", "Show the learner profile.", profile_show)
    _add_profile_options(add_command("profile-edit", "Edit the learner profile.", profile_edit), defaults=False)
    add_command("profile-archive", "Archive the learner profile.", profile_archive)

    add_command("backup", "Back up the event log.", backup)
    add_command("backups", "List event log backups.", backups)
    restore_command = add_command("restore", "Restore the event log from a backup.", restore)
    restore_command.add_argument("--backup", required=True, help="Backup id from 'backups'.")
    return parser


def main(argv: Optional[List[str]] = None) -> int:
    args = build().parse_args(argv)
    return run(args)


if __name__ == "__main__":
    sys.exit(main())
