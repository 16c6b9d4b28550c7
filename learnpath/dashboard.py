"""Plain-text dashboard rendering and personalised study suggestions."""

from __future__ import annotations

from datetime import date
from typing import TYPE_CHECKING, Dict, List, Optional

from .learner_profile import STAGES, LearningProfile
from .periods import period_start
from .progress_snapshot import ProgressSnapshot

if TYPE_CHECKING:
    from .reporter import ReportSnapshot

BAR_WIDTH = 30
RULE = "-" * 72

STAGE_TIPS: Dict[str, str] = {
    "basics": "Focus on the core syntax and a working toolchain before moving on.",
    "ownership": "Ownership and borrowing take repetition; redo the exercises you found hardest.",
    "advanced-concepts": "Combine error handling, generics, and traits in small programs of your own.",
    "ecosystem": "Explore the common libraries and build something asynchronous end to end.",
    "projects": "Ship one project at a time and ask for code review on each.",
}


def progress_bar(percentage: float, width: int = BAR_WIDTH) -> str:
    clamped = max(0.0, min(100.0, percentage))
    filled = int(round(width * clamped / 100.0))
    return f"[{'#' * filled}{'.' * (width - filled)}] {clamped:5.1f}%"


def suggestions(
    snapshot: ProgressSnapshot,
    profile: Optional[LearningProfile] = None,
    today: Optional[date] = None,
) -> List[str]:
    advice: List[str] = []

    rate = snapshot.completion_rate
    if rate < 20.0:
        advice.append("Just getting started: aim for 30 to 60 minutes of practice every day.")
    elif rate < 50.0:
        advice.append("Good momentum. Finish the exercises you have started before opening new ones.")
    elif rate < 80.0:
        advice.append("Most started exercises are done. Try a small project to consolidate what you learned.")
    else:
        advice.append("Excellent completion rate. Consider contributing to an open-source project.")

    quality = snapshot.average_quality_score
    if quality is not None:
        if quality < 70.0:
            advice.append("Code quality is lagging: run the formatter and linter before every commit.")
        elif quality >= 90.0:
            advice.append("Your code quality is outstanding. Help others by reviewing their code.")

    if snapshot.total_hours < 10.0:
        advice.append("Log more study time; steady practice is what makes concepts stick.")
    elif snapshot.total_hours > 100.0:
        advice.append("You have invested a lot of time. Keep going!")

    if profile is not None:
        if snapshot.period == "weekly":
            current = snapshot.bucket_for(period_start(today or date.today(), "weekly"))
            this_week = current.total_hours if current is not None else 0.0
            if this_week < profile.weekly_hour_goal:
                advice.append(
                    f"You logged {this_week:.1f} of your {profile.weekly_hour_goal} weekly hours; "
                    "schedule the rest now."
                )
        advice.append(STAGE_TIPS.get(profile.stage.key, profile.stage.description))

    if snapshot.streak_days == 0 and snapshot.event_count:
        advice.append("Restart your streak today with one short exercise.")
    return advice


def render(report: "ReportSnapshot") -> str:
    snapshot = report.progress_snapshot
    profile = report.profile
    lines: List[str] = []

    title = "Learning Progress Dashboard"
    if profile is not None and profile.display_name:
        title = f"{title}: {profile.display_name}"
    lines.extend([RULE, title, f"Generated {report.generated_at:%Y-%m-%d %H:%M:%S %Z}", RULE])

    if profile is not None:
        stage = profile.stage
        lines.append(f"Stage      {stage.name} ({stage.number}/{len(STAGES)})")
        lines.append(f"Stages     {progress_bar(100.0 * (stage.number - 1) / len(STAGES))}")
        lines.append(f"Target     {profile.target_completion_date}")
    lines.append(f"Completion {progress_bar(snapshot.completion_rate)}")
    lines.append(
        f"Exercises  {snapshot.completed_exercises} completed, {snapshot.in_progress_exercises} in progress, "
        f"{snapshot.skipped_exercises} skipped"
    )
    for number, progress in snapshot.stage_progress.items():
        lines.append(f"  Stage {number}  {progress_bar(progress)}")
    lines.append(f"Hours      {snapshot.total_hours:.1f}")
    lines.append(f"Streak     {snapshot.streak_days} days (longest {snapshot.longest_streak_days})")
    if snapshot.average_quality_score is not None:
        lines.append(f"Quality    {progress_bar(snapshot.average_quality_score)}")
    if snapshot.knowledge_average is not None:
        lines.append(f"Knowledge  {progress_bar(snapshot.knowledge_average)}")

    if report.latest_assessment is not None:
        result = report.latest_assessment
        verdict = "passed" if result.passed else "not passed"
        lines.append("")
        lines.append(
            f"Latest assessment {result.period_tag} r{result.revision}: {result.overall:.1f} "
            f"(threshold {result.pass_threshold:.0f}, {verdict})"
        )
        lines.append(
            "  " + " | ".join(f"{name.replace('_', ' ')} {score:.1f}" for name, score in result.sub_scores().items())
        )
        for entry in result.feedback:
            lines.append(f"  - {entry}")

    if report.latest_quality is not None:
        quality = report.latest_quality
        gate = "passed" if quality.gate_passed else "failed"
        lines.append(f"Latest quality scan {quality.scanned_path}: {quality.quality_score:.1f} (gate {gate})")

    if snapshot.buckets:
        lines.extend(["", f"{snapshot.period.capitalize()} activity"])
        for bucket in snapshot.buckets[-8:]:
            lines.append(
                f"  {bucket.period_start.isoformat()}  {bucket.completed_exercises:3d} exercises  "
                f"{bucket.total_hours:6.1f} h  {bucket.completion_rate:5.1f}%"
            )

    lines.extend(["", "Achievements"])
    if snapshot.unlocked_achievements:
        for entry in snapshot.unlocked_achievements:
            lines.append(f"  [{entry.rarity}] {entry.name}: {entry.description} ({entry.unlocked_at:%Y-%m-%d})")
    else:
        lines.append("  none yet")

    lines.extend(["", "Suggestions"])
    for index, advice in enumerate(suggestions(snapshot, profile, report.as_of), start=1):
        lines.append(f"  {index}. {advice}")
    lines.append(RULE)
    return "\n".join(lines) + "\n"


__all__ = ["progress_bar", "render", "suggestions"]
