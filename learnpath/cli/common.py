"""Shared plumbing for the console scripts: options, settings, output, and exit codes."""

from __future__ import annotations

import argparse
import json
import logging
import sys
from dataclasses import dataclass
from datetime import date, datetime
from pathlib import Path
from typing import Any, Callable, Dict, Optional, Sequence, Tuple

from ..config import Settings, load_settings
from ..evaluator import Evaluator
from ..exceptions import EvaluatorError, GateFailure, LearnpathError, StoreError, TrackerError
from ..learner_profile import LearningProfile
from ..logging_config import configure_logging
from ..periods import week_tag, week_window
from ..quality_gate import QualityGate
from ..reporter import Reporter
from ..store import EventStore
from ..tracker import Tracker

logger = logging.getLogger(__name__)

EXIT_OK = 0
EXIT_FAILURE = 1
EXIT_EVALUATOR = 2
EXIT_STORE = 3
EXIT_TRACKER = 4


class UsageError(Exception):
    """Invalid input or missing state that the user must fix before retrying."""


class CliParser(argparse.ArgumentParser):
    """ArgumentParser that reports bad arguments with the generic failure exit code."""

    def error(self, message: str) -> None:  # type: ignore[override]
        self.print_usage(sys.stderr)
        self.exit(EXIT_FAILURE, f"{self.prog}: error: {message}\n")


def _global_options() -> argparse.ArgumentParser:
    # SUPPRESS keeps a subcommand's unset option from overwriting one given before it.
    options = CliParser(add_help=False)
    options.add_argument("--config", type=Path, default=argparse.SUPPRESS, help="Path to a learnpath.toml file.")
    options.add_argument("--data-dir", type=Path, default=argparse.SUPPRESS, help="Root directory for profile data.")
    options.add_argument("--profile", default=argparse.SUPPRESS, help="Profile id to operate on.")
    options.add_argument("--json", action="store_true", default=argparse.SUPPRESS, help="Emit JSON output.")
    options.add_argument("--verbose", "-v", action="store_true", default=argparse.SUPPRESS, help="Log debug output.")
    return options


def build_parser(prog: str, description: str) -> Tuple[CliParser, Callable[..., CliParser]]:
    """Return the top-level parser and a factory for subcommands sharing the global options."""
    shared = _global_options()
    parser = CliParser(prog=prog, description=description, parents=[shared])
    subparsers = parser.add_subparsers(dest="command", metavar="COMMAND")
    subparsers.required = True

    def add_command(name: str, help_text: str, handler: Callable[["Context", argparse.Namespace], int]) -> CliParser:
        command = subparsers.add_parser(name, help=help_text, description=help_text, parents=[shared])
        command.set_defaults(handler=handler)
        return command

    return parser, add_command


# ----------------------------------------------------------------------
# Context
# ----------------------------------------------------------------------


@dataclass
class Context:
    settings: Settings
    store: EventStore
    json_output: bool = False

    def tracker(self) -> Tracker:
        return Tracker(self.store, self.settings)

    def evaluator(self) -> Evaluator:
        return Evaluator(self.store, self.settings)

    def quality_gate(self) -> QualityGate:
        return QualityGate(self.store, self.settings)

    def reporter(self) -> Reporter:
        return Reporter(self.store, self.settings)

    def today(self) -> date:
        return datetime.now(self.settings.tzinfo).date()

    def profile(self) -> Optional[LearningProfile]:
        return self.store.load_profile()

    def require_profile(self) -> LearningProfile:
        profile = self.store.load_profile()
        if profile is None:
            raise UsageError(
                f"No profile '{self.settings.profile_id}' found in {self.store.root}; run 'progress-tracker init' first."
            )
        return profile

    def current_week(self) -> Tuple[str, date, date]:
        """Tag and half-open date window of the learning week containing today."""
        today = self.today()
        profile = self.profile()
        start, end = week_window(today, profile)
        return week_tag(today, profile), start, end


def load_context(args: argparse.Namespace) -> Context:
    configure_logging("DEBUG" if getattr(args, "verbose", False) else None)
    overrides: Dict[str, Any] = {}
    if getattr(args, "data_dir", None) is not None:
        overrides["data_dir"] = args.data_dir
    if getattr(args, "profile", None):
        overrides["profile_id"] = args.profile
    settings = load_settings(getattr(args, "config", None), **overrides)
    store = EventStore.from_settings(settings)
    return Context(settings=settings, store=store, json_output=bool(getattr(args, "json", False)))


# ----------------------------------------------------------------------
# Input and output helpers
# ----------------------------------------------------------------------


def parse_timestamp(value: Optional[str], settings: Settings) -> Optional[datetime]:
    """Parse an ISO-8601 date or datetime; naive values are read in the configured timezone."""
    if value is None:
        return None
    try:
        parsed = datetime.fromisoformat(value.strip())
    except ValueError as exc:
        raise UsageError(f"Invalid timestamp '{value}'; expected ISO-8601 such as 2024-05-01T18:30.") from exc
    if parsed.tzinfo is None:
        parsed = parsed.replace(tzinfo=settings.tzinfo)
    return parsed


def parse_day(value: Optional[str]) -> Optional[date]:
    if value is None:
        return None
    try:
        return date.fromisoformat(value.strip())
    except ValueError as exc:
        raise UsageError(f"Invalid date '{value}'; expected YYYY-MM-DD.") from exc


def emit(ctx: Context, payload: Any, text: str) -> None:
    if ctx.json_output:
        print(json.dumps(payload, indent=2, default=str, sort_keys=True))
    else:
        print(text)


def _report_error(json_output: bool, body: Dict[str, Any], lines: Sequence[str]) -> None:
    if json_output:
        print(json.dumps(body, indent=2, default=str, sort_keys=True))
        return
    for line in lines:
        print(line, file=sys.stderr)


def exit_code_for(exc: BaseException) -> int:
    if isinstance(exc, EvaluatorError):
        return EXIT_EVALUATOR
    if isinstance(exc, StoreError):
        return EXIT_STORE
    if isinstance(exc, TrackerError):
        return EXIT_TRACKER
    return EXIT_FAILURE


def run(args: argparse.Namespace) -> int:
    """Load settings and the store, dispatch to the chosen handler, and map errors to exit codes."""
    json_output = bool(getattr(args, "json", False))
    try:
        ctx = load_context(args)
        return args.handler(ctx, args)
    except GateFailure as exc:
        lines = [f"error: {exc.message}"] + [f"  - {violation.check}: {violation.message}" for violation in exc.violations]
        _report_error(json_output, exc.to_dict(), lines)
        return EXIT_FAILURE
    except LearnpathError as exc:
        logger.debug("Command %s failed", args.command, exc_info=True)
        _report_error(json_output, exc.to_dict(), [f"error: {exc.message}"])
        return exit_code_for(exc)
    except (UsageError, ValueError, RuntimeError) as exc:
        logger.debug("Command %s rejected its input", args.command, exc_info=True)
        _report_error(
            json_output,
            {"error": "INVALID_INPUT", "message": str(exc), "details": {}},
            [f"error: {exc}"],
        )
        return EXIT_FAILURE


__all__ = [
    "CliParser",
    "Context",
    "EXIT_EVALUATOR",
    "EXIT_FAILURE",
    "EXIT_OK",
    "EXIT_STORE",
    "EXIT_TRACKER",
    "UsageError",
    "build_parser",
    "emit",
    "exit_code_for",
    "load_context",
    "parse_day",
    "parse_timestamp",
    "run",
]
