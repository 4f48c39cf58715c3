"""Command-line entry point for the CI watcher."""

from __future__ import annotations

import argparse
import asyncio
import json
import logging
import signal
from contextlib import suppress
from pathlib import Path
from typing import Any

from . import __version__
from .config import MergeWatchSettings, get_settings
from .eligibility import EligibilityEvaluator, EligibilityPolicy, PolicyLoadError, load_policy
from .engine import EXIT_FAILURE, CompletionHandler, CompletionReport
from .gh import GhNotFoundError, GhPullRequestHost, GhRunner, GhRunStatusSource
from .merge import MergeExecutor
from .notify import CommandSink, LoggingSink, Notifier
from .patterns import PatternStore
from .poller import RetryPolicy, StatusPoller
from .scheduler import AdaptiveScheduler, SchedulerPolicy
from .storage import HistoryStore, HistoryUnavailableError

logger = logging.getLogger(__name__)


def configure_logging(level: str) -> None:
    """Configure root logging for the watcher."""

    logging.basicConfig(
        level=getattr(logging, level, logging.INFO),
        format="[%(asctime)s] [%(levelname)s] %(name)s: %(message)s",
    )


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="mergewatch",
        description=(
            "Watch the latest CI run with adaptive polling and auto-merge its pull "
            "request when the merge criteria are met."
        ),
    )
    parser.add_argument("--version", action="version", version=f"%(prog)s {__version__}")
    parser.add_argument("--initial-delay", type=float, help="Initial polling delay in seconds (default: 2)")
    parser.add_argument("--max-delay", type=float, help="Maximum polling delay in seconds (default: 120)")
    parser.add_argument("--backoff-multiplier", type=float, help="Backoff multiplier (default: 1.4)")
    parser.add_argument("--max-watch-time", type=float, help="Maximum watch time in seconds (default: 600)")
    parser.add_argument(
        "--max-source-errors",
        type=int,
        help="Give up after this many consecutive status errors (default: retry until timeout)",
    )
    parser.add_argument("--repo", help="Repository as OWNER/NAME (default: current directory)")
    parser.add_argument("--branch", help="Only watch runs for this branch")
    parser.add_argument("--workflow", help="Only watch runs of this workflow")
    parser.add_argument("--policy", type=Path, help="YAML file with eligibility weights and threshold")
    parser.add_argument(
        "--no-auto-merge",
        dest="auto_merge",
        action="store_false",
        default=None,
        help="Evaluate eligibility but never merge",
    )
    parser.add_argument(
        "--no-require-reviews",
        dest="require_reviews",
        action="store_false",
        default=None,
        help="Do not require an approved review",
    )
    parser.add_argument("--dry-run", action="store_true", default=None, help="Simulate the merge")
    parser.add_argument("--quiet", action="store_true", help="Reduce logging verbosity")
    parser.add_argument("--json", action="store_true", help="Print the result object as JSON")
    return parser


_OVERRIDES = {
    "initial_delay": "initial_delay",
    "max_delay": "max_delay",
    "backoff_multiplier": "backoff_multiplier",
    "max_watch_time": "max_watch_time",
    "max_source_errors": "max_consecutive_errors",
    "repo": "repo",
    "branch": "branch",
    "workflow": "workflow",
    "policy": "policy_path",
    "auto_merge": "auto_merge",
    "require_reviews": "require_reviews",
    "dry_run": "dry_run",
}


def apply_overrides(settings: MergeWatchSettings, args: argparse.Namespace) -> MergeWatchSettings:
    """Return settings with every explicitly passed flag applied and re-validated."""

    update: dict[str, Any] = {}
    for arg_name, field_name in _OVERRIDES.items():
        value = getattr(args, arg_name, None)
        if value is not None:
            update[field_name] = value
    if getattr(args, "quiet", False):
        update["log_level"] = "WARNING"
    if not update:
        return settings
    merged = settings.model_dump()
    merged.update(update)
    return MergeWatchSettings.model_validate(merged)


def build_scheduler(settings: MergeWatchSettings) -> AdaptiveScheduler:
    initial_delay = min(settings.max_delay, max(settings.min_delay, settings.initial_delay))
    if initial_delay != settings.initial_delay:
        logger.warning(
            "Initial delay clamped to the configured bounds",
            extra={"requested": settings.initial_delay, "initial_delay": initial_delay},
        )
    return AdaptiveScheduler(
        SchedulerPolicy(
            initial_delay=initial_delay,
            min_delay=settings.min_delay,
            max_delay=settings.max_delay,
            backoff_multiplier=settings.backoff_multiplier,
            speed_up_factor=settings.speed_up_factor,
            learned_weight=settings.learned_weight,
        )
    )


def build_notifier(settings: MergeWatchSettings) -> Notifier:
    notifier = Notifier([LoggingSink()])
    if settings.notify_command:
        notifier.subscribe(CommandSink(settings.notify_command))
    return notifier


def open_history(settings: MergeWatchSettings) -> HistoryStore | None:
    store = HistoryStore(settings.history_path)
    try:
        store.ping()
    except HistoryUnavailableError as exc:
        logger.warning("Completion history disabled", extra={"error": str(exc)})
        return None
    return store


async def run_monitor(
    settings: MergeWatchSettings,
    *,
    runner: GhRunner | None = None,
    history: HistoryStore | None = None,
    policy: EligibilityPolicy | None = None,
) -> CompletionReport:
    """Watch the latest run, then decide on and perform the merge."""

    if runner is None:
        runner = GhRunner(Path(settings.gh_path) if settings.gh_path else None, repo=settings.repo)
    if policy is None:
        policy = load_policy(settings.policy_path) if settings.policy_path else EligibilityPolicy()

    patterns = PatternStore(settings.pattern_path, failure_limit=settings.failure_history_limit)
    patterns.load()
    notifier = build_notifier(settings)

    poller = StatusPoller(
        GhRunStatusSource(runner, branch=settings.branch, workflow=settings.workflow),
        scheduler=build_scheduler(settings),
        patterns=patterns,
        notifier=notifier,
        retry_policy=RetryPolicy(settings.max_consecutive_errors),
        max_watch_time=settings.max_watch_time,
        workflow=settings.workflow,
    )
    host = GhPullRequestHost(runner)
    handler = CompletionHandler(
        host,
        EligibilityEvaluator(policy),
        MergeExecutor(host, dry_run=settings.dry_run),
        history=history,
        notifier=notifier,
        auto_merge=settings.auto_merge,
        require_reviews=settings.require_reviews,
    )

    loop = asyncio.get_running_loop()
    for signum in (signal.SIGINT, signal.SIGTERM):
        with suppress(NotImplementedError, RuntimeError):
            loop.add_signal_handler(signum, poller.stop)
    try:
        watch = await poller.watch()
        report = await handler.handle(watch)
    finally:
        for signum in (signal.SIGINT, signal.SIGTERM):
            with suppress(NotImplementedError, RuntimeError):
                loop.remove_signal_handler(signum)
        await notifier.drain()
    return report


def main(argv: list[str] | None = None) -> None:
    parser = build_parser()
    args = parser.parse_args(argv)
    try:
        settings = apply_overrides(get_settings(), args)
    except ValueError as exc:
        parser.error(str(exc))
    configure_logging(settings.log_level)

    try:
        report = asyncio.run(run_monitor(settings, history=open_history(settings)))
    except GhNotFoundError as exc:
        print(f"gh unavailable: {exc}")
        raise SystemExit(EXIT_FAILURE)
    except PolicyLoadError as exc:
        print(f"Invalid policy: {exc}")
        raise SystemExit(EXIT_FAILURE)

    print(report.summary)
    if args.json:
        print(json.dumps(report.to_dict(), indent=2))
    if report.exit_code:
        raise SystemExit(report.exit_code)


if __name__ == "__main__":
    main()
