"""mergewatch diagnostics CLI."""

from __future__ import annotations

import argparse
import json

from mergewatch.config import MergeWatchSettings
from mergewatch.patterns import PatternStore
from mergewatch.storage import HistoryStore, HistoryUnavailableError


def load_store(settings: MergeWatchSettings) -> HistoryStore:
    try:
        store = HistoryStore(settings.history_path)
        store.ping()
        return store
    except HistoryUnavailableError as exc:
        print(f"History unavailable: {exc}")
        raise SystemExit(1)


def load_patterns(settings: MergeWatchSettings) -> PatternStore:
    store = PatternStore(settings.pattern_path, failure_limit=settings.failure_history_limit)
    store.load()
    return store


def cmd_history(args: argparse.Namespace) -> None:
    settings = MergeWatchSettings()
    store = load_store(settings)
    filters = {"workflow": args.workflow} if args.workflow else None
    try:
        records = store.list_entries(filters=filters, limit=args.limit)
    except HistoryUnavailableError as exc:
        print(f"History unavailable: {exc}")
        raise SystemExit(1)

    if args.json:
        print(json.dumps([record.document for record in records], indent=2))
        return
    for record in records:
        score = (record.document.get("eligibility") or {}).get("score")
        print(
            f"{record.recorded_at.isoformat()} run={record.run_id} "
            f"workflow={record.workflow} action={record.action} "
            f"failure={str(record.failure).lower()} score={score if score is not None else '-'}"
        )


def cmd_metrics(args: argparse.Namespace) -> None:
    settings = MergeWatchSettings()
    store = load_store(settings)
    try:
        records = store.list_entries()
    except HistoryUnavailableError as exc:
        print(f"History unavailable: {exc}")
        raise SystemExit(1)

    action_counts: dict[str, int] = {}
    workflow_counts: dict[str, dict[str, int]] = {}
    failures = 0
    for record in records:
        action_counts[record.action] = action_counts.get(record.action, 0) + 1
        per_workflow = workflow_counts.setdefault(record.workflow, {"runs": 0, "failures": 0})
        per_workflow["runs"] += 1
        if record.failure:
            failures += 1
            per_workflow["failures"] += 1

    patterns = load_patterns(settings)
    metrics = {
        "completions_total": len(records),
        "failures_total": failures,
        "action_counts": action_counts,
        "workflows": workflow_counts,
        "learned_success_rates": {
            name: round(patterns.get_pattern(name).success_rate, 4) for name in patterns.workflows()
        },
    }
    print(json.dumps(metrics, indent=2))


def cmd_patterns(args: argparse.Namespace) -> None:
    settings = MergeWatchSettings()
    snapshot = load_patterns(settings).snapshot()
    if args.workflow:
        pattern = snapshot.workflows.get(args.workflow)
        if pattern is None:
            print(f"No learned pattern for workflow '{args.workflow}'")
            raise SystemExit(1)
        print(pattern.model_dump_json(indent=2))
        return
    print(snapshot.model_dump_json(indent=2))


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(description="mergewatch diagnostics")
    sub = parser.add_subparsers(dest="cmd")

    p_history = sub.add_parser("history", help="List completion history entries")
    p_history.add_argument("--workflow")
    p_history.add_argument(
        "--limit",
        type=int,
        default=None,
        help="If provided, show only the latest N entries",
    )
    p_history.add_argument("--json", action="store_true", help="Output JSON")
    p_history.set_defaults(func=cmd_history)

    p_metrics = sub.add_parser("metrics", help="Show completion counts and learned success rates")
    p_metrics.set_defaults(func=cmd_metrics)

    p_patterns = sub.add_parser("patterns", help="Dump learned run patterns")
    p_patterns.add_argument("--workflow")
    p_patterns.set_defaults(func=cmd_patterns)

    return parser


def main(argv: list[str] | None = None) -> None:
    parser = build_parser()
    args = parser.parse_args(argv)
    if not hasattr(args, "func"):
        parser.print_help()
        return
    args.func(args)


if __name__ == "__main__":
    main()
