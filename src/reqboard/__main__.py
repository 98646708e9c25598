"""Entry point for `python -m reqboard` and the `reqboard` CLI script."""

from __future__ import annotations

import argparse
import dataclasses
import json
import logging
import sys
from collections.abc import Sequence

from reqboard.batch import BatchOptions, execute_batch
from reqboard.models import ReviewStatus, User
from reqboard.notifications import LoggingNotifier
from reqboard.repository import open_repositories
from reqboard.schedule import calculate_schedule
from reqboard.settings import RuntimeSettings, load_env_file


def parse_args(argv: Sequence[str] | None = None) -> argparse.Namespace:
    parser = argparse.ArgumentParser(prog="reqboard", description="Requirement board storage and review tools")
    parser.add_argument("--storage-root", default=None, help="Directory holding the stores (default: REQBOARD_STORAGE_ROOT)")
    parser.add_argument(
        "--log-level",
        default="WARNING",
        choices=["DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"],
        help="Logging verbosity",
    )
    subparsers = parser.add_subparsers(dest="command", required=True)

    schedule_parser = subparsers.add_parser("schedule", help="Print the phase schedule for a release date")
    schedule_parser.add_argument("release_date", help="Release date, YYYY-MM-DD")

    subparsers.add_parser("list", help="List requirements with their overall review status")

    review_parser = subparsers.add_parser("review", help="Decide one review level for several requirements")
    review_parser.add_argument("ids", nargs="+", help="Requirement ids, e.g. '#1'")
    review_parser.add_argument("--level", type=int, required=True, help="Review level number (1-based)")
    review_parser.add_argument(
        "--status",
        required=True,
        choices=[status.value for status in ReviewStatus],
        help="Decision for the level",
    )
    review_parser.add_argument("--opinion", default=None, help="Optional reviewer opinion")
    review_parser.add_argument("--reviewer", default=None, help="Optional reviewer name")

    clear_parser = subparsers.add_parser("clear-prefix", help="Remove every stored key starting with PREFIX")
    clear_parser.add_argument("prefix")

    return parser.parse_args(argv)


def load_settings(storage_root: str | None) -> RuntimeSettings:
    load_env_file()
    settings = RuntimeSettings.from_env()
    if storage_root is not None:
        settings = dataclasses.replace(settings, storage_root=storage_root).normalized()
    return settings


def _cmd_schedule(args: argparse.Namespace) -> int:
    schedule = calculate_schedule(args.release_date)
    payload = {
        name: {"start": window.start.isoformat(), "end": window.end.isoformat(), "workdays": window.workdays}
        for name, window in schedule.phases()
    }
    print(json.dumps(payload, indent=2, ensure_ascii=False))
    return 0


def _cmd_list(settings: RuntimeSettings) -> int:
    repos = open_repositories(settings)
    for requirement in repos.requirements.list():
        print(f"{requirement.id}\t{requirement.overall_review_status}\t{requirement.title}")
    return 0


def _cmd_review(args: argparse.Namespace, settings: RuntimeSettings) -> int:
    repos = open_repositories(settings)
    reviewer = User(id=args.reviewer, name=args.reviewer) if args.reviewer else None

    def _decide(requirement_id: str) -> str:
        updated = repos.requirements.set_review_status(
            requirement_id,
            args.level,
            args.status,
            reviewer=reviewer,
            opinion=args.opinion,
        )
        return updated.overall_review_status

    result = execute_batch(
        args.ids,
        _decide,
        BatchOptions(operation_name="批量评审", max_items=settings.batch_max_items),
        notifier=LoggingNotifier(),
    )
    summary = {
        "success": result.success,
        "rejected": result.rejected,
        "success_ids": result.success_ids,
        "failures": [dataclasses.asdict(failure) for failure in result.failures],
        "overall": dict(zip(result.success_ids, result.data)),
    }
    print(json.dumps(summary, indent=2, ensure_ascii=False))
    return 0 if result.success else 1


def _cmd_clear_prefix(args: argparse.Namespace, settings: RuntimeSettings) -> int:
    repos = open_repositories(settings)
    removed = repos.store.clear_by_prefix(args.prefix)
    print(f"removed={removed}")
    return 0


def main(argv: Sequence[str] | None = None) -> int:
    args = parse_args(argv)
    logging.basicConfig(
        level=getattr(logging, args.log_level),
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )

    if args.command == "schedule":
        try:
            return _cmd_schedule(args)
        except ValueError as exc:
            logging.error("Invalid release date: %s", exc)
            return 2

    try:
        settings = load_settings(args.storage_root)
    except ValueError as exc:
        logging.error("Invalid configuration: %s", exc)
        return 2

    if args.command == "list":
        return _cmd_list(settings)
    if args.command == "review":
        return _cmd_review(args, settings)
    if args.command == "clear-prefix":
        return _cmd_clear_prefix(args, settings)
    print(f"unknown command: {args.command}", file=sys.stderr)
    return 2


if __name__ == "__main__":
    raise SystemExit(main())
