"""CLI entry point — ``python -m cronwire serve|validate``."""

from __future__ import annotations

import argparse
import logging
import sys

from cronwire.config import get_settings


def _build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="cronwire",
        description="cronwire — scheduled command runner with live telemetry relay.",
    )
    sub = parser.add_subparsers(dest="command", required=True)

    sub.add_parser("serve", help="Start the API server, scheduler and telemetry hub.")

    check = sub.add_parser("validate", help="Check a cron expression and show upcoming runs.")
    check.add_argument("expression", help='Five-field cron expression, e.g. "*/5 * * * *".')
    check.add_argument(
        "--count",
        type=int,
        default=5,
        help="Number of upcoming run times to print (default: 5).",
    )
    return parser


def _validate(expression: str, count: int, timezone: str) -> int:
    from cronwire.scheduler.cron import next_run, parse_cron

    try:
        parsed = parse_cron(expression)
    except ValueError as exc:
        print(f"invalid: {exc}")
        return 2

    print(f"valid: {parsed}")
    after = None
    for _ in range(max(count, 0)):
        after = next_run(parsed, after, timezone)
        if after is None:
            break
        print(f"  {after.isoformat()}")
    return 0


def main(argv: list[str] | None = None) -> int:
    """Parse CLI args and dispatch to serve mode or the schedule checker."""
    parser = _build_parser()
    args = parser.parse_args(argv)

    settings = get_settings()

    # Configure logging
    logging.basicConfig(
        level=getattr(logging, settings.log_level.upper(), logging.INFO),
        format="%(asctime)s [%(levelname)s] %(name)s: %(message)s",
        datefmt="%Y-%m-%d %H:%M:%S",
    )

    if args.command == "validate":
        return _validate(args.expression, args.count, settings.scheduler_timezone)

    if args.command == "serve":
        from cronwire.scheduler.runner import serve

        return serve(settings)

    return 1  # unreachable with required=True


if __name__ == "__main__":
    sys.exit(main())
