"""
Batch entry point for an external scheduler.

Usage:
    royalty-engine [--config PATH] [--db-url URL] <command> [options]

Examples:
    # Open and calculate January 2026
    royalty-engine open --start 2026-01-01 --end 2026-02-01 --actor-id <uuid>
    royalty-engine calculate <run-id> --actor-id <uuid>

    # Inspect, then approve or reject
    royalty-engine report <run-id>
    royalty-engine lock <run-id> --actor-id <uuid> --notes "Reviewed by finance"
    royalty-engine reject <run-id> --actor-id <uuid> --notes "Usage feed was incomplete for EU"

The database URL comes from --db-url or the DATABASE_URL environment
variable.  Results are printed as JSON on stdout; failures print the error
code and message on stderr and exit non-zero.
"""

from __future__ import annotations

import argparse
import json
import os
import sys
from dataclasses import asdict
from datetime import date
from pathlib import Path
from uuid import UUID

from royalty_kernel.exceptions import RoyaltyKernelError
from royalty_kernel.utils.hashing import to_json_safe

EXIT_OK = 0
EXIT_REJECTED = 1
EXIT_USAGE = 2


def _parse_args(argv: list[str] | None) -> argparse.Namespace:
    parser = argparse.ArgumentParser(
        prog="royalty-engine",
        description="Royalty run operations: open -> calculate -> report -> lock or reject.",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog=__doc__,
    )
    parser.add_argument(
        "--config",
        type=Path,
        default=None,
        help="Engine configuration YAML (default: packaged defaults.yaml).",
    )
    parser.add_argument(
        "--db-url",
        default=os.environ.get("DATABASE_URL"),
        help="Database URL (default: DATABASE_URL env).",
    )
    parser.add_argument(
        "--create-tables",
        action="store_true",
        help="Create any missing tables before running the command.",
    )
    sub = parser.add_subparsers(dest="command", required=True)

    p = sub.add_parser("open", help="Open a DRAFT run for a period.")
    p.add_argument("--start", required=True, type=date.fromisoformat, help="Inclusive start (YYYY-MM-DD).")
    p.add_argument("--end", required=True, type=date.fromisoformat, help="Exclusive end (YYYY-MM-DD).")
    p.add_argument("--scope", default=None, help="Run scope (default: configured scope).")
    p.add_argument("--notes", default=None)
    p.add_argument("--actor-id", required=True, type=UUID)

    p = sub.add_parser("calculate", help="Calculate a DRAFT run.")
    p.add_argument("run_id", type=UUID)
    p.add_argument("--actor-id", required=True, type=UUID)

    p = sub.add_parser("report", help="Print the validation report of a calculated run.")
    p.add_argument("run_id", type=UUID)

    p = sub.add_parser("lock", help="Approve a calculated run (CALCULATED -> LOCKED).")
    p.add_argument("run_id", type=UUID)
    p.add_argument("--actor-id", required=True, type=UUID)
    p.add_argument("--notes", default=None)

    p = sub.add_parser("reject", help="Reject a calculated run; notes become the rollback reason.")
    p.add_argument("run_id", type=UUID)
    p.add_argument("--actor-id", required=True, type=UUID)
    p.add_argument("--notes", required=True)

    p = sub.add_parser("rollback", help="Roll a calculated or locked run back to DRAFT.")
    p.add_argument("run_id", type=UUID)
    p.add_argument("--actor-id", required=True, type=UUID)
    p.add_argument("--reason", required=True)

    p = sub.add_parser("transition", help="Request a direct lifecycle transition.")
    p.add_argument("run_id", type=UUID)
    p.add_argument("target", help="Target status, e.g. processing or cancelled.")
    p.add_argument("--actor-id", required=True, type=UUID)

    p = sub.add_parser("statements", help="List the statements of a run.")
    p.add_argument("run_id", type=UUID)

    return parser.parse_args(argv)


def _emit(result) -> None:
    if isinstance(result, (list, tuple)):
        payload = [asdict(item) for item in result]
    else:
        payload = asdict(result)
    print(json.dumps(to_json_safe(payload), indent=2, sort_keys=True))


def _dispatch(engine, args: argparse.Namespace):
    command = args.command
    if command == "open":
        return engine.open_run(
            args.start, args.end, args.actor_id, notes=args.notes, scope=args.scope
        )
    if command == "calculate":
        return engine.calculate_run(args.run_id, args.actor_id)
    if command == "report":
        return engine.get_validation_report(args.run_id)
    if command == "lock":
        return engine.lock_run(args.run_id, args.actor_id, approve=True, notes=args.notes)
    if command == "reject":
        return engine.lock_run(args.run_id, args.actor_id, approve=False, notes=args.notes)
    if command == "rollback":
        return engine.rollback_run(args.run_id, args.actor_id, args.reason)
    if command == "transition":
        return engine.transition(args.run_id, args.target.lower(), args.actor_id)
    if command == "statements":
        return engine.get_statements(args.run_id)
    raise ValueError(f"Unknown command: {command}")


def main(argv: list[str] | None = None) -> int:
    args = _parse_args(argv)
    if not args.db_url:
        print("ERROR: no database URL (use --db-url or set DATABASE_URL).", file=sys.stderr)
        return EXIT_USAGE

    # Lazy imports so argument errors fail fast
    from royalty_config import get_active_config
    from royalty_kernel.db.engine import (
        create_tables,
        get_session_factory,
        init_engine_from_url,
    )
    from royalty_kernel.db.immutability import register_immutability_listeners
    from royalty_services.events import LoggingEventBus
    from royalty_services.royalty_engine import RoyaltyEngine

    try:
        config = get_active_config(args.config)
    except (FileNotFoundError, ValueError) as e:
        print(f"ERROR: Failed to load config: {e}", file=sys.stderr)
        return EXIT_USAGE

    init_engine_from_url(args.db_url)
    register_immutability_listeners()
    if args.create_tables:
        create_tables()

    engine = RoyaltyEngine.from_config(
        get_session_factory(), config, publisher=LoggingEventBus()
    )

    try:
        result = _dispatch(engine, args)
    except RoyaltyKernelError as e:
        print(f"ERROR [{e.code}]: {e}", file=sys.stderr)
        return EXIT_REJECTED
    except ValueError as e:
        print(f"ERROR: {e}", file=sys.stderr)
        return EXIT_USAGE

    _emit(result)
    if args.command == "report" and not result.is_valid:
        return EXIT_REJECTED
    return EXIT_OK


if __name__ == "__main__":
    sys.exit(main())
