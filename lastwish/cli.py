"""
Command Line Entry Point

Meant to be run by an external scheduler (cron, a CI schedule, a platform
job) and by operators:

    lastwish run-check
    lastwish run-check --now 2025-01-31T12:00:00Z
    lastwish trigger USER_ID
    lastwish check-in USER_ID
    lastwish status USER_ID
    lastwish test-delivery USER_ID

Reports are printed to stdout as JSON; logs go to stderr.
Exit code 0 means the command completed (a run with per-user failures
still completes). Exit code 1 means it could not complete.
"""

import argparse
import asyncio
import json
import sys
from datetime import datetime
from typing import Optional, Sequence

import structlog
from pydantic import BaseModel, ValidationError

from lastwish.audit import configure_logging
from lastwish.config import get_settings
from lastwish.engine import ExportError, NoRecipientsError, ScanError
from lastwish.models.settings import SettingsValidationError, parse_timestamp
from lastwish.orchestrator import LastWishService, create_service
from lastwish.services.storage import StorageError


logger = structlog.get_logger()


def _timestamp(value: str) -> datetime:
    try:
        parsed = parse_timestamp(value)
    except ValueError as e:
        raise argparse.ArgumentTypeError(f"not an ISO 8601 timestamp: {value}") from e
    if parsed is None:
        raise argparse.ArgumentTypeError("timestamp must not be empty")
    return parsed


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="lastwish",
        description="Last Wish delivery engine",
    )
    parser.add_argument(
        "--log-level",
        default=None,
        help="Override LOG_LEVEL (DEBUG, INFO, WARNING, ...)",
    )
    sub = parser.add_subparsers(dest="command", required=True)

    run = sub.add_parser("run-check", help="Deliver for every overdue user")
    run.add_argument("--now", type=_timestamp, default=None, help="Reference time (ISO 8601)")

    trigger = sub.add_parser("trigger", help="Manually deliver for one overdue user")
    trigger.add_argument("user_id")
    trigger.add_argument("--now", type=_timestamp, default=None, help="Reference time (ISO 8601)")

    check_in = sub.add_parser("check-in", help="Record a check-in for a user")
    check_in.add_argument("user_id")

    status = sub.add_parser("status", help="Show a user's Last Wish state")
    status.add_argument("user_id")

    test = sub.add_parser("test-delivery", help="Send a test email to a user's recipients")
    test.add_argument("user_id")

    return parser


async def execute(args: argparse.Namespace, service: LastWishService) -> BaseModel:
    if args.command == "run-check":
        return await service.run_check(now=args.now)
    if args.command == "trigger":
        return await service.trigger_user(args.user_id, now=args.now)
    if args.command == "check-in":
        return await service.check_in(args.user_id)
    if args.command == "status":
        return await service.get_status(args.user_id)
    if args.command == "test-delivery":
        return await service.send_test_delivery(args.user_id)
    raise ValueError(f"Unknown command: {args.command}")


def _print(payload: dict) -> None:
    sys.stdout.write(json.dumps(payload, indent=2, default=str) + "\n")


def main(argv: Optional[Sequence[str]] = None, service: Optional[LastWishService] = None) -> int:
    args = build_parser().parse_args(argv)

    try:
        level = args.log_level or get_settings().app.log_level
    except ValidationError:
        level = "INFO"
    configure_logging(level)

    try:
        service = service or create_service()
        result = asyncio.run(execute(args, service))
    except ValidationError as e:
        logger.error("configuration_invalid", error=str(e))
        _print({"error": "configuration_invalid", "message": str(e)})
        return 1
    except ScanError as e:
        logger.critical("run_check_failed", error=str(e))
        _print({"error": "scan_failed", "message": str(e)})
        return 1
    except (StorageError, SettingsValidationError, ExportError, NoRecipientsError) as e:
        logger.error("command_failed", command=args.command, error=str(e))
        _print({"error": type(e).__name__, "message": str(e)})
        return 1

    _print(result.model_dump(mode="json"))
    return 0


if __name__ == "__main__":
    sys.exit(main())
