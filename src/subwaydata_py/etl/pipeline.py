#!/usr/bin/env python

import argparse
import logging
import os
import sys
import threading
from typing import Callable, Dict, List, Optional

from subwaydata_py.etl.backlog import backlog
from subwaydata_py.etl.config import load_config
from subwaydata_py.etl.periodic import Interval, run_periodic
from subwaydata_py.etl.purge import purge
from subwaydata_py.etl.run_day import run_day
from subwaydata_py.etl.session import Session, new_session
from subwaydata_py.metadata.day import format_day, parse_day
from subwaydata_py.runtime_utils.alembic_migration import alembic_upgrade_to_head
from subwaydata_py.runtime_utils.env_validation import validate_environment
from subwaydata_py.runtime_utils.etl_exception import ArgumentException, EtlException
from subwaydata_py.runtime_utils.process_logger import ProcessLogger
from subwaydata_py.runtime_utils.shutdown import install_shutdown_handlers

logging.getLogger().setLevel("INFO")

DESCRIPTION = """Entry Point For the subwaydata ETL"""


def parse_args(args: List[str]) -> argparse.Namespace:
    """parse args for running this entrypoint script"""
    parser = argparse.ArgumentParser(prog="subwaydata", description=DESCRIPTION)

    parser.add_argument(
        "--etl-config",
        dest="etl_config",
        required=True,
        help="path to the json etl configuration file",
    )

    parser.add_argument(
        "--verbose",
        action="store_true",
        dest="verbose",
        help="if set, use debug logging",
    )

    subparsers = parser.add_subparsers(dest="command", required=True)

    run_parser = subparsers.add_parser("run", help="process a single day")
    run_parser.add_argument("day", help="day to process, as YYYY-MM-DD")

    backlog_parser = subparsers.add_parser("backlog", help="process every pending day")
    backlog_parser.add_argument(
        "--limit",
        type=int,
        dest="limit",
        help="only process this many of the most recent pending days",
    )
    backlog_parser.add_argument(
        "--concurrency",
        type=int,
        default=1,
        dest="concurrency",
        help="number of days to process at once",
    )
    backlog_parser.add_argument(
        "--dry-run",
        action="store_true",
        dest="dry_run",
        help="if set, list the pending days without processing them",
    )

    delete_parser = subparsers.add_parser("delete", help="purge processed days")
    delete_parser.add_argument(
        "--day",
        action="append",
        required=True,
        dest="days",
        help="day to purge, as YYYY-MM-DD. may be repeated",
    )
    delete_parser.add_argument(
        "--yes",
        action="store_true",
        dest="yes",
        help="if not set, only list what would be purged",
    )

    periodic_parser = subparsers.add_parser("periodic", help="process pending days inside time windows")
    periodic_parser.add_argument(
        "intervals",
        nargs="+",
        help="time windows in the etl timezone, as HH:MM[:SS]-HH:MM[:SS]",
    )
    periodic_parser.add_argument(
        "--limit",
        type=int,
        dest="limit",
        help="only process this many pending days per backlog run",
    )
    periodic_parser.add_argument(
        "--concurrency",
        type=int,
        default=1,
        dest="concurrency",
        help="number of days to process at once",
    )

    return parser.parse_args(args)


def validate_args(args: argparse.Namespace) -> None:
    """
    convert and check arguments argparse can't, before anything touches the
    ledger or s3
    """
    if args.command == "run":
        args.day = parse_day(args.day)
    elif args.command == "delete":
        args.days = [parse_day(raw_day) for raw_day in args.days]
    elif args.command == "periodic":
        args.intervals = [Interval.parse(raw_interval) for raw_interval in args.intervals]

    if getattr(args, "concurrency", 1) < 1:
        raise ArgumentException(f"--concurrency must be at least 1, got {args.concurrency}")
    if getattr(args, "limit", None) is not None and args.limit < 0:
        raise ArgumentException(f"--limit must not be negative, got {args.limit}")


def run_command(session: Session, args: argparse.Namespace) -> int:
    """process one day"""
    record = run_day(session, args.day)
    print(f"{format_day(record.day)}: published {','.join(sorted(record.feed_ids))} (version {record.version})")
    return 0


def backlog_command(session: Session, args: argparse.Namespace) -> int:
    """process pending days, failures are reported per day"""
    report = backlog(session, limit=args.limit, concurrency=args.concurrency, dry_run=args.dry_run)
    for line in report.lines():
        print(line)
    if report.dry_run:
        print(f"{len(report.selected)} pending days")
    else:
        print(
            f"{len(report.succeeded)} succeeded, {len(report.failed)} failed, "
            f"{len(report.skipped)} skipped of {len(report.selected)} pending days"
        )
    return 0


def delete_command(session: Session, args: argparse.Namespace) -> int:
    """purge days, only listing them unless --yes is given"""
    report = purge(session, args.days, confirm=args.yes)
    for line in report.lines():
        print(line)
    if report.dry_run:
        print("nothing was purged, rerun with --yes to purge")
    return 0


def periodic_command(session: Session, args: argparse.Namespace) -> int:
    """run the backlog inside time windows until shut down"""
    run_periodic(session, args.intervals, concurrency=args.concurrency, limit=args.limit)
    return 0


COMMANDS: Dict[str, Callable[[Session, argparse.Namespace], int]] = {
    "run": run_command,
    "backlog": backlog_command,
    "delete": delete_command,
    "periodic": periodic_command,
}


def main(argv: List[str], stop_event: Optional[threading.Event] = None) -> int:
    """
    run a command and return the process exit code. anything that stops the
    command as a whole is printed as "Error: ..." and exits 1.
    """
    args = parse_args(argv)
    if args.verbose:
        logging.getLogger().setLevel("DEBUG")

    main_process_logger = ProcessLogger("main", command=args.command, etl_config=args.etl_config)
    main_process_logger.log_start()

    try:
        validate_args(args)
        config = load_config(args.etl_config)
        validate_environment(
            required_variables=[],
            optional_variables=["FEED_ARCHIVE_BUCKET", "PUBLIC_ARCHIVE_BUCKET", "AWS_DEFAULT_REGION"],
            check_ledger_db=config.ledger_url is None,
        )

        # run ledger rds migrations
        alembic_upgrade_to_head(config.ledger_url)

        session = new_session(config, stop_event=stop_event, verbose=args.verbose)
        install_shutdown_handlers(session.stop_event)
        exit_code = COMMANDS[args.command](session, args)
    except (EtlException, OSError) as exception:
        print(f"Error: {exception}", file=sys.stderr)
        main_process_logger.log_failure(exception)
        return 1

    main_process_logger.add_metadata(exit_code=exit_code, print_log=False)
    main_process_logger.log_complete()
    return exit_code


def start() -> None:
    """configure and start the subwaydata etl"""
    # configure the environment
    os.environ["SERVICE_NAME"] = os.environ.get("SERVICE_NAME", "subwaydata_etl")

    sys.exit(main(sys.argv[1:]))


if __name__ == "__main__":
    start()
