"""Command-line entry point."""

from __future__ import annotations

import argparse
import json
import logging
from pathlib import Path

from permission_migrator import __version__
from permission_migrator.config import load_config
from permission_migrator.orchestration.orchestrator import orchestrator_from_config

logger = logging.getLogger(__name__)

LOG_FORMAT = "%(asctime)s %(levelname)s %(name)s %(message)s"


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="permission-migrator",
        description="Report the owners and permissions of the files in a OneDrive folder "
        "alongside a folder in a second account.",
    )
    parser.add_argument(
        "-from", "--from", dest="source_account", required=True, help="Source email address"
    )
    parser.add_argument(
        "-to", "--to", dest="destination_account", required=True, help="Destination email address"
    )
    parser.add_argument(
        "-fromFolder", "--from-folder", dest="source_folder", required=True, help="Source folder"
    )
    parser.add_argument(
        "-toFolder",
        "--to-folder",
        dest="destination_folder",
        required=True,
        help="Destination folder",
    )
    parser.add_argument("--report", type=Path, help="Write the migration report as JSON here")
    parser.add_argument("-v", "--verbose", action="store_true", help="Enable debug logging")
    parser.add_argument("--version", action="version", version=f"%(prog)s {__version__}")
    return parser


def main(argv: list[str] | None = None) -> int:
    """Run a migration and return the process exit code."""
    args = build_parser().parse_args(argv)

    try:
        config = load_config()
    except ValueError as exc:
        logging.basicConfig(level=logging.INFO, format=LOG_FORMAT)
        logger.error("Invalid configuration: %s", exc)
        return 1

    level = logging.DEBUG if args.verbose else config.log_level
    logging.basicConfig(level=level, format=LOG_FORMAT)

    try:
        report = orchestrator_from_config(config).run(
            source_account=args.source_account,
            destination_account=args.destination_account,
            source_folder=args.source_folder,
            destination_folder=args.destination_folder,
        )
    except Exception as exc:
        logger.exception("Unable to migrate: %s", exc)
        return 1

    if args.report is not None:
        try:
            args.report.write_text(json.dumps(report.to_dict(), indent=2), encoding="utf-8")
        except OSError as exc:
            logger.error("Unable to write report to %s: %s", args.report, exc)
            return 1
        logger.info("Report written to %s", args.report)

    logger.info(
        "Migration complete; files:%d;incomplete:%d", len(report.records), len(report.incomplete)
    )
    return 0
