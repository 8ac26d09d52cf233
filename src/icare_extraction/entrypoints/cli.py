#!/usr/bin/env python3
"""
Extract mCODE data for the patients in the configured roster and post it to ICAREdata.

Usage:
    # Extract everything and post it
    icare-extract -p config/csv.config.json

    # Extract only data newer than the last successful run
    icare-extract --no-all-entries -l logs/run-logs.json

    # Extract without posting
    icare-extract --test-extraction
"""

import argparse
import asyncio
import logging
import sys
from pathlib import Path

from icare_extraction import config
from icare_extraction.adapters.extraction_client import build_extraction_client
from icare_extraction.adapters.messaging_client import get_messaging_client
from icare_extraction.adapters.roster import parse_patient_ids
from icare_extraction.domain import commands
from icare_extraction.service_layer import messagebus
from icare_extraction.service_layer.unit_of_work import JsonFileUnitOfWork

logger = logging.getLogger(__name__)


def parse_args(argv=None):
    parser = argparse.ArgumentParser(
        description="Extract mCODE data per patient and post it as FHIR messages"
    )

    parser.add_argument("-f", "--from-date", help="The earliest date and time to search")
    parser.add_argument("-t", "--to-date", help="The latest date and time to search")
    parser.add_argument(
        "-a", "--all-entries",
        action=argparse.BooleanOptionalAction,
        default=True,
        help="Do not filter data by date (default); --no-all-entries filters by date using the run log",
    )
    parser.add_argument(
        "-p", "--path-to-config",
        default=config.get_config_path(),
        help="Specify relative path to config to use (default: %(default)s)",
    )
    parser.add_argument(
        "-l", "--path-to-run-logs",
        default=config.get_run_log_path(),
        help="Specify relative path to log file of previous runs (default: %(default)s)",
    )
    parser.add_argument("-d", "--debug", action="store_true", help="Output extra debugging information")
    parser.add_argument(
        "--test-extraction",
        action="store_true",
        help="Perform extraction but do not post any data",
    )
    parser.add_argument(
        "--test-aws-auth",
        action="store_true",
        help="Authenticate the messaging client but do not extract or post any data",
    )

    return parser.parse_args(argv)


def configure_logging(debug: bool = False):
    level = logging.DEBUG if debug else getattr(logging, config.get_log_level(), logging.INFO)
    logging.basicConfig(
        level=level,
        format='%(asctime)s - %(name)s - %(levelname)s - %(message)s'
    )


async def run_app(args, extraction_client_factory=build_extraction_client, messaging_client_factory=get_messaging_client):
    """Check config, then run the requested commands through the message bus."""
    extraction_config = config.load_config(args.path_to_config)
    config.check_input_and_config(extraction_config, args.from_date, args.to_date, args.test_extraction)

    if args.test_aws_auth:
        uow = JsonFileUnitOfWork(args.path_to_run_logs, messaging_client=messaging_client_factory(extraction_config))
        await messagebus.handle(commands.CheckMessagingAuthentication(), uow)
        if not args.test_extraction:
            return []

    if not args.all_entries:
        config.check_log_file(args.path_to_run_logs)

    patient_ids = parse_patient_ids(Path(extraction_config.patient_id_csv_path))
    messaging_client = None if args.test_extraction else messaging_client_factory(extraction_config)

    uow = JsonFileUnitOfWork(
        args.path_to_run_logs,
        extraction_client=extraction_client_factory(extraction_config),
        messaging_client=messaging_client,
    )
    command = commands.ExtractAndPostData(
        patient_ids=patient_ids,
        from_date=args.from_date,
        to_date=args.to_date,
        all_entries=args.all_entries,
        test_extraction=args.test_extraction,
        debug=args.debug,
        notification_info=extraction_config.notification_info,
        post_empty_bundles=extraction_config.post_empty_bundles,
    )
    return await messagebus.handle(command, uow)


def main(argv=None) -> int:
    args = parse_args(argv)
    configure_logging(args.debug)

    try:
        asyncio.run(run_app(args))
    except Exception as e:
        logger.error(str(e))
        logger.debug("Fatal error", exc_info=True)
        return 1
    return 0


if __name__ == "__main__":
    sys.exit(main())
