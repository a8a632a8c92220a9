"""
Archive gate for WAL segments
Exits 0 once the streaming client has received a segment newer than the one
being archived, so it can be chained in front of archive_command
"""
import argparse
import logging
import os
import sys
from db_config import (
    ConfigError,
    DEFAULT_APPNAME,
    DEFAULT_INITIAL_DELAY,
    DEFAULT_POLL_INTERVAL,
    PollerConfig,
)
from db_connection import DatabaseConnection, StatusSourceError
from readiness import EXIT_FAILURE, ReadinessPoller

logger = logging.getLogger(__name__)


class UsageAction(argparse.Action):
    """Print usage and exit with failure, as -?/--help always does here"""

    def __init__(self, option_strings, dest=argparse.SUPPRESS, default=argparse.SUPPRESS, help=None):
        super().__init__(option_strings=option_strings, dest=dest, default=default, nargs=0, help=help)

    def __call__(self, parser, namespace, values, option_string=None):
        parser.print_help()
        parser.exit(EXIT_FAILURE)


def non_negative_int(value: str) -> int:
    """argparse type for sleep intervals"""
    try:
        number = int(value)
    except (TypeError, ValueError):
        raise argparse.ArgumentTypeError(f"invalid number of seconds: {value!r}")
    if number < 0:
        raise argparse.ArgumentTypeError(f"number of seconds must not be negative: {value}")
    return number


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="retain_wal",
        description="Check if a WAL file is ready to be archived, waiting until it is",
        add_help=False,
    )
    parser.add_argument("filename", help="WAL segment file name (or path) to archive")
    parser.add_argument("connstr", help="libpq connection string for the primary")

    source = parser.add_mutually_exclusive_group()
    source.add_argument(
        "-a", "--appname",
        default=None,
        help=f"Application name to look for (default: {DEFAULT_APPNAME})"
    )
    source.add_argument(
        "-q", "--query",
        default=None,
        help="Custom query returning one row of (position, file name)"
    )

    parser.add_argument(
        "-s", "--sleep",
        type=non_negative_int,
        default=DEFAULT_POLL_INTERVAL,
        help="Seconds to sleep between attempts (default: %(default)s)"
    )
    parser.add_argument(
        "-i", "--initialsleep",
        type=non_negative_int,
        default=DEFAULT_INITIAL_DELAY,
        help="Seconds to sleep before the first attempt (default: %(default)s)"
    )
    parser.add_argument(
        "-v", "--verbose",
        action="store_true",
        help="Verbose output"
    )
    parser.add_argument("-?", "--help", action=UsageAction, help="Show help")
    return parser


def main(argv=None) -> int:
    parser = build_parser()
    args = parser.parse_args(argv)

    try:
        config = PollerConfig(
            client_selector=args.appname,
            custom_query=args.query,
            poll_interval=args.sleep,
            initial_delay=args.initialsleep,
            verbose=args.verbose,
        ).validate()
    except ConfigError as e:
        parser.error(str(e))

    # archive_command hands over %p, a path relative to the data directory
    segment = os.path.basename(args.filename)
    if not segment:
        parser.error("segment file name must not be empty")

    logging.basicConfig(
        level=logging.INFO,
        format='%(asctime)s - %(name)s - %(levelname)s - %(message)s'
    )

    db = DatabaseConnection(args.connstr)
    try:
        db.connect()
        return ReadinessPoller(config, db).determine_readiness(segment)
    except StatusSourceError as e:
        logger.error(f"✗ {e}")
        return EXIT_FAILURE
    except KeyboardInterrupt:
        logger.info("Polling stopped by user")
        return EXIT_FAILURE
    finally:
        db.close()


if __name__ == "__main__":
    sys.exit(main())
