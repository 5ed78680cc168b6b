"""Command-line entry point for the upload intake."""

from __future__ import annotations

import argparse
import logging
import sys
from pathlib import Path

from ..config import IntakeConfig
from ..config.constants import VERBOSE_LOGGING_THRESHOLD
from ..core import ConfigError, LedgerError, RuntimeOptions, apply_runtime_options
from ..service import IntakeService, check_probe_available

LOG = logging.getLogger(__name__)


class IntakeCLI:
    """Parse arguments, load configuration and run the intake."""

    @staticmethod
    def setup_logging(level_name: str, verbosity: int) -> None:
        """Setup logging from the configured level and command-line verbosity."""
        level = getattr(logging, level_name, logging.INFO)

        log_format = (
            "%(asctime)s %(levelname)s: %(name)s: %(message)s"
            if verbosity >= VERBOSE_LOGGING_THRESHOLD
            else "%(asctime)s %(levelname)s: %(message)s"
        )

        logging.basicConfig(level=level, format=log_format, handlers=[logging.StreamHandler(sys.stderr)])

    def build_parser(self) -> argparse.ArgumentParser:
        """Build the argument parser."""
        parser = argparse.ArgumentParser(
            prog="upload-intake",
            description="Admit contributor audio uploads into the broadcast pipeline",
            formatter_class=argparse.RawDescriptionHelpFormatter,
            epilog="""
Examples:
  # Run the intake: tail the auth log and watch the inbound directory
  upload-intake /etc/upload-intake/config.yaml

  # Also accept "<key-path> <file-path>" lines on stdin
  some-session-handler | upload-intake config.yaml --stdin

  # Judge whatever is waiting in the inbound directory once, then exit
  upload-intake config.yaml --once
            """,
        )

        parser.add_argument("config", type=Path, help="Path to configuration file")
        parser.add_argument(
            "-v",
            "--verbose",
            action="count",
            default=0,
            help="Increase verbosity (-v for info, -vv for debug)",
        )
        parser.add_argument("--once", action="store_true", help="Process the inbound directory once and exit")
        parser.add_argument("--stdin", action="store_true", help="Read control lines from standard input")
        parser.add_argument("--poll-interval", type=float, help="Override the polling interval in seconds")

        return parser

    @staticmethod
    def create_runtime_options(args: argparse.Namespace) -> RuntimeOptions:
        """Create runtime options from CLI arguments."""
        return RuntimeOptions(
            verbose=args.verbose,
            poll_interval=args.poll_interval,
            once=args.once,
            read_stdin=args.stdin,
        )

    def run(self, args: list[str] | None = None) -> int:
        """Run the CLI with given arguments."""
        parser = self.build_parser()
        parsed_args = parser.parse_args(args)
        options = self.create_runtime_options(parsed_args)

        try:
            config = apply_runtime_options(IntakeConfig.load_from_file(parsed_args.config), options)
        except ConfigError as e:
            self.setup_logging("INFO", options.verbose)
            LOG.critical("Fatal configuration error: %s", e)
            return 1

        self.setup_logging(config.global_.log_level, options.verbose)

        if not check_probe_available():
            LOG.critical("ffprobe is required to measure upload airtime")
            return 1

        try:
            service = IntakeService(config, control_stream=sys.stdin if options.read_stdin else None)
        except LedgerError as e:
            LOG.critical("Cannot open identity ledger: %s", e)
            return 1

        try:
            if options.once:
                service.sweep_once()
            else:
                service.run_forever()
        except KeyboardInterrupt:
            LOG.info("Interrupted, shutting down")
            return 130  # Standard exit code for SIGINT

        return 0


def main() -> int:
    """Entry point for the CLI."""
    cli = IntakeCLI()
    return cli.run()


if __name__ == "__main__":
    sys.exit(main())
