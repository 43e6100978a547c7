"""Command-line entry point.

Usage:
    alma-batch run [--from-page N] [--to-page N] [--concurrency N | --sequential]
    alma-batch rerun FILE [FILE ...]
    python -m alma_batch ...

Exit codes: 0 when the run completed (even with per-user errors), 1 when it
could not start or its first listing failed, 2 on usage errors.
"""

from __future__ import annotations

import argparse
import asyncio
import logging
import os
from pathlib import Path
from typing import TYPE_CHECKING

from alma_batch.client import AlmaClient
from alma_batch.config import ConfigFileError, resolve_config
from alma_batch.core.exceptions import AlmaBatchError, ConfigurationError
from alma_batch.orchestrator import BatchOrchestrator
from alma_batch.reporting import log_summary
from alma_batch.telemetry import SimpleReporter, TelemetryContext, telemetry_enabled

if TYPE_CHECKING:
    from collections.abc import Sequence

    from alma_batch.config import FrozenConfig
    from alma_batch.core.types import PageResult, RunSummary
    from alma_batch.telemetry import TelemetryContextProtocol

log = logging.getLogger(__name__)

LOG_LEVEL_ENV_VAR = "ALMA_BATCH_LOG_LEVEL"
LOG_FORMAT = "%(asctime)s %(levelname)s %(name)s: %(message)s"

EXIT_OK = 0
EXIT_FATAL = 1


def _positive_int(value: str) -> int:
    try:
        number = int(value)
    except ValueError:
        raise argparse.ArgumentTypeError(f"expected an integer, got {value!r}") from None
    if number < 1:
        raise argparse.ArgumentTypeError(f"must be >= 1, got {number}")
    return number


def _non_negative_int(value: str) -> int:
    try:
        number = int(value)
    except ValueError:
        raise argparse.ArgumentTypeError(f"expected an integer, got {value!r}") from None
    if number < 0:
        raise argparse.ArgumentTypeError(f"must be >= 0, got {number}")
    return number


def build_parser() -> argparse.ArgumentParser:
    """Build the ``alma-batch`` argument parser."""
    common = argparse.ArgumentParser(add_help=False)
    common.add_argument(
        "--env-file", type=Path, help="Read configuration from this .env file"
    )
    common.add_argument(
        "--config-file", type=Path, help="Read configuration from this TOML file"
    )
    common.add_argument("--profile", help="Configuration profile to use")
    common.add_argument(
        "--log-level",
        default=os.getenv(LOG_LEVEL_ENV_VAR, "INFO"),
        type=str.upper,
        choices=["DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"],
        help=f"Logging level (default: ${LOG_LEVEL_ENV_VAR} or INFO)",
    )

    parser = argparse.ArgumentParser(
        prog="alma-batch",
        description="Clean up Alma user records in rate-limited batches",
    )
    subparsers = parser.add_subparsers(dest="command", required=True)

    run = subparsers.add_parser(
        "run", parents=[common], help="Process every page of users"
    )
    run.add_argument(
        "--from-page",
        type=_non_negative_int,
        default=0,
        help="First page to process (default: 0)",
    )
    run.add_argument(
        "--to-page",
        type=_non_negative_int,
        default=None,
        help="Last page to process, inclusive (default: the last page)",
    )
    concurrency = run.add_mutually_exclusive_group()
    concurrency.add_argument(
        "--concurrency",
        type=_positive_int,
        default=None,
        help="Maximum pages processed at once (default: unbounded)",
    )
    concurrency.add_argument(
        "--sequential",
        action="store_true",
        help="Process one page at a time",
    )

    rerun = subparsers.add_parser(
        "rerun",
        parents=[common],
        help="Reprocess the user ids listed one per line in files",
    )
    rerun.add_argument("files", nargs="+", type=Path, metavar="FILE")
    return parser


def configure_logging(level: str) -> None:
    """Configure root logging for a command-line run."""
    logging.basicConfig(level=level, format=LOG_FORMAT)
    # httpx logs full request URLs, which carry the API key.
    logging.getLogger("httpx").setLevel(logging.WARNING)
    logging.getLogger("httpcore").setLevel(logging.WARNING)


async def run_batch(
    config: FrozenConfig,
    *,
    from_page: int = 0,
    to_page: int | None = None,
    telemetry: TelemetryContextProtocol | None = None,
) -> RunSummary:
    """Run the full batch against the configured Alma instance."""
    async with AlmaClient.from_config(config, telemetry=telemetry) as client:
        orchestrator = BatchOrchestrator(
            client,
            config.rules,
            page_size=config.page_size,
            max_concurrency=config.max_concurrency,
            telemetry=telemetry,
        )
        return await orchestrator.run(from_page=from_page, to_page=to_page)


async def rerun_users(
    config: FrozenConfig,
    paths: Sequence[Path],
    *,
    telemetry: TelemetryContextProtocol | None = None,
) -> PageResult:
    """Reprocess the user ids listed in each file, in file order."""
    user_ids = [user_id for path in paths for user_id in _read_ids(path)]
    async with AlmaClient.from_config(config, telemetry=telemetry) as client:
        orchestrator = BatchOrchestrator(
            client, config.rules, page_size=config.page_size, telemetry=telemetry
        )
        return await orchestrator.process_users(user_ids, verbose=True)


def _read_ids(path: Path) -> list[str]:
    try:
        text = path.read_text(encoding="utf-8")
    except OSError as e:
        raise ConfigFileError(path, f"cannot read user id list: {e}", e) from e
    return [
        line.strip()
        for line in text.splitlines()
        if line.strip() and not line.lstrip().startswith("#")
    ]


def main(argv: Sequence[str] | None = None) -> int:
    """CLI entry point; returns the process exit code."""
    args = build_parser().parse_args(argv)
    configure_logging(args.log_level)

    overrides: dict[str, object] = {}
    if args.command == "run":
        if args.sequential:
            overrides["max_concurrency"] = 1
        elif args.concurrency is not None:
            overrides["max_concurrency"] = args.concurrency

    try:
        config = resolve_config(
            env_file=args.env_file,
            config_file=args.config_file,
            profile=args.profile,
            **overrides,
        )
    except ConfigurationError as e:
        log.critical("Configuration error: %s", e)
        return EXIT_FATAL

    reporter = SimpleReporter() if telemetry_enabled() else None
    telemetry = TelemetryContext(reporter) if reporter else None

    try:
        if args.command == "run":
            summary = asyncio.run(
                run_batch(
                    config,
                    from_page=args.from_page,
                    to_page=args.to_page,
                    telemetry=telemetry,
                )
            )
            log_summary(summary)
        else:
            result = asyncio.run(rerun_users(config, args.files, telemetry=telemetry))
            log.info(
                "Rerun finished: %d users updated. %d errors.",
                result.updated,
                result.failed,
            )
    except AlmaBatchError as e:
        log.critical("Batch run failed: %s", e)
        return EXIT_FATAL

    if reporter is not None:
        log.info("%s", reporter.get_report())
    return EXIT_OK
