"""
Portfolio Exporter - CLI.

============================================================
RESPONSIBILITY
============================================================
Command-line front end for offline exports.

- Restores saved state from the blob store
- Replays a capture of intercepted API responses
- Runs one export with the requested filters

============================================================
USAGE
============================================================
python -m portfolio_exporter.cli capture.jsonl
python -m portfolio_exporter.cli capture.jsonl --format structured --symbol btc
python -m portfolio_exporter.cli capture.jsonl --start-date 2025-01-01 --end-date 2025-01-31

============================================================
"""

import argparse
import asyncio
import dataclasses
import logging
import sys
from datetime import date
from pathlib import Path
from typing import List, Optional

from .blob_store import SqlBlobStore
from .capture import CaptureReplayer, read_capture
from .config import ExporterConfig, set_config
from .exceptions import ExporterError, NoMatchingPositionsError
from .export import ExportKind, ExportQuery, ExportService
from .reconciler import IngestionReconciler
from .sinks import FileArtifactSink
from .store import TradeDataStore


logger = logging.getLogger(__name__)


# ============================================================
# CLI ARGUMENT PARSER
# ============================================================

def create_parser() -> argparse.ArgumentParser:
    """Create the argument parser."""
    parser = argparse.ArgumentParser(
        prog="portfolio-exporter",
        description="Export closed positions with per-event detail from captured API traffic",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog="""
Examples:
  %(prog)s capture.jsonl
  %(prog)s capture.jsonl --format structured --symbol eth
  %(prog)s capture.jsonl --start-date 2025-01-01 --end-date 2025-01-31
        """,
    )

    parser.add_argument(
        "capture",
        type=str,
        metavar="CAPTURE",
        help="JSON Lines file of intercepted responses",
    )

    # --------------------------------------------------------
    # Export Options
    # --------------------------------------------------------
    export_group = parser.add_argument_group("Export Options")

    export_group.add_argument(
        "--format", "-f",
        dest="kind",
        type=str,
        choices=[k.value for k in ExportKind],
        default=ExportKind.TEXT.value,
        help="Artifact format (default: text)",
    )

    export_group.add_argument(
        "--symbol",
        type=str,
        help="Case-insensitive substring of the market symbol",
    )

    export_group.add_argument(
        "--start-date",
        type=str,
        metavar="YYYY-MM-DD",
        help="Earliest close date (inclusive)",
    )

    export_group.add_argument(
        "--end-date",
        type=str,
        metavar="YYYY-MM-DD",
        help="Latest close date (inclusive, whole day)",
    )

    export_group.add_argument(
        "--output-dir",
        type=str,
        metavar="DIR",
        help="Directory for the exported file",
    )

    # --------------------------------------------------------
    # System Options
    # --------------------------------------------------------
    system_group = parser.add_argument_group("System Options")

    system_group.add_argument(
        "--config",
        type=str,
        metavar="PATH",
        help="YAML config file (default: environment)",
    )

    system_group.add_argument(
        "--database-url",
        type=str,
        metavar="URL",
        help="SQLAlchemy URL of the state store",
    )

    system_group.add_argument(
        "--timeout",
        type=float,
        metavar="SECONDS",
        help="Detail collection timeout",
    )

    system_group.add_argument(
        "--log-level",
        type=str,
        choices=["DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"],
        default="INFO",
        help="Logging level (default: INFO)",
    )

    return parser


# ============================================================
# CLI VALIDATION
# ============================================================

def _parse_date(value: Optional[str]) -> Optional[date]:
    return date.fromisoformat(value) if value else None


def validate_args(args: argparse.Namespace) -> List[str]:
    """
    Validate CLI arguments.

    Returns:
        List of validation errors
    """
    errors = []

    if not Path(args.capture).is_file():
        errors.append(f"Capture file not found: {args.capture}")

    try:
        start = _parse_date(args.start_date)
        end = _parse_date(args.end_date)
        if start and end and start > end:
            errors.append("--start-date must not be after --end-date")
    except ValueError as e:
        errors.append(f"Invalid date format: {e}")

    if args.timeout is not None and args.timeout <= 0:
        errors.append("--timeout must be positive")

    return errors


# ============================================================
# CLI CONFIGURATION BUILDER
# ============================================================

def build_config(args: argparse.Namespace) -> ExporterConfig:
    """File or environment config, then CLI overrides."""
    if args.config:
        config = ExporterConfig.from_yaml(Path(args.config))
    else:
        config = ExporterConfig.from_env()

    overrides = {}
    if args.output_dir:
        overrides["output_dir"] = args.output_dir
    if args.database_url:
        overrides["database_url"] = args.database_url
    if args.timeout is not None:
        overrides["detail_timeout_seconds"] = args.timeout

    return dataclasses.replace(config, **overrides) if overrides else config


def build_query(args: argparse.Namespace) -> ExportQuery:
    return ExportQuery(
        symbol=args.symbol or None,
        start_date=_parse_date(args.start_date),
        end_date=_parse_date(args.end_date),
    )


def setup_logging(level: str = "INFO") -> None:
    logging.basicConfig(
        level=getattr(logging, level.upper(), logging.INFO),
        format="%(asctime)s | %(levelname)s | %(name)s | %(message)s",
        datefmt="%Y-%m-%d %H:%M:%S",
    )


# ============================================================
# MAIN ENTRY POINT
# ============================================================

async def async_main(args: argparse.Namespace, config: ExporterConfig) -> int:
    """
    Restore, replay, export.

    Returns:
        Exit code
    """
    blob_store = SqlBlobStore(config.database_url)
    try:
        store = TradeDataStore(
            blob_store,
            storage_key=config.storage_key,
            default_decimals=config.default_asset_decimals,
        )
        store.restore()

        reconciler = IngestionReconciler(
            store,
            config=config,
            on_status=lambda message: logger.info(f"Status: {message}"),
        )
        replayer = CaptureReplayer(read_capture(args.capture), reconciler)
        reconciler.set_detail_trigger(replayer.emit_details)
        replayer.replay()

        service = ExportService(reconciler, FileArtifactSink(config.output_dir), config)
        try:
            result = await service.export(ExportKind(args.kind), build_query(args))
        except NoMatchingPositionsError as e:
            print(e.message, file=sys.stderr)
            return 1

        if result.warning:
            print(f"Warning: {result.warning}", file=sys.stderr)
        print(f"Exported {result.position_count} positions to {result.location}")
        return 0
    finally:
        blob_store.dispose()


def main(argv: Optional[List[str]] = None) -> int:
    """
    Main CLI entry point.

    Args:
        argv: Command line arguments (default: sys.argv[1:])

    Returns:
        Exit code
    """
    parser = create_parser()
    args = parser.parse_args(argv)

    setup_logging(args.log_level)

    errors = validate_args(args)
    if errors:
        for error in errors:
            print(f"Error: {error}", file=sys.stderr)
        return 1

    try:
        config = build_config(args)
        set_config(config)
        return asyncio.run(async_main(args, config))
    except KeyboardInterrupt:
        logger.info("Interrupted by user")
        return 130
    except ExporterError as e:
        logger.error(f"Export failed: {e.message}")
        return 1


# ============================================================
# MODULE EXECUTION
# ============================================================

if __name__ == "__main__":
    sys.exit(main())
