"""
Command line entry point.

    ddsportal attachments-cleanup [--dry-run] [--days N] [--json]
    ddsportal process-watermarks [--limit N]
"""
import argparse
import json
import sys
from typing import List, Optional

import structlog

from ddsportal.config import get_settings
from ddsportal.database import SessionLocal, init_db
from ddsportal.middleware.logging import configure_logging
from ddsportal.services.attachment_cleanup import AttachmentCleanupService
from ddsportal.services.file_processing_service import FileProcessingService

logger = structlog.get_logger(__name__)


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(prog="ddsportal", description="DDS Portal maintenance commands")
    subcommands = parser.add_subparsers(dest="command", required=True)

    cleanup = subcommands.add_parser(
        "attachments-cleanup",
        help="Clean up orphaned attachment files that have no database record",
    )
    cleanup.add_argument(
        "--dry-run",
        action="store_true",
        help="Show what would be deleted without actually deleting",
    )
    cleanup.add_argument(
        "--days",
        type=int,
        default=None,
        help="Only consider files older than this many days "
             f"(default: {get_settings().orphaned_file_cleanup_days})",
    )
    cleanup.add_argument(
        "--json",
        action="store_true",
        dest="as_json",
        help="Print the summary as JSON",
    )

    watermarks = subcommands.add_parser(
        "process-watermarks",
        help="Run pending watermark jobs in this process",
    )
    watermarks.add_argument("--limit", type=int, default=10, help="Maximum jobs to run (default: 10)")

    return parser


def attachments_cleanup(dry_run: bool, days: Optional[int], as_json: bool) -> int:
    db = SessionLocal()
    try:
        summary = AttachmentCleanupService(db).run(dry_run=dry_run, days=days)
    finally:
        db.close()

    if as_json:
        print(json.dumps(summary.to_dict(), indent=2))
    else:
        if dry_run:
            print("DRY RUN MODE - No files will be deleted")
        print(f"Looking for orphaned files older than {summary.threshold_days} days...")
        for path in summary.orphan_files:
            print(f"  {'Would delete' if dry_run else 'Orphaned'}: {path}")
        for error in summary.errors:
            print(f"  Error: {error['path']}: {error['error']}", file=sys.stderr)
        print()
        print("\n".join(summary.lines()))

    return 1 if summary.errors else 0


def process_watermarks(limit: int) -> int:
    db = SessionLocal()
    try:
        counts = FileProcessingService(db).process_watermarking_queue(limit=limit)
    finally:
        db.close()

    print(
        f"Processed {counts['processed']} job(s): {counts['completed']} completed, "
        f"{counts['failed']} failed, {counts['skipped']} skipped"
    )
    return 1 if counts["failed"] else 0


def main(argv: Optional[List[str]] = None) -> int:
    parser = build_parser()
    args = parser.parse_args(argv)
    if getattr(args, "days", None) is not None and args.days < 0:
        parser.error("--days must be zero or greater")

    settings = get_settings()
    configure_logging(settings.log_level, json_logs=settings.json_logs)
    init_db()
    logger.info("cli_command_started", command=args.command)

    if args.command == "attachments-cleanup":
        return attachments_cleanup(args.dry_run, args.days, args.as_json)
    return process_watermarks(args.limit)


if __name__ == "__main__":
    sys.exit(main())
