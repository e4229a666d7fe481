"""
storefront/maintenance.py — Operator commands run outside the API process

Usage:
    python -m storefront.maintenance prune-logs            # keep LOG_RETENTION_DAYS
    python -m storefront.maintenance prune-logs --days 90
"""
from __future__ import annotations

import argparse
import sys
from typing import Optional

from loguru import logger

from storefront.config import Settings, get_settings
from storefront.core.logging import SecurityLogger, setup_logging


def prune_security_logs(settings: Optional[Settings] = None, days: Optional[int] = None) -> int:
    """Delete security/audit log files older than the retention window."""
    settings = settings or get_settings()
    days_to_keep = days if days is not None else settings.log_retention_days
    removed = SecurityLogger(settings.logs_dir, settings.environment).cleanup_old_logs(days_to_keep)
    logger.info(f"Removed {removed} log files older than {days_to_keep} days from {settings.logs_dir}.")
    return removed


def main(argv: Optional[list[str]] = None) -> int:
    parser = argparse.ArgumentParser(description="Storefront API maintenance commands")
    commands = parser.add_subparsers(dest="command", required=True)

    prune = commands.add_parser("prune-logs", help="Delete old security/audit log files")
    prune.add_argument("--days", type=int, default=None, help="Days to keep (default: LOG_RETENTION_DAYS)")

    args = parser.parse_args(argv)
    settings = get_settings()
    setup_logging(settings.log_level)

    if args.command == "prune-logs":
        if args.days is not None and args.days < 1:
            parser.error("--days must be at least 1")
        prune_security_logs(settings, args.days)
    return 0


if __name__ == "__main__":
    sys.exit(main())
