"""Database and maintenance CLI.

Usage:
    python src/manage.py setup-db         # Create all tables
    python src/manage.py drop-db          # Drop all tables
    python src/manage.py run-automation   # Auto-deliver long-shipped orders
    python src/manage.py retry-webhooks   # Replay stored, unprocessed webhooks
"""

import argparse
import sys
from datetime import timedelta

from bootstrap import build_container
from shared.config import load_settings
from shared.domain import init_domain
from shared.logging import configure_logging
from shared.utils.db import drop_db, setup_db


def setup_database(settings):
    """Create every table."""
    domain = init_domain(settings.database.url)
    print(f"Creating schema at {settings.database.url}...")
    setup_db(domain)
    print("Done.")


def drop_database(settings):
    """Drop every table."""
    domain = init_domain(settings.database.url)
    print(f"Dropping schema at {settings.database.url}...")
    drop_db(domain)
    print("Done.")


def run_automation(settings):
    container = build_container(settings)
    try:
        report = container.run_automation()
    finally:
        container.close()
    print(f"Delivered {len(report.delivered)} order(s), {len(report.failed)} failure(s).")
    return 1 if report.failed else 0


def retry_webhooks(settings, limit: int, min_age_minutes: int):
    container = build_container(settings)
    try:
        outcomes = container.reconciliation.retry_unprocessed(limit=limit, min_age=timedelta(minutes=min_age_minutes))
    finally:
        container.close()
    rejected = sum(1 for outcome in outcomes if outcome.kind == "rejected")
    print(f"Replayed {len(outcomes)} webhook(s), {rejected} still rejected.")
    return 0


def main(argv=None):
    parser = argparse.ArgumentParser(description="Order reconciliation management")
    parser.add_argument("--config", help="Path to a TOML settings file")
    subparsers = parser.add_subparsers(dest="command", required=True)

    subparsers.add_parser("setup-db", help="Create all database tables")
    subparsers.add_parser("drop-db", help="Drop all database tables")
    subparsers.add_parser("run-automation", help="Mark long-shipped orders delivered")

    retry_parser = subparsers.add_parser("retry-webhooks", help="Replay unprocessed webhook events")
    retry_parser.add_argument("--limit", type=int, default=50)
    retry_parser.add_argument("--min-age-minutes", type=int, default=1)

    args = parser.parse_args(argv)
    settings = load_settings(args.config)
    configure_logging(settings.env)

    if args.command == "setup-db":
        setup_database(settings)
        return 0
    if args.command == "drop-db":
        drop_database(settings)
        return 0
    if args.command == "run-automation":
        return run_automation(settings)
    if args.command == "retry-webhooks":
        return retry_webhooks(settings, args.limit, args.min_age_minutes)

    parser.print_help()
    return 1


if __name__ == "__main__":
    sys.exit(main())
