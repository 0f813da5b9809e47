#!/usr/bin/env python3
"""
PeerWager CLI - administration for the peer review wager engine.

Commands:
  peerwager init-db             Apply the database schema
  peerwager open-account <id>   Create a user with the initial token grant
  peerwager audit <id>          Check a user's ledger against the cached balance
"""

from __future__ import annotations

import argparse
import importlib
import json
import logging
import sys
from types import ModuleType

import psycopg2

from ..core.config import EngineSettings
from ..core.exceptions import ConfigException, PeerWagerException
from ..core.ledger import TokenLedger, verify_chain
from ..core.logging import configure_logging
from ..core.store import Changeset

logger = logging.getLogger(__name__)

MIGRATIONS_PACKAGE = "peerwager.migrations"
MIGRATION = "001_peer_review_wagers"


def load_migration(name: str = MIGRATION) -> ModuleType:
    """Import a schema migration shipped in the ``peerwager.migrations`` package."""
    try:
        return importlib.import_module(f"{MIGRATIONS_PACKAGE}.{name}")
    except ModuleNotFoundError as e:
        raise ConfigException(f"Migration not found: {name}") from e


def get_store(settings: EngineSettings):
    """PostgreSQL store for the configured database."""
    from ..storage.postgres import PostgresReviewStore

    if not settings.database_url:
        raise ConfigException("PEERWAGER_DATABASE_URL is not set")
    return PostgresReviewStore(settings.database_url)


# ============================================================================
# Commands
# ============================================================================


def cmd_init_db(args: argparse.Namespace, settings: EngineSettings) -> int:
    """Apply (or with --down, drop) the schema."""
    store = get_store(settings)
    migration = load_migration()

    with store.get_cursor() as cur:
        conn = cur.connection
        if args.down:
            migration.down(conn)
        else:
            migration.up(conn)

    action = "Dropped" if args.down else "Applied"
    print(f"{action} migration {migration.version} ({migration.description})")
    return 0


def cmd_open_account(args: argparse.Namespace, settings: EngineSettings) -> int:
    """Create a user whose first ledger entry is the initial grant."""
    store = get_store(settings)
    if store.get_user(args.user_id) is not None:
        print(f"User already exists: {args.user_id}", file=sys.stderr)
        return 1

    balance = settings.initial_balance if args.balance is None else args.balance
    if balance < 0:
        print("Initial balance must be >= 0", file=sys.stderr)
        return 1

    changeset = Changeset()
    user = TokenLedger().open_account(changeset, args.user_id, balance)
    store.commit(changeset)
    print(json.dumps(user.to_dict(), indent=2))
    return 0


def cmd_audit(args: argparse.Namespace, settings: EngineSettings) -> int:
    """Verify the running sum of a user's ledger."""
    store = get_store(settings)
    user = store.get_user(args.user_id)
    if user is None:
        print(f"User not found: {args.user_id}", file=sys.stderr)
        return 1

    entries = store.ledger_entries(args.user_id)
    report = verify_chain(args.user_id, entries, user.token_balance)

    if args.json:
        print(json.dumps(report.to_dict(), indent=2))
    else:
        status = "consistent" if report.consistent else "INCONSISTENT"
        print(
            f"{args.user_id}: {report.entries} entries, "
            f"ledger {report.ledger_balance}, cached {report.cached_balance} ({status})"
        )
        for index in report.broken_at:
            entry = entries[index]
            print(f"  broken at #{index}: {entry.kind} {entry.amount:+d} -> {entry.balance_after} ({entry.note})")

    return 0 if report.consistent else 2


# ============================================================================
# Parser
# ============================================================================


def app() -> argparse.ArgumentParser:
    """Build the argument parser."""
    parser = argparse.ArgumentParser(
        prog="peerwager",
        description="Peer review wager engine administration",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog="""
Examples:
  peerwager init-db                     Create tables
  peerwager open-account alice -b 50    Create a user with 50 tokens
  peerwager audit alice --json          Ledger audit as JSON
        """,
    )
    parser.add_argument("--log-level", help="Override PEERWAGER_LOG_LEVEL")

    subparsers = parser.add_subparsers(dest="command", required=True)

    # init-db
    init_parser = subparsers.add_parser("init-db", help="Apply the database schema")
    init_parser.add_argument("--down", action="store_true", help="Drop the schema instead (destroys data)")

    # open-account
    open_parser = subparsers.add_parser("open-account", help="Create a user with the initial token grant")
    open_parser.add_argument("user_id", help="User ID")
    open_parser.add_argument("--balance", "-b", type=int, help="Initial balance (default: PEERWAGER_INITIAL_BALANCE)")

    # audit
    audit_parser = subparsers.add_parser("audit", help="Verify a user's ledger chain")
    audit_parser.add_argument("user_id", help="User ID")
    audit_parser.add_argument("--json", action="store_true", help="Output JSON")

    return parser


def main(argv: list[str] | None = None) -> int:
    """Main entry point."""
    parser = app()
    args = parser.parse_args(argv)

    try:
        settings = EngineSettings.from_env()
    except ConfigException as e:
        print(f"Configuration error: {e.message}", file=sys.stderr)
        return 1
    configure_logging(args.log_level or settings.log_level, json_format=settings.log_json)

    commands = {
        "init-db": cmd_init_db,
        "open-account": cmd_open_account,
        "audit": cmd_audit,
    }

    handler = commands.get(args.command)
    if handler is None:
        parser.print_help()
        return 1

    try:
        return handler(args, settings)
    except PeerWagerException as e:
        logger.error("%s failed: %s", args.command, e.message)
        print(f"Error: {e.message}", file=sys.stderr)
        return 1
    except psycopg2.Error as e:
        logger.error("%s failed: database error: %s", args.command, e)
        print(f"Database error: {e}", file=sys.stderr)
        return 1


if __name__ == "__main__":
    sys.exit(main())
