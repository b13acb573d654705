#!/usr/bin/env python3
"""
bankrecon CLI - Bank statement import and reconciliation.

Usage:
    bankrecon --user Alice add-bank "BNP Paribas" --bic BNPAFRPP
    bankrecon --user Alice add-account --bank-id 1 "Compte courant" --iban FR7630004000031234567890143
    bankrecon --user Alice accounts
    bankrecon --user Alice preview releve.ofx --bank-id 1 --output preview.json
    bankrecon --user Alice commit preview.json --bank-id 1
    bankrecon --user Alice history
"""

import argparse
import json
import logging
import os
import sys
from decimal import Decimal, InvalidOperation
from pathlib import Path

from bankrecon.core.audit import ImportLogger
from bankrecon.core.database import DatabaseManager
from bankrecon.core.directory import (
    ACCOUNT_TYPES,
    create_account,
    create_bank,
    get_bank,
    get_or_create_user,
    list_accounts,
    list_banks,
)
from bankrecon.core.exceptions import BankReconError
from bankrecon.core.preferences import ImportPreferences
from bankrecon.core.security import UserContextManager, mask_identifier
from bankrecon.services.import_service import ImportService
from bankrecon.services.preview import ImportPreview

logger = logging.getLogger(__name__)

# Constants
DEFAULT_PASSWORD = "bankrecon_secure"
DEFAULT_DB = "bankrecon.db"


def get_db_path(cli_value: str = None) -> Path:
    """Database path from the CLI, then BANKRECON_DB, then the working directory."""
    if cli_value:
        return Path(cli_value)
    if 'BANKRECON_DB' in os.environ:
        return Path(os.environ['BANKRECON_DB'])
    return Path.cwd() / DEFAULT_DB


def setup_logging(verbose: bool = False, debug: bool = False):
    """Configure logging."""
    if debug:
        level = logging.DEBUG
    elif verbose:
        level = logging.INFO
    else:
        level = logging.WARNING

    logging.basicConfig(
        level=level,
        format="%(asctime)s - %(name)s - %(levelname)s - %(message)s"
    )


def _decimal(value: str) -> Decimal:
    try:
        return Decimal(value)
    except InvalidOperation:
        raise argparse.ArgumentTypeError(f"not a number: {value}")


def print_preview(preview: ImportPreview):
    """Human-readable summary of a preview."""
    print(f"\nPreview ({preview.file_format}{': ' + preview.filename if preview.filename else ''})")

    print(f"\nAccounts:")
    for index, entry in enumerate(preview.accounts):
        target = "NEW" if entry.is_new else f"-> #{entry.matched_account_id} ({entry.match_method})"
        ident = entry.masked_identifier or entry.external_account_id
        balance = f"  balance {entry.balance} {entry.currency}" if entry.balance is not None else ""
        print(f"  [{index}] {entry.display_name} [{ident}] {target}{balance}")

    print(f"\nTransactions:")
    for txn in preview.transactions:
        flag = "DUP" if txn.is_duplicate else "   "
        print(
            f"  {flag} {txn.date.isoformat()} {txn.amount:>12} "
            f"{txn.classification.value:<20} {txn.confidence:.2f}  {txn.description[:50]}"
        )

    summary = preview.summary
    print(f"\nSummary: {summary.total} total, {summary.new} new, {summary.duplicates} duplicates")

    if preview.warnings:
        print(f"\nWarnings:")
        for w in preview.warnings:
            print(f"  - {w}")


# ============================================================================
# Command Handlers
# ============================================================================

def cmd_add_bank(args, conn, user_id: int):
    """Handle add-bank command."""
    bank = create_bank(conn, user_id, args.name, bic=args.bic, bank_code=args.bank_code)
    print(f"Bank #{bank.id} created: {bank.name}")
    return 0


def cmd_add_account(args, conn, user_id: int):
    """Handle add-account command."""
    bank = get_bank(conn, args.bank_id, user_id=user_id)
    account = create_account(
        conn,
        user_id=user_id,
        bank_id=bank.id,
        name=args.name,
        iban=args.iban,
        account_number=args.account_number,
        account_type=args.type,
        currency=args.currency,
        balance=args.balance,
    )
    conn.commit()
    ident = mask_identifier(account.iban or account.account_number) or "no identifier"
    print(f"Account #{account.id} created at {bank.name}: {account.name} [{ident}]")
    return 0


def cmd_accounts(args, conn, user_id: int):
    """Handle accounts command - list banks and their accounts."""
    banks = list_banks(conn, user_id)
    if not banks:
        print("No banks registered")
        return 0

    for bank in banks:
        print(f"\n#{bank.id} {bank.name}{' (' + bank.bic + ')' if bank.bic else ''}")
        accounts = list_accounts(conn, user_id, bank.id)
        if not accounts:
            print("  (no accounts)")
        for account in accounts:
            ident = mask_identifier(account.iban or account.account_number) or "-"
            auto = " [auto]" if account.auto_detected else ""
            print(
                f"  #{account.id} {account.name:<30} {ident:<26} "
                f"{account.account_type:<12} {account.balance} {account.currency}{auto}"
            )
    return 0


def cmd_preview(args, conn, user_id: int, preferences: ImportPreferences):
    """Handle preview command - parse a file without writing anything."""
    file_path = Path(args.file)
    if not file_path.exists():
        print(f"File not found: {file_path}")
        return 1

    service = ImportService(conn, preferences)
    preview = service.preview_file(
        user_id=user_id,
        bank_id=args.bank_id,
        path=file_path,
        target_account_id=args.account_id,
    )
    print_preview(preview)

    if args.output:
        output = Path(args.output)
        output.write_text(json.dumps(preview.to_dict(), indent=2, ensure_ascii=False), encoding='utf-8')
        print(f"\nPreview written to: {output}")
    return 0


def cmd_commit(args, conn, user_id: int, preferences: ImportPreferences):
    """Handle commit command - apply a previously saved preview."""
    preview_path = Path(args.preview)
    if not preview_path.exists():
        print(f"Preview file not found: {preview_path}")
        return 1

    preview = ImportPreview.from_dict(json.loads(preview_path.read_text(encoding='utf-8')))
    service = ImportService(conn, preferences)
    result = service.commit(user_id=user_id, bank_id=args.bank_id, preview=preview)

    print(f"\nCommit Results:")
    print(f"  Imported:           {result.imported_count}")
    print(f"  Duplicates skipped: {result.duplicates_skipped}")
    print(f"  Accounts synced:    {result.accounts_synced}")
    print(f"  Import log:         #{result.import_log_id}")
    return 0


def cmd_history(args, conn, user_id: int):
    """Handle history command - list past import runs."""
    entries = ImportLogger(conn).history(user_id, limit=args.limit)
    if not entries:
        print("No imports yet")
        return 0

    for entry in entries:
        print(
            f"  #{entry.id} {entry.created_at:%Y-%m-%d %H:%M} {entry.status:<7} "
            f"{entry.file_format or '-':<5} {entry.filename or '-':<30} "
            f"{entry.imported}/{entry.total_rows} imported, {entry.duplicates} duplicates"
        )
    return 0


# ============================================================================
# Main Entry Point
# ============================================================================

def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog='bankrecon',
        description='bankrecon - Bank statement import and reconciliation',
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog="""
Examples:
  bankrecon --user Alice add-bank "BNP Paribas" --bic BNPAFRPP
  bankrecon --user Alice add-account --bank-id 1 "Compte courant" --iban FR76...
  bankrecon --user Alice preview releve.ofx --bank-id 1 --output preview.json
  bankrecon --user Alice commit preview.json --bank-id 1
  bankrecon --user Alice history
        """
    )

    # Global arguments
    parser.add_argument('--user', '-u', required=True, help='User name')
    parser.add_argument('--db', help='Database file (default: $BANKRECON_DB or ./bankrecon.db)')
    parser.add_argument('--db-password', default=DEFAULT_PASSWORD, help='Database password')
    parser.add_argument('--config', '-c', help='Import preferences JSON file')
    parser.add_argument('--verbose', '-v', action='store_true', help='Verbose output')
    parser.add_argument('--debug', action='store_true', help='Debug output')

    # Subcommands
    subparsers = parser.add_subparsers(dest='command', help='Command')

    bank_parser = subparsers.add_parser('add-bank', help='Register a bank')
    bank_parser.add_argument('name', help='Bank name')
    bank_parser.add_argument('--bic', help='BIC / SWIFT code')
    bank_parser.add_argument('--bank-code', help='National bank code')

    account_parser = subparsers.add_parser('add-account', help='Register a bank account')
    account_parser.add_argument('name', help='Display name')
    account_parser.add_argument('--bank-id', '-b', type=int, required=True, help='Bank id')
    account_parser.add_argument('--iban', help='IBAN')
    account_parser.add_argument('--account-number', help='Account number')
    account_parser.add_argument('--type', '-t', default='CHECKING',
                                choices=sorted(ACCOUNT_TYPES), help='Account type')
    account_parser.add_argument('--currency', default='EUR', help='Currency code')
    account_parser.add_argument('--balance', type=_decimal, help='Opening balance')

    subparsers.add_parser('accounts', help='List banks and accounts')

    preview_parser = subparsers.add_parser('preview', help='Preview a statement import')
    preview_parser.add_argument('file', help='Statement file (.csv, .xlsx, .xls, .ofx, .qfx)')
    preview_parser.add_argument('--bank-id', '-b', type=int, required=True, help='Bank id')
    preview_parser.add_argument('--account-id', '-a', type=int,
                                help='Import into this account (single-account files)')
    preview_parser.add_argument('--output', '-o', help='Write the preview as JSON')

    commit_parser = subparsers.add_parser('commit', help='Commit a saved preview')
    commit_parser.add_argument('preview', help='Preview JSON written by the preview command')
    commit_parser.add_argument('--bank-id', '-b', type=int, required=True, help='Bank id')

    history_parser = subparsers.add_parser('history', help='Show import history')
    history_parser.add_argument('--limit', '-n', type=int, default=20, help='Number of entries')

    return parser


def main(argv=None):
    """Main entry point."""
    parser = build_parser()
    args = parser.parse_args(argv)

    if not args.command:
        parser.print_help()
        return 1

    # Setup
    setup_logging(args.verbose, args.debug)
    preferences = ImportPreferences.load(Path(args.config) if args.config else None)

    # Initialize database
    db = DatabaseManager()
    try:
        conn = db.init(str(get_db_path(args.db)), args.db_password)
    except BankReconError as e:
        print(f"Database error: {e}")
        return 1

    # Route to command handler
    try:
        user_id = get_or_create_user(conn, args.user)
        with UserContextManager(user_id):
            if args.command == 'add-bank':
                return cmd_add_bank(args, conn, user_id)
            elif args.command == 'add-account':
                return cmd_add_account(args, conn, user_id)
            elif args.command == 'accounts':
                return cmd_accounts(args, conn, user_id)
            elif args.command == 'preview':
                return cmd_preview(args, conn, user_id, preferences)
            elif args.command == 'commit':
                return cmd_commit(args, conn, user_id, preferences)
            elif args.command == 'history':
                return cmd_history(args, conn, user_id)
            else:
                parser.print_help()
                return 1

    except KeyboardInterrupt:
        print("\nOperation cancelled")
        return 130
    except Exception as e:
        print(f"\nError: {e}")
        if args.debug:
            logger.exception("Command failed")
        return 1
    finally:
        db.close()


if __name__ == "__main__":
    sys.exit(main())
