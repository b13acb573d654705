"""
Import orchestration: preview, then commit.

Preview parses a file, resolves its accounts, classifies and deduplicates
every transaction, and returns an ImportPreview without writing anything.
Commit replays a (possibly edited) preview inside one database transaction.

Known race window: preview decisions are taken against a snapshot and the
commit may run much later. Two imports touching the same account can both
see a transaction as new. INSERT OR IGNORE on (account_id, external_id) is
the only guard; BEGIN IMMEDIATE serializes writers but no per-account lock
is held between preview and commit.
"""

import logging
from pathlib import Path
from typing import Dict, List, Optional, Union
import sqlite3

from bankrecon.core.audit import AuditLogger, ImportLogger
from bankrecon.core.database import transaction
from bankrecon.core.directory import (
    StoredAccount,
    create_account,
    get_account,
    get_bank,
    list_accounts,
    update_account_balance,
)
from bankrecon.core.exceptions import (
    AccountNotFoundError,
    BankReconError,
    CommitError,
    UserContextError,
    ValidationError,
)
from bankrecon.core.preferences import ImportPreferences
from bankrecon.core.security import (
    is_iban,
    mask_identifier,
    normalize_identifier,
    require_user_context,
)
from bankrecon.parsers import ParserRegistry
from bankrecon.services.account_resolver import AccountResolver
from bankrecon.services.classification import ClassificationEngine
from bankrecon.services.deduplication import DeduplicationResolver
from bankrecon.services.preview import (
    AccountPreviewEntry,
    CommitResult,
    ImportPreview,
    ImportSummary,
    TransactionPreviewEntry,
)

logger = logging.getLogger(__name__)

IMPORT_SOURCE = "IMPORT"


class ImportService:
    """
    Two-phase statement import.

    Usage:
        service = ImportService(conn)
        preview = service.preview(user_id=1, bank_id=2, buffer=data, extension=".ofx")
        # caller reviews / edits preview.accounts
        result = service.commit(user_id=1, bank_id=2, preview=preview)
        print(result.imported_count, result.duplicates_skipped)
    """

    def __init__(self, db_connection: sqlite3.Connection, preferences: ImportPreferences = None):
        self.conn = db_connection
        self.preferences = preferences or ImportPreferences()
        self.classifier = ClassificationEngine(db_connection, self.preferences)
        self.deduplicator = DeduplicationResolver(db_connection, self.preferences)
        self.resolver = AccountResolver(db_connection, self.preferences)

    # ------------------------------------------------------------------
    # Preview
    # ------------------------------------------------------------------

    @require_user_context
    def preview(
        self,
        user_id: int,
        bank_id: int,
        buffer: bytes,
        extension: str,
        target_account_id: Optional[int] = None,
        filename: Optional[str] = None,
    ) -> ImportPreview:
        """
        Build an import preview. Performs no writes.

        Raises:
            UnsupportedFormatError: If no parser handles the extension
            ParseError: If the file cannot be parsed
            AccountNotFoundError: If the bank or target account does not exist
            UserContextError: If the bank or target account is not the user's
        """
        self._check_bank(user_id, bank_id)
        parser = ParserRegistry.for_extension(extension, self.preferences)
        statement = parser.parse(buffer)

        entries, warnings = self.resolver.resolve(
            user_id, bank_id, statement.accounts, target_account_id
        )
        user_accounts = list_accounts(self.conn, user_id)

        preview = ImportPreview(
            bank_id=bank_id,
            file_format=statement.file_format,
            filename=filename,
            accounts=entries,
            warnings=list(statement.warnings) + warnings,
        )
        summary = ImportSummary()

        for index, (parsed, entry) in enumerate(zip(statement.accounts, entries)):
            target_id = None if entry.is_new else entry.matched_account_id
            for txn in parsed.transactions:
                result = self.classifier.classify(
                    user_id,
                    txn.description,
                    txn.amount,
                    bank_id,
                    explicit_beneficiary_id=txn.counterparty_id,
                    accounts=user_accounts,
                )
                is_duplicate = self.deduplicator.is_duplicate(target_id, txn)

                preview.transactions.append(TransactionPreviewEntry(
                    date=txn.date,
                    amount=txn.amount,
                    description=txn.description,
                    classification=result.classification,
                    confidence=result.confidence,
                    account_external_id=parsed.external_account_id,
                    account_index=index,
                    is_duplicate=is_duplicate,
                    source_external_id=txn.resolved_external_id,
                    matched_account_id=result.matched_account_id,
                    beneficiary_id=result.beneficiary_id,
                ))
                summary.total += 1
                if is_duplicate:
                    summary.duplicates += 1
                else:
                    summary.new += 1

        preview.summary = summary
        logger.info(
            f"Preview {statement.file_format} for bank {bank_id}: "
            f"{summary.total} transactions, {summary.new} new, {summary.duplicates} duplicates"
        )
        return preview

    def preview_file(
        self,
        user_id: int,
        bank_id: int,
        path: Union[str, Path],
        target_account_id: Optional[int] = None,
    ) -> ImportPreview:
        """Read a statement file from disk and preview it."""
        path = Path(path)
        return self.preview(
            user_id=user_id,
            bank_id=bank_id,
            buffer=path.read_bytes(),
            extension=path.suffix,
            target_account_id=target_account_id,
            filename=path.name,
        )

    # ------------------------------------------------------------------
    # Commit
    # ------------------------------------------------------------------

    @require_user_context
    def commit(self, user_id: int, bank_id: int, preview: ImportPreview) -> CommitResult:
        """
        Apply a preview atomically.

        Creates accounts marked new, refreshes balances of matched accounts,
        inserts every transaction not flagged as duplicate and appends the
        import log and audit rows. Either all of it is stored or none.

        Raises:
            UserContextError: If the bank or a matched account is not the user's
            ValidationError: If the preview is inconsistent
            CommitError: If the write failed and was rolled back
        """
        self._check_bank(user_id, bank_id)
        if preview.bank_id != bank_id:
            raise ValidationError(
                f"Preview was built for bank {preview.bank_id}, not {bank_id}", field="bank_id"
            )
        matched = self._validate_preview(user_id, preview)

        total = len(preview.transactions)
        try:
            with transaction(self.conn):
                audit = AuditLogger(self.conn, user_id=user_id, source=IMPORT_SOURCE)
                account_ids = self._sync_accounts(user_id, bank_id, preview, matched, audit)

                to_insert = [t for t in preview.transactions if not t.is_duplicate]
                imported = self._insert_transactions(user_id, account_ids, to_insert)
                duplicates = total - imported

                log_id = ImportLogger(self.conn).record(
                    user_id=user_id,
                    bank_id=bank_id,
                    filename=preview.filename,
                    file_format=preview.file_format,
                    status="SUCCESS",
                    total_rows=total,
                    imported=imported,
                    duplicates=duplicates,
                )
        except BankReconError as e:
            logger.error(f"Import commit for bank {bank_id} rolled back: {e}")
            self._record_failure(user_id, bank_id, preview, total)
            raise CommitError(f"Import failed and was rolled back: {e.message}") from e

        logger.info(
            f"Committed import {log_id}: {imported} imported, {duplicates} skipped, "
            f"{len(account_ids)} account(s) synced"
        )
        return CommitResult(
            imported_count=imported,
            accounts_synced=len(account_ids),
            duplicates_skipped=duplicates,
            import_log_id=log_id,
        )

    def _check_bank(self, user_id: int, bank_id: int) -> None:
        bank = get_bank(self.conn, bank_id)
        if bank.user_id != user_id:
            raise UserContextError(f"User {user_id} does not have access to bank {bank_id}")

    def _validate_preview(self, user_id: int, preview: ImportPreview) -> Dict[int, StoredAccount]:
        """Check ownership of every referenced account before any write."""
        matched: Dict[int, StoredAccount] = {}
        for entry in preview.accounts:
            if entry.is_new:
                if not entry.display_name:
                    raise ValidationError("New account needs a display name", field="display_name")
                continue
            if entry.matched_account_id is None:
                raise ValidationError(
                    f"Account {entry.external_account_id} is neither new nor matched",
                    field="matched_account_id",
                )
            account = get_account(self.conn, entry.matched_account_id)
            if account is None:
                raise AccountNotFoundError(entry.matched_account_id)
            if account.user_id != user_id:
                raise UserContextError(
                    f"User {user_id} does not have access to account {entry.matched_account_id}"
                )
            matched[account.id] = account

        for txn in preview.transactions:
            if not 0 <= txn.account_index < len(preview.accounts):
                raise ValidationError(
                    f"Transaction refers to unknown account index {txn.account_index}",
                    field="account_index",
                )
        return matched

    def _sync_accounts(
        self,
        user_id: int,
        bank_id: int,
        preview: ImportPreview,
        matched: Dict[int, StoredAccount],
        audit: AuditLogger,
    ) -> List[int]:
        """Create new accounts and refresh matched ones; returns stored ids by preview index."""
        account_ids = []
        for entry in preview.accounts:
            if entry.is_new:
                account = self._create_account(user_id, bank_id, entry)
                audit.log_insert("bank_accounts", account.id, {
                    "name": account.name,
                    "identifier": mask_identifier(account.iban or account.account_number),
                    "balance": account.balance,
                    "auto_detected": True,
                })
                account_ids.append(account.id)
                continue

            stored = matched[entry.matched_account_id]
            renamed = entry.display_name and entry.display_name != stored.name
            if entry.balance is not None or renamed:
                balance = entry.balance if entry.balance is not None else stored.balance
                balance_date = entry.balance_date if entry.balance is not None else stored.balance_date
                update_account_balance(
                    self.conn,
                    stored.id,
                    balance,
                    balance_date,
                    name=entry.display_name if renamed else None,
                )
                audit.log_update(
                    "bank_accounts",
                    stored.id,
                    old_values={"balance": stored.balance, "name": stored.name},
                    new_values={"balance": balance, "name": entry.display_name or stored.name},
                )
            account_ids.append(stored.id)
        return account_ids

    def _create_account(self, user_id: int, bank_id: int, entry: AccountPreviewEntry) -> StoredAccount:
        iban = account_number = None
        if not entry.is_placeholder:
            ident = normalize_identifier(entry.external_account_id)
            if is_iban(ident):
                iban = ident
            else:
                account_number = ident

        return create_account(
            self.conn,
            user_id=user_id,
            bank_id=bank_id,
            name=entry.display_name,
            iban=iban,
            account_number=account_number,
            account_type=entry.account_type,
            currency=entry.currency,
            balance=entry.balance,
            balance_date=entry.balance_date,
            auto_detected=True,
        )

    def _insert_transactions(
        self,
        user_id: int,
        account_ids: List[int],
        entries: List[TransactionPreviewEntry],
    ) -> int:
        """Insert transactions, skipping any (account, external id) already stored."""
        imported = 0
        for txn in entries:
            cursor = self.conn.execute(
                """
                INSERT OR IGNORE INTO transactions
                (account_id, user_id, date, amount, description, external_id,
                 classification, confidence, beneficiary_id, matched_account_id, import_source)
                VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?)
                """,
                (
                    account_ids[txn.account_index],
                    user_id,
                    txn.date.isoformat(),
                    str(txn.amount),
                    txn.description,
                    txn.source_external_id,
                    txn.classification.value,
                    txn.confidence,
                    txn.beneficiary_id,
                    txn.matched_account_id,
                    IMPORT_SOURCE,
                ),
            )
            imported += cursor.rowcount
        return imported

    def _record_failure(self, user_id: int, bank_id: int, preview: ImportPreview, total: int) -> None:
        """Best-effort FAILED entry in the import history after a rollback."""
        try:
            ImportLogger(self.conn).record(
                user_id=user_id,
                bank_id=bank_id,
                filename=preview.filename,
                file_format=preview.file_format,
                status="FAILED",
                total_rows=total,
                imported=0,
                duplicates=0,
                errors=total,
            )
            self.conn.commit()
        except sqlite3.Error as e:
            logger.error(f"Could not record failed import: {e}")
