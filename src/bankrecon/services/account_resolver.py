"""
Resolve parsed statement accounts to the user's stored accounts.

Order of precedence:
1. An explicit target account chosen by the caller (single-account statements)
2. Exact identifier (IBAN / account number) match among the bank's accounts
3. Single-account fallback: the bank has exactly one stored account and
   either it has no identifier recorded or the file carries none
Anything left unresolved becomes a new account with a best-guess name.
"""

import logging
from typing import List, Optional, Tuple
import sqlite3

from bankrecon.core.directory import StoredAccount, find_by_identifier, get_account, list_accounts
from bankrecon.core.exceptions import AccountNotFoundError, UserContextError
from bankrecon.core.preferences import ImportPreferences
from bankrecon.core.security import mask_identifier
from bankrecon.parsers.models import ParsedAccount
from bankrecon.services.preview import AccountPreviewEntry, MatchMethod

logger = logging.getLogger(__name__)


class AccountResolver:
    """
    Usage:
        resolver = AccountResolver(conn)
        entries, warnings = resolver.resolve(user_id, bank_id, statement.accounts)
    """

    def __init__(self, db_connection: sqlite3.Connection, preferences: ImportPreferences = None):
        self.conn = db_connection
        self.preferences = preferences or ImportPreferences()

    def resolve(
        self,
        user_id: int,
        bank_id: int,
        parsed_accounts: List[ParsedAccount],
        target_account_id: Optional[int] = None,
    ) -> Tuple[List[AccountPreviewEntry], List[str]]:
        """
        Resolve every parsed account.

        Raises:
            AccountNotFoundError: If target_account_id does not exist
            UserContextError: If target_account_id belongs to another user
        """
        warnings: List[str] = []
        bank_accounts = list_accounts(self.conn, user_id, bank_id)

        target = None
        if target_account_id is not None:
            target = self._load_target(user_id, bank_id, target_account_id, warnings)
            if len(parsed_accounts) != 1:
                warnings.append(
                    f"Target account {target_account_id} ignored: the file contains "
                    f"{len(parsed_accounts)} accounts"
                )
                target = None

        claimed = set()
        entries = []
        for parsed in parsed_accounts:
            if target is not None:
                entry = self._matched_entry(parsed, target, MatchMethod.EXPLICIT)
            else:
                entry = self._auto_resolve(user_id, bank_id, parsed, bank_accounts, claimed, warnings)
            if entry.matched_account_id is not None:
                claimed.add(entry.matched_account_id)
            logger.debug(
                f"Account {entry.masked_identifier or entry.external_account_id} -> "
                f"{entry.match_method} {entry.matched_account_id}"
            )
            entries.append(entry)

        return entries, warnings

    def _load_target(
        self,
        user_id: int,
        bank_id: int,
        account_id: int,
        warnings: List[str],
    ) -> StoredAccount:
        account = get_account(self.conn, account_id)
        if account is None:
            raise AccountNotFoundError(account_id)
        if account.user_id != user_id:
            raise UserContextError(
                f"User {user_id} does not have access to account {account_id}"
            )
        if account.bank_id != bank_id:
            warnings.append(
                f"Target account {account_id} belongs to bank {account.bank_id}, not {bank_id}"
            )
        return account

    def _auto_resolve(
        self,
        user_id: int,
        bank_id: int,
        parsed: ParsedAccount,
        bank_accounts: List[StoredAccount],
        claimed: set,
        warnings: List[str],
    ) -> AccountPreviewEntry:
        if not parsed.is_placeholder:
            found = find_by_identifier(self.conn, user_id, parsed.external_account_id, bank_id)
            if found:
                return self._matched_entry(parsed, found[0], MatchMethod.IDENTIFIER)

        if len(bank_accounts) == 1:
            only = bank_accounts[0]
            if only.id not in claimed and (parsed.is_placeholder or not only.has_identifier):
                return self._matched_entry(parsed, only, MatchMethod.SINGLE_ACCOUNT)

        if parsed.is_placeholder and bank_accounts:
            warnings.append(
                f"Cannot tell which of the bank's {len(bank_accounts)} accounts this "
                f"{parsed.external_account_id} file belongs to; a new account will be "
                "created unless a target account is chosen"
            )

        return AccountPreviewEntry(
            is_new=True,
            display_name=self.preferences.display_name_for(parsed.external_account_id),
            external_account_id=parsed.external_account_id,
            currency=parsed.currency,
            balance=parsed.statement_balance,
            matched_account_id=None,
            match_method=MatchMethod.NONE,
            masked_identifier="" if parsed.is_placeholder else mask_identifier(parsed.external_account_id),
            balance_date=parsed.balance_date,
            account_type=parsed.account_type,
            is_placeholder=parsed.is_placeholder,
        )

    @staticmethod
    def _matched_entry(parsed: ParsedAccount, account: StoredAccount, method: str) -> AccountPreviewEntry:
        return AccountPreviewEntry(
            is_new=False,
            display_name=account.name,
            external_account_id=parsed.external_account_id,
            currency=parsed.currency,
            balance=parsed.statement_balance,
            matched_account_id=account.id,
            match_method=method,
            masked_identifier="" if parsed.is_placeholder else mask_identifier(parsed.external_account_id),
            balance_date=parsed.balance_date,
            account_type=parsed.account_type,
            is_placeholder=parsed.is_placeholder,
        )
