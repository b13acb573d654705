"""
Duplicate detection against previously imported transactions.

A candidate is a duplicate when the same account already holds a
transaction with the same external id, or, failing that, one with the same
description, an amount within tolerance and the same calendar day.
Duplicates are never looked for across accounts.
"""

import logging
from datetime import timedelta
from decimal import Decimal
from typing import Optional
import sqlite3

from bankrecon.core.preferences import ImportPreferences
from bankrecon.parsers.models import RawTransaction

logger = logging.getLogger(__name__)


class DeduplicationResolver:
    """
    Usage:
        resolver = DeduplicationResolver(conn)
        if resolver.is_duplicate(account_id=7, candidate=txn):
            ...
    """

    def __init__(self, db_connection: sqlite3.Connection, preferences: ImportPreferences = None):
        self.conn = db_connection
        self.preferences = preferences or ImportPreferences()
        self.tolerance = Decimal(self.preferences.amount_tolerance)

    def is_duplicate(self, account_id: Optional[int], candidate: RawTransaction) -> bool:
        # An account that does not exist yet holds nothing
        if account_id is None:
            return False

        if self._external_id_exists(account_id, candidate.resolved_external_id):
            return True

        return self._similar_exists(account_id, candidate)

    def _external_id_exists(self, account_id: int, external_id: str) -> bool:
        row = self.conn.execute(
            "SELECT 1 FROM transactions WHERE account_id = ? AND external_id = ? LIMIT 1",
            (account_id, external_id),
        ).fetchone()
        return row is not None

    def _similar_exists(self, account_id: int, candidate: RawTransaction) -> bool:
        day = candidate.date
        row = self.conn.execute(
            """
            SELECT 1 FROM transactions
            WHERE account_id = ?
              AND description = ?
              AND amount BETWEEN ? AND ?
              AND date >= ? AND date < ?
            LIMIT 1
            """,
            (
                account_id,
                candidate.description,
                float(candidate.amount - self.tolerance),
                float(candidate.amount + self.tolerance),
                day.isoformat(),
                (day + timedelta(days=1)).isoformat(),
            ),
        ).fetchone()
        return row is not None
