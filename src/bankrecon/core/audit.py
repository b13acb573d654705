"""
Audit and import logging.

Every commit appends one import_logs row summarizing the run and one
audit_log row per account it created or updated. Writers in this module
never commit: they run inside the caller's transaction so the log rows
share its fate.
"""

import json
from dataclasses import dataclass
from datetime import datetime
from typing import Optional, List, Dict, Any
import sqlite3


@dataclass
class AuditLogEntry:
    """Represents an audit log entry."""

    id: int
    table_name: str
    record_id: int
    action: str
    old_values: Optional[Dict[str, Any]]
    new_values: Optional[Dict[str, Any]]
    user_id: Optional[int]
    source: Optional[str]
    timestamp: datetime

    @classmethod
    def from_row(cls, row: sqlite3.Row) -> "AuditLogEntry":
        """Create AuditLogEntry from database row."""
        return cls(
            id=row["id"],
            table_name=row["table_name"],
            record_id=row["record_id"],
            action=row["action"],
            old_values=json.loads(row["old_values"]) if row["old_values"] else None,
            new_values=json.loads(row["new_values"]) if row["new_values"] else None,
            user_id=row["user_id"],
            source=row["source"],
            timestamp=_to_datetime(row["timestamp"]),
        )


@dataclass
class ImportLogEntry:
    """One committed (or failed) import run."""

    id: int
    user_id: int
    bank_id: Optional[int]
    filename: Optional[str]
    file_format: Optional[str]
    status: str
    total_rows: int
    imported: int
    duplicates: int
    errors: int
    created_at: datetime

    @classmethod
    def from_row(cls, row: sqlite3.Row) -> "ImportLogEntry":
        return cls(
            id=row["id"],
            user_id=row["user_id"],
            bank_id=row["bank_id"],
            filename=row["filename"],
            file_format=row["file_format"],
            status=row["status"],
            total_rows=row["total_rows"],
            imported=row["imported"],
            duplicates=row["duplicates"],
            errors=row["errors"],
            created_at=_to_datetime(row["created_at"]),
        )


def _to_datetime(value):
    if isinstance(value, str):
        return datetime.fromisoformat(value)
    return value


class AuditLogger:
    """
    Records account changes made by an import.

    Usage:
        audit = AuditLogger(connection, user_id=1, source="IMPORT")

        audit.log_insert("bank_accounts", 7, {"name": "Compte ****1234"})
        audit.log_update(
            "bank_accounts", 7,
            old_values={"balance": "100.00"},
            new_values={"balance": "250.00"},
        )
    """

    VALID_ACTIONS = ("INSERT", "UPDATE", "DELETE")

    def __init__(
        self,
        db_connection: sqlite3.Connection,
        user_id: int = None,
        source: str = None,
    ):
        self.conn = db_connection
        self.user_id = user_id
        self.source = source

    def log_change(
        self,
        table_name: str,
        record_id: int,
        action: str,
        old_values: Dict[str, Any] = None,
        new_values: Dict[str, Any] = None,
        user_id: int = None,
    ) -> int:
        """
        Log a data change.

        Args:
            table_name: Name of the table being modified
            record_id: ID of the record being modified
            action: One of INSERT, UPDATE, DELETE
            old_values: Previous values (for UPDATE/DELETE)
            new_values: New values (for INSERT/UPDATE)
            user_id: User who made the change (overrides default)

        Returns:
            Audit log entry ID

        Raises:
            ValueError: If action is not valid
        """
        if action not in self.VALID_ACTIONS:
            raise ValueError(f"Invalid action: {action}. Must be one of {self.VALID_ACTIONS}")

        cursor = self.conn.execute(
            """
            INSERT INTO audit_log
            (table_name, record_id, action, old_values, new_values, user_id, source)
            VALUES (?, ?, ?, ?, ?, ?, ?)
            """,
            (
                table_name,
                record_id,
                action,
                json.dumps(old_values, default=str) if old_values else None,
                json.dumps(new_values, default=str) if new_values else None,
                user_id or self.user_id,
                self.source,
            ),
        )
        return cursor.lastrowid

    def log_insert(
        self,
        table_name: str,
        record_id: int,
        new_values: Dict[str, Any],
        user_id: int = None,
    ) -> int:
        """Convenience method to log an INSERT."""
        return self.log_change(
            table_name=table_name,
            record_id=record_id,
            action="INSERT",
            new_values=new_values,
            user_id=user_id,
        )

    def log_update(
        self,
        table_name: str,
        record_id: int,
        old_values: Dict[str, Any],
        new_values: Dict[str, Any],
        user_id: int = None,
    ) -> int:
        """Convenience method to log an UPDATE."""
        return self.log_change(
            table_name=table_name,
            record_id=record_id,
            action="UPDATE",
            old_values=old_values,
            new_values=new_values,
            user_id=user_id,
        )

    def get_record_history(self, table_name: str, record_id: int) -> List[AuditLogEntry]:
        """
        Get all audit log entries for a specific record.

        Returns:
            List of AuditLogEntry objects in chronological order
        """
        cursor = self.conn.execute(
            """
            SELECT * FROM audit_log
            WHERE table_name = ? AND record_id = ?
            ORDER BY id ASC
            """,
            (table_name, record_id),
        )
        return [AuditLogEntry.from_row(row) for row in cursor.fetchall()]


class ImportLogger:
    """Writes and reads the import_logs table."""

    STATUSES = ("SUCCESS", "FAILED")

    def __init__(self, db_connection: sqlite3.Connection):
        self.conn = db_connection

    def record(
        self,
        user_id: int,
        bank_id: Optional[int],
        filename: Optional[str],
        file_format: Optional[str],
        status: str,
        total_rows: int,
        imported: int,
        duplicates: int,
        errors: int = 0,
    ) -> int:
        """Append one import run summary. Returns the new row id."""
        if status not in self.STATUSES:
            raise ValueError(f"Invalid status: {status}. Must be one of {self.STATUSES}")

        cursor = self.conn.execute(
            """
            INSERT INTO import_logs
            (user_id, bank_id, filename, file_format, status,
             total_rows, imported, duplicates, errors)
            VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?)
            """,
            (user_id, bank_id, filename, file_format, status,
             total_rows, imported, duplicates, errors),
        )
        return cursor.lastrowid

    def get(self, log_id: int) -> Optional[ImportLogEntry]:
        row = self.conn.execute(
            "SELECT * FROM import_logs WHERE id = ?", (log_id,)
        ).fetchone()
        return ImportLogEntry.from_row(row) if row else None

    def history(self, user_id: int, limit: int = 50) -> List[ImportLogEntry]:
        """Most recent import runs for a user, newest first."""
        cursor = self.conn.execute(
            """
            SELECT * FROM import_logs
            WHERE user_id = ?
            ORDER BY id DESC
            LIMIT ?
            """,
            (user_id, limit),
        )
        return [ImportLogEntry.from_row(row) for row in cursor.fetchall()]
