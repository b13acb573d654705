"""
SQLCipher database initialization and connection management.

Provides the encrypted SQLite store behind the import engine: users, their
banks and accounts, imported transactions and the import/audit logs.
Uses singleton pattern for connection management.

Thread Safety Notes:
- Uses check_same_thread=False for multi-threaded access
- WAL mode is enabled for better concurrent read performance
- Use the transaction() context manager for atomic operations
- SQLite handles locking internally in WAL mode
"""

from pathlib import Path
from typing import Optional
from contextlib import contextmanager
import threading

try:
    import sqlcipher3 as sqlite3
    HAS_SQLCIPHER = True
except ImportError:
    import sqlite3
    HAS_SQLCIPHER = False

from bankrecon.core.exceptions import BankReconError, DatabaseError


SCHEMA_SQL = """
CREATE TABLE IF NOT EXISTS users (
    id INTEGER PRIMARY KEY AUTOINCREMENT,
    name TEXT UNIQUE NOT NULL,
    email TEXT,
    created_at TIMESTAMP DEFAULT CURRENT_TIMESTAMP
);

CREATE TABLE IF NOT EXISTS banks (
    id INTEGER PRIMARY KEY AUTOINCREMENT,
    user_id INTEGER NOT NULL,
    name TEXT NOT NULL,
    bic TEXT,
    bank_code TEXT,
    is_archived BOOLEAN DEFAULT FALSE,
    created_at TIMESTAMP DEFAULT CURRENT_TIMESTAMP,
    UNIQUE(user_id, name),
    FOREIGN KEY (user_id) REFERENCES users(id) ON DELETE CASCADE
);

CREATE TABLE IF NOT EXISTS bank_accounts (
    id INTEGER PRIMARY KEY AUTOINCREMENT,
    bank_id INTEGER NOT NULL,
    user_id INTEGER NOT NULL,
    name TEXT NOT NULL,
    iban TEXT,
    account_number TEXT,
    account_type TEXT DEFAULT 'CHECKING' CHECK(account_type IN ('CHECKING', 'SAVINGS', 'CREDIT_CARD')),
    currency TEXT DEFAULT 'EUR',
    balance DECIMAL(15,2) DEFAULT 0,
    balance_date TIMESTAMP,
    auto_detected BOOLEAN DEFAULT FALSE,
    is_active BOOLEAN DEFAULT TRUE,
    created_at TIMESTAMP DEFAULT CURRENT_TIMESTAMP,
    FOREIGN KEY (bank_id) REFERENCES banks(id) ON DELETE CASCADE,
    FOREIGN KEY (user_id) REFERENCES users(id) ON DELETE CASCADE
);

CREATE TABLE IF NOT EXISTS transactions (
    id INTEGER PRIMARY KEY AUTOINCREMENT,
    account_id INTEGER NOT NULL,
    user_id INTEGER NOT NULL,
    date DATE NOT NULL,
    amount DECIMAL(15,2) NOT NULL,
    description TEXT NOT NULL,
    external_id TEXT NOT NULL,
    classification TEXT NOT NULL DEFAULT 'UNKNOWN'
        CHECK(classification IN ('INTERNAL_INTRA_BANK', 'INTERNAL_INTER_BANK', 'EXTERNAL', 'UNKNOWN')),
    confidence REAL DEFAULT 0,
    beneficiary_id TEXT,
    matched_account_id INTEGER,
    import_source TEXT DEFAULT 'IMPORT',
    created_at TIMESTAMP DEFAULT CURRENT_TIMESTAMP,
    UNIQUE(account_id, external_id),
    FOREIGN KEY (account_id) REFERENCES bank_accounts(id) ON DELETE CASCADE,
    FOREIGN KEY (user_id) REFERENCES users(id) ON DELETE CASCADE,
    FOREIGN KEY (matched_account_id) REFERENCES bank_accounts(id) ON DELETE SET NULL
);

CREATE TABLE IF NOT EXISTS import_logs (
    id INTEGER PRIMARY KEY AUTOINCREMENT,
    user_id INTEGER NOT NULL,
    bank_id INTEGER,
    filename TEXT,
    file_format TEXT,
    status TEXT NOT NULL CHECK(status IN ('SUCCESS', 'FAILED')),
    total_rows INTEGER DEFAULT 0,
    imported INTEGER DEFAULT 0,
    duplicates INTEGER DEFAULT 0,
    errors INTEGER DEFAULT 0,
    created_at TIMESTAMP DEFAULT CURRENT_TIMESTAMP,
    FOREIGN KEY (user_id) REFERENCES users(id) ON DELETE CASCADE,
    FOREIGN KEY (bank_id) REFERENCES banks(id) ON DELETE SET NULL
);

CREATE TABLE IF NOT EXISTS audit_log (
    id INTEGER PRIMARY KEY AUTOINCREMENT,
    table_name TEXT NOT NULL,
    record_id INTEGER NOT NULL,
    action TEXT NOT NULL CHECK(action IN ('INSERT','UPDATE','DELETE')),
    old_values TEXT,
    new_values TEXT,
    user_id INTEGER,
    source TEXT,
    timestamp TIMESTAMP DEFAULT CURRENT_TIMESTAMP,
    FOREIGN KEY (user_id) REFERENCES users(id) ON DELETE SET NULL
);

CREATE INDEX IF NOT EXISTS idx_banks_user ON banks(user_id);
CREATE INDEX IF NOT EXISTS idx_bank_accounts_bank ON bank_accounts(bank_id);
CREATE INDEX IF NOT EXISTS idx_bank_accounts_user ON bank_accounts(user_id);
CREATE INDEX IF NOT EXISTS idx_bank_accounts_iban ON bank_accounts(iban);
CREATE INDEX IF NOT EXISTS idx_txn_account_date ON transactions(account_id, date);
CREATE INDEX IF NOT EXISTS idx_txn_user ON transactions(user_id);
CREATE INDEX IF NOT EXISTS idx_import_logs_user ON import_logs(user_id);
CREATE INDEX IF NOT EXISTS idx_audit_log_table ON audit_log(table_name, record_id);
CREATE INDEX IF NOT EXISTS idx_audit_log_user ON audit_log(user_id);
"""


@contextmanager
def transaction(conn: sqlite3.Connection):
    """
    Run a block of statements as one atomic write.

    Usage:
        with transaction(conn):
            conn.execute("INSERT INTO bank_accounts ...")
            conn.execute("INSERT INTO transactions ...")
        # Auto-commits on success, auto-rolls back on exception

    Raises:
        DatabaseError: wrapping any non-bankrecon failure; bankrecon errors
            are re-raised unchanged after the rollback.
    """
    try:
        # Pending implicit writes join this transaction
        if not conn.in_transaction:
            conn.execute("BEGIN IMMEDIATE")
        yield conn
        conn.commit()
    except BankReconError:
        conn.rollback()
        raise
    except Exception as e:
        conn.rollback()
        raise DatabaseError(f"Transaction failed: {e}") from e


class DatabaseManager:
    """
    Singleton manager for SQLCipher encrypted database connections.

    Usage:
        db = DatabaseManager()
        conn = db.init("/path/to/db.sqlite", "password123")
        # Use connection...
        db.close()
    """

    _instance: Optional["DatabaseManager"] = None
    _lock = threading.Lock()

    def __new__(cls) -> "DatabaseManager":
        if cls._instance is None:
            with cls._lock:
                if cls._instance is None:
                    cls._instance = super().__new__(cls)
                    cls._instance._connection = None
                    cls._instance._db_path = None
        return cls._instance

    @property
    def connection(self) -> sqlite3.Connection:
        """Get the current database connection."""
        if self._connection is None:
            raise DatabaseError("Database not initialized. Call init() first.")
        return self._connection

    def init(self, db_path: str, password: str) -> sqlite3.Connection:
        """
        Initialize encrypted database.

        Args:
            db_path: Path to database file or ":memory:" for in-memory database
            password: Encryption password for SQLCipher

        Returns:
            Database connection

        Raises:
            DatabaseError: If initialization fails
        """
        try:
            self._db_path = db_path

            if db_path != ":memory:":
                Path(db_path).parent.mkdir(parents=True, exist_ok=True)

            self._connection = sqlite3.connect(db_path, check_same_thread=False)
            self._connection.row_factory = sqlite3.Row

            if HAS_SQLCIPHER:
                self._connection.execute(f"PRAGMA key = '{password}'")
                self._connection.execute("PRAGMA cipher_compatibility = 4")

            self._connection.execute("PRAGMA foreign_keys = ON")

            # WAL mode allows multiple readers and one writer simultaneously
            if db_path != ":memory:":
                self._connection.execute("PRAGMA journal_mode = WAL")
                self._connection.execute("PRAGMA synchronous = NORMAL")

            self._execute_schema()

            return self._connection

        except Exception as e:
            raise DatabaseError(f"Failed to initialize database: {e}")

    def _execute_schema(self) -> None:
        """Create all tables if not exist."""
        try:
            self._connection.executescript(SCHEMA_SQL)
            self._connection.commit()
        except Exception as e:
            raise DatabaseError(f"Failed to execute schema: {e}")

    def execute(self, sql: str, params: tuple = ()) -> sqlite3.Cursor:
        """Execute a SQL statement."""
        return self.connection.execute(sql, params)

    def commit(self) -> None:
        """Commit the current transaction."""
        self.connection.commit()

    def rollback(self) -> None:
        """Rollback the current transaction."""
        self.connection.rollback()

    def transaction(self):
        """Context manager for atomic transactions on the managed connection."""
        return transaction(self.connection)

    def close(self) -> None:
        """Close the database connection."""
        if self._connection:
            self._connection.close()
            self._connection = None
            self._db_path = None

    @classmethod
    def reset_instance(cls) -> None:
        """Reset singleton instance (useful for testing)."""
        with cls._lock:
            if cls._instance and cls._instance._connection:
                cls._instance._connection.close()
            cls._instance = None
