"""
Account directory for bankrecon.

Users, their banks and the bank accounts statements are imported into.
All lookups are scoped to a user.
"""

from dataclasses import dataclass
from datetime import date
from decimal import Decimal
from typing import Optional, List
import sqlite3

from bankrecon.core.exceptions import AccountNotFoundError, ValidationError
from bankrecon.core.security import normalize_identifier


ACCOUNT_TYPES = ("CHECKING", "SAVINGS", "CREDIT_CARD")


@dataclass
class Bank:
    """A bank (institution) registered by a user."""

    id: int
    user_id: int
    name: str
    bic: Optional[str] = None
    bank_code: Optional[str] = None

    @classmethod
    def from_row(cls, row: sqlite3.Row) -> "Bank":
        return cls(
            id=row["id"],
            user_id=row["user_id"],
            name=row["name"],
            bic=row["bic"],
            bank_code=row["bank_code"],
        )


@dataclass
class StoredAccount:
    """A persisted bank account."""

    id: int
    bank_id: int
    user_id: int
    name: str
    iban: Optional[str] = None
    account_number: Optional[str] = None
    account_type: str = "CHECKING"
    currency: str = "EUR"
    balance: Decimal = Decimal("0")
    balance_date: Optional[date] = None
    auto_detected: bool = False
    is_active: bool = True

    @classmethod
    def from_row(cls, row: sqlite3.Row) -> "StoredAccount":
        balance_date = row["balance_date"]
        if isinstance(balance_date, str):
            balance_date = date.fromisoformat(balance_date[:10])
        return cls(
            id=row["id"],
            bank_id=row["bank_id"],
            user_id=row["user_id"],
            name=row["name"],
            iban=row["iban"],
            account_number=row["account_number"],
            account_type=row["account_type"],
            currency=row["currency"],
            balance=Decimal(str(row["balance"] or 0)),
            balance_date=balance_date,
            auto_detected=bool(row["auto_detected"]),
            is_active=bool(row["is_active"]),
        )

    @property
    def identifiers(self) -> List[str]:
        """Normalized IBAN and account number, whichever are recorded."""
        return [
            ident for ident in (
                normalize_identifier(self.iban),
                normalize_identifier(self.account_number),
            ) if ident
        ]

    @property
    def has_identifier(self) -> bool:
        return bool(self.identifiers)


def get_or_create_user(conn: sqlite3.Connection, name: str) -> int:
    """Return the id of the named user, creating the user if needed."""
    row = conn.execute("SELECT id FROM users WHERE name = ?", (name,)).fetchone()
    if row:
        return row["id"]
    cursor = conn.execute("INSERT INTO users (name) VALUES (?)", (name,))
    conn.commit()
    return cursor.lastrowid


def create_bank(
    conn: sqlite3.Connection,
    user_id: int,
    name: str,
    bic: Optional[str] = None,
    bank_code: Optional[str] = None,
) -> Bank:
    """Register a bank for a user."""
    if not name or not name.strip():
        raise ValidationError("Bank name is required", field="name")
    cursor = conn.execute(
        "INSERT INTO banks (user_id, name, bic, bank_code) VALUES (?, ?, ?, ?)",
        (user_id, name.strip(), bic, bank_code),
    )
    conn.commit()
    return Bank(id=cursor.lastrowid, user_id=user_id, name=name.strip(), bic=bic, bank_code=bank_code)


def get_bank(conn: sqlite3.Connection, bank_id: int, user_id: Optional[int] = None) -> Bank:
    """
    Fetch a bank by id.

    Raises:
        AccountNotFoundError: If the bank does not exist (or is not the user's)
    """
    query = "SELECT * FROM banks WHERE id = ?"
    params: list = [bank_id]
    if user_id is not None:
        query += " AND user_id = ?"
        params.append(user_id)
    row = conn.execute(query, params).fetchone()
    if row is None:
        raise AccountNotFoundError(bank_id, kind="bank")
    return Bank.from_row(row)


def list_banks(conn: sqlite3.Connection, user_id: int) -> List[Bank]:
    cursor = conn.execute(
        "SELECT * FROM banks WHERE user_id = ? AND is_archived = 0 ORDER BY id",
        (user_id,),
    )
    return [Bank.from_row(row) for row in cursor.fetchall()]


def create_account(
    conn: sqlite3.Connection,
    user_id: int,
    bank_id: int,
    name: str,
    iban: Optional[str] = None,
    account_number: Optional[str] = None,
    account_type: str = "CHECKING",
    currency: str = "EUR",
    balance: Optional[Decimal] = None,
    balance_date: Optional[date] = None,
    auto_detected: bool = False,
) -> StoredAccount:
    """
    Insert a bank account.

    Does not commit; callers either run inside transaction() or commit
    themselves.
    """
    if account_type not in ACCOUNT_TYPES:
        raise ValidationError(f"Invalid account type: {account_type}", field="account_type")

    cursor = conn.execute(
        """
        INSERT INTO bank_accounts
        (bank_id, user_id, name, iban, account_number, account_type,
         currency, balance, balance_date, auto_detected)
        VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?)
        """,
        (
            bank_id,
            user_id,
            name,
            normalize_identifier(iban) or None,
            normalize_identifier(account_number) or None,
            account_type,
            currency,
            str(balance if balance is not None else Decimal("0")),
            balance_date.isoformat() if balance_date else None,
            auto_detected,
        ),
    )
    return StoredAccount(
        id=cursor.lastrowid,
        bank_id=bank_id,
        user_id=user_id,
        name=name,
        iban=normalize_identifier(iban) or None,
        account_number=normalize_identifier(account_number) or None,
        account_type=account_type,
        currency=currency,
        balance=balance if balance is not None else Decimal("0"),
        balance_date=balance_date,
        auto_detected=auto_detected,
    )


def get_account(conn: sqlite3.Connection, account_id: int) -> Optional[StoredAccount]:
    row = conn.execute(
        "SELECT * FROM bank_accounts WHERE id = ?", (account_id,)
    ).fetchone()
    return StoredAccount.from_row(row) if row else None


def list_accounts(
    conn: sqlite3.Connection,
    user_id: int,
    bank_id: Optional[int] = None,
) -> List[StoredAccount]:
    """Active accounts of a user, optionally restricted to one bank, in id order."""
    query = "SELECT * FROM bank_accounts WHERE user_id = ? AND is_active = 1"
    params: list = [user_id]
    if bank_id is not None:
        query += " AND bank_id = ?"
        params.append(bank_id)
    query += " ORDER BY id"
    return [StoredAccount.from_row(row) for row in conn.execute(query, params).fetchall()]


def find_by_identifier(
    conn: sqlite3.Connection,
    user_id: int,
    identifier: str,
    bank_id: Optional[int] = None,
) -> List[StoredAccount]:
    """Accounts whose IBAN or account number equals the identifier (normalized)."""
    wanted = normalize_identifier(identifier)
    if not wanted:
        return []
    return [
        account for account in list_accounts(conn, user_id, bank_id)
        if wanted in account.identifiers
    ]


def update_account_balance(
    conn: sqlite3.Connection,
    account_id: int,
    balance: Decimal,
    balance_date: Optional[date] = None,
    name: Optional[str] = None,
) -> None:
    """Set balance (and optionally balance date and display name). Does not commit."""
    if name:
        conn.execute(
            "UPDATE bank_accounts SET balance = ?, balance_date = ?, name = ? WHERE id = ?",
            (str(balance), balance_date.isoformat() if balance_date else None, name, account_id),
        )
    else:
        conn.execute(
            "UPDATE bank_accounts SET balance = ?, balance_date = ? WHERE id = ?",
            (str(balance), balance_date.isoformat() if balance_date else None, account_id),
        )
