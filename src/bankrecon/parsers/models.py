"""
Parsed statement data models.

Dataclasses for representing a bank export after parsing and before any
account resolution, classification or deduplication.
"""

from dataclasses import dataclass, field
from datetime import date
from decimal import Decimal
from typing import Optional, List
from enum import Enum
import hashlib


class TransactionKind(Enum):
    """Direction hint reported by the file. The sign of the amount is authoritative."""

    CREDIT = "CREDIT"
    DEBIT = "DEBIT"
    OTHER = "OTHER"

    @classmethod
    def from_amount(cls, amount: Decimal) -> "TransactionKind":
        if amount > 0:
            return cls.CREDIT
        if amount < 0:
            return cls.DEBIT
        return cls.OTHER


def synthetic_id(txn_date: date, description: str, amount: Decimal) -> str:
    """
    Deterministic pseudo-id for a transaction without an FI-assigned id.

    Two rows with the same day, description and amount get the same id; that
    collision is accepted.
    """
    key = f"{txn_date.isoformat()}|{description}|{amount.quantize(Decimal('0.01'))}"
    return "gen:" + hashlib.sha256(key.encode("utf-8")).hexdigest()[:24]


@dataclass
class RawTransaction:
    """A single transaction as read from the file."""

    date: date
    amount: Decimal
    description: str
    external_id: Optional[str] = None
    kind: TransactionKind = TransactionKind.OTHER
    counterparty_id: Optional[str] = None
    check_number: Optional[str] = None

    def __post_init__(self):
        if not isinstance(self.amount, Decimal):
            self.amount = Decimal(str(self.amount))
        if not self.amount.is_finite():
            raise ValueError(f"Transaction amount must be finite, got {self.amount}")

    @property
    def resolved_external_id(self) -> str:
        """FI id when present, else the synthetic id."""
        return self.external_id or synthetic_id(self.date, self.description, self.amount)


@dataclass
class ParsedAccount:
    """One account found in a statement file, with its transactions."""

    external_account_id: str
    currency: str = "EUR"
    statement_balance: Optional[Decimal] = None
    transactions: List[RawTransaction] = field(default_factory=list)
    bank_code: Optional[str] = None
    balance_date: Optional[date] = None
    account_type: str = "CHECKING"
    bic: Optional[str] = None
    is_placeholder: bool = False


@dataclass
class ParsedStatement:
    """Result of parsing one file. Never empty: parsers raise ParseError instead."""

    accounts: List[ParsedAccount]
    file_format: str
    warnings: List[str] = field(default_factory=list)

    @property
    def transaction_count(self) -> int:
        return sum(len(account.transactions) for account in self.accounts)
