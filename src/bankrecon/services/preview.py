"""
Preview and commit hand-off models.

An ImportPreview is everything the commit phase needs: it is returned to the
caller, may be edited (account mappings, display names), serialized to JSON
and handed back unchanged in meaning. Nothing is cached server-side.
"""

from dataclasses import dataclass, field, asdict
from datetime import date
from decimal import Decimal
from typing import Any, Dict, List, Optional

from bankrecon.services.classification import TransactionClassification


class MatchMethod:
    """How a parsed account was tied to a stored account."""

    EXPLICIT = "EXPLICIT"
    IDENTIFIER = "IDENTIFIER"
    SINGLE_ACCOUNT = "SINGLE_ACCOUNT"
    NONE = "NONE"


@dataclass
class AccountPreviewEntry:
    """One parsed account and the stored account it will be written to."""

    is_new: bool
    display_name: str
    external_account_id: str
    currency: str
    balance: Optional[Decimal] = None
    matched_account_id: Optional[int] = None
    match_method: str = MatchMethod.NONE
    masked_identifier: str = ""
    balance_date: Optional[date] = None
    account_type: str = "CHECKING"
    is_placeholder: bool = False

    def to_dict(self) -> Dict[str, Any]:
        data = asdict(self)
        data["balance"] = str(self.balance) if self.balance is not None else None
        data["balance_date"] = self.balance_date.isoformat() if self.balance_date else None
        return data

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "AccountPreviewEntry":
        return cls(
            is_new=bool(data["is_new"]),
            display_name=data["display_name"],
            external_account_id=data["external_account_id"],
            currency=data.get("currency") or "EUR",
            balance=Decimal(data["balance"]) if data.get("balance") is not None else None,
            matched_account_id=data.get("matched_account_id"),
            match_method=data.get("match_method", MatchMethod.NONE),
            masked_identifier=data.get("masked_identifier", ""),
            balance_date=date.fromisoformat(data["balance_date"]) if data.get("balance_date") else None,
            account_type=data.get("account_type", "CHECKING"),
            is_placeholder=bool(data.get("is_placeholder", False)),
        )


@dataclass
class TransactionPreviewEntry:
    """One parsed transaction with its classification and duplicate flag."""

    date: date
    amount: Decimal
    description: str
    classification: TransactionClassification
    confidence: float
    account_external_id: str
    account_index: int
    is_duplicate: bool
    source_external_id: str
    matched_account_id: Optional[int] = None
    beneficiary_id: Optional[str] = None

    def to_dict(self) -> Dict[str, Any]:
        return {
            "date": self.date.isoformat(),
            "amount": str(self.amount),
            "description": self.description,
            "classification": self.classification.value,
            "confidence": self.confidence,
            "account_external_id": self.account_external_id,
            "account_index": self.account_index,
            "is_duplicate": self.is_duplicate,
            "source_external_id": self.source_external_id,
            "matched_account_id": self.matched_account_id,
            "beneficiary_id": self.beneficiary_id,
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "TransactionPreviewEntry":
        return cls(
            date=date.fromisoformat(data["date"]),
            amount=Decimal(str(data["amount"])),
            description=data["description"],
            classification=TransactionClassification(data["classification"]),
            confidence=float(data["confidence"]),
            account_external_id=data["account_external_id"],
            account_index=int(data["account_index"]),
            is_duplicate=bool(data["is_duplicate"]),
            source_external_id=data["source_external_id"],
            matched_account_id=data.get("matched_account_id"),
            beneficiary_id=data.get("beneficiary_id"),
        )


@dataclass
class ImportSummary:
    total: int = 0
    new: int = 0
    duplicates: int = 0


@dataclass
class ImportPreview:
    """
    Result of the preview phase.

    Usage:
        preview = service.preview(user_id, bank_id, data, ".ofx")
        Path("preview.json").write_text(json.dumps(preview.to_dict()))
        ...
        preview = ImportPreview.from_dict(json.loads(Path("preview.json").read_text()))
        service.commit(user_id, bank_id, preview)
    """

    bank_id: int
    file_format: str
    accounts: List[AccountPreviewEntry] = field(default_factory=list)
    transactions: List[TransactionPreviewEntry] = field(default_factory=list)
    summary: ImportSummary = field(default_factory=ImportSummary)
    warnings: List[str] = field(default_factory=list)
    filename: Optional[str] = None

    def to_dict(self) -> Dict[str, Any]:
        return {
            "bank_id": self.bank_id,
            "file_format": self.file_format,
            "filename": self.filename,
            "accounts": [a.to_dict() for a in self.accounts],
            "transactions": [t.to_dict() for t in self.transactions],
            "summary": asdict(self.summary),
            "warnings": list(self.warnings),
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "ImportPreview":
        summary = data.get("summary") or {}
        return cls(
            bank_id=int(data["bank_id"]),
            file_format=data["file_format"],
            filename=data.get("filename"),
            accounts=[AccountPreviewEntry.from_dict(a) for a in data.get("accounts", [])],
            transactions=[TransactionPreviewEntry.from_dict(t) for t in data.get("transactions", [])],
            summary=ImportSummary(
                total=int(summary.get("total", 0)),
                new=int(summary.get("new", 0)),
                duplicates=int(summary.get("duplicates", 0)),
            ),
            warnings=list(data.get("warnings", [])),
        )


@dataclass
class CommitResult:
    """Outcome of a successful commit."""

    imported_count: int
    accounts_synced: int
    duplicates_skipped: int
    import_log_id: int
