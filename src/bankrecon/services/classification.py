"""
Transaction classification against the user's own accounts.

Decides whether a movement is an internal transfer between two of the
user's accounts (same bank or cross-bank), an external movement, or cannot
be classified, and attaches a confidence score. Classification is a pure
function of its inputs and the user's account directory.
"""

import logging
import re
from dataclasses import dataclass
from decimal import Decimal
from enum import Enum
from typing import List, Optional, Sequence
import sqlite3

from bankrecon.core.directory import StoredAccount, list_accounts
from bankrecon.core.preferences import ImportPreferences
from bankrecon.core.security import mask_identifier, normalize_identifier

logger = logging.getLogger(__name__)

# Two letters, two check digits, then one or more alphanumeric blocks with optional single spaces
IBAN_PATTERN = re.compile(
    r"\b[A-Z]{2}\d{2} ?[A-Z0-9]+(?: [A-Z0-9]+)*\b"
)

# Registered IBAN lengths per country (SWIFT IBAN registry)
IBAN_LENGTHS = {
    "AD": 24, "AT": 20, "BE": 16, "BG": 22, "CH": 21, "CY": 28, "CZ": 24,
    "DE": 22, "DK": 18, "EE": 20, "ES": 24, "FI": 18, "FR": 27, "GB": 22,
    "GI": 23, "GR": 27, "HR": 21, "HU": 28, "IE": 22, "IS": 26, "IT": 27,
    "LI": 21, "LT": 20, "LU": 20, "LV": 21, "MC": 27, "MT": 31, "NL": 18,
    "NO": 15, "PL": 28, "PT": 25, "RO": 24, "SE": 24, "SI": 19, "SK": 24,
    "SM": 27,
}


class TransactionClassification(Enum):
    """Relationship of a transaction to the user's own accounts."""

    INTERNAL_INTRA_BANK = "INTERNAL_INTRA_BANK"
    INTERNAL_INTER_BANK = "INTERNAL_INTER_BANK"
    EXTERNAL = "EXTERNAL"
    UNKNOWN = "UNKNOWN"

    @property
    def is_internal(self) -> bool:
        return self in (TransactionClassification.INTERNAL_INTRA_BANK,
                        TransactionClassification.INTERNAL_INTER_BANK)


@dataclass(frozen=True)
class ClassificationResult:
    """A classification always travels with its confidence."""

    classification: TransactionClassification
    confidence: float
    beneficiary_id: Optional[str] = None
    matched_account_id: Optional[int] = None

    def __post_init__(self):
        if not 0.0 <= self.confidence <= 1.0:
            raise ValueError(f"confidence must be within [0, 1], got {self.confidence}")
        if self.matched_account_id is not None and not self.classification.is_internal:
            raise ValueError(f"{self.classification.value} cannot carry a matched account")
        if self.classification.is_internal and self.matched_account_id is None:
            raise ValueError(f"{self.classification.value} requires a matched account")


def iban_checksum_valid(iban: str) -> bool:
    """ISO 13616 mod-97 check on a normalized IBAN."""
    if len(iban) < 5 or not iban.isalnum():
        return False
    rearranged = iban[4:] + iban[:4]
    return int("".join(str(int(c, 36)) for c in rearranged)) % 97 == 1


def extract_iban(description: str) -> Optional[str]:
    """
    First IBAN in a description, spaces removed and uppercased.

    The pattern is greedy and may run into the words that follow the IBAN.
    The match is cut at the registered length of its country; for countries
    outside IBAN_LENGTHS trailing blocks are dropped until the mod-97
    checksum holds, and a match that never validates is skipped.
    """
    text = (description or "").upper()
    pos = 0
    while True:
        match = IBAN_PATTERN.search(text, pos)
        if match is None:
            return None

        iban = normalize_identifier(match.group(0))
        expected = IBAN_LENGTHS.get(iban[:2])
        if expected is not None:
            return iban[:expected]

        blocks = match.group(0).split()
        while blocks:
            candidate = "".join(blocks)
            if iban_checksum_valid(candidate):
                return candidate
            blocks.pop()
        pos = match.start() + 1


class ClassificationEngine:
    """
    Classify transactions against a user's account directory.

    Usage:
        engine = ClassificationEngine(conn)
        result = engine.classify(
            user_id=1,
            description="VIR SEPA FR76 3000 4000 0312 3456 7890 143",
            amount=Decimal("-200.00"),
            source_bank_id=1,
        )
        result.classification  # TransactionClassification.INTERNAL_INTER_BANK
    """

    def __init__(self, db_connection: sqlite3.Connection, preferences: ImportPreferences = None):
        self.conn = db_connection
        self.preferences = preferences or ImportPreferences()
        config = self.preferences.classification
        self.confidence = config.confidence
        self.min_identifier_length = config.min_identifier_length
        keywords = sorted({k.lower() for k in config.transfer_keywords if k}, key=len, reverse=True)
        self._keyword_re = (
            re.compile(r"\b(?:" + "|".join(re.escape(k) for k in keywords) + r")\b", re.IGNORECASE)
            if keywords else None
        )

    def has_transfer_keyword(self, description: str) -> bool:
        if self._keyword_re is None:
            return False
        return bool(self._keyword_re.search(description or ""))

    def classify(
        self,
        user_id: int,
        description: str,
        amount: Decimal,
        source_bank_id: Optional[int],
        explicit_beneficiary_id: Optional[str] = None,
        accounts: Optional[Sequence[StoredAccount]] = None,
    ) -> ClassificationResult:
        """
        Classify one transaction.

        Args:
            user_id: Owner of the account directory to match against
            description: Normalized transaction description
            amount: Signed amount (does not affect the outcome)
            source_bank_id: Bank of the account the transaction was imported into
            explicit_beneficiary_id: Counterparty identifier supplied by the file
            accounts: Pre-loaded user accounts; loaded from the database when omitted

        Returns:
            ClassificationResult
        """
        if accounts is None:
            accounts = list_accounts(self.conn, user_id)

        has_keyword = self.has_transfer_keyword(description)
        beneficiary_id = normalize_identifier(explicit_beneficiary_id) or extract_iban(description)

        matched = self.match_account(beneficiary_id, accounts) if beneficiary_id else None

        if matched is not None:
            same_bank = source_bank_id is not None and matched.bank_id == source_bank_id
            return ClassificationResult(
                classification=(TransactionClassification.INTERNAL_INTRA_BANK if same_bank
                                else TransactionClassification.INTERNAL_INTER_BANK),
                confidence=self.confidence.internal,
                beneficiary_id=beneficiary_id,
                matched_account_id=matched.id,
            )

        if not beneficiary_id or len(beneficiary_id) < self.min_identifier_length:
            return ClassificationResult(
                classification=TransactionClassification.UNKNOWN,
                confidence=self.confidence.unknown,
                beneficiary_id=beneficiary_id or None,
            )

        return ClassificationResult(
            classification=TransactionClassification.EXTERNAL,
            confidence=(self.confidence.external_with_keyword if has_keyword
                        else self.confidence.external),
            beneficiary_id=beneficiary_id,
        )

    def match_account(
        self,
        identifier: str,
        accounts: Sequence[StoredAccount],
    ) -> Optional[StoredAccount]:
        """
        Find the user's account an identifier refers to.

        Exact IBAN/account-number equality first; then, for identifiers of
        at least min_identifier_length characters, a suffix match in either
        direction. A suffix shared by several accounts matches none of them.
        """
        ident = normalize_identifier(identifier)
        if not ident:
            return None

        for account in accounts:
            if ident in account.identifiers:
                return account

        if len(ident) < self.min_identifier_length:
            return None

        candidates: List[StoredAccount] = []
        for account in accounts:
            for stored in account.identifiers:
                if len(stored) < self.min_identifier_length:
                    continue
                if stored.endswith(ident) or ident.endswith(stored):
                    candidates.append(account)
                    break

        if len(candidates) == 1:
            return candidates[0]
        if len(candidates) > 1:
            logger.warning(
                f"Identifier {mask_identifier(ident)} matches {len(candidates)} accounts "
                f"by suffix; treating as unmatched"
            )
        return None
