"""
Utility functions for statement parsers.

Provides sanity checks on parsed transactions and bank code helpers.
"""

import re
from typing import List, Optional

from bankrecon.parsers.models import RawTransaction


# French interbank codes (code banque) of the main retail networks
FRENCH_BANK_CODES = {
    "30003": "SOGEFRPP",  # Société Générale
    "30004": "BNPAFRPP",  # BNP Paribas
    "30002": "AGRIFRPP",  # Crédit Agricole
    "30006": "CCBPFRPP",  # Banque Populaire
    "10278": "CMCIFRPP",  # Crédit Mutuel
    "20041": "PSSTFRPP",  # La Banque Postale
    "18206": "CEPAFRPP",  # Caisse d'Epargne
    "30066": "CICAFRPP",  # CIC
    "14518": "CRLYFRPP",  # LCL
    "40618": "BOUSFRPP",  # Boursorama
    "44053": "ARKEFRPP",  # Fortuneo
}

_BIC = re.compile(r"^[A-Z]{4}[A-Z]{2}[A-Z0-9]{2}([A-Z0-9]{3})?$")


def bic_from_bank_code(bank_code: Optional[str]) -> Optional[str]:
    """
    Derive a BIC from an OFX BANKID.

    The BANKID is returned as-is when it already is a BIC; known French
    bank codes are mapped through FRENCH_BANK_CODES.
    """
    if not bank_code:
        return None
    code = "".join(bank_code.split()).upper()
    if _BIC.match(code):
        return code
    return FRENCH_BANK_CODES.get(code)


def validate_transactions(transactions: List[RawTransaction]) -> List[str]:
    """
    Validate transactions for common issues.

    Args:
        transactions: List of transactions to validate

    Returns:
        List of warning messages
    """
    warnings = []

    for i, txn in enumerate(transactions):
        if not txn.description:
            warnings.append(f"Transaction {i+1}: Empty description ({txn.date})")

        if txn.amount == 0:
            warnings.append(f"Transaction {i+1}: Zero amount transaction ({txn.date})")

    seen = {}
    for i, txn in enumerate(transactions):
        key = txn.resolved_external_id
        if key in seen:
            warnings.append(
                f"Transaction {i+1}: Same identifier as transaction {seen[key]+1}; "
                "only one will be imported"
            )
        else:
            seen[key] = i

    return warnings
