"""Import preferences for bankrecon.

Data-driven configuration with sensible defaults: column vocabularies for
tabular statements, transfer keywords, confidence tiers and matching
tolerances. A JSON file can override any subset of the defaults.
"""

import copy
import json
import logging
from pathlib import Path
from dataclasses import dataclass, field
from decimal import Decimal
from typing import Dict, List, Optional, Any

logger = logging.getLogger(__name__)

DEFAULT_PREFERENCES = {
    "$schema": "import_preferences_v1",
    "version": "1.0",

    "base_currency": "EUR",

    "columns": {
        "date": ["date"],
        "description": ["libellé", "libelle", "description", "memo"],
        "amount": ["montant", "amount"],
        "debit": ["débit", "debit"],
        "credit": ["crédit", "credit"]
    },

    "spreadsheet": {
        "header_scan_rows": 20,
        "fallback_columns": {"date": 0, "description": 1, "amount": 2}
    },

    "classification": {
        "transfer_keywords": ["virement", "vir", "transfer", "wire", "versement"],
        "min_identifier_length": 4,
        "confidence": {
            "internal": 0.95,
            "external_with_keyword": 0.70,
            "external": 0.60,
            "unknown": 0.30
        }
    },

    "deduplication": {
        "amount_tolerance": "0.01"
    },

    "accounts": {
        "placeholders": {
            "csv": "CSV_IMPORT",
            "spreadsheet": "XLSX_IMPORT",
            "ofx": "OFX_IMPORT"
        },
        "display_names": {
            "CSV_IMPORT": "Compte importé (CSV)",
            "XLSX_IMPORT": "Compte importé (XLSX)",
            "OFX_IMPORT": "Compte importé (OFX)",
            "default": "Compte ••••{last4}"
        }
    }
}


@dataclass
class ColumnVocabulary:
    """
    Header substrings per logical field.

    Matching is case-insensitive and accent-insensitive; see
    bankrecon.parsers.base.build_column_map.
    """
    date: List[str] = field(default_factory=lambda: list(DEFAULT_PREFERENCES["columns"]["date"]))
    description: List[str] = field(default_factory=lambda: list(DEFAULT_PREFERENCES["columns"]["description"]))
    amount: List[str] = field(default_factory=lambda: list(DEFAULT_PREFERENCES["columns"]["amount"]))
    debit: List[str] = field(default_factory=lambda: list(DEFAULT_PREFERENCES["columns"]["debit"]))
    credit: List[str] = field(default_factory=lambda: list(DEFAULT_PREFERENCES["columns"]["credit"]))

    @classmethod
    def from_dict(cls, data: Dict[str, List[str]]) -> "ColumnVocabulary":
        defaults = cls()
        return cls(
            date=list(data.get("date", defaults.date)),
            description=list(data.get("description", defaults.description)),
            amount=list(data.get("amount", defaults.amount)),
            debit=list(data.get("debit", defaults.debit)),
            credit=list(data.get("credit", defaults.credit)),
        )

    def items(self):
        """(field, substrings) pairs in resolution order.

        Debit and credit resolve before amount so headers such as
        "Debit Amount" are not taken as a single signed amount column.
        """
        return [
            ("date", self.date),
            ("description", self.description),
            ("debit", self.debit),
            ("credit", self.credit),
            ("amount", self.amount),
        ]


@dataclass
class ConfidenceTiers:
    """Confidence attached to each classification outcome."""
    internal: float = 0.95
    external_with_keyword: float = 0.70
    external: float = 0.60
    unknown: float = 0.30


@dataclass
class ClassificationConfig:
    transfer_keywords: List[str] = field(
        default_factory=lambda: list(DEFAULT_PREFERENCES["classification"]["transfer_keywords"])
    )
    min_identifier_length: int = 4
    confidence: ConfidenceTiers = field(default_factory=ConfidenceTiers)


@dataclass
class ImportPreferences:
    """
    All tunables of the import engine.

    Usage:
        prefs = ImportPreferences.load(Path("bankrecon.json"))
        prefs.classification.confidence.internal  # 0.95
    """
    base_currency: str = "EUR"
    columns: ColumnVocabulary = field(default_factory=ColumnVocabulary)
    header_scan_rows: int = 20
    fallback_columns: Dict[str, int] = field(
        default_factory=lambda: dict(DEFAULT_PREFERENCES["spreadsheet"]["fallback_columns"])
    )
    classification: ClassificationConfig = field(default_factory=ClassificationConfig)
    amount_tolerance: Decimal = Decimal("0.01")
    csv_placeholder: str = "CSV_IMPORT"
    spreadsheet_placeholder: str = "XLSX_IMPORT"
    ofx_placeholder: str = "OFX_IMPORT"
    display_names: Dict[str, str] = field(
        default_factory=lambda: dict(DEFAULT_PREFERENCES["accounts"]["display_names"])
    )

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "ImportPreferences":
        """Build preferences from a (possibly partial) preferences dictionary."""
        data = _deep_merge(DEFAULT_PREFERENCES, data)

        spreadsheet = data["spreadsheet"]
        classification = data["classification"]
        confidence = classification["confidence"]
        accounts = data["accounts"]

        return cls(
            base_currency=data["base_currency"],
            columns=ColumnVocabulary.from_dict(data["columns"]),
            header_scan_rows=int(spreadsheet["header_scan_rows"]),
            fallback_columns={k: int(v) for k, v in spreadsheet["fallback_columns"].items()},
            classification=ClassificationConfig(
                transfer_keywords=[k.lower() for k in classification["transfer_keywords"]],
                min_identifier_length=int(classification["min_identifier_length"]),
                confidence=ConfidenceTiers(
                    internal=float(confidence["internal"]),
                    external_with_keyword=float(confidence["external_with_keyword"]),
                    external=float(confidence["external"]),
                    unknown=float(confidence["unknown"]),
                ),
            ),
            amount_tolerance=Decimal(str(data["deduplication"]["amount_tolerance"])),
            csv_placeholder=accounts["placeholders"]["csv"],
            spreadsheet_placeholder=accounts["placeholders"]["spreadsheet"],
            ofx_placeholder=accounts["placeholders"]["ofx"],
            display_names=dict(accounts["display_names"]),
        )

    @classmethod
    def load(cls, config_file: Optional[Path] = None) -> "ImportPreferences":
        """
        Load preferences with fallback to defaults.

        Args:
            config_file: Optional JSON file merged over the defaults

        Returns:
            ImportPreferences instance
        """
        data: Dict[str, Any] = {}
        if config_file:
            config_file = Path(config_file)
            if config_file.exists():
                try:
                    with open(config_file, encoding='utf-8') as f:
                        data = json.load(f)
                    logger.debug(f"Loaded import preferences from {config_file}")
                except (OSError, json.JSONDecodeError) as e:
                    logger.warning(f"Failed to load import preferences: {e}")
            else:
                logger.warning(f"Preferences file not found: {config_file}, using defaults")
        return cls.from_dict(data)

    @property
    def placeholders(self) -> set:
        return {self.csv_placeholder, self.spreadsheet_placeholder, self.ofx_placeholder}

    def display_name_for(self, external_account_id: Optional[str]) -> str:
        """Best-guess display name for an account about to be created."""
        if external_account_id in self.display_names:
            return self.display_names[external_account_id]
        ident = "".join((external_account_id or "").split())
        template = self.display_names.get("default", "Compte ••••{last4}")
        return template.format(last4=ident[-4:] if ident else "????")


def _deep_merge(base: Dict, override: Dict) -> Dict:
    """Deep merge two dictionaries, override takes precedence."""
    result = copy.deepcopy(base)
    for key, value in override.items():
        if key in result and isinstance(result[key], dict) and isinstance(value, dict):
            result[key] = _deep_merge(result[key], value)
        else:
            result[key] = value
    return result
