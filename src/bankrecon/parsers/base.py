"""
Parser contract, extension registry and shared value parsing.

Every format parser turns raw file bytes into a ParsedStatement or raises
ParseError. Parsers are picked by file extension only; content sniffing is
deliberately absent.
"""

from abc import ABC, abstractmethod
from datetime import date, datetime, timedelta
from decimal import Decimal, InvalidOperation
from typing import Dict, List, Optional, Type, Iterable
import logging
import math
import re
import unicodedata

import pandas as pd

from bankrecon.core.exceptions import UnsupportedFormatError
from bankrecon.core.preferences import ColumnVocabulary, ImportPreferences
from bankrecon.parsers.models import ParsedStatement, synthetic_id

logger = logging.getLogger(__name__)

__all__ = [
    "StatementParser",
    "ParserRegistry",
    "parse_amount",
    "parse_date",
    "excel_serial_to_date",
    "normalize_description",
    "normalize_header",
    "build_column_map",
    "amount_from_columns",
    "synthetic_id",
]

DAY_FIRST_FORMATS = (
    "%d/%m/%Y",
    "%d/%m/%y",
    "%d-%m-%Y",
    "%d-%m-%y",
    "%d.%m.%Y",
    "%d.%m.%y",
)

# Excel's day zero (accounts for the 1900 leap-year bug)
EXCEL_EPOCH = date(1899, 12, 30)

_CURRENCY_TOKENS = re.compile(r"(€|\$|£|EUR|USD|GBP|CHF)", re.IGNORECASE)
_NUMBER = re.compile(r"^\d+(\.\d+)?$|^\.\d+$")
_SPACES = ("\u00a0", "\u202f", "\u2009", " ", "'")


def parse_amount(value) -> Optional[Decimal]:
    """
    Parse a monetary cell into a Decimal.

    Handles decimal commas ("1 234,56"), thousands separators in both
    conventions ("1.234,56", "1,234.56"), leading/trailing signs,
    parenthesised negatives and currency symbols. A lone comma is read as a
    decimal separator.

    Returns:
        Decimal, or None when the value is empty, unparsable, NaN or infinite
    """
    if value is None or isinstance(value, bool):
        return None

    if isinstance(value, Decimal):
        return value if value.is_finite() else None

    if isinstance(value, (int, float)):
        if isinstance(value, float) and (math.isnan(value) or math.isinf(value)):
            return None
        return Decimal(str(value))

    if not isinstance(value, str):
        try:
            if pd.isna(value):
                return None
        except (TypeError, ValueError):
            return None
        value = str(value)

    text = _CURRENCY_TOKENS.sub("", value.strip())
    for space in _SPACES:
        text = text.replace(space, "")
    if not text:
        return None

    negative = False
    if text.startswith("(") and text.endswith(")"):
        negative, text = True, text[1:-1]
    if text.endswith("-"):
        negative, text = not negative, text[:-1]
    elif text.endswith("+"):
        text = text[:-1]
    if text.startswith("-"):
        negative, text = not negative, text[1:]
    elif text.startswith("+"):
        text = text[1:]

    if "," in text and "." in text:
        if text.rfind(",") > text.rfind("."):
            text = text.replace(".", "").replace(",", ".")
        else:
            text = text.replace(",", "")
    elif "," in text:
        if text.count(",") > 1:
            text = text.replace(",", "")
        else:
            text = text.replace(",", ".")
    elif text.count(".") > 1:
        text = text.replace(".", "")

    if not _NUMBER.match(text):
        return None

    try:
        amount = Decimal(text)
    except InvalidOperation:
        return None

    if not amount.is_finite():
        return None
    return -amount if negative else amount


def parse_date(value) -> Optional[date]:
    """
    Parse a date cell.

    Strings are tried day-first (DD/MM/YYYY and variants) and then handed to
    pandas for ISO and other layouts. Native datetimes pass through.

    Returns:
        date, or None when the value cannot be read as a date
    """
    if value is None:
        return None
    if isinstance(value, datetime):
        return value.date()
    if isinstance(value, date):
        return value
    if not isinstance(value, str):
        return None

    text = value.strip()
    if not text:
        return None

    head = text.split()[0]
    for fmt in DAY_FIRST_FORMATS:
        try:
            return datetime.strptime(head, fmt).date()
        except ValueError:
            continue

    try:
        parsed = pd.to_datetime(text, errors="coerce")
    except (ValueError, TypeError, OverflowError):
        return None
    if parsed is None or pd.isna(parsed):
        return None
    return parsed.date()


def excel_serial_to_date(serial) -> Optional[date]:
    """Convert an Excel serial day number to a date."""
    try:
        days = float(serial)
    except (TypeError, ValueError):
        return None
    if math.isnan(days) or math.isinf(days) or days <= 0:
        return None
    try:
        return EXCEL_EPOCH + timedelta(days=int(days))
    except OverflowError:
        return None


def normalize_description(value) -> str:
    """Collapse whitespace runs to one space and trim."""
    if value is None:
        return ""
    return " ".join(str(value).split())


def normalize_header(value) -> str:
    """Lowercase a header cell and strip accents for vocabulary matching."""
    text = unicodedata.normalize("NFKD", str(value or ""))
    text = "".join(ch for ch in text if not unicodedata.combining(ch))
    return " ".join(text.lower().split())


def build_column_map(headers: Iterable, vocabulary: ColumnVocabulary) -> Dict[str, int]:
    """
    Resolve logical fields to column indices.

    Each field takes the first column whose normalized header contains one of
    its substrings; a column is claimed by at most one field.

    Returns:
        {field: column_index} for the fields that were found
    """
    normalized = [normalize_header(h) for h in headers]
    column_map: Dict[str, int] = {}
    claimed = set()

    for field_name, substrings in vocabulary.items():
        needles = [normalize_header(s) for s in substrings if s]
        for idx, header in enumerate(normalized):
            if idx in claimed or not header:
                continue
            if any(needle in header for needle in needles):
                column_map[field_name] = idx
                claimed.add(idx)
                break

    return column_map


class StatementParser(ABC):
    """Abstract base class for statement format parsers."""

    FORMAT: str = ""  # Override in subclass

    def __init__(self, preferences: ImportPreferences = None):
        self.preferences = preferences or ImportPreferences()

    @abstractmethod
    def parse(self, buffer: bytes) -> ParsedStatement:
        """
        Parse a complete file held in memory.

        Raises:
            ParseError: If the file is malformed or yields no transactions
        """


class ParserRegistry:
    """
    Registry of statement parsers keyed by file extension.

    Example:
        ParserRegistry.register('.csv', CsvStatementParser)
        parser = ParserRegistry.for_extension('.CSV')
    """

    _parsers: Dict[str, Type[StatementParser]] = {}

    @staticmethod
    def _normalize_extension(extension: str) -> str:
        ext = (extension or "").strip().lower()
        if ext and not ext.startswith("."):
            ext = "." + ext
        return ext

    @classmethod
    def register(cls, extension: str, parser_class: Type[StatementParser]) -> None:
        cls._parsers[cls._normalize_extension(extension)] = parser_class
        logger.debug(f"Registered parser {parser_class.__name__} for {extension}")

    @classmethod
    def for_extension(
        cls,
        extension: str,
        preferences: ImportPreferences = None,
    ) -> StatementParser:
        """
        Get a parser instance for a file extension.

        Raises:
            UnsupportedFormatError: If no parser handles the extension
        """
        ext = cls._normalize_extension(extension)
        if ext not in cls._parsers:
            raise UnsupportedFormatError(extension, cls.supported_extensions())
        return cls._parsers[ext](preferences)

    @classmethod
    def supported_extensions(cls) -> List[str]:
        return sorted(cls._parsers)


def amount_from_columns(row, column_map: Dict[str, int]) -> Optional[Decimal]:
    """
    Signed amount of a tabular row.

    Uses the single amount column when one was resolved, else combines the
    debit/credit pair as credit - |debit|. Returns None when nothing parses.
    """
    if "amount" in column_map:
        return parse_amount(row[column_map["amount"]])

    credit = parse_amount(row[column_map["credit"]]) if "credit" in column_map else None
    debit = parse_amount(row[column_map["debit"]]) if "debit" in column_map else None
    if credit is None and debit is None:
        return None
    return (credit or Decimal("0")) - abs(debit or Decimal("0"))
