"""
bankrecon parsers - statement file readers.

Supports parsing of:
- CSV exports (.csv)
- Spreadsheets (.xlsx, .xls)
- OFX/QFX downloads (.ofx, .qfx)

Architecture:
- StatementParser: Abstract base class for all format parsers
- ParserRegistry: Extension-based parser lookup
- ParsedStatement / ParsedAccount / RawTransaction: parser output model
"""

from .base import (
    StatementParser,
    ParserRegistry,
    parse_amount,
    parse_date,
    normalize_description,
    build_column_map,
)
from .models import (
    ParsedStatement,
    ParsedAccount,
    RawTransaction,
    TransactionKind,
    synthetic_id,
)

# Importing the format modules registers their extensions
from .csv_parser import CsvStatementParser
from .spreadsheet import SpreadsheetStatementParser
from .ofx import OfxStatementParser

__all__ = [
    'StatementParser',
    'ParserRegistry',
    'parse_amount',
    'parse_date',
    'normalize_description',
    'build_column_map',
    'ParsedStatement',
    'ParsedAccount',
    'RawTransaction',
    'TransactionKind',
    'synthetic_id',
    'CsvStatementParser',
    'SpreadsheetStatementParser',
    'OfxStatementParser',
]
