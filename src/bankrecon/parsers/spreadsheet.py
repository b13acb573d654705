"""
Spreadsheet (XLSX/XLS) statement parser.

Bank spreadsheets often carry a title block, account details or logos above
the transaction table, so the header row is located by scanning the first
rows of the first sheet rather than assumed to be row 1.
"""

import io
import logging
import numbers
from datetime import date
from typing import Dict, List, Optional

import pandas as pd

from bankrecon.core.exceptions import ParseError
from bankrecon.parsers.base import (
    StatementParser,
    ParserRegistry,
    amount_from_columns,
    build_column_map,
    excel_serial_to_date,
    normalize_description,
    parse_date,
)
from bankrecon.parsers.models import (
    ParsedAccount,
    ParsedStatement,
    RawTransaction,
    TransactionKind,
    synthetic_id,
)
from bankrecon.parsers.utils import validate_transactions

logger = logging.getLogger(__name__)


class SpreadsheetStatementParser(StatementParser):
    """
    Parser for Excel bank exports (openpyxl for .xlsx, xlrd for .xls).

    Usage:
        parser = SpreadsheetStatementParser()
        statement = parser.parse(Path("releve.xlsx").read_bytes())
        statement.warnings  # mentions the fixed-column guess if no header was found
    """

    FORMAT = "XLSX"

    def parse(self, buffer: bytes) -> ParsedStatement:
        df = self._read_grid(buffer)
        warnings: List[str] = []

        header_row = self._find_header_row(df)
        if header_row is not None:
            column_map = build_column_map(df.iloc[header_row].tolist(), self.preferences.columns)
            data = df.iloc[header_row + 1:]
            logger.debug(f"Header found at row {header_row}: {column_map}")
        else:
            column_map = dict(self.preferences.fallback_columns)
            if max(column_map.values()) >= df.shape[1]:
                raise ParseError(
                    self.FORMAT,
                    f"no header row in the first {self.preferences.header_scan_rows} rows "
                    f"and only {df.shape[1]} column(s)"
                )
            data = df
            warnings.append(
                f"No header row found in the first {self.preferences.header_scan_rows} rows; "
                "assumed date, description and amount in the first three columns"
            )
            logger.warning("Spreadsheet header not found, using fixed column guess")

        transactions = self._extract_transactions(data, column_map)
        if not transactions:
            raise ParseError(self.FORMAT, "no valid transaction rows found")

        warnings.extend(validate_transactions(transactions))
        logger.info(f"Parsed {len(transactions)} spreadsheet transactions")

        account = ParsedAccount(
            external_account_id=self.preferences.spreadsheet_placeholder,
            currency=self.preferences.base_currency,
            transactions=transactions,
            is_placeholder=True,
        )
        return ParsedStatement(accounts=[account], file_format=self.FORMAT, warnings=warnings)

    def _read_grid(self, buffer: bytes) -> pd.DataFrame:
        """Read the first sheet without interpreting any row as header."""
        try:
            df = pd.read_excel(io.BytesIO(buffer), sheet_name=0, header=None)
        except ImportError:
            raise
        except Exception as e:
            raise ParseError(self.FORMAT, f"unreadable workbook: {e}")

        df = df.dropna(how="all")
        if df.empty:
            raise ParseError(self.FORMAT, "first sheet is empty")
        return df.reset_index(drop=True)

    def _find_header_row(self, df: pd.DataFrame) -> Optional[int]:
        """First row (within the scan window) naming a date and an amount-like column."""
        for i in range(min(self.preferences.header_scan_rows, len(df))):
            cells = [cell if isinstance(cell, str) else "" for cell in df.iloc[i]]
            column_map = build_column_map(cells, self.preferences.columns)
            if "date" in column_map and {"amount", "debit", "credit"} & set(column_map):
                return i
        return None

    def _extract_transactions(
        self,
        data: pd.DataFrame,
        column_map: Dict[str, int],
    ) -> List[RawTransaction]:
        transactions = []
        has_description = "description" in column_map

        for row in data.itertuples(index=False, name=None):
            txn_date = self._cell_date(row[column_map["date"]])
            if txn_date is None:
                continue

            description = ""
            if has_description:
                cell = row[column_map["description"]]
                description = "" if _is_blank(cell) else normalize_description(cell)
            if not description:
                continue

            amount = amount_from_columns(row, column_map)
            if amount is None:
                continue

            transactions.append(RawTransaction(
                date=txn_date,
                amount=amount,
                description=description,
                external_id=synthetic_id(txn_date, description, amount),
                kind=TransactionKind.from_amount(amount),
            ))

        return transactions

    @staticmethod
    def _cell_date(value) -> Optional[date]:
        """Excel serial, native datetime or day-first string."""
        if _is_blank(value):
            return None
        if isinstance(value, numbers.Number) and not isinstance(value, bool):
            return excel_serial_to_date(value)
        return parse_date(value)


def _is_blank(value) -> bool:
    if value is None:
        return True
    if isinstance(value, str):
        return not value.strip()
    try:
        return bool(pd.isna(value))
    except (TypeError, ValueError):
        return False


ParserRegistry.register(".xlsx", SpreadsheetStatementParser)
ParserRegistry.register(".xls", SpreadsheetStatementParser)
