"""
CSV statement parser.

Reads delimited bank exports (French ';' or ',' layouts). Columns are
resolved from the header row through the configured vocabulary, so new bank
layouts only need a preferences change.
"""

import io
import logging
from typing import List

import pandas as pd

from bankrecon.core.exceptions import ParseError
from bankrecon.parsers.base import (
    StatementParser,
    ParserRegistry,
    amount_from_columns,
    build_column_map,
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


class CsvStatementParser(StatementParser):
    """
    Parser for CSV bank exports.

    Usage:
        parser = CsvStatementParser()
        statement = parser.parse(Path("releve.csv").read_bytes())
    """

    FORMAT = "CSV"

    def parse(self, buffer: bytes) -> ParsedStatement:
        text = self._decode(buffer)
        header_line = next((line for line in text.splitlines() if line.strip()), None)
        if header_line is None:
            raise ParseError(self.FORMAT, "file is empty")

        delimiter = ";" if ";" in header_line else ","

        try:
            df = pd.read_csv(
                io.StringIO(text),
                sep=delimiter,
                dtype=str,
                index_col=False,
                keep_default_na=False,
                skip_blank_lines=True,
                on_bad_lines="skip",
            )
        except (pd.errors.ParserError, pd.errors.EmptyDataError, UnicodeError) as e:
            raise ParseError(self.FORMAT, f"unreadable CSV: {e}")

        column_map = build_column_map(df.columns, self.preferences.columns)
        logger.debug(f"CSV columns resolved: {column_map}")

        if "date" not in column_map or "description" not in column_map:
            raise ParseError(
                self.FORMAT,
                f"missing date or description column in header: {list(df.columns)}"
            )
        if not {"amount", "debit", "credit"} & set(column_map):
            raise ParseError(self.FORMAT, "no amount, debit or credit column in header")

        transactions: List[RawTransaction] = []
        dropped = 0

        for row in df.itertuples(index=False, name=None):
            txn_date = parse_date(row[column_map["date"]])
            description = normalize_description(row[column_map["description"]])
            if txn_date is None or not description:
                continue

            amount = amount_from_columns(row, column_map)
            if amount is None:
                dropped += 1
                continue

            transactions.append(RawTransaction(
                date=txn_date,
                amount=amount,
                description=description,
                external_id=synthetic_id(txn_date, description, amount),
                kind=TransactionKind.from_amount(amount),
            ))

        if not transactions:
            raise ParseError(self.FORMAT, "no valid transaction rows found")

        warnings = validate_transactions(transactions)
        if dropped:
            warnings.append(f"{dropped} row(s) dropped: unparsable amount")

        logger.info(f"Parsed {len(transactions)} CSV transactions ({dropped} dropped)")

        account = ParsedAccount(
            external_account_id=self.preferences.csv_placeholder,
            currency=self.preferences.base_currency,
            transactions=transactions,
            is_placeholder=True,
        )
        return ParsedStatement(accounts=[account], file_format=self.FORMAT, warnings=warnings)

    def _decode(self, buffer: bytes) -> str:
        """Decode as UTF-8 (BOM stripped), falling back to cp1252."""
        try:
            return buffer.decode("utf-8-sig")
        except UnicodeDecodeError:
            logger.debug("CSV is not UTF-8, falling back to cp1252")
        try:
            return buffer.decode("cp1252")
        except UnicodeDecodeError as e:
            raise ParseError(self.FORMAT, f"cannot decode file: {e}")


ParserRegistry.register(".csv", CsvStatementParser)
