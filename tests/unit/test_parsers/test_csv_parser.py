"""
Unit tests for the CSV statement parser.
"""

import pytest
from datetime import date
from decimal import Decimal

from bankrecon.core.exceptions import ParseError
from bankrecon.core.preferences import ImportPreferences
from bankrecon.parsers.csv_parser import CsvStatementParser
from bankrecon.parsers.models import TransactionKind


@pytest.fixture
def parser():
    return CsvStatementParser()


class TestCsvParsing:

    def test_debit_credit_layout(self, parser, csv_bytes):
        statement = parser.parse(csv_bytes)

        assert statement.file_format == "CSV"
        assert len(statement.accounts) == 1
        account = statement.accounts[0]
        assert account.external_account_id == "CSV_IMPORT"
        assert account.is_placeholder
        assert account.currency == "EUR"

        rent, salary, card = account.transactions
        assert rent.date == date(2024, 3, 1)
        assert rent.description == "LOYER MARS"
        assert rent.amount == Decimal("-750.00")
        assert rent.kind is TransactionKind.DEBIT
        assert salary.amount == Decimal("2500.00")
        assert salary.kind is TransactionKind.CREDIT
        # whitespace runs collapse
        assert card.description == "CARTE SUPERMARCHE"
        assert card.amount == Decimal("-45.30")

    def test_single_amount_column_comma_delimited(self, parser):
        content = b"Date,Description,Amount\n2024-03-01,COFFEE,-3.50\n2024-03-02,REFUND,10\n"

        statement = parser.parse(content)

        amounts = [t.amount for t in statement.accounts[0].transactions]
        assert amounts == [Decimal("-3.50"), Decimal("10")]

    def test_every_row_has_a_synthetic_external_id(self, parser, csv_bytes):
        transactions = parser.parse(csv_bytes).accounts[0].transactions

        ids = [t.external_id for t in transactions]
        assert all(i.startswith("gen:") for i in ids)
        assert len(set(ids)) == len(ids)

    def test_parsing_is_deterministic(self, parser, csv_bytes):
        first = parser.parse(csv_bytes).accounts[0].transactions
        second = parser.parse(csv_bytes).accounts[0].transactions
        assert [t.external_id for t in first] == [t.external_id for t in second]

    def test_cp1252_fallback(self, parser):
        content = "Date;Libellé;Montant\n01/03/2024;PRÉLÈVEMENT EDF;-60,00\n".encode("cp1252")

        txn = parser.parse(content).accounts[0].transactions[0]

        assert txn.description == "PRÉLÈVEMENT EDF"
        assert txn.amount == Decimal("-60.00")

    def test_trailing_delimiter_on_data_rows(self, parser):
        # header without the trailing ';' that every data row carries
        content = (
            "Date;Libellé;Débit;Crédit\n"
            "01/03/2024;LOYER MARS;750,00;;\n"
            "05/03/2024;SALAIRE MARS;;2 500,00;\n"
        ).encode("utf-8")

        rent, salary = parser.parse(content).accounts[0].transactions

        assert rent.date == date(2024, 3, 1)
        assert rent.description == "LOYER MARS"
        assert rent.amount == Decimal("-750.00")
        assert salary.amount == Decimal("2500.00")

    def test_utf8_bom(self, parser):
        content = "\ufeffDate;Libellé;Montant\n01/03/2024;X;1,00\n".encode("utf-8")
        assert parser.parse(content).transaction_count == 1

    def test_rows_without_date_or_description_are_skipped(self, parser):
        content = (
            "Date;Libellé;Montant\n"
            "01/03/2024;OK;-1,00\n"
            ";NO DATE;-2,00\n"
            "02/03/2024;;-3,00\n"
            "Solde au 31/03;;\n"
        ).encode("utf-8")

        statement = parser.parse(content)

        assert [t.description for t in statement.accounts[0].transactions] == ["OK"]
        assert statement.warnings == []

    def test_unparsable_amount_is_dropped_with_warning(self, parser):
        content = "Date;Libellé;Montant\n01/03/2024;OK;-1,00\n02/03/2024;BAD;n/a\n".encode("utf-8")

        statement = parser.parse(content)

        assert statement.transaction_count == 1
        assert any("1 row(s) dropped" in w for w in statement.warnings)

    def test_identical_rows_are_flagged(self, parser):
        content = "Date;Libellé;Montant\n01/03/2024;CAFE;-2,00\n01/03/2024;CAFE;-2,00\n".encode("utf-8")

        statement = parser.parse(content)

        assert statement.transaction_count == 2
        assert any("Same identifier" in w for w in statement.warnings)

    def test_custom_placeholder_and_currency(self, csv_bytes):
        prefs = ImportPreferences.from_dict({
            "base_currency": "CHF",
            "accounts": {"placeholders": {"csv": "MY_CSV"}},
        })

        account = CsvStatementParser(prefs).parse(csv_bytes).accounts[0]

        assert account.external_account_id == "MY_CSV"
        assert account.currency == "CHF"


class TestCsvErrors:

    def test_empty_file(self, parser):
        with pytest.raises(ParseError) as exc_info:
            parser.parse(b"\n\n")
        assert exc_info.value.format == "CSV"

    def test_missing_date_column(self, parser):
        with pytest.raises(ParseError, match="missing date or description"):
            parser.parse(b"Libelle;Montant\nX;1\n")

    def test_missing_amount_columns(self, parser):
        with pytest.raises(ParseError, match="no amount"):
            parser.parse(b"Date;Libelle;Solde\n01/03/2024;X;1\n")

    def test_no_valid_rows(self, parser):
        with pytest.raises(ParseError, match="no valid transaction"):
            parser.parse(b"Date;Libelle;Montant\n;;\n")
