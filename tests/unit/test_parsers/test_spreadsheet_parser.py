"""
Unit tests for the XLSX/XLS statement parser.

Workbooks are built in memory with openpyxl.
"""

import pytest
from datetime import date, datetime
from decimal import Decimal

from bankrecon.core.exceptions import ParseError
from bankrecon.parsers.spreadsheet import SpreadsheetStatementParser


@pytest.fixture
def parser():
    return SpreadsheetStatementParser()


class TestHeaderDetection:

    def test_header_below_title_block(self, parser, make_xlsx):
        buffer = make_xlsx([
            ["Relevé de compte"],
            ["Titulaire", "M. Dupont"],
            [],
            ["Date", "Libellé", "Débit", "Crédit"],
            [datetime(2024, 3, 1), "LOYER MARS", 750.0, None],
            [datetime(2024, 3, 5), "SALAIRE", None, 2500.0],
        ])

        statement = parser.parse(buffer)

        account = statement.accounts[0]
        assert statement.file_format == "XLSX"
        assert account.external_account_id == "XLSX_IMPORT"
        assert account.is_placeholder
        assert [t.date for t in account.transactions] == [date(2024, 3, 1), date(2024, 3, 5)]
        assert [t.amount for t in account.transactions] == [Decimal("-750"), Decimal("2500")]
        assert statement.warnings == []

    def test_string_cells_and_signed_amount(self, parser, make_xlsx):
        buffer = make_xlsx([
            ["Date", "Description", "Montant"],
            ["01/03/2024", "CARTE  BOULANGERIE", "-4,20"],
        ])

        txn = parser.parse(buffer).accounts[0].transactions[0]

        assert txn.date == date(2024, 3, 1)
        assert txn.description == "CARTE BOULANGERIE"
        assert txn.amount == Decimal("-4.20")

    def test_excel_serial_dates(self, parser, make_xlsx):
        buffer = make_xlsx([
            ["Date", "Libellé", "Montant"],
            [45352, "X", -1.5],
        ])

        txn = parser.parse(buffer).accounts[0].transactions[0]

        assert txn.date == date(2024, 3, 1)

    def test_header_beyond_scan_window_uses_fixed_columns(self, make_xlsx, preferences):
        preferences.header_scan_rows = 2
        rows = [["Banque"], ["Export"], ["Date", "Libellé", "Montant"]]
        rows.append([datetime(2024, 3, 1), "X", -1.0])

        statement = SpreadsheetStatementParser(preferences).parse(make_xlsx(rows))

        # the header row itself is skipped as it has no date
        assert statement.transaction_count == 1
        assert any("No header row found" in w for w in statement.warnings)


class TestRowFiltering:

    def test_blank_and_summary_rows_are_skipped(self, parser, make_xlsx):
        buffer = make_xlsx([
            ["Date", "Libellé", "Montant"],
            [datetime(2024, 3, 1), "OK", -1.0],
            [None, None, None],
            [datetime(2024, 3, 2), None, -2.0],
            ["Total", None, -3.0],
            [datetime(2024, 3, 3), "NO AMOUNT", None],
        ])

        transactions = parser.parse(buffer).accounts[0].transactions

        assert [t.description for t in transactions] == ["OK"]


class TestSpreadsheetErrors:

    def test_not_a_workbook(self, parser):
        with pytest.raises(ParseError, match="unreadable workbook"):
            parser.parse(b"this is not a spreadsheet")

    def test_empty_sheet(self, parser, make_xlsx):
        with pytest.raises(ParseError, match="empty"):
            parser.parse(make_xlsx([]))

    def test_no_transactions(self, parser, make_xlsx):
        buffer = make_xlsx([["Date", "Libellé", "Montant"], ["Aucune opération", None, None]])
        with pytest.raises(ParseError, match="no valid transaction"):
            parser.parse(buffer)

    def test_too_narrow_without_header(self, parser, make_xlsx):
        with pytest.raises(ParseError, match="no header row"):
            parser.parse(make_xlsx([["a", "b"], ["c", "d"]]))
