"""
Unit tests for the OFX/QFX statement parser.

Covers SGML (OFX 1.x) and XML (OFX 2.x) files, nested transaction lists
and the error taxonomy.
"""

import pytest
from datetime import date
from decimal import Decimal

from bankrecon.core.exceptions import ParseError
from bankrecon.parsers.models import TransactionKind
from bankrecon.parsers.ofx import (
    OfxStatementParser,
    iter_tags,
    leaf_text,
    parse_ofx_date,
)


@pytest.fixture
def parser():
    return OfxStatementParser()


def wrap(body: str) -> bytes:
    """Minimal SGML OFX document around a body."""
    return ("OFXHEADER:100\nDATA:OFXSGML\n\n<OFX>\n" + body + "\n</OFX>\n").encode("utf-8")


class TestSgmlStatement:

    def test_account_details(self, parser, ofx_sgml_bytes):
        statement = parser.parse(ofx_sgml_bytes)

        assert statement.file_format == "OFX"
        assert len(statement.accounts) == 1
        account = statement.accounts[0]
        assert account.external_account_id == "FR7630004000031234567890143"
        assert not account.is_placeholder
        assert account.currency == "EUR"
        assert account.account_type == "CHECKING"
        assert account.bank_code == "30004"
        assert account.bic == "BNPAFRPP"
        assert account.statement_balance == Decimal("3457.50")
        assert account.balance_date == date(2024, 3, 31)

    def test_transactions_at_any_depth(self, parser, ofx_sgml_bytes):
        transactions = parser.parse(ofx_sgml_bytes).accounts[0].transactions

        assert [t.external_id for t in transactions] == ["FIT0001", "FIT0002"]
        card, salary = transactions
        assert card.date == date(2024, 3, 2)
        assert card.amount == Decimal("-42.50")
        assert card.kind is TransactionKind.DEBIT
        assert card.description == "CARTE BOULANGERIE"
        # timezone suffix is ignored, NAME and MEMO are joined
        assert salary.date == date(2024, 3, 5)
        assert salary.description == "SALAIRE MARS 2024"
        assert salary.kind is TransactionKind.CREDIT

    def test_parsing_is_deterministic(self, parser, ofx_sgml_bytes):
        first = parser.parse(ofx_sgml_bytes)
        second = parser.parse(ofx_sgml_bytes)
        assert first == second

    def test_counterparty_and_check_number(self, parser):
        buffer = wrap("""<BANKMSGSRSV1><STMTTRNRS><STMTRS>
<BANKACCTFROM><ACCTID>11112222<ACCTTYPE>CHECKING</BANKACCTFROM>
<BANKTRANLIST>
<STMTTRN>
<TRNTYPE>XFER
<DTPOSTED>20240310
<TRNAMT>-200,00
<FITID>X1
<CHECKNUM>000123
<NAME>VIR VERS LIVRET
<BANKACCTTO>
<BANKID>40618
<ACCTID>FR7640618802980000123456789
</BANKACCTTO>
</STMTTRN>
</BANKTRANLIST>
</STMTRS></STMTTRNRS></BANKMSGSRSV1>""")

        txn = parser.parse(buffer).accounts[0].transactions[0]

        assert txn.amount == Decimal("-200.00")
        assert txn.kind is TransactionKind.DEBIT
        assert txn.check_number == "000123"
        assert txn.counterparty_id == "FR7640618802980000123456789"


class TestXmlStatement:

    def test_bank_and_credit_card_statements(self, parser, ofx_xml_bytes):
        statement = parser.parse(ofx_xml_bytes)

        savings, card = statement.accounts
        assert savings.external_account_id == "12345678901"
        assert savings.account_type == "SAVINGS"
        assert savings.currency == "EUR"
        assert savings.bic == "BNPAFRPPXXX"
        assert savings.statement_balance == Decimal("1012.34")
        assert savings.transactions[0].kind is TransactionKind.CREDIT

        assert card.external_account_id == "4970101234567890"
        assert card.account_type == "CREDIT_CARD"
        assert card.statement_balance is None
        assert card.transactions[0].amount == Decimal("-89.90")
        assert card.transactions[0].external_id == "CC-0001"


class TestDegradedFiles:

    def test_statement_without_acctid(self, parser):
        buffer = wrap("""<STMTRS><BANKTRANLIST><STMTTRN>
<DTPOSTED>20240301<TRNAMT>-1.00<FITID>A<NAME>X
</STMTTRN></BANKTRANLIST></STMTRS>""")

        statement = parser.parse(buffer)

        account = statement.accounts[0]
        assert account.external_account_id == "OFX_IMPORT"
        assert account.is_placeholder
        assert any("without ACCTID" in w for w in statement.warnings)

    def test_orphan_transactions_grouped(self, parser):
        buffer = wrap("""<BANKTRANLIST><STMTTRN>
<DTPOSTED>20240301<TRNAMT>5<NAME>ORPHAN
</STMTTRN></BANKTRANLIST>""")

        statement = parser.parse(buffer)

        account = statement.accounts[0]
        assert account.external_account_id == "OFX_IMPORT"
        assert account.is_placeholder
        txn = account.transactions[0]
        # no FITID: falls back to a synthetic id
        assert txn.external_id.startswith("gen:")
        assert txn.kind is TransactionKind.CREDIT
        assert any("outside any statement" in w for w in statement.warnings)

    def test_invalid_transactions_skipped_with_warning(self, parser):
        buffer = wrap("""<STMTRS><BANKACCTFROM><ACCTID>123456</BANKACCTFROM><BANKTRANLIST>
<STMTTRN><DTPOSTED>20240301<TRNAMT>-1.00<FITID>GOOD<NAME>OK</STMTTRN>
<STMTTRN><DTPOSTED>2024XX01<TRNAMT>-1.00<FITID>BADDATE<NAME>KO</STMTTRN>
<STMTTRN><DTPOSTED>20240301<TRNAMT>abc<FITID>BADAMT<NAME>KO</STMTTRN>
</BANKTRANLIST></STMTRS>""")

        statement = parser.parse(buffer)

        assert [t.external_id for t in statement.accounts[0].transactions] == ["GOOD"]
        assert any("BADDATE" in w and "DTPOSTED" in w for w in statement.warnings)
        assert any("BADAMT" in w and "TRNAMT" in w for w in statement.warnings)


class TestOfxErrors:

    def test_no_ofx_root(self, parser):
        with pytest.raises(ParseError, match="file unreadable"):
            parser.parse(b"OFXHEADER:100\nnothing here")

    def test_no_transactions(self, parser):
        with pytest.raises(ParseError, match="structurally incompatible"):
            parser.parse(wrap("<STMTRS><BANKACCTFROM><ACCTID>1</BANKACCTFROM></STMTRS>"))

    def test_no_valid_transactions(self, parser):
        with pytest.raises(ParseError, match="no transaction with a valid date"):
            parser.parse(wrap("<STMTRS><STMTTRN><DTPOSTED>bad<TRNAMT>1</STMTTRN></STMTRS>"))


class TestHelpers:

    def test_parse_ofx_date(self):
        assert parse_ofx_date("20240305120000.000[+1:CET]") == date(2024, 3, 5)
        assert parse_ofx_date("20240305") == date(2024, 3, 5)
        assert parse_ofx_date("2024") is None
        assert parse_ofx_date(None) is None
        assert parse_ofx_date("20241332") is None

    def test_iter_tags_is_lazy_and_recursive(self, parser, ofx_sgml_bytes):
        soup = parser._load(ofx_sgml_bytes)

        found = iter_tags(soup, "stmttrn")

        assert next(found) is not None
        assert len(list(iter_tags(soup, ["stmttrn"]))) == 2

    def test_leaf_text(self, parser, ofx_sgml_bytes):
        soup = parser._load(ofx_sgml_bytes)

        assert leaf_text(soup, "acctid") == "FR7630004000031234567890143"
        assert leaf_text(soup, "missing") is None
        assert leaf_text(None, "acctid") is None
