"""
Shared pytest fixtures for bankrecon tests.

Provides an in-memory database, seeded users/banks/accounts and sample
statement files.
"""

import io
import pytest
import sys
from datetime import date
from decimal import Decimal
from pathlib import Path

# Add src to path for imports
sys.path.insert(0, str(Path(__file__).parent.parent / "src"))

from bankrecon.core.database import DatabaseManager
from bankrecon.core.directory import create_account, create_bank, get_or_create_user
from bankrecon.core.preferences import ImportPreferences
from bankrecon.core.security import UserContext


# Test password for encrypted database
TEST_DB_PASSWORD = "test_password_123"

CHECKING_IBAN = "FR7630004000031234567890143"
SAVINGS_IBAN = "FR7640618802980000123456789"


@pytest.fixture
def db_manager():
    """Provide a fresh DatabaseManager instance for each test."""
    # Reset singleton to ensure clean state
    DatabaseManager.reset_instance()
    manager = DatabaseManager()
    yield manager
    # Cleanup
    manager.close()
    DatabaseManager.reset_instance()
    UserContext.clear()


@pytest.fixture
def db_connection(db_manager):
    """Provide an initialized in-memory database connection."""
    conn = db_manager.init(":memory:", TEST_DB_PASSWORD)
    yield conn
    # Connection is closed by db_manager fixture


@pytest.fixture
def preferences():
    """Default import preferences."""
    return ImportPreferences()


@pytest.fixture
def user_id(db_connection):
    """Create the main test user."""
    return get_or_create_user(db_connection, "Test User")


@pytest.fixture
def other_user_id(db_connection):
    """A second user whose data must stay invisible to the first."""
    return get_or_create_user(db_connection, "Other User")


@pytest.fixture
def bank(db_connection, user_id):
    """Source bank of most imports."""
    return create_bank(db_connection, user_id, "BNP Paribas", bic="BNPAFRPP", bank_code="30004")


@pytest.fixture
def other_bank(db_connection, user_id):
    """A second bank of the same user."""
    return create_bank(db_connection, user_id, "Boursorama", bic="BOUSFRPP", bank_code="40618")


@pytest.fixture
def checking_account(db_connection, user_id, bank):
    """Checking account with an IBAN at the source bank."""
    account = create_account(
        db_connection,
        user_id=user_id,
        bank_id=bank.id,
        name="Compte courant",
        iban=CHECKING_IBAN,
        balance=Decimal("1000.00"),
    )
    db_connection.commit()
    return account


@pytest.fixture
def savings_account(db_connection, user_id, other_bank):
    """Savings account with an IBAN at the other bank."""
    account = create_account(
        db_connection,
        user_id=user_id,
        bank_id=other_bank.id,
        name="Livret",
        iban=SAVINGS_IBAN,
        account_type="SAVINGS",
        balance=Decimal("5000.00"),
    )
    db_connection.commit()
    return account


@pytest.fixture
def foreign_bank(db_connection, other_user_id):
    """A bank that belongs to the other user."""
    return create_bank(db_connection, other_user_id, "Crédit Agricole")


@pytest.fixture
def foreign_account(db_connection, other_user_id, foreign_bank):
    """An account that belongs to the other user."""
    account = create_account(
        db_connection,
        user_id=other_user_id,
        bank_id=foreign_bank.id,
        name="Compte tiers",
        account_number="99887766",
    )
    db_connection.commit()
    return account


@pytest.fixture
def csv_bytes():
    """French debit/credit CSV export."""
    content = (
        "Date;Libellé;Débit;Crédit\n"
        "01/03/2024;LOYER MARS;750,00;\n"
        "05/03/2024;SALAIRE MARS;;2 500,00\n"
        "10/03/2024;CARTE  SUPERMARCHE;  45,30;\n"
    )
    return content.encode("utf-8")


@pytest.fixture
def ofx_sgml_bytes():
    """OFX 1.x (SGML) bank statement with two transactions at different depths."""
    content = """OFXHEADER:100
DATA:OFXSGML
VERSION:102
SECURITY:NONE
ENCODING:USASCII
CHARSET:1252
COMPRESSION:NONE
OLDFILEUID:NONE
NEWFILEUID:NONE

<OFX>
<SIGNONMSGSRSV1>
<SONRS>
<STATUS>
<CODE>0
<SEVERITY>INFO
</STATUS>
<DTSERVER>20240331120000
<LANGUAGE>FRA
</SONRS>
</SIGNONMSGSRSV1>
<BANKMSGSRSV1>
<STMTTRNRS>
<TRNUID>0
<STMTRS>
<CURDEF>EUR
<BANKACCTFROM>
<BANKID>30004
<BRANCHID>00003
<ACCTID>FR7630004000031234567890143
<ACCTTYPE>CHECKING
</BANKACCTFROM>
<BANKTRANLIST>
<DTSTART>20240301
<DTEND>20240331
<STMTTRN>
<TRNTYPE>DEBIT
<DTPOSTED>20240302
<TRNAMT>-42.50
<FITID>FIT0001
<NAME>CARTE BOULANGERIE
</STMTTRN>
<BANKTRANLIST>
<STMTTRN>
<TRNTYPE>CREDIT
<DTPOSTED>20240305120000.000[+1:CET]
<TRNAMT>2500.00
<FITID>FIT0002
<NAME>SALAIRE
<MEMO>MARS 2024
</STMTTRN>
</BANKTRANLIST>
</BANKTRANLIST>
<LEDGERBAL>
<BALAMT>3457.50
<DTASOF>20240331
</LEDGERBAL>
</STMTRS>
</STMTTRNRS>
</BANKMSGSRSV1>
</OFX>
"""
    return content.encode("cp1252")


@pytest.fixture
def ofx_xml_bytes():
    """OFX 2.x (XML) file with a bank and a credit card statement."""
    content = """<?xml version="1.0" encoding="UTF-8"?>
<?OFX OFXHEADER="200" VERSION="211" SECURITY="NONE" OLDFILEUID="NONE" NEWFILEUID="NONE"?>
<OFX>
  <BANKMSGSRSV1>
    <STMTTRNRS>
      <STMTRS>
        <CURDEF>eur</CURDEF>
        <BANKACCTFROM>
          <BANKID>BNPAFRPPXXX</BANKID>
          <ACCTID>12345678901</ACCTID>
          <ACCTTYPE>SAVINGS</ACCTTYPE>
        </BANKACCTFROM>
        <BANKTRANLIST>
          <STMTTRN>
            <TRNTYPE>INT</TRNTYPE>
            <DTPOSTED>20240331</DTPOSTED>
            <TRNAMT>12.34</TRNAMT>
            <FITID>INT-2024-03</FITID>
            <NAME>INTERETS</NAME>
          </STMTTRN>
        </BANKTRANLIST>
        <LEDGERBAL>
          <BALAMT>1012.34</BALAMT>
          <DTASOF>20240331</DTASOF>
        </LEDGERBAL>
      </STMTRS>
    </STMTTRNRS>
  </BANKMSGSRSV1>
  <CREDITCARDMSGSRSV1>
    <CCSTMTTRNRS>
      <CCSTMTRS>
        <CURDEF>EUR</CURDEF>
        <CCACCTFROM>
          <ACCTID>4970101234567890</ACCTID>
        </CCACCTFROM>
        <BANKTRANLIST>
          <STMTTRN>
            <TRNTYPE>DEBIT</TRNTYPE>
            <DTPOSTED>20240315</DTPOSTED>
            <TRNAMT>-89.90</TRNAMT>
            <FITID>CC-0001</FITID>
            <NAME>LIBRAIRIE</NAME>
          </STMTTRN>
        </BANKTRANLIST>
      </CCSTMTRS>
    </CCSTMTTRNRS>
  </CREDITCARDMSGSRSV1>
</OFX>
"""
    return content.encode("utf-8")


@pytest.fixture
def make_xlsx():
    """Build an .xlsx file in memory from a list of rows."""
    from openpyxl import Workbook

    def _make(rows):
        wb = Workbook()
        ws = wb.active
        for row in rows:
            ws.append(list(row))
        buffer = io.BytesIO()
        wb.save(buffer)
        return buffer.getvalue()

    return _make


@pytest.fixture
def march_dates():
    """A few dates reused across spreadsheet tests."""
    return [date(2024, 3, 1), date(2024, 3, 5), date(2024, 3, 10)]
