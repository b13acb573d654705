"""
OFX/QFX statement parser.

Handles both SGML (OFX 1.x, unclosed leaf elements) and XML (OFX 2.x)
files, bank statements (STMTRS) and credit card statements (CCSTMTRS).
Statements and transactions are located by walking the whole element tree,
so wrappers that differ between banks do not matter.
"""

import logging
import re
from datetime import date, datetime
from typing import Iterator, List, Optional

from bs4 import BeautifulSoup, Tag

from bankrecon.core.exceptions import ParseError
from bankrecon.parsers.base import (
    StatementParser,
    ParserRegistry,
    normalize_description,
    parse_amount,
)
from bankrecon.parsers.models import (
    ParsedAccount,
    ParsedStatement,
    RawTransaction,
    TransactionKind,
    synthetic_id,
)
from bankrecon.parsers.utils import bic_from_bank_code, validate_transactions

logger = logging.getLogger(__name__)

STATEMENT_TAGS = ["stmtrs", "ccstmtrs"]
TRANSACTION_TAG = "stmttrn"

CREDIT_TYPES = {"CREDIT", "DEP", "INT", "DIV", "DIRECTDEP"}
DEBIT_TYPES = {"DEBIT", "PAYMENT", "CHECK", "ATM", "POS", "FEE", "SRVCHG", "DIRECTDEBIT", "REPEATPMT"}

_OFX_ROOT = re.compile(r"<OFX>", re.IGNORECASE)
# <TAG>value not followed by </TAG>: an SGML leaf element
_UNCLOSED_LEAF = re.compile(
    r"<([A-Za-z0-9_.]+)>([^<\r\n]*[^<\s])\s*(?=<|\Z)(?!</\1>)",
    re.IGNORECASE,
)


def iter_tags(root: Tag, names) -> Iterator[Tag]:
    """Lazily yield every descendant element whose name is in names, at any depth."""
    names = {names} if isinstance(names, str) else set(names)
    for node in root.descendants:
        if isinstance(node, Tag) and node.name in names:
            yield node


def leaf_text(node: Optional[Tag], name: str) -> Optional[str]:
    """
    Text of the first descendant element called name.

    Only the element's own text is read, so a leaf the closer missed (and
    that html.parser therefore nested its siblings into) still yields just
    its value.
    """
    if node is None:
        return None
    child = node.find(name)
    if child is None:
        return None
    text = "".join(child.find_all(string=True, recursive=False)).strip()
    return text or None


def parse_ofx_date(value: Optional[str]) -> Optional[date]:
    """OFX datetime (YYYYMMDD[HHMMSS[.XXX]][TZ]) to a date; the day part only."""
    if not value or len(value) < 8:
        return None
    try:
        return datetime.strptime(value[:8], "%Y%m%d").date()
    except ValueError:
        return None


class OfxStatementParser(StatementParser):
    """
    Parser for OFX and QFX statement downloads.

    Usage:
        parser = OfxStatementParser()
        statement = parser.parse(Path("releve.ofx").read_bytes())
        for account in statement.accounts:
            print(account.external_account_id, len(account.transactions))
    """

    FORMAT = "OFX"

    def parse(self, buffer: bytes) -> ParsedStatement:
        soup = self._load(buffer)

        if next(iter_tags(soup, TRANSACTION_TAG), None) is None:
            raise ParseError(
                self.FORMAT,
                "file readable but structurally incompatible: no STMTTRN transaction found"
            )

        warnings: List[str] = []
        accounts: List[ParsedAccount] = []

        for stmt in iter_tags(soup, STATEMENT_TAGS):
            account = self._parse_statement(stmt, warnings)
            accounts.append(account)
            logger.debug(
                f"OFX statement {account.account_type}: "
                f"{len(account.transactions)} transactions"
            )

        orphans = [
            self._parse_transaction(trn, warnings)
            for trn in iter_tags(soup, TRANSACTION_TAG)
            if trn.find_parent(STATEMENT_TAGS) is None
        ]
        orphans = [txn for txn in orphans if txn is not None]
        if orphans:
            warnings.append(
                f"{len(orphans)} transaction(s) outside any statement block; "
                "grouped under one unidentified account"
            )
            accounts.append(ParsedAccount(
                external_account_id=self.preferences.ofx_placeholder,
                currency=self.preferences.base_currency,
                transactions=orphans,
                is_placeholder=True,
            ))

        if not any(account.transactions for account in accounts):
            raise ParseError(self.FORMAT, "no transaction with a valid date and amount")

        for account in accounts:
            warnings.extend(validate_transactions(account.transactions))

        logger.info(
            f"Parsed OFX: {len(accounts)} account(s), "
            f"{sum(len(a.transactions) for a in accounts)} transactions"
        )
        return ParsedStatement(accounts=accounts, file_format=self.FORMAT, warnings=warnings)

    def _load(self, buffer: bytes) -> BeautifulSoup:
        """Decode, drop the header block, close SGML leaves and build the tree."""
        text = None
        for encoding in ("utf-8-sig", "cp1252"):
            try:
                text = buffer.decode(encoding)
                break
            except UnicodeDecodeError:
                continue
        if text is None:
            raise ParseError(self.FORMAT, "file unreadable: cannot decode content")

        match = _OFX_ROOT.search(text)
        if match is None:
            raise ParseError(self.FORMAT, "file unreadable: no <OFX> root element")

        body = _UNCLOSED_LEAF.sub(r"<\1>\2</\1>", text[match.start():])
        return BeautifulSoup(body, "html.parser")

    def _parse_statement(self, stmt: Tag, warnings: List[str]) -> ParsedAccount:
        is_credit_card = stmt.name == "ccstmtrs"
        acct_from = stmt.find(["bankacctfrom", "ccacctfrom"])

        account_id = leaf_text(acct_from, "acctid")
        bank_code = leaf_text(acct_from, "bankid")

        if is_credit_card:
            account_type = "CREDIT_CARD"
        else:
            account_type = "SAVINGS" if leaf_text(acct_from, "accttype") == "SAVINGS" else "CHECKING"

        ledger = stmt.find("ledgerbal")
        balance = parse_amount(leaf_text(ledger, "balamt")) if ledger is not None else None
        balance_date = parse_ofx_date(leaf_text(ledger, "dtasof")) if ledger is not None else None

        transactions = []
        for trn in iter_tags(stmt, TRANSACTION_TAG):
            # a nested statement block owns its own transactions
            if trn.find_parent(STATEMENT_TAGS) is not stmt:
                continue
            txn = self._parse_transaction(trn, warnings)
            if txn is not None:
                transactions.append(txn)

        if not account_id:
            warnings.append("Statement without ACCTID; account will need manual matching")

        return ParsedAccount(
            external_account_id=account_id or self.preferences.ofx_placeholder,
            currency=(leaf_text(stmt, "curdef") or self.preferences.base_currency).upper(),
            statement_balance=balance,
            transactions=transactions,
            bank_code=bank_code,
            balance_date=balance_date,
            account_type=account_type,
            bic=bic_from_bank_code(bank_code),
            is_placeholder=not account_id,
        )

    def _parse_transaction(self, trn: Tag, warnings: List[str]) -> Optional[RawTransaction]:
        fitid = leaf_text(trn, "fitid")

        txn_date = parse_ofx_date(leaf_text(trn, "dtposted"))
        if txn_date is None:
            warnings.append(f"Transaction {fitid or '?'} skipped: invalid DTPOSTED")
            return None

        amount = parse_amount(leaf_text(trn, "trnamt"))
        if amount is None:
            warnings.append(f"Transaction {fitid or '?'} skipped: invalid TRNAMT")
            return None

        description = normalize_description(
            " ".join(part for part in (leaf_text(trn, "name"), leaf_text(trn, "memo")) if part)
        )

        trn_type = (leaf_text(trn, "trntype") or "").upper()
        if trn_type in CREDIT_TYPES:
            kind = TransactionKind.CREDIT
        elif trn_type in DEBIT_TYPES:
            kind = TransactionKind.DEBIT
        else:
            kind = TransactionKind.from_amount(amount)

        acct_to = trn.find(["bankacctto", "ccacctto"])

        return RawTransaction(
            date=txn_date,
            amount=amount,
            description=description,
            external_id=fitid or synthetic_id(txn_date, description, amount),
            kind=kind,
            counterparty_id=leaf_text(acct_to, "acctid"),
            check_number=leaf_text(trn, "checknum"),
        )


ParserRegistry.register(".ofx", OfxStatementParser)
ParserRegistry.register(".qfx", OfxStatementParser)
