"""
Unit tests for resolving parsed accounts to stored accounts.
"""

import pytest
from decimal import Decimal

from bankrecon.core.directory import create_account
from bankrecon.core.exceptions import AccountNotFoundError, UserContextError
from bankrecon.parsers.models import ParsedAccount
from bankrecon.services.account_resolver import AccountResolver
from bankrecon.services.preview import MatchMethod


@pytest.fixture
def resolver(db_connection):
    return AccountResolver(db_connection)


def placeholder(ext_id="CSV_IMPORT"):
    return ParsedAccount(external_account_id=ext_id, is_placeholder=True)


class TestIdentifierMatch:

    def test_exact_iban(self, resolver, user_id, bank, checking_account):
        parsed = ParsedAccount(
            external_account_id="FR76 3000 4000 0312 3456 7890 143",
            statement_balance=Decimal("99.00"),
        )

        (entry,), warnings = resolver.resolve(user_id, bank.id, [parsed])

        assert not entry.is_new
        assert entry.matched_account_id == checking_account.id
        assert entry.match_method == MatchMethod.IDENTIFIER
        assert entry.display_name == "Compte courant"
        assert entry.balance == Decimal("99.00")
        assert entry.masked_identifier == "FR76 **** **** **** 0143"
        assert warnings == []

    def test_only_accounts_of_the_bank(self, resolver, user_id, bank, savings_account):
        # the savings IBAN exists, but at another bank
        parsed = ParsedAccount(external_account_id=savings_account.iban)

        (entry,), _ = resolver.resolve(user_id, bank.id, [parsed])

        assert entry.is_new
        assert entry.match_method == MatchMethod.NONE

    def test_account_number_among_several(self, db_connection, resolver, user_id, bank, checking_account):
        livret = create_account(db_connection, user_id, bank.id, "Livret A", account_number="00012345678")
        db_connection.commit()

        (entry,), _ = resolver.resolve(user_id, bank.id, [ParsedAccount(external_account_id="000 1234 5678")])

        assert entry.matched_account_id == livret.id
        assert entry.match_method == MatchMethod.IDENTIFIER

    def test_other_users_accounts_are_ignored(self, resolver, user_id, bank, foreign_account):
        parsed = ParsedAccount(external_account_id=foreign_account.account_number)

        (entry,), _ = resolver.resolve(user_id, bank.id, [parsed])

        assert entry.is_new


class TestSingleAccountFallback:

    def test_placeholder_matches_only_account(self, resolver, user_id, bank, checking_account):
        (entry,), warnings = resolver.resolve(user_id, bank.id, [placeholder()])

        assert entry.matched_account_id == checking_account.id
        assert entry.match_method == MatchMethod.SINGLE_ACCOUNT
        assert entry.masked_identifier == ""
        assert warnings == []

    def test_identifier_matches_account_without_identifier(self, db_connection, resolver, user_id, bank):
        bare = create_account(db_connection, user_id, bank.id, "Compte sans IBAN")
        db_connection.commit()

        (entry,), _ = resolver.resolve(user_id, bank.id, [ParsedAccount(external_account_id="12345678")])

        assert entry.matched_account_id == bare.id
        assert entry.match_method == MatchMethod.SINGLE_ACCOUNT

    def test_different_identifier_is_a_new_account(self, resolver, user_id, bank, checking_account):
        (entry,), _ = resolver.resolve(user_id, bank.id, [ParsedAccount(external_account_id="55554444")])

        assert entry.is_new
        assert entry.display_name == "Compte ••••4444"

    def test_only_account_is_claimed_once(self, db_connection, resolver, user_id, bank):
        create_account(db_connection, user_id, bank.id, "Compte sans IBAN")
        db_connection.commit()
        parsed = [ParsedAccount(external_account_id="111122223"), ParsedAccount(external_account_id="999988887")]

        first, second = resolver.resolve(user_id, bank.id, parsed)[0]

        assert not first.is_new
        assert second.is_new


class TestNewAccounts:

    def test_placeholder_with_several_accounts_warns(self, db_connection, resolver, user_id, bank,
                                                     checking_account):
        create_account(db_connection, user_id, bank.id, "Second")
        db_connection.commit()

        (entry,), warnings = resolver.resolve(user_id, bank.id, [placeholder("XLSX_IMPORT")])

        assert entry.is_new
        assert entry.display_name == "Compte importé (XLSX)"
        assert len(warnings) == 1
        assert "2 accounts" in warnings[0]

    def test_empty_bank(self, resolver, user_id, bank):
        (entry,), warnings = resolver.resolve(user_id, bank.id, [placeholder()])

        assert entry.is_new
        assert entry.display_name == "Compte importé (CSV)"
        assert warnings == []


class TestExplicitTarget:

    def test_target_wins(self, resolver, user_id, bank, checking_account, savings_account):
        (entry,), warnings = resolver.resolve(
            user_id, bank.id, [placeholder()], target_account_id=savings_account.id
        )

        assert entry.matched_account_id == savings_account.id
        assert entry.match_method == MatchMethod.EXPLICIT
        # the savings account lives at the other bank
        assert any("belongs to bank" in w for w in warnings)

    def test_target_ignored_for_multi_account_files(self, resolver, user_id, bank, checking_account):
        parsed = [ParsedAccount(external_account_id=checking_account.iban),
                  ParsedAccount(external_account_id="4970101234567890", account_type="CREDIT_CARD")]

        entries, warnings = resolver.resolve(user_id, bank.id, parsed, target_account_id=checking_account.id)

        assert entries[0].match_method == MatchMethod.IDENTIFIER
        assert entries[1].is_new
        assert any("ignored" in w for w in warnings)

    def test_missing_target(self, resolver, user_id, bank):
        with pytest.raises(AccountNotFoundError):
            resolver.resolve(user_id, bank.id, [placeholder()], target_account_id=404)

    def test_foreign_target(self, resolver, user_id, bank, foreign_account):
        with pytest.raises(UserContextError):
            resolver.resolve(user_id, bank.id, [placeholder()], target_account_id=foreign_account.id)
