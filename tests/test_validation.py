"""
Tests for two-stage entry validation.
"""

from decimal import Decimal
from uuid import uuid4

import pytest

from src.config import LedgerSettings
from src.models.ledger import (
    Account,
    AccountType,
    EntryType,
    LedgerEntry,
    LedgerEntryCreate,
    LedgerEntryPatch,
)
from src.validation import EntryValidator, normalize_amount, parse_entry_type


@pytest.fixture
def validator(ledger_settings) -> EntryValidator:
    return EntryValidator(ledger_settings)


class TestNormalizeAmount:

    @pytest.mark.parametrize("amount, entry_type, expected", [
        ("30", EntryType.INCOME, "30"),
        ("-30", EntryType.INCOME, "30"),
        ("30", EntryType.EXPENSE, "-30"),
        ("-30", EntryType.EXPENSE, "-30"),
        ("30", EntryType.TRANSFER, "-30"),
    ])
    def test_sign_follows_entry_type(self, amount, entry_type, expected):
        assert normalize_amount(Decimal(amount), entry_type) == Decimal(expected)

    def test_parse_entry_type(self):
        assert parse_entry_type("EXPENSE") == EntryType.EXPENSE
        assert parse_entry_type("refund") is None
        assert parse_entry_type(None) is None


class TestValidateCreate:

    def test_valid_request(self, validator):
        result = validator.validate_create(LedgerEntryCreate(
            account_id=uuid4(), amount=Decimal("10"), entry_type="income",
        ))

        assert result.is_valid
        assert result.issues == []

    def test_schema_failure_skips_semantic_stage(self, validator):
        result = validator.validate_create(LedgerEntryCreate(entry_type="expense"))

        assert not result.schema_valid
        assert not result.semantic_valid
        assert [i.field for i in result.issues] == ["account_id", "amount"]

    def test_negative_amount_is_a_warning(self, validator):
        result = validator.validate_create(LedgerEntryCreate(
            account_id=uuid4(), amount=Decimal("-10"), entry_type="expense",
        ))

        assert result.is_valid
        assert not result.has_errors
        assert len(result.warnings) == 1

    def test_transfer_needs_distinct_related_account(self, validator):
        account_id = uuid4()

        result = validator.validate_create(LedgerEntryCreate(
            account_id=account_id,
            related_account_id=account_id,
            amount=Decimal("10"),
            entry_type="transfer",
        ))

        assert result.error_count == 1
        assert result.issues[0].field == "related_account_id"


class TestValidatePatch:

    def make_entry(self, entry_type=EntryType.EXPENSE) -> LedgerEntry:
        related = uuid4() if entry_type == EntryType.TRANSFER else None
        return LedgerEntry(
            user_id="user-1",
            account_id=uuid4(),
            related_account_id=related,
            amount=Decimal("-10"),
            entry_type=entry_type,
        )

    def test_amount_and_note_patch_valid(self, validator):
        result = validator.validate_patch(
            self.make_entry(), LedgerEntryPatch(amount=Decimal("12.5"), note="x")
        )

        assert result.is_valid

    def test_expense_to_income_allowed(self, validator):
        result = validator.validate_patch(
            self.make_entry(), LedgerEntryPatch(entry_type="income")
        )

        assert result.is_valid

    @pytest.mark.parametrize("current, requested", [
        (EntryType.EXPENSE, "transfer"),
        (EntryType.TRANSFER, "income"),
    ])
    def test_transfer_boundary_is_immutable(self, validator, current, requested):
        result = validator.validate_patch(
            self.make_entry(current), LedgerEntryPatch(entry_type=requested)
        )

        assert result.issues[0].issue_type == "immutable"

    def test_sub_cent_amount_rejected(self, validator):
        result = validator.validate_patch(
            self.make_entry(), LedgerEntryPatch(amount=Decimal("0.001"))
        )

        assert not result.schema_valid


class TestFundsCheckScope:

    def account(self, account_type) -> Account:
        return Account(user_id="user-1", name="A", account_type=account_type)

    def test_outflow_from_bank_checked(self, validator):
        assert validator.needs_funds_check(self.account(AccountType.BANK), Decimal("-1"))

    def test_inflow_never_checked(self, validator):
        assert not validator.needs_funds_check(self.account(AccountType.BANK), Decimal("1"))

    def test_credit_card_not_checked_by_default(self, validator):
        assert not validator.needs_funds_check(
            self.account(AccountType.CREDIT_CARD), Decimal("-1")
        )

    def test_checked_types_configurable(self):
        validator = EntryValidator(LedgerSettings(funds_checked_account_types="credit_card"))

        assert validator.needs_funds_check(
            self.account(AccountType.CREDIT_CARD), Decimal("-1")
        )
        assert not validator.needs_funds_check(self.account(AccountType.CASH), Decimal("-1"))
