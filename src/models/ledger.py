"""
Core Data Models for Personal Ledger

These models define the strict schemas for all data flowing through the
ledger: accounts, ledger entries, categories, and the request/result
shapes exchanged with the API layer.

DESIGN DECISION: Money is ALWAYS Decimal with at most two places.
Balances are re-derived from the full entry history on every mutation,
so binary floating point would accumulate drift across recalculations.

SIGN CONVENTION: LedgerEntry.amount is the signed effect on the PRIMARY
account. For a transfer, the related account receives the inverse.
"""

from datetime import date, datetime
from decimal import Decimal
from enum import Enum
from typing import Any, Optional
from uuid import UUID, uuid4

from pydantic import (
    BaseModel,
    ConfigDict,
    Field,
    model_validator,
)


ZERO = Decimal("0")


# =============================================================================
# ENUMS - Finite set of valid values
# =============================================================================

class AccountType(str, Enum):
    """Supported account types."""
    CASH = "cash"
    BANK = "bank"
    CREDIT_CARD = "credit_card"
    OTHER = "other"


class EntryType(str, Enum):
    """
    Ledger entry types.

    Only TRANSFER entries reference a second (related) account.
    """
    INCOME = "income"
    EXPENSE = "expense"
    TRANSFER = "transfer"


# =============================================================================
# ACCOUNTS
# =============================================================================

class Account(BaseModel):
    """
    A money container owned by exactly one user.

    INVARIANT:
        current_balance == opening_balance + sum(contributions of every
        ledger entry referencing this account)

    current_balance is written ONLY by the balance recalculator.
    """
    model_config = ConfigDict(str_strip_whitespace=True)

    id: UUID = Field(
        default_factory=uuid4,
        description="Unique account ID"
    )
    user_id: str = Field(
        ...,
        min_length=1,
        description="Owning user identifier"
    )
    name: str = Field(
        ...,
        min_length=1,
        max_length=100,
        description="Display name"
    )
    account_type: AccountType = Field(
        ...,
        description="Account type"
    )
    opening_balance: Decimal = Field(
        default=ZERO,
        decimal_places=2,
        description="Balance before any ledger entry"
    )
    current_balance: Decimal = Field(
        default=ZERO,
        description="Derived balance (opening + entries)"
    )
    metadata: dict[str, Any] = Field(
        default_factory=dict,
        description="Free-form metadata"
    )
    created_at: datetime = Field(
        default_factory=datetime.utcnow
    )
    updated_at: datetime = Field(
        default_factory=datetime.utcnow
    )

    @model_validator(mode='before')
    @classmethod
    def default_current_balance(cls, data: Any) -> Any:
        """A fresh account starts at its opening balance."""
        if isinstance(data, dict) and data.get("current_balance") is None:
            data = dict(data)
            data["current_balance"] = data.get("opening_balance") or ZERO
        return data


class AccountCreate(BaseModel):
    """Request to create an account."""
    model_config = ConfigDict(str_strip_whitespace=True)

    name: str = Field(..., min_length=1, max_length=100)
    account_type: AccountType = AccountType.OTHER
    opening_balance: Decimal = Field(default=ZERO, decimal_places=2)
    metadata: dict[str, Any] = Field(default_factory=dict)


class AccountPatch(BaseModel):
    """
    Editable account fields.

    Balances are deliberately absent: they are derived, never edited.
    """
    model_config = ConfigDict(str_strip_whitespace=True, extra="forbid")

    name: Optional[str] = Field(default=None, min_length=1, max_length=100)
    account_type: Optional[AccountType] = None
    metadata: Optional[dict[str, Any]] = None


# =============================================================================
# LEDGER ENTRIES
# =============================================================================

class LedgerEntry(BaseModel):
    """
    A single financial movement touching one or two accounts.

    Entries are facts: once created only amount, entry_type,
    category and note may change. Account references are immutable.
    """
    model_config = ConfigDict(str_strip_whitespace=True)

    id: UUID = Field(
        default_factory=uuid4,
        description="Unique entry ID"
    )
    user_id: str = Field(
        ...,
        min_length=1,
        description="Owning user identifier"
    )
    account_id: UUID = Field(
        ...,
        description="Primary account"
    )
    related_account_id: Optional[UUID] = Field(
        default=None,
        description="Receiving account of a transfer"
    )
    amount: Decimal = Field(
        ...,
        decimal_places=2,
        description="Signed effect on the primary account"
    )
    entry_type: EntryType
    category_id: Optional[UUID] = None
    note: Optional[str] = Field(
        default=None,
        max_length=1000,
    )
    created_at: datetime = Field(
        default_factory=datetime.utcnow,
        description="When the entry was recorded"
    )

    @model_validator(mode='after')
    def validate_shape(self) -> 'LedgerEntry':
        """Enforce entry invariants."""
        if self.amount == ZERO:
            raise ValueError("Amount must be non-zero")

        if self.entry_type == EntryType.TRANSFER:
            if self.related_account_id is None:
                raise ValueError("Transfer requires a related account")
            if self.related_account_id == self.account_id:
                raise ValueError("Transfer must be between two different accounts")
        elif self.related_account_id is not None:
            raise ValueError("Only transfers may reference a related account")

        return self

    @property
    def accounts_touched(self) -> set[UUID]:
        """Every account whose balance this entry contributes to."""
        touched = {self.account_id}
        if self.related_account_id is not None:
            touched.add(self.related_account_id)
        return touched


class LedgerEntryCreate(BaseModel):
    """
    Caller's request to record an entry.

    Fields are optional on purpose: missing or malformed values are
    reported by the entry validator as ledger ValidationErrors,
    with field names the API layer understands.
    """
    model_config = ConfigDict(str_strip_whitespace=True)

    account_id: Optional[UUID] = None
    related_account_id: Optional[UUID] = None
    amount: Optional[Decimal] = None
    entry_type: Optional[str] = None
    category_id: Optional[UUID] = None
    note: Optional[str] = Field(default=None, max_length=1000)


class LedgerEntryPatch(BaseModel):
    """Patchable entry fields. Account references cannot be changed."""
    model_config = ConfigDict(str_strip_whitespace=True, extra="forbid")

    amount: Optional[Decimal] = None
    entry_type: Optional[str] = None
    category_id: Optional[UUID] = None
    note: Optional[str] = Field(default=None, max_length=1000)


class LedgerMutationResult(BaseModel):
    """
    Outcome of a coordinator mutation.

    The write itself succeeded. stale_account_ids lists accounts whose
    follow-up recalculation failed and which need a repair pass.
    """

    entry: LedgerEntry
    balances: dict[UUID, Decimal] = Field(default_factory=dict)
    stale_account_ids: list[UUID] = Field(default_factory=list)

    @property
    def is_consistent(self) -> bool:
        return not self.stale_account_ids


# =============================================================================
# VALIDATION MODELS
# =============================================================================

class ValidationIssue(BaseModel):
    """A single validation issue found."""

    field: str = Field(
        ...,
        description="Field with the issue"
    )
    issue_type: str = Field(
        ...,
        description="Type of issue (e.g., 'missing', 'invalid_value', 'immutable')"
    )
    message: str = Field(
        ...,
        description="Human-readable description of the issue"
    )
    severity: str = Field(
        default="error",
        pattern="^(error|warning|info)$",
        description="Issue severity"
    )


class ValidationResult(BaseModel):
    """
    Result of validating an entry request.

    Stage 1: Schema validation (required fields, formats)
    Stage 2: Semantic validation (ledger rules that need no store read)
    """

    schema_valid: bool
    semantic_valid: bool
    issues: list[ValidationIssue] = Field(default_factory=list)

    @property
    def is_valid(self) -> bool:
        return self.schema_valid and self.semantic_valid

    @property
    def has_errors(self) -> bool:
        """Check if there are any error-level issues."""
        return any(issue.severity == "error" for issue in self.issues)

    @property
    def error_count(self) -> int:
        """Count error-level issues."""
        return sum(1 for issue in self.issues if issue.severity == "error")

    @property
    def warnings(self) -> list[str]:
        return [i.message for i in self.issues if i.severity == "warning"]


# =============================================================================
# CATEGORIES
# =============================================================================

class Category(BaseModel):
    """
    Spending/income category.

    user_id None marks a global default visible to everyone.
    """
    model_config = ConfigDict(str_strip_whitespace=True)

    id: UUID = Field(default_factory=uuid4)
    user_id: Optional[str] = Field(
        default=None,
        description="Owner, or None for a global default"
    )
    name: str = Field(..., min_length=1, max_length=100)
    parent_id: Optional[UUID] = None
    created_at: datetime = Field(default_factory=datetime.utcnow)

    @property
    def is_global(self) -> bool:
        return self.user_id is None

    def visible_to(self, user_id: str) -> bool:
        return self.is_global or self.user_id == user_id


# =============================================================================
# QUERY MODELS
# =============================================================================

class EntryFilter(BaseModel):
    """
    Filter for listing ledger entries.

    account_id matches an entry whose primary OR related account is
    the given account.
    """

    user_id: str = Field(..., min_length=1)
    account_id: Optional[UUID] = None
    entry_type: Optional[EntryType] = None
    category_id: Optional[UUID] = None
    date_from: Optional[date] = None
    date_to: Optional[date] = None
    limit: int = Field(default=100, ge=1, le=1000)
    offset: int = Field(default=0, ge=0)

    @model_validator(mode='after')
    def validate_range(self) -> 'EntryFilter':
        if self.date_from and self.date_to and self.date_to < self.date_from:
            raise ValueError("date_to cannot be before date_from")
        return self

    def matches(self, entry: LedgerEntry) -> bool:
        """Check a single entry against every filter."""
        if entry.user_id != self.user_id:
            return False
        if self.account_id and self.account_id not in entry.accounts_touched:
            return False
        if self.entry_type and entry.entry_type != self.entry_type:
            return False
        if self.category_id and entry.category_id != self.category_id:
            return False
        entry_day = entry.created_at.date()
        if self.date_from and entry_day < self.date_from:
            return False
        if self.date_to and entry_day > self.date_to:
            return False
        return True


class FinancialSummary(BaseModel):
    """
    Income/expense totals for a period.

    Transfers move money between the user's own accounts and are
    excluded from both totals.
    """

    user_id: str
    date_from: Optional[date] = None
    date_to: Optional[date] = None
    period_description: str = ""
    total_income: Decimal = ZERO
    total_expense: Decimal = ZERO
    net: Decimal = ZERO
    entry_count: int = Field(default=0, ge=0)
    by_category: dict[str, Decimal] = Field(default_factory=dict)
