"""
Two-Stage Entry Validation

DESIGN DECISION: Validation happens in two distinct stages:

STAGE 1 - SCHEMA VALIDATION:
- Required field presence (account_id, amount, entry_type)
- Format validation (known entry type, at most two decimal places)

STAGE 2 - SEMANTIC VALIDATION:
- Non-zero amount
- Transfer shape (related account required and distinct)
- Immutable account references on update

Both stages run BEFORE any store write. Checks that need a store read
(account ownership, available funds) belong to the coordinator.

IMPORTANT: Validation NEVER silently fixes issues. The one deliberate
transformation is sign normalisation, which is a documented convention,
not a correction.
"""

from decimal import Decimal, InvalidOperation
from typing import Optional

from src.config import LedgerSettings, get_settings
from src.models.ledger import (
    ZERO,
    Account,
    EntryType,
    LedgerEntry,
    LedgerEntryCreate,
    LedgerEntryPatch,
    ValidationIssue,
    ValidationResult,
)


TWO_PLACES = Decimal("0.01")


def normalize_amount(amount: Decimal, entry_type: EntryType) -> Decimal:
    """
    Apply the sign convention for an entry type.

    income   -> +|amount|
    expense  -> -|amount|
    transfer -> -|amount|  (value leaves the primary account)
    """
    magnitude = abs(amount)
    if entry_type == EntryType.INCOME:
        return magnitude
    return -magnitude


def parse_entry_type(value: Optional[str]) -> Optional[EntryType]:
    """Return the EntryType for a raw value, or None if unknown."""
    if value is None:
        return None
    try:
        return EntryType(str(value).strip().lower())
    except ValueError:
        return None


class EntryValidator:
    """
    Validates entry requests through a two-stage pipeline.

    Stage 2 only runs when stage 1 passes, so a missing amount is
    reported once, as missing, not again as zero.
    """

    def __init__(self, settings: Optional[LedgerSettings] = None):
        self._settings = settings or get_settings().ledger

    def _check_amount(self, amount: Optional[Decimal]) -> list[ValidationIssue]:
        if amount is None:
            return [ValidationIssue(
                field="amount",
                issue_type="missing",
                message="Amount is required",
            )]
        try:
            if amount != amount.quantize(TWO_PLACES):
                return [ValidationIssue(
                    field="amount",
                    issue_type="invalid_format",
                    message="Amount cannot have more than two decimal places",
                )]
        except InvalidOperation:
            return [ValidationIssue(
                field="amount",
                issue_type="invalid_format",
                message="Amount is not a valid number",
            )]
        return []

    def _check_entry_type(self, raw: Optional[str]) -> list[ValidationIssue]:
        if raw is None:
            return [ValidationIssue(
                field="entry_type",
                issue_type="missing",
                message="Entry type is required",
            )]
        if parse_entry_type(raw) is None:
            allowed = ", ".join(t.value for t in EntryType)
            return [ValidationIssue(
                field="entry_type",
                issue_type="invalid_value",
                message=f"Unknown entry type '{raw}' (expected one of: {allowed})",
            )]
        return []

    def _validate_create_schema(
        self,
        request: LedgerEntryCreate,
    ) -> tuple[bool, list[ValidationIssue]]:
        """Stage 1 for a new entry."""
        issues = []

        if request.account_id is None:
            issues.append(ValidationIssue(
                field="account_id",
                issue_type="missing",
                message="Account is required",
            ))
        issues.extend(self._check_amount(request.amount))
        issues.extend(self._check_entry_type(request.entry_type))

        return not any(i.severity == "error" for i in issues), issues

    def _validate_create_semantic(
        self,
        request: LedgerEntryCreate,
    ) -> tuple[bool, list[ValidationIssue]]:
        """Stage 2 for a new entry."""
        issues = []
        entry_type = parse_entry_type(request.entry_type)

        if request.amount == ZERO:
            issues.append(ValidationIssue(
                field="amount",
                issue_type="invalid_value",
                message="Amount must be non-zero",
            ))

        if entry_type == EntryType.TRANSFER:
            if request.related_account_id is None:
                issues.append(ValidationIssue(
                    field="related_account_id",
                    issue_type="missing",
                    message="Transfers require a related account",
                ))
            elif request.related_account_id == request.account_id:
                issues.append(ValidationIssue(
                    field="related_account_id",
                    issue_type="invalid_value",
                    message="Transfer source and destination must differ",
                ))
        elif request.related_account_id is not None:
            issues.append(ValidationIssue(
                field="related_account_id",
                issue_type="invalid_value",
                message="Only transfers may reference a related account",
            ))

        if request.amount is not None and request.amount < ZERO:
            issues.append(ValidationIssue(
                field="amount",
                issue_type="sign_ignored",
                message="Amount sign is set by the entry type; the magnitude was used",
                severity="warning",
            ))

        return not any(i.severity == "error" for i in issues), issues

    def validate_create(self, request: LedgerEntryCreate) -> ValidationResult:
        """Run full two-stage validation for a new entry."""
        schema_valid, issues = self._validate_create_schema(request)

        semantic_valid = False
        if schema_valid:
            semantic_valid, semantic_issues = self._validate_create_semantic(request)
            issues.extend(semantic_issues)

        return ValidationResult(
            schema_valid=schema_valid,
            semantic_valid=semantic_valid,
            issues=issues,
        )

    def validate_patch(
        self,
        existing: LedgerEntry,
        patch: LedgerEntryPatch,
    ) -> ValidationResult:
        """
        Validate a patch against the entry it modifies.

        Account references are immutable, so the entry type may not
        cross the transfer boundary in either direction.
        """
        issues = []

        if patch.amount is not None:
            issues.extend(self._check_amount(patch.amount))
        if patch.entry_type is not None:
            issues.extend(self._check_entry_type(patch.entry_type))

        schema_valid = not any(i.severity == "error" for i in issues)
        semantic_valid = False

        if schema_valid:
            semantic_issues = []
            if patch.amount is not None and patch.amount == ZERO:
                semantic_issues.append(ValidationIssue(
                    field="amount",
                    issue_type="invalid_value",
                    message="Amount must be non-zero",
                ))

            new_type = parse_entry_type(patch.entry_type) or existing.entry_type
            was_transfer = existing.entry_type == EntryType.TRANSFER
            if (new_type == EntryType.TRANSFER) != was_transfer:
                semantic_issues.append(ValidationIssue(
                    field="entry_type",
                    issue_type="immutable",
                    message=(
                        "Cannot change an entry to or from a transfer: "
                        "account references are fixed after creation"
                    ),
                ))

            semantic_valid = not any(i.severity == "error" for i in semantic_issues)
            issues.extend(semantic_issues)

        return ValidationResult(
            schema_valid=schema_valid,
            semantic_valid=semantic_valid,
            issues=issues,
        )

    def needs_funds_check(self, account: Account, signed_amount: Decimal) -> bool:
        """Does an outflow from this account get the insufficient-funds check?"""
        return (
            signed_amount < ZERO
            and account.account_type.value in self._settings.funds_checked_types_list
        )

