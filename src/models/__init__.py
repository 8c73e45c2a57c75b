"""
Data Models Package

This package contains all Pydantic models used in the Personal Ledger system.
All data flowing through the system must conform to these schemas.
"""

from src.models.ledger import (
    Account,
    AccountCreate,
    AccountPatch,
    AccountType,
    Category,
    EntryFilter,
    EntryType,
    FinancialSummary,
    LedgerEntry,
    LedgerEntryCreate,
    LedgerEntryPatch,
    LedgerMutationResult,
    ValidationIssue,
    ValidationResult,
)
from src.models.audit import (
    AuditEvent,
    AuditEventBuilder,
    AuditEventType,
    AuditSeverity,
)

__all__ = [
    # Ledger models
    "Account",
    "AccountCreate",
    "AccountPatch",
    "AccountType",
    "Category",
    "EntryFilter",
    "EntryType",
    "FinancialSummary",
    "LedgerEntry",
    "LedgerEntryCreate",
    "LedgerEntryPatch",
    "LedgerMutationResult",
    "ValidationIssue",
    "ValidationResult",
    # Audit models
    "AuditEvent",
    "AuditEventBuilder",
    "AuditEventType",
    "AuditSeverity",
]
