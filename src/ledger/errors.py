"""
Ledger Error Taxonomy

Every failure the ledger reports to its caller is one of these.
Each carries a stable `code` so the API layer can translate it
into a transport-level response without string matching.
"""

from decimal import Decimal
from typing import Any, Optional
from uuid import UUID


class LedgerError(Exception):
    """Base exception for ledger operations."""

    code = "ledger_error"

    def __init__(self, message: str, details: Optional[dict[str, Any]] = None):
        self.message = message
        self.details = details or {}
        super().__init__(message)

    def to_dict(self) -> dict[str, Any]:
        return {
            "error": self.code,
            "message": self.message,
            "details": self.details,
        }


class ValidationError(LedgerError):
    """Missing or malformed field. Raised before any store write."""

    code = "validation_error"

    def __init__(self, message: str, issues: Optional[list[dict[str, str]]] = None):
        self.issues = issues or []
        super().__init__(message, {"issues": self.issues})


class NotFoundError(LedgerError):
    """Account, entry or category absent, or not owned by the caller."""

    code = "not_found"

    def __init__(self, entity_type: str, entity_id: Optional[Any] = None):
        self.entity_type = entity_type
        self.entity_id = entity_id
        label = f"{entity_type.capitalize()} not found"
        if entity_id is not None:
            label = f"{label}: {entity_id}"
        super().__init__(label, {
            "entity_type": entity_type,
            "entity_id": str(entity_id) if entity_id is not None else None,
        })


class InsufficientFundsError(LedgerError):
    """
    Best-effort pre-check failed.

    Advisory only: the check reads the stored balance and is not
    atomic with the insert that follows it.
    """

    code = "insufficient_funds"

    def __init__(self, account_id: UUID, available: Decimal, requested: Decimal):
        self.account_id = account_id
        self.available = available
        self.requested = requested
        super().__init__(
            f"Insufficient funds: {requested} requested, {available} available",
            {
                "account_id": str(account_id),
                "available": str(available),
                "requested": str(requested),
            },
        )


class ConflictError(LedgerError):
    """Operation is ambiguous or would break a ledger rule."""

    code = "conflict"


class StoreUnavailableError(LedgerError):
    """
    The record store failed.

    Entry and balance state may be inconsistent; re-running the
    balance recalculation for the affected accounts repairs it.
    """

    code = "store_unavailable"
