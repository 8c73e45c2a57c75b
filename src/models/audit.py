"""
Audit Models for Personal Ledger

Every significant action in the ledger is logged for audit purposes.
This provides:
1. Complete traceability of all money movements
2. Debugging information when a balance looks wrong
3. A list of accounts that need a repair recalculation

DESIGN DECISION: Audit logs are append-only. We never delete or modify them.
"""

import json
from datetime import datetime
from decimal import Decimal
from enum import Enum
from typing import Any, Optional
from uuid import UUID, uuid4

from pydantic import BaseModel, Field


class AuditEventType(str, Enum):
    """
    Types of events we audit.

    Every ledger mutation and every balance recalculation has its own type.
    """
    # Accounts
    ACCOUNT_CREATED = "account_created"
    ACCOUNT_UPDATED = "account_updated"
    ACCOUNT_DELETED = "account_deleted"
    DEFAULT_ACCOUNTS_SEEDED = "default_accounts_seeded"

    # Ledger entries
    ENTRY_CREATED = "entry_created"
    ENTRY_UPDATED = "entry_updated"
    ENTRY_DELETED = "entry_deleted"
    WITHDRAWAL_RECORDED = "withdrawal_recorded"

    # Rejections
    VALIDATION_FAILED = "validation_failed"
    INSUFFICIENT_FUNDS = "insufficient_funds"

    # Balances
    BALANCE_RECALCULATED = "balance_recalculated"
    RECALCULATION_FAILED = "recalculation_failed"

    # Categories
    CATEGORY_CREATED = "category_created"
    CATEGORY_UPDATED = "category_updated"
    CATEGORY_DELETED = "category_deleted"

    # System events
    SYSTEM_ERROR = "system_error"
    STORE_UNAVAILABLE = "store_unavailable"


class AuditSeverity(str, Enum):
    """Severity level for audit events."""
    DEBUG = "debug"
    INFO = "info"
    WARNING = "warning"
    ERROR = "error"
    CRITICAL = "critical"


class AuditEvent(BaseModel):
    """
    A single audit event.

    This is the core unit of our audit trail.
    Every significant action creates one of these.
    """

    # Identity
    event_id: UUID = Field(
        default_factory=uuid4,
        description="Unique event identifier"
    )
    timestamp: datetime = Field(
        default_factory=datetime.utcnow,
        description="When the event occurred (UTC)"
    )

    # Event classification
    event_type: AuditEventType = Field(
        ...,
        description="Type of event"
    )
    severity: AuditSeverity = Field(
        default=AuditSeverity.INFO,
        description="Event severity"
    )

    # Context - what entity is this about?
    user_id: Optional[str] = Field(
        default=None,
        description="User the action was performed for"
    )
    entity_type: Optional[str] = Field(
        default=None,
        description="Type of entity (e.g., 'account', 'entry', 'category')"
    )
    entity_id: Optional[UUID] = Field(
        default=None,
        description="ID of the entity this event relates to"
    )

    # Correlation - for tracking related events
    correlation_id: Optional[UUID] = Field(
        default=None,
        description="ID to correlate related events (e.g., an entry write and its recalculations)"
    )

    description: str = Field(
        ...,
        max_length=500,
        description="Human-readable description of what happened"
    )
    details: dict[str, Any] = Field(
        default_factory=dict,
        description="Additional event-specific data"
    )

    # Error information (if applicable)
    error_code: Optional[str] = None
    error_message: Optional[str] = None

    is_user_action: bool = Field(
        default=False,
        description="Was this triggered by a user action?"
    )

    def to_log_dict(self) -> dict:
        """
        Convert to a dictionary suitable for structured logging.
        """
        return {
            "event_id": str(self.event_id),
            "timestamp": self.timestamp.isoformat(),
            "event_type": self.event_type.value,
            "severity": self.severity.value,
            "user_id": self.user_id,
            "entity_type": self.entity_type,
            "entity_id": str(self.entity_id) if self.entity_id else None,
            "correlation_id": str(self.correlation_id) if self.correlation_id else None,
            "description": self.description,
            "details": self.details,
            "error_code": self.error_code,
            "error_message": self.error_message,
            "is_user_action": self.is_user_action,
        }

    def to_sheets_row(self) -> list:
        """
        Convert to a row suitable for Google Sheets storage.

        Returns columns in order:
        [event_id, timestamp, event_type, severity, user_id, entity_type,
         entity_id, correlation_id, description, details_json,
         error_code, error_message, is_user_action]
        """
        return [
            str(self.event_id),
            self.timestamp.isoformat(),
            self.event_type.value,
            self.severity.value,
            self.user_id or "",
            self.entity_type or "",
            str(self.entity_id) if self.entity_id else "",
            str(self.correlation_id) if self.correlation_id else "",
            self.description,
            json.dumps(self.details) if self.details else "",
            self.error_code or "",
            self.error_message or "",
            str(self.is_user_action),
        ]


class AuditEventBuilder:
    """
    Helper class to build audit events with common patterns.

    Usage:
        event = AuditEventBuilder.entry_created(entry, correlation_id)
        event = AuditEventBuilder.balance_recalculated(account_id, user_id, balance)
    """

    @staticmethod
    def account_created(
        account_id: UUID,
        user_id: str,
        name: str,
        account_type: str,
        opening_balance: Decimal,
    ) -> AuditEvent:
        return AuditEvent(
            event_type=AuditEventType.ACCOUNT_CREATED,
            user_id=user_id,
            entity_type="account",
            entity_id=account_id,
            description=f"Account created: {name} ({account_type})",
            details={
                "name": name,
                "account_type": account_type,
                "opening_balance": str(opening_balance),
            },
            is_user_action=True,
        )

    @staticmethod
    def account_updated(
        account_id: UUID,
        user_id: str,
        changed_fields: list[str],
    ) -> AuditEvent:
        return AuditEvent(
            event_type=AuditEventType.ACCOUNT_UPDATED,
            user_id=user_id,
            entity_type="account",
            entity_id=account_id,
            description=f"Account updated: {', '.join(changed_fields) or 'no changes'}",
            details={"changed_fields": changed_fields},
            is_user_action=True,
        )

    @staticmethod
    def account_deleted(account_id: UUID, user_id: str) -> AuditEvent:
        return AuditEvent(
            event_type=AuditEventType.ACCOUNT_DELETED,
            user_id=user_id,
            entity_type="account",
            entity_id=account_id,
            description="Account deleted",
            is_user_action=True,
        )

    @staticmethod
    def default_accounts_seeded(user_id: str, account_ids: list[UUID]) -> AuditEvent:
        return AuditEvent(
            event_type=AuditEventType.DEFAULT_ACCOUNTS_SEEDED,
            user_id=user_id,
            entity_type="user",
            description=f"Seeded {len(account_ids)} default accounts",
            details={"account_ids": [str(a) for a in account_ids]},
        )

    @staticmethod
    def entry_created(
        entry_id: UUID,
        user_id: str,
        entry_type: str,
        amount: Decimal,
        account_ids: list[UUID],
        correlation_id: UUID,
    ) -> AuditEvent:
        return AuditEvent(
            event_type=AuditEventType.ENTRY_CREATED,
            user_id=user_id,
            entity_type="entry",
            entity_id=entry_id,
            correlation_id=correlation_id,
            description=f"Ledger entry recorded: {entry_type} {amount}",
            details={
                "entry_type": entry_type,
                "amount": str(amount),
                "account_ids": [str(a) for a in account_ids],
            },
            is_user_action=True,
        )

    @staticmethod
    def entry_updated(
        entry_id: UUID,
        user_id: str,
        changes: dict[str, Any],
        correlation_id: UUID,
    ) -> AuditEvent:
        return AuditEvent(
            event_type=AuditEventType.ENTRY_UPDATED,
            user_id=user_id,
            entity_type="entry",
            entity_id=entry_id,
            correlation_id=correlation_id,
            description=f"Ledger entry updated: {', '.join(sorted(changes)) or 'no changes'}",
            details={
                k: (v.value if isinstance(v, Enum) else str(v)) if v is not None else None
                for k, v in changes.items()
            },
            is_user_action=True,
        )

    @staticmethod
    def entry_deleted(
        entry_id: UUID,
        user_id: str,
        amount: Decimal,
        correlation_id: UUID,
    ) -> AuditEvent:
        return AuditEvent(
            event_type=AuditEventType.ENTRY_DELETED,
            user_id=user_id,
            entity_type="entry",
            entity_id=entry_id,
            correlation_id=correlation_id,
            description=f"Ledger entry deleted ({amount})",
            details={"amount": str(amount)},
            is_user_action=True,
        )

    @staticmethod
    def withdrawal_recorded(
        entry_id: UUID,
        user_id: str,
        from_account_id: UUID,
        to_account_id: UUID,
        amount: Decimal,
        correlation_id: UUID,
    ) -> AuditEvent:
        return AuditEvent(
            event_type=AuditEventType.WITHDRAWAL_RECORDED,
            user_id=user_id,
            entity_type="entry",
            entity_id=entry_id,
            correlation_id=correlation_id,
            description=f"Withdrawal of {amount} recorded",
            details={
                "from_account_id": str(from_account_id),
                "to_account_id": str(to_account_id),
                "amount": str(amount),
            },
            is_user_action=True,
        )

    @staticmethod
    def validation_failed(
        user_id: str,
        issues: list[dict],
        correlation_id: Optional[UUID] = None,
    ) -> AuditEvent:
        return AuditEvent(
            event_type=AuditEventType.VALIDATION_FAILED,
            severity=AuditSeverity.WARNING,
            user_id=user_id,
            entity_type="entry",
            correlation_id=correlation_id,
            description=f"Entry rejected with {len(issues)} validation issues",
            details={"issues": issues},
            error_code="validation_error",
        )

    @staticmethod
    def insufficient_funds(
        account_id: UUID,
        user_id: str,
        available: Decimal,
        requested: Decimal,
        correlation_id: Optional[UUID] = None,
    ) -> AuditEvent:
        return AuditEvent(
            event_type=AuditEventType.INSUFFICIENT_FUNDS,
            severity=AuditSeverity.WARNING,
            user_id=user_id,
            entity_type="account",
            entity_id=account_id,
            correlation_id=correlation_id,
            description=f"Rejected: {requested} requested, {available} available",
            details={
                "available": str(available),
                "requested": str(requested),
            },
            error_code="insufficient_funds",
        )

    @staticmethod
    def balance_recalculated(
        account_id: UUID,
        user_id: str,
        balance: Decimal,
        entry_count: int,
        correlation_id: Optional[UUID] = None,
    ) -> AuditEvent:
        return AuditEvent(
            event_type=AuditEventType.BALANCE_RECALCULATED,
            severity=AuditSeverity.DEBUG,
            user_id=user_id,
            entity_type="account",
            entity_id=account_id,
            correlation_id=correlation_id,
            description=f"Balance recalculated: {balance}",
            details={
                "balance": str(balance),
                "entry_count": entry_count,
            },
        )

    @staticmethod
    def recalculation_failed(
        account_id: UUID,
        user_id: str,
        error_message: str,
        attempts: int,
        correlation_id: Optional[UUID] = None,
    ) -> AuditEvent:
        return AuditEvent(
            event_type=AuditEventType.RECALCULATION_FAILED,
            severity=AuditSeverity.ERROR,
            user_id=user_id,
            entity_type="account",
            entity_id=account_id,
            correlation_id=correlation_id,
            description=f"Balance recalculation failed after {attempts} attempts",
            details={"attempts": attempts},
            error_code="store_unavailable",
            error_message=error_message,
        )

    @staticmethod
    def category_changed(
        event_type: AuditEventType,
        category_id: UUID,
        user_id: str,
        name: str,
    ) -> AuditEvent:
        verb = event_type.value.split("_", 1)[1]
        return AuditEvent(
            event_type=event_type,
            user_id=user_id,
            entity_type="category",
            entity_id=category_id,
            description=f"Category {verb}: {name}",
            details={"name": name},
            is_user_action=True,
        )

    @staticmethod
    def system_error(
        error_type: str,
        error_message: str,
        details: Optional[dict] = None,
        correlation_id: Optional[UUID] = None
    ) -> AuditEvent:
        return AuditEvent(
            event_type=AuditEventType.SYSTEM_ERROR,
            severity=AuditSeverity.ERROR,
            description=f"System error: {error_type}",
            error_message=error_message,
            details=details or {},
            correlation_id=correlation_id,
        )

    @staticmethod
    def store_unavailable(
        operation: str,
        error_message: str,
        user_id: Optional[str] = None,
        correlation_id: Optional[UUID] = None,
    ) -> AuditEvent:
        return AuditEvent(
            event_type=AuditEventType.STORE_UNAVAILABLE,
            severity=AuditSeverity.ERROR,
            user_id=user_id,
            description=f"Record store unavailable during {operation}",
            error_code="store_unavailable",
            error_message=error_message,
            details={"operation": operation},
            correlation_id=correlation_id,
        )
