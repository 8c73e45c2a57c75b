"""
Audit Logger

DESIGN DECISION: Every ledger mutation and balance recalculation is logged.
This provides:
1. Complete traceability of money movements
2. Debugging capability when a balance looks wrong
3. A record of accounts left stale by a failed recalculation

The audit logger:
- Is async to not block main flow
- Gracefully handles failures (doesn't crash the app if logging fails)
- Supports correlation IDs to trace an entry write and its recalculations
"""

import logging
from decimal import Decimal
from typing import Optional
from uuid import UUID, uuid4

import structlog

from src.models.audit import AuditEvent, AuditEventBuilder, AuditEventType
from src.services.storage import AuditStorageInterface


# Configure structlog for local logging
structlog.configure(
    processors=[
        structlog.stdlib.filter_by_level,
        structlog.stdlib.add_logger_name,
        structlog.stdlib.add_log_level,
        structlog.stdlib.PositionalArgumentsFormatter(),
        structlog.processors.TimeStamper(fmt="iso"),
        structlog.processors.StackInfoRenderer(),
        structlog.processors.format_exc_info,
        structlog.processors.UnicodeDecoder(),
        structlog.processors.JSONRenderer()
    ],
    wrapper_class=structlog.stdlib.BoundLogger,
    context_class=dict,
    logger_factory=structlog.stdlib.LoggerFactory(),
    cache_logger_on_first_use=True,
)


def configure_logging(log_level: str = "INFO") -> None:
    """Route structlog output through stdlib logging at the given level."""
    logging.basicConfig(format="%(message)s", level=getattr(logging, log_level.upper()))


class AuditLogger:
    """
    Central audit logging service.

    Logs events both to:
    1. Structured local log (for debugging)
    2. Audit storage (for persistence), when configured
    """

    def __init__(
        self,
        storage: Optional[AuditStorageInterface] = None,
    ):
        """
        Initialize audit logger.

        Args:
            storage: Storage backend for persistence.
                    If None, only logs locally.
        """
        self._storage = storage
        self._logger = structlog.get_logger(__name__)

    async def log(self, event: AuditEvent) -> bool:
        """
        Log an audit event.

        Always logs locally. Persists to storage if available.

        Returns True if storage write succeeded (or no storage configured).
        """
        log_dict = event.to_log_dict()

        if event.severity.value in ("error", "critical"):
            self._logger.error("audit_event", **log_dict)
        elif event.severity.value == "warning":
            self._logger.warning("audit_event", **log_dict)
        elif event.severity.value == "debug":
            self._logger.debug("audit_event", **log_dict)
        else:
            self._logger.info("audit_event", **log_dict)

        if self._storage:
            try:
                return await self._storage.append_event(event)
            except Exception as e:
                # Audit must never break the ledger flow
                self._logger.error(
                    "audit_storage_failed",
                    error=str(e),
                    event_id=str(event.event_id),
                )
                return False

        return True

    async def log_account_created(
        self,
        account_id: UUID,
        user_id: str,
        name: str,
        account_type: str,
        opening_balance: Decimal,
    ) -> None:
        await self.log(AuditEventBuilder.account_created(
            account_id=account_id,
            user_id=user_id,
            name=name,
            account_type=account_type,
            opening_balance=opening_balance,
        ))

    async def log_account_updated(
        self,
        account_id: UUID,
        user_id: str,
        changed_fields: list[str],
    ) -> None:
        await self.log(AuditEventBuilder.account_updated(
            account_id=account_id,
            user_id=user_id,
            changed_fields=changed_fields,
        ))

    async def log_account_deleted(self, account_id: UUID, user_id: str) -> None:
        await self.log(AuditEventBuilder.account_deleted(account_id, user_id))

    async def log_default_accounts_seeded(
        self,
        user_id: str,
        account_ids: list[UUID],
    ) -> None:
        await self.log(AuditEventBuilder.default_accounts_seeded(user_id, account_ids))

    async def log_entry_created(
        self,
        entry_id: UUID,
        user_id: str,
        entry_type: str,
        amount: Decimal,
        account_ids: list[UUID],
        correlation_id: UUID,
    ) -> None:
        """Log a recorded ledger entry."""
        await self.log(AuditEventBuilder.entry_created(
            entry_id=entry_id,
            user_id=user_id,
            entry_type=entry_type,
            amount=amount,
            account_ids=account_ids,
            correlation_id=correlation_id,
        ))

    async def log_entry_updated(
        self,
        entry_id: UUID,
        user_id: str,
        changes: dict,
        correlation_id: UUID,
    ) -> None:
        await self.log(AuditEventBuilder.entry_updated(
            entry_id=entry_id,
            user_id=user_id,
            changes=changes,
            correlation_id=correlation_id,
        ))

    async def log_entry_deleted(
        self,
        entry_id: UUID,
        user_id: str,
        amount: Decimal,
        correlation_id: UUID,
    ) -> None:
        await self.log(AuditEventBuilder.entry_deleted(
            entry_id=entry_id,
            user_id=user_id,
            amount=amount,
            correlation_id=correlation_id,
        ))

    async def log_withdrawal(
        self,
        entry_id: UUID,
        user_id: str,
        from_account_id: UUID,
        to_account_id: UUID,
        amount: Decimal,
        correlation_id: UUID,
    ) -> None:
        await self.log(AuditEventBuilder.withdrawal_recorded(
            entry_id=entry_id,
            user_id=user_id,
            from_account_id=from_account_id,
            to_account_id=to_account_id,
            amount=amount,
            correlation_id=correlation_id,
        ))

    async def log_validation_failed(
        self,
        user_id: str,
        issues: list[dict],
        correlation_id: Optional[UUID] = None,
    ) -> None:
        """Log an entry rejected before any write."""
        await self.log(AuditEventBuilder.validation_failed(
            user_id=user_id,
            issues=issues,
            correlation_id=correlation_id,
        ))

    async def log_insufficient_funds(
        self,
        account_id: UUID,
        user_id: str,
        available: Decimal,
        requested: Decimal,
        correlation_id: Optional[UUID] = None,
    ) -> None:
        await self.log(AuditEventBuilder.insufficient_funds(
            account_id=account_id,
            user_id=user_id,
            available=available,
            requested=requested,
            correlation_id=correlation_id,
        ))

    async def log_balance_recalculated(
        self,
        account_id: UUID,
        user_id: str,
        balance: Decimal,
        entry_count: int,
        correlation_id: Optional[UUID] = None,
    ) -> None:
        await self.log(AuditEventBuilder.balance_recalculated(
            account_id=account_id,
            user_id=user_id,
            balance=balance,
            entry_count=entry_count,
            correlation_id=correlation_id,
        ))

    async def log_recalculation_failed(
        self,
        account_id: UUID,
        user_id: str,
        error_message: str,
        attempts: int,
        correlation_id: Optional[UUID] = None,
    ) -> None:
        """Log an account left stale after its recalculation gave up."""
        await self.log(AuditEventBuilder.recalculation_failed(
            account_id=account_id,
            user_id=user_id,
            error_message=error_message,
            attempts=attempts,
            correlation_id=correlation_id,
        ))

    async def log_category_changed(
        self,
        event_type: AuditEventType,
        category_id: UUID,
        user_id: str,
        name: str,
    ) -> None:
        await self.log(AuditEventBuilder.category_changed(
            event_type=event_type,
            category_id=category_id,
            user_id=user_id,
            name=name,
        ))

    async def log_store_unavailable(
        self,
        operation: str,
        error_message: str,
        user_id: Optional[str] = None,
        correlation_id: Optional[UUID] = None,
    ) -> None:
        await self.log(AuditEventBuilder.store_unavailable(
            operation=operation,
            error_message=error_message,
            user_id=user_id,
            correlation_id=correlation_id,
        ))

    async def log_error(
        self,
        error_type: str,
        error_message: str,
        details: Optional[dict] = None,
        correlation_id: Optional[UUID] = None,
    ) -> None:
        """Log an error."""
        await self.log(AuditEventBuilder.system_error(
            error_type=error_type,
            error_message=error_message,
            details=details,
            correlation_id=correlation_id,
        ))


def create_correlation_id() -> UUID:
    """
    Create a new correlation ID for tracking related events.

    Use this at the start of a ledger mutation.
    Pass it through the write and every recalculation it triggers.
    """
    return uuid4()
