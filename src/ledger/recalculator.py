"""
Balance Recalculator

DESIGN DECISION: A balance is ALWAYS re-derived from the account's full
entry history, never adjusted by a delta.

WHY:
- Two recalculations of the same account can finish in any order.
  With a full re-scan, last-writer-wins still stores a balance that
  reflects every entry committed when the last scan ran. With deltas,
  a late or retried delta double-counts or drops a contribution.
- A failed write leaves the balance stale, never wrong forever:
  running recalculate() again is the repair.

Within one process, recalculations of the same account are serialised
by an asyncio.Lock keyed by account ID, because read-entries /
sum / write-balance is not atomic against an interleaved writer.
"""

import asyncio
import weakref
from decimal import Decimal
from typing import Iterable, Optional
from uuid import UUID

import structlog

from src.audit import AuditLogger
from src.ledger.errors import NotFoundError, StoreUnavailableError
from src.models.ledger import ZERO, EntryFilter, LedgerEntry
from src.services.storage import LedgerStoreInterface, StorageError
from src.services.storage import NotFoundError as RecordNotFoundError


PAGE_SIZE = 1000

logger = structlog.get_logger(__name__)


def contribution(entry: LedgerEntry, account_id: UUID) -> Decimal:
    """
    Signed effect of one entry on one account.

    The primary account takes the amount as stored. The related
    account of a transfer takes the inverse, so a transfer moves
    money without creating or destroying any.
    """
    if entry.account_id == account_id:
        return entry.amount
    if entry.related_account_id == account_id:
        return -entry.amount
    return ZERO


class BalanceRecalculator:
    """
    Recomputes and persists account balances.

    Pure and idempotent: the stored balance depends only on the
    opening balance and the entries present at read time.
    """

    def __init__(
        self,
        store: LedgerStoreInterface,
        audit_logger: Optional[AuditLogger] = None,
    ):
        self._store = store
        self._audit_logger = audit_logger
        # A lock lives only while some recalculation holds or awaits it
        self._locks: weakref.WeakValueDictionary[UUID, asyncio.Lock] = (
            weakref.WeakValueDictionary()
        )

    def _lock_for(self, account_id: UUID) -> asyncio.Lock:
        lock = self._locks.get(account_id)
        if lock is None:
            lock = asyncio.Lock()
            self._locks[account_id] = lock
        return lock

    async def _entries_for(self, account_id: UUID, user_id: str) -> list[LedgerEntry]:
        """Read every entry touching the account, page by page."""
        entries: list[LedgerEntry] = []
        offset = 0
        while True:
            page = await self._store.list_ledger_entries(EntryFilter(
                user_id=user_id,
                account_id=account_id,
                limit=PAGE_SIZE,
                offset=offset,
            ))
            entries.extend(page)
            if len(page) < PAGE_SIZE:
                return entries
            offset += PAGE_SIZE

    async def recalculate(
        self,
        account_id: UUID,
        user_id: str,
        correlation_id: Optional[UUID] = None,
    ) -> Decimal:
        """
        Re-derive, store and return an account's current balance.

        Raises:
            NotFoundError: Account absent or not owned by user_id
            StoreUnavailableError: Any record store failure
        """
        try:
            async with self._lock_for(account_id):
                account = await self._store.get_account(account_id, user_id)
                if account is None:
                    raise NotFoundError("account", account_id)

                entries = await self._entries_for(account_id, user_id)
                balance = account.opening_balance + sum(
                    (contribution(entry, account_id) for entry in entries),
                    ZERO,
                )
                await self._store.update_account_balance(account_id, balance)
        except RecordNotFoundError as e:
            # Deleted between the read and the balance write
            raise NotFoundError("account", account_id) from e
        except StorageError as e:
            raise StoreUnavailableError(
                f"Failed to recalculate account {account_id}: {e}"
            ) from e

        logger.debug(
            "balance_recalculated",
            account_id=str(account_id),
            entry_count=len(entries),
            previous=str(account.current_balance),
            balance=str(balance),
        )
        if self._audit_logger and balance != account.current_balance:
            await self._audit_logger.log_balance_recalculated(
                account_id=account_id,
                user_id=user_id,
                balance=balance,
                entry_count=len(entries),
                correlation_id=correlation_id,
            )

        return balance

    async def recalculate_many(
        self,
        account_ids: Iterable[UUID],
        user_id: str,
        correlation_id: Optional[UUID] = None,
    ) -> dict[UUID, Decimal]:
        """Recalculate several accounts; stops at the first failure."""
        balances = {}
        for account_id in sorted(set(account_ids), key=str):
            balances[account_id] = await self.recalculate(
                account_id, user_id, correlation_id=correlation_id
            )
        return balances
