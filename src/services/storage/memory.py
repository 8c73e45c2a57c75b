"""
In-Memory Storage Implementation

Used by the test suite and when no Google Sheets backend is configured.

Every call yields to the event loop once before touching data, so
concurrent coroutines interleave at the same points they would
against a networked store.
"""

import asyncio
from decimal import Decimal
from typing import Any, Optional
from uuid import UUID

from src.models.audit import AuditEvent
from src.models.ledger import (
    Account,
    AccountType,
    Category,
    EntryFilter,
    LedgerEntry,
)
from src.services.storage.interface import (
    AuditStorageInterface,
    CategoryStoreInterface,
    DuplicateError,
    LedgerStoreInterface,
    NotFoundError,
    StorageError,
)


class InMemoryLedgerStore(LedgerStoreInterface, CategoryStoreInterface):
    """
    Dictionary-backed record store for accounts, entries and categories.

    Records are copied on the way in and out so callers can never
    mutate stored state by accident.
    """

    def __init__(self, categories: Optional[list[Category]] = None):
        self._accounts: dict[UUID, Account] = {}
        self._entries: dict[UUID, LedgerEntry] = {}
        self._categories: dict[UUID, Category] = {}
        for category in categories or []:
            self._categories[category.id] = category.model_copy(deep=True)

    async def _io(self) -> None:
        await asyncio.sleep(0)

    # -------------------------------------------------------------------------
    # Accounts
    # -------------------------------------------------------------------------

    async def get_account(self, account_id: UUID, user_id: str) -> Optional[Account]:
        await self._io()
        account = self._accounts.get(account_id)
        if account is None or account.user_id != user_id:
            return None
        return account.model_copy(deep=True)

    async def list_accounts(
        self,
        user_id: str,
        account_type: Optional[AccountType] = None,
    ) -> list[Account]:
        await self._io()
        accounts = [
            a.model_copy(deep=True)
            for a in self._accounts.values()
            if a.user_id == user_id
            and (account_type is None or a.account_type == account_type)
        ]
        accounts.sort(key=lambda a: a.created_at)
        return accounts

    async def insert_account(self, account: Account) -> Account:
        await self._io()
        if account.id in self._accounts:
            raise DuplicateError(f"Account already exists: {account.id}")
        self._accounts[account.id] = account.model_copy(deep=True)
        return account.model_copy(deep=True)

    async def update_account(self, account: Account) -> Account:
        await self._io()
        stored = self._accounts.get(account.id)
        if stored is None:
            raise NotFoundError(f"Account not found: {account.id}")
        # Balance is owned by update_account_balance
        updated = account.model_copy(
            update={"current_balance": stored.current_balance},
            deep=True,
        )
        self._accounts[account.id] = updated
        return updated.model_copy(deep=True)

    async def update_account_balance(self, account_id: UUID, new_balance: Decimal) -> None:
        await self._io()
        stored = self._accounts.get(account_id)
        if stored is None:
            raise NotFoundError(f"Account not found: {account_id}")
        stored.current_balance = new_balance

    async def delete_account(self, account_id: UUID) -> bool:
        await self._io()
        return self._accounts.pop(account_id, None) is not None

    # -------------------------------------------------------------------------
    # Ledger entries
    # -------------------------------------------------------------------------

    async def get_ledger_entry(self, entry_id: UUID, user_id: str) -> Optional[LedgerEntry]:
        await self._io()
        entry = self._entries.get(entry_id)
        if entry is None or entry.user_id != user_id:
            return None
        return entry.model_copy(deep=True)

    async def list_ledger_entries(self, entry_filter: EntryFilter) -> list[LedgerEntry]:
        await self._io()
        entries = [
            e.model_copy(deep=True)
            for e in self._entries.values()
            if entry_filter.matches(e)
        ]
        entries.sort(key=lambda e: e.created_at)
        start = entry_filter.offset
        return entries[start:start + entry_filter.limit]

    async def insert_ledger_entry(self, entry: LedgerEntry) -> LedgerEntry:
        await self._io()
        if entry.id in self._entries:
            raise DuplicateError(f"Entry already exists: {entry.id}")
        self._entries[entry.id] = entry.model_copy(deep=True)
        return entry.model_copy(deep=True)

    async def update_ledger_entry(self, entry_id: UUID, patch: dict[str, Any]) -> LedgerEntry:
        await self._io()
        stored = self._entries.get(entry_id)
        if stored is None:
            raise NotFoundError(f"Entry not found: {entry_id}")
        try:
            updated = LedgerEntry.model_validate({**stored.model_dump(), **patch})
        except ValueError as e:
            raise StorageError(f"Invalid entry update: {e}") from e
        self._entries[entry_id] = updated
        return updated.model_copy(deep=True)

    async def delete_ledger_entry(self, entry_id: UUID) -> None:
        await self._io()
        if self._entries.pop(entry_id, None) is None:
            raise NotFoundError(f"Entry not found: {entry_id}")

    async def count_entries_for_account(self, account_id: UUID, user_id: str) -> int:
        await self._io()
        return sum(
            1 for e in self._entries.values()
            if e.user_id == user_id and account_id in e.accounts_touched
        )

    # -------------------------------------------------------------------------
    # Categories
    # -------------------------------------------------------------------------

    async def list_categories(self, user_id: str) -> list[Category]:
        await self._io()
        categories = [
            c.model_copy(deep=True)
            for c in self._categories.values()
            if c.visible_to(user_id)
        ]
        categories.sort(key=lambda c: c.name.lower())
        return categories

    async def get_category(self, category_id: UUID) -> Optional[Category]:
        await self._io()
        category = self._categories.get(category_id)
        return category.model_copy(deep=True) if category else None

    async def insert_category(self, category: Category) -> Category:
        await self._io()
        if category.id in self._categories:
            raise DuplicateError(f"Category already exists: {category.id}")
        self._categories[category.id] = category.model_copy(deep=True)
        return category.model_copy(deep=True)

    async def update_category(self, category: Category) -> Category:
        await self._io()
        if category.id not in self._categories:
            raise NotFoundError(f"Category not found: {category.id}")
        self._categories[category.id] = category.model_copy(deep=True)
        return category.model_copy(deep=True)

    async def delete_category(self, category_id: UUID) -> bool:
        await self._io()
        return self._categories.pop(category_id, None) is not None


class InMemoryAuditStorage(AuditStorageInterface):
    """Append-only list of audit events."""

    def __init__(self):
        self._events: list[AuditEvent] = []

    @property
    def events(self) -> list[AuditEvent]:
        return list(self._events)

    async def append_event(self, event: AuditEvent) -> bool:
        self._events.append(event)
        return True

    async def get_events_by_entity(
        self,
        entity_type: str,
        entity_id: UUID,
    ) -> list[AuditEvent]:
        events = [
            e for e in self._events
            if e.entity_type == entity_type and e.entity_id == entity_id
        ]
        events.sort(key=lambda e: e.timestamp)
        return events

    async def get_recent_events(self, limit: int = 100) -> list[AuditEvent]:
        events = sorted(self._events, key=lambda e: e.timestamp, reverse=True)
        return events[:limit]
