"""
Abstract Storage Interface

DESIGN DECISION: We define an abstract interface for the record store.
This allows us to:
1. Swap Google Sheets for a real database later
2. Use in-memory storage for testing
3. Keep ledger logic decoupled from storage implementation

The interface is intentionally simple - we're not building a full ORM.
Point lookups, filtered listing, insert, update, delete. Nothing here is
transactional across calls; the ledger layer is designed around that.
"""

from abc import ABC, abstractmethod
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


class LedgerStoreInterface(ABC):
    """
    Abstract interface for account and ledger entry storage.

    Any storage implementation (Google Sheets, PostgreSQL, etc.)
    must implement these methods. Each call is assumed to be
    individually atomic.
    """

    # -------------------------------------------------------------------------
    # Accounts
    # -------------------------------------------------------------------------

    @abstractmethod
    async def get_account(self, account_id: UUID, user_id: str) -> Optional[Account]:
        """
        Retrieve an account owned by user_id.

        Returns:
            The account, or None if absent or owned by someone else
        """
        pass

    @abstractmethod
    async def list_accounts(
        self,
        user_id: str,
        account_type: Optional[AccountType] = None,
    ) -> list[Account]:
        """
        List a user's accounts, oldest first.

        Args:
            user_id: Owner
            account_type: Only return accounts of this type
        """
        pass

    @abstractmethod
    async def insert_account(self, account: Account) -> Account:
        """
        Persist a new account.

        Raises:
            DuplicateError: If the ID already exists
            StorageError: If save fails
        """
        pass

    @abstractmethod
    async def update_account(self, account: Account) -> Account:
        """
        Replace an account's name/type/metadata.

        Raises:
            NotFoundError: If account doesn't exist
        """
        pass

    @abstractmethod
    async def update_account_balance(self, account_id: UUID, new_balance: Decimal) -> None:
        """
        Overwrite an account's current balance.

        Raises:
            NotFoundError: If account doesn't exist
        """
        pass

    @abstractmethod
    async def delete_account(self, account_id: UUID) -> bool:
        """
        Delete an account by ID.

        Returns:
            True if deleted, False if it did not exist
        """
        pass

    # -------------------------------------------------------------------------
    # Ledger entries
    # -------------------------------------------------------------------------

    @abstractmethod
    async def get_ledger_entry(self, entry_id: UUID, user_id: str) -> Optional[LedgerEntry]:
        """
        Retrieve an entry owned by user_id.

        Returns:
            The entry, or None if absent or owned by someone else
        """
        pass

    @abstractmethod
    async def list_ledger_entries(self, entry_filter: EntryFilter) -> list[LedgerEntry]:
        """
        List entries matching a filter, oldest first.

        Args:
            entry_filter: User scope plus optional account/type/category/date filters

        Returns:
            Matching entries after offset/limit
        """
        pass

    @abstractmethod
    async def insert_ledger_entry(self, entry: LedgerEntry) -> LedgerEntry:
        """
        Persist a new entry.

        Raises:
            DuplicateError: If the ID already exists
            StorageError: If save fails
        """
        pass

    @abstractmethod
    async def update_ledger_entry(self, entry_id: UUID, patch: dict[str, Any]) -> LedgerEntry:
        """
        Apply field changes to an entry.

        Args:
            entry_id: Entry to change
            patch: Field name to new value

        Returns:
            The updated entry

        Raises:
            NotFoundError: If entry doesn't exist
        """
        pass

    @abstractmethod
    async def delete_ledger_entry(self, entry_id: UUID) -> None:
        """
        Delete an entry by ID.

        Raises:
            NotFoundError: If entry doesn't exist
        """
        pass

    @abstractmethod
    async def count_entries_for_account(self, account_id: UUID, user_id: str) -> int:
        """Count entries referencing the account as primary or related."""
        pass


class CategoryStoreInterface(ABC):
    """
    Abstract interface for category storage.

    Global categories (user_id None) are shared by every user.
    """

    @abstractmethod
    async def list_categories(self, user_id: str) -> list[Category]:
        """List global and user-owned categories, sorted by name."""
        pass

    @abstractmethod
    async def get_category(self, category_id: UUID) -> Optional[Category]:
        """Retrieve a category by ID regardless of owner."""
        pass

    @abstractmethod
    async def insert_category(self, category: Category) -> Category:
        """Persist a new category."""
        pass

    @abstractmethod
    async def update_category(self, category: Category) -> Category:
        """
        Replace a category.

        Raises:
            NotFoundError: If category doesn't exist
        """
        pass

    @abstractmethod
    async def delete_category(self, category_id: UUID) -> bool:
        """Delete a category by ID."""
        pass


class AuditStorageInterface(ABC):
    """
    Abstract interface for audit log storage.

    Audit logs are append-only - we never delete or modify them.
    """

    @abstractmethod
    async def append_event(self, event: AuditEvent) -> bool:
        """
        Append an audit event to the log.

        Returns:
            True if logged successfully
        """
        pass

    @abstractmethod
    async def get_events_by_entity(
        self,
        entity_type: str,
        entity_id: UUID,
    ) -> list[AuditEvent]:
        """
        Get all events for a specific entity, oldest first.

        Args:
            entity_type: Type of entity (e.g., 'account', 'entry')
            entity_id: The entity's ID
        """
        pass

    @abstractmethod
    async def get_recent_events(
        self,
        limit: int = 100,
    ) -> list[AuditEvent]:
        """
        Get the most recent audit events (newest first).
        """
        pass


class StorageError(Exception):
    """Base exception for storage operations."""
    pass


class NotFoundError(StorageError):
    """Entity not found in storage."""
    pass


class DuplicateError(StorageError):
    """Attempted to insert a duplicate entity."""
    pass


class ConnectionError(StorageError):
    """Could not connect to storage backend."""
    pass
