"""
Account Service

Account lifecycle around the ledger: creation, renaming, deletion and
seeding of the default accounts every new user starts with.

Balances are NEVER written here. A new account's current balance is
its opening balance; from then on only the balance recalculator
changes it.
"""

from datetime import datetime
from typing import Optional
from uuid import UUID

import structlog

from src.audit import AuditLogger
from src.config import LedgerSettings, get_settings
from src.ledger.errors import ConflictError, NotFoundError, StoreUnavailableError
from src.models.ledger import (
    ZERO,
    Account,
    AccountCreate,
    AccountPatch,
    AccountType,
)
from src.services.storage import LedgerStoreInterface, StorageError


logger = structlog.get_logger(__name__)


# Accounts created for every new user, one per type
DEFAULT_ACCOUNTS = (
    ("Cash on Hand", AccountType.CASH),
    ("Bank Account", AccountType.BANK),
)


class AccountService:
    """Create, read, rename and delete accounts."""

    def __init__(
        self,
        store: LedgerStoreInterface,
        audit_logger: Optional[AuditLogger] = None,
        settings: Optional[LedgerSettings] = None,
    ):
        self._store = store
        self._audit_logger = audit_logger
        self._settings = settings or get_settings().ledger

    async def _call(self, operation: str, call):
        try:
            return await call
        except StorageError as e:
            logger.error("store_unavailable", operation=operation, error=str(e))
            raise StoreUnavailableError(f"{operation} failed: {e}") from e

    async def create_account(self, user_id: str, request: AccountCreate) -> Account:
        account = Account(
            user_id=user_id,
            name=request.name,
            account_type=request.account_type,
            opening_balance=request.opening_balance,
            metadata=request.metadata,
        )
        stored = await self._call("insert_account", self._store.insert_account(account))

        logger.info(
            "account_created",
            account_id=str(stored.id),
            account_type=stored.account_type.value,
        )
        if self._audit_logger:
            await self._audit_logger.log_account_created(
                account_id=stored.id,
                user_id=user_id,
                name=stored.name,
                account_type=stored.account_type.value,
                opening_balance=stored.opening_balance,
            )
        return stored

    async def get_account(self, user_id: str, account_id: UUID) -> Account:
        """
        Fetch one account.

        Raises:
            NotFoundError: Absent or owned by another user
        """
        account = await self._call(
            "get_account", self._store.get_account(account_id, user_id)
        )
        if account is None:
            raise NotFoundError("account", account_id)
        return account

    async def list_accounts(
        self,
        user_id: str,
        account_type: Optional[AccountType] = None,
    ) -> list[Account]:
        return await self._call(
            "list_accounts", self._store.list_accounts(user_id, account_type=account_type)
        )

    async def update_account(
        self,
        user_id: str,
        account_id: UUID,
        patch: AccountPatch,
    ) -> Account:
        """Change name, type or metadata. Balances are not patchable."""
        account = await self.get_account(user_id, account_id)

        changes = patch.model_dump(exclude_unset=True, exclude_none=True)
        if not changes:
            return account

        updated = account.model_copy(update={**changes, "updated_at": datetime.utcnow()})
        stored = await self._call("update_account", self._store.update_account(updated))

        logger.info("account_updated", account_id=str(account_id), fields=sorted(changes))
        if self._audit_logger:
            await self._audit_logger.log_account_updated(
                account_id=account_id,
                user_id=user_id,
                changed_fields=sorted(changes),
            )
        return stored

    async def delete_account(self, user_id: str, account_id: UUID) -> None:
        """
        Delete an account that no entry references.

        Raises:
            NotFoundError: Absent or owned by another user
            ConflictError: Entries still reference the account
        """
        await self.get_account(user_id, account_id)

        referencing = await self._call(
            "count_entries_for_account",
            self._store.count_entries_for_account(account_id, user_id),
        )
        if referencing:
            raise ConflictError(
                f"Account has {referencing} ledger entries; delete them first",
                {"account_id": str(account_id), "entry_count": referencing},
            )

        await self._call("delete_account", self._store.delete_account(account_id))

        logger.info("account_deleted", account_id=str(account_id))
        if self._audit_logger:
            await self._audit_logger.log_account_deleted(account_id, user_id)

    async def seed_default_accounts(self, user_id: str) -> list[Account]:
        """
        Give a new user a cash and a bank account at zero.

        Idempotent per type: a type the user already holds is skipped.
        Returns only the accounts created by this call.
        """
        existing = await self.list_accounts(user_id)
        held_types = {a.account_type for a in existing}

        created = []
        for name, account_type in DEFAULT_ACCOUNTS:
            if account_type in held_types:
                continue
            created.append(await self._call(
                "insert_account",
                self._store.insert_account(Account(
                    user_id=user_id,
                    name=name,
                    account_type=account_type,
                    opening_balance=ZERO,
                    metadata={"currency": self._settings.default_currency},
                )),
            ))

        if created:
            logger.info("default_accounts_seeded", user_id=user_id, count=len(created))
            if self._audit_logger:
                await self._audit_logger.log_default_accounts_seeded(
                    user_id, [a.id for a in created]
                )
        return created
