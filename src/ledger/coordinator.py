"""
Ledger Mutation Coordinator

Orchestrates entry create/update/delete so that every mutation is
followed by a recalculation of every account it touches.

Flow for every mutation:
1. Validate  -> two-stage validation, no store access
2. Resolve   -> load and ownership-check the accounts/entry involved
3. Check     -> advisory insufficient-funds check (outflows only)
4. Write     -> one store call; its outcome is the outcome of the call
5. Settle    -> recalculate every touched account, with retries

CRITICAL: Step 5 never fails the call. The entry write already
happened; a failed recalculation is logged, audited, and the account
is remembered as stale until a repair pass succeeds. A momentary
lag between entry and balance is acceptable, a rejected valid write
is not.

The funds check (step 3) reads the stored balance and is NOT atomic
with the write. Two concurrent withdrawals can both pass it.
"""

from decimal import Decimal, InvalidOperation
from typing import Awaitable, Iterable, Optional, TypeVar, Union
from uuid import UUID

import structlog
from tenacity import (
    AsyncRetrying,
    retry_if_exception_type,
    stop_after_attempt,
    wait_exponential,
)

from src.audit import AuditLogger, create_correlation_id
from src.config import LedgerSettings, get_settings
from src.ledger.errors import (
    ConflictError,
    InsufficientFundsError,
    NotFoundError,
    StoreUnavailableError,
    ValidationError,
)
from src.ledger.recalculator import BalanceRecalculator
from src.models.ledger import (
    Account,
    AccountType,
    EntryType,
    LedgerEntry,
    LedgerEntryCreate,
    LedgerEntryPatch,
    LedgerMutationResult,
    ValidationResult,
)
from src.services.storage import (
    CategoryStoreInterface,
    DuplicateError,
    LedgerStoreInterface,
    StorageError,
)
from src.services.storage import NotFoundError as RecordNotFoundError
from src.validation import EntryValidator, normalize_amount, parse_entry_type


T = TypeVar("T")

logger = structlog.get_logger(__name__)


def raise_for_result(result: ValidationResult) -> None:
    """Turn a failed validation result into a ledger ValidationError."""
    if result.has_errors:
        errors = [i for i in result.issues if i.severity == "error"]
        raise ValidationError(
            "; ".join(i.message for i in errors),
            issues=[
                {"field": i.field, "type": i.issue_type, "message": i.message}
                for i in errors
            ],
        )


class LedgerCoordinator:
    """
    Entry point for every ledger mutation.

    All collaborators are injected; nothing here reaches for a global
    store client.
    """

    def __init__(
        self,
        store: LedgerStoreInterface,
        recalculator: Optional[BalanceRecalculator] = None,
        validator: Optional[EntryValidator] = None,
        category_store: Optional[CategoryStoreInterface] = None,
        audit_logger: Optional[AuditLogger] = None,
        settings: Optional[LedgerSettings] = None,
    ):
        self._store = store
        self._settings = settings or get_settings().ledger
        self._audit_logger = audit_logger
        self._recalculator = recalculator or BalanceRecalculator(store, audit_logger)
        self._validator = validator or EntryValidator(self._settings)
        self._category_store = category_store

        # (user_id, account_id) pairs whose last recalculation failed
        self._stale: set[tuple[str, UUID]] = set()

    @property
    def stale_accounts(self) -> set[tuple[str, UUID]]:
        """Accounts awaiting a repair recalculation."""
        return set(self._stale)

    # -------------------------------------------------------------------------
    # Store access helpers
    # -------------------------------------------------------------------------

    async def _guard(
        self,
        operation: str,
        call: Awaitable[T],
        user_id: str,
        correlation_id: Optional[UUID] = None,
        entity: str = "record",
    ) -> T:
        """Await a store call, translating storage errors to ledger errors."""
        try:
            return await call
        except RecordNotFoundError as e:
            raise NotFoundError(entity) from e
        except DuplicateError as e:
            raise ConflictError(f"{entity.capitalize()} already exists") from e
        except StorageError as e:
            logger.error("store_unavailable", operation=operation, error=str(e))
            if self._audit_logger:
                await self._audit_logger.log_store_unavailable(
                    operation=operation,
                    error_message=str(e),
                    user_id=user_id,
                    correlation_id=correlation_id,
                )
            raise StoreUnavailableError(f"{operation} failed: {e}") from e

    async def _require_account(
        self,
        account_id: UUID,
        user_id: str,
        correlation_id: Optional[UUID] = None,
    ) -> Account:
        account = await self._guard(
            "get_account",
            self._store.get_account(account_id, user_id),
            user_id,
            correlation_id,
            entity="account",
        )
        if account is None:
            raise NotFoundError("account", account_id)
        return account

    async def _require_entry(
        self,
        entry_id: UUID,
        user_id: str,
        correlation_id: Optional[UUID] = None,
    ) -> LedgerEntry:
        entry = await self._guard(
            "get_ledger_entry",
            self._store.get_ledger_entry(entry_id, user_id),
            user_id,
            correlation_id,
            entity="entry",
        )
        if entry is None:
            raise NotFoundError("entry", entry_id)
        return entry

    async def _require_category(
        self,
        category_id: UUID,
        user_id: str,
        correlation_id: Optional[UUID] = None,
    ) -> None:
        if self._category_store is None:
            return
        category = await self._guard(
            "get_category",
            self._category_store.get_category(category_id),
            user_id,
            correlation_id,
            entity="category",
        )
        if category is None or not category.visible_to(user_id):
            raise NotFoundError("category", category_id)

    async def _validate(
        self,
        result: ValidationResult,
        user_id: str,
        correlation_id: UUID,
    ) -> None:
        if result.has_errors and self._audit_logger:
            await self._audit_logger.log_validation_failed(
                user_id=user_id,
                issues=[
                    {"field": i.field, "type": i.issue_type, "message": i.message}
                    for i in result.issues
                    if i.severity == "error"
                ],
                correlation_id=correlation_id,
            )
        raise_for_result(result)

    async def _check_funds(
        self,
        account: Account,
        requested: Decimal,
        user_id: str,
        correlation_id: UUID,
    ) -> None:
        """Reject an outflow larger than the stored balance (advisory)."""
        available = account.current_balance
        if available - requested < 0:
            if self._audit_logger:
                await self._audit_logger.log_insufficient_funds(
                    account_id=account.id,
                    user_id=user_id,
                    available=available,
                    requested=requested,
                    correlation_id=correlation_id,
                )
            raise InsufficientFundsError(account.id, available, requested)

    # -------------------------------------------------------------------------
    # Post-write recalculation
    # -------------------------------------------------------------------------

    async def _settle(
        self,
        account_ids: Iterable[UUID],
        user_id: str,
        correlation_id: UUID,
    ) -> tuple[dict[UUID, Decimal], list[UUID]]:
        """
        Recalculate every touched account after a successful write.

        Never raises for store failures: those accounts are returned
        (and remembered) as stale instead.
        """
        balances: dict[UUID, Decimal] = {}
        stale: list[UUID] = []
        attempts = self._settings.recalc_max_attempts

        for account_id in sorted(set(account_ids), key=str):
            try:
                async for attempt in AsyncRetrying(
                    stop=stop_after_attempt(attempts),
                    wait=wait_exponential(
                        multiplier=1,
                        min=self._settings.recalc_retry_min_seconds,
                        max=self._settings.recalc_retry_max_seconds,
                    ),
                    retry=retry_if_exception_type(StoreUnavailableError),
                    reraise=True,
                ):
                    with attempt:
                        balances[account_id] = await self._recalculator.recalculate(
                            account_id, user_id, correlation_id=correlation_id
                        )
                self._stale.discard((user_id, account_id))
            except StoreUnavailableError as e:
                logger.error(
                    "recalculation_failed",
                    account_id=str(account_id),
                    attempts=attempts,
                    error=str(e),
                )
                if self._audit_logger:
                    await self._audit_logger.log_recalculation_failed(
                        account_id=account_id,
                        user_id=user_id,
                        error_message=str(e),
                        attempts=attempts,
                        correlation_id=correlation_id,
                    )
                self._stale.add((user_id, account_id))
                stale.append(account_id)
            except NotFoundError:
                # Account deleted between the write and its recalculation
                logger.warning("recalculation_skipped", account_id=str(account_id))

        return balances, stale

    # -------------------------------------------------------------------------
    # Mutations
    # -------------------------------------------------------------------------

    async def create_entry(
        self,
        user_id: str,
        request: LedgerEntryCreate,
        correlation_id: Optional[UUID] = None,
    ) -> LedgerMutationResult:
        """
        Record a new entry and settle the balances it touches.

        Raises:
            ValidationError: Missing/malformed fields
            NotFoundError: Account or category absent or not owned
            InsufficientFundsError: Outflow exceeds the stored balance
            StoreUnavailableError: The entry could not be written
        """
        correlation_id = correlation_id or create_correlation_id()

        await self._validate(
            self._validator.validate_create(request), user_id, correlation_id
        )

        entry_type = parse_entry_type(request.entry_type)
        signed_amount = normalize_amount(request.amount, entry_type)

        primary = await self._require_account(request.account_id, user_id, correlation_id)
        if request.related_account_id is not None:
            await self._require_account(request.related_account_id, user_id, correlation_id)
        if request.category_id is not None:
            await self._require_category(request.category_id, user_id, correlation_id)

        if self._validator.needs_funds_check(primary, signed_amount):
            await self._check_funds(primary, -signed_amount, user_id, correlation_id)

        entry = LedgerEntry(
            user_id=user_id,
            account_id=primary.id,
            related_account_id=request.related_account_id,
            amount=signed_amount,
            entry_type=entry_type,
            category_id=request.category_id,
            note=request.note,
        )
        stored = await self._guard(
            "insert_ledger_entry",
            self._store.insert_ledger_entry(entry),
            user_id,
            correlation_id,
            entity="entry",
        )

        logger.info(
            "entry_created",
            entry_id=str(stored.id),
            entry_type=stored.entry_type.value,
            amount=str(stored.amount),
        )
        if self._audit_logger:
            await self._audit_logger.log_entry_created(
                entry_id=stored.id,
                user_id=user_id,
                entry_type=stored.entry_type.value,
                amount=stored.amount,
                account_ids=sorted(stored.accounts_touched, key=str),
                correlation_id=correlation_id,
            )

        balances, stale = await self._settle(stored.accounts_touched, user_id, correlation_id)
        return LedgerMutationResult(entry=stored, balances=balances, stale_account_ids=stale)

    async def update_entry(
        self,
        user_id: str,
        entry_id: UUID,
        patch: LedgerEntryPatch,
        correlation_id: Optional[UUID] = None,
    ) -> LedgerMutationResult:
        """
        Patch amount, entry type, category or note.

        Recalculates the union of the accounts referenced before and
        after the update so stale contributions are unwound.
        """
        correlation_id = correlation_id or create_correlation_id()

        existing = await self._require_entry(entry_id, user_id, correlation_id)
        await self._validate(
            self._validator.validate_patch(existing, patch), user_id, correlation_id
        )

        changes = {}
        new_type = parse_entry_type(patch.entry_type) or existing.entry_type
        if new_type != existing.entry_type:
            changes["entry_type"] = new_type

        base_amount = patch.amount if patch.amount is not None else existing.amount
        new_amount = normalize_amount(base_amount, new_type)
        if new_amount != existing.amount:
            changes["amount"] = new_amount

        # Explicitly sent None clears category/note
        fields_set = patch.model_fields_set
        if "category_id" in fields_set and patch.category_id != existing.category_id:
            if patch.category_id is not None:
                await self._require_category(patch.category_id, user_id, correlation_id)
            changes["category_id"] = patch.category_id
        if "note" in fields_set and patch.note != existing.note:
            changes["note"] = patch.note

        updated = existing
        if changes:
            updated = await self._guard(
                "update_ledger_entry",
                self._store.update_ledger_entry(entry_id, changes),
                user_id,
                correlation_id,
                entity="entry",
            )
            logger.info(
                "entry_updated",
                entry_id=str(entry_id),
                fields=sorted(changes),
            )
            if self._audit_logger:
                await self._audit_logger.log_entry_updated(
                    entry_id=entry_id,
                    user_id=user_id,
                    changes=changes,
                    correlation_id=correlation_id,
                )

        touched = existing.accounts_touched | updated.accounts_touched
        balances, stale = await self._settle(touched, user_id, correlation_id)
        return LedgerMutationResult(entry=updated, balances=balances, stale_account_ids=stale)

    async def delete_entry(
        self,
        user_id: str,
        entry_id: UUID,
        correlation_id: Optional[UUID] = None,
    ) -> LedgerMutationResult:
        """Delete an entry and unwind its contribution from every account."""
        correlation_id = correlation_id or create_correlation_id()

        existing = await self._require_entry(entry_id, user_id, correlation_id)
        await self._guard(
            "delete_ledger_entry",
            self._store.delete_ledger_entry(entry_id),
            user_id,
            correlation_id,
            entity="entry",
        )

        logger.info("entry_deleted", entry_id=str(entry_id))
        if self._audit_logger:
            await self._audit_logger.log_entry_deleted(
                entry_id=entry_id,
                user_id=user_id,
                amount=existing.amount,
                correlation_id=correlation_id,
            )

        balances, stale = await self._settle(existing.accounts_touched, user_id, correlation_id)
        return LedgerMutationResult(entry=existing, balances=balances, stale_account_ids=stale)

    async def transfer_withdraw(
        self,
        user_id: str,
        from_account_id: UUID,
        to_account_type: Union[AccountType, str],
        amount: Union[Decimal, str],
        note: Optional[str] = "Withdrawal",
        correlation_id: Optional[UUID] = None,
    ) -> LedgerMutationResult:
        """
        Move money into the user's single account of a given type.

        "Withdraw to cash" is transfer_withdraw(user, bank_id, "cash", amount).

        Raises:
            ValidationError: Bad amount/type, or source is the destination
            NotFoundError: Source missing, or no account of the target type
            ConflictError: Several accounts of the target type
            InsufficientFundsError: Source balance below amount
        """
        correlation_id = correlation_id or create_correlation_id()

        try:
            amount = Decimal(str(amount))
        except InvalidOperation:
            raise ValidationError(
                "Amount is not a valid number",
                issues=[{"field": "amount", "type": "invalid_format",
                         "message": "Amount is not a valid number"}],
            )
        if not amount.is_finite():
            raise ValidationError(
                "Amount must be a finite number",
                issues=[{"field": "amount", "type": "invalid_format",
                         "message": "Amount must be a finite number"}],
            )
        if amount <= 0:
            raise ValidationError(
                "Withdrawal amount must be positive",
                issues=[{"field": "amount", "type": "invalid_value",
                         "message": "Withdrawal amount must be positive"}],
            )
        try:
            target_type = AccountType(to_account_type)
        except ValueError:
            raise ValidationError(
                f"Unknown account type: {to_account_type}",
                issues=[{"field": "to_account_type", "type": "invalid_value",
                         "message": f"Unknown account type: {to_account_type}"}],
            )

        source = await self._require_account(from_account_id, user_id, correlation_id)

        candidates = await self._guard(
            "list_accounts",
            self._store.list_accounts(user_id, account_type=target_type),
            user_id,
            correlation_id,
            entity="account",
        )
        if not candidates:
            raise NotFoundError("account", f"type={target_type.value}")
        if len(candidates) > 1:
            raise ConflictError(
                f"{len(candidates)} accounts of type {target_type.value}; "
                "choose the destination explicitly",
                {"account_type": target_type.value, "count": len(candidates)},
            )
        destination = candidates[0]
        if destination.id == source.id:
            raise ValidationError(
                "Cannot withdraw into the same account",
                issues=[{"field": "from_account_id", "type": "invalid_value",
                         "message": "Cannot withdraw into the same account"}],
            )

        await self._check_funds(source, amount, user_id, correlation_id)

        result = await self.create_entry(
            user_id,
            LedgerEntryCreate(
                account_id=source.id,
                related_account_id=destination.id,
                amount=amount,
                entry_type=EntryType.TRANSFER.value,
                note=note,
            ),
            correlation_id=correlation_id,
        )
        if self._audit_logger:
            await self._audit_logger.log_withdrawal(
                entry_id=result.entry.id,
                user_id=user_id,
                from_account_id=source.id,
                to_account_id=destination.id,
                amount=amount,
                correlation_id=correlation_id,
            )
        return result

    # -------------------------------------------------------------------------
    # Repair
    # -------------------------------------------------------------------------

    async def recalculate_account(self, user_id: str, account_id: UUID) -> Decimal:
        """
        Idempotent repair: re-derive one account's balance now.

        Unlike post-write settling, failures are raised to the caller.
        """
        balance = await self._recalculator.recalculate(account_id, user_id)
        self._stale.discard((user_id, account_id))
        return balance

    async def repair_stale_accounts(self) -> dict[UUID, Decimal]:
        """
        Retry every account left stale by a failed recalculation.

        Returns the balances that were repaired; accounts that fail
        again stay stale.
        """
        repaired = {}
        for user_id, account_id in sorted(self._stale, key=lambda k: (k[0], str(k[1]))):
            try:
                repaired[account_id] = await self.recalculate_account(user_id, account_id)
            except StoreUnavailableError as e:
                logger.warning("repair_failed", account_id=str(account_id), error=str(e))
            except NotFoundError:
                self._stale.discard((user_id, account_id))
        return repaired
