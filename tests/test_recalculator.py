"""
Tests for balance recalculation.
"""

import asyncio
import gc
from decimal import Decimal
from uuid import uuid4

import pytest

import src.ledger.recalculator as recalculator_module
from src.ledger import BalanceRecalculator, NotFoundError, StoreUnavailableError, contribution
from src.models.audit import AuditEventType
from src.models.ledger import Account, AccountType, EntryType, LedgerEntry
from src.services.storage import InMemoryLedgerStore, StorageError
from src.services.storage import NotFoundError as RecordNotFoundError


USER = "user-1"


def make_entry(account_id, amount, entry_type=EntryType.EXPENSE, related=None, user_id=USER):
    return LedgerEntry(
        user_id=user_id,
        account_id=account_id,
        related_account_id=related,
        amount=Decimal(amount),
        entry_type=entry_type,
    )


class TestContribution:

    def test_primary_takes_amount(self):
        account_id = uuid4()
        entry = make_entry(account_id, "-30")

        assert contribution(entry, account_id) == Decimal("-30")

    def test_related_takes_inverse(self):
        source, destination = uuid4(), uuid4()
        entry = make_entry(source, "-20", EntryType.TRANSFER, related=destination)

        assert contribution(entry, source) == Decimal("-20")
        assert contribution(entry, destination) == Decimal("20")

    def test_unrelated_account_is_zero(self):
        entry = make_entry(uuid4(), "15", EntryType.INCOME)

        assert contribution(entry, uuid4()) == Decimal("0")


class TestRecalculate:

    async def open_account(self, store, opening="100", account_type=AccountType.BANK):
        return await store.insert_account(Account(
            user_id=USER,
            name="Account",
            account_type=account_type,
            opening_balance=Decimal(opening),
        ))

    @pytest.mark.asyncio
    async def test_opening_balance_plus_entries(self, store, recalculator):
        bank = await self.open_account(store)
        cash = await self.open_account(store, "0", AccountType.CASH)
        await store.insert_ledger_entry(make_entry(bank.id, "-30"))
        await store.insert_ledger_entry(make_entry(bank.id, "-20", EntryType.TRANSFER, cash.id))
        await store.insert_ledger_entry(make_entry(cash.id, "5.55", EntryType.INCOME))

        assert await recalculator.recalculate(bank.id, USER) == Decimal("50")
        assert await recalculator.recalculate(cash.id, USER) == Decimal("25.55")

        stored = await store.get_account(bank.id, USER)
        assert stored.current_balance == Decimal("50")

    @pytest.mark.asyncio
    async def test_no_entries_gives_opening_balance(self, store, recalculator):
        account = await self.open_account(store, "12.50")

        assert await recalculator.recalculate(account.id, USER) == Decimal("12.50")

    @pytest.mark.asyncio
    async def test_idempotent(self, store, recalculator):
        account = await self.open_account(store)
        await store.insert_ledger_entry(make_entry(account.id, "-0.10"))

        first = await recalculator.recalculate(account.id, USER)
        second = await recalculator.recalculate(account.id, USER)

        assert first == second == Decimal("99.90")

    @pytest.mark.asyncio
    async def test_repairs_drifted_balance(self, store, recalculator):
        account = await self.open_account(store)
        await store.insert_ledger_entry(make_entry(account.id, "-30"))
        await store.update_account_balance(account.id, Decimal("12345"))

        assert await recalculator.recalculate(account.id, USER) == Decimal("70")

    @pytest.mark.asyncio
    async def test_ignores_other_users_entries(self, store, recalculator):
        account = await self.open_account(store)
        await store.insert_ledger_entry(make_entry(account.id, "-30", user_id="intruder"))

        assert await recalculator.recalculate(account.id, USER) == Decimal("100")

    @pytest.mark.asyncio
    async def test_missing_account(self, recalculator):
        with pytest.raises(NotFoundError):
            await recalculator.recalculate(uuid4(), USER)

    @pytest.mark.asyncio
    async def test_foreign_account(self, store, recalculator):
        account = await self.open_account(store)

        with pytest.raises(NotFoundError):
            await recalculator.recalculate(account.id, "someone-else")

    @pytest.mark.asyncio
    async def test_reads_every_page(self, store, recalculator, monkeypatch):
        monkeypatch.setattr(recalculator_module, "PAGE_SIZE", 2)
        account = await self.open_account(store, "0")
        for _ in range(5):
            await store.insert_ledger_entry(make_entry(account.id, "1", EntryType.INCOME))

        assert await recalculator.recalculate(account.id, USER) == Decimal("5")

    @pytest.mark.asyncio
    async def test_store_failure_raises_store_unavailable(self, store, recalculator, monkeypatch):
        account = await self.open_account(store)

        async def broken(*args, **kwargs):
            raise StorageError("connection reset")

        monkeypatch.setattr(store, "list_ledger_entries", broken)

        with pytest.raises(StoreUnavailableError) as exc_info:
            await recalculator.recalculate(account.id, USER)

        assert isinstance(exc_info.value.__cause__, StorageError)

    @pytest.mark.asyncio
    async def test_audits_only_when_balance_changes(self, store, recalculator, audit_storage):
        account = await self.open_account(store)
        await store.insert_ledger_entry(make_entry(account.id, "-1"))

        await recalculator.recalculate(account.id, USER)
        await recalculator.recalculate(account.id, USER)

        recalculated = [
            e for e in audit_storage.events
            if e.event_type == AuditEventType.BALANCE_RECALCULATED
        ]
        assert len(recalculated) == 1

    @pytest.mark.asyncio
    async def test_concurrent_recalculations_agree(self, store, recalculator):
        account = await self.open_account(store)
        for _ in range(3):
            await store.insert_ledger_entry(make_entry(account.id, "-10"))

        results = await asyncio.gather(*(
            recalculator.recalculate(account.id, USER) for _ in range(5)
        ))

        assert set(results) == {Decimal("70")}

    @pytest.mark.asyncio
    async def test_account_deleted_before_balance_write(self, store, recalculator, monkeypatch):
        account = await self.open_account(store)

        async def vanished(account_id, new_balance):
            raise RecordNotFoundError(f"Account not found: {account_id}")

        monkeypatch.setattr(store, "update_account_balance", vanished)

        with pytest.raises(NotFoundError):
            await recalculator.recalculate(account.id, USER)

    @pytest.mark.asyncio
    async def test_locks_released_after_use(self, store, recalculator):
        accounts = [await self.open_account(store) for _ in range(3)]

        await asyncio.gather(*(
            recalculator.recalculate(a.id, USER) for a in accounts for _ in range(2)
        ))
        gc.collect()

        assert len(recalculator._locks) == 0


class TestRecalculateMany:

    @pytest.mark.asyncio
    async def test_returns_balance_per_account(self):
        store = InMemoryLedgerStore()
        recalculator = BalanceRecalculator(store)
        a = await store.insert_account(Account(
            user_id=USER, name="A", account_type=AccountType.BANK, opening_balance=Decimal("10"),
        ))
        b = await store.insert_account(Account(
            user_id=USER, name="B", account_type=AccountType.CASH,
        ))
        await store.insert_ledger_entry(make_entry(a.id, "-4", EntryType.TRANSFER, b.id))

        balances = await recalculator.recalculate_many([a.id, b.id, a.id], USER)

        assert balances == {a.id: Decimal("6"), b.id: Decimal("4")}
