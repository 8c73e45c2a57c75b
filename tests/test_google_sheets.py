"""
Tests for the Google Sheets backend against a mocked worksheet.
"""

from datetime import datetime
from decimal import Decimal
from unittest.mock import MagicMock
from uuid import UUID, uuid4

import pytest
from tenacity import wait_none

from src.models.audit import AuditEventBuilder
from src.models.ledger import (
    Account,
    AccountType,
    Category,
    EntryFilter,
    EntryType,
    LedgerEntry,
)
from src.services.storage import (
    GoogleSheetsAuditStorage,
    GoogleSheetsCategoryStore,
    GoogleSheetsLedgerStore,
    StorageError,
)
from src.services.storage.google_sheets import (
    ACCOUNT_COLUMNS,
    AUDIT_COLUMNS,
    BALANCE_COLUMN,
    CATEGORY_COLUMNS,
    ENTRY_COLUMNS,
)


USER = "user-1"


@pytest.fixture
def sheet() -> MagicMock:
    return MagicMock()


@pytest.fixture
def client(sheet) -> MagicMock:
    client = MagicMock()
    client.get_accounts_sheet.return_value = sheet
    client.get_entries_sheet.return_value = sheet
    client.get_categories_sheet.return_value = sheet
    client.get_audit_sheet.return_value = sheet
    return client


@pytest.fixture
def ledger_store(client) -> GoogleSheetsLedgerStore:
    return GoogleSheetsLedgerStore(client)


def account_row(store, **overrides) -> list:
    account = Account(**{
        "user_id": USER,
        "name": "Bank Account",
        "account_type": AccountType.BANK,
        "opening_balance": Decimal("100"),
        **overrides,
    })
    return store._account_to_row(account)


class TestRowConversion:

    def test_account_row_layout(self, ledger_store):
        row = account_row(ledger_store, metadata={"currency": "INR"})

        assert len(row) == len(ACCOUNT_COLUMNS)
        assert row[3] == "bank"
        assert row[4] == "100"
        assert row[BALANCE_COLUMN - 1] == "100"
        assert row[6] == '{"currency": "INR"}'

    def test_account_survives_row_round_trip(self, ledger_store):
        account = Account(
            user_id=USER,
            name="Visa",
            account_type=AccountType.CREDIT_CARD,
            opening_balance=Decimal("-12.30"),
            current_balance=Decimal("-99.99"),
        )

        restored = ledger_store._row_to_account(ledger_store._account_to_row(account))

        assert restored == account

    def test_short_account_row_defaults(self, ledger_store):
        account_id = uuid4()
        created = datetime(2024, 1, 1).isoformat()

        account = ledger_store._row_to_account(
            [str(account_id), USER, "Legacy", "cash", "25", "", "", created]
        )

        assert account.current_balance == Decimal("25")
        assert account.metadata == {}
        assert account.updated_at == account.created_at

    def test_transfer_row_layout(self, ledger_store):
        entry = LedgerEntry(
            user_id=USER,
            account_id=uuid4(),
            related_account_id=uuid4(),
            amount=Decimal("-20.00"),
            entry_type=EntryType.TRANSFER,
            note="Withdrawal",
        )

        row = ledger_store._entry_to_row(entry)

        assert len(row) == len(ENTRY_COLUMNS)
        assert row[4] == "-20.00"
        assert ledger_store._row_to_entry(row) == entry

    def test_category_and_audit_row_widths(self, client):
        category_store = GoogleSheetsCategoryStore(client)
        category_row = category_store._category_to_row(Category(name="Groceries"))
        audit_row = AuditEventBuilder.account_deleted(uuid4(), USER).to_sheets_row()

        assert len(category_row) == len(CATEGORY_COLUMNS)
        assert category_row[1] == ""
        assert len(audit_row) == len(AUDIT_COLUMNS)


class TestLedgerStore:

    @pytest.mark.asyncio
    async def test_get_account_respects_owner(self, ledger_store, sheet):
        row = account_row(ledger_store)
        sheet.get_all_values.return_value = [ACCOUNT_COLUMNS, row]
        account_id = row[0]

        mine = await ledger_store.get_account(UUID(account_id), USER)
        theirs = await ledger_store.get_account(UUID(account_id), "user-2")

        assert mine.name == "Bank Account"
        assert theirs is None

    @pytest.mark.asyncio
    async def test_update_balance_writes_single_cell(self, ledger_store, sheet):
        first = account_row(ledger_store, name="Cash")
        second = account_row(ledger_store)
        sheet.get_all_values.return_value = [ACCOUNT_COLUMNS, first, second]

        await ledger_store.update_account_balance(UUID(second[0]), Decimal("70.00"))

        sheet.update_cell.assert_called_once_with(3, BALANCE_COLUMN, "70.00")

    @pytest.mark.asyncio
    async def test_balance_write_fails_fast(self, ledger_store, sheet):
        row = account_row(ledger_store)
        sheet.get_all_values.return_value = [ACCOUNT_COLUMNS, row]
        sheet.update_cell.side_effect = Exception("APIError: 503")

        with pytest.raises(StorageError):
            await ledger_store.update_account_balance(UUID(row[0]), Decimal("1"))

        assert sheet.update_cell.call_count == 1

    @pytest.mark.asyncio
    async def test_update_account_preserves_stored_balance(self, ledger_store, sheet):
        row = account_row(ledger_store, current_balance=Decimal("42"))
        sheet.get_all_values.return_value = [ACCOUNT_COLUMNS, row]
        stored = ledger_store._row_to_account(row)

        updated = await ledger_store.update_account(
            stored.model_copy(update={"name": "Renamed", "current_balance": Decimal("0")})
        )

        assert updated.name == "Renamed"
        assert updated.current_balance == Decimal("42")

    @pytest.mark.asyncio
    async def test_list_entries_filters_and_sorts(self, ledger_store, sheet):
        account_id = uuid4()
        later = LedgerEntry(
            user_id=USER, account_id=account_id, amount=Decimal("5"),
            entry_type=EntryType.INCOME, created_at=datetime(2024, 5, 2),
        )
        earlier = LedgerEntry(
            user_id=USER, account_id=account_id, amount=Decimal("-3"),
            entry_type=EntryType.EXPENSE, created_at=datetime(2024, 5, 1),
        )
        foreign = LedgerEntry(
            user_id="user-2", account_id=account_id, amount=Decimal("9"),
            entry_type=EntryType.INCOME, created_at=datetime(2024, 5, 1),
        )
        sheet.get_all_values.return_value = [
            ENTRY_COLUMNS,
            ledger_store._entry_to_row(later),
            [],
            ledger_store._entry_to_row(foreign),
            ledger_store._entry_to_row(earlier),
        ]

        entries = await ledger_store.list_ledger_entries(
            EntryFilter(user_id=USER, account_id=account_id)
        )

        assert [e.id for e in entries] == [earlier.id, later.id]

    @pytest.mark.asyncio
    async def test_api_failure_wrapped_as_storage_error(self, ledger_store, sheet):
        sheet.get_all_values.side_effect = Exception("APIError: 503")

        with pytest.raises(StorageError):
            await ledger_store.get_account(uuid4(), USER)

    @pytest.mark.asyncio
    async def test_delete_missing_entry(self, ledger_store, sheet):
        sheet.get_all_values.return_value = [ENTRY_COLUMNS]

        with pytest.raises(StorageError):
            await ledger_store.delete_ledger_entry(uuid4())


    @pytest.mark.asyncio
    async def test_replayed_append_stores_entry_once(self, ledger_store, sheet, monkeypatch):
        monkeypatch.setattr(
            GoogleSheetsLedgerStore.insert_ledger_entry.retry, "wait", wait_none()
        )
        rows = [ENTRY_COLUMNS]
        calls = []

        def append_then_time_out(row, **kwargs):
            rows.append(row)
            calls.append(row)
            if len(calls) == 1:
                raise TimeoutError("response lost")

        sheet.get_all_values.side_effect = lambda: list(rows)
        sheet.append_row.side_effect = append_then_time_out
        account_id = uuid4()
        entry = LedgerEntry(
            user_id=USER, account_id=account_id, amount=Decimal("-12.50"),
            entry_type=EntryType.EXPENSE,
        )

        await ledger_store.insert_ledger_entry(entry)
        entries = await ledger_store.list_ledger_entries(
            EntryFilter(user_id=USER, account_id=account_id)
        )

        assert len(calls) == 1
        assert [e.id for e in entries] == [entry.id]

    @pytest.mark.asyncio
    async def test_duplicate_entry_rows_read_once(self, ledger_store, sheet):
        entry = LedgerEntry(
            user_id=USER, account_id=uuid4(), amount=Decimal("5"),
            entry_type=EntryType.INCOME,
        )
        row = ledger_store._entry_to_row(entry)
        sheet.get_all_values.return_value = [ENTRY_COLUMNS, row, list(row)]

        entries = await ledger_store.list_ledger_entries(EntryFilter(user_id=USER))

        assert len(entries) == 1


class TestAuditStorage:

    @pytest.mark.asyncio
    async def test_append_and_read_back(self, client, sheet):
        storage = GoogleSheetsAuditStorage(client)
        account_id = uuid4()
        event = AuditEventBuilder.account_deleted(account_id, USER)

        assert await storage.append_event(event) is True

        row = sheet.append_row.call_args.args[0]
        sheet.get_all_values.return_value = [AUDIT_COLUMNS, row]
        events = await storage.get_events_by_entity("account", account_id)

        assert [e.event_id for e in events] == [event.event_id]
        assert events[0].user_id == USER
