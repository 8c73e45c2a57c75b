"""
Google Sheets Storage Implementation

DESIGN DECISION: Google Sheets is used as the initial record store because:
1. Users can view their accounts and entries directly in Sheets
2. No database setup required
3. Built-in backup (Google's infrastructure)
4. Easy to export/migrate later

TRADEOFFS:
- Not suitable for high-volume data (we're fine for personal use)
- No transactions (the ledger recalculates balances from scratch instead)
- Limited query capabilities (we filter in Python)

The implementation follows the abstract interface, so we can swap
to PostgreSQL/SQLite later without changing ledger logic.
"""

import json
from datetime import datetime
from decimal import Decimal
from typing import Any, Optional
from uuid import UUID

import gspread
from google.oauth2.service_account import Credentials
from tenacity import retry, stop_after_attempt, wait_exponential

from src.config import get_settings
from src.models.audit import AuditEvent, AuditEventType, AuditSeverity
from src.models.ledger import (
    Account,
    AccountType,
    Category,
    EntryFilter,
    EntryType,
    LedgerEntry,
)
from src.services.storage.interface import (
    AuditStorageInterface,
    CategoryStoreInterface,
    ConnectionError,
    DuplicateError,
    LedgerStoreInterface,
    NotFoundError,
    StorageError,
)


ACCOUNT_COLUMNS = [
    "id",
    "user_id",
    "name",
    "account_type",
    "opening_balance",
    "current_balance",
    "metadata_json",
    "created_at",
    "updated_at",
]

ENTRY_COLUMNS = [
    "id",
    "user_id",
    "account_id",
    "related_account_id",
    "amount",
    "entry_type",
    "category_id",
    "note",
    "created_at",
]

CATEGORY_COLUMNS = [
    "id",
    "user_id",
    "name",
    "parent_id",
    "created_at",
]

AUDIT_COLUMNS = [
    "event_id",
    "timestamp",
    "event_type",
    "severity",
    "user_id",
    "entity_type",
    "entity_id",
    "correlation_id",
    "description",
    "details_json",
    "error_code",
    "error_message",
    "is_user_action",
]

BALANCE_COLUMN = ACCOUNT_COLUMNS.index("current_balance") + 1


def _safe_getter(row: list):
    """Index into a sheet row, treating missing/blank cells as ''."""
    def safe_get(index: int, default: str = "") -> str:
        try:
            return row[index] if row[index] else default
        except IndexError:
            return default
    return safe_get


class GoogleSheetsClient:
    """
    Low-level Google Sheets client wrapper.

    Handles authentication and provides retry logic for API calls.
    One client is shared by every store built from it.
    """

    def __init__(self):
        self._client: Optional[gspread.Client] = None
        self._spreadsheet: Optional[gspread.Spreadsheet] = None
        self._settings = get_settings().google_sheets

    @retry(
        stop=stop_after_attempt(3),
        wait=wait_exponential(multiplier=1, min=2, max=10),
        reraise=True,
    )
    def connect(self) -> gspread.Client:
        """
        Establish connection to Google Sheets.

        Uses service account credentials for authentication.
        """
        if self._client is None:
            try:
                scopes = [
                    "https://www.googleapis.com/auth/spreadsheets",
                    "https://www.googleapis.com/auth/drive",
                ]
                credentials = Credentials.from_service_account_file(
                    self._settings.credentials_path,
                    scopes=scopes,
                )
                self._client = gspread.authorize(credentials)
            except FileNotFoundError:
                raise ConnectionError(
                    f"Google credentials file not found: {self._settings.credentials_path}"
                )
            except Exception as e:
                raise ConnectionError(f"Failed to connect to Google Sheets: {e}")

        return self._client

    def get_spreadsheet(self) -> gspread.Spreadsheet:
        """Get the configured spreadsheet."""
        if self._spreadsheet is None:
            client = self.connect()
            try:
                self._spreadsheet = client.open_by_key(
                    self._settings.spreadsheet_id
                )
            except gspread.SpreadsheetNotFound:
                raise ConnectionError(
                    f"Spreadsheet not found: {self._settings.spreadsheet_id}"
                )
        return self._spreadsheet

    def _get_or_create_sheet(
        self,
        title: str,
        columns: list[str],
        rows: int = 1000,
    ) -> gspread.Worksheet:
        spreadsheet = self.get_spreadsheet()
        try:
            sheet = spreadsheet.worksheet(title)
        except gspread.WorksheetNotFound:
            # Create the sheet with headers
            sheet = spreadsheet.add_worksheet(
                title=title,
                rows=rows,
                cols=len(columns),
            )
            sheet.append_row(columns)
        return sheet

    def get_accounts_sheet(self) -> gspread.Worksheet:
        """Get or create the Accounts worksheet."""
        return self._get_or_create_sheet(
            self._settings.accounts_sheet_name, ACCOUNT_COLUMNS
        )

    def get_entries_sheet(self) -> gspread.Worksheet:
        """Get or create the LedgerEntries worksheet."""
        return self._get_or_create_sheet(
            self._settings.entries_sheet_name, ENTRY_COLUMNS, rows=5000
        )

    def get_categories_sheet(self) -> gspread.Worksheet:
        """Get or create the Categories worksheet."""
        return self._get_or_create_sheet(
            self._settings.categories_sheet_name, CATEGORY_COLUMNS
        )

    def get_audit_sheet(self) -> gspread.Worksheet:
        """Get or create the Audit worksheet."""
        return self._get_or_create_sheet(
            self._settings.audit_sheet_name, AUDIT_COLUMNS, rows=5000
        )


def _find_row_number(all_rows: list[list], record_id: UUID) -> Optional[int]:
    """Return the 1-based sheet row holding record_id (row 1 is the header)."""
    for idx, row in enumerate(all_rows[1:], start=2):
        if row and row[0] == str(record_id):
            return idx
    return None


def _write_row(sheet: gspread.Worksheet, row_number: int, values: list) -> None:
    for col_idx, value in enumerate(values, start=1):
        sheet.update_cell(row_number, col_idx, value)


class GoogleSheetsLedgerStore(LedgerStoreInterface):
    """
    Google Sheets implementation of the account and entry record store.

    Accounts and entries live in separate worksheets, one record per row.
    Amounts are written as Decimal strings, never as sheet numbers.
    """

    def __init__(self, client: Optional[GoogleSheetsClient] = None):
        self._client = client or GoogleSheetsClient()

    # -------------------------------------------------------------------------
    # Row conversion
    # -------------------------------------------------------------------------

    def _account_to_row(self, account: Account) -> list:
        """Convert an Account to a spreadsheet row."""
        return [
            str(account.id),
            account.user_id,
            account.name,
            account.account_type.value,
            str(account.opening_balance),
            str(account.current_balance),
            json.dumps(account.metadata) if account.metadata else "",
            account.created_at.isoformat(),
            account.updated_at.isoformat(),
        ]

    def _row_to_account(self, row: list) -> Account:
        """Convert a spreadsheet row to an Account."""
        safe_get = _safe_getter(row)

        return Account(
            id=UUID(safe_get(0)),
            user_id=safe_get(1),
            name=safe_get(2),
            account_type=AccountType(safe_get(3, "other")),
            opening_balance=Decimal(safe_get(4, "0")),
            current_balance=Decimal(safe_get(5, safe_get(4, "0"))),
            metadata=json.loads(safe_get(6)) if safe_get(6) else {},
            created_at=datetime.fromisoformat(safe_get(7)),
            updated_at=datetime.fromisoformat(safe_get(8, safe_get(7))),
        )

    def _entry_to_row(self, entry: LedgerEntry) -> list:
        """Convert a LedgerEntry to a spreadsheet row."""
        return [
            str(entry.id),
            entry.user_id,
            str(entry.account_id),
            str(entry.related_account_id) if entry.related_account_id else "",
            str(entry.amount),
            entry.entry_type.value,
            str(entry.category_id) if entry.category_id else "",
            entry.note or "",
            entry.created_at.isoformat(),
        ]

    def _row_to_entry(self, row: list) -> LedgerEntry:
        """Convert a spreadsheet row to a LedgerEntry."""
        safe_get = _safe_getter(row)

        return LedgerEntry(
            id=UUID(safe_get(0)),
            user_id=safe_get(1),
            account_id=UUID(safe_get(2)),
            related_account_id=UUID(safe_get(3)) if safe_get(3) else None,
            amount=Decimal(safe_get(4)),
            entry_type=EntryType(safe_get(5)),
            category_id=UUID(safe_get(6)) if safe_get(6) else None,
            note=safe_get(7) or None,
            created_at=datetime.fromisoformat(safe_get(8)),
        )

    def _all_accounts(self) -> list[Account]:
        sheet = self._client.get_accounts_sheet()
        accounts = []
        for row in sheet.get_all_values()[1:]:
            if not row or not row[0]:  # Skip empty rows
                continue
            accounts.append(self._row_to_account(row))
        return accounts

    def _all_entries(self) -> list[LedgerEntry]:
        sheet = self._client.get_entries_sheet()
        entries = []
        seen: set[str] = set()
        for row in sheet.get_all_values()[1:]:
            # First row wins if an append was replayed
            if not row or not row[0] or row[0] in seen:
                continue
            seen.add(row[0])
            entries.append(self._row_to_entry(row))
        return entries

    # -------------------------------------------------------------------------
    # Accounts
    # -------------------------------------------------------------------------

    async def get_account(self, account_id: UUID, user_id: str) -> Optional[Account]:
        try:
            for account in self._all_accounts():
                if account.id == account_id:
                    return account if account.user_id == user_id else None
            return None
        except Exception as e:
            raise StorageError(f"Failed to get account: {e}") from e

    async def list_accounts(
        self,
        user_id: str,
        account_type: Optional[AccountType] = None,
    ) -> list[Account]:
        try:
            accounts = [
                a for a in self._all_accounts()
                if a.user_id == user_id
                and (account_type is None or a.account_type == account_type)
            ]
            accounts.sort(key=lambda a: a.created_at)
            return accounts
        except Exception as e:
            raise StorageError(f"Failed to list accounts: {e}") from e

    @retry(
        stop=stop_after_attempt(3),
        wait=wait_exponential(multiplier=1, min=2, max=10),
        reraise=True,
    )
    async def insert_account(self, account: Account) -> Account:
        try:
            sheet = self._client.get_accounts_sheet()
            if _find_row_number(sheet.get_all_values(), account.id):
                raise DuplicateError(f"Account already exists: {account.id}")
            sheet.append_row(self._account_to_row(account), value_input_option="RAW")
            return account
        except DuplicateError:
            raise
        except Exception as e:
            raise StorageError(f"Failed to save account: {e}") from e

    async def update_account(self, account: Account) -> Account:
        try:
            sheet = self._client.get_accounts_sheet()
            all_rows = sheet.get_all_values()
            row_number = _find_row_number(all_rows, account.id)
            if row_number is None:
                raise NotFoundError(f"Account not found: {account.id}")

            # Balance is owned by update_account_balance
            stored = self._row_to_account(all_rows[row_number - 1])
            account = account.model_copy(update={
                "current_balance": stored.current_balance,
                "updated_at": datetime.utcnow(),
            })
            _write_row(sheet, row_number, self._account_to_row(account))
            return account
        except NotFoundError:
            raise
        except Exception as e:
            raise StorageError(f"Failed to update account: {e}") from e

    async def update_account_balance(self, account_id: UUID, new_balance: Decimal) -> None:
        try:
            sheet = self._client.get_accounts_sheet()
            row_number = _find_row_number(sheet.get_all_values(), account_id)
            if row_number is None:
                raise NotFoundError(f"Account not found: {account_id}")
            sheet.update_cell(row_number, BALANCE_COLUMN, str(new_balance))
        except NotFoundError:
            raise
        except Exception as e:
            raise StorageError(f"Failed to update balance: {e}") from e

    async def delete_account(self, account_id: UUID) -> bool:
        try:
            sheet = self._client.get_accounts_sheet()
            row_number = _find_row_number(sheet.get_all_values(), account_id)
            if row_number is None:
                return False
            sheet.delete_rows(row_number)
            return True
        except Exception as e:
            raise StorageError(f"Failed to delete account: {e}") from e

    # -------------------------------------------------------------------------
    # Ledger entries
    # -------------------------------------------------------------------------

    async def get_ledger_entry(self, entry_id: UUID, user_id: str) -> Optional[LedgerEntry]:
        try:
            for entry in self._all_entries():
                if entry.id == entry_id:
                    return entry if entry.user_id == user_id else None
            return None
        except Exception as e:
            raise StorageError(f"Failed to get entry: {e}") from e

    async def list_ledger_entries(self, entry_filter: EntryFilter) -> list[LedgerEntry]:
        try:
            entries = [e for e in self._all_entries() if entry_filter.matches(e)]
            entries.sort(key=lambda e: e.created_at)
            start = entry_filter.offset
            return entries[start:start + entry_filter.limit]
        except Exception as e:
            raise StorageError(f"Failed to list entries: {e}") from e

    @retry(
        stop=stop_after_attempt(3),
        wait=wait_exponential(multiplier=1, min=2, max=10),
        reraise=True,
    )
    async def insert_ledger_entry(self, entry: LedgerEntry) -> LedgerEntry:
        try:
            sheet = self._client.get_entries_sheet()
            # A retried append may already have landed
            if _find_row_number(sheet.get_all_values(), entry.id):
                return entry
            sheet.append_row(self._entry_to_row(entry), value_input_option="RAW")
            return entry
        except Exception as e:
            raise StorageError(f"Failed to save entry: {e}") from e

    async def update_ledger_entry(self, entry_id: UUID, patch: dict[str, Any]) -> LedgerEntry:
        try:
            sheet = self._client.get_entries_sheet()
            all_rows = sheet.get_all_values()
            row_number = _find_row_number(all_rows, entry_id)
            if row_number is None:
                raise NotFoundError(f"Entry not found: {entry_id}")

            stored = self._row_to_entry(all_rows[row_number - 1])
            updated = LedgerEntry.model_validate({**stored.model_dump(), **patch})
            _write_row(sheet, row_number, self._entry_to_row(updated))
            return updated
        except NotFoundError:
            raise
        except Exception as e:
            raise StorageError(f"Failed to update entry: {e}") from e

    async def delete_ledger_entry(self, entry_id: UUID) -> None:
        try:
            sheet = self._client.get_entries_sheet()
            row_number = _find_row_number(sheet.get_all_values(), entry_id)
            if row_number is None:
                raise NotFoundError(f"Entry not found: {entry_id}")
            sheet.delete_rows(row_number)
        except NotFoundError:
            raise
        except Exception as e:
            raise StorageError(f"Failed to delete entry: {e}") from e

    async def count_entries_for_account(self, account_id: UUID, user_id: str) -> int:
        try:
            return sum(
                1 for e in self._all_entries()
                if e.user_id == user_id and account_id in e.accounts_touched
            )
        except Exception as e:
            raise StorageError(f"Failed to count entries: {e}") from e


class GoogleSheetsCategoryStore(CategoryStoreInterface):
    """Google Sheets implementation of category storage."""

    def __init__(self, client: Optional[GoogleSheetsClient] = None):
        self._client = client or GoogleSheetsClient()

    def _category_to_row(self, category: Category) -> list:
        return [
            str(category.id),
            category.user_id or "",
            category.name,
            str(category.parent_id) if category.parent_id else "",
            category.created_at.isoformat(),
        ]

    def _row_to_category(self, row: list) -> Category:
        safe_get = _safe_getter(row)

        return Category(
            id=UUID(safe_get(0)),
            user_id=safe_get(1) or None,
            name=safe_get(2),
            parent_id=UUID(safe_get(3)) if safe_get(3) else None,
            created_at=datetime.fromisoformat(safe_get(4)),
        )

    def _all_categories(self) -> list[Category]:
        sheet = self._client.get_categories_sheet()
        return [
            self._row_to_category(row)
            for row in sheet.get_all_values()[1:]
            if row and row[0]
        ]

    async def list_categories(self, user_id: str) -> list[Category]:
        try:
            categories = [c for c in self._all_categories() if c.visible_to(user_id)]
            categories.sort(key=lambda c: c.name.lower())
            return categories
        except Exception as e:
            raise StorageError(f"Failed to list categories: {e}") from e

    async def get_category(self, category_id: UUID) -> Optional[Category]:
        try:
            for category in self._all_categories():
                if category.id == category_id:
                    return category
            return None
        except Exception as e:
            raise StorageError(f"Failed to get category: {e}") from e

    async def insert_category(self, category: Category) -> Category:
        try:
            sheet = self._client.get_categories_sheet()
            sheet.append_row(self._category_to_row(category), value_input_option="RAW")
            return category
        except Exception as e:
            raise StorageError(f"Failed to save category: {e}") from e

    async def update_category(self, category: Category) -> Category:
        try:
            sheet = self._client.get_categories_sheet()
            row_number = _find_row_number(sheet.get_all_values(), category.id)
            if row_number is None:
                raise NotFoundError(f"Category not found: {category.id}")
            _write_row(sheet, row_number, self._category_to_row(category))
            return category
        except NotFoundError:
            raise
        except Exception as e:
            raise StorageError(f"Failed to update category: {e}") from e

    async def delete_category(self, category_id: UUID) -> bool:
        try:
            sheet = self._client.get_categories_sheet()
            row_number = _find_row_number(sheet.get_all_values(), category_id)
            if row_number is None:
                return False
            sheet.delete_rows(row_number)
            return True
        except Exception as e:
            raise StorageError(f"Failed to delete category: {e}") from e


class GoogleSheetsAuditStorage(AuditStorageInterface):
    """
    Google Sheets implementation of audit log storage.

    Audit events are append-only.
    """

    def __init__(self, client: Optional[GoogleSheetsClient] = None):
        self._client = client or GoogleSheetsClient()

    def _row_to_event(self, row: list) -> AuditEvent:
        """Convert a spreadsheet row to an AuditEvent."""
        safe_get = _safe_getter(row)

        return AuditEvent(
            event_id=UUID(safe_get(0)),
            timestamp=datetime.fromisoformat(safe_get(1)),
            event_type=AuditEventType(safe_get(2)),
            severity=AuditSeverity(safe_get(3)),
            user_id=safe_get(4) or None,
            entity_type=safe_get(5) or None,
            entity_id=UUID(safe_get(6)) if safe_get(6) else None,
            correlation_id=UUID(safe_get(7)) if safe_get(7) else None,
            description=safe_get(8),
            details=json.loads(safe_get(9)) if safe_get(9) else {},
            error_code=safe_get(10) or None,
            error_message=safe_get(11) or None,
            is_user_action=safe_get(12).lower() == "true",
        )

    @retry(
        stop=stop_after_attempt(3),
        wait=wait_exponential(multiplier=1, min=2, max=10),
        reraise=True,
    )
    async def append_event(self, event: AuditEvent) -> bool:
        """Append an audit event."""
        try:
            sheet = self._client.get_audit_sheet()
            sheet.append_row(event.to_sheets_row(), value_input_option="RAW")
            return True
        except Exception as e:
            raise StorageError(f"Failed to write audit event: {e}") from e

    async def get_events_by_entity(
        self,
        entity_type: str,
        entity_id: UUID,
    ) -> list[AuditEvent]:
        """Get events by entity."""
        try:
            sheet = self._client.get_audit_sheet()
            all_rows = sheet.get_all_values()[1:]

            events = []
            for row in all_rows:
                if (
                    row
                    and len(row) > 6
                    and row[5] == entity_type
                    and row[6] == str(entity_id)
                ):
                    events.append(self._row_to_event(row))

            events.sort(key=lambda e: e.timestamp)
            return events
        except Exception as e:
            raise StorageError(f"Failed to get audit events: {e}") from e

    async def get_recent_events(
        self,
        limit: int = 100,
    ) -> list[AuditEvent]:
        """Get recent events."""
        try:
            sheet = self._client.get_audit_sheet()
            all_rows = sheet.get_all_values()[1:]

            events = [self._row_to_event(row) for row in all_rows if row and row[0]]

            # Sort newest first
            events.sort(key=lambda e: e.timestamp, reverse=True)
            return events[:limit]
        except Exception as e:
            raise StorageError(f"Failed to get audit events: {e}") from e
