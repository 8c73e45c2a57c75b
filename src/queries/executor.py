"""
Ledger Query Engine

DESIGN DECISION: Queries are READ-ONLY and DETERMINISTIC.
They read entries straight from the record store and never touch
stored balances, so a report is correct even while an account is
waiting for a repair recalculation.

All arithmetic is Decimal. Transfers move money between the user's own
accounts, so they are listed but never counted as income or expense.
"""

from datetime import date
from decimal import Decimal
from typing import Optional

import structlog

from src.ledger.errors import StoreUnavailableError, ValidationError
from src.ledger.recalculator import PAGE_SIZE
from src.models.ledger import (
    ZERO,
    EntryFilter,
    EntryType,
    FinancialSummary,
    LedgerEntry,
)
from src.services.storage import LedgerStoreInterface, StorageError


UNCATEGORIZED = "uncategorized"

logger = structlog.get_logger(__name__)


class LedgerQueries:
    """
    Read-side queries over ledger entries.

    GUARANTEES:
    - Only returns real data from storage
    - Never estimates; an empty period reports zeros
    """

    def __init__(self, store: LedgerStoreInterface):
        self._store = store

    async def _list(self, entry_filter: EntryFilter) -> list[LedgerEntry]:
        try:
            return await self._store.list_ledger_entries(entry_filter)
        except StorageError as e:
            raise StoreUnavailableError(f"list_ledger_entries failed: {e}") from e

    async def list_entries(self, entry_filter: EntryFilter) -> list[LedgerEntry]:
        """List one page of a user's entries, oldest first."""
        entries = await self._list(entry_filter)
        logger.debug(
            "entries_listed",
            user_id=entry_filter.user_id,
            count=len(entries),
        )
        return entries

    async def financial_summary(
        self,
        user_id: str,
        date_from: Optional[date] = None,
        date_to: Optional[date] = None,
    ) -> FinancialSummary:
        """
        Total income and expense over a period (both bounds inclusive).

        Expense is reported as a positive magnitude; net is
        income - expense. by_category holds each category's signed net.
        """
        if date_from and date_to and date_to < date_from:
            raise ValidationError(
                "date_to cannot be before date_from",
                issues=[{"field": "date_to", "type": "invalid_value",
                         "message": "date_to cannot be before date_from"}],
            )

        total_income = ZERO
        total_expense = ZERO
        by_category: dict[str, Decimal] = {}
        count = 0

        offset = 0
        while True:
            page = await self._list(EntryFilter(
                user_id=user_id,
                date_from=date_from,
                date_to=date_to,
                limit=PAGE_SIZE,
                offset=offset,
            ))
            for entry in page:
                if entry.entry_type == EntryType.TRANSFER:
                    continue
                if entry.entry_type == EntryType.INCOME:
                    total_income += entry.amount
                else:
                    total_expense += abs(entry.amount)

                key = str(entry.category_id) if entry.category_id else UNCATEGORIZED
                by_category[key] = by_category.get(key, ZERO) + entry.amount
                count += 1

            if len(page) < PAGE_SIZE:
                break
            offset += PAGE_SIZE

        return FinancialSummary(
            user_id=user_id,
            date_from=date_from,
            date_to=date_to,
            period_description=self._date_range_str(date_from, date_to),
            total_income=total_income,
            total_expense=total_expense,
            net=total_income - total_expense,
            entry_count=count,
            by_category=by_category,
        )

    def _date_range_str(
        self,
        date_from: Optional[date],
        date_to: Optional[date],
    ) -> str:
        """Format date range for description."""
        if date_from and date_to:
            if date_from == date_to:
                return f"on {date_from.strftime('%d %b %Y')}"
            elif date_from.month == date_to.month and date_from.year == date_to.year:
                return f"in {date_from.strftime('%B %Y')}"
            elif date_from.year == date_to.year:
                return f"from {date_from.strftime('%b')} to {date_to.strftime('%b %Y')}"
            else:
                return f"from {date_from.strftime('%b %Y')} to {date_to.strftime('%b %Y')}"
        elif date_from:
            return f"from {date_from.strftime('%d %b %Y')}"
        elif date_to:
            return f"until {date_to.strftime('%d %b %Y')}"
        return "all time"
