"""Ledger query package."""

from src.queries.executor import UNCATEGORIZED, LedgerQueries

__all__ = ["LedgerQueries", "UNCATEGORIZED"]
