"""
Ledger Package

Balance recalculation, the mutation coordinator that keeps balances
consistent with entries, and the account/category services around them.
"""

from src.ledger.errors import (
    ConflictError,
    InsufficientFundsError,
    LedgerError,
    NotFoundError,
    StoreUnavailableError,
    ValidationError,
)
from src.ledger.recalculator import BalanceRecalculator, contribution
from src.ledger.coordinator import LedgerCoordinator, raise_for_result
from src.ledger.accounts import DEFAULT_ACCOUNTS, AccountService
from src.ledger.categories import CategoryService

__all__ = [
    # Errors
    "ConflictError",
    "InsufficientFundsError",
    "LedgerError",
    "NotFoundError",
    "StoreUnavailableError",
    "ValidationError",
    # Services
    "AccountService",
    "BalanceRecalculator",
    "CategoryService",
    "LedgerCoordinator",
    "DEFAULT_ACCOUNTS",
    "contribution",
    "raise_for_result",
]
