"""
Shared fixtures.

Every test runs against the in-memory store; no network, no
configured environment.
"""

from decimal import Decimal

import pytest
import pytest_asyncio

from src.audit import AuditLogger
from src.config import LedgerSettings
from src.ledger import (
    AccountService,
    BalanceRecalculator,
    CategoryService,
    LedgerCoordinator,
)
from src.models.ledger import AccountCreate, AccountType, Category
from src.queries import LedgerQueries
from src.services.storage import InMemoryAuditStorage, InMemoryLedgerStore


USER = "user-1"
OTHER_USER = "user-2"


@pytest.fixture
def ledger_settings() -> LedgerSettings:
    """Settings with no retry backoff so failure tests run instantly."""
    return LedgerSettings(
        funds_checked_account_types="cash,bank,other",
        recalc_max_attempts=3,
        recalc_retry_min_seconds=0,
        recalc_retry_max_seconds=0,
        seed_default_accounts=True,
        default_currency="INR",
    )


@pytest.fixture
def global_categories() -> list[Category]:
    return [
        Category(name="Groceries"),
        Category(name="Salary"),
        Category(name="Dining"),
    ]


@pytest.fixture
def store(global_categories) -> InMemoryLedgerStore:
    return InMemoryLedgerStore(categories=global_categories)


@pytest.fixture
def audit_storage() -> InMemoryAuditStorage:
    return InMemoryAuditStorage()


@pytest.fixture
def audit_logger(audit_storage) -> AuditLogger:
    return AuditLogger(audit_storage)


@pytest.fixture
def recalculator(store, audit_logger) -> BalanceRecalculator:
    return BalanceRecalculator(store, audit_logger)


@pytest.fixture
def coordinator(store, recalculator, audit_logger, ledger_settings) -> LedgerCoordinator:
    return LedgerCoordinator(
        store,
        recalculator=recalculator,
        category_store=store,
        audit_logger=audit_logger,
        settings=ledger_settings,
    )


@pytest.fixture
def account_service(store, audit_logger, ledger_settings) -> AccountService:
    return AccountService(store, audit_logger, settings=ledger_settings)


@pytest.fixture
def category_service(store, audit_logger) -> CategoryService:
    return CategoryService(store, audit_logger)


@pytest.fixture
def queries(store) -> LedgerQueries:
    return LedgerQueries(store)


@pytest_asyncio.fixture
async def bank(account_service):
    """Bank account opened with 100."""
    return await account_service.create_account(USER, AccountCreate(
        name="Bank Account",
        account_type=AccountType.BANK,
        opening_balance=Decimal("100"),
    ))


@pytest_asyncio.fixture
async def cash(account_service):
    """Cash account opened with 0."""
    return await account_service.create_account(USER, AccountCreate(
        name="Cash on Hand",
        account_type=AccountType.CASH,
    ))


@pytest_asyncio.fixture
async def credit_card(account_service):
    return await account_service.create_account(USER, AccountCreate(
        name="Visa",
        account_type=AccountType.CREDIT_CARD,
    ))
