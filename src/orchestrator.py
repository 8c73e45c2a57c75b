"""
Main Orchestrator for Personal Ledger

This module wires the components together and defines the one
cross-cutting flow that spans services: onboarding a new user.

DESIGN DECISION: Every collaborator is built here and injected.
No service reaches for a global store client, so tests swap the
whole backend by passing use_storage=False.

Google Sheets is used when configured; otherwise everything runs
against the in-memory store and audit events stay in the local log.
"""

from typing import NamedTuple, Optional

import structlog

from src.audit import AuditLogger, configure_logging
from src.config import get_settings
from src.ledger import (
    AccountService,
    BalanceRecalculator,
    CategoryService,
    LedgerCoordinator,
)
from src.models.ledger import Account
from src.queries import LedgerQueries
from src.services.storage import (
    CategoryStoreInterface,
    GoogleSheetsAuditStorage,
    GoogleSheetsCategoryStore,
    GoogleSheetsClient,
    GoogleSheetsLedgerStore,
    InMemoryLedgerStore,
    LedgerStoreInterface,
)


logger = structlog.get_logger(__name__)


class LedgerComponents(NamedTuple):
    """Everything an outer layer needs to serve ledger requests."""
    coordinator: LedgerCoordinator
    accounts: AccountService
    categories: CategoryService
    queries: LedgerQueries
    audit_logger: AuditLogger
    sheets_client: Optional[GoogleSheetsClient]


def create_app_components(
    use_storage: bool = True,
) -> LedgerComponents:
    """
    Factory function to create all application components.

    Args:
        use_storage: Whether to initialize Google Sheets storage.
                    Set to False for testing without storage.

    Returns:
        LedgerComponents sharing one store, recalculator and audit logger
    """
    settings = get_settings()
    configure_logging(settings.app.log_level)

    sheets_client = None
    store: LedgerStoreInterface
    category_store: CategoryStoreInterface

    if use_storage:
        try:
            sheets_client = GoogleSheetsClient()
            store = GoogleSheetsLedgerStore(sheets_client)
            category_store = GoogleSheetsCategoryStore(sheets_client)
            audit_logger = AuditLogger(GoogleSheetsAuditStorage(sheets_client))
        except Exception as e:
            # Storage not configured - continue in memory
            logger.warning("storage_not_configured", error=str(e))
            sheets_client = None
            use_storage = False

    if not use_storage:
        memory_store = InMemoryLedgerStore()
        store = memory_store
        category_store = memory_store
        audit_logger = AuditLogger()  # Local-only logging

    ledger_settings = settings.ledger
    recalculator = BalanceRecalculator(store, audit_logger)

    return LedgerComponents(
        coordinator=LedgerCoordinator(
            store,
            recalculator=recalculator,
            category_store=category_store,
            audit_logger=audit_logger,
            settings=ledger_settings,
        ),
        accounts=AccountService(store, audit_logger, settings=ledger_settings),
        categories=CategoryService(category_store, audit_logger),
        queries=LedgerQueries(store),
        audit_logger=audit_logger,
        sheets_client=sheets_client,
    )


async def onboard_user(components: LedgerComponents, user_id: str) -> list[Account]:
    """
    Prepare a newly signed-up user's ledger.

    Seeds the default cash and bank accounts unless disabled by
    LEDGER_SEED_DEFAULT_ACCOUNTS. Safe to call again for an existing user.

    Returns:
        The user's accounts after onboarding
    """
    if get_settings().ledger.seed_default_accounts:
        await components.accounts.seed_default_accounts(user_id)
    return await components.accounts.list_accounts(user_id)
