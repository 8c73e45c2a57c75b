"""
Tests for the API adapter: legacy payloads in, JSON-safe bodies out.
"""

from decimal import Decimal
from uuid import uuid4

import pytest

from src.api import (
    ACCOUNT_ALIASES,
    ENTRY_ALIASES,
    error_response,
    normalize_payload,
    parse_account_create,
    parse_account_patch,
    parse_entry_create,
    parse_entry_patch,
    respond,
    serialize_account,
    serialize_mutation,
)
from src.ledger import (
    ConflictError,
    InsufficientFundsError,
    NotFoundError,
    StoreUnavailableError,
    ValidationError,
)
from src.models.audit import AuditEventType
from src.models.ledger import AccountType


USER = "user-1"


class TestNormalizePayload:

    def test_legacy_entry_fields(self):
        account_id = str(uuid4())
        normalized = normalize_payload(
            {"accountId": account_id, "type": "expense", "change": "12.50", "reason": "Taxi"},
            ENTRY_ALIASES,
        )

        assert normalized == {
            "account_id": account_id,
            "entry_type": "expense",
            "amount": "12.50",
            "note": "Taxi",
        }

    def test_canonical_key_wins(self):
        normalized = normalize_payload(
            {"type": "bank", "account_type": "cash"}, ACCOUNT_ALIASES
        )

        assert normalized == {"account_type": "cash"}


class TestParsing:

    def test_entry_create_from_legacy_payload(self):
        account_id = uuid4()

        request = parse_entry_create({
            "accountId": str(account_id),
            "type": "expense",
            "change": "12.50",
            "reason": "Taxi",
        })

        assert request.account_id == account_id
        assert request.amount == Decimal("12.50")
        assert request.entry_type == "expense"
        assert request.note == "Taxi"

    def test_account_create_from_legacy_payload(self):
        request = parse_account_create({"name": "Wallet", "type": "cash", "balance": "20"})

        assert request.account_type == AccountType.CASH
        assert request.opening_balance == Decimal("20")

    def test_malformed_payload_raises_ledger_validation_error(self):
        with pytest.raises(ValidationError) as exc_info:
            parse_entry_create({"accountId": "not-a-uuid", "change": "12.50"})

        assert exc_info.value.issues[0]["field"] == "account_id"

    def test_account_patch_rejects_balance(self):
        with pytest.raises(ValidationError):
            parse_account_patch({"balance": "1000"})

    def test_entry_patch_rejects_account_change(self):
        with pytest.raises(ValidationError):
            parse_entry_patch({"accountId": str(uuid4())})


class TestErrorResponse:

    @pytest.mark.parametrize("error, status", [
        (ValidationError("bad"), 400),
        (NotFoundError("account", uuid4()), 404),
        (InsufficientFundsError(uuid4(), Decimal("1"), Decimal("2")), 409),
        (ConflictError("two cash accounts"), 409),
        (StoreUnavailableError("sheets down"), 503),
        (RuntimeError("boom"), 500),
    ])
    def test_status_mapping(self, error, status):
        code, body = error_response(error)

        assert code == status
        assert set(body) == {"error", "message", "details"}

    def test_unexpected_error_hides_message(self):
        _, body = error_response(RuntimeError("secret connection string"))

        assert "secret" not in body["message"]


class TestRespond:

    @pytest.mark.asyncio
    async def test_success_serializes_amounts_as_strings(self, coordinator, bank):
        request = parse_entry_create({
            "accountId": str(bank.id), "type": "expense", "change": "30",
        })

        status, body = await respond(
            coordinator.create_entry(USER, request), serialize_mutation, success_status=201
        )

        assert status == 201
        assert body["entry"]["amount"] == "-30"
        assert body["balances"] == {str(bank.id): "70"}
        assert body["is_consistent"] is True

    @pytest.mark.asyncio
    async def test_ledger_error_becomes_status(self, coordinator, bank):
        request = parse_entry_create({
            "accountId": str(bank.id), "type": "expense", "change": "500",
        })

        status, body = await respond(coordinator.create_entry(USER, request), serialize_mutation)

        assert status == 409
        assert body["error"] == "insufficient_funds"

    @pytest.mark.asyncio
    async def test_no_serializer_returns_empty_body(self, account_service, cash):
        status, body = await respond(
            account_service.delete_account(USER, cash.id), success_status=204
        )

        assert (status, body) == (204, None)

    @pytest.mark.asyncio
    async def test_unexpected_error_is_audited(self, audit_logger, audit_storage):
        async def broken():
            raise RuntimeError("worksheet vanished")

        status, body = await respond(broken(), audit_logger=audit_logger)
        events = await audit_storage.get_recent_events(limit=1)

        assert status == 500
        assert body["error"] == "internal_error"
        assert events[0].event_type == AuditEventType.SYSTEM_ERROR
        assert events[0].error_message == "worksheet vanished"

    @pytest.mark.asyncio
    async def test_legacy_account_body(self, bank):
        body = serialize_account(bank, legacy=True)

        assert body["type"] == "bank"
        assert body["balance"] == body["current_balance"] == "100"
