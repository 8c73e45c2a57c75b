"""
API Adapter

Thin translation layer between transport payloads and the ledger.
No routing happens here: a web handler passes in the decoded JSON body,
awaits the ledger call through respond(), and returns the
(status, body) pair it gets back.

Older clients send the prototype's field names (type, change, reason,
balance, camelCase ids). They are accepted on input and mapped to the
canonical names before any model sees them.

DESIGN DECISION: Amounts leave the system as strings, never floats,
so a client cannot lose cents to binary rounding.
"""

from typing import Any, Awaitable, Callable, Optional, TypeVar

import structlog
from pydantic import BaseModel
from pydantic import ValidationError as PydanticValidationError

from src.audit import AuditLogger
from src.ledger.errors import LedgerError, ValidationError
from src.models.ledger import (
    Account,
    AccountCreate,
    AccountPatch,
    LedgerEntryCreate,
    LedgerEntryPatch,
    LedgerMutationResult,
)


T = TypeVar("T")
M = TypeVar("M", bound=BaseModel)

logger = structlog.get_logger(__name__)


ENTRY_ALIASES = {
    "type": "entry_type",
    "entryType": "entry_type",
    "change": "amount",
    "reason": "note",
    "category": "category_id",
    "categoryId": "category_id",
    "accountId": "account_id",
    "relatedAccountId": "related_account_id",
}

ACCOUNT_ALIASES = {
    "type": "account_type",
    "accountType": "account_type",
    "balance": "opening_balance",
    "openingBalance": "opening_balance",
}

# Balances are derived; a patch may not name them under any spelling
ACCOUNT_PATCH_ALIASES = {
    "type": "account_type",
    "accountType": "account_type",
}

STATUS_BY_CODE = {
    "validation_error": 400,
    "not_found": 404,
    "insufficient_funds": 409,
    "conflict": 409,
    "store_unavailable": 503,
}


def normalize_payload(payload: dict[str, Any], aliases: dict[str, str]) -> dict[str, Any]:
    """
    Rename legacy keys to canonical ones.

    A canonical key present in the payload wins over its legacy alias.
    """
    normalized = {k: v for k, v in payload.items() if k not in aliases}
    for legacy, canonical in aliases.items():
        if legacy in payload and canonical not in normalized:
            normalized[canonical] = payload[legacy]
    return normalized


def _parse(model: type[M], payload: dict[str, Any], aliases: dict[str, str]) -> M:
    try:
        return model.model_validate(normalize_payload(payload, aliases))
    except PydanticValidationError as e:
        issues = [
            {
                "field": ".".join(str(part) for part in err["loc"]) or "body",
                "type": err["type"],
                "message": err["msg"],
            }
            for err in e.errors()
        ]
        raise ValidationError(
            "; ".join(f"{i['field']}: {i['message']}" for i in issues),
            issues=issues,
        ) from e


def parse_entry_create(payload: dict[str, Any]) -> LedgerEntryCreate:
    return _parse(LedgerEntryCreate, payload, ENTRY_ALIASES)


def parse_entry_patch(payload: dict[str, Any]) -> LedgerEntryPatch:
    return _parse(LedgerEntryPatch, payload, ENTRY_ALIASES)


def parse_account_create(payload: dict[str, Any]) -> AccountCreate:
    return _parse(AccountCreate, payload, ACCOUNT_ALIASES)


def parse_account_patch(payload: dict[str, Any]) -> AccountPatch:
    return _parse(AccountPatch, payload, ACCOUNT_PATCH_ALIASES)


def serialize(model: BaseModel) -> dict[str, Any]:
    """JSON-safe dict; Decimal becomes str, UUID and datetime become str."""
    return model.model_dump(mode="json")


def serialize_account(account: Account, legacy: bool = False) -> dict[str, Any]:
    """
    Serialize an account, optionally with the prototype's key names.

    Legacy clients read `type` and `balance` (the current balance).
    """
    body = serialize(account)
    if legacy:
        body["type"] = body["account_type"]
        body["balance"] = body["current_balance"]
    return body


def serialize_mutation(result: LedgerMutationResult) -> dict[str, Any]:
    body = serialize(result)
    body["is_consistent"] = result.is_consistent
    return body


def error_response(exc: Exception) -> tuple[int, dict[str, Any]]:
    """Translate an exception into a (status, body) pair."""
    if isinstance(exc, LedgerError):
        return STATUS_BY_CODE.get(exc.code, 500), exc.to_dict()

    logger.error("unhandled_error", error_type=type(exc).__name__, error=str(exc))
    return 500, {
        "error": "internal_error",
        "message": "Internal error",
        "details": {},
    }


async def respond(
    call: Awaitable[T],
    serializer: Optional[Callable[[T], Any]] = None,
    success_status: int = 200,
    audit_logger: Optional[AuditLogger] = None,
) -> tuple[int, Any]:
    """
    Await a ledger call and shape its outcome for the transport.

    Args:
        call: The awaitable ledger operation
        serializer: Converts the result to a JSON-safe body
        success_status: Status for a successful call (e.g. 201, 204)
        audit_logger: Records unexpected (non-ledger) failures
    """
    try:
        result = await call
    except LedgerError as e:
        return error_response(e)
    except Exception as e:
        if audit_logger:
            await audit_logger.log_error(
                error_type=type(e).__name__,
                error_message=str(e),
            )
        return error_response(e)

    if serializer is None:
        return success_status, None
    return success_status, serializer(result)
