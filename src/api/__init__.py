"""Transport adapter: payload normalisation and error translation."""

from src.api.adapter import (
    ACCOUNT_ALIASES,
    ENTRY_ALIASES,
    STATUS_BY_CODE,
    error_response,
    normalize_payload,
    parse_account_create,
    parse_account_patch,
    parse_entry_create,
    parse_entry_patch,
    respond,
    serialize,
    serialize_account,
    serialize_mutation,
)

__all__ = [
    "ACCOUNT_ALIASES",
    "ENTRY_ALIASES",
    "STATUS_BY_CODE",
    "error_response",
    "normalize_payload",
    "parse_account_create",
    "parse_account_patch",
    "parse_entry_create",
    "parse_entry_patch",
    "respond",
    "serialize",
    "serialize_account",
    "serialize_mutation",
]
