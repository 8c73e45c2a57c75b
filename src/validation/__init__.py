"""Entry validation package."""

from src.validation.validator import EntryValidator, normalize_amount, parse_entry_type

__all__ = ["EntryValidator", "normalize_amount", "parse_entry_type"]
