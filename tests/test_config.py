"""
Tests for environment-driven configuration.
"""

import pytest
from pydantic import ValidationError as PydanticValidationError

from src.config import LedgerSettings, get_settings, validate_all_settings


class TestLedgerSettings:

    def test_defaults(self, monkeypatch):
        for name in ("LEDGER_FUNDS_CHECKED_ACCOUNT_TYPES", "LEDGER_RECALC_MAX_ATTEMPTS"):
            monkeypatch.delenv(name, raising=False)

        settings = LedgerSettings()

        assert settings.funds_checked_types_list == ["cash", "bank", "other"]
        assert settings.recalc_max_attempts == 3

    def test_reads_environment(self, monkeypatch):
        monkeypatch.setenv("LEDGER_FUNDS_CHECKED_ACCOUNT_TYPES", " Cash , ,credit_card ")
        monkeypatch.setenv("LEDGER_RECALC_MAX_ATTEMPTS", "5")

        settings = LedgerSettings()

        assert settings.funds_checked_types_list == ["cash", "credit_card"]
        assert settings.recalc_max_attempts == 5

    def test_attempts_bounded(self):
        with pytest.raises(PydanticValidationError):
            LedgerSettings(recalc_max_attempts=0)


class TestValidateAllSettings:

    def test_reports_missing_sheets_configuration(self, monkeypatch):
        monkeypatch.delenv("GOOGLE_SHEETS_CREDENTIALS_PATH", raising=False)
        monkeypatch.delenv("GOOGLE_SHEETS_SPREADSHEET_ID", raising=False)
        get_settings.cache_clear()

        results = validate_all_settings()

        assert results["google_sheets"] is False
        assert "google_sheets_error" in results
        assert results["ledger"] is True
        assert results["app"] is True
