"""Tests for settings, error types and log sanitising."""

import pytest

from tradejournal.utils.config import get_settings, reload_settings
from tradejournal.utils.exceptions import (
    AIGatewayError, AuthenticationError, ConfigurationError, ErrorCategory, JournalError,
    NotFoundError, ValidationError,
)
from tradejournal.utils.logger import redact_sensitive, sanitize_log_data


class TestSettings:

    def test_env_overrides(self, monkeypatch):
        monkeypatch.setenv("STARTING_BALANCE", "25000")
        monkeypatch.setenv("MAX_LOGIN_ATTEMPTS", "3")
        settings = reload_settings()
        assert settings.starting_balance == 25000.0
        assert settings.max_login_attempts == 3
        assert get_settings() is settings

    def test_defaults(self, clean_settings):
        assert clean_settings.session_expiry_days == 7
        assert clean_settings.ws_max_reconnect_attempts == 5
        assert clean_settings.ticker_enabled is False


class TestErrors:

    @pytest.mark.parametrize("error,status,category", [
        (AuthenticationError(), 401, ErrorCategory.AUTHENTICATION),
        (ValidationError("bad"), 400, ErrorCategory.VALIDATION),
        (NotFoundError(), 404, ErrorCategory.NOT_FOUND),
        (AIGatewayError(), 502, ErrorCategory.AI_GATEWAY),
        (ConfigurationError("no key"), 503, ErrorCategory.CONFIGURATION),
    ])
    def test_status_and_category(self, error, status, category):
        assert isinstance(error, JournalError)
        assert error.status_code == status
        assert error.category is category

    def test_to_dict(self):
        assert ValidationError("Instrument required").to_dict() == {
            "error": "Instrument required", "category": "validation"}

    def test_str(self):
        assert str(NotFoundError("Trade x not found")) == "[not_found] Trade x not found | (HTTP 404)"


class TestSanitize:

    def test_redacts_nested_secrets(self):
        out = sanitize_log_data({
            "email": "a@b.c", "Password": "hunter22",
            "headers": {"Authorization": "Bearer abc", "accept": "json"},
        })
        assert out["email"] == "a@b.c"
        assert out["Password"] == "***REDACTED***"
        assert out["headers"] == {"Authorization": "***REDACTED***", "accept": "json"}

    def test_redacts_provider_keys_and_lists(self):
        out = sanitize_log_data({
            "ai_gateway_key": "sk-1", "finnhub_api_key": "f", "refresh_token": "r",
            "providers": [{"name": "twelve_data", "twelve_data_api_key": "t"}],
            "max_tokens": 500,
        })
        assert out["ai_gateway_key"] == "***REDACTED***"
        assert out["finnhub_api_key"] == "***REDACTED***"
        assert out["refresh_token"] == "***REDACTED***"
        assert out["providers"] == [{"name": "twelve_data", "twelve_data_api_key": "***REDACTED***"}]
        assert out["max_tokens"] == 500

    def test_processor_redacts_event_dict(self):
        event = redact_sensitive(None, "info", {"event": "login", "session_token": "abc", "user_id": "u1"})
        assert event == {"event": "login", "session_token": "***REDACTED***", "user_id": "u1"}
