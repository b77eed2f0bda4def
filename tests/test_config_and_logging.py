"""
Tests for ucp_gateway.config and ucp_gateway.logging.

Tests cover:
- Environment-driven settings and production secret checks
- Sensitive data masking and JSON log formatting
"""
from __future__ import annotations

import json
import logging

import pytest
from pydantic import ValidationError

from ucp_gateway.config import GatewaySettings
from ucp_gateway.constants import LoggingConfig
from ucp_gateway.logging import (
    JsonFormatter,
    SensitiveDataFilter,
    configure_logging,
    is_sensitive_key,
    mask_card_number,
    mask_sensitive_data,
    mask_value,
)

STRONG_SECRET = "x" * 40
REDACTED = LoggingConfig.MASK_PATTERN


class TestGatewaySettings:
    """Tests for GatewaySettings."""

    def test_env_prefix(self, monkeypatch):
        monkeypatch.setenv("UCP_MERCHANT_ID", "merchant_from_env")
        monkeypatch.setenv("UCP_SUPPORTED_CURRENCIES", "usd, jpy")
        settings = GatewaySettings(_env_file=None)

        assert settings.merchant_id == "merchant_from_env"
        assert settings.supported_currencies == ["USD", "JPY"]

    def test_production_requires_strong_secret(self):
        with pytest.raises(ValidationError):
            GatewaySettings(environment="prod", jwt_secret="short", _env_file=None)

        settings = GatewaySettings(environment="prod", jwt_secret=STRONG_SECRET, _env_file=None)
        assert settings.is_production()

    def test_sandbox_counts_as_production(self):
        with pytest.raises(ValidationError):
            GatewaySettings(environment="sandbox", jwt_secret="", _env_file=None)

    def test_dev_secret_default(self):
        settings = GatewaySettings(environment="dev", jwt_secret="", _env_file=None)
        assert settings.jwt_secret
        assert not settings.is_production()

    def test_derived_values(self):
        settings = GatewaySettings(
            environment="test",
            base_url="https://shop.example.com/",
            merchant_id="merchant_abc987",
            allowed_origins="https://a.example.com, https://b.example.com",
            _env_file=None,
        )
        assert settings.base_url == "https://shop.example.com"
        assert settings.issuer == "https://shop.example.com"
        assert settings.resolved_handler_id == "wix_pay_handler_abc987"
        assert settings.allowed_origins_list == ["https://a.example.com", "https://b.example.com"]

    def test_explicit_handler_and_issuer(self):
        settings = GatewaySettings(
            environment="test", handler_id="custom", jwt_issuer="https://issuer.example.com", _env_file=None
        )
        assert settings.resolved_handler_id == "custom"
        assert settings.issuer == "https://issuer.example.com"


class TestMasking:
    """Tests for sensitive data masking."""

    def test_mask_value(self):
        assert mask_value("abcdefghijklmnop") == "abcd...mnop"
        assert mask_value("short") == REDACTED

    def test_mask_card_number(self):
        assert mask_card_number("4111 1111 1111 1111") == "**** 1111"
        assert mask_card_number("12") == REDACTED

    @pytest.mark.parametrize("key", ["cvv", "pan", "client_secret", "refresh_token", "code_verifier", "Authorization"])
    def test_sensitive_keys(self, key):
        assert is_sensitive_key(key)

    def test_nested_masking(self):
        masked = mask_sensitive_data({
            "sourceCredential": {"pan": "4111111111111111"},
            "binding": {"checkoutId": "chk_1"},
            "items": [{"client_secret": "s"}],
        })
        assert masked["sourceCredential"] == REDACTED
        assert masked["binding"] == {"checkoutId": "chk_1"}
        assert masked["items"] == [{"client_secret": REDACTED}]

    def test_inline_patterns(self):
        text = mask_sensitive_data("Authorization: Bearer abc.def.ghi card 4111111111111111 token tok_abc123")
        assert "abc.def.ghi" not in text
        assert "4111111111111111" not in text
        assert text.endswith("tok_***")
        assert "****1111" in text


class TestJsonFormatter:
    def test_format(self):
        record = logging.LogRecord(
            "ucp_gateway.test", logging.INFO, __file__, 1, "Issued rt_secretvalue", None, None
        )
        record.data = {"client_secret": "s3cret", "clientId": "agent"}

        payload = json.loads(JsonFormatter().format(record))
        assert payload["level"] == "INFO"
        assert payload["logger"] == "ucp_gateway.test"
        assert payload["message"] == "Issued rt_***"
        assert payload["data"] == {"client_secret": REDACTED, "clientId": "agent"}


class TestSensitiveDataFilter:
    """Tests for masking on the plain-text handler path."""

    def test_filter_masks_formatted_message(self):
        record = logging.LogRecord(
            "ucp_gateway.test", logging.INFO, __file__, 1, "Tokenized credential %s", ("tok_d5e93db999964d29",), None
        )
        assert SensitiveDataFilter().filter(record)
        assert logging.Formatter("%(message)s").format(record) == "Tokenized credential tok_***"

    def test_configure_logging_attaches_filter(self):
        root = logging.getLogger()
        saved_handlers, saved_level = root.handlers[:], root.level
        try:
            configure_logging(json_format=False)
            assert any(isinstance(f, SensitiveDataFilter) for f in root.handlers[0].filters)
        finally:
            root.handlers[:] = saved_handlers
            root.setLevel(saved_level)
