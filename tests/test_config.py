# tests/test_config.py
"""Tests for settings parsing and startup validation"""
import pytest
from pydantic import ValidationError

from conftest import make_settings
from app.config import Settings, warn_on_risky_config


class TestSettings:
    def test_admin_ids_parsing(self):
        s = make_settings(admin_ids=" 1001, 2002 ,abc,, -42")
        assert s.admin_id_set == frozenset({1001, 2002, -42})

    def test_empty_admin_ids(self):
        assert make_settings(admin_ids="").admin_id_set == frozenset()

    @pytest.mark.parametrize("value", [1, 11, 0])
    def test_group_size_outside_platform_cap_rejected(self, value):
        with pytest.raises(ValidationError):
            make_settings(max_group_size=value)

    def test_group_size_within_cap(self):
        assert make_settings(max_group_size=5).max_group_size == 5

    def test_log_level_normalized(self):
        assert make_settings(log_level="warning").log_level == "WARN"
        assert make_settings(log_level=" debug ").log_level == "DEBUG"

    def test_unknown_log_level_rejected(self):
        with pytest.raises(ValidationError):
            make_settings(log_level="TRACE")

    def test_bot_token_alias(self):
        s = Settings(_env_file=None, bot_token="42:abc")
        assert s.telegram_bot_token == "42:abc"

    def test_max_file_size_bytes(self):
        assert make_settings(max_file_size_mb=50).max_file_size_bytes == 50 * 1024 * 1024


class TestValidation:
    def test_missing_token(self):
        assert make_settings(telegram_bot_token=None).validate_required() == ["TELEGRAM_BOT_TOKEN"]

    def test_webhook_mode_requires_url(self):
        s = make_settings(telegram_mode="webhook")
        assert s.validate_required() == ["TELEGRAM_WEBHOOK_URL"]

    def test_complete_config_has_nothing_missing(self):
        assert make_settings().validate_required() == []

    def test_risky_config_warnings(self):
        s = make_settings(
            app_env="prod",
            admin_ids="",
            telegram_mode="webhook",
            telegram_webhook_url="https://bot.example.com/webhooks/telegram",
            inter_item_delay_ms=100,
        )
        warnings = " ".join(warn_on_risky_config(s))

        assert "admin_ids is empty" in warnings
        assert "telegram_webhook_secret" in warnings
        assert "metrics_token" in warnings
        assert "inter_item_delay_ms" in warnings
