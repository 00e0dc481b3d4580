"""Tests for configuration loading."""

import pytest
from pydantic import ValidationError

from lastwish.config import check_send_budget, get_settings, validate_all_settings
from lastwish.config.settings import (
    AppSettings,
    DeliverySettings,
    SMTPSettings,
    SupabaseSettings,
)


@pytest.fixture
def clean_env(monkeypatch, tmp_path):
    """Run from an empty directory so no .env file is picked up."""
    monkeypatch.chdir(tmp_path)
    for name in (
        "SUPABASE_URL", "SUPABASE_SERVICE_KEY", "SMTP_USER", "SMTP_PASSWORD",
        "SMTP_TIMEOUT_SECONDS", "LAST_WISH_SEND_TIMEOUT_SECONDS", "LOG_LEVEL",
    ):
        monkeypatch.delenv(name, raising=False)
    get_settings.cache_clear()
    yield monkeypatch
    get_settings.cache_clear()


class TestSettings:
    """Environment-driven settings."""

    def test_supabase_from_env(self, clean_env):
        """Test Supabase settings load from SUPABASE_* variables."""
        clean_env.setenv("SUPABASE_URL", "https://project.supabase.co/")
        clean_env.setenv("SUPABASE_SERVICE_KEY", "secret")

        settings = SupabaseSettings()

        assert settings.url == "https://project.supabase.co"
        assert settings.settings_table == "last_wish_settings"

    def test_supabase_url_must_be_http(self, clean_env):
        """Test a non-http URL is rejected."""
        with pytest.raises(ValidationError):
            SupabaseSettings(url="project.supabase.co", service_key="secret")

    def test_supabase_required(self, clean_env):
        """Test missing Supabase settings fail validation."""
        with pytest.raises(ValidationError):
            SupabaseSettings()

    def test_delivery_from_env(self, clean_env):
        """Test engine tuning loads from LAST_WISH_* variables."""
        clean_env.setenv("LAST_WISH_SEND_TIMEOUT_SECONDS", "15")
        clean_env.setenv("LAST_WISH_MAX_CONCURRENT_SENDS", "2")

        settings = DeliverySettings()

        assert settings.send_timeout_seconds == 15.0
        assert settings.max_concurrent_sends == 2
        assert settings.product_name == "Last Wish"

    def test_log_level_validated(self, clean_env):
        """Test log levels are normalized and checked."""
        assert AppSettings(log_level="debug").log_level == "DEBUG"
        with pytest.raises(ValidationError):
            AppSettings(log_level="chatty")

    def test_validate_all_settings(self, clean_env):
        """Test the startup check reports missing pieces."""
        results = validate_all_settings()

        assert results["supabase"] is False
        assert "supabase_error" in results
        assert results["smtp"] is False
        assert results["delivery"] is True
        assert results["app"] is True
        assert results["send_budget"] is True

    def test_default_send_timeout_covers_smtp_retries(self, clean_env):
        """Test the defaults leave room for every SMTP attempt and backoff."""
        smtp = SMTPSettings()
        delivery = DeliverySettings()

        assert smtp.worst_case_send_seconds == 80.0
        assert delivery.send_timeout_seconds > smtp.worst_case_send_seconds
        check_send_budget(delivery, smtp)

    def test_send_timeout_shorter_than_retries_rejected(self, clean_env):
        """Test a timeout that could cancel a retrying send is refused."""
        clean_env.setenv("LAST_WISH_SEND_TIMEOUT_SECONDS", "60")

        with pytest.raises(ValueError, match="SMTP retry budget"):
            check_send_budget(DeliverySettings(), SMTPSettings())
        assert validate_all_settings()["send_budget"] is False

        clean_env.setenv("SMTP_TIMEOUT_SECONDS", "10")
        check_send_budget(DeliverySettings(), SMTPSettings())
