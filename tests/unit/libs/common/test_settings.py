"""Tests for application settings."""

import pytest
from pydantic import ValidationError

from libs.common.settings import Settings, get_settings


class TestSettings:
    """Test settings configuration."""

    def test_settings_from_env(self, monkeypatch):
        """Test settings are read from CONVERSO_ environment variables."""
        monkeypatch.setenv("CONVERSO_REDIS_URL", "redis://localhost:6379/0")
        monkeypatch.setenv("CONVERSO_LONG_ANSWER_THRESHOLD", "800")
        monkeypatch.setenv("CONVERSO_OPENAI_API_KEY", "sk-test")

        settings = Settings()

        assert settings.app_env == "test"
        assert settings.redis_url == "redis://localhost:6379/0"
        assert settings.long_answer_threshold == 800
        assert settings.openai_api_key == "sk-test"

    def test_settings_defaults(self, monkeypatch):
        """Test default values are set correctly."""
        monkeypatch.delenv("CONVERSO_APP_ENV", raising=False)
        settings = Settings()

        assert settings.app_env == "development"
        assert settings.log_level == "INFO"
        assert settings.long_answer_threshold == 1000
        assert settings.channel_message_limit == 1600
        assert settings.history_max_messages == 20
        assert settings.processing_notice_text.startswith("Sua resposta está sendo processada")
        assert settings.twilio_configured is False

    def test_threshold_must_be_positive(self):
        with pytest.raises(ValidationError) as exc_info:
            Settings(long_answer_threshold=0)
        assert "greater than zero" in str(exc_info.value)

    def test_whatsapp_number_prefixed(self):
        settings = Settings(twilio_whatsapp_number="+14155238886")
        assert settings.twilio_whatsapp_number == "whatsapp:+14155238886"

        settings = Settings(twilio_whatsapp_number="whatsapp:+14155238886")
        assert settings.twilio_whatsapp_number == "whatsapp:+14155238886"

    def test_twilio_configured(self):
        settings = Settings(
            twilio_account_sid="AC123",
            twilio_auth_token="token",
            twilio_whatsapp_number="+14155238886",
        )
        assert settings.twilio_configured is True

    def test_blocked_terms_parsing(self, monkeypatch):
        """Test blocked terms parsing from comma-separated string."""
        monkeypatch.setenv("CONVERSO_BLOCKED_TERMS", "concorrente, rival ,,")

        settings = Settings()

        assert settings.blocked_term_list == ["concorrente", "rival"]

    def test_blocked_terms_default_empty(self):
        assert Settings().blocked_term_list == []

    def test_invalid_app_env(self):
        with pytest.raises(ValidationError):
            Settings(app_env="qa")

    def test_get_settings_is_cached(self):
        assert get_settings() is get_settings()
