"""Application settings for the Converso WhatsApp assistant."""

from __future__ import annotations

from functools import lru_cache
from typing import Literal

from pydantic import Field, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    """Application settings loaded from ``CONVERSO_`` environment variables."""

    model_config = SettingsConfigDict(
        env_prefix="CONVERSO_",
        env_file=None,
        env_file_encoding="utf-8",
        case_sensitive=False,
        extra="ignore",
    )

    # Core application settings
    app_env: Literal["development", "test", "staging", "production"] = "development"
    log_level: Literal["DEBUG", "INFO", "WARNING", "ERROR"] = "INFO"
    debug: bool = False

    # Twilio WhatsApp channel
    twilio_account_sid: str | None = None
    twilio_auth_token: str | None = None
    twilio_whatsapp_number: str | None = None
    twilio_api_base_url: str = "https://api.twilio.com"
    validate_twilio_signature: bool = False

    # OpenAI (embeddings + generation)
    openai_api_key: str | None = None
    openai_base_url: str = "https://api.openai.com/v1"
    openai_model: str = "gpt-4o-mini"
    openai_embedding_model: str = "text-embedding-3-small"
    openai_max_tokens: int = 800
    openai_timeout_seconds: float = 30.0

    # Milvus Cloud HTTP API
    milvus_endpoint: str | None = None
    milvus_token: str | None = None
    milvus_collection_name: str = "knowledge_chunks"
    retrieval_top_k: int = Field(default=5, ge=1, le=50)

    # Conversation history
    redis_url: str | None = None
    history_max_messages: int = 20
    history_ttl_seconds: int = 7 * 24 * 3600

    # Delivery strategy
    long_answer_threshold: int = 1000
    channel_message_limit: int = 1600

    # Fixed user-facing texts
    processing_notice_text: str = (
        "Sua resposta está sendo processada e pode levar um pouco mais de tempo. "
        "Agradeço a paciência!"
    )
    no_answer_text: str = (
        "Desculpe, não consegui gerar uma resposta no momento. "
        "Tente reformular sua pergunta."
    )
    generic_error_text: str = (
        "Desculpe, ocorreu um erro inesperado ao processar sua solicitação."
    )

    # Safety filter: comma-separated terms masked in answers
    blocked_terms: str = ""

    shutdown_drain_timeout_seconds: float = 30.0

    @field_validator("long_answer_threshold", "channel_message_limit")
    @classmethod
    def validate_positive_length(cls, v: int) -> int:
        """Length limits must be positive."""
        if v <= 0:
            raise ValueError("Length limits must be greater than zero")
        return v

    @field_validator("twilio_whatsapp_number")
    @classmethod
    def validate_whatsapp_number(cls, v: str | None) -> str | None:
        """Twilio expects WhatsApp senders in ``whatsapp:+<number>`` form."""
        if v is None or v.startswith("whatsapp:"):
            return v
        return f"whatsapp:{v}"

    @property
    def twilio_configured(self) -> bool:
        return bool(self.twilio_account_sid and self.twilio_auth_token and self.twilio_whatsapp_number)

    @property
    def blocked_term_list(self) -> list[str]:
        """Parse blocked terms from comma-separated string."""
        return [term.strip() for term in self.blocked_terms.split(",") if term.strip()]


@lru_cache
def get_settings() -> Settings:
    """Get cached settings instance."""
    return Settings()
