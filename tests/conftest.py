"""
Pytest configuration and fixtures for Converso tests.

Provides shared fixtures for:
- Test environment settings
- Fake Redis (fakeredis) and a conversation store on top of it
- Mock pipeline collaborators for the orchestrator
"""

from unittest.mock import AsyncMock, MagicMock

import pytest

from api.orchestrators.background import BackgroundTaskRunner
from api.schemas.pipeline import ContextItem
from libs.common.settings import Settings, get_settings


@pytest.fixture(autouse=True)
def setup_test_env(monkeypatch):
    """Set up test environment variables."""
    monkeypatch.setenv("CONVERSO_APP_ENV", "test")
    get_settings.cache_clear()
    yield
    get_settings.cache_clear()


@pytest.fixture
def settings():
    """Settings with Twilio and OpenAI configured against fake endpoints."""
    return Settings(
        app_env="test",
        twilio_account_sid="AC123",
        twilio_auth_token="twilio-token",
        twilio_whatsapp_number="+14155238886",
        openai_api_key="test-key",
        milvus_endpoint="https://in03-test.api.gcp-us-west1.zillizcloud.com:443",
        milvus_token="milvus-token",
    )


@pytest.fixture
async def redis_client():
    """
    Provide fakeredis client for testing.

    This avoids requiring actual Redis server during tests.
    """
    from fakeredis import aioredis as fakeredis

    client = fakeredis.FakeRedis(decode_responses=True)

    yield client

    await client.flushdb()
    await client.aclose()


@pytest.fixture
def conversation_store(redis_client):
    from libs.memory.conversation_store import ConversationStore

    return ConversationStore(redis_client, max_messages=10)


@pytest.fixture
def context_items():
    return [
        ContextItem(chunk_id="c1", text="O horário de atendimento é das 8h às 18h.", score=0.91),
        ContextItem(chunk_id="c2", text="Aos sábados atendemos até 12h.", score=0.84),
    ]


@pytest.fixture
def collaborators(context_items):
    """Mock stage collaborators with a happy-path configuration."""
    embedder = AsyncMock()
    embedder.embed.return_value = [0.1, 0.2, 0.3]

    retriever = AsyncMock()
    retriever.retrieve.return_value = context_items

    generator = AsyncMock()
    generator.generate.return_value = "Atendemos de segunda a sexta, das 8h às 18h."

    safety_filter = MagicMock()
    safety_filter.filter.side_effect = lambda answer, original_text: answer

    sender = AsyncMock()

    reprocessor = MagicMock()
    reprocessor.reprocess = AsyncMock()

    return {
        "embedder": embedder,
        "retriever": retriever,
        "generator": generator,
        "safety_filter": safety_filter,
        "sender": sender,
        "reprocessor": reprocessor,
        "task_runner": BackgroundTaskRunner(),
    }
