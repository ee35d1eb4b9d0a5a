"""Tests for production wiring of the message pipeline."""

import asyncio

import pytest

from api import dependencies
from api.dependencies import LazyConversationStore, get_orchestrator
from libs.common.settings import get_settings


@pytest.fixture
def fresh_orchestrator():
    get_orchestrator.cache_clear()
    yield
    get_orchestrator.cache_clear()


def test_orchestrator_masks_configured_blocked_terms(monkeypatch, fresh_orchestrator):
    monkeypatch.setenv("CONVERSO_BLOCKED_TERMS", "concorrente,rival")
    get_settings.cache_clear()

    orchestrator = get_orchestrator()

    assert orchestrator.safety_filter.blocked_terms == ["concorrente", "rival"]
    # Deferred answers go through the same filter
    assert orchestrator.reprocessor.safety_filter is orchestrator.safety_filter
    filtered = orchestrator.safety_filter.filter("Não recomendamos o Concorrente.", "Oi")
    assert "Concorrente" not in filtered


def test_orchestrator_without_blocked_terms(fresh_orchestrator):
    assert get_orchestrator().safety_filter.blocked_terms == []


@pytest.mark.asyncio
async def test_lazy_store_built_once_under_concurrent_use(monkeypatch, redis_client):
    calls = []

    async def get_redis_client():
        calls.append(1)
        await asyncio.sleep(0)
        return redis_client

    monkeypatch.setattr(dependencies, "get_redis_client", get_redis_client)
    store = LazyConversationStore()

    await asyncio.gather(*[
        store.store_message(f"whatsapp:+55119999900{i}", "Oi", "user") for i in range(5)
    ])

    assert len(calls) == 1
    history = await store.fetch_history("whatsapp:+551199999000")
    assert [(m["role"], m["content"]) for m in history] == [("user", "Oi")]
