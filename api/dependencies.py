"""Wiring of the message pipeline collaborators.

The orchestrator and its background task runner are process-wide singletons
so that reprocessing tasks outlive the request that launched them.
"""

from __future__ import annotations

import asyncio
from functools import lru_cache

from api.composer import OpenAIComposer
from api.embeddings import EmbeddingClient
from api.guardrails import GuardrailService
from api.orchestrators.background import BackgroundTaskRunner
from api.orchestrators.message_orchestrator import MessageOrchestrator
from api.reprocessing import AnswerReprocessor
from api.retrieval import MilvusRetriever
from api.twilio import TwilioWhatsAppClient
from libs.caching.redis_client import get_redis_client
from libs.common.settings import get_settings
from libs.memory.conversation_store import ConversationStore


@lru_cache
def get_task_runner() -> BackgroundTaskRunner:
    return BackgroundTaskRunner()


class LazyConversationStore:
    """ConversationStore bound to the shared Redis client on first use."""

    def __init__(self):
        self._store: ConversationStore | None = None
        self._build_lock = asyncio.Lock()

    async def _get(self) -> ConversationStore:
        if self._store is not None:
            return self._store

        async with self._build_lock:
            # Double-check after waiting for a concurrent first request
            if self._store is None:
                settings = get_settings()
                self._store = ConversationStore(
                    await get_redis_client(),
                    max_messages=settings.history_max_messages,
                    ttl_seconds=settings.history_ttl_seconds,
                )
        return self._store

    async def store_message(self, sender_id: str, text: str, role: str) -> None:
        store = await self._get()
        await store.store_message(sender_id, text, role)

    async def fetch_history(self, sender_id: str):
        store = await self._get()
        return await store.fetch_history(sender_id)


@lru_cache
def get_orchestrator() -> MessageOrchestrator:
    """Build the orchestrator with production collaborators."""
    settings = get_settings()
    store = LazyConversationStore()
    composer = OpenAIComposer(settings)
    guardrails = GuardrailService(blocked_terms=settings.blocked_term_list)
    sender = TwilioWhatsAppClient(settings)

    return MessageOrchestrator(
        store=store,
        embedder=EmbeddingClient(settings),
        retriever=MilvusRetriever(settings),
        generator=composer,
        safety_filter=guardrails,
        sender=sender,
        reprocessor=AnswerReprocessor(composer, guardrails, sender, store, settings),
        task_runner=get_task_runner(),
        settings=settings,
    )
