"""Tests for OpenAI answer generation and shortening."""

import json

import httpx
import pytest

from api.composer import OpenAIComposer, format_context, history_to_messages
from api.errors import GenerationError
from api.schemas.pipeline import ContextItem


def completion_transport(content="Resposta", status=200, calls=None):
    def handler(request: httpx.Request) -> httpx.Response:
        if calls is not None:
            calls.append(json.loads(request.content))
        if status != 200:
            return httpx.Response(status, json={"error": {"message": "rate limited"}})
        return httpx.Response(200, json={
            "choices": [{"message": {"role": "assistant", "content": content}}],
            "usage": {"prompt_tokens": 120, "completion_tokens": 30},
        })
    return httpx.MockTransport(handler)


def test_history_maps_bot_to_assistant():
    history = [
        {"role": "user", "content": "Oi"},
        {"role": "bot", "content": "Olá! Como posso ajudar?"},
        {"role": "user", "content": ""},
    ]
    assert history_to_messages(history) == [
        {"role": "user", "content": "Oi"},
        {"role": "assistant", "content": "Olá! Como posso ajudar?"},
    ]


def test_format_context_without_documents():
    assert format_context([]) == "(no relevant documents found)"


def test_format_context_numbers_chunks(context_items):
    formatted = format_context(context_items)
    assert formatted.startswith("[1] c1\n")
    assert "[2] c2\n" in formatted


@pytest.mark.asyncio
async def test_generate_builds_conversation(settings, context_items):
    calls = []
    composer = OpenAIComposer(settings, transport=completion_transport("  Das 8h às 18h.  ", calls=calls))
    history = [
        {"role": "user", "content": "Oi"},
        {"role": "bot", "content": "Olá!"},
        {"role": "user", "content": "Qual o horário?"},
    ]

    answer = await composer.generate("Qual o horário?", context_items, history)

    assert answer == "Das 8h às 18h."
    messages = calls[0]["messages"]
    assert messages[0]["role"] == "system"
    assert "O horário de atendimento" in messages[1]["content"]
    # The current message is sent once, as the last turn
    assert [m["content"] for m in messages[2:]] == ["Oi", "Olá!", "Qual o horário?"]
    assert composer.token_usage[0].output_tokens == 30


@pytest.mark.asyncio
async def test_generate_without_content_returns_sentinel(settings):
    composer = OpenAIComposer(settings, transport=completion_transport(content=None))

    assert await composer.generate("Oi", [], []) == "No content available"


@pytest.mark.asyncio
async def test_generate_http_error(settings):
    composer = OpenAIComposer(settings, transport=completion_transport(status=429))

    with pytest.raises(GenerationError):
        await composer.generate("Oi", [], [])


@pytest.mark.asyncio
async def test_shorten_includes_limit_and_original(settings):
    calls = []
    composer = OpenAIComposer(settings, transport=completion_transport("Versão curta.", calls=calls))

    answer = await composer.shorten(
        "Explique tudo",
        [ContextItem(chunk_id="c1", text="Texto", score=0.9)],
        ({"role": "user", "content": "Explique tudo"},),
        "Resposta muito longa " * 80,
        max_chars=1000,
    )

    assert answer == "Versão curta."
    messages = calls[0]["messages"]
    assert "1000 characters" in messages[0]["content"]
    assert "Resposta muito longa" in messages[-1]["content"]
