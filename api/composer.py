"""OpenAI-based answer composition for WhatsApp.

Two operations share one chat-completions client:
1. ``generate`` - answer an inbound message from retrieved context and history
2. ``shorten`` - rewrite an over-long answer to fit a single WhatsApp message
"""

from __future__ import annotations

import time
from dataclasses import dataclass
from typing import Any, Dict, List, Sequence

import httpx
import structlog
from tenacity import retry, retry_if_exception_type, stop_after_attempt, wait_exponential

from api.errors import ConfigurationError, GenerationError
from api.schemas.pipeline import NO_CONTENT_SENTINEL, ContextItem
from libs.common.settings import Settings, get_settings

logger = structlog.get_logger(__name__)

# Per-chunk cap when building the context block
MAX_CHUNK_CHARS = 1500

SYSTEM_PROMPT = """You are a helpful assistant answering questions over WhatsApp.
Answer using only the information in the provided context and conversation.
If the context does not contain the answer, say so briefly.
Reply in the same language as the user's message.
Keep the answer concise and use plain text suitable for WhatsApp."""

SHORTEN_PROMPT = """You rewrite answers so they fit in a single WhatsApp message.
Keep every fact that answers the user's question and drop the rest.
The rewritten answer must have at most {max_chars} characters.
Reply in the same language as the original answer. Return only the rewritten answer."""


@dataclass
class TokenUsage:
    """Track token usage for cost monitoring."""

    input_tokens: int
    output_tokens: int
    model: str


def format_context(context: Sequence[ContextItem]) -> str:
    if not context:
        return "(no relevant documents found)"
    blocks = []
    for i, item in enumerate(context, 1):
        title = item.metadata.get("title") or item.metadata.get("source") or item.chunk_id
        blocks.append(f"[{i}] {title}\n{item.text[:MAX_CHUNK_CHARS]}")
    return "\n\n".join(blocks)


def history_to_messages(history: Sequence[Dict[str, Any]]) -> List[Dict[str, str]]:
    """Convert stored turns to chat messages ("bot" becomes "assistant")."""
    messages = []
    for turn in history:
        content = turn.get("content")
        if not content:
            continue
        role = "assistant" if turn.get("role") == "bot" else "user"
        messages.append({"role": role, "content": content})
    return messages


class OpenAIComposer:
    """Chat-completions client for answer generation."""

    def __init__(self, settings: Settings | None = None, transport: httpx.AsyncBaseTransport | None = None):
        self.settings = settings or get_settings()
        self._transport = transport
        self.token_usage: List[TokenUsage] = []

    @retry(
        retry=retry_if_exception_type(httpx.TransportError),
        stop=stop_after_attempt(2),
        wait=wait_exponential(multiplier=1, min=1, max=5),
        reraise=True,
    )
    async def _post(self, payload: Dict[str, Any]) -> Dict[str, Any]:
        async with httpx.AsyncClient(
            base_url=self.settings.openai_base_url,
            timeout=self.settings.openai_timeout_seconds,
            transport=self._transport,
        ) as client:
            response = await client.post(
                "/chat/completions",
                headers={
                    "Authorization": f"Bearer {self.settings.openai_api_key}",
                    "Content-Type": "application/json",
                },
                json=payload,
            )
            response.raise_for_status()
            return response.json()

    async def _complete(self, messages: List[Dict[str, str]], operation: str) -> str:
        if not self.settings.openai_api_key:
            raise ConfigurationError("OpenAI API key not configured")

        start_time = time.time()
        payload = {
            "model": self.settings.openai_model,
            "messages": messages,
            "max_completion_tokens": self.settings.openai_max_tokens,
        }

        try:
            data = await self._post(payload)
        except httpx.HTTPStatusError as e:
            logger.error(
                "OpenAI API error",
                operation=operation,
                status=e.response.status_code,
                response=e.response.text[:200],
            )
            raise GenerationError(f"OpenAI {operation} failed with status {e.response.status_code}") from e
        except httpx.HTTPError as e:
            logger.error("OpenAI request failed", operation=operation, error=str(e))
            raise GenerationError(f"OpenAI {operation} request failed") from e

        usage = data.get("usage") or {}
        self.token_usage.append(TokenUsage(
            input_tokens=usage.get("prompt_tokens", 0),
            output_tokens=usage.get("completion_tokens", 0),
            model=self.settings.openai_model,
        ))

        try:
            choices = data.get("choices") or []
            content = choices[0]["message"].get("content") if choices else None
        except (KeyError, TypeError) as e:
            raise GenerationError("Malformed OpenAI response") from e

        logger.info(
            "OpenAI completion finished",
            operation=operation,
            elapsed_ms=int((time.time() - start_time) * 1000),
            input_tokens=usage.get("prompt_tokens", 0),
            output_tokens=usage.get("completion_tokens", 0),
            answer_length=len(content or ""),
        )
        return (content or NO_CONTENT_SENTINEL).strip()

    async def generate(
        self,
        text: str,
        context: Sequence[ContextItem],
        history: Sequence[Dict[str, Any]],
    ) -> str:
        """Answer ``text`` from the retrieved context and the sender's history.

        Returns the ``No content available`` sentinel when the model produces
        no content.
        """
        prior = list(history)
        # The current message is already the newest stored turn
        if prior and prior[-1].get("role") == "user" and prior[-1].get("content") == text:
            prior = prior[:-1]

        messages = [
            {"role": "system", "content": SYSTEM_PROMPT},
            {"role": "system", "content": f"Context:\n{format_context(context)}"},
            *history_to_messages(prior),
            {"role": "user", "content": text},
        ]
        return await self._complete(messages, "generate")

    async def shorten(
        self,
        text: str,
        context: Sequence[ContextItem],
        history: Sequence[Dict[str, Any]],
        answer: str,
        max_chars: int,
    ) -> str:
        """Rewrite ``answer`` to at most ``max_chars`` characters."""
        messages = [
            {"role": "system", "content": SHORTEN_PROMPT.format(max_chars=max_chars)},
            {"role": "system", "content": f"Context:\n{format_context(context)}"},
            *history_to_messages(history[-4:]),
            {
                "role": "user",
                "content": f"Question: {text}\n\nOriginal answer:\n{answer}",
            },
        ]
        return await self._complete(messages, "shorten")
