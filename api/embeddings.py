"""OpenAI embeddings for inbound WhatsApp messages."""

from __future__ import annotations

from typing import List, Optional

import httpx
import structlog
from tenacity import retry, retry_if_exception_type, stop_after_attempt, wait_exponential

from api.errors import ConfigurationError, EmbeddingError
from libs.common.settings import Settings, get_settings

logger = structlog.get_logger(__name__)

# Inputs beyond this are truncated to stay under the model's token limit
MAX_EMBEDDING_INPUT_CHARS = 8000


class EmbeddingClient:
    """OpenAI client for generating message embeddings.

    ``embed`` returns ``None`` when there is nothing to embed or the API
    produced no vector. Transport and HTTP errors raise ``EmbeddingError``.
    """

    def __init__(self, settings: Settings | None = None, transport: httpx.AsyncBaseTransport | None = None):
        self.settings = settings or get_settings()
        self._transport = transport

    @retry(
        retry=retry_if_exception_type(httpx.TransportError),
        stop=stop_after_attempt(3),
        wait=wait_exponential(multiplier=1, min=1, max=10),
        reraise=True,
    )
    async def _request(self, text: str) -> dict:
        async with httpx.AsyncClient(
            base_url=self.settings.openai_base_url,
            timeout=self.settings.openai_timeout_seconds,
            transport=self._transport,
        ) as client:
            response = await client.post(
                "/embeddings",
                headers={
                    "Authorization": f"Bearer {self.settings.openai_api_key}",
                    "Content-Type": "application/json",
                },
                json={
                    "model": self.settings.openai_embedding_model,
                    "input": text[:MAX_EMBEDDING_INPUT_CHARS],
                    "encoding_format": "float",
                },
            )
            response.raise_for_status()
            return response.json()

    async def embed(self, text: str) -> Optional[List[float]]:
        """Get embedding for text using the OpenAI API."""
        if not self.settings.openai_api_key:
            raise ConfigurationError("OpenAI API key not configured")

        if not text or not text.strip():
            logger.warning("Empty message, no embedding produced")
            return None

        try:
            data = await self._request(text)
        except httpx.HTTPStatusError as e:
            logger.error(
                "OpenAI embedding failed",
                status=e.response.status_code,
                response=e.response.text[:200],
            )
            raise EmbeddingError(f"Embedding request failed with status {e.response.status_code}") from e
        except httpx.HTTPError as e:
            logger.error("Embedding generation failed", error=str(e))
            raise EmbeddingError("Embedding request failed") from e

        items = data.get("data") or []
        embedding = items[0].get("embedding") if items else None
        if not embedding:
            logger.warning("OpenAI returned no embedding", model=self.settings.openai_embedding_model)
            return None

        logger.info(
            "Embedding generated",
            model=self.settings.openai_embedding_model,
            input_length=len(text),
            embedding_dim=len(embedding),
        )
        return embedding
