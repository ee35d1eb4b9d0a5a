"""Milvus-based retrieval for the WhatsApp assistant.

Searches the knowledge collection in Milvus Cloud through its HTTP API (v2)
using the embedding of the inbound message.
"""

from __future__ import annotations

import json
from typing import Any, Dict, List

import httpx
import structlog
from tenacity import retry, retry_if_exception_type, stop_after_attempt, wait_exponential

from api.errors import ConfigurationError, RetrievalError
from api.schemas.pipeline import ContextItem
from libs.common.settings import Settings, get_settings

logger = structlog.get_logger(__name__)

OUTPUT_FIELDS = ["chunk_id", "text", "source", "title", "metadata"]


def _base_url(endpoint: str) -> str:
    # Milvus Cloud format: https://in03-xxx.api.gcp-us-west1.zillizcloud.com:443
    if not endpoint.startswith("https://"):
        raise ConfigurationError(f"Unsupported Milvus endpoint format: {endpoint}")
    base_url = endpoint.replace(":443", "").replace(":19530", "").rstrip("/")
    if not base_url.endswith("/v2/vectordb"):
        base_url += "/v2/vectordb"
    return base_url


def _parse_hit(hit: Dict[str, Any]) -> ContextItem:
    metadata = hit.get("metadata") or {}
    if isinstance(metadata, str):
        try:
            metadata = json.loads(metadata)
        except json.JSONDecodeError:
            metadata = {}
    for key in ("source", "title"):
        if hit.get(key):
            metadata[key] = hit[key]
    return ContextItem(
        chunk_id=str(hit.get("chunk_id", hit.get("id", ""))),
        text=hit.get("text", ""),
        score=float(hit.get("distance", 0.0)),
        metadata=metadata,
    )


class MilvusRetriever:
    """Vector search over the knowledge collection."""

    def __init__(self, settings: Settings | None = None, transport: httpx.AsyncBaseTransport | None = None):
        self.settings = settings or get_settings()
        self._transport = transport

    @retry(
        retry=retry_if_exception_type(httpx.TransportError),
        stop=stop_after_attempt(2),
        wait=wait_exponential(multiplier=1, min=1, max=5),
        reraise=True,
    )
    async def _search(self, embedding: List[float]) -> dict:
        payload = {
            "collectionName": self.settings.milvus_collection_name,
            "data": [embedding],
            "limit": self.settings.retrieval_top_k,
            "outputFields": OUTPUT_FIELDS,
        }
        async with httpx.AsyncClient(
            base_url=_base_url(self.settings.milvus_endpoint),
            timeout=30.0,
            transport=self._transport,
        ) as client:
            response = await client.post(
                "/entities/search",
                headers={
                    "Authorization": f"Bearer {self.settings.milvus_token}",
                    "Content-Type": "application/json",
                    "Accept": "application/json",
                },
                json=payload,
            )
            response.raise_for_status()
            return response.json()

    async def retrieve(self, embedding: List[float]) -> List[ContextItem]:
        """Return the chunks closest to ``embedding``, best first."""
        if not self.settings.milvus_endpoint or not self.settings.milvus_token:
            raise ConfigurationError("Milvus credentials not configured")

        try:
            data = await self._search(embedding)
        except httpx.HTTPStatusError as e:
            logger.error("Milvus search failed", status=e.response.status_code, response=e.response.text[:200])
            raise RetrievalError(f"Milvus search failed with status {e.response.status_code}") from e
        except httpx.HTTPError as e:
            logger.error("Vector search failed", error=str(e))
            raise RetrievalError("Milvus search failed") from e

        # The HTTP API reports errors in-band with a non-zero code
        if data.get("code", 0) != 0:
            logger.error("Milvus search rejected", code=data.get("code"), message=data.get("message"))
            raise RetrievalError(f"Milvus search rejected: {data.get('message')}")

        results = [_parse_hit(hit) for hit in data.get("data", [])]
        results = [item for item in results if item.text]

        logger.info(
            "Vector search completed",
            results_count=len(results),
            top_score=results[0].score if results else 0,
        )
        return results
