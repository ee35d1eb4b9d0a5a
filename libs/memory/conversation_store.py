"""
Conversation storage for WhatsApp senders.

Stores every user and bot message in a Redis list keyed by sender so the
answer generator can see the recent conversation.

- Sliding window (keeps last N messages)
- TTL refreshed on every write
- History returned oldest first
"""

import json
from datetime import datetime, timezone
from typing import Any, Dict, List, Literal

import structlog

logger = structlog.get_logger(__name__)

Role = Literal["user", "bot"]


def mask_sender(sender_id: str) -> str:
    """Partial sender id for logs."""
    return sender_id[:6] + "****"


class ConversationStore:
    """
    Persists messages and serves conversation history from Redis.

    Usage:
        store = ConversationStore(redis_client, max_messages=20)
        await store.store_message("whatsapp:+5511999990000", "Oi", "user")
        history = await store.fetch_history("whatsapp:+5511999990000")
    """

    def __init__(self, redis_client, max_messages: int = 20, ttl_seconds: int = 7 * 24 * 3600):
        """
        Initialize conversation store.

        Args:
            redis_client: Async Redis client
            max_messages: Maximum messages to keep per sender
            ttl_seconds: Expiry applied to a sender's history on every write
        """
        self.redis = redis_client
        self.max_messages = max_messages
        self.ttl_seconds = ttl_seconds

    @staticmethod
    def _key(sender_id: str) -> str:
        return f"conversation:{sender_id}:messages"

    async def store_message(self, sender_id: str, text: str, role: Role) -> None:
        """
        Append a message to the sender's history.

        Args:
            sender_id: Channel identifier of the sender
            text: Message content
            role: "user" or "bot"

        Raises:
            ValueError: If role is not "user" or "bot"
        """
        if role not in ("user", "bot"):
            raise ValueError(f"Unsupported role: {role!r}")

        key = self._key(sender_id)
        message = {
            "role": role,
            "content": text,
            "timestamp": datetime.now(timezone.utc).isoformat(),
        }

        # Newest first, trimmed to the window
        await self.redis.lpush(key, json.dumps(message, ensure_ascii=False))
        await self.redis.ltrim(key, 0, self.max_messages - 1)
        await self.redis.expire(key, self.ttl_seconds)

        logger.debug(
            "Message stored",
            sender=mask_sender(sender_id),
            role=role,
            content_length=len(text),
        )

    async def fetch_history(self, sender_id: str) -> List[Dict[str, Any]]:
        """
        Get the sender's recent messages.

        Returns:
            List of messages in chronological order (oldest first)
        """
        messages_json = await self.redis.lrange(self._key(sender_id), 0, -1)
        history = [json.loads(raw) for raw in messages_json]
        return list(reversed(history))

    async def count_messages(self, sender_id: str) -> int:
        return await self.redis.llen(self._key(sender_id))
