"""Per-request guard for the single channel acknowledgment."""

from __future__ import annotations

import inspect
from typing import Any, Awaitable, Callable, Union

import structlog

from libs.memory.conversation_store import mask_sender

logger = structlog.get_logger(__name__)

Responder = Callable[[], Union[Awaitable[Any], Any]]


class AcknowledgmentTracker:
    """Sends the channel's terminal response at most once.

    Every code path acknowledges through ``acknowledge``; the responder is
    never called directly. The flag flips before the responder runs, so a
    responder that raises is still counted as the one attempt.
    """

    def __init__(self, responder: Responder, sender_id: str = ""):
        self._responder = responder
        self._sender = mask_sender(sender_id) if sender_id else "unknown"
        self._acknowledged = False

    @property
    def acknowledged(self) -> bool:
        return self._acknowledged

    async def acknowledge(self, reason: str) -> bool:
        """Acknowledge the channel unless that already happened.

        Returns:
            True if this call sent the acknowledgment, False if it was a no-op
        """
        if self._acknowledged:
            logger.warning("Channel already acknowledged, skipping", reason=reason, sender=self._sender)
            return False

        self._acknowledged = True
        result = self._responder()
        if inspect.isawaitable(result):
            await result

        logger.info("Channel acknowledged", reason=reason, sender=self._sender)
        return True
