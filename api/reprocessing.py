"""Background regeneration of answers that are too long for WhatsApp.

Runs after the webhook has been acknowledged: asks the model for a shorter
version of the original answer, filters it, stores it, and delivers it in as
many parts as the channel's message limit requires.
"""

from __future__ import annotations

import re
from typing import Iterator, List, Tuple

import structlog

from api.schemas.pipeline import (
    ReprocessingJob,
    SafetyFilter,
    MessageSender,
    MessageStore,
    is_empty_answer,
)
from libs.common.settings import Settings, get_settings
from libs.memory.conversation_store import mask_sender

logger = structlog.get_logger(__name__)

_SENTENCE_END = re.compile(r"(?<=[.!?])\s+")


def _segments(text: str, limit: int) -> Iterator[Tuple[str, str]]:
    """Yield (separator, segment) pairs, each segment at most ``limit`` long."""
    for paragraph in text.split("\n\n"):
        if len(paragraph) <= limit:
            yield "\n\n", paragraph
            continue
        sep = "\n\n"
        for sentence in _SENTENCE_END.split(paragraph):
            while len(sentence) > limit:
                yield sep, sentence[:limit]
                sentence = sentence[limit:]
                sep = " "
            yield sep, sentence
            sep = " "


def split_message(text: str, limit: int) -> List[str]:
    """Split ``text`` on paragraph and sentence boundaries into parts of at most ``limit`` characters."""
    if len(text) <= limit:
        return [text]

    parts: List[str] = []
    current = ""
    for sep, segment in _segments(text, limit):
        if not segment.strip():
            continue
        if not current:
            current = segment
        elif len(current) + len(sep) + len(segment) <= limit:
            current = f"{current}{sep}{segment}"
        else:
            parts.append(current)
            current = segment
    if current:
        parts.append(current)
    return parts


class AnswerReprocessor:
    """Regenerates and delivers a shorter answer for a deferred request."""

    def __init__(
        self,
        generator,
        safety_filter: SafetyFilter,
        sender: MessageSender,
        store: MessageStore,
        settings: Settings | None = None,
    ):
        self.generator = generator
        self.safety_filter = safety_filter
        self.sender = sender
        self.store = store
        self.settings = settings or get_settings()

    async def reprocess(self, job: ReprocessingJob) -> None:
        """Shorten ``job.raw_answer`` and deliver it to the sender.

        Failures propagate; the task runner that scheduled this coroutine
        logs them.
        """
        sender = mask_sender(job.sender_id)
        threshold = self.settings.long_answer_threshold

        logger.info("Reprocessing long answer", sender=sender, raw_length=len(job.raw_answer))

        shorter = await self.generator.shorten(
            job.original_text,
            list(job.retrieved_context),
            list(job.conversation_history),
            job.raw_answer,
            max_chars=threshold,
        )
        answer = "" if is_empty_answer(shorter) else self.safety_filter.filter(shorter, job.original_text)

        if is_empty_answer(answer):
            logger.error("Reprocessing produced no answer", sender=sender)
            await self.sender.deliver(job.sender_id, self.settings.no_answer_text)
            return

        if len(answer) > threshold:
            logger.warning("Shortened answer still over threshold", sender=sender, length=len(answer))

        parts = split_message(answer, self.settings.channel_message_limit)
        await self.store.store_message(job.sender_id, answer, "bot")
        for part in parts:
            await self.sender.deliver(job.sender_id, part)

        logger.info("Reprocessed answer delivered", sender=sender, length=len(answer), parts=len(parts))
