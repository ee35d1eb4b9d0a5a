"""
Data model for the inbound message pipeline.

Defines the immutable inbound message, the per-request context accumulator,
the delivery decision, the reprocessing snapshot, and the collaborator
protocols the orchestrator depends on.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Dict, List, Optional, Protocol, Tuple

DEFAULT_LONG_ANSWER_THRESHOLD = 1000
NO_CONTENT_SENTINEL = "No content available"


@dataclass(frozen=True)
class InboundMessage:
    """A message received from the channel."""

    sender_id: str
    text: str


@dataclass(frozen=True)
class ContextItem:
    """A retrieved knowledge chunk."""

    chunk_id: str
    text: str
    score: float
    metadata: Dict[str, Any] = field(default_factory=dict)


@dataclass
class PipelineContext:
    """Accumulates stage outputs for a single request."""

    retrieved_context: List[ContextItem] = field(default_factory=list)
    conversation_history: List[Dict[str, Any]] = field(default_factory=list)
    raw_answer: Optional[str] = None
    filtered_answer: Optional[str] = None


class DeliveryDecision(str, Enum):
    IMMEDIATE = "immediate"
    DEFERRED = "deferred"


@dataclass(frozen=True)
class ReprocessingJob:
    """Snapshot needed to regenerate an answer after the request has ended."""

    sender_id: str
    original_text: str
    retrieved_context: Tuple[ContextItem, ...]
    conversation_history: Tuple[Dict[str, Any], ...]
    raw_answer: str

    @classmethod
    def from_context(cls, inbound: InboundMessage, context: PipelineContext) -> "ReprocessingJob":
        return cls(
            sender_id=inbound.sender_id,
            original_text=inbound.text,
            retrieved_context=tuple(context.retrieved_context),
            conversation_history=tuple(dict(turn) for turn in context.conversation_history),
            raw_answer=context.raw_answer or "",
        )


def decide_delivery(filtered_answer: str, threshold: int = DEFAULT_LONG_ANSWER_THRESHOLD) -> DeliveryDecision:
    """Immediate up to ``threshold`` characters, deferred beyond it."""
    if len(filtered_answer) > threshold:
        return DeliveryDecision.DEFERRED
    return DeliveryDecision.IMMEDIATE


def is_empty_answer(answer: Optional[str]) -> bool:
    """True when the generator produced nothing usable."""
    if answer is None or not answer.strip():
        return True
    return answer == NO_CONTENT_SENTINEL


# Collaborator contracts


class MessageStore(Protocol):
    async def store_message(self, sender_id: str, text: str, role: str) -> None: ...

    async def fetch_history(self, sender_id: str) -> List[Dict[str, Any]]: ...


class Embedder(Protocol):
    async def embed(self, text: str) -> Optional[List[float]]: ...


class Retriever(Protocol):
    async def retrieve(self, embedding: List[float]) -> List[ContextItem]: ...


class AnswerGenerator(Protocol):
    async def generate(
        self, text: str, context: List[ContextItem], history: List[Dict[str, Any]]
    ) -> str: ...


class SafetyFilter(Protocol):
    def filter(self, answer: str, original_text: str) -> str: ...


class MessageSender(Protocol):
    async def deliver(self, sender_id: str, text: str) -> None: ...
