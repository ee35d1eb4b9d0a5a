"""Exception types raised by the message pipeline collaborators."""

from __future__ import annotations


class PipelineError(Exception):
    """Base class for failures inside the message pipeline."""


class ConfigurationError(PipelineError):
    """A collaborator is missing credentials or endpoints."""


class EmbeddingError(PipelineError):
    """The embedding service failed (distinct from producing no embedding)."""


class RetrievalError(PipelineError):
    """The vector store search failed."""


class GenerationError(PipelineError):
    """The language model call failed or returned a malformed response."""


class DeliveryError(PipelineError):
    """An outbound WhatsApp message could not be sent."""

    def __init__(self, message: str, status_code: int | None = None):
        super().__init__(message)
        self.status_code = status_code
