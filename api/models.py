"""Pydantic models for Converso API responses.

The WhatsApp webhook itself always answers with empty TwiML; these models
cover the operational endpoints.
"""

from __future__ import annotations

from typing import Any, Literal

from pydantic import BaseModel, Field


class HealthResponse(BaseModel):
    """Response model for health check endpoints.

    Attributes:
        status: Health status (healthy/unhealthy/ready/not_ready)
        service: Service name
        version: Service version
        timestamp: Unix timestamp
        details: Optional additional details
    """

    status: Literal["healthy", "unhealthy", "ready", "not_ready"] = Field(
        description="Health status",
        examples=["healthy"],
    )
    service: str = Field(
        description="Service name",
        examples=["converso"],
    )
    version: str = Field(
        description="Service version",
        examples=["0.1.0"],
    )
    timestamp: float = Field(
        description="Unix timestamp of the check",
    )
    details: dict[str, Any] | None = Field(
        default=None,
        description="Dependency status and background task counts",
    )
