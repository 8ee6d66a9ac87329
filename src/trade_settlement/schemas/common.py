"""Schemas shared across the API: errors, health and audit trail."""

from __future__ import annotations

import uuid  # noqa: TC003 - pydantic resolves annotations at runtime
from datetime import datetime  # noqa: TC003

from pydantic import BaseModel, ConfigDict, Field


class ErrorResponse(BaseModel):
    """Body of every non-2xx response produced by the error middleware."""

    error: str = Field(description="Machine-readable error code", examples=["PRECONDITION_FAILED"])
    message: str = Field(description="Human-readable explanation, safe to display")
    retryable: bool = Field(
        default=False,
        description="True when repeating the same request may succeed",
    )


class AuditEntryResponse(BaseModel):
    """One row of the append-only audit log."""

    model_config = ConfigDict(from_attributes=True)

    id: uuid.UUID
    action_type: str
    actor_id: str
    actor_role: str
    entity_type: str
    entity_id: str
    transaction_id: str | None
    before: dict | None
    after: dict | None
    metadata: dict | None = Field(default=None, validation_alias="metadata_json")
    created_at: datetime


class HealthResponse(BaseModel):
    """Health check response."""

    status: str = "ok"
    version: str = "0.1.0"
    database: str = "unknown"
    redis: str = "unknown"
