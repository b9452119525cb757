"""Shared Pydantic schemas for common API elements."""
from __future__ import annotations

from typing import Any

from pydantic import BaseModel, Field


class ErrorDetail(BaseModel):
    """Structured failure returned by every endpoint."""

    kind: str = Field(..., description="Machine-readable error kind.")
    message: str
    hint: str | None = Field(None, description="Suggested next action: join_queue or claim.")
    details: dict[str, Any] = Field(default_factory=dict)


class ErrorResponse(BaseModel):
    error: ErrorDetail
