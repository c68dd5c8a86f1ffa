"""
AINotes Backend — Pydantic Response Schemas
=============================================

What:  Pydantic models for the related-notes, semantic search, error and
       health responses.
Why:   API contracts change independently of the database schema; embeddings
       and owner subjects are never echoed back to clients.
"""

import uuid
from datetime import datetime
from typing import List, Optional

from pydantic import BaseModel, Field


class RelatedNote(BaseModel):
    """
    What:  A note returned by semantic retrieval, with its similarity score.
    Who:   Items of RelatedNotesResponse.
    """
    id: uuid.UUID = Field(description="Note identifier")
    title: str = Field(description="Note title")
    tags: Optional[str] = Field(default=None, description="Comma-delimited tags")
    updated_at: datetime = Field(description="Last mutation timestamp (UTC)")
    similarity: float = Field(description="Cosine similarity to the query vector")

    model_config = {"from_attributes": True}


class RelatedNotesResponse(BaseModel):
    """
    What:  Nearest neighbours of a note or a free-text query.
    Order: Most similar first; ties by most recent updated_at, then by id.
    """
    notes: List[RelatedNote] = Field(default_factory=list)


class ErrorResponse(BaseModel):
    """
    Standardized error response format for all API errors.

    Example:
        {
            "error": "invalid_request",
            "message": "owner_subject must not be empty",
            "details": {"field": "owner_subject"},
            "request_id": "a1b2c3d4"
        }
    """
    error: str = Field(description="Machine-readable error code")
    message: str = Field(description="Human-readable error description")
    details: Optional[dict] = Field(default=None, description="Additional error context")
    request_id: Optional[str] = Field(default=None, description="Request correlation ID")


class HealthResponse(BaseModel):
    """Health check response showing service and dependency status."""
    status: str = Field(description="Overall service status: healthy, degraded, unhealthy")
    version: str = Field(description="Application version")
    database: str = Field(description="Database connectivity: connected, disconnected")
    gemini: str = Field(description="Gemini API status: available, unavailable, circuit_open")
    uptime_seconds: float = Field(description="Seconds since service started")
