"""
AINotes Backend — Note SQLAlchemy Model
=========================================

What:  ORM model representing the `notes` table.
Why:   Maps Python objects to database rows for type-safe database operations.
Who:   Loaded and mutated through NoteStore by the backfill coordinator and
       read by the retrieval service; Alembic reads it for migrations.

Table Design Rationale:
    - UUID primary key: opaque, stable, never reused
    - owner_subject: opaque identity subject; every query is scoped by it
    - tags: denormalized comma-delimited string, NULL until first enrichment
    - embedding: JSON list of floats so the same model runs on PostgreSQL
      and SQLite; SQL NULL (not JSON null) until first enrichment
    - created_at / updated_at: UTC with timezone; updated_at moves on every mutation

    Index on (owner_subject, created_at):
        Every backfill and retrieval query filters by owner and the backfill
        candidate scan orders by created_at.
"""

import uuid
from datetime import datetime, timezone
from typing import List, Optional

from sqlalchemy import JSON, DateTime, Index, String, Text, Uuid, text
from sqlalchemy.orm import Mapped, mapped_column

from ainotes.database import Base

TITLE_MAX_LENGTH = 200
CONTENT_MAX_LENGTH = 20_000
TAGS_MAX_LENGTH = 500


def utc_now() -> datetime:
    return datetime.now(timezone.utc)


class Note(Base):
    """
    A personal note and its AI-derived metadata.

    Lifecycle:
        1. Created by the (external) CRUD layer with title/content, no tags/embedding
        2. Tag backfill sets `tags` and bumps `updated_at`
        3. Embedding backfill sets `embedding` and bumps `updated_at`
        4. A content edit leaves tags/embedding stale until the next explicit backfill
    """

    __tablename__ = "notes"

    id: Mapped[uuid.UUID] = mapped_column(
        Uuid,
        primary_key=True,
        default=uuid.uuid4,
        comment="Opaque unique identifier",
    )

    owner_subject: Mapped[str] = mapped_column(
        String(255),
        nullable=False,
        comment="Identity subject of the note's single owner",
    )

    title: Mapped[str] = mapped_column(
        String(TITLE_MAX_LENGTH),
        nullable=False,
    )

    content: Mapped[str] = mapped_column(
        Text,
        nullable=False,
    )

    # Display order is preserved; matching ignores it
    tags: Mapped[Optional[str]] = mapped_column(
        String(TAGS_MAX_LENGTH),
        nullable=True,
        default=None,
        comment="Comma-delimited AI-generated tags",
    )

    embedding: Mapped[Optional[List[float]]] = mapped_column(
        JSON(none_as_null=True),
        nullable=True,
        default=None,
        comment="Fixed-length embedding vector of title and content",
    )

    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        nullable=False,
        default=utc_now,
        server_default=text("CURRENT_TIMESTAMP"),
    )

    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        nullable=False,
        default=utc_now,
        server_default=text("CURRENT_TIMESTAMP"),
    )

    __table_args__ = (
        Index("idx_notes_owner_created_at", "owner_subject", "created_at"),
    )

    @property
    def tag_list(self) -> List[str]:
        """Tags in display order, blanks dropped."""
        if not self.tags:
            return []
        return [tag.strip() for tag in self.tags.split(",") if tag.strip()]

    def __repr__(self) -> str:
        return (
            f"<Note(id={self.id}, owner='{self.owner_subject}', "
            f"title='{self.title}', updated_at='{self.updated_at}')>"
        )
