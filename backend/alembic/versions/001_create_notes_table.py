"""Create notes table

Revision ID: 001
Revises: None
Create Date: 2026-10-16 00:00:00.000000+00:00

What:  Creates the `notes` table holding each owner's notes together with
       their AI tags and embedding.
How:   Portable column types (sa.Uuid, sa.JSON) so the same migration runs on
       PostgreSQL and on SQLite for local use.

Rollback: downgrade() drops the table entirely (destructive, all data lost).
"""

from typing import Sequence, Union

import sqlalchemy as sa
from alembic import op

# revision identifiers
revision: str = "001"
down_revision: Union[str, None] = None
branch_labels: Union[str, Sequence[str], None] = None
depends_on: Union[str, Sequence[str], None] = None


def upgrade() -> None:
    """Create the notes table and its owner index. See ainotes/models/note.py."""
    op.create_table(
        "notes",
        sa.Column(
            "id",
            sa.Uuid(),
            nullable=False,
            comment="Opaque unique identifier",
        ),
        sa.Column(
            "owner_subject",
            sa.String(255),
            nullable=False,
            comment="Identity subject of the note's single owner",
        ),
        sa.Column("title", sa.String(200), nullable=False),
        sa.Column("content", sa.Text(), nullable=False),

        # NULL until the first tag backfill
        sa.Column(
            "tags",
            sa.String(500),
            nullable=True,
            comment="Comma-delimited AI-generated tags",
        ),

        # NULL until the first embedding backfill
        sa.Column(
            "embedding",
            sa.JSON(),
            nullable=True,
            comment="Fixed-length embedding vector of title and content",
        ),
        sa.Column(
            "created_at",
            sa.DateTime(timezone=True),
            server_default=sa.text("CURRENT_TIMESTAMP"),
            nullable=False,
        ),
        sa.Column(
            "updated_at",
            sa.DateTime(timezone=True),
            server_default=sa.text("CURRENT_TIMESTAMP"),
            nullable=False,
        ),
        sa.PrimaryKeyConstraint("id"),
    )

    # Every backfill and retrieval query filters by owner; backfill scans order by created_at
    op.create_index(
        "idx_notes_owner_created_at",
        "notes",
        ["owner_subject", "created_at"],
    )


def downgrade() -> None:
    op.drop_index("idx_notes_owner_created_at", table_name="notes")
    op.drop_table("notes")
