"""
AINotes Backend — Note Store
==============================

What:  Owner-scoped reads and explicit commits over a single AsyncSession.
Why:   The backfill coordinator needs exactly two things from persistence:
       a stable, filtered candidate list and a durable commit of whatever it
       mutated since the last commit. Hiding SQLAlchemy behind this class lets
       the coordinator be tested against an in-memory fake.
How:   Notes returned by the query methods stay attached to the session, so
       attribute changes made by the caller are picked up by the next commit().

Handle semantics:
    One NoteStore wraps one session. Mutations are invisible to other
    handles until commit() completes. A handle must not be shared by two
    concurrent backfill runs.
"""

import logging
from typing import List, Optional
from uuid import UUID

from sqlalchemy import or_, select
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession

from ainotes.exceptions import PersistenceError
from ainotes.models.note import Note

logger = logging.getLogger(__name__)


class NoteStore:
    """
    Repository over the `notes` table for one session.

    Ordering:
        All list queries order by (created_at, id). Checkpoint counting in a
        backfill run depends on iterating the same sequence the query returned.
    """

    def __init__(self, session: AsyncSession):
        self.session = session

    def _owner_query(self, owner_subject: str):
        return (
            select(Note)
            .where(Note.owner_subject == owner_subject)
            .order_by(Note.created_at, Note.id)
        )

    async def _fetch(self, query) -> List[Note]:
        try:
            result = await self.session.execute(query)
        except SQLAlchemyError as e:
            logger.error("Note query failed: %s", str(e))
            raise PersistenceError(
                message="Could not load notes. Please try again.",
                context={"error_type": type(e).__name__},
            ) from e
        return list(result.scalars().all())

    async def query(self, owner_subject: str, only_missing_tags: bool) -> List[Note]:
        """
        Backfill candidates for tag enrichment.

        Args:
            owner_subject: Owner whose notes are returned; never crosses owners.
            only_missing_tags: Restrict to notes whose tags are NULL or empty.
        """
        query = self._owner_query(owner_subject)
        if only_missing_tags:
            query = query.where(or_(Note.tags.is_(None), Note.tags == ""))
        return await self._fetch(query)

    async def query_missing_embeddings(
        self, owner_subject: str, only_missing: bool
    ) -> List[Note]:
        """Backfill candidates for embedding enrichment."""
        query = self._owner_query(owner_subject)
        if only_missing:
            query = query.where(Note.embedding.is_(None))
        return await self._fetch(query)

    async def query_embedded(self, owner_subject: str) -> List[Note]:
        """The owner's notes that carry an embedding (retrieval candidates)."""
        query = self._owner_query(owner_subject).where(Note.embedding.is_not(None))
        return await self._fetch(query)

    async def get(self, note_id: UUID, owner_subject: str) -> Optional[Note]:
        """Owner-scoped lookup; another owner's note reads as missing."""
        query = select(Note).where(
            Note.id == note_id,
            Note.owner_subject == owner_subject,
        )
        try:
            result = await self.session.execute(query)
        except SQLAlchemyError as e:
            logger.error("Database error fetching note %s: %s", note_id, str(e))
            raise PersistenceError(
                message="Could not retrieve the note. Please try again.",
                context={"note_id": str(note_id)},
            ) from e
        return result.scalar_one_or_none()

    async def commit(self) -> None:
        """
        Durably persist every pending mutation made through this handle.

        Raises:
            PersistenceError: The commit failed. The session is rolled back so
                the handle stays usable; the uncommitted mutations are lost
                from storage (the in-memory objects keep their new values).
        """
        try:
            await self.session.commit()
        except SQLAlchemyError as e:
            logger.error("Commit failed: %s", str(e), exc_info=True)
            try:
                await self.session.rollback()
            except SQLAlchemyError:
                logger.error("Rollback after failed commit also failed")
            raise PersistenceError(
                message="Could not save note changes.",
                context={"error_type": type(e).__name__},
            ) from e
