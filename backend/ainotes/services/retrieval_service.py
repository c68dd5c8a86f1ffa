"""
AINotes Backend — Semantic Retrieval
======================================

What:  Finds an owner's notes closest in meaning to a given note or to free text.
Why:   Consumes the embeddings the backfill coordinator produced. Related notes
       are only ever drawn from the same owner's notes.
How:   Cosine similarity over the owner's embedded notes, computed with numpy
       in rank_by_similarity(), which is pure and knows nothing about sessions.

Ranking Rules:
    - The query note itself is never returned
    - Notes without an embedding, with a different dimensionality, with a
      NaN or infinite component, or with a zero-magnitude vector are skipped
    - Optional minimum similarity (settings.similarity_threshold)
    - Ties: most recently updated first, then note id in string order
"""

import logging
from datetime import datetime, timezone
from typing import List, Optional, Sequence
from uuid import UUID

import numpy as np

from ainotes.config import settings
from ainotes.exceptions import InvalidRequestError, NotFoundError
from ainotes.models.note import Note
from ainotes.schemas.note import RelatedNote
from ainotes.services.enrichment_base import EnrichmentClient
from ainotes.storage.note_store import NoteStore

logger = logging.getLogger(__name__)


def _as_utc(value: datetime) -> datetime:
    # SQLite hands back naive datetimes even for timezone=True columns
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value


def _as_vector(embedding) -> Optional[np.ndarray]:
    if embedding is None:
        return None
    try:
        vector = np.asarray(embedding, dtype=np.float64)
    except (TypeError, ValueError):
        return None
    if vector.ndim != 1 or vector.size == 0:
        return None
    if not np.all(np.isfinite(vector)):
        return None
    return vector


def rank_by_similarity(
    query_vector: Sequence[float],
    candidates: Sequence[Note],
    k: int,
    exclude_id: Optional[UUID] = None,
    min_similarity: Optional[float] = None,
) -> List[RelatedNote]:
    """
    Top-k candidates by cosine similarity to query_vector.

    Args:
        query_vector: Embedding to compare against.
        candidates: Notes to rank; unusable embeddings are skipped silently.
        k: Maximum number of results.
        exclude_id: Note id never to return (the query note).
        min_similarity: Drop candidates scoring below this value.

    Returns:
        RelatedNote items, most similar first.
    """
    query = _as_vector(query_vector)
    if query is None or k < 1:
        return []
    query_norm = np.linalg.norm(query)
    if query_norm == 0:
        return []

    usable: List[Note] = []
    vectors: List[np.ndarray] = []
    for note in candidates:
        if exclude_id is not None and note.id == exclude_id:
            continue
        vector = _as_vector(note.embedding)
        if vector is None or vector.shape != query.shape:
            continue
        if np.linalg.norm(vector) == 0:
            continue
        usable.append(note)
        vectors.append(vector)

    if not usable:
        return []

    matrix = np.vstack(vectors)
    similarities = (matrix @ query) / (np.linalg.norm(matrix, axis=1) * query_norm)

    scored = [
        (float(similarity), note)
        for similarity, note in zip(similarities, usable)
        if min_similarity is None or similarity >= min_similarity
    ]
    scored.sort(
        key=lambda pair: (
            -pair[0],
            -_as_utc(pair[1].updated_at).timestamp(),
            str(pair[1].id),
        )
    )

    return [
        RelatedNote(
            id=note.id,
            title=note.title,
            tags=note.tags,
            updated_at=note.updated_at,
            similarity=similarity,
        )
        for similarity, note in scored[:k]
    ]


class RetrievalService:
    """
    Related-note lookup and free-text semantic search for one store handle.

    The enrichment client is only needed by search(), which has to embed the
    query text first.
    """

    def __init__(
        self,
        store: NoteStore,
        client: Optional[EnrichmentClient] = None,
        similarity_threshold: Optional[float] = None,
    ):
        self.store = store
        self.client = client
        self.similarity_threshold = (
            settings.similarity_threshold if similarity_threshold is None else similarity_threshold
        )

    @staticmethod
    def _resolve_top_n(top_n: Optional[int]) -> int:
        top_n = settings.related_notes_count if top_n is None else top_n
        if top_n < 1:
            raise InvalidRequestError(message="top_n must be at least 1", field="top_n")
        return top_n

    async def find_related(
        self,
        note_id: UUID,
        owner_subject: str,
        top_n: Optional[int] = None,
    ) -> List[RelatedNote]:
        """
        The owner's notes most similar to note_id.

        Returns [] when the note has no embedding yet.

        Raises:
            NotFoundError: No such note for this owner.
            InvalidRequestError: top_n below 1.
        """
        top_n = self._resolve_top_n(top_n)
        note = await self.store.get(note_id, owner_subject)
        if note is None:
            raise NotFoundError(resource="Note", resource_id=str(note_id))
        if not note.embedding:
            logger.debug("Note %s has no embedding; no related notes", note_id)
            return []

        candidates = await self.store.query_embedded(owner_subject)
        related = rank_by_similarity(
            note.embedding,
            candidates,
            top_n,
            exclude_id=note.id,
            min_similarity=self.similarity_threshold,
        )
        logger.info(
            "Found %d related note(s) for note %s out of %d candidate(s)",
            len(related),
            note_id,
            len(candidates),
        )
        return related

    async def search(
        self,
        owner_subject: str,
        query_text: str,
        top_n: Optional[int] = None,
    ) -> List[RelatedNote]:
        """
        The owner's notes most similar to free text.

        Raises:
            InvalidRequestError: Blank owner, blank query or top_n below 1.
            EnrichmentError: The query text could not be embedded.
        """
        if not owner_subject or not owner_subject.strip():
            raise InvalidRequestError(
                message="owner_subject must not be empty", field="owner_subject"
            )
        if not query_text or not query_text.strip():
            raise InvalidRequestError(message="Search query must not be empty", field="q")
        top_n = self._resolve_top_n(top_n)
        if self.client is None:
            raise ValueError("RetrievalService.search() requires an enrichment client")

        query_vector = await self.client.generate_embedding("", query_text)
        candidates = await self.store.query_embedded(owner_subject)
        results = rank_by_similarity(
            query_vector,
            candidates,
            top_n,
            min_similarity=self.similarity_threshold,
        )
        logger.info(
            "Semantic search for owner %s returned %d of %d candidate(s)",
            owner_subject,
            len(results),
            len(candidates),
        )
        return results
