"""
AINotes Backend — Notes Route Handlers
========================================

What:  Backfill commands and semantic retrieval over HTTP.
How:   Each handler builds a service around the request's session and the
       process-wide enrichment client, then returns its result unchanged.
       Errors raised by the services are mapped by the handlers in main.py.

Endpoints:
    POST /api/notes/backfill/tags          BackfillRequest → BackfillResult
    POST /api/notes/backfill/embeddings    BackfillRequest → BackfillResult
    GET  /api/notes/search/semantic        free-text search over one owner's notes
    GET  /api/notes/{note_id}/related      nearest neighbours of one note

Backfill requests run to completion inside the request; large owners are
better served by the CLI (ainotes backfill-tags).
"""

import logging
from typing import Optional
from uuid import UUID

from fastapi import APIRouter, Depends, Query
from sqlalchemy.ext.asyncio import AsyncSession

from ainotes.database import get_db_session
from ainotes.schemas.backfill import BackfillRequest, BackfillResult
from ainotes.schemas.note import ErrorResponse, RelatedNotesResponse
from ainotes.services.backfill_service import create_backfill_coordinator
from ainotes.services.enrichment_base import EnrichmentClient
from ainotes.services.gemini_service import get_enrichment_client
from ainotes.services.retrieval_service import RetrievalService
from ainotes.storage.note_store import NoteStore

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/api/notes", tags=["Notes"])


# ── Backfill Commands ─────────────────────────────────────────────────────

@router.post(
    "/backfill/tags",
    response_model=BackfillResult,
    responses={
        400: {"description": "Blank owner subject", "model": ErrorResponse},
        500: {"description": "Progress could not be committed", "model": ErrorResponse},
    },
    summary="Generate AI tags for an owner's notes",
)
async def backfill_tags(
    request: BackfillRequest,
    db: AsyncSession = Depends(get_db_session),
    client: EnrichmentClient = Depends(get_enrichment_client),
) -> BackfillResult:
    """
    Per-note enrichment failures are reported in `errors` with a 200 status;
    only a failed commit turns the whole request into an error.
    """
    coordinator = create_backfill_coordinator(db, client)
    return await coordinator.backfill_tags(request)


@router.post(
    "/backfill/embeddings",
    response_model=BackfillResult,
    responses={
        400: {"description": "Blank owner subject", "model": ErrorResponse},
        500: {"description": "Progress could not be committed", "model": ErrorResponse},
    },
    summary="Generate embeddings for an owner's notes",
)
async def backfill_embeddings(
    request: BackfillRequest,
    db: AsyncSession = Depends(get_db_session),
    client: EnrichmentClient = Depends(get_enrichment_client),
) -> BackfillResult:
    coordinator = create_backfill_coordinator(db, client)
    return await coordinator.backfill_embeddings(request)


# ── Semantic Retrieval ────────────────────────────────────────────────────

@router.get(
    "/search/semantic",
    response_model=RelatedNotesResponse,
    responses={
        400: {"description": "Blank owner or query", "model": ErrorResponse},
        503: {"description": "Query text could not be embedded", "model": ErrorResponse},
    },
    summary="Find an owner's notes matching free text",
)
async def semantic_search(
    owner_subject: str = Query(..., description="Owner whose notes are searched"),
    q: str = Query(..., description="Free-text query"),
    top_n: Optional[int] = Query(default=None, le=50, description="Maximum results"),
    db: AsyncSession = Depends(get_db_session),
    client: EnrichmentClient = Depends(get_enrichment_client),
) -> RelatedNotesResponse:
    service = RetrievalService(NoteStore(db), client=client)
    notes = await service.search(owner_subject, q, top_n)
    return RelatedNotesResponse(notes=notes)


@router.get(
    "/{note_id}/related",
    response_model=RelatedNotesResponse,
    responses={
        404: {"description": "Note not found for this owner", "model": ErrorResponse},
    },
    summary="Find notes related to a note",
)
async def related_notes(
    note_id: UUID,
    owner_subject: str = Query(..., description="Owner of the note"),
    top_n: Optional[int] = Query(default=None, le=50, description="Maximum results"),
    db: AsyncSession = Depends(get_db_session),
) -> RelatedNotesResponse:
    """
    Notes are compared by their stored embeddings only; a note that has not
    been through an embedding backfill yet has no related notes.
    """
    service = RetrievalService(NoteStore(db))
    notes = await service.find_related(note_id, owner_subject, top_n)
    return RelatedNotesResponse(notes=notes)
