"""
AINotes Backend — Backfill Coordinator
========================================

What:  Drives one tag (or embedding) backfill run for one owner to completion.
Why:   Enrichment calls are slow and fail independently. One bad note must
       not abort the batch, and an interrupted run must not lose more than a
       few notes' worth of work.
How:   Scan → enrich → checkpoint loop over a NoteStore, with the enrichment
       client injected at construction.

Run Flow:
    ┌──────────┐    ┌──────────────┐    ┌──────────────┐    ┌──────────────┐
    │  Query   │───▶│  Enrich note │───▶│ Mutate note  │───▶│ Commit every │
    │  (store) │    │  (client)    │    │ (in memory)  │    │ N successes  │
    └──────────┘    └──────────────┘    └──────────────┘    └──────────────┘
                           │ any error but cancellation
                           ▼
                    record message, skip note, continue

Failure Policy:
    EnrichmentError      → recorded per note, run continues
    Other exceptions     → recorded per note with traceback logged, run continues
    PersistenceError     → propagates, remaining notes are not processed
    InvalidRequestError  → raised before the store is touched

Checkpointing:
    A commit follows every `checkpoint_interval`-th success and once more
    after the loop. At most checkpoint_interval - 1 enriched notes are ever
    uncommitted. Rerunning with only_missing=True after a crash skips every
    committed note, so restarts converge.
"""

import asyncio
import logging
from typing import Any, Awaitable, Callable, List, Optional

from sqlalchemy.ext.asyncio import AsyncSession
from tenacity import (
    AsyncRetrying,
    before_sleep_log,
    retry_if_exception,
    stop_after_attempt,
    wait_exponential,
    wait_random,
)
from tenacity.wait import wait_base

from ainotes.config import settings
from ainotes.exceptions import (
    CircuitBreakerOpenError,
    EnrichmentError,
    InvalidRequestError,
)
from ainotes.models.note import Note, utc_now
from ainotes.schemas.backfill import BackfillRequest, BackfillResult
from ainotes.services.enrichment_base import EnrichmentClient
from ainotes.storage.note_store import NoteStore

logger = logging.getLogger(__name__)


class BackfillCancelled(Exception):
    """The run's cancel signal fired while an enrichment call was in flight."""


def _is_retryable(exc: BaseException) -> bool:
    # An open circuit will still be open a few seconds from now
    return isinstance(exc, EnrichmentError) and not isinstance(exc, CircuitBreakerOpenError)


class BackfillCoordinator:
    """
    Runs tag and embedding backfills against one NoteStore handle.

    Args:
        store: Note store handle owned by this run; not shared with another run.
        client: Enrichment client used for every note.
        checkpoint_interval: Successes between commits (>= 1).
        max_attempts: Enrichment attempts per note; 1 disables retries.
        retry_wait: Tenacity wait strategy between attempts. Defaults to
            exponential backoff with jitter from settings.
    """

    def __init__(
        self,
        store: NoteStore,
        client: EnrichmentClient,
        checkpoint_interval: int = 5,
        max_attempts: int = 1,
        retry_wait: Optional[wait_base] = None,
    ):
        if checkpoint_interval < 1:
            raise ValueError("checkpoint_interval must be at least 1")
        if max_attempts < 1:
            raise ValueError("max_attempts must be at least 1")
        self.store = store
        self.client = client
        self.checkpoint_interval = checkpoint_interval
        self.max_attempts = max_attempts
        # min(max_wait, min_wait * 2^attempt) + 0-1s of jitter
        self.retry_wait = retry_wait or (
            wait_exponential(multiplier=settings.retry_min_wait, max=settings.retry_max_wait)
            + wait_random(0, 1)
        )

    # ── Public commands ───────────────────────────────────────────────────

    async def backfill_tags(
        self,
        request: BackfillRequest,
        cancel_event: Optional[asyncio.Event] = None,
    ) -> BackfillResult:
        """
        Regenerate tags for the owner's notes.

        With only_missing=True the candidates are notes whose tags are NULL or
        empty; otherwise every note of the owner is reprocessed and its tags
        overwritten. Existing embeddings are left as they are.

        Raises:
            InvalidRequestError: Blank owner subject.
            PersistenceError: A checkpoint or the final commit failed.
        """
        self._validate(request)
        candidates = await self.store.query(request.owner_subject, request.only_missing)

        def apply(note: Note, tags: str) -> None:
            note.tags = tags

        return await self._run(
            request,
            candidates,
            label="tags",
            enrich=self.client.generate_tags,
            apply=apply,
            cancel_event=cancel_event,
        )

    async def backfill_embeddings(
        self,
        request: BackfillRequest,
        cancel_event: Optional[asyncio.Event] = None,
    ) -> BackfillResult:
        """
        Generate embeddings for the owner's notes (the producer side of
        semantic retrieval). Same loop, failure policy and checkpoints as
        backfill_tags(); only_missing selects notes with no embedding.
        """
        self._validate(request)
        candidates = await self.store.query_missing_embeddings(
            request.owner_subject, request.only_missing
        )

        def apply(note: Note, vector: List[float]) -> None:
            note.embedding = vector

        return await self._run(
            request,
            candidates,
            label="embedding",
            enrich=self.client.generate_embedding,
            apply=apply,
            cancel_event=cancel_event,
        )

    # ── Run loop ──────────────────────────────────────────────────────────

    @staticmethod
    def _validate(request: BackfillRequest) -> None:
        if not request.owner_subject or not request.owner_subject.strip():
            raise InvalidRequestError(
                message="owner_subject must not be empty",
                field="owner_subject",
            )

    async def _run(
        self,
        request: BackfillRequest,
        candidates: List[Note],
        label: str,
        enrich: Callable[[str, str], Awaitable[Any]],
        apply: Callable[[Note, Any], None],
        cancel_event: Optional[asyncio.Event],
    ) -> BackfillResult:
        total = len(candidates)
        processed = 0
        errors: List[str] = []
        cancelled = False

        logger.info(
            "Starting %s backfill for owner %s: %d candidate(s), only_missing=%s",
            label,
            request.owner_subject,
            total,
            request.only_missing,
        )

        for note in candidates:
            if cancel_event is not None and cancel_event.is_set():
                cancelled = True
                break

            try:
                value = await self._enrich_or_cancel(
                    lambda: self._enrich_with_retry(enrich, note), cancel_event
                )
            except BackfillCancelled:
                cancelled = True
                break
            except EnrichmentError as e:
                message = f"Failed to generate {label} for note '{note.title}': {e.message}"
                errors.append(message)
                logger.warning("%s (note %s)", message, note.id)
                continue
            except Exception as e:
                message = f"Failed to generate {label} for note '{note.title}': {e}"
                errors.append(message)
                logger.error("%s (note %s)", message, note.id, exc_info=True)
                continue

            apply(note, value)
            note.updated_at = utc_now()
            processed += 1

            if processed % self.checkpoint_interval == 0:
                await self.store.commit()
                logger.info(
                    "Checkpoint: committed %d/%d %s backfill(s) for owner %s",
                    processed,
                    total,
                    label,
                    request.owner_subject,
                )

        await self.store.commit()

        if cancelled:
            logger.warning(
                "%s backfill for owner %s cancelled after %d of %d note(s)",
                label.capitalize(),
                request.owner_subject,
                processed,
                total,
            )
        logger.info(
            "Finished %s backfill for owner %s: processed=%d total=%d errors=%d",
            label,
            request.owner_subject,
            processed,
            total,
            len(errors),
        )
        return BackfillResult(
            processed_count=processed,
            total_notes=total,
            errors=errors,
            cancelled=cancelled,
        )

    async def _enrich_with_retry(
        self,
        enrich: Callable[[str, str], Awaitable[Any]],
        note: Note,
    ) -> Any:
        retrying = AsyncRetrying(
            retry=retry_if_exception(_is_retryable),
            stop=stop_after_attempt(self.max_attempts),
            wait=self.retry_wait,
            before_sleep=before_sleep_log(logger, logging.WARNING),
            reraise=True,
        )
        return await retrying(enrich, note.title, note.content)

    @staticmethod
    async def _enrich_or_cancel(
        make_call: Callable[[], Awaitable[Any]],
        cancel_event: Optional[asyncio.Event],
    ) -> Any:
        """
        Await one enrichment, abandoning it if the cancel signal fires first.

        The note is only mutated after this returns, so an abandoned call
        leaves it exactly as it was.
        """
        if cancel_event is None:
            return await make_call()

        call = asyncio.ensure_future(make_call())
        stop = asyncio.ensure_future(cancel_event.wait())
        try:
            await asyncio.wait({call, stop}, return_when=asyncio.FIRST_COMPLETED)
        except asyncio.CancelledError:
            call.cancel()
            raise
        finally:
            stop.cancel()

        if not call.done():
            call.cancel()
            raise BackfillCancelled()
        return call.result()


def create_backfill_coordinator(
    session: AsyncSession,
    client: EnrichmentClient,
) -> BackfillCoordinator:
    """Coordinator over a fresh NoteStore, configured from settings."""
    return BackfillCoordinator(
        store=NoteStore(session),
        client=client,
        checkpoint_interval=settings.backfill_checkpoint_interval,
        max_attempts=settings.retry_max_attempts,
    )
