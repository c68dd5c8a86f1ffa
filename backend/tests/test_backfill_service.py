"""
AINotes Backend — Backfill Coordinator Tests
==============================================

What we test:
    ✅ Checkpoint commits every N successes plus a final commit
    ✅ Per-note failures (enrichment or unexpected) are recorded, not raised
    ✅ A failed commit aborts the run; earlier checkpoints stay durable
    ✅ only_missing selection, owner isolation, overwrite mode
    ✅ Retries (tenacity) for EnrichmentError, none for an open circuit
    ✅ Cancellation between notes and during an in-flight call
    ✅ Embedding backfill
    ✅ Restarted runs converge against a real SQLite database
"""

import asyncio
import warnings

import pytest
from tenacity import wait_none

from ainotes.exceptions import (
    CircuitBreakerOpenError,
    InvalidRequestError,
    PersistenceError,
)
from ainotes.models.note import Note
from ainotes.schemas.backfill import BackfillRequest
from ainotes.services.backfill_service import BackfillCoordinator
from ainotes.storage.note_store import NoteStore

from conftest import BASE_TIME, OTHER_OWNER, OWNER, FakeEnrichmentClient, FakeNoteStore


def _request(only_missing: bool = True, owner: str = OWNER) -> BackfillRequest:
    return BackfillRequest(owner_subject=owner, only_missing=only_missing)


class TestBackfillTags:
    """Tag backfill over the in-memory store."""

    def setup_method(self):
        self.client = FakeEnrichmentClient()

    def _untagged(self, note_factory, *titles):
        return [note_factory(title, minutes=i) for i, title in enumerate(titles)]

    @pytest.mark.asyncio
    async def test_all_notes_succeed_commits_at_checkpoints(self, note_factory):
        notes = self._untagged(note_factory, "A", "B", "C", "D", "E", "F", "G")
        store = FakeNoteStore(notes)
        coordinator = BackfillCoordinator(store, self.client, checkpoint_interval=5)

        result = await coordinator.backfill_tags(_request())

        assert result.processed_count == 7
        assert result.total_notes == 7
        assert result.errors == []
        assert result.cancelled is False
        # Checkpoint after the 5th success, final commit covers the last 2
        assert store.commit_sizes == [5, 2]
        assert all(note.tags for note in notes)

    @pytest.mark.asyncio
    async def test_one_failure_is_recorded_and_run_continues(self, note_factory):
        notes = self._untagged(note_factory, "A", "B", "C")
        store = FakeNoteStore(notes)
        client = FakeEnrichmentClient(failures={"B": "timeout"})
        coordinator = BackfillCoordinator(store, client)

        result = await coordinator.backfill_tags(_request())

        assert result.processed_count == 2
        assert result.total_notes == 3
        assert result.errors == ["Failed to generate tags for note 'B': timeout"]
        assert notes[0].tags == "a, notes"
        assert notes[1].tags is None
        assert notes[2].tags == "c, notes"

    @pytest.mark.asyncio
    async def test_every_candidate_is_processed_or_reported_once(self, note_factory):
        notes = self._untagged(note_factory, "A", "B", "C", "D", "E", "F")
        client = FakeEnrichmentClient(
            failures={"B": "timeout", "E": "empty tag response"}
        )
        coordinator = BackfillCoordinator(FakeNoteStore(notes), client, checkpoint_interval=2)

        result = await coordinator.backfill_tags(_request())

        assert result.processed_count + len(result.errors) == result.total_notes
        assert result.errors == [
            "Failed to generate tags for note 'B': timeout",
            "Failed to generate tags for note 'E': empty tag response",
        ]

    @pytest.mark.asyncio
    async def test_overwrite_mode_retags_every_note(self, note_factory):
        notes = [
            note_factory("A", tags="old", minutes=0),
            note_factory("B", tags="stale, tags", minutes=1),
            note_factory("C", tags="x", minutes=2),
        ]
        coordinator = BackfillCoordinator(FakeNoteStore(notes), self.client)

        result = await coordinator.backfill_tags(_request(only_missing=False))

        assert result.processed_count == result.total_notes == 3
        assert [n.tags for n in notes] == ["a, notes", "b, notes", "c, notes"]

    @pytest.mark.asyncio
    async def test_failed_final_commit_keeps_earlier_checkpoint(self, note_factory):
        notes = self._untagged(note_factory, "A", "B", "C", "D", "E", "F")
        store = FakeNoteStore(notes, fail_commits={2})
        coordinator = BackfillCoordinator(store, self.client, checkpoint_interval=5)

        with pytest.raises(PersistenceError):
            await coordinator.backfill_tags(_request())

        durable_tags = [store.durable[n.id][0] for n in notes]
        assert durable_tags[:5] == ["a, notes", "b, notes", "c, notes", "d, notes", "e, notes"]
        assert durable_tags[5] is None

    @pytest.mark.asyncio
    async def test_failed_checkpoint_stops_processing(self, note_factory):
        notes = self._untagged(note_factory, "A", "B", "C", "D")
        store = FakeNoteStore(notes, fail_commits={1})
        coordinator = BackfillCoordinator(store, self.client, checkpoint_interval=2)

        with pytest.raises(PersistenceError):
            await coordinator.backfill_tags(_request())

        assert [title for _, title in self.client.calls] == ["A", "B"]

    @pytest.mark.asyncio
    @pytest.mark.parametrize("owner", ["", "   "])
    async def test_blank_owner_rejected_before_store_access(self, note_factory, owner):
        store = FakeNoteStore(self._untagged(note_factory, "A"))
        coordinator = BackfillCoordinator(store, self.client)

        with pytest.raises(InvalidRequestError):
            await coordinator.backfill_tags(_request(owner=owner))

        assert store.query_calls == 0
        assert store.commit_count == 0

    @pytest.mark.asyncio
    async def test_only_missing_skips_tagged_notes(self, note_factory):
        notes = [
            note_factory("A", tags="kept", minutes=0),
            note_factory("B", tags="", minutes=1),
            note_factory("C", minutes=2),
        ]
        coordinator = BackfillCoordinator(FakeNoteStore(notes), self.client)

        result = await coordinator.backfill_tags(_request())

        assert result.total_notes == 2
        assert notes[0].tags == "kept"
        assert [title for _, title in self.client.calls] == ["B", "C"]

    @pytest.mark.asyncio
    async def test_other_owners_notes_are_untouched(self, note_factory):
        mine = note_factory("Mine")
        theirs = note_factory("Theirs", owner=OTHER_OWNER)
        coordinator = BackfillCoordinator(FakeNoteStore([mine, theirs]), self.client)

        result = await coordinator.backfill_tags(_request())

        assert result.total_notes == 1
        assert mine.tags == "mine, notes"
        assert theirs.tags is None

    @pytest.mark.asyncio
    async def test_no_candidates_still_commits_once(self):
        store = FakeNoteStore([])
        coordinator = BackfillCoordinator(store, self.client)

        result = await coordinator.backfill_tags(_request())

        assert (result.processed_count, result.total_notes, result.errors) == (0, 0, [])
        assert store.commit_count == 1

    @pytest.mark.asyncio
    async def test_checkpoint_interval_of_one_commits_every_success(self, note_factory):
        store = FakeNoteStore(self._untagged(note_factory, "A", "B", "C"))
        coordinator = BackfillCoordinator(store, self.client, checkpoint_interval=1)

        await coordinator.backfill_tags(_request())

        assert store.commit_sizes == [1, 1, 1, 0]

    @pytest.mark.asyncio
    async def test_successful_note_gets_new_updated_at(self, note_factory):
        note = note_factory("A")
        coordinator = BackfillCoordinator(FakeNoteStore([note]), self.client)

        await coordinator.backfill_tags(_request())

        assert note.updated_at > BASE_TIME
        assert note.updated_at >= note.created_at

    @pytest.mark.asyncio
    async def test_tag_refresh_leaves_embedding_alone(self, note_factory):
        note = note_factory("A", tags="old", embedding=[0.5, 0.5, 0.0])
        coordinator = BackfillCoordinator(FakeNoteStore([note]), self.client)

        await coordinator.backfill_tags(_request(only_missing=False))

        assert note.tags == "a, notes"
        assert note.embedding == [0.5, 0.5, 0.0]

    @pytest.mark.asyncio
    async def test_unexpected_client_error_is_recorded_and_committed(self, note_factory):
        notes = self._untagged(note_factory, "A", "B", "C", "D")
        store = FakeNoteStore(notes)
        client = FakeEnrichmentClient(failures={"C": RuntimeError("boom")})
        coordinator = BackfillCoordinator(store, client, checkpoint_interval=5)

        result = await coordinator.backfill_tags(_request())

        assert result.processed_count == 3
        assert result.total_notes == 4
        assert result.errors == ["Failed to generate tags for note 'C': boom"]
        assert store.commit_sizes == [3]
        assert store.durable[notes[0].id] == ("a, notes", None)
        assert store.durable[notes[2].id] == (None, None)
        assert store.durable[notes[3].id] == ("d, notes", None)

    def test_checkpoint_interval_must_be_positive(self):
        with pytest.raises(ValueError):
            BackfillCoordinator(FakeNoteStore([]), self.client, checkpoint_interval=0)


class TestBackfillRetries:
    """Per-note retry policy."""

    @pytest.mark.asyncio
    async def test_transient_failure_is_retried(self, note_factory):
        notes = [note_factory("A", minutes=0), note_factory("B", minutes=1)]
        client = FakeEnrichmentClient(failures={"B": ["timeout", "timeout"]})
        coordinator = BackfillCoordinator(
            FakeNoteStore(notes), client, max_attempts=3, retry_wait=wait_none()
        )

        result = await coordinator.backfill_tags(_request())

        assert result.processed_count == 2
        assert result.errors == []
        assert client.calls.count(("tags", "B")) == 3

    @pytest.mark.asyncio
    async def test_exhausted_retries_report_last_cause(self, note_factory):
        client = FakeEnrichmentClient(failures={"A": ["timeout", "empty tag response"]})
        coordinator = BackfillCoordinator(
            FakeNoteStore([note_factory("A")]), client, max_attempts=2, retry_wait=wait_none()
        )

        result = await coordinator.backfill_tags(_request())

        assert result.processed_count == 0
        assert result.errors == ["Failed to generate tags for note 'A': empty tag response"]

    @pytest.mark.asyncio
    async def test_open_circuit_is_not_retried(self, note_factory):
        client = FakeEnrichmentClient(failures={"A": CircuitBreakerOpenError(recovery_time=30)})
        coordinator = BackfillCoordinator(
            FakeNoteStore([note_factory("A")]), client, max_attempts=3, retry_wait=wait_none()
        )

        result = await coordinator.backfill_tags(_request())

        assert client.calls == [("tags", "A")]
        assert len(result.errors) == 1
        assert result.errors[0].startswith("Failed to generate tags for note 'A': AI service")

    @pytest.mark.asyncio
    async def test_default_is_a_single_attempt(self, note_factory):
        client = FakeEnrichmentClient(failures={"A": ["timeout"]})
        coordinator = BackfillCoordinator(FakeNoteStore([note_factory("A")]), client)

        result = await coordinator.backfill_tags(_request())

        assert client.calls == [("tags", "A")]
        assert result.errors == ["Failed to generate tags for note 'A': timeout"]

    @pytest.mark.asyncio
    async def test_unexpected_error_is_not_retried(self, note_factory):
        client = FakeEnrichmentClient(failures={"A": KeyError("embedding")})
        coordinator = BackfillCoordinator(
            FakeNoteStore([note_factory("A")]), client, max_attempts=3, retry_wait=wait_none()
        )

        result = await coordinator.backfill_tags(_request())

        assert client.calls == [("tags", "A")]
        assert result.errors == ["Failed to generate tags for note 'A': 'embedding'"]

    def test_default_wait_uses_current_tenacity_api(self):
        with warnings.catch_warnings():
            warnings.simplefilter("error", DeprecationWarning)
            coordinator = BackfillCoordinator(FakeNoteStore([]), FakeEnrichmentClient())

        assert coordinator.retry_wait is not None


class TestBackfillCancellation:
    """Cancellation through an asyncio.Event."""

    @pytest.mark.asyncio
    async def test_cancel_between_notes(self, note_factory):
        notes = [note_factory(t, minutes=i) for i, t in enumerate("ABC")]
        store = FakeNoteStore(notes)
        cancel_event = asyncio.Event()

        def cancel_after_a(title):
            if title == "A":
                cancel_event.set()

        client = FakeEnrichmentClient(on_call=cancel_after_a)
        coordinator = BackfillCoordinator(store, client)

        result = await coordinator.backfill_tags(_request(), cancel_event)

        assert result.cancelled is True
        assert result.processed_count == 1
        assert result.total_notes == 3
        assert client.calls == [("tags", "A")]
        assert store.durable[notes[0].id][0] == "a, notes"

    @pytest.mark.asyncio
    async def test_cancel_abandons_in_flight_call(self, note_factory):
        notes = [note_factory(t, minutes=i) for i, t in enumerate("ABC")]
        store = FakeNoteStore(notes)
        client = FakeEnrichmentClient(block_titles={"B"})
        cancel_event = asyncio.Event()
        coordinator = BackfillCoordinator(store, client)

        task = asyncio.create_task(coordinator.backfill_tags(_request(), cancel_event))
        await asyncio.wait_for(client.blocked.wait(), timeout=2)
        cancel_event.set()
        result = await asyncio.wait_for(task, timeout=2)

        assert result.cancelled is True
        assert result.processed_count == 1
        assert result.errors == []
        assert notes[1].tags is None
        assert notes[1].updated_at == BASE_TIME.replace(minute=1)
        assert ("tags", "C") not in client.calls
        assert store.durable[notes[0].id][0] == "a, notes"

    @pytest.mark.asyncio
    async def test_already_cancelled_run_processes_nothing(self, note_factory):
        store = FakeNoteStore([note_factory("A")])
        client = FakeEnrichmentClient()
        cancel_event = asyncio.Event()
        cancel_event.set()

        result = await BackfillCoordinator(store, client).backfill_tags(_request(), cancel_event)

        assert result.cancelled is True
        assert result.processed_count == 0
        assert result.total_notes == 1
        assert client.calls == []
        assert store.commit_count == 1


class TestBackfillEmbeddings:
    """Embedding backfill shares the loop with tag backfill."""

    @pytest.mark.asyncio
    async def test_embeddings_generated_for_missing_notes(self, note_factory):
        notes = [
            note_factory("A", minutes=0),
            note_factory("B", embedding=[0.0, 1.0, 0.0], minutes=1),
        ]
        client = FakeEnrichmentClient(vectors={"A": [0.1, 0.2, 0.3]})
        coordinator = BackfillCoordinator(FakeNoteStore(notes), client)

        result = await coordinator.backfill_embeddings(_request())

        assert result.processed_count == result.total_notes == 1
        assert notes[0].embedding == [0.1, 0.2, 0.3]
        assert notes[0].tags is None
        assert notes[1].embedding == [0.0, 1.0, 0.0]

    @pytest.mark.asyncio
    async def test_embedding_failure_message(self, note_factory):
        client = FakeEnrichmentClient(
            failures={"B": "malformed response: no embedding returned"}
        )
        notes = [note_factory("A", minutes=0), note_factory("B", minutes=1)]
        coordinator = BackfillCoordinator(FakeNoteStore(notes), client)

        result = await coordinator.backfill_embeddings(_request())

        assert result.errors == [
            "Failed to generate embedding for note 'B': malformed response: no embedding returned"
        ]
        assert notes[1].embedding is None

    @pytest.mark.asyncio
    async def test_blank_owner_rejected(self):
        store = FakeNoteStore([])
        coordinator = BackfillCoordinator(store, FakeEnrichmentClient())

        with pytest.raises(InvalidRequestError):
            await coordinator.backfill_embeddings(_request(owner=" "))
        assert store.query_calls == 0


class TestBackfillAgainstDatabase:
    """Full runs through NoteStore on SQLite."""

    @pytest.mark.asyncio
    async def test_second_run_only_sees_previous_failures(
        self, db_session, seed, load_note, note_factory
    ):
        notes = await seed(*[note_factory(t, minutes=i) for i, t in enumerate("ABC")])
        client = FakeEnrichmentClient(failures={"B": ["timeout"]})
        coordinator = BackfillCoordinator(NoteStore(db_session), client)

        first = await coordinator.backfill_tags(_request())
        second = await coordinator.backfill_tags(_request())

        assert (first.processed_count, first.total_notes) == (2, 3)
        assert (second.processed_count, second.total_notes) == (1, 1)
        for note in notes:
            stored = await load_note(note.id)
            assert stored.tags == f"{note.title.lower()}, notes"

    @pytest.mark.asyncio
    async def test_failed_final_commit_loses_only_uncommitted_note(
        self, db_session, seed, load_note, note_factory
    ):
        notes = await seed(*[note_factory(t, minutes=i) for i, t in enumerate("ABCDEF")])
        store = NoteStore(db_session)
        real_commit = store.commit
        commits = 0

        async def flaky_commit():
            nonlocal commits
            commits += 1
            if commits == 2:
                raise PersistenceError(message="Could not save note changes.")
            await real_commit()

        store.commit = flaky_commit
        coordinator = BackfillCoordinator(store, FakeEnrichmentClient(), checkpoint_interval=5)

        with pytest.raises(PersistenceError):
            await coordinator.backfill_tags(_request())

        stored = [await load_note(note.id) for note in notes]
        assert all(note.tags for note in stored[:5])
        assert stored[5].tags is None

    @pytest.mark.asyncio
    async def test_embedding_run_persists_vectors(self, db_session, seed, load_note, note_factory):
        (note,) = await seed(note_factory("A"))
        client = FakeEnrichmentClient(vectors={"A": [0.25, 0.5, 0.75]})

        result = await BackfillCoordinator(NoteStore(db_session), client).backfill_embeddings(
            _request()
        )

        stored = await load_note(note.id)
        assert result.processed_count == 1
        assert stored.embedding == [0.25, 0.5, 0.75]
        assert isinstance(stored, Note)
