"""
AINotes Backend — Test Configuration (conftest.py)
====================================================

What:  Shared pytest fixtures for the entire test suite.
How:   pytest auto-discovers conftest.py and makes fixtures available to all tests.

Fixture Hierarchy:
    Function-scoped (created fresh for each test):
    ├── db_engine / session_factory / db_session: SQLite file database per test
    ├── seed: persists Note objects through a separate session
    ├── load_note: reads a note back through a fresh session
    ├── note_factory: builds detached Note objects with ordered timestamps
    ├── fake_store: in-memory NoteStore stand-in that records commits
    ├── fake_client: scripted EnrichmentClient (no network)
    └── test_client: HTTPX AsyncClient bound to the FastAPI app
"""

import asyncio
import os
from datetime import datetime, timedelta, timezone
from typing import Dict, List, Optional, Union
from uuid import UUID, uuid4

# Override settings for testing BEFORE any ainotes imports
os.environ["DATABASE_URL"] = "sqlite+aiosqlite:///:memory:"
os.environ["GEMINI_API_KEY"] = "test-key-not-real"
os.environ["LOG_LEVEL"] = "WARNING"

import pytest
import pytest_asyncio
from httpx import ASGITransport, AsyncClient
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker, create_async_engine

from ainotes.database import Base
from ainotes.exceptions import EnrichmentError, PersistenceError
from ainotes.models.note import Note
from ainotes.services.enrichment_base import EnrichmentClient

OWNER = "auth0|owner-a"
OTHER_OWNER = "auth0|owner-b"
BASE_TIME = datetime(2026, 1, 1, 9, 0, tzinfo=timezone.utc)


# ══════════════════════════════════════════════════════════════════════════
# Test Doubles
# ══════════════════════════════════════════════════════════════════════════

Failure = Union[str, Exception]


class FakeEnrichmentClient(EnrichmentClient):
    """
    Scripted enrichment client.

    Args:
        failures: title -> failure script. A str or exception fails every
            call for that title; a list is consumed one entry per call and
            the title succeeds once it is empty.
        vectors: title -> embedding returned for that title.
        block_titles: calls for these titles never return until cancelled;
            `blocked` is set when one starts.
        on_call: invoked with the title before each call completes.
    """

    def __init__(
        self,
        failures: Optional[Dict[str, Union[Failure, List[Failure]]]] = None,
        vectors: Optional[Dict[str, List[float]]] = None,
        block_titles: Optional[set] = None,
        on_call=None,
    ):
        self.failures = failures or {}
        self.vectors = vectors or {}
        self.block_titles = block_titles or set()
        self.on_call = on_call
        self.calls: List[tuple] = []
        self.blocked = asyncio.Event()
        self.healthy = True

    async def _enter(self, kind: str, title: str) -> None:
        self.calls.append((kind, title))
        if self.on_call is not None:
            self.on_call(title)
        if title in self.block_titles:
            self.blocked.set()
            await asyncio.Event().wait()

        script = self.failures.get(title)
        if isinstance(script, list):
            if not script:
                return
            script = script.pop(0)
        if script is None:
            return
        if isinstance(script, Exception):
            raise script
        raise EnrichmentError(message=script)

    async def generate_tags(self, title: str, content: str) -> str:
        await self._enter("tags", title)
        return f"{title.lower()}, notes"

    async def generate_embedding(self, title: str, content: str) -> List[float]:
        await self._enter("embedding", title)
        return self.vectors.get(title, [1.0, 0.0, 0.0])

    async def health_check(self) -> bool:
        return self.healthy


class FakeNoteStore:
    """
    In-memory NoteStore stand-in.

    Each commit snapshots every note's tags and embedding into `durable` and
    appends the number of notes mutated since the previous commit to
    `commit_sizes`. Commit numbers listed in fail_commits raise
    PersistenceError without snapshotting.
    """

    def __init__(self, notes: List[Note], fail_commits: Optional[set] = None):
        self.notes = list(notes)
        self.fail_commits = fail_commits or set()
        self.commit_count = 0
        self.commit_sizes: List[int] = []
        self.durable: Dict[UUID, tuple] = {n.id: (n.tags, n.embedding) for n in self.notes}
        self.query_calls = 0

    def _owned(self, owner_subject: str) -> List[Note]:
        owned = [n for n in self.notes if n.owner_subject == owner_subject]
        return sorted(owned, key=lambda n: (n.created_at, str(n.id)))

    async def query(self, owner_subject: str, only_missing_tags: bool) -> List[Note]:
        self.query_calls += 1
        notes = self._owned(owner_subject)
        if only_missing_tags:
            notes = [n for n in notes if not n.tags]
        return notes

    async def query_missing_embeddings(self, owner_subject: str, only_missing: bool) -> List[Note]:
        self.query_calls += 1
        notes = self._owned(owner_subject)
        if only_missing:
            notes = [n for n in notes if n.embedding is None]
        return notes

    async def query_embedded(self, owner_subject: str) -> List[Note]:
        return [n for n in self._owned(owner_subject) if n.embedding is not None]

    async def get(self, note_id: UUID, owner_subject: str) -> Optional[Note]:
        for note in self.notes:
            if note.id == note_id and note.owner_subject == owner_subject:
                return note
        return None

    async def commit(self) -> None:
        self.commit_count += 1
        if self.commit_count in self.fail_commits:
            raise PersistenceError(message="Could not save note changes.")
        changed = sum(
            1 for n in self.notes if self.durable.get(n.id) != (n.tags, n.embedding)
        )
        self.commit_sizes.append(changed)
        self.durable = {n.id: (n.tags, n.embedding) for n in self.notes}


# ══════════════════════════════════════════════════════════════════════════
# Function-Scoped Fixtures (created fresh for each test)
# ══════════════════════════════════════════════════════════════════════════

@pytest.fixture
def note_factory():
    """
    Builds detached Note objects.

    `minutes` offsets created_at/updated_at from BASE_TIME so candidate order
    is deterministic.
    """

    def _build(
        title: str,
        owner: str = OWNER,
        content: Optional[str] = None,
        tags: Optional[str] = None,
        embedding: Optional[List[float]] = None,
        minutes: int = 0,
        updated_minutes: Optional[int] = None,
    ) -> Note:
        created = BASE_TIME + timedelta(minutes=minutes)
        updated = BASE_TIME + timedelta(
            minutes=minutes if updated_minutes is None else updated_minutes
        )
        return Note(
            id=uuid4(),
            owner_subject=owner,
            title=title,
            content=content if content is not None else f"Content of {title}",
            tags=tags,
            embedding=embedding,
            created_at=created,
            updated_at=updated,
        )

    return _build


@pytest.fixture
def fake_client():
    return FakeEnrichmentClient()


@pytest_asyncio.fixture
async def db_engine(tmp_path):
    """A fresh SQLite database file with the notes table created."""
    engine = create_async_engine(f"sqlite+aiosqlite:///{tmp_path / 'notes.db'}")
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)
    yield engine
    await engine.dispose()


@pytest.fixture
def session_factory(db_engine):
    return async_sessionmaker(db_engine, class_=AsyncSession, expire_on_commit=False)


@pytest_asyncio.fixture
async def db_session(session_factory):
    async with session_factory() as session:
        yield session


@pytest.fixture
def seed(session_factory):
    """Persists notes through their own session and returns them."""

    async def _seed(*notes: Note) -> List[Note]:
        async with session_factory() as session:
            session.add_all(notes)
            await session.commit()
        return list(notes)

    return _seed


@pytest.fixture
def load_note(session_factory):
    """Reads the committed state of a note through a fresh session."""

    async def _load(note_id: UUID) -> Optional[Note]:
        async with session_factory() as session:
            return await session.get(Note, note_id)

    return _load


@pytest_asyncio.fixture
async def test_client(session_factory, fake_client):
    """
    HTTPX AsyncClient talking to the FastAPI app.

    The database session and enrichment client dependencies are overridden
    with the per-test SQLite database and the fake client.
    """
    from ainotes.database import get_db_session
    from ainotes.main import app
    from ainotes.services.gemini_service import get_enrichment_client

    async def _session():
        async with session_factory() as session:
            yield session
            await session.commit()

    app.dependency_overrides[get_db_session] = _session
    app.dependency_overrides[get_enrichment_client] = lambda: fake_client
    transport = ASGITransport(app=app)
    try:
        async with AsyncClient(transport=transport, base_url="http://test") as client:
            yield client
    finally:
        app.dependency_overrides.clear()
