"""
AINotes Backend — Application Package Initializer
===================================================

What: AI enrichment for personal notes. Backfills AI tags and embeddings for
      one owner's notes, and ranks an owner's notes by semantic similarity.

Architecture Note:

    ┌─────────────────────────────────────┐
    │   Routes (HTTP)   │   CLI (typer)   │  ← entry points, no logic
    ├─────────────────────────────────────┤
    │         Services (Business Logic)   │  ← backfill loop, ranking, Gemini
    ├─────────────────────────────────────┤
    │         Storage (NoteStore)         │  ← owner-scoped reads, commits
    ├─────────────────────────────────────┤
    │       Models & Schemas (Data)       │  ← SQLAlchemy ORM + Pydantic
    ├─────────────────────────────────────┤
    │        Database (Persistence)       │  ← Async SQLAlchemy sessions
    └─────────────────────────────────────┘
"""

__version__ = "1.0.0"
