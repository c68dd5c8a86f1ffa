# Storage package init
"""
AINotes Backend — Storage Layer
=================================

What:  Repository access to persisted notes.
Why:   The backfill coordinator and retrieval service depend on a narrow
       interface (filtered reads plus commit), not on SQLAlchemy queries.

Inventory:
    - NoteStore: owner-scoped note queries and checkpoint commits over one
      AsyncSession handle
"""
