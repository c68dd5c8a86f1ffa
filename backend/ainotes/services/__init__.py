# Services package init
"""
AINotes Backend — Services Layer
==================================

What:  Business logic between the entry points (HTTP routes, CLI) and storage.
How:   Services receive their collaborators (NoteStore, EnrichmentClient) at
       construction. Nothing here looks up a client or session globally.

Service Inventory:
    - EnrichmentClient (abstract): contract for tag and embedding providers
    - GeminiEnrichmentClient: Google Gemini implementation with circuit breaker
    - BackfillCoordinator: tag/embedding backfill runs with checkpoint commits
    - RetrievalService: related notes and semantic search by cosine similarity
"""
