"""
AINotes Backend — API Routes Package
======================================

Route Inventory:
    - notes.py:   POST /api/notes/backfill/tags
                  POST /api/notes/backfill/embeddings
                  GET  /api/notes/search/semantic
                  GET  /api/notes/{id}/related
    - health.py:  GET  /health

Routes stay thin: they parse the request, build a service around the
request's session and hand back its result. Business logic lives in services/.
"""
