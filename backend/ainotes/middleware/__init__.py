"""
AINotes Backend — Middleware Package
======================================

Middleware Chain:
    Request → [Request ID] → [Logging] → [CORS] → Route Handler

    Request ID runs first so the access log line and every log record
    written while handling the request carry the same correlation ID.
    Responses pass back through the chain in reverse.
"""
