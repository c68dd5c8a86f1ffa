"""
AINotes Backend — Custom Exception Hierarchy
==============================================

What:  Application-specific exceptions for the backfill and retrieval paths.
Why:   Each error kind has its own recovery policy. The backfill coordinator
       recovers from EnrichmentError per note, while PersistenceError and
       InvalidRequestError propagate to the caller. Global HTTP handlers
       (registered in main.py) map each type to a status code.
How:   Each exception class carries a message and optional context dict.

Exception Hierarchy:
    AINotesError (base)
    ├── InvalidRequestError          → 400 Bad Request (rejected before store access)
    ├── NotFoundError                → 404 Not Found
    ├── EnrichmentError              → recorded per note; 503 if it escapes
    │   └── CircuitBreakerOpenError  → 503 Service Unavailable (circuit open)
    └── PersistenceError             → 500 Internal Server Error (aborts a run)
"""

from typing import Any, Dict, Optional


class AINotesError(Exception):
    """
    Base exception for all AINotes application errors.

    Attributes:
        message:  Human-readable error description (safe to return in API response)
        context:  Additional debug info (logged but NOT returned to client)
    """

    def __init__(
        self,
        message: str = "An unexpected error occurred",
        context: Optional[Dict[str, Any]] = None,
    ):
        self.message = message
        self.context = context or {}
        super().__init__(self.message)


class InvalidRequestError(AINotesError):
    """
    Raised when a command or query is malformed.

    When:    Empty owner subject on a backfill request, non-positive top_n.
    HTTP:    400 Bad Request
    """

    def __init__(
        self,
        message: str = "Invalid request",
        field: Optional[str] = None,
        context: Optional[Dict[str, Any]] = None,
    ):
        ctx = context or {}
        if field:
            ctx["field"] = field
        super().__init__(message=message, context=ctx)
        self.field = field


class NotFoundError(AINotesError):
    """
    Raised when a requested note does not exist for the given owner.

    A note owned by someone else is reported exactly like a missing one.
    HTTP:    404 Not Found
    """

    def __init__(
        self,
        resource: str = "resource",
        resource_id: Optional[str] = None,
        context: Optional[Dict[str, Any]] = None,
    ):
        message = f"The requested {resource} was not found"
        if resource_id:
            message = f"{resource} with ID '{resource_id}' was not found"
        ctx = context or {}
        ctx["resource"] = resource
        if resource_id:
            ctx["resource_id"] = resource_id
        super().__init__(message=message, context=ctx)


class EnrichmentError(AINotesError):
    """
    Raised when the upstream AI service cannot produce a tag string or embedding.

    What:    Timeout, malformed/empty response, or service unavailable.
    Message: The bare cause ("timeout", "empty tag response", ...). The backfill
             coordinator embeds it verbatim in its per-note error messages.
    HTTP:    503 Service Unavailable when it reaches a route handler.
    """

    def __init__(
        self,
        message: str = "AI enrichment service is temporarily unavailable",
        retry_after: Optional[int] = None,
        context: Optional[Dict[str, Any]] = None,
    ):
        ctx = context or {}
        if retry_after:
            ctx["retry_after"] = retry_after
        super().__init__(message=message, context=ctx)
        self.retry_after = retry_after


class CircuitBreakerOpenError(EnrichmentError):
    """
    Raised when the Gemini circuit breaker is OPEN.

    How circuit breaker works:
        CLOSED (normal) → failures increment counter
        → After N failures → OPEN (reject all calls for the recovery timeout)
        → After the timeout → HALF-OPEN (allow one test call)
        → If test succeeds → CLOSED
        → If test fails → OPEN again

    Subclasses EnrichmentError so a backfill run records it against the note
    and moves on. The coordinator does not retry it.
    """

    def __init__(
        self,
        recovery_time: int = 60,
        context: Optional[Dict[str, Any]] = None,
    ):
        message = (
            f"AI service is temporarily unavailable due to repeated failures; "
            f"retrying in approximately {recovery_time} seconds"
        )
        ctx = context or {}
        ctx["recovery_time"] = recovery_time
        super().__init__(message=message, retry_after=recovery_time, context=ctx)
        self.recovery_time = recovery_time


class PersistenceError(AINotesError):
    """
    Raised when the note store cannot commit.

    What:    Constraint violation, connectivity loss, deadlock during commit.
    Effect:  Not recovered locally. A backfill run aborts and any notes
             enriched since the last successful commit are lost from durable
             storage, although they remain mutated in memory.
    HTTP:    500 Internal Server Error (details logged, never returned).
    """

    def __init__(
        self,
        message: str = "A database error occurred. Please try again later.",
        context: Optional[Dict[str, Any]] = None,
    ):
        super().__init__(message=message, context=context)
