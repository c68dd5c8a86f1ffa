"""
AINotes Backend — Google Gemini Enrichment Client
===================================================

What:  Concrete EnrichmentClient using Google Gemini for tags and embeddings.
How:   Sends the note text with a tagging prompt to a Gemini generative model,
       and the same text to the Gemini embedding endpoint. Every call goes
       through a circuit breaker and a client-side timeout.
Who:   Created once per process (get_enrichment_client) and injected into the
       backfill coordinator and retrieval service.

Resilience Strategy:
    1. Circuit breaker to stop hammering Gemini while it is down
    2. asyncio.wait_for timeout on every call, reported as EnrichmentError("timeout")
    3. No retries here; the backfill coordinator decides whether to retry a note
"""

import asyncio
import logging
import math
import time
import uuid
from functools import lru_cache
from typing import Any, Awaitable, Callable, List, Optional

import google.generativeai as genai

from ainotes.config import settings
from ainotes.exceptions import CircuitBreakerOpenError, EnrichmentError
from ainotes.models.note import TAGS_MAX_LENGTH
from ainotes.services.enrichment_base import EnrichmentClient, build_note_text

logger = logging.getLogger(__name__)


# ══════════════════════════════════════════════════════════════════════════
# Circuit Breaker Implementation
# ══════════════════════════════════════════════════════════════════════════

class CircuitBreaker:
    """
    Circuit breaker in front of the Gemini endpoints.

    State Machine:
        CLOSED (normal operation)
            → On upstream failure: increment failure_count
            → When failure_count >= threshold: transition to OPEN

        OPEN (rejecting all requests)
            → All calls raise CircuitBreakerOpenError immediately
            → After recovery_timeout seconds: transition to HALF_OPEN

        HALF_OPEN (testing recovery)
            → Allow ONE request through
            → On success: transition to CLOSED (reset failure_count)
            → On failure: transition back to OPEN (reset timer)

    Only transport failures count: timeouts and SDK errors. A reply that
    arrives but cannot be used (blocked, empty, wrong dimension) proves the
    service is up, so the client records it as a success.

    The reason of the most recent failure is kept and attached to the
    CircuitBreakerOpenError, so a backfill run whose remaining notes all fail
    fast still reports why the circuit opened.

    Thread Safety:
        Not thread-safe (simple counters). Fine for a single asyncio loop.
    """

    CLOSED = "closed"
    OPEN = "open"
    HALF_OPEN = "half_open"

    def __init__(self, failure_threshold: int = 5, recovery_timeout: int = 60):
        """
        Args:
            failure_threshold: Consecutive upstream failures before opening
            recovery_timeout: Seconds to wait before testing recovery
        """
        self.failure_threshold = failure_threshold
        self.recovery_timeout = recovery_timeout
        self.failure_count = 0
        self.state = self.CLOSED
        self.last_failure_time: Optional[float] = None
        self.last_failure_reason: Optional[str] = None

    def can_execute(self) -> bool:
        """
        Check if a request is allowed through the circuit breaker.

        Raises:
            CircuitBreakerOpenError if circuit is OPEN and recovery timeout hasn't elapsed.
        """
        if self.state != self.OPEN:
            return True

        elapsed = time.time() - (self.last_failure_time or 0)
        if elapsed >= self.recovery_timeout:
            logger.info("Circuit breaker transitioning to HALF_OPEN after %.1fs", elapsed)
            self.state = self.HALF_OPEN
            return True

        raise CircuitBreakerOpenError(
            recovery_time=int(self.recovery_timeout - elapsed),
            context={"last_failure": self.last_failure_reason},
        )

    def record_success(self) -> None:
        """The upstream answered. Resets the circuit breaker to CLOSED."""
        if self.state == self.HALF_OPEN:
            logger.info("Circuit breaker transitioning to CLOSED (Gemini recovered)")
        self.failure_count = 0
        self.state = self.CLOSED
        self.last_failure_time = None
        self.last_failure_reason = None

    def record_failure(self, reason: str = "upstream error") -> None:
        """Record a timeout or SDK error. May trigger CLOSED → OPEN transition."""
        self.failure_count += 1
        self.last_failure_time = time.time()
        self.last_failure_reason = reason

        if self.state == self.HALF_OPEN:
            logger.warning("Circuit breaker returning to OPEN (test request failed: %s)", reason)
            self.state = self.OPEN
        elif self.failure_count >= self.failure_threshold:
            logger.warning(
                "Circuit breaker OPENING after %d consecutive failures (last: %s)",
                self.failure_count,
                reason,
            )
            self.state = self.OPEN


# ══════════════════════════════════════════════════════════════════════════
# Tag Response Parsing
# ══════════════════════════════════════════════════════════════════════════

def clean_tags(raw: str, max_length: int = TAGS_MAX_LENGTH) -> str:
    """
    Normalize a model's tag reply into the stored comma-delimited form.

    Strips quotes, splits on commas and newlines, lower-cases and trims each
    tag, drops blanks and duplicates while keeping first-seen order, then
    drops trailing tags until the joined string fits max_length.
    Returns "" when nothing usable remains.
    """
    text = raw.replace('"', "").replace("'", "").replace("\n", ",")
    tags: List[str] = []
    for part in text.split(","):
        tag = part.strip().lower()
        if tag and tag not in tags:
            tags.append(tag)

    joined = ", ".join(tags)
    while tags and len(joined) > max_length:
        tags.pop()
        joined = ", ".join(tags)
    return joined


def _response_text(response: Any) -> str:
    # .text raises ValueError when the candidate was blocked or empty
    try:
        return response.text or ""
    except ValueError as e:
        raise EnrichmentError(message=f"malformed response: {e}") from e


# ══════════════════════════════════════════════════════════════════════════
# Gemini Enrichment Client
# ══════════════════════════════════════════════════════════════════════════

class GeminiEnrichmentClient(EnrichmentClient):
    """
    Google Gemini implementation of the enrichment contract.

    Error Handling Chain:
        Circuit open → CircuitBreakerOpenError (no network call)
        Call exceeds timeout → EnrichmentError("timeout"), breaker failure
        SDK raises → EnrichmentError("Gemini request failed: ..."), breaker failure
        Reply unusable → EnrichmentError("malformed response: ..."), breaker untouched
    """

    TAG_PROMPT = """You generate relevant tags for personal notes.
Generate 3-5 relevant, specific tags that categorize the content.
Return ONLY the tags as a comma-separated list with no extra text.
Use lowercase and keep each tag concise (1-3 words).

Generate tags for this note:

{note}"""

    def __init__(
        self,
        api_key: Optional[str] = None,
        model_name: Optional[str] = None,
        embedding_model: Optional[str] = None,
        embedding_dimensions: Optional[int] = None,
        timeout: Optional[float] = None,
        circuit_breaker: Optional[CircuitBreaker] = None,
    ):
        api_key = settings.gemini_api_key if api_key is None else api_key
        # The SDK keeps auth in module-level state
        if api_key and api_key != "your_gemini_api_key_here":
            genai.configure(api_key=api_key)

        self.model_name = model_name or settings.gemini_model
        self.embedding_model = embedding_model or settings.gemini_embedding_model
        self.embedding_dimensions = embedding_dimensions or settings.embedding_dimensions
        self.timeout = timeout or settings.enrichment_timeout_seconds
        self.model = genai.GenerativeModel(self.model_name)
        self.circuit_breaker = circuit_breaker or CircuitBreaker(
            failure_threshold=settings.cb_failure_threshold,
            recovery_timeout=settings.cb_recovery_timeout,
        )

        logger.info(
            "GeminiEnrichmentClient initialized with model=%s, embedding_model=%s, "
            "circuit_breaker(threshold=%d, recovery=%ds)",
            self.model_name,
            self.embedding_model,
            self.circuit_breaker.failure_threshold,
            self.circuit_breaker.recovery_timeout,
        )

    async def _call(self, operation: str, make_call: Callable[[], Awaitable[Any]]) -> Any:
        """Run one upstream call under the circuit breaker and timeout."""
        request_id = str(uuid.uuid4())[:8]
        self.circuit_breaker.can_execute()

        start_time = time.time()
        try:
            result = await asyncio.wait_for(make_call(), timeout=self.timeout)
        except asyncio.TimeoutError:
            self.circuit_breaker.record_failure("timeout")
            logger.warning(
                "[%s] Gemini %s call timed out after %.0fs",
                request_id,
                operation,
                self.timeout,
            )
            raise EnrichmentError(message="timeout", context={"request_id": request_id})
        except Exception as e:
            self.circuit_breaker.record_failure(type(e).__name__)
            logger.warning(
                "[%s] Gemini %s call failed after %.0fms: %s",
                request_id,
                operation,
                (time.time() - start_time) * 1000,
                str(e),
            )
            raise EnrichmentError(
                message=f"Gemini request failed: {e}",
                context={"request_id": request_id, "error_type": type(e).__name__},
            ) from e

        self.circuit_breaker.record_success()
        logger.debug(
            "[%s] Gemini %s call completed in %.0fms",
            request_id,
            operation,
            (time.time() - start_time) * 1000,
        )
        return result

    async def generate_tags(self, title: str, content: str) -> str:
        text = build_note_text(title, content)
        if not text:
            raise EnrichmentError(message="note has no text to enrich")

        prompt = self.TAG_PROMPT.format(note=text)
        response = await self._call(
            "tags",
            lambda: self.model.generate_content_async(
                prompt,
                generation_config={"temperature": 0.3, "max_output_tokens": 50},
                request_options={"timeout": self.timeout},
            ),
        )

        tags = clean_tags(_response_text(response))
        if not tags:
            raise EnrichmentError(message="empty tag response")
        return tags

    async def generate_embedding(self, title: str, content: str) -> List[float]:
        text = build_note_text(title, content)
        if not text:
            raise EnrichmentError(message="note has no text to enrich")

        result = await self._call(
            "embedding",
            lambda: genai.embed_content_async(
                model=self.embedding_model,
                content=text,
                task_type="semantic_similarity",
                request_options={"timeout": self.timeout},
            ),
        )

        vector = result.get("embedding") if isinstance(result, dict) else None
        if not isinstance(vector, list) or not vector:
            raise EnrichmentError(message="malformed response: no embedding returned")
        if len(vector) != self.embedding_dimensions:
            raise EnrichmentError(
                message=(
                    f"malformed response: expected {self.embedding_dimensions} "
                    f"dimensions, got {len(vector)}"
                )
            )
        try:
            values = [float(value) for value in vector]
        except (TypeError, ValueError) as e:
            raise EnrichmentError(message="malformed response: non-numeric embedding") from e
        if not all(math.isfinite(value) for value in values):
            raise EnrichmentError(message="malformed response: non-finite embedding")
        return values

    async def health_check(self) -> bool:
        """
        Check if Gemini API is reachable.

        How:     Lists available models (lightweight API call, no token cost),
                 off the event loop because the SDK call is blocking.
        """
        try:
            models = await asyncio.to_thread(lambda: list(genai.list_models()))
            model_names = [m.name for m in models]
            target = f"models/{self.model_name}"
            if target not in model_names:
                logger.warning("Configured model %s not found in available models", target)
            return True
        except Exception as e:
            logger.warning("Gemini health check failed: %s", str(e))
            return False


@lru_cache(maxsize=1)
def get_enrichment_client() -> GeminiEnrichmentClient:
    """
    Process-wide Gemini client.

    One instance holds the circuit breaker state, which must be shared across
    requests and runs. Callers receive it explicitly; nothing in the service
    layer looks it up on its own.
    """
    return GeminiEnrichmentClient()
