"""
AINotes Backend — Abstract Enrichment Client Interface
========================================================

What:  Abstract base class defining the contract for AI tag and embedding providers.
Why:   The backfill coordinator receives a client at construction and never
       looks one up globally. Tests pass a fake; production passes the
       Gemini implementation.
How:   Concrete implementations inherit from EnrichmentClient and implement
       generate_tags(), generate_embedding() and health_check().
Who:   Called by BackfillCoordinator per note and by RetrievalService.search().
"""

from abc import ABC, abstractmethod
from typing import List


def build_note_text(title: str, content: str) -> str:
    """Title and content joined with a stable delimiter for prompts and embeddings."""
    safe_title = (title or "").strip()
    safe_content = (content or "").strip()
    if safe_title and safe_content:
        return f"{safe_title}\n\n{safe_content}"
    return safe_title or safe_content


class EnrichmentClient(ABC):
    """
    Abstract interface for AI-powered note enrichment.

    Contract:
        - Each call either returns a complete result or raises EnrichmentError
          whose message is a human-readable cause. Never a partial result.
        - No retries inside the client; the caller owns retry policy.
        - Latency is unbounded by the upstream service; implementations
          enforce their own timeout and report it as EnrichmentError("timeout").
    """

    @abstractmethod
    async def generate_tags(self, title: str, content: str) -> str:
        """
        Produce a denormalized, comma-delimited tag string for a note.

        Returns:
            Non-empty tag string, e.g. "python, async, backfill".

        Raises:
            EnrichmentError: Upstream unavailable, malformed response, or timeout.
            CircuitBreakerOpenError: Too many recent consecutive failures.
        """
        ...

    @abstractmethod
    async def generate_embedding(self, title: str, content: str) -> List[float]:
        """
        Produce a fixed-length embedding vector for a note.

        Returns:
            List of floats whose length equals the configured dimensionality.

        Raises:
            EnrichmentError: Same failure contract as generate_tags().
        """
        ...

    @abstractmethod
    async def health_check(self) -> bool:
        """Lightweight connectivity test. Returns True if the service is reachable."""
        ...
