"""
AINotes Backend — Health Check Route
======================================

What:  Health check endpoint for monitoring and load balancer probes.
How:   Checks the database (SELECT 1) and the Gemini client (circuit breaker
       state, then a model listing call).

Status levels:
    - healthy:   Database and Gemini reachable
    - degraded:  Database reachable, Gemini down or circuit open. Retrieval
                 of already-embedded notes still works.
    - unhealthy: Database unreachable
"""

import logging
import time

from fastapi import APIRouter, Depends
from sqlalchemy import text
from sqlalchemy.ext.asyncio import AsyncSession

from ainotes import __version__
from ainotes.database import get_db_session
from ainotes.schemas.note import HealthResponse
from ainotes.services.enrichment_base import EnrichmentClient
from ainotes.services.gemini_service import CircuitBreaker, get_enrichment_client

logger = logging.getLogger(__name__)

router = APIRouter(tags=["Health"])

_start_time = time.time()


@router.get(
    "/health",
    response_model=HealthResponse,
    summary="Service health check",
)
async def health_check(
    db: AsyncSession = Depends(get_db_session),
    client: EnrichmentClient = Depends(get_enrichment_client),
) -> HealthResponse:
    db_status = "connected"
    gemini_status = "available"
    overall = "healthy"

    # ── Check Database ────────────────────────────────────────────────────
    try:
        await db.execute(text("SELECT 1"))
    except Exception as e:
        db_status = "disconnected"
        overall = "unhealthy"
        logger.warning("Health check: database unreachable: %s", str(e))

    # ── Check Gemini API ──────────────────────────────────────────────────
    breaker = getattr(client, "circuit_breaker", None)
    if breaker is not None and breaker.state == CircuitBreaker.OPEN:
        gemini_status = "circuit_open"
    elif not await client.health_check():
        gemini_status = "unavailable"

    if gemini_status != "available" and overall == "healthy":
        overall = "degraded"

    return HealthResponse(
        status=overall,
        version=__version__,
        database=db_status,
        gemini=gemini_status,
        uptime_seconds=round(time.time() - _start_time, 2),
    )
