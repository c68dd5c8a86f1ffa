"""
AINotes Backend — Backfill Command Schemas
============================================

What:  The command object and summary result of one backfill run.
Who:   Built by the HTTP route or the CLI, consumed and produced by
       BackfillCoordinator. Neither is persisted.

Owner validation:
    owner_subject is deliberately not constrained here. A blank subject is
    rejected by the coordinator with InvalidRequestError, so the HTTP API and
    the CLI report it the same way.
"""

from typing import List

from pydantic import BaseModel, Field


class BackfillRequest(BaseModel):
    """Parameters of one backfill run, scoped to a single owner."""

    owner_subject: str = Field(description="Owner whose notes are enriched; never crosses owners")
    only_missing: bool = Field(
        default=True,
        description=(
            "Only notes lacking the target field (tags or embedding). "
            "False reprocesses and overwrites every note of the owner."
        ),
    )


class BackfillResult(BaseModel):
    """
    Summary of one backfill run.

    Every candidate is accounted for exactly once: counted in processed_count
    or named in one entry of errors. The exception is a cancelled run, where
    notes after the cancellation point are in neither.
    """

    processed_count: int = Field(description="Notes successfully enriched")
    total_notes: int = Field(description="Size of the candidate set")
    errors: List[str] = Field(
        default_factory=list,
        description="One message per failed note, in processing order",
    )
    cancelled: bool = Field(
        default=False,
        description="The run stopped early on a cancellation signal",
    )
