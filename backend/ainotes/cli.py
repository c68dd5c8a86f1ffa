"""
AINotes Backend — Command Line Interface
==========================================

What:  Runs tag and embedding backfills outside the HTTP server.
Why:   A backfill over thousands of notes takes far longer than an HTTP
       request should; operators run it from a shell or a cron job instead.
How:   typer commands build a BackfillRequest, open one session, run the
       coordinator to completion and print the BackfillResult.

Usage:
    ainotes backfill-tags --owner auth0|abc123
    ainotes backfill-tags --owner auth0|abc123 --all --json
    ainotes backfill-embeddings --owner auth0|abc123

Exit codes:
    0    run finished (per-note failures are listed, not fatal)
    1    progress could not be committed, or configuration is incomplete
    2    invalid request (blank owner)
    130  interrupted; progress up to the interruption was committed

Ctrl-C / SIGTERM:
    The first signal asks the run to stop. The in-flight note is abandoned
    untouched, completed notes are committed and the partial result printed.
"""

import asyncio
import logging
import signal
import sys
from typing import Annotated, Optional

import typer

from ainotes import __version__
from ainotes.config import settings
from ainotes.database import async_session_factory, dispose_engine
from ainotes.exceptions import InvalidRequestError, PersistenceError
from ainotes.logging_config import setup_logging
from ainotes.schemas.backfill import BackfillRequest, BackfillResult
from ainotes.services.backfill_service import create_backfill_coordinator
from ainotes.services.gemini_service import get_enrichment_client

logger = logging.getLogger(__name__)

EXIT_FAILURE = 1
EXIT_INVALID_REQUEST = 2
EXIT_CANCELLED = 130

app = typer.Typer(
    name="ainotes",
    help="AI tag and embedding backfills for personal notes.",
    no_args_is_help=True,
    rich_markup_mode=None,
)


def _version_callback(value: bool) -> None:
    if value:
        typer.echo(f"ainotes {__version__}")
        raise typer.Exit()


@app.callback()
def main_callback(
    log_level: Annotated[Optional[str], typer.Option(
        "--log-level", "-l",
        help="Logging level (default: LOG_LEVEL setting)",
    )] = None,
    version: Annotated[Optional[bool], typer.Option(
        "--version",
        help="Show version and exit",
        callback=_version_callback,
        is_eager=True,
    )] = None,
):
    """AI tag and embedding backfills for personal notes."""
    setup_logging(level=log_level, stream=sys.stderr)


# -----------------------------------------------------------------------------
# Common Options
# -----------------------------------------------------------------------------

OwnerOption = Annotated[
    str,
    typer.Option(
        "--owner", "-o",
        help="Owner subject whose notes are enriched",
    )
]

AllOption = Annotated[
    bool,
    typer.Option(
        "--all", "-a",
        help="Reprocess every note of the owner, overwriting existing values",
    )
]

JsonOption = Annotated[
    bool,
    typer.Option(
        "--json", "-j",
        help="Print the result as JSON",
    )
]


# -----------------------------------------------------------------------------
# Run helpers
# -----------------------------------------------------------------------------

def _install_cancel_handlers(cancel_event: asyncio.Event) -> None:
    loop = asyncio.get_running_loop()
    for sig in (signal.SIGINT, signal.SIGTERM):
        try:
            loop.add_signal_handler(sig, cancel_event.set)
        except NotImplementedError:
            # Windows event loops have no add_signal_handler
            signal.signal(sig, lambda *_: loop.call_soon_threadsafe(cancel_event.set))


async def _run_backfill(kind: str, request: BackfillRequest) -> BackfillResult:
    cancel_event = asyncio.Event()
    _install_cancel_handlers(cancel_event)
    client = get_enrichment_client()
    try:
        async with async_session_factory() as session:
            coordinator = create_backfill_coordinator(session, client)
            if kind == "embeddings":
                return await coordinator.backfill_embeddings(request, cancel_event)
            return await coordinator.backfill_tags(request, cancel_event)
    finally:
        await dispose_engine()


def _print_result(result: BackfillResult, as_json: bool) -> None:
    if as_json:
        typer.echo(result.model_dump_json(indent=2))
        return

    typer.echo(
        f"Processed {result.processed_count} of {result.total_notes} note(s), "
        f"{len(result.errors)} error(s)"
    )
    for message in result.errors:
        typer.echo(f"  {message}")
    if result.cancelled:
        typer.echo("Interrupted: remaining notes were not processed.")


def _execute(kind: str, owner: str, reprocess_all: bool, as_json: bool) -> None:
    try:
        settings.validate_required_for_production()
    except ValueError as e:
        typer.echo(str(e), err=True)
        raise typer.Exit(EXIT_FAILURE)

    request = BackfillRequest(owner_subject=owner, only_missing=not reprocess_all)
    try:
        result = asyncio.run(_run_backfill(kind, request))
    except InvalidRequestError as e:
        typer.echo(f"Error: {e.message}", err=True)
        raise typer.Exit(EXIT_INVALID_REQUEST)
    except PersistenceError as e:
        logger.error("Backfill aborted: %s | Context: %s", e.message, e.context)
        typer.echo(f"Error: {e.message} Progress since the last checkpoint was lost.", err=True)
        raise typer.Exit(EXIT_FAILURE)

    _print_result(result, as_json)
    if result.cancelled:
        raise typer.Exit(EXIT_CANCELLED)


# -----------------------------------------------------------------------------
# Commands
# -----------------------------------------------------------------------------

@app.command("backfill-tags")
def backfill_tags(
    owner: OwnerOption,
    reprocess_all: AllOption = False,
    as_json: JsonOption = False,
):
    """Generate AI tags for an owner's notes (only untagged notes by default)."""
    _execute("tags", owner, reprocess_all, as_json)


@app.command("backfill-embeddings")
def backfill_embeddings(
    owner: OwnerOption,
    reprocess_all: AllOption = False,
    as_json: JsonOption = False,
):
    """Generate embeddings for an owner's notes (only unembedded notes by default)."""
    _execute("embeddings", owner, reprocess_all, as_json)


def main():
    app()


if __name__ == "__main__":
    main()
