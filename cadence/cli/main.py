"""
Typer CLI for the Cadence review scheduler.

Commands:
    cadence db init                 - Initialize database tables
    cadence cards add               - Add a card
    cadence review submit CARD N    - Rate a card (1=Again .. 4=Easy)
    cadence review preview CARD     - Show the interval each rating would give
    cadence due                     - Show today's due queue
    cadence session start           - Compose a practice session
    cadence session complete ID     - Finish a session
    cadence session abandon ID      - Quit a session early
    cadence session stats           - Totals over recent sessions

Usage:
    cadence --help
    cadence cards add --front "TCP port for HTTPS?" --back "443" --concept ports
    cadence session start --type gap_fix
    cadence review submit 3f2c... 3 --session 9a1b...
"""

from __future__ import annotations

import sys
from collections.abc import Generator
from contextlib import contextmanager
from typing import Optional

import typer
from loguru import logger
from rich import print as rprint
from rich.console import Console
from rich.table import Table

from config import get_settings
from cadence import __version__
from cadence.core.errors import SchedulerError

app = typer.Typer(
    help="Cadence: adaptive spaced-repetition review scheduler",
    no_args_is_help=True,
)

console = Console()


# ========================================
# Context Builder (Dependency Injection)
# ========================================


class CLIContext:
    """
    Dependency injection container for CLI commands.

    Stores and services are created on first use so `--help` never opens
    a database connection.
    """

    def __init__(self, owner_id: Optional[str] = None):
        self.settings = get_settings()
        self.owner_id = owner_id or self.settings.default_owner_id
        self._card_store = None
        self._session_store = None

    @property
    def card_store(self):
        if self._card_store is None:
            from cadence.db.card_store import SqlCardStore

            self._card_store = SqlCardStore(settings=self.settings)
        return self._card_store

    @property
    def session_store(self):
        if self._session_store is None:
            from cadence.db.session_store import SqlSessionStore

            self._session_store = SqlSessionStore()
        return self._session_store

    @property
    def memory_model(self):
        from cadence.study.memory_model import MemoryModel, SchedulerConfig

        return MemoryModel(SchedulerConfig.from_settings(self.settings))

    @property
    def review_service(self):
        from cadence.study.review_service import ReviewService

        return ReviewService(self.card_store, self.memory_model)

    @property
    def composer(self):
        from cadence.db.oracles import SqlGapOracle, SqlMasteryOracle
        from cadence.study.session_composer import SessionComposer, SessionConfig

        return SessionComposer(
            self.card_store,
            self.session_store,
            SqlGapOracle(settings=self.settings),
            SqlMasteryOracle(settings=self.settings),
            SessionConfig.from_settings(self.settings),
        )

    @property
    def due_queue(self):
        from cadence.study.due_queue import DueQueueBuilder

        return DueQueueBuilder(self.card_store)


@contextmanager
def _handle_errors() -> Generator[None, None, None]:
    """Report scheduler errors and exit non-zero."""
    try:
        yield
    except SchedulerError as e:
        logger.debug(f"{type(e).__name__}: {e}")
        rprint(f"[red]✗[/red] {e}")
        raise typer.Exit(code=1)


def _owner_option():
    return typer.Option(None, "--owner", "-o", help="Learner id (default from settings)")


# ========================================
# DATABASE COMMANDS
# ========================================

db_app = typer.Typer(help="Database management")
app.add_typer(db_app, name="db")


@db_app.command("init")
def db_init() -> None:
    """
    Initialize database tables from SQLAlchemy models.

    Safe to run multiple times (idempotent).
    """
    from cadence.db.database import check_database_health, init_db

    status, error = check_database_health()
    if status != "ok":
        rprint(f"[red]✗[/red] Database unreachable: {error}")
        raise typer.Exit(code=1)

    with _handle_errors():
        init_db()
    rprint("[green]✓[/green] Database initialized!")


# ========================================
# CARD COMMANDS
# ========================================

cards_app = typer.Typer(help="Card management")
app.add_typer(cards_app, name="cards")


@cards_app.command("add")
def cards_add(
    front: str = typer.Option(..., "--front", help="Prompt side"),
    back: str = typer.Option(..., "--back", help="Answer side (JSON for interactive types)"),
    card_type: str = typer.Option("flashcard", "--type", "-t", help="Card type tag"),
    course: Optional[str] = typer.Option(None, "--course", help="Source course id"),
    lesson: int = typer.Option(0, "--lesson", help="Source lesson index"),
    step: int = typer.Option(0, "--step", help="Source step index"),
    concepts: Optional[list[str]] = typer.Option(
        None, "--concept", "-c", help="Concept id tested by the card (repeatable)"
    ),
    owner: Optional[str] = _owner_option(),
) -> None:
    """Add a new card. It enters the new pool immediately."""
    from cadence.study.cards import CardType, ReviewCard

    try:
        kind = CardType(card_type)
    except ValueError:
        rprint(f"[red]✗[/red] Unknown card type: {card_type}")
        raise typer.Exit(code=1)

    ctx = CLIContext(owner)
    with _handle_errors():
        card = ctx.card_store.add_card(
            ReviewCard(
                id="",
                owner_id=ctx.owner_id,
                front=front,
                back=back,
                card_type=kind,
                course_id=course,
                lesson_index=lesson,
                step_index=step,
                concept_ids=list(concepts or []),
            )
        )
    rprint(f"[green]✓[/green] Added card [cyan]{card.id}[/cyan]")


# ========================================
# REVIEW COMMANDS
# ========================================

review_app = typer.Typer(help="Rate cards and preview intervals")
app.add_typer(review_app, name="review")


@review_app.command("submit")
def review_submit(
    card_id: str = typer.Argument(..., help="Card id"),
    rating: int = typer.Argument(..., help="1=Again, 2=Hard, 3=Good, 4=Easy"),
    duration_ms: Optional[int] = typer.Option(None, "--duration-ms", help="Time to answer"),
    session_id: Optional[str] = typer.Option(
        None, "--session", "-s", help="Count the review against this session"
    ),
    owner: Optional[str] = _owner_option(),
) -> None:
    """Record a rating and reschedule the card."""
    from cadence.study.memory_model import format_interval

    ctx = CLIContext(owner)
    with _handle_errors():
        if session_id:
            ctx.composer.get_open_session(session_id)
        outcome = ctx.review_service.submit_review_with_retry(
            ctx.owner_id, card_id, rating, duration_ms=duration_ms, session_id=session_id
        )
        if session_id:
            ctx.composer.record_progress(session_id, rating)

    rprint(
        f"[green]✓[/green] {outcome.new_state.value} - next review in "
        f"[cyan]{format_interval(outcome.result)}[/cyan] "
        f"({outcome.next_due_at:%Y-%m-%d %H:%M} UTC)"
    )


@review_app.command("preview")
def review_preview(
    card_id: str = typer.Argument(..., help="Card id"),
    owner: Optional[str] = _owner_option(),
) -> None:
    """Show what each rating would do, without saving anything."""
    from cadence.study.memory_model import RATING_LABELS, format_interval

    ctx = CLIContext(owner)
    with _handle_errors():
        card = ctx.card_store.get_card(ctx.owner_id, card_id)
        learner = ctx.card_store.get_learner_settings(ctx.owner_id)
        previews = ctx.memory_model.preview(card, request_retention=learner.target_retention)

    table = Table(title=f"Card {card.id} ({card.state.value})")
    table.add_column("Rating", style="cyan")
    table.add_column("Next", justify="right")
    table.add_column("State")
    table.add_column("Stability", justify="right")
    table.add_column("Difficulty", justify="right")

    for rating, result in previews.items():
        table.add_row(
            f"{int(rating)} {RATING_LABELS[rating]}",
            format_interval(result),
            result.state.value,
            f"{result.stability:.2f}",
            f"{result.difficulty:.2f}",
        )
    console.print(table)


# ========================================
# DUE QUEUE
# ========================================


@app.command("due")
def due(
    summary: bool = typer.Option(False, "--summary", help="Only show counts by state"),
    limit: int = typer.Option(20, "--limit", "-n", help="Rows to show"),
    owner: Optional[str] = _owner_option(),
) -> None:
    """Show today's due queue."""
    ctx = CLIContext(owner)

    if summary:
        with _handle_errors():
            counts = ctx.due_queue.summarize_due(ctx.owner_id)
        table = Table(title="Due cards")
        table.add_column("State", style="cyan")
        table.add_column("Count", justify="right")
        for label, count in (
            ("new", counts.new),
            ("learning", counts.learning),
            ("review", counts.review),
            ("relearning", counts.relearning),
        ):
            table.add_row(label, str(count))
        table.add_row("[bold]total[/bold]", f"[bold]{counts.total_due}[/bold]")
        console.print(table)
        return

    with _handle_errors():
        queue = ctx.due_queue.get_due_queue(ctx.owner_id)

    rprint(
        f"[bold]{queue.cards_due}[/bold] cards due "
        f"({queue.new_cards} new, {queue.review_cards} reviews, "
        f"{queue.reviewed_today} already reviewed today)"
    )
    if not queue.cards:
        return

    table = Table()
    table.add_column("Card", style="dim")
    table.add_column("Course")
    table.add_column("Lesson", justify="right")
    table.add_column("State")
    table.add_column("Due")
    table.add_column("Front")
    for card in queue.cards[:limit]:
        table.add_row(
            card.id[:8],
            card.course_id or "-",
            str(card.lesson_index),
            card.state.value,
            f"{card.due_at:%Y-%m-%d %H:%M}",
            card.front[:50],
        )
    console.print(table)


# ========================================
# SESSION COMMANDS
# ========================================

session_app = typer.Typer(help="Practice sessions")
app.add_typer(session_app, name="session")


@session_app.command("start")
def session_start(
    session_type: str = typer.Option(
        "daily", "--type", "-t", help="daily, targeted, gap_fix or custom"
    ),
    max_cards: Optional[int] = typer.Option(None, "--max-cards", help="Session size"),
    new_limit: Optional[int] = typer.Option(None, "--new-limit", help="Slots for new cards"),
    concepts: Optional[list[str]] = typer.Option(
        None, "--concept", "-c", help="Target concept id (repeatable)"
    ),
    owner: Optional[str] = _owner_option(),
) -> None:
    """Compose a session from due, gap, reinforcement and new cards."""
    from cadence.study.records import SessionType

    try:
        kind = SessionType(session_type)
    except ValueError:
        rprint(f"[red]✗[/red] Unknown session type: {session_type}")
        raise typer.Exit(code=1)

    ctx = CLIContext(owner)
    composer = ctx.composer
    with _handle_errors():
        if kind == SessionType.TARGETED:
            if not concepts:
                rprint("[red]✗[/red] A targeted session needs at least one --concept")
                raise typer.Exit(code=1)
            session = composer.compose_targeted_session(
                ctx.owner_id, concepts, max_cards=max_cards
            )
        elif kind == SessionType.GAP_FIX:
            session = composer.compose_gap_fix_session(ctx.owner_id, max_cards=max_cards)
        else:
            session = composer.compose_session(
                ctx.owner_id,
                max_cards=max_cards,
                new_card_limit=new_limit,
                target_concept_ids=concepts or None,
                session_type=kind,
            )

    rprint(
        f"[green]✓[/green] Session [cyan]{session.id}[/cyan]: {session.total_cards} cards, "
        f"~{session.estimated_minutes} min "
        f"(due {session.due_cards}, gap {session.gap_cards}, "
        f"reinforcement {session.reinforcement_cards}, new {session.new_cards})"
    )
    if not session.cards:
        return

    table = Table()
    table.add_column("#", justify="right", style="dim")
    table.add_column("Card")
    table.add_column("Source", style="cyan")
    table.add_column("Targets")
    table.add_column("Front")
    for index, entry in enumerate(session.cards, start=1):
        table.add_row(
            str(index),
            entry.card_id,
            entry.source.value,
            ", ".join(entry.target_concept_ids),
            entry.card.front[:50],
        )
    console.print(table)


@session_app.command("complete")
def session_complete(
    session_id: str = typer.Argument(..., help="Session id"),
    gaps: Optional[list[str]] = typer.Option(
        None, "--gap", "-g", help="Gap concept addressed (repeatable)"
    ),
) -> None:
    """Mark a session completed."""
    ctx = CLIContext()
    with _handle_errors():
        record = ctx.composer.complete_session(session_id, gaps_addressed=gaps)
    rprint(
        f"[green]✓[/green] Completed: {record.cards_completed} cards, "
        f"{record.cards_correct} correct, average rating {record.average_rating or 0:.2f}, "
        f"{record.total_time_seconds or 0}s"
    )


@session_app.command("abandon")
def session_abandon(session_id: str = typer.Argument(..., help="Session id")) -> None:
    """Mark a session abandoned."""
    ctx = CLIContext()
    with _handle_errors():
        record = ctx.composer.abandon_session(session_id)
    rprint(f"[yellow]⚠[/yellow] Abandoned after {record.cards_completed} cards")


@session_app.command("stats")
def session_stats(
    days: int = typer.Option(7, "--days", "-d", help="Window in days"),
    owner: Optional[str] = _owner_option(),
) -> None:
    """Totals over recently completed sessions."""
    ctx = CLIContext(owner)
    with _handle_errors():
        stats = ctx.composer.get_session_stats(ctx.owner_id, window_days=days)

    table = Table(title=f"Sessions (last {days} days)")
    table.add_column("Metric", style="cyan")
    table.add_column("Value", justify="right")
    table.add_row("Sessions", str(stats.total_sessions))
    table.add_row("Cards", str(stats.total_cards))
    table.add_row("Correct", str(stats.total_correct))
    table.add_row("Accuracy", f"{stats.average_accuracy}%")
    table.add_row("Time", f"{stats.total_time_minutes} min")
    table.add_row("Gaps addressed", str(stats.gaps_addressed))
    console.print(table)


@app.command("version")
def show_version() -> None:
    """Show version information."""
    rprint(f"[bold]cadence[/bold] v{__version__}")


# =============================================================================
# Entry Point
# =============================================================================


def configure_logging(settings=None) -> None:
    """Route loguru to stderr (and the log file, when configured)."""
    settings = settings or get_settings()
    logger.remove()
    logger.add(
        sys.stderr,
        level=settings.log_level,
        format="<dim>{time:HH:mm:ss}</dim> | <level>{level: <8}</level> | {message}",
    )
    if settings.log_file:
        logger.add(settings.log_file, level="DEBUG", rotation="10 MB", retention=5)


def main() -> None:
    """Entry point for the CLI."""
    configure_logging()
    app()


if __name__ == "__main__":
    main()
