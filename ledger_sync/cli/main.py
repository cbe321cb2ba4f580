"""
Typer CLI for the notioneringsledger sync service.

Commands:
    ledger sync bulk             - Queue (or run) a bulk seed of the roster
    ledger sync repair-numbers   - Retitle remote lectures whose numbering drifted
    ledger sync select           - Mirror one user's select/unselect
    ledger sync flashcards       - Append flashcard summaries to a lecture page
    ledger jobs show             - Show a job's progress and log
    ledger jobs list             - List recent jobs
    ledger worker                - Run queued jobs in the foreground
    ledger check                 - Verify each user's Notion access
    ledger db init               - Initialize database tables

Usage:
    ledger sync bulk --lectures roster.json
    ledger sync bulk --lectures roster.json --user David --run-now --dry-run
    ledger sync select lec-12 --lectures roster.json --user dronnlid
    ledger jobs show 3f2a... --wait
"""

from __future__ import annotations

import json
import time
from pathlib import Path
from typing import Optional

import typer
from loguru import logger
from rich import print as rprint
from rich.console import Console
from rich.table import Table

from config import get_settings
from ledger_sync.db.database import init_db
from ledger_sync.jobs.controller import BULK_SEED, NUMBER_REPAIR, SyncJobController
from ledger_sync.jobs.store import Job, JobStore, JobStoreError
from ledger_sync.jobs.worker import SyncWorker, job_is_pending
from ledger_sync.logging_config import configure_logging
from ledger_sync.roster import by_numbers, load_roster
from ledger_sync.sync.constants import USER_LETTERS
from ledger_sync.sync.coordinator import CancellationToken, ProgressCallback, SyncCoordinator
from ledger_sync.sync.credentials import SettingsCredentialProvider
from ledger_sync.sync.errors import SyncError
from ledger_sync.sync.models import FlashcardGroup, UserCredential
from ledger_sync.sync.notion_client import NotionWorkspaceClient
from ledger_sync.sync.retry import RetryExecutor

app = typer.Typer(
    help="notioneringsledger CLI: lecture roster -> Notion lecture databases",
    no_args_is_help=True,
)

console = Console()

STATUS_STYLES = {
    "started": "dim",
    "running": "yellow",
    "completed": "green",
    "failed": "red",
}

LEVEL_STYLES = {"info": "white", "warning": "yellow", "error": "red"}


@app.callback()
def main_callback(
    verbose: bool = typer.Option(False, "--verbose", "-v", help="Log at DEBUG level"),
) -> None:
    """Sync the shared lecture roster into each user's Notion database."""
    configure_logging(level="DEBUG" if verbose else None)
    init_db()


# ========================================
# Helpers
# ========================================


def _coordinator_factory(dry_run: bool):
    """Coordinator factory for foreground runs, honouring --dry-run."""

    def client_factory(credential: UserCredential) -> NotionWorkspaceClient:
        return NotionWorkspaceClient(credential.user, credential.token, dry_run=dry_run or None)

    def factory(progress: ProgressCallback, cancel_token: CancellationToken) -> SyncCoordinator:
        return SyncCoordinator(
            client_factory=client_factory,
            progress_callback=progress,
            cancel_token=cancel_token,
        )

    return factory


def _load_lectures(path: Path, numbers: Optional[list[int]] = None):
    roster = load_roster(path)
    return roster, roster.list_lectures(by_numbers(numbers) if numbers else None)


def _print_job(job: Job, tail: int = 15) -> None:
    style = STATUS_STYLES.get(job.status.value, "white")
    rprint(f"\n[bold]Job {job.job_id}[/bold] ({job.kind})")
    rprint(f"  Status: [{style}]{job.status.value}[/{style}]")
    rprint(f"  Progress: {job.processed_items}/{job.total_items}")
    if job.error:
        rprint(f"  Error: [red]{job.error}[/red]")

    if job.messages:
        rprint("")
        for message in job.messages[-tail:]:
            level_style = LEVEL_STYLES.get(message.level, "white")
            stamp = time.strftime("%H:%M:%S", time.localtime(message.ts / 1000))
            rprint(f"  [dim]{stamp}[/dim] [{level_style}]{message.text}[/{level_style}]")

    if job.result:
        _print_result(job.result)


def _print_result(result: dict) -> None:
    table = Table(title="Sync Results", show_header=True)
    table.add_column("User", style="cyan")
    table.add_column("Succeeded", justify="right", style="green")
    table.add_column("Skipped", justify="right", style="dim")
    table.add_column("Errors", justify="right", style="red")

    for user, counts in result.get("by_user", {}).items():
        errors = counts.get("error", 0)
        table.add_row(
            user,
            str(counts.get("success", 0)),
            str(counts.get("skipped", 0)),
            str(errors) if errors > 0 else "-",
        )

    table.add_section()
    table.add_row(
        "TOTAL",
        str(result.get("success_count", 0)),
        str(result.get("skip_count", 0)),
        str(result.get("error_count", 0)) if result.get("error_count") else "-",
        style="bold",
    )
    console.print(table)
    rprint(f"  Created: {result.get('created', 0)}  Updated: {result.get('updated', 0)}")


def _queue_or_run(store: JobStore, job_id: str, run_now: bool, dry_run: bool) -> None:
    if not run_now:
        rprint(f"\n[green]✓[/green] Queued job [bold]{job_id}[/bold]")
        rprint(f"  Follow it with: ledger jobs show {job_id} --wait")
        if dry_run:
            rprint("[yellow]⚠[/yellow] --dry-run only applies with --run-now; the worker uses DRY_RUN from settings")
        return

    worker = SyncWorker(store, coordinator_factory=_coordinator_factory(dry_run))
    try:
        job = worker.run_job(job_id)
    except JobStoreError as e:
        rprint(f"[red]✗[/red] Job store error: {e}")
        raise typer.Exit(code=1)

    _print_job(job)
    if job.result and job.result.get("error_count"):
        rprint(f"\n[yellow]⚠[/yellow] {job.result['error_count']} errors occurred during sync")
        raise typer.Exit(code=1)
    if job.status.value == "failed":
        raise typer.Exit(code=1)
    rprint("\n[bold green]✓ Sync complete![/bold green]")


# ========================================
# SYNC COMMANDS
# ========================================

sync_app = typer.Typer(help="Roster -> Notion sync jobs", no_args_is_help=True)
app.add_typer(sync_app, name="sync")


@sync_app.command("bulk")
def sync_bulk(
    lectures: Path = typer.Option(..., "--lectures", "-l", exists=True, help="Roster JSON export"),
    users: Optional[list[str]] = typer.Option(None, "--user", "-u", help="Limit to user (repeatable)"),
    numbers: Optional[list[int]] = typer.Option(None, "--number", "-n", help="Limit to lecture number"),
    run_now: bool = typer.Option(False, "--run-now", help="Run in this process instead of queueing"),
    dry_run: bool = typer.Option(False, "--dry-run", help="Preview writes without calling Notion"),
) -> None:
    """
    Make sure every lecture exists in every user's Notion database.

    Existing records keep their selections except for users whose choice
    is recorded in the roster.

    Examples:
        ledger sync bulk --lectures roster.json
        ledger sync bulk --lectures roster.json -u David -n 12 --run-now
    """
    _start_bulk(lectures, users, numbers, run_now, dry_run, BULK_SEED)


@sync_app.command("repair-numbers")
def sync_repair_numbers(
    lectures: Path = typer.Option(..., "--lectures", "-l", exists=True, help="Roster JSON export"),
    users: Optional[list[str]] = typer.Option(None, "--user", "-u", help="Limit to user (repeatable)"),
    run_now: bool = typer.Option(False, "--run-now", help="Run in this process instead of queueing"),
    dry_run: bool = typer.Option(False, "--dry-run", help="Preview writes without calling Notion"),
) -> None:
    """Retitle remote lectures whose "N." prefix no longer matches the roster."""
    _start_bulk(lectures, users, None, run_now, dry_run, NUMBER_REPAIR)


def _start_bulk(
    path: Path,
    users: Optional[list[str]],
    numbers: Optional[list[int]],
    run_now: bool,
    dry_run: bool,
    kind: str,
) -> None:
    roster, selected = _load_lectures(path, numbers)
    if not selected:
        rprint("[yellow]No lectures matched[/yellow]")
        raise typer.Exit(code=1)

    store = JobStore()
    controller = SyncJobController(store)
    try:
        job_id = controller.start_bulk_sync(
            selected,
            users=users or None,
            kind=kind,
            roster_titles=[lecture.title for lecture in roster.list_lectures()],
        )
    except ValueError as e:
        rprint(f"[red]✗[/red] {e}")
        raise typer.Exit(code=2)

    rprint(f"\n[bold cyan]{kind.replace('_', ' ').title()}[/bold cyan]: {len(selected)} lectures")
    _queue_or_run(store, job_id, run_now, dry_run)


@sync_app.command("select")
def sync_select(
    lecture_id: str = typer.Argument(..., help="Lecture id in the roster"),
    lectures: Path = typer.Option(..., "--lectures", "-l", exists=True, help="Roster JSON export"),
    user: str = typer.Option(..., "--user", "-u", help="Acting user (name or alias)"),
    unselect: bool = typer.Option(False, "--unselect", help="Remove the user's selection"),
    run_now: bool = typer.Option(False, "--run-now", help="Run in this process instead of queueing"),
    dry_run: bool = typer.Option(False, "--dry-run", help="Preview writes without calling Notion"),
) -> None:
    """Mirror one user's select/unselect of a lecture into every user's database."""
    roster, _ = _load_lectures(lectures)
    try:
        lecture = roster.get_lecture(lecture_id)
    except KeyError as e:
        rprint(f"[red]✗[/red] {e.args[0]}")
        raise typer.Exit(code=2)

    store = JobStore()
    try:
        job_id = SyncJobController(store).start_selection_sync(
            lecture,
            user,
            not unselect,
            roster_titles=[lec.title for lec in roster.list_lectures()],
        )
    except ValueError as e:
        rprint(f"[red]✗[/red] {e}")
        raise typer.Exit(code=2)

    _queue_or_run(store, job_id, run_now, dry_run)


@sync_app.command("flashcards")
def sync_flashcards(
    lecture_id: str = typer.Argument(..., help="Lecture id in the roster"),
    lectures: Path = typer.Option(..., "--lectures", "-l", exists=True, help="Roster JSON export"),
    groups: Path = typer.Option(..., "--groups", "-g", exists=True, help="Flashcard groups JSON"),
    run_now: bool = typer.Option(False, "--run-now", help="Run in this process instead of queueing"),
    dry_run: bool = typer.Option(False, "--dry-run", help="Preview writes without calling Notion"),
) -> None:
    """Append flashcard summaries to the lecture's page in every database."""
    roster, _ = _load_lectures(lectures)
    try:
        lecture = roster.get_lecture(lecture_id)
    except KeyError as e:
        rprint(f"[red]✗[/red] {e.args[0]}")
        raise typer.Exit(code=2)

    data = json.loads(groups.read_text(encoding="utf-8"))
    items = data.get("groups", []) if isinstance(data, dict) else data

    store = JobStore()
    try:
        job_id = SyncJobController(store).start_flashcard_sync(
            lecture, [FlashcardGroup.from_dict(item) for item in items]
        )
    except ValueError as e:
        rprint(f"[red]✗[/red] {e}")
        raise typer.Exit(code=2)

    _queue_or_run(store, job_id, run_now, dry_run)


# ========================================
# JOB COMMANDS
# ========================================

jobs_app = typer.Typer(help="Inspect sync jobs", no_args_is_help=True)
app.add_typer(jobs_app, name="jobs")


@jobs_app.command("show")
def jobs_show(
    job_id: str = typer.Argument(..., help="Job id"),
    wait: bool = typer.Option(False, "--wait", help="Poll until the job finishes"),
    interval: float = typer.Option(2.0, "--interval", help="Seconds between polls"),
) -> None:
    """Show a job's status, progress and recent log lines."""
    store = JobStore()
    try:
        job = store.get_job(job_id)
        if wait:
            with console.status(f"Waiting for job {job_id}..."):
                while job_is_pending(job):
                    time.sleep(interval)
                    job = store.get_job(job_id)
    except JobStoreError as e:
        rprint(f"[red]✗[/red] {e}")
        raise typer.Exit(code=1)

    _print_job(job)


@jobs_app.command("list")
def jobs_list(
    limit: int = typer.Option(20, "--limit", help="Number of jobs to show"),
) -> None:
    """List the most recent sync jobs."""
    jobs = JobStore().list_jobs(limit=limit)
    if not jobs:
        rprint("[dim]No jobs yet[/dim]")
        return

    table = Table(title="Sync Jobs", show_header=True)
    table.add_column("Job", style="cyan")
    table.add_column("Kind")
    table.add_column("Status")
    table.add_column("Progress", justify="right")
    table.add_column("Created", style="dim")

    for job in jobs:
        style = STATUS_STYLES.get(job.status.value, "white")
        table.add_row(
            job.job_id,
            job.kind,
            f"[{style}]{job.status.value}[/{style}]",
            f"{job.processed_items}/{job.total_items}",
            job.created_at.strftime("%Y-%m-%d %H:%M:%S") if job.created_at else "-",
        )
    console.print(table)


# ========================================
# WORKER / CHECK
# ========================================


@app.command("worker")
def worker(
    once: bool = typer.Option(False, "--once", help="Run at most one queued job and exit"),
) -> None:
    """Run queued sync jobs in the foreground."""
    sync_worker = SyncWorker(JobStore())
    if once:
        ran = sync_worker.run_once()
        rprint("[green]✓[/green] Ran one job" if ran else "[dim]Queue is empty[/dim]")
        return

    rprint("[bold cyan]Sync worker running[/bold cyan] (Ctrl+C to stop)")
    try:
        sync_worker.run_forever()
    except KeyboardInterrupt:
        logger.info("Sync worker interrupted")


@app.command("check")
def check() -> None:
    """Resolve each user's course page and lecture database."""
    settings = get_settings()
    provider = SettingsCredentialProvider(settings)
    retry = RetryExecutor()

    table = Table(title="Notion Workspaces", show_header=True)
    table.add_column("User", style="cyan")
    table.add_column("Letter", justify="center")
    table.add_column("Lecture database")
    table.add_column("Status")

    failures = 0
    for user in provider.users():
        try:
            credential = provider.resolve(user)
            client = NotionWorkspaceClient.for_credential(credential)
            retry.run(lambda: client.get_root_page(credential.root_page_id), "get course page")
            database_id = retry.run(
                lambda: client.find_child_database(credential.root_page_id),
                "find lecture database",
            )
            table.add_row(user, USER_LETTERS[user], database_id, "[green]ok[/green]")
        except SyncError as e:
            failures += 1
            table.add_row(user, USER_LETTERS[user], "-", f"[red]{e.kind}[/red]: {e}")

    console.print(table)
    if settings.dry_run:
        rprint("[yellow]DRY_RUN is enabled: writes will be logged, not sent[/yellow]")
    if failures:
        raise typer.Exit(code=1)


# ========================================
# DB COMMANDS
# ========================================

db_app = typer.Typer(help="Database management")
app.add_typer(db_app, name="db")


@db_app.command("init")
def db_init() -> None:
    """Create the job tables (safe to run repeatedly)."""
    init_db()
    rprint("[green]✓[/green] Database tables initialized")


def main() -> None:
    """Entry point for the CLI."""
    app()


if __name__ == "__main__":
    main()
