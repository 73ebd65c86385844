"""CLI for the activity deduplication engine.

Developer and operator entry point: runs the same pipeline as the Celery task
and the admin API, against the configured database or an exported JSON file.
"""

import json
import sys
from collections.abc import Iterator
from contextlib import contextmanager
from datetime import UTC, datetime, timedelta
from pathlib import Path

import typer
from loguru import logger
from rich.console import Console
from rich.json import JSON
from rich.panel import Panel
from rich.table import Table

# Bootstrap must be imported before activity_dedup imports to set up sys.path
try:
    import cli.bootstrap  # noqa: F401
except ImportError:
    _project_root = Path(__file__).parent.parent
    if str(_project_root) not in sys.path:
        sys.path.insert(0, str(_project_root))

from activity_dedup.config.settings import settings
from activity_dedup.db.models import Base
from activity_dedup.db.session import get_engine, get_session
from activity_dedup.dedup.comparator import compare_activities
from activity_dedup.dedup.config import ClusterMode, DedupConfig
from activity_dedup.dedup.errors import ComparatorError, InputError
from activity_dedup.dedup.memory_repository import InMemoryActivityRepository
from activity_dedup.dedup.repository import SqlActivityRepository
from activity_dedup.dedup.runner import cleanup_user, deduplicate_user
from activity_dedup.dedup.service import run_deduplication, validate_user_id
from activity_dedup.dedup.types import DedupReport, GroupStatus
from activity_dedup.workers.locks import dedup_lock_key, lock_manager

console = Console()

app = typer.Typer(
    name="activity-dedup",
    help="Detect and merge duplicate activities ingested from multiple providers",
    add_completion=False,
)

_STATUS_STYLES: dict[str, str] = {
    GroupStatus.MERGED: "green",
    GroupStatus.PLANNED: "cyan",
    GroupStatus.SKIPPED: "yellow",
    GroupStatus.FAILED: "red",
}


def _setup_logging(debug: bool = False) -> None:
    """Set up console logging.

    Args:
        debug: Enable debug logging level
    """
    logger.remove()
    log_level = "DEBUG" if debug else settings.log_level
    logger.add(
        sys.stderr,
        format=(
            "<green>{time:YYYY-MM-DD HH:mm:ss}</green> | "
            "<level>{level: <8}</level> | "
            "<cyan>{file.name}</cyan>:<cyan>{line}</cyan> - "
            "<level>{message}</level>"
        ),
        level=log_level,
        colorize=True,
    )


def _parse_mode(mode: str | None) -> ClusterMode | None:
    if mode is None:
        return None
    try:
        return ClusterMode(mode)
    except ValueError as e:
        raise typer.BadParameter(f"mode must be one of: {', '.join(m.value for m in ClusterMode)}") from e


def _require_user_id(user_id: str) -> str:
    try:
        return validate_user_id(user_id)
    except InputError as e:
        console.print(f"[red]✗ {e}[/red]")
        raise typer.Exit(code=1) from e


@contextmanager
def _user_lock(user_id: str, no_lock: bool) -> Iterator[None]:
    """Hold the per-user deduplication lock for the block; exit 2 when it is busy."""
    if no_lock:
        yield
        return
    with lock_manager.acquire(dedup_lock_key(user_id)) as acquired:
        if not acquired:
            console.print(f"[yellow]Another deduplication run holds the lock for {user_id}; skipping[/yellow]")
            raise typer.Exit(code=2)
        yield


def _print_report(report: DedupReport, as_json: bool) -> None:
    if as_json:
        console.print(JSON(json.dumps(report.to_dict(), default=str)))
        return

    title = "Deduplication plan (dry run)" if report.dry_run else "Deduplication result"
    console.print(
        Panel(
            f"User: {report.user_id}\n"
            f"Mode: {report.cluster_mode}\n"
            f"Candidates: {report.candidates_loaded} (excluded: {len(report.excluded_activity_ids)})\n"
            f"Groups found: {report.groups_found} | Duplicates: {report.total_duplicates}\n"
            f"Merged: {report.merged_count} | Kept: {report.kept_count} | "
            f"Failed: {report.failed_count} | Skipped: {report.skipped_count} | "
            f"Already resolved: {report.already_resolved_count}",
            title=title,
        )
    )

    if report.per_group:
        table = Table(show_header=True, header_style="bold")
        table.add_column("Canonical")
        table.add_column("Duplicates")
        table.add_column("Status")
        table.add_column("Detail")
        for outcome in report.per_group:
            style = _STATUS_STYLES.get(outcome.status, "white")
            detail = outcome.error or ""
            if outcome.merge is not None and outcome.merge.reparented:
                detail = ", ".join(f"{kind}: {count}" for kind, count in sorted(outcome.merge.reparented.items()))
            table.add_row(
                outcome.canonical_id,
                "\n".join(outcome.duplicate_ids),
                f"[{style}]{outcome.status}[/{style}]",
                detail,
            )
        console.print(table)

    for error in report.errors:
        console.print(f"[red]✗ {error}[/red]")
    if report.errors_truncated:
        console.print(f"[red]... and {report.errors_truncated} more errors[/red]")


@app.command()
def deduplicate(
    user_id: str = typer.Option(..., "--user-id", "-u", help="User ID whose activities are reconciled"),
    dry_run: bool = typer.Option(False, "--dry-run", help="Plan only, no changes"),
    mode: str | None = typer.Option(None, "--mode", help="Clustering mode: single_seed or transitive"),
    days: int | None = typer.Option(None, "--days", help="Only consider activities from the last N days"),
    as_json: bool = typer.Option(False, "--json", help="Print the report as JSON"),
    no_lock: bool = typer.Option(False, "--no-lock", help="Skip the per-user Redis lock"),
    debug: bool = typer.Option(False, "--debug", help="Enable debug logging"),
) -> None:
    """Run duplicate detection and merge for one user."""
    _setup_logging(debug)
    user_id = _require_user_id(user_id)
    cluster_mode = _parse_mode(mode)
    since = datetime.now(UTC) - timedelta(days=days) if days else None

    with _user_lock(user_id, no_lock):
        report = deduplicate_user(user_id, dry_run=dry_run, mode=cluster_mode, since=since)

    _print_report(report, as_json)
    if report.has_failures:
        raise typer.Exit(code=1)


@app.command()
def cleanup(
    user_id: str = typer.Option(..., "--user-id", "-u", help="User ID"),
    dry_run: bool = typer.Option(False, "--dry-run", help="List deletable duplicates without deleting"),
    no_lock: bool = typer.Option(False, "--no-lock", help="Skip the per-user Redis lock"),
    debug: bool = typer.Option(False, "--debug", help="Enable debug logging"),
) -> None:
    """Hard-delete duplicate activities that own no unique child data."""
    _setup_logging(debug)
    user_id = _require_user_id(user_id)

    with _user_lock(user_id, no_lock):
        result = cleanup_user(user_id, dry_run=dry_run)

    verb = "Would delete" if dry_run else "Deleted"
    console.print(f"{verb}: {len(result.deleted_ids)} | Retained: {len(result.retained_ids)} | Failed: {len(result.failed)}")
    for activity_id in result.deleted_ids:
        console.print(f"  - {activity_id}")
    for activity_id, error in result.failed.items():
        console.print(f"[red]✗ {activity_id}: {error}[/red]")
    if result.failed:
        raise typer.Exit(code=1)


@app.command()
def compare(
    first_id: str = typer.Argument(..., help="First activity ID"),
    second_id: str = typer.Argument(..., help="Second activity ID"),
    user_id: str = typer.Option(..., "--user-id", "-u", help="User ID owning both activities"),
) -> None:
    """Explain the comparator verdict for two stored activities."""
    _setup_logging(False)
    with get_session() as session:
        repository = SqlActivityRepository(session)
        first = repository.get_activity(user_id, first_id)
        second = repository.get_activity(user_id, second_id)

    missing = [aid for aid, record in ((first_id, first), (second_id, second)) if record is None]
    if missing:
        console.print(f"[red]✗ Activity not found: {', '.join(missing)}[/red]")
        raise typer.Exit(code=1)

    try:
        result = compare_activities(first, second, DedupConfig.from_settings(settings))
    except ComparatorError as e:
        console.print(f"[red]✗ {e}[/red]")
        raise typer.Exit(code=1) from e

    for line in result.reasoning:
        console.print(f"  {line}")
    verdict = "[green]DUPLICATE[/green]" if result.is_duplicate else "[yellow]DISTINCT[/yellow]"
    console.print(f"Verdict: {verdict}")


@app.command("plan-file")
def plan_file(
    path: Path = typer.Argument(..., exists=True, dir_okay=False, help="JSON export of activities"),
    user_id: str = typer.Option(..., "--user-id", "-u", help="User ID inside the export"),
    mode: str | None = typer.Option(None, "--mode", help="Clustering mode: single_seed or transitive"),
    as_json: bool = typer.Option(False, "--json", help="Print the report as JSON"),
) -> None:
    """Plan deduplication for an exported activity file (never writes anything)."""
    _setup_logging(False)
    repository = InMemoryActivityRepository.from_json_file(path)
    try:
        report = run_deduplication(
            user_id,
            repository,
            dry_run=True,
            config=DedupConfig.from_settings(settings),
            mode=_parse_mode(mode),
        )
    except InputError as e:
        console.print(f"[red]✗ {e}[/red]")
        raise typer.Exit(code=1) from e
    _print_report(report, as_json)


@app.command("init-db")
def init_db() -> None:
    """Create database tables."""
    _setup_logging(False)
    Base.metadata.create_all(bind=get_engine())
    console.print("[green]✓ Database tables created[/green]")


def main() -> None:
    app()


if __name__ == "__main__":
    main()
