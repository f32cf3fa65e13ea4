"""
Command-line interface for Repository Health Guard.
"""

import asyncio
import functools
import json
from pathlib import Path
from typing import Any, Awaitable, Callable, TypeVar

import typer
from rich.console import Console
from rich.markup import escape
from rich.table import Table

from repo_health_guard.config import Settings, load_settings
from repo_health_guard.dependency_parsers.javascript.npm import UploadedFile
from repo_health_guard.errors import RepoHealthError
from repo_health_guard.logging_setup import setup_logging
from repo_health_guard.models import ManifestReport, RepositoryHealthRecord
from repo_health_guard.runner import BackgroundRunner
from repo_health_guard.service import RepoHealthService
from repo_health_guard.storage import (
    HealthStore,
    InMemoryHealthStore,
    JsonFileHealthStore,
)

T = TypeVar("T")

# --- Typer App ---
app = typer.Typer(help="Score the health of GitHub repositories and their npm dependencies.")
console = Console()

LABEL_COLORS = {
    "Excellent": "green",
    "Good": "cyan",
    "Moderate": "yellow",
    "Poor": "red",
}

# --- Helper Functions ---


def syncify(func: Callable[..., Awaitable[T]]) -> Callable[..., T]:
    """Run an async typer command on a fresh event loop."""

    @functools.wraps(func)
    def wrapper(*args: Any, **kwargs: Any) -> T:
        return asyncio.run(func(*args, **kwargs))

    return wrapper


def _fail(message: str) -> typer.Exit:
    console.print(f"[red]Error:[/red] {escape(message)}", highlight=False)
    return typer.Exit(code=1)


def _load_cli_settings(**overrides: Any) -> Settings:
    try:
        return load_settings(
            project_root=Path.cwd(),
            **{key: value for key, value in overrides.items() if value is not None},
        )
    except ValueError as e:
        raise _fail(str(e)) from None


def build_store(store_path: Path | None) -> HealthStore:
    if store_path is None:
        return InMemoryHealthStore()
    return JsonFileHealthStore(store_path)


def build_service(settings: Settings, store: HealthStore) -> RepoHealthService:
    return RepoHealthService(store, settings=settings)


def read_upload(path: Path) -> UploadedFile:
    """Load a manifest, lockfile or zip archive from disk as an upload."""
    path = path.expanduser()
    if not path.exists():
        raise _fail(f"File not found: {path}")
    if not path.is_file():
        raise _fail(f"Path is not a file: {path}")
    content_type = "application/zip" if path.suffix.lower() == ".zip" else None
    return UploadedFile(filename=path.name, content=path.read_bytes(), content_type=content_type)


def _label_markup(label: str) -> str:
    color = LABEL_COLORS.get(label, "white")
    return f"[{color}]{label}[/{color}]"


def display_record(record: RepositoryHealthRecord) -> None:
    """Display one repository health record in a rich table."""
    table = Table(title=f"Repository Health: {record.repo_id}")
    table.add_column("Metric", justify="left", style="cyan", no_wrap=True)
    table.add_column("Value", justify="left")

    overall = record.overall_health
    table.add_row("Overall", f"{overall.score}/100 {_label_markup(overall.label)}")
    table.add_row("Stars", str(record.stars))
    table.add_row("Forks", str(record.forks))
    table.add_row("Open issues", str(record.open_issues))
    table.add_row(
        "Last push",
        record.last_pushed.strftime("%Y-%m-%d") if record.last_pushed else "unknown",
    )
    table.add_row("Commits (12 weeks)", str(sum(record.commit_activity[-12:])))
    table.add_row("Security alerts", str(record.security_alerts))
    table.add_row("Dependency health", f"{record.dependency_health}/100")
    table.add_row(
        "Risky dependencies",
        ", ".join(record.risky_dependencies) if record.risky_dependencies else "none",
    )
    console.print(table)


def display_manifest_report(report: ManifestReport) -> None:
    """Display a dependency-only report."""
    analysis = report.analysis
    console.print(
        f"[bold]{escape(report.project_name)}[/bold]: {report.total_dependencies} dependencies, "
        f"health {analysis.score}/100 {_label_markup(analysis.health)}"
    )

    if analysis.vulnerabilities:
        table = Table(title="Vulnerable packages", show_header=True, header_style="bold magenta")
        table.add_column("Package", style="cyan", no_wrap=True)
        table.add_column("Severity")
        table.add_column("Advisories")
        for name, vulnerability in analysis.vulnerabilities.items():
            table.add_row(name, vulnerability.severity, "; ".join(vulnerability.via) or "-")
        console.print(table)

    if analysis.outdated:
        table = Table(title="Outdated packages", show_header=True, header_style="bold magenta")
        table.add_column("Package", style="cyan", no_wrap=True)
        table.add_column("Current", justify="right")
        table.add_column("Latest", justify="right", style="green")
        for package in analysis.outdated:
            table.add_row(package.name, package.current, package.latest)
        console.print(table)

    if analysis.unstable:
        console.print(
            f"[yellow]Pre-release versions:[/yellow] {escape(', '.join(analysis.unstable))}"
        )


def _echo_json(data: Any) -> None:
    typer.echo(json.dumps(data, indent=2, ensure_ascii=False))


# --- Commands ---


@app.command()
@syncify
async def analyze(
    url: str = typer.Argument(..., help="GitHub repository URL (https or git@ form)."),
    token: str | None = typer.Option(
        None,
        "--token",
        "-t",
        help="GitHub token for this run (default: GITHUB_TOKEN).",
    ),
    manifest: Path | None = typer.Option(
        None,
        "--manifest",
        "-m",
        help="package.json, package-lock.json or zip archive to analyze with the repository.",
    ),
    docker: bool | None = typer.Option(
        None,
        "--docker/--no-docker",
        help="Run npm inside a container. Defaults to auto-detection.",
    ),
    json_output: bool = typer.Option(False, "--json", help="Print the record as JSON."),
    store: Path | None = typer.Option(
        None,
        "--store",
        "-s",
        help="Persist the record to this gzip JSON file.",
    ),
    verbose: bool = typer.Option(False, "--verbose", "-v", help="Enable debug logging."),
    insecure: bool = typer.Option(
        False,
        "--insecure",
        help="Disable SSL certificate verification for HTTPS requests.",
    ),
):
    """Analyze a GitHub repository and store its health record."""
    setup_logging(verbose)
    settings = _load_cli_settings(
        use_docker=docker,
        store_path=store,
        verify_ssl=False if insecure else None,
    )
    upload = read_upload(manifest) if manifest else None

    try:
        service = build_service(settings, build_store(settings.store_path))
    except RepoHealthError as e:
        raise _fail(e.message) from None

    try:
        record = await service.analyze_by_url(url, upload=upload, token=token)
    except RepoHealthError as e:
        raise _fail(e.message) from None
    finally:
        await service.aclose()

    if json_output:
        _echo_json(record.to_dict())
    else:
        display_record(record)


@app.command()
@syncify
async def manifest(
    path: Path = typer.Argument(..., help="package.json, package-lock.json or zip archive."),
    docker: bool | None = typer.Option(
        None,
        "--docker/--no-docker",
        help="Run npm inside a container. Defaults to auto-detection.",
    ),
    json_output: bool = typer.Option(False, "--json", help="Print the report as JSON."),
    verbose: bool = typer.Option(False, "--verbose", "-v", help="Enable debug logging."),
):
    """Analyze a manifest's dependencies without contacting GitHub."""
    setup_logging(verbose)
    settings = _load_cli_settings(use_docker=docker)
    upload = read_upload(path)

    try:
        service = build_service(settings, InMemoryHealthStore())
    except RepoHealthError as e:
        raise _fail(e.message) from None

    try:
        report = await service.analyze_manifest_only(upload=upload)
    except RepoHealthError as e:
        raise _fail(e.message) from None
    finally:
        await service.aclose()

    if json_output:
        _echo_json(report.to_dict())
    else:
        display_manifest_report(report)


@app.command()
@syncify
async def show(
    owner: str = typer.Argument(..., help="Repository owner."),
    repo: str = typer.Argument(..., help="Repository name."),
    store: Path | None = typer.Option(
        None,
        "--store",
        "-s",
        help="Gzip JSON file holding stored records.",
    ),
    json_output: bool = typer.Option(False, "--json", help="Print the record as JSON."),
):
    """Show the stored health record of a repository."""
    settings = _load_cli_settings(store_path=store)
    if settings.store_path is None:
        raise _fail("A store file is required (--store or the store_path setting).")

    store_backend = JsonFileHealthStore(settings.store_path)
    record = await store_backend.find_one(owner, repo)
    if record is None:
        raise _fail(f"No analysis found for {owner}/{repo}")

    if json_output:
        _echo_json(record.to_dict())
    else:
        display_record(record)


@app.command()
@syncify
async def watch(
    repos: list[str] | None = typer.Argument(
        None,
        help="Repositories to track as owner/repo (default: the tracked_repos setting).",
    ),
    interval: float | None = typer.Option(
        None,
        "--interval",
        "-i",
        help="Seconds between passes (default: 300).",
    ),
    store: Path | None = typer.Option(
        None,
        "--store",
        "-s",
        help="Persist records to this gzip JSON file.",
    ),
    once: bool = typer.Option(False, "--once", help="Run a single pass and exit."),
    verbose: bool = typer.Option(False, "--verbose", "-v", help="Enable debug logging."),
):
    """Re-analyze tracked repositories on an interval."""
    setup_logging(verbose)
    settings = _load_cli_settings(runner_interval=interval, store_path=store)
    tracked = list(repos) if repos else list(settings.tracked_repos)
    if not tracked:
        raise _fail("No repositories to track. Pass owner/repo arguments or set tracked_repos.")

    try:
        service = build_service(settings, build_store(settings.store_path))
    except RepoHealthError as e:
        raise _fail(e.message) from None

    runner = BackgroundRunner(service, tracked, interval=settings.runner_interval)
    try:
        if once:
            outcomes = await runner.run_once()
        else:
            console.print(
                f"Tracking {len(tracked)} repositories every {settings.runner_interval:g}s. "
                "Press Ctrl+C to stop."
            )
            await runner.run_forever()
            return
    finally:
        await service.aclose()

    table = Table(title="Tracked repositories")
    table.add_column("Repository", style="cyan", no_wrap=True)
    table.add_column("Result")
    for repo_id, succeeded in outcomes.items():
        table.add_row(repo_id, "[green]ok[/green]" if succeeded else "[red]failed[/red]")
    console.print(table)

    if not all(outcomes.values()):
        raise typer.Exit(code=1)


if __name__ == "__main__":
    app()
