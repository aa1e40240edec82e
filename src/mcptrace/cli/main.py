"""mcptrace CLI implementation.

Provides the command-line interface for inspecting telemetry sessions and
mining runs for behavioral patterns.
"""

from __future__ import annotations

import asyncio
import json
import logging
from datetime import datetime, timedelta
from pathlib import Path
from typing import TYPE_CHECKING, Annotated

import typer
from rich.console import Console
from rich.logging import RichHandler
from rich.panel import Panel
from rich.table import Table

from mcptrace.config import CLIOverrides, ConfigLoader, FileConfig
from mcptrace.exceptions import MCPTraceError
from mcptrace.models.config import TelemetryConfig
from mcptrace.telemetry.store import EventLogStore

if TYPE_CHECKING:
    from mcptrace.models.run import TestRun

DEFAULT_RESULTS_DIR = "test-results"

SEVERITY_COLORS = {"low": "blue", "medium": "yellow", "high": "red"}

app = typer.Typer(
    name="mcptrace",
    help="Telemetry capture and cross-run pattern mining for agent tool calls.",
    no_args_is_help=True,
)

console = Console()

ConfigOption = Annotated[
    Path | None,
    typer.Option(
        "--config",
        "-c",
        help="Path to mcptrace.yaml (discovered in the current directory if omitted).",
    ),
]
TelemetryDirOption = Annotated[
    Path | None,
    typer.Option(
        "--telemetry-dir",
        "-t",
        help="Directory holding session log files.",
    ),
]
ResultsDirOption = Annotated[
    Path | None,
    typer.Option(
        "--results-dir",
        "-d",
        help="Directory containing stored runs.",
    ),
]


@app.callback()
def configure(
    verbose: Annotated[
        bool,
        typer.Option("--verbose", "-v", help="Show debug logging."),
    ] = False,
) -> None:
    """Telemetry capture and cross-run pattern mining for agent tool calls."""
    if verbose:
        logging.basicConfig(
            level=logging.DEBUG,
            format="%(message)s",
            datefmt="[%X]",
            handlers=[RichHandler(console=console, rich_tracebacks=True)],
            force=True,
        )


def _resolve(
    config_path: Path | None,
    telemetry_dir: Path | None,
    **overrides: object,
) -> tuple[FileConfig | None, TelemetryConfig, EventLogStore]:
    """Load configuration and build the store it describes."""
    try:
        file_config = ConfigLoader.load_config(config_path)
        telemetry_config = ConfigLoader.resolve_telemetry_config(
            file_config,
            cli_overrides=CLIOverrides(
                telemetry_dir=str(telemetry_dir) if telemetry_dir else None,
                **overrides,
            ),
        )
    except MCPTraceError as e:
        console.print(f"[red]Error:[/red] {e}")
        raise typer.Exit(code=1) from e

    store = EventLogStore(
        telemetry_config.telemetry_dir,
        fallback_dirs=telemetry_config.fallback_dirs,
    )
    return file_config, telemetry_config, store


@app.command()
def sessions(
    config_path: ConfigOption = None,
    telemetry_dir: TelemetryDirOption = None,
    limit: Annotated[
        int | None,
        typer.Option("--limit", "-n", help="Show at most this many sessions."),
    ] = None,
) -> None:
    """List recorded telemetry sessions, newest first.

    Example:
        mcptrace sessions --telemetry-dir ./telemetry
    """
    _, _, store = _resolve(config_path, telemetry_dir)

    infos = store.list_sessions()
    if limit:
        infos = infos[:limit]

    if not infos:
        console.print("[yellow]No telemetry sessions found.[/yellow]")
        raise typer.Exit(code=0)

    table = Table(title="Telemetry Sessions")
    table.add_column("Session", style="cyan")
    table.add_column("Size", justify="right")
    table.add_column("Modified")
    table.add_column("Complete", justify="center")

    for info in infos:
        table.add_row(
            info.session_id,
            f"{info.size_bytes} B",
            datetime.fromtimestamp(info.modified_at).strftime("%Y-%m-%d %H:%M:%S"),
            "[green]✓[/green]" if info.complete else "[yellow]…[/yellow]",
        )

    console.print(table)


@app.command()
def show(
    session_id: Annotated[str, typer.Argument(help="Session to summarize.")],
    config_path: ConfigOption = None,
    telemetry_dir: TelemetryDirOption = None,
    as_json: Annotated[
        bool,
        typer.Option("--json", help="Print the summary as JSON."),
    ] = False,
) -> None:
    """Summarize one session's tool usage and errors.

    Example:
        mcptrace show 1700000000000-agent-1-gen0
    """
    from mcptrace.telemetry.summary import summarize_session  # noqa: PLC0415

    _, _, store = _resolve(config_path, telemetry_dir)

    session = store.read_session(session_id)
    if session is None:
        console.print(f"[red]Error:[/red] Session not found: {session_id}")
        raise typer.Exit(code=1)

    summary = summarize_session(session)

    if as_json:
        console.print_json(summary.model_dump_json())
        return

    complete = store.has_sentinel(session_id)
    console.print(
        Panel(
            f"[bold]{session.id}[/bold]\n"
            f"Agent: {session.agent_id}  Generation: {session.generation}\n"
            f"Calls: {summary.total_calls}  Error rate: {summary.error_rate:.0%}  "
            f"Avg time: {summary.average_execution_time:.1f}ms  "
            f"Median: {summary.median_execution_time:.1f}ms\n"
            f"Status: {'complete' if complete else 'in progress'}"
        )
    )

    if summary.tool_usage:
        table = Table(title="Tool Usage")
        table.add_column("Tool", style="cyan")
        table.add_column("Calls", justify="right")
        for tool, count in sorted(summary.tool_usage.items(), key=lambda kv: -kv[1]):
            table.add_row(tool, str(count))
        console.print(table)

    if summary.error_patterns:
        console.print("\n[red]Errors:[/red]")
        for error in summary.error_patterns:
            console.print(f"  {error.tool}: {error.error} (x{error.count})")

    if summary.slow_calls:
        console.print("\n[yellow]Slow calls:[/yellow]")
        for slow in summary.slow_calls:
            console.print(f"  #{slow.position + 1} {slow.tool}: {slow.execution_time:.1f}ms")


@app.command()
def wait(
    session_id: Annotated[str, typer.Argument(help="Session to wait for.")],
    config_path: ConfigOption = None,
    telemetry_dir: TelemetryDirOption = None,
    timeout: Annotated[
        float | None,
        typer.Option("--timeout", help="Seconds to wait before giving up."),
    ] = None,
) -> None:
    """Wait until a session writes its completion sentinel.

    Exits with code 1 if the session does not complete in time.

    Example:
        mcptrace wait 1700000000000-agent-1-gen0 --timeout 60
    """
    from mcptrace.telemetry.watcher import CompletionWatcher  # noqa: PLC0415

    _, telemetry_config, store = _resolve(
        config_path, telemetry_dir, wait_timeout_seconds=timeout
    )
    watcher = CompletionWatcher.from_config(store, telemetry_config)

    complete = asyncio.run(watcher.wait_for_session_complete(session_id))
    if not complete:
        console.print(
            f"[red]Timed out[/red] after {telemetry_config.wait_timeout_seconds:.0f}s "
            f"waiting for session {session_id}"
        )
        raise typer.Exit(code=1)

    console.print(f"[green]Session {session_id} is complete.[/green]")


@app.command()
def analyze(  # noqa: PLR0913 - Typer requires CLI args as function parameters
    config_path: ConfigOption = None,
    telemetry_dir: TelemetryDirOption = None,
    results_dir: ResultsDirOption = None,
    from_telemetry: Annotated[
        bool,
        typer.Option(
            "--from-telemetry",
            help="Analyze raw telemetry sessions instead of stored runs.",
        ),
    ] = False,
    save: Annotated[
        bool | None,
        typer.Option(
            "--save/--no-save",
            help="Store runs built from telemetry in the results directory.",
        ),
    ] = None,
    generation: Annotated[
        int | None,
        typer.Option("--generation", "-g", help="Only analyze runs of this generation."),
    ] = None,
    limit: Annotated[
        int | None,
        typer.Option("--limit", "-n", help="Analyze at most this many recent runs."),
    ] = None,
    min_frequency: Annotated[
        int | None,
        typer.Option("--min-frequency", help="Minimum supporting runs per pattern."),
    ] = None,
    confidence: Annotated[
        float | None,
        typer.Option("--confidence", help="Minimum pattern confidence (0-1)."),
    ] = None,
    output: Annotated[
        Path | None,
        typer.Option("--output", "-o", help="Write a JSON pattern report to this path."),
    ] = None,
) -> None:
    """Mine runs for recurring behavioral patterns.

    Example:
        mcptrace analyze --results-dir test-results --output patterns.json
    """
    from mcptrace.analysis import PatternAnalyzer, validate_patterns  # noqa: PLC0415

    file_config, _, store = _resolve(config_path, telemetry_dir)

    try:
        pattern_config = ConfigLoader.resolve_pattern_config(
            file_config,
            cli_min_frequency=min_frequency,
            cli_confidence_threshold=confidence,
        )
    except MCPTraceError as e:
        console.print(f"[red]Error:[/red] {e}")
        raise typer.Exit(code=1) from e

    runs = _load_runs(file_config, store, results_dir, from_telemetry, generation, limit, save)
    if not runs:
        console.print("[yellow]No runs available for analysis.[/yellow]")
        raise typer.Exit(code=0)

    analyzer = PatternAnalyzer(pattern_config)
    patterns = analyzer.rank_patterns(analyzer.analyze_patterns(runs), len(runs))

    try:
        validate_patterns(patterns, len(runs))
    except MCPTraceError as e:
        console.print(f"[red]Error:[/red] {e}")
        raise typer.Exit(code=1) from e

    if output:
        from mcptrace.reporting import JsonReportGenerator  # noqa: PLC0415

        JsonReportGenerator().generate(patterns, len(runs), output)
        console.print(f"[green]Pattern report written to {output}[/green]")

    if not patterns:
        console.print(f"[green]No significant patterns in {len(runs)} run(s).[/green]")
        return

    table = Table(title=f"Patterns ({len(runs)} runs)")
    table.add_column("Type", style="cyan")
    table.add_column("Severity", justify="center")
    table.add_column("Runs", justify="right")
    table.add_column("Confidence", justify="right")
    table.add_column("Description")

    for p in patterns:
        color = SEVERITY_COLORS.get(p.severity.value, "white")
        table.add_row(
            p.type.value,
            f"[{color}]{p.severity.value}[/{color}]",
            str(p.frequency),
            f"{p.confidence:.0%}",
            p.description,
        )

    console.print(table)


def _load_runs(  # noqa: PLR0913 - CLI helper needs multiple args
    file_config: FileConfig | None,
    store: EventLogStore,
    results_dir: Path | None,
    from_telemetry: bool,
    generation: int | None,
    limit: int | None,
    save: bool | None = None,
) -> list[TestRun]:
    """Load runs from stored records or raw telemetry.

    Runs built from telemetry are stored in the results directory when
    saving is enabled, so later analyses can reuse them.
    """
    from mcptrace.persistence import RunLoader, runs_from_sessions  # noqa: PLC0415

    results_config = ConfigLoader.resolve_results_config(
        file_config,
        cli_save=save,
        cli_dir=str(results_dir) if results_dir else None,
    )
    directory = Path(results_config.dir)

    if from_telemetry:
        sessions_ = store.load_all_sessions(limit=limit)
        if generation is not None:
            sessions_ = [s for s in sessions_ if s.generation == generation]
        runs = runs_from_sessions(sessions_)
        if results_config.save and runs:
            saved = _save_new_runs(directory, runs)
            if saved:
                console.print(f"[dim]Stored {saved} new run(s) in {directory}[/dim]")
        return runs

    if not directory.exists():
        console.print(f"[red]Error:[/red] Results directory not found: {directory}")
        raise typer.Exit(code=1)

    return RunLoader(directory).load_all(generation=generation, limit=limit)


def _save_new_runs(directory: Path, runs: list[TestRun]) -> int:
    """Store runs whose telemetry session is not already in the index."""
    from mcptrace.persistence import RunLoader, RunStorage  # noqa: PLC0415

    known = {e.session_id for e in RunLoader(directory).load_index().entries if e.session_id}
    storage = RunStorage(directory)
    saved = 0
    for run in runs:
        if run.telemetry is None or run.telemetry.id in known:
            continue
        storage.save(run)
        known.add(run.telemetry.id)
        saved += 1
    return saved


@app.command(name="runs")
def list_runs(
    config_path: ConfigOption = None,
    results_dir: ResultsDirOption = None,
) -> None:
    """Summarize stored runs by agent and generation.

    Example:
        mcptrace runs --results-dir test-results
    """
    from mcptrace.persistence import RunLoader  # noqa: PLC0415

    file_config, _, _ = _resolve(config_path, None)
    results_config = ConfigLoader.resolve_results_config(
        file_config,
        cli_dir=str(results_dir) if results_dir else None,
    )
    loader = RunLoader(Path(results_config.dir))

    by_agent = loader.get_entries_by_agent()
    if not by_agent:
        console.print("[yellow]No stored runs found.[/yellow]")
        raise typer.Exit(code=0)

    table = Table(title="Stored Runs")
    table.add_column("Agent", style="cyan")
    table.add_column("Runs", justify="right")
    table.add_column("Generations")
    table.add_column("Success", justify="right")
    table.add_column("Avg Score", justify="right")
    table.add_column("Last Run")

    for agent_id, entries in sorted(by_agent.items()):
        generations = sorted({e.generation for e in entries if e.generation is not None})
        successes = sum(1 for e in entries if e.success)
        table.add_row(
            agent_id,
            str(len(entries)),
            ", ".join(str(g) for g in generations) or "-",
            f"{successes}/{len(entries)}",
            f"{sum(e.score for e in entries) / len(entries):.1f}",
            max(e.timestamp for e in entries).strftime("%Y-%m-%d %H:%M:%S"),
        )

    console.print(table)
    generations = loader.list_generations()
    if generations:
        console.print(f"Generations: {', '.join(str(g) for g in generations)}")


@app.command()
def cleanup(
    config_path: ConfigOption = None,
    telemetry_dir: TelemetryDirOption = None,
    max_age_hours: Annotated[
        float | None,
        typer.Option("--max-age-hours", help="Remove sessions older than this."),
    ] = None,
    runs_max_age_days: Annotated[
        int | None,
        typer.Option(
            "--runs-max-age-days",
            help="Also remove stored runs older than this many days.",
        ),
    ] = None,
    results_dir: ResultsDirOption = None,
) -> None:
    """Remove stale telemetry session files and, optionally, old stored runs.

    Example:
        mcptrace cleanup --max-age-hours 48 --runs-max-age-days 30
    """
    file_config, telemetry_config, store = _resolve(config_path, telemetry_dir)

    hours = max_age_hours if max_age_hours is not None else telemetry_config.max_session_age_hours
    removed = store.cleanup(timedelta(hours=hours))
    console.print(f"Removed {removed} session file(s) older than {hours:g}h")

    if runs_max_age_days is None:
        return

    from mcptrace.persistence import RunStorage  # noqa: PLC0415

    results_config = ConfigLoader.resolve_results_config(
        file_config,
        cli_dir=str(results_dir) if results_dir else None,
    )
    removed_runs = RunStorage(Path(results_config.dir)).cleanup_old_runs(runs_max_age_days)
    console.print(f"Removed {removed_runs} stored run(s) older than {runs_max_age_days}d")


@app.command()
def export(
    output: Annotated[Path, typer.Argument(help="Destination JSON file.")],
    config_path: ConfigOption = None,
    telemetry_dir: TelemetryDirOption = None,
    limit: Annotated[
        int | None,
        typer.Option("--limit", "-n", help="Export at most this many recent sessions."),
    ] = None,
) -> None:
    """Export sessions and an aggregate summary to one JSON file.

    Example:
        mcptrace export telemetry-export.json
    """
    from mcptrace.telemetry.summary import export_sessions  # noqa: PLC0415

    _, _, store = _resolve(config_path, telemetry_dir)

    sessions_ = store.load_all_sessions(limit=limit)
    if not sessions_:
        console.print("[yellow]No telemetry sessions found.[/yellow]")
        raise typer.Exit(code=0)

    path = export_sessions(sessions_, output)
    console.print(f"[green]Exported {len(sessions_)} session(s) to {path}[/green]")


@app.command()
def config(
    config_path: ConfigOption = None,
) -> None:
    """Show the resolved telemetry configuration."""
    _, telemetry_config, _ = _resolve(config_path, None)
    console.print_json(json.dumps(telemetry_config.model_dump(mode="json")))


def main() -> None:
    """Entry point for the CLI."""
    app()


if __name__ == "__main__":
    main()
