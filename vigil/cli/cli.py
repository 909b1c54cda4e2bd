#!/usr/bin/env python3
"""Vigil CLI - Command-line interface for the Vigil task orchestrator."""

import asyncio
import json
import sys
from typing import Any, Awaitable, Callable, TypeVar

import click
from rich.console import Console
from rich.table import Table

from ..common.config import load_settings
from ..core.engine import Orchestrator
from ..core.logger import setup_logging
from ..core.worker import TaskWorker
from ..database.db import Database

console = Console()

T = TypeVar("T")

STATUS_STYLES = {
    "active": "[green]active[/green]",
    "running": "[yellow]running[/yellow]",
    "retrying": "[yellow]retrying[/yellow]",
    "scheduled": "[cyan]scheduled[/cyan]",
    "paused": "[dim]paused[/dim]",
    "failed": "[red]failed[/red]",
    "completed": "[blue]completed[/blue]",
}


def echo(message: str, **kwargs):
    """Print with rich console."""
    console.print(message)


def _run(action: Callable[[Orchestrator], Awaitable[T]]) -> T:
    """Run ``action`` against a started orchestrator, exiting 1 on error."""

    async def _main() -> T:
        settings = load_settings()
        async with Orchestrator(db=Database(settings.database), settings=settings) as engine:
            return await action(engine)

    try:
        return asyncio.run(_main())
    except Exception as e:
        echo(f"[red]Error: {e}[/red]")
        sys.exit(1)


@click.group()
@click.version_option(version="0.1.0", prog_name="vigil")
@click.option("--log-level", default=None, help="Override the configured log level")
def cli(log_level: str | None):
    """Vigil - Task orchestration for security and market monitors.

    Schedules, executes, retries and reports on recurring monitoring
    tasks backed by a local SQLite store.
    """
    setup_logging((log_level or load_settings().log_level).upper())


@cli.command()
def init():
    """Initialize the Vigil database and seed the built-in templates.

    Safe to run multiple times.
    """
    echo("Initializing Vigil database...")

    async def _init(engine: Orchestrator) -> int:
        return await engine.seed_templates()

    created = _run(_init)
    echo(f"[green]Database initialized successfully[/green] ({created} template(s) added)")


@cli.command()
@click.option(
    "--poll-interval",
    "-p",
    default=None,
    type=float,
    help="Seconds between due-task polls (default: from vigil.toml)",
)
def worker(poll_interval: float | None):
    """Start the scheduler worker.

    Registers cron jobs, polls for due frequency-based tasks and runs
    them until Ctrl+C or SIGTERM.

    Examples:
        vigil worker                   # Poll at the configured interval
        vigil worker -p 10             # Poll every 10 seconds
    """
    settings = load_settings()
    engine = Orchestrator(db=Database(settings.database), settings=settings)
    try:
        console.print("[bold green]Starting Vigil worker...[/bold green]")
        asyncio.run(TaskWorker(engine, poll_interval=poll_interval).start())
    except KeyboardInterrupt:
        pass


@cli.command()
@click.argument("task_id")
def run(task_id: str):
    """Execute a single task now.

    Examples:
        vigil run <task-id>
    """

    async def _execute(engine: Orchestrator):
        return await engine.execute_task(task_id, triggered_by="manual")

    execution = _run(_execute)
    if execution is None:
        echo("[yellow]Task is blocked by its dependencies[/yellow]")
        return

    status = "[green]succeeded[/green]" if execution["success"] else "[red]failed[/red]"
    echo(f"\n[bold]Execution {execution['id']}[/bold] {status}")
    echo(f"Duration:    {execution['duration']}ms")
    echo(f"Cached:      {execution['is_cached']}")
    if execution["error"]:
        echo(f"Error:       {execution['error']}")
    if execution["result"]:
        echo(json.dumps(execution["result"], indent=2, default=str))


@cli.command()
def due():
    """Execute every task that is currently due."""
    report = _run(lambda engine: engine.execute_all_due_tasks())
    echo(
        f"Executed {report['executed']} task(s): "
        f"[green]{report['successful']} succeeded[/green], "
        f"[red]{report['failed']} failed[/red]"
    )


@cli.command()
@click.argument("task_ids", nargs=-1, required=True)
@click.option(
    "--max-parallel",
    "-m",
    default=None,
    type=int,
    help="Maximum concurrent executions (default: from vigil.toml)",
)
def batch(task_ids: tuple[str, ...], max_parallel: int | None):
    """Execute several tasks with bounded parallelism.

    Examples:
        vigil batch <id1> <id2> <id3> -m 2
    """
    result = _run(lambda engine: engine.execute_batch(list(task_ids), max_parallel))
    echo(f"\n[bold]Batch {result['id']}[/bold]: {result['status']}")
    echo(f"Successful:  {result['successful_tasks']}/{result['total_tasks']}")
    echo(f"Failed:      {result['failed_tasks']}/{result['total_tasks']}")


@cli.command(name="list")
@click.option("--user", "-u", default=None, help="Filter by owner")
@click.option(
    "--status",
    "-s",
    type=click.Choice(list(STATUS_STYLES), case_sensitive=False),
    help="Filter by task status",
)
@click.option("--limit", "-l", default=50, type=int, show_default=True)
def list_tasks(user: str | None, status: str | None, limit: int):
    """List tasks with optional filtering."""
    tasks = _run(lambda engine: engine.list_tasks(user_id=user, status=status, limit=limit))
    if not tasks:
        echo("No tasks found")
        return

    table = Table(title="Tasks", show_header=True, header_style="bold magenta")
    table.add_column("ID", style="dim", width=34)
    table.add_column("Name", style="cyan")
    table.add_column("Type")
    table.add_column("Status", justify="center")
    table.add_column("Runs", justify="right")
    table.add_column("Success", justify="right")
    table.add_column("Next run", style="green")

    for task in tasks:
        table.add_row(
            task["id"],
            task["name"],
            task["type"],
            STATUS_STYLES.get(task["status"], task["status"]),
            str(task["execution_count"]),
            f"{task['success_rate']:.0f}%",
            task["cron_expression"] or task["next_run"] or "-",
        )
    console.print(table)


@cli.command()
@click.argument("task_id")
def pause(task_id: str):
    """Stop scheduling a task."""
    task = _run(lambda engine: engine.pause_task(task_id))
    echo(f"Task {task['id']} is now {STATUS_STYLES[task['status']]}")


@cli.command()
@click.argument("task_id")
def resume(task_id: str):
    """Resume a paused or failed task."""
    task = _run(lambda engine: engine.resume_task(task_id))
    echo(f"Task {task['id']} is now {STATUS_STYLES[task['status']]}")


@cli.command()
@click.argument("user_id")
@click.option("--task", "-t", "task_id", default=None, help="Restrict to one task")
@click.option("--start", default=None, help="First day (YYYY-MM-DD)")
@click.option("--end", default=None, help="Last day (YYYY-MM-DD)")
def analytics(user_id: str, task_id: str | None, start: str | None, end: str | None):
    """Show execution analytics for a user."""
    filters: dict[str, Any] = {}
    if task_id:
        filters["task_id"] = task_id
    if start:
        filters["start_date"] = start
    if end:
        filters["end_date"] = end

    report = _run(lambda engine: engine.get_task_analytics(user_id, filters))
    summary = report["summary"]

    echo(f"\n[bold]Analytics for {user_id}:[/bold]\n")
    echo(f"Executions:        {summary['total_executions']}")
    echo(f"Successful:        {summary['successful_executions']}")
    echo(f"Failed:            {summary['failed_executions']}")
    echo(f"Success rate:      {summary['success_rate']}%")
    echo(f"Avg duration:      {summary['average_execution_time']}ms")
    echo(f"Retries:           {summary['total_retries']}")
    echo(f"Cache hit rate:    {summary['cache_hit_rate']}%")

    if report["top_errors"]:
        table = Table(title="Top errors", show_header=True, header_style="bold red")
        table.add_column("Error")
        table.add_column("Count", justify="right")
        for item in report["top_errors"]:
            table.add_row(item["error"], str(item["count"]))
        console.print(table)

    if report["trend"]:
        table = Table(title="Daily trend", show_header=True, header_style="bold magenta")
        table.add_column("Date", style="green")
        table.add_column("Runs", justify="right")
        table.add_column("OK", justify="right")
        table.add_column("Failed", justify="right")
        table.add_column("Success", justify="right")
        for point in report["trend"]:
            table.add_row(
                point["date"],
                str(point["executions"]),
                str(point["successes"]),
                str(point["failures"]),
                f"{point['success_rate']}%",
            )
        console.print(table)


@cli.command()
def health():
    """Show engine health and load."""
    status = _run(lambda engine: engine.get_system_health())
    echo("\n[bold]System Health:[/bold]\n")
    echo(f"Status:            [green]{status['status']}[/green]")
    echo(f"Cron jobs:         {status['active_cron_jobs']}")
    echo(f"Due tasks:         {status['pending_tasks']}")
    echo(f"Running tasks:     {status['running_tasks']}")
    echo(f"Cache entries:     {status['cache_size']}")
    echo(f"Memory (RSS):      {status['memory']['rss'] / (1024 * 1024):.1f} MB")


@cli.command()
@click.option("--seed", is_flag=True, help="Insert the built-in templates first")
@click.option("--category", "-c", default=None, help="Filter by category")
def templates(seed: bool, category: str | None):
    """List task templates."""

    async def _templates(engine: Orchestrator):
        if seed:
            created = await engine.seed_templates()
            echo(f"[green]Seeded {created} template(s)[/green]")
        filters = {"category": category} if category else {}
        return await engine.list_templates(**filters)

    found = _run(_templates)
    if not found:
        echo("No templates found (try --seed)")
        return

    table = Table(title="Templates", show_header=True, header_style="bold magenta")
    table.add_column("ID", style="dim", width=34)
    table.add_column("Name", style="cyan")
    table.add_column("Type")
    table.add_column("Category")
    table.add_column("Required")
    table.add_column("Frequency", style="green")
    for template in found:
        table.add_row(
            template["id"],
            template["name"],
            template["type"],
            template["category"],
            ", ".join(template["required_fields"]) or "-",
            template["default_frequency"],
        )
    console.print(table)


@cli.command(name="from-template")
@click.argument("template_id")
@click.option("--user", "-u", "user_id", required=True, help="Owner of the new task")
@click.option("--name", default=None, help="Task name")
@click.option("--frequency", "-f", default=None, help="Frequency phrase")
@click.option("--cron", default=None, help="Cron expression")
@click.option("--config", "config_json", default=None, help="Config overrides as JSON")
def from_template(
    template_id: str,
    user_id: str,
    name: str | None,
    frequency: str | None,
    cron: str | None,
    config_json: str | None,
):
    """Create a task from a template.

    Examples:
        vigil from-template <template-id> -u alice --config '{"wallet_address": "..."}'
    """
    overrides: dict[str, Any] = {}
    if name:
        overrides["name"] = name
    if frequency:
        overrides["frequency"] = frequency
    if cron:
        overrides["cron_expression"] = cron
    if config_json:
        try:
            overrides["config"] = json.loads(config_json)
        except json.JSONDecodeError as e:
            raise click.BadParameter(f"--config is not valid JSON: {e}")

    outcome = _run(lambda engine: engine.create_task_from_template(template_id, user_id, overrides))

    if outcome["task"] is None:
        echo(
            "[red]Missing required fields:[/red] "
            + ", ".join(outcome["missing_required_fields"])
        )
    else:
        echo(f"[green]Created task {outcome['task']['id']}[/green] ({outcome['task']['name']})")
    for tip in outcome["recommendations"]:
        echo(f"[yellow]Tip:[/yellow] {tip}")
    if outcome["task"] is None:
        sys.exit(1)


@cli.command()
@click.option("--days", "-d", default=None, type=int, help="Retention in days")
def cleanup(days: int | None):
    """Delete old executions, analytics, logs and expired cache entries."""
    removed = _run(lambda engine: engine.cleanup(days))
    for kind, count in removed.items():
        echo(f"{kind.replace('_', ' ').capitalize():<18} {count}")


@cli.command()
@click.option(
    "--host",
    default="127.0.0.1",
    help="Host to bind to",
    show_default=True,
)
@click.option(
    "--port",
    default=8000,
    type=int,
    help="Port to bind to",
    show_default=True,
)
@click.option(
    "--reload",
    is_flag=True,
    help="Enable auto-reload for development",
)
def web(host: str, port: int, reload: bool):
    """Start the Vigil HTTP API.

    Examples:
        vigil web                      # Start on 127.0.0.1:8000
        vigil web --host 0.0.0.0       # Bind to all interfaces
    """
    try:
        import uvicorn

        console.print("[bold green]Starting Vigil API...[/bold green]")
        console.print(f"[blue]API docs: http://{host}:{port}/docs[/blue]")

        uvicorn.run(
            "vigil.web.main:app",
            host=host,
            port=port,
            reload=reload,
            log_level="info",
            access_log=not reload,
        )
    except ImportError:
        console.print("[red]FastAPI and uvicorn are required for the web API[/red]")
        console.print("[yellow]Install with: pip install 'vigil-tasks[web]'[/yellow]")
        sys.exit(1)
    except KeyboardInterrupt:
        console.print("\n[yellow]Web server stopped[/yellow]")


if __name__ == "__main__":
    cli()
