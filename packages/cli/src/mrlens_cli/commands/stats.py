"""stats command — task counts per status."""

from __future__ import annotations

import click
from rich.console import Console
from rich.markup import escape
from rich.table import Table

from mrlens_store.models import TASK_STATUSES

console = Console()

_STATUS_STYLE = {
    "pending": "yellow",
    "running": "cyan",
    "completed": "green",
    "failed": "red",
    "cancelled": "dim",
}


@click.command("stats")
@click.option("--recent", default=0, show_default=True, help="Also list this many of the most recent tasks.")
@click.pass_context
def stats_cmd(ctx, recent: int):
    """Show how many tasks are in each state."""
    store = ctx.obj["store"]
    stats = store.get_stats()

    table = Table(title="Review Queue", show_header=True, header_style="bold cyan")
    table.add_column("Status", style="bold")
    table.add_column("Tasks", justify="right")
    for status in TASK_STATUSES:
        style = _STATUS_STYLE.get(status, "white")
        table.add_row(f"[{style}]{status}[/{style}]", str(stats.get(status, 0)))
    console.print(table)

    max_concurrent = ctx.obj["config"].queue.max_concurrent_tasks
    console.print(f"  Worker utilization: {stats.get('running', 0)}/{max_concurrent}")

    if recent > 0:
        tasks = store.list_tasks(limit=recent)
        task_table = Table(title="Recent Tasks", show_header=True, header_style="bold cyan")
        task_table.add_column("ID", justify="right")
        task_table.add_column("MR")
        task_table.add_column("Status")
        task_table.add_column("Attempt", justify="right")
        task_table.add_column("Trigger")
        task_table.add_column("Last error", max_width=50)
        for t in tasks:
            style = _STATUS_STYLE.get(t.status, "white")
            task_table.add_row(
                str(t.id),
                f"{t.project_path or t.project_id}!{t.mr_iid}",
                f"[{style}]{t.status}[/{style}]",
                f"{t.attempt_number}/{t.max_retries}",
                t.trigger_event or t.triggered_by,
                escape((t.last_error_message or "")[:50]),
            )
        console.print(task_table)
