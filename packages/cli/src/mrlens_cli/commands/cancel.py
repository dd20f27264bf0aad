"""cancel command — cancel a pending task."""

from __future__ import annotations

import click
from rich.console import Console

console = Console()


@click.command("cancel")
@click.argument("task_id", type=int)
@click.pass_context
def cancel_cmd(ctx, task_id: int):
    """Cancel a pending task. Running tasks cannot be cancelled."""
    store = ctx.obj["store"]
    task = store.get_task(task_id)
    if task is None:
        raise click.ClickException(f"Task {task_id} not found.")
    if not store.cancel_task(task_id):
        raise click.ClickException(f"Task {task_id} is {task.status}; only pending tasks can be cancelled.")
    console.print(f"[green]Cancelled task {task_id}.[/green]")
