"""route-event command — replay a webhook payload through the event router."""

from __future__ import annotations

import json

import click
from rich.console import Console

console = Console()


@click.command("route-event")
@click.argument("event_file", type=click.File("r"))
@click.pass_context
def route_event_cmd(ctx, event_file):
    """Route a JSON webhook payload from EVENT_FILE ("-" for stdin).

    The payload is treated as already authenticated.
    """
    from mrlens_queue.events import EventRouter

    try:
        event = json.load(event_file)
    except json.JSONDecodeError as e:
        raise click.UsageError(f"Invalid JSON: {e}")
    if not isinstance(event, dict):
        raise click.UsageError("The event payload must be a JSON object.")

    config = ctx.obj["config"]
    router = EventRouter(ctx.obj["store"], config.webhook, max_retries=config.queue.max_retries)
    result = router.route(event)

    if result.handled:
        console.print(f"[green]Queued task {result.task_id}[/green] ({result.event_type})")
    else:
        console.print(f"[yellow]Skipped {result.event_type or 'event'}: {result.skip_reason}[/yellow]")
