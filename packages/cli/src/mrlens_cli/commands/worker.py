"""worker command — run the scheduler until interrupted."""

from __future__ import annotations

import signal
import threading

import click
from rich.console import Console

console = Console()


def _wait_for_shutdown() -> None:
    """Block until SIGINT or SIGTERM."""
    stop = threading.Event()

    def _handler(signum, _frame):
        console.print(f"\n[yellow]Received {signal.Signals(signum).name}, draining in-flight reviews...[/yellow]")
        stop.set()

    signal.signal(signal.SIGINT, _handler)
    signal.signal(signal.SIGTERM, _handler)
    stop.wait()


@click.command("worker")
@click.pass_context
def worker_cmd(ctx):
    """Poll the queue and run reviews until SIGINT/SIGTERM.

    Shutdown waits for in-flight reviews to finish; nothing is abandoned.
    """
    from mrlens_cli.cli import _build_context

    app = _build_context(ctx)
    queue = app.config.queue
    if not queue.enabled:
        raise click.UsageError("The queue is disabled (queue.enabled: false in .mrlens.yml).")

    console.print(
        f"[bold]mrlens worker[/bold] · {app.config.platform} · {app.config.ai.provider} · "
        f"max {queue.max_concurrent_tasks} concurrent · poll every {queue.polling_interval_ms}ms"
    )
    app.start()
    try:
        _wait_for_shutdown()
    finally:
        app.stop()
    console.print("[green]Worker stopped.[/green]")
