"""history command — past reviews and their logs."""

from __future__ import annotations

from datetime import datetime, timezone

import click
from rich.console import Console
from rich.markup import escape
from rich.table import Table

console = Console()

_STATUS_STYLE = {"pending": "yellow", "running": "cyan", "completed": "green", "failed": "red"}


def _fmt_ms(ms: int | None) -> str:
    if not ms:
        return ""
    return datetime.fromtimestamp(ms / 1000, tz=timezone.utc).strftime("%Y-%m-%d %H:%M:%S")


def _show_review(store, review_id: int) -> None:
    review = store.get_review(review_id)
    if review is None:
        raise click.ClickException(f"Review {review_id} not found.")

    style = _STATUS_STYLE.get(review.status, "white")
    console.print(f"\n[bold]Review {review.id}[/bold] · {review.project_path or review.project_id}!{review.mr_iid}")
    console.print(f"  {escape(review.mr_title)}")
    console.print(f"  Status: [{style}]{review.status}[/{style}] · retries: {review.retry_count}")
    if review.last_error_message:
        console.print(f"  Last error: [red]{escape(review.last_error_message)}[/red]")

    for log in store.list_review_logs(review_id):
        if log.log_type == "error":
            retry_note = "retryable" if log.retryable else "not retryable"
            console.print(f"\n[red]✗ {log.error_type}[/red] ({retry_note}) at {_fmt_ms(log.created_at)}")
            console.print(f"  {escape(log.error_message or '')}")
            continue
        counts = (log.summary or {}).get("issuesCount", {})
        console.print(
            f"\n[green]✓ Result[/green] via {log.provider_used}/{log.model_used} in {log.duration_ms}ms · "
            f"{log.inline_comments_posted}/{len(log.inline_comments)} inline comment(s) posted"
        )
        console.print(
            "  "
            + ", ".join(f"{counts.get(s, 0)} {s}" for s in ("critical", "major", "minor", "suggestion"))
        )
        for c in log.inline_comments:
            console.print(
                f"  [cyan]{escape(str(c.get('file')))}[/cyan]:{c.get('line')} ({c.get('severity')}) "
                f"{escape(str(c.get('message')))}"
            )


@click.command("history")
@click.option("--project", default=None, help="Filter by project id.")
@click.option("--mr", "mr_iid", type=int, default=None, help="Filter by MR number.")
@click.option("--status", type=click.Choice(["pending", "running", "completed", "failed"]), default=None)
@click.option("--limit", default=20, show_default=True, help="Maximum number of records to show.")
@click.option("--review", "review_id", type=int, default=None, help="Show one review with its logs.")
@click.pass_context
def history_cmd(ctx, project: str | None, mr_iid: int | None, status: str | None, limit: int, review_id: int | None):
    """Show past reviews, most recent first."""
    store = ctx.obj["store"]

    if review_id is not None:
        _show_review(store, review_id)
        return

    reviews = store.list_reviews(project_id=project, mr_iid=mr_iid, status=status, limit=limit)
    if not reviews:
        console.print("[yellow]No review records found.[/yellow]")
        return

    table = Table(title="Review History", show_header=True, header_style="bold cyan")
    table.add_column("ID", justify="right")
    table.add_column("MR", style="bold")
    table.add_column("Title", max_width=40)
    table.add_column("Status")
    table.add_column("Trigger")
    table.add_column("Retries", justify="right")
    table.add_column("Started At")

    for r in reviews:
        style = _STATUS_STYLE.get(r.status, "white")
        table.add_row(
            str(r.id),
            f"{r.project_path or r.project_id}!{r.mr_iid}",
            escape(r.mr_title[:40]),
            f"[{style}]{r.status}[/{style}]",
            r.trigger_event or r.triggered_by,
            str(r.retry_count),
            _fmt_ms(r.started_at),
        )

    console.print(table)
