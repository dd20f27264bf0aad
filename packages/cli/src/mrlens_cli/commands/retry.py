"""retry command — re-queue a review's merge request."""

from __future__ import annotations

import click
from rich.console import Console

console = Console()


@click.command("retry")
@click.argument("review_id", type=int)
@click.pass_context
def retry_cmd(ctx, review_id: int):
    """Queue another run of an existing review.

    The new task is linked to REVIEW_ID, so the run updates that review
    instead of starting a new history entry.
    """
    from mrlens_store.models import NewTask

    store = ctx.obj["store"]
    config = ctx.obj["config"]

    review = store.get_review(review_id)
    if review is None:
        raise click.ClickException(f"Review {review_id} not found.")
    if review.status == "running":
        raise click.ClickException(f"Review {review_id} is still running.")

    task_id = store.enqueue(
        NewTask(
            project_id=review.project_id,
            mr_iid=review.mr_iid,
            project_path=review.project_path,
            mr_title=review.mr_title,
            mr_author=review.mr_author,
            mr_description=review.mr_description,
            source_branch=review.source_branch,
            target_branch=review.target_branch,
            triggered_by="manual",
            trigger_event="retry",
            review_id=review.id,
            max_retries=config.queue.max_retries,
        )
    )
    console.print(f"[green]Queued task {task_id}[/green] to retry review {review_id}")
