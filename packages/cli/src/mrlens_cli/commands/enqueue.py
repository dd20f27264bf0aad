"""enqueue command — queue a review for a merge request."""

from __future__ import annotations

import click
from rich.console import Console

console = Console()


@click.command("enqueue")
@click.option("--url", default=None, help="Merge request (or pull request) URL.")
@click.option("--project", default=None, help="Project path, e.g. group/app or owner/repo.")
@click.option("--mr", "mr_iid", type=int, default=None, help="Merge request number.")
@click.option("--priority", type=click.IntRange(1, 10), default=5, show_default=True, help="1 = most urgent.")
@click.pass_context
def enqueue_cmd(ctx, url: str | None, project: str | None, mr_iid: int | None, priority: int):
    """Queue a manual review. The worker picks it up on its next poll."""
    from mrlens_core.errors import PlatformError
    from mrlens_core.mr_url import parse_mr_url
    from mrlens_core.platforms.registry import build_platform
    from mrlens_store.models import NewTask

    if url:
        parsed = parse_mr_url(url)
        if parsed is None:
            raise click.UsageError(f"Not a merge request URL: {url}")
        project, mr_iid = parsed
    elif not project or mr_iid is None:
        raise click.UsageError("Provide --url, or both --project and --mr.")

    config = ctx.obj["config"]
    store = ctx.obj["store"]

    platform = build_platform(config)
    try:
        info = platform.resolve_project(project)
    except PlatformError as e:
        raise click.ClickException(f"Could not resolve project {project}: {e}")
    finally:
        platform.close()

    task_id = store.enqueue(
        NewTask(
            project_id=str(info.id),
            mr_iid=mr_iid,
            project_path=info.path,
            triggered_by="manual",
            trigger_event="cli",
            priority=priority,
            max_retries=config.queue.max_retries,
        )
    )
    console.print(f"[green]Queued task {task_id}[/green] for {info.path}!{mr_iid}")
