"""CLI entry point for mrlens.

Commands:
  worker       — run the scheduler and review workers until interrupted
  enqueue      — queue a review for a merge request (by URL or project + MR)
  cancel       — cancel a pending task
  retry        — re-queue the MR of an existing review, reusing that review
  stats        — show task counts per status
  history      — list past reviews, or show one review's logs
  route-event  — feed a webhook payload file through the event router
"""

from __future__ import annotations

import importlib.metadata
import logging
from dataclasses import replace

import click
from rich.console import Console
from rich.logging import RichHandler

from mrlens_cli.commands.cancel import cancel_cmd
from mrlens_cli.commands.enqueue import enqueue_cmd
from mrlens_cli.commands.history import history_cmd
from mrlens_cli.commands.retry import retry_cmd
from mrlens_cli.commands.route_event import route_event_cmd
from mrlens_cli.commands.stats import stats_cmd
from mrlens_cli.commands.worker import worker_cmd

console = Console()


def _setup_logging(level: str) -> None:
    logging.basicConfig(
        level=level.upper(),
        format="%(name)s: %(message)s",
        datefmt="[%X]",
        handlers=[RichHandler(console=Console(stderr=True), rich_tracebacks=True, show_path=False)],
        force=True,
    )


def _build_store(config):
    """Open the configured store.

    This factory lives in cli.py so neither mrlens_core nor mrlens_store
    know about the CLI config format.
    """
    from mrlens_store.sqlite import SQLiteStore

    return SQLiteStore(db_path=config.store_path)


def _build_context(ctx: click.Context):
    """Build the full AppContext around the already-open store."""
    from mrlens_queue.context import AppContext

    config = ctx.obj["config"]
    if config.platform == "github" and not config.github.token:
        raise click.UsageError("A GitHub token is required. Set GITHUB_TOKEN or run `gh auth login`.")
    if config.platform == "gitlab" and not config.gitlab.token:
        raise click.UsageError("A GitLab token is required. Set GITLAB_TOKEN or run `glab auth login`.")
    if not config.ai.api_key:
        key_env = "ANTHROPIC_API_KEY" if config.ai.provider == "anthropic" else "OPENAI_API_KEY"
        raise click.UsageError(f"{key_env} is not set.")
    return AppContext.from_config(config, store=ctx.obj["store"])


@click.group()
@click.version_option(
    version=importlib.metadata.version("mrlens"),
    prog_name="mrlens",
)
@click.option(
    "--config",
    "config_path",
    default=".mrlens.yml",
    show_default=True,
    help="Path to the configuration file.",
    envvar="MRLENS_CONFIG",
)
@click.option(
    "--log-level",
    type=click.Choice(["debug", "info", "warning", "error"]),
    default=None,
    help="Log level. Overrides config file.",
)
@click.pass_context
def main(ctx: click.Context, config_path: str, log_level: str | None):
    """AI merge-request review queue for GitLab and GitHub."""
    from mrlens_cli.auth import resolve_platform_token
    from mrlens_core.config import load_config
    from mrlens_core.errors import ConfigError

    ctx.ensure_object(dict)

    try:
        config = load_config(config_path, cli_overrides={"log.level": log_level})
    except ConfigError as e:
        raise click.UsageError(str(e))

    # Resolve the host token early so all subcommands share the same resolution.
    token = resolve_platform_token(config)
    if token and config.platform == "github":
        config = replace(config, github=replace(config.github, token=token))
    elif token:
        config = replace(config, gitlab=replace(config.gitlab, token=token))

    _setup_logging(config.log.level)

    store = _build_store(config)
    ctx.obj["store"] = store
    ctx.obj["config"] = config
    ctx.call_on_close(store.close)


main.add_command(worker_cmd)
main.add_command(enqueue_cmd)
main.add_command(cancel_cmd)
main.add_command(retry_cmd)
main.add_command(stats_cmd)
main.add_command(history_cmd)
main.add_command(route_event_cmd)
