"""Host token resolution with a fallback to the host's own CLI session.

Resolution order (stops at first success):
  1. The token already in the loaded config (YAML or GITLAB_TOKEN / GITHUB_TOKEN)
  2. The platform CLI's stored session:
       gitlab → `glab config get token --host <host>`
       github → `gh auth token`

Developers who can already run `glab mr view` or `gh pr view` can enqueue
reviews locally without creating a personal access token.
"""

from __future__ import annotations

import logging
import subprocess
from urllib.parse import urlparse

from mrlens_core.config import AppConfig

logger = logging.getLogger(__name__)


def _cli_token(args: list[str]) -> str | None:
    try:
        result = subprocess.run(args, capture_output=True, text=True, timeout=5)
    except (FileNotFoundError, subprocess.TimeoutExpired):
        # CLI not installed or hung; fall through to "no token".
        return None
    if result.returncode != 0:
        return None
    return result.stdout.strip() or None


def resolve_platform_token(config: AppConfig) -> str | None:
    """Return a token for the configured platform, or None.

    Never raises. Callers decide whether a missing token is fatal.
    """
    if config.platform == "github":
        if config.github.token:
            return config.github.token
        token = _cli_token(["gh", "auth", "token"])
    else:
        if config.gitlab.token:
            return config.gitlab.token
        host = urlparse(config.gitlab.url).netloc or "gitlab.com"
        token = _cli_token(["glab", "config", "get", "token", "--host", host])
    if token:
        logger.debug("Resolved %s token via CLI session.", config.platform)
    return token
