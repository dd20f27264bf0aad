from __future__ import annotations

from mrlens_core.config import AppConfig
from mrlens_core.platforms.base import BasePlatform
from mrlens_core.platforms.github import GitHubPlatform
from mrlens_core.platforms.gitlab import GitLabPlatform


def build_platform(config: AppConfig) -> BasePlatform:
    if config.platform == "gitlab":
        return GitLabPlatform(url=config.gitlab.url, token=config.gitlab.token)
    if config.platform == "github":
        return GitHubPlatform(token=config.github.token)
    raise ValueError(f"Unknown platform: {config.platform!r}. Choose 'gitlab' or 'github'.")
