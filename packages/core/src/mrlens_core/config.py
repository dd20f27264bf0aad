"""Configuration loading.

The YAML file is parsed once into a tree of frozen dataclasses. Every field has
a default, and every value is validated here, so components downstream receive
concrete, required values and never re-check optional settings per call.
Changing configuration means building a new AppContext.
"""

from __future__ import annotations

import os
from dataclasses import dataclass, field, fields, replace
from pathlib import Path
from typing import Any

import yaml

from mrlens_core.errors import ConfigError

SEVERITIES = ("critical", "major", "minor", "suggestion")
FAILURE_BEHAVIORS = ("blocking", "non-blocking")
PLATFORMS = ("gitlab", "github")
PROVIDERS = ("anthropic", "openai")
LOG_LEVELS = ("debug", "info", "warning", "error")

DEFAULT_SKIP_FILES = (
    "*.lock",
    "package-lock.json",
    "yarn.lock",
    "pnpm-lock.yaml",
    "bun.lockb",
    "*.min.js",
    "*.min.css",
)


@dataclass(frozen=True)
class GitLabConfig:
    url: str = "https://gitlab.com"
    token: str = ""
    webhook_secret: str = ""


@dataclass(frozen=True)
class GitHubConfig:
    token: str = ""


@dataclass(frozen=True)
class AIConfig:
    provider: str = "anthropic"
    model: str = ""  # empty = provider default
    temperature: float = 0.3
    max_tokens: int = 8192
    api_key: str = ""


@dataclass(frozen=True)
class QueueConfig:
    enabled: bool = True
    polling_interval_ms: int = 5_000
    max_concurrent_tasks: int = 3
    task_timeout_ms: int = 600_000
    max_retries: int = 3
    retry_backoff_ms: int = 5_000
    retry_backoff_multiplier: float = 2.0
    max_retry_backoff_ms: int = 300_000
    cleanup_interval_ms: int = 3_600_000
    retain_completed_days: int = 7


@dataclass(frozen=True)
class ReviewConfig:
    max_files: int = 50
    max_lines_per_file: int = 1000
    skip_files: tuple[str, ...] = DEFAULT_SKIP_FILES
    inline_comments: bool = True
    summary_comment: bool = True
    language: str | None = None
    failure_behavior: str = "non-blocking"
    failure_threshold: str = "critical"


@dataclass(frozen=True)
class WebhookConfig:
    mr_enabled: bool = True
    mr_events: tuple[str, ...] = ("open", "update")
    review_drafts: bool = False
    note_enabled: bool = True
    note_commands: tuple[str, ...] = ("/review", "/ai-review")
    push_enabled: bool = False
    push_branches: tuple[str, ...] = ()


@dataclass(frozen=True)
class LogConfig:
    level: str = "info"


@dataclass(frozen=True)
class AppConfig:
    platform: str = "gitlab"
    store_path: str = ".mrlens.db"
    gitlab: GitLabConfig = field(default_factory=GitLabConfig)
    github: GitHubConfig = field(default_factory=GitHubConfig)
    ai: AIConfig = field(default_factory=AIConfig)
    queue: QueueConfig = field(default_factory=QueueConfig)
    review: ReviewConfig = field(default_factory=ReviewConfig)
    webhook: WebhookConfig = field(default_factory=WebhookConfig)
    log: LogConfig = field(default_factory=LogConfig)


_SECTIONS = {
    "gitlab": GitLabConfig,
    "github": GitHubConfig,
    "ai": AIConfig,
    "queue": QueueConfig,
    "review": ReviewConfig,
    "webhook": WebhookConfig,
    "log": LogConfig,
}


def _coerce(section: str, name: str, default: Any, value: Any) -> Any:
    """Coerce a raw YAML value to the type of the field's default."""
    where = f"{section}.{name}"
    if value is None:
        return default
    if isinstance(default, bool):
        if isinstance(value, bool):
            return value
        if isinstance(value, str) and value.lower() in ("true", "false"):
            return value.lower() == "true"
        raise ConfigError(f"{where} must be a boolean, got {value!r}")
    if isinstance(default, tuple):
        if isinstance(value, str):
            value = [v.strip() for v in value.split(",")]
        if not isinstance(value, (list, tuple)):
            raise ConfigError(f"{where} must be a list, got {value!r}")
        return tuple(str(v) for v in value if str(v))
    if isinstance(default, int):
        try:
            return int(value)
        except (TypeError, ValueError):
            raise ConfigError(f"{where} must be an integer, got {value!r}")
    if isinstance(default, float):
        try:
            return float(value)
        except (TypeError, ValueError):
            raise ConfigError(f"{where} must be a number, got {value!r}")
    return str(value)


def _build_section(name: str, raw: Any):
    cls = _SECTIONS[name]
    if raw is None:
        return cls()
    if not isinstance(raw, dict):
        raise ConfigError(f"'{name}' must be a mapping, got {type(raw).__name__}")
    known = {f.name: f for f in fields(cls)}
    unknown = set(raw) - set(known)
    if unknown:
        raise ConfigError(f"Unknown key(s) in '{name}': {', '.join(sorted(unknown))}")
    defaults = cls()
    values = {}
    for key, value in raw.items():
        default = getattr(defaults, key)
        if key == "language":
            values[key] = None if value in (None, "") else str(value)
        else:
            values[key] = _coerce(name, key, default, value)
    return replace(defaults, **values)


def validate_config(config: AppConfig) -> AppConfig:
    """Check value ranges and enumerations. Returns the config unchanged."""
    if config.platform not in PLATFORMS:
        raise ConfigError(f"platform must be one of {PLATFORMS}, got {config.platform!r}")
    if config.ai.provider not in PROVIDERS:
        raise ConfigError(f"ai.provider must be one of {PROVIDERS}, got {config.ai.provider!r}")
    if not 0 <= config.ai.temperature <= 2:
        raise ConfigError("ai.temperature must be between 0 and 2")
    if config.ai.max_tokens <= 0:
        raise ConfigError("ai.max_tokens must be positive")

    q = config.queue
    for name in (
        "polling_interval_ms",
        "max_concurrent_tasks",
        "task_timeout_ms",
        "retry_backoff_ms",
        "max_retry_backoff_ms",
        "cleanup_interval_ms",
    ):
        if getattr(q, name) <= 0:
            raise ConfigError(f"queue.{name} must be positive")
    if q.max_retries < 1:
        raise ConfigError("queue.max_retries must be at least 1")
    if q.retry_backoff_multiplier < 1:
        raise ConfigError("queue.retry_backoff_multiplier must be >= 1")
    if q.retain_completed_days < 0:
        raise ConfigError("queue.retain_completed_days must not be negative")

    r = config.review
    if r.max_files <= 0 or r.max_lines_per_file <= 0:
        raise ConfigError("review.max_files and review.max_lines_per_file must be positive")
    if r.failure_behavior not in FAILURE_BEHAVIORS:
        raise ConfigError(f"review.failure_behavior must be one of {FAILURE_BEHAVIORS}")
    if r.failure_threshold not in SEVERITIES:
        raise ConfigError(f"review.failure_threshold must be one of {SEVERITIES}")

    if config.log.level.lower() not in LOG_LEVELS:
        raise ConfigError(f"log.level must be one of {LOG_LEVELS}")
    return config


def load_config(config_path: str = ".mrlens.yml", cli_overrides: dict | None = None) -> AppConfig:
    """
    Load configuration by merging (in order of precedence):
      1. Built-in defaults
      2. .mrlens.yml in the current directory
      3. Credentials from environment variables
      4. CLI argument overrides (dotted keys, e.g. ``{"ai.provider": "openai"}``)
    """
    raw: dict = {}
    path = Path(config_path)
    if path.exists():
        with open(path) as f:
            raw = yaml.safe_load(f) or {}
        if not isinstance(raw, dict):
            raise ConfigError(f"{config_path} must contain a mapping at the top level")

    raw = {k: (dict(v) if isinstance(v, dict) else v) for k, v in raw.items()}

    # Environment credentials win over anything committed to the YAML file.
    env_credentials = {
        ("gitlab", "token"): os.environ.get("GITLAB_TOKEN"),
        ("gitlab", "webhook_secret"): os.environ.get("GITLAB_WEBHOOK_SECRET"),
        ("github", "token"): os.environ.get("GITHUB_TOKEN"),
    }
    for (section, key), value in env_credentials.items():
        if value:
            raw.setdefault(section, {})[key] = value

    if cli_overrides:
        for dotted, value in cli_overrides.items():
            if value is None:
                continue
            if "." in dotted:
                section, key = dotted.split(".", 1)
                raw.setdefault(section, {})[key] = value
            else:
                raw[dotted] = value

    unknown = set(raw) - set(_SECTIONS) - {"platform", "store_path"}
    if unknown:
        raise ConfigError(f"Unknown configuration key(s): {', '.join(sorted(unknown))}")

    sections = {name: _build_section(name, raw.get(name)) for name in _SECTIONS}

    provider = sections["ai"].provider
    if not sections["ai"].api_key:
        key_env = "ANTHROPIC_API_KEY" if provider == "anthropic" else "OPENAI_API_KEY"
        sections["ai"] = replace(sections["ai"], api_key=os.environ.get(key_env, ""))

    config = AppConfig(
        platform=str(raw.get("platform", "gitlab")),
        store_path=str(raw.get("store_path", ".mrlens.db")),
        **sections,
    )
    return validate_config(config)
