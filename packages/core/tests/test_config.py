"""Tests for mrlens_core.config."""

from __future__ import annotations

import pytest

from mrlens_core.config import AppConfig, QueueConfig, load_config
from mrlens_core.errors import ConfigError


@pytest.fixture(autouse=True)
def _clean_env(monkeypatch):
    for name in ("GITLAB_TOKEN", "GITLAB_WEBHOOK_SECRET", "GITHUB_TOKEN", "ANTHROPIC_API_KEY", "OPENAI_API_KEY"):
        monkeypatch.delenv(name, raising=False)


def _write(tmp_path, text):
    path = tmp_path / ".mrlens.yml"
    path.write_text(text)
    return str(path)


# ---------------------------------------------------------------------------
# Defaults and file loading
# ---------------------------------------------------------------------------


class TestLoadConfig:
    def test_defaults_when_file_missing(self, tmp_path):
        config = load_config(str(tmp_path / "missing.yml"))
        assert config == AppConfig()
        assert config.queue == QueueConfig()
        assert config.queue.max_concurrent_tasks == 3
        assert config.review.failure_behavior == "non-blocking"

    def test_empty_file_gives_defaults(self, tmp_path):
        config = load_config(_write(tmp_path, ""))
        assert config.platform == "gitlab"

    def test_values_from_yaml(self, tmp_path):
        path = _write(
            tmp_path,
            """
platform: github
queue:
  max_concurrent_tasks: 5
  retry_backoff_multiplier: 3
review:
  skip_files: ["*.snap", "vendor/"]
  language: German
webhook:
  mr_events: [open, reopen]
""",
        )
        config = load_config(path)
        assert config.platform == "github"
        assert config.queue.max_concurrent_tasks == 5
        assert config.queue.retry_backoff_multiplier == 3.0
        assert config.review.skip_files == ("*.snap", "vendor/")
        assert config.review.language == "German"
        assert config.webhook.mr_events == ("open", "reopen")

    def test_comma_separated_list(self, tmp_path):
        config = load_config(_write(tmp_path, "webhook:\n  note_commands: '/review, /ai-review'\n"))
        assert config.webhook.note_commands == ("/review", "/ai-review")

    def test_string_booleans(self, tmp_path):
        config = load_config(_write(tmp_path, "queue:\n  enabled: 'false'\n"))
        assert config.queue.enabled is False


# ---------------------------------------------------------------------------
# Precedence
# ---------------------------------------------------------------------------


class TestPrecedence:
    def test_env_token_overrides_yaml(self, tmp_path, monkeypatch):
        monkeypatch.setenv("GITLAB_TOKEN", "env-token")
        config = load_config(_write(tmp_path, "gitlab:\n  token: yaml-token\n"))
        assert config.gitlab.token == "env-token"

    def test_api_key_from_provider_env(self, tmp_path, monkeypatch):
        monkeypatch.setenv("OPENAI_API_KEY", "sk-test")
        config = load_config(_write(tmp_path, "ai:\n  provider: openai\n"))
        assert config.ai.api_key == "sk-test"

    def test_cli_overrides_win(self, tmp_path):
        path = _write(tmp_path, "log:\n  level: info\n")
        config = load_config(path, cli_overrides={"log.level": "debug", "platform": "github"})
        assert config.log.level == "debug"
        assert config.platform == "github"

    def test_none_override_ignored(self, tmp_path):
        path = _write(tmp_path, "log:\n  level: warning\n")
        config = load_config(path, cli_overrides={"log.level": None})
        assert config.log.level == "warning"


# ---------------------------------------------------------------------------
# Validation
# ---------------------------------------------------------------------------


class TestValidation:
    def test_unknown_top_level_key(self, tmp_path):
        with pytest.raises(ConfigError, match="Unknown configuration key"):
            load_config(_write(tmp_path, "colour: blue\n"))

    def test_unknown_section_key(self, tmp_path):
        with pytest.raises(ConfigError, match="queue"):
            load_config(_write(tmp_path, "queue:\n  workers: 4\n"))

    def test_invalid_provider(self, tmp_path):
        with pytest.raises(ConfigError, match="ai.provider"):
            load_config(_write(tmp_path, "ai:\n  provider: llama\n"))

    def test_non_positive_concurrency(self, tmp_path):
        with pytest.raises(ConfigError, match="max_concurrent_tasks"):
            load_config(_write(tmp_path, "queue:\n  max_concurrent_tasks: 0\n"))

    def test_non_integer_value(self, tmp_path):
        with pytest.raises(ConfigError, match="integer"):
            load_config(_write(tmp_path, "queue:\n  max_retries: many\n"))

    def test_invalid_threshold(self, tmp_path):
        with pytest.raises(ConfigError, match="failure_threshold"):
            load_config(_write(tmp_path, "review:\n  failure_threshold: blocker\n"))

    def test_top_level_must_be_mapping(self, tmp_path):
        with pytest.raises(ConfigError):
            load_config(_write(tmp_path, "- a\n- b\n"))

    def test_config_error_is_value_error(self, tmp_path):
        with pytest.raises(ValueError):
            load_config(_write(tmp_path, "platform: bitbucket\n"))
