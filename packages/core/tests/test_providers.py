"""Tests for model provider implementations.

Shared behaviour (schema rendering, fence stripping, validation, error
wrapping) lives in BaseProvider and is tested once via a lightweight stub.
Provider-specific tests cover only the SDK client setup and _call_api.
"""

import json
from unittest.mock import MagicMock, patch

import pytest

from mrlens_core.config import AIConfig
from mrlens_core.errors import ProviderError, SchemaViolationError
from mrlens_core.providers.anthropic import AnthropicProvider
from mrlens_core.providers.base import BaseProvider
from mrlens_core.providers.openai import OpenAIProvider
from mrlens_core.providers.registry import build_provider, resolve_model
from mrlens_core.schema import CodeReviewResult

VALID_JSON = json.dumps(
    {
        "inlineComments": [
            {"file": "a.py", "line": 3, "severity": "major", "message": "Use this instead:\n```python\nfoo()\n```"}
        ],
        "summary": {
            "overallAssessment": "Fine",
            "positiveAspects": ["tests"],
            "concerns": [],
            "issuesCount": {"critical": 0, "major": 1, "minor": 0, "suggestion": 0},
        },
    }
)


class _StubProvider(BaseProvider):
    NAME = "stub"
    DEFAULT_MODEL = "stub-1"

    def __init__(self, response=VALID_JSON, error=None):
        self.response = response
        self.error = error
        self.calls = []

    def _call_api(self, model, system_prompt, user_prompt, temperature, max_tokens):
        self.calls.append((model, system_prompt, user_prompt, temperature, max_tokens))
        if self.error is not None:
            raise self.error
        return self.response


# ---------------------------------------------------------------------------
# Shared behaviour, tested once through the stub, not per provider
# ---------------------------------------------------------------------------


class TestGenerateStructured:
    def test_returns_validated_model(self):
        result = _StubProvider().generate_structured("m", "sys", "user", CodeReviewResult)
        assert isinstance(result, CodeReviewResult)
        assert result.inline_comments[0].line == 3

    def test_strips_outer_fence_only(self):
        provider = _StubProvider(response=f"```json\n{VALID_JSON}\n```")
        result = provider.generate_structured("m", "sys", "user", CodeReviewResult)
        assert "```python" in result.inline_comments[0].message

    def test_schema_rendered_into_system_prompt(self):
        provider = _StubProvider()
        provider.generate_structured("m", "Review this.", "user", CodeReviewResult)
        system = provider.calls[0][1]
        assert system.startswith("Review this.")
        assert "inlineComments" in system
        assert "JSON Schema" in system

    def test_defaults_applied(self):
        provider = _StubProvider()
        provider.generate_structured("", "sys", "user", CodeReviewResult)
        model, _, _, temperature, max_tokens = provider.calls[0]
        assert model == "stub-1"
        assert temperature == 0.3
        assert max_tokens == 8192

    def test_zero_temperature_kept(self):
        provider = _StubProvider()
        provider.generate_structured("m", "sys", "user", CodeReviewResult, temperature=0.0, max_tokens=100)
        assert provider.calls[0][3:] == (0.0, 100)

    def test_invalid_json_is_schema_violation(self):
        with pytest.raises(SchemaViolationError):
            _StubProvider(response="not json at all").generate_structured("m", "s", "u", CodeReviewResult)

    def test_missing_field_is_schema_violation(self):
        with pytest.raises(SchemaViolationError):
            _StubProvider(response='{"inlineComments": []}').generate_structured("m", "s", "u", CodeReviewResult)

    def test_sdk_error_wrapped_with_status(self):
        err = RuntimeError("overloaded")
        err.status_code = 529
        err.response = MagicMock(headers={"retry-after": "12"})
        with pytest.raises(ProviderError) as exc_info:
            _StubProvider(error=err).generate_structured("m", "s", "u", CodeReviewResult)
        assert exc_info.value.status_code == 529
        assert exc_info.value.retry_after == 12.0
        assert "stub API error: overloaded" in str(exc_info.value)
        assert exc_info.value.__cause__ is err

    def test_provider_error_passes_through(self):
        err = ProviderError("already wrapped", status_code=429)
        with pytest.raises(ProviderError) as exc_info:
            _StubProvider(error=err).generate_structured("m", "s", "u", CodeReviewResult)
        assert exc_info.value is err


# ---------------------------------------------------------------------------
# Provider-specific: only what differs between Anthropic and OpenAI
# ---------------------------------------------------------------------------


class TestAnthropicProvider:
    def test_raises_import_error_without_sdk(self):
        with patch.dict("sys.modules", {"anthropic": None}):
            with pytest.raises(ImportError, match="mrlens\\[anthropic\\]"):
                AnthropicProvider(api_key="key")

    def test_call_api_joins_text_blocks(self):
        from anthropic.types import TextBlock

        provider = AnthropicProvider(api_key="key")
        provider.client = MagicMock()
        provider.client.messages.create.return_value = MagicMock(
            content=[TextBlock(type="text", text='{"a": '), TextBlock(type="text", text="1}")]
        )
        raw = provider._call_api("claude-x", "sys", "user", 0.3, 100)
        assert raw == '{"a": 1}'
        kwargs = provider.client.messages.create.call_args.kwargs
        assert kwargs["model"] == "claude-x"
        assert kwargs["system"] == "sys"
        assert kwargs["messages"] == [{"role": "user", "content": "user"}]

    def test_default_model_is_claude(self):
        assert "claude" in AnthropicProvider.DEFAULT_MODEL


class TestOpenAIProvider:
    def test_raises_import_error_without_sdk(self):
        import mrlens_core.providers.openai as openai_mod

        real_openai = openai_mod._OpenAI
        openai_mod._OpenAI = None
        try:
            with pytest.raises(ImportError):
                OpenAIProvider(api_key="key")
        finally:
            openai_mod._OpenAI = real_openai

    def test_call_api_requests_json_object(self):
        provider = OpenAIProvider(api_key="key")
        provider.client = MagicMock()
        provider.client.chat.completions.create.return_value = MagicMock(
            choices=[MagicMock(message=MagicMock(content="{}"))]
        )
        assert provider._call_api("gpt-x", "sys", "user", 0.2, 50) == "{}"
        kwargs = provider.client.chat.completions.create.call_args.kwargs
        assert kwargs["response_format"] == {"type": "json_object"}
        assert kwargs["messages"][0] == {"role": "system", "content": "sys"}

    def test_default_model_is_gpt(self):
        assert "gpt" in OpenAIProvider.DEFAULT_MODEL


class TestRegistry:
    def test_build_anthropic(self):
        assert isinstance(build_provider(AIConfig(provider="anthropic", api_key="k")), AnthropicProvider)

    def test_build_openai(self):
        assert isinstance(build_provider(AIConfig(provider="openai", api_key="k")), OpenAIProvider)

    def test_unknown_provider(self):
        with pytest.raises(ValueError, match="Unknown model provider"):
            build_provider(AIConfig(provider="llama"))

    def test_resolve_model(self):
        assert resolve_model(AIConfig(model="custom")) == "custom"
        assert resolve_model(AIConfig(provider="openai")) == OpenAIProvider.DEFAULT_MODEL
        assert resolve_model(AIConfig()) == AnthropicProvider.DEFAULT_MODEL
