from __future__ import annotations

from mrlens_core.config import AIConfig
from mrlens_core.providers.anthropic import AnthropicProvider
from mrlens_core.providers.base import BaseProvider
from mrlens_core.providers.openai import OpenAIProvider


def build_provider(ai_config: AIConfig) -> BaseProvider:
    if ai_config.provider == "anthropic":
        return AnthropicProvider(api_key=ai_config.api_key)
    if ai_config.provider == "openai":
        return OpenAIProvider(api_key=ai_config.api_key)
    raise ValueError(f"Unknown model provider: {ai_config.provider!r}. Choose 'anthropic' or 'openai'.")


def resolve_model(ai_config: AIConfig) -> str:
    """The configured model id, or the provider's default."""
    if ai_config.model:
        return ai_config.model
    if ai_config.provider == "openai":
        return OpenAIProvider.DEFAULT_MODEL
    return AnthropicProvider.DEFAULT_MODEL
