from __future__ import annotations

from mrlens_core.providers.base import BaseProvider


class AnthropicProvider(BaseProvider):
    NAME = "anthropic"
    DEFAULT_MODEL = "claude-sonnet-4-5"

    def __init__(self, api_key: str):
        try:
            from anthropic import Anthropic
        except ImportError:
            raise ImportError(
                "The 'anthropic' package is required for this provider. "
                "Install it with: pip install 'mrlens[anthropic]'"
            )
        self.client = Anthropic(api_key=api_key)

    def _call_api(self, model: str, system_prompt: str, user_prompt: str, temperature: float, max_tokens: int) -> str:
        # anthropic is optional; __init__ already proved it is importable.
        from anthropic.types import TextBlock

        response = self.client.messages.create(
            model=model,
            system=system_prompt,
            messages=[{"role": "user", "content": user_prompt}],
            temperature=temperature,
            max_tokens=max_tokens,
        )
        text_blocks = [block.text for block in response.content if isinstance(block, TextBlock)]
        return "".join(text_blocks).strip()
