from __future__ import annotations

try:
    from openai import OpenAI as _OpenAI
except ImportError:
    _OpenAI = None  # type: ignore[assignment,misc]

from mrlens_core.providers.base import BaseProvider


class OpenAIProvider(BaseProvider):
    NAME = "openai"
    DEFAULT_MODEL = "gpt-4o"

    def __init__(self, api_key: str):
        if _OpenAI is None:
            raise ImportError(
                "The 'openai' package is required for this provider. " "Install it with: pip install 'mrlens[openai]'"
            )
        self.client = _OpenAI(api_key=api_key)

    def _call_api(self, model: str, system_prompt: str, user_prompt: str, temperature: float, max_tokens: int) -> str:
        response = self.client.chat.completions.create(
            model=model,
            messages=[
                {"role": "system", "content": system_prompt},
                {"role": "user", "content": user_prompt},
            ],
            temperature=temperature,
            max_tokens=max_tokens,
            response_format={"type": "json_object"},
        )
        return response.choices[0].message.content or ""
