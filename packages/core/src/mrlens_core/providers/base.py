"""Base provider implementing the Template Method pattern.

All providers share the same structured-generation algorithm:
    generate_structured() → _render_system_prompt()
                          → _call_api()   ← only this differs per provider
                          → _parse()

Subclasses implement two things only:
  - __init__: validate and store the SDK client
  - _call_api: make one raw API call and return the text response

Retrying is deliberately absent here. A failed call raises ProviderError and
the task queue decides whether, and when, the whole review runs again.
"""

from __future__ import annotations

import json
import logging
import re
from abc import ABC, abstractmethod
from typing import Type, TypeVar

from pydantic import BaseModel, ValidationError

from mrlens_core.errors import ProviderError, SchemaViolationError

logger = logging.getLogger(__name__)

T = TypeVar("T", bound=BaseModel)

_DEFAULT_TEMPERATURE = 0.3
_DEFAULT_MAX_TOKENS = 8192


def _retry_after_seconds(exc: Exception) -> float | None:
    response = getattr(exc, "response", None)
    headers = getattr(response, "headers", None)
    if not headers:
        return None
    value = headers.get("retry-after")
    if value is None:
        return None
    try:
        return float(value)
    except (TypeError, ValueError):
        return None


class BaseProvider(ABC):
    NAME: str = ""
    DEFAULT_MODEL: str = ""

    # ------------------------------------------------------------------ #
    # Public interface                                                     #
    # ------------------------------------------------------------------ #

    def generate_structured(
        self,
        model: str,
        system_prompt: str,
        user_prompt: str,
        schema: Type[T],
        temperature: float | None = None,
        max_tokens: int | None = None,
    ) -> T:
        """Call the model and return its answer validated against ``schema``.

        Raises ProviderError on transport/API failure and SchemaViolationError
        when the answer is not valid JSON or does not match the schema.
        """
        model = model or self.DEFAULT_MODEL
        system = self._render_system_prompt(system_prompt, schema)
        try:
            raw = self._call_api(
                model,
                system,
                user_prompt,
                _DEFAULT_TEMPERATURE if temperature is None else temperature,
                max_tokens or _DEFAULT_MAX_TOKENS,
            )
        except ProviderError:
            raise
        except Exception as e:
            raise ProviderError(
                f"{self.NAME} API error: {e}",
                status_code=getattr(e, "status_code", None),
                retry_after=_retry_after_seconds(e),
            ) from e
        return self._parse(raw, schema)

    # ------------------------------------------------------------------ #
    # Abstract: implement in each provider                               #
    # ------------------------------------------------------------------ #

    @abstractmethod
    def _call_api(
        self,
        model: str,
        system_prompt: str,
        user_prompt: str,
        temperature: float,
        max_tokens: int,
    ) -> str:
        """Make a single API call and return the raw text response."""

    # ------------------------------------------------------------------ #
    # Shared implementations                                               #
    # ------------------------------------------------------------------ #

    def _render_system_prompt(self, system_prompt: str, schema: Type[BaseModel]) -> str:
        json_schema = json.dumps(schema.model_json_schema(by_alias=True), separators=(",", ":"))
        return (
            f"{system_prompt}\n\n"
            "Respond with a single JSON object that conforms to this JSON Schema. "
            "Do not return any text outside the JSON object.\n"
            f"{json_schema}"
        )

    def _parse(self, raw: str, schema: Type[T]) -> T:
        # Strip only an outer ```json ... ``` fence, never backticks inside string values.
        cleaned = re.sub(r"^```(?:json)?\s*", "", (raw or "").strip())
        cleaned = re.sub(r"\s*```$", "", cleaned.strip())
        try:
            return schema.model_validate_json(cleaned)
        except ValidationError as e:
            logger.warning("%s: response failed schema validation: %s", self.__class__.__name__, cleaned[:200])
            raise SchemaViolationError(f"Model output does not match {schema.__name__}: {e}") from e
