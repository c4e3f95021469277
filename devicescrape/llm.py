"""Completion capability used by slug picking and normalization.

The pipeline depends on the CompletionClient protocol only; the OpenAI
Responses API implementation lives here as well. Neither call retries: a
failed completion is surfaced to the job as an error and retried by the user.
"""

import json
import logging
from typing import Optional, Protocol, Type, TypeVar

from pydantic import BaseModel, ValidationError

from devicescrape.config import LLM_MODEL
from devicescrape.logging_config import log_scrape_event

__all__ = [
    "CompletionError",
    "CompletionClient",
    "OpenAICompletionClient",
]

ModelT = TypeVar("ModelT", bound=BaseModel)


class CompletionError(Exception):
    """The completion call failed or its output did not fit the schema."""


class CompletionClient(Protocol):
    def complete(
        self,
        prompt: str,
        *,
        system: Optional[str] = None,
        temperature: float = 0.0,
        max_tokens: Optional[int] = None,
    ) -> str:
        ...

    def generate(
        self,
        prompt: str,
        schema: Type[ModelT],
        *,
        system: Optional[str] = None,
        temperature: float = 0.0,
        max_tokens: Optional[int] = None,
    ) -> ModelT:
        ...


def _get_openai_client():
    """Get OpenAI client (lazy initialization)."""
    from openai import OpenAI
    return OpenAI()


class OpenAICompletionClient:
    """CompletionClient backed by the OpenAI Responses API."""

    def __init__(self, model: str = LLM_MODEL, client=None):
        self.model = model
        self._client = client

    @property
    def client(self):
        if self._client is None:
            self._client = _get_openai_client()
        return self._client

    def _create(self, prompt: str, system: Optional[str], temperature: float,
                max_tokens: Optional[int], text_format: Optional[dict] = None) -> str:
        kwargs = {
            "model": self.model,
            "input": [{"role": "user", "content": [{"type": "input_text", "text": prompt}]}],
            "temperature": temperature,
        }
        if system:
            kwargs["instructions"] = system
        if max_tokens:
            kwargs["max_output_tokens"] = max_tokens
        if text_format:
            kwargs["text"] = {"format": text_format}

        log_scrape_event("llm_call", {"model": self.model, "prompt": prompt, "temperature": temperature})

        try:
            resp = self.client.responses.create(**kwargs)
        except Exception as e:
            log_scrape_event("llm_error", {"model": self.model, "error": str(e)}, level=logging.ERROR)
            raise CompletionError(f"Completion request failed: {e}") from e

        raw = ""
        for item in resp.output:
            if getattr(item, "content", None):
                raw = item.content[0].text  # type: ignore[union-attr]
                break

        log_scrape_event("llm_response", {"model": self.model, "raw_response": raw})

        if not raw or not raw.strip():
            raise CompletionError("Completion returned no output")
        return raw

    def complete(
        self,
        prompt: str,
        *,
        system: Optional[str] = None,
        temperature: float = 0.0,
        max_tokens: Optional[int] = None,
    ) -> str:
        """Plain text completion, stripped."""
        return self._create(prompt, system, temperature, max_tokens).strip()

    def generate(
        self,
        prompt: str,
        schema: Type[ModelT],
        *,
        system: Optional[str] = None,
        temperature: float = 0.0,
        max_tokens: Optional[int] = None,
    ) -> ModelT:
        """Structured completion validated against a pydantic model.

        Raises:
            CompletionError: On empty output, invalid JSON or schema mismatch
        """
        text_format = {
            "type": "json_schema",
            "name": schema.__name__,
            "schema": schema.model_json_schema(),
            "strict": False,
        }
        raw = self._create(prompt, system, temperature, max_tokens, text_format)

        try:
            json.loads(raw)
        except json.JSONDecodeError as e:
            raise CompletionError(f"Completion is not valid JSON: {e}") from e

        try:
            return schema.model_validate_json(raw)
        except ValidationError as e:
            raise CompletionError(f"Completion failed schema validation: {e}") from e
