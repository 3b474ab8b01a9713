"""Generative-AI capability used by the AI reconciliation path.

Callers depend on the ``GenerativeClient`` interface only:

    generate(prompt, schema) -> LLMResult(text, error, ...)

``GeminiClient`` is the production implementation (Google GenAI SDK). Tests
substitute a fake returning canned text per scenario. Errors from the SDK
are returned in ``LLMResult.error``, never raised.
"""

import logging
import time
from abc import ABC, abstractmethod
from dataclasses import dataclass
from typing import Optional

from pydantic import BaseModel

from conciliador.api_keys import gemini_credentials
from conciliador.config_loader import AIConfig, get_config
from conciliador.errors import MissingCredentialError

logger = logging.getLogger(__name__)


@dataclass
class LLMResult:
    text: str
    input_tokens: int = 0
    output_tokens: int = 0
    duration_s: float = 0.0
    error: Optional[str] = None


class GenerativeClient(ABC):
    """Given a prompt and a target schema, return text expected to hold JSON."""

    model: str = ""

    @abstractmethod
    def generate(self, prompt: str, schema: type[BaseModel]) -> LLMResult:
        """Synchronous generation. Called from the orchestrator's executor."""
        ...


class GeminiClient(GenerativeClient):

    def __init__(
        self,
        api_key: str,
        model: str = "gemini-2.5-flash",
        temperature: float = 0.0,
        max_output_tokens: Optional[int] = None,
    ):
        from google import genai

        self.model = model
        self.temperature = temperature
        self.max_output_tokens = max_output_tokens
        self._client = genai.Client(api_key=api_key)

    def generate(self, prompt: str, schema: type[BaseModel]) -> LLMResult:
        from google.genai import types

        config_kwargs: dict = {
            "response_mime_type": "application/json",
            "response_schema": schema,
            "temperature": self.temperature,
        }
        if self.max_output_tokens:
            config_kwargs["max_output_tokens"] = self.max_output_tokens

        t0 = time.time()
        try:
            response = self._client.models.generate_content(
                model=self.model,
                contents=[
                    types.Content(
                        role="user",
                        parts=[types.Part.from_text(text=prompt)],
                    )
                ],
                config=types.GenerateContentConfig(**config_kwargs),
            )

            text = response.text or ""
            usage = getattr(response, "usage_metadata", None)
            input_tokens = getattr(usage, "prompt_token_count", 0) if usage else 0
            output_tokens = getattr(usage, "candidates_token_count", 0) if usage else 0

            return LLMResult(
                text=text,
                input_tokens=input_tokens or 0,
                output_tokens=output_tokens or 0,
                duration_s=round(time.time() - t0, 2),
            )
        except Exception as e:
            logger.error(f"Gemini API error ({self.model}): {e}")
            return LLMResult(
                text="",
                error=str(e),
                duration_s=round(time.time() - t0, 2),
            )


def create_client(ai_config: Optional[AIConfig] = None) -> GenerativeClient:
    """Build the Gemini client, failing fast when no credential is configured."""
    ai_config = ai_config or get_config().ai
    api_key = gemini_credentials.get_key()
    if not api_key:
        raise MissingCredentialError(gemini_credentials.primary_env_var)

    return GeminiClient(
        api_key=api_key,
        model=ai_config.model,
        temperature=ai_config.temperature,
        max_output_tokens=ai_config.max_output_tokens,
    )
