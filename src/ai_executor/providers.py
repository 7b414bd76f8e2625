# providers.py
# Model provider contract and the OpenAI-compatible backend.
#
# Providers are stateless request/response objects and safe for concurrent
# use. Every backend failure surfaces as ProviderError; a request timeout is
# just another (retryable) provider failure.

import os
from abc import ABC, abstractmethod

import httpx
import openai
from openai import AsyncOpenAI

from ai_executor.errors import ProviderError
from ai_executor.models import GenerateOptions, ModelResponse

DEFAULT_BASE_URL = "https://openrouter.ai/api/v1"
DEFAULT_TIMEOUT = 60.0


class ModelProvider(ABC):
    """Text-completion backend treated as unreliable and text-only."""

    @abstractmethod
    async def generate(self, prompt: str, options: GenerateOptions | None = None) -> ModelResponse:
        """Return the raw model text for `prompt`. Raises ProviderError on failure."""


class OpenAIProvider(ModelProvider):
    """
    Chat-completions backend over any OpenAI-compatible endpoint.

    Defaults to OpenRouter; swap `model` for any model it serves.

    Example:
        provider = OpenAIProvider("anthropic/claude-3.5-haiku")
        response = await provider.generate("Say hi as JSON.")
    """

    def __init__(
        self,
        model: str,
        *,
        base_url: str = DEFAULT_BASE_URL,
        api_key: str | None = None,
        timeout: float = DEFAULT_TIMEOUT,
        client: AsyncOpenAI | None = None,
    ) -> None:
        self._model = model
        # Retries belong to the engine's retry controller, not the SDK.
        self._client = client or AsyncOpenAI(
            base_url=base_url,
            api_key=api_key or os.getenv("OPENROUTER_API_KEY"),
            timeout=httpx.Timeout(timeout),
            max_retries=0,
        )

    @property
    def model(self) -> str:
        return self._model

    async def generate(self, prompt: str, options: GenerateOptions | None = None) -> ModelResponse:
        options = options or GenerateOptions()

        messages: list[dict] = []
        if options.system_prompt:
            messages.append({"role": "system", "content": options.system_prompt})
        messages.append({"role": "user", "content": prompt})

        try:
            response = await self._client.chat.completions.create(
                model=self._model,
                messages=messages,
                **options.params,
            )
        except openai.OpenAIError as exc:
            raise ProviderError(f"{type(exc).__name__}: {exc}", details=exc) from exc

        if not response.choices:
            raise ProviderError("Model returned no choices.", details=response)

        content = response.choices[0].message.content or ""
        usage = response.usage.model_dump() if response.usage is not None else None
        return ModelResponse(
            raw_output=content.strip(),
            usage=usage,
            model_info={"model": response.model or self._model, "provider": "openai"},
        )
