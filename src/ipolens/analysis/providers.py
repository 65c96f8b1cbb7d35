"""LLM provider strategies behind ``AnalysisProvider``.

The provider is chosen once from ``AIConfig``; callers only ever see
``generate(prompt, system_prompt) -> str``.
"""

from __future__ import annotations

from typing import Any, ClassVar

import httpx

from ipolens.core.config import AIConfig, AIProvider, get_config
from ipolens.core.errors import AnalysisProviderError, ConfigError
from ipolens.core.interfaces import AnalysisProvider
from ipolens.utils.logger import get_logger

logger = get_logger(__name__)


class HttpAnalysisProvider(AnalysisProvider):
    """Shared HTTP plumbing for JSON-over-HTTPS model APIs."""

    name: ClassVar[str] = ""
    default_model: ClassVar[str] = ""
    default_base_url: ClassVar[str] = ""

    def __init__(self, config: AIConfig, client: httpx.AsyncClient | None = None):
        if not config.api_key:
            raise ConfigError(f"No API key configured for {self.name}", recovery_hint="Set AI_API_KEY")
        self.config = config
        self.api_key = config.api_key
        self.model = config.model or self.default_model
        self.base_url = (config.base_url or self.default_base_url).rstrip("/")
        self._client = client
        self._owns_client = client is None

    @property
    def client(self) -> httpx.AsyncClient:
        if self._client is None:
            self._client = httpx.AsyncClient(base_url=self.base_url, timeout=self.config.timeout_seconds)
        return self._client

    async def aclose(self) -> None:
        if self._client is not None and self._owns_client:
            await self._client.aclose()
            self._client = None

    async def _post(self, path: str, payload: dict[str, Any], **kwargs: Any) -> dict[str, Any]:
        try:
            response = await self.client.post(path, json=payload, **kwargs)
            response.raise_for_status()
            data = response.json()
        except httpx.HTTPStatusError as e:
            raise AnalysisProviderError(
                self.name, f"HTTP {e.response.status_code}: {e.response.text[:200]}"
            ) from e
        except httpx.HTTPError as e:
            raise AnalysisProviderError(self.name, f"{type(e).__name__}: {e}") from e
        except ValueError as e:
            raise AnalysisProviderError(self.name, "reply is not JSON") from e
        if not isinstance(data, dict):
            raise AnalysisProviderError(self.name, "unexpected reply shape")
        return data


class ChatCompletionsProvider(HttpAnalysisProvider):
    """OpenAI-style ``/chat/completions`` APIs."""

    async def generate(self, prompt: str, system_prompt: str) -> str:
        payload = {
            "model": self.model,
            "messages": [
                {"role": "system", "content": system_prompt},
                {"role": "user", "content": prompt},
            ],
            "temperature": self.config.temperature,
            "max_tokens": self.config.max_tokens,
        }
        data = await self._post(
            "/chat/completions",
            payload,
            headers={"Authorization": f"Bearer {self.api_key}"},
        )
        try:
            return data["choices"][0]["message"]["content"] or ""
        except (KeyError, IndexError, TypeError) as e:
            raise AnalysisProviderError(self.name, "no message in reply") from e


class OpenAIProvider(ChatCompletionsProvider):
    name = "openai"
    default_model = "gpt-4o-mini"
    default_base_url = "https://api.openai.com/v1"


class MistralProvider(ChatCompletionsProvider):
    name = "mistral"
    default_model = "mistral-small-latest"
    default_base_url = "https://api.mistral.ai/v1"


class GeminiProvider(HttpAnalysisProvider):
    name = "gemini"
    default_model = "gemini-1.5-flash"
    default_base_url = "https://generativelanguage.googleapis.com/v1beta"

    async def generate(self, prompt: str, system_prompt: str) -> str:
        payload = {
            "contents": [{"parts": [{"text": f"{system_prompt}\n\n{prompt}"}]}],
            "generationConfig": {
                "temperature": self.config.temperature,
                "maxOutputTokens": self.config.max_tokens,
            },
        }
        data = await self._post(
            f"/models/{self.model}:generateContent",
            payload,
            params={"key": self.api_key},
        )
        try:
            return data["candidates"][0]["content"]["parts"][0]["text"] or ""
        except (KeyError, IndexError, TypeError) as e:
            raise AnalysisProviderError(self.name, "no candidate in reply") from e


PROVIDERS: dict[AIProvider, type[HttpAnalysisProvider]] = {
    AIProvider.GEMINI: GeminiProvider,
    AIProvider.MISTRAL: MistralProvider,
    AIProvider.OPENAI: OpenAIProvider,
}


def build_provider(config: AIConfig | None = None) -> AnalysisProvider | None:
    """Select the configured provider.

    Returns None when AI analysis is disabled or the selected provider has no
    API key; the analyzer then answers with its fallback.
    """
    config = config or get_config().ai
    if config.provider == AIProvider.NONE:
        return None
    if not config.api_key:
        logger.warning("analysis_provider_missing_key", provider=config.provider.value)
        return None
    provider = PROVIDERS[config.provider](config)
    logger.info("analysis_provider_selected", provider=provider.name, model=provider.model)
    return provider
