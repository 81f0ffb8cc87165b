"""OpenRouter provider: the OpenAI-compatible API reached through openai SDK."""

from openai import AsyncOpenAI

from config.config_loader import ModelConfig
from persona_council.providers.base import ProviderError
from persona_council.providers.openai_provider import OpenAIProvider

_ATTRIBUTION_HEADERS = {
    "HTTP-Referer": "https://persona-council",
    "X-Title": "persona-council",
}


class OpenRouterProvider(OpenAIProvider):
    """Routes chat completions to any OpenRouter model (default gpt-oss-120b)."""

    def __init__(self, config: ModelConfig) -> None:
        if not config.base_url:
            raise ProviderError(config.name, "base_url is required for OpenRouter provider")
        super().__init__(config)

    def _build_client(self, api_key: str) -> AsyncOpenAI:
        return AsyncOpenAI(
            api_key=api_key,
            base_url=self._config.base_url,
            default_headers=_ATTRIBUTION_HEADERS,
        )
