"""Map the configured ``sdk`` name to a provider class."""

import logging

from config.config_loader import AppConfig, ModelConfig
from persona_council.providers.anthropic import AnthropicProvider
from persona_council.providers.base import AIProvider, ProviderError
from persona_council.providers.gemini import GeminiProvider
from persona_council.providers.openai_provider import OpenAIProvider
from persona_council.providers.openrouter import OpenRouterProvider

logger = logging.getLogger(__name__)

PROVIDER_CLASSES: dict[str, type[AIProvider]] = {
    "openrouter": OpenRouterProvider,
    "openai": OpenAIProvider,
    "anthropic": AnthropicProvider,
    "gemini": GeminiProvider,
}


def create_provider(model_cfg: ModelConfig) -> AIProvider:
    """Instantiate the provider for one model entry.

    Raises:
        ProviderError: Unknown sdk or missing API key.
    """
    provider_cls = PROVIDER_CLASSES.get(model_cfg.sdk)
    if provider_cls is None:
        raise ProviderError(model_cfg.name, f"Unknown sdk '{model_cfg.sdk}'")
    return provider_cls(model_cfg)


def build_provider(config: AppConfig, name: str | None = None) -> AIProvider:
    """Build the provider named ``name`` (default: ``defaults.provider``)."""
    name = name or config.defaults.provider
    if name not in config.models:
        raise ProviderError(name, "Provider is not configured")
    if name not in config.available_providers:
        logger.warning("Provider %s has no API key in the environment", name)
    provider = create_provider(config.models[name])
    logger.info("Using provider %s (%s)", provider.name(), provider.model_string())
    return provider
