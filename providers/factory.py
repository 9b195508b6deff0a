"""
Provider factory.
Resolves AI_PROVIDER to exactly one provider instance at startup.
"""
import logging

from config.settings import ConfigurationError, ScribeConfig
from providers.base import AIProvider
from providers.ollama_provider import OllamaProvider
from providers.openai_provider import AzureOpenAIProvider, CustomProvider, OpenAIProvider

logger = logging.getLogger("scribe.providers")

PROVIDERS = {
    "openai": OpenAIProvider,
    "ollama": OllamaProvider,
    "azure": AzureOpenAIProvider,
    "custom": CustomProvider,
}


def create_provider(cfg: ScribeConfig, **kwargs) -> AIProvider:
    """
    Build the configured provider.

    Args:
        cfg: Full service configuration
        **kwargs: Passed through to the provider (test clients, encodings)

    Raises:
        ConfigurationError: unknown provider or missing credentials
    """
    cfg.ai.validate()
    provider_cls = PROVIDERS.get(cfg.ai.provider)
    if provider_cls is None:
        raise ConfigurationError(f"Unknown AI_PROVIDER '{cfg.ai.provider}'")
    provider = provider_cls(
        cfg.ai, cfg.prompts,
        content_max_length=cfg.scan.content_max_length,
        **kwargs,
    )
    logger.info(f"AI provider: {provider.name} (model={provider.model})")
    return provider
