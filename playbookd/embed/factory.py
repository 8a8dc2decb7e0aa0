"""Factory for creating embedding providers from configuration."""

from playbookd.core.config import EmbeddingConfig
from playbookd.core.errors import ConfigError
from playbookd.embed.client import (
    EmbeddingProvider,
    GoogleEmbedder,
    NoopEmbedder,
    OllamaEmbedder,
    OpenAIEmbedder,
)


def create_embedder(config: EmbeddingConfig) -> EmbeddingProvider:
    """Create an embedding provider based on configuration.

    Args:
        config: EmbeddingConfig describing the provider.

    Returns:
        EmbeddingProvider instance for the configured provider.

    Raises:
        ConfigError: If provider is not supported.
    """
    provider = config.provider.lower()

    if provider in ("noop", ""):
        return NoopEmbedder()
    elif provider == "ollama":
        return OllamaEmbedder(url=config.url, model=config.model, timeout=config.timeout)
    elif provider == "openai":
        return OpenAIEmbedder(
            url=config.url,
            model=config.model,
            api_key=config.api_key or None,
            timeout=config.timeout,
        )
    elif provider == "google":
        return GoogleEmbedder(
            url=config.url,
            model=config.model,
            api_key=config.api_key or None,
            timeout=config.timeout,
        )
    else:
        raise ConfigError(
            f"Unsupported embedding provider: {config.provider}. "
            f"Supported providers: noop, ollama, openai, google"
        )
