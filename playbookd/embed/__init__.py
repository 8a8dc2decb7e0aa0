from playbookd.embed.client import (
    EmbeddingProvider,
    GoogleEmbedder,
    HTTPEmbedder,
    NoopEmbedder,
    OllamaEmbedder,
    OpenAIEmbedder,
)
from playbookd.embed.factory import create_embedder
from playbookd.embed.text import text_for_playbook

__all__ = [
    "EmbeddingProvider",
    "GoogleEmbedder",
    "HTTPEmbedder",
    "NoopEmbedder",
    "OllamaEmbedder",
    "OpenAIEmbedder",
    "create_embedder",
    "text_for_playbook",
]
