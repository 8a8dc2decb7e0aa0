import logging
import os
from abc import ABC, abstractmethod
from typing import Optional

import requests

from playbookd.core.errors import ConfigError, EmbeddingError

logger = logging.getLogger(__name__)

DEFAULT_TIMEOUT = 30.0


class EmbeddingProvider(ABC):
    """
    Abstract base class for embedding providers.

    Turns text into a vector. An empty vector means "no embedding available"
    and puts the caller in BM25-only mode.
    """

    @abstractmethod
    def embed(self, text: str) -> list[float]:
        """
        Generate an embedding for ``text``.

        Raises:
            EmbeddingError: If the provider fails or returns a malformed response
        """
        pass


class NoopEmbedder(EmbeddingProvider):
    """Always returns an empty vector."""

    def embed(self, text: str) -> list[float]:
        return []


class HTTPEmbedder(EmbeddingProvider):
    """
    Shared request handling for JSON-over-HTTP embedding APIs.

    Subclasses build the request and pick the vector out of the response.
    No retries: any failure surfaces as an EmbeddingError.
    """

    provider_name = "http"

    def __init__(self, url: str, model: str, timeout: float = DEFAULT_TIMEOUT):
        self.url = url.rstrip("/")
        self.model = model
        self.timeout = timeout

    def _post(self, endpoint: str, payload: dict, headers: Optional[dict] = None) -> dict:
        request_headers = {"Content-Type": "application/json"}
        if headers:
            request_headers.update(headers)

        logger.debug(f"Requesting {self.provider_name} embedding from {endpoint}")
        try:
            response = requests.post(
                endpoint, json=payload, headers=request_headers, timeout=self.timeout
            )
        except requests.exceptions.RequestException as e:
            raise EmbeddingError(f"{self.provider_name} request: {e}") from e

        if response.status_code != 200:
            body = response.text[:4096]
            raise EmbeddingError(
                f"{self.provider_name} error (status {response.status_code}): {body}"
            )

        try:
            return response.json()
        except ValueError as e:
            raise EmbeddingError(f"{self.provider_name} decode response: {e}") from e

    @staticmethod
    def _as_vector(values) -> list[float]:
        if not isinstance(values, list):
            raise EmbeddingError("embedding response did not contain a vector")
        return [float(v) for v in values]


class OllamaEmbedder(HTTPEmbedder):
    """Local embeddings via the Ollama ``/api/embeddings`` endpoint."""

    provider_name = "ollama"

    def __init__(
        self,
        url: str = "",
        model: str = "",
        timeout: float = DEFAULT_TIMEOUT,
    ):
        super().__init__(url or "http://localhost:11434", model or "nomic-embed-text", timeout)

    def embed(self, text: str) -> list[float]:
        data = self._post(f"{self.url}/api/embeddings", {"model": self.model, "prompt": text})
        return self._as_vector(data.get("embedding"))


class OpenAIEmbedder(HTTPEmbedder):
    """
    OpenAI-compatible ``/embeddings`` endpoint.

    Works against api.openai.com and any server exposing the same API.
    """

    provider_name = "openai"

    def __init__(
        self,
        url: str = "",
        model: str = "",
        api_key: Optional[str] = None,
        timeout: float = DEFAULT_TIMEOUT,
    ):
        super().__init__(url or "https://api.openai.com/v1", model or "text-embedding-3-small", timeout)
        self.api_key = api_key or os.getenv("OPENAI_API_KEY")

    def embed(self, text: str) -> list[float]:
        headers = {"Authorization": f"Bearer {self.api_key}"} if self.api_key else None
        data = self._post(
            f"{self.url}/embeddings", {"model": self.model, "input": text}, headers=headers
        )
        try:
            values = data["data"][0]["embedding"]
        except (KeyError, IndexError, TypeError) as e:
            raise EmbeddingError(f"openai response missing embedding: {e}") from e
        return self._as_vector(values)


class GoogleEmbedder(HTTPEmbedder):
    """Gemini ``embedContent`` endpoint."""

    provider_name = "google"

    def __init__(
        self,
        url: str = "",
        model: str = "",
        api_key: Optional[str] = None,
        timeout: float = DEFAULT_TIMEOUT,
    ):
        super().__init__(
            url or "https://generativelanguage.googleapis.com/v1beta",
            model or "text-embedding-004",
            timeout,
        )
        self.api_key = api_key or os.getenv("GOOGLE_API_KEY")
        if not self.api_key:
            raise ConfigError(
                "Google API key must be provided via api_key or GOOGLE_API_KEY environment variable"
            )

    def embed(self, text: str) -> list[float]:
        payload = {
            "model": f"models/{self.model}",
            "content": {"parts": [{"text": text}]},
        }
        data = self._post(
            f"{self.url}/models/{self.model}:embedContent",
            payload,
            headers={"x-goog-api-key": self.api_key},
        )
        try:
            values = data["embedding"]["values"]
        except (KeyError, TypeError) as e:
            raise EmbeddingError(f"google response missing embedding: {e}") from e
        return self._as_vector(values)
