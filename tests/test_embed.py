"""Tests for embedding providers and the provider factory."""

from unittest.mock import Mock, patch

import pytest
import requests

from playbookd.core.config import EmbeddingConfig
from playbookd.core.errors import ConfigError, EmbeddingError
from playbookd.embed import (
    EmbeddingProvider,
    GoogleEmbedder,
    NoopEmbedder,
    OllamaEmbedder,
    OpenAIEmbedder,
    create_embedder,
    text_for_playbook,
)


def _response(payload, status_code: int = 200) -> Mock:
    response = Mock()
    response.status_code = status_code
    response.json.return_value = payload
    response.text = str(payload)
    return response


def _config(provider: str, **kwargs) -> EmbeddingConfig:
    fields = {"model": "", "url": "", "api_key": "", "dimensions": 0, "timeout": 5.0}
    fields.update(kwargs)
    return EmbeddingConfig(provider=provider, **fields)


def test_provider_is_abstract():
    with pytest.raises(TypeError):
        EmbeddingProvider()  # type: ignore


def test_noop_returns_empty_vector():
    assert NoopEmbedder().embed("anything") == []


class TestOllamaEmbedder:
    @patch("requests.post")
    def test_successful_request(self, mock_post):
        mock_post.return_value = _response({"embedding": [0.1, 0.2, 3]})

        vector = OllamaEmbedder(timeout=7.0).embed("deploy the service")

        assert vector == [0.1, 0.2, 3.0]
        call_args = mock_post.call_args
        assert call_args[0][0] == "http://localhost:11434/api/embeddings"
        assert call_args[1]["json"] == {"model": "nomic-embed-text", "prompt": "deploy the service"}
        assert call_args[1]["timeout"] == 7.0

    @patch("requests.post")
    def test_custom_url_and_model(self, mock_post):
        mock_post.return_value = _response({"embedding": [1.0]})
        OllamaEmbedder(url="http://gpu-box:11434/", model="mxbai-embed-large").embed("x")
        assert mock_post.call_args[0][0] == "http://gpu-box:11434/api/embeddings"
        assert mock_post.call_args[1]["json"]["model"] == "mxbai-embed-large"

    @patch("requests.post")
    def test_http_error(self, mock_post):
        mock_post.return_value = _response({"error": "model not found"}, status_code=404)
        with pytest.raises(EmbeddingError, match="status 404"):
            OllamaEmbedder().embed("x")

    @patch("requests.post")
    def test_network_error(self, mock_post):
        mock_post.side_effect = requests.exceptions.ConnectionError("refused")
        with pytest.raises(EmbeddingError, match="refused"):
            OllamaEmbedder().embed("x")

    @patch("requests.post")
    def test_timeout(self, mock_post):
        mock_post.side_effect = requests.exceptions.Timeout("timed out")
        with pytest.raises(EmbeddingError):
            OllamaEmbedder().embed("x")

    @patch("requests.post")
    def test_malformed_json(self, mock_post):
        response = _response(None)
        response.json.side_effect = ValueError("not json")
        mock_post.return_value = response
        with pytest.raises(EmbeddingError, match="decode"):
            OllamaEmbedder().embed("x")

    @patch("requests.post")
    def test_missing_vector(self, mock_post):
        mock_post.return_value = _response({"status": "ok"})
        with pytest.raises(EmbeddingError):
            OllamaEmbedder().embed("x")


class TestOpenAIEmbedder:
    @patch("requests.post")
    def test_successful_request(self, mock_post):
        mock_post.return_value = _response({"data": [{"embedding": [0.5, 0.25]}]})

        vector = OpenAIEmbedder(api_key="sk-test").embed("hello")

        assert vector == [0.5, 0.25]
        assert mock_post.call_args[0][0] == "https://api.openai.com/v1/embeddings"
        assert mock_post.call_args[1]["json"] == {"model": "text-embedding-3-small", "input": "hello"}
        assert mock_post.call_args[1]["headers"]["Authorization"] == "Bearer sk-test"

    @patch("requests.post")
    def test_api_key_from_env(self, mock_post, monkeypatch):
        monkeypatch.setenv("OPENAI_API_KEY", "sk-env")
        mock_post.return_value = _response({"data": [{"embedding": [1.0]}]})
        OpenAIEmbedder().embed("x")
        assert mock_post.call_args[1]["headers"]["Authorization"] == "Bearer sk-env"

    @patch("requests.post")
    def test_compatible_server_without_key(self, mock_post, monkeypatch):
        monkeypatch.delenv("OPENAI_API_KEY", raising=False)
        mock_post.return_value = _response({"data": [{"embedding": [1.0]}]})
        OpenAIEmbedder(url="http://localhost:8080/v1").embed("x")
        assert mock_post.call_args[0][0] == "http://localhost:8080/v1/embeddings"
        assert "Authorization" not in mock_post.call_args[1]["headers"]

    @patch("requests.post")
    def test_empty_data(self, mock_post):
        mock_post.return_value = _response({"data": []})
        with pytest.raises(EmbeddingError, match="missing embedding"):
            OpenAIEmbedder(api_key="k").embed("x")


class TestGoogleEmbedder:
    def test_requires_api_key(self, monkeypatch):
        monkeypatch.delenv("GOOGLE_API_KEY", raising=False)
        with pytest.raises(ConfigError, match="GOOGLE_API_KEY"):
            GoogleEmbedder()

    @patch("requests.post")
    def test_successful_request(self, mock_post):
        mock_post.return_value = _response({"embedding": {"values": [0.1, 0.9]}})

        vector = GoogleEmbedder(api_key="g-key").embed("hello")

        assert vector == [0.1, 0.9]
        assert mock_post.call_args[0][0] == (
            "https://generativelanguage.googleapis.com/v1beta/models/text-embedding-004:embedContent"
        )
        payload = mock_post.call_args[1]["json"]
        assert payload["model"] == "models/text-embedding-004"
        assert payload["content"] == {"parts": [{"text": "hello"}]}
        assert mock_post.call_args[1]["headers"]["x-goog-api-key"] == "g-key"

    @patch("requests.post")
    def test_missing_values(self, mock_post):
        mock_post.return_value = _response({"embedding": {}})
        with pytest.raises(EmbeddingError):
            GoogleEmbedder(api_key="g-key").embed("x")


class TestFactory:
    def test_noop(self):
        assert isinstance(create_embedder(_config("noop")), NoopEmbedder)
        assert isinstance(create_embedder(_config("")), NoopEmbedder)

    def test_ollama(self):
        embedder = create_embedder(_config("ollama", url="http://host:1234", model="m", timeout=3.0))
        assert isinstance(embedder, OllamaEmbedder)
        assert embedder.url == "http://host:1234"
        assert embedder.model == "m"
        assert embedder.timeout == 3.0

    def test_openai(self):
        embedder = create_embedder(_config("OpenAI", api_key="sk"))
        assert isinstance(embedder, OpenAIEmbedder)
        assert embedder.api_key == "sk"

    @patch.dict("os.environ", {"GOOGLE_API_KEY": "env-key"})
    def test_google(self):
        embedder = create_embedder(_config("google"))
        assert isinstance(embedder, GoogleEmbedder)
        assert embedder.api_key == "env-key"

    def test_google_without_key_is_config_error(self, monkeypatch):
        monkeypatch.delenv("GOOGLE_API_KEY", raising=False)
        with pytest.raises(ConfigError):
            create_embedder(_config("google"))

    def test_unknown_provider(self):
        with pytest.raises(ConfigError, match="Unsupported embedding provider"):
            create_embedder(_config("cohere"))


def test_text_for_playbook():
    text = text_for_playbook("Deploy", "Ship it", ["k8s", "prod"], ["Build", "", "Push"])
    assert text == "Deploy\nShip it\ntags: k8s, prod\nsteps: Build; Push"


def test_text_for_playbook_skips_empty_parts():
    assert text_for_playbook("Deploy", "", [], []) == "Deploy"
