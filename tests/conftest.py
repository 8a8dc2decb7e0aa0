# tests/conftest.py
"""Pytest configuration and shared fixtures."""

import logging
import os
import re

import pytest

from playbookd.core.errors import EmbeddingError
from playbookd.core.manager import ManagerConfig, PlaybookManager
from playbookd.core.schema import Playbook, Step
from playbookd.core.scoring import update_stats
from playbookd.embed.client import EmbeddingProvider

# Keep a developer's shell from leaking overrides into config tests
for _name in list(os.environ):
    if _name.startswith("PLAYBOOKD_"):
        del os.environ[_name]

VOCAB = ("deploy", "kubernetes", "database", "migration", "rollback", "test", "docker", "backup")
EMBED_DIMS = len(VOCAB) + 1


class KeywordEmbedder(EmbeddingProvider):
    """Deterministic bag-of-words embedder over a small fixed vocabulary.

    The last dimension is a constant so no text maps to the zero vector.
    """

    def __init__(self):
        self.calls: list[str] = []

    def embed(self, text: str) -> list[float]:
        self.calls.append(text)
        words = re.findall(r"[a-z]+", text.lower())
        vector = [float(sum(1 for w in words if w.startswith(term))) for term in VOCAB]
        vector.append(0.1)
        return vector


class FailingEmbedder(EmbeddingProvider):
    def embed(self, text: str) -> list[float]:
        raise EmbeddingError("provider unavailable")


def make_playbook(name: str = "Deploy service", **kwargs) -> Playbook:
    steps = kwargs.pop("steps", None) or [
        Step(order=1, action="Check prerequisites"),
        Step(order=2, action="Run the procedure"),
    ]
    return Playbook(name=name, steps=steps, **kwargs)


def seed_playbook(
    manager: PlaybookManager, name: str, successes: int = 0, failures: int = 0, **kwargs
) -> Playbook:
    """Create a playbook and force its outcome counters without running the lifecycle."""
    playbook = manager.create(make_playbook(name, **kwargs))
    playbook.success_count = successes
    playbook.failure_count = failures
    update_stats(playbook)
    manager.store.save_playbook(playbook)
    manager.index.index(playbook)
    return playbook


@pytest.fixture
def restore_logging(monkeypatch):
    """Undo root logger changes made by setup_logging."""
    monkeypatch.setattr(logging.root, "handlers", list(logging.root.handlers))
    monkeypatch.setattr(logging.root, "level", logging.root.level)


@pytest.fixture
def data_dir(tmp_path):
    return tmp_path / "data"


@pytest.fixture
def manager_factory(data_dir):
    """Build managers over the shared data directory and close them afterwards."""
    managers = []

    def factory(**overrides) -> PlaybookManager:
        config = ManagerConfig(data_dir=data_dir, **overrides)
        manager = PlaybookManager(config)
        managers.append(manager)
        return manager

    yield factory
    for manager in managers:
        manager.close()


@pytest.fixture
def manager(manager_factory):
    """BM25-only manager."""
    return manager_factory()


@pytest.fixture
def vector_manager(manager_factory):
    """Manager with the keyword embedder and a vector-capable index."""
    return manager_factory(embedder=KeywordEmbedder(), embed_dims=EMBED_DIMS)
