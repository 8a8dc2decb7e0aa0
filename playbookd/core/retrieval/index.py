# playbookd/core/retrieval/index.py
"""Search index contract and the playbook-to-document projection."""

from abc import ABC, abstractmethod
from collections.abc import Iterable
from dataclasses import dataclass

from ..schema import Playbook
from ..search import SearchQuery

TEXT_FIELDS = ("name", "description", "tags", "steps", "lessons")


@dataclass(frozen=True)
class IndexHit:
    id: str
    score: float


@dataclass
class IndexDocument:
    """Flattened view of a playbook as stored in the index."""

    id: str
    name: str
    description: str
    tags: str
    steps: str
    lessons: str
    category: str
    status: str
    confidence: float
    success_rate: float
    embedding: list[float] | None = None

    @classmethod
    def from_playbook(cls, playbook: Playbook) -> "IndexDocument":
        return cls(
            id=playbook.id,
            name=playbook.name,
            description=playbook.description,
            tags=" ".join(playbook.tags),
            steps=" ".join(step.action for step in playbook.steps),
            lessons=" ".join(lesson.content for lesson in playbook.lessons),
            category=playbook.category,
            status=playbook.status.value,
            confidence=playbook.confidence,
            success_rate=playbook.success_rate,
            embedding=playbook.embedding or None,
        )


class SearchIndex(ABC):
    @abstractmethod
    def index(self, playbook: Playbook) -> None:
        """Add or replace the document for ``playbook``."""

    @abstractmethod
    def remove(self, playbook_id: str) -> None: ...

    @abstractmethod
    def search(self, query: SearchQuery) -> list[IndexHit]:
        """Ranked hits, best first. Scores are opaque relevance values."""

    @abstractmethod
    def reindex(self, playbooks: Iterable[Playbook]) -> int:
        """Index all ``playbooks`` in one batch; existing entries are kept."""

    @abstractmethod
    def close(self) -> None: ...
