"""
PlaybookManager: the single entry point of the playbook core.

Keeps the document store and the search index consistent across every
operation and drives the embedding provider. All calls are synchronous; the
store and the index are not transactionally coupled, and ``reindex`` is the
recovery path when the index falls behind the store.
"""

from __future__ import annotations

import logging
from collections import Counter
from dataclasses import dataclass, field, replace
from datetime import datetime, timedelta
from pathlib import Path

from playbookd.embed.client import EmbeddingProvider, NoopEmbedder
from playbookd.embed.factory import create_embedder
from playbookd.embed.text import text_for_playbook
from playbookd.utils import generate_id, log_event, slugify

from .config import PlaybookdConfig, parse_duration
from .contrastive import CANDIDATE_MULTIPLIER, ContrastiveQuery, ContrastiveResults, split_by_confidence
from .errors import ConfigError, EmbeddingError, NotFoundError, PlaybookError, StorageError, ValidationError
from .lifecycle import DEFAULT_DEPRECATION_THRESHOLD, evaluate_transition
from .retrieval.index import SearchIndex
from .retrieval.sqlite_index import SQLiteIndex
from .schema import ExecutionRecord, Lesson, Outcome, Playbook, Reflection, Status, utcnow
from .scoring import apply_composite_score, update_stats
from .search import DEFAULT_SEARCH_LIMIT, SearchMode, SearchQuery, SearchResult
from .storage.file_store import FileStore, ListFilter, Store

logger = logging.getLogger(__name__)

DEFAULT_MAX_AGE = timedelta(days=90)
DEFAULT_MIN_CONFIDENCE = 0.3
REFLECTION_LESSON_CONFIDENCE = 0.5


@dataclass
class ManagerConfig:
    data_dir: str | Path
    embedder: EmbeddingProvider | None = None
    embed_dims: int = 0  # 0 = BM25 only
    auto_reflect: bool = False
    max_age: timedelta = DEFAULT_MAX_AGE
    min_confidence: float = DEFAULT_MIN_CONFIDENCE
    deprecation_threshold: float = DEFAULT_DEPRECATION_THRESHOLD

    @classmethod
    def from_config(cls, config: PlaybookdConfig) -> "ManagerConfig":
        """Build a ManagerConfig from loaded configuration.

        Raises:
            ConfigError: On an unknown provider or malformed duration
        """
        return cls(
            data_dir=config.data.dir,
            embedder=create_embedder(config.embedding),
            embed_dims=config.embedding.dimensions,
            auto_reflect=config.manager.auto_reflect,
            max_age=parse_duration(config.manager.max_age) or DEFAULT_MAX_AGE,
            min_confidence=config.manager.min_confidence,
            deprecation_threshold=config.manager.deprecation_threshold,
        )


@dataclass
class PruneOptions:
    max_age: timedelta | None = None
    min_confidence: float | None = None
    dry_run: bool = False


@dataclass
class PruneResult:
    archived: list[str] = field(default_factory=list)
    dry_run: bool = False


@dataclass
class Stats:
    total: int = 0
    archived: int = 0
    by_category: dict[str, int] = field(default_factory=dict)
    by_status: dict[str, int] = field(default_factory=dict)
    total_executions: int = 0
    avg_confidence: float = 0.0

    def to_dict(self) -> dict:
        return {
            "total": self.total,
            "archived": self.archived,
            "by_category": self.by_category,
            "by_status": self.by_status,
            "total_executions": self.total_executions,
            "avg_confidence": round(self.avg_confidence, 3),
        }


def validate_playbook(playbook: Playbook) -> None:
    """Raise ValidationError unless the playbook has a name and non-empty steps."""
    if not playbook.name.strip():
        raise ValidationError("playbook name is required")
    if not playbook.steps:
        raise ValidationError("playbook must have at least one step")
    for i, step in enumerate(playbook.steps, start=1):
        if not step.action.strip():
            raise ValidationError(f"step {i} action is required")


def _older_than(ts: datetime | None, cutoff: datetime) -> bool:
    return ts is not None and ts < cutoff


class PlaybookManager:
    """Orchestrates store, index, scoring, lifecycle and embeddings.

    ``store`` and ``index`` default to the file store and the SQLite index
    under ``config.data_dir``; pass other implementations to swap them.
    """

    def __init__(
        self,
        config: ManagerConfig,
        store: Store | None = None,
        index: SearchIndex | None = None,
    ):
        if not config.data_dir:
            raise ConfigError("data_dir is required")
        self.config = config
        data_dir = Path(config.data_dir)
        self.store = store if store is not None else FileStore(data_dir)
        self.index = index if index is not None else SQLiteIndex(data_dir / "index", config.embed_dims)
        self.embedder = config.embedder or NoopEmbedder()

    def __enter__(self) -> "PlaybookManager":
        return self

    def __exit__(self, *exc_info) -> None:
        self.close()

    def close(self) -> None:
        self.index.close()

    # -- embeddings ----------------------------------------------------------

    def _embed(self, text: str) -> list[float]:
        try:
            return self.embedder.embed(text)
        except EmbeddingError:
            raise
        except Exception as e:
            raise EmbeddingError(f"embedding provider failed: {e}") from e

    def _generate_embedding(self, playbook: Playbook) -> None:
        text = text_for_playbook(
            playbook.name,
            playbook.description,
            playbook.tags,
            [step.action for step in playbook.steps],
        )
        playbook.embedding = self._embed(text) or None

    # -- CRUD ----------------------------------------------------------------

    def create(self, playbook: Playbook) -> Playbook:
        """Validate, embed, persist and index a new playbook.

        Nothing is persisted when embedding fails.
        """
        validate_playbook(playbook)
        if not playbook.id:
            playbook.id = generate_id()
        if not playbook.slug:
            playbook.slug = slugify(playbook.name)
        playbook.version = 1

        now = utcnow()
        playbook.created_at = now
        playbook.updated_at = now
        update_stats(playbook)

        self._generate_embedding(playbook)
        self.store.save_playbook(playbook)
        self.index.index(playbook)

        logger.info(f"Created playbook {playbook.id} ({playbook.name})")
        log_event("playbook_created", {"playbook_id": playbook.id, "name": playbook.name})
        return playbook

    def get(self, playbook_id: str) -> Playbook:
        return self.store.get_playbook(playbook_id)

    def list(self, filter: ListFilter | None = None) -> list[Playbook]:
        return self.store.list_playbooks(filter)

    def update(self, playbook: Playbook) -> Playbook:
        """Persist edits to an existing playbook, bumping its version by one."""
        validate_playbook(playbook)
        current = self.store.get_playbook(playbook.id)

        playbook.created_at = current.created_at
        if not playbook.slug:
            playbook.slug = current.slug if playbook.name == current.name else slugify(playbook.name)
        playbook.version = current.version + 1
        playbook.updated_at = utcnow()
        update_stats(playbook)

        self._generate_embedding(playbook)
        self.store.save_playbook(playbook)
        self.index.index(playbook)

        logger.info(f"Updated playbook {playbook.id} to version {playbook.version}")
        log_event("playbook_updated", {"playbook_id": playbook.id, "version": playbook.version})
        return playbook

    def delete(self, playbook_id: str) -> None:
        """Remove a playbook, its executions and its index entry.

        The store is authoritative: if index removal fails after the store
        delete succeeded, the error is raised and ``reindex`` cannot resurrect
        the entry, but a stale hit will be dropped during hydration.
        """
        self.store.delete_playbook(playbook_id)
        self.index.remove(playbook_id)
        logger.info(f"Deleted playbook {playbook_id}")
        log_event("playbook_deleted", {"playbook_id": playbook_id})

    # -- search --------------------------------------------------------------

    def search(self, query: SearchQuery) -> list[SearchResult]:
        """Run a search, hydrate hits from the store and apply composite ranking."""
        query = replace(query)
        if not query.embedding and query.text:
            try:
                query.embedding = self._embed(query.text) or None
            except EmbeddingError as e:
                logger.warning(f"Embedding failed, falling back to BM25: {e}")
                query.mode = SearchMode.LEXICAL
                query.embedding = None

        hits = self.index.search(query)

        results = []
        for hit in hits:
            try:
                playbook = self.store.get_playbook(hit.id)
            except NotFoundError:
                continue
            except StorageError as e:
                logger.warning(f"Skipping search hit {hit.id}: {e}")
                continue
            results.append(SearchResult(playbook=playbook, score=hit.score))

        return apply_composite_score(results, query.confidence_weight)

    def search_with_context(self, query: ContrastiveQuery) -> ContrastiveResults:
        """Search and split the results into positive, negative and neutral groups."""
        limit = query.limit if query.limit > 0 else DEFAULT_SEARCH_LIMIT
        expanded = replace(query, limit=limit * CANDIDATE_MULTIPLIER, min_score=0.0)
        results = self.search(expanded)
        return split_by_confidence(results, query, limit)

    # -- executions ----------------------------------------------------------

    def record_execution(self, record: ExecutionRecord) -> ExecutionRecord:
        """Persist an execution and fold its outcome into the playbook.

        Updates counters, stats and ``last_used_at``, runs the lifecycle
        automaton, then saves and re-indexes the playbook. The version is not
        bumped. With auto-reflect enabled, a reflection flagged
        ``should_update`` is applied afterwards; its failure is only logged.
        """
        playbook = self.store.get_playbook(record.playbook_id)

        if not record.id:
            record.id = generate_id()
        if not record.playbook_ver:
            record.playbook_ver = playbook.version
        self.store.save_execution(record)

        if record.outcome in (Outcome.SUCCESS, Outcome.PARTIAL):
            playbook.success_count += 1
        else:
            playbook.failure_count += 1
        playbook.last_used_at = record.completed_at
        update_stats(playbook)

        transition = evaluate_transition(playbook, self.config.deprecation_threshold)
        if transition is not None:
            before, after = transition
            logger.info(f"Playbook {playbook.id} moved from {before.value} to {after.value}")
            log_event(
                "lifecycle_transition",
                {"playbook_id": playbook.id, "from": before.value, "to": after.value},
            )

        self.store.save_playbook(playbook)
        self.index.index(playbook)
        log_event(
            "execution_recorded",
            {
                "playbook_id": playbook.id,
                "execution_id": record.id,
                "outcome": record.outcome.value,
                "confidence": round(playbook.confidence, 4),
            },
        )

        if self.config.auto_reflect and record.reflection and record.reflection.should_update:
            try:
                self.apply_reflection(record.playbook_id, record.reflection)
            except PlaybookError as e:
                logger.warning(f"Auto-reflect failed for playbook {record.playbook_id}: {e}")

        return record

    def get_execution(self, playbook_id: str, execution_id: str) -> ExecutionRecord:
        return self.store.get_execution(playbook_id, execution_id)

    def list_executions(self, playbook_id: str, limit: int = 0) -> list[ExecutionRecord]:
        return self.store.list_executions(playbook_id, limit)

    def apply_reflection(self, playbook_id: str, reflection: Reflection) -> Playbook:
        """Turn each suggested improvement into a lesson, then ``update``."""
        playbook = self.store.get_playbook(playbook_id)
        now = utcnow()
        for improvement in reflection.improvements:
            playbook.lessons.append(
                Lesson(
                    id=generate_id(),
                    content=improvement,
                    learned_from="reflection",
                    learned_at=now,
                    applies="general",
                    confidence=REFLECTION_LESSON_CONFIDENCE,
                )
            )
        return self.update(playbook)

    # -- maintenance ---------------------------------------------------------

    def prune(self, options: PruneOptions | None = None) -> PruneResult:
        """Archive stale, low-confidence or deprecated playbooks.

        A playbook is archived when any of these holds:
          - its status is deprecated
          - confidence is below the minimum and it was last updated before the cutoff
          - it was last used before the cutoff
          - it was never used, created before the cutoff and is below the minimum

        Archiving flips the status without bumping the version and drops the
        playbook from the index. Dry runs only report.
        """
        options = options or PruneOptions()
        max_age = options.max_age or self.config.max_age
        min_confidence = (
            options.min_confidence if options.min_confidence is not None else self.config.min_confidence
        )
        cutoff = utcnow() - max_age

        result = PruneResult(dry_run=options.dry_run)
        for playbook in self.store.list_playbooks(ListFilter(include_archived=True)):
            if playbook.status == Status.ARCHIVED:
                continue

            low_confidence = playbook.confidence < min_confidence
            should_prune = (
                playbook.status == Status.DEPRECATED
                or (low_confidence and _older_than(playbook.updated_at, cutoff))
                or _older_than(playbook.last_used_at, cutoff)
                or (
                    playbook.last_used_at is None
                    and low_confidence
                    and _older_than(playbook.created_at, cutoff)
                )
            )
            if not should_prune:
                continue

            result.archived.append(playbook.id)
            if options.dry_run:
                continue

            playbook.status = Status.ARCHIVED
            playbook.updated_at = utcnow()
            self.store.save_playbook(playbook)
            self.index.remove(playbook.id)
            log_event("playbook_archived", {"playbook_id": playbook.id})

        logger.info(
            f"Prune {'(dry run) ' if options.dry_run else ''}matched {len(result.archived)} playbook(s)"
        )
        return result

    def reindex(self) -> int:
        """Re-add every non-archived playbook to the index; returns the count.

        Additive: entries for playbooks no longer in the store are not removed.
        """
        playbooks = self.store.list_playbooks(ListFilter())
        count = self.index.reindex(playbooks)
        log_event("index_rebuilt", {"count": count})
        return count

    def stats(self) -> Stats:
        playbooks = self.store.list_playbooks(ListFilter(include_archived=True))
        stats = Stats(total=len(playbooks))

        by_status: Counter[str] = Counter()
        by_category: Counter[str] = Counter()
        total_confidence = 0.0
        for playbook in playbooks:
            by_status[playbook.status.value] += 1
            if playbook.category:
                by_category[playbook.category] += 1
            total_confidence += playbook.confidence
            stats.total_executions += playbook.total_executions

        stats.archived = by_status[Status.ARCHIVED.value]
        stats.by_status = dict(by_status)
        stats.by_category = dict(by_category)
        if playbooks:
            stats.avg_confidence = total_confidence / len(playbooks)
        return stats
