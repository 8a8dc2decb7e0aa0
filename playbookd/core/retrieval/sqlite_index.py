# playbookd/core/retrieval/sqlite_index.py
"""SQLite FTS5 (BM25) search index with an optional vector capability."""

import logging
import re
import sqlite3
import threading
from collections.abc import Iterable
from pathlib import Path

from ..errors import SearchIndexError, ValidationError
from ..schema import Playbook, Status
from ..search import DEFAULT_SEARCH_LIMIT, SearchMode, SearchQuery
from .index import TEXT_FIELDS, IndexDocument, IndexHit, SearchIndex
from .vector_store import VectorStore

logger = logging.getLogger(__name__)

INDEX_DB_NAME = "playbooks.db"

_TERM_RE = re.compile(r"\w+")


def build_match_expression(text: str) -> str | None:
    """Disjunction of every query term against every text field.

    Each field is matched on its own and the clauses are OR-ed together.
    Returns None when the text holds no searchable terms.
    """
    terms = list(dict.fromkeys(_TERM_RE.findall(text.lower())))
    if not terms:
        return None
    clauses = [f'{field} : "{term}"' for field in TEXT_FIELDS for term in terms]
    return " OR ".join(clauses)


class SQLiteIndex(SearchIndex):
    """Lexical index over an FTS5 table, optionally hybrid with embeddings.

    Vector support is decided at construction: ``dims == 0`` gives a
    text-only index where vector and hybrid queries degrade to BM25.
    """

    def __init__(self, path: str | Path, dims: int = 0):
        self.path = Path(path)
        self.dims = dims
        self._lock = threading.Lock()
        try:
            self.path.mkdir(parents=True, exist_ok=True)
            self.conn = sqlite3.connect(self.path / INDEX_DB_NAME, check_same_thread=False)
            with self.conn:
                self._init_schema()
                self.vectors = VectorStore(self.conn, dims) if dims > 0 else None
        except (OSError, sqlite3.Error) as e:
            raise SearchIndexError(f"open index at {self.path}: {e}") from e

    def _init_schema(self) -> None:
        self.conn.execute("""
            CREATE VIRTUAL TABLE IF NOT EXISTS playbook_fts USING fts5(
                id UNINDEXED,
                name,
                description,
                tags,
                steps,
                lessons,
                category UNINDEXED,
                status UNINDEXED,
                confidence UNINDEXED,
                success_rate UNINDEXED,
                tokenize = 'porter unicode61'
            )
        """)

    @property
    def supports_vectors(self) -> bool:
        return self.vectors is not None

    def _write_document(self, doc: IndexDocument) -> None:
        self.conn.execute("DELETE FROM playbook_fts WHERE id = ?", (doc.id,))
        self.conn.execute(
            """
            INSERT INTO playbook_fts
            (id, name, description, tags, steps, lessons, category, status, confidence, success_rate)
            VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?)
            """,
            (
                doc.id,
                doc.name,
                doc.description,
                doc.tags,
                doc.steps,
                doc.lessons,
                doc.category,
                doc.status,
                doc.confidence,
                doc.success_rate,
            ),
        )
        if self.vectors is not None:
            if doc.embedding:
                self.vectors.add(doc.id, doc.embedding)
            else:
                self.vectors.remove(doc.id)

    def index(self, playbook: Playbook) -> None:
        doc = IndexDocument.from_playbook(playbook)
        with self._lock:
            try:
                with self.conn:
                    self._write_document(doc)
            except sqlite3.Error as e:
                raise SearchIndexError(f"index playbook {playbook.id}: {e}") from e

    def remove(self, playbook_id: str) -> None:
        with self._lock:
            try:
                with self.conn:
                    self.conn.execute("DELETE FROM playbook_fts WHERE id = ?", (playbook_id,))
                    if self.vectors is not None:
                        self.vectors.remove(playbook_id)
            except sqlite3.Error as e:
                raise SearchIndexError(f"remove playbook {playbook_id}: {e}") from e

    def reindex(self, playbooks: Iterable[Playbook]) -> int:
        """Batch-index ``playbooks`` in one transaction.

        Documents for playbooks missing from ``playbooks`` are left in place; a
        full rebuild means deleting the index directory and starting empty.
        """
        docs = [IndexDocument.from_playbook(pb) for pb in playbooks]
        with self._lock:
            try:
                with self.conn:
                    for doc in docs:
                        self._write_document(doc)
            except sqlite3.Error as e:
                raise SearchIndexError(f"batch index: {e}") from e
        return len(docs)

    def search(self, query: SearchQuery) -> list[IndexHit]:
        limit = query.limit if query.limit > 0 else DEFAULT_SEARCH_LIMIT
        try:
            mode = SearchMode(query.mode)
        except ValueError as e:
            raise ValidationError(f"unsupported search mode: {query.mode}") from e
        use_vectors = self.vectors is not None and bool(query.embedding)

        with self._lock:
            try:
                if mode == SearchMode.VECTOR and use_vectors:
                    hits = self._vector_hits(query, limit)
                elif mode == SearchMode.HYBRID and use_vectors:
                    hits = self._merge(self._lexical_hits(query, limit), self._vector_hits(query, limit))
                    hits = hits[:limit]
                else:
                    hits = self._lexical_hits(query, limit)
            except sqlite3.Error as e:
                raise SearchIndexError(f"search: {e}") from e
            except (RuntimeError, ValueError) as e:
                raise SearchIndexError(f"vector search: {e}") from e

        if query.min_score > 0:
            hits = [h for h in hits if h.score >= query.min_score]
        return hits

    @staticmethod
    def _filter_clause(query: SearchQuery) -> tuple[str, list]:
        clauses, params = [], []
        if query.status is not None:
            clauses.append("status = ?")
            params.append(Status(query.status).value)
        if query.category:
            clauses.append("category = ?")
            params.append(query.category)
        return "".join(f" AND {c}" for c in clauses), params

    def _lexical_hits(self, query: SearchQuery, limit: int) -> list[IndexHit]:
        expression = build_match_expression(query.text)
        if expression is None:
            return []
        filters, params = self._filter_clause(query)
        rows = self.conn.execute(
            f"""
            SELECT id, -bm25(playbook_fts) AS score
            FROM playbook_fts
            WHERE playbook_fts MATCH ?{filters}
            ORDER BY score DESC
            LIMIT ?
            """,
            (expression, *params, limit),
        ).fetchall()
        return [IndexHit(id=row[0], score=float(row[1])) for row in rows]

    def _vector_hits(self, query: SearchQuery, limit: int) -> list[IndexHit]:
        assert self.vectors is not None and query.embedding
        allowed = None
        if query.status is not None or query.category:
            filters, params = self._filter_clause(query)
            rows = self.conn.execute(
                f"SELECT id FROM playbook_fts WHERE 1 = 1{filters}", params
            ).fetchall()
            allowed = {row[0] for row in rows}
        return self.vectors.search(query.embedding, limit, allowed=allowed)

    @staticmethod
    def _merge(lexical: list[IndexHit], vector: list[IndexHit]) -> list[IndexHit]:
        """Sum lexical and nearest-neighbour scores per document."""
        scores: dict[str, float] = {}
        for hit in lexical + vector:
            scores[hit.id] = scores.get(hit.id, 0.0) + hit.score
        ranked = sorted(scores.items(), key=lambda item: item[1], reverse=True)
        return [IndexHit(id=doc_id, score=score) for doc_id, score in ranked]

    def close(self) -> None:
        with self._lock:
            self.conn.close()
