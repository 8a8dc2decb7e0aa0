import logging
import sqlite3
from collections.abc import Collection, Sequence
from typing import Any, Optional

import faiss  # type: ignore
import numpy as np

from .index import IndexHit

logger = logging.getLogger(__name__)


class VectorStore:
    """Nearest-neighbour capability over playbook embeddings.

    Vectors are persisted in the index database and served from an in-memory
    faiss inner-product index over L2-normalised vectors (cosine similarity).
    The faiss index is rebuilt lazily after any change, since flat indexes do
    not support removal by external id.
    """

    def __init__(self, conn: sqlite3.Connection, dims: int):
        if dims <= 0:
            raise ValueError(f"vector dimensions must be > 0, got {dims}")
        self.conn = conn
        self.dims = dims
        self.index: Optional[Any] = None
        self.idx_to_id: list[str] = []
        self._dirty = True
        self.conn.execute("""
            CREATE TABLE IF NOT EXISTS embeddings (
                playbook_id TEXT PRIMARY KEY,
                vector BLOB NOT NULL
            )
        """)

    def _as_array(self, vector: Sequence[float]) -> np.ndarray:
        arr = np.asarray(vector, dtype=np.float32).reshape(1, -1)
        faiss.normalize_L2(arr)
        return arr

    def add(self, playbook_id: str, vector: Sequence[float]) -> bool:
        """Store ``vector`` for ``playbook_id``; returns False on a size mismatch."""
        if len(vector) != self.dims:
            logger.warning(
                f"Embedding for {playbook_id} has {len(vector)} dims, expected {self.dims}; "
                "skipping vector indexing"
            )
            self.remove(playbook_id)
            return False
        arr = np.asarray(vector, dtype=np.float32)
        self.conn.execute(
            "INSERT OR REPLACE INTO embeddings (playbook_id, vector) VALUES (?, ?)",
            (playbook_id, arr.tobytes()),
        )
        self._dirty = True
        return True

    def remove(self, playbook_id: str) -> None:
        cursor = self.conn.execute("DELETE FROM embeddings WHERE playbook_id = ?", (playbook_id,))
        if cursor.rowcount:
            self._dirty = True

    def rebuild_index(self) -> None:
        self.index = faiss.IndexFlatIP(self.dims)
        self.idx_to_id = []
        rows = self.conn.execute("SELECT playbook_id, vector FROM embeddings").fetchall()
        if rows:
            matrix = np.vstack([np.frombuffer(blob, dtype=np.float32) for _, blob in rows])
            matrix = np.ascontiguousarray(matrix, dtype=np.float32)
            faiss.normalize_L2(matrix)
            self.index.add(matrix)
            self.idx_to_id = [playbook_id for playbook_id, _ in rows]
        self._dirty = False

    def search(
        self,
        vector: Sequence[float],
        top_k: int,
        allowed: Collection[str] | None = None,
    ) -> list[IndexHit]:
        if len(vector) != self.dims:
            raise ValueError(f"query embedding has {len(vector)} dims, expected {self.dims}")
        if self._dirty or self.index is None:
            self.rebuild_index()
        assert self.index is not None
        if self.index.ntotal == 0:
            return []

        # flat index: scan everything when a filter must be applied afterwards
        k = self.index.ntotal if allowed is not None else min(top_k, self.index.ntotal)
        scores, indices = self.index.search(self._as_array(vector), k)

        hits = []
        for score, idx in zip(scores[0], indices[0], strict=True):
            if idx == -1:
                continue
            playbook_id = self.idx_to_id[idx]
            if allowed is not None and playbook_id not in allowed:
                continue
            hits.append(IndexHit(id=playbook_id, score=float(score)))
            if len(hits) >= top_k:
                break
        return hits
