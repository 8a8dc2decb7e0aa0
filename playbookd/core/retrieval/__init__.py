from .index import IndexDocument, IndexHit, SearchIndex
from .sqlite_index import SQLiteIndex
from .vector_store import VectorStore

__all__ = ["IndexDocument", "IndexHit", "SearchIndex", "SQLiteIndex", "VectorStore"]
