from .file_store import FileStore, ListFilter, ReadWriteLock, Store, atomic_write_json

__all__ = ["FileStore", "ListFilter", "ReadWriteLock", "Store", "atomic_write_json"]
