"""
File-per-entity JSON document store for playbooks and execution records.

Layout under the data directory::

    playbooks/<id>.json
    executions/<playbook_id>/<execution_id>.json

Writes go to a temporary file in the target directory and are renamed over the
destination, so readers only ever see a complete previous or new document.
"""

import json
import logging
import os
import shutil
import tempfile
import threading
from abc import ABC, abstractmethod
from collections.abc import Iterator
from contextlib import contextmanager
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any

from pydantic import ValidationError as SchemaError

from ..errors import NotFoundError, StorageError
from ..schema import ExecutionRecord, Playbook, Status

logger = logging.getLogger(__name__)


@dataclass
class ListFilter:
    status: Status | None = None
    category: str = ""
    tags: list[str] = field(default_factory=list)
    limit: int = 0
    include_archived: bool = False


class Store(ABC):
    """Persistence interface for playbooks and executions."""

    @abstractmethod
    def save_playbook(self, playbook: Playbook) -> None: ...

    @abstractmethod
    def get_playbook(self, playbook_id: str) -> Playbook: ...

    @abstractmethod
    def list_playbooks(self, filter: ListFilter | None = None) -> list[Playbook]: ...

    @abstractmethod
    def delete_playbook(self, playbook_id: str) -> None: ...

    @abstractmethod
    def save_execution(self, record: ExecutionRecord) -> None: ...

    @abstractmethod
    def get_execution(self, playbook_id: str, execution_id: str) -> ExecutionRecord: ...

    @abstractmethod
    def list_executions(self, playbook_id: str, limit: int = 0) -> list[ExecutionRecord]: ...


class ReadWriteLock:
    """Many concurrent readers or one exclusive writer."""

    def __init__(self):
        self._cond = threading.Condition(threading.Lock())
        self._readers = 0
        self._writer = False

    @contextmanager
    def read(self) -> Iterator[None]:
        with self._cond:
            while self._writer:
                self._cond.wait()
            self._readers += 1
        try:
            yield
        finally:
            with self._cond:
                self._readers -= 1
                if self._readers == 0:
                    self._cond.notify_all()

    @contextmanager
    def write(self) -> Iterator[None]:
        with self._cond:
            while self._writer or self._readers:
                self._cond.wait()
            self._writer = True
        try:
            yield
        finally:
            with self._cond:
                self._writer = False
                self._cond.notify_all()


def atomic_write_json(path: Path, payload: str) -> None:
    """Write ``payload`` to ``path`` via temp file, fsync and rename."""
    fd, tmp_path = tempfile.mkstemp(dir=path.parent, prefix=".tmp-")
    try:
        with os.fdopen(fd, "w", encoding="utf-8") as f:
            f.write(payload)
            f.flush()
            os.fsync(f.fileno())
        os.replace(tmp_path, path)
    except BaseException:
        try:
            os.unlink(tmp_path)
        except FileNotFoundError:
            pass
        raise


def _translate_legacy(data: Any) -> Any:
    """Map the historical boolean ``archived`` flag onto ``status``."""
    if isinstance(data, dict) and "archived" in data:
        if data.pop("archived"):
            data["status"] = Status.ARCHIVED.value
    return data


def _matches(playbook: Playbook, filter: ListFilter) -> bool:
    if filter.status is not None:
        if playbook.status != filter.status:
            return False
    elif not filter.include_archived and playbook.status == Status.ARCHIVED:
        return False
    if filter.category and playbook.category != filter.category:
        return False
    if filter.tags and not set(filter.tags).issubset(playbook.tags):
        return False
    return True


class FileStore(Store):
    """JSON-file ``Store`` guarded by one coarse reader/writer lock."""

    def __init__(self, data_dir: str | Path):
        self.data_dir = Path(data_dir)
        self.playbooks_dir = self.data_dir / "playbooks"
        self.executions_dir = self.data_dir / "executions"
        self._lock = ReadWriteLock()
        for directory in (self.playbooks_dir, self.executions_dir):
            try:
                directory.mkdir(parents=True, exist_ok=True)
            except OSError as e:
                raise StorageError(f"create directory {directory}: {e}") from e

    def _playbook_path(self, playbook_id: str) -> Path:
        return self.playbooks_dir / f"{playbook_id}.json"

    def _execution_dir(self, playbook_id: str) -> Path:
        return self.executions_dir / playbook_id

    def _execution_path(self, playbook_id: str, execution_id: str) -> Path:
        return self._execution_dir(playbook_id) / f"{execution_id}.json"

    @staticmethod
    def _parse_playbook(raw: bytes) -> Playbook:
        return Playbook.model_validate(_translate_legacy(json.loads(raw)))

    # -- playbooks -----------------------------------------------------------

    def save_playbook(self, playbook: Playbook) -> None:
        payload = playbook.model_dump_json(indent=2)
        with self._lock.write():
            try:
                atomic_write_json(self._playbook_path(playbook.id), payload)
            except OSError as e:
                raise StorageError(f"save playbook {playbook.id}: {e}") from e

    def get_playbook(self, playbook_id: str) -> Playbook:
        with self._lock.read():
            try:
                raw = self._playbook_path(playbook_id).read_bytes()
            except FileNotFoundError as e:
                raise NotFoundError(f"playbook {playbook_id}: not found") from e
            except OSError as e:
                raise StorageError(f"read playbook {playbook_id}: {e}") from e
        try:
            return self._parse_playbook(raw)
        except (UnicodeDecodeError, json.JSONDecodeError, SchemaError) as e:
            raise StorageError(f"decode playbook {playbook_id}: {e}") from e

    def list_playbooks(self, filter: ListFilter | None = None) -> list[Playbook]:
        filter = filter or ListFilter()
        playbooks = []
        with self._lock.read():
            for path in sorted(self.playbooks_dir.glob("*.json")):
                try:
                    playbook = self._parse_playbook(path.read_bytes())
                except (OSError, UnicodeDecodeError, json.JSONDecodeError, SchemaError) as e:
                    # one corrupt file must not block listing the rest
                    logger.debug(f"Skipping unreadable playbook {path.name}: {e}")
                    continue
                if _matches(playbook, filter):
                    playbooks.append(playbook)

        playbooks.sort(key=lambda p: p.confidence, reverse=True)
        if filter.limit > 0:
            playbooks = playbooks[: filter.limit]
        return playbooks

    def delete_playbook(self, playbook_id: str) -> None:
        """Remove a playbook and all of its execution records."""
        with self._lock.write():
            try:
                self._playbook_path(playbook_id).unlink(missing_ok=True)
                execution_dir = self._execution_dir(playbook_id)
                if execution_dir.exists():
                    shutil.rmtree(execution_dir)
            except OSError as e:
                raise StorageError(f"delete playbook {playbook_id}: {e}") from e

    # -- executions ----------------------------------------------------------

    def save_execution(self, record: ExecutionRecord) -> None:
        payload = record.model_dump_json(indent=2)
        with self._lock.write():
            try:
                self._execution_dir(record.playbook_id).mkdir(parents=True, exist_ok=True)
                atomic_write_json(self._execution_path(record.playbook_id, record.id), payload)
            except OSError as e:
                raise StorageError(f"save execution {record.id}: {e}") from e

    def get_execution(self, playbook_id: str, execution_id: str) -> ExecutionRecord:
        with self._lock.read():
            try:
                raw = self._execution_path(playbook_id, execution_id).read_bytes()
            except FileNotFoundError as e:
                raise NotFoundError(f"execution {execution_id}: not found") from e
            except OSError as e:
                raise StorageError(f"read execution {execution_id}: {e}") from e
        try:
            return ExecutionRecord.model_validate_json(raw)
        except (UnicodeDecodeError, SchemaError) as e:
            raise StorageError(f"decode execution {execution_id}: {e}") from e

    def list_executions(self, playbook_id: str, limit: int = 0) -> list[ExecutionRecord]:
        """Executions for a playbook, newest first."""
        records = []
        with self._lock.read():
            directory = self._execution_dir(playbook_id)
            if not directory.is_dir():
                return []
            for path in directory.glob("*.json"):
                try:
                    records.append(
                        ExecutionRecord.model_validate_json(path.read_bytes())
                    )
                except (OSError, UnicodeDecodeError, SchemaError) as e:
                    logger.debug(f"Skipping unreadable execution {path.name}: {e}")
                    continue

        records.sort(key=lambda r: r.started_at, reverse=True)
        if limit > 0:
            records = records[:limit]
        return records
