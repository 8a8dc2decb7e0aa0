import json
import threading
from datetime import UTC, datetime, timedelta

import pytest

from playbookd.core.errors import NotFoundError, StorageError
from playbookd.core.schema import ExecutionRecord, Outcome, Playbook, Status, Step, utcnow
from playbookd.core.storage import FileStore, ListFilter, ReadWriteLock, atomic_write_json


def _playbook(playbook_id: str, **kwargs) -> Playbook:
    kwargs.setdefault("steps", [Step(order=1, action="Do the thing")])
    return Playbook(id=playbook_id, name=kwargs.pop("name", playbook_id), **kwargs)


@pytest.fixture
def store(tmp_path):
    return FileStore(tmp_path)


def test_creates_layout(tmp_path):
    FileStore(tmp_path / "nested" / "data")
    assert (tmp_path / "nested" / "data" / "playbooks").is_dir()
    assert (tmp_path / "nested" / "data" / "executions").is_dir()


def test_save_and_get(store, tmp_path):
    store.save_playbook(_playbook("pb-1", tags=["ops"]))
    assert (tmp_path / "playbooks" / "pb-1.json").exists()

    loaded = store.get_playbook("pb-1")
    assert loaded.id == "pb-1"
    assert loaded.tags == ["ops"]
    assert loaded.steps[0].action == "Do the thing"


def test_save_overwrites(store):
    store.save_playbook(_playbook("pb-1", description="old"))
    store.save_playbook(_playbook("pb-1", description="new"))
    assert store.get_playbook("pb-1").description == "new"
    assert len(store.list_playbooks()) == 1


def test_get_missing_raises_not_found(store):
    with pytest.raises(NotFoundError):
        store.get_playbook("nope")


def test_get_corrupt_raises_storage_error(store, tmp_path):
    (tmp_path / "playbooks" / "bad.json").write_text("{not json")
    with pytest.raises(StorageError):
        store.get_playbook("bad")


def test_get_invalid_utf8_raises_storage_error(store, tmp_path):
    (tmp_path / "playbooks" / "bad.json").write_bytes(b'{"name": "\xff\xfe"}')
    with pytest.raises(StorageError):
        store.get_playbook("bad")


def test_no_temp_files_left_behind(store, tmp_path):
    for i in range(5):
        store.save_playbook(_playbook("pb-1", description=str(i)))
    assert [p.name for p in (tmp_path / "playbooks").iterdir()] == ["pb-1.json"]


def test_failed_write_keeps_previous_document(store, tmp_path, monkeypatch):
    store.save_playbook(_playbook("pb-1", description="original"))

    def broken_replace(src, dst):
        raise OSError("disk full")

    monkeypatch.setattr("playbookd.core.storage.file_store.os.replace", broken_replace)
    with pytest.raises(StorageError):
        store.save_playbook(_playbook("pb-1", description="updated"))
    monkeypatch.undo()

    assert store.get_playbook("pb-1").description == "original"
    assert [p.name for p in (tmp_path / "playbooks").iterdir()] == ["pb-1.json"]


def test_atomic_write_json(tmp_path):
    target = tmp_path / "doc.json"
    atomic_write_json(target, '{"a": 1}')
    assert json.loads(target.read_text()) == {"a": 1}


class TestListPlaybooks:
    def test_sorted_by_confidence_descending(self, store):
        store.save_playbook(_playbook("low", confidence=0.1))
        store.save_playbook(_playbook("high", confidence=0.9))
        store.save_playbook(_playbook("mid", confidence=0.5))
        assert [p.id for p in store.list_playbooks()] == ["high", "mid", "low"]

    def test_limit_applies_after_sort(self, store):
        store.save_playbook(_playbook("low", confidence=0.1))
        store.save_playbook(_playbook("high", confidence=0.9))
        assert [p.id for p in store.list_playbooks(ListFilter(limit=1))] == ["high"]

    def test_filters(self, store):
        store.save_playbook(_playbook("a", category="deploy", tags=["k8s", "prod"]))
        store.save_playbook(_playbook("b", category="deploy", tags=["k8s"]))
        store.save_playbook(_playbook("c", category="db", status=Status.ACTIVE))

        assert {p.id for p in store.list_playbooks(ListFilter(category="deploy"))} == {"a", "b"}
        assert {p.id for p in store.list_playbooks(ListFilter(tags=["k8s", "prod"]))} == {"a"}
        assert {p.id for p in store.list_playbooks(ListFilter(status=Status.ACTIVE))} == {"c"}

    def test_archived_hidden_by_default(self, store):
        store.save_playbook(_playbook("live"))
        store.save_playbook(_playbook("gone", status=Status.ARCHIVED))

        assert [p.id for p in store.list_playbooks()] == ["live"]
        assert {p.id for p in store.list_playbooks(ListFilter(include_archived=True))} == {"live", "gone"}
        assert [p.id for p in store.list_playbooks(ListFilter(status=Status.ARCHIVED))] == ["gone"]

    def test_corrupt_file_is_skipped(self, store, tmp_path):
        store.save_playbook(_playbook("good"))
        (tmp_path / "playbooks" / "broken.json").write_text("{{{")
        (tmp_path / "playbooks" / "wrong-shape.json").write_text("[1, 2, 3]")
        assert [p.id for p in store.list_playbooks()] == ["good"]

    def test_invalid_utf8_file_is_skipped(self, store, tmp_path):
        store.save_playbook(_playbook("good"))
        (tmp_path / "playbooks" / "bad.json").write_bytes(b'{"name": "\xff\xfe"}')
        assert [p.id for p in store.list_playbooks()] == ["good"]

    def test_empty(self, store):
        assert store.list_playbooks() == []


def test_legacy_archived_flag_translated(store, tmp_path):
    legacy = _playbook("old").model_dump(mode="json")
    legacy.pop("status")
    legacy["archived"] = True
    (tmp_path / "playbooks" / "old.json").write_text(json.dumps(legacy))

    assert store.get_playbook("old").status == Status.ARCHIVED
    assert store.list_playbooks() == []

    legacy["archived"] = False
    legacy["status"] = "active"
    (tmp_path / "playbooks" / "old.json").write_text(json.dumps(legacy))
    assert store.get_playbook("old").status == Status.ACTIVE


class TestExecutions:
    def test_save_get_list(self, store):
        now = utcnow()
        for i, outcome in enumerate([Outcome.SUCCESS, Outcome.FAILURE, Outcome.PARTIAL]):
            store.save_execution(
                ExecutionRecord(
                    id=f"ex-{i}",
                    playbook_id="pb-1",
                    outcome=outcome,
                    started_at=now + timedelta(minutes=i),
                )
            )

        assert store.get_execution("pb-1", "ex-1").outcome == Outcome.FAILURE
        assert [r.id for r in store.list_executions("pb-1")] == ["ex-2", "ex-1", "ex-0"]
        assert [r.id for r in store.list_executions("pb-1", limit=2)] == ["ex-2", "ex-1"]

    def test_missing_execution(self, store):
        with pytest.raises(NotFoundError):
            store.get_execution("pb-1", "nope")

    def test_list_for_unknown_playbook_is_empty(self, store):
        assert store.list_executions("nobody") == []

    def test_corrupt_execution_skipped(self, store, tmp_path):
        store.save_execution(ExecutionRecord(id="ok", playbook_id="pb-1", outcome=Outcome.SUCCESS))
        (tmp_path / "executions" / "pb-1" / "bad.json").write_text("nope")
        assert [r.id for r in store.list_executions("pb-1")] == ["ok"]

    def test_invalid_utf8_execution(self, store, tmp_path):
        store.save_execution(ExecutionRecord(id="ok", playbook_id="pb-1", outcome=Outcome.SUCCESS))
        (tmp_path / "executions" / "pb-1" / "bad.json").write_bytes(b'{"id": "\xff"}')
        assert [r.id for r in store.list_executions("pb-1")] == ["ok"]
        with pytest.raises(StorageError):
            store.get_execution("pb-1", "bad")

    def test_naive_and_aware_timestamps_sort_together(self, store):
        store.save_execution(ExecutionRecord(id="now", playbook_id="pb-1", outcome=Outcome.SUCCESS))
        store.save_execution(
            ExecutionRecord(
                id="old",
                playbook_id="pb-1",
                outcome=Outcome.FAILURE,
                started_at=datetime(2024, 1, 1),
            )
        )
        records = store.list_executions("pb-1")
        assert [r.id for r in records] == ["now", "old"]
        assert records[1].started_at == datetime(2024, 1, 1, tzinfo=UTC)


def test_delete_cascades_to_executions(store, tmp_path):
    store.save_playbook(_playbook("pb-1"))
    store.save_execution(ExecutionRecord(id="ex-1", playbook_id="pb-1", outcome=Outcome.SUCCESS))

    store.delete_playbook("pb-1")

    with pytest.raises(NotFoundError):
        store.get_playbook("pb-1")
    assert not (tmp_path / "executions" / "pb-1").exists()
    assert store.list_executions("pb-1") == []


def test_delete_missing_is_noop(store):
    store.delete_playbook("never-existed")


def test_concurrent_writers_and_readers(store):
    errors = []

    def writer(n):
        try:
            for i in range(20):
                store.save_playbook(_playbook(f"pb-{n}", description=f"rev {i}"))
        except Exception as e:  # pragma: no cover - surfaced below
            errors.append(e)

    def reader():
        try:
            for _ in range(20):
                for playbook in store.list_playbooks():
                    assert playbook.description.startswith("rev")
        except Exception as e:  # pragma: no cover - surfaced below
            errors.append(e)

    threads = [threading.Thread(target=writer, args=(n,)) for n in range(4)]
    threads += [threading.Thread(target=reader) for _ in range(4)]
    for t in threads:
        t.start()
    for t in threads:
        t.join()

    assert errors == []
    assert {p.id for p in store.list_playbooks()} == {"pb-0", "pb-1", "pb-2", "pb-3"}
    assert all(p.description == "rev 19" for p in store.list_playbooks())


def test_read_write_lock_excludes_writers():
    lock = ReadWriteLock()
    events = []

    with lock.read():
        t = threading.Thread(target=lambda: _write(lock, events))
        t.start()
        t.join(timeout=0.1)
        assert events == []
    t.join()
    assert events == ["wrote"]


def _write(lock: ReadWriteLock, events: list) -> None:
    with lock.write():
        events.append("wrote")
