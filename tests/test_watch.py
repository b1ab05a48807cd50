import json
import time

import pytest

from filestate import (
    AlreadyWatchingError,
    EventKind,
    FileWatcher,
    NotWatchingError,
    PersistedValue,
    UniqueStore,
)

POLL = 0.02


@pytest.fixture()
def watcher():
    return FileWatcher(interval=POLL)


def _count_loads(store, monkeypatch):
    calls = []
    original = store.load

    def counting():
        calls.append(time.monotonic())
        return original()

    monkeypatch.setattr(store, "load", counting)
    return calls


def test_watcher_reports_creation_modification_and_removal(tmp_path, watcher, wait_until):
    path = tmp_path / "watched.json"
    events = []
    subscription = watcher.subscribe(path, events.append)
    try:
        path.write_text("[1]", encoding="utf-8")
        assert wait_until(lambda: len(events) >= 1)
        path.write_text("[1, 2]", encoding="utf-8")
        assert wait_until(lambda: len(events) >= 2)
        path.unlink()
        assert wait_until(lambda: len(events) >= 3)
    finally:
        subscription.close()

    assert [event.kind for event in events] == [
        EventKind.CREATED,
        EventKind.MODIFIED,
        EventKind.REMOVED,
    ]
    assert events[-1].digest is None
    assert not subscription.active


def test_watcher_dedupes_identical_rewrites(tmp_path, watcher):
    path = tmp_path / "watched.json"
    path.write_text("[1]", encoding="utf-8")
    events = []
    subscription = watcher.subscribe(path, events.append)
    try:
        for _ in range(5):
            path.write_text("[1]", encoding="utf-8")
            time.sleep(POLL)
        time.sleep(POLL * 5)
    finally:
        subscription.close()

    assert events == []


def test_watch_saves_current_value_first(tmp_path, watcher):
    path = tmp_path / "state.json"
    store = PersistedValue(path, default=lambda: {"seed": 1})
    close = store.watch(watcher)
    try:
        assert json.loads(path.read_text(encoding="utf-8")) == {"seed": 1}
        assert store.watching
    finally:
        close()
    assert not store.watching


def test_second_watch_is_rejected(tmp_path, watcher):
    store = PersistedValue(tmp_path / "state.json", default=dict)
    close = store.watch(watcher)
    try:
        with pytest.raises(AlreadyWatchingError):
            store.watch(watcher)
        assert store.watching
    finally:
        close()


def test_closing_twice_is_an_error(tmp_path, watcher):
    store = PersistedValue(tmp_path / "state.json", default=dict)
    close = store.watch(watcher)
    close()

    with pytest.raises(NotWatchingError):
        close()
    with pytest.raises(NotWatchingError):
        store.unwatch()


def test_unwatch_without_subscription_is_an_error(tmp_path):
    store = PersistedValue(tmp_path / "state.json", default=dict)
    with pytest.raises(NotWatchingError):
        store.unwatch()


def test_external_edit_is_reloaded(tmp_path, watcher, wait_until):
    path = tmp_path / "state.json"
    store = PersistedValue(path, default=dict)
    close = store.watch(watcher)
    try:
        path.write_text(json.dumps({"changed": "elsewhere"}), encoding="utf-8")
        assert wait_until(lambda: store.get() == {"changed": "elsewhere"})
    finally:
        close()


def test_own_save_does_not_trigger_reload(tmp_path, watcher, wait_until, monkeypatch):
    path = tmp_path / "state.json"
    store = PersistedValue(path, default=list)
    loads = _count_loads(store, monkeypatch)
    close = store.watch(watcher)
    try:
        store.set(["mine"])
        store.save()
        time.sleep(POLL * 10)
        assert loads == []

        path.write_text(json.dumps(["theirs", "and", "more"]), encoding="utf-8")
        assert wait_until(lambda: len(loads) == 1)
        assert store.get() == ["theirs", "and", "more"]
    finally:
        close()


def test_autosave_while_watching_does_not_reload(tmp_path, watcher, wait_until, monkeypatch):
    path = tmp_path / "state.json"
    store = PersistedValue(path, default=dict)
    loads = _count_loads(store, monkeypatch)
    close = store.watch(watcher)
    task = store.persist(POLL)
    try:
        store.set({"round": 1})
        assert wait_until(lambda: not store.dirty)
        store.set({"round": 2})
        assert wait_until(lambda: not store.dirty)
        time.sleep(POLL * 10)
        assert loads == []
        assert store.get() == {"round": 2}
    finally:
        task.stop(flush=False)
        close()


def test_bad_external_content_keeps_subscription_alive(tmp_path, watcher, wait_until):
    path = tmp_path / "state.json"
    store = PersistedValue(path, default=lambda: {"ok": True})
    close = store.watch(watcher)
    try:
        path.write_text("{broken", encoding="utf-8")
        time.sleep(POLL * 10)
        assert store.get() == {"ok": True}

        path.write_text(json.dumps({"ok": "again"}), encoding="utf-8")
        assert wait_until(lambda: store.get() == {"ok": "again"})
    finally:
        close()


def test_removed_file_is_ignored(tmp_path, watcher, monkeypatch):
    path = tmp_path / "state.json"
    store = PersistedValue(path, default=lambda: [1])
    loads = _count_loads(store, monkeypatch)
    close = store.watch(watcher)
    try:
        path.unlink()
        time.sleep(POLL * 10)
        assert loads == []
        assert store.get() == [1]
    finally:
        close()


def test_unique_store_watch_is_delegated(tmp_path, watcher, wait_until):
    path = tmp_path / "tags.json"
    tags = UniqueStore(path)
    tags.append("alpha")
    close = tags.watch(watcher)
    try:
        path.write_text(json.dumps(["alpha", "beta"]), encoding="utf-8")
        assert wait_until(lambda: tags.contains("alpha", "beta"))
    finally:
        close()
