"""File-backed value stores with autosave and external-change reload."""
from __future__ import annotations

from typing import Callable

from .codec import CodecError, DecodeError, EncodeError, JsonCodec
from .config import StoreSettings, load_settings, state_path
from .containers import MappingStore, SequenceStore, UniqueStore
from .state import AlreadyWatchingError, AutosaveTask, NotWatchingError, PersistedValue
from .watcher import EventKind, FileWatcher, WatchEvent

__all__ = [
    "AlreadyWatchingError",
    "AutosaveTask",
    "CodecError",
    "DecodeError",
    "EncodeError",
    "EventKind",
    "FileWatcher",
    "JsonCodec",
    "MappingStore",
    "NotWatchingError",
    "PersistedValue",
    "SequenceStore",
    "StoreSettings",
    "UniqueStore",
    "WatchEvent",
    "load_settings",
    "open_mapping",
    "open_sequence",
    "open_unique",
    "state_path",
]


def _activate(store, settings: StoreSettings):
    """Hydrate from disk, then start whatever background work is configured."""

    store.load()
    if settings.autosave_interval > 0:
        store.persist(settings.autosave_interval)
    if settings.watch:
        store.watch(FileWatcher(settings.watch_interval))
    return store


def open_sequence(name: str, settings: StoreSettings | None = None) -> SequenceStore:
    settings = settings or load_settings()
    codec = JsonCodec(indent=settings.json_indent)
    return _activate(SequenceStore(state_path(name, settings), codec=codec), settings)


def open_mapping(
    name: str,
    settings: StoreSettings | None = None,
    *,
    key_type: Callable[[str], object] = str,
) -> MappingStore:
    settings = settings or load_settings()
    codec = JsonCodec(indent=settings.json_indent)
    store = MappingStore(state_path(name, settings), key_type=key_type, codec=codec)
    return _activate(store, settings)


def open_unique(name: str, settings: StoreSettings | None = None) -> UniqueStore:
    settings = settings or load_settings()
    codec = JsonCodec(indent=settings.json_indent)
    return _activate(UniqueStore(state_path(name, settings), codec=codec), settings)
