"""State persistence engine shared by every store type."""
from __future__ import annotations

from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Callable, Generic, List, Optional, TypeVar
import copy
import logging
import threading

from .codec import CodecError, JsonCodec
from .locks import ReadWriteLock
from .watcher import FileWatcher, Subscription, WatchEvent, bytes_digest

logger = logging.getLogger(__name__)

T = TypeVar("T")

# Own writes not yet seen by the watcher; older ones are forgotten.
MAX_PENDING_WRITES = 16


class AlreadyWatchingError(RuntimeError):
    """Raised when a store already has an active watch subscription."""


class NotWatchingError(RuntimeError):
    """Raised when closing a watch subscription that is not open."""


class AutosaveTask:
    """Background loop flushing a dirty store every ``interval`` seconds."""

    def __init__(self, store: "PersistedValue[Any]", interval: float) -> None:
        if interval <= 0:
            raise ValueError("autosave interval must be positive")
        self.store = store
        self.interval = interval
        self._stop = threading.Event()
        self._thread = threading.Thread(
            target=self._run,
            name=f"filestate-autosave:{store.path.name}",
            daemon=True,
        )

    @property
    def running(self) -> bool:
        return self._thread.is_alive() and not self._stop.is_set()

    def start(self) -> "AutosaveTask":
        self._thread.start()
        logger.info("Autosave started for %s every %.3fs", self.store.path, self.interval)
        return self

    def stop(self, flush: bool = True) -> None:
        """Stop the loop; with ``flush`` a pending change is written first."""
        self._stop.set()
        if self._thread.is_alive() and self._thread is not threading.current_thread():
            self._thread.join(timeout=5)
        if flush and self.store.dirty:
            self.store.save()
        logger.info("Autosave stopped for %s", self.store.path)

    def _run(self) -> None:
        while not self._stop.wait(self.interval):
            self.tick()

    def tick(self) -> bool:
        """Save once if the store is dirty. Returns True when a save happened."""
        if not self.store.dirty:
            return False
        try:
            self.store.save()
        except Exception:
            # Dirty stays set so the next tick retries.
            logger.exception("Failed to save persistent data to %s", self.store.path)
            return False
        return True


@dataclass(eq=False)
class PersistedValue(Generic[T]):
    """One in-memory value mirrored to a JSON file.

    ``default`` is either the initial value or a zero-argument factory for
    it. ``to_wire``/``from_wire`` convert between the in-memory value and
    its JSON-compatible form when the two differ (sets, non-string keys).
    """

    path: Path
    default: Any
    codec: JsonCodec = field(default_factory=JsonCodec)
    to_wire: Optional[Callable[[T], Any]] = None
    from_wire: Optional[Callable[[Any], T]] = None
    _value: Any = field(default=None, init=False, repr=False)
    _dirty: bool = field(default=False, init=False, repr=False)
    _revision: int = field(default=0, init=False, repr=False)
    _lock: ReadWriteLock = field(default_factory=ReadWriteLock, init=False, repr=False)
    _save_lock: threading.Lock = field(default_factory=threading.Lock, init=False, repr=False)
    _writes_lock: threading.Lock = field(default_factory=threading.Lock, init=False, repr=False)
    _watch_lock: threading.Lock = field(default_factory=threading.Lock, init=False, repr=False)
    _own_writes: List[str] = field(default_factory=list, init=False, repr=False)
    _subscription: Optional[Subscription] = field(default=None, init=False, repr=False)
    _autosave: Optional[AutosaveTask] = field(default=None, init=False, repr=False)

    def __post_init__(self) -> None:
        self.path = Path(self.path)
        self._value = self._fresh_default()

    def _fresh_default(self) -> T:
        return self.default() if callable(self.default) else copy.deepcopy(self.default)

    @property
    def dirty(self) -> bool:
        with self._lock.read():
            return self._dirty

    @property
    def watching(self) -> bool:
        return self._subscription is not None

    @property
    def autosaving(self) -> bool:
        return self._autosave is not None and self._autosave.running

    def load(self) -> bool:
        """Replace the value with the file's contents.

        Returns False, leaving the value alone, when the file does not exist.
        I/O and decode errors propagate and also leave the value alone.
        """
        try:
            raw = self.path.read_bytes()
        except FileNotFoundError:
            logger.debug("No stored state at %s, keeping current value", self.path)
            return False
        decoded = self.codec.decode(raw)
        value = self.from_wire(decoded) if self.from_wire else decoded
        with self._lock.write():
            self._value = value
        return True

    def get(self) -> T:
        with self._lock.read():
            return copy.deepcopy(self._value)

    def set(self, value: T) -> None:
        with self._lock.write():
            self._value = value
            self._mark_dirty()

    def edit(self, fn: Callable[[T], Optional[T]]) -> None:
        """Mutate the live value in place under the write lock.

        A non-None return value from ``fn`` replaces the value.
        """
        with self._lock.write():
            result = fn(self._value)
            if result is not None:
                self._value = result
            self._mark_dirty()

    def _mark_dirty(self) -> None:
        self._dirty = True
        self._revision += 1

    def save(self) -> None:
        # Saves finish in snapshot order so an older snapshot never lands last.
        with self._save_lock:
            with self._lock.read():
                if self._value is None:
                    return
                revision = self._revision
                wire = self.to_wire(self._value) if self.to_wire else self._value
                raw = self.codec.encode(wire)

            with self._writes_lock:
                self._own_writes.append(bytes_digest(raw))
                del self._own_writes[:-MAX_PENDING_WRITES]
            self.path.write_bytes(raw)

            with self._lock.write():
                # An edit that landed after the snapshot still needs saving.
                if self._revision == revision:
                    self._dirty = False
        logger.debug("Saved %d bytes to %s", len(raw), self.path)

    def clear(self) -> None:
        with self._lock.write():
            self._value = self._fresh_default()
            self._mark_dirty()
        self.save()

    def persist(self, interval: float) -> AutosaveTask:
        if self._autosave is not None and self._autosave.running:
            return self._autosave
        self._autosave = AutosaveTask(self, interval).start()
        return self._autosave

    def watch(self, watcher: FileWatcher | None = None) -> Callable[[], None]:
        """Reload whenever the file is changed by someone else.

        Saves the current value first so the file exists and matches memory.
        Returns a closer that ends the subscription.
        """
        with self._watch_lock:
            if self._subscription is not None:
                raise AlreadyWatchingError(f"already watching for changes in {self.path}")
            self.save()
            watcher = watcher or FileWatcher()
            subscription = watcher.subscribe(self.path, self._on_file_event, dedupe=True)
            self._subscription = subscription
            with self._writes_lock:
                # The subscription's baseline already includes the save above.
                self._own_writes.clear()
        logger.info("Watching %s for external changes", self.path)

        def close() -> None:
            self._end_subscription(subscription)

        return close

    def unwatch(self) -> None:
        subscription = self._subscription
        if subscription is None:
            raise NotWatchingError(f"not watching {self.path}")
        self._end_subscription(subscription)

    def _end_subscription(self, subscription: Subscription) -> None:
        with self._watch_lock:
            if self._subscription is not subscription:
                raise NotWatchingError(f"watch subscription for {self.path} is already closed")
            self._subscription = None
        subscription.close()
        logger.info("Stopped watching %s", self.path)

    def _on_file_event(self, event: WatchEvent) -> None:
        if not event.kind.is_write:
            return
        with self._writes_lock:
            if event.digest in self._own_writes:
                # Writes older than the one observed were overwritten unseen.
                del self._own_writes[: self._own_writes.index(event.digest) + 1]
                own = True
            else:
                self._own_writes.clear()
                own = False
        if own:
            logger.debug("Ignoring own write to %s", self.path)
            return
        try:
            self.load()
        except (OSError, CodecError):
            logger.exception("Failed to reload %s", self.path)
            return
        logger.info("Reloaded %s after external change", self.path)

    def close(self, flush: bool = True) -> None:
        """Stop background activity. Safe to call more than once."""
        task, self._autosave = self._autosave, None
        if task is not None:
            task.stop(flush=False)
        try:
            if flush and self.dirty:
                self.save()
        finally:
            if self._subscription is not None:
                self.unwatch()
