"""Polling file watcher delivering change notifications for a single path."""
from __future__ import annotations

from dataclasses import dataclass
from enum import Enum
from pathlib import Path
from typing import Callable, Optional, Tuple
import hashlib
import logging
import threading

logger = logging.getLogger(__name__)


class EventKind(Enum):
    CREATED = "created"
    MODIFIED = "modified"
    REMOVED = "removed"

    @property
    def is_write(self) -> bool:
        return self is not EventKind.REMOVED


@dataclass(frozen=True)
class WatchEvent:
    path: Path
    kind: EventKind
    digest: str | None


EventCallback = Callable[[WatchEvent], None]

# (mtime_ns, size, content digest); None while the file does not exist.
Observation = Optional[Tuple[int, int, str]]


def bytes_digest(raw: bytes) -> str:
    return hashlib.md5(raw).hexdigest()


def observe(path: Path) -> Observation:
    try:
        stat = path.stat()
        raw = path.read_bytes()
    except FileNotFoundError:
        return None
    return stat.st_mtime_ns, stat.st_size, bytes_digest(raw)


class Subscription:
    """A live registration for change notifications on one path.

    With ``dedupe`` enabled only content changes are reported, so a burst of
    rewrites carrying the same bytes produces a single event. Without it any
    rewrite that touches the file's mtime or size is reported.
    """

    def __init__(
        self,
        path: Path,
        callback: EventCallback,
        *,
        interval: float,
        dedupe: bool,
    ) -> None:
        self.path = path
        self._callback = callback
        self._interval = interval
        self._dedupe = dedupe
        self._stop = threading.Event()
        self._last: Observation = None
        self._last = self._probe()
        self._thread = threading.Thread(
            target=self._poll_loop,
            name=f"filestate-watch:{path.name}",
            daemon=True,
        )

    @property
    def active(self) -> bool:
        return self._thread.is_alive() and not self._stop.is_set()

    def start(self) -> "Subscription":
        self._thread.start()
        logger.debug("Watching %s every %.3fs", self.path, self._interval)
        return self

    def close(self) -> None:
        self._stop.set()
        if self._thread.is_alive() and self._thread is not threading.current_thread():
            self._thread.join(timeout=max(self._interval * 4, 1.0))
        logger.debug("Stopped watching %s", self.path)

    def _probe(self) -> Observation:
        try:
            return observe(self.path)
        except OSError as exc:
            # Transient read failure: keep the previous observation.
            logger.warning("Unable to read watched file %s: %s", self.path, exc)
            return self._last

    def _poll_loop(self) -> None:
        while not self._stop.wait(self._interval):
            try:
                self.poll()
            except Exception:
                logger.exception("Watch callback failed for %s", self.path)

    def poll(self) -> None:
        """Compare the file against the last observation and notify on change."""
        current = self._probe()
        previous = self._last
        if current == previous:
            return
        self._last = current

        if current is None:
            kind = EventKind.REMOVED
        elif previous is None:
            kind = EventKind.CREATED
        else:
            kind = EventKind.MODIFIED
            if self._dedupe and current[2] == previous[2]:
                return

        digest = current[2] if current is not None else None
        self._callback(WatchEvent(path=self.path, kind=kind, digest=digest))


class FileWatcher:
    """Creates polling subscriptions; one background thread per subscription."""

    def __init__(self, interval: float = 0.5) -> None:
        if interval <= 0:
            raise ValueError("watch interval must be positive")
        self.interval = interval

    def subscribe(
        self,
        path: Path | str,
        callback: EventCallback,
        *,
        dedupe: bool = True,
    ) -> Subscription:
        subscription = Subscription(
            Path(path), callback, interval=self.interval, dedupe=dedupe
        )
        return subscription.start()
