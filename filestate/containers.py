"""Sequence, mapping and set views over a persisted value."""
from __future__ import annotations

from pathlib import Path
from typing import Any, Callable, Dict, Generic, Hashable, List, Optional, Set, Tuple, TypeVar

from .codec import DecodeError, JsonCodec
from .state import AutosaveTask, PersistedValue
from .watcher import FileWatcher

K = TypeVar("K", bound=Hashable)
V = TypeVar("V")


class _Backed:
    """Delegates durability to the wrapped :class:`PersistedValue`."""

    backing: PersistedValue[Any]

    @property
    def path(self) -> Path:
        return self.backing.path

    @property
    def dirty(self) -> bool:
        return self.backing.dirty

    def load(self) -> bool:
        return self.backing.load()

    def save(self) -> None:
        self.backing.save()

    def persist(self, interval: float) -> AutosaveTask:
        return self.backing.persist(interval)

    def watch(self, watcher: FileWatcher | None = None) -> Callable[[], None]:
        return self.backing.watch(watcher)

    def unwatch(self) -> None:
        self.backing.unwatch()

    def close(self, flush: bool = True) -> None:
        self.backing.close(flush=flush)

    def length(self) -> int:
        return len(self.backing.get())

    def __len__(self) -> int:
        return self.length()

    def __repr__(self) -> str:
        return f"{type(self).__name__}({str(self.path)!r})"


def _expect(kind: type, label: str) -> Callable[[Any], Any]:
    def check(decoded: Any) -> Any:
        if not isinstance(decoded, kind):
            raise DecodeError(f"expected a JSON {label}, got {type(decoded).__name__}")
        return decoded

    return check


class SequenceStore(_Backed, Generic[V]):
    """Ordered list persisted as a JSON array."""

    def __init__(self, path: Path | str, *, codec: JsonCodec | None = None) -> None:
        self.backing: PersistedValue[List[V]] = PersistedValue(
            Path(path),
            default=list,
            codec=codec or JsonCodec(),
            from_wire=_expect(list, "array"),
        )

    def get(self, index: int) -> Optional[V]:
        return self.get_or(index, None)

    def get_or(self, index: int, default: Optional[V]) -> Optional[V]:
        items = self.backing.get()
        if not 0 <= index < len(items):
            return default
        return items[index]

    def each(self, fn: Callable[[int, V], None]) -> None:
        for index, value in enumerate(self.backing.get()):
            fn(index, value)

    def contains(self, predicate: Callable[[V], bool]) -> bool:
        return any(predicate(value) for value in self.backing.get())

    def set(self, index: int, value: V) -> None:
        """Replace the element at ``index``; out-of-range indexes are ignored."""
        if not 0 <= index < self.length():
            return

        def replace(items: List[V]) -> None:
            if 0 <= index < len(items):
                items[index] = value

        self.backing.edit(replace)

    def unsafe_set(self, index: int, value: V) -> None:
        """Replace the element at ``index``; raises IndexError when out of range."""

        def replace(items: List[V]) -> None:
            if not 0 <= index < len(items):
                raise IndexError(f"index {index} out of range for sequence of length {len(items)}")
            items[index] = value

        self.backing.edit(replace)

    def append(self, *values: V) -> None:
        self.backing.edit(lambda items: items.extend(values))


class MappingStore(_Backed, Generic[K, V]):
    """Key/value mapping persisted as a JSON object.

    JSON object keys are always strings; ``key_type`` converts them back on
    load (for example ``int``).
    """

    def __init__(
        self,
        path: Path | str,
        *,
        key_type: Callable[[str], K] = str,
        codec: JsonCodec | None = None,
    ) -> None:
        self.key_type = key_type
        self.backing: PersistedValue[Dict[K, V]] = PersistedValue(
            Path(path),
            default=dict,
            codec=codec or JsonCodec(),
            from_wire=self._from_wire,
        )

    def _from_wire(self, decoded: Any) -> Dict[K, V]:
        decoded = _expect(dict, "object")(decoded)
        if self.key_type is str:
            return decoded
        try:
            return {self.key_type(key): value for key, value in decoded.items()}
        except (TypeError, ValueError) as exc:
            raise DecodeError(f"stored key cannot be converted: {exc}") from exc

    def get(self, key: K) -> Optional[V]:
        return self.get_or(key, None)

    def get_or(self, key: K, default: Optional[V]) -> Optional[V]:
        return self.backing.get().get(key, default)

    def each(self, fn: Callable[[K, V], None]) -> None:
        for key, value in self.backing.get().items():
            fn(key, value)

    def set(self, key: K, value: V) -> None:
        def assign(entries: Dict[K, V]) -> None:
            entries[key] = value

        self.backing.edit(assign)


def _set_to_wire(members: Set[Any]) -> List[Any]:
    try:
        return sorted(members)
    except TypeError:
        return list(members)


def _hashable(member: Any) -> Any:
    # Tuples are written as JSON arrays; turn them back into tuples.
    if isinstance(member, list):
        return tuple(_hashable(item) for item in member)
    return member


def _set_from_wire(decoded: Any) -> Set[Any]:
    decoded = _expect(list, "array")(decoded)
    try:
        return {_hashable(member) for member in decoded}
    except TypeError as exc:
        raise DecodeError(f"set members must be hashable: {exc}") from exc


class UniqueStore(_Backed, Generic[V]):
    """Unordered collection of unique members persisted as a JSON array."""

    def __init__(self, path: Path | str, *, codec: JsonCodec | None = None) -> None:
        self.backing: PersistedValue[Set[V]] = PersistedValue(
            Path(path),
            default=set,
            codec=codec or JsonCodec(),
            to_wire=_set_to_wire,
            from_wire=_set_from_wire,
        )

    def contains(self, *values: V) -> bool:
        members = self.backing.get()
        return all(value in members for value in values)

    def contains_any(self, *values: V) -> bool:
        members = self.backing.get()
        return any(value in members for value in values)

    def append(self, *values: V) -> None:
        self.backing.edit(lambda members: members.update(values))

    def pop(self) -> Tuple[Optional[V], bool]:
        if not self.length():
            return None, False
        popped: List[V] = []

        def take(members: Set[V]) -> None:
            if members:
                popped.append(members.pop())

        self.backing.edit(take)
        if not popped:
            return None, False
        return popped[0], True

    def each(self, fn: Callable[[V], bool]) -> None:
        """Call ``fn`` per member until it returns True."""
        for value in self.backing.get():
            if fn(value):
                break
