"""Small containers used across the compiler: indexed sets and pattern maps."""

from __future__ import annotations

import re
from typing import Callable, Dict, Generic, Hashable, Iterable, Iterator, List, Tuple, TypeVar


T = TypeVar("T")
V = TypeVar("V")


class IndexedSet(Generic[T]):
    """Insertion-ordered set that hands out a stable dense index per distinct value.

    Values are compared through ``key`` (identity by default), so unhashable or
    float-heavy values can be deduplicated through a canonical encoding.
    """

    __slots__ = ("_key", "_indices", "_values")

    def __init__(self, values: Iterable[T] = (), *, key: Callable[[T], Hashable] | None = None) -> None:
        self._key = key
        self._indices: Dict[Hashable, int] = {}
        self._values: List[T] = []
        for value in values:
            self.add(value)

    def _key_of(self, value: T) -> Hashable:
        return value if self._key is None else self._key(value)

    def add(self, value: T) -> int:
        k = self._key_of(value)
        idx = self._indices.get(k)
        if idx is None:
            idx = len(self._values)
            self._indices[k] = idx
            self._values.append(value)
        return idx

    def index(self, value: T) -> int:
        """Return the index of ``value`` or -1 when it was never added."""

        return self._indices.get(self._key_of(value), -1)

    def clear(self) -> None:
        self._indices.clear()
        self._values.clear()

    def __contains__(self, value: object) -> bool:
        return self._key_of(value) in self._indices  # type: ignore[arg-type]

    def __getitem__(self, idx: int) -> T:
        return self._values[idx]

    def __iter__(self) -> Iterator[T]:
        return iter(self._values)

    def __len__(self) -> int:
        return len(self._values)

    def to_list(self) -> List[T]:
        return list(self._values)


class PatternMap(Generic[V]):
    """Lookup by exact key first, then by the first regex pattern that matches.

    Keys written as ``/pattern/`` are regular expressions; everything else is
    matched literally.
    """

    __slots__ = ("_exact", "_patterns")

    def __init__(self, items: Iterable[Tuple[str, V]] = ()) -> None:
        self._exact: Dict[str, V] = {}
        self._patterns: List[Tuple[re.Pattern[str], V]] = []
        for key, value in items:
            if len(key) > 1 and key.startswith("/") and key.endswith("/"):
                self._patterns.append((re.compile(key[1:-1]), value))
            else:
                self._exact[key] = value

    def get(self, name: str, default: V | None = None) -> V | None:
        if name in self._exact:
            return self._exact[name]
        for pattern, value in self._patterns:
            if pattern.search(name):
                return value
        return default

    def __contains__(self, name: object) -> bool:
        return isinstance(name, str) and self.get(name) is not None
