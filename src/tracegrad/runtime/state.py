"""
Per-sample auxiliary state kept by expressions between forward and backward.

Max/random/cyclic pooling store the positions they read, dropout stores its
mask, aggregate reductions store their statistics.
"""

from __future__ import annotations

from typing import Any, Dict, Iterable


class SampleStateRegistry:
    def __init__(self) -> None:
        self._store: Dict[int, Any] = {}

    def save(self, index: int, value: Any) -> None:
        self._store[index] = value

    def load(self, index: int) -> Any:
        return self._store[index]

    def delete(self, index: int) -> None:
        self._store.pop(index, None)

    def has(self, index: int) -> bool:
        return index in self._store

    def clear(self) -> None:
        self._store.clear()

    def items(self) -> Iterable[tuple[int, Any]]:
        return self._store.items()

    def __len__(self) -> int:
        return len(self._store)
