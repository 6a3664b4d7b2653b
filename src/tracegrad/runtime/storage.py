"""
Snapshot storage for dependency backups.

Nodes that carry recurrent state copy their value maps here so a sequence
can be replayed from a known point (e.g. truncated backpropagation over
overlapping windows).
"""

from __future__ import annotations

from typing import Dict, Iterable, Mapping

from tracegrad.matrix.matrix import Matrix

Snapshot = Dict[int, Matrix]


class SnapshotStorage:
    def __init__(self) -> None:
        self._store: Dict[int, Snapshot] = {}

    def put(self, backup_index: int, values: Mapping[int, Matrix]) -> None:
        self._store[backup_index] = dict(values)

    def get(self, backup_index: int) -> Snapshot:
        return dict(self._store[backup_index])

    def delete(self, backup_index: int) -> None:
        self._store.pop(backup_index, None)

    def has(self, backup_index: int) -> bool:
        return backup_index in self._store

    def clear(self) -> None:
        self._store.clear()

    def items(self) -> Iterable[tuple[int, Snapshot]]:
        return self._store.items()
