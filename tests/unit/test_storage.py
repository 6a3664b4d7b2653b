from __future__ import annotations

import pytest

from tracegrad.matrix import Matrix
from tracegrad.runtime.storage import SnapshotStorage


def test_snapshot_storage_put_get_delete() -> None:
    storage = SnapshotStorage()
    first = Matrix.ones(2)
    storage.put(0, {3: first})
    assert storage.get(0)[3] is first

    second = Matrix.zeros(2)
    storage.put(0, {3: second})
    assert storage.get(0)[3] is second

    storage.delete(0)
    with pytest.raises(KeyError):
        _ = storage.get(0)


def test_snapshot_storage_copies_value_maps() -> None:
    storage = SnapshotStorage()
    values = {0: Matrix.ones(1)}
    storage.put(1, values)
    values[1] = Matrix.zeros(1)

    restored = storage.get(1)
    assert list(restored) == [0]
    restored[2] = Matrix.zeros(1)
    assert list(storage.get(1)) == [0]


def test_snapshot_storage_has_and_clear() -> None:
    storage = SnapshotStorage()
    storage.put(7, {})
    assert storage.has(7)
    storage.clear()
    assert not storage.has(7)
