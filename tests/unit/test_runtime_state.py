from __future__ import annotations

import numpy as np

from tracegrad.runtime.state import SampleStateRegistry


def test_sample_state_save_load_delete() -> None:
    registry = SampleStateRegistry()
    mask = np.ones((2, 2))
    registry.save(1, mask)
    assert registry.load(1) is mask
    assert registry.has(1)
    assert len(registry) == 1

    registry.delete(1)
    assert not registry.has(1)
    registry.delete(1)  # deleting twice is harmless


def test_sample_state_clear() -> None:
    registry = SampleStateRegistry()
    registry.save(1, "a")
    registry.save(2, "b")
    registry.clear()
    assert not list(registry.items())
