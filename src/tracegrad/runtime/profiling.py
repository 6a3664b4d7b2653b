"""
Timing and memory counters owned by each procedure.

Event names are either a pass label ("forward", "backward") or, when
`config.profile` is set, "<pass>:<expression id>:<symbol>" for each
expression run.
"""

from __future__ import annotations

import time
from contextlib import contextmanager
from dataclasses import dataclass, field
from typing import Dict, Iterator


@dataclass
class ProfileStats:
    peak_memory_bytes: int = 0
    forward_steps: int = 0
    backward_steps: int = 0
    events: Dict[str, float] = field(default_factory=dict)

    def expression_events(self, label: str) -> Dict[str, float]:
        """Per-expression timings (ms) of one pass, keyed by "<id>:<symbol>"."""
        prefix = f"{label}:"
        return {
            name[len(prefix):]: duration
            for name, duration in self.events.items()
            if name.startswith(prefix)
        }


class Profiler:
    def __init__(self) -> None:
        self.stats = ProfileStats()

    def record_memory(self, bytes_used: int) -> None:
        self.stats.peak_memory_bytes = max(self.stats.peak_memory_bytes, bytes_used)

    def record_steps(self, forward: int = 0, backward: int = 0) -> None:
        self.stats.forward_steps += forward
        self.stats.backward_steps += backward

    def record_event(self, name: str, duration_ms: float) -> None:
        self.stats.events[name] = self.stats.events.get(name, 0.0) + duration_ms

    @contextmanager
    def timed(self, name: str) -> Iterator[None]:
        start = time.perf_counter()
        try:
            yield
        finally:
            self.record_event(name, (time.perf_counter() - start) * 1000.0)

    def reset(self) -> None:
        self.stats = ProfileStats()

    def snapshot(self) -> ProfileStats:
        return self.stats
