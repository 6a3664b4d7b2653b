from __future__ import annotations

from tracegrad.runtime.profiling import Profiler


def test_profiler_records_stats() -> None:
    profiler = Profiler()

    profiler.record_memory(100)
    profiler.record_memory(50)  # should not reduce peak
    profiler.record_steps(forward=3)
    profiler.record_steps(forward=2, backward=4)
    profiler.record_event("forward", 1.5)
    profiler.record_event("forward", 0.5)

    stats = profiler.snapshot()
    assert stats.peak_memory_bytes == 100
    assert stats.forward_steps == 5
    assert stats.backward_steps == 4
    assert stats.events["forward"] == 2.0


def test_profiler_reset_clears_stats() -> None:
    profiler = Profiler()
    profiler.record_memory(10)
    profiler.record_event("backward", 1.0)
    profiler.reset()

    stats = profiler.snapshot()
    assert stats.peak_memory_bytes == 0
    assert not stats.events


def test_timed_records_expression_events() -> None:
    profiler = Profiler()
    with profiler.timed("forward:0:DOT"):
        pass
    with profiler.timed("forward:1:ADD"):
        pass
    with profiler.timed("backward:1:ADD"):
        pass

    events = profiler.snapshot().expression_events("forward")
    assert sorted(events) == ["0:DOT", "1:ADD"]
    assert all(duration >= 0.0 for duration in events.values())
