"""
Runtime support for executing traced procedures.

This layer is responsible for:
- Driving the forward chain per sample or per step.
- Propagating gradients backwards, optionally truncated.
- Backing up recurrent state and per-sample expression state.
"""

from .executor import ExecutionCallbacks, PerSampleExecutor, PerStepExecutor
from .procedure import Procedure
from .profiling import Profiler, ProfileStats
from .state import SampleStateRegistry
from .storage import SnapshotStorage

__all__ = [
    "ExecutionCallbacks",
    "PerSampleExecutor",
    "PerStepExecutor",
    "Procedure",
    "Profiler",
    "ProfileStats",
    "SampleStateRegistry",
    "SnapshotStorage",
]
