"""
Global / experimental configuration flags.
"""

from __future__ import annotations

import os
from dataclasses import dataclass
from typing import Optional


def _env_flag(name: str, default: bool) -> bool:
    value = os.getenv(name)
    if value is None:
        return default
    return value.strip().lower() in ("1", "true", "yes", "on")


@dataclass
class TGConfig:
    debug: bool = False
    # Raise instead of skipping when an expression is appended without the lock.
    strict_reservation: bool = False
    # Two traces of one definition that differ in shape abort the build.
    strict_trace_shape: bool = True
    profile: bool = False
    seed: Optional[int] = None

    @classmethod
    def from_env(cls) -> "TGConfig":
        seed = os.getenv("TRACEGRAD_SEED")
        return cls(
            debug=_env_flag("TRACEGRAD_DEBUG", False),
            strict_reservation=_env_flag("TRACEGRAD_STRICT_RESERVATION", False),
            strict_trace_shape=_env_flag("TRACEGRAD_STRICT_TRACE_SHAPE", True),
            profile=_env_flag("TRACEGRAD_PROFILE", False),
            seed=int(seed) if seed is not None else None,
        )


config = TGConfig.from_env()
