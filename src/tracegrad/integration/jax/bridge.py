"""
Conversions between `Matrix` and JAX arrays.
"""

from __future__ import annotations

from typing import Any, Callable, List, Optional, Sequence

import numpy as np

from tracegrad.matrix.matrix import Matrix

try:
    import jax
    import jax.numpy as jnp
except ModuleNotFoundError:  # pragma: no cover - handled in tests
    jax = None  # type: ignore
    jnp = None  # type: ignore


def _require_jax() -> None:
    if jax is None:  # pragma: no cover
        raise ModuleNotFoundError("JAX is required for tracegrad.integration.jax.")


def to_array(matrix: Matrix) -> Any:
    _require_jax()
    return jnp.asarray(matrix.to_numpy())


def from_array(array: Any, *, name: Optional[str] = None) -> Matrix:
    return Matrix(np.asarray(array, dtype=np.float64), name=name)


def reference_gradients(
    function: Callable[..., Any], matrices: Sequence[Matrix]
) -> List[Matrix]:
    """
    Gradients of `sum(function(*arrays))` with respect to every matrix,
    computed with ``jax.grad``.
    """
    _require_jax()
    arrays = [to_array(matrix) for matrix in matrices]

    def total(*args):
        return jnp.sum(function(*args))

    gradients = jax.grad(total, argnums=tuple(range(len(arrays))))(*arrays)
    return [from_array(gradient) for gradient in gradients]
