"""
Conversions between `Matrix` and PyTorch tensors.
"""

from __future__ import annotations

from typing import Callable, List, Sequence

import torch

from tracegrad.matrix.matrix import Matrix


def to_tensor(matrix: Matrix, *, requires_grad: bool = False) -> torch.Tensor:
    return torch.tensor(matrix.to_numpy(), dtype=torch.float64, requires_grad=requires_grad)


def from_tensor(tensor: torch.Tensor, *, name: str | None = None) -> Matrix:
    return Matrix(tensor.detach().cpu().double().numpy(), name=name)


def reference_gradients(
    function: Callable[..., torch.Tensor], matrices: Sequence[Matrix]
) -> List[Matrix]:
    """
    Gradients of `sum(function(*tensors))` with respect to every matrix.

    Args:
        function: Computation written against torch tensors.
        matrices: Values for the function's positional arguments.

    Returns:
        One gradient matrix per argument, shaped like the argument.
    """
    tensors = [to_tensor(matrix, requires_grad=True) for matrix in matrices]
    output = function(*tensors)
    output.sum().backward()
    return [
        from_tensor(tensor.grad) if tensor.grad is not None else matrix.new_matrix()
        for tensor, matrix in zip(tensors, matrices)
    ]
