"""
Reductions: sum, mean, variance, standard deviation and p-norm.

Per-sample mode reduces all entries of one sample into a scalar. Aggregate
mode reduces elementwise across every processed sample into one shared
result shaped like the argument, and spreads the shared gradient back over
the samples it was computed from.
"""

from __future__ import annotations

from typing import Dict, Iterable, Optional

import numpy as np

from tracegrad.errors import GraphIntegrityError, MissingOperandError
from tracegrad.graph.expressions.base import UnaryExpression
from tracegrad.graph.node import Node
from tracegrad.matrix.matrix import Matrix

_AGGREGATE = "aggregate"


def _count(values: np.ndarray, axis: Optional[int]) -> int:
    return values.size if axis is None else values.shape[axis]


class ReductionExpression(UnaryExpression):
    def __init__(
        self,
        expression_id: int,
        argument1: Node,
        result: Node,
        aggregate: bool = False,
    ) -> None:
        super().__init__(expression_id, argument1, result)
        self.aggregate = aggregate
        if aggregate:
            result.set_multi_index(False)

    def parameters(self) -> Dict[str, object]:
        return {"aggregate": True} if self.aggregate else {}

    def reduce(self, values: np.ndarray, axis: Optional[int]) -> np.ndarray:
        raise NotImplementedError

    def derivative(
        self, values: np.ndarray, reduced: np.ndarray, axis: Optional[int]
    ) -> np.ndarray:
        """d(reduced)/d(values), broadcast to the shape of `values`."""
        raise NotImplementedError

    # per-sample mode

    def compute(self, index: int, value: Matrix) -> Matrix:
        return Matrix(self.reduce(value.data, None), scalar=True)

    def propagate(self, index: int, gradient: Matrix) -> None:
        if self.argument1.stop_gradient:
            return
        value = self.argument_value(self.argument1, index)
        reduced = self.result_value(index)
        delta = gradient.data * self.derivative(value.data, reduced.data, None)
        self.argument1.accumulate_gradient(index, Matrix(delta))

    def forward(self, index: int) -> None:
        if self.aggregate:
            raise GraphIntegrityError(
                f"{self.symbol}: aggregate reduction cannot run one sample at a time."
            )
        super().forward(index)

    def backward(self, index: int) -> None:
        if self.aggregate:
            raise GraphIntegrityError(
                f"{self.symbol}: aggregate reduction cannot run one sample at a time."
            )
        super().backward(index)

    # aggregate mode

    def calculate_expression(self, indices: Iterable[int]) -> None:
        if not self.aggregate:
            super().calculate_expression(indices)
            return
        indices = list(indices)
        if not indices:
            return
        stacked = np.stack(
            [self.argument_value(self.argument1, index).data for index in indices]
        )
        reduced = self.reduce(stacked, 0)[0]
        self.state.save(0, {index: position for position, index in enumerate(indices)})
        self.result.set_value(indices[0], Matrix(reduced, scalar=self.result.prototype.is_scalar))

    def calculate_gradient(self, indices: Iterable[int]) -> None:
        if not self.aggregate:
            super().calculate_gradient(indices)
            return
        indices = list(indices)
        if not indices:
            return
        gradient = self.result_gradient(indices[0])
        if gradient is None or self.argument1.stop_gradient:
            return
        if not self.state.has(0):
            raise MissingOperandError(f"{self.symbol}: aggregate forward pass has not run.")
        positions: Dict[int, int] = self.state.load(0)
        forward_indices = list(positions)
        stacked = np.stack(
            [self.argument_value(self.argument1, index).data for index in forward_indices]
        )
        reduced = self.result_value(indices[0]).data[None, ...]
        deltas = gradient.data[None, ...] * self.derivative(stacked, reduced, 0)
        for index in indices:
            if index not in positions:
                raise MissingOperandError(
                    f"{self.symbol}: index {index} was not part of the aggregate forward pass."
                )
            self.argument1.accumulate_gradient(index, Matrix(deltas[positions[index]]))


class SumExpression(ReductionExpression):
    symbol = "SUM"
    gradient_rules = ("+= {dr}",)

    def reduce(self, values: np.ndarray, axis: Optional[int]) -> np.ndarray:
        return values.sum(axis=axis, keepdims=True)

    def derivative(self, values, reduced, axis) -> np.ndarray:
        return np.ones_like(values)


class MeanExpression(ReductionExpression):
    symbol = "MEAN"
    gradient_rules = ("+= {dr} / SIZE({a})",)

    def reduce(self, values: np.ndarray, axis: Optional[int]) -> np.ndarray:
        return values.mean(axis=axis, keepdims=True)

    def derivative(self, values, reduced, axis) -> np.ndarray:
        return np.full_like(values, 1.0 / _count(values, axis))


class VarianceExpression(ReductionExpression):
    symbol = "VARIANCE"
    gradient_rules = ("+= {dr} * 2 * ({a} - MEAN({a})) / SIZE({a})",)

    def reduce(self, values: np.ndarray, axis: Optional[int]) -> np.ndarray:
        return values.var(axis=axis, keepdims=True)

    def derivative(self, values, reduced, axis) -> np.ndarray:
        mean = values.mean(axis=axis, keepdims=True)
        return 2.0 * (values - mean) / _count(values, axis)


class StandardDeviationExpression(ReductionExpression):
    symbol = "STANDARD_DEVIATION"
    gradient_rules = ("+= {dr} * ({a} - MEAN({a})) / (SIZE({a}) * {r})",)

    def reduce(self, values: np.ndarray, axis: Optional[int]) -> np.ndarray:
        return values.std(axis=axis, keepdims=True)

    def derivative(self, values, reduced, axis) -> np.ndarray:
        mean = values.mean(axis=axis, keepdims=True)
        scale = _count(values, axis) * reduced
        safe = np.where(scale > 0.0, scale, 1.0)
        return np.where(scale > 0.0, (values - mean) / safe, 0.0)


class NormExpression(ReductionExpression):
    symbol = "NORM"
    gradient_rules = ("+= {dr} * (ABS({a}) / {r})^(p - 1) * SGN({a})",)

    def __init__(
        self,
        expression_id: int,
        argument1: Node,
        result: Node,
        p: float = 2.0,
        aggregate: bool = False,
    ) -> None:
        super().__init__(expression_id, argument1, result, aggregate)
        self.p = p

    def parameters(self) -> Dict[str, object]:
        return {"p": self.p, **super().parameters()}

    def reduce(self, values: np.ndarray, axis: Optional[int]) -> np.ndarray:
        return np.sum(np.abs(values) ** self.p, axis=axis, keepdims=True) ** (1.0 / self.p)

    def derivative(self, values, reduced, axis) -> np.ndarray:
        safe = np.where(reduced > 0.0, reduced, 1.0)
        ratio = np.abs(values) / safe
        return np.where(reduced > 0.0, ratio ** (self.p - 1.0) * np.sign(values), 0.0)
