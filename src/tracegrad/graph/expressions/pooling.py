"""
Pooling expressions.

Max, random and cyclic pooling each read one input entry per window and
remember which one per sample index; the backward pass routes the gradient
to exactly those entries.
"""

from __future__ import annotations

from typing import Dict, Optional

import numpy as np

from tracegrad.errors import MissingOperandError
from tracegrad.graph.expressions.base import UnaryExpression
from tracegrad.graph.node import Node
from tracegrad.matrix import kernels
from tracegrad.matrix.matrix import Matrix
from tracegrad.utils.config import config


class _PoolExpression(UnaryExpression):
    def __init__(
        self,
        expression_id: int,
        argument1: Node,
        result: Node,
        filter_rows: int = 2,
        filter_columns: int = 2,
        stride: int = 1,
    ) -> None:
        super().__init__(expression_id, argument1, result)
        self.filter_rows = filter_rows
        self.filter_columns = filter_columns
        self.stride = stride

    def parameters(self) -> Dict[str, object]:
        return {
            "filter": f"{self.filter_rows}x{self.filter_columns}",
            "stride": self.stride,
        }


class _RoutedPoolExpression(_PoolExpression):
    """Pooling that selects one entry per window and records its position."""

    gradient_rules = ("+= ROUTE({dr}, positions)",)

    def select(self, values: np.ndarray) -> tuple[np.ndarray, np.ndarray]:
        raise NotImplementedError

    def compute(self, index: int, value: Matrix) -> Matrix:
        pooled, positions = self.select(value.data)
        self.state.save(index, positions)
        return Matrix(pooled)

    def propagate(self, index: int, gradient: Matrix) -> None:
        if not self.state.has(index):
            raise MissingOperandError(
                f"{self.symbol}: input positions not recorded for index {index}."
            )
        if self.argument1.stop_gradient:
            return
        delta = kernels.routed_pool_gradient(
            gradient.data, self.state.load(index), self.argument1.shape
        )
        self.argument1.accumulate_gradient(index, Matrix(delta))


class MaxPoolExpression(_RoutedPoolExpression):
    symbol = "MAX_POOL"

    def select(self, values: np.ndarray) -> tuple[np.ndarray, np.ndarray]:
        return kernels.max_pool(values, self.filter_rows, self.filter_columns, self.stride)


class RandomPoolExpression(_RoutedPoolExpression):
    symbol = "RANDOM_POOL"

    def __init__(
        self,
        expression_id: int,
        argument1: Node,
        result: Node,
        filter_rows: int = 2,
        filter_columns: int = 2,
        stride: int = 1,
        rng: Optional[np.random.Generator] = None,
    ) -> None:
        super().__init__(expression_id, argument1, result, filter_rows, filter_columns, stride)
        self.rng = rng if rng is not None else np.random.default_rng(config.seed)

    def select(self, values: np.ndarray) -> tuple[np.ndarray, np.ndarray]:
        return kernels.random_pool(
            values, self.filter_rows, self.filter_columns, self.stride, self.rng
        )


class CyclicPoolExpression(_RoutedPoolExpression):
    """Cycles through filter positions; the counter carries on across samples and calls."""

    symbol = "CYCLIC_POOL"

    def __init__(
        self,
        expression_id: int,
        argument1: Node,
        result: Node,
        filter_rows: int = 2,
        filter_columns: int = 2,
        stride: int = 1,
    ) -> None:
        super().__init__(expression_id, argument1, result, filter_rows, filter_columns, stride)
        self.counter = 0

    def select(self, values: np.ndarray) -> tuple[np.ndarray, np.ndarray]:
        pooled, positions = kernels.cyclic_pool(
            values, self.filter_rows, self.filter_columns, self.stride, start=self.counter
        )
        self.counter = (self.counter + pooled.size) % (self.filter_rows * self.filter_columns)
        return pooled, positions


class AveragePoolExpression(_PoolExpression):
    symbol = "AVERAGE_POOL"
    gradient_rules = ("+= SPREAD({dr}) / filter size",)

    def compute(self, index: int, value: Matrix) -> Matrix:
        return value.average_pool(self.filter_rows, self.filter_columns, self.stride)

    def propagate(self, index: int, gradient: Matrix) -> None:
        if self.argument1.stop_gradient:
            return
        delta = kernels.average_pool_gradient(
            gradient.data,
            self.argument1.shape,
            self.filter_rows,
            self.filter_columns,
            self.stride,
        )
        self.argument1.accumulate_gradient(index, Matrix(delta))
