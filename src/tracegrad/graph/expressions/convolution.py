"""
Strided, dilated 2-D convolution and cross-correlation.
"""

from __future__ import annotations

from typing import Dict

from tracegrad.graph.expressions.base import BinaryExpression
from tracegrad.graph.node import Node
from tracegrad.matrix import kernels
from tracegrad.matrix.matrix import Matrix


class _FilterExpression(BinaryExpression):
    def __init__(
        self,
        expression_id: int,
        argument1: Node,
        argument2: Node,
        result: Node,
        stride: int = 1,
        dilation: int = 1,
    ) -> None:
        super().__init__(expression_id, argument1, argument2, result)
        self.stride = stride
        self.dilation = dilation

    def parameters(self) -> Dict[str, object]:
        return {"stride": self.stride, "dilation": self.dilation}


class CrosscorrelateExpression(_FilterExpression):
    symbol = "CROSSCORRELATE"
    gradient_rules = (
        "+= TRANSPOSED_CROSSCORRELATE({dr}, {b})",
        "+= CROSSCORRELATE({a}, {dr})",
    )

    def compute(self, index: int, values: Matrix, filter_matrix: Matrix) -> Matrix:
        return values.crosscorrelate(filter_matrix, self.stride, self.dilation)

    def propagate(self, index: int, gradient: Matrix) -> None:
        values = self.argument_value(self.argument1, index)
        filter_matrix = self.argument_value(self.argument2, index)
        if not self.argument1.stop_gradient:
            delta = kernels.crosscorrelate_input_gradient(
                gradient.data, filter_matrix.data, values.shape, self.stride, self.dilation
            )
            self.argument1.accumulate_gradient(index, Matrix(delta))
        if not self.argument2.stop_gradient:
            delta = kernels.crosscorrelate_filter_gradient(
                gradient.data, values.data, filter_matrix.shape, self.stride, self.dilation
            )
            self.argument2.accumulate_gradient(index, Matrix(delta))


class ConvolveExpression(_FilterExpression):
    symbol = "CONVOLVE"
    gradient_rules = (
        "+= TRANSPOSED_CONVOLVE({dr}, {b})",
        "+= FLIP(CROSSCORRELATE({a}, {dr}))",
    )

    def compute(self, index: int, values: Matrix, filter_matrix: Matrix) -> Matrix:
        return values.convolve(filter_matrix, self.stride, self.dilation)

    def propagate(self, index: int, gradient: Matrix) -> None:
        values = self.argument_value(self.argument1, index)
        filter_matrix = self.argument_value(self.argument2, index)
        if not self.argument1.stop_gradient:
            delta = kernels.convolve_input_gradient(
                gradient.data, filter_matrix.data, values.shape, self.stride, self.dilation
            )
            self.argument1.accumulate_gradient(index, Matrix(delta))
        if not self.argument2.stop_gradient:
            delta = kernels.convolve_filter_gradient(
                gradient.data, values.data, filter_matrix.shape, self.stride, self.dilation
            )
            self.argument2.accumulate_gradient(index, Matrix(delta))
