"""
Expressions wrapping unary and binary elementwise functions.
"""

from __future__ import annotations

from typing import Dict, List

from tracegrad.graph.expressions.base import BinaryExpression, UnaryExpression
from tracegrad.graph.node import Node
from tracegrad.matrix.functions import BinaryFunction, UnaryFunction
from tracegrad.matrix.matrix import Matrix


class UnaryFunctionExpression(UnaryExpression):
    symbol = "UNARY_FUNCTION"

    def __init__(
        self, expression_id: int, argument1: Node, result: Node, function: UnaryFunction
    ) -> None:
        super().__init__(expression_id, argument1, result)
        self.function = function
        self.gradient_rules = (f"+= {{dr}} * {function.name}'({{a}})",)

    @property
    def name(self) -> str:
        return self.function.name

    def parameters(self) -> Dict[str, object]:
        return {"function": self.function.name}

    def compute(self, index: int, value: Matrix) -> Matrix:
        return value.apply(self.function)

    def propagate(self, index: int, gradient: Matrix) -> None:
        if self.argument1.stop_gradient:
            return
        value = self.argument_value(self.argument1, index)
        result = self.result_value(index)
        delta = self.function.gradient(value.data, result.data, gradient.data)
        self.argument1.accumulate_gradient(index, Matrix(delta))


class BinaryFunctionExpression(BinaryExpression):
    """`f(value, constant)`; only the first argument receives gradients."""

    symbol = "BINARY_FUNCTION"

    def __init__(
        self,
        expression_id: int,
        argument1: Node,
        argument2: Node,
        result: Node,
        function: BinaryFunction,
    ) -> None:
        super().__init__(expression_id, argument1, argument2, result)
        self.function = function
        self.gradient_rules = (f"+= {{dr}} * {function.name}'({{a}}, {{b}})",)

    @property
    def name(self) -> str:
        return self.function.name

    def parameters(self) -> Dict[str, object]:
        return {"function": self.function.name}

    def differentiable_arguments(self) -> List[Node]:
        return [self.argument1]

    def compute(self, index: int, value: Matrix, constant: Matrix) -> Matrix:
        return value.apply_binary(constant, self.function)

    def propagate(self, index: int, gradient: Matrix) -> None:
        if self.argument1.stop_gradient:
            return
        value = self.argument_value(self.argument1, index)
        constant = self.argument_value(self.argument2, index)
        delta = self.function.gradient(value.data, constant.data, gradient.data)
        self.argument1.accumulate_gradient(index, Matrix(delta))
