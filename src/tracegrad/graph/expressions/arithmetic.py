"""
Elementwise arithmetic and matrix product.

Operands may broadcast a scalar against a matrix; the scalar node's gradient
is reduced back to a scalar when it is accumulated.
"""

from __future__ import annotations

from tracegrad.graph.expressions.base import BinaryExpression
from tracegrad.matrix.matrix import Matrix


class AddExpression(BinaryExpression):
    symbol = "ADD"
    gradient_rules = ("+= {dr}", "+= {dr}")

    def compute(self, index: int, first: Matrix, second: Matrix) -> Matrix:
        return first.add(second)

    def propagate(self, index: int, gradient: Matrix) -> None:
        if not self.argument1.stop_gradient:
            self.argument1.accumulate_gradient(index, gradient)
        if not self.argument2.stop_gradient:
            self.argument2.accumulate_gradient(index, gradient)


class SubtractExpression(BinaryExpression):
    symbol = "SUB"
    gradient_rules = ("+= {dr}", "-= {dr}")

    def compute(self, index: int, first: Matrix, second: Matrix) -> Matrix:
        return first.subtract(second)

    def propagate(self, index: int, gradient: Matrix) -> None:
        if not self.argument1.stop_gradient:
            self.argument1.accumulate_gradient(index, gradient)
        if not self.argument2.stop_gradient:
            self.argument2.accumulate_gradient(index, gradient, add=False)


class MultiplyExpression(BinaryExpression):
    symbol = "MUL"
    gradient_rules = ("+= {dr} * {b}", "+= {dr} * {a}")

    def compute(self, index: int, first: Matrix, second: Matrix) -> Matrix:
        return first.multiply(second)

    def propagate(self, index: int, gradient: Matrix) -> None:
        if not self.argument1.stop_gradient:
            second = self.argument_value(self.argument2, index)
            self.argument1.accumulate_gradient(index, gradient.multiply(second))
        if not self.argument2.stop_gradient:
            first = self.argument_value(self.argument1, index)
            self.argument2.accumulate_gradient(index, gradient.multiply(first))


class DivideExpression(BinaryExpression):
    symbol = "DIV"
    gradient_rules = ("+= {dr} / {b}", "-= {dr} * {a} / {b}^2")

    def compute(self, index: int, first: Matrix, second: Matrix) -> Matrix:
        return first.divide(second)

    def propagate(self, index: int, gradient: Matrix) -> None:
        second = self.argument_value(self.argument2, index)
        if not self.argument1.stop_gradient:
            self.argument1.accumulate_gradient(index, gradient.divide(second))
        if not self.argument2.stop_gradient:
            first = self.argument_value(self.argument1, index)
            delta = gradient.multiply(first).divide(second.multiply(second))
            self.argument2.accumulate_gradient(index, delta, add=False)


class DotExpression(BinaryExpression):
    symbol = "DOT"
    gradient_rules = ("+= {dr} . {b}^T", "+= {a}^T . {dr}")

    def compute(self, index: int, first: Matrix, second: Matrix) -> Matrix:
        return first.dot(second)

    def propagate(self, index: int, gradient: Matrix) -> None:
        if not self.argument1.stop_gradient:
            second = self.argument_value(self.argument2, index)
            self.argument1.accumulate_gradient(index, gradient.dot(second.transpose()))
        if not self.argument2.stop_gradient:
            first = self.argument_value(self.argument1, index)
            self.argument2.accumulate_gradient(index, first.transpose().dot(gradient))
