"""
Reshaping expressions: join, unjoin, flatten, unflatten and transpose.
"""

from __future__ import annotations

from typing import Dict

import numpy as np

from tracegrad.graph.expressions.base import BinaryExpression, UnaryExpression
from tracegrad.graph.node import Node
from tracegrad.matrix.matrix import Matrix


class JoinExpression(BinaryExpression):
    symbol = "JOIN"
    gradient_rules = ("+= SPLIT_FIRST({dr})", "+= SPLIT_SECOND({dr})")

    def __init__(
        self,
        expression_id: int,
        argument1: Node,
        argument2: Node,
        result: Node,
        vertical: bool = True,
    ) -> None:
        super().__init__(expression_id, argument1, argument2, result)
        self.vertical = vertical

    def parameters(self) -> Dict[str, object]:
        return {"vertical": self.vertical}

    def compute(self, index: int, first: Matrix, second: Matrix) -> Matrix:
        return first.join(second, self.vertical)

    def propagate(self, index: int, gradient: Matrix) -> None:
        rows, columns = self.argument1.shape
        if self.vertical:
            first, second = gradient.data[:rows, :], gradient.data[rows:, :]
        else:
            first, second = gradient.data[:, :columns], gradient.data[:, columns:]
        if not self.argument1.stop_gradient:
            self.argument1.accumulate_gradient(index, Matrix(first))
        if not self.argument2.stop_gradient:
            self.argument2.accumulate_gradient(index, Matrix(second))


class UnjoinExpression(UnaryExpression):
    symbol = "UNJOIN"
    gradient_rules = ("+= PLACE({dr})",)

    def __init__(
        self,
        expression_id: int,
        argument1: Node,
        result: Node,
        row: int,
        column: int,
        rows: int,
        columns: int,
    ) -> None:
        super().__init__(expression_id, argument1, result)
        self.row = row
        self.column = column
        self.rows = rows
        self.columns = columns

    def parameters(self) -> Dict[str, object]:
        return {"at": f"({self.row}, {self.column})", "size": f"{self.rows}x{self.columns}"}

    def compute(self, index: int, value: Matrix) -> Matrix:
        return value.unjoin(self.row, self.column, self.rows, self.columns)

    def propagate(self, index: int, gradient: Matrix) -> None:
        if self.argument1.stop_gradient:
            return
        delta = np.zeros(self.argument1.shape)
        delta[self.row : self.row + self.rows, self.column : self.column + self.columns] = (
            gradient.data
        )
        self.argument1.accumulate_gradient(index, Matrix(delta))


class FlattenExpression(UnaryExpression):
    symbol = "FLATTEN"
    gradient_rules = ("+= UNFLATTEN({dr})",)

    def compute(self, index: int, value: Matrix) -> Matrix:
        return value.flatten()

    def propagate(self, index: int, gradient: Matrix) -> None:
        if not self.argument1.stop_gradient:
            self.argument1.accumulate_gradient(
                index, Matrix(gradient.data.reshape(self.argument1.shape))
            )


class UnflattenExpression(UnaryExpression):
    symbol = "UNFLATTEN"
    gradient_rules = ("+= FLATTEN({dr})",)

    def __init__(
        self, expression_id: int, argument1: Node, result: Node, rows: int, columns: int
    ) -> None:
        super().__init__(expression_id, argument1, result)
        self.rows = rows
        self.columns = columns

    def parameters(self) -> Dict[str, object]:
        return {"size": f"{self.rows}x{self.columns}"}

    def compute(self, index: int, value: Matrix) -> Matrix:
        return value.unflatten(self.rows, self.columns)

    def propagate(self, index: int, gradient: Matrix) -> None:
        if not self.argument1.stop_gradient:
            self.argument1.accumulate_gradient(
                index, Matrix(gradient.data.reshape(self.argument1.shape))
            )


class TransposeExpression(UnaryExpression):
    symbol = "TRANSPOSE"
    gradient_rules = ("+= {dr}^T",)

    def compute(self, index: int, value: Matrix) -> Matrix:
        return value.transpose()

    def propagate(self, index: int, gradient: Matrix) -> None:
        if not self.argument1.stop_gradient:
            self.argument1.accumulate_gradient(index, gradient.transpose())
