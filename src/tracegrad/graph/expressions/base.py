"""
Shared machinery for traced expressions.

An expression reads its argument nodes at a sample index, writes its result
node at the same index, and on the way back turns the result gradient into
gradient contributions for every argument that accepts gradients.
"""

from __future__ import annotations

from typing import Dict, Iterable, List, Optional, Tuple

from tracegrad.errors import MissingOperandError
from tracegrad.graph.node import Node
from tracegrad.matrix.matrix import Matrix
from tracegrad.runtime.state import SampleStateRegistry


class Expression:
    """
    One traced operation `result = op(argument1[, argument2])`.

    Subclasses implement `compute` (forward value from argument values) and
    `propagate` (gradient contributions from the result gradient).
    `gradient_rules` holds one human-readable rule per argument for reports.
    """

    symbol = "EXPRESSION"
    gradient_rules: Tuple[str, ...] = ()

    def __init__(
        self,
        expression_id: int,
        argument1: Node,
        result: Node,
        argument2: Optional[Node] = None,
    ) -> None:
        self.expression_id = expression_id
        self.argument1 = argument1
        self.argument2 = argument2
        self.result = result
        self.aggregate = False
        self.active = True
        self.state = SampleStateRegistry()

    @property
    def name(self) -> str:
        return self.symbol

    @property
    def arguments(self) -> List[Node]:
        if self.argument2 is None:
            return [self.argument1]
        return [self.argument1, self.argument2]

    def parameters(self) -> Dict[str, object]:
        return {}

    def differentiable_arguments(self) -> List[Node]:
        """Arguments that receive gradient contributions from this expression."""
        return self.arguments

    # ------------------------------------------------------------------ operands

    def argument_value(self, node: Node, index: int) -> Matrix:
        value = node.get_value(index)
        if value is None:
            raise MissingOperandError(
                f"{self.symbol}: argument `{node.name}` not defined at index {index}."
            )
        return value

    def result_value(self, index: int) -> Matrix:
        value = self.result.get_value(index)
        if value is None:
            raise MissingOperandError(
                f"{self.symbol}: result `{self.result.name}` not defined at index {index}."
            )
        return value

    def result_gradient(self, index: int) -> Optional[Matrix]:
        """Result gradient at `index`, or None when the result stops gradients."""
        if self.result.stop_gradient:
            return None
        gradient = self.result.get_gradient(index)
        if gradient is None:
            raise MissingOperandError(
                f"{self.symbol}: gradient of `{self.result.name}` not defined at index {index}."
            )
        return gradient

    # ------------------------------------------------------------------ execution

    def compute(self, index: int, *values: Matrix) -> Matrix:
        raise NotImplementedError

    def propagate(self, index: int, gradient: Matrix) -> None:
        raise NotImplementedError

    def forward(self, index: int) -> None:
        values = [self.argument_value(node, index) for node in self.arguments]
        self.result.set_value(index, self.compute(index, *values))

    def backward(self, index: int) -> None:
        gradient = self.result_gradient(index)
        if gradient is None:
            return
        self.propagate(index, gradient)

    def calculate_expression(self, indices: Iterable[int]) -> None:
        for index in indices:
            self.forward(index)

    def calculate_gradient(self, indices: Iterable[int]) -> None:
        for index in indices:
            self.backward(index)

    def set_active(self, active: bool) -> None:
        self.active = active

    def reset(self) -> None:
        self.state.clear()

    # ------------------------------------------------------------------ reports

    def describe(self) -> str:
        names = ", ".join(node.name for node in self.arguments)
        params = "".join(f", {key}={value}" for key, value in self.parameters().items())
        return f"{self.symbol}({names}{params}) = {self.result.name}"

    def describe_gradient(self) -> List[str]:
        names = {
            "dr": f"d{self.result.name}",
            "r": self.result.name,
            "a": self.argument1.name,
            "b": self.argument2.name if self.argument2 is not None else "",
        }
        lines = []
        for node, rule in zip(self.arguments, self.gradient_rules):
            if node.stop_gradient or not rule:
                continue
            lines.append(f"d{node.name} {rule.format(**names)}")
        return lines

    def __repr__(self) -> str:
        return f"{type(self).__name__}({self.expression_id}: {self.describe()})"


class UnaryExpression(Expression):
    def __init__(self, expression_id: int, argument1: Node, result: Node) -> None:
        super().__init__(expression_id, argument1, result)


class BinaryExpression(Expression):
    def __init__(
        self, expression_id: int, argument1: Node, argument2: Node, result: Node
    ) -> None:
        super().__init__(expression_id, argument1, result, argument2)
