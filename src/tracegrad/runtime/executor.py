"""
Executors that walk the forward and gradient chains over sample positions.

Per-sample execution runs the whole chain for one position before moving on
and is required whenever nodes depend on the previous sample. Per-step
execution runs one expression over every position before moving on, which
is what aggregate reductions need.
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import TYPE_CHECKING, Callable, List, Sequence

from tracegrad.runtime.profiling import Profiler
from tracegrad.utils.config import config

if TYPE_CHECKING:  # pragma: no cover
    from tracegrad.graph.expressions.base import Expression
    from tracegrad.graph.node import Node


@dataclass
class ExecutionCallbacks:
    """
    Callbacks a procedure supplies to move samples in and out of its nodes.

    Args:
        load_inputs: Write the input sample for a position into the input nodes.
        store_outputs: Collect output node values at a position.
        load_output_gradients: Seed output node gradients at a position.
        store_input_gradients: Collect input node gradients at a position.
    """

    load_inputs: Callable[[int], None]
    store_outputs: Callable[[int], None]
    load_output_gradients: Callable[[int], None]
    store_input_gradients: Callable[[int], None]


class _Executor:
    mode = "abstract"

    def __init__(
        self,
        expressions: Sequence["Expression"],
        gradient_expressions: Sequence["Expression"],
        dependent_nodes: Sequence["Node"],
        profiler: Profiler,
    ) -> None:
        self.expressions = list(expressions)
        self.gradient_expressions = list(gradient_expressions)
        self.dependent_nodes = list(dependent_nodes)
        self.profiler = profiler

    def _run(self, label: str, expression: "Expression", step: Callable[[], None]) -> None:
        if not config.profile:
            step()
            return
        with self.profiler.timed(f"{label}:{expression.expression_id}:{expression.symbol}"):
            step()

    def forward(self, positions: List[int], callbacks: ExecutionCallbacks) -> None:
        with self.profiler.timed("forward"):
            self._forward(positions, callbacks)
        self.profiler.record_steps(forward=len(positions))

    def backward(self, positions: List[int], callbacks: ExecutionCallbacks) -> None:
        """Propagate gradients over `positions`, given in descending order."""
        with self.profiler.timed("backward"):
            self._backward(positions, callbacks)
        self.profiler.record_steps(backward=len(positions))

    def _forward(self, positions: List[int], callbacks: ExecutionCallbacks) -> None:
        raise NotImplementedError

    def _backward(self, positions: List[int], callbacks: ExecutionCallbacks) -> None:
        raise NotImplementedError


class PerSampleExecutor(_Executor):
    mode = "per_sample"

    def _forward(self, positions: List[int], callbacks: ExecutionCallbacks) -> None:
        for position in positions:
            callbacks.load_inputs(position)
            for node in self.dependent_nodes:
                node.update_value_dependency(position)
            for expression in self.expressions:
                self._run(
                    "forward", expression,
                    lambda expression=expression: expression.calculate_expression([position]),
                )
            callbacks.store_outputs(position)

    def _backward(self, positions: List[int], callbacks: ExecutionCallbacks) -> None:
        for position in positions:
            callbacks.load_output_gradients(position)
            for node in self.dependent_nodes:
                node.update_gradient_dependency(position)
            for expression in self.gradient_expressions:
                self._run(
                    "backward", expression,
                    lambda expression=expression: expression.calculate_gradient([position]),
                )
            callbacks.store_input_gradients(position)


class PerStepExecutor(_Executor):
    mode = "per_step"

    def _forward(self, positions: List[int], callbacks: ExecutionCallbacks) -> None:
        for position in positions:
            callbacks.load_inputs(position)
        for expression in self.expressions:
            self._run(
                "forward", expression,
                lambda expression=expression: expression.calculate_expression(positions),
            )
        for position in positions:
            callbacks.store_outputs(position)

    def _backward(self, positions: List[int], callbacks: ExecutionCallbacks) -> None:
        for position in positions:
            callbacks.load_output_gradients(position)
        for expression in self.gradient_expressions:
            self._run(
                "backward", expression,
                lambda expression=expression: expression.calculate_gradient(positions),
            )
        for position in positions:
            callbacks.store_input_gradients(position)
