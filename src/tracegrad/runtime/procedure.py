"""
Executable procedure produced by `ProcedureFactory.get_procedure`.

A procedure owns the nodes and expression chains of one traced definition.
Samples are addressed internally by position (0, 1, ...) in execution
order; callers see the keys of the sequences they pass in.
"""

from __future__ import annotations

from typing import TYPE_CHECKING, Dict, Iterable, List, Mapping, Sequence as SequenceType

import numpy as np

from tracegrad.errors import GraphIntegrityError, MatrixError, MissingOperandError
from tracegrad.matrix.matrix import Matrix
from tracegrad.matrix.sequence import Sequence
from tracegrad.runtime.executor import (
    ExecutionCallbacks,
    PerSampleExecutor,
    PerStepExecutor,
)
from tracegrad.runtime.profiling import Profiler, ProfileStats
from tracegrad.utils.logging import logger

if TYPE_CHECKING:  # pragma: no cover
    from tracegrad.graph.expressions.base import Expression
    from tracegrad.graph.node import Node
    from tracegrad.graph.register import NodeRegister


class Procedure:
    def __init__(
        self,
        *,
        input_nodes: Mapping[int, "Node"],
        output_nodes: Mapping[int, "Node"],
        register: "NodeRegister",
        expressions: SequenceType["Expression"],
        gradient_expressions: SequenceType["Expression"],
        producers: Mapping[int, "Expression"],
        gradient_seeds: SequenceType["Node"],
        dependent_nodes: SequenceType["Node"],
        parameter_nodes: Mapping[Matrix, "Node"],
        constant_nodes: Mapping[Matrix, "Node"],
        per_sample: bool,
        reversed_input: bool = False,
        joined_input: bool = False,
    ) -> None:
        self.input_nodes = dict(input_nodes)
        self.output_nodes = dict(output_nodes)
        self.register = register
        self.expressions = list(expressions)
        self.gradient_expressions = list(gradient_expressions)
        self.dependent_nodes = list(dependent_nodes)
        self.parameter_nodes = dict(parameter_nodes)
        self.constant_nodes = dict(constant_nodes)
        self.per_sample = per_sample
        self.reversed_input = reversed_input
        self.joined_input = joined_input
        self.profiler = Profiler()

        self._producers = dict(producers)
        self._seeds = list(gradient_seeds)
        executor_type = PerSampleExecutor if per_sample else PerStepExecutor
        self.executor = executor_type(
            self.expressions, self.gradient_expressions, self.dependent_nodes, self.profiler
        )
        self._keys: List[int] = []
        self._row_counts: Dict[int, List[int]] = {}

    # ------------------------------------------------------------------ queries

    @property
    def parameters(self) -> List[Matrix]:
        return list(self.parameter_nodes)

    @property
    def stats(self) -> ProfileStats:
        return self.profiler.snapshot()

    def has_dependencies(self) -> bool:
        return bool(self.dependent_nodes)

    def get_node(self, matrix: Matrix) -> "Node":
        node = self.register.get(matrix)
        if node is None:
            raise GraphIntegrityError(f"{matrix!r} is not part of this procedure.")
        return node

    def expression_chain(self) -> List[str]:
        return [expression.describe() for expression in self.expressions]

    def gradient_chain(self) -> List[str]:
        lines: List[str] = []
        for expression in self.gradient_expressions:
            lines.extend(expression.describe_gradient())
        return lines

    # ---------------------------------------------------------------- callbacks

    def _key(self, position: int) -> int:
        return self._keys[position]

    def _check_shape(self, node: "Node", matrix: Matrix, what: str) -> None:
        if matrix.shape != node.shape:
            raise MatrixError(
                f"{what} for `{node.name}` has shape {matrix.shape}, expected {node.shape}."
            )

    def _load_inputs(self, inputs: Sequence, position: int) -> None:
        key = self._key(position)
        sample = inputs.get(key)
        if self.joined_input:
            entries = [sample[entry] for entry in sorted(sample)]
            if not entries:
                raise MissingOperandError(f"Input sample {key} has no entries to join.")
            self._row_counts[position] = [matrix.rows for matrix in entries]
            joined = Matrix(np.vstack([matrix.data for matrix in entries]))
            node = self.input_nodes[0]
            self._check_shape(node, joined, f"Joined input sample {key}")
            node.set_value(position, joined)
            return
        for entry, node in self.input_nodes.items():
            if entry not in sample:
                raise MissingOperandError(f"Input sample {key} is missing entry {entry}.")
            self._check_shape(node, sample[entry], f"Input sample {key}")
            node.set_value(position, sample[entry])

    def _store_outputs(self, outputs: Sequence, position: int) -> None:
        key = self._key(position)
        for entry, node in self.output_nodes.items():
            value = node.get_value(position)
            if value is None:
                raise MissingOperandError(f"Output `{node.name}` not computed for sample {key}.")
            outputs.put_entry(key, entry, value)

    def _load_output_gradients(self, output_gradients: Sequence, position: int) -> None:
        key = self._key(position)
        sample = output_gradients.get(key) if key in output_gradients else {}
        for entry, node in self.output_nodes.items():
            gradient = sample.get(entry)
            if gradient is None:
                gradient = node.empty_matrix()
            elif not gradient.is_scalar:
                self._check_shape(node, gradient, f"Output gradient {key}")
            node.accumulate_gradient(position, gradient)

    def _store_input_gradients(self, input_gradients: Sequence, position: int) -> None:
        key = self._key(position)
        for entry, node in self.input_nodes.items():
            gradient = node.get_gradient(position)
            if gradient is None:
                gradient = node.empty_matrix()
            if not self.joined_input:
                input_gradients.put_entry(key, entry, gradient)
                continue
            offsets = np.cumsum(self._row_counts[position])[:-1]
            for part, rows in enumerate(np.split(gradient.data, offsets)):
                input_gradients.put_entry(key, part, Matrix(rows))

    # ---------------------------------------------------------------- execution

    def calculate_expression(self, inputs: Sequence) -> Sequence:
        """Run the forward chain over every sample of `inputs`."""
        if len(inputs) == 0:
            return Sequence()
        self._keys = inputs.descending_keys() if self.reversed_input else inputs.keys()
        outputs = Sequence()
        callbacks = ExecutionCallbacks(
            load_inputs=lambda position: self._load_inputs(inputs, position),
            store_outputs=lambda position: self._store_outputs(outputs, position),
            load_output_gradients=lambda position: None,
            store_input_gradients=lambda position: None,
        )
        self.executor.forward(list(range(len(self._keys))), callbacks)
        self.profiler.record_memory(self._node_bytes())
        logger.debug("Forward pass over %d samples (%s).", len(self._keys), self.executor.mode)
        return outputs

    def calculate_gradient(self, output_gradients: Sequence, steps: int = -1) -> Sequence:
        """
        Backpropagate `output_gradients` through the most recent forward pass.

        Samples are processed from the most recent backwards; with `steps > 0`
        only that many samples receive gradients (truncated backpropagation).
        Returns the input gradients keyed like the forward inputs.
        """
        if not self._keys:
            raise MissingOperandError("calculate_gradient called before calculate_expression.")
        positions = list(range(len(self._keys) - 1, -1, -1))
        if steps > 0:
            positions = positions[:steps]
        input_gradients = Sequence()
        callbacks = ExecutionCallbacks(
            load_inputs=lambda position: None,
            store_outputs=lambda position: None,
            load_output_gradients=lambda position: self._load_output_gradients(
                output_gradients, position
            ),
            store_input_gradients=lambda position: self._store_input_gradients(
                input_gradients, position
            ),
        )
        self.executor.backward(positions, callbacks)
        logger.debug("Backward pass over %d of %d samples.", len(positions), len(self._keys))
        return input_gradients

    def _node_bytes(self) -> int:
        total = 0
        for node in self.register:
            for value in node.values(node.indices()):
                if value is not None:
                    total += value.data.nbytes
        return total

    # ---------------------------------------------------------------- gradients

    def get_gradients(self) -> Dict[Matrix, Matrix]:
        """Mean gradient of every parameter over the samples that reached it."""
        return {matrix: node.gradient_mean() for matrix, node in self.parameter_nodes.items()}

    def get_gradient(self, matrix: Matrix) -> Matrix:
        return self.get_node(matrix).gradient_mean()

    def set_stop_gradient(self, matrices: Iterable[Matrix], stop: bool = True) -> None:
        from tracegrad.graph.topo import build_gradient_path

        for matrix in matrices:
            self.get_node(matrix).set_stop_gradient(stop)
        self.gradient_expressions = build_gradient_path(self._seeds, self._producers)
        self.executor.gradient_expressions = list(self.gradient_expressions)

    # ---------------------------------------------------------------- lifecycle

    def set_active(self, active: bool) -> None:
        """Switch training (True) and inference (False) behaviour."""
        for expression in self.expressions:
            expression.set_active(active)

    def reset(self, keep_dependent: bool = False) -> None:
        for node in self.register:
            node.reset(keep_dependent)
        for expression in self.expressions:
            expression.reset()
        self._keys = []
        self._row_counts = {}

    def store_dependencies(self, backup_index: int) -> None:
        for node in self.dependent_nodes:
            node.store_dependency(backup_index)

    def restore_dependencies(self, backup_index: int) -> None:
        for node in self.dependent_nodes:
            try:
                node.restore_dependency(backup_index)
            except KeyError as exc:
                raise MissingOperandError(
                    f"No dependency backup {backup_index} for `{node.name}`."
                ) from exc

    def __repr__(self) -> str:
        return (
            f"Procedure({len(self.expressions)} expressions, "
            f"{len(self.dependent_nodes)} dependent nodes, {self.executor.mode})"
        )
