"""
Procedure factory: traces a definition and assembles a `Procedure`.

While a definition runs, every matrix it touches carries a reference to the
factory. Each traced operation reserves the factory's expression lock,
computes its result eagerly and then reports itself through one of the
`create_*_expression` methods, which resolve nodes and append the
expression to the active trace.
"""

from __future__ import annotations

import itertools

import numpy as np
from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional, Set, Type

from tracegrad.errors import GraphIntegrityError, ReservationError
from tracegrad.graph.definition import ForwardDefinition
from tracegrad.graph.expressions import (
    AddExpression,
    AveragePoolExpression,
    BinaryFunctionExpression,
    ConvolveExpression,
    CrosscorrelateExpression,
    CyclicPoolExpression,
    DivideExpression,
    DotExpression,
    DropoutExpression,
    Expression,
    FlattenExpression,
    GradientClippingExpression,
    JoinExpression,
    MaxPoolExpression,
    MeanExpression,
    MultiplyExpression,
    NormExpression,
    RandomPoolExpression,
    StandardDeviationExpression,
    SubtractExpression,
    SumExpression,
    TransposeExpression,
    UnaryFunctionExpression,
    UnflattenExpression,
    UnjoinExpression,
    VarianceExpression,
)
from tracegrad.graph.node import Node
from tracegrad.graph.register import NodeRegister
from tracegrad.graph.topo import build_gradient_path, validate_forward_order
from tracegrad.matrix.functions import BinaryFunction, UnaryFunction
from tracegrad.matrix.matrix import Matrix
from tracegrad.runtime.procedure import Procedure
from tracegrad.utils.config import config
from tracegrad.utils.logging import logger

INPUT_SEQUENCE_ID = -1


@dataclass(frozen=True)
class ExpressionLock:
    """Reservation token handed out by `ProcedureFactory.start_expression`."""

    token: int
    originator: Any = field(compare=False, repr=False)


@dataclass
class TraceRecord:
    """Everything recorded while tracing a definition once."""

    trace_id: int
    register: NodeRegister = field(default_factory=NodeRegister)
    expressions: List[Expression] = field(default_factory=list)
    producers: Dict[int, Expression] = field(default_factory=dict)
    result_positions: Dict[int, int] = field(default_factory=dict)
    input_handles: Set[int] = field(default_factory=set)
    input_nodes: Dict[int, Node] = field(default_factory=dict)
    output_nodes: Dict[int, Node] = field(default_factory=dict)
    dependent_nodes: List[Node] = field(default_factory=list)

    def signature(self) -> List[str]:
        return [expression.name for expression in self.expressions]


class ProcedureFactory:
    """
    Builds procedures from `ForwardDefinition`s.

    One factory traces one definition at a time; the expression lock keeps
    nested or foreign operations from appending to the active trace.
    """

    def __init__(
        self,
        *,
        strict_reservation: Optional[bool] = None,
        strict_trace_shape: Optional[bool] = None,
    ) -> None:
        self.strict_reservation = (
            config.strict_reservation if strict_reservation is None else strict_reservation
        )
        self.strict_trace_shape = (
            config.strict_trace_shape if strict_trace_shape is None else strict_trace_shape
        )
        self._trace: Optional[TraceRecord] = None
        self._previous: Optional[TraceRecord] = None
        self._lock: Optional[ExpressionLock] = None
        self._tokens = itertools.count()
        self._registered: List[Matrix] = []
        self._seeds = np.random.SeedSequence(config.seed)

    # ------------------------------------------------------------ reservation

    @property
    def tracing(self) -> bool:
        return self._trace is not None

    def start_expression(self, originator: Any) -> Optional[ExpressionLock]:
        """Reserve the trace for one expression; None means the call is not recorded."""
        if self._trace is None:
            if self.strict_reservation:
                raise ReservationError("No trace is active on this procedure factory.")
            return None
        if self._lock is not None:
            if self.strict_reservation:
                raise ReservationError(
                    f"Expression lock is already held by {self._lock.originator!r}."
                )
            logger.debug("Expression lock held; not recording nested operation.")
            return None
        self._lock = ExpressionLock(token=next(self._tokens), originator=originator)
        return self._lock

    def check_ongoing_expression(self, lock: Optional[ExpressionLock]) -> bool:
        """Return True when an expression reported with `lock` must be skipped."""
        if lock is None:
            return True
        if self._trace is None or lock is not self._lock:
            if self.strict_reservation:
                raise ReservationError(f"Expression lock {lock.token} is not the active lock.")
            logger.warning("Ignoring expression reported with stale lock %s.", lock.token)
            return True
        return False

    # -------------------------------------------------------------- recording

    def _active_trace(self) -> TraceRecord:
        if self._trace is None:
            raise ReservationError("No trace is active on this procedure factory.")
        return self._trace

    def _spawn_rng(self) -> np.random.Generator:
        """Independent generator for one stochastic expression."""
        return np.random.default_rng(self._seeds.spawn(1)[0])

    def _define(self, matrix: Matrix, *, result: bool = False, multi_index: bool = True) -> Node:
        trace = self._active_trace()
        if result:
            return trace.register.define(
                matrix, False, trace.trace_id, len(trace.expressions), multi_index=multi_index
            )
        carried = self._previous is not None and matrix.handle in self._previous.result_positions
        return trace.register.define(
            matrix, not carried, trace.trace_id, len(trace.expressions)
        )

    def _store_expression(self, expression: Expression) -> None:
        trace = self._active_trace()
        trace.result_positions[expression.result.handle] = len(trace.expressions)
        trace.producers[expression.result.id] = expression
        trace.expressions.append(expression)
        self._lock = None

    def _create_unary(
        self,
        lock: Optional[ExpressionLock],
        expression_type: Type[Expression],
        argument1: Matrix,
        result: Matrix,
        **parameters: Any,
    ) -> None:
        if self.check_ongoing_expression(lock):
            return
        trace = self._active_trace()
        argument_node = self._define(argument1)
        result_node = self._define(result, result=True)
        self._store_expression(
            expression_type(len(trace.expressions), argument_node, result_node, **parameters)
        )

    def _create_binary(
        self,
        lock: Optional[ExpressionLock],
        expression_type: Type[Expression],
        argument1: Matrix,
        argument2: Matrix,
        result: Matrix,
        **parameters: Any,
    ) -> None:
        if self.check_ongoing_expression(lock):
            return
        trace = self._active_trace()
        first = self._define(argument1)
        second = self._define(argument2)
        result_node = self._define(result, result=True)
        self._store_expression(
            expression_type(len(trace.expressions), first, second, result_node, **parameters)
        )

    def create_add_expression(self, lock, argument1: Matrix, argument2: Matrix, result: Matrix) -> None:
        self._create_binary(lock, AddExpression, argument1, argument2, result)

    def create_subtract_expression(self, lock, argument1: Matrix, argument2: Matrix, result: Matrix) -> None:
        self._create_binary(lock, SubtractExpression, argument1, argument2, result)

    def create_multiply_expression(self, lock, argument1: Matrix, argument2: Matrix, result: Matrix) -> None:
        self._create_binary(lock, MultiplyExpression, argument1, argument2, result)

    def create_divide_expression(self, lock, argument1: Matrix, argument2: Matrix, result: Matrix) -> None:
        self._create_binary(lock, DivideExpression, argument1, argument2, result)

    def create_dot_expression(self, lock, argument1: Matrix, argument2: Matrix, result: Matrix) -> None:
        self._create_binary(lock, DotExpression, argument1, argument2, result)

    def create_convolve_expression(
        self, lock, argument1: Matrix, argument2: Matrix, result: Matrix,
        stride: int = 1, dilation: int = 1,
    ) -> None:
        self._create_binary(
            lock, ConvolveExpression, argument1, argument2, result,
            stride=stride, dilation=dilation,
        )

    def create_crosscorrelate_expression(
        self, lock, argument1: Matrix, argument2: Matrix, result: Matrix,
        stride: int = 1, dilation: int = 1,
    ) -> None:
        self._create_binary(
            lock, CrosscorrelateExpression, argument1, argument2, result,
            stride=stride, dilation=dilation,
        )

    def create_max_pool_expression(
        self, lock, argument1: Matrix, result: Matrix,
        filter_rows: int = 2, filter_columns: int = 2, stride: int = 1,
    ) -> None:
        self._create_unary(
            lock, MaxPoolExpression, argument1, result,
            filter_rows=filter_rows, filter_columns=filter_columns, stride=stride,
        )

    def create_average_pool_expression(
        self, lock, argument1: Matrix, result: Matrix,
        filter_rows: int = 2, filter_columns: int = 2, stride: int = 1,
    ) -> None:
        self._create_unary(
            lock, AveragePoolExpression, argument1, result,
            filter_rows=filter_rows, filter_columns=filter_columns, stride=stride,
        )

    def create_random_pool_expression(
        self, lock, argument1: Matrix, result: Matrix,
        filter_rows: int = 2, filter_columns: int = 2, stride: int = 1,
    ) -> None:
        self._create_unary(
            lock, RandomPoolExpression, argument1, result,
            filter_rows=filter_rows, filter_columns=filter_columns, stride=stride,
            rng=self._spawn_rng(),
        )

    def create_cyclic_pool_expression(
        self, lock, argument1: Matrix, result: Matrix,
        filter_rows: int = 2, filter_columns: int = 2, stride: int = 1,
    ) -> None:
        self._create_unary(
            lock, CyclicPoolExpression, argument1, result,
            filter_rows=filter_rows, filter_columns=filter_columns, stride=stride,
        )

    def create_sum_expression(self, lock, argument1: Matrix, result: Matrix, aggregate: bool = False) -> None:
        self._create_unary(lock, SumExpression, argument1, result, aggregate=aggregate)

    def create_mean_expression(self, lock, argument1: Matrix, result: Matrix, aggregate: bool = False) -> None:
        self._create_unary(lock, MeanExpression, argument1, result, aggregate=aggregate)

    def create_variance_expression(self, lock, argument1: Matrix, result: Matrix, aggregate: bool = False) -> None:
        self._create_unary(lock, VarianceExpression, argument1, result, aggregate=aggregate)

    def create_standard_deviation_expression(
        self, lock, argument1: Matrix, result: Matrix, aggregate: bool = False
    ) -> None:
        self._create_unary(
            lock, StandardDeviationExpression, argument1, result, aggregate=aggregate
        )

    def create_norm_expression(
        self, lock, argument1: Matrix, result: Matrix, p: float = 2.0, aggregate: bool = False
    ) -> None:
        self._create_unary(lock, NormExpression, argument1, result, p=p, aggregate=aggregate)

    def create_unary_function_expression(
        self, lock, argument1: Matrix, result: Matrix, function: UnaryFunction
    ) -> None:
        self._create_unary(lock, UnaryFunctionExpression, argument1, result, function=function)

    def create_binary_function_expression(
        self, lock, argument1: Matrix, argument2: Matrix, result: Matrix, function: BinaryFunction
    ) -> None:
        self._create_binary(
            lock, BinaryFunctionExpression, argument1, argument2, result, function=function
        )

    def create_join_expression(
        self, lock, argument1: Matrix, argument2: Matrix, result: Matrix, vertical: bool = True
    ) -> None:
        self._create_binary(lock, JoinExpression, argument1, argument2, result, vertical=vertical)

    def create_unjoin_expression(
        self, lock, argument1: Matrix, result: Matrix,
        row: int, column: int, rows: int, columns: int,
    ) -> None:
        self._create_unary(
            lock, UnjoinExpression, argument1, result,
            row=row, column=column, rows=rows, columns=columns,
        )

    def create_flatten_expression(self, lock, argument1: Matrix, result: Matrix) -> None:
        self._create_unary(lock, FlattenExpression, argument1, result)

    def create_unflatten_expression(
        self, lock, argument1: Matrix, result: Matrix, rows: int, columns: int
    ) -> None:
        self._create_unary(
            lock, UnflattenExpression, argument1, result, rows=rows, columns=columns
        )

    def create_transpose_expression(self, lock, argument1: Matrix, result: Matrix) -> None:
        self._create_unary(lock, TransposeExpression, argument1, result)

    def create_dropout_expression(
        self, lock, argument1: Matrix, result: Matrix,
        probability: float, monte_carlo: bool = False,
    ) -> None:
        self._create_unary(
            lock, DropoutExpression, argument1, result,
            probability=probability, monte_carlo=monte_carlo,
            rng=self._spawn_rng(),
        )

    def create_gradient_clipping_expression(
        self, lock, argument1: Matrix, result: Matrix, threshold: float
    ) -> None:
        self._create_unary(
            lock, GradientClippingExpression, argument1, result, threshold=threshold
        )

    # ------------------------------------------------------------------ build

    def _register_matrices(self, matrices: List[Matrix]) -> None:
        for matrix in matrices:
            matrix.set_factory(self)
            self._registered.append(matrix)

    def _run_trace(
        self,
        definition: ForwardDefinition,
        trace_id: int,
        reset_previous_input: bool,
        previous: Optional[TraceRecord],
        traces: List[TraceRecord],
    ) -> TraceRecord:
        trace = TraceRecord(trace_id=trace_id)
        traces.append(trace)
        self._trace = trace
        self._previous = previous
        try:
            inputs = definition.get_input_matrices(reset_previous_input)
            for entry in sorted(inputs):
                matrix = inputs[entry]
                matrix.set_factory(self)
                trace.input_handles.add(matrix.handle)
                trace.input_nodes[entry] = trace.register.define(
                    matrix, False, trace_id, INPUT_SEQUENCE_ID
                )
            outputs = definition.get_forward_procedure()
        finally:
            self._trace = None
            self._previous = None
            self._lock = None
        for entry in sorted(outputs):
            node = trace.register.get(outputs[entry])
            if node is None:
                raise GraphIntegrityError(
                    f"Output entry {entry} was not produced by the traced computation."
                )
            trace.output_nodes[entry] = node
        validate_forward_order(trace.expressions)
        logger.debug(
            "Trace %d recorded %d expressions over %d nodes.",
            trace_id, len(trace.expressions), len(trace.register),
        )
        return trace

    def _traces_match(self, previous: TraceRecord, current: TraceRecord) -> bool:
        if previous.signature() == current.signature():
            return True
        message = (
            f"Traces of the definition differ: {len(previous.expressions)} vs "
            f"{len(current.expressions)} expressions."
        )
        if self.strict_trace_shape:
            raise GraphIntegrityError(message)
        logger.warning("%s Building procedure without cross-step dependencies.", message)
        return False

    def _link_dependencies(self, previous: TraceRecord, current: TraceRecord) -> None:
        """Link arguments that were results of the previous trace to their counterparts."""
        if not self._traces_match(previous, current):
            self._bind_unlinked(previous, current)
            return
        for expression in current.expressions:
            for node in expression.arguments:
                position = previous.result_positions.get(node.handle)
                if position is None or node.from_node is not None:
                    continue
                counterpart = current.expressions[position].result
                if counterpart.shape != node.shape:
                    raise GraphIntegrityError(
                        f"Cross-step dependency `{counterpart.name}` -> `{node.name}` "
                        f"changes shape from {counterpart.shape} to {node.shape}."
                    )
                node.from_node = counterpart
                counterpart.to_node = node
                node.set_multi_index(True)
                for dependent in (node, counterpart):
                    if dependent not in current.dependent_nodes:
                        current.dependent_nodes.append(dependent)
                logger.debug("Linked %s -> %s across steps.", counterpart.name, node.name)

    def _bind_unlinked(self, previous: TraceRecord, current: TraceRecord) -> None:
        """Read carried arguments as zeros when their producer cannot be matched."""
        for expression in current.expressions:
            for node in expression.arguments:
                if node.constant or node.handle not in previous.result_positions:
                    continue
                node.bind_zero()
                logger.debug("Carried argument %s has no counterpart; reading zeros.", node.name)

    def _resolve(
        self, current: TraceRecord, matrices: List[Matrix], kind: str
    ) -> Dict[Matrix, Node]:
        resolved: Dict[Matrix, Node] = {}
        for matrix in matrices:
            node = current.register.get(matrix)
            if node is None:
                raise GraphIntegrityError(
                    f"{kind} matrix {matrix!r} is not referenced by the traced computation."
                )
            resolved[matrix] = node
        return resolved

    def get_procedure(
        self, definition: ForwardDefinition, *, per_sample: Optional[bool] = None
    ) -> Procedure:
        """
        Trace `definition` twice and build a procedure from the second trace.

        The first trace starts from a reset state; any matrix it produced
        that the second trace consumes marks a cross-step dependency.
        """
        parameters = list(definition.get_parameter_matrices())
        constants = list(definition.get_constant_matrices())
        self._register_matrices(parameters + constants)
        traces: List[TraceRecord] = []
        try:
            previous = self._run_trace(definition, 0, True, None, traces)
            current = self._run_trace(definition, 1, False, previous, traces)
        finally:
            for trace in traces:
                trace.register.remove_factory()
            for matrix in self._registered:
                matrix.remove_factory()
            self._registered = []

        self._link_dependencies(previous, current)

        parameter_nodes = self._resolve(current, parameters, "Parameter")
        constant_nodes = self._resolve(current, constants, "Constant")
        for node in constant_nodes.values():
            node.set_stop_gradient(True)
        for matrix in definition.get_stop_gradient_matrices():
            node = current.register.get(matrix)
            if node is None:
                logger.debug("Stop-gradient matrix %r is not traced; ignoring.", matrix)
                continue
            node.set_stop_gradient(True)

        has_dependencies = bool(current.dependent_nodes)
        has_aggregates = any(expression.aggregate for expression in current.expressions)
        if has_dependencies and has_aggregates:
            raise GraphIntegrityError(
                "Aggregate reductions cannot be combined with cross-step dependencies."
            )
        if per_sample is None:
            per_sample = has_dependencies
        if has_dependencies and not per_sample:
            raise GraphIntegrityError(
                "Procedures with cross-step dependencies must run per sample."
            )
        if per_sample and has_aggregates:
            raise GraphIntegrityError("Aggregate reductions require per-step execution.")
        if definition.joined_input and len(current.input_nodes) != 1:
            raise GraphIntegrityError("Joined input requires exactly one input entry.")

        seeds = list(current.output_nodes.values()) + [
            node for node in current.dependent_nodes if node.to_node is not None
        ]
        gradient_expressions = build_gradient_path(seeds, current.producers)
        logger.debug(
            "Built procedure: %d forward, %d gradient expressions, %d dependent nodes, %s.",
            len(current.expressions),
            len(gradient_expressions),
            len(current.dependent_nodes),
            "per sample" if per_sample else "per step",
        )
        return Procedure(
            input_nodes=current.input_nodes,
            output_nodes=current.output_nodes,
            register=current.register,
            expressions=current.expressions,
            gradient_expressions=gradient_expressions,
            producers=current.producers,
            gradient_seeds=seeds,
            dependent_nodes=current.dependent_nodes,
            parameter_nodes=parameter_nodes,
            constant_nodes=constant_nodes,
            per_sample=per_sample,
            reversed_input=definition.reversed_input,
            joined_input=definition.joined_input,
        )
