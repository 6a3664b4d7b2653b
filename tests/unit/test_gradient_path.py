from __future__ import annotations

import pytest

from tracegrad import GraphIntegrityError, Matrix
from tracegrad.graph import NodeRegister, build_gradient_path, producer_map, validate_forward_order
from tracegrad.graph.expressions import (
    AddExpression,
    BinaryFunctionExpression,
    MultiplyExpression,
    UnaryFunctionExpression,
)
from tracegrad.matrix import BinaryFunction, UnaryFunction


def _build_diamond():
    """
    x -> a = tanh(x) -> b = a * a -> d = b + c
              \\-> c = sin(a) ----------/
    """
    register = NodeRegister()
    x, a, b, c, d = (register.define(Matrix.zeros(2), False, 0, i) for i in range(5))
    expressions = [
        UnaryFunctionExpression(0, x, a, UnaryFunction("tanh")),
        MultiplyExpression(1, a, a, b),
        UnaryFunctionExpression(2, a, c, UnaryFunction("sin")),
        AddExpression(3, b, c, d),
    ]
    return (x, a, b, c, d), expressions


def test_gradient_path_runs_consumers_before_producers() -> None:
    (x, a, b, c, d), expressions = _build_diamond()
    path = build_gradient_path([d], producer_map(expressions))
    assert [expression.expression_id for expression in path] == [3, 2, 1, 0]


def test_gradient_path_only_contains_reachable_expressions() -> None:
    (x, a, b, c, d), expressions = _build_diamond()
    path = build_gradient_path([b], producer_map(expressions))
    assert [expression.expression_id for expression in path] == [1, 0]


def test_stop_gradient_prunes_the_walk() -> None:
    (x, a, b, c, d), expressions = _build_diamond()
    c.set_stop_gradient()
    b.set_stop_gradient()
    path = build_gradient_path([d], producer_map(expressions))
    assert [expression.expression_id for expression in path] == [3]


def test_binary_function_second_argument_is_not_walked() -> None:
    register = NodeRegister()
    value, target, loss, label = (
        register.define(Matrix.zeros(2), False, 0, i) for i in range(4)
    )
    expressions = [
        UnaryFunctionExpression(0, label, target, UnaryFunction("sigmoid")),
        BinaryFunctionExpression(1, value, target, loss, BinaryFunction("mean_squared_error")),
    ]
    path = build_gradient_path([loss], producer_map(expressions))
    assert [expression.expression_id for expression in path] == [1]


def test_producer_map_rejects_double_writes() -> None:
    register = NodeRegister()
    x, y = (register.define(Matrix.zeros(2), False, 0, i) for i in range(2))
    expressions = [
        UnaryFunctionExpression(0, x, y, UnaryFunction("tanh")),
        UnaryFunctionExpression(1, x, y, UnaryFunction("sin")),
    ]
    with pytest.raises(GraphIntegrityError):
        producer_map(expressions)


def test_forward_order_validation() -> None:
    (x, a, b, c, d), expressions = _build_diamond()
    validate_forward_order(expressions)
    with pytest.raises(GraphIntegrityError):
        validate_forward_order(list(reversed(expressions)))
