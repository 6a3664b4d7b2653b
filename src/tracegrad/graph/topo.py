"""
Ordering of traced expressions.

The forward chain is the trace order itself; `validate_forward_order`
checks that it really is topological. The gradient chain is discovered
backwards from the nodes that receive gradients from outside the trace.
"""

from __future__ import annotations

from typing import Dict, Iterable, List, Mapping, Sequence, Set

from tracegrad.errors import GraphIntegrityError
from tracegrad.graph.expressions.base import Expression
from tracegrad.graph.node import Node


def producer_map(expressions: Iterable[Expression]) -> Dict[int, Expression]:
    """Map result node id -> the expression that writes it."""
    producers: Dict[int, Expression] = {}
    for expression in expressions:
        if expression.result.id in producers:
            raise GraphIntegrityError(
                f"Node `{expression.result.name}` is written by more than one expression."
            )
        producers[expression.result.id] = expression
    return producers


def validate_forward_order(expressions: Sequence[Expression]) -> None:
    """
    Every argument must be a leaf (input, constant, cross-step dependency)
    or the result of an expression that runs earlier in the chain.
    """
    position_of = {
        expression.result.id: position for position, expression in enumerate(expressions)
    }
    producer_map(expressions)
    for position, expression in enumerate(expressions):
        for node in expression.arguments:
            producer = position_of.get(node.id)
            if producer is not None and producer >= position:
                raise GraphIntegrityError(
                    f"{expression.describe()} reads `{node.name}` before it is computed."
                )


def build_gradient_path(
    seeds: Iterable[Node], producers: Mapping[int, Expression]
) -> List[Expression]:
    """
    Collect the expressions gradients flow through, in execution order.

    Nodes are discovered LIFO from `seeds`; a node's producer is recorded
    once and its differentiable arguments are pushed. Stop-gradient nodes end
    the walk. The discovered expressions run in reverse creation order so
    every consumer has contributed to a node before its producer runs.
    """
    stack: List[Node] = list(seeds)
    visited: Set[int] = set()
    found: Dict[int, Expression] = {}
    while stack:
        node = stack.pop()
        if node.id in visited or node.stop_gradient:
            continue
        visited.add(node.id)
        expression = producers.get(node.id)
        if expression is None:
            continue
        found[expression.expression_id] = expression
        stack.extend(expression.differentiable_arguments())
    return [found[expression_id] for expression_id in sorted(found, reverse=True)]
