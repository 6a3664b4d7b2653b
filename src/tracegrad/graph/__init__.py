"""
Tracing layer: nodes, expressions and the procedure factory.
"""

from .builders import ExpressionLock, ProcedureFactory, TraceRecord
from .definition import ForwardDefinition
from .node import CARRY_INDEX, Node
from .register import NodeMetadata, NodeRegister
from .topo import build_gradient_path, producer_map, validate_forward_order

__all__ = [
    "CARRY_INDEX",
    "ExpressionLock",
    "ForwardDefinition",
    "Node",
    "NodeMetadata",
    "NodeRegister",
    "ProcedureFactory",
    "TraceRecord",
    "build_gradient_path",
    "producer_map",
    "validate_forward_order",
]
