"""
tracegrad

Trace-based automatic differentiation with cross-step dependency discovery.
"""

from .errors import (
    GraphIntegrityError,
    MatrixError,
    MissingOperandError,
    ProcedureError,
    ReservationError,
)
from .matrix import BinaryFunction, BinaryFunctionType, Matrix, Sequence, UnaryFunction, UnaryFunctionType
from .graph import ForwardDefinition, Node, NodeRegister, ProcedureFactory
from .runtime import Procedure

__all__ = [
    "BinaryFunction",
    "BinaryFunctionType",
    "ForwardDefinition",
    "GraphIntegrityError",
    "Matrix",
    "MatrixError",
    "MissingOperandError",
    "Node",
    "NodeRegister",
    "Procedure",
    "ProcedureError",
    "ProcedureFactory",
    "ReservationError",
    "Sequence",
    "UnaryFunction",
    "UnaryFunctionType",
]
