"""
Typed failures raised by the engine.

Everything raised while building or running a procedure derives from
`ProcedureError`; invalid matrix operations raise `MatrixError`.
"""

from __future__ import annotations


class ProcedureError(RuntimeError):
    """Base class for graph construction and evaluation failures."""


class MissingOperandError(ProcedureError):
    """An argument value or result gradient was not available when needed."""


class GraphIntegrityError(ProcedureError):
    """The traced graph cannot be turned into a usable procedure."""


class ReservationError(ProcedureError):
    """An expression was appended without holding the construction lock."""


class MatrixError(ValueError):
    """Invalid matrix operation (shape mismatch, bad parameter)."""
