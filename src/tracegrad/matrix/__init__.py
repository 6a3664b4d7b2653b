"""
Matrix capability used by the engine.

- `Matrix`: numpy-backed, traceable matrix (see `matrix.py`)
- `UnaryFunction` / `BinaryFunction`: elementwise functions with derivatives
- `Sequence`: ordered samples fed to a procedure
- `kernels`: convolution and pooling kernels
"""

from .functions import BinaryFunction, BinaryFunctionType, UnaryFunction, UnaryFunctionType
from .matrix import Matrix, as_matrix
from .sequence import Sample, Sequence
from . import kernels

__all__ = [
    "Matrix",
    "as_matrix",
    "UnaryFunction",
    "UnaryFunctionType",
    "BinaryFunction",
    "BinaryFunctionType",
    "Sample",
    "Sequence",
    "kernels",
]
