"""
Numpy-backed matrix capability consumed by the engine.

A `Matrix` carries a unique allocation handle and, while a definition is
being traced, a reference to the `ProcedureFactory` that records every
operation performed on it. Without a factory every operation is a plain
eager computation. Matrices compare by identity so they can key the
engine's registries.
"""

from __future__ import annotations

import itertools
from typing import TYPE_CHECKING, Any, Callable, Optional, Tuple, Union

import numpy as np

from tracegrad.errors import GraphIntegrityError, MatrixError
from tracegrad.matrix import kernels
from tracegrad.matrix.functions import BinaryFunction, BinaryFunctionType, UnaryFunction
from tracegrad.utils.config import config

if TYPE_CHECKING:  # pragma: no cover
    from tracegrad.graph.builders import ProcedureFactory

Operand = Union["Matrix", float, int]

_handles = itertools.count()
_pool_rng = np.random.default_rng(config.seed)


class Matrix:
    __array_ufunc__ = None

    def __init__(
        self,
        values: Any,
        *,
        scalar: bool = False,
        name: Optional[str] = None,
    ) -> None:
        data = np.array(values, dtype=np.float64)
        if data.ndim == 0:
            data = data.reshape(1, 1)
            scalar = True
        elif data.ndim == 1:
            data = data.reshape(-1, 1)
        elif data.ndim != 2:
            raise MatrixError(f"Matrix values must be at most 2-D, got shape {data.shape}.")
        if scalar and data.shape != (1, 1):
            raise MatrixError(f"Scalar matrix must be 1x1, got shape {data.shape}.")
        self._data = data
        self._scalar = scalar
        self.name = name
        self.handle = next(_handles)
        self._factory: Optional["ProcedureFactory"] = None

    @classmethod
    def _wrap(cls, data: np.ndarray, scalar: bool = False) -> "Matrix":
        matrix = cls.__new__(cls)
        matrix._data = data
        matrix._scalar = scalar
        matrix.name = None
        matrix.handle = next(_handles)
        matrix._factory = None
        return matrix

    @classmethod
    def zeros(cls, rows: int, columns: int = 1, *, name: Optional[str] = None) -> "Matrix":
        return cls(np.zeros((rows, columns)), name=name)

    @classmethod
    def ones(cls, rows: int, columns: int = 1, *, name: Optional[str] = None) -> "Matrix":
        return cls(np.ones((rows, columns)), name=name)

    @classmethod
    def random(
        cls,
        rows: int,
        columns: int = 1,
        *,
        rng: Optional[np.random.Generator] = None,
        scale: float = 1.0,
        name: Optional[str] = None,
    ) -> "Matrix":
        rng = rng if rng is not None else np.random.default_rng(config.seed)
        return cls(rng.normal(0.0, scale, size=(rows, columns)), name=name)

    @classmethod
    def scalar(cls, value: float, *, name: Optional[str] = None) -> "Matrix":
        return cls(value, scalar=True, name=name)

    # ------------------------------------------------------------------ queries

    @property
    def rows(self) -> int:
        return self._data.shape[0]

    @property
    def columns(self) -> int:
        return self._data.shape[1]

    @property
    def depth(self) -> int:
        return 1

    @property
    def shape(self) -> Tuple[int, int]:
        return self._data.shape

    @property
    def size(self) -> int:
        return self._data.size

    @property
    def is_scalar(self) -> bool:
        return self._scalar

    @property
    def data(self) -> np.ndarray:
        return self._data

    def to_numpy(self) -> np.ndarray:
        return self._data.copy()

    def copy(self) -> "Matrix":
        return Matrix._wrap(self._data.copy(), self._scalar)

    def new_matrix(self) -> "Matrix":
        """Zero matrix of the same shape."""
        return Matrix._wrap(np.zeros_like(self._data), self._scalar)

    def sum_value(self) -> float:
        return float(self._data.sum())

    def set_values(self, values: Any) -> None:
        """Overwrite entries in place (used by optimizers on parameters)."""
        data = np.asarray(values, dtype=np.float64).reshape(self._data.shape)
        self._data[...] = data

    def __repr__(self) -> str:
        label = f" {self.name}" if self.name else ""
        return f"Matrix{label}{self.shape}"

    # ------------------------------------------------------------------ tracing

    @property
    def factory(self) -> Optional["ProcedureFactory"]:
        return self._factory

    def set_factory(self, factory: Optional["ProcedureFactory"]) -> None:
        self._factory = factory

    def remove_factory(self) -> None:
        self._factory = None

    def _synchronize_factory(self, *others: "Matrix") -> Optional["ProcedureFactory"]:
        factory = self._factory
        for other in others:
            if other._factory is None:
                continue
            if factory is None:
                factory = other._factory
            elif other._factory is not factory:
                raise GraphIntegrityError(
                    "Operands are traced by different procedure factories."
                )
        return factory

    def _traced(
        self,
        operation: str,
        others: Tuple["Matrix", ...],
        compute: Callable[[], np.ndarray],
        *,
        scalar: bool = False,
        **parameters: Any,
    ) -> "Matrix":
        factory = self._synchronize_factory(*others)
        if factory is None:
            return Matrix._wrap(compute(), scalar)
        lock = factory.start_expression(self)
        result = Matrix._wrap(compute(), scalar)
        result.set_factory(factory)
        create = getattr(factory, f"create_{operation}_expression")
        create(lock, self, *others, result, **parameters)
        return result

    # ---------------------------------------------------------------- arithmetic

    def _check_elementwise(self, other: "Matrix", operation: str) -> None:
        if self.shape == other.shape or self._scalar or other._scalar:
            return
        raise MatrixError(
            f"Cannot {operation} matrices of shape {self.shape} and {other.shape}."
        )

    def add(self, other: Operand) -> "Matrix":
        other = as_matrix(other)
        self._check_elementwise(other, "add")
        return self._traced(
            "add", (other,), lambda: self._data + other._data,
            scalar=self._scalar and other._scalar,
        )

    def subtract(self, other: Operand) -> "Matrix":
        other = as_matrix(other)
        self._check_elementwise(other, "subtract")
        return self._traced(
            "subtract", (other,), lambda: self._data - other._data,
            scalar=self._scalar and other._scalar,
        )

    def multiply(self, other: Operand) -> "Matrix":
        other = as_matrix(other)
        self._check_elementwise(other, "multiply")
        return self._traced(
            "multiply", (other,), lambda: self._data * other._data,
            scalar=self._scalar and other._scalar,
        )

    def divide(self, other: Operand) -> "Matrix":
        other = as_matrix(other)
        self._check_elementwise(other, "divide")
        return self._traced(
            "divide", (other,), lambda: self._data / other._data,
            scalar=self._scalar and other._scalar,
        )

    def dot(self, other: "Matrix") -> "Matrix":
        if self.columns != other.rows:
            raise MatrixError(
                f"Cannot dot matrices of shape {self.shape} and {other.shape}."
            )
        return self._traced("dot", (other,), lambda: self._data @ other._data)

    def power(self, exponent: Operand) -> "Matrix":
        return self.apply_binary(as_matrix(exponent), BinaryFunction(BinaryFunctionType.POW))

    def transpose(self) -> "Matrix":
        return self._traced("transpose", (), lambda: self._data.T.copy(), scalar=self._scalar)

    __add__ = add
    __sub__ = subtract
    __mul__ = multiply
    __truediv__ = divide
    __matmul__ = dot
    __pow__ = power

    def __radd__(self, other: Operand) -> "Matrix":
        return as_matrix(other).add(self)

    def __rsub__(self, other: Operand) -> "Matrix":
        return as_matrix(other).subtract(self)

    def __rmul__(self, other: Operand) -> "Matrix":
        return as_matrix(other).multiply(self)

    def __rtruediv__(self, other: Operand) -> "Matrix":
        return as_matrix(other).divide(self)

    def __neg__(self) -> "Matrix":
        return self.multiply(-1.0)

    # ------------------------------------------------------------- convolution

    def convolve(self, filter_matrix: "Matrix", stride: int = 1, dilation: int = 1) -> "Matrix":
        return self._traced(
            "convolve", (filter_matrix,),
            lambda: kernels.convolve(self._data, filter_matrix._data, stride, dilation),
            stride=stride, dilation=dilation,
        )

    def crosscorrelate(
        self, filter_matrix: "Matrix", stride: int = 1, dilation: int = 1
    ) -> "Matrix":
        return self._traced(
            "crosscorrelate", (filter_matrix,),
            lambda: kernels.crosscorrelate(self._data, filter_matrix._data, stride, dilation),
            stride=stride, dilation=dilation,
        )

    # ----------------------------------------------------------------- pooling

    def max_pool(self, filter_rows: int = 2, filter_columns: int = 2, stride: int = 1) -> "Matrix":
        return self._traced(
            "max_pool", (),
            lambda: kernels.max_pool(self._data, filter_rows, filter_columns, stride)[0],
            filter_rows=filter_rows, filter_columns=filter_columns, stride=stride,
        )

    def average_pool(
        self, filter_rows: int = 2, filter_columns: int = 2, stride: int = 1
    ) -> "Matrix":
        return self._traced(
            "average_pool", (),
            lambda: kernels.average_pool(self._data, filter_rows, filter_columns, stride),
            filter_rows=filter_rows, filter_columns=filter_columns, stride=stride,
        )

    def random_pool(
        self, filter_rows: int = 2, filter_columns: int = 2, stride: int = 1
    ) -> "Matrix":
        return self._traced(
            "random_pool", (),
            lambda: kernels.random_pool(
                self._data, filter_rows, filter_columns, stride, _pool_rng
            )[0],
            filter_rows=filter_rows, filter_columns=filter_columns, stride=stride,
        )

    def cyclic_pool(
        self, filter_rows: int = 2, filter_columns: int = 2, stride: int = 1
    ) -> "Matrix":
        return self._traced(
            "cyclic_pool", (),
            lambda: kernels.cyclic_pool(self._data, filter_rows, filter_columns, stride)[0],
            filter_rows=filter_rows, filter_columns=filter_columns, stride=stride,
        )

    # -------------------------------------------------------------- reductions
    #
    # Per-sample reductions collapse the matrix into a scalar. Aggregate
    # reductions combine matrices elementwise across samples; traced on a
    # single sample they reduce over a set of one.

    def sum(self, aggregate: bool = False) -> "Matrix":
        if aggregate:
            return self._traced("sum", (), lambda: self._data.copy(), aggregate=True,
                                scalar=self._scalar)
        return self._traced("sum", (), lambda: np.array([[self._data.sum()]]),
                            scalar=True, aggregate=False)

    def mean(self, aggregate: bool = False) -> "Matrix":
        if aggregate:
            return self._traced("mean", (), lambda: self._data.copy(), aggregate=True,
                                scalar=self._scalar)
        return self._traced("mean", (), lambda: np.array([[self._data.mean()]]),
                            scalar=True, aggregate=False)

    def variance(self, aggregate: bool = False) -> "Matrix":
        if aggregate:
            return self._traced("variance", (), lambda: np.zeros_like(self._data),
                                aggregate=True, scalar=self._scalar)
        return self._traced("variance", (), lambda: np.array([[self._data.var()]]),
                            scalar=True, aggregate=False)

    def standard_deviation(self, aggregate: bool = False) -> "Matrix":
        if aggregate:
            return self._traced("standard_deviation", (), lambda: np.zeros_like(self._data),
                                aggregate=True, scalar=self._scalar)
        return self._traced("standard_deviation", (), lambda: np.array([[self._data.std()]]),
                            scalar=True, aggregate=False)

    def norm(self, p: float = 2.0, aggregate: bool = False) -> "Matrix":
        if p < 1:
            raise MatrixError(f"Norm power must be at least 1, got {p}.")
        if aggregate:
            return self._traced("norm", (), lambda: np.abs(self._data),
                                aggregate=True, p=p, scalar=self._scalar)
        return self._traced(
            "norm", (), lambda: np.array([[np.sum(np.abs(self._data) ** p) ** (1.0 / p)]]),
            scalar=True, aggregate=False, p=p,
        )

    # --------------------------------------------------------------- functions

    def apply(self, function: UnaryFunction) -> "Matrix":
        return self._traced(
            "unary_function", (), lambda: function.apply(self._data),
            scalar=self._scalar, function=function,
        )

    def apply_binary(self, other: Operand, function: BinaryFunction) -> "Matrix":
        other = as_matrix(other)
        self._check_elementwise(other, "apply binary function to")
        return self._traced(
            "binary_function", (other,), lambda: function.apply(self._data, other._data),
            scalar=self._scalar and other._scalar, function=function,
        )

    # -------------------------------------------------------------- structural

    def join(self, other: "Matrix", vertical: bool = True) -> "Matrix":
        if vertical and self.columns != other.columns:
            raise MatrixError(f"Cannot join {self.shape} and {other.shape} vertically.")
        if not vertical and self.rows != other.rows:
            raise MatrixError(f"Cannot join {self.shape} and {other.shape} horizontally.")
        stack = np.vstack if vertical else np.hstack
        return self._traced(
            "join", (other,), lambda: stack([self._data, other._data]), vertical=vertical
        )

    def unjoin(self, row: int, column: int, rows: int, columns: int) -> "Matrix":
        if row < 0 or column < 0 or row + rows > self.rows or column + columns > self.columns:
            raise MatrixError(
                f"Sub-matrix ({row}, {column}, {rows}, {columns}) exceeds shape {self.shape}."
            )
        return self._traced(
            "unjoin", (),
            lambda: self._data[row : row + rows, column : column + columns].copy(),
            row=row, column=column, rows=rows, columns=columns,
        )

    def flatten(self) -> "Matrix":
        return self._traced("flatten", (), lambda: self._data.reshape(-1, 1).copy())

    def unflatten(self, rows: int, columns: int) -> "Matrix":
        if rows * columns != self.size:
            raise MatrixError(f"Cannot unflatten {self.shape} into ({rows}, {columns}).")
        return self._traced(
            "unflatten", (), lambda: self._data.reshape(rows, columns).copy(),
            rows=rows, columns=columns,
        )

    # ---------------------------------------------------------- regularization

    def dropout(self, probability: float, monte_carlo: bool = False) -> "Matrix":
        if not 0.0 <= probability <= 1.0:
            raise MatrixError(f"Dropout probability must be in [0, 1], got {probability}.")
        return self._traced(
            "dropout", (), lambda: self._data.copy(), scalar=self._scalar,
            probability=probability, monte_carlo=monte_carlo,
        )

    def gradient_clip(self, threshold: float) -> "Matrix":
        if threshold <= 0.0:
            raise MatrixError(f"Gradient clipping threshold must be positive, got {threshold}.")
        return self._traced(
            "gradient_clipping", (), lambda: self._data.copy(), scalar=self._scalar,
            threshold=threshold,
        )


def as_matrix(value: Operand) -> Matrix:
    if isinstance(value, Matrix):
        return value
    return Matrix.scalar(float(value))
