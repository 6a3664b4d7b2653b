"""
Elementwise functions applied through `Matrix.apply` / `Matrix.apply_binary`.

Each function pairs a forward rule with the derivative used by the
expression that wraps it. Unary derivatives receive both the argument and
the forward result so that rules like sigmoid or tanh can reuse the output.
Binary functions treat their second argument as a constant target and only
differentiate with respect to the first.
"""

from __future__ import annotations

import math
from enum import Enum
from typing import Callable, Optional, Tuple, Union

import numpy as np

from tracegrad.errors import MatrixError

ArrayFn = Callable[..., np.ndarray]

_SELU_LAMBDA = 1.0507009873554805
_SELU_ALPHA = 1.6732632423543772
_GELU_SCALE = math.sqrt(2.0 / math.pi)


class UnaryFunctionType(Enum):
    ABS = "ABS"
    COS = "COS"
    COSH = "COSH"
    EXP = "EXP"
    LOG = "LOG"
    LOG10 = "LOG10"
    SGN = "SGN"
    SIN = "SIN"
    SINH = "SINH"
    SQRT = "SQRT"
    CBRT = "CBRT"
    MULINV = "MULINV"
    TAN = "TAN"
    TANH = "TANH"
    LINEAR = "LINEAR"
    SIGMOID = "SIGMOID"
    SWISH = "SWISH"
    HARDSIGMOID = "HARDSIGMOID"
    BIPOLARSIGMOID = "BIPOLARSIGMOID"
    HARDTANH = "HARDTANH"
    SOFTPLUS = "SOFTPLUS"
    SOFTSIGN = "SOFTSIGN"
    RELU = "RELU"
    ELU = "ELU"
    SELU = "SELU"
    GELU = "GELU"
    SOFTMAX = "SOFTMAX"
    GAUSSIAN = "GAUSSIAN"
    SINACT = "SINACT"
    LOGIT = "LOGIT"
    CUSTOM = "CUSTOM"


class BinaryFunctionType(Enum):
    MEAN_SQUARED_ERROR = "MEAN_SQUARED_ERROR"
    MEAN_SQUARED_LOGARITHMIC_ERROR = "MEAN_SQUARED_LOGARITHMIC_ERROR"
    MEAN_ABSOLUTE_ERROR = "MEAN_ABSOLUTE_ERROR"
    MEAN_ABSOLUTE_PERCENTAGE_ERROR = "MEAN_ABSOLUTE_PERCENTAGE_ERROR"
    CROSS_ENTROPY = "CROSS_ENTROPY"
    KULLBACK_LEIBLER = "KULLBACK_LEIBLER"
    NEGATIVE_LOG_LIKELIHOOD = "NEGATIVE_LOG_LIKELIHOOD"
    POISSON = "POISSON"
    HINGE = "HINGE"
    SQUARED_HINGE = "SQUARED_HINGE"
    HUBER = "HUBER"
    DIRECT_GRADIENT = "DIRECT_GRADIENT"
    POLICY_GRADIENT = "POLICY_GRADIENT"
    POW = "POW"
    MAX = "MAX"
    MIN = "MIN"
    CUSTOM = "CUSTOM"


def _sigmoid(x: np.ndarray) -> np.ndarray:
    return 1.0 / (1.0 + np.exp(-x))


def _softmax(x: np.ndarray) -> np.ndarray:
    shifted = np.exp(x - x.max(axis=0, keepdims=True))
    return shifted / shifted.sum(axis=0, keepdims=True)


def _gelu(x: np.ndarray) -> np.ndarray:
    return 0.5 * x * (1.0 + np.tanh(_GELU_SCALE * (x + 0.044715 * x**3)))


def _gelu_derivative(x: np.ndarray) -> np.ndarray:
    t = np.tanh(_GELU_SCALE * (x + 0.044715 * x**3))
    return 0.5 * (1.0 + t) + 0.5 * x * (1.0 - t**2) * _GELU_SCALE * (
        1.0 + 3.0 * 0.044715 * x**2
    )


def _unary_rules(
    function_type: UnaryFunctionType, alpha: float
) -> Tuple[ArrayFn, ArrayFn]:
    t = UnaryFunctionType
    if function_type == t.ABS:
        return np.abs, lambda x, y: np.sign(x)
    if function_type == t.COS:
        return np.cos, lambda x, y: -np.sin(x)
    if function_type == t.COSH:
        return np.cosh, lambda x, y: np.sinh(x)
    if function_type == t.EXP:
        return np.exp, lambda x, y: y
    if function_type == t.LOG:
        return np.log, lambda x, y: 1.0 / x
    if function_type == t.LOG10:
        return np.log10, lambda x, y: 1.0 / (x * math.log(10.0))
    if function_type == t.SGN:
        return np.sign, lambda x, y: np.zeros_like(x)
    if function_type in (t.SIN, t.SINACT):
        return np.sin, lambda x, y: np.cos(x)
    if function_type == t.SINH:
        return np.sinh, lambda x, y: np.cosh(x)
    if function_type == t.SQRT:
        return np.sqrt, lambda x, y: 0.5 / y
    if function_type == t.CBRT:
        return np.cbrt, lambda x, y: 1.0 / (3.0 * y**2)
    if function_type == t.MULINV:
        return lambda x: 1.0 / x, lambda x, y: -1.0 / x**2
    if function_type == t.TAN:
        return np.tan, lambda x, y: 1.0 + y**2
    if function_type == t.TANH:
        return np.tanh, lambda x, y: 1.0 - y**2
    if function_type == t.LINEAR:
        return lambda x: x.copy(), lambda x, y: np.ones_like(x)
    if function_type == t.SIGMOID:
        return _sigmoid, lambda x, y: y * (1.0 - y)
    if function_type == t.SWISH:
        def swish_derivative(x: np.ndarray, y: np.ndarray) -> np.ndarray:
            s = _sigmoid(alpha * x)
            return s + alpha * x * s * (1.0 - s)

        return lambda x: x * _sigmoid(alpha * x), swish_derivative
    if function_type == t.HARDSIGMOID:
        return (
            lambda x: np.clip(0.2 * x + 0.5, 0.0, 1.0),
            lambda x, y: np.where(np.abs(x) < 2.5, 0.2, 0.0),
        )
    if function_type == t.BIPOLARSIGMOID:
        return (
            lambda x: (1.0 - np.exp(-x)) / (1.0 + np.exp(-x)),
            lambda x, y: 0.5 * (1.0 - y**2),
        )
    if function_type == t.HARDTANH:
        return (
            lambda x: np.clip(x, -1.0, 1.0),
            lambda x, y: np.where(np.abs(x) < 1.0, 1.0, 0.0),
        )
    if function_type == t.SOFTPLUS:
        return lambda x: np.log1p(np.exp(x)), lambda x, y: _sigmoid(x)
    if function_type == t.SOFTSIGN:
        return (
            lambda x: x / (1.0 + np.abs(x)),
            lambda x, y: 1.0 / (1.0 + np.abs(x)) ** 2,
        )
    if function_type == t.RELU:
        return (
            lambda x: np.where(x > 0.0, x, alpha * x),
            lambda x, y: np.where(x > 0.0, 1.0, alpha),
        )
    if function_type == t.ELU:
        return (
            lambda x: np.where(x > 0.0, x, alpha * (np.exp(x) - 1.0)),
            lambda x, y: np.where(x > 0.0, 1.0, y + alpha),
        )
    if function_type == t.SELU:
        return (
            lambda x: _SELU_LAMBDA * np.where(x > 0.0, x, _SELU_ALPHA * (np.exp(x) - 1.0)),
            lambda x, y: _SELU_LAMBDA * np.where(x > 0.0, 1.0, _SELU_ALPHA * np.exp(x)),
        )
    if function_type == t.GELU:
        return _gelu, lambda x, y: _gelu_derivative(x)
    if function_type == t.SOFTMAX:
        # Jacobian product is handled by UnaryFunction.gradient.
        return _softmax, lambda x, y: np.ones_like(x)
    if function_type == t.GAUSSIAN:
        return lambda x: np.exp(-(x**2)), lambda x, y: -2.0 * x * y
    if function_type == t.LOGIT:
        return lambda x: np.log(x / (1.0 - x)), lambda x, y: 1.0 / (x * (1.0 - x))
    raise MatrixError(f"Unsupported unary function `{function_type.value}`.")


def _binary_rules(
    function_type: BinaryFunctionType, alpha: float
) -> Tuple[ArrayFn, ArrayFn]:
    t = BinaryFunctionType
    if function_type == t.MEAN_SQUARED_ERROR:
        return lambda x, c: 0.5 * (x - c) ** 2, lambda x, c: x - c
    if function_type == t.MEAN_SQUARED_LOGARITHMIC_ERROR:
        return (
            lambda x, c: (np.log(c + 1.0) - np.log(x + 1.0)) ** 2,
            lambda x, c: -2.0 * (np.log(c + 1.0) - np.log(x + 1.0)) / (x + 1.0),
        )
    if function_type == t.MEAN_ABSOLUTE_ERROR:
        return lambda x, c: np.abs(x - c), lambda x, c: np.sign(x - c)
    if function_type == t.MEAN_ABSOLUTE_PERCENTAGE_ERROR:
        return (
            lambda x, c: 100.0 * np.abs((x - c) / c),
            lambda x, c: 100.0 * np.sign(x - c) / np.abs(c),
        )
    if function_type == t.CROSS_ENTROPY:
        return lambda x, c: -(c * np.log(x)), lambda x, c: -(c / x)
    if function_type == t.KULLBACK_LEIBLER:
        return (
            lambda x, c: c * np.log(c) - c * np.log(x),
            lambda x, c: -(c / x),
        )
    if function_type == t.NEGATIVE_LOG_LIKELIHOOD:
        return lambda x, c: -np.log(x), lambda x, c: -1.0 / x
    if function_type == t.POISSON:
        return lambda x, c: x - c * np.log(x), lambda x, c: 1.0 - c / x
    if function_type == t.HINGE:
        return (
            lambda x, c: np.maximum(alpha - c * x, 0.0),
            lambda x, c: np.where(alpha - c * x <= 0.0, 0.0, -c),
        )
    if function_type == t.SQUARED_HINGE:
        return (
            lambda x, c: np.maximum(1.0 - c * x, 0.0) ** 2,
            lambda x, c: np.where(1.0 - c * x <= 0.0, 0.0, -2.0 * c * (1.0 - c * x)),
        )
    if function_type == t.HUBER:
        def huber(x: np.ndarray, c: np.ndarray) -> np.ndarray:
            diff = np.abs(x - c)
            return np.where(diff <= alpha, 0.5 * diff**2, alpha * diff - 0.5 * alpha**2)

        return huber, lambda x, c: np.where(
            np.abs(x - c) <= alpha, x - c, alpha * np.sign(x - c)
        )
    if function_type == t.DIRECT_GRADIENT:
        return lambda x, c: np.zeros_like(x * c), lambda x, c: c * np.ones_like(x)
    if function_type == t.POLICY_GRADIENT:
        return lambda x, c: np.zeros_like(x * c), lambda x, c: -np.log(x) * c
    if function_type == t.POW:
        return lambda x, c: np.power(x, c), lambda x, c: c * np.power(x, c - 1.0)
    if function_type == t.MAX:
        return np.maximum, lambda x, c: np.where(x >= c, 1.0, 0.0)
    if function_type == t.MIN:
        return np.minimum, lambda x, c: np.where(x <= c, 1.0, 0.0)
    raise MatrixError(f"Unsupported binary function `{function_type.value}`.")


class UnaryFunction:
    """
    Unary elementwise function with its derivative.

    `alpha` parameterises RELU (leak), ELU and SWISH. A CUSTOM function
    takes explicit `function(x)` and `derivative(x, y)` callables.
    """

    _DEFAULT_ALPHA = {
        UnaryFunctionType.RELU: 0.0,
        UnaryFunctionType.ELU: 1.0,
        UnaryFunctionType.SWISH: 1.0,
    }

    def __init__(
        self,
        function_type: Union[UnaryFunctionType, str],
        alpha: Optional[float] = None,
        *,
        function: Optional[ArrayFn] = None,
        derivative: Optional[ArrayFn] = None,
    ) -> None:
        if isinstance(function_type, str):
            function_type = UnaryFunctionType[function_type.upper()]
        self.function_type = function_type
        self.alpha = alpha if alpha is not None else self._DEFAULT_ALPHA.get(function_type, 0.0)
        if function_type == UnaryFunctionType.CUSTOM:
            if function is None or derivative is None:
                raise MatrixError("Custom unary function requires function and derivative.")
            self._function, self._derivative = function, derivative
        else:
            self._function, self._derivative = _unary_rules(function_type, self.alpha)

    @property
    def name(self) -> str:
        return self.function_type.value

    def apply(self, values: np.ndarray) -> np.ndarray:
        return np.asarray(self._function(values), dtype=np.float64)

    def gradient(
        self, values: np.ndarray, result: np.ndarray, output_gradient: np.ndarray
    ) -> np.ndarray:
        """Chain `output_gradient` through the function at `values`."""
        if self.function_type == UnaryFunctionType.SOFTMAX:
            weighted = (output_gradient * result).sum(axis=0, keepdims=True)
            return result * (output_gradient - weighted)
        return output_gradient * self._derivative(values, result)

    def __repr__(self) -> str:
        return f"UnaryFunction({self.name}, alpha={self.alpha})"


class BinaryFunction:
    """
    Binary elementwise function `f(value, constant)`.

    `alpha` is the margin for HINGE and the delta for HUBER.
    """

    def __init__(
        self,
        function_type: Union[BinaryFunctionType, str],
        alpha: Optional[float] = None,
        *,
        function: Optional[ArrayFn] = None,
        derivative: Optional[ArrayFn] = None,
    ) -> None:
        if isinstance(function_type, str):
            function_type = BinaryFunctionType[function_type.upper()]
        self.function_type = function_type
        self.alpha = alpha if alpha is not None else 1.0
        if function_type == BinaryFunctionType.CUSTOM:
            if function is None or derivative is None:
                raise MatrixError("Custom binary function requires function and derivative.")
            self._function, self._derivative = function, derivative
        else:
            self._function, self._derivative = _binary_rules(function_type, self.alpha)

    @property
    def name(self) -> str:
        return self.function_type.value

    def apply(self, values: np.ndarray, constants: np.ndarray) -> np.ndarray:
        return np.asarray(self._function(values, constants), dtype=np.float64)

    def gradient(
        self, values: np.ndarray, constants: np.ndarray, output_gradient: np.ndarray
    ) -> np.ndarray:
        return output_gradient * self._derivative(values, constants)

    def __repr__(self) -> str:
        return f"BinaryFunction({self.name}, alpha={self.alpha})"
