"""
Expression family: one class per traced operation.
"""

from .base import BinaryExpression, Expression, UnaryExpression
from .arithmetic import (
    AddExpression,
    DivideExpression,
    DotExpression,
    MultiplyExpression,
    SubtractExpression,
)
from .convolution import ConvolveExpression, CrosscorrelateExpression
from .pooling import (
    AveragePoolExpression,
    CyclicPoolExpression,
    MaxPoolExpression,
    RandomPoolExpression,
)
from .reduction import (
    MeanExpression,
    NormExpression,
    ReductionExpression,
    StandardDeviationExpression,
    SumExpression,
    VarianceExpression,
)
from .functions import BinaryFunctionExpression, UnaryFunctionExpression
from .structural import (
    FlattenExpression,
    JoinExpression,
    TransposeExpression,
    UnflattenExpression,
    UnjoinExpression,
)
from .regularization import DropoutExpression, GradientClippingExpression

__all__ = [
    "Expression",
    "UnaryExpression",
    "BinaryExpression",
    "AddExpression",
    "SubtractExpression",
    "MultiplyExpression",
    "DivideExpression",
    "DotExpression",
    "ConvolveExpression",
    "CrosscorrelateExpression",
    "MaxPoolExpression",
    "AveragePoolExpression",
    "RandomPoolExpression",
    "CyclicPoolExpression",
    "ReductionExpression",
    "SumExpression",
    "MeanExpression",
    "VarianceExpression",
    "StandardDeviationExpression",
    "NormExpression",
    "UnaryFunctionExpression",
    "BinaryFunctionExpression",
    "JoinExpression",
    "UnjoinExpression",
    "FlattenExpression",
    "UnflattenExpression",
    "TransposeExpression",
    "DropoutExpression",
    "GradientClippingExpression",
]
