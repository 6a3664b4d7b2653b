"""
Dropout and gradient clipping.
"""

from __future__ import annotations

from typing import Dict, Optional

import numpy as np

from tracegrad.graph.expressions.base import UnaryExpression
from tracegrad.graph.node import Node
from tracegrad.matrix.matrix import Matrix
from tracegrad.utils.config import config


class DropoutExpression(UnaryExpression):
    """
    Inverted dropout: entries are zeroed with `probability` and survivors are
    scaled by 1 / (1 - probability). The mask is drawn while the expression is
    active (training) or always for Monte Carlo dropout, and the same mask is
    applied to the gradient.
    """

    symbol = "DROPOUT"
    gradient_rules = ("+= {dr} * MASK",)

    def __init__(
        self,
        expression_id: int,
        argument1: Node,
        result: Node,
        probability: float,
        monte_carlo: bool = False,
        rng: Optional[np.random.Generator] = None,
    ) -> None:
        super().__init__(expression_id, argument1, result)
        self.probability = probability
        self.monte_carlo = monte_carlo
        self.rng = rng if rng is not None else np.random.default_rng(config.seed)

    def parameters(self) -> Dict[str, object]:
        return {"probability": self.probability, "monte_carlo": self.monte_carlo}

    def _mask(self, shape) -> np.ndarray:
        if self.probability >= 1.0:
            return np.zeros(shape)
        keep = self.rng.random(shape) >= self.probability
        return keep / (1.0 - self.probability)

    def compute(self, index: int, value: Matrix) -> Matrix:
        if not (self.active or self.monte_carlo) or self.probability == 0.0:
            self.state.delete(index)
            return value.copy()
        mask = self._mask(value.shape)
        self.state.save(index, mask)
        return Matrix(value.data * mask)

    def propagate(self, index: int, gradient: Matrix) -> None:
        if self.argument1.stop_gradient:
            return
        if self.state.has(index):
            gradient = Matrix(gradient.data * self.state.load(index))
        self.argument1.accumulate_gradient(index, gradient)


class GradientClippingExpression(UnaryExpression):
    """Identity forward; backward rescales the gradient to at most `threshold` L2 norm."""

    symbol = "GRADIENT_CLIPPING"
    gradient_rules = ("+= CLIP({dr}, threshold)",)

    def __init__(
        self, expression_id: int, argument1: Node, result: Node, threshold: float
    ) -> None:
        super().__init__(expression_id, argument1, result)
        self.threshold = threshold

    def parameters(self) -> Dict[str, object]:
        return {"threshold": self.threshold}

    def compute(self, index: int, value: Matrix) -> Matrix:
        return value.copy()

    def propagate(self, index: int, gradient: Matrix) -> None:
        if self.argument1.stop_gradient:
            return
        norm = float(np.sqrt(np.sum(gradient.data**2)))
        if norm > self.threshold:
            gradient = gradient.multiply(self.threshold / norm)
        self.argument1.accumulate_gradient(index, gradient)
