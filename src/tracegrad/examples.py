"""
Reference definitions used by the tests and benchmarks.

Each class is a small, self-contained `ForwardDefinition`:

- `DenseDefinition`: one fully connected layer with an activation.
- `RecurrentDefinition`: tanh recurrent cell feeding its output forward.
- `ConvolutionDefinition`: crosscorrelation, max pooling and a dense head.
- `BatchStatisticsDefinition`: normalisation with aggregate mean/std.
"""

from __future__ import annotations

from typing import Dict, List, Optional

import numpy as np

from tracegrad.graph.definition import ForwardDefinition
from tracegrad.matrix.functions import UnaryFunction, UnaryFunctionType
from tracegrad.matrix.matrix import Matrix


def _rng(rng: Optional[np.random.Generator], seed: int) -> np.random.Generator:
    return rng if rng is not None else np.random.default_rng(seed)


class DenseDefinition(ForwardDefinition):
    def __init__(
        self,
        input_size: int,
        output_size: int,
        *,
        activation: str = "tanh",
        rng: Optional[np.random.Generator] = None,
    ) -> None:
        rng = _rng(rng, 0)
        self.input_size = input_size
        self.activation = UnaryFunction(activation)
        self.weight = Matrix.random(output_size, input_size, rng=rng, scale=0.5, name="weight")
        self.bias = Matrix.random(output_size, 1, rng=rng, scale=0.1, name="bias")
        self.input: Optional[Matrix] = None

    def get_input_matrices(self, reset_previous_input: bool) -> Dict[int, Matrix]:
        self.input = Matrix.zeros(self.input_size, 1, name="input")
        return {0: self.input}

    def get_forward_procedure(self) -> Dict[int, Matrix]:
        return {0: (self.weight @ self.input + self.bias).apply(self.activation)}

    def get_parameter_matrices(self) -> List[Matrix]:
        return [self.weight, self.bias]


class RecurrentDefinition(ForwardDefinition):
    """h_t = tanh(W x_t + U h_{t-1} + b); h_{-1} starts at zero."""

    def __init__(
        self,
        input_size: int,
        hidden_size: int,
        *,
        rng: Optional[np.random.Generator] = None,
        reversed_input: bool = False,
    ) -> None:
        rng = _rng(rng, 1)
        self.input_size = input_size
        self.hidden_size = hidden_size
        self.reversed_input = reversed_input
        self.input_weight = Matrix.random(
            hidden_size, input_size, rng=rng, scale=0.5, name="input_weight"
        )
        self.recurrent_weight = Matrix.random(
            hidden_size, hidden_size, rng=rng, scale=0.5, name="recurrent_weight"
        )
        self.bias = Matrix.random(hidden_size, 1, rng=rng, scale=0.1, name="bias")
        self.input: Optional[Matrix] = None
        self.previous_output: Optional[Matrix] = None

    def get_input_matrices(self, reset_previous_input: bool) -> Dict[int, Matrix]:
        if reset_previous_input or self.previous_output is None:
            self.previous_output = Matrix.zeros(self.hidden_size, 1, name="initial_state")
        self.input = Matrix.zeros(self.input_size, 1, name="input")
        return {0: self.input}

    def get_forward_procedure(self) -> Dict[int, Matrix]:
        hidden = (
            self.input_weight @ self.input
            + self.recurrent_weight @ self.previous_output
            + self.bias
        ).apply(UnaryFunction(UnaryFunctionType.TANH))
        self.previous_output = hidden
        return {0: hidden}

    def get_parameter_matrices(self) -> List[Matrix]:
        return [self.input_weight, self.recurrent_weight, self.bias]


class ConvolutionDefinition(ForwardDefinition):
    def __init__(
        self,
        image_size: int = 6,
        filter_size: int = 3,
        output_size: int = 2,
        *,
        rng: Optional[np.random.Generator] = None,
    ) -> None:
        rng = _rng(rng, 2)
        self.image_size = image_size
        self.filter = Matrix.random(filter_size, filter_size, rng=rng, scale=0.5, name="filter")
        pooled = (image_size - filter_size + 1) // 2
        self.weight = Matrix.random(
            output_size, pooled * pooled, rng=rng, scale=0.5, name="weight"
        )
        self.input: Optional[Matrix] = None

    def get_input_matrices(self, reset_previous_input: bool) -> Dict[int, Matrix]:
        self.input = Matrix.zeros(self.image_size, self.image_size, name="image")
        return {0: self.input}

    def get_forward_procedure(self) -> Dict[int, Matrix]:
        features = (
            self.input.crosscorrelate(self.filter)
            .apply(UnaryFunction(UnaryFunctionType.RELU))
            .max_pool(2, 2, stride=2)
            .flatten()
        )
        return {0: self.weight @ features}

    def get_parameter_matrices(self) -> List[Matrix]:
        return [self.filter, self.weight]


class BatchStatisticsDefinition(ForwardDefinition):
    """Normalise each feature with the mean and deviation over the whole batch."""

    def __init__(
        self, features: int, *, epsilon: float = 1e-5, rng: Optional[np.random.Generator] = None
    ) -> None:
        rng = _rng(rng, 3)
        self.features = features
        self.epsilon = epsilon
        self.gain = Matrix(1.0 + rng.normal(0.0, 0.1, size=(features, 1)), name="gain")
        self.shift = Matrix.random(features, 1, rng=rng, scale=0.1, name="shift")
        self.input: Optional[Matrix] = None

    def get_input_matrices(self, reset_previous_input: bool) -> Dict[int, Matrix]:
        self.input = Matrix.zeros(self.features, 1, name="input")
        return {0: self.input}

    def get_forward_procedure(self) -> Dict[int, Matrix]:
        mean = self.input.mean(aggregate=True)
        deviation = self.input.standard_deviation(aggregate=True)
        normalized = (self.input - mean) / (deviation + self.epsilon)
        return {0: normalized * self.gain + self.shift}

    def get_parameter_matrices(self) -> List[Matrix]:
        return [self.gain, self.shift]
