from __future__ import annotations

import os
import random
from typing import Callable, Dict, List, Optional

import numpy as np
import pytest

from tracegrad import ForwardDefinition, Matrix, Procedure, ProcedureFactory, Sequence

DEFAULT_SEED = int(os.getenv("TRACEGRAD_SEED", "1234"))


def pytest_configure(config) -> None:  # pylint: disable=unused-argument
    random.seed(DEFAULT_SEED)
    np.random.seed(DEFAULT_SEED)

    try:
        import torch

        torch.manual_seed(DEFAULT_SEED)
    except ModuleNotFoundError:
        pass

    try:
        from jax import random as jrandom

        # initialise a default key for any tests that rely on jax.random
        jrandom.PRNGKey(DEFAULT_SEED)
    except ModuleNotFoundError:
        pass


class FunctionDefinition(ForwardDefinition):
    """Single-input definition wrapping `build(input, *parameters)`."""

    def __init__(
        self,
        build: Callable[..., Matrix],
        input_shape: tuple,
        parameters: Optional[List[Matrix]] = None,
    ) -> None:
        self.build = build
        self.input_shape = input_shape
        self.parameters = list(parameters or [])
        self.input: Optional[Matrix] = None

    def get_input_matrices(self, reset_previous_input: bool) -> Dict[int, Matrix]:
        self.input = Matrix.zeros(*self.input_shape, name="input")
        return {0: self.input}

    def get_forward_procedure(self) -> Dict[int, Matrix]:
        return {0: self.build(self.input, *self.parameters)}

    def get_parameter_matrices(self) -> List[Matrix]:
        return list(self.parameters)


def weighted_loss(procedure: Procedure, inputs: Sequence, output_gradients: Sequence) -> float:
    """sum over samples and entries of <output, output_gradient> after a fresh forward pass."""
    procedure.reset()
    outputs = procedure.calculate_expression(inputs)
    total = 0.0
    for key in outputs:
        for entry, value in outputs.get(key).items():
            total += float(np.sum(value.data * output_gradients.entry(key, entry).data))
    return total


def numeric_gradient(
    procedure: Procedure,
    inputs: Sequence,
    output_gradients: Sequence,
    matrix: Matrix,
    epsilon: float = 1e-6,
) -> np.ndarray:
    gradient = np.zeros(matrix.shape)
    for position in np.ndindex(*matrix.shape):
        original = matrix.data[position]
        matrix.data[position] = original + epsilon
        upper = weighted_loss(procedure, inputs, output_gradients)
        matrix.data[position] = original - epsilon
        lower = weighted_loss(procedure, inputs, output_gradients)
        matrix.data[position] = original
        gradient[position] = (upper - lower) / (2.0 * epsilon)
    return gradient


def random_sequence(rng: np.random.Generator, count: int, shape: tuple) -> Sequence:
    return Sequence.from_matrices(Matrix(rng.normal(size=shape)) for _ in range(count))


@pytest.fixture
def rng() -> np.random.Generator:
    return np.random.default_rng(DEFAULT_SEED)


@pytest.fixture
def factory() -> ProcedureFactory:
    return ProcedureFactory()


def compare_with_finite_differences(
    procedure: Procedure,
    parameters: List[Matrix],
    inputs: Sequence,
    rng: np.random.Generator,
    *,
    atol: float = 1e-5,
) -> None:
    """
    Run one backward pass over `inputs` and compare parameter and input
    gradients with central differences of the weighted output.
    """
    procedure.reset()
    outputs = procedure.calculate_expression(inputs)
    output_gradients = Sequence(
        {key: Matrix(rng.normal(size=outputs.entry(key).shape)) for key in outputs}
    )
    input_gradients = procedure.calculate_gradient(output_gradients)
    gradients = procedure.get_gradients()
    counts = {
        matrix: max(procedure.get_node(matrix).contributor_count(), 1) for matrix in parameters
    }

    for matrix in parameters:
        expected = numeric_gradient(procedure, inputs, output_gradients, matrix)
        actual = gradients[matrix].data * counts[matrix]
        np.testing.assert_allclose(actual, expected, atol=atol, rtol=1e-4)

    for key in inputs:
        for entry, matrix in inputs.get(key).items():
            expected = numeric_gradient(procedure, inputs, output_gradients, matrix)
            np.testing.assert_allclose(
                input_gradients.entry(key, entry).data, expected, atol=atol, rtol=1e-4
            )


@pytest.fixture
def gradient_check(rng: np.random.Generator):
    def check(procedure: Procedure, parameters: List[Matrix], inputs: Sequence, **kwargs) -> None:
        compare_with_finite_differences(procedure, parameters, inputs, rng, **kwargs)

    return check


@pytest.fixture
def check_gradients(rng: np.random.Generator, factory: ProcedureFactory):
    """Trace `build(input, *parameters)` and check its gradients over random samples."""

    def check(
        build: Callable[..., Matrix],
        input_shape: tuple,
        parameters: Optional[List[Matrix]] = None,
        *,
        samples: int = 1,
        atol: float = 1e-5,
    ) -> Procedure:
        definition = FunctionDefinition(build, input_shape, parameters)
        procedure = factory.get_procedure(definition)
        inputs = random_sequence(rng, samples, input_shape)
        compare_with_finite_differences(procedure, definition.parameters, inputs, rng, atol=atol)
        return procedure

    return check
