from __future__ import annotations

import numpy as np
import pytest

from tracegrad.matrix import BinaryFunction, Matrix, UnaryFunction


def _parameter(shape, seed: int, *, positive: bool = False) -> Matrix:
    values = np.random.default_rng(seed).normal(size=shape)
    if positive:
        values = np.abs(values) + 0.5
    return Matrix(values, name=f"w{seed}")


ELEMENTWISE = {
    "add": lambda x, w: x + w,
    "subtract": lambda x, w: w - x,
    "multiply": lambda x, w: x * w,
    "divide": lambda x, w: x / w,
    "power": lambda x, w: (x * w) ** 2,
    "sigmoid": lambda x, w: (x * w).apply(UnaryFunction("sigmoid")),
    "tanh": lambda x, w: (x + w).apply(UnaryFunction("tanh")),
    "transpose": lambda x, w: (x * w).transpose(),
    "flatten": lambda x, w: (x * w).flatten(),
    "unflatten": lambda x, w: (x * w).flatten().unflatten(2, 3),
    "unjoin": lambda x, w: (x - w).unjoin(1, 0, 2, 2),
}


@pytest.mark.parametrize("name", sorted(ELEMENTWISE))
def test_elementwise_expression_gradients(name: str, check_gradients) -> None:
    check_gradients(ELEMENTWISE[name], (3, 2), [_parameter((3, 2), 1, positive=True)])


def test_dot_gradients_over_several_samples(check_gradients) -> None:
    check_gradients(lambda x, w: w @ x, (3, 1), [_parameter((2, 3), 2)], samples=3)


def test_scalar_parameter_receives_summed_gradient(check_gradients) -> None:
    check_gradients(lambda x, s: x * s + s, (3, 2), [Matrix.scalar(0.7, name="s")])


def test_join_gradients(check_gradients) -> None:
    check_gradients(lambda x, w: x.join(w), (2, 3), [_parameter((1, 3), 3)])
    check_gradients(lambda x, w: x.join(w, vertical=False), (2, 3), [_parameter((2, 2), 4)])


@pytest.mark.parametrize("stride,dilation", [(1, 1), (2, 1), (1, 2)])
def test_crosscorrelate_gradients(stride: int, dilation: int, check_gradients) -> None:
    check_gradients(
        lambda x, f: x.crosscorrelate(f, stride, dilation), (6, 6), [_parameter((2, 2), 5)]
    )


def test_convolve_gradients(check_gradients) -> None:
    check_gradients(lambda x, f: x.convolve(f), (5, 4), [_parameter((3, 2), 6)])


@pytest.mark.parametrize("pool", ["max_pool", "average_pool", "cyclic_pool"])
def test_pool_gradients(pool: str, check_gradients) -> None:
    def build(x, w):
        return getattr(x * w, pool)(2, 2, 2)

    check_gradients(build, (4, 4), [_parameter((4, 4), 7, positive=True)])


def test_overlapping_average_pool_gradients(check_gradients) -> None:
    check_gradients(lambda x, w: (x * w).average_pool(2, 2, 1), (3, 4), [_parameter((3, 4), 8)])


@pytest.mark.parametrize("reduction", ["sum", "mean", "variance", "standard_deviation"])
def test_per_sample_reduction_gradients(reduction: str, check_gradients) -> None:
    check_gradients(
        lambda x, w: getattr(x * w, reduction)(), (3, 2), [_parameter((3, 2), 9)], samples=2
    )


@pytest.mark.parametrize("p", [1.0, 2.0, 3.0])
def test_norm_gradients(p: float, check_gradients) -> None:
    check_gradients(lambda x, w: (x * w).norm(p), (3, 2), [_parameter((3, 2), 10, positive=True)])


@pytest.mark.parametrize("reduction", ["sum", "mean", "variance", "standard_deviation"])
def test_aggregate_reduction_gradients(reduction: str, check_gradients) -> None:
    procedure = check_gradients(
        lambda x, w: getattr(x * w, reduction)(aggregate=True),
        (3, 1),
        [_parameter((3, 1), 11)],
        samples=4,
    )
    assert not procedure.per_sample


def test_aggregate_norm_gradients(check_gradients) -> None:
    check_gradients(
        lambda x, w: (x + w).norm(2, aggregate=True) * w,
        (2, 2),
        [_parameter((2, 2), 12, positive=True)],
        samples=3,
    )


def test_binary_function_differentiates_first_argument_only(check_gradients) -> None:
    target = Matrix([[0.5], [-0.5]])

    procedure = check_gradients(
        lambda x, w: (w @ x).apply_binary(target, BinaryFunction("mean_squared_error")),
        (3, 1),
        [_parameter((2, 3), 13)],
    )
    assert procedure.get_node(target).constant
    assert procedure.get_node(target).get_gradient(0) is None
