from __future__ import annotations

import numpy as np
import pytest

from tracegrad import MatrixError
from tracegrad.matrix import kernels


def _naive_crosscorrelate(values, filter_values, stride=1, dilation=1):
    rows, columns = kernels.output_shape(values.shape, filter_values.shape, stride, dilation)
    result = np.zeros((rows, columns))
    for i in range(rows):
        for j in range(columns):
            for a in range(filter_values.shape[0]):
                for b in range(filter_values.shape[1]):
                    result[i, j] += (
                        filter_values[a, b]
                        * values[i * stride + a * dilation, j * stride + b * dilation]
                    )
    return result


@pytest.mark.parametrize("stride,dilation", [(1, 1), (2, 1), (1, 2)])
def test_crosscorrelate_matches_naive_loops(stride: int, dilation: int) -> None:
    rng = np.random.default_rng(0)
    values = rng.normal(size=(7, 6))
    filter_values = rng.normal(size=(2, 3))
    np.testing.assert_allclose(
        kernels.crosscorrelate(values, filter_values, stride, dilation),
        _naive_crosscorrelate(values, filter_values, stride, dilation),
    )


def test_convolve_flips_filter() -> None:
    rng = np.random.default_rng(1)
    values = rng.normal(size=(5, 5))
    filter_values = rng.normal(size=(3, 3))
    np.testing.assert_allclose(
        kernels.convolve(values, filter_values),
        kernels.crosscorrelate(values, filter_values[::-1, ::-1]),
    )


def test_crosscorrelate_gradients_are_adjoint() -> None:
    rng = np.random.default_rng(2)
    values = rng.normal(size=(6, 6))
    filter_values = rng.normal(size=(3, 2))
    output_gradient = rng.normal(size=kernels.output_shape(values.shape, filter_values.shape, 2))

    input_gradient = kernels.crosscorrelate_input_gradient(
        output_gradient, filter_values, values.shape, 2
    )
    filter_gradient = kernels.crosscorrelate_filter_gradient(
        output_gradient, values, filter_values.shape, 2
    )
    forward = np.sum(kernels.crosscorrelate(values, filter_values, 2) * output_gradient)
    assert np.sum(input_gradient * values) == pytest.approx(forward)
    assert np.sum(filter_gradient * filter_values) == pytest.approx(forward)


def test_output_shape_rejects_oversized_filters() -> None:
    with pytest.raises(MatrixError):
        kernels.output_shape((2, 2), (3, 3))
    with pytest.raises(MatrixError):
        kernels.output_shape((4, 4), (2, 2), stride=0)


def test_max_pool_records_positions() -> None:
    values = np.array(
        [
            [1.0, 5.0, 0.0, 2.0],
            [3.0, 4.0, 9.0, 1.0],
            [0.0, 0.0, 1.0, 1.0],
            [7.0, 0.0, 1.0, 8.0],
        ]
    )
    pooled, positions = kernels.max_pool(values, 2, 2, stride=2)
    np.testing.assert_allclose(pooled, [[5.0, 9.0], [7.0, 8.0]])
    assert positions.shape == (2, 2, 2)
    assert positions[0, 0].tolist() == [0, 1]
    assert positions[1, 1].tolist() == [3, 3]

    gradient = kernels.routed_pool_gradient(np.ones((2, 2)), positions, values.shape)
    assert gradient.sum() == 4.0
    assert gradient[1, 2] == 1.0


def test_overlapping_windows_accumulate_routed_gradient() -> None:
    values = np.array([[0.0, 0.0, 0.0], [0.0, 9.0, 0.0], [0.0, 0.0, 0.0]])
    _, positions = kernels.max_pool(values, 2, 2, stride=1)
    gradient = kernels.routed_pool_gradient(np.ones((2, 2)), positions, values.shape)
    assert gradient[1, 1] == 4.0


def test_cyclic_and_random_pool_select_window_entries() -> None:
    values = np.arange(16.0).reshape(4, 4)
    pooled, positions = kernels.cyclic_pool(values, 2, 2, stride=2)
    np.testing.assert_allclose(pooled, [[0.0, 6.0], [9.0, 15.0]])
    for i in range(2):
        for j in range(2):
            r, c = positions[i, j]
            assert values[r, c] == pooled[i, j]

    pooled, positions = kernels.random_pool(values, 2, 2, 2, np.random.default_rng(3))
    for i in range(2):
        for j in range(2):
            r, c = positions[i, j]
            assert 2 * i <= r < 2 * i + 2 and 2 * j <= c < 2 * j + 2
            assert values[r, c] == pooled[i, j]



def test_cyclic_pool_walks_filter_rows_first_from_start() -> None:
    values = np.arange(9.0).reshape(3, 3)
    pooled, _ = kernels.cyclic_pool(values, 3, 1, stride=1, start=0)
    np.testing.assert_allclose(pooled, [[0.0, 4.0, 8.0]])
    pooled, _ = kernels.cyclic_pool(values, 3, 1, stride=1, start=3)
    np.testing.assert_allclose(pooled, [[0.0, 4.0, 8.0]])
    pooled, positions = kernels.cyclic_pool(values, 2, 2, stride=1, start=1)
    np.testing.assert_allclose(pooled, [[3.0, 2.0], [7.0, 4.0]])
    assert positions[0, 0].tolist() == [1, 0]


def test_average_pool_gradient_spreads_evenly() -> None:
    values = np.arange(16.0).reshape(4, 4)
    np.testing.assert_allclose(
        kernels.average_pool(values, 2, 2, 2), [[2.5, 4.5], [10.5, 12.5]]
    )
    gradient = kernels.average_pool_gradient(np.ones((2, 2)), values.shape, 2, 2, 2)
    np.testing.assert_allclose(gradient, np.full((4, 4), 0.25))
