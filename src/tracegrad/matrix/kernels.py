"""
Convolution and pooling kernels on plain numpy arrays.

Filters are applied by looping over filter offsets and combining strided
views of the input, so every kernel is a handful of vectorised slices.
Pooling kernels that select one input entry per window return the selected
positions as an integer array of shape `(rows, columns, 2)`.
"""

from __future__ import annotations

from typing import Optional, Tuple

import numpy as np

from tracegrad.errors import MatrixError


def output_shape(
    input_shape: Tuple[int, int],
    filter_shape: Tuple[int, int],
    stride: int = 1,
    dilation: int = 1,
) -> Tuple[int, int]:
    if stride < 1 or dilation < 1:
        raise MatrixError(f"Stride and dilation must be positive, got {stride}/{dilation}.")
    rows, columns = input_shape
    filter_rows, filter_columns = filter_shape
    span_rows = (filter_rows - 1) * dilation + 1
    span_columns = (filter_columns - 1) * dilation + 1
    out_rows = (rows - span_rows) // stride + 1
    out_columns = (columns - span_columns) // stride + 1
    if rows < span_rows or columns < span_columns or out_rows < 1 or out_columns < 1:
        raise MatrixError(
            f"Filter {filter_shape} (dilation {dilation}) does not fit input {input_shape}."
        )
    return out_rows, out_columns


def _window(
    values: np.ndarray,
    row: int,
    column: int,
    out_shape: Tuple[int, int],
    stride: int,
    dilation: int,
) -> np.ndarray:
    """Strided view of every input entry paired with filter offset (row, column)."""
    r0 = row * dilation
    c0 = column * dilation
    return values[
        r0 : r0 + stride * (out_shape[0] - 1) + 1 : stride,
        c0 : c0 + stride * (out_shape[1] - 1) + 1 : stride,
    ]


def crosscorrelate(
    values: np.ndarray, filter_values: np.ndarray, stride: int = 1, dilation: int = 1
) -> np.ndarray:
    out_shape = output_shape(values.shape, filter_values.shape, stride, dilation)
    result = np.zeros(out_shape)
    for a in range(filter_values.shape[0]):
        for b in range(filter_values.shape[1]):
            result += filter_values[a, b] * _window(values, a, b, out_shape, stride, dilation)
    return result


def crosscorrelate_input_gradient(
    output_gradient: np.ndarray,
    filter_values: np.ndarray,
    input_shape: Tuple[int, int],
    stride: int = 1,
    dilation: int = 1,
) -> np.ndarray:
    gradient = np.zeros(input_shape)
    out_shape = output_gradient.shape
    for a in range(filter_values.shape[0]):
        for b in range(filter_values.shape[1]):
            _window(gradient, a, b, out_shape, stride, dilation)[...] += (
                filter_values[a, b] * output_gradient
            )
    return gradient


def crosscorrelate_filter_gradient(
    output_gradient: np.ndarray,
    values: np.ndarray,
    filter_shape: Tuple[int, int],
    stride: int = 1,
    dilation: int = 1,
) -> np.ndarray:
    gradient = np.zeros(filter_shape)
    out_shape = output_gradient.shape
    for a in range(filter_shape[0]):
        for b in range(filter_shape[1]):
            gradient[a, b] = np.sum(
                output_gradient * _window(values, a, b, out_shape, stride, dilation)
            )
    return gradient


def convolve(
    values: np.ndarray, filter_values: np.ndarray, stride: int = 1, dilation: int = 1
) -> np.ndarray:
    return crosscorrelate(values, filter_values[::-1, ::-1], stride, dilation)


def convolve_input_gradient(
    output_gradient: np.ndarray,
    filter_values: np.ndarray,
    input_shape: Tuple[int, int],
    stride: int = 1,
    dilation: int = 1,
) -> np.ndarray:
    return crosscorrelate_input_gradient(
        output_gradient, filter_values[::-1, ::-1], input_shape, stride, dilation
    )


def convolve_filter_gradient(
    output_gradient: np.ndarray,
    values: np.ndarray,
    filter_shape: Tuple[int, int],
    stride: int = 1,
    dilation: int = 1,
) -> np.ndarray:
    flipped = crosscorrelate_filter_gradient(
        output_gradient, values, filter_shape, stride, dilation
    )
    return flipped[::-1, ::-1].copy()


def _stack_windows(
    values: np.ndarray, filter_rows: int, filter_columns: int, stride: int
) -> Tuple[np.ndarray, Tuple[int, int]]:
    out_shape = output_shape(values.shape, (filter_rows, filter_columns), stride)
    windows = np.stack(
        [
            _window(values, a, b, out_shape, stride, 1)
            for a in range(filter_rows)
            for b in range(filter_columns)
        ]
    )
    return windows, out_shape


def _positions(
    offsets: np.ndarray, filter_columns: int, out_shape: Tuple[int, int], stride: int
) -> np.ndarray:
    rows = np.arange(out_shape[0])[:, None] * stride + offsets // filter_columns
    columns = np.arange(out_shape[1])[None, :] * stride + offsets % filter_columns
    return np.stack([rows, columns], axis=-1).astype(np.int64)


def max_pool(
    values: np.ndarray, filter_rows: int, filter_columns: int, stride: int = 1
) -> Tuple[np.ndarray, np.ndarray]:
    windows, out_shape = _stack_windows(values, filter_rows, filter_columns, stride)
    offsets = np.argmax(windows, axis=0)
    result = np.take_along_axis(windows, offsets[None, ...], axis=0)[0]
    return result, _positions(offsets, filter_columns, out_shape, stride)


def random_pool(
    values: np.ndarray,
    filter_rows: int,
    filter_columns: int,
    stride: int = 1,
    rng: Optional[np.random.Generator] = None,
) -> Tuple[np.ndarray, np.ndarray]:
    rng = rng if rng is not None else np.random.default_rng()
    windows, out_shape = _stack_windows(values, filter_rows, filter_columns, stride)
    offsets = rng.integers(0, filter_rows * filter_columns, size=out_shape)
    result = np.take_along_axis(windows, offsets[None, ...], axis=0)[0]
    return result, _positions(offsets, filter_columns, out_shape, stride)


def cyclic_pool(
    values: np.ndarray,
    filter_rows: int,
    filter_columns: int,
    stride: int = 1,
    start: int = 0,
) -> Tuple[np.ndarray, np.ndarray]:
    """
    Pick window entries in turn, advancing one filter position per output cell.

    The filter row advances first and wraps into the next filter column.
    `start` is the position the counter has reached in earlier calls.
    """
    windows, out_shape = _stack_windows(values, filter_rows, filter_columns, stride)
    count = out_shape[0] * out_shape[1]
    cycle = (np.arange(count) + start) % (filter_rows * filter_columns)
    offsets = ((cycle % filter_rows) * filter_columns + cycle // filter_rows).reshape(out_shape)
    result = np.take_along_axis(windows, offsets[None, ...], axis=0)[0]
    return result, _positions(offsets, filter_columns, out_shape, stride)


def average_pool(
    values: np.ndarray, filter_rows: int, filter_columns: int, stride: int = 1
) -> np.ndarray:
    windows, _ = _stack_windows(values, filter_rows, filter_columns, stride)
    return windows.mean(axis=0)


def average_pool_gradient(
    output_gradient: np.ndarray,
    input_shape: Tuple[int, int],
    filter_rows: int,
    filter_columns: int,
    stride: int = 1,
) -> np.ndarray:
    gradient = np.zeros(input_shape)
    share = output_gradient / (filter_rows * filter_columns)
    for a in range(filter_rows):
        for b in range(filter_columns):
            _window(gradient, a, b, output_gradient.shape, stride, 1)[...] += share
    return gradient


def routed_pool_gradient(
    output_gradient: np.ndarray, positions: np.ndarray, input_shape: Tuple[int, int]
) -> np.ndarray:
    """Scatter each output gradient onto the input position it was read from."""
    gradient = np.zeros(input_shape)
    np.add.at(gradient, (positions[..., 0], positions[..., 1]), output_gradient)
    return gradient
