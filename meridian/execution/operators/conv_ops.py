# Copyright 2025 Wahyu Ardiansyah
# Licensed under the Apache License, Version 2.0

"""
Convolution and Pooling Operators (NHWC)

Implements:
- conv2d: 2D convolution, filter [h, w, in, out]
- depthwise_conv2d: depthwise convolution, filter [h, w, in, multiplier]
- avg_pool: average pooling, padded cells excluded from the average

Parameters follow the NHWC convention: ``strides``, ``kernel_size`` and
``dilations`` are 4-element lists [1, h, w, 1]; ``pad`` is "same" or
"valid"; ``data_format`` must be "NHWC".

The numpy helpers at module level are shared with the reference
accelerated backend so both execution paths compute identical results.
"""

from __future__ import annotations

from typing import List, Sequence, Tuple, TYPE_CHECKING

import numpy as np

from ...core.node import Ops
from ...core.tensor import Tensor
from ...errors import KernelError
from ..registry import OperatorRegistry
from .utils import require_array

if TYPE_CHECKING:
    from ...core.node import Node
    from ..context import ExecutionContext, NamedTensorsMap


def compute_padding(
    size: int,
    kernel: int,
    stride: int,
    pad: str,
    dilation: int = 1,
) -> Tuple[int, int, int]:
    """
    Output size and (before, after) padding along one spatial axis.

    "same":  out = ceil(size / stride), padding split with the extra
             cell after.
    "valid": out = ceil((size - effective_kernel + 1) / stride), no padding.
    """
    effective = (kernel - 1) * dilation + 1
    if pad == "same":
        out = -(-size // stride)
        total = max((out - 1) * stride + effective - size, 0)
        return out, total // 2, total - total // 2
    if pad == "valid":
        out = -(-(size - effective + 1) // stride)
        return max(out, 0), 0, 0
    raise ValueError(f"padding {pad} is not supported")


def conv_output_shape(
    input_shape: Sequence[int],
    filter_shape: Sequence[int],
    strides: Sequence[int],
    pad: str,
    depthwise: bool = False,
    dilations: Sequence[int] = (1, 1),
) -> List[int]:
    """NHWC output shape of conv2d / depthwise_conv2d."""
    batch, height, width, channels = input_shape
    kh, kw, _, out_channels = filter_shape
    oh, _, _ = compute_padding(height, kh, strides[0], pad, dilations[0])
    ow, _, _ = compute_padding(width, kw, strides[1], pad, dilations[1])
    if depthwise:
        out_channels = channels * filter_shape[3]
    return [batch, oh, ow, out_channels]


def pool_output_shape(
    input_shape: Sequence[int],
    kernel_size: Sequence[int],
    strides: Sequence[int],
    pad: str,
) -> List[int]:
    """NHWC output shape of avg_pool."""
    batch, height, width, channels = input_shape
    oh, _, _ = compute_padding(height, kernel_size[0], strides[0], pad)
    ow, _, _ = compute_padding(width, kernel_size[1], strides[1], pad)
    return [batch, oh, ow, channels]


def _pad_input(x, kernel, strides, pad, dilations):
    _, height, width, _ = x.shape
    oh, top, bottom = compute_padding(height, kernel[0], strides[0], pad, dilations[0])
    ow, left, right = compute_padding(width, kernel[1], strides[1], pad, dilations[1])
    padded = np.pad(x, ((0, 0), (top, bottom), (left, right), (0, 0)), mode="constant")
    return padded, oh, ow


def _window(padded, i, j, oh, ow, strides, dilations):
    sh, sw = strides
    h0 = i * dilations[0]
    w0 = j * dilations[1]
    return padded[:, h0 : h0 + (oh - 1) * sh + 1 : sh, w0 : w0 + (ow - 1) * sw + 1 : sw, :]


def conv2d_nhwc(
    x: np.ndarray,
    w: np.ndarray,
    strides: Sequence[int],
    pad: str,
    dilations: Sequence[int] = (1, 1),
) -> np.ndarray:
    """2D convolution, x [n, h, w, in], w [kh, kw, in, out]."""
    kh, kw, _, out_channels = w.shape
    padded, oh, ow = _pad_input(x, (kh, kw), strides, pad, dilations)
    dtype = np.result_type(x.dtype, w.dtype)
    y = np.zeros((x.shape[0], oh, ow, out_channels), dtype=dtype)
    for i in range(kh):
        for j in range(kw):
            patch = _window(padded, i, j, oh, ow, strides, dilations)
            y += np.tensordot(patch, w[i, j], axes=([3], [0]))
    return y


def depthwise_conv2d_nhwc(
    x: np.ndarray,
    w: np.ndarray,
    strides: Sequence[int],
    pad: str,
    dilations: Sequence[int] = (1, 1),
) -> np.ndarray:
    """Depthwise convolution, x [n, h, w, c], w [kh, kw, c, m] -> [n, oh, ow, c*m]."""
    kh, kw, channels, multiplier = w.shape
    padded, oh, ow = _pad_input(x, (kh, kw), strides, pad, dilations)
    dtype = np.result_type(x.dtype, w.dtype)
    y = np.zeros((x.shape[0], oh, ow, channels, multiplier), dtype=dtype)
    for i in range(kh):
        for j in range(kw):
            patch = _window(padded, i, j, oh, ow, strides, dilations)
            y += patch[..., None] * w[i, j]
    return y.reshape(x.shape[0], oh, ow, channels * multiplier)


def avg_pool_nhwc(
    x: np.ndarray,
    kernel_size: Sequence[int],
    strides: Sequence[int],
    pad: str,
) -> np.ndarray:
    """Average pooling, padded cells do not count towards the average."""
    ones = np.ones((1,) + x.shape[1:3] + (1,), dtype=x.dtype)
    padded, oh, ow = _pad_input(x, kernel_size, strides, pad, (1, 1))
    padded_ones, _, _ = _pad_input(ones, kernel_size, strides, pad, (1, 1))
    total = np.zeros((x.shape[0], oh, ow, x.shape[3]), dtype=x.dtype)
    count = np.zeros((1, oh, ow, 1), dtype=x.dtype)
    for i in range(kernel_size[0]):
        for j in range(kernel_size[1]):
            total += _window(padded, i, j, oh, ow, strides, (1, 1))
            count += _window(padded_ones, i, j, oh, ow, strides, (1, 1))
    return total / count


def _spatial(node: "Node", key: str, default: Sequence[int]) -> Tuple[int, int]:
    """Read an NHWC [1, h, w, 1] (or plain [h, w]) param as (h, w)."""
    value = list(node.get_param(key, default))
    if len(value) == 4:
        return value[1], value[2]
    if len(value) == 2:
        return value[0], value[1]
    raise KernelError(f"{key} {value} is not a 2D or NHWC list", node_name=node.name, op=node.op)


def _check_format(node: "Node") -> str:
    data_format = str(node.get_param("data_format", "NHWC")).upper()
    if data_format != "NHWC":
        raise KernelError(f"data_format {data_format} is not supported", node_name=node.name, op=node.op)
    pad = node.get_param("pad", "valid")
    if pad not in ("same", "valid"):
        raise KernelError(f"padding {pad} is not supported", node_name=node.name, op=node.op)
    return pad


@OperatorRegistry.register(Ops.CONV2D)
def execute_conv2d(
    node: "Node",
    tensor_map: "NamedTensorsMap",
    context: "ExecutionContext",
) -> list:
    """
    2D Convolution operator.

    Y = conv2d(X, W), X [n, h, w, in], W [kh, kw, in, out]
    """
    pad = _check_format(node)
    x = require_array(node, 0, tensor_map, context)
    w = require_array(node, 1, tensor_map, context)
    strides = _spatial(node, "strides", [1, 1, 1, 1])
    dilations = _spatial(node, "dilations", [1, 1, 1, 1])
    return [Tensor(conv2d_nhwc(x, w, strides, pad, dilations))]


@OperatorRegistry.register(Ops.DEPTHWISE_CONV2D)
def execute_depthwise_conv2d(
    node: "Node",
    tensor_map: "NamedTensorsMap",
    context: "ExecutionContext",
) -> list:
    """Depthwise convolution, W [kh, kw, in, multiplier]."""
    pad = _check_format(node)
    x = require_array(node, 0, tensor_map, context)
    w = require_array(node, 1, tensor_map, context)
    strides = _spatial(node, "strides", [1, 1, 1, 1])
    dilations = _spatial(node, "dilations", [1, 1, 1, 1])
    return [Tensor(depthwise_conv2d_nhwc(x, w, strides, pad, dilations))]


@OperatorRegistry.register(Ops.AVG_POOL)
def execute_avg_pool(
    node: "Node",
    tensor_map: "NamedTensorsMap",
    context: "ExecutionContext",
) -> list:
    pad = _check_format(node)
    x = require_array(node, 0, tensor_map, context)
    kernel_size = _spatial(node, "kernel_size", [1, 1, 1, 1])
    strides = _spatial(node, "strides", [1, 1, 1, 1])
    return [Tensor(avg_pool_nhwc(x, kernel_size, strides, pad))]
