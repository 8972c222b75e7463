# Copyright 2025 Wahyu Ardiansyah
# Licensed under the Apache License, Version 2.0

"""
Activation Operators

Implements:
- relu: max(0, x)
- relu6: min(max(0, x), 6)
- clip_by_value: clamp to [clip_value_min, clip_value_max]
- softmax: normalized exponentials along the last axis
"""

from __future__ import annotations

from typing import TYPE_CHECKING

import numpy as np

from ...core.node import Ops
from ...core.tensor import Tensor
from ..registry import OperatorRegistry
from .utils import require_array

if TYPE_CHECKING:
    from ...core.node import Node
    from ..context import ExecutionContext, NamedTensorsMap


def softmax(x: np.ndarray, axis: int = -1, beta: float = 1.0) -> np.ndarray:
    """Numerically stable softmax."""
    scaled = beta * (x - np.max(x, axis=axis, keepdims=True))
    exp = np.exp(scaled)
    return exp / np.sum(exp, axis=axis, keepdims=True)


@OperatorRegistry.register(Ops.RELU)
def execute_relu(
    node: "Node",
    tensor_map: "NamedTensorsMap",
    context: "ExecutionContext",
) -> list:
    x = require_array(node, 0, tensor_map, context)
    return [Tensor(np.maximum(x, 0))]


@OperatorRegistry.register(Ops.RELU6)
def execute_relu6(
    node: "Node",
    tensor_map: "NamedTensorsMap",
    context: "ExecutionContext",
) -> list:
    x = require_array(node, 0, tensor_map, context)
    return [Tensor(np.clip(x, 0, 6))]


@OperatorRegistry.register(Ops.CLIP_BY_VALUE)
def execute_clip_by_value(
    node: "Node",
    tensor_map: "NamedTensorsMap",
    context: "ExecutionContext",
) -> list:
    """Clamp values to the range given by the clip_value_min/max params."""
    x = require_array(node, 0, tensor_map, context)
    low = node.get_param("clip_value_min")
    high = node.get_param("clip_value_max")
    return [Tensor(np.clip(x, low, high))]


@OperatorRegistry.register(Ops.SOFTMAX)
def execute_softmax(
    node: "Node",
    tensor_map: "NamedTensorsMap",
    context: "ExecutionContext",
) -> list:
    x = require_array(node, 0, tensor_map, context)
    return [Tensor(softmax(x, axis=node.get_param("axis", -1)))]
