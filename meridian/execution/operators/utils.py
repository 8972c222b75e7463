# Copyright 2025 Wahyu Ardiansyah
# Licensed under the Apache License, Version 2.0

"""Input resolution helpers shared by the reference kernels."""

from __future__ import annotations

from typing import Optional, TYPE_CHECKING

import numpy as np

from ...core.tensor import Tensor
from ...errors import KernelError
from ..context import get_tensor

if TYPE_CHECKING:
    from ...core.node import Node
    from ..context import ExecutionContext, NamedTensorsMap


def get_input(
    node: "Node",
    index: int,
    tensor_map: "NamedTensorsMap",
    context: "ExecutionContext",
) -> Optional[Tensor]:
    """Resolve the node's index-th input, None if it has no value."""
    if index >= len(node.input_names):
        return None
    return get_tensor(node.input_names[index], tensor_map, context)


def require_tensor(
    node: "Node",
    index: int,
    tensor_map: "NamedTensorsMap",
    context: "ExecutionContext",
) -> Tensor:
    """
    Resolve the node's index-th input.

    Raises:
        KernelError: If the input has no value.
    """
    tensor = get_input(node, index, tensor_map, context)
    if tensor is None:
        name = node.input_names[index] if index < len(node.input_names) else index
        raise KernelError(f"input {name} has no value", node_name=node.name, op=node.op)
    return tensor


def require_array(
    node: "Node",
    index: int,
    tensor_map: "NamedTensorsMap",
    context: "ExecutionContext",
) -> np.ndarray:
    """Resolve the node's index-th input as an array."""
    return require_tensor(node, index, tensor_map, context).numpy()
