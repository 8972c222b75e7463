# Copyright 2025 Wahyu Ardiansyah
# Licensed under the Apache License, Version 2.0

"""
Shape Operators

Implements:
- squeeze: drop size-1 dimensions (all, or those listed in "axis")
- reshape: new shape from the "shape" param or a second input
"""

from __future__ import annotations

from typing import List, Sequence, TYPE_CHECKING

import numpy as np

from ...core.node import Ops
from ...core.tensor import Tensor
from ...errors import KernelError
from ..registry import OperatorRegistry
from .utils import get_input, require_array

if TYPE_CHECKING:
    from ...core.node import Node
    from ..context import ExecutionContext, NamedTensorsMap


def squeeze_shape(shape: Sequence[int], axis: Sequence[int] = ()) -> List[int]:
    """Shape after removing the given axes (every size-1 axis when empty)."""
    rank = len(shape)
    if not axis:
        return [dim for dim in shape if dim != 1]
    for a in axis:
        if not -rank <= a < rank:
            raise ValueError(f"axis {a} is out of range for rank {rank}")
    dropped = {a % rank for a in axis}
    for a in dropped:
        if shape[a] != 1:
            raise ValueError(f"cannot squeeze axis {a} of size {shape[a]}")
    return [dim for index, dim in enumerate(shape) if index not in dropped]


@OperatorRegistry.register(Ops.SQUEEZE)
def execute_squeeze(
    node: "Node",
    tensor_map: "NamedTensorsMap",
    context: "ExecutionContext",
) -> list:
    x = require_array(node, 0, tensor_map, context)
    try:
        shape = squeeze_shape(x.shape, node.get_param("axis", []))
    except ValueError as e:
        raise KernelError(str(e), node_name=node.name, op=node.op, input_shapes=[x.shape]) from e
    return [Tensor(x.reshape(shape))]


@OperatorRegistry.register(Ops.RESHAPE)
def execute_reshape(
    node: "Node",
    tensor_map: "NamedTensorsMap",
    context: "ExecutionContext",
) -> list:
    """Reshape operator - target shape from the second input or the "shape" param."""
    x = require_array(node, 0, tensor_map, context)
    shape_tensor = get_input(node, 1, tensor_map, context)
    if shape_tensor is not None:
        shape = [int(d) for d in np.asarray(shape_tensor.numpy()).reshape(-1)]
    else:
        shape = node.get_param("shape")
    if shape is None:
        raise KernelError("no target shape", node_name=node.name, op=node.op)
    return [Tensor(x.reshape(shape))]
