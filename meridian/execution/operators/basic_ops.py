# Copyright 2025 Wahyu Ardiansyah
# Licensed under the Apache License, Version 2.0

"""
Structural and Arithmetic Operators

- placeholder: forwards the supplied input tensors
- const: forwards weight tensors (or a literal "value" param)
- identity: clones its input
- add / bias_add, sub, mul, div: element-wise binary math
- less, greater: element-wise comparison
"""

from __future__ import annotations

from typing import Callable, TYPE_CHECKING

import numpy as np

from ...core.node import Ops
from ...core.tensor import Tensor
from ...errors import KernelError
from ..context import NodeKey
from ..registry import OperatorRegistry
from .utils import require_array, require_tensor

if TYPE_CHECKING:
    from ...core.node import Node
    from ..context import ExecutionContext, NamedTensorsMap


@OperatorRegistry.register(Ops.PLACEHOLDER)
def execute_placeholder(
    node: "Node",
    tensor_map: "NamedTensorsMap",
    context: "ExecutionContext",
) -> list:
    """Placeholder - the supplied input tensors, unchanged."""
    tensors = tensor_map.get(NodeKey(node.name))
    if tensors is None:
        raise KernelError("no input supplied", node_name=node.name, op=node.op)
    return list(tensors)


@OperatorRegistry.register(Ops.CONST)
def execute_const(
    node: "Node",
    tensor_map: "NamedTensorsMap",
    context: "ExecutionContext",
) -> list:
    """Constant - weight tensors looked up by node name."""
    weights = context.get_weight(node.name)
    if weights is not None:
        return list(weights)
    if "value" in node.params:
        return [Tensor(node.params["value"])]
    raise KernelError("no weight loaded", node_name=node.name, op=node.op)


@OperatorRegistry.register(Ops.IDENTITY)
def execute_identity(
    node: "Node",
    tensor_map: "NamedTensorsMap",
    context: "ExecutionContext",
) -> list:
    """Identity operator - passes input through as a new tensor."""
    return [require_tensor(node, 0, tensor_map, context).clone()]


def _binary(func: Callable[[np.ndarray, np.ndarray], np.ndarray]):
    def kernel(
        node: "Node",
        tensor_map: "NamedTensorsMap",
        context: "ExecutionContext",
    ) -> list:
        a = require_array(node, 0, tensor_map, context)
        b = require_array(node, 1, tensor_map, context)
        return [Tensor(func(a, b))]

    kernel.__name__ = f"execute_{func.__name__}"
    return kernel


execute_add = OperatorRegistry.register(Ops.ADD, aliases=[Ops.BIAS_ADD])(_binary(np.add))
execute_sub = OperatorRegistry.register(Ops.SUB)(_binary(np.subtract))
execute_mul = OperatorRegistry.register(Ops.MUL)(_binary(np.multiply))
execute_div = OperatorRegistry.register(Ops.DIV)(_binary(np.divide))
execute_less = OperatorRegistry.register(Ops.LESS)(_binary(np.less))
execute_greater = OperatorRegistry.register(Ops.GREATER)(_binary(np.greater))
