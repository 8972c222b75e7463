# Copyright 2025 Wahyu Ardiansyah
# Licensed under the Apache License, Version 2.0

"""
Control-Flow Operators

Loops and branches are expressed with six primitives:

- enter(data, frame_name): enters a loop frame, forwards data
- merge(a, b): forwards whichever input has a value
- switch(data, pred): output 0 carries data when pred is false,
  output 1 when pred is true; the other output is None
- loop_cond(pred): forwards the loop predicate
- next_iteration(data): advances the innermost frame, forwards data
- exit(data): leaves the innermost frame, forwards data

The executor never decides trip counts: a loop runs as long as its
switch keeps routing values to the body.
"""

from __future__ import annotations

from typing import TYPE_CHECKING

import numpy as np

from ...core.node import Ops
from ...errors import KernelError
from ..context import get_tensor
from ..registry import OperatorRegistry
from .utils import require_tensor

if TYPE_CHECKING:
    from ...core.node import Node
    from ...core.tensor import Tensor
    from ..context import ExecutionContext, NamedTensorsMap


def _truthy(tensor: "Tensor") -> bool:
    values = np.asarray(tensor.numpy()).reshape(-1)
    return bool(values[0]) if values.size else False


@OperatorRegistry.register(Ops.ENTER)
def execute_enter(
    node: "Node",
    tensor_map: "NamedTensorsMap",
    context: "ExecutionContext",
) -> list:
    """Enter the frame named by the "frame_name" param."""
    data = require_tensor(node, 0, tensor_map, context)
    frame_name = node.get_param("frame_name")
    if not frame_name:
        raise KernelError("missing frame_name", node_name=node.name, op=node.op)
    context.enter_frame(frame_name)
    return [data.clone()]


@OperatorRegistry.register(Ops.EXIT)
def execute_exit(
    node: "Node",
    tensor_map: "NamedTensorsMap",
    context: "ExecutionContext",
) -> list:
    data = require_tensor(node, 0, tensor_map, context)
    context.exit_frame()
    return [data.clone()]


@OperatorRegistry.register(Ops.NEXT_ITERATION)
def execute_next_iteration(
    node: "Node",
    tensor_map: "NamedTensorsMap",
    context: "ExecutionContext",
) -> list:
    data = require_tensor(node, 0, tensor_map, context)
    context.next_iteration()
    return [data.clone()]


@OperatorRegistry.register(Ops.MERGE)
def execute_merge(
    node: "Node",
    tensor_map: "NamedTensorsMap",
    context: "ExecutionContext",
) -> list:
    """Forward the first input (in declaration order) that has a value."""
    for name in node.input_names:
        tensor = get_tensor(name, tensor_map, context)
        if tensor is not None:
            return [tensor.clone()]
    raise KernelError("no input has a value", node_name=node.name, op=node.op)


@OperatorRegistry.register(Ops.SWITCH)
def execute_switch(
    node: "Node",
    tensor_map: "NamedTensorsMap",
    context: "ExecutionContext",
) -> list:
    """Route data to output 1 when pred is true, else to output 0."""
    data = require_tensor(node, 0, tensor_map, context)
    pred = require_tensor(node, 1, tensor_map, context)
    if _truthy(pred):
        return [None, data.clone()]
    return [data.clone(), None]


@OperatorRegistry.register(Ops.LOOP_COND)
def execute_loop_cond(
    node: "Node",
    tensor_map: "NamedTensorsMap",
    context: "ExecutionContext",
) -> list:
    pred = require_tensor(node, 0, tensor_map, context)
    return [pred.clone()]
