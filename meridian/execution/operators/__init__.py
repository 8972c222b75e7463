# Copyright 2025 Wahyu Ardiansyah
# Licensed under the Apache License, Version 2.0

"""
Reference Operator Implementations

numpy kernels for the operator kinds understood by the runtime. Every
kernel follows the dispatch contract ``kernel(node, tensor_map, context)``
and returns a list of output tensors.

Operators are organized by category:
- basic_ops: placeholder, const, identity, add, sub, mul, div, less, greater
- control_ops: enter, exit, next_iteration, merge, switch, loop_cond
- activation_ops: relu, relu6, clip_by_value, softmax
- conv_ops: conv2d, depthwise_conv2d, avg_pool (NHWC)
- shape_ops: squeeze, reshape
"""

# Import all operator modules to register them
from . import basic_ops
from . import control_ops
from . import activation_ops
from . import conv_ops
from . import shape_ops

__all__ = [
    "basic_ops",
    "control_ops",
    "activation_ops",
    "conv_ops",
    "shape_ops",
]
