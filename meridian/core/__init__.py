# Copyright 2025 Wahyu Ardiansyah
# Licensed under the Apache License, Version 2.0

"""Meridian Core Module"""

from .tensor import Tensor, TensorLike, as_tensor, as_tensor_list
from .node import (
    Node,
    Ops,
    OpCategory,
    CONTROL_FLOW_OPS,
    op_category,
    parse_node_name,
)
from .graph import Graph, GraphBuilder

__all__ = [
    "Tensor",
    "TensorLike",
    "as_tensor",
    "as_tensor_list",
    "Node",
    "Ops",
    "OpCategory",
    "CONTROL_FLOW_OPS",
    "op_category",
    "parse_node_name",
    "Graph",
    "GraphBuilder",
]
