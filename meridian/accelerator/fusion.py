# Copyright 2025 Wahyu Ardiansyah
# Licensed under the Apache License, Version 2.0

"""
Peephole Fusion Matcher

Recognizes the chains the accelerated backend executes as one operation:

    conv2d / depthwise_conv2d -> [bias add] -> [clamp]
    avg_pool -> [clamp]

A follower is fused only when it is the sole consumer of the node before
it and that node is not a graph output.
"""

from dataclasses import dataclass
from typing import Optional, Tuple

import numpy as np

from ..core.graph import Graph
from ..core.node import Node, Ops
from .base import FuseCode

CONV_OPS = frozenset([Ops.CONV2D, Ops.DEPTHWISE_CONV2D])
POOL_OPS = frozenset([Ops.AVG_POOL])
BIAS_OPS = frozenset([Ops.ADD, Ops.BIAS_ADD])


@dataclass(frozen=True)
class FusedPattern:
    """Result of matching a fusible chain."""

    base: Node
    bias_add: Optional[Node] = None
    activation: Optional[Node] = None

    @property
    def output_node(self) -> Node:
        """Node whose value the fused operation produces."""
        return self.activation or self.bias_add or self.base

    @property
    def nodes(self) -> Tuple[Node, ...]:
        return tuple(n for n in (self.base, self.bias_add, self.activation) if n is not None)

    @property
    def bias_name(self) -> Optional[str]:
        if self.bias_add is None:
            return None
        return self.bias_add.input_node_names[1]

    @property
    def fuse_code(self) -> FuseCode:
        if self.activation is None:
            return FuseCode.NONE
        return fuse_code_for(self.activation)


def fuse_code_for(node: Node) -> Optional[FuseCode]:
    """Fuse code of a clamp node, None when it has no fused equivalent."""
    if node.op == Ops.RELU:
        return FuseCode.RELU
    if node.op == Ops.RELU6:
        return FuseCode.RELU6
    if node.op == Ops.CLIP_BY_VALUE:
        bounds = (node.get_param("clip_value_min"), node.get_param("clip_value_max"))
        if bounds == (0, 6):
            return FuseCode.RELU6
        if bounds == (-1, 1):
            return FuseCode.RELU1
        if bounds[0] == 0 and bounds[1] is not None and np.isinf(bounds[1]):
            return FuseCode.RELU
    return None


def _sole_child(node: Node, graph: Graph) -> Optional[Node]:
    if any(output is node for output in graph.outputs):
        return None
    if len(node.children) == 1:
        return node.children[0]
    return None


def _is_bias_add(candidate: Node, base: Node, graph: Graph) -> bool:
    if candidate.op not in BIAS_OPS or len(candidate.input_names) != 2:
        return False
    first, second = candidate.input_node_names
    if first != base.name:
        return False
    producer = graph.get_node(second)
    return producer is not None and producer.op == Ops.CONST


def match_fused_pattern(node: Node, graph: Graph) -> FusedPattern:
    """
    Match the fusible chain starting at node.

    Nodes that start no chain match as a bare base.
    """
    if node.op not in CONV_OPS and node.op not in POOL_OPS:
        return FusedPattern(node)

    bias_add = None
    follower = _sole_child(node, graph)

    if node.op in CONV_OPS and follower is not None and _is_bias_add(follower, node, graph):
        bias_add = follower
        follower = _sole_child(bias_add, graph)

    activation = None
    if follower is not None and fuse_code_for(follower) is not None:
        activation = follower

    return FusedPattern(node, bias_add, activation)
