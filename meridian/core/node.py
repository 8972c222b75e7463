# Copyright 2025 Wahyu Ardiansyah
# Licensed under the Apache License, Version 2.0

"""
Node

Represents a single operator application in the inference graph.
"""

from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Dict, List, Tuple
import itertools


# Node ID counter
_node_id_counter = itertools.count()


class OpCategory(Enum):
    """Coarse classification of operator kinds."""

    DATA = "data"  # Computes values from values
    CONTROL = "control"  # Loop/branch plumbing
    STRUCTURAL = "structural"  # Graph inputs and constants


# Common operation type constants
class Ops:
    """Standard operation kind names."""

    # Structural
    PLACEHOLDER = "placeholder"
    CONST = "const"

    # Control flow
    ENTER = "enter"
    EXIT = "exit"
    MERGE = "merge"
    SWITCH = "switch"
    NEXT_ITERATION = "next_iteration"
    LOOP_COND = "loop_cond"

    # Arithmetic
    IDENTITY = "identity"
    ADD = "add"
    BIAS_ADD = "bias_add"
    SUB = "sub"
    MUL = "mul"
    DIV = "div"
    LESS = "less"
    GREATER = "greater"

    # Activations
    RELU = "relu"
    RELU6 = "relu6"
    CLIP_BY_VALUE = "clip_by_value"
    SOFTMAX = "softmax"

    # Convolution / pooling (NHWC)
    CONV2D = "conv2d"
    DEPTHWISE_CONV2D = "depthwise_conv2d"
    AVG_POOL = "avg_pool"

    # Shape
    SQUEEZE = "squeeze"
    RESHAPE = "reshape"


CONTROL_FLOW_OPS = frozenset(
    [
        Ops.ENTER,
        Ops.EXIT,
        Ops.MERGE,
        Ops.SWITCH,
        Ops.NEXT_ITERATION,
        Ops.LOOP_COND,
    ]
)

STRUCTURAL_OPS = frozenset([Ops.PLACEHOLDER, Ops.CONST])


def op_category(op: str) -> OpCategory:
    """Classify an operator kind."""
    if op in CONTROL_FLOW_OPS:
        return OpCategory.CONTROL
    if op in STRUCTURAL_OPS:
        return OpCategory.STRUCTURAL
    return OpCategory.DATA


def parse_node_name(name: str) -> Tuple[str, int]:
    """
    Split an input reference into node name and output index.

    "conv" -> ("conv", 0), "switch:1" -> ("switch", 1)
    """
    index = name.rfind(":")
    if index == -1:
        return name, 0
    suffix = name[index + 1 :]
    if not suffix.isdigit():
        return name, 0
    return name[:index], int(suffix)


@dataclass(eq=False)
class Node:
    """
    One operator application.

    Nodes compare and hash by identity. ``children`` is filled in by
    GraphBuilder.build(); nothing mutates a node after that.
    """

    name: str
    op: str
    input_names: List[str] = field(default_factory=list)
    params: Dict[str, Any] = field(default_factory=dict)
    children: List["Node"] = field(default_factory=list, repr=False)

    # Auto-generated ID
    id: int = field(default_factory=lambda: next(_node_id_counter), init=False)

    @property
    def category(self) -> OpCategory:
        return op_category(self.op)

    @property
    def is_control_flow(self) -> bool:
        return self.op in CONTROL_FLOW_OPS

    @property
    def input_node_names(self) -> List[str]:
        """Input references with any output index stripped."""
        return [parse_node_name(name)[0] for name in self.input_names]

    def get_param(self, key: str, default: Any = None) -> Any:
        """Get a static parameter value."""
        return self.params.get(key, default)

    def __repr__(self) -> str:
        return f"Node(op='{self.op}', name='{self.name}')"
