# Copyright 2025 Wahyu Ardiansyah
# Licensed under the Apache License, Version 2.0

"""
Execution Context

Tracks the active control-flow frames during one graph execution and
resolves logical node names to the physical tensors produced under those
frames.

A node inside a loop body runs once per iteration. Each run stores its
outputs under a NodeKey qualified by the frame stack active at that time,
so ("add", (("loop", 0),)) and ("add", (("loop", 1),)) are distinct
entries of the environment.
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import Dict, List, NamedTuple, Optional, Tuple

from ..core.node import parse_node_name
from ..core.tensor import Tensor
from ..errors import ControlFlowError


@dataclass(frozen=True)
class Frame:
    """One activation of a control-flow scope."""

    name: str
    iteration: int = 0


# Structured frame identity: ordered (frame name, iteration) pairs.
# The root context is the empty tuple.
ContextId = Tuple[Tuple[str, int], ...]
FrameStack = Tuple[Frame, ...]

ROOT_CONTEXT: ContextId = ()


class NodeKey(NamedTuple):
    """Environment key: a node name qualified by its frame context."""

    name: str
    context_id: ContextId = ROOT_CONTEXT


# Environment: NodeKey -> tensors produced by that node (None marks an
# output not produced, e.g. the untaken side of a switch).
NamedTensorsMap = Dict[NodeKey, List[Optional[Tensor]]]
WeightMap = Dict[str, List[Tensor]]


def context_id_for(frames: FrameStack) -> ContextId:
    """Structured identity of a frame stack."""
    return tuple((frame.name, frame.iteration) for frame in frames)


class ExecutionContext:
    """
    Per-call control-flow state.

    The frame stack is an immutable tuple; every transition replaces it,
    so a snapshot taken with ``current_context`` is never changed behind
    the holder's back.

    Example:
        ctx = ExecutionContext(weight_map)
        ctx.enter_frame("while")      # (while, 0)
        ctx.next_iteration()          # (while, 1)
        ctx.current_context_ids       # [(("while", 1),), ()]
        ctx.exit_frame()              # root
    """

    def __init__(self, weight_map: Optional[WeightMap] = None):
        """
        Initialize execution context.

        Args:
            weight_map: Constant tensors by node name (borrowed, never released here).
        """
        self.weight_map: WeightMap = weight_map or {}
        self._frames: FrameStack = ()
        self._context_ids: List[ContextId] = [ROOT_CONTEXT]

    @property
    def current_context(self) -> FrameStack:
        """Snapshot of the active frame stack."""
        return self._frames

    @current_context.setter
    def current_context(self, frames: FrameStack) -> None:
        frames = tuple(frames)
        if frames != self._frames:
            self._frames = frames
            self._generate_context_ids()

    @property
    def current_context_id(self) -> ContextId:
        """Identity of the innermost active frame stack."""
        return self._context_ids[0]

    @property
    def current_context_ids(self) -> List[ContextId]:
        """Active stack and every enclosing prefix, innermost first, root last."""
        return list(self._context_ids)

    def _generate_context_ids(self) -> None:
        frames = self._frames
        self._context_ids = [
            context_id_for(frames[:depth]) for depth in range(len(frames), -1, -1)
        ]

    def enter_frame(self, frame_name: str) -> None:
        """Push a new frame at iteration 0."""
        self._frames = self._frames + (Frame(frame_name, 0),)
        self._context_ids.insert(0, context_id_for(self._frames))

    def exit_frame(self) -> None:
        """Pop the innermost frame."""
        if not self._frames:
            raise ControlFlowError("Cannot exit frame, the context is empty")
        self._frames = self._frames[:-1]
        self._context_ids.pop(0)

    def next_iteration(self) -> None:
        """Advance the innermost frame to its next iteration."""
        if not self._frames:
            raise ControlFlowError(
                "Cannot increase frame iteration, the context is empty"
            )
        top = self._frames[-1]
        self._frames = self._frames[:-1] + (Frame(top.name, top.iteration + 1),)
        self._context_ids[0] = context_id_for(self._frames)

    def get_weight(self, name: str) -> Optional[List[Tensor]]:
        """Get the weight tensors of a constant node."""
        return self.weight_map.get(name)

    def __repr__(self) -> str:
        frames = ", ".join(f"{f.name}-{f.iteration}" for f in self._frames)
        return f"ExecutionContext(frames=[{frames}])"


def node_key(name: str, context: Optional[ExecutionContext] = None) -> NodeKey:
    """Key under which a node's outputs are stored in the current context."""
    node_name, _ = parse_node_name(name)
    if context is None:
        return NodeKey(node_name)
    return NodeKey(node_name, context.current_context_id)


def get_tensor(
    name: str,
    tensor_map: NamedTensorsMap,
    context: ExecutionContext,
) -> Optional[Tensor]:
    """
    Resolve an input reference under the active frames.

    The innermost context holding an entry for the node wins; enclosing
    contexts (ending with the root) are searched in order. Returns None
    when no context holds the node or the selected output is absent.
    """
    node_name, index = parse_node_name(name)
    for context_id in context.current_context_ids:
        tensors = tensor_map.get(NodeKey(node_name, context_id))
        if tensors:
            return tensors[index] if index < len(tensors) else None
    return None
