# Copyright 2025 Wahyu Ardiansyah
# Licensed under the Apache License, Version 2.0

"""
Execution Plans and Drivers

An ExecutionPlan is a small state machine that hands out the next node
to run and records its outputs:

    while plan.has_next():
        item = plan.next_item()          # restores the item's frames
        outputs = dispatch(item.node, plan.tensor_map, context)
        plan.complete(item, outputs)     # stores outputs, schedules children

StaticPlan walks a precompiled order. ControlFlowPlan decides the order
at runtime from tensor availability, so loops may run a node many times
and untaken branches never run.

run_plan drives a plan synchronously; run_plan_async awaits kernels that
return awaitables. Nodes never run concurrently with each other.
"""

from __future__ import annotations

import inspect
import logging
from abc import ABC, abstractmethod
from dataclasses import dataclass
from typing import Any, Callable, List, Optional, Sequence, Set

from ..core.graph import Graph
from ..core.node import Node, Ops
from ..errors import ControlFlowError
from .context import (
    ExecutionContext,
    FrameStack,
    NamedTensorsMap,
    NodeKey,
    get_tensor,
    node_key,
)

logger = logging.getLogger("meridian.execution.scheduler")


Dispatch = Callable[[Node, NamedTensorsMap, ExecutionContext], Any]


@dataclass(frozen=True)
class ScheduledNode:
    """A node paired with the frame stack it must run under."""

    node: Node
    frames: FrameStack = ()


class ExecutionPlan(ABC):
    """
    Base class for execution plans.

    Subclasses own the environment (``tensor_map``) for one call.
    """

    def __init__(self, tensor_map: NamedTensorsMap, context: ExecutionContext):
        self.tensor_map = tensor_map
        self.context = context
        self.executed = 0

    @abstractmethod
    def has_next(self) -> bool:
        """Check whether another node is ready."""

    @abstractmethod
    def _pop(self) -> ScheduledNode:
        pass

    def next_item(self) -> ScheduledNode:
        """Take the next ready node and restore its frame stack."""
        item = self._pop()
        self.context.current_context = item.frames
        return item

    def complete(self, item: ScheduledNode, outputs: Optional[Sequence[Any]]) -> None:
        """Record the outputs of a dispatched node."""
        key = node_key(item.node.name, self.context)
        self.tensor_map[key] = list(outputs) if outputs is not None else []
        self.executed += 1
        self._on_complete(item)

    def _on_complete(self, item: ScheduledNode) -> None:
        pass


class StaticPlan(ExecutionPlan):
    """Runs a precompiled topological order in the root frame."""

    def __init__(
        self,
        order: Sequence[Node],
        tensor_map: NamedTensorsMap,
        context: ExecutionContext,
    ):
        super().__init__(tensor_map, context)
        self._order = order
        self._position = 0

    def has_next(self) -> bool:
        return self._position < len(self._order)

    def _pop(self) -> ScheduledNode:
        node = self._order[self._position]
        self._position += 1
        return ScheduledNode(node)


class ControlFlowPlan(ExecutionPlan):
    """
    Dependency-driven plan for graphs with loops and branches.

    Work items carry the frame stack they were scheduled under. After a
    node runs, each child not yet scheduled in the current frame becomes
    ready when:

    - merge: ANY input resolves (only one incoming edge is live per
      activation; the first resolvable input wins)
    - anything else: ALL inputs resolve

    Readiness is checked with the frames left behind by the node just
    run, so enter/exit/next_iteration move their consumers into the new
    frame.
    """

    def __init__(
        self,
        graph: Graph,
        tensor_map: NamedTensorsMap,
        context: ExecutionContext,
    ):
        super().__init__(tensor_map, context)
        frames = context.current_context
        self._stack: List[ScheduledNode] = [ScheduledNode(n, frames) for n in graph.inputs]
        self._added: Set[NodeKey] = set()

    def has_next(self) -> bool:
        return bool(self._stack)

    def _pop(self) -> ScheduledNode:
        return self._stack.pop()

    def _is_ready(self, child: Node) -> bool:
        resolved = (
            get_tensor(name, self.tensor_map, self.context) is not None
            for name in child.input_names
        )
        if child.op == Ops.MERGE:
            return any(resolved)
        return all(resolved)

    def _on_complete(self, item: ScheduledNode) -> None:
        frames = self.context.current_context
        for child in item.node.children:
            key = node_key(child.name, self.context)
            if key in self._added:
                continue
            if self._is_ready(child):
                self._added.add(key)
                self._stack.append(ScheduledNode(child, frames))


def _check_outputs(item: ScheduledNode, outputs: Any) -> Any:
    if inspect.isawaitable(outputs):
        close = getattr(outputs, "close", None)
        if close is not None:
            close()
        raise ControlFlowError(
            "Kernel returned an awaitable during synchronous execution; "
            "use execute_async()",
            node_name=item.node.name,
        )
    return outputs


def run_plan(plan: ExecutionPlan, dispatch: Dispatch) -> NamedTensorsMap:
    """
    Drive a plan to completion synchronously.

    Any exception raised by a kernel propagates unchanged.
    """
    while plan.has_next():
        item = plan.next_item()
        outputs = _check_outputs(item, dispatch(item.node, plan.tensor_map, plan.context))
        plan.complete(item, outputs)
    logger.debug("plan finished after %d node executions", plan.executed)
    return plan.tensor_map


async def run_plan_async(plan: ExecutionPlan, dispatch: Dispatch) -> NamedTensorsMap:
    """Drive a plan to completion, awaiting kernels at node boundaries."""
    while plan.has_next():
        item = plan.next_item()
        outputs = dispatch(item.node, plan.tensor_map, plan.context)
        if inspect.isawaitable(outputs):
            outputs = await outputs
        plan.complete(item, outputs)
    logger.debug("plan finished after %d node executions", plan.executed)
    return plan.tensor_map
