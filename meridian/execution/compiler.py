# Copyright 2025 Wahyu Ardiansyah
# Licensed under the Apache License, Version 2.0

"""
Static Compiler

Computes a fixed execution order for graphs without control flow. The
order is computed once per executor and reused by every interpreted call.
"""

from __future__ import annotations

import logging
from typing import Dict, List, Sequence, Set

from ..core.graph import Graph
from ..core.node import Node

logger = logging.getLogger("meridian.execution.compiler")


def compile_execution_order(graph: Graph) -> List[Node]:
    """
    Topologically order every node reachable from the graph inputs.

    Depth-first traversal with an explicit work stack (no recursion, so
    deep graphs do not hit the interpreter's recursion limit). A child is
    pushed only once all of its inputs have been visited, which makes the
    emitted order topological even though children are explored eagerly.

    Graphs with control flow get an empty order: their execution order
    depends on tensor values and is decided by the control-flow scheduler.

    Args:
        graph: Graph to compile.

    Returns:
        Nodes in execution order.
    """
    if graph.with_control_flow:
        logger.debug("graph %s has control flow, static order skipped", graph.name)
        return []

    order: List[Node] = []
    visited: Set[str] = set()
    scheduled: Set[str] = {node.name for node in graph.inputs}
    stack: List[Node] = list(graph.inputs)

    while stack:
        node = stack.pop()
        visited.add(node.name)
        order.append(node)

        for child in node.children:
            if child.name in scheduled:
                continue
            if all(name in visited for name in child.input_node_names):
                scheduled.add(child.name)
                stack.append(child)

    logger.debug("compiled %d of %d nodes for graph %s", len(order), len(graph), graph.name)
    return order


def is_topological_order(order: Sequence[Node]) -> bool:
    """Check that every node appears after all of its input producers."""
    position: Dict[str, int] = {node.name: index for index, node in enumerate(order)}
    for index, node in enumerate(order):
        for name in node.input_node_names:
            if position.get(name, len(order)) >= index:
                return False
    return True
