# Copyright 2025 Wahyu Ardiansyah
# Licensed under the Apache License, Version 2.0

"""
Graph

The inference graph executed by GraphExecutor. A Graph is assembled with
GraphBuilder and is immutable afterwards.

Example:
    builder = GraphBuilder(name="add_five")
    builder.add_placeholder("x")
    builder.add_const("five")
    builder.add_node("add", "y", ["x", "five"])
    builder.set_outputs(["y"])
    graph = builder.build()
"""

from typing import Any, Dict, List, Optional, Sequence

from ..errors import MeridianError
from .node import Node, Ops, parse_node_name


class Graph:
    """
    Immutable inference graph.

    Attributes:
        name: Graph identifier
        placeholders: Graph inputs, in declaration order
        inputs: Root nodes (no inputs): placeholders and constants
        outputs: Declared graph outputs, in declaration order
        nodes: Every node reachable from the root nodes
        with_control_flow: True when any loop/branch operator is present
    """

    def __init__(
        self,
        name: str,
        nodes: Dict[str, Node],
        placeholders: List[Node],
        inputs: List[Node],
        outputs: List[Node],
    ):
        self._name = name
        self._nodes = nodes
        self._placeholders = tuple(placeholders)
        self._inputs = tuple(inputs)
        self._outputs = tuple(outputs)
        self._with_control_flow = any(n.is_control_flow for n in nodes.values())

    @property
    def name(self) -> str:
        return self._name

    @property
    def placeholders(self) -> tuple:
        return self._placeholders

    @property
    def inputs(self) -> tuple:
        return self._inputs

    @property
    def outputs(self) -> tuple:
        return self._outputs

    @property
    def nodes(self) -> Dict[str, Node]:
        """Name to node mapping (read-only by convention)."""
        return self._nodes

    @property
    def with_control_flow(self) -> bool:
        return self._with_control_flow

    @property
    def weight_names(self) -> List[str]:
        """Names of constant nodes, whose values come from the weight map."""
        return [n.name for n in self._inputs if n.op == Ops.CONST]

    def get_node(self, name: str) -> Optional[Node]:
        """Get node by name (an output suffix such as ":1" is ignored)."""
        return self._nodes.get(parse_node_name(name)[0])

    def __contains__(self, name: str) -> bool:
        return self.get_node(name) is not None

    def __len__(self) -> int:
        return len(self._nodes)

    def __repr__(self) -> str:
        return (
            f"Graph(name='{self._name}', nodes={len(self._nodes)}, "
            f"control_flow={self._with_control_flow})"
        )


class GraphBuilder:
    """
    Collects node declarations and links them into a Graph.

    Input references may name a node output with an index suffix
    ("switch:1"). Nodes may be declared in any order; references are
    resolved in build().
    """

    def __init__(self, name: str = ""):
        self.name = name
        self._declared: List[Node] = []
        self._by_name: Dict[str, Node] = {}
        self._output_names: List[str] = []

    def add_node(
        self,
        op: str,
        name: str,
        inputs: Optional[Sequence[str]] = None,
        params: Optional[Dict[str, Any]] = None,
    ) -> Node:
        """Declare a node."""
        if name in self._by_name:
            raise MeridianError(
                f"Duplicate node name: {name}",
                context={"graph": self.name},
            )
        node = Node(
            name=name,
            op=op,
            input_names=list(inputs or []),
            params=dict(params or {}),
        )
        self._declared.append(node)
        self._by_name[name] = node
        return node

    def add_placeholder(self, name: str, **params: Any) -> Node:
        """Declare a graph input."""
        return self.add_node(Ops.PLACEHOLDER, name, params=params)

    def add_const(self, name: str, **params: Any) -> Node:
        """Declare a constant whose value is supplied by the weight map."""
        return self.add_node(Ops.CONST, name, params=params)

    def set_outputs(self, names: Sequence[str]) -> None:
        """Declare graph outputs."""
        self._output_names = list(names)

    def build(self) -> Graph:
        """
        Resolve references, link children and freeze the graph.

        Raises:
            MeridianError: On dangling input references or unknown outputs.
        """
        dangling = []
        for node in self._declared:
            for input_name in node.input_node_names:
                producer = self._by_name.get(input_name)
                if producer is None:
                    dangling.append(f"{node.name} <- {input_name}")
                elif node not in producer.children:
                    producer.children.append(node)

        if dangling:
            raise MeridianError(
                f"Unresolved input references: {', '.join(dangling)}",
                context={"graph": self.name},
            )

        unknown = [n for n in self._output_names if parse_node_name(n)[0] not in self._by_name]
        if unknown:
            raise MeridianError(
                f"Unknown output nodes: {', '.join(unknown)}",
                context={"graph": self.name},
            )

        roots = [n for n in self._declared if not n.input_names]
        placeholders = [n for n in roots if n.op == Ops.PLACEHOLDER]

        # Keep only nodes reachable from the roots
        reachable: Dict[str, Node] = {}
        stack = list(roots)
        while stack:
            node = stack.pop()
            if node.name in reachable:
                continue
            reachable[node.name] = node
            stack.extend(node.children)

        ordered = {n.name: n for n in self._declared if n.name in reachable}
        outputs = [self._by_name[parse_node_name(n)[0]] for n in self._output_names]

        return Graph(
            name=self.name,
            nodes=ordered,
            placeholders=placeholders,
            inputs=roots,
            outputs=outputs,
        )
