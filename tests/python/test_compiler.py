# Copyright 2025 Wahyu Ardiansyah
# Licensed under the Apache License, Version 2.0

"""
Tests for the static compiler.
"""

from meridian.core import GraphBuilder
from meridian.execution import compile_execution_order, is_topological_order


class TestStaticOrder:
    """Tests for compile_execution_order."""

    def test_chain_order(self, chain_graph):
        graph, _ = chain_graph
        order = [n.name for n in compile_execution_order(graph)]
        assert order.index("a") < order.index("b") < order.index("y")
        assert order.index("x") < order.index("a")

    def test_covers_every_node_once(self, chain_graph):
        """Test every reachable node appears exactly once."""
        graph, _ = chain_graph
        order = compile_execution_order(graph)
        names = [n.name for n in order]
        assert sorted(names) == sorted(graph.nodes)
        assert len(set(names)) == len(names)

    def test_diamond(self):
        """Test a node with two paths from one source runs after both."""
        builder = GraphBuilder("diamond")
        builder.add_placeholder("x")
        builder.add_node("relu", "left", ["x"])
        builder.add_node("relu6", "right", ["x"])
        builder.add_node("add", "join", ["left", "right"])
        builder.set_outputs(["join"])
        order = compile_execution_order(builder.build())
        names = [n.name for n in order]
        assert names[-1] == "join"
        assert is_topological_order(order)

    def test_control_flow_graph_has_no_static_order(self, loop_graph):
        graph, _ = loop_graph()
        assert compile_execution_order(graph) == []

    def test_is_topological_order_detects_violation(self, chain_graph):
        graph, _ = chain_graph
        order = compile_execution_order(graph)
        assert not is_topological_order(list(reversed(order)))
