# Copyright 2025 Wahyu Ardiansyah
# Licensed under the Apache License, Version 2.0

"""
Pytest configuration for Meridian Python tests.

Shared graph fixtures. Each graph fixture returns a factory so tests can
build fresh graphs (and weights) with their own parameters.
"""

import sys
from pathlib import Path

import numpy as np
import pytest

# Add the project root to sys.path so we can import meridian
project_root = Path(__file__).parent.parent.parent
sys.path.insert(0, str(project_root))

collect_ignore = []

# Check for hypothesis
try:
    import hypothesis  # noqa: F401
except ImportError:
    collect_ignore.append("test_property_based.py")

from meridian.core import GraphBuilder, Tensor  # noqa: E402
from meridian.observability import MeridianLogger  # noqa: E402


def build_add_graph():
    """y = x + five, five = 5.0 from the weight map."""
    builder = GraphBuilder("add5")
    builder.add_placeholder("x")
    builder.add_const("five")
    builder.add_node("add", "y", ["x", "five"])
    builder.set_outputs(["y"])
    return builder.build(), {"five": [Tensor(np.float32(5.0))]}


def build_chain_graph():
    """x -> add(c) -> relu -> mul(two) -> y, with intermediates "a" and "b"."""
    builder = GraphBuilder("chain")
    builder.add_placeholder("x")
    builder.add_const("c")
    builder.add_const("two")
    builder.add_node("add", "a", ["x", "c"])
    builder.add_node("relu", "b", ["a"])
    builder.add_node("mul", "y", ["b", "two"])
    builder.set_outputs(["y"])
    weights = {
        "c": [Tensor(np.array([-1.0, 1.0], dtype=np.float32))],
        "two": [Tensor(np.float32(2.0))],
    }
    return builder.build(), weights


def build_loop_graph(limit=3):
    """
    while i < limit: i = i + 1, starting from i = x.

    The body node is "body"; the loop result leaves the frame through "exit".
    """
    builder = GraphBuilder("counter")
    builder.add_placeholder("x")
    builder.add_const("limit")
    builder.add_const("one")
    builder.add_node("enter", "enter", ["x"], {"frame_name": "loop"})
    builder.add_node("merge", "merge", ["enter", "next"])
    builder.add_node("less", "less", ["merge", "limit"])
    builder.add_node("loop_cond", "cond", ["less"])
    builder.add_node("switch", "switch", ["merge", "cond"])
    builder.add_node("exit", "exit", ["switch:0"])
    builder.add_node("add", "body", ["switch:1", "one"])
    builder.add_node("next_iteration", "next", ["body"])
    builder.set_outputs(["exit"])
    weights = {
        "limit": [Tensor(np.float32(limit))],
        "one": [Tensor(np.float32(1.0))],
    }
    return builder.build(), weights


def build_branch_graph():
    """
    out = merge(identity(x), x * 10), routed by switch on pred.

    pred true takes the "scaled" branch, false the "kept" branch.
    """
    builder = GraphBuilder("branch")
    builder.add_placeholder("x")
    builder.add_placeholder("pred")
    builder.add_const("ten")
    builder.add_node("switch", "switch", ["x", "pred"])
    builder.add_node("identity", "kept", ["switch:0"])
    builder.add_node("mul", "scaled", ["switch:1", "ten"])
    builder.add_node("merge", "out", ["kept", "scaled"])
    builder.set_outputs(["out"])
    return builder.build(), {"ten": [Tensor(np.float32(10.0))]}


def build_conv_graph(seed=0, conv_params=None):
    """
    conv2d -> bias_add -> relu6 -> avg_pool -> squeeze -> softmax.

    Input "x" is [1, 5, 5, 2]; output "probs" is [1, 4].
    """
    rng = np.random.default_rng(seed)
    params = {"strides": [1, 1, 1, 1], "pad": "same", "data_format": "NHWC"}
    params.update(conv_params or {})

    builder = GraphBuilder("tiny_cnn")
    builder.add_placeholder("x")
    builder.add_const("w")
    builder.add_const("b")
    builder.add_node("conv2d", "conv", ["x", "w"], params)
    builder.add_node("bias_add", "biased", ["conv", "b"])
    builder.add_node("relu6", "act", ["biased"])
    builder.add_node(
        "avg_pool",
        "pool",
        ["act"],
        {"kernel_size": [1, 5, 5, 1], "strides": [1, 1, 1, 1], "pad": "valid"},
    )
    builder.add_node("squeeze", "flat", ["pool"], {"axis": [1, 2]})
    builder.add_node("softmax", "probs", ["flat"])
    builder.set_outputs(["probs"])
    weights = {
        "w": [Tensor(rng.standard_normal((3, 3, 2, 4)).astype(np.float32))],
        "b": [Tensor(rng.standard_normal(4).astype(np.float32))],
    }
    return builder.build(), weights


@pytest.fixture(autouse=True)
def fresh_logger():
    """Give every test its own structured logger."""
    MeridianLogger.reset()
    yield
    MeridianLogger.reset()


@pytest.fixture
def add_graph():
    return build_add_graph()


@pytest.fixture
def chain_graph():
    return build_chain_graph()


@pytest.fixture
def loop_graph():
    return build_loop_graph


@pytest.fixture
def branch_graph():
    return build_branch_graph()


@pytest.fixture
def conv_graph():
    return build_conv_graph


@pytest.fixture
def conv_input():
    rng = np.random.default_rng(42)
    return rng.standard_normal((1, 5, 5, 2)).astype(np.float32)
