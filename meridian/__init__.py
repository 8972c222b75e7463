# Copyright 2025 Wahyu Ardiansyah
# Licensed under the Apache License, Version 2.0

"""
Meridian: Graph Execution Engine for Inference Graphs

Runs dataflow graphs (with or without loops and branches) over numpy
tensors, optionally offloading control-flow-free graphs to an
accelerated neural-network backend.

Example:
    import meridian

    builder = meridian.GraphBuilder("add5")
    builder.add_placeholder("x")
    builder.add_const("five", value=5.0)
    builder.add_node("add", "y", ["x", "five"])
    builder.set_outputs(["y"])

    executor = meridian.GraphExecutor(builder.build())
    executor.execute({"x": 3.0})["y"].numpy()  # 8.0
"""

__version__ = "0.1.0"
__author__ = "Wahyu Ardiansyah"

from .core import Graph, GraphBuilder, Node, Ops, Tensor
from .config import ExecutorConfig
from .errors import (
    MeridianError,
    InputValidationError,
    UnsupportedOperationError,
    KernelError,
    UnsupportedFeatureError,
    AcceleratedCompilationError,
    BackendExecutionError,
    ControlFlowError,
    OutputNotFoundError,
    ConfigurationError,
    TensorDisposedError,
)
from .execution import GraphExecutor, OperatorRegistry
from .accelerator import NeuralNetworkContext, ReferenceContext
from .observability import get_logger, set_verbosity

__all__ = [
    "__version__",
    "Graph",
    "GraphBuilder",
    "Node",
    "Ops",
    "Tensor",
    "ExecutorConfig",
    "MeridianError",
    "InputValidationError",
    "UnsupportedOperationError",
    "KernelError",
    "UnsupportedFeatureError",
    "AcceleratedCompilationError",
    "BackendExecutionError",
    "ControlFlowError",
    "OutputNotFoundError",
    "ConfigurationError",
    "TensorDisposedError",
    "GraphExecutor",
    "OperatorRegistry",
    "NeuralNetworkContext",
    "ReferenceContext",
    "get_logger",
    "set_verbosity",
]
