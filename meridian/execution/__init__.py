# Copyright 2025 Wahyu Ardiansyah
# Licensed under the Apache License, Version 2.0

"""
Meridian Execution Engine

Components:
- ExecutionContext: Frame stack and weight lookup for one call
- OperatorRegistry: Maps op kinds to kernel functions
- compile_execution_order: Static topological order
- StaticPlan / ControlFlowPlan: Execution plans driven by run_plan
- TensorLifetimeManager: Releases intermediate tensors
- GraphExecutor: Public entry point
"""

from .context import ExecutionContext, Frame, NodeKey, get_tensor
from .registry import OperatorRegistry, execute_op
from .compiler import compile_execution_order, is_topological_order
from .scheduler import (
    ControlFlowPlan,
    ExecutionPlan,
    ScheduledNode,
    StaticPlan,
    run_plan,
    run_plan_async,
)
from .lifetime import TensorLifetimeManager
from .executor import GraphExecutor

__all__ = [
    "ExecutionContext",
    "Frame",
    "NodeKey",
    "get_tensor",
    "OperatorRegistry",
    "execute_op",
    "compile_execution_order",
    "is_topological_order",
    "ControlFlowPlan",
    "ExecutionPlan",
    "ScheduledNode",
    "StaticPlan",
    "run_plan",
    "run_plan_async",
    "TensorLifetimeManager",
    "GraphExecutor",
]
