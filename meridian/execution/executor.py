# Copyright 2025 Wahyu Ardiansyah
# Licensed under the Apache License, Version 2.0

"""
Graph Executor

Public entry point for running inference graphs.

Example:
    from meridian import GraphBuilder, GraphExecutor, Tensor

    builder = GraphBuilder("add5")
    builder.add_placeholder("x")
    builder.add_const("five")
    builder.add_node("add", "y", ["x", "five"])
    builder.set_outputs(["y"])

    executor = GraphExecutor(builder.build(), {"five": [Tensor(5.0)]})
    result = executor.execute({"x": 3.0})
    result["y"].numpy()  # 8.0

Each call gets its own execution context and environment, so calls may
run from several threads. The compiled order, weights and accelerated
model are shared.
"""

from __future__ import annotations

import logging
import threading
from typing import Any, Dict, List, Mapping, Optional, Sequence, Tuple, Union

from ..accelerator.base import NeuralNetworkContext, Preference
from ..accelerator.compiler import AcceleratedModel
from ..config import BackendMode, ExecutorConfig
from ..core.graph import Graph
from ..core.node import Node, Ops, parse_node_name
from ..core.tensor import Tensor, as_tensor_list
from ..errors import (
    ConfigurationError,
    InputValidationError,
    MeridianError,
    OutputNotFoundError,
)
from ..observability import MeridianLogger
from .compiler import compile_execution_order
from .context import ROOT_CONTEXT, ExecutionContext, NamedTensorsMap, NodeKey, WeightMap, get_tensor
from .lifetime import TensorLifetimeManager
from .registry import execute_op
from .scheduler import (
    ControlFlowPlan,
    Dispatch,
    ExecutionPlan,
    StaticPlan,
    run_plan,
    run_plan_async,
)

logger = logging.getLogger("meridian.execution.executor")

InputMap = Dict[str, List[Tensor]]
OutputSpec = Optional[Union[str, Sequence[str]]]


class GraphExecutor:
    """
    Executes a Graph with a weight map.

    Graphs without control flow run a static order computed once at
    construction, or the accelerated backend when one is selected. Graphs
    with control flow run under the dynamic scheduler.

    Args:
        graph: Graph to execute.
        weight_map: Constant tensors keyed by const node name.
        accelerator: Optional accelerated backend.
        config: Execution configuration (defaults to ExecutorConfig()).
        dispatch: Callable running one node; defaults to the operator
            registry. May return awaitables for execute_async().
    """

    def __init__(
        self,
        graph: Graph,
        weight_map: Optional[WeightMap] = None,
        accelerator: Optional[NeuralNetworkContext] = None,
        config: Optional[ExecutorConfig] = None,
        dispatch: Dispatch = execute_op,
    ):
        self.graph = graph
        self.config = config or ExecutorConfig()
        self.config.validate()
        if self.config.verbosity is not None:
            MeridianLogger.get().set_verbosity(self.config.verbosity)

        self._accelerator = accelerator
        self._dispatch = dispatch
        self._lifetime = TensorLifetimeManager(weight_map or {})
        self._compiled_order = compile_execution_order(graph)

        self._accelerated: Optional[AcceleratedModel] = None
        self._accelerated_lock = threading.Lock()
        self._use_accelerator = self._select_accelerator()
        self._disposed = False

        logger.debug(
            "executor for %s: %d nodes, control flow=%s, accelerated=%s",
            graph.name,
            len(graph),
            graph.with_control_flow,
            self._use_accelerator,
        )

    # ------------------------------------------------------------------
    # Properties
    # ------------------------------------------------------------------

    @property
    def input_nodes(self) -> List[str]:
        """Names of the declared placeholders, in declaration order."""
        return [node.name for node in self.graph.placeholders]

    @property
    def output_nodes(self) -> List[str]:
        return [node.name for node in self.graph.outputs]

    @property
    def is_control_flow_model(self) -> bool:
        return self.graph.with_control_flow

    @property
    def compiled_order(self) -> List[Node]:
        """Static execution order (empty for control-flow graphs)."""
        return list(self._compiled_order)

    @property
    def weight_map(self) -> WeightMap:
        return self._lifetime.weight_map

    @weight_map.setter
    def weight_map(self, weight_map: WeightMap) -> None:
        self._lifetime.weight_map = weight_map
        with self._accelerated_lock:
            self._accelerated = None

    @property
    def uses_accelerator(self) -> bool:
        return self._use_accelerator

    @property
    def accelerated_model(self) -> Optional[AcceleratedModel]:
        """The accelerated model, once the first accelerated call built it."""
        return self._accelerated

    # ------------------------------------------------------------------
    # Path selection
    # ------------------------------------------------------------------

    def _accelerator_unusable_reason(self) -> Optional[str]:
        if self._accelerator is None:
            return "no accelerator was provided"
        if not self._accelerator.is_available():
            return f"accelerator '{self._accelerator.name}' is not available"
        if self.graph.with_control_flow:
            return "graph has control flow"
        if len(self.graph.placeholders) != 1 or len(self.graph.outputs) != 1:
            return "graph must have exactly one input and one output"
        return None

    def _select_accelerator(self) -> bool:
        mode = self.config.get_backend_mode()
        if mode == BackendMode.INTERPRETER:
            return False

        reason = self._accelerator_unusable_reason()
        if reason is None:
            return True
        if mode == BackendMode.ACCELERATED:
            raise ConfigurationError(
                f"accelerated backend cannot be used: {reason}",
                config_key="backend",
                config_value=self.config.backend,
            )
        logger.debug("interpreting %s: %s", self.graph.name, reason)
        return False

    def _runs_accelerated(self, output_names: List[str]) -> bool:
        if not self._use_accelerator:
            return False
        if output_names == [node.name for node in self.graph.outputs]:
            return True
        if self.config.get_backend_mode() == BackendMode.ACCELERATED:
            raise ConfigurationError(
                "the accelerated backend only produces the graph output",
                config_key="backend",
                config_value=self.config.backend,
            )
        return False

    def _accelerated_model(self) -> AcceleratedModel:
        with self._accelerated_lock:
            if self._accelerated is None:
                self._accelerated = AcceleratedModel(
                    self.graph,
                    self._compiled_order,
                    self.weight_map,
                    self._accelerator,
                    Preference[self.config.preference.upper()],
                )
            return self._accelerated

    # ------------------------------------------------------------------
    # Validation
    # ------------------------------------------------------------------

    def _check_not_disposed(self) -> None:
        if self._disposed:
            raise MeridianError(
                f"executor for graph '{self.graph.name}' has been disposed",
                suggestions=["Create a new GraphExecutor"],
            )

    def _check_inputs(self, inputs: Mapping[str, Any]) -> None:
        declared = [node.name for node in self.graph.placeholders]
        missing = [name for name in declared if name not in inputs]
        extra = [name for name in inputs if name not in declared]
        if missing or extra:
            raise InputValidationError(missing=missing, extra=extra)

    def _output_names(self, outputs: OutputSpec) -> List[str]:
        if outputs is None:
            return [node.name for node in self.graph.outputs]
        names = [outputs] if isinstance(outputs, str) else list(outputs)
        unknown = [name for name in names if parse_node_name(name)[0] not in self.graph]
        if unknown:
            raise InputValidationError(unknown=unknown)
        return names

    def _prepare(self, inputs: Mapping[str, Any], outputs: OutputSpec) -> Tuple[InputMap, List[str]]:
        self._check_not_disposed()
        self._check_inputs(inputs)
        names = self._output_names(outputs)
        tensors = {name: as_tensor_list(value) for name, value in inputs.items()}
        return tensors, names

    # ------------------------------------------------------------------
    # Interpreted execution
    # ------------------------------------------------------------------

    def _create_plan(self, inputs: InputMap) -> ExecutionPlan:
        context = ExecutionContext(self.weight_map)
        tensor_map: NamedTensorsMap = {
            NodeKey(name): list(tensors) for name, tensors in self.weight_map.items()
        }
        tensor_map.update((NodeKey(name), list(tensors)) for name, tensors in inputs.items())

        # Literal constants resolve from the start, like weights
        for node in self.graph.inputs:
            if node.op == Ops.CONST and NodeKey(node.name) not in tensor_map and "value" in node.params:
                tensor_map[NodeKey(node.name)] = [Tensor(node.params["value"])]

        if self.graph.with_control_flow:
            return ControlFlowPlan(self.graph, tensor_map, context)
        return StaticPlan(self._compiled_order, tensor_map, context)

    def _find_outputs(self, plan: ExecutionPlan, names: List[str]) -> Dict[str, Tensor]:
        plan.context.current_context = ROOT_CONTEXT
        results: Dict[str, Tensor] = {}
        missing: List[str] = []
        for name in names:
            tensor = get_tensor(name, plan.tensor_map, plan.context)
            if tensor is None:
                missing.append(name)
            else:
                results[name] = tensor
        if missing:
            raise OutputNotFoundError(missing)
        return results

    def _release(self, plan: ExecutionPlan, results: Dict[str, Tensor], inputs: InputMap) -> None:
        released = self._lifetime.release_intermediates(plan.tensor_map, results, inputs)
        logger.debug("%s: released %d tensors after %d node executions", self.graph.name, released, plan.executed)

    # ------------------------------------------------------------------
    # Public API
    # ------------------------------------------------------------------

    def execute(self, inputs: Mapping[str, Any], outputs: OutputSpec = None) -> Dict[str, Tensor]:
        """
        Run the graph.

        Args:
            inputs: Values keyed by placeholder name. Each value is a Tensor,
                a list of Tensors, or anything numpy can convert.
            outputs: Node name or names to return (default: graph outputs).
                "name:k" selects the k-th output of a node.

        Returns:
            {output name: Tensor}

        Raises:
            InputValidationError: Missing or extra inputs, unknown outputs.
            OutputNotFoundError: A requested output produced no tensor.
        """
        tensors, names = self._prepare(inputs, outputs)
        if self._runs_accelerated(names):
            return self._accelerated_model().run(tensors)

        plan = self._create_plan(tensors)
        run_plan(plan, self._dispatch)
        return self._find_outputs(plan, names)

    def execute_with_cleanup(self, inputs: Mapping[str, Any], outputs: OutputSpec = None) -> Dict[str, Tensor]:
        """
        Run the graph, then dispose every tensor of the call that is not
        a returned output, a supplied input or a weight.

        Intermediates are released even when execution fails.
        """
        tensors, names = self._prepare(inputs, outputs)
        if self._runs_accelerated(names):
            return self._accelerated_model().run(tensors)

        plan = self._create_plan(tensors)
        results: Dict[str, Tensor] = {}
        try:
            run_plan(plan, self._dispatch)
            results = self._find_outputs(plan, names)
        finally:
            self._release(plan, results, tensors)
        return results

    async def execute_async(self, inputs: Mapping[str, Any], outputs: OutputSpec = None) -> Dict[str, Tensor]:
        """Awaitable execute_with_cleanup(); kernels may return awaitables."""
        tensors, names = self._prepare(inputs, outputs)
        if self._runs_accelerated(names):
            return self._accelerated_model().run(tensors)

        plan = self._create_plan(tensors)
        results: Dict[str, Tensor] = {}
        try:
            await run_plan_async(plan, self._dispatch)
            results = self._find_outputs(plan, names)
        finally:
            self._release(plan, results, tensors)
        return results

    def dispose(self) -> None:
        """Release every weight tensor and the accelerated model."""
        if self._disposed:
            return
        released = self._lifetime.dispose_weights()
        with self._accelerated_lock:
            self._accelerated = None
        self._disposed = True

        MeridianLogger.get().info(
            f"Disposed executor ({released} weight tensors released)",
            component="executor",
            graph_name=self.graph.name,
            operation="dispose",
        )

    def __repr__(self) -> str:
        path = "accelerated" if self._use_accelerator else "interpreted"
        return f"GraphExecutor(graph={self.graph.name!r}, nodes={len(self.graph)}, path={path})"
