# Copyright 2025 Wahyu Ardiansyah
# Licensed under the Apache License, Version 2.0

"""
Accelerated Model Compiler

Lowers a control-flow-free graph onto an accelerated backend
(NeuralNetworkContext) and runs it.

Compilation happens once, on the first run, because operand shapes are
derived from the first input. Each compute node is lowered through a
table keyed by operator kind:

    placeholder          -> float32 tensor operand (model input)
    const                -> deferred; materialized by its consumer
    conv2d               -> CONV_2D (+ fused bias add and clamp)
    depthwise_conv2d     -> DEPTHWISE_CONV_2D (+ fused bias add and clamp)
    avg_pool             -> AVERAGE_POOL_2D (+ fused clamp)
    squeeze, reshape     -> RESHAPE with an int32 shape operand
    softmax              -> SOFTMAX with beta

Constants are materialized in the layout their consumer needs: conv2d
filters [h, w, in, out] are transposed to [out, h, w, in], depthwise
filters [h, w, in, m] are reshaped to [1, h, w, in * m]. Kinds without a
lowering are skipped and reported; a lowered node that reads the output
of a skipped node fails compilation.
"""

import logging
import threading
import time
from dataclasses import dataclass
from typing import Callable, Dict, Iterable, List, Mapping, Optional, Sequence, Set, Tuple

import numpy as np

from ..core.graph import Graph
from ..core.node import Node, Ops
from ..core.tensor import Tensor
from ..errors import (
    AcceleratedCompilationError,
    BackendExecutionError,
    UnsupportedFeatureError,
)
from ..execution.context import WeightMap
from ..execution.operators.conv_ops import conv_output_shape, pool_output_shape
from ..execution.operators.shape_ops import squeeze_shape
from ..observability import MeridianLogger
from .base import (
    Execution,
    NeuralNetworkContext,
    NeuralNetworkModel,
    OperandCode,
    OperandType,
    OperationCode,
    Preference,
)
from .fusion import FusedPattern, match_fused_pattern
from .params import (
    ConvParams,
    LoweringParams,
    PoolParams,
    ReshapeParams,
    SoftmaxParams,
    SqueezeParams,
    parse_params,
)

logger = logging.getLogger("meridian.accelerator.compiler")

InputMap = Mapping[str, Sequence[Tensor]]


@dataclass(frozen=True)
class OperandInfo:
    """Index, element type and dimensions of an operand in the backend model."""

    index: int
    type: OperandCode
    shape: Tuple[int, ...]


def _resolve_shape(input_shape: Sequence[int], shape: Sequence[int]) -> Tuple[int, ...]:
    """Fill a single -1 dimension of a reshape target."""
    total = int(np.prod(input_shape))
    known = int(np.prod([d for d in shape if d != -1]))
    if known == 0 and -1 in shape:
        raise ValueError(f"cannot infer -1 in {list(shape)} next to a zero dimension")
    resolved = tuple(total // known if d == -1 else d for d in shape)
    if int(np.prod(resolved)) != total:
        raise ValueError(f"cannot reshape {list(input_shape)} to {list(shape)}")
    return resolved


class AcceleratedModel:
    """
    A graph compiled onto an accelerated backend.

    The model is built lazily and at most once. Runs are serialized, since
    a backend execution instance is not reentrant.

    Attributes:
        operands: Operand of every lowered value, keyed by producing node
        skipped_nodes: Nodes without a lowering
        fused_patterns: Chains executed as one backend operation
    """

    def __init__(
        self,
        graph: Graph,
        order: Sequence[Node],
        weight_map: WeightMap,
        nn_context: NeuralNetworkContext,
        preference: Preference = Preference.FAST_SINGLE_ANSWER,
    ):
        self._graph = graph
        self._order = list(order)
        self._weight_map = weight_map
        self._nn = nn_context
        self._preference = preference

        self._compile_lock = threading.Lock()
        self._run_lock = threading.Lock()
        self._model: Optional[NeuralNetworkModel] = None
        self._execution: Optional[Execution] = None
        self._operand_count = 0

        self.operands: Dict[str, OperandInfo] = {}
        self.skipped_nodes: List[Node] = []
        self.fused_patterns: List[FusedPattern] = []
        self.operation_count = 0

        self._lowerings: Dict[str, Callable[[Node, Optional[LoweringParams], InputMap], Iterable[Node]]] = {
            Ops.PLACEHOLDER: self._lower_placeholder,
            Ops.CONST: self._defer_const,
            Ops.CONV2D: self._lower_conv,
            Ops.DEPTHWISE_CONV2D: self._lower_conv,
            Ops.AVG_POOL: self._lower_avg_pool,
            Ops.SQUEEZE: self._lower_squeeze,
            Ops.RESHAPE: self._lower_reshape,
            Ops.SOFTMAX: self._lower_softmax,
        }

    @property
    def is_compiled(self) -> bool:
        return self._execution is not None

    @property
    def backend_name(self) -> str:
        return self._nn.name

    @property
    def input_name(self) -> str:
        return self._graph.placeholders[0].name

    @property
    def output_name(self) -> str:
        return self._graph.outputs[0].name

    # ------------------------------------------------------------------
    # Compilation
    # ------------------------------------------------------------------

    def compile(self, inputs: InputMap) -> None:
        """Build the backend model from the shapes of inputs. No-op once compiled."""
        with self._compile_lock:
            if self._execution is not None:
                return
            self._build(inputs)

    def _check_signature(self) -> None:
        if len(self._graph.placeholders) != 1:
            raise AcceleratedCompilationError(
                f"graph has {len(self._graph.placeholders)} inputs, exactly one is supported"
            )
        if len(self._graph.outputs) != 1:
            raise AcceleratedCompilationError(
                f"graph has {len(self._graph.outputs)} outputs, exactly one is supported"
            )

    def _build(self, inputs: InputMap) -> None:
        self._check_signature()
        start_time = time.perf_counter()
        structured = MeridianLogger.get()

        self._model = self._nn.create_model()
        self._operand_count = 0
        self.operation_count = 0
        self.operands.clear()
        self.skipped_nodes.clear()
        self.fused_patterns.clear()
        lowered: Set[str] = set()

        for node in self._order:
            if node.name in lowered:
                continue
            lowering = self._lowerings.get(node.op)
            if lowering is None:
                self.skipped_nodes.append(node)
                lowered.add(node.name)
                continue
            lowered.update(n.name for n in lowering(node, parse_params(node), inputs))

        if self.skipped_nodes:
            names = [n.name for n in self.skipped_nodes]
            logger.warning("nodes without an accelerated lowering: %s", names)
            structured.warning(
                f"{len(names)} node(s) skipped during accelerated compilation",
                component="accelerator",
                graph_name=self._graph.name,
                skipped=names,
            )

        input_info = self.operands[self.input_name]
        output_info = self.operands.get(self.output_name)
        if output_info is None:
            raise AcceleratedCompilationError(
                f"output '{self.output_name}' is not produced by a lowered operation",
                node_name=self.output_name,
            )

        self._model.identify_inputs_and_outputs([input_info.index], [output_info.index])
        self._model.finish()
        compilation = self._model.compile(self._preference)
        self._execution = compilation.create_execution()

        structured.info(
            f"Compiled accelerated model on {self.backend_name}",
            component="accelerator",
            graph_name=self._graph.name,
            operation="compile",
            duration_ms=(time.perf_counter() - start_time) * 1000,
            operands=self._operand_count,
            operations=self.operation_count,
            fused=len(self.fused_patterns),
        )

    # ------------------------------------------------------------------
    # Operand helpers
    # ------------------------------------------------------------------

    def _add_operand(self, code: OperandCode, shape: Sequence[int] = ()) -> int:
        self._model.add_operand(OperandType(code, tuple(int(d) for d in shape)))
        index = self._operand_count
        self._operand_count += 1
        return index

    def _add_tensor(
        self,
        shape: Sequence[int],
        value: Optional[np.ndarray] = None,
        name: Optional[str] = None,
        code: OperandCode = OperandCode.TENSOR_FLOAT32,
    ) -> OperandInfo:
        index = self._add_operand(code, shape)
        if value is not None:
            self._model.set_operand_value(index, value)
        info = OperandInfo(index, code, tuple(int(d) for d in shape))
        if name is not None:
            self.operands[name] = info
        return info

    def _add_scalar_int32(self, value: int) -> int:
        index = self._add_operand(OperandCode.INT32)
        self._model.set_operand_value(index, np.array(value, dtype=np.int32))
        return index

    def _add_scalar_float32(self, value: float) -> int:
        index = self._add_operand(OperandCode.FLOAT32)
        self._model.set_operand_value(index, np.array(value, dtype=np.float32))
        return index

    def _add_operation(self, op: OperationCode, inputs: List[int], output: OperandInfo) -> None:
        self._model.add_operation(op, inputs, [output.index])
        self.operation_count += 1

    def _constant_value(self, name: str, consumer: Node) -> np.ndarray:
        producer = self._graph.get_node(name)
        if producer is None or producer.op != Ops.CONST:
            raise AcceleratedCompilationError(
                f"'{name}' must be a constant", node_name=consumer.name
            )
        weights = self._weight_map.get(name)
        if weights:
            return weights[0].numpy()
        value = producer.get_param("value")
        if value is None:
            raise AcceleratedCompilationError(
                f"constant '{name}' has no value", node_name=consumer.name
            )
        return np.asarray(value)

    def _operand(self, name: str, consumer: Node) -> OperandInfo:
        """Operand of a consumer's input, materializing constants on demand."""
        info = self.operands.get(name)
        if info is not None:
            return info
        producer = self._graph.get_node(name)
        if producer is not None and producer.op == Ops.CONST:
            value = self._constant_value(name, consumer).astype(np.float32)
            return self._add_tensor(value.shape, value, name=name)
        raise AcceleratedCompilationError(
            f"input '{name}' of '{consumer.name}' was not lowered",
            node_name=consumer.name,
        )

    def _rank4_input(self, node: Node) -> OperandInfo:
        x = self._operand(node.input_node_names[0], node)
        if len(x.shape) != 4:
            raise UnsupportedFeatureError("input rank", len(x.shape), node_name=node.name, supported=["4"])
        return x

    # ------------------------------------------------------------------
    # Lowerings
    # ------------------------------------------------------------------

    def _lower_placeholder(self, node: Node, params, inputs: InputMap) -> Iterable[Node]:
        tensors = inputs.get(node.name)
        if not tensors:
            raise AcceleratedCompilationError(
                f"no value supplied for input '{node.name}'", node_name=node.name
            )
        self._add_tensor(tensors[0].shape, name=node.name)
        return [node]

    def _defer_const(self, node: Node, params, inputs: InputMap) -> Iterable[Node]:
        return [node]

    def _lower_conv(self, node: Node, params: ConvParams, inputs: InputMap) -> Iterable[Node]:
        pattern = match_fused_pattern(node, self._graph)
        x = self._rank4_input(node)
        weights = self._constant_value(node.input_node_names[1], node)
        if weights.ndim != 4:
            raise UnsupportedFeatureError("filter rank", weights.ndim, node_name=node.name, supported=["4"])

        kh, kw, in_channels, last = weights.shape
        if params.depthwise:
            out_channels = in_channels * last
            filter_value = weights.reshape(1, kh, kw, out_channels)
        else:
            out_channels = last
            filter_value = np.transpose(weights, (3, 0, 1, 2))
        filter_info = self._add_tensor(filter_value.shape, np.ascontiguousarray(filter_value, dtype=np.float32))

        if pattern.bias_name is None:
            bias = np.zeros(out_channels, dtype=np.float32)
        else:
            bias = self._constant_value(pattern.bias_name, pattern.bias_add)
            if bias.size != out_channels or (bias.ndim > 1 and bias.shape[-1] != out_channels):
                raise UnsupportedFeatureError(
                    "bias shape", list(bias.shape), node_name=pattern.bias_add.name,
                    supported=[f"[{out_channels}]"],
                )
            bias = bias.reshape(out_channels).astype(np.float32)
        bias_info = self._add_tensor(bias.shape, bias)

        out_shape = conv_output_shape(x.shape, weights.shape, params.strides, params.pad, params.depthwise)
        operation_inputs = [
            x.index,
            filter_info.index,
            bias_info.index,
            self._add_scalar_int32(params.padding_code),
            self._add_scalar_int32(params.strides[1]),
            self._add_scalar_int32(params.strides[0]),
        ]
        if params.depthwise:
            operation_inputs.append(self._add_scalar_int32(last))
        operation_inputs.append(self._add_scalar_int32(pattern.fuse_code))

        output = self._add_tensor(out_shape, name=pattern.output_node.name)
        op = OperationCode.DEPTHWISE_CONV_2D if params.depthwise else OperationCode.CONV_2D
        self._add_operation(op, operation_inputs, output)

        if len(pattern.nodes) > 1:
            self.fused_patterns.append(pattern)
        return pattern.nodes

    def _lower_avg_pool(self, node: Node, params: PoolParams, inputs: InputMap) -> Iterable[Node]:
        pattern = match_fused_pattern(node, self._graph)
        x = self._rank4_input(node)
        out_shape = pool_output_shape(x.shape, params.kernel_size, params.strides, params.pad)

        operation_inputs = [
            x.index,
            self._add_scalar_int32(params.padding_code),
            self._add_scalar_int32(params.strides[1]),
            self._add_scalar_int32(params.strides[0]),
            self._add_scalar_int32(params.kernel_size[1]),
            self._add_scalar_int32(params.kernel_size[0]),
            self._add_scalar_int32(pattern.fuse_code),
        ]
        output = self._add_tensor(out_shape, name=pattern.output_node.name)
        self._add_operation(OperationCode.AVERAGE_POOL_2D, operation_inputs, output)

        if len(pattern.nodes) > 1:
            self.fused_patterns.append(pattern)
        return pattern.nodes

    def _lower_as_reshape(self, node: Node, x: OperandInfo, shape: Sequence[int]) -> Iterable[Node]:
        shape_value = np.asarray(shape, dtype=np.int32)
        shape_info = self._add_tensor(shape_value.shape, shape_value, code=OperandCode.TENSOR_INT32)
        output = self._add_tensor(shape, name=node.name)
        self._add_operation(OperationCode.RESHAPE, [x.index, shape_info.index], output)
        return [node]

    def _lower_squeeze(self, node: Node, params: SqueezeParams, inputs: InputMap) -> Iterable[Node]:
        x = self._operand(node.input_node_names[0], node)
        try:
            shape = squeeze_shape(x.shape, params.axis)
        except ValueError as e:
            raise AcceleratedCompilationError(str(e), node_name=node.name) from e
        return self._lower_as_reshape(node, x, shape)

    def _lower_reshape(self, node: Node, params: ReshapeParams, inputs: InputMap) -> Iterable[Node]:
        x = self._operand(node.input_node_names[0], node)
        target = params.shape
        if target is None:
            if len(node.input_names) < 2:
                raise AcceleratedCompilationError("no target shape", node_name=node.name)
            target = [int(d) for d in self._constant_value(node.input_node_names[1], node).reshape(-1)]
        try:
            shape = _resolve_shape(x.shape, target)
        except ValueError as e:
            raise AcceleratedCompilationError(str(e), node_name=node.name) from e
        return self._lower_as_reshape(node, x, shape)

    def _lower_softmax(self, node: Node, params: SoftmaxParams, inputs: InputMap) -> Iterable[Node]:
        x = self._operand(node.input_node_names[0], node)
        if params.axis not in (-1, len(x.shape) - 1):
            raise UnsupportedFeatureError("softmax axis", params.axis, node_name=node.name, supported=["-1"])
        output = self._add_tensor(x.shape, name=node.name)
        self._add_operation(
            OperationCode.SOFTMAX,
            [x.index, self._add_scalar_float32(params.beta)],
            output,
        )
        return [node]

    # ------------------------------------------------------------------
    # Execution
    # ------------------------------------------------------------------

    def run(self, inputs: InputMap) -> Dict[str, Tensor]:
        """
        Run the compiled model, compiling it first if needed.

        Returns:
            {output name: tensor}

        Raises:
            BackendExecutionError: If the backend reports an error
        """
        self.compile(inputs)

        value = np.ascontiguousarray(inputs[self.input_name][0].numpy(), dtype=np.float32)
        expected = self.operands[self.input_name].shape
        if value.shape != expected:
            raise AcceleratedCompilationError(
                f"input shape {list(value.shape)} differs from compiled shape {list(expected)}",
                node_name=self.input_name,
            )

        output = np.zeros(self.operands[self.output_name].shape, dtype=np.float32)
        with self._run_lock:
            self._execution.set_input(0, value)
            self._execution.set_output(0, output)
            error = self._execution.run()

        if error is not None:
            raise BackendExecutionError(error, backend=self.backend_name)
        return {self.output_name: Tensor(output)}
