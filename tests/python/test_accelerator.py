# Copyright 2025 Wahyu Ardiansyah
# Licensed under the Apache License, Version 2.0

"""
Tests for the accelerated path.

Validates:
- Fusion matching and fuse codes
- Accelerated results match the interpreter
- Unsupported parameters, skipped nodes and backend errors
- Path selection between interpreter and accelerator
"""

import time
from concurrent.futures import ThreadPoolExecutor

import numpy as np
import pytest

from meridian import ExecutorConfig, GraphExecutor
from meridian.accelerator import (
    Compilation,
    Execution,
    FuseCode,
    OperandCode,
    OperationCode,
    OperandType,
    ReferenceContext,
    fuse_code_for,
    match_fused_pattern,
)
from meridian.accelerator.reference import ReferenceExecution, ReferenceModel
from meridian.core import GraphBuilder, Tensor
from meridian.errors import (
    AcceleratedCompilationError,
    BackendExecutionError,
    ConfigurationError,
    UnsupportedFeatureError,
)
from meridian.observability import MeridianLogger

INTERPRETER = ExecutorConfig(backend="interpreter")


def single_op_graph(op, params, weight_shape, seed=1):
    """x -> op(x, w) -> out with a random weight."""
    rng = np.random.default_rng(seed)
    builder = GraphBuilder(f"single_{op}")
    builder.add_placeholder("x")
    builder.add_const("w")
    builder.add_node(op, "out", ["x", "w"], params)
    builder.set_outputs(["out"])
    return builder.build(), {"w": [Tensor(rng.standard_normal(weight_shape).astype(np.float32))]}


def interpreted(graph, weights, inputs):
    return GraphExecutor(graph, weights, config=INTERPRETER).execute(inputs)


class FailingExecution(Execution):
    def set_input(self, index, buffer):
        pass

    def set_output(self, index, buffer):
        pass

    def run(self):
        return "device lost"


class FailingCompilation(Compilation):
    def create_execution(self):
        return FailingExecution()


class FailingModel(ReferenceModel):
    def compile(self, preference=None):
        return FailingCompilation()


class FailingContext(ReferenceContext):
    """Backend whose run step always reports an error."""

    def create_model(self):
        return FailingModel()


class OverlapCheckingExecution(ReferenceExecution):
    """Records how many runs were in flight at the same time."""

    def __init__(self, model):
        super().__init__(model)
        self.active = 0
        self.max_active = 0

    def run(self):
        self.active += 1
        self.max_active = max(self.max_active, self.active)
        try:
            time.sleep(0.002)
            return super().run()
        finally:
            self.active -= 1


class OverlapCheckingCompilation(Compilation):
    def __init__(self, model, executions):
        self.model = model
        self.executions = executions

    def create_execution(self):
        execution = OverlapCheckingExecution(self.model)
        self.executions.append(execution)
        return execution


class OverlapCheckingModel(ReferenceModel):
    def __init__(self, executions):
        super().__init__()
        self.executions = executions

    def compile(self, preference=None):
        return OverlapCheckingCompilation(self, self.executions)


class OverlapCheckingContext(ReferenceContext):
    """Reference backend whose executions track concurrent runs."""

    def __init__(self):
        super().__init__()
        self.executions = []

    def create_model(self):
        self.model_count += 1
        self.model = OverlapCheckingModel(self.executions)
        return self.model


class TestFusion:
    """Tests for the peephole matcher."""

    def test_conv_bias_clamp(self, conv_graph):
        graph, _ = conv_graph()
        pattern = match_fused_pattern(graph.get_node("conv"), graph)
        assert pattern.bias_add is graph.get_node("biased")
        assert pattern.activation is graph.get_node("act")
        assert pattern.output_node.name == "act"
        assert pattern.bias_name == "b"
        assert pattern.fuse_code == FuseCode.RELU6

    def test_pool_without_clamp(self, conv_graph):
        """Test a pool followed by a non-clamp matches bare."""
        graph, _ = conv_graph()
        pattern = match_fused_pattern(graph.get_node("pool"), graph)
        assert pattern.nodes == (graph.get_node("pool"),)
        assert pattern.fuse_code == FuseCode.NONE

    def test_non_constant_bias_not_fused(self):
        builder = GraphBuilder("g")
        builder.add_placeholder("x")
        builder.add_placeholder("offset")
        builder.add_const("w")
        builder.add_node("conv2d", "conv", ["x", "w"])
        builder.add_node("add", "sum", ["conv", "offset"])
        builder.set_outputs(["sum"])
        graph = builder.build()
        assert match_fused_pattern(graph.get_node("conv"), graph).bias_add is None

    def test_shared_value_not_fused(self):
        """Test a follower is not fused when the value has other consumers."""
        builder = GraphBuilder("g")
        builder.add_placeholder("x")
        builder.add_const("w")
        builder.add_node("conv2d", "conv", ["x", "w"])
        builder.add_node("relu", "act", ["conv"])
        builder.add_node("add", "sum", ["conv", "act"])
        builder.set_outputs(["sum"])
        graph = builder.build()
        pattern = match_fused_pattern(graph.get_node("conv"), graph)
        assert pattern.nodes == (graph.get_node("conv"),)

    def test_graph_output_not_fused(self):
        """Test followers of a graph output stay separate."""
        builder = GraphBuilder("g")
        builder.add_placeholder("x")
        builder.add_const("w")
        builder.add_node("conv2d", "conv", ["x", "w"])
        builder.add_node("relu", "act", ["conv"])
        builder.set_outputs(["conv"])
        graph = builder.build()
        assert match_fused_pattern(graph.get_node("conv"), graph).activation is None

    @pytest.mark.parametrize(
        "op,params,expected",
        [
            ("relu", {}, FuseCode.RELU),
            ("relu6", {}, FuseCode.RELU6),
            ("clip_by_value", {"clip_value_min": 0, "clip_value_max": 6}, FuseCode.RELU6),
            ("clip_by_value", {"clip_value_min": -1, "clip_value_max": 1}, FuseCode.RELU1),
            ("clip_by_value", {"clip_value_min": 0, "clip_value_max": 3}, None),
            ("softmax", {}, None),
        ],
    )
    def test_fuse_codes(self, op, params, expected):
        builder = GraphBuilder("g")
        builder.add_placeholder("x")
        builder.add_node(op, "n", ["x"], params)
        assert fuse_code_for(builder.build().get_node("n")) == expected


class TestAcceleratedExecution:
    """Tests for accelerated results."""

    def test_matches_interpreter(self, conv_graph, conv_input):
        """Test the small conv network agrees with the interpreter."""
        graph, weights = conv_graph()
        backend = ReferenceContext()
        executor = GraphExecutor(graph, weights, accelerator=backend)
        assert executor.uses_accelerator

        result = executor.execute({"x": conv_input})
        expected = interpreted(graph, weights, {"x": conv_input})

        assert result["probs"].shape == (1, 4)
        np.testing.assert_allclose(result["probs"].numpy(), expected["probs"].numpy(), rtol=1e-5, atol=1e-6)

    def test_model_layout(self, conv_graph, conv_input):
        """Test the lowered operations and the fused chain."""
        graph, weights = conv_graph()
        backend = ReferenceContext()
        executor = GraphExecutor(graph, weights, accelerator=backend)
        executor.execute({"x": conv_input})

        model = backend.model
        ops = [op for op, _, _ in model.operations]
        assert ops == [
            OperationCode.CONV_2D,
            OperationCode.AVERAGE_POOL_2D,
            OperationCode.RESHAPE,
            OperationCode.SOFTMAX,
        ]
        accelerated = executor.accelerated_model
        assert accelerated.skipped_nodes == []
        assert [p.base.name for p in accelerated.fused_patterns] == ["conv"]
        assert accelerated.operands["act"].shape == (1, 5, 5, 4)

        # Filter [3, 3, 2, 4] is stored as [4, 3, 3, 2]
        conv_inputs = model.operations[0][1]
        assert model.operand_types[conv_inputs[1]] == OperandType(OperandCode.TENSOR_FLOAT32, (4, 3, 3, 2))
        assert int(model.values[conv_inputs[-1]]) == FuseCode.RELU6

    def test_compiles_once(self, conv_graph, conv_input):
        graph, weights = conv_graph()
        backend = ReferenceContext()
        executor = GraphExecutor(graph, weights, accelerator=backend)
        assert executor.accelerated_model is None
        executor.execute({"x": conv_input})
        assert executor.accelerated_model.is_compiled
        executor.execute({"x": conv_input * 2})
        assert backend.model_count == 1

    def test_depthwise_with_clamp(self):
        """Test depthwise filters and a fused clip match the interpreter."""
        builder = GraphBuilder("dw")
        builder.add_placeholder("x")
        builder.add_const("w")
        builder.add_node("depthwise_conv2d", "dw", ["x", "w"], {"pad": "valid", "strides": [1, 1, 1, 1]})
        builder.add_node("clip_by_value", "clamped", ["dw"], {"clip_value_min": 0, "clip_value_max": 6})
        builder.set_outputs(["clamped"])
        graph = builder.build()
        rng = np.random.default_rng(3)
        weights = {"w": [Tensor(rng.standard_normal((3, 3, 3, 2)).astype(np.float32))]}
        x = rng.standard_normal((1, 4, 4, 3)).astype(np.float32) * 3

        result = GraphExecutor(graph, weights, accelerator=ReferenceContext()).execute({"x": x})
        expected = interpreted(graph, weights, {"x": x})
        assert result["clamped"].shape == (1, 2, 2, 6)
        np.testing.assert_allclose(result["clamped"].numpy(), expected["clamped"].numpy(), rtol=1e-5, atol=1e-5)

    def test_asymmetric_strides(self):
        """Test height and width strides are not swapped."""
        graph, weights = single_op_graph("conv2d", {"pad": "same", "strides": [1, 2, 1, 1]}, (2, 2, 1, 3))
        x = np.arange(30, dtype=np.float32).reshape(1, 5, 6, 1)

        result = GraphExecutor(graph, weights, accelerator=ReferenceContext()).execute({"x": x})
        expected = interpreted(graph, weights, {"x": x})
        assert result["out"].shape == (1, 3, 6, 3)
        np.testing.assert_allclose(result["out"].numpy(), expected["out"].numpy(), rtol=1e-5, atol=1e-4)

    def test_concurrent_runs_are_serialized(self, conv_graph, conv_input):
        """Test threaded calls share one compiled model and never overlap."""
        graph, weights = conv_graph()
        backend = OverlapCheckingContext()
        executor = GraphExecutor(graph, weights, accelerator=backend)
        inputs = [conv_input * (i + 1) for i in range(8)]

        with ThreadPoolExecutor(max_workers=4) as pool:
            results = list(pool.map(lambda x: executor.execute({"x": x})["probs"].numpy(), inputs))

        for x, result in zip(inputs, results):
            expected = interpreted(graph, weights, {"x": x})["probs"].numpy()
            np.testing.assert_allclose(result, expected, rtol=1e-5, atol=1e-6)
        assert backend.model_count == 1
        assert len(backend.executions) == 1
        assert backend.executions[0].run_count == len(inputs)
        assert backend.executions[0].max_active == 1


class TestAcceleratedErrors:
    """Tests for unsupported features and backend failures."""

    @pytest.mark.parametrize(
        "conv_params,parameter",
        [
            ({"pad": "explicit"}, "padding"),
            ({"data_format": "NCHW"}, "data_format"),
            ({"dilations": [1, 2, 2, 1]}, "dilations"),
        ],
    )
    def test_unsupported_parameters(self, conv_graph, conv_input, conv_params, parameter):
        graph, weights = conv_graph(conv_params=conv_params)
        executor = GraphExecutor(graph, weights, accelerator=ReferenceContext())
        with pytest.raises(UnsupportedFeatureError) as exc_info:
            executor.execute({"x": conv_input})
        assert exc_info.value.parameter == parameter
        assert exc_info.value.node_name == "conv"

    def test_bias_shape(self, conv_graph, conv_input):
        graph, weights = conv_graph()
        weights["b"] = [Tensor(np.zeros(3, dtype=np.float32))]
        executor = GraphExecutor(graph, weights, accelerator=ReferenceContext())
        with pytest.raises(UnsupportedFeatureError, match="bias shape"):
            executor.execute({"x": conv_input})

    def test_skipped_nodes_reported(self):
        """Test nodes without a lowering are listed and logged."""
        builder = GraphBuilder("side")
        builder.add_placeholder("x")
        builder.add_node("identity", "side_output", ["x"])
        builder.add_node("softmax", "probs", ["x"])
        builder.set_outputs(["probs"])
        graph = builder.build()

        entries = []
        MeridianLogger.get().add_handler(entries.append)
        executor = GraphExecutor(graph, accelerator=ReferenceContext())
        x = np.array([[1.0, 2.0, 3.0]], dtype=np.float32)
        result = executor.execute({"x": x})

        assert [n.name for n in executor.accelerated_model.skipped_nodes] == ["side_output"]
        warnings = [e for e in entries if e.level == "WARNING"]
        assert warnings and warnings[0].extra["skipped"] == ["side_output"]
        np.testing.assert_allclose(result["probs"].numpy().sum(), 1.0, rtol=1e-6)

    def test_consumer_of_skipped_node(self):
        """Test a lowered node reading a skipped node fails compilation."""
        builder = GraphBuilder("broken")
        builder.add_placeholder("x")
        builder.add_node("identity", "mid", ["x"])
        builder.add_node("softmax", "probs", ["mid"])
        builder.set_outputs(["probs"])
        executor = GraphExecutor(builder.build(), accelerator=ReferenceContext())
        with pytest.raises(AcceleratedCompilationError, match="mid"):
            executor.execute({"x": np.ones((1, 3), dtype=np.float32)})

    def test_backend_run_error(self, conv_graph, conv_input):
        """Test a non-null run result surfaces as BackendExecutionError."""
        graph, weights = conv_graph()
        executor = GraphExecutor(graph, weights, accelerator=FailingContext())
        with pytest.raises(BackendExecutionError, match="device lost") as exc_info:
            executor.execute({"x": conv_input})
        assert exc_info.value.error == "device lost"

    def test_input_shape_change(self, conv_graph, conv_input):
        graph, weights = conv_graph()
        executor = GraphExecutor(graph, weights, accelerator=ReferenceContext())
        executor.execute({"x": conv_input})
        with pytest.raises(AcceleratedCompilationError, match="compiled shape"):
            executor.execute({"x": np.zeros((1, 6, 6, 2), dtype=np.float32)})

    def test_squeeze_axis_out_of_range(self):
        builder = GraphBuilder("bad_squeeze")
        builder.add_placeholder("x")
        builder.add_node("squeeze", "out", ["x"], {"axis": [4]})
        builder.set_outputs(["out"])
        executor = GraphExecutor(builder.build(), accelerator=ReferenceContext())
        with pytest.raises(AcceleratedCompilationError, match="out of range"):
            executor.execute({"x": np.zeros((1, 5, 5, 1), dtype=np.float32)})

    def test_reshape_infer_next_to_zero_dimension(self):
        """Test -1 beside a zero dimension fails compilation cleanly."""
        builder = GraphBuilder("empty_reshape")
        builder.add_placeholder("x")
        builder.add_node("reshape", "out", ["x"], {"shape": [0, -1]})
        builder.set_outputs(["out"])
        executor = GraphExecutor(builder.build(), accelerator=ReferenceContext())
        with pytest.raises(AcceleratedCompilationError, match="zero dimension"):
            executor.execute({"x": np.zeros((0, 3), dtype=np.float32)})


class TestPathSelection:
    """Tests for choosing between interpreter and accelerator."""

    def test_unavailable_backend_falls_back(self, conv_graph, conv_input):
        graph, weights = conv_graph()
        backend = ReferenceContext(available=False)
        executor = GraphExecutor(graph, weights, accelerator=backend)
        assert not executor.uses_accelerator
        executor.execute({"x": conv_input})
        assert backend.model_count == 0

    def test_control_flow_uses_interpreter(self, loop_graph):
        graph, weights = loop_graph(2)
        executor = GraphExecutor(graph, weights, accelerator=ReferenceContext())
        assert not executor.uses_accelerator
        np.testing.assert_allclose(executor.execute({"x": 0.0})["exit"].numpy(), 2.0)

    def test_interpreter_mode(self, conv_graph, conv_input):
        graph, weights = conv_graph()
        backend = ReferenceContext()
        executor = GraphExecutor(graph, weights, accelerator=backend, config=INTERPRETER)
        executor.execute({"x": conv_input})
        assert backend.model_count == 0

    def test_intermediate_outputs_use_interpreter(self, conv_graph, conv_input):
        """Test requesting a non-graph output bypasses the accelerator."""
        graph, weights = conv_graph()
        backend = ReferenceContext()
        executor = GraphExecutor(graph, weights, accelerator=backend)
        result = executor.execute({"x": conv_input}, outputs="pool")
        assert result["pool"].shape == (1, 1, 1, 4)
        assert backend.model_count == 0

    def test_forced_without_accelerator(self, add_graph):
        graph, weights = add_graph
        with pytest.raises(ConfigurationError, match="no accelerator"):
            GraphExecutor(graph, weights, config=ExecutorConfig(backend="accelerated"))

    def test_forced_with_control_flow(self, loop_graph):
        graph, weights = loop_graph(2)
        with pytest.raises(ConfigurationError, match="control flow"):
            GraphExecutor(
                graph,
                weights,
                accelerator=ReferenceContext(),
                config=ExecutorConfig(backend="accelerated"),
            )

    def test_replacing_weights_recompiles(self, conv_graph, conv_input):
        graph, weights = conv_graph()
        backend = ReferenceContext()
        executor = GraphExecutor(graph, weights, accelerator=backend)
        executor.execute({"x": conv_input})

        _, other_weights = conv_graph(seed=9)
        executor.weight_map = other_weights
        result = executor.execute({"x": conv_input})

        assert backend.model_count == 2
        expected = interpreted(graph, other_weights, {"x": conv_input})
        np.testing.assert_allclose(result["probs"].numpy(), expected["probs"].numpy(), rtol=1e-5, atol=1e-6)


class TestReferenceModel:
    """Tests for the reference backend's model validation."""

    def test_finished_model_is_frozen(self):
        model = ReferenceContext().create_model()
        model.add_operand(OperandType(OperandCode.TENSOR_FLOAT32, (1, 2)))
        model.finish()
        with pytest.raises(RuntimeError):
            model.add_operand(OperandType(OperandCode.FLOAT32))

    def test_operation_arity(self):
        model = ReferenceContext().create_model()
        model.add_operand(OperandType(OperandCode.TENSOR_FLOAT32, (1, 2)))
        with pytest.raises(ValueError):
            model.add_operation(OperationCode.SOFTMAX, [0], [0])

    def test_unbound_input(self):
        """Test running without an input reports an error string."""
        model = ReferenceContext().create_model()
        model.add_operand(OperandType(OperandCode.TENSOR_FLOAT32, (1, 2)))
        model.add_operand(OperandType(OperandCode.FLOAT32))
        model.set_operand_value(1, np.float32(1.0))
        model.add_operand(OperandType(OperandCode.TENSOR_FLOAT32, (1, 2)))
        model.add_operation(OperationCode.SOFTMAX, [0, 1], [2])
        model.identify_inputs_and_outputs([0], [2])
        model.finish()
        execution = model.compile().create_execution()
        assert execution.run() == "input 0 is not bound"
