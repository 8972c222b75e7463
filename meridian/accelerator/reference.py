# Copyright 2025 Wahyu Ardiansyah
# Licensed under the Apache License, Version 2.0

"""
Reference Accelerated Backend

A numpy implementation of the NeuralNetworkContext interface. It
validates models the way a device driver would (operand indices, frozen
models, bound buffers) and computes with the same helpers as the
interpreter kernels, so both execution paths agree numerically.

Useful for testing the accelerated path without hardware:

    executor = GraphExecutor(graph, weights, accelerator=ReferenceContext())
"""

import logging
from typing import Callable, Dict, List, Optional, Sequence, Tuple

import numpy as np

from ..execution.operators.activation_ops import softmax
from ..execution.operators.conv_ops import (
    avg_pool_nhwc,
    conv2d_nhwc,
    depthwise_conv2d_nhwc,
)
from .base import (
    Compilation,
    Execution,
    FuseCode,
    NeuralNetworkContext,
    NeuralNetworkModel,
    OperandType,
    OperationCode,
    PaddingCode,
    Preference,
)

logger = logging.getLogger("meridian.accelerator.reference")

_PADDING = {PaddingCode.SAME: "same", PaddingCode.VALID: "valid"}


def apply_fuse_code(x: np.ndarray, code: int) -> np.ndarray:
    """Apply a fused activation."""
    if code == FuseCode.RELU:
        return np.maximum(x, 0)
    if code == FuseCode.RELU1:
        return np.clip(x, -1, 1)
    if code == FuseCode.RELU6:
        return np.clip(x, 0, 6)
    return x


def _conv_2d(args: List[np.ndarray]) -> np.ndarray:
    x, w, b, pad, stride_w, stride_h, fuse = args
    filters = np.transpose(w, (1, 2, 3, 0))
    y = conv2d_nhwc(x, filters, (int(stride_h), int(stride_w)), _PADDING[int(pad)]) + b
    return apply_fuse_code(y, int(fuse))


def _depthwise_conv_2d(args: List[np.ndarray]) -> np.ndarray:
    x, w, b, pad, stride_w, stride_h, multiplier, fuse = args
    _, kh, kw, _ = w.shape
    filters = w.reshape(kh, kw, x.shape[3], int(multiplier))
    y = depthwise_conv2d_nhwc(x, filters, (int(stride_h), int(stride_w)), _PADDING[int(pad)]) + b
    return apply_fuse_code(y, int(fuse))


def _average_pool_2d(args: List[np.ndarray]) -> np.ndarray:
    x, pad, stride_w, stride_h, filter_w, filter_h, fuse = args
    y = avg_pool_nhwc(
        x,
        (int(filter_h), int(filter_w)),
        (int(stride_h), int(stride_w)),
        _PADDING[int(pad)],
    )
    return apply_fuse_code(y, int(fuse))


def _reshape(args: List[np.ndarray]) -> np.ndarray:
    x, shape = args
    return x.reshape([int(d) for d in shape])


def _softmax(args: List[np.ndarray]) -> np.ndarray:
    x, beta = args
    return softmax(x, axis=-1, beta=float(beta))


OPERATIONS: Dict[OperationCode, Tuple[int, Callable[[List[np.ndarray]], np.ndarray]]] = {
    OperationCode.CONV_2D: (7, _conv_2d),
    OperationCode.DEPTHWISE_CONV_2D: (8, _depthwise_conv_2d),
    OperationCode.AVERAGE_POOL_2D: (7, _average_pool_2d),
    OperationCode.RESHAPE: (2, _reshape),
    OperationCode.SOFTMAX: (2, _softmax),
}


class ReferenceModel(NeuralNetworkModel):
    """Records operands and operations; frozen by finish()."""

    def __init__(self):
        self.operand_types: List[OperandType] = []
        self.values: Dict[int, np.ndarray] = {}
        self.operations: List[Tuple[OperationCode, Tuple[int, ...], Tuple[int, ...]]] = []
        self.inputs: Tuple[int, ...] = ()
        self.outputs: Tuple[int, ...] = ()
        self.finished = False

    def _check_mutable(self) -> None:
        if self.finished:
            raise RuntimeError("model is finished")

    def _check_index(self, index: int) -> None:
        if not 0 <= index < len(self.operand_types):
            raise IndexError(f"operand {index} does not exist")

    def add_operand(self, operand_type: OperandType) -> None:
        self._check_mutable()
        self.operand_types.append(operand_type)

    def set_operand_value(self, index: int, value: np.ndarray) -> None:
        self._check_mutable()
        self._check_index(index)
        self.values[index] = np.array(value)

    def add_operation(self, op: OperationCode, inputs: Sequence[int], outputs: Sequence[int]) -> None:
        self._check_mutable()
        if op not in OPERATIONS:
            raise ValueError(f"operation {op} is not supported")
        arity, _ = OPERATIONS[op]
        if len(inputs) != arity:
            raise ValueError(f"{OperationCode(op).name} takes {arity} inputs, got {len(inputs)}")
        for index in list(inputs) + list(outputs):
            self._check_index(index)
        self.operations.append((OperationCode(op), tuple(inputs), tuple(outputs)))

    def identify_inputs_and_outputs(self, inputs: Sequence[int], outputs: Sequence[int]) -> None:
        self._check_mutable()
        for index in list(inputs) + list(outputs):
            self._check_index(index)
        self.inputs = tuple(inputs)
        self.outputs = tuple(outputs)

    def finish(self) -> None:
        self._check_mutable()
        self.finished = True

    def compile(self, preference: Preference = Preference.FAST_SINGLE_ANSWER) -> "ReferenceCompilation":
        if not self.finished:
            raise RuntimeError("model must be finished before compilation")
        return ReferenceCompilation(self, Preference(preference))


class ReferenceCompilation(Compilation):
    def __init__(self, model: ReferenceModel, preference: Preference):
        self.model = model
        self.preference = preference

    def create_execution(self) -> "ReferenceExecution":
        return ReferenceExecution(self.model)


class ReferenceExecution(Execution):
    """
    Evaluates operations in insertion order.

    run() reports unbound buffers and shape mismatches as an error string
    instead of raising, as a device runtime reports a status code.
    """

    def __init__(self, model: ReferenceModel):
        self._model = model
        self._inputs: Dict[int, np.ndarray] = {}
        self._outputs: Dict[int, np.ndarray] = {}
        self.run_count = 0

    def set_input(self, index: int, buffer: np.ndarray) -> None:
        self._inputs[index] = buffer

    def set_output(self, index: int, buffer: np.ndarray) -> None:
        self._outputs[index] = buffer

    def run(self) -> Optional[str]:
        model = self._model
        values: Dict[int, np.ndarray] = dict(model.values)

        for position, operand in enumerate(model.inputs):
            if position not in self._inputs:
                return f"input {position} is not bound"
            buffer = self._inputs[position]
            expected = model.operand_types[operand].dimensions
            if tuple(buffer.shape) != tuple(expected):
                return f"input {position} has shape {list(buffer.shape)}, expected {list(expected)}"
            values[operand] = buffer

        for op, inputs, outputs in model.operations:
            missing = [i for i in inputs if i not in values]
            if missing:
                return f"{op.name} reads operands without a value: {missing}"
            _, compute = OPERATIONS[op]
            values[outputs[0]] = compute([values[i] for i in inputs])

        for position, operand in enumerate(model.outputs):
            if position not in self._outputs:
                return f"output {position} is not bound"
            if operand not in values:
                return f"output operand {operand} was never computed"
            buffer = self._outputs[position]
            result = values[operand]
            if buffer.size != result.size:
                return f"output {position} buffer holds {buffer.size} values, result has {result.size}"
            np.copyto(buffer, result.reshape(buffer.shape), casting="unsafe")

        self.run_count += 1
        return None


class ReferenceContext(NeuralNetworkContext):
    """
    Numpy accelerated backend.

    Args:
        available: Value reported by is_available()

    Attributes:
        model: The most recently created model, None before the first
        model_count: Number of models created so far
    """

    def __init__(self, available: bool = True):
        self._available = available
        self.model: Optional[ReferenceModel] = None
        self.model_count = 0

    @property
    def name(self) -> str:
        return "reference"

    def is_available(self) -> bool:
        return self._available

    def create_model(self) -> ReferenceModel:
        self.model = ReferenceModel()
        self.model_count += 1
        logger.debug("created reference model #%d", self.model_count)
        return self.model
