# Copyright 2025 Wahyu Ardiansyah
# Licensed under the Apache License, Version 2.0

"""
Accelerated Backend Interfaces

Abstract capability consumed by the accelerated execution path. The
backend exposes a flat operand/operation model in the style of mobile
neural-network APIs:

    model = context.create_model()
    model.add_operand(OperandType(OperandCode.TENSOR_FLOAT32, (1, 4)))  # index 0
    model.set_operand_value(index, values)
    model.add_operation(OperationCode.SOFTMAX, [0, 1], [2])
    model.identify_inputs_and_outputs([0], [2])
    model.finish()
    compilation = model.compile(Preference.FAST_SINGLE_ANSWER)
    execution = compilation.create_execution()
    execution.set_input(0, input_buffer)
    execution.set_output(0, output_buffer)
    error = execution.run()            # None on success

Operand indices are assigned in add_operand() order starting at 0.

Operation operand layouts (all tensors NHWC, float32):

- CONV_2D: [input, filter (out, h, w, in), bias (out,), padding,
  stride_w, stride_h, fuse_code]
- DEPTHWISE_CONV_2D: [input, filter (1, h, w, in * multiplier), bias,
  padding, stride_w, stride_h, depth_multiplier, fuse_code]
- AVERAGE_POOL_2D: [input, padding, stride_w, stride_h, filter_w,
  filter_h, fuse_code]
- RESHAPE: [input, shape (int32 tensor)]
- SOFTMAX: [input, beta (float32 scalar)]
"""

from abc import ABC, abstractmethod
from dataclasses import dataclass
from enum import IntEnum
from typing import Optional, Sequence, Tuple
import logging

import numpy as np

logger = logging.getLogger("meridian.accelerator")


class OperandCode(IntEnum):
    """Operand element types."""

    FLOAT32 = 0
    INT32 = 1
    UINT32 = 2
    TENSOR_FLOAT32 = 3
    TENSOR_INT32 = 4


class OperationCode(IntEnum):
    """Operations understood by the accelerated backend."""

    AVERAGE_POOL_2D = 1
    CONV_2D = 3
    DEPTHWISE_CONV_2D = 4
    RESHAPE = 22
    SOFTMAX = 25


class PaddingCode(IntEnum):
    """Implicit padding schemes."""

    SAME = 1
    VALID = 2


class FuseCode(IntEnum):
    """Activation fused into the preceding operation."""

    NONE = 0
    RELU = 1  # max(0, x)
    RELU1 = 2  # clip(x, -1, 1)
    RELU6 = 3  # clip(x, 0, 6)


class Preference(IntEnum):
    """Compilation preference."""

    LOW_POWER = 0
    FAST_SINGLE_ANSWER = 1
    SUSTAINED_SPEED = 2


@dataclass(frozen=True)
class OperandType:
    """Element type and dimensions of one operand (scalars have none)."""

    type: OperandCode
    dimensions: Tuple[int, ...] = ()


class Execution(ABC):
    """One reusable execution instance. Not reentrant."""

    @abstractmethod
    def set_input(self, index: int, buffer: np.ndarray) -> None:
        """Bind the index-th model input."""
        pass

    @abstractmethod
    def set_output(self, index: int, buffer: np.ndarray) -> None:
        """Bind the buffer receiving the index-th model output."""
        pass

    @abstractmethod
    def run(self) -> Optional[str]:
        """Compute outputs. Returns None on success, else an error description."""
        pass


class Compilation(ABC):
    """A compiled model."""

    @abstractmethod
    def create_execution(self) -> Execution:
        pass


class NeuralNetworkModel(ABC):
    """Operand/operation model under construction."""

    @abstractmethod
    def add_operand(self, operand_type: OperandType) -> None:
        """Append an operand; its index is the number of operands added before it."""
        pass

    @abstractmethod
    def set_operand_value(self, index: int, value: np.ndarray) -> None:
        """Give an operand a constant value."""
        pass

    @abstractmethod
    def add_operation(
        self,
        op: OperationCode,
        inputs: Sequence[int],
        outputs: Sequence[int],
    ) -> None:
        pass

    @abstractmethod
    def identify_inputs_and_outputs(
        self,
        inputs: Sequence[int],
        outputs: Sequence[int],
    ) -> None:
        pass

    @abstractmethod
    def finish(self) -> None:
        """Freeze the model. No operands or operations may be added afterwards."""
        pass

    @abstractmethod
    def compile(self, preference: Preference = Preference.FAST_SINGLE_ANSWER) -> Compilation:
        pass


class NeuralNetworkContext(ABC):
    """
    Entry point of an accelerated backend.

    Contract:
    - name: unique identifier string
    - is_available(): True only if the backend can build and run models;
      must not raise
    - create_model(): a fresh, empty model
    """

    @property
    @abstractmethod
    def name(self) -> str:
        pass

    @abstractmethod
    def is_available(self) -> bool:
        pass

    @abstractmethod
    def create_model(self) -> NeuralNetworkModel:
        pass
