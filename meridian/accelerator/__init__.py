# Copyright 2025 Wahyu Ardiansyah
# Licensed under the Apache License, Version 2.0

"""
Meridian Accelerated Path

Compiles control-flow-free graphs onto a neural-network backend.
"""

from .base import (
    Compilation,
    Execution,
    FuseCode,
    NeuralNetworkContext,
    NeuralNetworkModel,
    OperandCode,
    OperandType,
    OperationCode,
    PaddingCode,
    Preference,
)
from .compiler import AcceleratedModel, OperandInfo
from .fusion import FusedPattern, fuse_code_for, match_fused_pattern
from .params import parse_params
from .reference import ReferenceContext

__all__ = [
    "Compilation",
    "Execution",
    "FuseCode",
    "NeuralNetworkContext",
    "NeuralNetworkModel",
    "OperandCode",
    "OperandType",
    "OperationCode",
    "PaddingCode",
    "Preference",
    "AcceleratedModel",
    "OperandInfo",
    "FusedPattern",
    "fuse_code_for",
    "match_fused_pattern",
    "parse_params",
    "ReferenceContext",
]
