# Copyright 2025 Wahyu Ardiansyah
# Licensed under the Apache License, Version 2.0

"""
Typed parameter bundles for the operator kinds the accelerated path lowers.

Each bundle validates its node's params when parsed, so unsupported
settings fail before any operand is added to the backend model.
"""

from dataclasses import dataclass
from typing import Callable, Dict, Optional, Sequence, Tuple, Union

from ..core.node import Node, Ops
from ..errors import UnsupportedFeatureError
from .base import PaddingCode

PADDING_CODES = {"same": PaddingCode.SAME, "valid": PaddingCode.VALID}


def spatial_param(node: Node, key: str, default: Sequence[int]) -> Tuple[int, int]:
    """Read an NHWC [1, h, w, 1] or [h, w] param as (h, w)."""
    value = list(node.get_param(key, default))
    if len(value) == 4:
        return int(value[1]), int(value[2])
    if len(value) == 2:
        return int(value[0]), int(value[1])
    raise UnsupportedFeatureError(key, value, node_name=node.name)


def _padding(node: Node) -> str:
    pad = node.get_param("pad", "valid")
    if pad not in PADDING_CODES:
        raise UnsupportedFeatureError(
            "padding", pad, node_name=node.name, supported=list(PADDING_CODES)
        )
    return pad


def _data_format(node: Node) -> None:
    data_format = str(node.get_param("data_format", "NHWC")).upper()
    if data_format != "NHWC":
        raise UnsupportedFeatureError(
            "data_format", data_format, node_name=node.name, supported=["NHWC"]
        )


@dataclass(frozen=True)
class ConvParams:
    pad: str
    strides: Tuple[int, int]
    depthwise: bool = False

    @property
    def padding_code(self) -> PaddingCode:
        return PADDING_CODES[self.pad]

    @classmethod
    def from_node(cls, node: Node) -> "ConvParams":
        _data_format(node)
        pad = _padding(node)
        dilations = spatial_param(node, "dilations", [1, 1, 1, 1])
        if dilations != (1, 1):
            raise UnsupportedFeatureError("dilations", list(dilations), node_name=node.name, supported=["[1, 1]"])
        return cls(
            pad=pad,
            strides=spatial_param(node, "strides", [1, 1, 1, 1]),
            depthwise=node.op == Ops.DEPTHWISE_CONV2D,
        )


@dataclass(frozen=True)
class PoolParams:
    pad: str
    strides: Tuple[int, int]
    kernel_size: Tuple[int, int]

    @property
    def padding_code(self) -> PaddingCode:
        return PADDING_CODES[self.pad]

    @classmethod
    def from_node(cls, node: Node) -> "PoolParams":
        _data_format(node)
        return cls(
            pad=_padding(node),
            strides=spatial_param(node, "strides", [1, 1, 1, 1]),
            kernel_size=spatial_param(node, "kernel_size", [1, 1, 1, 1]),
        )


@dataclass(frozen=True)
class SqueezeParams:
    axis: Tuple[int, ...] = ()

    @classmethod
    def from_node(cls, node: Node) -> "SqueezeParams":
        return cls(axis=tuple(int(a) for a in node.get_param("axis", [])))


@dataclass(frozen=True)
class ReshapeParams:
    shape: Optional[Tuple[int, ...]] = None  # None: taken from the second input

    @classmethod
    def from_node(cls, node: Node) -> "ReshapeParams":
        shape = node.get_param("shape")
        return cls(shape=tuple(int(d) for d in shape) if shape is not None else None)


@dataclass(frozen=True)
class SoftmaxParams:
    beta: float = 1.0
    axis: int = -1

    @classmethod
    def from_node(cls, node: Node) -> "SoftmaxParams":
        return cls(
            beta=float(node.get_param("beta", 1.0)),
            axis=int(node.get_param("axis", -1)),
        )


LoweringParams = Union[ConvParams, PoolParams, SqueezeParams, ReshapeParams, SoftmaxParams]

_PARSERS: Dict[str, Callable[[Node], LoweringParams]] = {
    Ops.CONV2D: ConvParams.from_node,
    Ops.DEPTHWISE_CONV2D: ConvParams.from_node,
    Ops.AVG_POOL: PoolParams.from_node,
    Ops.SQUEEZE: SqueezeParams.from_node,
    Ops.RESHAPE: ReshapeParams.from_node,
    Ops.SOFTMAX: SoftmaxParams.from_node,
}


def parse_params(node: Node) -> Optional[LoweringParams]:
    """Typed params of a lowerable compute node, None for other kinds."""
    parser = _PARSERS.get(node.op)
    if parser is None:
        return None
    return parser(node)
