# Copyright 2025 Wahyu Ardiansyah
# Licensed under the Apache License, Version 2.0

"""
Operator Registry

Maps operator kinds to their kernel implementations.
Uses a decorator-based registration pattern for extensibility.

Kernel calling contract:
    kernel(node, tensor_map, context) -> list of output tensors
    (or an awaitable resolving to one)

Entries of the returned list may be None for outputs a kernel chose not
to produce. Control-flow kernels may push or pop frames on the context.
"""

from __future__ import annotations

import logging
from typing import Any, Awaitable, Callable, Dict, List, Optional, Union, TYPE_CHECKING

from ..errors import UnsupportedOperationError

if TYPE_CHECKING:
    from ..core.node import Node
    from ..core.tensor import Tensor
    from .context import ExecutionContext, NamedTensorsMap

logger = logging.getLogger("meridian.execution.registry")


KernelOutputs = List[Optional["Tensor"]]
KernelFunc = Callable[
    ["Node", "NamedTensorsMap", "ExecutionContext"],
    Union[KernelOutputs, Awaitable[KernelOutputs]],
]


class OperatorRegistry:
    """
    Registry for operator implementations.

    Example:
        @OperatorRegistry.register("add")
        def execute_add(node, tensor_map, context):
            a = require_array(node, 0, tensor_map, context)
            b = require_array(node, 1, tensor_map, context)
            return [Tensor(a + b)]

        kernel = OperatorRegistry.get_kernel("add")
        outputs = kernel(node, tensor_map, context)
    """

    _registry: Dict[str, KernelFunc] = {}
    _metadata: Dict[str, Dict[str, Any]] = {}

    @classmethod
    def register(
        cls,
        op: str,
        aliases: Optional[List[str]] = None,
    ) -> Callable[[KernelFunc], KernelFunc]:
        """
        Decorator to register an operator implementation.

        Args:
            op: Operator kind (e.g., "conv2d", "merge").
            aliases: Alternative names for the operator.
        """

        def decorator(func: KernelFunc) -> KernelFunc:
            cls._registry[op] = func
            cls._metadata[op] = {"func_name": func.__name__}

            if aliases:
                for alias in aliases:
                    cls._registry[alias] = func
                    cls._metadata[alias] = cls._metadata[op]

            return func

        return decorator

    @classmethod
    def get_kernel(cls, op: str) -> KernelFunc:
        """
        Get the kernel function for an operator.

        Raises:
            UnsupportedOperationError: If operator not registered.
        """
        if op not in cls._registry:
            raise UnsupportedOperationError(op, supported_ops=cls.list_operators())
        return cls._registry[op]

    @classmethod
    def is_supported(cls, op: str) -> bool:
        """Check if an operator is supported."""
        return op in cls._registry

    @classmethod
    def list_operators(cls) -> List[str]:
        """List all registered operators."""
        return sorted(cls._registry.keys())

    @classmethod
    def unregister(cls, op: str) -> None:
        """Remove an operator (for testing)."""
        cls._registry.pop(op, None)
        cls._metadata.pop(op, None)


def execute_op(
    node: "Node",
    tensor_map: "NamedTensorsMap",
    context: "ExecutionContext",
) -> Union[KernelOutputs, Awaitable[KernelOutputs]]:
    """Default operator dispatch: run the registered kernel for node.op."""
    # Populate the registry on first use
    from . import operators  # noqa: F401

    kernel = OperatorRegistry.get_kernel(node.op)
    logger.debug("dispatch %s (%s)", node.name, node.op)
    return kernel(node, tensor_map, context)
