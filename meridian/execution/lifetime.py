# Copyright 2025 Wahyu Ardiansyah
# Licensed under the Apache License, Version 2.0

"""
Tensor Lifetime Manager

Releases intermediate tensors after an execution pass. A tensor is kept
when it is a requested output, a caller-supplied input or a weight; every
other tensor in the environment is disposed. Identity (Tensor.id) decides
membership, so a tensor stored under several names is handled once.

Example:
    manager = TensorLifetimeManager(weight_map)
    released = manager.release_intermediates(tensor_map, results, inputs)
"""

from __future__ import annotations

import logging
from typing import Iterable, Mapping, Optional, Set

from ..core.tensor import Tensor
from .context import NamedTensorsMap, WeightMap

logger = logging.getLogger("meridian.execution.lifetime")


def _ids(groups: Iterable[Iterable[Optional[Tensor]]]) -> Set[int]:
    return {t.id for group in groups for t in group if t is not None}


class TensorLifetimeManager:
    """
    Decides which tensors survive an execution call.

    Weight ids are computed once, when the weight map is assigned, and
    exempt those tensors from every release pass.
    """

    def __init__(self, weight_map: Optional[WeightMap] = None):
        self._weight_map: WeightMap = {}
        self._weight_ids: Set[int] = set()
        self.weight_map = weight_map or {}

    @property
    def weight_map(self) -> WeightMap:
        return self._weight_map

    @weight_map.setter
    def weight_map(self, weight_map: WeightMap) -> None:
        self._weight_map = weight_map
        self._weight_ids = _ids(weight_map.values())

    @property
    def weight_ids(self) -> frozenset:
        return frozenset(self._weight_ids)

    def is_weight(self, tensor: Tensor) -> bool:
        return tensor.id in self._weight_ids

    def release_intermediates(
        self,
        tensor_map: NamedTensorsMap,
        outputs: Mapping[str, Tensor],
        inputs: Mapping[str, Iterable[Tensor]],
    ) -> int:
        """
        Dispose every tensor of tensor_map that is not kept.

        Args:
            tensor_map: Environment of the finished execution.
            outputs: Results returned to the caller.
            inputs: Tensors supplied by the caller.

        Returns:
            Number of tensors disposed.
        """
        keep = _ids([outputs.values()]) | _ids(inputs.values()) | self._weight_ids
        released: Set[int] = set()

        for tensors in tensor_map.values():
            for tensor in tensors:
                if tensor is None or tensor.id in keep or tensor.id in released:
                    continue
                tensor.dispose()
                released.add(tensor.id)

        logger.debug("released %d intermediate tensors", len(released))
        return len(released)

    def dispose_weights(self) -> int:
        """Dispose every weight tensor. Returns the number disposed."""
        count = 0
        for tensors in self._weight_map.values():
            for tensor in tensors:
                if not tensor.is_disposed:
                    tensor.dispose()
                    count += 1
        return count
