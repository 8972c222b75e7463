# Copyright 2025 Wahyu Ardiansyah
# Licensed under the Apache License, Version 2.0

"""
Tensor (numpy-backed runtime value)

Tensors are identified by a process-unique id. Lifetime decisions in the
executor (which tensors to release after a call) are made on these ids,
never on names or values.
"""

from __future__ import annotations

from typing import Any, Iterable, List, Optional, Union
import itertools

import numpy as np

from ..errors import TensorDisposedError


# Tensor ID counter
_tensor_id_counter = itertools.count()


class Tensor:
    """
    An immutable n-dimensional value with explicit release.

    Example:
        t = Tensor(np.ones((2, 2), dtype=np.float32))
        t.numpy()      # -> ndarray
        t.dispose()    # storage released, t.numpy() now raises
    """

    __slots__ = ("id", "_data", "_shape", "_dtype")

    def __init__(self, data: Any, dtype: Any = None):
        array = np.asarray(data, dtype=dtype)
        self.id: int = next(_tensor_id_counter)
        self._data: Optional[np.ndarray] = array
        self._shape = tuple(array.shape)
        self._dtype = array.dtype

    @property
    def shape(self) -> tuple:
        """Tensor dimensions (kept after disposal)."""
        return self._shape

    @property
    def dtype(self) -> np.dtype:
        """Element type (kept after disposal)."""
        return self._dtype

    @property
    def rank(self) -> int:
        return len(self._shape)

    @property
    def is_disposed(self) -> bool:
        """Check whether the storage has been released."""
        return self._data is None

    def numpy(self) -> np.ndarray:
        """
        Get the underlying array.

        Raises:
            TensorDisposedError: If the tensor has been disposed.
        """
        if self._data is None:
            raise TensorDisposedError(self.id)
        return self._data

    def clone(self) -> "Tensor":
        """Return a new tensor (new id) sharing this tensor's storage."""
        return Tensor(self.numpy())

    def dispose(self) -> None:
        """Release the storage. Disposing twice is a no-op."""
        self._data = None

    def __array__(self, dtype=None, copy=None):
        array = self.numpy()
        if dtype is not None:
            return array.astype(dtype)
        return array

    def __repr__(self) -> str:
        state = "disposed" if self.is_disposed else "live"
        return f"Tensor(id={self.id}, shape={self._shape}, dtype={self._dtype}, {state})"


TensorLike = Union[Tensor, np.ndarray, list, float, int]


def as_tensor(value: TensorLike) -> Tensor:
    """Wrap a value as a Tensor, passing existing tensors through."""
    if isinstance(value, Tensor):
        return value
    return Tensor(value)


def as_tensor_list(value: Union[TensorLike, Iterable[Tensor]]) -> List[Tensor]:
    """
    Normalize a map entry to a list of tensors.

    A list of Tensor objects is taken as a multi-output entry; any other
    value (array, scalar, nested number list) becomes a single tensor.
    """
    if isinstance(value, (list, tuple)) and value and all(
        isinstance(v, Tensor) for v in value
    ):
        return list(value)
    return [as_tensor(value)]
