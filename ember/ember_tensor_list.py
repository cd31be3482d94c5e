# ember/ember_tensor_list.py

from __future__ import annotations

from typing import Iterator, List, Optional, Sequence, Tuple

import numpy as np

from ember.ember_tensor import EmberTensor
from ember.errors import ShapeMismatchError


class EmberTensorList:
    """
    A mini-batch: an ordered list of EmberTensors sharing one shape.

    The list holds its tensors BY REFERENCE. Whoever builds the list hands
    the tensors over; call copy() for an independent batch.

    Shapes:
        dimensions: per-item shape, e.g. (D,)
        as_array(): (N, *dimensions)
    """

    def __init__(
        self,
        tensors: Sequence[EmberTensor],
        dimensions: Optional[Tuple[int, ...]] = None,
    ) -> None:
        self._items: List[EmberTensor] = list(tensors)

        if self._items:
            dims = self._items[0].shape
            for i, t in enumerate(self._items):
                if t.shape != dims:
                    raise ShapeMismatchError(
                        f"EmberTensorList: item {i} has shape {t.shape}, expected {dims}"
                    )
            if dimensions is not None and tuple(dimensions) != dims:
                raise ShapeMismatchError(
                    f"EmberTensorList: declared dimensions {tuple(dimensions)} "
                    f"do not match items {dims}"
                )
            self._dimensions: Tuple[int, ...] = dims
        else:
            if dimensions is None:
                raise ValueError("EmberTensorList: an empty list needs explicit dimensions")
            self._dimensions = tuple(dimensions)

    # ------------------------------------------------------
    # Construction helpers
    # ------------------------------------------------------
    @classmethod
    def of(cls, *tensors: EmberTensor) -> "EmberTensorList":
        return cls(tensors)

    @classmethod
    def from_array(cls, arr: np.ndarray) -> "EmberTensorList":
        """
        Split an (N, *dims) array into N fresh tensors.
        """
        arr = np.asarray(arr, dtype=np.float64)
        if arr.ndim < 2:
            raise ShapeMismatchError(
                f"EmberTensorList.from_array: expected (N, ...) array, got {arr.shape}"
            )
        return cls([EmberTensor(item) for item in arr], dimensions=arr.shape[1:])

    # ------------------------------------------------------
    # Accessors
    # ------------------------------------------------------
    @property
    def dimensions(self) -> Tuple[int, ...]:
        return self._dimensions

    def __len__(self) -> int:
        return len(self._items)

    def __getitem__(self, index: int) -> EmberTensor:
        return self._items[index]

    def __iter__(self) -> Iterator[EmberTensor]:
        return iter(self._items)

    def as_array(self) -> np.ndarray:
        if not self._items:
            return np.zeros((0, *self._dimensions), dtype=np.float64)
        return np.stack([t.data for t in self._items], axis=0)

    # ------------------------------------------------------
    # Arithmetic (new lists, new tensors)
    # ------------------------------------------------------
    def add(self, other: "EmberTensorList") -> "EmberTensorList":
        if len(self) != len(other):
            raise ShapeMismatchError(
                f"EmberTensorList.add: batch size {len(self)} vs {len(other)}"
            )
        return EmberTensorList([a.add(b) for a, b in zip(self, other)], self._dimensions)

    def scale(self, factor: float) -> "EmberTensorList":
        return EmberTensorList([t.scale(factor) for t in self], self._dimensions)

    def copy(self) -> "EmberTensorList":
        return EmberTensorList([t.copy() for t in self], self._dimensions)

    def pretty_print(self) -> str:
        return ",\n".join(t.pretty_print() for t in self)

    def __repr__(self) -> str:
        return f"EmberTensorList(length={len(self)}, dimensions={self._dimensions})"
