# ember/ember_tensor.py

from __future__ import annotations

from typing import Callable, Optional, Sequence, Tuple

import numpy as np

from ember.errors import ShapeMismatchError


class EmberTensor:
    """
    Core numeric tensor type for Ember.

    Internal Rules:
    - ALWAYS float64.
    - ALWAYS owns its buffer: construction copies, copy() is deep.
    - data.size == product(shape), every dimension positive.
    - add / minus / scale return a NEW tensor, they never alias
      the storage of either operand.

    The only in-place edit is add_at(), which finite-difference probes
    use on a tensor they already copied.
    """

    def __init__(self, data, name: Optional[str] = None) -> None:
        arr = np.array(data, dtype=np.float64)  # always a copy
        if arr.ndim == 0:
            arr = arr.reshape(1)

        if any(d <= 0 for d in arr.shape):
            raise ShapeMismatchError(
                f"EmberTensor: every dimension must be positive, got {arr.shape}"
            )

        self.data: np.ndarray = arr
        self.name = name

    # ===============================================================
    # Constructors
    # ===============================================================
    @classmethod
    def zeros(cls, *dims: int, name: Optional[str] = None) -> "EmberTensor":
        return cls(np.zeros(dims, dtype=np.float64), name=name)

    @classmethod
    def ones(cls, *dims: int, name: Optional[str] = None) -> "EmberTensor":
        return cls(np.ones(dims, dtype=np.float64), name=name)

    @classmethod
    def one_hot(cls, dims: Sequence[int], index: int) -> "EmberTensor":
        """
        All zeros except flat coordinate `index`, which is 1.
        """
        t = cls.zeros(*dims)
        t.add_at(index, 1.0)
        return t

    @classmethod
    def random(
        cls,
        dims: Sequence[int],
        rng: np.random.Generator,
        low: float = -1.0,
        high: float = 1.0,
    ) -> "EmberTensor":
        return cls(rng.uniform(low, high, size=tuple(dims)))

    # ===============================================================
    # Shape helpers
    # ===============================================================
    @property
    def shape(self) -> Tuple[int, ...]:
        return tuple(self.data.shape)

    @property
    def flat(self) -> np.ndarray:
        """
        Flat view onto the backing buffer (writes go through).
        """
        return self.data.reshape(-1)

    def __len__(self) -> int:
        return int(self.data.size)

    # ===============================================================
    # Element access
    # ===============================================================
    def get(self, index: int) -> float:
        return float(self.data.flat[index])

    def set(self, index: int, value: float) -> None:
        self.data.flat[index] = value

    def add_at(self, index: int, value: float) -> None:
        self.data.flat[index] += value

    # ===============================================================
    # Arithmetic (never aliases)
    # ===============================================================
    def _check_same_shape(self, other: "EmberTensor", op: str) -> None:
        if self.shape != other.shape:
            raise ShapeMismatchError(
                f"EmberTensor.{op}: shape {self.shape} does not match {other.shape}"
            )

    def add(self, other: "EmberTensor") -> "EmberTensor":
        self._check_same_shape(other, "add")
        return EmberTensor(self.data + other.data)

    def minus(self, other: "EmberTensor") -> "EmberTensor":
        self._check_same_shape(other, "minus")
        return EmberTensor(self.data - other.data)

    def scale(self, factor: float) -> "EmberTensor":
        return EmberTensor(self.data * factor)

    def map(self, fn: Callable[[float], float]) -> "EmberTensor":
        return EmberTensor(np.vectorize(fn, otypes=[np.float64])(self.data))

    def dot(self, other: "EmberTensor") -> float:
        self._check_same_shape(other, "dot")
        return float(np.dot(self.flat, other.flat))

    def copy(self) -> "EmberTensor":
        return EmberTensor(self.data, name=self.name)

    def allclose(self, other: "EmberTensor", atol: float = 1e-8) -> bool:
        return self.shape == other.shape and bool(
            np.allclose(self.data, other.data, atol=atol, rtol=0.0)
        )

    # ===============================================================
    # Display
    # ===============================================================
    def pretty_print(self) -> str:
        return np.array2string(self.data, precision=4, separator=", ", suppress_small=True)

    def __repr__(self) -> str:
        label = f"{self.name}, " if self.name else ""
        return f"EmberTensor({label}shape={self.shape})"
