# ember/ember_result.py

from __future__ import annotations

from typing import Callable, List, Optional

import numpy as np

from ember.delta import DeltaSet
from ember.ember_tensor import EmberTensor
from ember.ember_tensor_list import EmberTensorList
from ember.errors import ShapeMismatchError

# (buffer, gradient of the loss w.r.t. this result's data) -> None
Accumulator = Callable[[DeltaSet, EmberTensorList], None]


def _no_op(buffer: DeltaSet, gradient: EmberTensorList) -> None:
    pass


class EmberResult:
    """
    Forward value + backward closure.

        data:        EmberTensorList produced by the forward pass
        accumulator: called with (DeltaSet, dL/d(data)); applies the local
                     chain rule and forwards to upstream results, or records
                     into the DeltaSet
        alive:       False when nothing upstream needs gradient
                     (constants, fully frozen sub-graphs)

    Backward is synchronous: accumulate() returns only after every
    upstream contribution has been merged into the buffer.
    """

    def __init__(
        self,
        data: EmberTensorList,
        accumulator: Optional[Accumulator] = None,
        alive: bool = True,
    ) -> None:
        self.data = data
        self._accumulator = accumulator or _no_op
        self._alive = bool(alive) and accumulator is not None

    # ------------------------------------------------------
    # Constants
    # ------------------------------------------------------
    @classmethod
    def constant(cls, data: EmberTensorList) -> "EmberResult":
        return cls(data, None, alive=False)

    @classmethod
    def constants(cls, *tensors: EmberTensor) -> List["EmberResult"]:
        """
        One single-item constant result per tensor.
        """
        return [cls.constant(EmberTensorList.of(t)) for t in tensors]

    @classmethod
    def batch_constants(cls, *lists: EmberTensorList) -> List["EmberResult"]:
        return [cls.constant(lst) for lst in lists]

    # ------------------------------------------------------
    # Backward
    # ------------------------------------------------------
    def is_alive(self) -> bool:
        return self._alive

    def accumulate(self, buffer: DeltaSet, gradient: Optional[EmberTensorList] = None) -> None:
        """
        Run the backward closure.

        gradient defaults to all ones (dL/dy = 1 for every element).
        """
        if gradient is None:
            gradient = EmberTensorList.from_array(np.ones_like(self.data.as_array()))

        if len(gradient) != len(self.data) or gradient.dimensions != self.data.dimensions:
            raise ShapeMismatchError(
                f"EmberResult.accumulate: gradient {len(gradient)}x{gradient.dimensions} "
                f"does not match data {len(self.data)}x{self.data.dimensions}"
            )

        self._accumulator(buffer, gradient)

    def __repr__(self) -> str:
        return f"EmberResult(data={self.data!r}, alive={self._alive})"
