# ember/ember_layer.py
from __future__ import annotations

import copy
import uuid
from typing import Any, List, Sequence, Tuple

import numpy as np

from ember.delta import DeltaSet
from ember.ember_result import EmberResult
from ember.ember_tensor import EmberTensor
from ember.ember_tensor_list import EmberTensorList
from ember.errors import LayerDisposedError, ShapeMismatchError


class EmberLayer:
    """
    Minimal base class for all Ember layers.

    Design goals:
      - Very small surface area.
      - Forward and backward are explicit, and both are batched:
        every x has shape (N, *item_shape).
      - Parameter handling is unified: state() lists the live
        learnable arrays, the base eval() turns parameter gradients
        into Deltas keyed by (layer.id, state_index).

    Subclasses should override:
      - forward(self, *xs)
      - backward(self, grad_output, *xs)
      - state(self)              (if they have learnable params)

    Frozen layers still pass gradient to their inputs, they just never
    list their own state() arrays in the DeltaSet.
    """

    def __init__(self, name: str | None = None) -> None:
        self.name = name or self.__class__.__name__
        self.id = uuid.uuid4()
        self.frozen = False
        self._disposed = False

    def forward(self, *xs: np.ndarray) -> np.ndarray:
        """
        Compute the forward pass for a whole batch.

        Must be overridden in subclasses.

        xs: one (N, ...) array per input
        returns: (N, ...) output array
        """
        raise NotImplementedError(f"{self.__class__.__name__}.forward not implemented.")

    def backward(self, grad_output: np.ndarray, *xs: np.ndarray) -> Tuple[List[np.ndarray], List[np.ndarray]]:
        """
        Compute the backward pass.

        grad_output is dL/d(out) for the whole batch, xs are the
        same inputs forward() saw.

        Returns:
            (input_grads, param_grads)
            input_grads: one dL/dx per input, same shape as that x
            param_grads: one dL/dparam per state() array, summed over the batch

        Chain Rule:
        (dL / dx) = (dL / dy) * (dy / dx)
        """
        raise NotImplementedError(f"{self.__class__.__name__}.backward not implemented.")

    # --------------------------------------------------
    # Parameter handling
    # --------------------------------------------------
    def state(self) -> List[np.ndarray]:
        """
        Return the live learnable arrays owned by this layer.

        Layers without parameters can just inherit this
        default (empty list).
        """
        return []

    def freeze(self) -> "EmberLayer":
        return self.set_frozen(True)

    def set_frozen(self, frozen: bool) -> "EmberLayer":
        self.frozen = bool(frozen)
        return self

    @property
    def is_frozen(self) -> bool:
        return self.frozen

    # --------------------------------------------------
    # Stochastic hooks (no-ops for deterministic layers)
    # --------------------------------------------------
    def shuffle(self, seed: int) -> None:
        pass

    def clear_noise(self) -> None:
        pass

    # --------------------------------------------------
    # Lifetime
    # --------------------------------------------------
    def dispose(self) -> None:
        self._disposed = True

    def assert_alive(self) -> None:
        if self._disposed:
            raise LayerDisposedError(f"{self.name}: layer has been disposed")

    def copy(self) -> "EmberLayer":
        """
        Deep copy with its own state arrays and a fresh id.
        """
        self.assert_alive()
        clone = copy.deepcopy(self)
        clone._reassign_ids()
        return clone

    def _reassign_ids(self) -> None:
        self.id = uuid.uuid4()

    # --------------------------------------------------
    # Evaluation
    # --------------------------------------------------
    def check_inputs(self, *xs: np.ndarray) -> None:
        """
        Shape validation hook; raise ShapeMismatchError on bad input.
        """
        batch = {x.shape[0] for x in xs}
        if len(batch) > 1:
            raise ShapeMismatchError(
                f"{self.name}: inputs disagree on batch size: {[x.shape for x in xs]}"
            )

    def eval(self, *inputs: EmberResult) -> EmberResult:
        """
        Forward over Results, returning a Result whose accumulator
        runs backward() and routes the gradients:
            - param grads -> DeltaSet (unless frozen)
            - input grads -> upstream results that are alive
        """
        self.assert_alive()

        xs = [r.data.as_array() for r in inputs]
        self.check_inputs(*xs)
        y = self.forward(*xs)
        out = EmberTensorList.from_array(y)

        state = self.state()
        frozen = self.frozen

        def accumulate(buffer: DeltaSet, gradient: EmberTensorList) -> None:
            input_grads, param_grads = self.backward(gradient.as_array(), *xs)

            if not frozen:
                for index, (target, grad) in enumerate(zip(state, param_grads)):
                    buffer.get((self.id, index), target).add_in_place(grad)

            for upstream, gx in zip(inputs, input_grads):
                if upstream.is_alive():
                    upstream.accumulate(buffer, EmberTensorList.from_array(gx))

        alive = any(r.is_alive() for r in inputs) or (not frozen and len(state) > 0)
        return EmberResult(out, accumulate, alive=alive)

    def eval_tensors(self, *tensors: EmberTensor) -> EmberResult:
        """
        Convenience: evaluate on single-item constant inputs.
        """
        return self.eval(*EmberResult.constants(*tensors))

    def eval_lists(self, *lists: EmberTensorList) -> EmberResult:
        return self.eval(*EmberResult.batch_constants(*lists))

    # --------------------------------------------------
    # Convenience
    # --------------------------------------------------
    def __call__(self, *inputs: EmberResult) -> EmberResult:
        return self.eval(*inputs)

    def state_equals(self, other: Any) -> bool:
        """
        Value equality: same class, same name, same parameter values.
        """
        if not isinstance(other, EmberLayer) or type(other) is not type(self):
            return False
        mine, theirs = self.state(), other.state()
        return (
            self.name == other.name
            and len(mine) == len(theirs)
            and all(np.array_equal(a, b) for a, b in zip(mine, theirs))
        )

    def __repr__(self) -> str:
        return f"{self.__class__.__name__}(name={self.name!r}, frozen={self.frozen})"


def require_shape(layer: EmberLayer, x: np.ndarray, item_shape: Sequence[int], what: str = "input") -> None:
    """
    Raise ShapeMismatchError unless x is (N, *item_shape).
    """
    if x.ndim != len(item_shape) + 1 or tuple(x.shape[1:]) != tuple(item_shape):
        raise ShapeMismatchError(
            f"{layer.name}: Expected {what} of shape (N, {', '.join(str(d) for d in item_shape)}), "
            f"got {x.shape}"
        )
