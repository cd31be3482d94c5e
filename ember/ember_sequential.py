# ember/ember_sequential.py
from __future__ import annotations

from typing import List

from ember.ember_layer import EmberLayer
from ember.ember_result import EmberResult


class EmberSequential(EmberLayer):
    """
    A simple container that holds several EmberLayers and applies them in order.

    Forward pass:
        input → layer_0 → layer_1 → ... → layer_N → output

    Backward pass:
        Each child's eval() returns a Result whose accumulator feeds the
        previous child's Result, so accumulating the final Result walks
        the chain in reverse, exactly like calling backward() layer by layer.

    Parameters:
        state() returns the state arrays of all child layers, in order.

    freeze / set_frozen / shuffle / clear_noise propagate to every child.
    """

    def __init__(self, *layers: EmberLayer, name: str | None = None):
        """
        Example:
            model = EmberSequential(
                EmberLinear(4, 8),
                EmberReLU(),
                EmberLinear(8, 3)
            )
        """
        super().__init__(name)
        if not layers:
            raise ValueError("EmberSequential needs at least one layer")
        self.layers: List[EmberLayer] = list(layers)

    # ------------------------------------------------------
    # Forward pass
    # ------------------------------------------------------
    def eval(self, *inputs: EmberResult) -> EmberResult:
        """
        The first layer sees all inputs, every later layer sees
        the previous layer's single output.
        """
        self.assert_alive()
        out = self.layers[0].eval(*inputs)
        for layer in self.layers[1:]:
            out = layer.eval(out)
        return out

    # ------------------------------------------------------
    # Parameter management
    # ------------------------------------------------------
    def state(self):
        params = []
        for layer in self.layers:
            params.extend(layer.state())
        return params

    def set_frozen(self, frozen: bool) -> "EmberSequential":
        super().set_frozen(frozen)
        for layer in self.layers:
            layer.set_frozen(frozen)
        return self

    def shuffle(self, seed: int) -> None:
        for offset, layer in enumerate(self.layers):
            layer.shuffle(seed + offset)

    def clear_noise(self) -> None:
        for layer in self.layers:
            layer.clear_noise()

    def dispose(self) -> None:
        super().dispose()
        for layer in self.layers:
            layer.dispose()

    def _reassign_ids(self) -> None:
        super()._reassign_ids()
        for layer in self.layers:
            layer._reassign_ids()

    # ------------------------------------------------------
    # Convenience
    # ------------------------------------------------------
    def append(self, layer: EmberLayer):
        """Add a layer to the end."""
        self.layers.append(layer)

    def __len__(self):
        return len(self.layers)

    def __getitem__(self, idx: int):
        return self.layers[idx]

    def __repr__(self):
        inner = ",\n  ".join(repr(layer) for layer in self.layers)
        return f"EmberSequential(\n  {inner}\n)"
