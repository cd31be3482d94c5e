# ember/ember_linear.py
from __future__ import annotations

import math
from typing import Optional

import numpy as np

from ember.ember_layer import EmberLayer, require_shape


class EmberLinear(EmberLayer):
    """
    Fully-connected (dense) layer:

        y = W @ x + b

    where:
        x: (N, D)         input features, one row per batch item
        W: (C, D)         weight matrix
        b: (C,)           bias vector
        y: (N, C)         output activations

    Backprop equations (batch of N):

        Given:
            g_out = dL/dy   shape (N, C)

        Gradients:
            dL/dW = g_out^T @ x        (sum of outer products over the batch)
            dL/db = sum_n g_out[n]
            dL/dx = g_out @ W
    """

    def __init__(
        self,
        in_features: int,
        out_features: int,
        name: str | None = None,
        bias: bool = True,
        rng: Optional[np.random.Generator] = None,
    ) -> None:
        super().__init__(name or f"EmberLinear({in_features}->{out_features})")

        self.in_features = int(in_features)
        self.out_features = int(out_features)
        if self.in_features <= 0 or self.out_features <= 0:
            raise ValueError(
                f"{self.name}: feature counts must be positive, "
                f"got {in_features} -> {out_features}"
            )

        # Xavier-ish uniform init:
        # W_ij ~ U(-1/sqrt(D), 1/sqrt(D))
        rng = rng or np.random.default_rng()
        limit = 1.0 / math.sqrt(self.in_features)
        self.W = rng.uniform(-limit, +limit, size=(self.out_features, self.in_features))

        self.b: np.ndarray | None = np.zeros((self.out_features,), dtype=np.float64) if bias else None

    @classmethod
    def from_weights(cls, W, b=None, name: str | None = None) -> "EmberLinear":
        W = np.array(W, dtype=np.float64)
        layer = cls(W.shape[1], W.shape[0], name=name, bias=b is not None)
        layer.W = W
        if b is not None:
            layer.b = np.array(b, dtype=np.float64).reshape(W.shape[0])
        return layer

    def check_inputs(self, *xs: np.ndarray) -> None:
        if len(xs) != 1:
            raise ValueError(f"{self.name}: expected exactly one input, got {len(xs)}")
        require_shape(self, xs[0], (self.in_features,))

    # ------------------------------------------------------
    # Forward
    # ------------------------------------------------------
    def forward(self, x):
        """
        x: (N, in_features)
        returns: (N, out_features)
        """
        y = x @ self.W.T
        if self.b is not None:
            y = y + self.b
        return y

    # ------------------------------------------------------
    # Backward
    # ------------------------------------------------------
    def backward(self, grad_output, x):
        g_out = np.asarray(grad_output, dtype=np.float64)

        # 1) dL/dW[i,j] = sum_n g_out[n,i] * x[n,j]
        grad_W = g_out.T @ x

        # 2) dL/dx[n,j] = sum_i W[i,j] * g_out[n,i]
        grad_input = g_out @ self.W

        param_grads = [grad_W]
        if self.b is not None:
            # 3) dL/db[i] = sum_n g_out[n,i]
            param_grads.append(g_out.sum(axis=0))

        return [grad_input], param_grads

    def state(self):
        if self.b is None:
            return [self.W]
        return [self.W, self.b]

    def __repr__(self):
        return f"{self.name}(W={self.W.shape}, bias={self.b is not None})"
