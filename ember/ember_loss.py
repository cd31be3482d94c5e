# ember/ember_loss.py
from __future__ import annotations

import numpy as np

from ember.ember_layer import EmberLayer
from ember.errors import ShapeMismatchError


class EmberMeanSqLoss(EmberLayer):
    """
    Per-item mean squared error between a prediction and a target:

        loss[n] = mean_k (pred[n,k] - target[n,k])^2

    Inputs:
        pred:   (N, *shape)
        target: (N, *shape)
    Output:
        (N, 1)

    Backward (M = number of elements per item):
        dL/dpred[n]   =  g[n] * 2 (pred[n] - target[n]) / M
        dL/dtarget[n] = -g[n] * 2 (pred[n] - target[n]) / M

    Both inputs receive gradient, so the same layer works for model
    learning (target constant) and input learning (target learnable).
    """

    def check_inputs(self, *xs: np.ndarray) -> None:
        if len(xs) != 2:
            raise ValueError(f"{self.name}: expected (prediction, target), got {len(xs)} inputs")
        pred, target = xs
        if pred.shape != target.shape:
            raise ShapeMismatchError(
                f"{self.name}: prediction shape {pred.shape} does not match target shape {target.shape}"
            )

    def forward(self, pred, target):
        n = pred.shape[0]
        diff = (pred - target).reshape(n, -1)
        return np.mean(diff * diff, axis=1, keepdims=True)

    def backward(self, grad_output, pred, target):
        n = pred.shape[0]
        m = int(np.prod(pred.shape[1:])) if pred.ndim > 1 else 1
        g = np.asarray(grad_output, dtype=np.float64).reshape(n, *([1] * (pred.ndim - 1)))
        grad_pred = g * 2.0 * (pred - target) / m
        return [grad_pred, -grad_pred], []
