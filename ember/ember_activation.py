# ember/ember_activation.py
from __future__ import annotations
import numpy as np

from ember.ember_layer import EmberLayer


class EmberReLU(EmberLayer):
    """
    Elementwise ReLU activation:
        y = max(0, x)

    Backward:
        - Passes gradients only where x was positive
        - Zeros gradients where x <= 0

    No parameters, no parameter gradients.
    """

    def forward(self, x):
        return x * (x > 0)

    def backward(self, grad_output, x):
        # dL/dx = dL/dy * (x > 0 ? 1 : 0)
        return [grad_output * (x > 0)], []


class EmberSigmoid(EmberLayer):
    """
    Elementwise logistic activation:
        y = 1 / (1 + exp(-x))

    Smooth everywhere, which makes it the friendliest layer for
    finite-difference checks.
    """

    def forward(self, x):
        return 1.0 / (1.0 + np.exp(-x))

    def backward(self, grad_output, x):
        s = 1.0 / (1.0 + np.exp(-x))
        # dy/dx = s * (1 - s)
        return [grad_output * s * (1.0 - s)], []
