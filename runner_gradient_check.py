# runner_gradient_check.py
from __future__ import annotations

import numpy as np

from ember.ember_activation import EmberReLU, EmberSigmoid
from ember.ember_linear import EmberLinear
from ember.ember_loss import EmberMeanSqLoss
from ember.ember_sequential import EmberSequential
from ember.layer_tests import StandardLayerTests


def build_layers():
    """
    (layer, input dims) pairs to put through the standard battery.
    """
    rng = np.random.default_rng(7)
    mlp = EmberSequential(
        EmberLinear(4, 6, rng=rng),
        EmberSigmoid(),
        EmberLinear(6, 2, rng=rng),
    )
    return [
        (EmberLinear(3, 2, rng=rng), [[3]]),
        (EmberSigmoid(), [[2, 3]]),
        (EmberReLU(), [[5]]),
        (EmberMeanSqLoss(), [[3], [3]]),
        (mlp, [[4]]),
    ]


def runner_gradient_check(test_training: bool = False) -> int:
    suite = StandardLayerTests(
        test_training=test_training,
        reference_factory=lambda layer: layer.copy(),
        verbose=False,
    )

    failed = 0
    for layer, dims in build_layers():
        print(f"\n=== {layer.name} ===")
        failures = suite.run(layer, dims, throw=False)
        for failure in failures:
            print(f"  FAIL: {failure}")
        if failures:
            failed += 1
        else:
            print("  OK")

    print(f"\n{failed} layer(s) failed")
    return failed


if __name__ == "__main__":
    raise SystemExit(runner_gradient_check())
