# batching_tester_test.py

from __future__ import annotations

import numpy as np
import pytest

from ember.batching_tester import BatchingTester
from ember.ember_activation import EmberReLU, EmberSigmoid
from ember.ember_layer import EmberLayer
from ember.ember_linear import EmberLinear
from ember.ember_sequential import EmberSequential
from ember.ember_tensor import EmberTensor
from ember.equivalency_tester import EquivalencyTester
from ember.errors import GradientToleranceError
from ember.performance_tester import PerformanceResult, PerformanceTester


# --------------------------------------------------
# Layers that get the batch dimension wrong
# --------------------------------------------------

class BatchMeanLeak(EmberLayer):
    """Adds the batch mean to every item: fine for N=1, wrong otherwise."""

    def forward(self, x):
        return x + x.mean(axis=0, keepdims=True)

    def backward(self, grad_output, x):
        n = x.shape[0]
        return [grad_output + grad_output.sum(axis=0, keepdims=True) / n], []


class BatchGradLeak(EmberLayer):
    """Correct forward, but the gradient sums across the batch."""

    def forward(self, x):
        return 2.0 * x

    def backward(self, grad_output, x):
        return [2.0 * np.broadcast_to(grad_output.sum(axis=0, keepdims=True), x.shape).copy()], []


class BatchSum(EmberLayer):
    """Collapses the whole batch into one item."""

    def forward(self, x):
        return x.sum(axis=0, keepdims=True)

    def backward(self, grad_output, x):
        return [np.broadcast_to(grad_output, x.shape).copy()], []


def mlp() -> EmberSequential:
    return EmberSequential(
        EmberLinear(3, 4, rng=np.random.default_rng(10)),
        EmberReLU(),
        EmberLinear(4, 2, rng=np.random.default_rng(11)),
    )


# --------------------------------------------------
# BatchingTester
# --------------------------------------------------

@pytest.mark.parametrize("batch_size", [1, 2, 10])
def test_batch_invariance(batch_size: int) -> None:
    tester = BatchingTester(1e-6, batch_size=batch_size, seed=batch_size, verbose=False)
    stats = tester.test(mlp(), EmberTensor([0.0, 0.0, 0.0]))

    assert stats is not None
    assert stats.absolute_tol.max < 1e-6


def test_elementwise_layers_are_batch_invariant() -> None:
    for layer in (EmberReLU(), EmberSigmoid()):
        stats = BatchingTester(1e-9, seed=3, verbose=False).test(layer, EmberTensor.zeros(2, 3))
        assert stats.absolute_tol.max < 1e-9


def test_output_leak_is_detected() -> None:
    with pytest.raises(GradientToleranceError, match="Output Corrupt"):
        BatchingTester(1e-6, batch_size=4, seed=1, verbose=False).test(BatchMeanLeak(), EmberTensor.zeros(3))


def test_derivative_leak_is_detected() -> None:
    tester = BatchingTester(1e-6, batch_size=4, seed=2, verbose=False)
    with pytest.raises(GradientToleranceError, match="Derivatives Corrupt") as info:
        tester.test(BatchGradLeak(), EmberTensor.zeros(3))
    assert info.value.coordinate is not None


def test_derivative_leak_ignored_when_not_validated() -> None:
    tester = BatchingTester(1e-6, validate_derivatives=False, batch_size=4, seed=2, verbose=False)
    assert tester.test(BatchGradLeak(), EmberTensor.zeros(3)) is not None


def test_batch_collapsing_layer_is_skipped() -> None:
    assert BatchingTester(1e-6, batch_size=5, seed=4, verbose=False).test(BatchSum(), EmberTensor.zeros(2)) is None


def test_no_reference_returns_empty_statistics() -> None:
    stats = BatchingTester(verbose=False).test(None, EmberTensor.zeros(2))
    assert stats.absolute_tol.count == 0


# --------------------------------------------------
# EquivalencyTester
# --------------------------------------------------

def test_equivalent_layers_agree() -> None:
    W = np.array([[1.0, 2.0], [-1.0, 0.5]])
    subject = EmberLinear.from_weights(W)
    reference = EmberSequential(EmberLinear.from_weights(W))

    stats = EquivalencyTester(1e-9, reference).test(subject, EmberTensor([0.3, -0.7]))
    assert stats.absolute_tol.max < 1e-9


def test_different_layers_disagree() -> None:
    subject = EmberLinear.from_weights(np.eye(2))
    reference = EmberLinear.from_weights(2.0 * np.eye(2))

    with pytest.raises(GradientToleranceError, match="Reference mismatch"):
        EquivalencyTester(1e-3, reference).test(subject, EmberTensor([1.0, 1.0]))


def test_equivalency_without_reference_is_a_no_op() -> None:
    stats = EquivalencyTester().test(EmberReLU(), EmberTensor([1.0]))
    assert stats.absolute_tol.count == 0


# --------------------------------------------------
# PerformanceTester
# --------------------------------------------------

def test_performance_tester_reports_timings() -> None:
    result = PerformanceTester(samples=2, batches=3, seed=0).test(mlp(), EmberTensor.zeros(3))

    assert isinstance(result, PerformanceResult)
    assert result.forward_seconds >= 0.0
    assert result.backward_seconds >= 0.0


if __name__ == "__main__":
    raise SystemExit(pytest.main([__file__]))
