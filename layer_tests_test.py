# layer_tests_test.py

from __future__ import annotations

import numpy as np
import pytest

from ember.batching_tester import BatchingTester
from ember.derivative_tester import SingleDerivativeTester
from ember.ember_activation import EmberSigmoid
from ember.ember_linear import EmberLinear
from ember.equivalency_tester import EquivalencyTester
from ember.errors import GradientToleranceError, TestError
from ember.layer_tests import SEED, StandardLayerTests
from ember.performance_tester import PerformanceTester
from ember.training_tester import TrainingTester


class DoubledFeedbackLinear(EmberLinear):
    """Reports twice the true input gradient."""

    def backward(self, grad_output, x):
        input_grads, param_grads = super().backward(grad_output, x)
        return [2.0 * g for g in input_grads], param_grads


def linear() -> EmberLinear:
    return EmberLinear(3, 2, rng=np.random.default_rng(21))


def fast(**kwargs) -> StandardLayerTests:
    return StandardLayerTests(test_training=False, verbose=False, **kwargs)


def test_default_seed_is_fixed() -> None:
    assert StandardLayerTests(verbose=False).seed == SEED == 51389


def test_testers_run_in_order() -> None:
    suite = StandardLayerTests(verbose=False, reference_factory=lambda layer: layer.copy())
    kinds = [type(t) for t in suite.testers(linear())]

    assert kinds == [SingleDerivativeTester, PerformanceTester, BatchingTester, EquivalencyTester, TrainingTester]


def test_disabled_testers_are_left_out() -> None:
    suite = StandardLayerTests(
        verbose=False,
        validate_batch_execution=False,
        validate_differentials=False,
        test_training=False,
        test_equivalency=False,
        test_performance=False,
    )
    assert suite.testers(linear()) == []


def test_reference_factory_may_decline() -> None:
    suite = fast(reference_factory=lambda layer: None)
    assert all(not isinstance(t, EquivalencyTester) for t in suite.testers(linear()))


def test_randomized_inputs_sit_on_a_grid() -> None:
    (x,) = fast().randomize([[4, 3]], np.random.default_rng(0))

    assert x.data.shape == (4, 3)
    assert np.all(np.abs(x.data) <= 2.0)
    assert np.allclose(x.data * 250.0, np.round(x.data * 250.0))


def test_correct_layer_passes() -> None:
    assert fast().run(linear(), [[3]]) == []


def test_correct_layer_passes_with_training() -> None:
    suite = StandardLayerTests(verbose=False, test_performance=False)
    assert suite.run(EmberSigmoid(), [[3]]) == []


def test_matching_reference_passes() -> None:
    layer = linear()
    assert fast(reference_factory=lambda l: EmberLinear.from_weights(l.W, l.b)).run(layer, [[3]]) == []


def test_failures_are_wrapped_and_returned() -> None:
    layer = DoubledFeedbackLinear(3, 2, rng=np.random.default_rng(22))
    failures = fast().run(layer, [[3]], throw=False)

    assert failures
    first = failures[0]
    assert isinstance(first, TestError)
    assert isinstance(first.test, SingleDerivativeTester)
    assert first.layer is layer
    assert isinstance(first.__cause__, GradientToleranceError)


def test_first_failure_is_raised() -> None:
    layer = DoubledFeedbackLinear(3, 2, rng=np.random.default_rng(23))
    with pytest.raises(TestError) as info:
        fast().run(layer, [[3]])
    assert isinstance(info.value.__cause__, GradientToleranceError)


def test_mismatched_reference_is_reported() -> None:
    suite = fast(reference_factory=lambda l: EmberLinear.from_weights(2.0 * l.W, l.b))
    failures = suite.run(linear(), [[3]], throw=False)

    assert [type(f.test) for f in failures] == [EquivalencyTester]


def test_caller_layer_is_not_modified() -> None:
    layer = linear()
    before = [s.copy() for s in layer.state()]

    fast().run(layer, [[3]])

    assert all(np.array_equal(a, b) for a, b in zip(before, layer.state()))


def test_invalid_tolerance() -> None:
    with pytest.raises(ValueError):
        StandardLayerTests(tolerance=0.0, verbose=False)


if __name__ == "__main__":
    raise SystemExit(pytest.main([__file__]))
