# ember/equivalency_tester.py
from __future__ import annotations

from typing import Optional

from ember import defaults
from ember.ember_layer import EmberLayer
from ember.ember_tensor import EmberTensor
from ember.errors import GradientToleranceError
from ember.simple_eval import simple_eval
from ember.statistics import ToleranceStatistics


TAG = "[EquivalencyTester]"


class EquivalencyTester:
    """
    Cross-verify a layer against an alternate implementation that is
    expected to compute the same function (same idea as
    linear_cross_verify.py, but against any EmberLayer).
    """

    def __init__(self, tolerance: float = defaults.TOLERANCE, reference: Optional[EmberLayer] = None) -> None:
        if not tolerance > 0.0:
            raise ValueError(f"Invalid tolerance: {tolerance}")
        self.tolerance = float(tolerance)
        self.reference = reference

    def test(self, subject: Optional[EmberLayer], *input_prototype: EmberTensor) -> ToleranceStatistics:
        if self.reference is None or subject is None:
            return ToleranceStatistics()
        self.reference.assert_alive()
        subject.assert_alive()

        subject_output = simple_eval(subject, *input_prototype).output[0]
        reference_output = simple_eval(self.reference, *input_prototype).output[0]

        print(f"{TAG} Inputs: {', '.join(t.pretty_print() for t in input_prototype)}")
        print(f"{TAG} Subject Output: {subject_output.pretty_print()}")
        print(f"{TAG} Reference Output: {reference_output.pretty_print()}")

        if subject_output.shape != reference_output.shape:
            raise AssertionError(
                f"Output shape mismatch: subject={subject_output.shape}, "
                f"reference={reference_output.shape}"
            )
        print(f"{TAG} Error: {subject_output.minus(reference_output).pretty_print()}")

        result = ToleranceStatistics().accumulate_arrays(subject_output.data, reference_output.data)
        print(f"{TAG} Accuracy:")
        print(f"{TAG} absoluteTol: {result.absolute_tol}")
        print(f"{TAG} relativeTol: {result.relative_tol}")

        if not result.absolute_tol.max < self.tolerance:
            raise GradientToleranceError(result, None, "Reference mismatch")
        return result

    def __repr__(self) -> str:
        return f"EquivalencyTester(reference={self.reference!r}, tolerance={self.tolerance})"
