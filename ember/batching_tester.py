# ember/batching_tester.py
from __future__ import annotations

from typing import Optional

import numpy as np

from ember import defaults
from ember.ember_layer import EmberLayer
from ember.ember_tensor import EmberTensor
from ember.ember_tensor_list import EmberTensorList
from ember.errors import GradientToleranceError
from ember.simple_eval import simple_eval, simple_eval_lists
from ember.statistics import ToleranceStatistics


TAG = "[BatchingTester]"


class BatchingTester:
    """
    A layer must behave the same no matter how items are split into batches.

    Builds batch_size random items per input, evaluates them once as a
    batch and once item by item, and checks:
        - outputs agree
        - input derivatives agree (when validate_derivatives)

    Layers that legitimately change the batch cardinality (the output
    has a different item count than the input) are reported and skipped.
    """

    def __init__(
        self,
        tolerance: float = defaults.TOLERANCE,
        validate_derivatives: bool = True,
        batch_size: int = defaults.BATCH_SIZE,
        seed: Optional[int] = None,
        verbose: bool = True,
    ) -> None:
        if not tolerance > 0.0:
            raise ValueError(f"Invalid tolerance: {tolerance}")
        if batch_size < 1:
            raise ValueError(f"Invalid batch_size: {batch_size}")

        self.tolerance = float(tolerance)
        self.validate_derivatives = validate_derivatives
        self.batch_size = int(batch_size)
        self.verbose = verbose
        self._rng = np.random.default_rng(seed)

    def test(self, reference: Optional[EmberLayer], *input_prototype: EmberTensor) -> Optional[ToleranceStatistics]:
        if reference is None:
            return ToleranceStatistics()
        reference.assert_alive()

        input_lists = [
            EmberTensorList([
                EmberTensor(5.0 * (self._rng.random(t.shape) - 0.5))
                for _ in range(self.batch_size)
            ])
            for t in input_prototype
        ]

        as_a_batch = simple_eval_lists(reference, *input_lists)
        one_at_a_time = [
            simple_eval(reference, *[lst[b] for lst in input_lists])
            for b in range(self.batch_size)
        ]

        batch_output = as_a_batch.output
        if len(batch_output) != self.batch_size:
            print(
                f"{TAG} Batch output count {len(batch_output)} does not match "
                f"input count {self.batch_size}; skipping"
            )
            return None

        output_agreement = ToleranceStatistics()
        for b in range(self.batch_size):
            output_agreement = output_agreement.combine(
                ToleranceStatistics().accumulate_arrays(batch_output[b].data, one_at_a_time[b].output[0].data)
            )

        if not output_agreement.absolute_tol.max < self.tolerance:
            print(f"{TAG} Batch Output: {batch_output.pretty_print()}")
            print(f"{TAG} Singular Output: {[s.output[0].pretty_print() for s in one_at_a_time]}")
            raise GradientToleranceError(output_agreement, None, "Output Corrupt")

        if self.verbose:
            print(f"{TAG} Output agreement: {output_agreement}")

        if not self.validate_derivatives:
            return output_agreement

        derivative_agreement = ToleranceStatistics()
        for b in range(self.batch_size):
            for i in range(len(input_prototype)):
                batched = as_a_batch.input_derivative[i][b]
                single = one_at_a_time[b].input_derivative[i][0]
                agreement = ToleranceStatistics().accumulate_arrays(batched.data, single.data)
                if not agreement.absolute_tol.max < self.tolerance:
                    print(f"{TAG} Error: {batched.minus(single).pretty_print()}")
                    raise GradientToleranceError(agreement, (b, i), "Derivatives Corrupt")
                derivative_agreement = derivative_agreement.combine(agreement)

        if self.verbose:
            print(f"{TAG} Derivative agreement: {derivative_agreement}")

        return derivative_agreement.combine(output_agreement)

    def __repr__(self) -> str:
        return f"BatchingTester(tolerance={self.tolerance}, batch_size={self.batch_size})"
