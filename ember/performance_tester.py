# ember/performance_tester.py
from __future__ import annotations

from dataclasses import dataclass
from typing import Optional

import numpy as np

from ember.delta import DeltaSet
from ember.ember_layer import EmberLayer
from ember.ember_result import EmberResult
from ember.ember_tensor import EmberTensor
from ember.ember_tensor_list import EmberTensorList
from ember.timed_result import TimedResult


TAG = "[PerformanceTester]"


@dataclass
class PerformanceResult:
    forward_seconds: float
    backward_seconds: float


class PerformanceTester:
    """
    Time forward and backward passes over a batch.
    Pure diagnostics: results are printed and returned, never asserted.
    """

    def __init__(self, samples: int = 5, batches: int = 10, seed: Optional[int] = None) -> None:
        if samples < 1:
            raise ValueError(f"Invalid samples: {samples}")
        if batches < 1:
            raise ValueError(f"Invalid batches: {batches}")
        self.samples = int(samples)
        self.batches = int(batches)
        self._rng = np.random.default_rng(seed)

    def test(self, component: EmberLayer, *input_prototype: EmberTensor) -> PerformanceResult:
        component.assert_alive()
        forward_total = 0
        backward_total = 0

        for _ in range(self.samples):
            lists = [
                EmberTensorList([EmberTensor.random(t.shape, self._rng) for _ in range(self.batches)])
                for t in input_prototype
            ]
            inputs = [EmberResult(lst, lambda buffer, data: None, alive=True) for lst in lists]

            timed_forward = TimedResult.time(lambda: component.eval(*inputs))
            result = timed_forward.result
            timed_backward = TimedResult.time(lambda: result.accumulate(DeltaSet()))

            forward_total += timed_forward.time_nanos
            backward_total += timed_backward.time_nanos

        performance = PerformanceResult(
            forward_seconds=forward_total / 1e9 / self.samples,
            backward_seconds=backward_total / 1e9 / self.samples,
        )
        print(
            f"{TAG} {component.name}: Evaluation performance: {performance.forward_seconds:.6f}s; "
            f"Back-propagation performance: {performance.backward_seconds:.6f}s "
            f"(batch={self.batches}, samples={self.samples})"
        )
        return performance

    def __repr__(self) -> str:
        return f"PerformanceTester(samples={self.samples}, batches={self.batches})"
