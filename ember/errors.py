# ember/errors.py
from __future__ import annotations

from typing import Any, Optional, Tuple


class ShapeMismatchError(ValueError):
    """
    Raised when a layer (or a tensor op) receives inputs whose
    dimensions disagree with what it expects.

    Fatal and never retried.
    """


class LayerDisposedError(RuntimeError):
    """
    Raised by EmberLayer.assert_alive() once a layer has been disposed.
    """


class GradientToleranceError(AssertionError):
    """
    Analytic and finite-difference gradients disagree.

    Attributes:
        statistics: ToleranceStatistics of the failing comparison
        coordinate: (i, j) of the largest absolute disagreement, or None
        label:      which sweep failed ("Feedback for input 0", ...)
    """

    def __init__(
        self,
        statistics: Any,
        coordinate: Optional[Tuple[int, ...]] = None,
        label: str = "",
    ) -> None:
        self.statistics = statistics
        self.coordinate = coordinate
        self.label = label
        super().__init__(f"{label}: {statistics} at {coordinate}")


class FrozenInvariantError(AssertionError):
    """
    A frozen layer emitted deltas for its own state, or an unfrozen layer
    emitted none, or gradient did not reach the inputs.
    """


class NothingToOptimizeError(RuntimeError):
    """
    A trainable produced a sample with no deltas at all.
    """


class IterativeStopError(RuntimeError):
    """
    Stop signal: the loss was non-finite and the monitor refused a retry
    (or the retry budget ran out).
    """

    def __init__(self, value: float, message: str | None = None) -> None:
        self.value = value
        super().__init__(message or f"Optimization stopped at non-finite value {value}")


class TestError(RuntimeError):
    """
    Wraps a failure raised by one tester against one layer.

    The original exception is chained as __cause__.
    """

    # keep pytest from trying to collect this as a test class
    __test__ = False

    def __init__(self, cause: BaseException, test: Any, layer: Any) -> None:
        self.test = test
        self.layer = layer
        super().__init__(f"{test} failed for {layer}: {cause!r}")
        self.__cause__ = cause
