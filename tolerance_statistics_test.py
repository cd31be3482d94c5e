# tolerance_statistics_test.py

from __future__ import annotations

import math

import numpy as np
import pytest

from ember.statistics import ScalarStatistics, ToleranceStatistics
from ember.timed_result import TimedResult


def make_stats(rng: np.random.Generator, n: int) -> ToleranceStatistics:
    return ToleranceStatistics().accumulate_arrays(rng.normal(size=n), rng.normal(size=n))


def assert_same_summary(a: ScalarStatistics, b: ScalarStatistics) -> None:
    assert a.count == b.count
    assert a.sum == pytest.approx(b.sum)
    assert a.sum_sq == pytest.approx(b.sum_sq)
    assert a.min == b.min
    assert a.max == b.max


def test_scalar_statistics_summary() -> None:
    stats = ScalarStatistics().add([1.0, 2.0, 3.0, 4.0])

    assert stats.count == 4
    assert stats.mean == pytest.approx(2.5)
    assert stats.stddev == pytest.approx(math.sqrt(1.25))
    assert stats.min == 1.0
    assert stats.max == 4.0
    assert math.isnan(ScalarStatistics().mean)


def test_tolerance_statistics_absolute_and_relative() -> None:
    stats = ToleranceStatistics()
    stats.accumulate(1.0, 1.5)
    stats.accumulate(-2.0, -2.0)

    assert stats.absolute_tol.max == pytest.approx(0.5)
    # 0.5 / max(|1.0|, |1.5|)
    assert stats.relative_tol.max == pytest.approx(0.5 / 1.5)
    assert stats.absolute_tol.count == 2


def test_tolerance_statistics_skip_nan_measurements() -> None:
    stats = ToleranceStatistics().accumulate_arrays([1.0, np.nan, 3.0], [1.0, 2.0, 3.0])
    assert stats.absolute_tol.count == 2
    assert stats.absolute_tol.max == 0.0


def test_tolerance_statistics_non_finite_implementation_is_worst_case() -> None:
    stats = ToleranceStatistics().accumulate_arrays([1.0, 2.0, 3.0], [1.0, np.nan, np.inf])
    assert stats.absolute_tol.count == 3
    assert stats.absolute_tol.max == math.inf
    assert stats.relative_tol.max == math.inf

    # an infinite measurement is not "untestable", only NaN is
    single = ToleranceStatistics().accumulate(math.inf, 1.0)
    assert single.absolute_tol.count == 1
    assert single.absolute_tol.max == math.inf

    assert ToleranceStatistics().accumulate(math.nan, 1.0).absolute_tol.count == 0


def test_tolerance_statistics_combine_is_associative() -> None:
    rng = np.random.default_rng(7)
    a, b, c = make_stats(rng, 5), make_stats(rng, 11), make_stats(rng, 3)

    left = a.combine(b).combine(c)
    right = a.combine(b.combine(c))

    assert_same_summary(left.absolute_tol, right.absolute_tol)
    assert_same_summary(left.relative_tol, right.relative_tol)


def test_tolerance_statistics_empty_is_identity() -> None:
    rng = np.random.default_rng(11)
    a = make_stats(rng, 8)
    assert_same_summary(a.combine(ToleranceStatistics()).absolute_tol, a.absolute_tol)
    assert_same_summary(ToleranceStatistics().combine(a).relative_tol, a.relative_tol)


def test_timed_result_captures_value() -> None:
    timed = TimedResult.time(lambda: 42)
    assert timed.result == 42
    assert timed.time_nanos >= 0
    assert timed.seconds == timed.time_nanos / 1e9


if __name__ == "__main__":
    raise SystemExit(pytest.main([__file__]))
