# ember/statistics.py
from __future__ import annotations

import math
from dataclasses import dataclass, field
from typing import Dict, Iterable

import numpy as np

from ember.defaults import RELATIVE_EPSILON


@dataclass
class ScalarStatistics:
    """
    Running summary of a stream of doubles:
    count, sum, sum of squares, min, max (mean and stddev derived).

    add() mutates, combine() returns a new summary. combine is
    associative and the empty summary is its identity.
    """

    count: int = 0
    sum: float = 0.0
    sum_sq: float = 0.0
    min: float = math.inf
    max: float = -math.inf

    def add(self, values: Iterable[float] | float | np.ndarray) -> "ScalarStatistics":
        arr = np.asarray(values, dtype=np.float64).reshape(-1)
        if arr.size == 0:
            return self
        self.count += int(arr.size)
        self.sum += float(arr.sum())
        self.sum_sq += float(np.dot(arr, arr))
        self.min = min(self.min, float(arr.min()))
        self.max = max(self.max, float(arr.max()))
        return self

    def combine(self, other: "ScalarStatistics") -> "ScalarStatistics":
        return ScalarStatistics(
            count=self.count + other.count,
            sum=self.sum + other.sum,
            sum_sq=self.sum_sq + other.sum_sq,
            min=min(self.min, other.min),
            max=max(self.max, other.max),
        )

    @property
    def mean(self) -> float:
        return self.sum / self.count if self.count else math.nan

    @property
    def stddev(self) -> float:
        if not self.count:
            return math.nan
        variance = self.sum_sq / self.count - self.mean ** 2
        return math.sqrt(max(variance, 0.0))

    def metrics(self) -> Dict[str, float]:
        return {
            "count": self.count,
            "sum": self.sum,
            "mean": self.mean,
            "stddev": self.stddev,
            "min": self.min,
            "max": self.max,
        }

    def __str__(self) -> str:
        return (
            f"{{count={self.count}, mean={self.mean:.4e}, stddev={self.stddev:.4e}, "
            f"min={self.min:.4e}, max={self.max:.4e}}}"
        )


@dataclass
class ToleranceStatistics:
    """
    Agreement between two sets of numbers (measured vs implemented).

        absolute_tol: stats of |a - b|
        relative_tol: stats of |a - b| / max(|a|, |b|, eps)

    Pairs whose measured side (targets) is NaN are skipped: a NaN probe
    means "untestable here", not "mismatch". Any other non-finite pair
    counts as an infinite error.
    """

    absolute_tol: ScalarStatistics = field(default_factory=ScalarStatistics)
    relative_tol: ScalarStatistics = field(default_factory=ScalarStatistics)

    def accumulate(self, target: float, value: float) -> "ToleranceStatistics":
        if math.isnan(target):
            return self
        if not (math.isfinite(target) and math.isfinite(value)):
            self.absolute_tol.add(math.inf)
            self.relative_tol.add(math.inf)
            return self
        err = abs(target - value)
        scale = max(abs(target), abs(value), RELATIVE_EPSILON)
        self.absolute_tol.add(err)
        self.relative_tol.add(err / scale)
        return self

    def accumulate_arrays(self, targets, values) -> "ToleranceStatistics":
        t = np.asarray(targets, dtype=np.float64).reshape(-1)
        v = np.asarray(values, dtype=np.float64).reshape(-1)
        if t.size != v.size:
            raise ValueError(f"ToleranceStatistics: {t.size} targets vs {v.size} values")
        keep = ~np.isnan(t)
        t, v = t[keep], v[keep]
        finite = np.isfinite(t) & np.isfinite(v)
        err = np.full(t.shape, np.inf)
        rel = np.full(t.shape, np.inf)
        err[finite] = np.abs(t[finite] - v[finite])
        scale = np.maximum(np.maximum(np.abs(t[finite]), np.abs(v[finite])), RELATIVE_EPSILON)
        rel[finite] = err[finite] / scale
        self.absolute_tol.add(err)
        self.relative_tol.add(rel)
        return self

    def combine(self, other: "ToleranceStatistics") -> "ToleranceStatistics":
        return ToleranceStatistics(
            absolute_tol=self.absolute_tol.combine(other.absolute_tol),
            relative_tol=self.relative_tol.combine(other.relative_tol),
        )

    def __str__(self) -> str:
        return f"ToleranceStatistics{{absoluteTol={self.absolute_tol}, relativeTol={self.relative_tol}}}"
