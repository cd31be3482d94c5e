# ember/line_search.py
from __future__ import annotations

import math
from abc import ABC, abstractmethod
from enum import Enum

from ember.line_search_cursor import LineSearchCursor, LineSearchPoint
from ember.monitor import TrainingMonitor
from ember.trainable import PointSample


def _finite(p: LineSearchPoint) -> bool:
    return math.isfinite(p.point.mean) and math.isfinite(p.derivative)


class LineSearchStrategy(ABC):
    """
    Picks a step length along the cursor's direction.

    Returns the chosen PointSample; the caller reads the best point seen
    back from the failsafe cursor, so a poor choice here never makes
    the committed point worse than the start.
    """

    @abstractmethod
    def step(self, cursor: LineSearchCursor, monitor: TrainingMonitor) -> PointSample:
        ...


class ArmijoWolfeSearch(LineSearchStrategy):
    """
    Bracketing search for a step satisfying the strong Wolfe conditions:

        sufficient decrease:  f(a) <= f(0) + c1 * a * f'(0)
        curvature:            |f'(a)| <= c2 * |f'(0)|

    Without an upper bracket the step grows by `growth`; once bracketed
    it bisects. The accepted step seeds the next call.
    """

    def __init__(
        self,
        alpha: float = 1.0,
        c1: float = 1e-6,
        c2: float = 0.9,
        growth: float = 2.0,
        min_alpha: float = 1e-20,
        max_alpha: float = 1e20,
        max_iterations: int = 50,
    ) -> None:
        if not alpha > 0.0:
            raise ValueError(f"Invalid alpha: {alpha}")
        if not 0.0 < c1 < c2 < 1.0:
            raise ValueError(f"Invalid Wolfe constants: c1={c1}, c2={c2}")
        if not growth > 1.0:
            raise ValueError(f"Invalid growth: {growth}")
        self.alpha = float(alpha)
        self.c1 = float(c1)
        self.c2 = float(c2)
        self.growth = float(growth)
        self.min_alpha = float(min_alpha)
        self.max_alpha = float(max_alpha)
        self.max_iterations = int(max_iterations)

    def step(self, cursor: LineSearchCursor, monitor: TrainingMonitor) -> PointSample:
        start = cursor.step(0.0, monitor)
        f0, d0 = start.point.mean, start.derivative
        if not d0 < 0.0:
            monitor.log(f"ArmijoWolfe: non-descent direction (slope={d0})")
            return start.point

        mu, nu = 0.0, math.inf
        alpha = self.alpha
        last = start
        for _ in range(self.max_iterations):
            last = cursor.step(alpha, monitor)
            f, d = last.point.mean, last.derivative

            if not _finite(last) or f > f0 + self.c1 * alpha * d0:
                monitor.log(f"ArmijoWolfe: armijo fails at {alpha} ({f} vs {f0})")
                nu = alpha
            elif d < self.c2 * d0:
                monitor.log(f"ArmijoWolfe: still descending at {alpha} (slope={d})")
                mu = alpha
            elif d > -self.c2 * d0:
                monitor.log(f"ArmijoWolfe: overshoot at {alpha} (slope={d})")
                nu = alpha
            else:
                monitor.log(f"ArmijoWolfe: accepted {alpha} ({f0} -> {f})")
                self.alpha = alpha
                return last.point

            alpha = (mu + nu) / 2.0 if math.isfinite(nu) else alpha * self.growth
            if alpha < self.min_alpha or alpha > self.max_alpha or (math.isfinite(nu) and nu - mu <= self.min_alpha):
                break

        monitor.log(f"ArmijoWolfe: giving up with bracket [{mu}, {nu}]")
        if mu > 0.0:
            self.alpha = mu
            return cursor.step(mu, monitor).point
        self.alpha = max(self.min_alpha, alpha)
        return last.point


class QuadraticSearch(LineSearchStrategy):
    """
    Brackets a sign change of the line derivative, then refines with
    the secant method on f'(a) (exact on a quadratic f).
    """

    def __init__(
        self,
        alpha: float = 1.0,
        relative_tolerance: float = 0.1,
        min_alpha: float = 1e-20,
        max_alpha: float = 1e20,
        max_iterations: int = 30,
    ) -> None:
        if not alpha > 0.0:
            raise ValueError(f"Invalid alpha: {alpha}")
        if not 0.0 < relative_tolerance < 1.0:
            raise ValueError(f"Invalid relative_tolerance: {relative_tolerance}")
        self.alpha = float(alpha)
        self.relative_tolerance = float(relative_tolerance)
        self.min_alpha = float(min_alpha)
        self.max_alpha = float(max_alpha)
        self.max_iterations = int(max_iterations)

    def step(self, cursor: LineSearchCursor, monitor: TrainingMonitor) -> PointSample:
        start = cursor.step(0.0, monitor)
        f0, d0 = start.point.mean, start.derivative
        if not d0 < 0.0:
            monitor.log(f"Quadratic: non-descent direction (slope={d0})")
            return start.point

        lo, lo_point = 0.0, start
        hi = self.alpha
        hi_point = cursor.step(hi, monitor)
        iterations = 0

        # bracket: shrink on blow-ups, grow while still descending
        while iterations < self.max_iterations:
            iterations += 1
            if not _finite(hi_point) or hi_point.point.mean > f0:
                if hi_point.derivative > 0.0 and _finite(hi_point):
                    break
                hi /= 2.0
                if hi < self.min_alpha:
                    return start.point
                hi_point = cursor.step(hi, monitor)
            elif hi_point.derivative < 0.0:
                lo, lo_point = hi, hi_point
                hi *= 2.0
                if hi > self.max_alpha:
                    self.alpha = lo
                    return lo_point.point
                hi_point = cursor.step(hi, monitor)
            else:
                break

        best = lo_point if lo_point.point.mean <= hi_point.point.mean or not _finite(hi_point) else hi_point
        while iterations < self.max_iterations:
            iterations += 1
            d_lo, d_hi = lo_point.derivative, hi_point.derivative
            if not _finite(hi_point) or d_hi == d_lo:
                break
            x = lo - d_lo * (hi - lo) / (d_hi - d_lo)
            width = hi - lo
            # stay strictly inside the bracket
            x = min(max(x, lo + 0.05 * width), hi - 0.05 * width)
            p = cursor.step(x, monitor)
            if _finite(p) and p.point.mean < best.point.mean:
                best = p
            if _finite(p) and abs(p.derivative) <= self.relative_tolerance * abs(d0):
                monitor.log(f"Quadratic: converged at {x} (slope={p.derivative})")
                best = p if p.point.mean <= best.point.mean else best
                break
            if not _finite(p) or p.derivative > 0.0:
                hi, hi_point = x, p
            else:
                lo, lo_point = x, p
            if hi - lo <= self.min_alpha:
                break

        if best.point.rate > 0.0:
            self.alpha = best.point.rate
        return best.point


class StaticLearningRate(LineSearchStrategy):
    """
    Fixed step; halves the rate whenever the step does not improve.
    """

    def __init__(self, rate: float = 1e-3, minimum_rate: float = 1e-12) -> None:
        if not rate > 0.0:
            raise ValueError(f"Invalid rate: {rate}")
        if not 0.0 < minimum_rate <= rate:
            raise ValueError(f"Invalid minimum_rate: {minimum_rate}")
        self.rate = float(rate)
        self.minimum_rate = float(minimum_rate)

    def step(self, cursor: LineSearchCursor, monitor: TrainingMonitor) -> PointSample:
        start = cursor.step(0.0, monitor)
        while self.rate >= self.minimum_rate:
            p = cursor.step(self.rate, monitor)
            if math.isfinite(p.point.mean) and p.point.mean < start.point.mean:
                return p.point
            monitor.log(f"StaticLearningRate: no improvement at {self.rate}, halving")
            self.rate /= 2.0
        return start.point


class LineSearchKind(str, Enum):
    ARMIJO_WOLFE = "ArmijoWolfe"
    QUADRATIC = "Quadratic"
    STATIC = "Static"

    def build(self) -> LineSearchStrategy:
        if self is LineSearchKind.ARMIJO_WOLFE:
            return ArmijoWolfeSearch()
        if self is LineSearchKind.QUADRATIC:
            return QuadraticSearch()
        return StaticLearningRate()
