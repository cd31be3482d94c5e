# ember/orientation.py
from __future__ import annotations

import math
from abc import ABC, abstractmethod
from enum import Enum
from typing import Hashable, List, Sequence

import numpy as np

from ember.line_search_cursor import LineSearchCursor, SimpleLineSearchCursor
from ember.monitor import TrainingMonitor
from ember.trainable import PointSample, Trainable


class OrientationStrategy(ABC):
    """
    Turns a measured point into a search direction (wrapped in a cursor).

    Deterministic given the same point and the same retained history;
    reset() forgets the history.
    """

    @abstractmethod
    def orient(self, subject: Trainable, measurement: PointSample, monitor: TrainingMonitor) -> LineSearchCursor:
        ...

    @abstractmethod
    def reset(self) -> None:
        ...


class GradientDescent(OrientationStrategy):
    TYPE = "GD"

    def orient(self, subject: Trainable, measurement: PointSample, monitor: TrainingMonitor) -> LineSearchCursor:
        direction = measurement.delta.scale(-1.0)
        magnitude = direction.magnitude()
        if magnitude == 0.0:
            monitor.log("Zero gradient")
        return SimpleLineSearchCursor(subject, measurement, direction, self.TYPE)

    def reset(self) -> None:
        pass


class LBFGS(OrientationStrategy):
    """
    Limited-memory BFGS.

    Keeps the last max_history points. Curvature pairs:
        s_k = w_{k+1} - w_k
        y_k = g_{k+1} - g_k
    pairs with s.y <= 0 are dropped (they would break positive
    definiteness). Below min_history usable pairs, or when the two-loop
    result is not a finite descent direction, falls back to plain
    gradient descent.
    """

    TYPE = "LBFGS"

    def __init__(self, min_history: int = 3, max_history: int = 30) -> None:
        if min_history < 1:
            raise ValueError(f"Invalid min_history: {min_history}")
        if max_history < min_history:
            raise ValueError(f"Invalid max_history: {max_history} (min_history={min_history})")
        self.min_history = int(min_history)
        self.max_history = int(max_history)
        self.history: List[PointSample] = []
        self._fallback = GradientDescent()

    def reset(self) -> None:
        self.history.clear()

    def _add_to_history(self, measurement: PointSample, monitor: TrainingMonitor) -> None:
        if not math.isfinite(measurement.mean):
            return
        if self.history and self.history[-1].mean == measurement.mean:
            return
        if self.history and set(self.history[-1].delta.keys()) != set(measurement.delta.keys()):
            monitor.log("LBFGS: parameter set changed, history cleared")
            self.history.clear()
        self.history.append(measurement)
        while len(self.history) > self.max_history:
            self.history.pop(0)

    def _curvature_pairs(self, keys: Sequence[Hashable]):
        pairs = []
        for older, newer in zip(self.history[:-1], self.history[1:]):
            s = newer.weights.vector(keys) - older.weights.vector(keys)
            y = newer.delta.vector(keys) - older.delta.vector(keys)
            sy = float(np.dot(s, y))
            if sy > 0.0 and math.isfinite(sy):
                pairs.append((s, y, 1.0 / sy))
        return pairs

    def orient(self, subject: Trainable, measurement: PointSample, monitor: TrainingMonitor) -> LineSearchCursor:
        self._add_to_history(measurement, monitor)
        keys = measurement.delta.keys()
        pairs = self._curvature_pairs(keys)
        if len(pairs) < self.min_history:
            return self._fallback.orient(subject, measurement, monitor)

        gradient = measurement.delta.vector(keys)

        # two-loop recursion
        q = gradient.copy()
        alphas = []
        for s, y, rho in reversed(pairs):
            a = rho * float(np.dot(s, q))
            alphas.append(a)
            q -= a * y
        s, y, _ = pairs[-1]
        gamma = float(np.dot(s, y)) / float(np.dot(y, y))
        r = gamma * q
        for (s, y, rho), a in zip(pairs, reversed(alphas)):
            b = rho * float(np.dot(y, r))
            r += s * (a - b)

        direction = -r
        slope = float(np.dot(direction, gradient))
        if not np.all(np.isfinite(direction)) or not slope < 0.0:
            monitor.log(f"LBFGS: not a descent direction (slope={slope}), falling back to GD")
            return self._fallback.orient(subject, measurement, monitor)

        monitor.log(f"LBFGS: {len(pairs)} curvature pairs, slope={slope}")
        return SimpleLineSearchCursor(subject, measurement, measurement.delta.with_vector(keys, direction), self.TYPE)


class OrientationKind(str, Enum):
    GD = "GD"
    LBFGS = "LBFGS"

    def build(self) -> OrientationStrategy:
        if self is OrientationKind.GD:
            return GradientDescent()
        return LBFGS()

