# ember/line_search_cursor.py
from __future__ import annotations

import math
from abc import ABC, abstractmethod
from dataclasses import dataclass

from ember.delta import DeltaSet
from ember.monitor import TrainingMonitor
from ember.trainable import PointSample, Trainable


@dataclass(frozen=True)
class LineSearchPoint:
    """
    point:      the sample measured at some alpha
    derivative: d(mean loss)/d(alpha) there, i.e. gradient . direction
    """

    point: PointSample
    derivative: float


class LineSearchCursor(ABC):
    """
    A 1-D view of the loss along a search direction.
    step(alpha) moves the live weights to origin + alpha * direction.
    """

    @property
    @abstractmethod
    def direction_type(self) -> str:
        ...

    @abstractmethod
    def step(self, alpha: float, monitor: TrainingMonitor) -> LineSearchPoint:
        ...

    @abstractmethod
    def reset(self) -> None:
        ...


class SimpleLineSearchCursor(LineSearchCursor):
    def __init__(self, subject: Trainable, origin: PointSample, direction: DeltaSet, direction_type: str) -> None:
        self.subject = subject
        self.origin = origin
        self.direction = direction
        self._direction_type = direction_type

    @property
    def direction_type(self) -> str:
        return self._direction_type

    def step(self, alpha: float, monitor: TrainingMonitor) -> LineSearchPoint:
        self.reset()
        if alpha != 0.0:
            self.direction.accumulate(alpha)
        point = self.subject.measure(monitor).with_rate(alpha)
        return LineSearchPoint(point, point.delta.dot(self.direction))

    def reset(self) -> None:
        self.origin.restore()


class FailsafeLineSearchCursor(LineSearchCursor):
    """
    Wraps a cursor and remembers the best (lowest mean) point seen,
    starting from the point the search began at.

    get_best() writes the best point's weights back, so a search never
    ends worse than where it started.
    """

    def __init__(self, direction: LineSearchCursor, previous: PointSample, monitor: TrainingMonitor) -> None:
        self.direction = direction
        self.monitor = monitor
        self.previous = previous
        self.best = previous

    @property
    def direction_type(self) -> str:
        return self.direction.direction_type

    def step(self, alpha: float, monitor: TrainingMonitor) -> LineSearchPoint:
        result = self.direction.step(alpha, monitor)
        self._accumulate(result.point)
        return result

    def _accumulate(self, point: PointSample) -> None:
        if math.isfinite(point.mean) and point.mean < self.best.mean:
            self.monitor.log(f"New best point {point.mean} at rate {point.rate}")
            self.best = point

    def reset(self) -> None:
        self.direction.reset()

    def get_best(self) -> PointSample:
        return self.best.restore()
