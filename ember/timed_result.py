# ember/timed_result.py
from __future__ import annotations

import time
from dataclasses import dataclass
from typing import Callable, Generic, TypeVar

T = TypeVar("T")


@dataclass(frozen=True)
class TimedResult(Generic[T]):
    """
    A synchronous call's return value plus how long it took.
    Diagnostics only; nothing schedules on it.
    """

    result: T
    time_nanos: int

    @property
    def seconds(self) -> float:
        return self.time_nanos / 1e9

    @classmethod
    def time(cls, fn: Callable[[], T]) -> "TimedResult[T]":
        start = time.perf_counter_ns()
        result = fn()
        return cls(result, time.perf_counter_ns() - start)
