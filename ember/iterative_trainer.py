# ember/iterative_trainer.py
from __future__ import annotations

import math
import time
from dataclasses import dataclass
from datetime import timedelta
from enum import Enum
from typing import Callable, Dict, Optional, Tuple

from ember import defaults
from ember.errors import IterativeStopError, NothingToOptimizeError
from ember.line_search import ArmijoWolfeSearch, LineSearchStrategy
from ember.line_search_cursor import FailsafeLineSearchCursor
from ember.monitor import PrintingMonitor, SubMonitor, TrainingMonitor
from ember.orientation import LBFGS, OrientationStrategy
from ember.timed_result import TimedResult
from ember.trainable import PointSample, Step, Trainable


class TerminationCause(str, Enum):
    COMPLETED = "Completed"
    TIMEOUT = "Timeout"
    FAILED = "Failed"


@dataclass(frozen=True)
class TrainingResult:
    final_mean: float
    termination_cause: TerminationCause


# outcome of one inner step
_CONTINUE = 0
_RETRY = 1
_FAILED = 2


def _default_line_search(direction_type: str) -> LineSearchStrategy:
    return ArmijoWolfeSearch()


class IterativeTrainer:
    """
    Sample -> orient -> line search -> decide, until a bound is hit.

    Outer loop (re-samples and reshuffles stochastic state each pass):
        while now < deadline and mean > terminate_threshold
              and iteration_counter < max_iterations

    Inner loop (up to iterations_per_sample steps), per step:
        strictly better  -> commit, monitor.on_step_complete
        exactly equal    -> reset to the zero step, carry on
        worse            -> reset to the zero step, monitor.on_step_fail
                            decides: retry (re-sample) or stop as FAILED

    Line-search strategies are built lazily per direction type through
    line_search_factory and reused for the rest of the run.

    Non-finite losses from measure() go through monitor.on_step_fail as
    well, at most max_retries times in a row, after which an
    IterativeStopError is raised.
    """

    def __init__(
        self,
        subject: Trainable,
        orientation: Optional[OrientationStrategy] = None,
        line_search_factory: Optional[Callable[[str], LineSearchStrategy]] = None,
        monitor: Optional[TrainingMonitor] = None,
        timeout: timedelta = defaults.TIMEOUT,
        max_iterations: int = defaults.MAX_ITERATIONS,
        terminate_threshold: float = defaults.TERMINATE_THRESHOLD,
        iterations_per_sample: int = defaults.ITERATIONS_PER_SAMPLE,
        max_retries: int = defaults.MAX_RETRIES,
        seed_source: Callable[[], int] = time.perf_counter_ns,
    ) -> None:
        if timeout < timedelta(0):
            raise ValueError(f"Invalid timeout: {timeout}")
        if max_iterations < 0:
            raise ValueError(f"Invalid max_iterations: {max_iterations}")
        if iterations_per_sample < 1:
            raise ValueError(f"Invalid iterations_per_sample: {iterations_per_sample}")
        if max_retries < 0:
            raise ValueError(f"Invalid max_retries: {max_retries}")

        self.subject = subject
        self.orientation = orientation or LBFGS()
        self.line_search_factory = line_search_factory or _default_line_search
        self.monitor = monitor or PrintingMonitor()
        self.timeout = timeout
        self.max_iterations = int(max_iterations)
        self.terminate_threshold = float(terminate_threshold)
        self.iterations_per_sample = int(iterations_per_sample)
        self.max_retries = int(max_retries)
        self.seed_source = seed_source

        self.iteration_counter = 0
        self.line_search_strategies: Dict[str, LineSearchStrategy] = {}

    # --------------------------------------------------
    # Sampling
    # --------------------------------------------------
    def measure(self) -> PointSample:
        retries = 0
        while True:
            point = self.subject.measure(self.monitor)
            if len(point.delta) == 0:
                raise NothingToOptimizeError("Nothing to optimize")
            if math.isfinite(point.mean):
                return point

            if retries < self.max_retries and self.monitor.on_step_fail(Step(point, self.iteration_counter)):
                retries += 1
                self.monitor.log(f"Retrying iteration {self.iteration_counter} ({retries}/{self.max_retries})")
                continue

            self.monitor.log(f"Optimization terminated {self.iteration_counter}")
            raise IterativeStopError(point.mean)

    def shuffle(self) -> None:
        seed = int(self.seed_source())
        self.monitor.log(f"Reset training subject: {seed}")
        self.orientation.reset()
        self.subject.reseed(seed)
        self.subject.get_layer().shuffle(seed)

    def line_search(self, direction_type: str) -> LineSearchStrategy:
        strategy = self.line_search_strategies.get(direction_type)
        if strategy is None:
            self.monitor.log(f"Constructing line search parameters: {direction_type}")
            strategy = self.line_search_factory(direction_type)
            self.line_search_strategies[direction_type] = strategy
        return strategy

    # --------------------------------------------------
    # Main loop
    # --------------------------------------------------
    def run(self) -> TrainingResult:
        start = time.monotonic()
        deadline = start + self.timeout.total_seconds()
        cause = TerminationCause.COMPLETED
        current: Optional[PointSample] = None

        self.shuffle()
        current = self.measure()
        try:
            while (
                time.monotonic() < deadline
                and current.mean > self.terminate_threshold
                and self.iteration_counter < self.max_iterations
            ):
                self.shuffle()
                current = self.measure()
                outcome = _CONTINUE
                for _ in range(self.iterations_per_sample):
                    if time.monotonic() >= deadline:
                        cause = TerminationCause.TIMEOUT
                        break
                    if self.iteration_counter >= self.max_iterations:
                        cause = TerminationCause.COMPLETED
                        break
                    self.iteration_counter += 1
                    outcome, current = self._run_step(self.iteration_counter)
                    if outcome != _CONTINUE or current.mean <= self.terminate_threshold:
                        break
                if outcome == _FAILED:
                    cause = TerminationCause.FAILED
                    break
                if cause is TerminationCause.TIMEOUT:
                    break

            if (
                cause is TerminationCause.COMPLETED
                and current.mean > self.terminate_threshold
                and self.iteration_counter < self.max_iterations
                and time.monotonic() >= deadline
            ):
                cause = TerminationCause.TIMEOUT

            self.subject.get_layer().clear_noise()
            return TrainingResult(current.mean, cause)
        finally:
            self.monitor.log(
                f"Final threshold in iteration {self.iteration_counter}: "
                f"{current.mean if current is not None else None} (> {self.terminate_threshold}) "
                f"after {time.monotonic() - start:.3f}s (< {self.timeout.total_seconds():.3f}s)"
            )

    def _run_step(self, iteration: int) -> Tuple[int, PointSample]:
        previous = self.measure()
        monitor = SubMonitor(self.monitor, f"[{iteration}] ")

        timed_orientation = TimedResult.time(lambda: self.orientation.orient(self.subject, previous, monitor))
        direction = timed_orientation.result
        strategy = self.line_search(direction.direction_type)

        def search() -> PointSample:
            cursor = FailsafeLineSearchCursor(direction, previous, monitor)
            strategy.step(cursor, monitor)
            return cursor.get_best()

        timed_search = TimedResult.time(search)
        current = timed_search.result
        perf = f"Orientation: {timed_orientation.seconds:.4f}; Line Search: {timed_search.seconds:.4f}"
        monitor.log(f"Fitness changed from {previous.mean} to {current.mean}")

        if current.mean < previous.mean:
            monitor.log(f"Iteration {iteration} complete. Error: {current.mean} {perf}")
            monitor.on_step_complete(Step(current, iteration))
            return _CONTINUE, current

        static = current.mean == previous.mean
        current = direction.step(0.0, monitor).point
        if static:
            monitor.log(f"Static Iteration {perf}")
            return _CONTINUE, current

        monitor.log(f"Resetting Iteration {perf}")
        monitor.log(f"Iteration {iteration} failed. Error: {current.mean}")
        monitor.log(f"Previous Error: {previous.rate} -> {previous.mean}")
        if monitor.on_step_fail(Step(current, iteration)):
            monitor.log(f"Retrying iteration {iteration}")
            return _RETRY, current
        monitor.log(f"Optimization terminated {iteration}")
        return _FAILED, current
