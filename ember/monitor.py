# ember/monitor.py
from __future__ import annotations

from abc import ABC, abstractmethod
from typing import List, Optional

from ember.trainable import Step, StepRecord


class TrainingMonitor(ABC):
    """
    Observer for the optimizer.

    on_step_fail() is also the retry gate: returning True lets the
    optimizer try again, False stops the run.
    """

    @abstractmethod
    def log(self, message: str) -> None:
        ...

    @abstractmethod
    def on_step_complete(self, step: Step) -> None:
        ...

    @abstractmethod
    def on_step_fail(self, step: Step) -> bool:
        ...

    @abstractmethod
    def clear(self) -> None:
        ...


class PrintingMonitor(TrainingMonitor):
    def __init__(self, tag: str = "IterativeTrainer", verbose: bool = True) -> None:
        self.tag = tag
        self.verbose = verbose

    def log(self, message: str) -> None:
        if self.verbose:
            print(f"[{self.tag}] {message}")

    def on_step_complete(self, step: Step) -> None:
        pass

    def on_step_fail(self, step: Step) -> bool:
        return False

    def clear(self) -> None:
        pass


class HistoryMonitor(TrainingMonitor):
    """
    Appends a StepRecord per completed step, delegates everything else.
    """

    def __init__(self, history: Optional[List[StepRecord]] = None, delegate: Optional[TrainingMonitor] = None) -> None:
        self.history: List[StepRecord] = history if history is not None else []
        self.delegate = delegate or PrintingMonitor(verbose=False)

    def log(self, message: str) -> None:
        self.delegate.log(message)

    def on_step_complete(self, step: Step) -> None:
        self.history.append(StepRecord(fitness=step.point.mean, time=step.time, iteration=step.iteration))
        self.delegate.on_step_complete(step)

    def on_step_fail(self, step: Step) -> bool:
        return self.delegate.on_step_fail(step)

    def clear(self) -> None:
        self.delegate.clear()


class RetryingMonitor(TrainingMonitor):
    """
    Permits up to max_retries failures, then refuses.
    clear() resets the count.
    """

    def __init__(self, inner: Optional[TrainingMonitor] = None, max_retries: int = 3) -> None:
        if max_retries < 0:
            raise ValueError(f"Invalid max_retries: {max_retries}")
        self.inner = inner or PrintingMonitor()
        self.max_retries = int(max_retries)
        self.retries = 0

    def log(self, message: str) -> None:
        self.inner.log(message)

    def on_step_complete(self, step: Step) -> None:
        self.inner.on_step_complete(step)

    def on_step_fail(self, step: Step) -> bool:
        # the inner monitor still sees every failure
        self.inner.on_step_fail(step)
        if self.retries >= self.max_retries:
            return False
        self.retries += 1
        return True

    def clear(self) -> None:
        self.retries = 0
        self.inner.clear()


class SubMonitor(TrainingMonitor):
    """
    Per-iteration wrapper: prefixes log lines, forwards the rest.
    """

    def __init__(self, parent: TrainingMonitor, prefix: str) -> None:
        self.parent = parent
        self.prefix = prefix

    def log(self, message: str) -> None:
        self.parent.log(f"{self.prefix}{message}")

    def on_step_complete(self, step: Step) -> None:
        self.parent.on_step_complete(step)

    def on_step_fail(self, step: Step) -> bool:
        return self.parent.on_step_fail(step)

    def clear(self) -> None:
        self.parent.clear()
