# iterative_trainer_test.py

from __future__ import annotations

import itertools
from datetime import timedelta

import numpy as np
import pytest

from ember import iterative_trainer
from ember.delta import Delta, DeltaSet, StateSet
from ember.ember_activation import EmberReLU
from ember.ember_linear import EmberLinear
from ember.ember_loss import EmberMeanSqLoss
from ember.ember_noise import EmberGaussianNoise
from ember.ember_sequential import EmberSequential
from ember.ember_tensor import EmberTensor
from ember.errors import IterativeStopError, NothingToOptimizeError
from ember.iterative_trainer import IterativeTrainer, TerminationCause
from ember.line_search import ArmijoWolfeSearch, LineSearchStrategy
from ember.line_search_cursor import FailsafeLineSearchCursor
from ember.monitor import HistoryMonitor, PrintingMonitor, RetryingMonitor
from ember.orientation import LBFGS, GradientDescent
from ember.trainable import ArrayTrainable, PointSample, Trainable


# --------------------------------------------------
# Helpers
# --------------------------------------------------

def make_regression_rows(n: int = 12, seed: int = 0):
    """
    y = 3 x0 - 2 x1 + 1 + noise, as [x, y] rows.
    """
    rng = np.random.default_rng(seed)
    rows = []
    for _ in range(n):
        x = rng.uniform(-1.0, 1.0, size=2)
        y = 3.0 * x[0] - 2.0 * x[1] + 1.0 + 0.05 * rng.standard_normal()
        rows.append([EmberTensor(x), EmberTensor([y])])
    return rows


def regression_trainable(layer=None, **kwargs) -> ArrayTrainable:
    if layer is None:
        layer = EmberLinear(2, 1, rng=np.random.default_rng(1))
    return ArrayTrainable(layer, EmberMeanSqLoss(), make_regression_rows(), **kwargs)


def quiet() -> PrintingMonitor:
    return PrintingMonitor(verbose=False)


class OvershootOnly(LineSearchStrategy):
    """Only ever tries a step far past the minimum."""

    def step(self, cursor, monitor) -> PointSample:
        return cursor.step(10.0, monitor).point


class LastPointCursor(FailsafeLineSearchCursor):
    """Ends on whatever the search measured last, better or not."""

    def _accumulate(self, point: PointSample) -> None:
        self.best = point


class CountingMonitor(PrintingMonitor):
    def __init__(self) -> None:
        super().__init__(verbose=False)
        self.failures = 0

    def on_step_fail(self, step) -> bool:
        self.failures += 1
        return super().on_step_fail(step)


class ScriptedTrainable(Trainable):
    """
    Quadratic in one weight, plus a per-call offset so the loss can be
    made to get worse (drift > 0) or go non-finite on demand.
    """

    def __init__(self, drift: float = 0.0, value: float | None = None, empty: bool = False) -> None:
        self.w = np.array([2.0])
        self.drift = drift
        self.value = value
        self.empty = empty
        self.calls = 0
        self.seeds = []
        self.layer = EmberReLU()

    def measure(self, monitor) -> PointSample:
        self.calls += 1
        if self.empty:
            deltas = DeltaSet()
        else:
            deltas = DeltaSet([Delta("w", self.w, self.w.copy())])
        mean = 0.5 * float(self.w[0] ** 2) + self.drift * self.calls
        if self.value is not None:
            mean = self.value
        return PointSample(deltas, StateSet.from_delta_set(deltas), mean, 1)

    def reseed(self, seed: int) -> None:
        self.seeds.append(seed)

    def get_layer(self):
        return self.layer


# --------------------------------------------------
# ArrayTrainable
# --------------------------------------------------

def test_array_trainable_measures_mean_loss_and_gradient() -> None:
    W = np.array([[1.0, 0.0]])
    rows = [
        [EmberTensor([1.0, 5.0]), EmberTensor([0.0])],
        [EmberTensor([2.0, 5.0]), EmberTensor([0.0])],
    ]
    trainable = ArrayTrainable(EmberLinear.from_weights(W), EmberMeanSqLoss(), rows)

    point = trainable.measure(quiet())

    # losses 1 and 4
    assert point.sum == pytest.approx(5.0)
    assert point.count == 2
    assert point.mean == pytest.approx(2.5)

    # d(mean)/dW = mean_n 2 (w.x_n) x_n = ([2, 10] + [8, 20]) / 2
    (delta,) = point.delta.values()
    assert np.allclose(delta.delta, [[5.0, 15.0]])


def test_array_trainable_masked_column_is_learnable() -> None:
    rows = [[EmberTensor([1.0]), EmberTensor([3.0])] for _ in range(3)]
    layer = EmberLinear.from_weights(np.eye(1)).freeze()
    trainable = ArrayTrainable(layer, EmberMeanSqLoss(), rows, mask=[True])

    point = trainable.measure(quiet())

    assert sorted(point.delta.keys()) == [("input", 0, 0), ("input", 0, 1), ("input", 0, 2)]
    # the delta targets are the row tensors themselves
    assert point.delta[("input", 0, 1)].target is rows[1][0].data


def test_array_trainable_reseed_draws_a_subset() -> None:
    trainable = regression_trainable(batch_size=4)
    trainable.reseed(123)
    assert trainable.measure(quiet()).count == 4

    full = regression_trainable()
    full.reseed(123)
    assert full.measure(quiet()).count == 12


# --------------------------------------------------
# Driver
# --------------------------------------------------

def test_training_reduces_loss_and_stops_at_max_iterations() -> None:
    trainable = regression_trainable()
    initial = trainable.measure(quiet()).mean

    trainer = IterativeTrainer(
        trainable,
        orientation=GradientDescent(),
        line_search_factory=lambda direction_type: ArmijoWolfeSearch(),
        monitor=quiet(),
        max_iterations=10,
    )
    result = trainer.run()

    assert result.termination_cause is TerminationCause.COMPLETED
    assert trainer.iteration_counter <= 10
    assert result.final_mean < initial


def test_lbfgs_training_converges_on_linear_regression() -> None:
    trainer = IterativeTrainer(
        regression_trainable(),
        orientation=LBFGS(),
        monitor=quiet(),
        max_iterations=50,
    )
    result = trainer.run()
    # noise floor is 0.05^2
    assert result.final_mean < 0.01


def test_committed_steps_never_get_worse() -> None:
    history = []
    trainer = IterativeTrainer(
        regression_trainable(),
        orientation=GradientDescent(),
        monitor=HistoryMonitor(history, quiet()),
        max_iterations=25,
        iterations_per_sample=5,
    )
    trainer.run()

    fitness = [record.fitness for record in history]
    assert fitness
    assert all(b <= a for a, b in zip(fitness, fitness[1:]))
    assert [record.iteration for record in history] == sorted(record.iteration for record in history)


def test_zero_timeout_reports_timeout() -> None:
    trainer = IterativeTrainer(regression_trainable(), monitor=quiet(), timeout=timedelta(0))
    result = trainer.run()

    assert result.termination_cause is TerminationCause.TIMEOUT
    assert trainer.iteration_counter == 0


def test_terminate_threshold_stops_immediately() -> None:
    trainer = IterativeTrainer(regression_trainable(), monitor=quiet(), terminate_threshold=1e6)
    result = trainer.run()

    assert result.termination_cause is TerminationCause.COMPLETED
    assert trainer.iteration_counter == 0


def test_overshooting_search_resets_instead_of_failing() -> None:
    subject = ScriptedTrainable()
    trainer = IterativeTrainer(
        subject,
        orientation=GradientDescent(),
        line_search_factory=lambda direction_type: OvershootOnly(),
        monitor=quiet(),
        max_iterations=3,
    )

    result = trainer.run()

    assert result.termination_cause is TerminationCause.COMPLETED
    assert result.final_mean == pytest.approx(2.0)
    assert trainer.iteration_counter == 3
    assert subject.w[0] == pytest.approx(2.0)


def test_equal_mean_continues_without_consulting_monitor() -> None:
    subject = ScriptedTrainable(value=3.0)
    monitor = CountingMonitor()
    trainer = IterativeTrainer(subject, orientation=GradientDescent(), monitor=monitor, max_iterations=5)

    result = trainer.run()

    assert result.termination_cause is TerminationCause.COMPLETED
    assert result.final_mean == 3.0
    assert trainer.iteration_counter == 5
    assert monitor.failures == 0


def test_worsening_step_fails_when_monitor_refuses(monkeypatch) -> None:
    monkeypatch.setattr(iterative_trainer, "FailsafeLineSearchCursor", LastPointCursor)
    subject = ScriptedTrainable(drift=10.0)
    trainer = IterativeTrainer(subject, orientation=GradientDescent(), monitor=quiet(), max_iterations=10)

    result = trainer.run()

    assert result.termination_cause is TerminationCause.FAILED
    assert trainer.iteration_counter == 1


def test_worsening_step_retries_within_budget(monkeypatch) -> None:
    monkeypatch.setattr(iterative_trainer, "FailsafeLineSearchCursor", LastPointCursor)
    subject = ScriptedTrainable(drift=10.0)
    monitor = RetryingMonitor(quiet(), max_retries=2)
    trainer = IterativeTrainer(subject, orientation=GradientDescent(), monitor=monitor, max_iterations=10)

    result = trainer.run()

    assert result.termination_cause is TerminationCause.FAILED
    assert monitor.retries == 2
    assert trainer.iteration_counter == 3


def test_non_finite_loss_stops_without_retry() -> None:
    subject = ScriptedTrainable(value=float("nan"))
    trainer = IterativeTrainer(subject, monitor=quiet())

    with pytest.raises(IterativeStopError):
        trainer.run()
    assert subject.calls == 1


def test_non_finite_retries_are_bounded() -> None:
    subject = ScriptedTrainable(value=float("inf"))
    monitor = RetryingMonitor(quiet(), max_retries=1000)
    trainer = IterativeTrainer(subject, monitor=monitor, max_retries=3)

    with pytest.raises(IterativeStopError) as info:
        trainer.run()
    assert info.value.value == float("inf")
    assert subject.calls == 4


def test_nothing_to_optimize() -> None:
    with pytest.raises(NothingToOptimizeError):
        IterativeTrainer(ScriptedTrainable(empty=True), monitor=quiet()).run()


def test_line_search_is_built_once_per_direction_type() -> None:
    built = []

    def factory(direction_type: str):
        built.append(direction_type)
        return ArmijoWolfeSearch()

    trainer = IterativeTrainer(
        regression_trainable(),
        orientation=LBFGS(min_history=2),
        line_search_factory=factory,
        monitor=quiet(),
        max_iterations=15,
    )
    trainer.run()

    assert sorted(built) == sorted(set(built))
    assert set(trainer.line_search_strategies) == set(built)
    assert "GD" in built


def test_noise_is_cleared_after_training() -> None:
    noise = EmberGaussianNoise(sigma=0.01)
    layer = EmberSequential(EmberLinear(2, 1, rng=np.random.default_rng(2)), noise)
    subject = regression_trainable(layer=layer)

    trainer = IterativeTrainer(subject, monitor=quiet(), max_iterations=3)
    trainer.run()

    assert noise.is_cleared


def test_seed_source_feeds_reseed() -> None:
    seeds = itertools.count(100)
    subject = ScriptedTrainable()
    trainer = IterativeTrainer(subject, monitor=quiet(), terminate_threshold=1e6, seed_source=lambda: next(seeds))
    trainer.run()

    assert subject.seeds == [100]


def test_invalid_trainer_arguments() -> None:
    with pytest.raises(ValueError):
        IterativeTrainer(regression_trainable(), iterations_per_sample=0)
    with pytest.raises(ValueError):
        IterativeTrainer(regression_trainable(), timeout=timedelta(seconds=-1))


if __name__ == "__main__":
    raise SystemExit(pytest.main([__file__]))
