# ember/training_tester.py
from __future__ import annotations

from dataclasses import dataclass, field
from enum import Enum
from typing import Callable, Dict, List, Optional, Sequence

import numpy as np

from ember import defaults
from ember.ember_layer import EmberLayer
from ember.ember_loss import EmberMeanSqLoss
from ember.ember_tensor import EmberTensor
from ember.ember_tensor_list import EmberTensorList
from ember.iterative_trainer import IterativeTrainer
from ember.line_search import ArmijoWolfeSearch, LineSearchStrategy, QuadraticSearch
from ember.monitor import HistoryMonitor, PrintingMonitor
from ember.orientation import LBFGS, GradientDescent, OrientationStrategy
from ember.trainable import ArrayTrainable, StepRecord


TAG = "[TrainingTester]"


class RandomizationMode(str, Enum):
    """
    How a buffer is scrambled before training.
    """

    PERMUTE = "Permute"
    PERMUTE_DUPLICATES = "PermuteDuplicates"
    RANDOM = "Random"

    def shuffle(self, rng: np.random.Generator, buffer: np.ndarray) -> None:
        flat = buffer.reshape(-1)
        n = flat.size
        if self is RandomizationMode.RANDOM:
            flat[:] = 2.0 * (rng.random(n) - 0.5)
            return
        for i in range(n):
            j = int(rng.integers(n))
            flat[i], flat[j] = flat[j], flat[i]
        if self is RandomizationMode.PERMUTE_DUPLICATES:
            for i in range(n):
                flat[i] = flat[int(rng.integers(n))]


class ResultType(str, Enum):
    CONVERGED = "Converged"
    NON_CONVERGED = "NonConverged"


@dataclass
class RunResult:
    type: ResultType
    value: float


@dataclass
class ProblemResult:
    """
    One training problem (input / model / complete learning), keyed by
    optimizer configuration name ("GD", "CjGD", "LBFGS").
    """

    runs: Dict[str, RunResult] = field(default_factory=dict)
    histories: Dict[str, List[StepRecord]] = field(default_factory=dict)

    def all_converged(self) -> bool:
        return all(r.type is ResultType.CONVERGED for r in self.runs.values())


@dataclass
class ComponentResult:
    input: Optional[ProblemResult]
    model: Optional[ProblemResult]
    complete: Optional[ProblemResult]

    def problems(self) -> List[ProblemResult]:
        return [p for p in (self.input, self.model, self.complete) if p is not None]


def _is_zero(arrays: Sequence[np.ndarray], tol: float = 1e-14) -> bool:
    values = [a.reshape(-1) for a in arrays]
    if not values or sum(v.size for v in values) == 0:
        return False
    return float(sum(np.abs(v).sum() for v in values)) < tol


class TrainingTester:
    """
    Training characteristics of a layer.

    Three problems, each only when it makes sense:
      - input learning:    frozen, randomized copy; recover the inputs
                           that produced its outputs
      - model learning:    recover a randomized copy's weights from its
                           input/output pairs
      - complete learning: both at once

    Each problem is solved three ways (GD + Armijo-Wolfe, GD + quadratic
    search as "CjGD", L-BFGS + Armijo-Wolfe). A run "converges" when the
    minimum recorded fitness is below CONVERGENCE_THRESHOLD.
    """

    def __init__(
        self,
        batches: int = defaults.TRAINING_BATCHES,
        randomization_mode: RandomizationMode = RandomizationMode.PERMUTE,
        verbose: bool = True,
        throw_exceptions: bool = False,
        loss_factory: Callable[[], EmberLayer] = EmberMeanSqLoss,
        timeout=defaults.TRAINING_TIMEOUT,
        max_iterations: int = defaults.TRAINING_MAX_ITERATIONS,
        seed: Optional[int] = None,
    ) -> None:
        if batches < 1:
            raise ValueError(f"Invalid batches: {batches}")
        if max_iterations < 1:
            raise ValueError(f"Invalid max_iterations: {max_iterations}")
        self.batches = int(batches)
        self.randomization_mode = RandomizationMode(randomization_mode)
        self.verbose = verbose
        self.throw_exceptions = throw_exceptions
        self.loss_factory = loss_factory
        self.timeout = timeout
        self.max_iterations = int(max_iterations)
        self._rng = np.random.default_rng(seed)

    # ------------------------------------------------------
    # Entry point
    # ------------------------------------------------------
    def test(self, component: EmberLayer, *input_prototype: EmberTensor) -> ComponentResult:
        component.assert_alive()
        print(f"{TAG} Training Characteristics: {component.name}")

        test_model = len(component.state()) > 0
        if test_model and _is_zero(component.state()):
            raise AssertionError("Weights are all zero?")
        if _is_zero([t.data for t in input_prototype]):
            raise AssertionError("Inputs are all zero?")
        test_input = any(len(t) > 0 for t in input_prototype)

        input_learning = self.test_input_learning(component, *input_prototype) if test_input else None
        model_learning = self.test_model_learning(component, *input_prototype) if test_model else None
        complete_learning = (
            self.test_complete_learning(component, *input_prototype) if test_input and test_model else None
        )

        result = ComponentResult(input_learning, model_learning, complete_learning)
        for name, problem in (("Input", input_learning), ("Model", model_learning), ("Complete", complete_learning)):
            if problem is not None:
                print(f"{TAG} {name}: " + ", ".join(f"{k}={v.type.value} ({v.value:.3e})" for k, v in problem.runs.items()))

        if self.throw_exceptions:
            for problem in result.problems():
                if not problem.all_converged():
                    raise AssertionError(f"Training did not converge: {problem.runs}")
        return result

    # ------------------------------------------------------
    # Problems
    # ------------------------------------------------------
    def test_input_learning(self, component: EmberLayer, *input_prototype: EmberTensor) -> Optional[ProblemResult]:
        network = self._shuffle(component.copy())
        network.freeze()

        input_target = self._shuffle_copy(input_prototype)
        output_target = self._target_outputs(network, input_target)
        if output_target is None:
            return None

        training = self._append(self._shuffle_copy(input_prototype), output_target)
        return self.train_all("Input Convergence", training, network, self._build_mask(len(input_prototype)))

    def test_model_learning(self, component: EmberLayer, *input_prototype: EmberTensor) -> Optional[ProblemResult]:
        network_target = self._shuffle(component.copy())
        network_target.freeze()

        input_target = self._shuffle_copy(input_prototype)
        output_target = self._target_outputs(network_target, input_target)
        if output_target is None:
            return None

        training = self._append(input_target, output_target)
        return self.train_all("Model Convergence", training, self._shuffle(component.copy()))

    def test_complete_learning(self, component: EmberLayer, *input_prototype: EmberTensor) -> Optional[ProblemResult]:
        network_target = self._shuffle(component.copy())
        network_target.freeze()

        input_target = self._shuffle_copy(input_prototype)
        output_target = self._target_outputs(network_target, input_target)
        if output_target is None:
            return None

        training = self._append(self._shuffle_copy(input_prototype), output_target)
        return self.train_all(
            "Integrated Convergence",
            training,
            self._shuffle(component.copy()),
            self._build_mask(len(input_prototype)),
        )

    # ------------------------------------------------------
    # Runs
    # ------------------------------------------------------
    def train_all(
        self,
        title: str,
        training: List[List[EmberTensor]],
        layer: EmberLayer,
        mask: Optional[List[bool]] = None,
    ) -> ProblemResult:
        print(f"{TAG} {title}")
        runs = {
            "GD": (GradientDescent, ArmijoWolfeSearch),
            "CjGD": (GradientDescent, QuadraticSearch),
            "LBFGS": (LBFGS, ArmijoWolfeSearch),
        }
        result = ProblemResult()
        for name, (orientation, line_search) in runs.items():
            history = self._train(name, self._copy_rows(training), layer.copy(), mask, orientation(), line_search)
            result.histories[name] = history
            result.runs[name] = self._result(self._min(history))
        return result

    def _train(
        self,
        name: str,
        training: List[List[EmberTensor]],
        layer: EmberLayer,
        mask: Optional[List[bool]],
        orientation: OrientationStrategy,
        line_search: Callable[[], LineSearchStrategy],
    ) -> List[StepRecord]:
        history: List[StepRecord] = []
        trainable = ArrayTrainable(layer, self.loss_factory(), training, mask=mask)
        trainer = IterativeTrainer(
            trainable,
            orientation=orientation,
            line_search_factory=lambda direction_type: line_search(),
            monitor=HistoryMonitor(history, PrintingMonitor(f"TrainingTester:{name}", verbose=self.verbose)),
            timeout=self.timeout,
            max_iterations=self.max_iterations,
            terminate_threshold=0.0,
        )
        try:
            trainer.run()
        except Exception as e:
            if self.throw_exceptions:
                raise
            print(f"{TAG} {name} failed: {e!r}")
        return history

    @staticmethod
    def _min(history: List[StepRecord]) -> float:
        if not history:
            return float("nan")
        return min(r.fitness for r in history)

    @staticmethod
    def _result(minimum: float) -> RunResult:
        converged = abs(minimum) < defaults.CONVERGENCE_THRESHOLD
        return RunResult(ResultType.CONVERGED if converged else ResultType.NON_CONVERGED, minimum)

    # ------------------------------------------------------
    # Data helpers
    # ------------------------------------------------------
    def _target_outputs(self, network: EmberLayer, rows: List[List[EmberTensor]]) -> Optional[List[EmberTensor]]:
        columns = [EmberTensorList([row[c] for row in rows]) for c in range(len(rows[0]))]
        output = network.eval_lists(*columns).data
        if len(output) != len(rows):
            print(f"{TAG} Batch layers not supported. {len(output)} != {len(rows)}")
            return None
        return [t.copy() for t in output]

    def _shuffle(self, layer: EmberLayer) -> EmberLayer:
        for buffer in layer.state():
            self.randomization_mode.shuffle(self._rng, buffer)
        return layer

    def _shuffle_copy(self, prototype: Sequence[EmberTensor]) -> List[List[EmberTensor]]:
        rows = []
        for _ in range(self.batches):
            row = []
            for t in prototype:
                copy = t.copy()
                self.randomization_mode.shuffle(self._rng, copy.data)
                row.append(copy)
            rows.append(row)
        return rows

    @staticmethod
    def _append(rows: List[List[EmberTensor]], column: List[EmberTensor]) -> List[List[EmberTensor]]:
        if len(rows) != len(column):
            raise ValueError(f"{len(rows)} != {len(column)}")
        return [row + [extra] for row, extra in zip(rows, column)]

    @staticmethod
    def _copy_rows(rows: List[List[EmberTensor]]) -> List[List[EmberTensor]]:
        return [[t.copy() for t in row] for row in rows]

    @staticmethod
    def _build_mask(length: int) -> List[bool]:
        return [True] * length + [False]

    def __repr__(self) -> str:
        return (
            f"TrainingTester(batches={self.batches}, randomization_mode={self.randomization_mode.value}, "
            f"verbose={self.verbose}, throw_exceptions={self.throw_exceptions})"
        )
