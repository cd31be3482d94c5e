# runner_training.py
from __future__ import annotations

from datetime import timedelta

import numpy as np

from ember.ember_activation import EmberSigmoid
from ember.ember_linear import EmberLinear
from ember.ember_loss import EmberMeanSqLoss
from ember.ember_sequential import EmberSequential
from ember.ember_tensor import EmberTensor
from ember.iterative_trainer import IterativeTrainer
from ember.line_search import LineSearchKind
from ember.monitor import HistoryMonitor, PrintingMonitor
from ember.orientation import OrientationKind
from ember.trainable import ArrayTrainable


# ------------------------------------------------------
# Toy regression: y = sin(x0) + 0.5 * x1
# ------------------------------------------------------
def make_rows(n: int, seed: int = 0):
    rng = np.random.default_rng(seed)
    rows = []
    for _ in range(n):
        x = rng.uniform(-2.0, 2.0, size=2)
        y = np.sin(x[0]) + 0.5 * x[1]
        rows.append([EmberTensor(x), EmberTensor([y])])
    return rows


def runner_training(
    orientation: str = "LBFGS",
    line_search: str = "ArmijoWolfe",
    max_iterations: int = 200,
    batch_size: int | None = None,
) -> None:
    rng = np.random.default_rng(3)
    model = EmberSequential(
        EmberLinear(2, 8, rng=rng),
        EmberSigmoid(),
        EmberLinear(8, 1, rng=rng),
    )
    trainable = ArrayTrainable(model, EmberMeanSqLoss(), make_rows(64), batch_size=batch_size)

    history = []
    trainer = IterativeTrainer(
        trainable,
        orientation=OrientationKind(orientation).build(),
        line_search_factory=lambda direction_type: LineSearchKind(line_search).build(),
        monitor=HistoryMonitor(history, PrintingMonitor("runner_training")),
        timeout=timedelta(minutes=1),
        max_iterations=max_iterations,
        iterations_per_sample=20,
    )
    result = trainer.run()

    print(f"Termination: {result.termination_cause.value}")
    print(f"Final mean:  {result.final_mean:.6e}")
    print(f"Steps kept:  {len(history)}")

    test_rows = make_rows(16, seed=1)
    worst = 0.0
    for x, y in test_rows:
        prediction = model.eval_tensors(x).data[0].data
        worst = max(worst, float(np.abs(prediction - y.data).max()))
    print(f"Worst held-out error: {worst:.4f}")


if __name__ == "__main__":
    runner_training()
