# ember/trainable.py
from __future__ import annotations

import math
import time
from abc import ABC, abstractmethod
from dataclasses import dataclass, field, replace
from typing import TYPE_CHECKING, List, Optional, Sequence

import numpy as np

from ember.delta import DeltaSet, StateSet
from ember.ember_layer import EmberLayer
from ember.ember_result import EmberResult
from ember.ember_tensor import EmberTensor
from ember.ember_tensor_list import EmberTensorList
from ember.errors import ShapeMismatchError

if TYPE_CHECKING:
    from ember.monitor import TrainingMonitor


@dataclass(frozen=True)
class PointSample:
    """
    One sampled (loss, gradient) point.

        delta:   gradient of the MEAN loss, keyed by target slot
        weights: snapshot of every target at the time of sampling
        sum:     total loss over the sampled items
        count:   number of sampled items
        rate:    step length that produced this point (0 at an origin)

    Never mutated: transitions build a new PointSample.
    """

    delta: DeltaSet
    weights: StateSet
    sum: float
    count: int
    rate: float = 0.0

    @property
    def mean(self) -> float:
        if self.count <= 0:
            return math.nan
        return self.sum / self.count

    def with_rate(self, rate: float) -> "PointSample":
        return replace(self, rate=float(rate))

    def restore(self) -> "PointSample":
        """
        Write this point's weights back into the live targets.
        """
        self.weights.restore()
        return self


@dataclass(frozen=True)
class Step:
    """
    Handed to the monitor on completion or failure, then discarded.
    """

    point: PointSample
    iteration: int
    time: float = field(default_factory=time.time)


@dataclass(frozen=True)
class StepRecord:
    fitness: float
    time: float
    iteration: int


class Trainable(ABC):
    """
    Something that can be measured at its current parameters.
    """

    @abstractmethod
    def measure(self, monitor: "TrainingMonitor") -> PointSample:
        ...

    @abstractmethod
    def reseed(self, seed: int) -> None:
        ...

    @abstractmethod
    def get_layer(self) -> EmberLayer:
        ...


class ArrayTrainable(Trainable):
    """
    A layer + loss over an in-memory table.

    Each row is [input_0, ..., input_k, target]. The layer sees the input
    columns, the loss sees (layer output, target column).

    mask[c] == True makes column c learnable: its tensors are exposed as
    delta targets keyed ("input", c, row), so the optimizer moves the data
    itself (input learning).

    batch_size < len(data) samples a row subset, redrawn on reseed().
    """

    def __init__(
        self,
        layer: EmberLayer,
        loss_layer: EmberLayer,
        data: Sequence[Sequence[EmberTensor]],
        mask: Optional[Sequence[bool]] = None,
        batch_size: Optional[int] = None,
    ) -> None:
        if not data:
            raise ValueError("ArrayTrainable: data is empty")
        width = len(data[0])
        if width < 2:
            raise ValueError("ArrayTrainable: each row needs at least one input and a target")
        for r, row in enumerate(data):
            if len(row) != width:
                raise ShapeMismatchError(f"ArrayTrainable: row {r} has {len(row)} columns, expected {width}")

        self.layer = layer
        self.loss_layer = loss_layer
        self.data: List[List[EmberTensor]] = [list(row) for row in data]
        self.mask: List[bool] = list(mask) if mask is not None else [False] * width
        if len(self.mask) > width:
            raise ValueError(f"ArrayTrainable: mask has {len(self.mask)} entries for {width} columns")
        self.mask += [False] * (width - len(self.mask))

        if batch_size is not None and batch_size < 1:
            raise ValueError(f"Invalid batch_size: {batch_size}")
        self.batch_size = batch_size
        self._rows: List[int] = list(range(len(self.data)))

    def get_layer(self) -> EmberLayer:
        return self.layer

    def reseed(self, seed: int) -> None:
        if self.batch_size is None or self.batch_size >= len(self.data):
            self._rows = list(range(len(self.data)))
            return
        rng = np.random.default_rng(seed)
        self._rows = sorted(rng.choice(len(self.data), size=self.batch_size, replace=False).tolist())

    def _column(self, column: int) -> EmberResult:
        # Hand over the row tensors themselves (no copy) so learnable
        # columns point at the live buffers.
        tensors = [self.data[r][column] for r in self._rows]
        items = EmberTensorList(tensors)
        if not self.mask[column]:
            return EmberResult.constant(items)

        rows = list(self._rows)

        def accumulate(buffer: DeltaSet, gradient: EmberTensorList) -> None:
            for row, tensor, grad in zip(rows, tensors, gradient):
                buffer.get(("input", column, row), tensor.data).add_in_place(grad.data)

        return EmberResult(items, accumulate, alive=True)

    def measure(self, monitor: "TrainingMonitor") -> PointSample:
        width = len(self.data[0])
        columns = [self._column(c) for c in range(width)]

        prediction = self.layer.eval(*columns[:-1])
        loss = self.loss_layer.eval(prediction, columns[-1])

        count = len(loss.data)
        per_item = loss.data.as_array().reshape(count, -1).sum(axis=1)
        total = float(per_item.sum())

        # gradient of the mean: dL/d(loss[n]) = 1 / count
        buffer = DeltaSet()
        gradient = EmberTensorList.from_array(np.full(loss.data.as_array().shape, 1.0 / count))
        loss.accumulate(buffer, gradient)

        return PointSample(
            delta=buffer,
            weights=StateSet.from_delta_set(buffer),
            sum=total,
            count=count,
        )
