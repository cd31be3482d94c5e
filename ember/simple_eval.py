# ember/simple_eval.py
from __future__ import annotations

from dataclasses import dataclass
from typing import List

import numpy as np

from ember.delta import DeltaSet
from ember.ember_layer import EmberLayer
from ember.ember_result import EmberResult
from ember.ember_tensor import EmberTensor
from ember.ember_tensor_list import EmberTensorList


@dataclass
class SimpleResult:
    """
    output:           forward value
    input_derivative: dL/d(input) per input, under an all-ones dL/d(output)
    layer_derivative: the DeltaSet the layer's own state received
    """

    output: EmberTensorList
    input_derivative: List[EmberTensorList]
    layer_derivative: DeltaSet


def simple_eval_lists(layer: EmberLayer, *lists: EmberTensorList) -> SimpleResult:
    """
    Forward + backward over whole batches.

    Each input is wrapped in a Result whose accumulator adds the incoming
    gradient into a zero-initialized buffer for that input.
    """
    derivatives = [np.zeros((len(lst), *lst.dimensions), dtype=np.float64) for lst in lists]

    def recorder(index: int):
        def accumulate(buffer: DeltaSet, gradient: EmberTensorList) -> None:
            derivatives[index] += gradient.as_array()
        return accumulate

    inputs = [EmberResult(lst.copy(), recorder(i), alive=True) for i, lst in enumerate(lists)]
    result = layer.eval(*inputs)
    output = result.data.copy()

    buffer = DeltaSet()
    result.accumulate(buffer)

    input_derivative = [
        EmberTensorList.from_array(d) if len(d) else EmberTensorList([], dimensions=lst.dimensions)
        for d, lst in zip(derivatives, lists)
    ]
    return SimpleResult(output, input_derivative, buffer)


def simple_eval(layer: EmberLayer, *tensors: EmberTensor) -> SimpleResult:
    """
    Single-item convenience over simple_eval_lists.
    """
    return simple_eval_lists(layer, *[EmberTensorList.of(t.copy()) for t in tensors])
