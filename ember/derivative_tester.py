# ember/derivative_tester.py
from __future__ import annotations

from typing import List, Optional, Sequence, Tuple

import numpy as np

from ember import defaults
from ember.delta import DeltaSet
from ember.ember_layer import EmberLayer
from ember.ember_result import EmberResult
from ember.ember_tensor import EmberTensor
from ember.ember_tensor_list import EmberTensorList
from ember.errors import FrozenInvariantError, GradientToleranceError, ShapeMismatchError
from ember.simple_eval import simple_eval
from ember.statistics import ScalarStatistics, ToleranceStatistics


TAG = "[SingleDerivativeTester]"


class SingleDerivativeTester:
    """
    Compare a layer's implemented derivatives against finite-difference
    estimates, one input item at a time.

    Feedback check (dL/d input):
        implemented: one backward sweep per output coordinate j, fed a
                     one-hot dL/dy, captures column j of the Jacobian
        measured:    nudge input element i by +probe_size, re-run forward,
                     (y_probe - y_base) / probe_size gives row i

    Learning check (dL/d state):
        same, but probing every scalar of every state() array on an
        unfrozen copy of the layer.

    Both build (input_length x output_length) matrices and compare them
    element-wise. Where the measured matrix is NaN the coordinate is
    masked out of the comparison.

    A check passes iff max |measured - implemented| < tolerance.
    """

    def __init__(
        self,
        tolerance: float = defaults.TOLERANCE,
        probe_size: float = defaults.PROBE_SIZE,
        test_feedback: bool = True,
        test_learning: bool = True,
        verify: bool = True,
        verbose: bool = True,
    ) -> None:
        if not tolerance > 0.0:
            raise ValueError(f"Invalid tolerance: {tolerance}")
        if not probe_size > 0.0:
            raise ValueError(f"Invalid probe_size: {probe_size}")

        self.tolerance = float(tolerance)
        self.probe_size = float(probe_size)
        self.test_feedback = test_feedback
        self.test_learning = test_learning
        self.verify = verify
        self.verbose = verbose

    # ==================================================================
    # Entry point
    # ==================================================================
    def test(self, component: EmberLayer, *input_prototype: EmberTensor) -> ToleranceStatistics:
        component.assert_alive()
        output_prototype = simple_eval(component, *input_prototype).output[0]

        if self.verbose:
            print(f"{TAG} Inputs: {', '.join(t.pretty_print() for t in input_prototype)}")
            for t in input_prototype:
                print(f"{TAG} Inputs Statistics: {ScalarStatistics().add(t.data)}")
            print(f"{TAG} Output: {output_prototype.pretty_print()}")
            print(f"{TAG} Outputs Statistics: {ScalarStatistics().add(output_prototype.data)}")

        statistics = ToleranceStatistics()
        if self.test_feedback:
            statistics = self.run_feedback(statistics, component, input_prototype, output_prototype)
        if self.test_learning:
            statistics = self.run_learning(statistics, component, input_prototype, output_prototype)

        if self.verbose:
            print(f"{TAG} Finite-Difference Derivative Accuracy:")
            print(f"{TAG} absoluteTol: {statistics.absolute_tol}")
            print(f"{TAG} relativeTol: {statistics.relative_tol}")

        if self.verify:
            self.run_frozen(component, input_prototype)
            self.run_unfrozen(component, input_prototype)

        return statistics

    # ==================================================================
    # Feedback (inputs)
    # ==================================================================
    def run_feedback(
        self,
        statistics: ToleranceStatistics,
        component: EmberLayer,
        input_prototype: Sequence[EmberTensor],
        output_prototype: EmberTensor,
    ) -> ToleranceStatistics:
        for i in range(len(input_prototype)):
            implemented = self.get_feedback_gradient(component, i, output_prototype, input_prototype)
            measured = self.measure_feedback_gradient(component, i, output_prototype, input_prototype)
            masked = np.where(np.isnan(measured), np.nan, implemented)
            label = f"Feedback for input {i}"
            result = self._compare(label, measured, masked, input_prototype[i].data)
            statistics = statistics.combine(result)
        return statistics

    def get_feedback_gradient(
        self,
        component: EmberLayer,
        input_index: int,
        output_prototype: EmberTensor,
        input_prototype: Sequence[EmberTensor],
    ) -> np.ndarray:
        """
        Implemented Jacobian (input_length x output_length) for one input.
        """
        input_tensor = input_prototype[input_index]
        input_dims = len(input_tensor)
        output_dims = len(output_prototype)
        result = np.zeros((input_dims, output_dims), dtype=np.float64)
        key = ("feedback", input_index)

        for j in range(output_dims):
            target = np.zeros((input_dims,), dtype=np.float64)

            def accumulate(buffer: DeltaSet, data: EmberTensorList) -> None:
                if len(data) != 1:
                    raise AssertionError(f"Expected one feedback item, got {len(data)}")
                if data.dimensions != input_tensor.shape:
                    raise ShapeMismatchError(
                        f"Feedback dimensions {data.dimensions} do not match input {input_tensor.shape}"
                    )
                buffer.get(key, target).add_in_place(data[0].flat)

            inputs = EmberResult.constants(*[t.copy() for t in input_prototype])
            inputs[input_index] = EmberResult(EmberTensorList.of(input_tensor.copy()), accumulate, alive=True)

            evaluated = component.eval(*inputs)
            buffer = DeltaSet()
            one_hot = EmberTensor.one_hot(output_prototype.shape, j)
            evaluated.accumulate(buffer, EmberTensorList.of(one_hot))

            if key in buffer:
                result[:, j] = buffer[key].delta
        return result

    def measure_feedback_gradient(
        self,
        component: EmberLayer,
        input_index: int,
        output_prototype: EmberTensor,
        input_prototype: Sequence[EmberTensor],
    ) -> np.ndarray:
        """
        Forward-difference Jacobian estimate for one input.
        """
        input_dims = len(input_prototype[input_index])
        base = output_prototype.flat
        measured = np.zeros((input_dims, len(output_prototype)), dtype=np.float64)

        for i in range(input_dims):
            probe = input_prototype[input_index].copy()
            probe.add_at(i, self.probe_size)
            copies = [t.copy() for t in input_prototype]
            copies[input_index] = probe
            evaluated = component.eval_tensors(*copies).data[0]
            measured[i, :] = (evaluated.flat - base) / self.probe_size
        return measured

    # ==================================================================
    # Learning (state)
    # ==================================================================
    def run_learning(
        self,
        statistics: ToleranceStatistics,
        component: EmberLayer,
        input_prototype: Sequence[EmberTensor],
        output_prototype: EmberTensor,
    ) -> ToleranceStatistics:
        # Work on an unfrozen copy: the caller's layer is never perturbed
        # and its frozen flag is left alone.
        subject = component.copy().set_frozen(False)
        state = subject.state()

        for i in range(len(state)):
            implemented = self.get_learning_gradient(subject, i, output_prototype, input_prototype)
            measured = self.measure_learning_gradient(subject, i, output_prototype, input_prototype)
            label = f"Learning gradient for state {i}"
            result = self._compare(label, measured, implemented, state[i])
            statistics = statistics.combine(result)
        return statistics

    def get_learning_gradient(
        self,
        component: EmberLayer,
        layer_index: int,
        output_prototype: EmberTensor,
        input_prototype: Sequence[EmberTensor],
    ) -> np.ndarray:
        state = component.state()[layer_index]
        output_dims = len(output_prototype)
        result = np.zeros((state.size, output_dims), dtype=np.float64)

        for j in range(output_dims):
            buffer = DeltaSet()
            evaluated = component.eval_tensors(*[t.copy() for t in input_prototype])
            one_hot = EmberTensor.one_hot(output_prototype.shape, j)
            evaluated.accumulate(buffer, EmberTensorList.of(one_hot))

            delta = buffer.find_target(state)
            if delta is not None:
                result[:, j] = delta.delta.reshape(-1)
        return result

    def measure_learning_gradient(
        self,
        component: EmberLayer,
        layer_index: int,
        output_prototype: EmberTensor,
        input_prototype: Sequence[EmberTensor],
    ) -> np.ndarray:
        state = component.state()[layer_index]
        base = output_prototype.flat
        measured = np.zeros((state.size, len(output_prototype)), dtype=np.float64)

        for i in range(state.size):
            original = state.flat[i]
            state.flat[i] = original + self.probe_size
            try:
                evaluated = component.eval_tensors(*[t.copy() for t in input_prototype]).data[0]
            finally:
                state.flat[i] = original
            measured[i, :] = (evaluated.flat - base) / self.probe_size
        return measured

    # ==================================================================
    # Comparison + reporting
    # ==================================================================
    def _compare(
        self,
        label: str,
        measured: np.ndarray,
        implemented: np.ndarray,
        values: np.ndarray,
    ) -> ToleranceStatistics:
        result = ToleranceStatistics().accumulate_arrays(measured, implemented)
        difference = measured - implemented

        if not result.absolute_tol.max < self.tolerance:
            self._report(label, values, measured, implemented, difference)
            raise GradientToleranceError(result, _worst_coordinate(measured, implemented), label)

        if self.verbose:
            self._report(label, values, measured, implemented, difference)
        return result

    def _report(
        self,
        label: str,
        values: np.ndarray,
        measured: np.ndarray,
        implemented: np.ndarray,
        difference: np.ndarray,
    ) -> None:
        finite = difference[np.isfinite(difference)]
        print(f"{TAG} {label}")
        print(f"{TAG} Values: {np.array2string(np.asarray(values), precision=4)}")
        print(f"{TAG} Value Statistics: {ScalarStatistics().add(values)}")
        print(f"{TAG} Implemented: {np.array2string(implemented, precision=4)}")
        print(f"{TAG} Implemented Statistics: {ScalarStatistics().add(implemented[np.isfinite(implemented)])}")
        print(f"{TAG} Measured: {np.array2string(measured, precision=4)}")
        print(f"{TAG} Measured Statistics: {ScalarStatistics().add(measured[np.isfinite(measured)])}")
        print(f"{TAG} Error: {np.array2string(difference, precision=4)}")
        print(f"{TAG} Error Statistics: {ScalarStatistics().add(finite)}")

    # ==================================================================
    # Frozen / unfrozen invariants
    # ==================================================================
    def run_frozen(self, component: EmberLayer, input_prototype: Sequence[EmberTensor]) -> None:
        """
        A frozen copy must not list its own state() arrays in the DeltaSet,
        and must still pass gradient back to its inputs.
        """
        frozen = component.copy().freeze()
        buffer, reached = self._eval_with_recording_inputs(frozen, input_prototype)

        deltas = self._state_deltas(frozen, buffer)
        if deltas and frozen.state():
            raise FrozenInvariantError(f"Frozen component listed in delta. Deltas: {deltas}")

        in_elements = sum(len(t) for t in input_prototype)
        if not reached[0] and in_elements > 0:
            raise FrozenInvariantError("Frozen component did not pass input backwards")

    def run_unfrozen(self, component: EmberLayer, input_prototype: Sequence[EmberTensor]) -> None:
        """
        An unfrozen copy with state must list at least one of its
        state() arrays in the DeltaSet.
        """
        unfrozen = component.copy().set_frozen(False)
        buffer, reached = self._eval_with_recording_inputs(unfrozen, input_prototype)

        state = unfrozen.state()
        deltas = self._state_deltas(unfrozen, buffer)
        if not deltas and state:
            raise FrozenInvariantError(f"Nonfrozen component not listed in delta. Deltas: {buffer.values()}")

        in_elements = sum(len(t) for t in input_prototype)
        if not reached[0] and in_elements > 0:
            raise FrozenInvariantError("Nonfrozen component did not pass input backwards")

    @staticmethod
    def _eval_with_recording_inputs(
        component: EmberLayer,
        input_prototype: Sequence[EmberTensor],
    ) -> Tuple[DeltaSet, List[bool]]:
        reached = [False]

        def accumulate(buffer: DeltaSet, data: EmberTensorList) -> None:
            reached[0] = True

        inputs = [
            EmberResult(EmberTensorList.of(t.copy()), accumulate, alive=True)
            for t in input_prototype
        ]
        evaluated = component.eval(*inputs)
        buffer = DeltaSet()
        evaluated.accumulate(buffer, evaluated.data.copy())
        return buffer, reached

    @staticmethod
    def _state_deltas(component: EmberLayer, buffer: DeltaSet):
        found = [buffer.find_target(s) for s in component.state()]
        return [d for d in found if d is not None]

    def __repr__(self) -> str:
        return (
            f"SingleDerivativeTester(probe_size={self.probe_size}, tolerance={self.tolerance}, "
            f"test_feedback={self.test_feedback}, test_learning={self.test_learning}, "
            f"verbose={self.verbose}, verify={self.verify})"
        )


def _worst_coordinate(measured: np.ndarray, implemented: np.ndarray) -> Optional[Tuple[int, ...]]:
    # same masking as ToleranceStatistics: NaN probe ignored, other non-finite pairs worst
    with np.errstate(invalid="ignore"):
        abs_diff = np.abs(measured - implemented)
    abs_diff[~(np.isfinite(measured) & np.isfinite(implemented))] = np.inf
    abs_diff[np.isnan(measured)] = -1.0
    if abs_diff.size == 0:
        return None
    return tuple(int(c) for c in np.unravel_index(int(np.argmax(abs_diff)), abs_diff.shape))
