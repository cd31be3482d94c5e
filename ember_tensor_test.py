# ember_tensor_test.py

from __future__ import annotations

import numpy as np
import pytest

from ember.delta import Delta, DeltaSet, StateSet
from ember.ember_activation import EmberReLU
from ember.ember_linear import EmberLinear
from ember.ember_result import EmberResult
from ember.ember_tensor import EmberTensor
from ember.ember_tensor_list import EmberTensorList
from ember.errors import ShapeMismatchError


# --------------------------------------------------
# EmberTensor
# --------------------------------------------------

def test_tensor_copies_input_and_promotes_scalars() -> None:
    src = np.array([1, 2, 3], dtype=np.int32)
    t = EmberTensor(src)
    src[0] = 100

    assert t.data.dtype == np.float64
    assert t.get(0) == 1.0
    assert EmberTensor(5.0).shape == (1,)


def test_tensor_one_hot_and_flat_view() -> None:
    t = EmberTensor.one_hot((2, 3), 4)
    assert t.shape == (2, 3)
    assert len(t) == 6
    assert t.data[1, 1] == 1.0
    assert float(t.data.sum()) == 1.0

    t.flat[0] = 7.0
    assert t.data[0, 0] == 7.0


def test_tensor_arithmetic_does_not_alias() -> None:
    a = EmberTensor([1.0, 2.0])
    b = EmberTensor([3.0, 5.0])

    c = a.add(b)
    c.set(0, 100.0)

    assert a.get(0) == 1.0
    assert a.minus(b).allclose(EmberTensor([-2.0, -3.0]))
    assert a.scale(2.0).allclose(EmberTensor([2.0, 4.0]))
    assert a.dot(b) == pytest.approx(13.0)
    assert a.map(lambda v: v * v).allclose(EmberTensor([1.0, 4.0]))


def test_tensor_shape_mismatch() -> None:
    with pytest.raises(ShapeMismatchError):
        EmberTensor([1.0, 2.0]).add(EmberTensor([1.0, 2.0, 3.0]))


# --------------------------------------------------
# EmberTensorList
# --------------------------------------------------

def test_tensor_list_rejects_mixed_shapes() -> None:
    with pytest.raises(ShapeMismatchError):
        EmberTensorList([EmberTensor.zeros(2), EmberTensor.zeros(3)])


def test_tensor_list_round_trip_through_array() -> None:
    arr = np.arange(6, dtype=np.float64).reshape(3, 2)
    lst = EmberTensorList.from_array(arr)

    assert len(lst) == 3
    assert lst.dimensions == (2,)
    assert np.array_equal(lst.as_array(), arr)

    # from_array splits into independent tensors
    arr[0, 0] = 42.0
    assert lst[0].get(0) == 0.0


def test_empty_tensor_list_needs_dimensions() -> None:
    with pytest.raises(ValueError):
        EmberTensorList([])
    assert len(EmberTensorList([], dimensions=(4,))) == 0


# --------------------------------------------------
# Delta / DeltaSet / StateSet
# --------------------------------------------------

def test_delta_set_merges_contributions() -> None:
    target = np.zeros(3)
    buffer = DeltaSet()
    buffer.get("w", target).add_in_place([1.0, 2.0, 3.0])
    buffer.get("w", target).add_in_place([1.0, 1.0, 1.0])

    assert len(buffer) == 1
    assert np.allclose(buffer["w"].delta, [2.0, 3.0, 4.0])
    assert buffer.find_target(target) is buffer["w"]


def test_delta_set_rejects_rebinding_a_key() -> None:
    buffer = DeltaSet()
    buffer.get("w", np.zeros(2))
    with pytest.raises(ValueError):
        buffer.get("w", np.zeros(2))


def test_delta_set_algebra() -> None:
    t1, t2 = np.zeros(2), np.zeros(1)
    a = DeltaSet([Delta("a", t1, [1.0, 2.0]), Delta("b", t2, [3.0])])
    b = DeltaSet([Delta("a", t1, [1.0, 1.0])])

    assert a.dot(b) == pytest.approx(3.0)
    assert a.magnitude() == pytest.approx(np.sqrt(14.0))
    assert np.allclose(a.subtract(b)["a"].delta, [0.0, 1.0])
    assert np.allclose(a.scale(-1.0)["b"].delta, [-3.0])

    keys = a.keys()
    vec = a.vector(keys)
    assert np.allclose(vec, [1.0, 2.0, 3.0])
    assert np.allclose(a.with_vector(keys, vec * 2.0).vector(keys), [2.0, 4.0, 6.0])


def test_delta_set_accumulate_moves_targets() -> None:
    target = np.array([1.0, 1.0])
    deltas = DeltaSet([Delta("w", target, [2.0, -2.0])])
    deltas.accumulate(0.5)
    assert np.allclose(target, [2.0, 0.0])


def test_state_set_restores_live_arrays() -> None:
    target = np.array([1.0, 2.0])
    deltas = DeltaSet([Delta("w", target)])
    saved = StateSet.from_delta_set(deltas)

    target[:] = 99.0
    saved.restore()

    assert np.allclose(target, [1.0, 2.0])
    assert np.allclose(saved.vector(["w"]), [1.0, 2.0])


# --------------------------------------------------
# EmberResult
# --------------------------------------------------

def test_constant_result_is_dead() -> None:
    (result,) = EmberResult.constants(EmberTensor([1.0, 2.0]))
    assert not result.is_alive()
    result.accumulate(DeltaSet())


def test_result_rejects_mismatched_gradient() -> None:
    seen = []
    result = EmberResult(
        EmberTensorList.of(EmberTensor([1.0, 2.0])),
        lambda buffer, gradient: seen.append(gradient),
    )
    with pytest.raises(ShapeMismatchError):
        result.accumulate(DeltaSet(), EmberTensorList.of(EmberTensor([1.0, 2.0, 3.0])))

    result.accumulate(DeltaSet())
    assert np.allclose(seen[0].as_array(), [[1.0, 1.0]])


def test_layer_copy_is_independent_and_state_equal() -> None:
    layer = EmberLinear(2, 3, rng=np.random.default_rng(0))
    clone = layer.copy()

    assert clone.id != layer.id
    assert clone.state_equals(layer)
    assert not clone.state_equals(EmberReLU())

    clone.W[0, 0] += 1.0
    assert not clone.state_equals(layer)


if __name__ == "__main__":
    raise SystemExit(pytest.main([__file__]))
