# relu_cross_verify.py

from __future__ import annotations
import numpy as np
import torch
import torch.nn as nn

from ember.ember_activation import EmberReLU, EmberSigmoid
from ember.simple_eval import simple_eval_lists
from ember.ember_tensor_list import EmberTensorList


NUM_TRIALS = 128


def assert_allclose(a, b, atol=1e-6, rtol=1e-6):
    if not np.allclose(a, b, atol=atol, rtol=rtol):
        diff = np.abs(a - b)
        raise AssertionError(
            f"Arrays differ: max diff={diff.max()}, atol={atol}, rtol={rtol}"
        )


def make_random_nd_input():
    """
    Generates a batch with random item shape:
      batch = 1 to 10
      item rank = 1 to 3
      each dimension = 1 to 10
    values in (-5, 5)
    """
    batch = int(np.random.randint(1, 11))
    rank = int(np.random.randint(1, 4))
    shape = (batch,) + tuple(int(np.random.randint(1, 11)) for _ in range(rank))
    return np.random.uniform(-5.0, 5.0, size=shape)


def cross_verify_activation_once(trial_index: int, ember_layer, torch_layer):
    # --------------
    # Random input
    # --------------
    x = make_random_nd_input()
    x_torch = torch.from_numpy(x.copy()).requires_grad_(True)

    # --------------
    # Forward + backward (all-ones upstream gradient)
    # --------------
    result = simple_eval_lists(ember_layer, EmberTensorList.from_array(x.copy()))
    y1 = result.output.as_array()
    gx1 = result.input_derivative[0].as_array()

    y2_t = torch_layer(x_torch)
    y2 = y2_t.detach().numpy()
    assert_allclose(y1, y2)

    y2_t.backward(torch.ones_like(y2_t))
    gx2 = x_torch.grad.detach().numpy()
    assert_allclose(gx1, gx2)


def test_relu_cross_verify():
    np.random.seed(1234)
    torch.manual_seed(1234)
    for i in range(NUM_TRIALS):
        cross_verify_activation_once(i, EmberReLU(), nn.ReLU())


def test_sigmoid_cross_verify():
    np.random.seed(4321)
    torch.manual_seed(4321)
    for i in range(NUM_TRIALS):
        cross_verify_activation_once(i, EmberSigmoid(), nn.Sigmoid())


if __name__ == "__main__":
    print(f"[relu_cross_verify] Running {NUM_TRIALS} random trials...")
    np.random.seed(1234)
    torch.manual_seed(1234)

    try:
        for i in range(NUM_TRIALS):
            cross_verify_activation_once(i, EmberReLU(), nn.ReLU())
            print(f"  [OK] trial {i+1}/{NUM_TRIALS}")
    except AssertionError as e:
        print(f"[relu_cross_verify] FAILED on trial {i}: {e}")
        raise
    else:
        print("[relu_cross_verify] All ReLU tests passed. "
              "EmberReLU == torch.nn.ReLU for all random ND inputs.")
