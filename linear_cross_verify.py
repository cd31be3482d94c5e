# linear_cross_verify.py

from __future__ import annotations

import numpy as np
import torch
import torch.nn as nn

from ember.delta import DeltaSet
from ember.derivative_tester import SingleDerivativeTester
from ember.ember_linear import EmberLinear
from ember.ember_result import EmberResult
from ember.ember_tensor import EmberTensor
from ember.ember_tensor_list import EmberTensorList


# --------------------------------------------------
# Config
# --------------------------------------------------

NUM_TRIALS = 64


# --------------------------------------------------
# Helpers
# --------------------------------------------------

def assert_allclose(a, b, atol=1e-6, rtol=1e-6):
    if not np.allclose(a, b, atol=atol, rtol=rtol):
        diff = np.abs(a - b)
        max_diff = float(diff.max())
        raise AssertionError(
            f"Arrays differ: max |a-b| = {max_diff}, "
            f"atol={atol}, rtol={rtol}"
        )


def sync_ember_to_torch(ember_layer: EmberLinear, torch_layer: nn.Linear) -> None:
    """
    Copy parameters from an EmberLinear into a torch.nn.Linear.
    Assumes shapes:
        W: (out_features, in_features)
        b: (out_features,)
    """
    W, b = ember_layer.state()
    with torch.no_grad():
        torch_layer.weight.data.copy_(torch.from_numpy(W))
        torch_layer.bias.data.copy_(torch.from_numpy(b))


def make_random_input(batch_size: int, in_features: int) -> np.ndarray:
    """
    Random (N, D) input, values in (-100, 100).
    """
    return np.random.uniform(low=-100.0, high=100.0, size=(batch_size, in_features))


# --------------------------------------------------
# Core cross-verify
# --------------------------------------------------

def cross_verify_linear_once(trial_index: int) -> None:
    """
    One random trial comparing EmberLinear (through eval/accumulate)
    with a float64 torch.nn.Linear:
      1. random N, D, C in [1, 10]
      2. same W and b on both sides
      3. forward, then backward with a random upstream gradient
      4. outputs, input grads and parameter grads must agree
    """
    batch_size = int(np.random.randint(1, 11))
    in_features = int(np.random.randint(1, 11))
    out_features = int(np.random.randint(1, 11))

    layer = EmberLinear(in_features, out_features, rng=np.random.default_rng(trial_index))
    torch_lin = nn.Linear(in_features, out_features).double()
    sync_ember_to_torch(layer, torch_lin)

    x = make_random_input(batch_size, in_features)
    x_torch = torch.from_numpy(x.copy()).requires_grad_(True)

    # ------------------------------
    # Forward
    # ------------------------------
    input_grads = []
    upstream = EmberResult(
        EmberTensorList.from_array(x.copy()),
        lambda buffer, gradient: input_grads.append(gradient.as_array()),
        alive=True,
    )
    result = layer.eval(upstream)
    y1 = result.data.as_array()

    y2_torch = torch_lin(x_torch)
    y2 = y2_torch.detach().numpy()

    if y1.shape != y2.shape:
        raise AssertionError(
            f"Output shape mismatch on trial {trial_index}: "
            f"EmberLinear={y1.shape}, torch={y2.shape}"
        )
    assert_allclose(y1, y2)

    # ------------------------------
    # Backward
    # ------------------------------
    grad_out = np.random.randn(*y1.shape)

    buffer = DeltaSet()
    result.accumulate(buffer, EmberTensorList.from_array(grad_out.copy()))

    torch_lin.zero_grad(set_to_none=True)
    y2_torch.backward(torch.from_numpy(grad_out.copy()))

    assert len(input_grads) == 1
    assert_allclose(input_grads[0], x_torch.grad.detach().numpy())

    W, b = layer.state()
    assert_allclose(buffer.find_target(W).delta, torch_lin.weight.grad.detach().numpy())
    assert_allclose(buffer.find_target(b).delta, torch_lin.bias.grad.detach().numpy())


def test_linear_cross_verify() -> None:
    """
    Pytest-style entry point: run NUM_TRIALS random cross-checks.
    """
    np.random.seed(5678)
    torch.manual_seed(5678)

    for i in range(NUM_TRIALS):
        cross_verify_linear_once(i)


def test_linear_finite_difference() -> None:
    """
    The same layer also has to pass the finite-difference check.
    """
    np.random.seed(5678)
    layer = EmberLinear(3, 2, rng=np.random.default_rng(5678))
    x = EmberTensor(np.random.uniform(-1.0, 1.0, size=(3,)))

    stats = SingleDerivativeTester(tolerance=1e-3, probe_size=1e-4, verbose=False).test(layer, x)
    assert stats.absolute_tol.max < 1e-3


# --------------------------------------------------
# Script entry point
# --------------------------------------------------

if __name__ == "__main__":
    np.random.seed(5678)
    torch.manual_seed(5678)

    print(f"[linear_cross_verify] Running {NUM_TRIALS} random trials...")
    try:
        for i in range(NUM_TRIALS):
            cross_verify_linear_once(i)
            print(f"  [OK] trial {i+1}/{NUM_TRIALS}")
    except AssertionError as e:
        print(f"[linear_cross_verify] FAILED on trial {i}: {e}")
        raise
    else:
        print("[linear_cross_verify] All trials passed. "
              "EmberLinear and torch.nn.Linear agree on this random suite.")
