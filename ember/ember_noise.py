# ember/ember_noise.py
from __future__ import annotations

from typing import Dict, Optional, Tuple

import numpy as np

from ember.ember_layer import EmberLayer


class EmberGaussianNoise(EmberLayer):
    """
    Additive noise layer:
        y = x + sigma * z

    z is drawn once per item shape from a generator seeded by shuffle(seed)
    and then held fixed, so repeated evaluations agree until the next
    shuffle(). clear_noise() turns the layer into an identity.
    """

    def __init__(self, sigma: float = 0.1, name: str | None = None, seed: Optional[int] = None) -> None:
        super().__init__(name)
        if sigma < 0.0:
            raise ValueError(f"{self.name}: sigma must be non-negative, got {sigma}")
        self.sigma = float(sigma)
        self._seed = seed
        self._noise: Dict[Tuple[int, ...], np.ndarray] = {}
        self._cleared = seed is None

    def shuffle(self, seed: int) -> None:
        self._seed = int(seed)
        self._noise.clear()
        self._cleared = False

    def clear_noise(self) -> None:
        self._noise.clear()
        self._cleared = True

    @property
    def is_cleared(self) -> bool:
        return self._cleared

    def _noise_for(self, item_shape: Tuple[int, ...]) -> np.ndarray:
        noise = self._noise.get(item_shape)
        if noise is None:
            rng = np.random.default_rng(self._seed)
            noise = self.sigma * rng.standard_normal(item_shape)
            self._noise[item_shape] = noise
        return noise

    def forward(self, x):
        if self._cleared:
            return x.copy()
        return x + self._noise_for(tuple(x.shape[1:]))

    def backward(self, grad_output, x):
        return [grad_output], []
