# ember/delta.py

from __future__ import annotations

from typing import Dict, Hashable, Iterator, List, Optional, Sequence

import numpy as np


class Delta:
    """
    Gradient accumulation buffer bound to one mutable target array.

        key:    stable identity of the slot, e.g. (layer.id, state_index)
        target: the live array the gradient refers to (a layer weight,
                or a learnable input tensor's buffer)
        delta:  float64 buffer, same shape as target

    Contributions are merged with add_in_place(); nothing ever overwrites.
    """

    def __init__(self, key: Hashable, target: np.ndarray, delta: Optional[np.ndarray] = None) -> None:
        self.key = key
        self.target = target
        if delta is None:
            self.delta = np.zeros(target.shape, dtype=np.float64)
        else:
            delta = np.asarray(delta, dtype=np.float64)
            if delta.size != target.size:
                raise ValueError(
                    f"Delta {key!r}: buffer length {delta.size} does not match "
                    f"target length {target.size}"
                )
            self.delta = delta.reshape(target.shape).copy()

    def __len__(self) -> int:
        return int(self.delta.size)

    def add_in_place(self, values) -> "Delta":
        values = np.asarray(values, dtype=np.float64)
        if values.size != self.delta.size:
            raise ValueError(
                f"Delta {self.key!r}: cannot add {values.size} values "
                f"into a buffer of {self.delta.size}"
            )
        self.delta += values.reshape(self.delta.shape)
        return self

    def accumulate(self, factor: float = 1.0) -> None:
        """
        Apply the delta to its target: target += factor * delta
        """
        self.target += factor * self.delta.astype(self.target.dtype, copy=False)

    def scale(self, factor: float) -> "Delta":
        return Delta(self.key, self.target, self.delta * factor)

    def dot(self, other: "Delta") -> float:
        return float(np.dot(self.delta.reshape(-1), other.delta.reshape(-1)))

    def copy(self) -> "Delta":
        return Delta(self.key, self.target, self.delta)

    def __repr__(self) -> str:
        return f"Delta(key={self.key!r}, length={len(self)})"


class DeltaSet:
    """
    Mapping of key -> Delta.

    - get(key, target) lazily creates a zero Delta.
    - Re-binding an existing key to a different target array is an error.
    - All set algebra returns new DeltaSets bound to the same targets.
    """

    def __init__(self, deltas: Optional[Sequence[Delta]] = None) -> None:
        self._map: Dict[Hashable, Delta] = {}
        for d in deltas or []:
            self._map[d.key] = d

    # ------------------------------------------------------
    # Lookup
    # ------------------------------------------------------
    def get(self, key: Hashable, target: np.ndarray) -> Delta:
        existing = self._map.get(key)
        if existing is None:
            existing = Delta(key, target)
            self._map[key] = existing
        elif existing.target is not target:
            raise ValueError(f"DeltaSet: key {key!r} is already bound to another target")
        return existing

    def find_target(self, target: np.ndarray) -> Optional[Delta]:
        """
        Find the delta whose target IS this array (identity, not equality).
        """
        for d in self._map.values():
            if d.target is target:
                return d
        return None

    def keys(self) -> List[Hashable]:
        return list(self._map.keys())

    def values(self) -> List[Delta]:
        return list(self._map.values())

    def __contains__(self, key: Hashable) -> bool:
        return key in self._map

    def __getitem__(self, key: Hashable) -> Delta:
        return self._map[key]

    def __len__(self) -> int:
        return len(self._map)

    def __iter__(self) -> Iterator[Delta]:
        return iter(self._map.values())

    # ------------------------------------------------------
    # Algebra
    # ------------------------------------------------------
    def add_in_place(self, other: "DeltaSet") -> "DeltaSet":
        for d in other:
            self.get(d.key, d.target).add_in_place(d.delta)
        return self

    def add(self, other: "DeltaSet") -> "DeltaSet":
        return self.copy().add_in_place(other)

    def subtract(self, other: "DeltaSet") -> "DeltaSet":
        return self.add(other.scale(-1.0))

    def scale(self, factor: float) -> "DeltaSet":
        return DeltaSet([d.scale(factor) for d in self])

    def copy(self) -> "DeltaSet":
        return DeltaSet([d.copy() for d in self])

    def dot(self, other: "DeltaSet") -> float:
        """
        Sum of per-key dot products over the keys both sets share.
        """
        total = 0.0
        for key, d in self._map.items():
            o = other._map.get(key)
            if o is not None:
                total += d.dot(o)
        return total

    def magnitude(self) -> float:
        return float(np.sqrt(self.dot(self)))

    def accumulate(self, factor: float = 1.0) -> None:
        for d in self:
            d.accumulate(factor)

    # ------------------------------------------------------
    # Flattening (quasi-Newton math works on one long vector)
    # ------------------------------------------------------
    def vector(self, keys: Sequence[Hashable]) -> np.ndarray:
        parts = [self._map[k].delta.reshape(-1) for k in keys]
        if not parts:
            return np.zeros((0,), dtype=np.float64)
        return np.concatenate(parts)

    def with_vector(self, keys: Sequence[Hashable], vec: np.ndarray) -> "DeltaSet":
        out = DeltaSet()
        offset = 0
        for k in keys:
            d = self._map[k]
            n = len(d)
            out._map[k] = Delta(k, d.target, vec[offset:offset + n])
            offset += n
        if offset != vec.size:
            raise ValueError(f"DeltaSet.with_vector: used {offset} of {vec.size} values")
        return out

    def __repr__(self) -> str:
        return f"DeltaSet({list(self._map.values())})"


class StateSet:
    """
    Snapshot of the current values of a set of targets.

    Built from a DeltaSet (one saved copy per delta target);
    restore() writes the saved values back into the live arrays.
    """

    def __init__(self, targets: Dict[Hashable, np.ndarray], saved: Dict[Hashable, np.ndarray]) -> None:
        self._targets = targets
        self._saved = saved

    @classmethod
    def from_delta_set(cls, deltas: DeltaSet) -> "StateSet":
        targets = {d.key: d.target for d in deltas}
        saved = {d.key: np.array(d.target, dtype=np.float64) for d in deltas}
        return cls(targets, saved)

    def keys(self) -> List[Hashable]:
        return list(self._saved.keys())

    def __len__(self) -> int:
        return len(self._saved)

    def restore(self) -> None:
        for key, values in self._saved.items():
            target = self._targets[key]
            np.copyto(target, values.astype(target.dtype, copy=False))

    def vector(self, keys: Sequence[Hashable]) -> np.ndarray:
        parts = [self._saved[k].reshape(-1) for k in keys]
        if not parts:
            return np.zeros((0,), dtype=np.float64)
        return np.concatenate(parts)

    def __repr__(self) -> str:
        return f"StateSet(keys={self.keys()})"
