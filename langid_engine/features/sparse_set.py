"""
Sparse set with per-member counts over a fixed integer domain.

Clearing is O(1): only the member count is reset, and stale entries in the
backing arrays are ignored because membership of ``i`` requires
``sparse[i] < members and dense[sparse[i]] == i``. This is what lets the
tokenizer reuse one set per model for every call instead of zeroing a
``num_states`` or ``num_feats`` sized buffer.
"""
from __future__ import annotations

from typing import Iterator, Tuple

import numpy as np


class SparseSet:
    """
    Reusable counting set over ``[0, capacity)``.
    """

    def __init__(self, capacity: int):
        if capacity <= 0:
            raise ValueError(f"SparseSet capacity must be positive, got {capacity}.")
        self.capacity = int(capacity)
        self.dense = np.zeros(self.capacity, dtype=np.int64)
        self.sparse = np.zeros(self.capacity, dtype=np.int64)
        self.counts = np.zeros(self.capacity, dtype=np.int64)
        self.members = 0
        # Scalar access through memoryviews avoids numpy scalar boxing in the
        # per-byte loop; they alias the arrays above.
        self._dense = memoryview(self.dense)
        self._sparse = memoryview(self.sparse)
        self._counts = memoryview(self.counts)

    def clear(self) -> None:
        self.members = 0

    def _position(self, index: int) -> int:
        pos = self._sparse[index]
        if pos < self.members and self._dense[pos] == index:
            return pos
        return -1

    def add(self, index: int, delta: int) -> None:
        if not 0 <= index < self.capacity:
            raise IndexError(f"index {index} outside [0, {self.capacity})")
        pos = self._sparse[index]
        members = self.members
        if pos < members and self._dense[pos] == index:
            self._counts[pos] += delta
        else:
            self._sparse[index] = members
            self._dense[members] = index
            self._counts[members] = delta
            self.members = members + 1

    def count(self, index: int) -> int:
        if not 0 <= index < self.capacity:
            raise IndexError(f"index {index} outside [0, {self.capacity})")
        pos = self._position(index)
        return self._counts[pos] if pos >= 0 else 0

    def indices(self) -> np.ndarray:
        """Active indices in insertion order (a view, valid until the next add/clear)."""
        return self.dense[: self.members]

    def values(self) -> np.ndarray:
        """Counts aligned with :meth:`indices`."""
        return self.counts[: self.members]

    def items(self) -> Iterator[Tuple[int, int]]:
        dense, counts = self._dense, self._counts
        for pos in range(self.members):
            yield dense[pos], counts[pos]

    def __iter__(self) -> Iterator[Tuple[int, int]]:
        return self.items()

    def __len__(self) -> int:
        return self.members

    def __contains__(self, index: int) -> bool:
        return 0 <= index < self.capacity and self._position(index) >= 0

    def __repr__(self) -> str:
        return f"SparseSet(capacity={self.capacity}, members={self.members})"


__all__ = ["SparseSet"]
