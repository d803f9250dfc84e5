"""Sequential, partitionable reader over in-memory label rows."""

from __future__ import annotations

import copy
from collections.abc import Sequence
from dataclasses import dataclass

import numpy as np

from boxlabels.vision.types import LabelDataset, Row


@dataclass(frozen=True)
class ReadInfo:
    """Extra information returned by `InMemoryReader.read_with_info`.

    Attributes:
        current_index: 0-based index of the first row of the batch.
        read_size: Read size used for the batch.
    """

    current_index: int
    read_size: int


@dataclass
class _Cursor:
    position: int = 0
    read_size: int = 1


def check_read_size(read_size: object) -> int:
    """Validate a read size (positive integer)."""
    if isinstance(read_size, bool) or not isinstance(read_size, (int, np.integer)):
        raise TypeError(f"read_size must be a positive integer, got {read_size!r}.")
    if read_size < 1:
        raise ValueError(f"read_size must be a positive integer, got {read_size}.")
    return int(read_size)


class InMemoryReader:
    """Batched sequential reader over a `LabelDataset`.

    The dataset is shared, never modified; each reader owns its cursor.
    `clone`, `partition`, `subset` and `shuffle` return readers with an
    independent cursor.
    """

    def __init__(self, dataset: LabelDataset, read_size: int = 1) -> None:
        self._dataset = dataset
        self._cursor = _Cursor(position=0, read_size=check_read_size(read_size))

    # ------------------------------------------------------------------
    # State
    # ------------------------------------------------------------------

    @property
    def dataset(self) -> LabelDataset:
        return self._dataset

    @property
    def read_size(self) -> int:
        return self._cursor.read_size

    @read_size.setter
    def read_size(self, value: int) -> None:
        self._cursor.read_size = check_read_size(value)

    @property
    def position(self) -> int:
        return self._cursor.position

    @property
    def num_observations(self) -> int:
        return len(self._dataset)

    def seek(self, position: int) -> None:
        """Move the cursor (used when restoring saved state)."""
        if not 0 <= position <= len(self._dataset):
            raise IndexError(
                f"Position {position} out of range for {len(self._dataset)} observations."
            )
        self._cursor.position = int(position)

    # ------------------------------------------------------------------
    # Reading
    # ------------------------------------------------------------------

    def has_data(self) -> bool:
        return self._cursor.position < len(self._dataset)

    def read_with_info(self) -> tuple[list[Row], ReadInfo]:
        """Read up to `read_size` rows and advance the cursor.

        Raises:
            ValueError: If no data is left (check `has_data` first).
        """
        if not self.has_data():
            raise ValueError("No more data to read. Use reset() to read from the start.")
        start = self._cursor.position
        stop = min(start + self._cursor.read_size, len(self._dataset))
        self._cursor.position = stop
        return list(self._dataset.rows[start:stop]), ReadInfo(start, self._cursor.read_size)

    def read(self) -> list[Row]:
        rows, _ = self.read_with_info()
        return rows

    def read_all(self) -> list[Row]:
        """All rows, regardless of (and without moving) the cursor."""
        return list(self._dataset.rows)

    def preview(self) -> list[Row]:
        """First row (empty list for an empty reader), without moving the cursor."""
        return list(self._dataset.rows[:1])

    def reset(self) -> None:
        self._cursor.position = 0

    def progress(self) -> float:
        """Fraction of rows consumed, in [0, 1]."""
        n = len(self._dataset)
        if n == 0:
            return 1.0
        return self._cursor.position / n

    # ------------------------------------------------------------------
    # Views
    # ------------------------------------------------------------------

    def clone(self) -> InMemoryReader:
        """Copy sharing the rows with a deep copy of the cursor."""
        other = copy.copy(self)
        other._cursor = copy.deepcopy(self._cursor)
        return other

    def _view(self, indices: Sequence[int]) -> InMemoryReader:
        return InMemoryReader(self._dataset.take(indices), read_size=self._cursor.read_size)

    def max_partitions(self) -> int:
        return len(self._dataset)

    def num_partitions(self, max_partitions: int | None = None) -> int:
        """Reasonable number of partitions, capped by `max_partitions`."""
        n = self.max_partitions()
        if max_partitions is not None:
            n = min(n, int(max_partitions))
        return max(n, 0)

    def partition(self, num_partitions: int, index: int) -> InMemoryReader:
        """Contiguous part `index` (0-based) out of `num_partitions`."""
        if num_partitions < 1:
            raise ValueError(f"num_partitions must be >= 1, got {num_partitions}.")
        if not 0 <= index < num_partitions:
            raise IndexError(f"Partition index {index} out of range [0, {num_partitions}).")
        n = len(self._dataset)
        start = (index * n) // num_partitions
        stop = ((index + 1) * n) // num_partitions
        return self._view(range(start, stop))

    def subset(self, indices: Sequence[int] | Sequence[bool] | np.ndarray) -> InMemoryReader:
        """Rows at integer `indices` (repeats allowed) or where a boolean mask is True."""
        idx = np.asarray(indices)
        n = len(self._dataset)
        if idx.dtype == bool:
            if idx.shape != (n,):
                raise IndexError(f"Boolean mask must have length {n}, got {idx.shape}.")
            idx = np.flatnonzero(idx)
        elif idx.size == 0:
            idx = idx.astype(np.int64)
        elif not np.issubdtype(idx.dtype, np.integer):
            raise TypeError(f"Subset indices must be integers or booleans, got {idx.dtype}.")
        idx = idx.ravel()
        if idx.size and (idx.min() < 0 or idx.max() >= n):
            raise IndexError(f"Subset indices must be in [0, {n}).")
        return self._view(idx.tolist())

    def shuffle(self, seed: int | np.random.Generator | None = None) -> InMemoryReader:
        """All rows in random order."""
        rng = np.random.default_rng(seed)
        return self._view(rng.permutation(len(self._dataset)).tolist())
