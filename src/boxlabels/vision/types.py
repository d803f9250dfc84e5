"""Canonical label data types shared across the datastore."""

from __future__ import annotations

from collections.abc import Iterator, Sequence
from dataclasses import dataclass
from typing import Any

import numpy as np
import pandas as pd

from boxlabels.vision.boxes import BoxFormat


@dataclass(frozen=True, eq=False)
class Row:
    """All box annotations of one observation (typically one image).

    Attributes:
        boxes: Read-only M-by-N box matrix, N in {4, 5, 9} (or 0 when M == 0).
        labels: Categorical of length M, one label per box row.
    """

    boxes: np.ndarray
    labels: pd.Categorical

    def __post_init__(self) -> None:
        if self.boxes.shape[0] != len(self.labels):
            raise ValueError(
                f"Row has {self.boxes.shape[0]} boxes but {len(self.labels)} labels."
            )

    def __setstate__(self, state: dict[str, Any]) -> None:
        # numpy does not pickle the write flag.
        self.__dict__.update(state)
        self.boxes.setflags(write=False)

    @property
    def num_boxes(self) -> int:
        return int(self.boxes.shape[0])

    def __iter__(self) -> Iterator[object]:
        # Allows `boxes, labels = row`.
        yield self.boxes
        yield self.labels

    def equals(self, other: Row) -> bool:
        """Value equality (dataclass __eq__ is ambiguous on arrays)."""
        return (
            self.boxes.shape == other.boxes.shape
            and self.boxes.dtype == other.boxes.dtype
            and bool(
                np.array_equal(self.boxes, other.boxes, equal_nan=self.boxes.dtype.kind == "f")
            )
            and list(self.labels.categories) == list(other.labels.categories)
            and self.labels.equals(other.labels)
        )


@dataclass(frozen=True)
class LabelDataset:
    """Ordered, immutable collection of rows sharing one vocabulary and box format.

    Row order is meaningful: row i describes the i-th observation of the
    companion image source.
    """

    rows: tuple[Row, ...] = ()
    categories: tuple[str, ...] = ()
    box_format: BoxFormat = BoxFormat.EMPTY

    def __len__(self) -> int:
        return len(self.rows)

    def __iter__(self) -> Iterator[Row]:
        return iter(self.rows)

    def __getitem__(self, index: int) -> Row:
        return self.rows[index]

    def take(self, indices: Sequence[int]) -> LabelDataset:
        """Return a dataset holding the rows at `indices` (rows are shared)."""
        return LabelDataset(
            rows=tuple(self.rows[i] for i in indices),
            categories=self.categories,
            box_format=self.box_format,
        )

    def to_frame(self) -> pd.DataFrame:
        """Two-column view (`Boxes`, `Labels`) of the label data."""
        boxes = np.empty(len(self.rows), dtype=object)
        labels = np.empty(len(self.rows), dtype=object)
        for i, row in enumerate(self.rows):
            boxes[i] = row.boxes
            labels[i] = row.labels
        return pd.DataFrame({"Boxes": boxes, "Labels": labels})
