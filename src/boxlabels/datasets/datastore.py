"""Box label datastore: validated, canonical bounding box labels for detector training.

`BoxLabelDatastore` accepts one or more ground truth tables (see
`boxlabels.datasets.tables` for the supported layouts), optionally crops
them to a block set, and serves the canonical rows, one `(boxes, labels)`
pair per observation, through a batched sequential reader.

Example:
    >>> blds = BoxLabelDatastore(vehicles, stop_signs)
    >>> while blds.has_data():
    ...     for boxes, labels in blds.read():
    ...         ...
    >>> blds.count_each_label()
"""

from __future__ import annotations

import copy
import logging
from collections.abc import Callable, Sequence
from dataclasses import dataclass
from pathlib import Path
from typing import Any

import numpy as np
import pandas as pd
import yaml

from boxlabels.datasets.counting import count_each_label
from boxlabels.datasets.io import yaml_dump
from boxlabels.datasets.merge import unify_tables
from boxlabels.datasets.reader import InMemoryReader, ReadInfo, check_read_size
from boxlabels.preprocessing.tiling import (
    DEFAULT_OVERLAP_THRESHOLD,
    BlockCropper,
    BlockLocationSet,
    crop_to_blocks,
)
from boxlabels.vision.boxes import BoxFormat, box_format
from boxlabels.vision.types import LabelDataset, Row

LOG = logging.getLogger(__name__)

STATE_VERSION = 1


@dataclass(frozen=True, slots=True, kw_only=True)
class DatastoreConfig:
    """Datastore construction parameters.

    Attributes:
        read_size: Maximum number of rows returned by each `read`.
        overlap_threshold: Minimum fraction of a box area that must remain
            inside a block for the box to be kept when cropping to blocks.
    """

    read_size: int = 1
    overlap_threshold: float = DEFAULT_OVERLAP_THRESHOLD

    def __post_init__(self) -> None:
        check_read_size(self.read_size)
        if not 0.0 <= self.overlap_threshold <= 1.0:
            raise ValueError(
                f"overlap_threshold must be in [0, 1], got {self.overlap_threshold}."
            )


class BoxLabelDatastore:
    """Datastore of bounding boxes and their labels.

    Construction either fully succeeds or raises a `BoxLabelError`; the
    label data is immutable afterwards. Views returned by `partition`,
    `subset`, `shuffle` and `copy.copy` have independent read cursors.
    """

    def __init__(
        self,
        *tables: pd.DataFrame,
        block_set: BlockLocationSet | None = None,
        config: DatastoreConfig | None = None,
        cropper: BlockCropper | None = None,
    ) -> None:
        config = config or DatastoreConfig()
        dataset = unify_tables(tables)
        dataset = crop_to_blocks(
            dataset,
            block_set,
            overlap_threshold=config.overlap_threshold,
            cropper=cropper,
        )
        self._reader = InMemoryReader(dataset, read_size=config.read_size)
        LOG.info(
            "Created box label datastore: %d rows, %d classes, box format %s",
            len(dataset),
            len(dataset.categories),
            dataset.box_format.name,
        )

    @classmethod
    def _from_reader(cls, reader: InMemoryReader) -> BoxLabelDatastore:
        obj = cls.__new__(cls)
        obj._reader = reader
        return obj

    # ------------------------------------------------------------------
    # Properties
    # ------------------------------------------------------------------

    @property
    def dataset(self) -> LabelDataset:
        return self._reader.dataset

    @property
    def label_data(self) -> tuple[Row, ...]:
        """All `(boxes, labels)` rows of the datastore."""
        return self._reader.dataset.rows

    @property
    def categories(self) -> tuple[str, ...]:
        return self._reader.dataset.categories

    @property
    def box_format(self) -> BoxFormat:
        return self._reader.dataset.box_format

    @property
    def read_size(self) -> int:
        """Upper limit on the number of rows returned by `read`."""
        return self._reader.read_size

    @read_size.setter
    def read_size(self, value: int) -> None:
        self._reader.read_size = value

    @property
    def num_observations(self) -> int:
        return self._reader.num_observations

    def __len__(self) -> int:
        return self._reader.num_observations

    # ------------------------------------------------------------------
    # Reading
    # ------------------------------------------------------------------

    def read(self) -> list[Row]:
        """Read the next `read_size` rows; raises ValueError when exhausted."""
        return self._reader.read()

    def read_with_info(self) -> tuple[list[Row], ReadInfo]:
        return self._reader.read_with_info()

    def has_data(self) -> bool:
        return self._reader.has_data()

    def reset(self) -> None:
        self._reader.reset()

    def read_all(self) -> list[Row]:
        return self._reader.read_all()

    def preview(self) -> list[Row]:
        return self._reader.preview()

    def progress(self) -> float:
        return self._reader.progress()

    def to_frame(self) -> pd.DataFrame:
        """Label data as a two-column (`Boxes`, `Labels`) DataFrame."""
        return self._reader.dataset.to_frame()

    def count_each_label(self) -> pd.DataFrame:
        """Per-class `Label`, `Count` and `ImageCount` table."""
        return count_each_label(self._reader.dataset)

    # ------------------------------------------------------------------
    # Views
    # ------------------------------------------------------------------

    def __copy__(self) -> BoxLabelDatastore:
        return self._from_reader(self._reader.clone())

    def num_partitions(self, max_partitions: int | None = None) -> int:
        return self._reader.num_partitions(max_partitions)

    def partition(self, num_partitions: int, index: int) -> BoxLabelDatastore:
        """Return part `index` (0-based) of `num_partitions` contiguous parts."""
        return self._from_reader(self._reader.partition(num_partitions, index))

    def subset(self, indices: Sequence[int] | Sequence[bool] | np.ndarray) -> BoxLabelDatastore:
        """Return a datastore with the observations at `indices`."""
        return self._from_reader(self._reader.subset(indices))

    def shuffle(self, seed: int | np.random.Generator | None = None) -> BoxLabelDatastore:
        """Return a datastore with all observations in random order."""
        return self._from_reader(self._reader.shuffle(seed))

    def transform(self, fn: Callable[[list[Row]], Any]) -> TransformedDatastore:
        """Return a datastore whose reads are passed through `fn`."""
        return TransformedDatastore(copy.copy(self), fn)

    # ------------------------------------------------------------------
    # Persistence
    # ------------------------------------------------------------------

    def to_state(self) -> dict[str, Any]:
        """Plain-data snapshot of the label data and the read cursor."""
        dataset = self._reader.dataset
        return {
            "version": STATE_VERSION,
            "read_size": self._reader.read_size,
            "position": self._reader.position,
            "box_format": int(dataset.box_format),
            "categories": list(dataset.categories),
            "rows": [
                {
                    "boxes": row.boxes.tolist(),
                    "shape": list(row.boxes.shape),
                    "dtype": str(row.boxes.dtype),
                    "labels": [None if pd.isna(v) else str(v) for v in row.labels],
                }
                for row in dataset
            ],
        }

    @classmethod
    def from_state(cls, state: dict[str, Any]) -> BoxLabelDatastore:
        """Rebuild a datastore saved with `to_state`."""
        version = state.get("version")
        if version != STATE_VERSION:
            raise ValueError(f"Unsupported box label datastore state version: {version!r}")

        categories = [str(c) for c in state["categories"]]
        fmt = BoxFormat(int(state["box_format"]))
        rows: list[Row] = []
        for i, entry in enumerate(state["rows"]):
            boxes = np.asarray(entry["boxes"], dtype=entry["dtype"]).reshape(entry["shape"])
            if boxes.size and box_format(boxes) != fmt:
                raise ValueError(
                    f"Row {i} of the saved state holds {boxes.shape[1]}-column boxes, "
                    f"expected {int(fmt)}."
                )
            boxes.setflags(write=False)
            labels = pd.Categorical(entry["labels"], categories=categories)
            rows.append(Row(boxes=boxes, labels=labels))

        dataset = LabelDataset(
            rows=tuple(rows),
            categories=tuple(categories),
            box_format=fmt,
        )
        reader = InMemoryReader(dataset, read_size=int(state["read_size"]))
        reader.seek(int(state["position"]))
        return cls._from_reader(reader)

    def save(self, path: Path) -> Path:
        """Write the datastore state to a YAML file."""
        path = Path(path)
        path.parent.mkdir(parents=True, exist_ok=True)
        path.write_text(yaml_dump(self.to_state()), encoding="utf-8")
        LOG.info("Saved box label datastore (%d rows) to %s", len(self), path)
        return path

    @classmethod
    def load(cls, path: Path) -> BoxLabelDatastore:
        """Load a datastore written by `save`."""
        with Path(path).open("r", encoding="utf-8") as f:
            state = yaml.safe_load(f)
        if not isinstance(state, dict):
            raise ValueError(f"Unexpected datastore state in {path}: {type(state)!r}")
        return cls.from_state(state)


class TransformedDatastore:
    """Datastore view applying a function to every batch read."""

    def __init__(self, source: BoxLabelDatastore, fn: Callable[[list[Row]], Any]) -> None:
        self._source = source
        self._fn = fn

    @property
    def source(self) -> BoxLabelDatastore:
        return self._source

    def read(self) -> Any:
        return self._fn(self._source.read())

    def has_data(self) -> bool:
        return self._source.has_data()

    def reset(self) -> None:
        self._source.reset()

    def progress(self) -> float:
        return self._source.progress()

    def preview(self) -> Any:
        return self._fn(self._source.preview())

    def read_all(self) -> list[Any]:
        """Transformed batches of a full pass (this view's cursor is untouched)."""
        other = copy.copy(self._source)
        other.reset()
        out: list[Any] = []
        while other.has_data():
            out.append(self._fn(other.read()))
        return out

    def __copy__(self) -> TransformedDatastore:
        return TransformedDatastore(copy.copy(self._source), self._fn)
