"""Block set cropping of box label data.

A block set describes tiles cut out of (possibly very large) images: each
block has an origin `[x, y]` in its image, a size `[width, height]`, and
the 0-based index of the image (label data row) it comes from. Cropping
turns the per-image label data into per-block label data.
"""

from __future__ import annotations

import logging
from collections.abc import Callable
from typing import Any

import numpy as np
import pandas as pd
import shapely
from pydantic import BaseModel, ConfigDict, Field, NonNegativeInt, field_validator, model_validator

from boxlabels.errors import (
    InvalidLabelTypeError,
    TileImageIndexOutOfRangeError,
    UnsupportedGeometryForTilingError,
)
from boxlabels.vision.boxes import BoxFormat, as_box_matrix, box_format
from boxlabels.vision.labels import to_categorical
from boxlabels.vision.types import LabelDataset, Row

LOG = logging.getLogger(__name__)

DEFAULT_OVERLAP_THRESHOLD = 0.1


def _to_list(v: Any) -> Any:
    if isinstance(v, np.ndarray):
        return v.tolist()
    return v


class BlockLocationSet(BaseModel):
    """Block locations over the rows of a label dataset.

    Attributes:
        image_number: 0-based label data row each block is cut from.
        block_origin: `[x, y]` of each block in its image.
        block_size: `[width, height]` shared by all blocks, or one per block.
    """

    model_config = ConfigDict(extra="forbid", frozen=True)

    image_number: list[NonNegativeInt] = Field(default_factory=list)
    block_origin: list[tuple[float, float]] = Field(default_factory=list)
    block_size: list[tuple[float, float]] = Field(default_factory=list)

    @field_validator("image_number", "block_origin", mode="before")
    @classmethod
    def _coerce_arrays(cls, v: Any) -> Any:
        return _to_list(v)

    @field_validator("block_size", mode="before")
    @classmethod
    def _coerce_block_size(cls, v: Any) -> Any:
        v = _to_list(v)
        # A single [w, h] pair applies to every block.
        if isinstance(v, (list, tuple)) and len(v) == 2 and all(
            isinstance(x, (int, float)) for x in v
        ):
            return [tuple(v)]
        return v

    @model_validator(mode="after")
    def _validate_lengths(self) -> BlockLocationSet:
        n = len(self.block_origin)
        if len(self.image_number) != n:
            raise ValueError(
                f"image_number has {len(self.image_number)} entries, block_origin has {n}."
            )
        if n and len(self.block_size) not in (1, n):
            raise ValueError(
                f"block_size must hold one [width, height] pair or {n} pairs, "
                f"got {len(self.block_size)}."
            )
        if any(w <= 0 or h <= 0 for w, h in self.block_size):
            raise ValueError("Block width and height must be positive.")
        return self

    def __len__(self) -> int:
        return len(self.block_origin)

    @property
    def is_empty(self) -> bool:
        return len(self.block_origin) == 0

    def sizes(self) -> list[tuple[float, float]]:
        """Per-block `(width, height)`."""
        if len(self.block_size) == 1:
            return self.block_size * len(self)
        return list(self.block_size)


BlockCropper = Callable[[LabelDataset, BlockLocationSet, float], list[Row]]


def crop_boxes(
    boxes: np.ndarray,
    origin: tuple[float, float],
    size: tuple[float, float],
    overlap_threshold: float,
) -> tuple[np.ndarray, np.ndarray]:
    """Clip `[x, y, w, h]` boxes to one block.

    Returns:
        (cropped_boxes, keep) where `cropped_boxes` are in block coordinates
        and `keep` is the boolean mask of input boxes that were retained.
    """
    if boxes.shape[0] == 0:
        return np.zeros((0, 4)), np.zeros(0, dtype=bool)

    xy = boxes[:, :2].astype(np.float64)
    wh = boxes[:, 2:4].astype(np.float64)
    rects = shapely.box(xy[:, 0], xy[:, 1], xy[:, 0] + wh[:, 0], xy[:, 1] + wh[:, 1])
    ox, oy = origin
    bw, bh = size
    block = shapely.box(ox, oy, ox + bw, oy + bh)

    clipped = shapely.intersection(rects, block)
    area = shapely.area(rects)
    clipped_area = shapely.area(clipped)
    with np.errstate(divide="ignore", invalid="ignore"):
        frac = np.where(area > 0, clipped_area / area, 0.0)
    keep = (clipped_area > 0) & (frac >= overlap_threshold)

    if not keep.any():
        return np.zeros((0, 4)), keep
    bounds = shapely.bounds(clipped[keep])
    cropped = np.column_stack(
        [
            bounds[:, 0] - ox,
            bounds[:, 1] - oy,
            bounds[:, 2] - bounds[:, 0],
            bounds[:, 3] - bounds[:, 1],
        ]
    )
    return cropped, keep


def crop_rows_to_blocks(
    dataset: LabelDataset,
    block_set: BlockLocationSet,
    overlap_threshold: float,
) -> list[Row]:
    """Default cropper: one output row per block."""
    rows: list[Row] = []
    for image_number, origin, size in zip(
        block_set.image_number, block_set.block_origin, block_set.sizes(), strict=True
    ):
        src = dataset[image_number]
        cropped, keep = crop_boxes(src.boxes, origin, size, overlap_threshold)
        boxes = as_box_matrix(cropped, BoxFormat.AXIS_ALIGNED)
        labels = pd.Categorical(
            np.asarray(src.labels, dtype=object)[keep] if keep.size else [],
            categories=list(dataset.categories),
        )
        rows.append(Row(boxes=boxes, labels=labels))
    return rows


def check_block_set(dataset: LabelDataset, block_set: BlockLocationSet) -> None:
    """Validate `block_set` against the label data it will crop.

    Raises:
        TileImageIndexOutOfRangeError: If a block refers to a missing row.
        UnsupportedGeometryForTilingError: If the boxes are not axis-aligned.
    """
    n = len(dataset)
    if block_set.image_number and max(block_set.image_number) >= n:
        raise TileImageIndexOutOfRangeError(
            f"Block set image numbers must be less than the number of label data rows ({n}), "
            f"got {max(block_set.image_number)}."
        )
    if dataset.box_format not in (BoxFormat.EMPTY, BoxFormat.AXIS_ALIGNED):
        raise UnsupportedGeometryForTilingError(
            "Block set cropping only supports axis-aligned [x, y, width, height] boxes, "
            f"got {int(dataset.box_format)}-column boxes."
        )


def _conform_block_row(row: Row, categories: tuple[str, ...], index: int) -> Row:
    """Make a cropper row axis-aligned, read-only and categorical over `categories`."""
    fmt = box_format(row.boxes)
    if fmt not in (BoxFormat.EMPTY, BoxFormat.AXIS_ALIGNED):
        raise UnsupportedGeometryForTilingError(
            f"Cropped blocks must hold axis-aligned boxes, got {int(fmt)}-column boxes.",
            row_index=index,
        )

    labels = row.labels
    if list(labels.categories) != list(categories):
        unknown = sorted({str(v) for v in labels if not pd.isna(v)} - set(categories))
        if unknown:
            raise InvalidLabelTypeError(
                f"Cropped labels are not in the datastore categories: {unknown}.",
                row_index=index,
            )
        labels = to_categorical(labels, categories)

    boxes = row.boxes
    if boxes.flags.writeable or boxes.shape[1:] != (4,):
        boxes = as_box_matrix(boxes, BoxFormat.AXIS_ALIGNED)
    if labels is row.labels and boxes is row.boxes:
        return row
    return Row(boxes=boxes, labels=labels)


def crop_to_blocks(
    dataset: LabelDataset,
    block_set: BlockLocationSet | None,
    *,
    overlap_threshold: float = DEFAULT_OVERLAP_THRESHOLD,
    cropper: BlockCropper | None = None,
) -> LabelDataset:
    """Crop `dataset` to the blocks of `block_set` (no-op without blocks).

    Boxes whose retained area fraction inside a block is below
    `overlap_threshold` are dropped from that block.
    """
    if block_set is None or block_set.is_empty:
        return dataset
    check_block_set(dataset, block_set)

    cropper = cropper or crop_rows_to_blocks
    rows = [
        _conform_block_row(row, dataset.categories, i)
        for i, row in enumerate(cropper(dataset, block_set, overlap_threshold))
    ]
    LOG.info(
        "Cropped %d label rows into %d blocks (overlap threshold %.2f)",
        len(dataset),
        len(rows),
        overlap_threshold,
    )
    return LabelDataset(
        rows=tuple(rows),
        categories=dataset.categories,
        box_format=dataset.box_format,
    )
