"""Ground truth table classification and per-table normalization.

Three table layouts are accepted:

    PER_CLASS          one column per object class, each cell an M-by-N box
                       matrix for that class (the column name is the label).
    BOXES_CATEGORICAL  two columns: box matrices, then categorical labels.
    BOXES_TEXT         two columns: box matrices, then lists of label strings.

Only the first row is inspected to pick a layout (an empty first box cell
lets the label cell decide); every row is validated during normalization.
"""

from __future__ import annotations

import logging
from collections.abc import Sequence
from dataclasses import dataclass
from enum import StrEnum
from itertools import chain
from typing import Any

import numpy as np
import pandas as pd

from boxlabels.errors import BoxLabelError, InvalidTableError, MixedBoxFormatsInTableError
from boxlabels.vision.boxes import (
    BoxFormat,
    as_box_matrix,
    box_format,
    common_format,
    is_empty_boxes,
    is_numeric_boxes,
)
from boxlabels.vision.labels import (
    LabelConvention,
    check_labels,
    is_categorical,
    is_text_labels,
    label_categories,
    to_categorical,
    unique_stable,
)
from boxlabels.vision.types import Row

LOG = logging.getLogger(__name__)


class TableShape(StrEnum):
    PER_CLASS = "per_class"
    BOXES_CATEGORICAL = "boxes_categorical"
    BOXES_TEXT = "boxes_text"

    @property
    def family(self) -> str:
        """Tables of the same family can be combined in one datastore."""
        return "per_class" if self is TableShape.PER_CLASS else "boxes_labels"


@dataclass(frozen=True)
class NormalizedTable:
    """One input table converted to canonical rows.

    Attributes:
        shape: Layout the table was classified as.
        rows: One canonical row per table row, labels over `categories`.
        categories: Table-local vocabulary in first-seen order.
        box_format: Box format shared by the table's non-empty rows.
    """

    shape: TableShape
    rows: tuple[Row, ...]
    categories: tuple[str, ...]
    box_format: BoxFormat


def classify_table(table: Any, table_index: int | None = None) -> TableShape:
    """Return the layout of `table` from its width and first row.

    Raises:
        InvalidTableError: If `table` is not a non-empty DataFrame.
    """
    if not isinstance(table, pd.DataFrame):
        raise InvalidTableError(
            f"Expected a pandas DataFrame, got {type(table).__name__}.",
            table_index=table_index,
        )
    if table.shape[0] == 0 or table.shape[1] == 0:
        raise InvalidTableError(
            "Table must have at least one row and one column.", table_index=table_index
        )

    shape = TableShape.PER_CLASS
    if table.shape[1] == 2 and is_numeric_boxes(table.iat[0, 0]):
        first_labels = table.iat[0, 1]
        if is_categorical(first_labels):
            shape = TableShape.BOXES_CATEGORICAL
        elif is_text_labels(first_labels):
            shape = TableShape.BOXES_TEXT
    LOG.debug("Table %s classified as %s", table_index, shape.value)
    return shape


def column_labels(table: pd.DataFrame) -> list[str]:
    """Class names of a per-class table (its column names as strings)."""
    return [str(c) for c in table.columns]


def _first_mismatch(formats: Sequence[BoxFormat]) -> int | None:
    """Index of the first non-empty format differing from the first non-empty one."""
    first = BoxFormat.EMPTY
    for i, fmt in enumerate(formats):
        if fmt == BoxFormat.EMPTY:
            continue
        if first == BoxFormat.EMPTY:
            first = fmt
        elif fmt != first:
            return i
    return None


def normalize_per_class_table(
    table: pd.DataFrame,
    categories: Sequence[str],
    table_index: int | None = None,
) -> NormalizedTable:
    """Merge the per-class box columns of `table` into canonical rows.

    Boxes of a row are concatenated in column order and labelled with the
    column name. `categories` is the vocabulary shared by every per-class
    table of the datastore.
    """
    names = column_labels(table)

    column_formats: list[BoxFormat] = []
    for j, name in enumerate(names):
        formats: list[BoxFormat] = []
        for i, cell in enumerate(table.iloc[:, j]):
            try:
                formats.append(box_format(cell))
            except BoxLabelError as exc:
                raise exc.with_context(table_index=table_index, row_index=i, column=name) from exc
        bad = _first_mismatch(formats)
        if bad is not None:
            raise MixedBoxFormatsInTableError(
                "Boxes in a column must all use the same format.",
                table_index=table_index,
                row_index=bad,
                column=name,
            )
        column_formats.append(common_format(formats) or BoxFormat.EMPTY)

    bad = _first_mismatch(column_formats)
    if bad is not None:
        raise MixedBoxFormatsInTableError(
            f"Columns use different box formats: {[int(f) for f in column_formats]}.",
            table_index=table_index,
            column=names[bad],
        )
    table_format = common_format(column_formats) or BoxFormat.EMPTY

    rows: list[Row] = []
    for values in table.itertuples(index=False, name=None):
        parts: list[np.ndarray] = []
        row_labels: list[str] = []
        for name, cell in zip(names, values, strict=True):
            if is_empty_boxes(cell):
                continue
            boxes = as_box_matrix(cell)
            parts.append(boxes)
            row_labels.extend([name] * boxes.shape[0])
        if parts:
            merged = np.vstack(parts)
            merged.setflags(write=False)
        else:
            merged = as_box_matrix(None, table_format)
        labels = pd.Categorical(row_labels, categories=list(categories))
        rows.append(Row(boxes=merged, labels=labels))

    return NormalizedTable(
        shape=TableShape.PER_CLASS,
        rows=tuple(rows),
        categories=tuple(categories),
        box_format=table_format,
    )


def normalize_box_label_table(
    table: pd.DataFrame,
    shape: TableShape,
    table_index: int | None = None,
) -> NormalizedTable:
    """Validate a two-column (boxes, labels) table and convert it to rows."""
    if shape is TableShape.PER_CLASS:
        raise ValueError("Per-class tables must use normalize_per_class_table.")
    convention = (
        LabelConvention.CATEGORICAL
        if shape is TableShape.BOXES_CATEGORICAL
        else LabelConvention.TEXT
    )
    box_cells = list(table.iloc[:, 0])
    label_cells = list(table.iloc[:, 1])

    formats: list[BoxFormat] = []
    for i, (boxes, labels) in enumerate(zip(box_cells, label_cells, strict=True)):
        try:
            formats.append(box_format(boxes))
            num_boxes = as_box_matrix(boxes).shape[0]
            check_labels(labels, num_boxes, convention)
        except BoxLabelError as exc:
            raise exc.with_context(table_index=table_index, row_index=i) from exc

    bad = _first_mismatch(formats)
    if bad is not None:
        raise MixedBoxFormatsInTableError(
            f"Rows use different box formats: {sorted({int(f) for f in formats if f})}.",
            table_index=table_index,
            row_index=bad,
        )
    table_format = common_format(formats) or BoxFormat.EMPTY

    categories = unique_stable(chain.from_iterable(label_categories(c) for c in label_cells))
    rows = tuple(
        Row(boxes=as_box_matrix(b, table_format), labels=to_categorical(lab, categories))
        for b, lab in zip(box_cells, label_cells, strict=True)
    )
    return NormalizedTable(
        shape=shape,
        rows=rows,
        categories=tuple(categories),
        box_format=table_format,
    )


def normalize_table(
    table: pd.DataFrame,
    shape: TableShape,
    table_index: int | None = None,
    class_names: Sequence[str] = (),
) -> NormalizedTable:
    """Dispatch `table` to the normalizer of its layout."""
    match shape:
        case TableShape.PER_CLASS:
            return normalize_per_class_table(
                table, class_names or column_labels(table), table_index
            )
        case TableShape.BOXES_CATEGORICAL | TableShape.BOXES_TEXT:
            return normalize_box_label_table(table, shape, table_index)
    raise ValueError(f"Unknown table shape: {shape!r}")
