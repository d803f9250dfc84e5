"""Unify several ground truth tables into one canonical label dataset."""

from __future__ import annotations

import logging
from collections.abc import Sequence

import pandas as pd

from boxlabels.datasets.tables import (
    NormalizedTable,
    TableShape,
    classify_table,
    column_labels,
    normalize_table,
)
from boxlabels.errors import MixedBoxFormatsAcrossTablesError, MixedTableTypesError
from boxlabels.vision.boxes import BoxFormat, as_box_matrix, common_format
from boxlabels.vision.labels import to_categorical, unique_stable
from boxlabels.vision.types import LabelDataset, Row

LOG = logging.getLogger(__name__)


def check_table_shapes(tables: Sequence[pd.DataFrame]) -> list[TableShape]:
    """Classify every table and make sure they can be combined.

    Raises:
        MixedTableTypesError: If per-class tables are mixed with
            (boxes, labels) tables.
    """
    shapes = [classify_table(t, table_index=i) for i, t in enumerate(tables)]
    first = shapes[0].family
    for i, shape in enumerate(shapes):
        if shape.family != first:
            raise MixedTableTypesError(
                f"A {shape.value} table cannot be combined with a {shapes[0].value} table. "
                "Use either per-class box columns or (boxes, labels) columns for all tables.",
                table_index=i,
            )
    return shapes


def union_categories(vocabularies: Sequence[Sequence[str]]) -> list[str]:
    """Union of vocabularies; the first one keeps its order, new names are appended."""
    return unique_stable(name for vocab in vocabularies for name in vocab)


def _conform_rows(
    table: NormalizedTable,
    categories: Sequence[str],
    fmt: BoxFormat,
) -> list[Row]:
    """Recode labels and reshape empty boxes only where the table differs."""
    recode = list(table.categories) != list(categories)
    reshape_empty = table.box_format != fmt
    if not recode and not reshape_empty:
        return list(table.rows)

    rows: list[Row] = []
    for row in table.rows:
        boxes = row.boxes
        if reshape_empty and row.num_boxes == 0:
            boxes = as_box_matrix(None, fmt)
        labels = to_categorical(row.labels, categories) if recode else row.labels
        rows.append(Row(boxes=boxes, labels=labels))
    return rows


def unify_tables(tables: Sequence[pd.DataFrame]) -> LabelDataset:
    """Validate, normalize and concatenate ground truth tables.

    Rows are concatenated table by table in input order. The vocabulary is
    the union of the table vocabularies in first-seen order, and every
    non-empty box matrix must share one box format.

    Raises:
        BoxLabelError: Any validation error, with table/row context.
    """
    if not tables:
        return LabelDataset()

    shapes = check_table_shapes(tables)

    class_names: list[str] = []
    if shapes[0] is TableShape.PER_CLASS:
        class_names = unique_stable(name for t in tables for name in column_labels(t))

    normalized = [
        normalize_table(t, shape, table_index=i, class_names=class_names)
        for i, (t, shape) in enumerate(zip(tables, shapes, strict=True))
    ]

    fmt = common_format(n.box_format for n in normalized)
    if fmt is None:
        expected = next(n.box_format for n in normalized if n.box_format)
        bad = next(
            i for i, n in enumerate(normalized) if n.box_format and n.box_format != expected
        )
        raise MixedBoxFormatsAcrossTablesError(
            f"Expected {int(expected)}-column boxes like the previous tables, "
            f"got {int(normalized[bad].box_format)}-column boxes.",
            table_index=bad,
        )

    categories = union_categories([n.categories for n in normalized])
    rows: list[Row] = []
    for n in normalized:
        rows.extend(_conform_rows(n, categories, fmt))

    LOG.debug(
        "Unified %d table(s) of %s layout: %d rows, %d categories, %d-column boxes",
        len(tables),
        shapes[0].family,
        len(rows),
        len(categories),
        int(fmt),
    )
    return LabelDataset(rows=tuple(rows), categories=tuple(categories), box_format=fmt)
