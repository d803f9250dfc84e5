"""Label vector validation and conversion to categoricals."""

from __future__ import annotations

from collections.abc import Iterable, Sequence
from enum import StrEnum
from typing import Any

import numpy as np
import pandas as pd

from boxlabels.errors import InvalidLabelTypeError, LabelCountMismatchError


class LabelConvention(StrEnum):
    """How the labels of a two-column table are stored."""

    CATEGORICAL = "categorical"
    TEXT = "text"


def is_categorical(value: Any) -> bool:
    """Return True for a pandas Categorical or a Series with category dtype."""
    if isinstance(value, pd.Categorical):
        return True
    return isinstance(value, pd.Series) and isinstance(value.dtype, pd.CategoricalDtype)


def _as_categorical(value: Any) -> pd.Categorical:
    if isinstance(value, pd.Series):
        return value.array  # type: ignore[return-value]
    return value


def is_text_labels(value: Any) -> bool:
    """Return True when `value` looks like a sequence of label strings."""
    if isinstance(value, str) or is_categorical(value):
        return False
    if isinstance(value, np.ndarray):
        if value.dtype.kind == "U":
            return True
        return value.dtype == object and all(isinstance(v, str) for v in value.ravel())
    if isinstance(value, (list, tuple, pd.Series)):
        return all(isinstance(v, str) for v in value)
    return False


def _text_values(value: Any) -> list[str]:
    if isinstance(value, np.ndarray):
        if value.ndim == 2 and value.shape[1] == 1:
            value = value[:, 0]
        if value.ndim != 1:
            raise InvalidLabelTypeError(
                f"Text labels must be a vector, got a {value.ndim}-D array."
            )
        values = value.tolist()
    elif isinstance(value, pd.Series):
        values = value.tolist()
    elif isinstance(value, (list, tuple)):
        values = list(value)
    else:
        raise InvalidLabelTypeError(
            f"Labels must be a sequence of strings, got {type(value).__name__}."
        )
    if not all(isinstance(v, str) for v in values):
        raise InvalidLabelTypeError("Every text label must be a string.")
    return values


def label_count(value: Any) -> int:
    """Number of labels in a label cell; None counts as zero."""
    if value is None:
        return 0
    if isinstance(value, str):
        return 1
    if isinstance(value, np.ndarray):
        return int(value.shape[0]) if value.ndim else 1
    try:
        return len(value)
    except TypeError:
        return 1


def check_labels(
    labels: Any,
    num_boxes: int,
    convention: LabelConvention,
    row_index: int | None = None,
) -> None:
    """Validate the labels of one row against its number of boxes.

    Raises:
        LabelCountMismatchError: If the number of labels differs from `num_boxes`.
        InvalidLabelTypeError: If the labels do not follow `convention`.
    """
    n = label_count(labels)
    if n != num_boxes:
        raise LabelCountMismatchError(
            f"Expected {num_boxes} labels to match the boxes, got {n}.",
            row_index=row_index,
        )
    if num_boxes == 0:
        # Any empty container is accepted for a row without boxes.
        return

    if convention is LabelConvention.CATEGORICAL:
        if not is_categorical(labels):
            raise InvalidLabelTypeError(
                f"Labels must be categorical, got {type(labels).__name__}.",
                row_index=row_index,
            )
        return

    try:
        values = _text_values(labels)
    except InvalidLabelTypeError as exc:
        raise exc.with_context(row_index=row_index) from exc
    if len(values) != num_boxes:
        raise InvalidLabelTypeError(
            "Text labels must be a single column of strings.", row_index=row_index
        )


def label_categories(labels: Any) -> list[str]:
    """Categories carried by a label cell (declared categories for categoricals,
    first-seen distinct values for text)."""
    if labels is None or label_count(labels) == 0:
        if is_categorical(labels):
            return [str(c) for c in _as_categorical(labels).categories]
        return []
    if is_categorical(labels):
        return [str(c) for c in _as_categorical(labels).categories]
    return unique_stable(_text_values(labels))


def to_categorical(labels: Any, categories: Sequence[str]) -> pd.Categorical:
    """Convert a validated label cell to a Categorical over `categories`.

    Categoricals that already use exactly `categories` are copied as is;
    others are recoded.
    """
    if labels is None or (label_count(labels) == 0 and not is_categorical(labels)):
        return pd.Categorical([], categories=list(categories))
    if is_categorical(labels):
        cat = _as_categorical(labels)
        if list(cat.categories) == list(categories) and not cat.ordered:
            return cat.copy()
        values = [None if pd.isna(v) else str(v) for v in np.asarray(cat, dtype=object)]
        return pd.Categorical(values, categories=list(categories))
    return pd.Categorical(_text_values(labels), categories=list(categories))


def unique_stable(values: Iterable[str]) -> list[str]:
    """Distinct values in first-seen order."""
    return list(dict.fromkeys(values))
