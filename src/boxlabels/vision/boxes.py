"""Bounding box matrix validation.

A box matrix holds one box per row. Its width identifies the box format:

    4 -> axis-aligned rectangle  [x, y, width, height]
    5 -> rotated rectangle       [xctr, yctr, width, height, yaw]
    9 -> cuboid                  [xctr, yctr, zctr, xlen, ylen, zlen, xrot, yrot, zrot]

An empty matrix stands for "no boxes" and is compatible with every format.
"""

from __future__ import annotations

from collections.abc import Iterable
from enum import IntEnum
from typing import Any

import numpy as np

from boxlabels.errors import InvalidBoxFormatError


class BoxFormat(IntEnum):
    """Box format code; the value is the box matrix width (0 for empty)."""

    EMPTY = 0
    AXIS_ALIGNED = 4
    ROTATED = 5
    CUBOID = 9


_VALID_WIDTHS = frozenset({4, 5, 9})


def is_empty_boxes(value: Any) -> bool:
    """Return True for the "no boxes" sentinel (None or a zero-element array)."""
    if value is None:
        return True
    if isinstance(value, np.ndarray):
        return value.size == 0
    if isinstance(value, (list, tuple)):
        return len(value) == 0 or all(
            isinstance(v, (list, tuple, np.ndarray)) and len(v) == 0 for v in value
        )
    return False


def _to_array(value: Any) -> np.ndarray:
    if isinstance(value, np.ndarray):
        return value
    if isinstance(value, (list, tuple)):
        try:
            return np.asarray(value)
        except ValueError as exc:
            # Ragged nested lists.
            raise InvalidBoxFormatError(f"Boxes must form a rectangular matrix: {exc}") from exc
    raise InvalidBoxFormatError(
        f"Boxes must be a numeric M-by-4, M-by-5 or M-by-9 matrix, got {type(value).__name__}."
    )


def is_numeric_boxes(value: Any) -> bool:
    """Cheap type probe used by the table classifier (no width check).

    Empty values, None included, count as numeric boxes.
    """
    if is_empty_boxes(value):
        return value is None or isinstance(value, (np.ndarray, list, tuple))
    try:
        arr = _to_array(value)
    except InvalidBoxFormatError:
        return False
    return _is_numeric_dtype(arr.dtype)


def _is_numeric_dtype(dtype: np.dtype) -> bool:
    return np.issubdtype(dtype, np.number) and not np.issubdtype(dtype, np.complexfloating)


def box_format(value: Any) -> BoxFormat:
    """Validate a box matrix and return its format.

    Raises:
        InvalidBoxFormatError: If the value is not numeric, not 2-D, or its
            width is not one of 4, 5 or 9.
    """
    if is_empty_boxes(value):
        return BoxFormat.EMPTY

    arr = _to_array(value)
    if not _is_numeric_dtype(arr.dtype):
        raise InvalidBoxFormatError(f"Boxes must be numeric, got dtype {arr.dtype}.")
    if arr.ndim != 2:
        raise InvalidBoxFormatError(f"Boxes must be a 2-D matrix, got {arr.ndim}-D.")
    width = arr.shape[1]
    if width not in _VALID_WIDTHS:
        raise InvalidBoxFormatError(
            f"Boxes must have 4, 5 or 9 columns, got {width}."
        )
    return BoxFormat(width)


def as_box_matrix(value: Any, fmt: BoxFormat = BoxFormat.EMPTY) -> np.ndarray:
    """Return a read-only copy of a valid box matrix.

    Empty values become a (0, fmt) matrix, or (0, 0) when the format is
    not known yet.
    """
    if is_empty_boxes(value):
        dtype: Any = np.float64
        if isinstance(value, np.ndarray) and _is_numeric_dtype(value.dtype):
            dtype = value.dtype
        arr = np.zeros((0, int(fmt)), dtype=dtype)
    else:
        box_format(value)
        arr = np.array(_to_array(value), copy=True)
    arr.setflags(write=False)
    return arr


def common_format(formats: Iterable[BoxFormat]) -> BoxFormat | None:
    """Return the single non-empty format in `formats`.

    Returns:
        `BoxFormat.EMPTY` when every format is empty, the shared format when
        all non-empty formats agree, or None when they disagree.
    """
    found = BoxFormat.EMPTY
    for fmt in formats:
        if fmt == BoxFormat.EMPTY:
            continue
        if found == BoxFormat.EMPTY:
            found = fmt
        elif fmt != found:
            return None
    return found
