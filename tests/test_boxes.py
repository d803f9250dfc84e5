import numpy as np
import pytest

from boxlabels.errors import InvalidBoxFormatError
from boxlabels.vision.boxes import (
    BoxFormat,
    as_box_matrix,
    box_format,
    common_format,
    is_empty_boxes,
    is_numeric_boxes,
)


@pytest.mark.parametrize(
    ("width", "expected"),
    [(4, BoxFormat.AXIS_ALIGNED), (5, BoxFormat.ROTATED), (9, BoxFormat.CUBOID)],
)
def test_box_format_from_width(width: int, expected: BoxFormat) -> None:
    assert box_format(np.ones((3, width))) is expected


def test_box_format_empty_is_wildcard() -> None:
    assert box_format(None) is BoxFormat.EMPTY
    assert box_format([]) is BoxFormat.EMPTY
    assert box_format(np.zeros((0, 4))) is BoxFormat.EMPTY
    assert box_format(np.zeros((0, 0))) is BoxFormat.EMPTY


def test_box_format_accepts_nested_lists_and_ints() -> None:
    assert box_format([[1, 2, 3, 4], [5, 6, 7, 8]]) is BoxFormat.AXIS_ALIGNED
    assert box_format(np.ones((1, 4), dtype=np.int32)) is BoxFormat.AXIS_ALIGNED


@pytest.mark.parametrize(
    "value",
    [
        np.ones((2, 3)),
        np.ones((2, 6)),
        np.ones(4),
        np.ones((2, 4, 1)),
        np.array([["a", "b", "c", "d"]]),
        np.ones((1, 4), dtype=bool),
        [[1, 2, 3, 4], [1, 2]],
        "1 2 3 4",
        {"x": 1},
    ],
)
def test_box_format_rejects_invalid(value: object) -> None:
    with pytest.raises(InvalidBoxFormatError):
        box_format(value)


def test_is_empty_and_numeric_probes() -> None:
    assert is_empty_boxes(None)
    assert is_empty_boxes([[]])
    assert not is_empty_boxes([[1, 2, 3, 4]])

    assert is_numeric_boxes(np.ones((1, 4)))
    assert is_numeric_boxes([])
    assert is_numeric_boxes(None)
    assert not is_numeric_boxes(["car"])


def test_as_box_matrix_is_read_only_copy() -> None:
    src = np.ones((2, 4))
    boxes = as_box_matrix(src)
    assert boxes.shape == (2, 4)
    assert not boxes.flags.writeable
    src[0, 0] = 5
    assert boxes[0, 0] == 1

    empty = as_box_matrix(None, BoxFormat.ROTATED)
    assert empty.shape == (0, 5)


def test_common_format() -> None:
    assert common_format([]) is BoxFormat.EMPTY
    assert common_format([BoxFormat.EMPTY, BoxFormat.EMPTY]) is BoxFormat.EMPTY
    assert common_format([BoxFormat.EMPTY, BoxFormat.CUBOID, BoxFormat.CUBOID]) is BoxFormat.CUBOID
    assert common_format([BoxFormat.AXIS_ALIGNED, BoxFormat.EMPTY, BoxFormat.CUBOID]) is None
