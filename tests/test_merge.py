import numpy as np
import pandas as pd
import pytest

from boxlabels.datasets.io import cell_table
from boxlabels.datasets.merge import check_table_shapes, union_categories, unify_tables
from boxlabels.errors import (
    InvalidBoxFormatError,
    MixedBoxFormatsAcrossTablesError,
    MixedTableTypesError,
)
from boxlabels.vision.boxes import BoxFormat


def _boxes(n: int, width: int = 4) -> np.ndarray:
    return np.ones((n, width))


def _text_table(rows: list[list[str]], width: int = 4) -> pd.DataFrame:
    return cell_table(
        {
            "Boxes": [_boxes(len(labels), width) for labels in rows],
            "Labels": [list(labels) for labels in rows],
        }
    )


def _categorical_table(rows: list[list[str]], categories: list[str]) -> pd.DataFrame:
    return cell_table(
        {
            "Boxes": [_boxes(len(labels)) for labels in rows],
            "Labels": [pd.Categorical(labels, categories=categories) for labels in rows],
        }
    )


def test_unify_tables_no_tables_gives_empty_dataset() -> None:
    ds = unify_tables([])
    assert len(ds) == 0
    assert ds.categories == ()
    assert ds.box_format is BoxFormat.EMPTY


def test_unify_per_class_tables_union_of_column_names() -> None:
    vehicles = cell_table({"vehicle": [_boxes(1), _boxes(2)]})
    signs = cell_table({"stopSign": [_boxes(1)], "car": [_boxes(2)]})

    ds = unify_tables([vehicles, signs])

    assert ds.categories == ("vehicle", "stopSign", "car")
    assert len(ds) == 3
    assert [r.num_boxes for r in ds] == [1, 2, 3]
    assert list(ds[2].labels) == ["stopSign", "car", "car"]
    for row in ds:
        assert list(row.labels.categories) == ["vehicle", "stopSign", "car"]


def test_unify_keeps_first_table_order_and_appends_new_categories() -> None:
    first = _categorical_table([["van"], ["car"]], categories=["van", "car"])
    second = _categorical_table([["bus"]], categories=["car", "bus"])

    ds = unify_tables([first, second])

    assert ds.categories == ("van", "car", "bus")
    assert [list(r.labels) for r in ds] == [["van"], ["car"], ["bus"]]
    assert all(list(r.labels.categories) == ["van", "car", "bus"] for r in ds)


def test_unify_disjoint_vocabularies_do_not_merge() -> None:
    a = _text_table([["car", "van"], ["car"]])
    b = _text_table([["person"], ["bicycle", "dog"]])
    ds = unify_tables([a, b])
    assert len(ds.categories) == 2 + 3
    assert len(ds) == 4


def test_unify_allows_text_and_categorical_tables_together() -> None:
    text = _text_table([["car"]])
    categorical = _categorical_table([["van"]], categories=["van"])
    ds = unify_tables([text, categorical])
    assert ds.categories == ("car", "van")
    assert [list(r.labels) for r in ds] == [["car"], ["van"]]


def test_unify_rejects_mixed_table_families() -> None:
    per_class = cell_table({"car": [_boxes(1)]})
    text = _text_table([["car"]])
    with pytest.raises(MixedTableTypesError) as excinfo:
        unify_tables([per_class, text])
    assert excinfo.value.table_index == 1
    with pytest.raises(MixedTableTypesError):
        check_table_shapes([text, per_class])


@pytest.mark.parametrize("order", [(4, 9), (9, 4)])
def test_unify_rejects_mixed_box_formats_across_tables(order: tuple[int, int]) -> None:
    tables = [_text_table([["car"]], width=w) for w in order]
    with pytest.raises(MixedBoxFormatsAcrossTablesError) as excinfo:
        unify_tables(tables)
    assert excinfo.value.table_index == 1


def test_unify_ignores_empty_tables_when_checking_formats() -> None:
    empty = cell_table({"Boxes": [np.zeros((0, 0))], "Labels": [[]]})
    cuboids = _text_table([["car", "car"]], width=9)
    ds = unify_tables([empty, cuboids])
    assert ds.box_format is BoxFormat.CUBOID
    assert ds[0].boxes.shape == (0, 9)


def test_unify_wraps_row_errors_with_table_context() -> None:
    good = _text_table([["car"]])
    bad = cell_table({"Boxes": [_boxes(1), np.ones((1, 7))], "Labels": [["a"], ["b"]]})
    with pytest.raises(InvalidBoxFormatError) as excinfo:
        unify_tables([good, bad])
    assert (excinfo.value.table_index, excinfo.value.row_index) == (1, 1)


def test_union_categories() -> None:
    assert union_categories([["b", "a"], ["a", "c"], []]) == ["b", "a", "c"]
