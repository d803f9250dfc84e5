import copy
import pickle
from pathlib import Path

import numpy as np
import pandas as pd
import pytest

from boxlabels.datasets.datastore import BoxLabelDatastore, DatastoreConfig
from boxlabels.datasets.io import cell_table
from boxlabels.errors import (
    MixedBoxFormatsAcrossTablesError,
    TileImageIndexOutOfRangeError,
    UnsupportedGeometryForTilingError,
)
from boxlabels.preprocessing.tiling import BlockLocationSet
from boxlabels.vision.boxes import BoxFormat


def _vehicles(n: int = 5) -> pd.DataFrame:
    return cell_table(
        {
            "Boxes": [np.full((i % 3 + 1, 4), float(i)) for i in range(n)],
            "Labels": [["car"] * (i % 3 + 1) for i in range(n)],
        }
    )


def _assert_same_rows(a: BoxLabelDatastore, b: BoxLabelDatastore) -> None:
    assert len(a) == len(b)
    for ra, rb in zip(a.label_data, b.label_data, strict=True):
        assert ra.equals(rb)


def test_empty_datastore() -> None:
    blds = BoxLabelDatastore()
    assert len(blds) == 0
    assert not blds.has_data()
    assert blds.preview() == []
    assert blds.read_all() == []
    assert blds.progress() == 1.0
    assert len(blds.count_each_label()) == 0
    with pytest.raises(ValueError):
        blds.read()


def test_read_in_batches_until_exhausted() -> None:
    blds = BoxLabelDatastore(_vehicles(5), config=DatastoreConfig(read_size=2))
    assert blds.read_size == 2

    sizes = []
    while blds.has_data():
        rows = blds.read()
        sizes.append(len(rows))
    assert sizes == [2, 2, 1]
    assert blds.progress() == 1.0
    with pytest.raises(ValueError):
        blds.read()

    blds.reset()
    assert blds.progress() == 0.0
    rows, info = blds.read_with_info()
    assert (info.current_index, info.read_size) == (0, 2)
    boxes, labels = rows[0]
    assert boxes.shape == (1, 4)
    assert list(labels) == ["car"]
    assert blds.progress() == pytest.approx(0.4)


def test_read_size_validation() -> None:
    blds = BoxLabelDatastore(_vehicles(2))
    blds.read_size = 3
    assert blds.read_size == 3
    with pytest.raises(ValueError):
        blds.read_size = 0
    with pytest.raises(TypeError):
        blds.read_size = 1.5  # type: ignore[assignment]
    with pytest.raises(ValueError):
        DatastoreConfig(overlap_threshold=1.5)


def test_preview_and_read_all_do_not_move_cursor() -> None:
    blds = BoxLabelDatastore(_vehicles(3))
    blds.read()
    assert len(blds.preview()) == 1
    assert blds.preview()[0] is blds.label_data[0]
    assert len(blds.read_all()) == 3
    assert blds.progress() == pytest.approx(1 / 3)


def test_label_data_is_read_only() -> None:
    blds = BoxLabelDatastore(_vehicles(2))
    with pytest.raises(ValueError):
        blds.label_data[0].boxes[0, 0] = 99.0
    frame = blds.to_frame()
    assert list(frame.columns) == ["Boxes", "Labels"]
    assert len(frame) == 2


def test_partition_and_subset_views_are_independent() -> None:
    blds = BoxLabelDatastore(_vehicles(5))
    parts = [blds.partition(2, i) for i in range(2)]
    assert [len(p) for p in parts] == [2, 3]
    assert parts[1].label_data[0] is blds.label_data[2]
    assert blds.num_partitions() == 5
    assert blds.num_partitions(3) == 3

    parts[0].read()
    assert parts[0].progress() == 0.5
    assert parts[1].progress() == 0.0
    assert blds.progress() == 0.0

    sub = blds.subset([4, 0, 0])
    assert len(sub) == 3
    assert sub.label_data[0] is blds.label_data[4]
    assert sub.categories == blds.categories

    mask = blds.subset(np.array([True, False, True, False, False]))
    assert len(mask) == 2

    with pytest.raises(IndexError):
        blds.subset([5])
    with pytest.raises(IndexError):
        blds.partition(2, 2)
    with pytest.raises(ValueError):
        blds.partition(0, 0)


def test_copy_deep_copies_cursor_only() -> None:
    blds = BoxLabelDatastore(_vehicles(4))
    blds.read()
    dup = copy.copy(blds)
    assert dup.label_data is blds.label_data
    assert dup.progress() == blds.progress()

    dup.read()
    dup.read_size = 3
    assert blds.progress() == 0.25
    assert blds.read_size == 1


def test_shuffle_is_a_permutation() -> None:
    blds = BoxLabelDatastore(_vehicles(6))
    shuffled = blds.shuffle(seed=0)
    assert len(shuffled) == 6
    ids = sorted(id(r) for r in shuffled.label_data)
    assert ids == sorted(id(r) for r in blds.label_data)
    again = blds.shuffle(seed=0)
    assert [id(r) for r in again.label_data] == [id(r) for r in shuffled.label_data]


def test_transform_applies_function_per_batch() -> None:
    blds = BoxLabelDatastore(_vehicles(3), config=DatastoreConfig(read_size=2))
    counted = blds.transform(lambda rows: sum(r.num_boxes for r in rows))
    assert counted.read() == 1 + 2
    assert counted.read_all() == [3, 3]
    assert counted.read() == 3
    assert not counted.has_data()
    counted.reset()
    assert counted.has_data()
    assert blds.progress() == 0.0


def test_count_each_label_example() -> None:
    table = cell_table(
        {
            "Boxes": [np.ones((2, 4)), np.ones((1, 4))],
            "Labels": [["car", "car"], ["van"]],
        }
    )
    tbl = BoxLabelDatastore(table).count_each_label()
    assert list(tbl["Label"]) == ["car", "van"]
    assert tbl["Count"].tolist() == [2, 1]
    assert tbl["ImageCount"].tolist() == [1, 1]


def test_construction_errors_leave_no_datastore() -> None:
    cuboids = cell_table({"Boxes": [np.ones((1, 9))], "Labels": [["car"]]})
    with pytest.raises(MixedBoxFormatsAcrossTablesError):
        BoxLabelDatastore(_vehicles(2), cuboids)


def test_block_set_cropping() -> None:
    table = cell_table(
        {
            "Boxes": [np.array([[10.0, 10.0, 20.0, 20.0], [70.0, 70.0, 20.0, 20.0]])],
            "Labels": [["car", "van"]],
        }
    )
    bset = BlockLocationSet(
        image_number=[0, 0],
        block_origin=[[0, 0], [50, 50]],
        block_size=[50, 50],
    )
    blds = BoxLabelDatastore(table, block_set=bset)
    assert len(blds) == 2
    assert [list(r.labels) for r in blds.label_data] == [["car"], ["van"]]
    np.testing.assert_allclose(blds.label_data[1].boxes, [[20, 20, 20, 20]])

    with pytest.raises(TileImageIndexOutOfRangeError):
        BoxLabelDatastore(
            table,
            block_set=BlockLocationSet(
                image_number=[1], block_origin=[[0, 0]], block_size=[50, 50]
            ),
        )

    rotated = cell_table({"Boxes": [np.ones((1, 5))], "Labels": [["car"]]})
    with pytest.raises(UnsupportedGeometryForTilingError):
        BoxLabelDatastore(rotated, block_set=bset)


def test_state_round_trip(tmp_path: Path) -> None:
    table = cell_table(
        {
            "Boxes": [np.ones((2, 4), dtype=np.int32), np.zeros((0, 4)), np.full((1, 4), 0.1)],
            "Labels": [
                pd.Categorical(["car", "van"], categories=["car", "van", "bus"]),
                pd.Categorical([], categories=["car", "van", "bus"]),
                pd.Categorical(["van"], categories=["car", "van", "bus"]),
            ],
        }
    )
    blds = BoxLabelDatastore(table, config=DatastoreConfig(read_size=2))
    blds.read()

    path = blds.save(tmp_path / "state" / "blds.yaml")
    loaded = BoxLabelDatastore.load(path)

    _assert_same_rows(blds, loaded)
    assert loaded.categories == ("car", "van", "bus")
    assert loaded.box_format is BoxFormat.AXIS_ALIGNED
    assert loaded.read_size == 2
    assert loaded.progress() == blds.progress()
    assert loaded.label_data[0].boxes.dtype == blds.label_data[0].boxes.dtype

    state = blds.to_state()
    state["version"] = 99
    with pytest.raises(ValueError):
        BoxLabelDatastore.from_state(state)

    state = blds.to_state()
    state["box_format"] = 9
    with pytest.raises(ValueError):
        BoxLabelDatastore.from_state(state)


def test_pickle_round_trip() -> None:
    blds = BoxLabelDatastore(_vehicles(3))
    blds.read()
    restored = pickle.loads(pickle.dumps(blds))
    _assert_same_rows(blds, restored)
    assert restored.progress() == blds.progress()
    assert not any(r.boxes.flags.writeable for r in restored.label_data)
    with pytest.raises(ValueError):
        restored.label_data[0].boxes[0, 0] = 99.0


def test_first_row_without_boxes() -> None:
    table = cell_table({"Boxes": [None, np.ones((1, 4))], "Labels": [[], ["car"]]})
    blds = BoxLabelDatastore(table)
    assert len(blds) == 2
    assert blds.categories == ("car",)
    assert blds.label_data[0].boxes.shape == (0, 4)
    assert blds.count_each_label()["Count"].tolist() == [1]
