"""Annotation input adapters.

`cell_table` builds the DataFrames the datastore expects (one Python object
per cell). `load_annotations` reads a YAML annotation file:

    tables:
      - format: per_class            # one key per class, boxes as lists
        rows:
          - vehicle: [[10, 20, 30, 40]]
            stop_sign: []
      - format: boxes_labels         # boxes + labels per row
        categories: [car, van]       # optional: categorical labels
        rows:
          - boxes: [[1, 2, 3, 4], [5, 6, 7, 8]]
            labels: [car, van]
    block_set:                       # optional
      image_number: [0, 0]
      block_origin: [[0, 0], [256, 0]]
      block_size: [256, 256]
"""

from __future__ import annotations

import logging
from collections.abc import Mapping, Sequence
from pathlib import Path
from typing import Annotated, Any, Literal

import numpy as np
import pandas as pd
import yaml
from pydantic import BaseModel, ConfigDict, Field, model_validator

from boxlabels.preprocessing.tiling import BlockLocationSet
from boxlabels.vision.labels import unique_stable

LOG = logging.getLogger(__name__)


def yaml_dump(data: object) -> str:
    dumped = yaml.safe_dump(data, sort_keys=False)
    if dumped is None:
        return ""
    if isinstance(dumped, bytes):
        return dumped.decode("utf-8")
    return dumped


def object_column(values: Sequence[Any]) -> np.ndarray:
    """1-D object array holding `values` as-is (no broadcasting of nested arrays)."""
    out = np.empty(len(values), dtype=object)
    for i, v in enumerate(values):
        out[i] = v
    return out


def cell_table(columns: Mapping[str, Sequence[Any]]) -> pd.DataFrame:
    """Build a DataFrame whose cells are arbitrary objects (box matrices, label vectors)."""
    return pd.DataFrame({name: object_column(list(values)) for name, values in columns.items()})


class _BoxLabelRow(BaseModel):
    model_config = ConfigDict(extra="forbid")

    boxes: list[list[float]] = Field(default_factory=list)
    labels: list[str] = Field(default_factory=list)


class PerClassTableSpec(BaseModel):
    """Table with one box column per class."""

    model_config = ConfigDict(extra="forbid")

    format: Literal["per_class"]
    rows: list[dict[str, list[list[float]]]] = Field(min_length=1)

    def to_frame(self) -> pd.DataFrame:
        names = unique_stable(name for row in self.rows for name in row)
        return cell_table(
            {
                name: [np.array(row.get(name, []), dtype=np.float64) for row in self.rows]
                for name in names
            }
        )


class BoxLabelTableSpec(BaseModel):
    """Table with a boxes column and a labels column."""

    model_config = ConfigDict(extra="forbid")

    format: Literal["boxes_labels"]
    categories: list[str] | None = None
    rows: list[_BoxLabelRow] = Field(min_length=1)

    @model_validator(mode="after")
    def _labels_in_categories(self) -> BoxLabelTableSpec:
        if self.categories is None:
            return self
        known = set(self.categories)
        for i, row in enumerate(self.rows):
            unknown = sorted(set(row.labels) - known)
            if unknown:
                raise ValueError(f"Row {i} uses labels missing from categories: {unknown}")
        return self

    def to_frame(self) -> pd.DataFrame:
        labels: list[Any]
        if self.categories is None:
            labels = [list(r.labels) for r in self.rows]
        else:
            labels = [pd.Categorical(r.labels, categories=self.categories) for r in self.rows]
        return cell_table(
            {
                "Boxes": [np.array(r.boxes, dtype=np.float64) for r in self.rows],
                "Labels": labels,
            }
        )


TableSpec = Annotated[PerClassTableSpec | BoxLabelTableSpec, Field(discriminator="format")]


class AnnotationsSpec(BaseModel):
    """Top-level YAML annotation document."""

    model_config = ConfigDict(extra="forbid")

    tables: list[TableSpec] = Field(min_length=1)
    block_set: BlockLocationSet | None = None


def load_annotations(path: Path) -> tuple[list[pd.DataFrame], BlockLocationSet | None]:
    """Load ground truth tables (and an optional block set) from a YAML file.

    Raises:
        FileNotFoundError: If `path` does not exist.
        pydantic.ValidationError: If the document does not match the schema.
    """
    path = Path(path)
    if not path.is_file():
        raise FileNotFoundError(f"Annotation file not found: {path}")
    with path.open("r", encoding="utf-8") as f:
        data = yaml.safe_load(f)

    spec = AnnotationsSpec.model_validate(data)
    tables = [t.to_frame() for t in spec.tables]
    LOG.info("Loaded %d annotation table(s) from %s", len(tables), path)
    return tables, spec.block_set
