"""Per-class label statistics."""

from __future__ import annotations

import numpy as np
import pandas as pd

from boxlabels.vision.types import LabelDataset

COUNT_COLUMNS = ("Label", "Count", "ImageCount")


def empty_counts() -> pd.DataFrame:
    """Zero-row result with the label count schema."""
    return pd.DataFrame(
        {
            "Label": pd.Categorical([]),
            "Count": pd.Series([], dtype=np.int64),
            "ImageCount": pd.Series([], dtype=np.int64),
        }
    )


def count_each_label(dataset: LabelDataset) -> pd.DataFrame:
    """Count boxes and images per class.

    Returns:
        DataFrame with one row per vocabulary entry, in vocabulary order:
            Label       class name (categorical over the vocabulary)
            Count       number of boxes with that label
            ImageCount  number of rows holding at least one such box
        Classes that never occur are reported with zero counts. A dataset
        without rows gives an empty frame with the same columns.
    """
    if len(dataset) == 0:
        return empty_counts()

    categories = list(dataset.categories)
    counts = np.zeros(len(categories), dtype=np.int64)
    image_counts = np.zeros(len(categories), dtype=np.int64)
    for row in dataset:
        codes = np.asarray(row.labels.codes)
        codes = codes[codes >= 0]  # missing labels are not counted
        if codes.size == 0:
            continue
        counts += np.bincount(codes, minlength=len(categories))
        image_counts[np.unique(codes)] += 1

    return pd.DataFrame(
        {
            "Label": pd.Categorical(categories, categories=categories),
            "Count": counts,
            "ImageCount": image_counts,
        }
    )
