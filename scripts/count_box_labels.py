#!/usr/bin/env python3
"""Build a box label datastore from a YAML annotation file and print label counts.

Usage:
    python scripts/count_box_labels.py data/annotations.yaml
    python scripts/count_box_labels.py data/annotations.yaml --save outputs/blds.yaml

The annotation format is documented in `boxlabels.datasets.io`.
"""

import argparse
import logging
import sys
from pathlib import Path

from boxlabels.datasets.datastore import BoxLabelDatastore, DatastoreConfig
from boxlabels.datasets.io import load_annotations
from boxlabels.errors import BoxLabelError


def main(argv: list[str]) -> int:
    ap = argparse.ArgumentParser()
    ap.add_argument("annotations", type=str)
    ap.add_argument("--overlap_threshold", type=float, default=0.1)
    ap.add_argument("--save", type=str, default=None)
    ap.add_argument("--verbose", action="store_true")
    args = ap.parse_args(argv)

    if args.verbose:
        logging.basicConfig(level=logging.INFO, format="%(asctime)s | %(levelname)s | %(message)s")

    annotations = Path(args.annotations).expanduser().resolve()
    if not annotations.is_file():
        raise SystemExit(f"Annotation file not found: {annotations}")

    tables, block_set = load_annotations(annotations)
    try:
        blds = BoxLabelDatastore(
            *tables,
            block_set=block_set,
            config=DatastoreConfig(overlap_threshold=args.overlap_threshold),
        )
    except BoxLabelError as e:
        print(f"[ERROR] {annotations}: {type(e).__name__}: {e}", file=sys.stderr)
        return 1

    print(f"{len(blds)} observations, {blds.box_format.name.lower()} boxes")
    print(blds.count_each_label().to_string(index=False))

    if args.save:
        blds.save(Path(args.save).expanduser())
    return 0


if __name__ == "__main__":
    raise SystemExit(main(sys.argv[1:]))
