#!/usr/bin/env python3
"""Make the GSE45827 breast cancer dataset easier to work with.

Converts Affymetrix probe IDs to HGNC gene symbols (averaging probes that
share a symbol) and collapses the cancer subtypes in `type` into a single
`cancer` label. Everything but `cell_line` and `normal` counts as cancer.

Usage:
    python prepare_dataset.py Breast_GSE45827.csv --output cancer_dataset.tsv
    python prepare_dataset.py Breast_GSE45827.csv --mapping probe_symbols.tsv
"""

from __future__ import annotations

import argparse
import logging
import sys
from pathlib import Path

import pandas as pd
from rich import traceback

from aggregation import KEEP_TYPES, OTHER_TYPE, DataError, aggregate_by_symbol, relabel_type
from annotation import (
    AnnotationLookupError,
    AnnotationSource,
    BiomartSource,
    StaticSource,
    load_mapping_table,
    map_probes_to_symbols,
)
from dataset_io import (
    META_COLS,
    SAMPLE_COL,
    TYPE_COL,
    probe_columns,
    read_measurements,
    write_tables,
)

logger = logging.getLogger(__name__)

DEFAULT_INPUT = Path("Breast_GSE45827.csv")
DEFAULT_OUTPUT = Path("cancer_dataset.tsv")


def prepare_dataset(
    input_path: Path,
    output_path: Path | None,
    source: AnnotationSource | None = None,
    keep: tuple[str, ...] = KEEP_TYPES,
    other: str = OTHER_TYPE,
    annotation_out: Path | None = None,
) -> pd.DataFrame:
    """Run the full preparation and return the symbol-level table.

    Nothing is written unless every step succeeds. With `output_path=None`
    the table is only returned. Raises `InputValidationError`,
    `AnnotationLookupError` or `DataError` from the step that failed.
    """
    data = read_measurements(input_path)
    probes = probe_columns(data)
    logger.info("Loaded %d samples x %d probes from %s", len(data), len(probes), input_path)

    if source is None:
        source = BiomartSource()
    annotations = None
    if annotation_out is not None:
        annotations = source.fetch(probes)
        mapping = map_probes_to_symbols(probes, StaticSource(annotations))
    else:
        mapping = map_probes_to_symbols(probes, source)

    expression = aggregate_by_symbol(data[probes], mapping)
    clashing = [col for col in META_COLS if col in expression.columns]
    if clashing:
        raise DataError(f"Gene symbols collide with metadata columns: {clashing}")
    result = pd.concat(
        [
            data[[SAMPLE_COL]],
            relabel_type(data[TYPE_COL], keep=keep, other=other).to_frame(TYPE_COL),
            expression,
        ],
        axis=1,
    )

    tables = []
    if output_path is not None:
        tables.append((result, output_path))
    if annotations is not None:
        tables.append((annotations, annotation_out))
    write_tables(tables)
    if annotations is not None:
        logger.info("Wrote %d annotation rows to %s", len(annotations), annotation_out)
    return result


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(description=__doc__.split("\n\n")[0])
    parser.add_argument(
        "input",
        type=Path,
        nargs="?",
        default=DEFAULT_INPUT,
        help="CSV with samples, type and one column per probe",
    )
    parser.add_argument("--output", type=Path, default=DEFAULT_OUTPUT, help="Output TSV path")
    parser.add_argument(
        "--mapping",
        type=Path,
        default=None,
        help="Probe/symbol table to use instead of querying BioMart",
    )
    parser.add_argument(
        "--annotation-out",
        type=Path,
        default=None,
        help="Also write the raw probe annotations (symbol, chromosome, position, band)",
    )
    parser.add_argument(
        "--keep",
        nargs="+",
        default=list(KEEP_TYPES),
        help="Sample types kept as they are",
    )
    parser.add_argument("--other", default=OTHER_TYPE, help="Label for every other sample type")
    parser.add_argument("--verbose", action="store_true", help="Log progress")
    return parser


def main(argv: list[str] | None = None) -> int:
    _ = traceback.install()
    args = build_parser().parse_args(argv)
    logging.basicConfig(
        force=True,
        level=logging.INFO if args.verbose else logging.WARNING,
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )

    try:
        if args.mapping is not None:
            source = load_mapping_table(args.mapping)
        else:
            source = BiomartSource(progress=args.verbose)
        result = prepare_dataset(
            args.input,
            args.output,
            source=source,
            keep=tuple(args.keep),
            other=args.other,
            annotation_out=args.annotation_out,
        )
    except (AnnotationLookupError, ValueError, OSError) as exc:
        print(f"Error: {exc}", file=sys.stderr)
        return 1

    n_symbols = result.shape[1] - 2
    print(f"Wrote {args.output} with {len(result)} samples and {n_symbols} gene symbols")
    return 0


if __name__ == "__main__":
    sys.exit(main())
