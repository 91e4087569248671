#!/usr/bin/env python3
"""Print a quick sanity summary of a prepared symbol-level dataset."""

from __future__ import annotations

import argparse
import sys
from pathlib import Path

import pandas as pd

from dataset_io import META_COLS, TYPE_COL, detect_sep


def summarize_dataset(df: pd.DataFrame) -> dict[str, object]:
    missing = [col for col in META_COLS if col not in df.columns]
    if missing:
        raise ValueError(f"Missing columns: {missing}")
    symbols = [c for c in df.columns if c not in META_COLS]
    values = df[symbols].apply(pd.to_numeric, errors="coerce")
    return {
        "samples": len(df),
        "symbols": len(symbols),
        "types": df[TYPE_COL].value_counts().to_dict(),
        "missing_values": int(values.isna().sum().sum()),
        "mean_expression": float(pd.Series(values.to_numpy().ravel()).mean()) if symbols else float("nan"),
    }


def main(argv: list[str] | None = None) -> int:
    parser = argparse.ArgumentParser(description=__doc__)
    parser.add_argument("path", type=Path, nargs="?", default=Path("cancer_dataset.tsv"))
    args = parser.parse_args(argv)

    if not args.path.exists():
        print(f"{args.path} not found.")
        return 1
    df = pd.read_csv(args.path, sep=detect_sep(args.path))
    try:
        summary = summarize_dataset(df)
    except ValueError as exc:
        print(f"  [INVALID] {args.path}: {exc}")
        return 1

    print(f"Checking {args.path}...")
    print(f"  Samples: {summary['samples']}")
    print(f"  Gene symbols: {summary['symbols']}")
    for sample_type, count in summary["types"].items():
        print(f"  type={sample_type}: {count}")
    print(f"  Missing values: {summary['missing_values']}")
    print(f"  Mean expression: {summary['mean_expression']:.3f}")
    return 0


if __name__ == "__main__":
    sys.exit(main())
