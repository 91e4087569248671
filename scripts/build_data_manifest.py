#!/usr/bin/env python3
"""Build a manifest of prepared data files (size, sha256, rows, cols)."""

from __future__ import annotations

import argparse
import hashlib
from pathlib import Path

import pandas as pd

from dataset_io import detect_sep

DATA_SUFFIXES = (".csv", ".tsv", ".csv.gz", ".tsv.gz")


def sha256sum(path: Path) -> str:
    h = hashlib.sha256()
    with path.open("rb") as f:
        for chunk in iter(lambda: f.read(1024 * 1024), b""):
            h.update(chunk)
    return h.hexdigest()


def build_manifest(data_dir: Path) -> pd.DataFrame:
    rows = []
    for path in sorted(data_dir.glob("*")):
        if path.is_dir() or path.name == "manifest.tsv":
            continue
        if not path.name.lower().endswith(DATA_SUFFIXES):
            continue
        df = pd.read_csv(path, sep=detect_sep(path))
        rows.append(
            {
                "file": path.name,
                "bytes": path.stat().st_size,
                "sha256": sha256sum(path),
                "rows": len(df),
                "cols": len(df.columns),
            }
        )
    return pd.DataFrame(rows, columns=["file", "bytes", "sha256", "rows", "cols"])


def main() -> None:
    parser = argparse.ArgumentParser(description=__doc__)
    parser.add_argument("data_dir", type=Path, nargs="?", default=Path("data"))
    args = parser.parse_args()
    args.data_dir.mkdir(parents=True, exist_ok=True)

    manifest = build_manifest(args.data_dir)
    manifest.to_csv(args.data_dir / "manifest.tsv", sep="\t", index=False)
    print(f"Wrote {args.data_dir / 'manifest.tsv'} with {len(manifest)} files")


if __name__ == "__main__":
    main()
