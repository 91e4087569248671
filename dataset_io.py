"""Read and write the sample x feature expression tables."""

from __future__ import annotations

import os
from pathlib import Path

import pandas as pd

SAMPLE_COL = "samples"
TYPE_COL = "type"
META_COLS = [SAMPLE_COL, TYPE_COL]


class InputValidationError(ValueError):
    """The input table does not have the expected shape."""


def detect_sep(path: Path) -> str:
    name = path.name.lower()
    if name.endswith(".tsv") or name.endswith(".tsv.gz"):
        return "\t"
    return ","


def validate_measurements(df: pd.DataFrame, source: str = "input") -> pd.DataFrame:
    missing = [col for col in META_COLS if col not in df.columns]
    if missing:
        raise InputValidationError(f"Missing columns in {source}: {missing}")
    duplicated = df[SAMPLE_COL][df[SAMPLE_COL].duplicated()].unique().tolist()
    if duplicated:
        raise InputValidationError(f"Duplicate sample IDs in {source}: {duplicated[:10]}")
    if not probe_columns(df):
        raise InputValidationError(f"No probe columns found in {source}")
    return df


def probe_columns(df: pd.DataFrame) -> list[str]:
    return [str(c) for c in df.columns if c not in META_COLS]


def read_measurements(path: Path) -> pd.DataFrame:
    """Load a `samples, type, <probe...>` table and check its layout.

    Every cell is read as text first, so sample IDs such as `001` or `NA`
    keep their exact spelling; probe columns are then converted to numbers
    (unparseable cells become NaN and are rejected at aggregation time).
    """
    df = pd.read_csv(path, sep=detect_sep(path), dtype=str, keep_default_na=False)
    df.columns = [str(c) for c in df.columns]
    validate_measurements(df, source=str(path))
    probes = probe_columns(df)
    df[probes] = df[probes].apply(pd.to_numeric, errors="coerce")
    return df


def _tmp_path(path: Path) -> Path:
    return path.with_name(path.name + ".tmp")


def _write_to(df: pd.DataFrame, target: Path, final: Path) -> None:
    compression = "gzip" if final.name.endswith(".gz") else None
    df.to_csv(target, sep=detect_sep(final), index=False, compression=compression)


def write_tables(tables: list[tuple[pd.DataFrame, Path]]) -> None:
    """Write several tables so that either all of them land or none do.

    Each table goes to a `.tmp` sibling first; the final names are only
    swapped in once every temporary file has been written.
    """
    written: list[Path] = []
    try:
        for df, path in tables:
            path.parent.mkdir(parents=True, exist_ok=True)
            tmp = _tmp_path(path)
            written.append(tmp)
            _write_to(df, tmp, path)
    except Exception:
        for tmp in written:
            tmp.unlink(missing_ok=True)
        raise
    for _, path in tables:
        os.replace(_tmp_path(path), path)


def write_table(df: pd.DataFrame, path: Path) -> None:
    write_tables([(df, path)])
