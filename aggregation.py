"""Collapse probe-level expression to gene symbols and simplify sample types."""

from __future__ import annotations

import logging
from typing import Iterable, Mapping

import numpy as np
import pandas as pd

logger = logging.getLogger(__name__)

KEEP_TYPES = ("cell_line", "normal")
OTHER_TYPE = "cancer"


class DataError(ValueError):
    """A probe column needed for aggregation holds missing or non-numeric cells."""


def group_probes_by_symbol(
    mapping: Mapping[str, str], columns: Iterable[str]
) -> dict[str, list[str]]:
    """Build symbol -> [probe columns], keeping only probes present in `columns`.

    Probes are visited in sorted order, so symbols come out ordered by their
    smallest present probe ID. Symbols without a present probe are dropped.
    """
    present = set(columns)
    groups: dict[str, list[str]] = {}
    for probe in sorted(mapping):
        if probe not in present:
            continue
        groups.setdefault(mapping[probe], []).append(probe)
    return groups


def _numeric_block(measurements: pd.DataFrame, probes: list[str]) -> np.ndarray:
    block = measurements[probes].apply(pd.to_numeric, errors="coerce")
    bad = block.columns[block.isna().any()].tolist()
    if bad:
        shown = ", ".join(bad[:10])
        more = f" (+{len(bad) - 10} more)" if len(bad) > 10 else ""
        raise DataError(f"Missing or non-numeric values in probe columns: {shown}{more}")
    return block.to_numpy(dtype=float)


def aggregate_by_symbol(measurements: pd.DataFrame, mapping: Mapping[str, str]) -> pd.DataFrame:
    """Average all probe columns that map to the same symbol.

    Returns one column per symbol with at least one probe present in
    `measurements`, with the same index (rows and row order) as the input.
    Raises `DataError` if any referenced cell is missing or non-numeric.
    """
    groups = group_probes_by_symbol(mapping, measurements.columns)
    if not groups:
        return pd.DataFrame(index=measurements.index)

    used = [probe for probes in groups.values() for probe in probes]
    values = _numeric_block(measurements, used)
    position = {probe: i for i, probe in enumerate(used)}

    data = {
        symbol: values[:, [position[p] for p in probes]].mean(axis=1)
        for symbol, probes in groups.items()
    }
    result = pd.DataFrame(data, index=measurements.index, columns=list(groups))
    logger.info(
        "Aggregated %d probes into %d symbols over %d samples",
        len(used),
        len(groups),
        len(result),
    )
    return result


def relabel_type(values, keep: Iterable[str] = KEEP_TYPES, other: str = OTHER_TYPE):
    """Keep types listed in `keep`, replace every other value with `other`.

    A Series comes back as a Series (same index and name); any other iterable
    comes back as a list.
    """
    keep = set(keep)
    if isinstance(values, pd.Series):
        return values.where(values.isin(keep), other)
    return [v if v in keep else other for v in values]
