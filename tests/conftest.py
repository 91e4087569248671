"""Shared pytest fixtures: a tiny GSE45827-shaped table and its annotations."""

from pathlib import Path

import pandas as pd
import pytest

from annotation import StaticSource


@pytest.fixture
def measurements() -> pd.DataFrame:
    """Three samples x four probes, with the two metadata columns first."""
    return pd.DataFrame(
        {
            "samples": ["s1", "s2", "s3"],
            "type": ["basal", "normal", "cell_line"],
            "1007_s_at": [1.0, 2.0, 3.0],
            "1053_at": [4.0, 5.0, 6.0],
            "117_at": [7.0, 8.0, 9.0],
            "121_at": [10.0, 11.0, 12.0],
        }
    )


@pytest.fixture
def probe_symbols() -> dict:
    """1007_s_at and 121_at share DDR1; 117_at has no annotation."""
    return {"1007_s_at": "DDR1", "1053_at": "RFC2", "121_at": "DDR1"}


@pytest.fixture
def static_source(probe_symbols) -> StaticSource:
    return StaticSource(probe_symbols)


@pytest.fixture
def measurements_csv(tmp_path: Path, measurements: pd.DataFrame) -> Path:
    path = tmp_path / "Breast_GSE45827.csv"
    measurements.to_csv(path, index=False)
    return path
