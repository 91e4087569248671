"""Affymetrix probe annotation lookups (Ensembl BioMart or a static table)."""

from __future__ import annotations

import http.client
import io
import logging
import os
import time
import urllib.request
from abc import ABC, abstractmethod
from pathlib import Path
from typing import Iterable, Mapping
from urllib.parse import quote

import pandas as pd
from tqdm import tqdm

logger = logging.getLogger(__name__)

BIOMART_URL = os.environ.get("BIOMART_URL", "https://www.ensembl.org/biomart/martservice")
BIOMART_DATASET = "hsapiens_gene_ensembl"
BIOMART_BATCH_SIZE = int(os.environ.get("BIOMART_BATCH_SIZE", "500"))
BIOMART_RETRIES = int(os.environ.get("BIOMART_RETRIES", "3"))
BIOMART_TIMEOUT = float(os.environ.get("BIOMART_TIMEOUT", "120"))
RETRY_DELAY = 2.0

PROBE_FILTER = "affy_hg_u133_plus_2"
BIOMART_ATTRIBUTES = [
    "affy_hg_u133_plus_2",
    "hgnc_symbol",
    "chromosome_name",
    "start_position",
    "end_position",
    "band",
]
ANNOTATION_COLUMNS = ["probe", "symbol", "chromosome", "start", "end", "band"]

QUERY_TEMPLATE = """<?xml version="1.0" encoding="UTF-8"?>
<!DOCTYPE Query>
<Query virtualSchemaName = "default" formatter = "TSV" header = "0" uniqueRows = "1" count = "" datasetConfigVersion = "0.6" >
  <Dataset name = "{dataset}" interface = "default" >
    <Filter name = "{filter}" value = "{values}"/>
{attributes}
  </Dataset>
</Query>
"""


class AnnotationLookupError(LookupError):
    """The annotation service was unreachable or answered with garbage."""


def build_query(probe_ids: Iterable[str], dataset: str = BIOMART_DATASET) -> str:
    attributes = "\n".join(f'    <Attribute name = "{name}" />' for name in BIOMART_ATTRIBUTES)
    return QUERY_TEMPLATE.format(
        dataset=dataset,
        filter=PROBE_FILTER,
        values=",".join(probe_ids),
        attributes=attributes,
    )


def empty_annotations() -> pd.DataFrame:
    return pd.DataFrame({col: pd.Series(dtype=object) for col in ANNOTATION_COLUMNS})


def collapse_annotations(annotations: pd.DataFrame) -> dict[str, str]:
    """Reduce raw annotation rows to one symbol per probe.

    Identical (probe, symbol) pairs are deduplicated and, when a probe still
    has several candidate symbols, the lexicographically smallest one wins.
    Rows without a symbol (BioMart reports those as blanks) are ignored, so a
    probe annotated only with blanks is left out of the mapping.
    """
    pairs = annotations[["probe", "symbol"]].dropna()
    pairs = pairs.astype(str)
    pairs["symbol"] = pairs["symbol"].str.strip()
    pairs = pairs[pairs["symbol"] != ""].drop_duplicates()
    if pairs.empty:
        return {}
    return pairs.groupby("probe")["symbol"].min().to_dict()


class AnnotationSource(ABC):
    """Narrow interface around a probe annotation provider.

    Subclasses only need to return raw annotation rows from `fetch`;
    `lookup` turns those into the probe -> symbol mapping.
    """

    @abstractmethod
    def fetch(self, probe_ids: list[str]) -> pd.DataFrame:
        """Return annotation rows with columns `ANNOTATION_COLUMNS`."""

    def lookup(self, probe_ids: Iterable[str]) -> dict[str, str]:
        probe_ids = list(dict.fromkeys(str(p) for p in probe_ids))
        if not probe_ids:
            return {}
        return collapse_annotations(self.fetch(probe_ids))


class StaticSource(AnnotationSource):
    """In-memory annotations, for tests and offline runs."""

    def __init__(self, annotations: pd.DataFrame | Mapping[str, str]):
        if isinstance(annotations, pd.DataFrame):
            missing = [c for c in ("probe", "symbol") if c not in annotations.columns]
            if missing:
                raise ValueError(f"Annotation table is missing columns: {missing}")
            table = annotations.copy()
        else:
            table = pd.DataFrame(
                {"probe": list(annotations.keys()), "symbol": list(annotations.values())}
            )
        for col in ANNOTATION_COLUMNS:
            if col not in table.columns:
                table[col] = pd.NA
        self.annotations = table[ANNOTATION_COLUMNS]

    def fetch(self, probe_ids: list[str]) -> pd.DataFrame:
        wanted = set(probe_ids)
        return self.annotations[self.annotations["probe"].astype(str).isin(wanted)].reset_index(drop=True)


def load_mapping_table(path: Path) -> StaticSource:
    """Load a probe/symbol table (CSV or TSV) exported from an earlier run."""
    name = path.name.lower()
    sep = "\t" if name.endswith(".tsv") or name.endswith(".tsv.gz") else ","
    df = pd.read_csv(path, sep=sep, dtype=str)
    cols = {c.lower(): c for c in df.columns}
    probe_col = cols.get("probe") or cols.get(PROBE_FILTER)
    symbol_col = cols.get("symbol") or cols.get("hgnc_symbol")
    if probe_col is None or symbol_col is None:
        raise ValueError(f"Missing probe/symbol columns in {path}")
    df = df.rename(columns={probe_col: "probe", symbol_col: "symbol"})
    return StaticSource(df)


def _http_get(url: str, timeout: float) -> bytes:
    with urllib.request.urlopen(url, timeout=timeout) as response:  # nosec B310
        return response.read()


def parse_biomart_response(payload: bytes) -> pd.DataFrame:
    """Parse a headerless BioMart TSV answer into `ANNOTATION_COLUMNS`."""
    text = payload.decode("utf-8", errors="replace")
    if not text.strip():
        return empty_annotations()
    first_line = text.lstrip().splitlines()[0]
    if first_line.startswith("Query ERROR") or first_line.lstrip().startswith("<"):
        raise AnnotationLookupError(f"BioMart rejected the query: {first_line[:200]}")
    try:
        df = pd.read_csv(
            io.StringIO(text),
            sep="\t",
            header=None,
            dtype=str,
            keep_default_na=False,
        )
    except (pd.errors.ParserError, pd.errors.EmptyDataError) as exc:
        raise AnnotationLookupError(f"Unparseable BioMart response: {exc}") from exc
    if df.shape[1] != len(ANNOTATION_COLUMNS):
        raise AnnotationLookupError(
            f"Expected {len(ANNOTATION_COLUMNS)} columns from BioMart, got {df.shape[1]}"
        )
    df.columns = ANNOTATION_COLUMNS
    return df


class BiomartSource(AnnotationSource):
    """Ensembl BioMart martservice client.

    Probe IDs are sent in batches; each batch is tried up to `retries` times
    before the whole lookup fails with `AnnotationLookupError`.
    """

    def __init__(
        self,
        url: str = BIOMART_URL,
        dataset: str = BIOMART_DATASET,
        batch_size: int = BIOMART_BATCH_SIZE,
        retries: int = BIOMART_RETRIES,
        timeout: float = BIOMART_TIMEOUT,
        retry_delay: float = RETRY_DELAY,
        progress: bool = False,
    ):
        if batch_size < 1:
            raise ValueError("batch_size must be positive")
        if retries < 1:
            raise ValueError("retries must be at least 1")
        self.url = url
        self.dataset = dataset
        self.batch_size = batch_size
        self.retries = retries
        self.timeout = timeout
        self.retry_delay = retry_delay
        self.progress = progress

    def query_url(self, probe_ids: list[str]) -> str:
        return self.url + "?query=" + quote(build_query(probe_ids, self.dataset))

    def _fetch_batch(self, probe_ids: list[str]) -> pd.DataFrame:
        url = self.query_url(probe_ids)
        last_error: Exception | None = None
        for attempt in range(1, self.retries + 1):
            try:
                return parse_biomart_response(_http_get(url, self.timeout))
            except (OSError, http.client.HTTPException, AnnotationLookupError) as exc:
                last_error = exc
                logger.warning(
                    "BioMart batch of %d probes failed (attempt %d/%d): %s",
                    len(probe_ids),
                    attempt,
                    self.retries,
                    exc,
                )
                if attempt < self.retries:
                    time.sleep(self.retry_delay)
        raise AnnotationLookupError(
            f"BioMart lookup failed after {self.retries} attempts: {last_error}"
        ) from last_error

    def fetch(self, probe_ids: list[str]) -> pd.DataFrame:
        batches = [
            probe_ids[i : i + self.batch_size] for i in range(0, len(probe_ids), self.batch_size)
        ]
        logger.info("Querying BioMart for %d probes in %d batches", len(probe_ids), len(batches))
        frames = [
            self._fetch_batch(batch)
            for batch in tqdm(batches, desc="BioMart", unit="batch", disable=not self.progress)
        ]
        if not frames:
            return empty_annotations()
        return pd.concat(frames, ignore_index=True)


def map_probes_to_symbols(
    probe_ids: Iterable[str], source: AnnotationSource | None = None
) -> dict[str, str]:
    """Map probe IDs to a single gene symbol each; unannotated probes are absent."""
    if source is None:
        source = BiomartSource()
    mapping = source.lookup(probe_ids)
    logger.info("Mapped %d probes to %d distinct symbols", len(mapping), len(set(mapping.values())))
    return mapping
