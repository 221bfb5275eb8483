#!/usr/bin/env python3

import os
import logging
from typing import Dict, Iterable, List, Sequence

import numpy as np
import pandas as pd

from phagecorr._data_config import *
from phagecorr.exceptions import SchemaMismatch

logger = logging.getLogger(__name__)


class RankSchema:
    """
    Ordered rank names and their column positions.

    The order given at construction is authoritative; tables are validated
    against it at call time rather than trusted.
    """
    def __init__(self, ranks: Sequence[str] = RANKS):
        ranks = tuple(ranks)
        if not ranks:
            raise ValueError("A rank schema needs at least one rank.")
        if len(set(ranks)) != len(ranks):
            raise ValueError(f"Duplicate rank names in schema: {ranks}")
        self.ranks = ranks
        self.positions = {rank: i for i, rank in enumerate(ranks)}

    def __len__(self):
        return len(self.ranks)

    def __iter__(self):
        return iter(self.ranks)

    def __repr__(self):
        return f"<RankSchema: {' > '.join(self.ranks)}>"

    def position(self, rank: str) -> int:
        try:
            return self.positions[rank]
        except KeyError:
            raise SchemaMismatch([rank], where="rank schema") from None

    def validate(self, columns: Iterable[str], where: str = "hierarchy table") -> None:
        present = set(columns)
        missing = [rank for rank in self.ranks if rank not in present]
        if missing:
            raise SchemaMismatch(missing, where=where)

    def select(self, table: pd.DataFrame) -> pd.DataFrame:
        """Return the rank columns of ``table`` in schema order."""
        self.validate(table.columns)
        return table.loc[:, list(self.ranks)]


class AbundanceMatrix:
    """
    Container for a sample x entity relative abundance matrix at one rank.

    Attributes:
        samples (List[str]): Sample identifiers (rows).
        entities (List[str]): Entity labels (columns).
        values (np.ndarray): Dense float matrix, shape (n_samples, n_entities).
        column_totals (np.ndarray): Cached per-entity sums over all samples.
    """
    def __init__(self, frame: pd.DataFrame):
        if frame.index.has_duplicates:
            dup = frame.index[frame.index.duplicated()].unique().tolist()
            raise ValueError(f"Duplicate sample identifiers: {dup}")
        if frame.columns.has_duplicates:
            dup = frame.columns[frame.columns.duplicated()].unique().tolist()
            raise ValueError(f"Duplicate entity labels: {dup}")
        frame = frame.astype(float)
        frame.index = frame.index.astype(str)
        frame.columns = frame.columns.astype(str)
        object.__setattr__(self, "_frame", frame)
        object.__setattr__(self, "_column_totals", frame.to_numpy().sum(axis=0))

    def __setattr__(self, name, value):
        raise AttributeError("AbundanceMatrix is immutable")

    @classmethod
    def from_arrays(cls, samples: List[str], entities: List[str], values) -> "AbundanceMatrix":
        return cls(pd.DataFrame(np.asarray(values, dtype=float), index=list(samples), columns=list(entities)))

    @property
    def frame(self) -> pd.DataFrame:
        return self._frame.copy()

    @property
    def samples(self) -> List[str]:
        return self._frame.index.tolist()

    @property
    def entities(self) -> List[str]:
        return self._frame.columns.tolist()

    @property
    def values(self) -> np.ndarray:
        return self._frame.to_numpy(copy=True)

    @property
    def column_totals(self) -> np.ndarray:
        return self._column_totals.copy()

    @property
    def shape(self):
        return self._frame.shape

    def __len__(self):
        return self._frame.shape[0]

    def __repr__(self):
        return (
            f"<AbundanceMatrix: {self.shape[0]} samples, "
            f"{self.shape[1]} entities>"
        )

    def copy(self) -> "AbundanceMatrix":
        return AbundanceMatrix(self._frame.copy())

    @staticmethod
    def _mask_to_indices(mask, size) -> List[int]:
        if isinstance(mask, (np.ndarray, list, pd.Series)):
            arr = np.asarray(mask)
            if arr.dtype == bool:
                if arr.size != size:
                    raise ValueError(f"Boolean mask of length {arr.size} for axis of length {size}")
                return np.nonzero(arr)[0].tolist()
            return arr.astype(int).tolist()
        raise ValueError("mask must be a list or numpy array of bools or ints")

    def filtered_samples(self, mask) -> "AbundanceMatrix":
        """Return a new AbundanceMatrix restricted to the rows selected by ``mask``."""
        idxs = self._mask_to_indices(mask, self.shape[0])
        return AbundanceMatrix(self._frame.iloc[idxs, :])

    def filtered_entities(self, mask) -> "AbundanceMatrix":
        """Return a new AbundanceMatrix restricted to the columns selected by ``mask``."""
        idxs = self._mask_to_indices(mask, self.shape[1])
        return AbundanceMatrix(self._frame.iloc[:, idxs])

    def restricted_to(self, samples: Iterable[str]) -> "AbundanceMatrix":
        keep = set(samples)
        return self.filtered_samples([s in keep for s in self.samples])


def _read_tsv(path: str, what: str, **kwargs) -> pd.DataFrame:
    if not os.path.exists(path):
        raise FileNotFoundError(f"{what} file '{path}' not found.")
    return pd.read_csv(path, sep="\t", **kwargs)


def _require_columns(df: pd.DataFrame, columns: Iterable[str], where: str) -> None:
    missing = [c for c in columns if c not in df.columns]
    if missing:
        raise SchemaMismatch(missing, where=where)


def load_hierarchy_table(path: str, schema: RankSchema = None) -> pd.DataFrame:
    """
    Read a hierarchy TSV. The first column holds the taxonomic unit id; the
    rank columns are returned in schema order with empty cells as missing.
    """
    schema = schema or RankSchema()
    table = _read_tsv(path, "Hierarchy", index_col=0, dtype=str, keep_default_na=False, na_values=[""])
    table = schema.select(table)
    logger.info(f"Loaded {table.shape[0]} taxa x {table.shape[1]} ranks from {path}")
    return table


def load_counts(path: str) -> pd.DataFrame:
    """Read a long-format count table with sample, rank, taxon and count columns."""
    counts = _read_tsv(path, "Counts", dtype={SAMPLE_COLUMN: str, RANK_COLUMN: str, TAXON_COLUMN: str})
    _require_columns(counts, [SAMPLE_COLUMN, RANK_COLUMN, TAXON_COLUMN, COUNT_COLUMN], where=path)
    counts[COUNT_COLUMN] = pd.to_numeric(counts[COUNT_COLUMN], errors="coerce").fillna(0)
    logger.info(f"Loaded {len(counts)} count records from {path}")
    return counts


def load_annotations(path: str, sample_column: str = SAMPLE_COLUMN,
                     covariate_column: str = COVARIATE_COLUMN) -> pd.DataFrame:
    """Read a sample annotation table keeping only the sample and covariate columns."""
    annotations = _read_tsv(path, "Annotation", dtype=str)
    _require_columns(annotations, [sample_column, covariate_column], where=path)
    return annotations[[sample_column, covariate_column]]
