#!/usr/bin/env python3
"""
format.py

Converts long-format per-rank counts into wide AbundanceMatrix objects:
    1. counts are normalised to proportions within each sample,
    2. proportions at or below the cutoff (1% by default) are zeroed,
    3. the retained (sample, taxon, proportion) triples are pivoted into a
       sample x taxon matrix, absent combinations filled with 0.

Every taxon observed at the rank keeps its column even when all of its values
were zeroed, and every observed sample keeps its row.

Aggregation of raw counts up to a rank happens upstream. Records that share a
(sample, taxon) pair, e.g. several taxa filled to the same label, are summed
before the cutoff is applied.

Usage (file-based):
    phagecorr format --counts_file bacteria_counts.tsv --output_dir /path/to/out [--tag bacteria]
"""

import os
import logging
from typing import Dict, Sequence

import numpy as np
import pandas as pd

from phagecorr._data_config import *
from phagecorr.pantry import AbundanceMatrix, load_counts

logger = logging.getLogger(__name__)


def project_abundance(records: pd.DataFrame, cutoff: float = ABUNDANCE_CUTOFF) -> AbundanceMatrix:
    """
    Build the wide relative abundance matrix for one rank.

    Args:
        records (pd.DataFrame): Columns ``sample``, ``taxon`` and ``count``.
        cutoff (float): Proportions <= cutoff are set to zero.

    Returns:
        AbundanceMatrix: Rows sorted by sample id, columns sorted by taxon label.
    """
    if not 0.0 <= cutoff < 1.0:
        raise ValueError(f"Abundance cutoff must lie in [0, 1), got {cutoff}")

    missing = [c for c in (SAMPLE_COLUMN, TAXON_COLUMN, COUNT_COLUMN) if c not in records.columns]
    if missing:
        raise ValueError(f"Count records are missing columns: {missing}")

    records = records[[SAMPLE_COLUMN, TAXON_COLUMN, COUNT_COLUMN]].reset_index(drop=True)
    records[SAMPLE_COLUMN] = records[SAMPLE_COLUMN].astype(str)
    records[TAXON_COLUMN] = records[TAXON_COLUMN].astype(str)
    records[COUNT_COLUMN] = pd.to_numeric(records[COUNT_COLUMN], errors="coerce").fillna(0).astype(float)

    if (records[COUNT_COLUMN] < 0).any():
        raise ValueError("Counts must be non-negative.")

    # several records can share a label after filling; combine them before thresholding
    records = records.groupby([SAMPLE_COLUMN, TAXON_COLUMN], as_index=False)[COUNT_COLUMN].sum()

    samples = sorted(records[SAMPLE_COLUMN].unique())
    taxa = sorted(records[TAXON_COLUMN].unique())

    totals = records.groupby(SAMPLE_COLUMN)[COUNT_COLUMN].transform("sum").to_numpy()
    counts = records[COUNT_COLUMN].to_numpy()
    records["abundance"] = np.divide(
        counts,
        totals,
        out=np.zeros_like(counts, dtype=float),
        where=totals > 0
    )

    retained = records[records["abundance"] > cutoff]
    n_dropped = len(records) - len(retained)
    if n_dropped:
        logger.debug(f"{n_dropped} (sample, taxon) proportions at or below {cutoff} set to 0")

    if retained.empty:
        wide = pd.DataFrame(0.0, index=samples, columns=taxa)
    else:
        wide = retained.pivot_table(
            index=SAMPLE_COLUMN,
            columns=TAXON_COLUMN,
            values="abundance",
            aggfunc="sum",
            fill_value=0.0,
        )
        wide = wide.reindex(index=samples, columns=taxa, fill_value=0.0)
    wide.index.name = None
    wide.columns.name = None

    return AbundanceMatrix(wide)


def project_by_rank(counts: pd.DataFrame,
                    ranks: Sequence[str] = RANKS,
                    cutoff: float = ABUNDANCE_CUTOFF) -> Dict[str, AbundanceMatrix]:
    """
    Split a long count table on its ``rank`` column and project each requested rank.

    Ranks with no records are skipped with a warning.
    """
    if RANK_COLUMN not in counts.columns:
        raise ValueError(f"Count table has no '{RANK_COLUMN}' column.")

    matrices = {}
    for rank in ranks:
        at_rank = counts[counts[RANK_COLUMN] == rank]
        if at_rank.empty:
            logger.warning(f"No count records at rank '{rank}'")
            continue
        matrices[rank] = project_abundance(at_rank, cutoff=cutoff)
        logger.info(f"{rank}: {matrices[rank]!r}")
    return matrices


def format_data(counts_file: str,
                output_dir: str,
                ranks: Sequence[str] = RANKS,
                cutoff: float = ABUNDANCE_CUTOFF,
                tag: str = "") -> Dict[str, str]:
    """
    File-based projection: writes one ``<tag><rank>_abundance.tsv`` per rank.
    """
    os.makedirs(output_dir, exist_ok=True)

    counts = load_counts(counts_file)
    matrices = project_by_rank(counts, ranks=ranks, cutoff=cutoff)

    paths = {}
    for rank, matrix in matrices.items():
        output_path = os.path.join(output_dir, f"{tag}{rank}_abundance.tsv")
        matrix.frame.to_csv(output_path, sep="\t")
        paths[rank] = output_path
        logger.info(f"Abundance matrix for {rank} saved to {output_path}")
    return paths
