#!/usr/bin/env python3
"""
fill.py

Replace missing and placeholder cells of a hierarchy table with cascaded labels.

Each row is processed left to right with a single carried value, ``last_known``,
which starts as "unclassified" and only advances when a concrete label is read:

    concrete label          -> kept, becomes last_known
    missing, first rank     -> last_known
    missing, later rank     -> "unclassified <last_known>"
    "not classified"        -> "unclassified" while last_known is still
                               "unclassified", else "unclassified <last_known>"

Synthesised labels are never carried forward, so a fully missing row gives
"unclassified" followed by "unclassified unclassified" at every later rank.
Only the exact sentinel spelling is recognised; anything else is a label.

Usage (file-based):
    phagecorr fill --hierarchy_file bacteria.tsv --output_dir /path/to/out
"""

import os
import logging
from typing import List, Sequence

import pandas as pd

from phagecorr._data_config import SENTINEL, UNCLASSIFIED, RANKS
from phagecorr.pantry import RankSchema, load_hierarchy_table

logger = logging.getLogger(__name__)


def _is_missing(cell) -> bool:
    if cell is None:
        return True
    if isinstance(cell, str):
        return False
    return bool(pd.isna(cell))


def fill_row(row: Sequence, ranks: Sequence[str] = RANKS) -> List[str]:
    """
    Fill one hierarchy row.

    Args:
        row: Cells in rank order. ``None``/NaN is missing, SENTINEL is the placeholder.
        ranks: Rank names the row is aligned to.

    Returns:
        List[str]: One concrete label per rank.
    """
    if len(row) != len(ranks):
        raise ValueError(f"Row has {len(row)} cells but {len(ranks)} ranks were given.")

    last_known = UNCLASSIFIED
    filled = []
    for position, cell in enumerate(row):
        if _is_missing(cell):
            filled.append(last_known if position == 0 else f"{UNCLASSIFIED} {last_known}")
        elif cell == SENTINEL:
            filled.append(UNCLASSIFIED if last_known == UNCLASSIFIED else f"{UNCLASSIFIED} {last_known}")
        else:
            filled.append(cell)
            last_known = cell
    return filled


def fill_table(table: pd.DataFrame, schema: RankSchema = None) -> pd.DataFrame:
    """
    Fill every row of a hierarchy table.

    The returned table has the same index and the schema's column order;
    extra non-rank columns are dropped.
    """
    schema = schema or RankSchema()
    ranked = schema.select(table)
    filled = [fill_row(list(row), schema.ranks) for row in ranked.itertuples(index=False, name=None)]
    return pd.DataFrame(filled, index=ranked.index.copy(), columns=list(schema.ranks), dtype=object)


def fill_data(hierarchy_file: str, output_dir: str, ranks: Sequence[str] = RANKS, tag: str = "") -> str:
    """
    File-based filling: read a hierarchy TSV, fill it and write the result.

    Returns:
        str: Path of the filled table.
    """
    os.makedirs(output_dir, exist_ok=True)
    schema = RankSchema(ranks)

    table = load_hierarchy_table(hierarchy_file, schema)
    filled = fill_table(table, schema)

    n_filled = int(table.isna().to_numpy().sum() + (table == SENTINEL).to_numpy().sum())
    logger.info(f"Filled {n_filled} missing or unresolved cells across {len(table)} taxa")

    name = os.path.splitext(os.path.basename(hierarchy_file))[0]
    output_path = os.path.join(output_dir, f"{tag}filled_{name}.tsv")
    filled.to_csv(output_path, sep="\t")
    logger.info(f"Filled hierarchy saved to {output_path}")
    return output_path
