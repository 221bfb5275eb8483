# _data_config.py

from dataclasses import dataclass
from typing import Optional, Tuple

RANKS = ("Kingdom", "Phylum", "Class", "Order", "Family", "Genus")

SENTINEL = "not classified"
UNCLASSIFIED = "unclassified"

ABUNDANCE_CUTOFF = 0.01
DEFAULT_ALPHA = 0.05
MIN_SAMPLES = 3

# column names expected in the long-format count tables and annotation tables
SAMPLE_COLUMN = "sample"
RANK_COLUMN = "rank"
TAXON_COLUMN = "taxon"
COUNT_COLUMN = "count"
COVARIATE_COLUMN = "group"

STATUS_POPULATED = "populated"
STATUS_EMPTY = "empty"
STATUS_FAILED = "failed"


@dataclass(frozen=True)
class ComparisonSettings:
    """
    Values handed to every (level pair, cohort) unit.

    Attributes:
        alpha (float): BH-corrected p-value threshold for the significant view.
        ranks (Tuple[str, ...]): Ranks compared on both the bacteria and phage side.
        abundance_cutoff (float): Proportions at or below this are zeroed.
        n_workers (int): Processes used for the comparison units (1 = in-process).
        cohorts (Tuple[str, ...] | None): Fixed cohort labels, or None to use every observed label.
    """
    alpha: float = DEFAULT_ALPHA
    ranks: Tuple[str, ...] = RANKS
    abundance_cutoff: float = ABUNDANCE_CUTOFF
    n_workers: int = 1
    cohorts: Optional[Tuple[str, ...]] = None
