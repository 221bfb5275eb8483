#!/usr/bin/env python3
"""
filter.py

Cohort membership and cohort splitting of abundance matrices.

Membership for a cohort label is the union, over two independently sourced
annotation tables, of the sample ids whose covariate equals that label.

Samples that belong to no cohort are dropped from every cohort's matrix. This
is silent with respect to the result (no error is raised) but the number of
dropped samples is logged.
"""

import logging
from typing import Dict, Iterable, Optional, Set

import pandas as pd

from phagecorr._data_config import SAMPLE_COLUMN, COVARIATE_COLUMN
from phagecorr.exceptions import SchemaMismatch
from phagecorr.pantry import AbundanceMatrix

logger = logging.getLogger(__name__)


def _members_by_label(table: pd.DataFrame, sample_column: str, covariate_column: str) -> Dict[str, Set[str]]:
    missing = [c for c in (sample_column, covariate_column) if c not in table.columns]
    if missing:
        raise SchemaMismatch(missing, where="annotation table")
    table = table[[sample_column, covariate_column]].dropna()
    members: Dict[str, Set[str]] = {}
    for sample, label in zip(table[sample_column].astype(str), table[covariate_column].astype(str)):
        members.setdefault(label, set()).add(sample)
    return members


def build_cohort_membership(annotation_a: pd.DataFrame,
                            annotation_b: pd.DataFrame,
                            labels: Optional[Iterable[str]] = None,
                            sample_column: str = SAMPLE_COLUMN,
                            covariate_column: str = COVARIATE_COLUMN) -> Dict[str, Set[str]]:
    """
    Map each cohort label to the union of matching sample ids from both tables.

    Args:
        annotation_a, annotation_b: Sample annotation tables.
        labels: Cohort labels to build. If None, every observed covariate value
            (sorted) becomes a cohort.

    Returns:
        Dict[str, Set[str]]: label -> sample ids. Labels with no members map to an empty set.
    """
    members_a = _members_by_label(annotation_a, sample_column, covariate_column)
    members_b = _members_by_label(annotation_b, sample_column, covariate_column)

    if labels is None:
        labels = sorted(set(members_a) | set(members_b))

    membership = {
        label: members_a.get(label, set()) | members_b.get(label, set())
        for label in labels
    }

    seen: Dict[str, str] = {}
    conflicting = set()
    for label, samples in membership.items():
        for sample in samples:
            if sample in seen and seen[sample] != label:
                conflicting.add(sample)
            seen.setdefault(sample, label)
    if conflicting:
        logger.warning(
            f"{len(conflicting)} samples are annotated with more than one cohort "
            f"and will be used in each: {sorted(conflicting)[:10]}"
        )

    for label, samples in membership.items():
        logger.info(f"Cohort '{label}': {len(samples)} samples")
    return membership


def split_cohorts(matrix: AbundanceMatrix, membership: Dict[str, Set[str]]) -> Dict[str, AbundanceMatrix]:
    """
    Restrict ``matrix`` to each cohort's samples.

    Rows whose sample id is in no cohort appear in none of the outputs.
    """
    samples = matrix.samples
    covered = set().union(*membership.values()) if membership else set()
    n_uncovered = sum(1 for s in samples if s not in covered)
    if n_uncovered:
        logger.info(f"{n_uncovered} of {len(samples)} samples belong to no cohort and are dropped")

    return {label: matrix.restricted_to(members) for label, members in membership.items()}
