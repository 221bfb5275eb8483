#!/usr/bin/env python3
"""
pipelines.py

This module defines the comparison pipeline for phagecorr.

The primary function is:
    run_comparisons(bacteria, phage, membership, settings)

For every (bacteria rank, phage rank) pair in settings.ranks x settings.ranks it
  1. inner-joins the two per-rank AbundanceMatrix objects on sample id,
  2. records which columns came from the bacteria side (set A) and which from
     the phage side (set B),
  3. splits the joined matrix into cohorts,
  4. runs correlation_obj() once per cohort.

Each (level pair, cohort) unit is independent and may run in a worker
process. A unit that raises is logged and recorded as a failed result for that
key and cohort; the remaining units still run. Only if every unit fails is
NoSuccessfulComparisons raised.

run_correlation(args) is the file-based wrapper used by the CLI: it loads the
count and annotation tables, runs the comparisons and writes the results with
write_results().
"""

import os
import logging
import itertools
import multiprocessing as mp
from typing import Dict, List, Set, Tuple

import pandas as pd
from tqdm import tqdm

from phagecorr._data_config import *
from phagecorr.analysis import CorrelationResult, correlation_obj
from phagecorr.exceptions import NoSuccessfulComparisons
from phagecorr.filter import build_cohort_membership, split_cohorts
from phagecorr.format import project_by_rank
from phagecorr.pantry import AbundanceMatrix, load_annotations, load_counts

logger = logging.getLogger(__name__)

LevelPairKey = Tuple[str, str]
Results = Dict[LevelPairKey, Dict[str, CorrelationResult]]


def _best_mp_start() -> str:
    """
    Cross-platform start-method chooser:
      - fork if available (Linux)
      - otherwise spawn (Windows/macOS default)
    """
    methods = mp.get_all_start_methods()
    return "fork" if "fork" in methods else "spawn"


def join_sides(bacteria: AbundanceMatrix,
               phage: AbundanceMatrix,
               suffixes: Tuple[str, str] = (" (bacteria)", " (phage)")) -> Tuple[AbundanceMatrix, List[str], List[str]]:
    """
    Inner-join a bacteria and a phage matrix on sample id.

    Samples missing from either side are dropped. Entity labels present on
    both sides (e.g. "unclassified unclassified") are suffixed so the two
    sets stay disjoint.

    Returns:
        (joined matrix, set A column labels, set B column labels)
    """
    left = bacteria.frame
    right = phage.frame

    shared = set(left.columns) & set(right.columns)
    if shared:
        logger.debug(f"{len(shared)} entity labels occur on both sides and are suffixed")
        left = left.rename(columns={c: f"{c}{suffixes[0]}" for c in shared})
        right = right.rename(columns={c: f"{c}{suffixes[1]}" for c in shared})

    joined = left.join(right, how="inner")
    n_dropped = len(set(left.index) ^ set(right.index))
    if n_dropped:
        logger.debug(f"{n_dropped} samples present on only one side were dropped from the join")

    return AbundanceMatrix(joined), list(left.columns), list(right.columns)


def _run_unit(task):
    key, cohort, matrix, set_a, set_b, alpha = task
    try:
        result = correlation_obj(matrix, set_a, set_b, alpha=alpha)
    except Exception as exc:
        logger.warning(f"{key[0]}-{key[1]} / {cohort}: comparison failed ({exc})")
        result = CorrelationResult.empty_comparison(
            reason=f"{type(exc).__name__}: {exc}",
            alpha=alpha,
            n_samples=len(matrix),
        )
    return key, cohort, result


def _build_tasks(bacteria: Dict[str, AbundanceMatrix],
                 phage: Dict[str, AbundanceMatrix],
                 membership: Dict[str, Set[str]],
                 settings: ComparisonSettings) -> Tuple[list, Results]:
    tasks = []
    results: Results = {}
    for key in itertools.product(settings.ranks, settings.ranks):
        b_rank, p_rank = key
        results[key] = {}
        if b_rank not in bacteria or p_rank not in phage:
            reason = f"no abundance matrix for {'bacteria ' + b_rank if b_rank not in bacteria else 'phage ' + p_rank}"
            logger.warning(f"{b_rank}-{p_rank}: {reason}")
            for cohort in membership:
                results[key][cohort] = CorrelationResult.empty_comparison(reason, alpha=settings.alpha)
            continue

        try:
            joined, set_a, set_b = join_sides(bacteria[b_rank], phage[p_rank])
            cohorts = split_cohorts(joined, membership)
        except Exception as exc:
            logger.warning(f"{b_rank}-{p_rank}: join failed ({exc})")
            for cohort in membership:
                results[key][cohort] = CorrelationResult.empty_comparison(
                    f"{type(exc).__name__}: {exc}", alpha=settings.alpha
                )
            continue

        for cohort, cohort_matrix in cohorts.items():
            tasks.append((key, cohort, cohort_matrix, set_a, set_b, settings.alpha))
    return tasks, results


def run_comparisons(bacteria: Dict[str, AbundanceMatrix],
                    phage: Dict[str, AbundanceMatrix],
                    membership: Dict[str, Set[str]],
                    settings: ComparisonSettings = ComparisonSettings()) -> Results:
    """
    Run every (level pair, cohort) comparison.

    Parameters:
        bacteria (dict): rank -> AbundanceMatrix for the bacteria side.
        phage (dict): rank -> AbundanceMatrix for the phage side.
        membership (dict): cohort label -> sample ids.
        settings (ComparisonSettings): alpha, ranks and worker count.

    Returns:
        dict: (bacteria rank, phage rank) -> {cohort: CorrelationResult}
    """
    if not membership:
        raise ValueError("At least one cohort is required.")

    tasks, results = _build_tasks(bacteria, phage, membership, settings)

    n_workers = max(1, int(settings.n_workers))
    n_procs = min(n_workers, len(tasks))
    desc = f"Comparisons ({len(settings.ranks)}x{len(settings.ranks)} ranks, {len(membership)} cohorts)"

    with tqdm(total=len(tasks), desc=desc, dynamic_ncols=True, disable=None) as pbar:
        if n_procs <= 1:
            for task in tasks:
                key, cohort, result = _run_unit(task)
                results[key][cohort] = result
                pbar.update(1)
        else:
            ctx = mp.get_context(_best_mp_start())
            with ctx.Pool(processes=n_procs) as pool:
                for key, cohort, result in pool.imap_unordered(_run_unit, tasks):
                    results[key][cohort] = result
                    pbar.update(1)

    # restore cohort order within each key regardless of completion order
    results = {
        key: {cohort: by_cohort[cohort] for cohort in membership if cohort in by_cohort}
        for key, by_cohort in results.items()
    }

    n_total = sum(len(v) for v in results.values())
    n_failed = sum(r.failed for v in results.values() for r in v.values())
    n_populated = sum(r.has_significant for v in results.values() for r in v.values())
    logger.info(
        f"{n_total} comparisons: {n_populated} with significant pairs, "
        f"{n_total - n_populated - n_failed} without, {n_failed} failed"
    )
    if n_total == 0 or n_failed == n_total:
        raise NoSuccessfulComparisons(f"All {n_total} comparisons failed.")
    return results


def result_basename(key: LevelPairKey, cohort: str) -> str:
    return f"{key[0]}-{key[1]}_{cohort}"


def write_results(results: Results, output_dir: str, tag: str = "") -> pd.DataFrame:
    """
    Write every result as tab-separated tables with headers on both axes:

        <tag><b>-<p>_<cohort>_Correlation_Matrix.tsv
        <tag><b>-<p>_<cohort>_Correlation_P-Values.tsv
        <tag><b>-<p>_<cohort>_Significant_Correlation_Matrix.tsv   (only when populated)

    plus <tag>summary.tsv with one row per comparison.

    Returns:
        pd.DataFrame: The summary table.
    """
    os.makedirs(output_dir, exist_ok=True)

    rows = []
    for key, by_cohort in results.items():
        for cohort, result in by_cohort.items():
            base = os.path.join(output_dir, f"{tag}{result_basename(key, cohort)}")
            if not result.failed:
                result.cross_matrix.to_csv(f"{base}_Correlation_Matrix.tsv", sep="\t")
                result.p_value_matrix.to_csv(f"{base}_Correlation_P-Values.tsv", sep="\t")
            if result.has_significant:
                result.significant_cross_matrix.to_csv(f"{base}_Significant_Correlation_Matrix.tsv", sep="\t")
            if not result.failed and not result.plottable:
                logger.info(
                    f"{result_basename(key, cohort)}: {result.n_significant} significant cells, "
                    f"not enough for a heatmap"
                )
            rows.append({
                "bacteria_rank": key[0],
                "phage_rank": key[1],
                "cohort": cohort,
                "status": result.status,
                "n_samples": result.n_samples,
                "n_tests": result.n_tests,
                "n_rows": result.cross_matrix.shape[0],
                "n_columns": result.cross_matrix.shape[1],
                "n_significant": result.n_significant,
                "plottable": result.plottable,
                "reason": result.reason,
            })

    summary = pd.DataFrame(rows, columns=[
        "bacteria_rank", "phage_rank", "cohort", "status", "n_samples", "n_tests",
        "n_rows", "n_columns", "n_significant", "plottable", "reason",
    ])
    summary_path = os.path.join(output_dir, f"{tag}summary.tsv")
    summary.to_csv(summary_path, sep="\t", index=False)
    logger.info(f"Correlation results saved to {output_dir}")
    return summary


def run_correlation(args):
    """
    Run the full correlation pipeline from files.

    Expected attributes in args:
      - bacteria_counts, phage_counts: long-format count TSVs
      - annotations_a, annotations_b: sample annotation TSVs
      - sample_column, covariate_column, cohorts (optional list)
      - ranks, alpha, abundance_cutoff, n_workers
      - output_dir, tag
    """
    settings = ComparisonSettings(
        alpha=args.alpha,
        ranks=tuple(args.ranks),
        abundance_cutoff=args.abundance_cutoff,
        n_workers=args.n_workers,
        cohorts=tuple(args.cohorts) if args.cohorts else None,
    )

    # Step 1. Per-rank abundance matrices for both sides.
    bacteria = project_by_rank(load_counts(args.bacteria_counts), settings.ranks, settings.abundance_cutoff)
    phage = project_by_rank(load_counts(args.phage_counts), settings.ranks, settings.abundance_cutoff)

    # Step 2. Cohort membership.
    membership = build_cohort_membership(
        load_annotations(args.annotations_a, args.sample_column, args.covariate_column),
        load_annotations(args.annotations_b, args.sample_column, args.covariate_column),
        labels=settings.cohorts,
        sample_column=args.sample_column,
        covariate_column=args.covariate_column,
    )

    # Step 3. Comparisons.
    results = run_comparisons(bacteria, phage, membership, settings)

    # Step 4. Write.
    write_results(results, args.output_dir, tag=args.tag)
    return results
