#!/usr/bin/env python3
# phagecorr/analysis.py

from __future__ import annotations
import logging
from dataclasses import dataclass
from typing import Iterable, Optional, Tuple

import numpy as np
import pandas as pd
from scipy.stats import rankdata, t as t_dist

from phagecorr._data_config import *
from phagecorr.exceptions import InsufficientSamples, SchemaMismatch
from phagecorr.pantry import AbundanceMatrix

logger = logging.getLogger(__name__)

_ZERO_VARIANCE = 1e-12


def rank_correlation(values: np.ndarray) -> Tuple[np.ndarray, np.ndarray]:
    """
    Spearman correlation and two-sided p-values for every pair of columns.

    Columns are converted to ranks (ties get their average rank) and the
    Pearson correlation of the ranks is taken. P-values come from Student's t
    with n - 2 degrees of freedom.

    Parameters
    ----------
    values : np.ndarray
        Samples x variables matrix with at least 3 rows.

    Returns
    -------
    rho : np.ndarray
        Symmetric k x k correlation matrix. Rows/columns of zero-variance
        variables are NaN (undefined), including their diagonal cell.
    p : np.ndarray
        Matching two-sided p-values, NaN wherever rho is NaN.
    """
    X = np.asarray(values, dtype=float)
    n, k = X.shape
    if n < 3:
        raise InsufficientSamples(n, 3)

    ranks = rankdata(X, axis=0)
    centred = ranks - ranks.mean(axis=0)
    ss = (centred ** 2).sum(axis=0)
    defined = ss > _ZERO_VARIANCE

    with np.errstate(divide="ignore", invalid="ignore"):
        rho = (centred.T @ centred) / np.sqrt(np.outer(ss, ss))
    rho[~defined, :] = np.nan
    rho[:, ~defined] = np.nan
    rho = np.clip(rho, -1.0, 1.0)
    diag = np.nonzero(defined)[0]
    rho[diag, diag] = 1.0

    dof = n - 2
    with np.errstate(divide="ignore", invalid="ignore"):
        t_stat = rho * np.sqrt(dof / ((1.0 + rho) * (1.0 - rho)))
    p = 2.0 * t_dist.sf(np.abs(t_stat), dof)
    p = np.clip(p, 0.0, 1.0)

    return rho, p


def bh_qvalues(p, m_total: Optional[int] = None) -> np.ndarray:
    """
    Benjamini–Hochberg FDR q-values (monotone).

    Parameters
    ----------
    p : array-like
        Raw p-values. NaN entries are untested and stay NaN.
    m_total : int, optional
        Number of hypotheses corrected for. Defaults to the number of finite
        p-values.

    Returns
    -------
    q : np.ndarray
        Adjusted p-values on the original positions, capped at 1.
    """
    p = np.asarray(p, dtype=float)
    m = p.size
    if m == 0:
        return np.array([], float)

    finite_mask = np.isfinite(p)
    if not finite_mask.any():
        return np.full(m, np.nan)

    n = int(m_total) if m_total is not None else int(finite_mask.sum())

    order = np.argsort(p[finite_mask], kind="mergesort")
    ranks = np.arange(1, finite_mask.sum() + 1, dtype=float)
    q_finite = p[finite_mask][order] * n / ranks
    q_finite = np.minimum.accumulate(q_finite[::-1])[::-1]
    q_finite = np.minimum(q_finite, 1.0)

    q_final = np.full(m, np.nan, dtype=float)
    idx = np.where(finite_mask)[0]
    q_final[idx[order]] = q_finite
    return q_final


@dataclass(frozen=True, eq=False)
class CorrelationResult:
    """
    Outcome of one cross-correlation comparison.

    ``status`` is one of "populated" (at least one significant pair),
    "empty" (no significant pairs, or nothing left to report) or "failed"
    (the comparison could not be run; ``reason`` says why).
    ``significant_cross_matrix`` is None unless the status is "populated".
    """
    cross_matrix: pd.DataFrame
    p_value_matrix: pd.DataFrame
    raw_p_value_matrix: pd.DataFrame
    significant_cross_matrix: Optional[pd.DataFrame]
    status: str
    alpha: float
    n_samples: int = 0
    n_tests: int = 0
    reason: str = ""

    @classmethod
    def empty_comparison(cls, reason: str, alpha: float = DEFAULT_ALPHA, n_samples: int = 0) -> "CorrelationResult":
        return cls(
            cross_matrix=pd.DataFrame(dtype=float),
            p_value_matrix=pd.DataFrame(dtype=float),
            raw_p_value_matrix=pd.DataFrame(dtype=float),
            significant_cross_matrix=None,
            status=STATUS_FAILED,
            alpha=alpha,
            n_samples=n_samples,
            reason=reason,
        )

    @property
    def failed(self) -> bool:
        return self.status == STATUS_FAILED

    @property
    def has_significant(self) -> bool:
        return self.status == STATUS_POPULATED

    @property
    def n_significant(self) -> int:
        if self.significant_cross_matrix is None:
            return 0
        return int(self.significant_cross_matrix.notna().to_numpy().sum())

    @property
    def plottable(self) -> bool:
        # a heatmap needs at least two cells
        return self.n_significant >= 2


def _empty_result(rows, cols, alpha, n_samples, n_tests, reason) -> CorrelationResult:
    empty = pd.DataFrame(np.empty((len(rows), len(cols))), index=rows, columns=cols, dtype=float)
    return CorrelationResult(
        cross_matrix=empty,
        p_value_matrix=empty.copy(),
        raw_p_value_matrix=empty.copy(),
        significant_cross_matrix=None,
        status=STATUS_EMPTY,
        alpha=alpha,
        n_samples=n_samples,
        n_tests=n_tests,
        reason=reason,
    )


def correlation_obj(
    matrix: AbundanceMatrix,
    set_a: Iterable[str],
    set_b: Iterable[str],
    alpha: float = DEFAULT_ALPHA,
    min_samples: int = MIN_SAMPLES,
) -> CorrelationResult:
    """
    Cross-set Spearman correlations with BH-corrected significance.

    The correlation and the FDR correction run over *all* columns of
    ``matrix``; only afterwards is the result reduced to ``set_a`` rows and
    ``set_b`` columns. Correcting the reduced view instead would change the
    adjusted p-values.

    Columns whose abundance sums to zero, and any other zero-variance column,
    are dropped from the reported sets but still take part in the full pass
    (where they contribute no tests).

    Parameters
    ----------
    matrix : AbundanceMatrix
        Joined samples x entities matrix.
    set_a, set_b : iterable of str
        Entity labels reported as rows and columns respectively.
    alpha : float
        Cells whose corrected p-value exceeds alpha are masked in the
        significant view.
    min_samples : int
        Fewer rows than this raises InsufficientSamples.

    Returns
    -------
    CorrelationResult
    """
    if not 0.0 < alpha <= 1.0:
        raise ValueError(f"alpha must lie in (0, 1], got {alpha}")

    n_samples = len(matrix)
    if n_samples < max(min_samples, 3):
        raise InsufficientSamples(n_samples, max(min_samples, 3))

    entities = matrix.entities
    position = {e: i for i, e in enumerate(entities)}
    set_a = set(set_a)
    set_b = set(set_b)
    unknown = sorted((set_a | set_b) - set(position))
    if unknown:
        raise SchemaMismatch(unknown, where="abundance matrix")

    # Exclusion pass
    totals = matrix.column_totals
    zero_sum = {e for e in entities if totals[position[e]] == 0}

    # Full correlation pass
    rho, p = rank_correlation(matrix.values)
    undefined = {e for e in entities if np.isnan(rho[position[e], position[e]])}
    excluded = zero_sum | undefined
    if excluded:
        logger.debug(
            f"{len(zero_sum)} all-zero and {len(undefined - zero_sum)} constant columns "
            f"excluded from reporting"
        )

    rows = [e for e in entities if e in set_a and e not in excluded]
    cols = [e for e in entities if e in set_b and e not in excluded]

    # Multiple-testing correction over the whole upper triangle
    iu, ju = np.triu_indices(len(entities), k=1)
    q_upper = bh_qvalues(p[iu, ju])
    n_tests = int(np.isfinite(p[iu, ju]).sum())
    q = np.full_like(p, np.nan)
    q[iu, ju] = q_upper
    q[ju, iu] = q_upper

    if not rows or not cols:
        return _empty_result(rows, cols, alpha, n_samples, n_tests,
                             reason="no reportable entities after exclusion")

    # Reduction
    grid = np.ix_([position[e] for e in rows], [position[e] for e in cols])
    cross = pd.DataFrame(rho[grid], index=rows, columns=cols)
    qvals = pd.DataFrame(q[grid], index=rows, columns=cols)
    pvals = pd.DataFrame(p[grid], index=rows, columns=cols)

    # Significance filter
    significant = cross.where(qvals <= alpha)
    n_significant = int(significant.notna().to_numpy().sum())

    if n_significant == 0:
        return CorrelationResult(
            cross_matrix=cross,
            p_value_matrix=qvals,
            raw_p_value_matrix=pvals,
            significant_cross_matrix=None,
            status=STATUS_EMPTY,
            alpha=alpha,
            n_samples=n_samples,
            n_tests=n_tests,
            reason="no significant pairs",
        )

    return CorrelationResult(
        cross_matrix=cross,
        p_value_matrix=qvals,
        raw_p_value_matrix=pvals,
        significant_cross_matrix=significant,
        status=STATUS_POPULATED,
        alpha=alpha,
        n_samples=n_samples,
        n_tests=n_tests,
    )
