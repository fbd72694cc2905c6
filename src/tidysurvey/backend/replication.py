"""
Replicate-weight variance and replicate-weight construction.

Variance from replicates:

    V = scale * sum_r rscales_r * (theta_r - centre)(theta_r - centre)^T

where centre is the full-sample estimate (mse=True) or the mean of the
replicate estimates (mse=False).

Replicate weights can also be built from a linearization design:
    - JK1: delete-one-PSU jackknife (unstratified)
    - JKn: stratified delete-one-PSU jackknife
    - bootstrap: Rao-Wu rescaling bootstrap
    - BRR / Fay: balanced repeated replication from a Hadamard matrix,
      for designs with exactly two PSUs per stratum
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import List, Optional, Sequence

import numpy as np
import pandas as pd
from scipy.linalg import hadamard

from tidysurvey.errors import DesignError

logger = logging.getLogger(__name__)


REPLICATE_TYPES = ("bootstrap", "JK1", "JKn", "BRR", "Fay", "successive-difference", "ACS", "other")


def replicate_vcov(replicates: np.ndarray, full: np.ndarray, scale: float,
                   rscales: Sequence[float], mse: bool) -> np.ndarray:
    """
    Variance-covariance matrix from replicate estimates.

    Args:
        replicates: (R, k) replicate estimates
        full: (k,) full-sample estimate
        scale: overall multiplier
        rscales: (R,) per-replicate multipliers
        mse: centre on the full-sample estimate

    Returns:
        (k, k) covariance matrix
    """
    replicates = np.asarray(replicates, dtype=float)
    if replicates.ndim == 1:
        replicates = replicates[:, None]
    centre = np.asarray(full, dtype=float) if mse else replicates.mean(axis=0)
    deviations = replicates - centre
    rscales = np.asarray(rscales, dtype=float)
    return scale * (deviations * rscales[:, None]).T @ deviations


def default_scale(rep_type: str, n_replicates: int, rho: Optional[float] = None) -> float:
    """Overall scale for a replicate type with R replicates."""
    if rep_type == "bootstrap":
        return 1.0 / (n_replicates - 1)
    if rep_type == "JK1":
        return (n_replicates - 1) / n_replicates
    if rep_type == "BRR":
        return 1.0 / n_replicates
    if rep_type == "Fay":
        if rho is None:
            raise DesignError("Fay replicate weights need rho")
        return 1.0 / (n_replicates * (1 - rho) ** 2)
    if rep_type in ("successive-difference", "ACS"):
        return 4.0 / n_replicates
    return 1.0


@dataclass
class GeneratedReplicates:
    """Replicate multipliers built from a design, with their scales."""

    factors: np.ndarray  # (n, R) multipliers of the full-sample weights
    scale: float
    rscales: List[float]
    rep_type: str
    rho: Optional[float] = None


def _psu_frame(strata: np.ndarray, psu: np.ndarray) -> pd.DataFrame:
    return pd.DataFrame({"stratum": strata, "psu": psu})


def jackknife_factors(strata: np.ndarray, psu: np.ndarray, stratified: bool,
                      fraction: Optional[np.ndarray] = None) -> GeneratedReplicates:
    """
    Delete-one-PSU jackknife.

    Replicate j drops PSU j; remaining PSUs in the same stratum are
    reweighted by n_h / (n_h - 1). JK1 ignores strata. For JKn the
    replicate scale of stratum h carries the correction (1 - f_h).
    """
    frame = _psu_frame(strata if stratified else np.zeros(len(psu)), psu)
    psus = frame[["stratum", "psu"]].drop_duplicates()
    counts = psus.groupby("stratum")["psu"].transform("count").to_numpy()
    n = len(frame)

    columns = []
    rscales = []
    for (stratum, unit), n_h in zip(psus.itertuples(index=False, name=None), counts):
        if n_h < 2:
            logger.debug("Stratum %r has a single PSU and gets no jackknife replicate", stratum)
            continue
        factor = np.ones(n)
        in_stratum = frame["stratum"].to_numpy() == stratum
        dropped = in_stratum & (frame["psu"].to_numpy() == unit)
        factor[in_stratum] = n_h / (n_h - 1)
        factor[dropped] = 0.0
        columns.append(factor)
        f_h = fraction[dropped][0] if (fraction is not None and stratified) else 0.0
        rscales.append((1 - f_h) * (n_h - 1) / n_h)

    if not columns:
        raise DesignError("Cannot build jackknife replicates: no stratum has two or more PSUs")

    factors = np.column_stack(columns)
    if stratified:
        return GeneratedReplicates(factors, 1.0, rscales, "JKn")
    n_rep = factors.shape[1]
    return GeneratedReplicates(factors, default_scale("JK1", n_rep), [1.0] * n_rep, "JK1")


def bootstrap_factors(strata: np.ndarray, psu: np.ndarray, replicates: int,
                      seed: Optional[int] = None) -> GeneratedReplicates:
    """
    Rao-Wu rescaling bootstrap.

    In each replicate, n_h - 1 PSUs are drawn with replacement within
    each stratum and a PSU drawn m times gets factor m * n_h / (n_h - 1).
    """
    if replicates < 2:
        raise DesignError("Bootstrap needs at least 2 replicates")
    rng = np.random.default_rng(seed)
    frame = _psu_frame(strata, psu)
    factors = np.ones((len(frame), replicates))

    for stratum, rows in frame.groupby("stratum", sort=True).groups.items():
        positions = frame.index.get_indexer(rows)
        units = pd.unique(frame["psu"].to_numpy()[positions])
        n_h = len(units)
        if n_h < 2:
            continue
        unit_of_row = pd.Index(units).get_indexer(frame["psu"].to_numpy()[positions])
        for r in range(replicates):
            draws = rng.integers(0, n_h, size=n_h - 1)
            counts = np.bincount(draws, minlength=n_h)
            factors[positions, r] = counts[unit_of_row] * n_h / (n_h - 1)

    return GeneratedReplicates(factors, default_scale("bootstrap", replicates), [1.0] * replicates, "bootstrap")


def brr_factors(strata: np.ndarray, psu: np.ndarray, rho: float = 0.0) -> GeneratedReplicates:
    """
    Balanced repeated replication (Fay's method when rho > 0).

    Uses columns 1..H of a Hadamard matrix whose order is the smallest
    power of two greater than the number of strata H.
    """
    if not 0 <= rho < 1:
        raise DesignError(f"Fay's rho must be in [0, 1), got {rho}")
    frame = _psu_frame(strata, psu)
    stratum_values = pd.unique(frame["stratum"])
    n_strata = len(stratum_values)

    order = 2
    while order <= n_strata:
        order *= 2
    matrix = hadamard(order)[:, 1:n_strata + 1]

    factors = np.ones((len(frame), order))
    for h, stratum in enumerate(stratum_values):
        in_stratum = frame["stratum"].to_numpy() == stratum
        units = pd.unique(frame["psu"].to_numpy()[in_stratum])
        if len(units) != 2:
            raise DesignError(
                f"BRR needs exactly two PSUs per stratum; stratum {stratum!r} has {len(units)}"
            )
        first = in_stratum & (frame["psu"].to_numpy() == units[0])
        second = in_stratum & (frame["psu"].to_numpy() == units[1])
        for r in range(order):
            picked_first = matrix[r, h] > 0
            factors[first, r] = (2 - rho) if picked_first else rho
            factors[second, r] = rho if picked_first else (2 - rho)

    rep_type = "Fay" if rho > 0 else "BRR"
    scale = default_scale(rep_type, order, rho)
    return GeneratedReplicates(factors, scale, [1.0] * order, rep_type, rho=rho if rho > 0 else None)
