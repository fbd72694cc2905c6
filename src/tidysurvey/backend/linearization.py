"""
Taylor-linearization variance for stratified cluster samples.

The variance of an estimator is estimated from its linearized scores:
scores are summed to PSU totals, centred within each stratum, and the
between-PSU spread is scaled by n_h / (n_h - 1) and the finite
population correction (1 - f_h). Only the first sampling stage enters
(the "ultimate cluster" approximation).
"""

from __future__ import annotations

import logging
from typing import Optional

import numpy as np
import pandas as pd

from tidysurvey.errors import LonelyPSUError

logger = logging.getLogger(__name__)


def psu_totals(scores: np.ndarray, strata: np.ndarray, psu: np.ndarray,
               fraction: Optional[np.ndarray] = None) -> pd.DataFrame:
    """
    Sum scores to one row per (stratum, PSU).

    Returns a DataFrame indexed by (stratum, psu) with the score columns
    and a `_fraction` column holding the stratum sampling fraction.
    """
    k = scores.shape[1]
    frame = pd.DataFrame(scores, columns=[f"s{j}" for j in range(k)])
    frame["_stratum"] = strata
    frame["_psu"] = psu
    frame["_fraction"] = 0.0 if fraction is None else fraction
    grouped = frame.groupby(["_stratum", "_psu"], sort=True)
    totals = grouped[[f"s{j}" for j in range(k)]].sum()
    totals["_fraction"] = grouped["_fraction"].first()
    return totals


def stratified_vcov(scores: np.ndarray, strata: np.ndarray, psu: np.ndarray,
                    fraction: Optional[np.ndarray] = None,
                    lonely_psu: str = "fail") -> np.ndarray:
    """
    Variance-covariance matrix of the sum of scores.

    Args:
        scores: (n, k) array of linearized scores
        strata: (n,) stratum labels
        psu: (n,) PSU labels, unique within stratum
        fraction: (n,) first-stage sampling fraction per row (0 = with replacement)
        lonely_psu: Policy for strata with a single PSU (see config.SurveyOptions)

    Returns:
        (k, k) covariance matrix

    Raises:
        LonelyPSUError: A stratum has one PSU and the policy is 'fail'
    """
    scores = np.asarray(scores, dtype=float)
    if scores.ndim == 1:
        scores = scores[:, None]
    k = scores.shape[1]

    totals = psu_totals(scores, strata, psu, fraction)
    columns = [f"s{j}" for j in range(k)]
    values = totals[columns].to_numpy()
    stratum_of = totals.index.get_level_values("_stratum")
    fractions = totals["_fraction"].to_numpy()

    grand_mean = values.mean(axis=0) if len(values) else np.zeros(k)
    vcov = np.zeros((k, k))
    lonely = []
    contributions = []

    for stratum in pd.unique(stratum_of):
        rows = stratum_of == stratum
        block = values[rows]
        n_h = block.shape[0]
        f_h = fractions[rows][0]

        if n_h == 1:
            lonely.append((stratum, block))
            continue

        centred = block - block.mean(axis=0)
        contribution = (1 - f_h) * n_h / (n_h - 1) * centred.T @ centred
        contributions.append(contribution)
        vcov += contribution

    if lonely:
        names = ", ".join(str(s) for s, _ in lonely)
        if lonely_psu == "fail":
            raise LonelyPSUError(
                f"Stratum ({names}) has only one PSU; set lonely_psu to "
                f"'remove', 'certainty', 'adjust' or 'average' to continue"
            )
        logger.debug("Lonely PSU strata (%s) handled with policy %r", names, lonely_psu)
        if lonely_psu == "adjust":
            for _, block in lonely:
                centred = block - grand_mean
                vcov += centred.T @ centred
        elif lonely_psu == "average":
            if contributions:
                average = sum(contributions) / len(contributions)
                vcov += average * len(lonely)
            else:
                vcov[:] = np.nan
        # "remove" and "certainty" contribute nothing

    return vcov


def design_degrees_of_freedom(strata: np.ndarray, psu: np.ndarray) -> int:
    """Number of PSUs minus number of strata."""
    frame = pd.DataFrame({"stratum": strata, "psu": psu}).drop_duplicates()
    return int(len(frame) - frame["stratum"].nunique())


def phase1_vcov(scores: np.ndarray, strata: np.ndarray, psu: np.ndarray,
                fraction: Optional[np.ndarray], phase2_probs: np.ndarray,
                lonely_psu: str = "fail") -> np.ndarray:
    """
    Phase-1 variance of a two-phase estimator, estimated from phase-2 rows.

    `scores` are the phase-2 expanded scores (zero off phase 2). Squared
    PSU totals of those scores expand each unit's own square by 1 / p2_i^2 where
    1 / p2_i is unbiased, so the double-expansion estimate subtracts
    (1 - f_h)(1 - p2_i) s_i s_i' from the plain stratified variance. Cross
    products between units keep the p2_i * p2_j expansion.
    """
    scores = np.asarray(scores, dtype=float)
    if scores.ndim == 1:
        scores = scores[:, None]
    vcov = stratified_vcov(scores, strata, psu, fraction, lonely_psu=lonely_psu)

    units = pd.DataFrame({"stratum": strata, "psu": psu})
    n_h = units.drop_duplicates().groupby("stratum")["psu"].count()
    sampled = n_h.reindex(strata).to_numpy() > 1
    f = np.zeros(len(scores)) if fraction is None else np.asarray(fraction, dtype=float)
    own = np.where(sampled, (1 - f) * (1 - phase2_probs), 0.0)
    return vcov - (scores * own[:, None]).T @ scores
