"""
Estimates and their flattening into table columns.

The backend hands back point estimates with a variance-covariance
matrix; summarize() needs flat columns. The naming rules:

    name        point estimate
    name_se     standard error            (vartype "se")
    name_low    lower confidence bound    (vartype "ci")
    name_upp    upper confidence bound    (vartype "ci")
    name_var    variance                  (vartype "var")
    name_cv     coefficient of variation  (vartype "cv")
    name_deff   design effect             (deff=True)

Uncertainty columns follow the order the vartypes were requested in.
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import Dict, List, Optional, Sequence, Tuple, Union

import numpy as np
from scipy import stats

from tidysurvey.config import VARTYPES, get_options
from tidysurvey.errors import SummaryError


@dataclass
class Estimate:
    """
    Point estimates with their uncertainty.

    Properties:
        coef: (k,) point estimates
        vcov: (k, k) variance-covariance matrix
        df: degrees of freedom for intervals (inf = normal)
        names: (k,) output column names
        interval: optional (k, 2) precomputed confidence bounds, used in
            place of coef ± t * se (Woodruff and logit intervals)
        deff: optional (k,) design effects
    """

    coef: np.ndarray
    vcov: np.ndarray
    df: float = float("inf")
    names: Tuple[str, ...] = ()
    interval: Optional[np.ndarray] = None
    deff: Optional[np.ndarray] = None

    @property
    def se(self) -> np.ndarray:
        return np.sqrt(np.diag(self.vcov))

    @property
    def variance(self) -> np.ndarray:
        return np.diag(self.vcov)

    @property
    def cv(self) -> np.ndarray:
        with np.errstate(divide="ignore", invalid="ignore"):
            return self.se / self.coef


def normalize_vartype(vartype: Union[str, Sequence[str], None]) -> List[str]:
    """
    Turn a vartype argument into a list of distinct variance types.

    "default" (or omitting it) picks the configured default_vartype; None
    or an empty list asks for no uncertainty columns.
    """
    if vartype is None:
        return []
    if isinstance(vartype, str):
        vartype = [get_options().default_vartype if vartype == "default" else vartype]
    result = []
    for v in vartype:
        if v not in VARTYPES:
            raise SummaryError(f"vartype must be one of {', '.join(VARTYPES)}, got {v!r}")
        if v not in result:
            result.append(v)
    return result


def critical_value(level: float, df: float) -> float:
    """Two-sided critical value of t (normal when df is infinite)."""
    if not 0 < level < 1:
        raise SummaryError(f"level must be between 0 and 1, got {level!r}")
    q = 1 - (1 - level) / 2
    if df is None or not np.isfinite(df):
        return float(stats.norm.ppf(q))
    if df <= 0:
        return float("nan")
    return float(stats.t.ppf(q, df))


def confidence_interval(estimate: Estimate, level: float) -> np.ndarray:
    """(k, 2) confidence bounds for an estimate."""
    if estimate.interval is not None:
        return np.asarray(estimate.interval, dtype=float)
    crit = critical_value(level, estimate.df)
    se = estimate.se
    return np.column_stack([estimate.coef - crit * se, estimate.coef + crit * se])


def flatten_estimate(estimate: Estimate, vartype: Sequence[str], level: float,
                     deff: bool = False) -> Dict[str, float]:
    """
    Flatten an estimate into an ordered dict of output columns.

    Example:
        Estimate(coef=[650.2], vcov=[[49.0]], names=("api",)), ["se", "ci"]
        → {"api": 650.2, "api_se": 7.0, "api_low": ..., "api_upp": ...}
    """
    row: Dict[str, float] = {}
    se = estimate.se
    ci = confidence_interval(estimate, level) if "ci" in vartype else None
    variance = estimate.variance
    cv = estimate.cv

    for j, name in enumerate(estimate.names):
        row[name] = float(estimate.coef[j])
        for v in vartype:
            if v == "se":
                row[f"{name}_se"] = float(se[j])
            elif v == "ci":
                row[f"{name}_low"] = float(ci[j, 0])
                row[f"{name}_upp"] = float(ci[j, 1])
            elif v == "var":
                row[f"{name}_var"] = float(variance[j])
            elif v == "cv":
                row[f"{name}_cv"] = float(cv[j])
        if deff:
            row[f"{name}_deff"] = float(estimate.deff[j]) if estimate.deff is not None else float("nan")
    return row

