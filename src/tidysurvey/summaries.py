"""
Summary functions for summarize().

Each summary is a small object describing WHAT to estimate; summarize()
calls `compute(name, context)` once per group and gets back the flat
columns for that group's row.

    design.group_by("stype").summarize(
        api=survey_mean("api00", vartype=["se", "ci"]),
        n=unweighted("n()"),
    )

Values are evaluated on every row of the design and zeroed outside the
group's domain before the backend sees them, so the variance always uses
the full design.
"""

from __future__ import annotations

from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional, Sequence, Tuple, Union

import numpy as np
import pandas as pd
from scipy import special

from tidysurvey.backend import (
    CorrelationStatistic,
    MeanStatistic,
    QuantileStatistic,
    RatioStatistic,
    TotalStatistic,
    VarianceStatistic,
    weighted_quantile,
)
from tidysurvey.config import get_options
from tidysurvey.errors import EvaluationError, SummaryError
from tidysurvey.evaluator import as_expression, resolve
from tidysurvey.expressions import Expression
from tidysurvey.formula import to_formula
from tidysurvey.results import Estimate, critical_value, flatten_estimate, normalize_vartype


PROP_METHODS = ("logit", "mean")


@dataclass
class SummaryContext:
    """
    Where a summary is being computed.

    Properties:
        design: the survey design
        domain: rows of the current group (within the active subset)
        outer: rows of the enclosing group (all grouping variables but
            the last); used for shares of the innermost group
        groups: grouping variables
        keys: values of the grouping variables for this row
    """

    design: Any
    domain: np.ndarray
    outer: np.ndarray
    groups: Tuple[str, ...] = ()
    keys: Dict[str, Any] = field(default_factory=dict)


class Summary(ABC):
    """Base class for summary functions."""

    @abstractmethod
    def compute(self, name: str, context: SummaryContext) -> Dict[str, Any]:
        ...

    def formula(self) -> str:
        """The summary's inputs as a one-sided formula, e.g. "~api00"."""
        values = [getattr(self, attr, None) for attr in ("x", "y", "numerator", "denominator", "expr")]
        return to_formula(as_expression(v) for v in values if isinstance(v, (str, Expression)))


# =============================================================================
# Shared helpers
# =============================================================================

def _numeric(value, context: SummaryContext, label: str) -> np.ndarray:
    """Evaluate a column expression on every design row as floats."""
    data = context.design.data
    try:
        values = resolve(value, data)
    except EvaluationError as e:
        raise SummaryError(f"Cannot evaluate {label}: {e}") from e
    if not isinstance(values, pd.Series):
        values = pd.Series(values, index=data.index)
    if values.dtype == bool or str(values.dtype) == "boolean":
        values = values.astype("Float64")
    if not (pd.api.types.is_numeric_dtype(values) or values.isna().all()):
        raise SummaryError(f"{label} must be numeric, got {values.dtype}")
    return values.to_numpy(dtype=float, na_value=np.nan)


def _label(value) -> str:
    return value if isinstance(value, str) else getattr(value, "name", repr(value))


class _EstimateSummary(Summary):
    """Summaries that produce an Estimate with uncertainty columns."""

    allows_deff = False

    def __init__(self, na_rm: bool = False, vartype: Union[str, Sequence[str], None] = "default",
                 level: Optional[float] = None, df: Optional[float] = None, deff: bool = False):
        self.na_rm = na_rm
        self.vartype = normalize_vartype(vartype)
        self.level = level
        self.df = df
        if deff and not self.allows_deff:
            raise SummaryError(f"{type(self).__name__} does not support deff")
        self.deff = deff

    def _level(self) -> float:
        level = get_options().confidence_level if self.level is None else self.level
        if not 0 < level < 1:
            raise SummaryError(f"level must be between 0 and 1, got {level!r}")
        return level

    def _df(self, design_df: float) -> float:
        if self.df is not None:
            return float(self.df)
        return design_df if get_options().use_design_df else float("inf")

    def _restrict(self, columns: List[np.ndarray], domain: np.ndarray) -> Optional[np.ndarray]:
        """Domain after NA handling; None means the result is NA."""
        missing = np.zeros(len(domain), dtype=bool)
        for values in columns:
            missing |= np.isnan(values)
        missing &= domain
        if missing.any():
            if not self.na_rm:
                return None
            return domain & ~missing
        return domain

    def _empty_row(self, names: Sequence[str]) -> Dict[str, Any]:
        fake = Estimate(coef=np.full(len(names), np.nan), vcov=np.full((len(names), len(names)), np.nan),
                        names=tuple(names), interval=np.full((len(names), 2), np.nan))
        return flatten_estimate(fake, self.vartype, 0.95, deff=self.deff)

    def _finish(self, estimate: Estimate, names: Sequence[str]) -> Dict[str, Any]:
        estimate.names = tuple(names)
        estimate.df = self._df(estimate.df)
        return flatten_estimate(estimate, self.vartype, self._level(), deff=self.deff)


def _srs_deff(estimate: Estimate, y: np.ndarray, w: np.ndarray, total: bool) -> np.ndarray:
    """Design effect against simple random sampling without replacement."""
    n = np.count_nonzero(w > 0)
    population = np.sum(w)
    s2 = VarianceStatistic(y).point(w)[0]
    v_srs = s2 / n * max(0.0, 1 - n / population) if population > 0 else np.nan
    if total:
        v_srs *= population ** 2
    with np.errstate(divide="ignore", invalid="ignore"):
        return estimate.variance / v_srs


def _share_of_group(context: SummaryContext) -> Tuple[np.ndarray, np.ndarray]:
    """Indicator of the innermost group and the domain it is a share of."""
    return context.domain.astype(float), context.outer


# =============================================================================
# Means, totals and proportions
# =============================================================================

class SurveyMean(_EstimateSummary):
    """Weighted mean, or share of the innermost group when x is None."""

    allows_deff = True

    def __init__(self, x=None, proportion: bool = False, prop_method: str = "logit", **kwargs):
        super().__init__(**kwargs)
        if prop_method not in PROP_METHODS:
            raise SummaryError(f"prop_method must be one of {', '.join(PROP_METHODS)}, got {prop_method!r}")
        self.x = x
        self.proportion = proportion
        self.prop_method = prop_method

    def compute(self, name, context):
        design = context.design
        if self.x is None:
            if not context.groups:
                return self._whole(name)
            y, domain = _share_of_group(context)
        else:
            y = _numeric(self.x, context, _label(self.x))
            domain = self._restrict([y], context.domain)
            if domain is None:
                return self._empty_row([name])
        y = np.where(domain, y, 0.0)

        estimate = design.estimate(MeanStatistic(y), domain)
        if self.deff:
            estimate.deff = _srs_deff(estimate, y, np.where(domain, design.full_weights(), 0.0), total=False)
        if self.proportion and self.prop_method == "logit":
            estimate.df = self._df(estimate.df)
            estimate.interval = _logit_interval(estimate, self._level())
        return self._finish(estimate, [name])

    def _whole(self, name):
        # The share of an ungrouped design is the whole population
        estimate = Estimate(coef=np.array([1.0]), vcov=np.zeros((1, 1)),
                            interval=np.array([[1.0, 1.0]]))
        if self.deff:
            estimate.deff = np.array([np.nan])
        return self._finish(estimate, [name])


def _logit_interval(estimate: Estimate, level: float) -> np.ndarray:
    """Confidence interval for a proportion computed on the logit scale."""
    p = estimate.coef
    se = estimate.se
    crit = critical_value(level, estimate.df)
    with np.errstate(divide="ignore", invalid="ignore"):
        centre = special.logit(p)
        half = crit * se / (p * (1 - p))
        bounds = np.column_stack([special.expit(centre - half), special.expit(centre + half)])
    # Degenerate proportions have a zero-width interval
    degenerate = (p <= 0) | (p >= 1)
    bounds[degenerate] = np.column_stack([p, p])[degenerate]
    return bounds


class SurveyProp(SurveyMean):
    """Share of the innermost group within the enclosing groups."""

    def __init__(self, **kwargs):
        super().__init__(x=None, **kwargs)


class SurveyTotal(_EstimateSummary):
    """Weighted total, or estimated population count when x is None."""

    allows_deff = True

    def __init__(self, x=None, **kwargs):
        super().__init__(**kwargs)
        self.x = x

    def compute(self, name, context):
        design = context.design
        if self.x is None:
            domain = context.domain
            y = domain.astype(float)
        else:
            y = _numeric(self.x, context, _label(self.x))
            domain = self._restrict([y], context.domain)
            if domain is None:
                return self._empty_row([name])
            y = np.where(domain, y, 0.0)

        estimate = design.estimate(TotalStatistic(y), domain)
        if self.deff:
            estimate.deff = _srs_deff(estimate, y, np.where(domain, design.full_weights(), 0.0), total=True)
        return self._finish(estimate, [name])


class SurveyRatio(_EstimateSummary):
    """Ratio of two weighted totals."""

    def __init__(self, numerator, denominator, **kwargs):
        super().__init__(**kwargs)
        self.numerator = numerator
        self.denominator = denominator

    def compute(self, name, context):
        y = _numeric(self.numerator, context, _label(self.numerator))
        x = _numeric(self.denominator, context, _label(self.denominator))
        domain = self._restrict([y, x], context.domain)
        if domain is None:
            return self._empty_row([name])
        statistic = RatioStatistic(np.where(domain, y, 0.0), np.where(domain, x, 0.0))
        return self._finish(context.design.estimate(statistic, domain), [name])


class SurveyVar(_EstimateSummary):
    """Estimated population variance."""

    def __init__(self, x, **kwargs):
        super().__init__(**kwargs)
        self.x = x

    def compute(self, name, context):
        y = _numeric(self.x, context, _label(self.x))
        domain = self._restrict([y], context.domain)
        if domain is None:
            return self._empty_row([name])
        statistic = VarianceStatistic(np.where(domain, y, 0.0))
        return self._finish(context.design.estimate(statistic, domain), [name])


class SurveySd(Summary):
    """Estimated population standard deviation (point estimate only)."""

    def __init__(self, x, na_rm: bool = False):
        self.x = x
        self.na_rm = na_rm

    def compute(self, name, context):
        y = _numeric(self.x, context, _label(self.x))
        domain = context.domain
        missing = np.isnan(y) & domain
        if missing.any():
            if not self.na_rm:
                return {name: float("nan")}
            domain = domain & ~missing
        w = np.where(domain, context.design.full_weights(), 0.0)
        with np.errstate(invalid="ignore", divide="ignore"):
            variance = VarianceStatistic(np.where(domain, y, 0.0)).point(w)[0]
        return {name: float(np.sqrt(variance))}


class SurveyCorr(_EstimateSummary):
    """Pearson correlation under the design weights."""

    def __init__(self, x, y, **kwargs):
        super().__init__(**kwargs)
        self.x = x
        self.y = y

    def compute(self, name, context):
        x = _numeric(self.x, context, _label(self.x))
        y = _numeric(self.y, context, _label(self.y))
        domain = self._restrict([x, y], context.domain)
        if domain is None:
            return self._empty_row([name])
        statistic = CorrelationStatistic(np.where(domain, x, 0.0), np.where(domain, y, 0.0))
        return self._finish(context.design.estimate(statistic, domain), [name])


# =============================================================================
# Quantiles
# =============================================================================

def quantile_suffix(q: float) -> str:
    """Column suffix for a quantile: 0.25 -> "_q25", 0.025 -> "_q25"."""
    return "_q" + f"{q * 100:g}".replace(".", "")


class SurveyQuantile(_EstimateSummary):
    """
    Weighted quantiles.

    Linearization designs get Woodruff intervals: the interval for the
    CDF at the estimated quantile is mapped back through the quantile
    function, and the reported SE is the interval width over 2 * crit.
    Replicate designs use the spread of the replicate quantiles.
    """

    def __init__(self, x, quantiles: Sequence[float], suffix: bool = True, **kwargs):
        super().__init__(**kwargs)
        quantiles = [float(q) for q in np.atleast_1d(quantiles)]
        if not quantiles:
            raise SummaryError("survey_quantile needs at least one quantile")
        for q in quantiles:
            if not 0 <= q <= 1:
                raise SummaryError(f"quantiles must be between 0 and 1, got {q!r}")
        if suffix:
            suffixes = [quantile_suffix(q) for q in quantiles]
            clashes = sorted({s for s in suffixes if suffixes.count(s) > 1})
            if clashes:
                raise SummaryError(f"Quantiles {quantiles} give duplicate column suffixes: {', '.join(clashes)}")
        elif len(quantiles) > 1:
            raise SummaryError("Several quantiles need column suffixes")
        self.x = x
        self.quantiles = quantiles
        self.suffix = suffix

    def _names(self, name: str) -> List[str]:
        if not self.suffix:
            return [name]
        return [name + quantile_suffix(q) for q in self.quantiles]

    def compute(self, name, context):
        names = self._names(name)
        y = _numeric(self.x, context, _label(self.x))
        domain = self._restrict([y], context.domain)
        if domain is None:
            return self._empty_row(names)
        y = np.where(domain, y, 0.0)
        design = context.design

        if design.kind == "replicate":
            estimate = design.estimate(QuantileStatistic(y, self.quantiles), domain)
            return self._finish(estimate, names)
        return self._finish(self._woodruff(design, y, domain), names)

    def _woodruff(self, design, y: np.ndarray, domain: np.ndarray) -> Estimate:
        w = np.where(domain, design.full_weights(), 0.0)
        points = weighted_quantile(y, w, self.quantiles)
        level = self._level()
        df = self._df(design.degf())
        crit = critical_value(level, df)

        bounds = []
        for p, point in zip(self.quantiles, points):
            if np.isnan(point):
                bounds.append((np.nan, np.nan))
                continue
            indicator = np.where(domain, (y <= point).astype(float), 0.0)
            cdf = design.estimate(MeanStatistic(indicator), domain)
            se_cdf = cdf.se[0]
            low_p = min(max(p - crit * se_cdf, 0.0), 1.0)
            upp_p = min(max(p + crit * se_cdf, 0.0), 1.0)
            low, upp = weighted_quantile(y, w, [low_p, upp_p])
            bounds.append((low, upp))

        interval = np.array(bounds, dtype=float)
        with np.errstate(invalid="ignore"):
            se = (interval[:, 1] - interval[:, 0]) / (2 * crit)
        return Estimate(coef=points, vcov=np.diag(se ** 2), df=df, interval=interval)


# =============================================================================
# Unweighted
# =============================================================================

class Unweighted(Summary):
    """An ordinary (unweighted) calculation over the group's rows."""

    def __init__(self, expr):
        self.expr = expr

    def compute(self, name, context):
        frame = context.design.data[context.domain]
        try:
            value = resolve(self.expr, frame)
        except EvaluationError as e:
            raise SummaryError(f"Cannot evaluate unweighted {name}: {e}") from e
        if isinstance(value, pd.Series):
            if len(value) != 1:
                raise SummaryError(
                    f"unweighted({_label(self.expr)}) must reduce to a single value, got {len(value)}"
                )
            value = value.iloc[0]
        if isinstance(value, np.generic):
            value = value.item()
        return {name: value}


# =============================================================================
# Public constructors
# =============================================================================

def survey_mean(x=None, na_rm: bool = False, vartype="default", level: Optional[float] = None,
                proportion: bool = False, prop_method: str = "logit", deff: bool = False,
                df: Optional[float] = None) -> SurveyMean:
    """
    Weighted mean of x.

    With no x, the share of the innermost group within the enclosing
    groups (like survey_prop). `proportion=True` with the logit method
    keeps confidence bounds inside [0, 1].
    """
    return SurveyMean(x, proportion=proportion, prop_method=prop_method, na_rm=na_rm,
                      vartype=vartype, level=level, df=df, deff=deff)


def survey_prop(vartype="default", level: Optional[float] = None, proportion: bool = False,
                prop_method: str = "logit", deff: bool = False, df: Optional[float] = None) -> SurveyProp:
    """Share of the innermost group within the enclosing groups."""
    return SurveyProp(proportion=proportion, prop_method=prop_method, vartype=vartype,
                      level=level, df=df, deff=deff)


def survey_total(x=None, na_rm: bool = False, vartype="default", level: Optional[float] = None,
                 deff: bool = False, df: Optional[float] = None) -> SurveyTotal:
    """Weighted total of x; with no x, the estimated number of population units."""
    return SurveyTotal(x, na_rm=na_rm, vartype=vartype, level=level, df=df, deff=deff)


def survey_ratio(numerator, denominator, na_rm: bool = False, vartype="default",
                 level: Optional[float] = None, df: Optional[float] = None) -> SurveyRatio:
    return SurveyRatio(numerator, denominator, na_rm=na_rm, vartype=vartype, level=level, df=df)


def survey_quantile(x, quantiles: Sequence[float], na_rm: bool = False, vartype="default",
                    level: Optional[float] = None, df: Optional[float] = None) -> SurveyQuantile:
    """Quantiles of x; columns are suffixed _q25, _q50, ..."""
    return SurveyQuantile(x, quantiles, na_rm=na_rm, vartype=vartype, level=level, df=df)


def survey_median(x, na_rm: bool = False, vartype="default", level: Optional[float] = None,
                  df: Optional[float] = None) -> SurveyQuantile:
    return SurveyQuantile(x, [0.5], suffix=False, na_rm=na_rm, vartype=vartype, level=level, df=df)


def survey_var(x, na_rm: bool = False, vartype="default", level: Optional[float] = None,
               df: Optional[float] = None) -> SurveyVar:
    return SurveyVar(x, na_rm=na_rm, vartype=vartype, level=level, df=df)


def survey_sd(x, na_rm: bool = False) -> SurveySd:
    return SurveySd(x, na_rm=na_rm)


def survey_corr(x, y, na_rm: bool = False, vartype="default", level: Optional[float] = None,
                df: Optional[float] = None) -> SurveyCorr:
    return SurveyCorr(x, y, na_rm=na_rm, vartype=vartype, level=level, df=df)


def unweighted(expr) -> Unweighted:
    """Compute expr on the group's rows, ignoring the design (e.g. "n()")."""
    return Unweighted(expr)


SUMMARY_FUNCTIONS = {
    "survey_mean": survey_mean,
    "survey_prop": survey_prop,
    "survey_total": survey_total,
    "survey_ratio": survey_ratio,
    "survey_quantile": survey_quantile,
    "survey_median": survey_median,
    "survey_var": survey_var,
    "survey_sd": survey_sd,
    "survey_corr": survey_corr,
    "unweighted": unweighted,
}


def as_summary(value) -> Summary:
    """Summaries pass through; anything else is computed unweighted."""
    if isinstance(value, Summary):
        return value
    return Unweighted(value)
