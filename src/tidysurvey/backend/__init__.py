"""Estimation backend: statistics and the two variance engines."""

from .estimators import (
    Statistic,
    TotalStatistic,
    MeanStatistic,
    RatioStatistic,
    VarianceStatistic,
    CorrelationStatistic,
    QuantileStatistic,
    weighted_quantile,
)
from .linearization import stratified_vcov, phase1_vcov, design_degrees_of_freedom
from .replication import (
    REPLICATE_TYPES,
    replicate_vcov,
    default_scale,
    jackknife_factors,
    bootstrap_factors,
    brr_factors,
)

__all__ = [
    "Statistic",
    "TotalStatistic",
    "MeanStatistic",
    "RatioStatistic",
    "VarianceStatistic",
    "CorrelationStatistic",
    "QuantileStatistic",
    "weighted_quantile",
    "stratified_vcov",
    "phase1_vcov",
    "design_degrees_of_freedom",
    "REPLICATE_TYPES",
    "replicate_vcov",
    "default_scale",
    "jackknife_factors",
    "bootstrap_factors",
    "brr_factors",
]
