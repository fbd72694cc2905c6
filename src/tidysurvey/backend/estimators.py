"""
Design-based statistics.

Each statistic is a function of the weight vector. Designs call
`point(w)` for the estimate and, for linearization variance,
`scores(w)` for the per-row influence contributions (already multiplied
by the weights, so summing them within a PSU gives the PSU total).

A weight of zero takes a row out of the estimate. Domain estimation
works by zeroing weights outside the domain, never by dropping rows,
so the design structure is intact when the variance is computed.

Values must already be free of NaN wherever the weight is positive.
"""

from __future__ import annotations

from abc import ABC, abstractmethod
from typing import Sequence, Tuple

import numpy as np


class Statistic(ABC):
    """Base class: a vector-valued function of the weights."""

    #: number of estimated quantities
    size: int = 1

    @abstractmethod
    def point(self, w: np.ndarray) -> np.ndarray:
        ...

    def scores(self, w: np.ndarray) -> np.ndarray:
        """Linearized influence values, shape (n, size)."""
        raise NotImplementedError(f"{type(self).__name__} has no linearization")


def _column(values) -> np.ndarray:
    return np.asarray(values, dtype=float)


class TotalStatistic(Statistic):
    """Weighted total: sum w*y."""

    def __init__(self, y):
        self.y = _column(y)

    def point(self, w):
        return np.array([np.sum(w * self.y)])

    def scores(self, w):
        return (w * self.y)[:, None]


class MeanStatistic(Statistic):
    """Weighted mean (a ratio to the estimated population size)."""

    def __init__(self, y):
        self.y = _column(y)

    def point(self, w):
        total_w = np.sum(w)
        if total_w == 0:
            return np.array([np.nan])
        return np.array([np.sum(w * self.y) / total_w])

    def scores(self, w):
        total_w = np.sum(w)
        mean = self.point(w)[0]
        return (w * (self.y - mean) / total_w)[:, None]


class RatioStatistic(Statistic):
    """Ratio of weighted totals: sum w*y / sum w*x."""

    def __init__(self, y, x):
        self.y = _column(y)
        self.x = _column(x)

    def point(self, w):
        denominator = np.sum(w * self.x)
        if denominator == 0:
            return np.array([np.nan])
        return np.array([np.sum(w * self.y) / denominator])

    def scores(self, w):
        denominator = np.sum(w * self.x)
        ratio = self.point(w)[0]
        return (w * (self.y - ratio * self.x) / denominator)[:, None]


class VarianceStatistic(Statistic):
    """
    Population variance of y.

    Uses the n/(n-1) small-sample factor on the weighted mean of squared
    deviations, n being the number of rows with positive weight. The
    linearization treats the mean as known.
    """

    def __init__(self, y):
        self.y = _column(y)

    def _factor(self, w):
        n = np.count_nonzero(w > 0)
        return n / (n - 1) if n > 1 else np.nan

    def point(self, w):
        total_w = np.sum(w)
        if total_w == 0:
            return np.array([np.nan])
        mean = np.sum(w * self.y) / total_w
        return np.array([self._factor(w) * np.sum(w * (self.y - mean) ** 2) / total_w])

    def scores(self, w):
        total_w = np.sum(w)
        mean = np.sum(w * self.y) / total_w
        variance = self.point(w)[0]
        squared = self._factor(w) * (self.y - mean) ** 2
        return (w * (squared - variance) / total_w)[:, None]


class CorrelationStatistic(Statistic):
    """Pearson correlation of x and y under the design weights."""

    def __init__(self, x, y):
        self.x = _column(x)
        self.y = _column(y)

    def _moments(self, w) -> Tuple[float, float, float, float, float, float]:
        total_w = np.sum(w)
        mx = np.sum(w * self.x) / total_w
        my = np.sum(w * self.y) / total_w
        sxx = np.sum(w * (self.x - mx) ** 2) / total_w
        syy = np.sum(w * (self.y - my) ** 2) / total_w
        sxy = np.sum(w * (self.x - mx) * (self.y - my)) / total_w
        return total_w, mx, my, sxx, syy, sxy

    def point(self, w):
        if np.sum(w) == 0:
            return np.array([np.nan])
        _, _, _, sxx, syy, sxy = self._moments(w)
        return np.array([sxy / np.sqrt(sxx * syy)])

    def scores(self, w):
        total_w, mx, my, sxx, syy, sxy = self._moments(w)
        r = sxy / np.sqrt(sxx * syy)
        dx = self.x - mx
        dy = self.y - my
        u_xy = (dx * dy - sxy) / total_w
        u_xx = (dx ** 2 - sxx) / total_w
        u_yy = (dy ** 2 - syy) / total_w
        influence = r * (u_xy / sxy - 0.5 * u_xx / sxx - 0.5 * u_yy / syy)
        return (w * influence)[:, None]


def weighted_quantile(y: np.ndarray, w: np.ndarray, probs: Sequence[float]) -> np.ndarray:
    """
    Quantiles of the weighted empirical distribution.

    For each p, returns the smallest y whose weighted CDF is at least p.
    Rows with zero weight are ignored.
    """
    keep = w > 0
    y = y[keep]
    w = w[keep]
    if y.size == 0:
        return np.full(len(probs), np.nan)
    order = np.argsort(y, kind="mergesort")
    y = y[order]
    cdf = np.cumsum(w[order]) / np.sum(w)
    result = []
    for p in probs:
        # Guard against rounding in the cumulative sum
        idx = np.searchsorted(cdf, p - 1e-12, side="left")
        result.append(y[min(idx, y.size - 1)])
    return np.array(result, dtype=float)


class QuantileStatistic(Statistic):
    """Weighted quantiles; no linearization (see Woodruff in summaries)."""

    def __init__(self, y, probs: Sequence[float]):
        self.y = _column(y)
        self.probs = list(probs)
        self.size = len(self.probs)

    def point(self, w):
        return weighted_quantile(self.y, w, self.probs)
