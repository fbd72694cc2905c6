"""
Tests for estimates, variance types and column flattening.
"""

import numpy as np
import pytest
from scipy import stats

from tidysurvey.config import option_context
from tidysurvey.errors import SummaryError
from tidysurvey.results import (
    Estimate,
    confidence_interval,
    critical_value,
    flatten_estimate,
    normalize_vartype,
)


class TestNormalizeVartype:
    """Variance-type arguments."""

    def test_none_means_no_columns(self):
        assert normalize_vartype(None) == []
        assert normalize_vartype([]) == []

    def test_default_uses_option(self):
        assert normalize_vartype("default") == ["se"]
        with option_context(default_vartype="ci"):
            assert normalize_vartype("default") == ["ci"]

    def test_order_kept_and_duplicates_dropped(self):
        assert normalize_vartype(["ci", "se", "ci"]) == ["ci", "se"]

    def test_invalid(self):
        with pytest.raises(SummaryError, match="vartype must be one of"):
            normalize_vartype("sd")


class TestCriticalValue:
    """Normal and t critical values."""

    def test_normal(self):
        assert critical_value(0.95, float("inf")) == pytest.approx(1.959964, rel=1e-5)

    def test_t(self):
        assert critical_value(0.95, 10) == pytest.approx(stats.t.ppf(0.975, 10))

    def test_no_degrees_of_freedom(self):
        assert np.isnan(critical_value(0.95, 0))

    @pytest.mark.parametrize("level", [0, 1, 1.5])
    def test_level_range(self, level):
        with pytest.raises(SummaryError, match="level"):
            critical_value(level, 5)


class TestFlatten:
    """Estimates become ordered columns."""

    estimate = Estimate(coef=np.array([10.0]), vcov=np.array([[4.0]]), names=("m",))

    def test_all_vartypes(self):
        row = flatten_estimate(self.estimate, ["se", "ci", "var", "cv"], 0.95)
        assert list(row) == ["m", "m_se", "m_low", "m_upp", "m_var", "m_cv"]
        assert row["m_se"] == 2.0
        assert row["m_low"] == pytest.approx(10 - 1.959964 * 2, rel=1e-5)
        assert row["m_var"] == 4.0
        assert row["m_cv"] == pytest.approx(0.2)

    def test_requested_order(self):
        row = flatten_estimate(self.estimate, ["cv", "se"], 0.95)
        assert list(row) == ["m", "m_cv", "m_se"]

    def test_point_only(self):
        assert flatten_estimate(self.estimate, [], 0.95) == {"m": 10.0}

    def test_deff_missing_is_nan(self):
        row = flatten_estimate(self.estimate, [], 0.95, deff=True)
        assert np.isnan(row["m_deff"])

    def test_deff(self):
        estimate = Estimate(np.array([1.0]), np.array([[1.0]]), names=("p",), deff=np.array([1.8]))
        assert flatten_estimate(estimate, ["se"], 0.95, deff=True)["p_deff"] == 1.8

    def test_precomputed_interval(self):
        estimate = Estimate(np.array([5.0]), np.array([[1.0]]), names=("q",), interval=np.array([[3.0, 8.0]]))
        row = flatten_estimate(estimate, ["ci"], 0.95)
        assert (row["q_low"], row["q_upp"]) == (3.0, 8.0)

    def test_several_estimates(self):
        estimate = Estimate(np.array([1.0, 2.0]), np.diag([1.0, 4.0]), names=("a", "b"))
        assert flatten_estimate(estimate, ["se"], 0.95) == {"a": 1.0, "a_se": 1.0, "b": 2.0, "b_se": 2.0}

    def test_t_interval_uses_df(self):
        estimate = Estimate(np.array([0.0]), np.array([[1.0]]), df=4, names=("m",))
        bounds = confidence_interval(estimate, 0.9)
        assert bounds[0, 1] == pytest.approx(stats.t.ppf(0.95, 4))
