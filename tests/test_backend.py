"""
Tests for the estimation backend: statistics and linearization variance.
"""

import numpy as np
import pytest

from tidysurvey.backend import (
    CorrelationStatistic,
    MeanStatistic,
    QuantileStatistic,
    RatioStatistic,
    TotalStatistic,
    VarianceStatistic,
    design_degrees_of_freedom,
    phase1_vcov,
    stratified_vcov,
    weighted_quantile,
)
from tidysurvey.backend.linearization import psu_totals
from tidysurvey.errors import LonelyPSUError

Y = np.array([1.0, 2.0, 3.0, 4.0, 5.0])
ONES = np.ones(5)
SINGLE_STRATUM = np.zeros(5, dtype=int)
OWN_PSU = np.arange(5)


class TestStatistics:
    """Point estimates as functions of the weights."""

    def test_total(self):
        assert TotalStatistic(Y).point(ONES * 2)[0] == 30.0

    def test_mean(self):
        assert MeanStatistic(Y).point(np.array([1, 1, 1, 1, 4.0]))[0] == pytest.approx(30 / 8)

    def test_mean_with_no_weight_is_nan(self):
        assert np.isnan(MeanStatistic(Y).point(np.zeros(5))[0])

    def test_ratio(self):
        assert RatioStatistic(Y * 2, Y).point(ONES)[0] == 2.0

    def test_variance_matches_sample_variance(self):
        assert VarianceStatistic(Y).point(ONES)[0] == pytest.approx(np.var(Y, ddof=1))

    def test_correlation_of_linear_relation(self):
        assert CorrelationStatistic(Y, 3 * Y + 1).point(ONES)[0] == pytest.approx(1.0)

    def test_zero_weight_removes_row(self):
        w = np.array([1, 1, 1, 1, 0.0])
        assert MeanStatistic(Y).point(w)[0] == 2.5

    def test_quantile_has_no_linearization(self):
        with pytest.raises(NotImplementedError):
            QuantileStatistic(Y, [0.5]).scores(ONES)

    def test_scores_sum_to_zero_for_mean(self):
        assert MeanStatistic(Y).scores(ONES).sum() == pytest.approx(0.0)


class TestWeightedQuantile:
    """Smallest value whose weighted CDF reaches p."""

    def test_equal_weights(self):
        y = np.array([4.0, 1.0, 3.0, 2.0])
        assert weighted_quantile(y, np.ones(4), [0.0, 0.25, 0.5, 0.75, 1.0]).tolist() == [1, 1, 2, 3, 4]

    def test_just_above_step(self):
        y = np.array([1.0, 2.0, 3.0, 4.0])
        assert weighted_quantile(y, np.ones(4), [0.51])[0] == 3.0

    def test_weights_shift_the_quantile(self):
        y = np.array([1.0, 2.0, 3.0])
        assert weighted_quantile(y, np.array([1.0, 1.0, 8.0]), [0.5])[0] == 3.0

    def test_zero_weights_ignored(self):
        y = np.array([1.0, 2.0, 3.0, 100.0])
        assert weighted_quantile(y, np.array([1, 1, 1, 0.0]), [1.0])[0] == 3.0

    def test_no_positive_weight(self):
        assert np.isnan(weighted_quantile(Y, np.zeros(5), [0.5])).all()


class TestStratifiedVcov:
    """PSU-total variance with fpc and lonely-PSU policies."""

    def test_srs_mean_se(self):
        """With-replacement SRS: se of the mean is s / sqrt(n)."""
        scores = MeanStatistic(Y).scores(ONES)
        vcov = stratified_vcov(scores, SINGLE_STRATUM, OWN_PSU)
        assert np.sqrt(vcov[0, 0]) == pytest.approx(np.std(Y, ddof=1) / np.sqrt(5))
        assert vcov[0, 0] == pytest.approx(0.5)

    def test_srs_total_variance(self):
        vcov = stratified_vcov(TotalStatistic(Y).scores(ONES), SINGLE_STRATUM, OWN_PSU)
        assert vcov[0, 0] == pytest.approx(12.5)

    def test_fpc_scales_variance(self):
        scores = MeanStatistic(Y).scores(ONES)
        vcov = stratified_vcov(scores, SINGLE_STRATUM, OWN_PSU, fraction=np.full(5, 0.5))
        assert np.sqrt(vcov[0, 0]) == pytest.approx(0.5)

    def test_clusters_are_summed_first(self):
        """Rows of the same PSU contribute one total."""
        scores = np.array([1.0, 1.0, 2.0, 4.0])
        psu = np.array([0, 0, 1, 2])
        vcov = stratified_vcov(scores, np.zeros(4, dtype=int), psu)
        totals = np.array([2.0, 2.0, 4.0])
        expected = 3 / 2 * np.sum((totals - totals.mean()) ** 2)
        assert vcov[0, 0] == pytest.approx(expected)

    def test_strata_add_up(self):
        scores = np.array([1.0, 3.0, 10.0, 14.0])
        strata = np.array([0, 0, 1, 1])
        vcov = stratified_vcov(scores, strata, np.arange(4))
        assert vcov[0, 0] == pytest.approx(2 * 2 + 2 * 8)

    def test_multiple_columns(self):
        scores = np.column_stack([Y, -Y])
        vcov = stratified_vcov(scores, SINGLE_STRATUM, OWN_PSU)
        assert vcov.shape == (2, 2)
        assert vcov[0, 1] == pytest.approx(-vcov[0, 0])


class TestLonelyPSU:
    """Strata with one PSU."""

    scores = np.array([1.0, 3.0, 5.0])
    strata = np.array([0, 0, 1])
    psu = np.array([0, 1, 2])

    def vcov(self, policy):
        return stratified_vcov(self.scores, self.strata, self.psu, lonely_psu=policy)[0, 0]

    def test_fail(self):
        with pytest.raises(LonelyPSUError, match="only one PSU"):
            self.vcov("fail")

    @pytest.mark.parametrize("policy", ["remove", "certainty"])
    def test_contributes_nothing(self, policy):
        assert self.vcov(policy) == pytest.approx(4.0)

    def test_adjust_centres_on_grand_mean(self):
        assert self.vcov("adjust") == pytest.approx(4.0 + (5.0 - 3.0) ** 2)

    def test_average_uses_other_strata(self):
        assert self.vcov("average") == pytest.approx(8.0)

    def test_average_without_other_strata_is_nan(self):
        vcov = stratified_vcov(np.array([1.0]), np.array([0]), np.array([0]), lonely_psu="average")
        assert np.isnan(vcov[0, 0])


class TestPhase1Vcov:
    """Double-expansion phase-1 variance for two-phase samples."""

    def test_full_phase2_is_plain_variance(self):
        scores = MeanStatistic(Y).scores(ONES)
        vcov = phase1_vcov(scores, SINGLE_STRATUM, OWN_PSU, None, np.ones(5))
        assert vcov[0, 0] == pytest.approx(stratified_vcov(scores, SINGLE_STRATUM, OWN_PSU)[0, 0])

    def test_subsampling_removes_own_squares(self):
        scores = MeanStatistic(Y).scores(ONES)
        vcov = phase1_vcov(scores, SINGLE_STRATUM, OWN_PSU, None, np.full(5, 0.5))
        assert vcov[0, 0] == pytest.approx(0.5 - 0.5 * 0.4)

    def test_phase1_fpc(self):
        scores = MeanStatistic(Y).scores(ONES)
        vcov = phase1_vcov(scores, SINGLE_STRATUM, OWN_PSU, np.full(5, 0.5), np.full(5, 0.5))
        assert vcov[0, 0] == pytest.approx(0.5 * 0.5 - 0.5 * 0.5 * 0.4)


class TestStructure:
    """PSU totals and degrees of freedom."""

    def test_psu_totals(self):
        totals = psu_totals(np.array([[1.0], [2.0], [3.0]]), np.array([0, 0, 1]), np.array([5, 5, 6]))
        assert totals["s0"].tolist() == [3.0, 3.0]
        assert len(totals) == 2

    def test_degrees_of_freedom(self):
        assert design_degrees_of_freedom(np.array([0, 0, 1, 1, 1]), np.array([0, 1, 2, 3, 3])) == 2
        assert design_degrees_of_freedom(SINGLE_STRATUM, OWN_PSU) == 4
