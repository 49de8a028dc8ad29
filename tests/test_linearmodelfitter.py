"""Tests for the per-feature OLS fitter."""

import numpy as np
import pytest
from scipy import stats

from conftest import DISEASE, FEAT_B, FEAT_C
from microflux.analysis.linearmodelfitter import LinearModelFitter, ModelResult, fit_one_feature
from microflux.utils.errors import ModelFitError

DESIGN = np.column_stack([np.ones_like(DISEASE), DISEASE])


class TestFitOneFeature:
    """Disease-term statistics of a single regression."""

    def test_matches_pooled_two_sample_t_test(self):
        res = fit_one_feature(DESIGN, FEAT_B, term_index=1, term="Disease", feature="FeatB")
        t_ref = stats.ttest_ind(FEAT_B[DISEASE == 1], FEAT_B[DISEASE == 0], equal_var=True)

        assert res.estimate == pytest.approx(FEAT_B[DISEASE == 1].mean() - FEAT_B[DISEASE == 0].mean())
        assert res.statistic == pytest.approx(t_ref.statistic)
        assert res.p_value == pytest.approx(t_ref.pvalue)
        assert res.df_residual == 8
        assert res.n_obs == 10

    def test_known_standard_error(self):
        res = fit_one_feature(DESIGN, FEAT_B, term_index=1)
        # pooled variance 20.2 / 8, times (1/5 + 1/5)
        assert res.std_error == pytest.approx(np.sqrt(20.2 / 8 * 0.4))
        assert res.estimate == pytest.approx(4.0)

    def test_positive_rescaling(self):
        base = fit_one_feature(DESIGN, FEAT_B, term_index=1)
        scaled = fit_one_feature(DESIGN, FEAT_B * 250.0, term_index=1)

        assert scaled.estimate == pytest.approx(base.estimate * 250.0)
        assert scaled.std_error == pytest.approx(base.std_error * 250.0)
        assert scaled.p_value == pytest.approx(base.p_value, rel=1e-9)

    def test_zero_within_group_variance(self):
        y = 2.0 + 3.0 * DISEASE
        res = fit_one_feature(DESIGN, y, term_index=1)

        assert res.estimate == pytest.approx(3.0)
        assert res.std_error == 0.0
        assert res.p_value == 0.0

    def test_missing_target_rows_dropped(self):
        y = FEAT_C.copy()
        y[[0, 9]] = np.nan
        res = fit_one_feature(DESIGN, y, term_index=1)
        assert res.n_obs == 8
        assert res.df_residual == 6

    def test_constant_target_raises(self):
        with pytest.raises(ModelFitError):
            fit_one_feature(DESIGN, np.full(10, 0.3), term_index=1, feature="flat")

    def test_rank_deficient_design_raises(self):
        y = FEAT_C.copy()
        y[DISEASE == 1] = np.nan  # only one group left
        with pytest.raises(ModelFitError, match="rank deficient"):
            fit_one_feature(DESIGN, y, term_index=1)

    def test_no_residual_df_raises(self):
        X = DESIGN[[0, 5]]
        with pytest.raises(ModelFitError):
            fit_one_feature(X, np.array([1.0, 2.0]), term_index=1)


class TestLinearModelFitter:
    """Full-coefficient access."""

    def test_results_dict(self):
        fit = LinearModelFitter(FEAT_B, DESIGN, feature="FeatB").fit()
        res = fit.get_results()
        assert res["coefficients"].shape == (2,)
        assert res["residuals"].shape == (10,)
        assert res["df_residual"] == 8
        assert res["xtx_inv"].shape == (2, 2)

    def test_empty_result_is_nan(self):
        row = ModelResult.empty("FeatX", "Disease", n_obs=3)
        assert np.isnan(row.estimate) and np.isnan(row.p_value)
        assert row.n_obs == 3
        assert row.to_dict()["feature"] == "FeatX"
