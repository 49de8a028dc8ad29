"""Tests for the univariate/multivariate comparison join."""

import numpy as np
import pandas as pd

from microflux.analysis.comparator import COMPARISON_COLUMNS, compare_results


def _table(features, estimates, p_adj, term="Disease"):
    return pd.DataFrame({"feature": features, "term": term,
                         "estimate": estimates, "p_adj": p_adj})


class TestCompareResults:

    def test_row_count_is_univariate_hits(self):
        uni = _table(["a", "b", "c", "d"], [1.0, 2.0, -1.0, 0.5], [0.01, 0.02, 0.5, 0.9])
        multi = _table(["a", "b", "c", "d"], [0.9, 0.1, -1.0, 0.4], [0.01, 0.6, 0.001, 0.002])

        out = compare_results(uni, multi)

        assert len(out) == 2
        assert out["feature"].tolist() == ["a", "b"]
        assert list(out.columns[:5]) == COMPARISON_COLUMNS

    def test_status_columns(self):
        uni = _table(["a", "b"], [1.0, 2.0], [0.01, 0.02])
        multi = _table(["a", "b"], [0.9, 0.1], [0.01, 0.6])
        out = compare_results(uni, multi).set_index("feature")
        assert out.loc["a", "status"] == "retained"
        assert out.loc["b", "status"] == "lost"
        assert out.loc["b", "estimate_multivariate"] == 0.1

    def test_missing_multivariate_row_kept_with_nan(self):
        uni = _table(["a", "b"], [1.0, 2.0], [0.01, 0.02])
        multi = _table(["a"], [0.9], [0.01])
        out = compare_results(uni, multi).set_index("feature")
        assert len(out) == 2
        assert np.isnan(out.loc["b", "p_adj_multivariate"])
        assert not out.loc["b", "significant_multivariate"]

    def test_multivariate_filtered_to_term(self):
        uni = _table(["a"], [1.0], [0.01])
        multi = pd.concat([_table(["a"], [5.0], [0.9], term="Age"),
                           _table(["a"], [0.8], [0.03], term="Disease")])
        out = compare_results(uni, multi, term="Disease")
        assert len(out) == 1
        assert out.loc[0, "estimate_multivariate"] == 0.8

    def test_no_univariate_hits(self):
        uni = _table(["a"], [1.0], [0.5])
        multi = _table(["a"], [1.0], [0.001])
        out = compare_results(uni, multi)
        assert out.empty
        assert list(out.columns[:5]) == COMPARISON_COLUMNS

    def test_custom_threshold(self):
        uni = _table(["a", "b"], [1.0, 2.0], [0.01, 0.08])
        multi = _table(["a", "b"], [1.0, 2.0], [0.01, 0.08])
        assert len(compare_results(uni, multi, sign_threshold=0.1)) == 2
