from typing import Optional

import pandas as pd

from microflux.utils.utils import log_info, log_time

COMPARISON_COLUMNS = [
    "feature",
    "estimate_univariate",
    "p_adj_univariate",
    "estimate_multivariate",
    "p_adj_multivariate",
]


@log_time("Comparing univariate and multivariate results")
def compare_results(
    univariate: pd.DataFrame,
    multivariate: pd.DataFrame,
    sign_threshold: float = 0.05,
    term: Optional[str] = None,
) -> pd.DataFrame:
    """Which univariate hits survive covariate adjustment.

    Univariate rows with p_adj < threshold drive a left join onto the
    multivariate rows (restricted to `term` when given). Every significant
    univariate feature appears exactly once; multivariate columns are NaN
    when the feature has no multivariate row.
    """
    uni = univariate.loc[univariate["p_adj"] < sign_threshold, ["feature", "estimate", "p_adj"]]
    multi = multivariate
    if term is not None and "term" in multi.columns:
        multi = multi[multi["term"] == term]
    multi = multi[["feature", "estimate", "p_adj"]].drop_duplicates("feature")

    out = uni.merge(multi, on="feature", how="left", suffixes=("_univariate", "_multivariate"))
    out = out[COMPARISON_COLUMNS].reset_index(drop=True)

    out["significant_multivariate"] = (out["p_adj_multivariate"] < sign_threshold).fillna(False).astype(bool)
    out["status"] = out["significant_multivariate"].map({True: "retained", False: "lost"})

    n_kept = int(out["significant_multivariate"].sum())
    log_info(f"{len(out)} univariate hit(s): {n_kept} retained, {len(out) - n_kept} lost after adjustment")
    return out
