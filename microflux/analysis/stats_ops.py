from __future__ import annotations

import numpy as np
from scipy.stats import t as t_dist
from statsmodels.stats.multitest import multipletests


def raw_stats_from_fit(
    *,
    coefs: np.ndarray,
    stdu: np.ndarray,
    sigma: np.ndarray,
    df_res: np.ndarray,
) -> tuple[np.ndarray, np.ndarray, np.ndarray]:
    """
    Shared t-test primitive:
      se = stdu * sigma
      t  = coefs / se
      p  = 2 * t.sf(|t|, df=df_res)

    A zero SE gives t = ±inf (p = 0) for a non-zero coefficient and NaN for a
    zero one.
    """
    coefs = np.asarray(coefs, dtype=float)
    se = np.asarray(stdu, dtype=float) * np.asarray(sigma, dtype=float)
    with np.errstate(divide="ignore", invalid="ignore"):
        t = coefs / se
        p = 2 * t_dist.sf(np.abs(t), df=df_res)
    return se, t, p


def adjust_pvalues(p: np.ndarray, method: str = "fdr_by") -> np.ndarray:
    """Multiple-testing adjustment of a 1D p-value vector (default Benjamini–Yekutieli).

    NaN entries are left out of the family (m = number of defined p-values)
    and stay NaN in the output.
    """
    p = np.asarray(p, dtype=float)
    if p.ndim != 1:
        raise ValueError(f"Expected 1D p-value array, got shape {p.shape}")

    q = np.full(p.shape, np.nan)
    ok = np.isfinite(p)
    if ok.any():
        q[ok] = multipletests(p[ok], method=method)[1]
    return np.minimum(q, 1.0)


def by_qvalues(p: np.ndarray) -> np.ndarray:
    """Benjamini–Yekutieli q-values (FDR under arbitrary dependence)."""
    return adjust_pvalues(p, method="fdr_by")
