"""Per-feature OLS association with a disease label.

This module provides:
  - `run_feature_models`: one regression per feature, disease term extracted
  - `adjust_results`: single multiple-testing stage over a finished batch
  - `run_association_pipeline`: univariate + multivariate + comparison
"""

from concurrent.futures import ThreadPoolExecutor
from typing import List, Optional, Sequence

import anndata as ad
import numpy as np
import pandas as pd
from tqdm import tqdm

from microflux.analysis.comparator import compare_results
from microflux.analysis.linearmodelfitter import ModelResult, fit_one_feature
from microflux.analysis.stats_ops import adjust_pvalues
from microflux.dataset.associationresults import AssociationResults
from microflux.design.designmatrixbuilder import DesignMatrixBuilder
from microflux.utils.errors import ModelFitError
from microflux.utils.utils import log_info, log_time, log_warning

DEFAULT_COVARIATES = [
    "Age",
    "AgeCategory",
    "Metformin",
    "BMI",
    "Cholesterol",
    "Diastolic_BP",
    "Systolic_BP",
    "SequencingDepth",
]
RESULT_COLUMNS = [
    "feature", "term", "estimate", "std_error", "statistic",
    "p_value", "n_obs", "df_residual",
]


def _feature_matrix(adata: ad.AnnData, layer: Optional[str]) -> np.ndarray:
    M = adata.layers[layer] if layer is not None else adata.X
    if hasattr(M, "toarray"):
        M = M.toarray()
    return np.asarray(M, dtype=float)


def run_feature_models(
    adata: ad.AnnData,
    design_df: pd.DataFrame,
    term: str,
    layer: Optional[str] = None,
    n_jobs: int = 1,
    progress: bool = False,
) -> pd.DataFrame:
    """Fit `feature ~ design` for every feature and keep the `term` row.

    Features are independent, so fits may run on a thread pool; rows come
    back in `adata.var_names` order either way. Degenerate fits yield a NaN
    row instead of stopping the batch.
    """
    term_index = list(design_df.columns).index(term)
    rows = adata.obs_names.get_indexer(design_df.index)
    if (rows < 0).any():
        raise ValueError("Design rows do not match subjects of the dataset.")

    X = design_df.to_numpy(dtype=float)
    Y = _feature_matrix(adata, layer)[rows, :]
    features = adata.var_names.tolist()
    failed: List[str] = []

    def _fit(j: int) -> ModelResult:
        y = Y[:, j]
        try:
            return fit_one_feature(X, y, term_index, term=term, feature=features[j])
        except ModelFitError:
            failed.append(features[j])
            return ModelResult.empty(features[j], term, n_obs=int(np.isfinite(y).sum()))

    indices = range(len(features))
    if n_jobs is not None and n_jobs > 1:
        with ThreadPoolExecutor(max_workers=n_jobs) as executor:
            results = list(tqdm(executor.map(_fit, indices), total=len(features),
                                leave=False, disable=not progress))
    else:
        results = [_fit(j) for j in tqdm(indices, leave=False, disable=not progress)]

    failed_set = set(failed)
    failed_sorted = [f for f in features if f in failed_set]
    if failed_sorted:
        head = ", ".join(failed_sorted[:5])
        tail = " ..." if len(failed_sorted) > 5 else ""
        log_warning(f"{len(failed_sorted)} feature(s) could not be fitted → NaN rows: [{head}{tail}]")

    df = pd.DataFrame([r.to_dict() for r in results], columns=RESULT_COLUMNS)
    df.attrs["failed"] = failed_sorted
    return df


def adjust_results(results: pd.DataFrame, method: str = "fdr_by") -> pd.DataFrame:
    """Return a copy of a finished batch with `p_adj` and `direction` added.

    The family size is the number of features with a defined p-value.
    """
    out = results.copy()
    out["p_adj"] = adjust_pvalues(out["p_value"].to_numpy(), method=method)
    out["direction"] = np.where(out["estimate"] > 0, "enriched",
                                np.where(out["estimate"] < 0, "depleted", "none"))
    out.loc[out["estimate"].isna(), "direction"] = np.nan
    return out


def _fit_model(adata: ad.AnnData, analysis_cfg: dict, covariates: Sequence[str], label: str):
    builder = DesignMatrixBuilder(adata.obs, analysis_cfg)
    design_df = builder.build(covariates)
    log_info(f"{label} model: {builder.formula} ({design_df.shape[0]} subjects)")

    raw = run_feature_models(
        adata,
        design_df,
        term=builder.disease_term,
        layer=analysis_cfg.get("layer"),
        n_jobs=int(analysis_cfg.get("n_jobs", 1) or 1),
        progress=bool(analysis_cfg.get("progress", False)),
    )
    adjusted = adjust_results(raw, method=analysis_cfg.get("p_adjust_method", "fdr_by"))
    return adjusted, builder, raw.attrs.get("failed", [])


@log_time("Association pipeline")
def run_association_pipeline(adata: ad.AnnData, config: dict) -> AssociationResults:
    """Univariate and multivariate association of every feature with the disease label.

    Results are returned and also mirrored into `adata.uns["association"]`.
    """
    analysis_cfg = (config or {}).get("analysis", {}) or {}
    sign_threshold = float(analysis_cfg.get("sign_threshold", 0.05))
    method = analysis_cfg.get("p_adjust_method", "fdr_by")
    covariates = analysis_cfg.get("covariates")
    if covariates is None:
        covariates = DEFAULT_COVARIATES

    univariate, uni_builder, uni_failed = _fit_model(adata, analysis_cfg, [], "Univariate")
    multivariate, multi_builder, multi_failed = _fit_model(adata, analysis_cfg, covariates, "Multivariate")

    comparison = compare_results(univariate, multivariate,
                                 sign_threshold=sign_threshold,
                                 term=multi_builder.disease_term)

    for name, df in (("univariate", univariate), ("multivariate", multivariate)):
        n_sig = int((df["p_adj"] < sign_threshold).sum())
        log_info(f"{name}: {n_sig}/{len(df)} feature(s) with p_adj < {sign_threshold}")

    results = AssociationResults(
        univariate=univariate,
        multivariate=multivariate,
        comparison=comparison,
        formulas={"univariate": uni_builder.formula, "multivariate": multi_builder.formula},
        reference_levels=dict(multi_builder.reference_levels),
        sign_threshold=sign_threshold,
        p_adjust_method=method,
        failed={"univariate": uni_failed, "multivariate": multi_failed},
    )

    adata.uns["association"] = {
        "univariate": univariate,
        "multivariate": multivariate,
        "comparison": comparison,
        "formulas": results.formulas,
        "reference_levels": results.reference_levels,
        "sign_threshold": sign_threshold,
        "p_adjust_method": method,
    }
    return results
