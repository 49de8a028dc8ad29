"""PCA of subjects on the abundance matrix (visualization only).

Abundances are centered and scaled to unit variance per feature before the
decomposition. Missing values are replaced by the feature mean for the PCA
only; the regressions never see these fills.
"""

import numpy as np
import scanpy as sc
from anndata import AnnData
from typing import Optional

from microflux.utils.utils import log_info, log_time


@log_time("Running PCA")
def run_pca(
    adata: AnnData,
    layer: Optional[str] = None,
    n_pcs: int = 10,
    random_seed: int = 0,
) -> AnnData:
    """PCA on the scaled abundances; writes `obsm['X_pca']` and `uns['pca']` back to `adata`."""
    data = adata.layers[layer] if layer is not None else adata.X
    data = np.array(data, dtype=np.float64, copy=True)

    # mean-fill for the decomposition only
    nan_rows, nan_cols = np.where(np.isnan(data))
    col_means = np.zeros(data.shape[1])
    if len(nan_cols):
        observed = ~np.isnan(data)
        sums = np.where(observed, data, 0.0).sum(axis=0)
        counts = observed.sum(axis=0)
        col_means = np.divide(sums, counts, out=np.zeros_like(sums), where=counts > 0)
    data[nan_rows, nan_cols] = col_means[nan_cols]

    A = AnnData(X=data, obs=adata.obs[[]].copy(), var=adata.var[[]].copy())
    sc.pp.scale(A)

    max_pcs = min(A.n_obs, A.n_vars) - 1
    n_comps = max(1, min(n_pcs, max_pcs))
    if n_comps < n_pcs:
        log_info(f"PCA: n_pcs clipped to {n_comps} (data shape {A.n_obs}×{A.n_vars})")

    sc.tl.pca(A, n_comps=n_comps, random_state=random_seed)

    adata.obsm["X_pca"] = A.obsm["X_pca"]
    adata.varm["PCs"] = A.varm["PCs"]
    adata.uns["pca"] = {
        "variance": np.asarray(A.uns["pca"]["variance"]),
        "variance_ratio": np.asarray(A.uns["pca"]["variance_ratio"]),
        "n_comps": int(n_comps),
    }

    ratio = adata.uns["pca"]["variance_ratio"]
    log_info(f"PCA: PC1 {ratio[0]:.1%}" + (f", PC2 {ratio[1]:.1%}" if len(ratio) > 1 else ""))
    return adata
