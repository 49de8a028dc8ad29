from dataclasses import dataclass, field
from typing import Dict

import anndata as ad
import numpy as np
import pandas as pd

from microflux.utils.utils import log_info, log_time


@dataclass
class MetadataSummary:
    describe: pd.DataFrame
    correlation: pd.DataFrame
    categorical_counts: Dict[str, pd.Series] = field(default_factory=dict)


@log_time("Metadata summary")
def summarize_metadata(obs: pd.DataFrame) -> MetadataSummary:
    """Descriptive statistics and Pearson correlations of numeric metadata columns,
    plus level counts for the non-numeric ones."""
    numeric = obs.select_dtypes(include="number")
    other = obs.drop(columns=numeric.columns)

    describe = numeric.describe().T
    describe["n_missing"] = numeric.isna().sum()
    correlation = numeric.corr(method="pearson")

    counts = {c: other[c].value_counts(dropna=False) for c in other.columns}

    log_info(f"{numeric.shape[1]} numeric and {len(counts)} categorical metadata column(s)")
    return MetadataSummary(describe=describe, correlation=correlation, categorical_counts=counts)


def summarize_abundance(adata: ad.AnnData) -> pd.DataFrame:
    """Per-feature prevalence (fraction of subjects with non-zero abundance), mean and max."""
    X = np.asarray(adata.X, dtype=float)
    with np.errstate(invalid="ignore"):
        prevalence = np.nanmean(np.where(np.isnan(X), np.nan, X > 0), axis=0)
    return pd.DataFrame(
        {
            "prevalence": prevalence,
            "mean": np.nanmean(X, axis=0),
            "max": np.nanmax(X, axis=0),
        },
        index=adata.var_names,
    ).sort_values("mean", ascending=False)
