import pandas as pd
import numpy as np
import patsy
from typing import Optional, Dict, Any, List, Sequence
from microflux.utils.utils import log_info


def resolve_reference_level(values: pd.Series, requested: Optional[Any] = None) -> str:
    """Reference level for treatment coding.

    The requested level wins when given; otherwise the first observed level in
    sorted order (patsy's own default) is used.
    """
    levels = sorted(values.dropna().astype(str).unique())
    if not levels:
        raise ValueError(f"Categorical column '{values.name}' has no observed levels.")
    if requested is None:
        return levels[0]
    requested = str(requested)
    if requested not in levels:
        raise ValueError(f"Reference level {requested!r} not found for '{values.name}'; levels: {levels}")
    return requested


class DesignMatrixBuilder:
    """Build an OLS design (intercept + disease + covariates) from subject metadata.

    Categorical covariates are expanded into indicator columns with one
    reference level dropped; the chosen references are kept in
    `reference_levels` so they can be reported next to the results.
    """
    def __init__(
        self,
        sample_metadata: pd.DataFrame,
        config: Optional[Dict[str, Any]] = None,
    ):
        self.meta = sample_metadata.copy()
        self.config = config or {}
        self.disease_column: str = self.config.get("disease_column", "Disease")
        self.categorical: List[str] = list(self.config.get("categorical_covariates") or [])
        self.requested_references: Dict[str, Any] = dict(self.config.get("reference_levels") or {})
        self.formula: Optional[str] = None
        self.design_df: Optional[pd.DataFrame] = None
        self.design_info: Optional[patsy.DesignInfo] = None
        self.reference_levels: Dict[str, str] = {}
        self._disease_code: Optional[str] = None

    def _is_categorical(self, col: str) -> bool:
        if col in self.categorical:
            return True
        s = self.meta[col]
        return not pd.api.types.is_numeric_dtype(s) or pd.api.types.is_bool_dtype(s)

    def _term(self, model_meta: pd.DataFrame, col: str) -> str:
        if col == self.disease_column or not self._is_categorical(col):
            return f"Q({col!r})"

        model_meta[col] = model_meta[col].astype(object).astype(str)
        ref = resolve_reference_level(model_meta[col], self.requested_references.get(col))
        self.reference_levels[col] = ref
        return f"C(Q({col!r}), Treatment(reference={ref!r}))"

    def build(self, covariates: Sequence[str] = ()) -> pd.DataFrame:
        """Return the design as a DataFrame indexed by subject.

        Subjects with a missing value in any model column are dropped before
        levels are resolved (complete-case), so a level seen only on a dropped
        subject gets no indicator column. Feature-level missingness is handled
        by the caller.
        """
        columns = [self.disease_column] + [c for c in covariates if c != self.disease_column]
        missing = [c for c in columns if c not in self.meta.columns]
        if missing:
            raise ValueError(f"Model columns not found in sample metadata: {missing}")

        complete = self.meta[columns].notna().all(axis=1)
        model_meta = self.meta.loc[complete, columns].copy()

        self.reference_levels = {}
        terms = [self._term(model_meta, c) for c in columns]
        self._disease_code = terms[0]
        self.formula = "1 + " + " + ".join(terms)
        self.design_df = patsy.dmatrix(self.formula, model_meta, return_type="dataframe", NA_action="raise")
        self.design_info = self.design_df.design_info

        n_dropped = int((~complete).sum())
        if n_dropped:
            log_info(f"Design: {n_dropped} subject(s) with missing covariates excluded.")
        for col, ref in self.reference_levels.items():
            log_info(f"Design: '{col}' encoded with reference level {ref!r}")

        return self.design_df

    @property
    def disease_term(self) -> str:
        """Name of the design column holding the disease-label coefficient."""
        if self.design_info is None:
            raise RuntimeError("build() must be called first.")
        # patsy reorders terms, so look the disease term up by name
        name = patsy.EvalFactor(self._disease_code).name()
        sl = self.design_info.term_name_slices[name]
        return self.design_info.column_names[sl][0]

    @property
    def disease_index(self) -> int:
        return self.design_info.column_names.index(self.disease_term)
