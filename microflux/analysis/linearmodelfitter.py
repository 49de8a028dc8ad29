from dataclasses import dataclass, asdict
import numpy as np
from microflux.analysis.stats_ops import raw_stats_from_fit
from microflux.utils.errors import ModelFitError


@dataclass(frozen=True)
class ModelResult:
    feature: str
    term: str
    estimate: float
    std_error: float
    statistic: float
    p_value: float
    n_obs: int
    df_residual: int

    @classmethod
    def empty(cls, feature: str, term: str, n_obs: int = 0) -> "ModelResult":
        """NaN-valued row for a feature whose model could not be fitted."""
        nan = float("nan")
        return cls(feature, term, nan, nan, nan, nan, int(n_obs), 0)

    def to_dict(self) -> dict:
        return asdict(self)


class LinearModelFitter:
    def __init__(self, target: np.ndarray, design_matrix: np.ndarray, feature: str = "feature"):
        """
        Parameters:
        - target: (n_samples,) abundance of one feature
        - design_matrix: (n_samples x n_covariates) matrix from DesignMatrixBuilder
        """
        self.y = np.asarray(target, dtype=float)
        self.X = np.asarray(design_matrix, dtype=float)
        self.feature = feature
        self.coefficients = None
        self.residuals = None
        self.residual_variance = None
        self.df_residual = None
        self.xtx_inv = None  # (X^T X)^(-1)

    def _check(self):
        n, p = self.X.shape
        if self.y.shape[0] != n:
            raise ModelFitError(self.feature, f"target has {self.y.shape[0]} rows, design has {n}")
        if n == 0 or np.ptp(self.y) == 0:
            raise ModelFitError(self.feature, "target is constant")
        if np.linalg.matrix_rank(self.X) < p:
            raise ModelFitError(self.feature, f"design is rank deficient (rank < {p} columns)")
        if n - p <= 0:
            raise ModelFitError(self.feature, f"no residual degrees of freedom (n={n}, p={p})")

    def fit(self):
        """Closed-form OLS: beta = (X'X)^-1 X'y."""
        self._check()
        X, y = self.X, self.y

        self.xtx_inv = np.linalg.inv(X.T @ X)
        self.coefficients = self.xtx_inv @ X.T @ y

        self.residuals = y - X @ self.coefficients
        self.df_residual = X.shape[0] - X.shape[1]

        rss = float(np.sum(self.residuals ** 2))
        tss = float(np.sum((y - y.mean()) ** 2))
        # numerically exact fit (e.g. zero within-group variance)
        if rss <= 1e-20 * tss:
            rss = 0.0
        self.residual_variance = rss / self.df_residual

        return self

    def get_results(self) -> dict:
        return {
            "coefficients": self.coefficients,
            "residuals": self.residuals,
            "residual_variance": self.residual_variance,
            "df_residual": self.df_residual,
            "xtx_inv": self.xtx_inv,
        }

    def term_result(self, term_index: int, term: str) -> ModelResult:
        se, t, p = raw_stats_from_fit(
            coefs=self.coefficients[term_index],
            stdu=np.sqrt(self.xtx_inv[term_index, term_index]),
            sigma=np.sqrt(self.residual_variance),
            df_res=self.df_residual,
        )
        return ModelResult(
            feature=self.feature,
            term=term,
            estimate=float(self.coefficients[term_index]),
            std_error=float(se),
            statistic=float(t),
            p_value=float(p),
            n_obs=int(self.X.shape[0]),
            df_residual=int(self.df_residual),
        )


def fit_one_feature(design: np.ndarray, target: np.ndarray, term_index: int,
                    term: str = "disease", feature: str = "feature") -> ModelResult:
    """Fit one feature's OLS and return the statistics of a single term.

    Rows where the target is missing are dropped first. Raises ModelFitError
    on a degenerate fit; callers decide whether to turn that into a NaN row.
    """
    target = np.asarray(target, dtype=float)
    design = np.asarray(design, dtype=float)
    keep = np.isfinite(target)
    fitter = LinearModelFitter(target[keep], design[keep], feature=feature).fit()
    return fitter.term_result(term_index, term)
