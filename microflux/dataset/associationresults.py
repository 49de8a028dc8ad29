from dataclasses import dataclass, field
from typing import Dict, Optional
import pandas as pd


@dataclass
class AssociationResults:
    univariate: pd.DataFrame
    multivariate: pd.DataFrame
    comparison: pd.DataFrame
    formulas: Dict[str, str] = field(default_factory=dict)
    reference_levels: Dict[str, str] = field(default_factory=dict)
    sign_threshold: float = 0.05
    p_adjust_method: str = "fdr_by"
    failed: Dict[str, list] = field(default_factory=dict)

    def tables(self) -> Dict[str, pd.DataFrame]:
        """Result tables keyed by export/sheet name."""
        return {
            "Univariate": self.univariate,
            "Multivariate": self.multivariate,
            "Comparison": self.comparison,
        }

    def significant(self, model: str, threshold: Optional[float] = None) -> pd.DataFrame:
        """Rows of `model` ('univariate' or 'multivariate') below the adjusted-p threshold."""
        df = getattr(self, model)
        thr = self.sign_threshold if threshold is None else threshold
        return df[df["p_adj"] < thr]
