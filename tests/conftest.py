"""Pytest configuration and synthetic fixtures for MicroFlux tests.

The confounding dataset has 10 subjects (5 disease-negative, 5 positive) and
a covariate `Confounder = 2 + 2*Disease + w` where `w` has zero mean inside
each group. Features:

  - FeatA: 10 + 3*Disease + 0.1*v      (true disease effect)
  - FeatB: 2*Confounder + 0.1*v        (driven by the confounder only)
  - FeatC: group-balanced noise        (no effect)

`v` is orthogonal to the intercept, the disease label and `w`, so the
residuals are known exactly.
"""

import anndata as ad
import numpy as np
import pandas as pd
import pytest

DISEASE = np.array([0, 0, 0, 0, 0, 1, 1, 1, 1, 1], dtype=float)
W = np.array([-1.0, -0.5, 0.0, 0.5, 1.0] * 2)
V = np.array([1.0, -2.0, 0.0, 2.0, -1.0] * 2)
CONFOUNDER = 2 + 2 * DISEASE + W

FEAT_A = 10 + 3 * DISEASE + 0.1 * V
FEAT_B = 2 * CONFOUNDER + 0.1 * V
FEAT_C = np.array([1.0, 3.0, 2.0, 5.0, 4.0, 2.0, 4.0, 3.0, 1.0, 5.0])

SUBJECTS = [f"S{i:02d}" for i in range(1, 11)]


def make_adata(features: dict, obs_extra: dict = None) -> ad.AnnData:
    """AnnData with Disease/Confounder in obs and the given feature columns."""
    obs = pd.DataFrame({"Disease": DISEASE, "Confounder": CONFOUNDER}, index=SUBJECTS)
    for k, v in (obs_extra or {}).items():
        obs[k] = v
    X = np.column_stack([np.asarray(v, dtype=float) for v in features.values()])
    var = pd.DataFrame(index=pd.Index(list(features.keys()), name="feature"))
    return ad.AnnData(X=X, obs=obs, var=var)


@pytest.fixture
def confounding_adata() -> ad.AnnData:
    return make_adata({"FeatA": FEAT_A, "FeatB": FEAT_B, "FeatC": FEAT_C})


@pytest.fixture
def confounding_config() -> dict:
    return {
        "analysis": {
            "disease_column": "Disease",
            "covariates": ["Confounder"],
            "sign_threshold": 0.05,
        }
    }


@pytest.fixture
def subject_tables():
    """(metadata, abundance) DataFrames with a SubjectID column, one unmatched subject each."""
    metadata = pd.DataFrame(
        {
            "SubjectID": SUBJECTS + ["S99"],
            "Disease": list(DISEASE.astype(int)) + [1],
            "Confounder": list(CONFOUNDER) + [4.0],
            "AgeCategory": ["young", "old"] * 5 + ["old"],
        }
    )
    total = FEAT_A + FEAT_B + FEAT_C
    abundance = pd.DataFrame(
        {
            "SubjectID": SUBJECTS + ["S77"],
            "k__Bacteria|g__Alpha": list(FEAT_A / total) + [0.2],
            "k__Bacteria|g__Beta": list(FEAT_B / total) + [0.3],
            "k__Bacteria|g__Gamma": list(FEAT_C / total) + [0.5],
        }
    )
    return metadata, abundance


@pytest.fixture
def table_files(tmp_path, subject_tables):
    metadata, abundance = subject_tables
    meta_path = tmp_path / "metadata.csv"
    abund_path = tmp_path / "abundance.csv"
    metadata.to_csv(meta_path, index=False)
    abundance.to_csv(abund_path, index=False)
    return meta_path, abund_path
