from pathlib import Path
from typing import Optional, Tuple

import anndata as ad
import numpy as np
import pandas as pd
import polars as pl
import pyarrow.csv as pv_csv
import warnings

from microflux.utils.errors import DataLoadError, JoinMismatchError
from microflux.utils.utils import log_indent, log_info, log_time, log_warning

# Supress the ImplicitModificationWarning from AnnData
warnings.filterwarnings("ignore", category=UserWarning, message=".*Transforming to str index.*")

NULL_VALUES = ["NA", "NaN", "N/A", ""]
RANK_PREFIXES = {
    "k": "kingdom",
    "d": "domain",
    "p": "phylum",
    "c": "class",
    "o": "order",
    "f": "family",
    "g": "genus",
    "s": "species",
    "t": "strain",
}


def parse_lineage(feature_name: str) -> Tuple[str, str]:
    """Return (rank, leaf label) for a feature like 'k__Bacteria|p__Firmicutes'.

    Names without a rank prefix map to rank 'unknown' and keep the full name.
    """
    leaf = str(feature_name).replace(";", "|").split("|")[-1].strip()
    if "__" in leaf:
        prefix, label = leaf.split("__", 1)
        return RANK_PREFIXES.get(prefix.lower(), "unknown"), label or leaf
    return "unknown", leaf


class Dataset:
    """Load metadata + abundance tables and join them into an AnnData."""
    def __init__(self, **kwargs):
        """
        Initialize the dataset object.

        Args:
            kwargs: dict with all the config elements
        """
        dataset_cfg = kwargs.get("dataset", {}) or {}
        analysis_cfg = kwargs.get("analysis", {}) or {}

        self.metadata_file = dataset_cfg.get("metadata_file")
        self.abundance_file = dataset_cfg.get("abundance_file")
        self.id_column = dataset_cfg.get("id_column", "SubjectID")
        self.metadata_id_column = dataset_cfg.get("metadata_id_column") or self.id_column
        self.abundance_id_column = dataset_cfg.get("abundance_id_column") or self.id_column
        self.load_method = dataset_cfg.get("load_method", "polars")
        self.composition_total = dataset_cfg.get("composition_total")
        self.composition_tolerance = float(dataset_cfg.get("composition_tolerance", 0.05))

        self.disease_column = analysis_cfg.get("disease_column", "Disease")

        self.metadata: Optional[pd.DataFrame] = None
        self.abundance: Optional[pd.DataFrame] = None
        self.adata: Optional[ad.AnnData] = None

        self._load_and_process()

    def _load_and_process(self):
        if not self.metadata_file or not self.abundance_file:
            raise DataLoadError("Both 'metadata_file' and 'abundance_file' must be set in the dataset config.")

        self.metadata = self._load_table(self.metadata_file, self.metadata_id_column, "metadata")
        self.abundance = self._load_table(self.abundance_file, self.abundance_id_column, "abundance")

        self._check_abundance(self.abundance)
        self._convert_to_anndata()

    @log_time("Data Loading")
    def _load_table(self, file_path: str, id_column: str, label: str) -> pd.DataFrame:
        """Read one table and index it by subject ID (as strings)."""
        df = self._read_any(Path(file_path), label)

        if id_column not in df.columns:
            raise DataLoadError(f"{label} table '{file_path}' has no subject ID column '{id_column}'.")

        df[id_column] = df[id_column].astype(str)
        dupes = df[id_column][df[id_column].duplicated()].unique().tolist()
        if dupes:
            head = ", ".join(dupes[:5])
            raise DataLoadError(f"{label} table has {len(dupes)} duplicated subject ID(s): [{head}]")

        df = df.set_index(id_column)
        df.index.name = "SubjectID"
        log_info(f"Loaded {label}: {df.shape[0]} subjects × {df.shape[1]} columns")
        return df

    def _read_any(self, path: Path, label: str) -> pd.DataFrame:
        if not path.exists():
            raise DataLoadError(f"{label} file not found: {path}")

        suffix = path.suffix.lower()
        try:
            if suffix in (".csv", ".tsv", ".txt"):
                return self._read_delimited(path, "," if suffix == ".csv" else "\t")
            if suffix == ".parquet":
                return pl.read_parquet(path).to_pandas()
            if suffix in (".feather", ".arrow", ".ipc"):
                return pl.read_ipc(path).to_pandas()
            if suffix in (".pkl", ".pickle"):
                obj = pd.read_pickle(path)
                if not isinstance(obj, pd.DataFrame):
                    raise DataLoadError(f"{label} pickle does not contain a DataFrame: {type(obj).__name__}")
                # pickled tables usually carry the ID as index
                return obj.reset_index() if obj.index.name else obj
        except DataLoadError:
            raise
        except Exception as exc:
            raise DataLoadError(f"Could not parse {label} table '{path}': {exc}") from exc

        raise DataLoadError(f"Unsupported {label} file format '{suffix}' ({path}).")

    def _read_delimited(self, path: Path, delimiter: str) -> pd.DataFrame:
        if self.load_method == "polars":
            df = pl.read_csv(path,
                             separator=delimiter,
                             infer_schema_length=10000,
                             null_values=NULL_VALUES)
            return df.to_pandas()
        elif self.load_method == "pyarrow":
            parse_options = pv_csv.ParseOptions(delimiter=delimiter)
            convert_options = pv_csv.ConvertOptions(null_values=NULL_VALUES)
            arrow_table = pv_csv.read_csv(path, parse_options=parse_options, convert_options=convert_options)
            return arrow_table.to_pandas()
        elif self.load_method == "pandas":
            return pd.read_csv(path, sep=delimiter, na_values=NULL_VALUES)
        else:
            raise ValueError(f"Unknown load method: {self.load_method}")

    def _check_abundance(self, abundance: pd.DataFrame) -> None:
        """Abundances must be numeric and non-negative; row sums are only checked."""
        non_numeric = [c for c in abundance.columns if not pd.api.types.is_numeric_dtype(abundance[c])]
        if non_numeric:
            head = ", ".join(map(str, non_numeric[:5]))
            raise DataLoadError(f"Abundance table has {len(non_numeric)} non-numeric column(s): [{head}]")

        values = abundance.to_numpy(dtype=float)
        if np.any(values[np.isfinite(values)] < 0):
            raise DataLoadError("Abundance table contains negative values; expected relative abundances.")

        row_sums = np.nansum(values, axis=1)
        total = self.composition_total
        if total is None:
            # percentages vs fractions
            total = 100.0 if np.nanmedian(row_sums) > 1.5 else 1.0
        off = np.abs(row_sums - total) > self.composition_tolerance * total
        if off.any():
            log_warning(f"Composition check: {int(off.sum())}/{len(row_sums)} subject(s) do not sum to "
                        f"{total:g} (±{self.composition_tolerance:.0%}); left unchanged.")
        else:
            log_info(f"Composition check: all subjects sum to {total:g}.")

    def _join(self) -> Tuple[pd.DataFrame, pd.DataFrame]:
        meta_ids = self.metadata.index
        abund_ids = self.abundance.index

        only_meta = meta_ids.difference(abund_ids)
        only_abund = abund_ids.difference(meta_ids)
        if len(only_meta) or len(only_abund):
            mismatch = JoinMismatchError(only_meta, only_abund)
            log_warning(f"Join mismatch: {mismatch} → dropped.")

        # metadata row order drives the joined order
        shared = meta_ids[meta_ids.isin(abund_ids)]
        if len(shared) == 0:
            raise DataLoadError("No subject IDs shared between metadata and abundance tables.")

        return self.metadata.loc[shared].copy(), self.abundance.loc[shared].copy()

    def _check_disease_label(self, obs: pd.DataFrame) -> None:
        if self.disease_column not in obs.columns:
            raise DataLoadError(f"Disease column '{self.disease_column}' not found in metadata.")

        labels = pd.to_numeric(obs[self.disease_column], errors="coerce")
        bad = obs[self.disease_column].notna() & ~labels.isin([0, 1])
        if bad.any():
            raise DataLoadError(f"Disease column '{self.disease_column}' must be 0/1; "
                                f"found {sorted(map(str, obs.loc[bad, self.disease_column].unique()))[:5]}")
        obs[self.disease_column] = labels

    @log_time("Conversion to AnnData")
    def _convert_to_anndata(self):
        """Inner-join both tables on subject ID and wrap them into AnnData."""
        obs, abund = self._join()
        self._check_disease_label(obs)

        features = [str(c) for c in abund.columns]
        lineage = [parse_lineage(f) for f in features]
        var = pd.DataFrame(
            {
                "rank": [r for r, _ in lineage],
                "label": [lab for _, lab in lineage],
            },
            index=pd.Index(features, name="feature"),
        )

        self.adata = ad.AnnData(
            X=abund.to_numpy(dtype=np.float64),
            obs=obs,
            var=var,
        )

        n_cases = int((obs[self.disease_column] == 1).sum())
        with log_indent():
            log_info(f"Joined dataset: {self.adata.n_obs} subjects × {self.adata.n_vars} features "
                     f"({n_cases} disease-positive)")

        self.adata.uns["dataset"] = {
            "metadata_file": str(self.metadata_file),
            "abundance_file": str(self.abundance_file),
            "disease_column": self.disease_column,
            "n_metadata": int(self.metadata.shape[0]),
            "n_abundance": int(self.abundance.shape[0]),
        }

    def get_anndata(self) -> ad.AnnData:
        """Export the joined dataset as an AnnData object."""
        return self.adata
