"""Export association results to Excel/CSV and write the joined dataset as .h5ad."""
import pandas as pd
from datetime import datetime
from pathlib import Path
from typing import Dict, Optional
from importlib.metadata import version as _pkg_version, PackageNotFoundError

from microflux.dataset.associationresults import AssociationResults
from microflux.utils.utils import log_info, log_time


class AssociationExporter:
    def __init__(
        self,
        results: AssociationResults,
        output_path,
        use_xlsx=True,
        adata=None,
    ):
        """Excel/CSV and .h5ad exporter for the three result tables."""
        self.results = results
        self.output_path = Path(output_path)
        self.use_xlsx = use_xlsx
        self.adata = adata

    def _readme(self) -> str:
        r = self.results
        return (
            "MicroFlux association export\n\n"
            f"Univariate model: {r.formulas.get('univariate', '')}\n"
            f"Multivariate model: {r.formulas.get('multivariate', '')}\n"
            f"Reference levels: {r.reference_levels}\n"
            f"Adjustment: {r.p_adjust_method}; significance at p_adj < {r.sign_threshold}\n\n"
            "Sheet Descriptions:\n"
            "- Univariate: disease coefficient of feature ~ disease, one row per feature.\n"
            "- Multivariate: disease coefficient of feature ~ disease + covariates.\n"
            "- Comparison: univariate hits joined with their multivariate counterpart.\n"
            "NaN rows mark features whose model could not be fitted."
        )

    def _export_excel(self, tables: Dict[str, Optional[pd.DataFrame]], readme: str) -> Path:
        """Write tables to a single XLSX with a README sheet."""
        out_file = self.output_path.with_suffix(".xlsx")
        with pd.ExcelWriter(out_file, engine="xlsxwriter") as writer:
            pd.DataFrame({"README": readme.split("\n")}).to_excel(
                writer, index=False, sheet_name="README"
            )
            for name, df in tables.items():
                if df is None:
                    continue
                df.to_excel(writer, sheet_name=name, index=False)
                writer.sheets[name].set_column(0, 0, 40)
                writer.sheets[name].set_column(1, max(1, df.shape[1] - 1), 14)
        return out_file

    def _export_csvs(self, tables: Dict[str, Optional[pd.DataFrame]]) -> Path:
        """One CSV per table with a shared filename prefix."""
        prefix = self.output_path.with_suffix("")
        for name, df in tables.items():
            if df is not None:
                df.to_csv(f"{prefix}_{name.lower()}.csv", index=False)
        return prefix

    @log_time("Exporting result tables")
    def export(self) -> Path:
        self.output_path.parent.mkdir(parents=True, exist_ok=True)
        tables = self.results.tables()
        if self.use_xlsx:
            out = self._export_excel(tables, self._readme())
        else:
            out = self._export_csvs(tables)
        log_info(f"Tables written to {out}")
        return out

    @log_time("Exporting .h5ad")
    def export_adata(self, h5ad_path: str) -> None:
        """Write the joined dataset (with results in .uns) as a compressed .h5ad."""
        if self.adata is None:
            raise ValueError("No AnnData attached to the exporter.")

        for col in self.adata.obs.columns:
            if self.adata.obs[col].dtype == object:
                self.adata.obs[col] = self.adata.obs[col].astype("category")

        # h5py cannot store object columns mixing strings and NaN
        assoc = dict(self.adata.uns.get("association", {}))
        for key, val in assoc.items():
            if isinstance(val, pd.DataFrame):
                val = val.copy()
                for col in val.columns[val.dtypes == object]:
                    val[col] = val[col].astype("category")
                assoc[key] = val
        if assoc:
            self.adata.uns["association"] = assoc

        try:
            mf_version = _pkg_version("microflux")
        except PackageNotFoundError:
            mf_version = "0+unknown"
        self.adata.uns["microflux"] = {
            "version": mf_version,
            "created_at": datetime.now().isoformat(timespec="seconds"),
        }

        Path(h5ad_path).parent.mkdir(parents=True, exist_ok=True)
        self.adata.write(h5ad_path, compression="gzip")
