"""PDF report of the association analysis.

Pages:
  1) Title page (dataset, model formulas, hit counts)
  2) PCA of subjects colored by disease label
  3) Volcano plots (univariate, multivariate)
  4) Adjusted p-value distributions
  5) Univariate vs multivariate estimates of the univariate hits
"""

import textwrap
from datetime import datetime
from pathlib import Path
from typing import Dict, Optional

import matplotlib
matplotlib.use("Agg")
import matplotlib.pyplot as plt
import numpy as np
import pandas as pd
import seaborn as sns
from anndata import AnnData
from matplotlib.backends.backend_pdf import PdfPages

from microflux.dataset.associationresults import AssociationResults
from microflux.utils.utils import log_time


class AssociationPlotter:
    def __init__(
        self,
        adata: AnnData,
        results: AssociationResults,
        config: Optional[Dict] = None,
    ):
        self.config = config or {}
        self.analysis_config = self.config.get("analysis", {}) or {}
        self.export_config = self.config.get("exports", {}) or {}
        self.adata = adata
        self.results = results
        self.disease_column = self.analysis_config.get("disease_column", "Disease")
        self.sign_threshold = results.sign_threshold
        self.volcano_top_annotated = int(self.export_config.get("volcano_top_annotated", 10))
        self.labels = adata.var["label"] if "label" in adata.var.columns else pd.Series(adata.var_names, index=adata.var_names)

    @log_time("Plotting report")
    def plot_all(self, path: Optional[str] = None):
        path = path or self.export_config.get("path_plot", "microflux_report.pdf")
        Path(path).parent.mkdir(parents=True, exist_ok=True)
        with PdfPages(path) as pdf:
            self.pdf = pdf
            self._plot_title_page()
            self._plot_pca()
            self._plot_volcano(self.results.univariate, "Univariate: feature ~ disease")
            self._plot_volcano(self.results.multivariate, "Multivariate: feature ~ disease + covariates")
            self._plot_padj_distributions()
            self._plot_estimate_comparison()
        return path

    def _plot_title_page(self):
        fig = plt.figure(figsize=(8.27, 11.69))
        y = 0.95
        title = self.export_config.get("title", "Microbiome–disease association")
        fig.text(0.5, y, title, ha="center", va="top", fontsize=18, weight="bold")
        y -= 0.04
        fig.text(0.5, y, datetime.now().strftime("%Y-%m-%d"), ha="center", va="top", fontsize=12)
        y -= 0.06

        uni_sig = len(self.results.significant("univariate"))
        multi_sig = len(self.results.significant("multivariate"))
        comp = self.results.comparison
        lines = [
            f"Subjects: {self.adata.n_obs}    Features: {self.adata.n_vars}",
            f"Disease-positive: {int((self.adata.obs[self.disease_column] == 1).sum())}",
            f"Univariate model: {self.results.formulas.get('univariate', '')}",
            f"Multivariate model: {self.results.formulas.get('multivariate', '')}",
            f"Reference levels: {self.results.reference_levels or 'none'}",
            f"Multiple testing: {self.results.p_adjust_method}, threshold {self.sign_threshold}",
            f"Significant (univariate): {uni_sig}",
            f"Significant (multivariate): {multi_sig}",
            f"Univariate hits retained after adjustment: {int(comp['significant_multivariate'].sum())}/{len(comp)}",
        ]
        for line in lines:
            for wrapped in textwrap.wrap(line, width=95):
                fig.text(0.05, y, wrapped, ha="left", va="top", fontsize=10)
                y -= 0.025
        self.pdf.savefig(fig)
        plt.close(fig)

    def _plot_pca(self):
        """PC1 vs PC2 of subjects colored by disease label."""
        if "X_pca" not in self.adata.obsm or self.adata.obsm["X_pca"].shape[1] < 2:
            return

        pc_df = pd.DataFrame(
            self.adata.obsm["X_pca"][:, :2],
            columns=["PC1", "PC2"],
            index=self.adata.obs_names,
        )
        pc_df[self.disease_column] = self.adata.obs[self.disease_column].astype("category").values

        var_ratio = self.adata.uns["pca"]["variance_ratio"]

        fig, ax = plt.subplots(figsize=(8, 6))
        sns.scatterplot(
            data=pc_df, x="PC1", y="PC2", hue=self.disease_column,
            palette="tab10", edgecolor="black", s=40, alpha=0.8, ax=ax,
        )
        ax.set_title("PCA of scaled abundances")
        ax.set_xlabel(f"PC1 ({var_ratio[0] * 100:.1f}%)")
        ax.set_ylabel(f"PC2 ({var_ratio[1] * 100:.1f}%)")
        ax.legend(title=self.disease_column, loc="upper left", bbox_to_anchor=(1.02, 1), borderaxespad=0.)
        fig.tight_layout()
        self.pdf.savefig(fig)
        plt.close(fig)

    def _plot_volcano(self, df: pd.DataFrame, title: str):
        """Estimate vs -log10(adjusted p), dashed line at the threshold."""
        df = df.dropna(subset=["estimate", "p_adj"])
        with np.errstate(divide="ignore"):
            y = -np.log10(df["p_adj"].clip(lower=np.finfo(float).tiny))
        sig = df["p_adj"] < self.sign_threshold

        color = np.where(~sig, "gray", np.where(df["estimate"] > 0, "firebrick", "steelblue"))

        fig, ax = plt.subplots(figsize=(10, 6))
        ax.scatter(df["estimate"], y, c=color, s=10, alpha=0.7)
        ax.axhline(-np.log10(self.sign_threshold), color="black", linestyle="--", linewidth=0.8)
        ax.axvline(0, color="black", linestyle="--", linewidth=0.8)

        top = df[sig].nsmallest(self.volcano_top_annotated, "p_adj")
        for idx, row in top.iterrows():
            ax.text(row["estimate"], y.loc[idx], self.labels.get(row["feature"], row["feature"]),
                    fontsize=6, ha="right" if row["estimate"] > 0 else "left", va="bottom")

        ax.set_xlabel("Estimate (disease coefficient)")
        ax.set_ylabel("-log10(adjusted p)")
        ax.set_title(f"{title} ({int(sig.sum())} significant)")
        fig.tight_layout()
        self.pdf.savefig(fig)
        plt.close(fig)

    def _plot_padj_distributions(self):
        fig, axes = plt.subplots(1, 2, figsize=(10, 4), sharey=True)
        bins = np.linspace(0, 1, 41)
        for ax, (name, df) in zip(axes, (("Univariate", self.results.univariate),
                                         ("Multivariate", self.results.multivariate))):
            sns.histplot(df["p_value"].dropna(), bins=bins, color="dodgerblue", alpha=0.5, ax=ax, label="raw p")
            sns.histplot(df["p_adj"].dropna(), bins=bins, color="darkorange", alpha=0.5, ax=ax, label="adjusted p")
            ax.set_xlim(0, 1)
            ax.set_title(name)
            ax.legend()
        fig.tight_layout()
        self.pdf.savefig(fig)
        plt.close(fig)

    def _plot_estimate_comparison(self):
        comp = self.results.comparison
        if comp.empty:
            return

        fig, ax = plt.subplots(figsize=(7, 6))
        sns.scatterplot(
            data=comp, x="estimate_univariate", y="estimate_multivariate",
            hue="status", palette={"retained": "firebrick", "lost": "gray"}, ax=ax,
        )
        lim = np.nanmax(np.abs(comp[["estimate_univariate", "estimate_multivariate"]].to_numpy()))
        if np.isfinite(lim) and lim > 0:
            ax.plot([-lim, lim], [-lim, lim], color="black", linestyle="--", linewidth=0.8)
        ax.axhline(0, color="black", linewidth=0.5)
        ax.axvline(0, color="black", linewidth=0.5)
        ax.set_title("Univariate hits: estimate before vs after adjustment")
        fig.tight_layout()
        self.pdf.savefig(fig)
        plt.close(fig)
