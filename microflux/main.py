from microflux.workflow.dataset import Dataset
from microflux.analysis.summary import summarize_metadata, summarize_abundance
from microflux.analysis.clustering import run_pca
from microflux.analysis.association_pipeline import run_association_pipeline
from microflux.export.association_plotter import AssociationPlotter
from microflux.export.association_exporter import AssociationExporter
from microflux.utils.utils import log_time


@log_time("MicroFlux Pipeline")
def run_pipeline(config: dict):
    dataset = Dataset(**config)
    adata = dataset.get_anndata()

    analysis_config = config.get("analysis", {}) or {}
    export_config = config.get("exports", {}) or {}

    summary = summarize_metadata(adata.obs)
    adata.uns["metadata_summary"] = {
        "describe": summary.describe,
        "correlation": summary.correlation,
        "categorical_counts": {
            col: counts.rename_axis("level").reset_index(name="count").astype({"level": str})
            for col, counts in summary.categorical_counts.items()
        },
    }
    adata.varm["abundance_summary"] = summarize_abundance(adata).loc[adata.var_names]

    adata = run_pca(adata, n_pcs=int(analysis_config.get("n_pcs", 10)))
    results = run_association_pipeline(adata, config)

    if export_config.get("export_plot", True):
        plotter = AssociationPlotter(adata, results, config)
        plotter.plot_all(export_config.get("path_plot"))

    exporter = AssociationExporter(
        results,
        output_path=export_config.get("path_table", "microflux_results.xlsx"),
        use_xlsx=export_config.get("table_use_xlsx", True),
        adata=adata,
    )
    if export_config.get("export_table", True):
        exporter.export()

    if export_config.get("path_h5ad"):
        exporter.export_adata(export_config.get("path_h5ad"))

    return adata, results
