"""Tests for Typer CLI interface."""

import anndata as ad
import yaml
from typer.testing import CliRunner

from microflux.cli import app
from microflux.main import run_pipeline

runner = CliRunner(env={"NO_COLOR": "1", "TERM": "dumb"})


def _write_config(tmp_path, meta_path, abund_path, **exports):
    cfg = {
        "dataset": {"metadata_file": str(meta_path), "abundance_file": str(abund_path),
                    "id_column": "SubjectID"},
        "analysis": {"disease_column": "Disease", "covariates": ["Confounder", "AgeCategory"],
                     "n_pcs": 2},
        "exports": {
            "path_plot": str(tmp_path / "report.pdf"),
            "path_table": str(tmp_path / "results.xlsx"),
            "table_use_xlsx": False,
            "path_h5ad": None,
            **exports,
        },
    }
    path = tmp_path / "config.yaml"
    path.write_text(yaml.safe_dump(cfg))
    return path


class TestCLIHelp:

    def test_help_command(self):
        result = runner.invoke(app, ["--help"])
        assert result.exit_code == 0
        assert "association" in result.stdout

    def test_run_help(self):
        result = runner.invoke(app, ["run", "--help"])
        assert result.exit_code == 0
        assert "--config" in result.stdout


class TestInit:

    def test_template_written(self, tmp_path):
        target = tmp_path / "cfg.yaml"
        result = runner.invoke(app, ["init", str(target)])
        assert result.exit_code == 0
        cfg = yaml.safe_load(target.read_text())
        assert {"dataset", "analysis", "exports"} <= set(cfg)
        assert cfg["analysis"]["p_adjust_method"] == "fdr_by"


class TestRun:

    def test_missing_config_file(self, tmp_path):
        result = runner.invoke(app, ["run", "--config", str(tmp_path / "missing.yaml")])
        assert result.exit_code == 2

    def test_full_run(self, tmp_path, table_files):
        config = _write_config(tmp_path, *table_files)
        result = runner.invoke(app, ["run", "--config", str(config)])

        assert result.exit_code == 0, result.output
        assert "Univariate hits" in result.stdout
        assert (tmp_path / "report.pdf").exists()
        assert (tmp_path / "results_univariate.csv").exists()
        assert (tmp_path / "results_comparison.csv").exists()

    def test_load_error_exit_code(self, tmp_path, table_files):
        config = _write_config(tmp_path, tmp_path / "nope.csv", table_files[1])
        result = runner.invoke(app, ["run", "--config", str(config)])
        assert result.exit_code == 1


class TestRunPipeline:

    def test_nested_outputs_and_metadata_summary(self, tmp_path, table_files):
        config = yaml.safe_load(_write_config(tmp_path, *table_files).read_text())
        config["exports"]["path_plot"] = str(tmp_path / "results" / "report.pdf")
        config["exports"]["path_h5ad"] = str(tmp_path / "results" / "adata.h5ad")

        adata, results = run_pipeline(config)

        assert (tmp_path / "results" / "report.pdf").stat().st_size > 0
        assert (results.multivariate["term"] == "Q('Disease')").all()

        summary = adata.uns["metadata_summary"]
        assert {"describe", "correlation", "categorical_counts"} <= set(summary)
        assert summary["correlation"].loc["Disease", "Confounder"] > 0.75
        counts = summary["categorical_counts"]["AgeCategory"].set_index("level")["count"]
        assert counts.to_dict() == {"young": 5, "old": 5}

        back = ad.read_h5ad(tmp_path / "results" / "adata.h5ad")
        assert "correlation" in back.uns["metadata_summary"]
