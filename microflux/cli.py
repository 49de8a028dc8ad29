import typer
from pathlib import Path
import yaml
from importlib.resources import files

from microflux.utils.errors import DataLoadError
from microflux.utils.utils import setup_logging

app = typer.Typer(help="MicroFlux: microbiome–disease association workflows")


def configure_cli_display() -> None:
    """Cap dataframe display sizes for any explicit prints/logs."""
    import pandas as pd
    import polars as pl

    pd.set_option("display.max_rows", 10)
    pd.set_option("display.max_columns", 20)
    pd.set_option("display.width", 160)
    pl.Config.set_tbl_rows(10)
    pl.Config.set_tbl_cols(20)


@app.command()
def init(path: Path = typer.Argument(Path("microflux_config.yaml"), help="Where to write the template")):
    """
    Generate a config scaffold (basic template) at given path.
    """
    default_yaml = files("microflux.templates").joinpath("user_template.yaml").read_text()

    path.write_text(default_yaml)
    typer.echo(f"Template written to {path}")


@app.command()
def run(
    config: Path = typer.Option(..., help="Path to YAML config file"),
):
    """
    Run the association pipeline described by a YAML config.
    """
    if not config.exists():
        typer.echo(f"Config file not found: {config}", err=True)
        raise typer.Exit(code=2)

    setup_logging()
    configure_cli_display()
    config_data = yaml.safe_load(config.read_text()) or {}

    # heavy imports (scanpy, matplotlib) only for `run`
    from microflux.main import run_pipeline

    try:
        _, results = run_pipeline(config=config_data)
    except DataLoadError as exc:
        typer.echo(f"Data loading failed: {exc}", err=True)
        raise typer.Exit(code=1)

    typer.echo(
        f"Univariate hits: {len(results.comparison)}; "
        f"retained after adjustment: {int(results.comparison['significant_multivariate'].sum())}"
    )


if __name__ == "__main__":
    app()
