"""Click CLI for NGNN species composition imputation."""

from __future__ import annotations

import logging
from pathlib import Path

import click

from ngnn import __version__

from .config import METRICS, WEIGHTINGS
from .errors import NGNNError
from .io import load_abundance_table, load_predictor_table

logger = logging.getLogger("ngnn")


def _setup_logging(verbose: bool) -> None:
    level = logging.DEBUG if verbose else logging.INFO
    logging.basicConfig(
        level=level,
        format="%(asctime)s [%(levelname)s] %(name)s: %(message)s",
        datefmt="%Y-%m-%d %H:%M:%S",
    )


@click.group()
@click.version_option(version=__version__)
@click.option("-v", "--verbose", is_flag=True, help="Enable debug logging.")
def main(verbose: bool) -> None:
    """NGNN: nonlinear gradient nearest neighbor imputation of species composition."""
    _setup_logging(verbose)


@main.command()
@click.option("--reference-predictors", "-r", required=True, type=click.Path(exists=True), help="Reference predictor TSV")
@click.option("--abundance", "-a", required=True, type=click.Path(exists=True), help="Reference abundance TSV")
@click.option("--new-predictors", "-n", required=True, type=click.Path(exists=True), help="New-unit predictor TSV")
@click.option("--predictor", "-p", "predictors", required=True, multiple=True, help="Predictor to use (give once or twice)")
@click.option("--restarts", default=5, show_default=True, help="Random starts for NPMR and NMS")
@click.option("--presence-absence", is_flag=True, help="Binarize abundances before regression")
@click.option("--beals", is_flag=True, help="Regress Beals smoothed occurrence probabilities")
@click.option("--metric", type=click.Choice(METRICS), default="bray", show_default=True, help="Dissimilarity measure")
@click.option("--thresh", default=0.9, show_default=True, type=float, help="Stepacross threshold")
@click.option("--neighb", default=5, show_default=True, help="Reference units used to project each new unit")
@click.option("--maxits", default=999, show_default=True, help="Projection iterations")
@click.option("-k", default=1, show_default=True, help="Nearest neighbors averaged per new unit")
@click.option("--weighting", type=click.Choice(WEIGHTINGS), default="equal", show_default=True, help="Neighbor averaging")
@click.option("--exclude-flagged", is_flag=True, help="Do not impute units projected outside the reference range")
@click.option("--permutations", default=99, show_default=True, help="Randomizations for NPMR p-values")
@click.option("--seed", default=42, show_default=True, help="Random seed")
@click.option("--n-jobs", default=1, show_default=True, help="Parallel workers")
@click.option("--output", "-o", default="ngnn_results", help="Output directory")
def run(
    reference_predictors: str,
    abundance: str,
    new_predictors: str,
    predictors: tuple[str, ...],
    restarts: int,
    presence_absence: bool,
    beals: bool,
    metric: str,
    thresh: float,
    neighb: int,
    maxits: int,
    k: int,
    weighting: str,
    exclude_flagged: bool,
    permutations: int,
    seed: int,
    n_jobs: int,
    output: str,
) -> None:
    """Impute species composition for new sample units."""
    from .config import NGNNConfig
    from .pipeline import ngnn
    from .report import write_results

    try:
        config = NGNNConfig.from_dict({
            "predictors": list(predictors),
            "restarts": restarts,
            "presence_absence": presence_absence,
            "beals": beals,
            "dissimilarity_metric": metric,
            "stepacross_threshold": thresh,
            "projection_neighbors": neighb,
            "projection_iterations": maxits,
            "k": k,
            "weighting": weighting,
            "exclude_flagged": exclude_flagged,
            "n_permutations": permutations,
            "seed": seed,
            "n_jobs": n_jobs,
        })
        ref = load_predictor_table(reference_predictors)
        spe = load_abundance_table(abundance)
        new = load_predictor_table(new_predictors)
        logger.info(
            "Loaded %d reference units x %d species, %d new units",
            spe.n_samples, spe.n_species, new.n_samples,
        )
        result = ngnn(ref, spe, new, config)
    except NGNNError as exc:
        raise click.ClickException(str(exc)) from exc

    out = Path(output)
    write_results(result, out)
    n_ok = sum(1 for s in result.gnn.status.values() if s == "ok")
    click.echo(f"Imputed composition for {n_ok}/{len(result.gnn.status)} new units")
    click.echo(f"Results written to {out}/")
