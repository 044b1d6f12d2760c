"""Write NGNN results to an output directory."""

from __future__ import annotations

import csv
import logging
from pathlib import Path

import numpy as np

from .io import write_abundance_table
from .pipeline import NGNNResult

logger = logging.getLogger(__name__)


def write_results(result: NGNNResult, output_dir: str | Path) -> None:
    """Write all result tables of an NGNN run."""
    out = Path(output_dir)
    out.mkdir(parents=True, exist_ok=True)

    write_abundance_table(result.spp_imputed, out / "imputed_composition.tsv")
    write_abundance_table(result.npmr.fitted_in, out / "fitted_reference.tsv")
    write_abundance_table(result.npmr.fitted_out, out / "fitted_new.tsv")
    _write_npmr_stats(result, out / "npmr_stats.csv")
    _write_scores(result.nco.ordination.sample_ids, result.scr_i, out / "nco_scores.csv")
    _write_projection(result, out / "projected_scores.csv")
    _write_neighbors(result, out / "nearest_neighbors.csv")
    _write_diagnostics(result, out / "diagnostics.txt")
    logger.info("Results written to %s", out)


def _write_npmr_stats(result: NGNNResult, path: Path) -> None:
    predictors = result.npmr.predictors
    with open(path, "w", newline="") as f:
        w = csv.writer(f)
        w.writerow(["species", "status", "xR2", "p_value"] + [f"bw_{p}" for p in predictors])
        for sp in result.npmr.species_ids:
            model = result.npmr.models.get(sp)
            if model is None:
                w.writerow([sp, "failed", "", ""] + [""] * len(predictors))
                continue
            p = "" if model.p_value is None else f"{model.p_value:.4f}"
            w.writerow(
                [sp, "ok", f"{model.xr2:.4f}", p]
                + [f"{bw:.6g}" for bw in model.bandwidths]
            )


def _write_scores(sample_ids: list[str], scores: np.ndarray, path: Path) -> None:
    with open(path, "w", newline="") as f:
        w = csv.writer(f)
        n_axes = scores.shape[1]
        w.writerow(["sample_id"] + [f"Axis{k+1}" for k in range(n_axes)])
        for i, sid in enumerate(sample_ids):
            w.writerow([sid] + [f"{scores[i, k]:.6f}" for k in range(n_axes)])


def _write_projection(result: NGNNResult, path: Path) -> None:
    proj = result.projection
    n_axes = proj.scores.shape[1]
    with open(path, "w", newline="") as f:
        w = csv.writer(f)
        w.writerow(
            ["sample_id"]
            + [f"Axis{k+1}" for k in range(n_axes)]
            + [f"flag_axis{k+1}" for k in range(n_axes)]
            + ["stress", "status"]
        )
        for i, sid in enumerate(proj.sample_ids):
            if sid in proj.failures:
                w.writerow([sid] + ["NA"] * n_axes + [""] * n_axes + ["NA", "failed"])
                continue
            w.writerow(
                [sid]
                + [f"{proj.scores[i, k]:.6f}" for k in range(n_axes)]
                + [int(proj.flags[i, k]) for k in range(n_axes)]
                + [f"{proj.stress[i]:.4f}", "ok"]
            )


def _write_neighbors(result: NGNNResult, path: Path) -> None:
    res = result.gnn
    k = res.neighbors.shape[1]
    ids = res.neighbor_ids
    with open(path, "w", newline="") as f:
        w = csv.writer(f)
        w.writerow(["sample_id", "status"] + [f"nn{j+1}" for j in range(k)] + [f"dist{j+1}" for j in range(k)])
        for i, sid in enumerate(res.sample_ids):
            if not ids[i]:
                w.writerow([sid, res.status[sid]] + [""] * (2 * k))
                continue
            w.writerow(
                [sid, res.status[sid]]
                + ids[i]
                + [f"{d:.6f}" for d in res.distances[i]]
            )


def _write_diagnostics(result: NGNNResult, path: Path) -> None:
    summary = result.summary()
    with open(path, "w") as f:
        f.write(f"Predictors: {', '.join(result.npmr.predictors)}\n")
        f.write(f"Metric: {result.nco.metric}\n")
        f.write(f"Stepacross replaced pairs: {result.nco.dissimilarity.n_replaced}\n")
        f.write(f"Stress: {summary['stress']}\n")
        f.write(f"R2_internal: {summary['R2_internal']}\n")
        f.write(f"R2_enviro: {summary['R2_enviro']}\n")
        for name, r2 in summary["R2_partial"].items():
            f.write(f"R2_partial[{name}]: {r2}\n")
        for axis, taus in summary["Axis_tau"].items():
            for name, tau in taus.items():
                f.write(f"Axis_tau[{axis}, {name}]: {tau}\n")
        f.write(f"Failed species: {', '.join(summary['failed_species']) or 'none'}\n")
        f.write(f"Failed units: {', '.join(summary['failed_units']) or 'none'}\n")
