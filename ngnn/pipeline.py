"""NGNN: nonlinear gradient nearest neighbors.

Infers species composition at new sample units from their predictors:

    regress species individualistically on predictors (NPMR)
    -> ordinate the fitted values (NCO)
    -> place new units in that ordination (nco_predict)
    -> copy the composition of the nearest reference units (GNN)

Only compositions observed in at least one reference unit are ever
assigned, so imputed communities stay realistic.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Any

import numpy as np

from .config import NGNNConfig
from .errors import InputShapeMismatch, NeighborSearchFailure
from .gnn import GNNResult, gnn
from .io import AbundanceTable, PredictorTable
from .npmr import NPMRResult, npmr
from .ordination import NCOResult, nco
from .projection import ProjectionResult, nco_predict

logger = logging.getLogger(__name__)


def validate_inputs(
    reference_predictors: PredictorTable,
    abundance: AbundanceTable,
    new_predictors: PredictorTable,
    config: NGNNConfig,
) -> None:
    """Check table shapes, identities and config limits before any fitting."""
    if reference_predictors.n_samples != abundance.n_samples:
        raise InputShapeMismatch(
            f"Reference predictors have {reference_predictors.n_samples} rows, "
            f"abundances have {abundance.n_samples}"
        )
    if list(reference_predictors.sample_ids) != list(abundance.sample_ids):
        raise InputShapeMismatch("Reference predictor and abundance rows are not the same sample units")
    if len(set(abundance.sample_ids)) != abundance.n_samples:
        raise InputShapeMismatch("Duplicate reference sample ids")
    if len(set(new_predictors.sample_ids)) != new_predictors.n_samples:
        raise InputShapeMismatch("Duplicate new sample ids")
    if new_predictors.n_samples == 0:
        raise InputShapeMismatch("No new sample units")

    predictors = config.regression.predictors
    for table, label in ((reference_predictors, "reference"), (new_predictors, "new")):
        missing = [p for p in predictors if p not in table.names]
        if missing:
            raise InputShapeMismatch(f"Predictors {missing} missing from {label} predictor table")

    n_ref = abundance.n_samples
    if n_ref < config.ordination.n_axes + 2:
        raise InputShapeMismatch(
            f"{n_ref} reference units are too few for a {config.ordination.n_axes}-axis ordination"
        )
    if config.imputation.k > n_ref:
        raise NeighborSearchFailure(f"k={config.imputation.k} exceeds the {n_ref} reference units")
    if config.projection.n_neighbors > n_ref:
        raise InputShapeMismatch(
            f"projection_neighbors={config.projection.n_neighbors} exceeds the "
            f"{n_ref} reference units"
        )


@dataclass
class NGNNResult:
    """All stage outputs of one NGNN run."""

    config: NGNNConfig
    npmr: NPMRResult
    nco: NCOResult
    projection: ProjectionResult
    gnn: GNNResult

    @property
    def spp_imputed(self) -> AbundanceTable:
        """Imputed species composition of the new units."""
        return self.gnn.imputed

    @property
    def nn(self) -> np.ndarray:
        return self.gnn.neighbors

    @property
    def scr_i(self) -> np.ndarray:
        return self.nco.scores

    @property
    def scr_o(self) -> np.ndarray:
        return self.projection.scores

    @property
    def flagax1(self) -> np.ndarray:
        return self.projection.flagax1

    @property
    def flagax2(self) -> np.ndarray | None:
        return self.projection.flagax2

    def summary(self) -> dict[str, Any]:
        """Fit statistics and diagnostics, rounded to 3 digits."""

        def _round(v: Any) -> Any:
            if isinstance(v, (float, np.floating)):
                return round(float(v), 3)
            return v

        np_stat = [{k: _round(v) for k, v in row.items()} for row in self.npmr.stats]
        tau = {
            f"Axis{a + 1}": {
                name: round(float(self.nco.axis_tau[a, p]), 3)
                for p, name in enumerate(self.npmr.predictors)
            }
            for a in range(self.nco.axis_tau.shape[0])
        }
        return {
            "np_stat": np_stat,
            "stress": round(self.nco.ordination.stress, 3),
            "R2_internal": _round(self.nco.r2_internal),
            "R2_enviro": _round(self.nco.r2_enviro),
            "R2_partial": {k: _round(v) for k, v in self.nco.r2_partial.items()},
            "Axis_tau": tau,
            "flagax1": self.flagax1.tolist(),
            "flagax2": None if self.flagax2 is None else self.flagax2.tolist(),
            "failed_species": sorted(self.npmr.failures),
            "failed_units": sorted(self.projection.failures),
        }


def ngnn(
    reference_predictors: PredictorTable,
    abundance: AbundanceTable,
    new_predictors: PredictorTable,
    config: NGNNConfig,
) -> NGNNResult:
    """Run the full NGNN pipeline."""
    if not isinstance(config, NGNNConfig):
        raise TypeError(f"config must be an NGNNConfig, got {type(config).__name__}")
    validate_inputs(reference_predictors, abundance, new_predictors, config)

    res_npmr = npmr(reference_predictors, abundance, new_predictors, config.regression)
    res_nco = nco(res_npmr, config.ordination)
    res_proj = nco_predict(res_nco, config.projection)
    res_gnn = gnn(res_proj, config.imputation)
    return NGNNResult(
        config=config,
        npmr=res_npmr,
        nco=res_nco,
        projection=res_proj,
        gnn=res_gnn,
    )
