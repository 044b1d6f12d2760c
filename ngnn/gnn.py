"""Gradient nearest neighbor (GNN) imputation of species composition.

Each projected new unit takes the composition of its k nearest reference
units in NCO space, averaged. Imputed communities are therefore built only
from species combinations that were actually observed.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field

import numpy as np
from scipy.spatial.distance import cdist

from .config import ImputationConfig
from .errors import NeighborSearchFailure
from .io import AbundanceTable
from .projection import ProjectionResult

logger = logging.getLogger(__name__)

STATUS_OK = "ok"
STATUS_PROJECTION_FAILED = "projection_failed"
STATUS_EXCLUDED = "excluded_flagged"


def nearest_neighbors(
    ref_scores: np.ndarray, query_scores: np.ndarray, k: int
) -> tuple[np.ndarray, np.ndarray]:
    """Indices and distances of the k nearest reference points per query.

    Ties are broken by reference order (the lower index wins).
    """
    n_ref = ref_scores.shape[0]
    if k > n_ref:
        raise NeighborSearchFailure(f"k={k} exceeds the {n_ref} reference units")
    dist = cdist(np.atleast_2d(query_scores), ref_scores)
    idx = np.argsort(dist, axis=1, kind="stable")[:, :k]
    return idx, np.take_along_axis(dist, idx, axis=1)


def _neighbor_weights(distances: np.ndarray, weighting: str) -> np.ndarray:
    if weighting == "equal":
        return np.full(len(distances), 1.0 / len(distances))
    exact = distances == 0
    if exact.any():
        w = exact.astype(np.float64)
    else:
        w = 1.0 / distances
    return w / w.sum()


@dataclass
class GNNResult:
    """Neighbor assignments and imputed composition for new units."""

    projection: ProjectionResult
    sample_ids: list[str]
    neighbors: np.ndarray  # (n_new, k) reference indices, -1 if not searched
    distances: np.ndarray  # (n_new, k), NaN if not searched
    imputed: AbundanceTable  # NaN rows for units that were not imputed
    status: dict[str, str]
    config: ImputationConfig = field(repr=False, default_factory=ImputationConfig)

    @property
    def neighbor_ids(self) -> list[list[str]]:
        ref_ids = self.projection.nco.npmr.composition.sample_ids
        return [[ref_ids[j] for j in row if j >= 0] for row in self.neighbors]


def gnn(projection: ProjectionResult, config: ImputationConfig) -> GNNResult:
    """Assign each projected unit the mean composition of its k neighbors."""
    if not isinstance(projection, ProjectionResult):
        raise TypeError(f"gnn expects a ProjectionResult, got {type(projection).__name__}")

    composition = projection.nco.npmr.composition
    ref_scores = projection.nco.scores
    n_new = len(projection.sample_ids)
    k = config.k
    if k > ref_scores.shape[0]:
        raise NeighborSearchFailure(f"k={k} exceeds the {ref_scores.shape[0]} reference units")

    status: dict[str, str] = {}
    searchable = np.zeros(n_new, dtype=bool)
    for i, sid in enumerate(projection.sample_ids):
        if sid in projection.failures:
            status[sid] = STATUS_PROJECTION_FAILED
        elif config.exclude_flagged and projection.flags[i].any():
            status[sid] = STATUS_EXCLUDED
        else:
            status[sid] = STATUS_OK
            searchable[i] = True

    logger.info("Finding %d nearest neighbor(s) in NCO space for %d units", k, int(searchable.sum()))
    neighbors = np.full((n_new, k), -1, dtype=int)
    distances = np.full((n_new, k), np.nan)
    imputed = np.full((n_new, composition.n_species), np.nan)
    if searchable.any():
        idx, dist = nearest_neighbors(ref_scores, projection.scores[searchable], k)
        neighbors[searchable] = idx
        distances[searchable] = dist
        for row, i in enumerate(np.flatnonzero(searchable)):
            w = _neighbor_weights(dist[row], config.weighting)
            imputed[i] = w @ composition.abundances[idx[row]]

    n_skipped = n_new - int(searchable.sum())
    if n_skipped:
        logger.warning("%d new units were not imputed", n_skipped)
    logger.info("Assigned species composition to %d out-of-sample units", int(searchable.sum()))

    return GNNResult(
        projection=projection,
        sample_ids=list(projection.sample_ids),
        neighbors=neighbors,
        distances=distances,
        imputed=AbundanceTable(
            sample_ids=list(projection.sample_ids),
            species_ids=list(composition.species_ids),
            abundances=imputed,
        ),
        status=status,
        config=config,
    )
