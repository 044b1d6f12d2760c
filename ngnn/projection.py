"""Placement of new sample units in a fixed NCO space.

A new unit has no observed composition, only NPMR fitted values. Its
dissimilarities to the reference fitted values are mapped to target
embedding distances through the monotone relation learned by the NCO, and
the unit is placed where its distances to its closest reference units best
match those targets. Reference scores never move.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field

import numpy as np
from joblib import Parallel, delayed

from .beta import cross_dissimilarity
from .config import ProjectionConfig
from .errors import ProjectionFailure
from .ordination import NCOResult

logger = logging.getLogger(__name__)


@dataclass
class _Placement:
    coordinates: np.ndarray
    stress: float
    n_iter: int
    neighbors: np.ndarray


def _place_unit(
    sample_id: str,
    delta: np.ndarray,
    ref_scores: np.ndarray,
    ref_delta: np.ndarray,
    monotone,
    config: ProjectionConfig,
) -> _Placement:
    """Place one unit given its dissimilarities to every reference unit."""
    if not np.all(np.isfinite(delta)):
        raise ProjectionFailure(f"{sample_id}: non-finite dissimilarities", sample_id)

    order = np.argsort(delta, kind="stable")[: config.n_neighbors]
    if delta[order[0]] <= config.match_tol:
        # Identical fitted values to a reference unit
        return _Placement(ref_scores[order[0]].copy(), 0.0, 0, order)

    local = ref_scores[order]
    if len(order) < 2 or np.max(ref_delta[np.ix_(order, order)]) <= config.match_tol:
        raise ProjectionFailure(
            f"{sample_id}: local reference units are identical in fitted-value space",
            sample_id,
        )
    spread = np.max(np.ptp(local, axis=0))
    if spread == 0:
        raise ProjectionFailure(f"{sample_id}: local reference scores coincide", sample_id)

    targets = monotone.predict(delta[order])
    weights = 1.0 / np.maximum(targets, 1e-12)
    coords = (weights[:, np.newaxis] * local).sum(axis=0) / weights.sum()

    n_iter = 0
    for n_iter in range(1, config.max_iter + 1):
        diff = coords - local
        dist = np.sqrt((diff**2).sum(axis=1))
        # Single-point Guttman update towards the target distances
        scale = np.divide(targets, dist, out=np.zeros_like(dist), where=dist > 0)
        updated = (local + scale[:, np.newaxis] * diff).mean(axis=0)
        step = np.sqrt(((updated - coords) ** 2).sum())
        coords = updated
        if step < config.tol * spread:
            break

    if not np.all(np.isfinite(coords)):
        raise ProjectionFailure(f"{sample_id}: placement diverged", sample_id)
    dist = np.sqrt(((coords - local) ** 2).sum(axis=1))
    denom = (dist**2).sum()
    stress = float(np.sqrt(((dist - targets) ** 2).sum() / denom)) if denom > 0 else 0.0
    return _Placement(coords, stress, n_iter, order)


def _place_or_fail(*args) -> _Placement | ProjectionFailure:
    try:
        return _place_unit(*args)
    except ProjectionFailure as exc:
        return exc


@dataclass
class ProjectionResult:
    """Scores of new units in the reference NCO space.

    Rows of units that failed to project are NaN in ``scores`` and
    ``stress``, -1 in ``neighbors``, and listed in ``failures``.
    """

    nco: NCOResult
    sample_ids: list[str]
    scores: np.ndarray  # shape (n_new, n_axes)
    flags: np.ndarray  # bool, shape (n_new, n_axes); outside reference range
    stress: np.ndarray  # local stress per unit
    n_iter: np.ndarray
    neighbors: np.ndarray  # reference indices used for placement
    failures: dict[str, str]
    config: ProjectionConfig = field(repr=False, default_factory=ProjectionConfig)

    @property
    def ok(self) -> np.ndarray:
        return np.array([sid not in self.failures for sid in self.sample_ids])

    @property
    def flagax1(self) -> np.ndarray:
        return self.flags[:, 0]

    @property
    def flagax2(self) -> np.ndarray | None:
        return self.flags[:, 1] if self.flags.shape[1] > 1 else None


def nco_predict(nco_result: NCOResult, config: ProjectionConfig) -> ProjectionResult:
    """Project every new unit into the NCO space of ``nco_result``."""
    if not isinstance(nco_result, NCOResult):
        raise TypeError(f"nco_predict expects an NCOResult, got {type(nco_result).__name__}")

    fitted_in = nco_result.npmr.fitted_in
    fitted_out = nco_result.npmr.fitted_out
    ref_scores = nco_result.scores
    n_ref, n_axes = ref_scores.shape
    n_neighbors = min(config.n_neighbors, n_ref)
    if n_neighbors != config.n_neighbors:
        logger.warning("Only %d reference units; using %d projection neighbors", n_ref, n_ref)
        config = ProjectionConfig(
            n_neighbors=n_neighbors,
            max_iter=config.max_iter,
            tol=config.tol,
            match_tol=config.match_tol,
            n_jobs=config.n_jobs,
        )

    logger.info(
        "Projecting %d new units into NCO space (%d neighbors, %d iterations max)",
        fitted_out.n_samples, config.n_neighbors, config.max_iter,
    )
    delta = cross_dissimilarity(fitted_out.abundances, fitted_in.abundances, nco_result.metric)
    ref_delta = nco_result.raw_dissimilarity.distance_matrix

    tasks = [
        (sid, delta[i], ref_scores, ref_delta, nco_result.monotone, config)
        for i, sid in enumerate(fitted_out.sample_ids)
    ]
    if config.n_jobs == 1:
        outcomes = [_place_or_fail(*t) for t in tasks]
    else:
        outcomes = Parallel(n_jobs=config.n_jobs, prefer="threads")(
            delayed(_place_or_fail)(*t) for t in tasks
        )

    n_new = fitted_out.n_samples
    scores = np.full((n_new, n_axes), np.nan)
    stress = np.full(n_new, np.nan)
    n_iter = np.zeros(n_new, dtype=int)
    neighbors = np.full((n_new, config.n_neighbors), -1, dtype=int)
    failures: dict[str, str] = {}
    for i, (sid, outcome) in enumerate(zip(fitted_out.sample_ids, outcomes)):
        if isinstance(outcome, ProjectionFailure):
            logger.warning("Projection failed for %s: %s", sid, outcome)
            failures[sid] = str(outcome)
            continue
        scores[i] = outcome.coordinates
        stress[i] = outcome.stress
        n_iter[i] = outcome.n_iter
        neighbors[i] = outcome.neighbors

    lo = ref_scores.min(axis=0)
    hi = ref_scores.max(axis=0)
    with np.errstate(invalid="ignore"):
        flags = (scores < lo) | (scores > hi)
    n_flagged = int(flags.any(axis=1).sum())
    if n_flagged:
        logger.info("%d new units fall outside the reference range on some axis", n_flagged)

    return ProjectionResult(
        nco=nco_result,
        sample_ids=list(fitted_out.sample_ids),
        scores=scores,
        flags=flags,
        stress=stress,
        n_iter=n_iter,
        neighbors=neighbors,
        failures=failures,
        config=config,
    )
