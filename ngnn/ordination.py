"""Non-metric multidimensional scaling and nonparametric constrained ordination.

NCO feeds the NPMR fitted-value matrix, rather than raw abundances, to NMS.
The embedding therefore reflects species responses to the predictors, and
new units can later be placed in it from their fitted values alone.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field, replace

import numpy as np
from joblib import Parallel, delayed
from scipy import stats as sp_stats
from scipy.spatial.distance import pdist, squareform
from sklearn.isotonic import IsotonicRegression

from .beta import DissimilarityResult, dissimilarity, stepacross
from .config import OrdinationConfig
from .errors import ConvergenceFailure, InputShapeMismatch
from .npmr import NPMRResult

logger = logging.getLogger(__name__)


@dataclass
class OrdinationResult:
    """NMS coordinates and fit diagnostics."""

    sample_ids: list[str]
    coordinates: np.ndarray  # shape (n_samples, n_axes)
    stress: float  # Kruskal stress-1 of the best restart
    restart_stress: np.ndarray  # final stress per restart
    n_iter: int
    converged: bool
    disparities: np.ndarray  # condensed, monotone fit to the dissimilarities
    distances: np.ndarray  # condensed embedding distances
    method: str = "NMS"


@dataclass
class _Run:
    coordinates: np.ndarray
    stress: float
    disparities: np.ndarray
    distances: np.ndarray
    n_iter: int
    converged: bool


def _stress(delta: np.ndarray, coords: np.ndarray, iso: IsotonicRegression):
    d = pdist(coords)
    dhat = iso.fit_transform(delta, d)
    # Fix the scale of the disparities so the configuration cannot shrink
    norm = np.sqrt((dhat**2).sum())
    if norm > 0:
        dhat *= np.sqrt(len(dhat)) / norm
    denom = (d**2).sum()
    stress = np.sqrt(((d - dhat) ** 2).sum() / denom) if denom > 0 else np.inf
    return d, dhat, float(stress)


def _smacof_nonmetric(
    delta: np.ndarray,
    n: int,
    n_axes: int,
    max_iter: int,
    tol: float,
    seed: np.random.SeedSequence,
) -> _Run:
    """One non-metric SMACOF run from a random configuration."""
    rng = np.random.default_rng(seed)
    coords = rng.standard_normal((n, n_axes))
    iso = IsotonicRegression(increasing=True)

    old_stress = np.inf
    converged = False
    n_iter = 0
    for n_iter in range(1, max_iter + 1):
        d, dhat, stress = _stress(delta, coords, iso)
        if abs(old_stress - stress) < tol or stress < 1e-10:
            converged = True
            break
        old_stress = stress

        # Guttman transform
        ratio = np.zeros((n, n))
        dsq = squareform(d)
        np.divide(squareform(dhat), dsq, out=ratio, where=dsq > 0)
        b = -ratio
        b[np.diag_indices(n)] = ratio.sum(axis=1)
        coords = b @ coords / n
    else:
        d, dhat, stress = _stress(delta, coords, iso)

    return _Run(coords, stress, dhat, d, n_iter, converged)


def _principal_axes(coords: np.ndarray) -> np.ndarray:
    """Center and rotate so axis 1 carries the most variance."""
    centered = coords - coords.mean(axis=0)
    _, _, vt = np.linalg.svd(centered, full_matrices=False)
    return centered @ vt.T


def nmds(
    diss: DissimilarityResult,
    n_axes: int = 2,
    n_restarts: int = 5,
    max_iter: int = 300,
    tol: float = 1e-6,
    max_stress: float = 0.3,
    random_seed: int = 42,
    n_jobs: int = 1,
) -> OrdinationResult:
    """Non-metric MDS keeping the lowest-stress of several random starts.

    Restart i always uses the i-th child of ``SeedSequence(random_seed)``,
    so adding restarts can only lower the best stress. Raises
    ConvergenceFailure if no restart reaches a finite stress at or below
    ``max_stress``.
    """
    n = diss.distance_matrix.shape[0]
    if n < n_axes + 2:
        raise InputShapeMismatch(
            f"NMS in {n_axes} dimensions needs at least {n_axes + 2} units, got {n}"
        )
    delta = squareform(diss.distance_matrix, checks=False)
    seeds = np.random.SeedSequence(random_seed).spawn(n_restarts)

    if n_jobs == 1:
        runs = [_smacof_nonmetric(delta, n, n_axes, max_iter, tol, s) for s in seeds]
    else:
        runs = Parallel(n_jobs=n_jobs, prefer="threads")(
            delayed(_smacof_nonmetric)(delta, n, n_axes, max_iter, tol, s) for s in seeds
        )

    restart_stress = np.array([r.stress for r in runs])
    for i, r in enumerate(runs):
        logger.debug(
            "NMS restart %d: stress=%.5f iterations=%d converged=%s",
            i, r.stress, r.n_iter, r.converged,
        )
    acceptable = np.isfinite(restart_stress) & (restart_stress <= max_stress)
    if not acceptable.any():
        raise ConvergenceFailure(
            f"NMS stress did not fall to {max_stress} in {n_restarts} restarts "
            f"(best {np.nanmin(restart_stress):.4f})"
        )
    best_idx = int(np.argmin(np.where(acceptable, restart_stress, np.inf)))
    best = runs[best_idx]
    if not best.converged:
        logger.warning(
            "Best NMS restart reached the %d-iteration limit (stress %.4f)",
            max_iter, best.stress,
        )
    logger.info("NMS: best stress %.4f from restart %d of %d", best.stress, best_idx + 1, n_restarts)

    return OrdinationResult(
        sample_ids=list(diss.sample_ids),
        coordinates=_principal_axes(best.coordinates),
        stress=best.stress,
        restart_stress=restart_stress,
        n_iter=best.n_iter,
        converged=best.converged,
        disparities=best.disparities,
        distances=best.distances,
    )


def _squared_corr(a: np.ndarray, b: np.ndarray) -> float:
    if np.ptp(a) == 0 or np.ptp(b) == 0:
        return float("nan")
    return float(np.corrcoef(a, b)[0, 1] ** 2)


@dataclass
class NCOResult:
    """Environmentally constrained reference scores and diagnostics."""

    npmr: NPMRResult
    raw_dissimilarity: DissimilarityResult
    dissimilarity: DissimilarityResult
    ordination: OrdinationResult
    r2_internal: float
    r2_enviro: float
    r2_partial: dict[str, float]
    axis_tau: np.ndarray  # shape (n_axes, n_predictors)
    monotone: IsotonicRegression  # dissimilarity -> embedding distance
    config: OrdinationConfig = field(repr=False, default_factory=OrdinationConfig)

    @property
    def scores(self) -> np.ndarray:
        return self.ordination.coordinates

    @property
    def metric(self) -> str:
        return self.dissimilarity.metric


def nco(npmr_result: NPMRResult, config: OrdinationConfig) -> NCOResult:
    """Ordinate reference units by their NPMR fitted values."""
    if not isinstance(npmr_result, NPMRResult):
        raise TypeError(f"nco expects an NPMRResult, got {type(npmr_result).__name__}")

    fitted = npmr_result.fitted_in
    logger.info(
        "NCO: %s dissimilarity of %d units x %d fitted species",
        config.metric, fitted.n_samples, fitted.n_species,
    )
    raw = dissimilarity(fitted.abundances, fitted.sample_ids, config.metric)
    corrected = stepacross(raw, config.stepacross_threshold)
    ordin = nmds(
        corrected,
        n_axes=config.n_axes,
        n_restarts=config.n_restarts,
        max_iter=config.max_iter,
        tol=config.tol,
        max_stress=config.max_stress,
        random_seed=config.random_seed,
        n_jobs=config.n_jobs,
    )

    x = npmr_result.reference_predictors.values
    coords = ordin.coordinates.copy()
    tau = np.zeros((config.n_axes, x.shape[1]))
    for a in range(config.n_axes):
        for p in range(x.shape[1]):
            t, _ = sp_stats.kendalltau(coords[:, a], x[:, p])
            tau[a, p] = t if np.isfinite(t) else 0.0
    # Orient each axis to increase with its most strongly related predictor
    for a in range(config.n_axes):
        p = int(np.argmax(np.abs(tau[a])))
        if tau[a, p] < 0:
            coords[:, a] *= -1
            tau[a] *= -1
    ordin = replace(ordin, coordinates=coords)

    dz = pdist(coords)
    delta = squareform(corrected.distance_matrix, checks=False)
    monotone = IsotonicRegression(increasing=True, out_of_bounds="clip").fit(delta, dz)

    r2_partial = {
        name: _squared_corr(dz, pdist(x[:, [p]]))
        for p, name in enumerate(npmr_result.predictors)
    }
    result = NCOResult(
        npmr=npmr_result,
        raw_dissimilarity=raw,
        dissimilarity=corrected,
        ordination=ordin,
        r2_internal=_squared_corr(dz, ordin.disparities),
        r2_enviro=_squared_corr(squareform(raw.distance_matrix, checks=False), dz),
        r2_partial=r2_partial,
        axis_tau=tau,
        monotone=monotone,
        config=config,
    )
    logger.info(
        "NCO: R2_internal=%.3f R2_enviro=%.3f", result.r2_internal, result.r2_enviro
    )
    return result
