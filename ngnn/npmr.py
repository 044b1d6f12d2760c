"""Nonparametric multiplicative regression (NPMR) of species on predictors.

Each species gets its own local-mean (Nadaraya-Watson) response surface
with a multiplicative Gaussian kernel over the 1 or 2 predictors. Kernel
bandwidths are chosen by leave-one-out least-squares cross-validation,
optimized from several random starts; the start with the lowest criterion
wins. Fitted values from these surfaces, not raw abundances, are what the
ordination stage sees.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field

import numpy as np
from joblib import Parallel, delayed
from scipy.optimize import minimize

from . import transforms
from .config import RegressionConfig
from .errors import FitFailure, InputShapeMismatch
from .io import AbundanceTable, PredictorTable

logger = logging.getLogger(__name__)


def _local_mean(
    x_eval: np.ndarray,
    x_train: np.ndarray,
    y: np.ndarray,
    bandwidths: np.ndarray,
    leave_one_out: bool = False,
) -> np.ndarray:
    """Kernel-weighted local mean of ``y`` at each row of ``x_eval``."""
    z = (x_eval[:, np.newaxis, :] - x_train[np.newaxis, :, :]) / bandwidths
    log_w = -0.5 * (z**2).sum(axis=2)
    if leave_one_out:
        np.fill_diagonal(log_w, -np.inf)
    # Shift by the row maximum so the largest weight is 1 and the
    # denominator never underflows.
    log_w -= log_w.max(axis=1, keepdims=True)
    w = np.exp(log_w)
    return (w @ y) / w.sum(axis=1)


def _cv_criterion(x: np.ndarray, y: np.ndarray, bandwidths: np.ndarray) -> float:
    yhat = _local_mean(x, x, y, bandwidths, leave_one_out=True)
    return float(np.mean((y - yhat) ** 2))


def _xr2(x: np.ndarray, y: np.ndarray, bandwidths: np.ndarray) -> float:
    sst = float(np.sum((y - y.mean()) ** 2))
    return 1.0 - _cv_criterion(x, y, bandwidths) * len(y) / sst


@dataclass
class SpeciesModel:
    """Fitted NPMR surface for one species."""

    species_id: str
    predictors: list[str]
    x: np.ndarray  # (n_samples, n_predictors) training predictors
    y: np.ndarray  # (n_samples,) training response
    bandwidths: np.ndarray  # (n_predictors,)
    cv_criterion: float  # LOO mean squared error
    xr2: float  # cross-validated R^2
    p_value: float | None
    n_restarts: int

    def predict(self, x_new: np.ndarray) -> np.ndarray:
        """Evaluate the surface at each row of ``x_new``."""
        x_new = np.atleast_2d(np.asarray(x_new, dtype=np.float64))
        if x_new.shape[1] != len(self.predictors):
            raise InputShapeMismatch(
                f"Expected {len(self.predictors)} predictor columns, got {x_new.shape[1]}"
            )
        return _local_mean(x_new, self.x, self.y, self.bandwidths)


def fit_species(
    species_id: str,
    x: np.ndarray,
    y: np.ndarray,
    predictors: list[str],
    config: RegressionConfig,
    seed: np.random.SeedSequence | int | None = None,
) -> SpeciesModel:
    """Fit one species' NPMR surface.

    Raises FitFailure if the response is constant or no restart reaches a
    finite cross-validation criterion.
    """
    x = np.asarray(x, dtype=np.float64)
    y = np.asarray(y, dtype=np.float64)
    n, q = x.shape
    if len(y) != n:
        raise InputShapeMismatch(f"{len(y)} responses for {n} predictor rows")
    if n < 3:
        raise FitFailure(f"{species_id}: need at least 3 sample units, got {n}", species_id)
    if np.ptp(y) == 0:
        raise FitFailure(f"{species_id}: constant response ({y[0]:g})", species_id)

    rng = np.random.default_rng(seed)
    sd = x.std(axis=0, ddof=1)
    sd = np.where(sd > 0, sd, 1.0)
    rule_of_thumb = 1.06 * sd * n ** (-1.0 / (4 + q))

    best_crit = np.inf
    best_bw = None
    for restart in range(config.n_restarts):
        if restart == 0:
            start = rule_of_thumb
        else:
            start = rule_of_thumb * rng.uniform(0.25, 4.0, size=q)

        def objective(log_bw: np.ndarray) -> float:
            with np.errstate(over="ignore", divide="ignore", invalid="ignore"):
                crit = _cv_criterion(x, y, np.exp(log_bw))
            return crit if np.isfinite(crit) else np.inf

        res = minimize(
            objective,
            np.log(start),
            method="Nelder-Mead",
            options={"maxiter": config.max_iter, "xatol": 1e-4, "fatol": 1e-10},
        )
        logger.debug(
            "%s restart %d: criterion=%.6g bandwidths=%s",
            species_id, restart, res.fun, np.exp(res.x),
        )
        if np.isfinite(res.fun) and res.fun < best_crit:
            best_crit = float(res.fun)
            best_bw = np.exp(res.x)

    if best_bw is None:
        raise FitFailure(f"{species_id}: no finite cross-validation criterion", species_id)

    xr2 = _xr2(x, y, best_bw)
    p_value = None
    if config.n_permutations > 0:
        count = 0
        for _ in range(config.n_permutations):
            if _xr2(x, rng.permutation(y), best_bw) >= xr2:
                count += 1
        p_value = (count + 1) / (config.n_permutations + 1)

    return SpeciesModel(
        species_id=species_id,
        predictors=list(predictors),
        x=x,
        y=y,
        bandwidths=best_bw,
        cv_criterion=best_crit,
        xr2=xr2,
        p_value=p_value,
        n_restarts=config.n_restarts,
    )


@dataclass
class NPMRResult:
    """Per-species NPMR models and their fitted values.

    ``fitted_in`` and ``fitted_out`` hold only successfully fitted species;
    ``composition`` holds the observed abundances of every reference species,
    untransformed, and is what the neighbor imputation transfers.
    """

    predictors: list[str]
    species_ids: list[str]
    models: dict[str, SpeciesModel]
    failures: dict[str, str]
    reference_predictors: PredictorTable
    new_predictors: PredictorTable
    response: AbundanceTable
    composition: AbundanceTable
    fitted_in: AbundanceTable
    fitted_out: AbundanceTable
    config: RegressionConfig | None = field(repr=False, default=None)

    @property
    def bandwidths(self) -> dict[str, np.ndarray]:
        return {sp: m.bandwidths for sp, m in self.models.items()}

    @property
    def stats(self) -> list[dict[str, object]]:
        """Fit statistics per species, failed species included."""
        rows: list[dict[str, object]] = []
        for sp in self.species_ids:
            model = self.models.get(sp)
            if model is None:
                rows.append({"species": sp, "status": "failed", "reason": self.failures[sp]})
                continue
            row: dict[str, object] = {
                "species": sp,
                "status": "ok",
                "xR2": model.xr2,
                "p_value": model.p_value,
            }
            for name, bw in zip(self.predictors, model.bandwidths):
                row[f"bw_{name}"] = float(bw)
            rows.append(row)
        return rows


def _fit_or_fail(
    species_id: str,
    x: np.ndarray,
    y: np.ndarray,
    predictors: list[str],
    config: RegressionConfig,
    seed: np.random.SeedSequence,
) -> SpeciesModel | FitFailure:
    try:
        return fit_species(species_id, x, y, predictors, config, seed)
    except FitFailure as exc:
        return exc


def npmr(
    reference_predictors: PredictorTable,
    abundance: AbundanceTable,
    new_predictors: PredictorTable,
    config: RegressionConfig,
) -> NPMRResult:
    """Fit one NPMR model per species and evaluate reference and new units.

    A species that cannot be fitted is recorded in ``failures`` and left out
    of the fitted-value matrices; the run fails only if every species does.
    """
    ref_x = reference_predictors.select(config.predictors)
    new_x = new_predictors.select(config.predictors)
    if ref_x.n_samples != abundance.n_samples:
        raise InputShapeMismatch(
            f"{ref_x.n_samples} reference predictor rows vs "
            f"{abundance.n_samples} abundance rows"
        )

    # Transforms apply to the regression response only
    if config.beals:
        response = transforms.beals(abundance)
    elif config.presence_absence:
        response = transforms.presence_absence(abundance)
    else:
        response = abundance

    species_ids = list(abundance.species_ids)
    seeds = np.random.SeedSequence(config.random_seed).spawn(len(species_ids))
    logger.info(
        "Fitting NPMR for %d species on %s (%d restarts)",
        len(species_ids), ", ".join(config.predictors), config.n_restarts,
    )

    tasks = [
        (sp, ref_x.values, response.abundances[:, j], config.predictors, config, seeds[j])
        for j, sp in enumerate(species_ids)
    ]
    if config.n_jobs == 1:
        outcomes = [_fit_or_fail(*t) for t in tasks]
    else:
        outcomes = Parallel(n_jobs=config.n_jobs, prefer="threads")(
            delayed(_fit_or_fail)(*t) for t in tasks
        )

    models: dict[str, SpeciesModel] = {}
    failures: dict[str, str] = {}
    for sp, outcome in zip(species_ids, outcomes):
        if isinstance(outcome, FitFailure):
            logger.warning("NPMR fit failed for %s: %s", sp, outcome)
            failures[sp] = str(outcome)
        else:
            models[sp] = outcome

    if not models:
        raise FitFailure(f"NPMR failed for all {len(species_ids)} species")
    logger.info("NPMR fitted %d species (%d failed)", len(models), len(failures))

    fitted_ids = [sp for sp in species_ids if sp in models]
    fitted_in = np.column_stack([models[sp].predict(ref_x.values) for sp in fitted_ids])
    fitted_out = np.column_stack([models[sp].predict(new_x.values) for sp in fitted_ids])

    return NPMRResult(
        predictors=list(config.predictors),
        species_ids=species_ids,
        models=models,
        failures=failures,
        reference_predictors=ref_x,
        new_predictors=new_x,
        response=response,
        composition=abundance,
        fitted_in=AbundanceTable(
            sample_ids=list(ref_x.sample_ids), species_ids=fitted_ids, abundances=fitted_in
        ),
        fitted_out=AbundanceTable(
            sample_ids=list(new_x.sample_ids), species_ids=fitted_ids, abundances=fitted_out
        ),
        config=config,
    )
