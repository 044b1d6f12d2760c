"""Synthetic gradient data for NGNN tests."""

from __future__ import annotations

import numpy as np

from ngnn.config import (
    ImputationConfig,
    NGNNConfig,
    OrdinationConfig,
    ProjectionConfig,
    RegressionConfig,
)
from ngnn.io import AbundanceTable, PredictorTable

PREDICTORS = ["moisture", "ph"]


def generate_gradient_data(
    n_reference: int = 20,
    n_species: int = 10,
    n_new: int = 6,
    seed: int = 42,
) -> tuple[PredictorTable, AbundanceTable, PredictorTable]:
    """Reference and new units along two environmental gradients.

    Each species has a Gaussian response surface over moisture (0-100) and
    pH (3.5-8) with its optimum inside the sampled range, so every species
    is present somewhere in the reference set.
    """
    rng = np.random.default_rng(seed)
    lo = np.array([0.0, 3.5])
    hi = np.array([100.0, 8.0])
    span = hi - lo

    ref_x = lo + span * rng.uniform(size=(n_reference, 2))
    new_x = lo + span * rng.uniform(0.1, 0.9, size=(n_new, 2))

    optima = lo + span * rng.uniform(0.15, 0.85, size=(n_species, 2))
    tolerances = span * rng.uniform(0.3, 0.6, size=(n_species, 2))
    heights = rng.uniform(30, 80, size=n_species)

    z = (ref_x[:, np.newaxis, :] - optima[np.newaxis, :, :]) / tolerances
    mu = heights * np.exp(-0.5 * (z**2).sum(axis=2))
    abundances = rng.poisson(mu).astype(np.float64)
    # Guarantee every species occurs at least once
    for j in range(n_species):
        if abundances[:, j].max() == 0:
            abundances[int(np.argmax(mu[:, j])), j] = 1.0

    ref_ids = [f"plot_{i:02d}" for i in range(n_reference)]
    new_ids = [f"new_{i:02d}" for i in range(n_new)]
    species_ids = [f"sp_{j:02d}" for j in range(n_species)]
    return (
        PredictorTable(sample_ids=ref_ids, names=list(PREDICTORS), values=ref_x),
        AbundanceTable(sample_ids=ref_ids, species_ids=species_ids, abundances=abundances),
        PredictorTable(sample_ids=new_ids, names=list(PREDICTORS), values=new_x),
    )


def fast_config(**imputation) -> NGNNConfig:
    """Small restart and permutation counts to keep tests quick."""
    return NGNNConfig(
        regression=RegressionConfig(predictors=list(PREDICTORS), n_restarts=2, n_permutations=9),
        ordination=OrdinationConfig(n_restarts=3, random_seed=7),
        projection=ProjectionConfig(n_neighbors=5, max_iter=500),
        imputation=ImputationConfig(**imputation),
    )
