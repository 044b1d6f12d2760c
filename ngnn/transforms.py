"""Response transforms applied to reference abundances before NPMR."""

from __future__ import annotations

import numpy as np

from .io import AbundanceTable


def presence_absence(table: AbundanceTable) -> AbundanceTable:
    """Binarize abundances (1 where > 0)."""
    return table.presence_absence()


def beals(table: AbundanceTable) -> AbundanceTable:
    """Beals smoothing of presence/absence data.

    b_ij = (1 / S_i) * sum_k x_ik * N_jk / N_k

    where x is presence/absence, N_jk the number of units holding both
    species j and k, N_k the number holding k and S_i the richness of unit
    i. The result is the probability of species j occurring in unit i given
    the species already present there. Units with no species get zeros.
    """
    x = (table.abundances > 0).astype(np.float64)
    co = x.T @ x  # (n_species, n_species) joint occurrences
    occ = np.diag(co)
    ratio = np.divide(co, occ[np.newaxis, :], out=np.zeros_like(co), where=occ > 0)

    richness = x.sum(axis=1)
    smoothed = x @ ratio.T
    smoothed = np.divide(
        smoothed,
        richness[:, np.newaxis],
        out=np.zeros_like(smoothed),
        where=richness[:, np.newaxis] > 0,
    )
    return AbundanceTable(
        sample_ids=list(table.sample_ids),
        species_ids=list(table.species_ids),
        abundances=smoothed,
    )
