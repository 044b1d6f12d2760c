"""Dissimilarity measures and stepacross correction."""

from __future__ import annotations

import logging
from dataclasses import dataclass

import numpy as np
from scipy.sparse.csgraph import csgraph_from_dense, shortest_path
from scipy.spatial.distance import cdist

from .config import METRICS
from .errors import ConfigError

logger = logging.getLogger(__name__)

# Metrics bounded by 1, for which the stepacross threshold is absolute.
BOUNDED_METRICS = frozenset({"bray", "jaccard", "kulczynski"})


@dataclass
class DissimilarityResult:
    """Square dissimilarity matrix among sample units."""

    sample_ids: list[str]
    distance_matrix: np.ndarray  # shape (n_samples, n_samples)
    metric: str
    n_replaced: int = 0
    n_disconnected: int = 0


def _bray(x: np.ndarray, y: np.ndarray) -> np.ndarray:
    num = cdist(x, y, metric="cityblock")
    den = x.sum(axis=1)[:, np.newaxis] + y.sum(axis=1)[np.newaxis, :]
    # Two empty units are identical
    return np.divide(num, den, out=np.zeros_like(num), where=den > 0)


def _kulczynski(x: np.ndarray, y: np.ndarray) -> np.ndarray:
    shared = np.minimum(x[:, np.newaxis, :], y[np.newaxis, :, :]).sum(axis=2)
    sx = np.broadcast_to(x.sum(axis=1)[:, np.newaxis], shared.shape)
    sy = np.broadcast_to(y.sum(axis=1)[np.newaxis, :], shared.shape)
    fx = np.divide(shared, sx, out=np.zeros_like(shared), where=sx > 0)
    fy = np.divide(shared, sy, out=np.zeros_like(shared), where=sy > 0)
    d = 1.0 - 0.5 * (fx + fy)
    d[(sx == 0) & (sy == 0)] = 0.0
    return d


def cross_dissimilarity(x: np.ndarray, y: np.ndarray, metric: str = "bray") -> np.ndarray:
    """Dissimilarity between every row of ``x`` and every row of ``y``.

    Returns an array of shape (len(x), len(y)).
    """
    x = np.atleast_2d(np.asarray(x, dtype=np.float64))
    y = np.atleast_2d(np.asarray(y, dtype=np.float64))
    if metric == "bray":
        return _bray(x, y)
    if metric == "jaccard":
        # Quantitative Jaccard, monotone in Bray-Curtis
        b = _bray(x, y)
        return 2 * b / (1 + b)
    if metric == "kulczynski":
        return _kulczynski(x, y)
    if metric == "euclidean":
        return cdist(x, y, metric="euclidean")
    if metric == "manhattan":
        return cdist(x, y, metric="cityblock")
    raise ConfigError(f"Unknown dissimilarity metric {metric!r}; expected one of {METRICS}")


def dissimilarity(
    values: np.ndarray, sample_ids: list[str], metric: str = "bray"
) -> DissimilarityResult:
    """Compute pairwise dissimilarity between rows of ``values``."""
    dm = cross_dissimilarity(values, values, metric)
    # Symmetrize and zero the diagonal against rounding
    dm = 0.5 * (dm + dm.T)
    np.fill_diagonal(dm, 0.0)
    return DissimilarityResult(
        sample_ids=list(sample_ids),
        distance_matrix=dm,
        metric=metric,
    )


def stepacross(result: DissimilarityResult, threshold: float = 0.9) -> DissimilarityResult:
    """Replace too-long dissimilarities by shortest paths.

    Pairs at or above the cutoff are dropped from the dissimilarity graph and
    replaced by the shortest path through the remaining pairs. For unbounded
    metrics the cutoff is ``threshold`` times the largest dissimilarity.
    Pairs that stay unreachable keep their original value.
    """
    dm = result.distance_matrix
    if result.metric in BOUNDED_METRICS:
        cutoff = threshold
    else:
        cutoff = threshold * dm.max()
    too_long = dm >= cutoff
    np.fill_diagonal(too_long, False)
    if dm.max() <= 0 or not too_long.any():
        return DissimilarityResult(
            sample_ids=list(result.sample_ids),
            distance_matrix=dm.copy(),
            metric=result.metric,
        )

    graph = np.where(too_long, np.inf, dm)
    np.fill_diagonal(graph, np.inf)
    paths = shortest_path(
        csgraph_from_dense(graph, null_value=np.inf), method="D", directed=False
    )

    unreachable = too_long & ~np.isfinite(paths)
    filled = np.where(too_long & np.isfinite(paths), paths, dm)
    n_replaced = int(np.triu(too_long & ~unreachable, k=1).sum())
    n_disconnected = int(np.triu(unreachable, k=1).sum())
    logger.info(
        "Stepacross (cutoff %.3f): replaced %d of %d dissimilarities",
        cutoff, n_replaced, dm.shape[0] * (dm.shape[0] - 1) // 2,
    )
    if n_disconnected:
        logger.warning(
            "Dissimilarity graph is disconnected at cutoff %.3f: "
            "%d pairs kept their original value",
            cutoff, n_disconnected,
        )
    return DissimilarityResult(
        sample_ids=list(result.sample_ids),
        distance_matrix=filled,
        metric=result.metric,
        n_replaced=n_replaced,
        n_disconnected=n_disconnected,
    )
