"""Tests for ngnn.beta module."""

import numpy as np
import pytest

from ngnn.beta import DissimilarityResult, cross_dissimilarity, dissimilarity, stepacross
from ngnn.errors import ConfigError


class TestDissimilarity:
    def test_bray_identical(self):
        x = np.array([[10.0, 20.0], [10.0, 20.0]])
        result = dissimilarity(x, ["s1", "s2"], "bray")
        assert result.distance_matrix[0, 1] == pytest.approx(0.0)

    def test_bray_disjoint(self):
        x = np.array([[100.0, 0.0], [0.0, 100.0]])
        result = dissimilarity(x, ["s1", "s2"], "bray")
        assert result.distance_matrix[0, 1] == pytest.approx(1.0)

    def test_bray_empty_units(self):
        d = cross_dissimilarity(np.zeros((1, 3)), np.zeros((1, 3)), "bray")
        assert d[0, 0] == 0.0

    def test_jaccard_disjoint(self):
        d = cross_dissimilarity(np.array([[1.0, 0.0]]), np.array([[0.0, 1.0]]), "jaccard")
        assert d[0, 0] == pytest.approx(1.0)

    def test_jaccard_from_bray(self):
        x = np.array([[4.0, 1.0]])
        y = np.array([[1.0, 1.0]])
        b = cross_dissimilarity(x, y, "bray")[0, 0]
        j = cross_dissimilarity(x, y, "jaccard")[0, 0]
        assert j == pytest.approx(2 * b / (1 + b))

    def test_kulczynski(self):
        d = cross_dissimilarity(np.array([[1.0, 0.0]]), np.array([[1.0, 1.0]]), "kulczynski")
        assert d[0, 0] == pytest.approx(0.25)

    def test_euclidean_and_manhattan(self):
        x = np.array([[0.0, 0.0]])
        y = np.array([[3.0, 4.0]])
        assert cross_dissimilarity(x, y, "euclidean")[0, 0] == pytest.approx(5.0)
        assert cross_dissimilarity(x, y, "manhattan")[0, 0] == pytest.approx(7.0)

    def test_cross_shape(self):
        rng = np.random.default_rng(0)
        d = cross_dissimilarity(rng.uniform(size=(4, 3)), rng.uniform(size=(7, 3)))
        assert d.shape == (4, 7)

    def test_symmetry_and_diagonal(self):
        rng = np.random.default_rng(1)
        result = dissimilarity(rng.poisson(5, (8, 5)).astype(float), [f"s{i}" for i in range(8)])
        np.testing.assert_array_almost_equal(result.distance_matrix, result.distance_matrix.T)
        np.testing.assert_array_equal(np.diag(result.distance_matrix), np.zeros(8))

    def test_unknown_metric(self):
        with pytest.raises(ConfigError):
            cross_dissimilarity(np.ones((1, 2)), np.ones((1, 2)), "chord")


def _result(dm, metric="bray"):
    dm = np.asarray(dm, dtype=float)
    return DissimilarityResult(
        sample_ids=[f"s{i}" for i in range(dm.shape[0])], distance_matrix=dm, metric=metric
    )


class TestStepacross:
    def test_replaces_long_pair_with_path(self):
        dm = [
            [0.0, 0.3, 0.6, 1.0],
            [0.3, 0.0, 0.3, 0.6],
            [0.6, 0.3, 0.0, 0.3],
            [1.0, 0.6, 0.3, 0.0],
        ]
        result = stepacross(_result(dm), threshold=0.9)
        assert result.distance_matrix[0, 3] == pytest.approx(0.9)
        assert result.distance_matrix[3, 0] == pytest.approx(0.9)
        assert result.distance_matrix[0, 2] == pytest.approx(0.6)
        assert result.n_replaced == 1
        assert result.n_disconnected == 0

    def test_nothing_to_replace(self):
        dm = [[0.0, 0.2], [0.2, 0.0]]
        result = stepacross(_result(dm), threshold=0.9)
        np.testing.assert_array_equal(result.distance_matrix, dm)
        assert result.n_replaced == 0

    def test_disconnected_pairs_keep_value(self):
        dm = [
            [0.0, 0.2, 1.0, 1.0],
            [0.2, 0.0, 1.0, 1.0],
            [1.0, 1.0, 0.0, 0.2],
            [1.0, 1.0, 0.2, 0.0],
        ]
        result = stepacross(_result(dm), threshold=0.9)
        assert result.n_disconnected == 4
        assert result.n_replaced == 0
        assert result.distance_matrix[0, 2] == pytest.approx(1.0)

    def test_zero_dissimilarity_edges_are_kept(self):
        dm = [
            [0.0, 0.0, 0.5],
            [0.0, 0.0, 1.0],
            [0.5, 1.0, 0.0],
        ]
        result = stepacross(_result(dm), threshold=0.9)
        assert result.distance_matrix[1, 2] == pytest.approx(0.5)

    def test_unbounded_metric_relative_cutoff(self):
        dm = [
            [0.0, 3.0, 10.0],
            [3.0, 0.0, 4.0],
            [10.0, 4.0, 0.0],
        ]
        result = stepacross(_result(dm, metric="euclidean"), threshold=0.9)
        assert result.distance_matrix[0, 2] == pytest.approx(7.0)
