"""Tests for ngnn.gnn module."""

from dataclasses import replace

import numpy as np
import pytest

from ngnn.config import ImputationConfig
from ngnn.errors import NeighborSearchFailure
from ngnn.gnn import (
    STATUS_EXCLUDED,
    STATUS_OK,
    STATUS_PROJECTION_FAILED,
    _neighbor_weights,
    gnn,
    nearest_neighbors,
)
from ngnn.pipeline import ngnn
from ngnn.tests.fixtures import fast_config, generate_gradient_data


@pytest.fixture(scope="module")
def projection():
    ref, spe, new = generate_gradient_data()
    return ngnn(ref, spe, new, fast_config()).projection


class TestNearestNeighbors:
    def test_ties_go_to_lower_index(self):
        ref = np.array([[1.0, 0.0], [-1.0, 0.0], [0.0, 1.0]])
        idx, dist = nearest_neighbors(ref, np.array([[0.0, 0.0]]), k=2)
        np.testing.assert_array_equal(idx, [[0, 1]])
        np.testing.assert_allclose(dist, [[1.0, 1.0]])

    def test_sorted_by_distance(self):
        ref = np.array([[5.0, 0.0], [1.0, 0.0], [3.0, 0.0]])
        idx, dist = nearest_neighbors(ref, np.array([[0.0, 0.0]]), k=3)
        np.testing.assert_array_equal(idx, [[1, 2, 0]])
        np.testing.assert_allclose(dist, [[1.0, 3.0, 5.0]])

    def test_k_too_large(self):
        with pytest.raises(NeighborSearchFailure):
            nearest_neighbors(np.zeros((3, 2)), np.zeros((1, 2)), k=4)


class TestNeighborWeights:
    def test_equal(self):
        np.testing.assert_allclose(_neighbor_weights(np.array([0.1, 5.0]), "equal"), [0.5, 0.5])

    def test_inverse_distance(self):
        np.testing.assert_allclose(_neighbor_weights(np.array([1.0, 3.0]), "distance"), [0.75, 0.25])

    def test_exact_match_takes_all_weight(self):
        np.testing.assert_allclose(_neighbor_weights(np.array([0.0, 2.0]), "distance"), [1.0, 0.0])


class TestGNN:
    def test_equal_weighted_mean(self, projection):
        result = gnn(projection, ImputationConfig(k=3))
        comp = projection.nco.npmr.composition.abundances
        for i in range(len(result.sample_ids)):
            np.testing.assert_allclose(result.imputed.abundances[i], comp[result.neighbors[i]].mean(axis=0))
        assert all(s == STATUS_OK for s in result.status.values())

    def test_distance_weighting_within_range(self, projection):
        result = gnn(projection, ImputationConfig(k=4, weighting="distance"))
        comp = projection.nco.npmr.composition.abundances
        for i in range(len(result.sample_ids)):
            rows = comp[result.neighbors[i]]
            assert np.all(result.imputed.abundances[i] >= rows.min(axis=0) - 1e-9)
            assert np.all(result.imputed.abundances[i] <= rows.max(axis=0) + 1e-9)

    def test_neighbor_ids(self, projection):
        result = gnn(projection, ImputationConfig(k=2))
        ref_ids = projection.nco.npmr.composition.sample_ids
        assert result.neighbor_ids[0] == [ref_ids[j] for j in result.neighbors[0]]

    def test_flagged_units_annotated_by_default(self, projection):
        flags = np.zeros_like(projection.flags)
        flags[0, 0] = True
        flagged = replace(projection, flags=flags)
        result = gnn(flagged, ImputationConfig(k=1))
        assert result.status[flagged.sample_ids[0]] == STATUS_OK
        assert np.all(np.isfinite(result.imputed.abundances[0]))

    def test_flagged_units_excluded_on_request(self, projection):
        flags = np.zeros_like(projection.flags)
        flags[0, 1] = True
        flagged = replace(projection, flags=flags)
        result = gnn(flagged, ImputationConfig(k=1, exclude_flagged=True))
        assert result.status[flagged.sample_ids[0]] == STATUS_EXCLUDED
        assert np.all(np.isnan(result.imputed.abundances[0]))
        assert np.all(result.neighbors[0] == -1)
        assert np.all(np.isfinite(result.imputed.abundances[1:]))

    def test_failed_projection_not_imputed(self, projection):
        sid = projection.sample_ids[2]
        scores = projection.scores.copy()
        scores[2] = np.nan
        failed = replace(projection, scores=scores, failures={sid: "degenerate"})
        result = gnn(failed, ImputationConfig(k=2))
        assert result.status[sid] == STATUS_PROJECTION_FAILED
        assert np.all(np.isnan(result.imputed.abundances[2]))
        assert result.imputed.n_samples == len(projection.sample_ids)

    def test_k_exceeds_reference(self, projection):
        with pytest.raises(NeighborSearchFailure):
            gnn(projection, ImputationConfig(k=21))

    def test_rejects_wrong_input(self):
        with pytest.raises(TypeError):
            gnn(None, ImputationConfig())
