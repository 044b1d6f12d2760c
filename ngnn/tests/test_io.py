"""Tests for ngnn.io module."""

import numpy as np
import pytest

from ngnn.errors import InputShapeMismatch
from ngnn.io import (
    AbundanceTable,
    PredictorTable,
    load_abundance_table,
    load_predictor_table,
    write_abundance_table,
)


class TestPredictorTable:
    def test_shape_validation(self):
        with pytest.raises(InputShapeMismatch):
            PredictorTable(sample_ids=["a", "b"], names=["x"], values=np.zeros((3, 1)))

    def test_name_validation(self):
        with pytest.raises(InputShapeMismatch):
            PredictorTable(sample_ids=["a"], names=["x", "y"], values=np.zeros((1, 1)))

    def test_non_finite_rejected(self):
        with pytest.raises(ValueError):
            PredictorTable(sample_ids=["a"], names=["x"], values=np.array([[np.nan]]))

    def test_select_reorders(self):
        table = PredictorTable(
            sample_ids=["a", "b"], names=["x", "y"], values=np.array([[1.0, 2.0], [3.0, 4.0]])
        )
        sub = table.select(["y", "x"])
        assert sub.names == ["y", "x"]
        np.testing.assert_array_equal(sub.values, [[2.0, 1.0], [4.0, 3.0]])

    def test_select_unknown(self):
        table = PredictorTable(sample_ids=["a"], names=["x"], values=np.zeros((1, 1)))
        with pytest.raises(InputShapeMismatch):
            table.select(["z"])


class TestAbundanceTable:
    def test_shape_validation(self):
        with pytest.raises(ValueError):
            AbundanceTable(sample_ids=["s1"], species_ids=["a", "b"], abundances=np.zeros((1, 3)))

    def test_negative_rejected(self):
        with pytest.raises(ValueError):
            AbundanceTable(sample_ids=["s1"], species_ids=["a"], abundances=np.array([[-1.0]]))

    def test_nan_rows_allowed(self):
        table = AbundanceTable(sample_ids=["s1"], species_ids=["a"], abundances=np.array([[np.nan]]))
        assert np.isnan(table.abundances[0, 0])

    def test_presence_absence(self):
        table = AbundanceTable(
            sample_ids=["s1", "s2"], species_ids=["a", "b"], abundances=np.array([[5.0, 0.0], [0.0, 0.2]])
        )
        pa = table.presence_absence()
        np.testing.assert_array_equal(pa.abundances, [[1.0, 0.0], [0.0, 1.0]])

    def test_subset_samples(self):
        table = AbundanceTable(
            sample_ids=["s1", "s2", "s3"], species_ids=["a"], abundances=np.array([[1.0], [2.0], [3.0]])
        )
        sub = table.subset_samples(["s3", "s1"])
        np.testing.assert_array_equal(sub.abundances[:, 0], [3.0, 1.0])
        np.testing.assert_array_equal(table.column("a"), [1.0, 2.0, 3.0])


class TestLoaders:
    def test_load_predictor_table(self, tmp_path):
        p = tmp_path / "env.tsv"
        p.write_text("sample_id\tAl\tK\nA\t10.5\t2\nB\t3\t4.25\n")
        table = load_predictor_table(p)
        assert table.sample_ids == ["A", "B"]
        assert table.names == ["Al", "K"]
        np.testing.assert_allclose(table.values, [[10.5, 2.0], [3.0, 4.25]])

    def test_ragged_row(self, tmp_path):
        p = tmp_path / "env.tsv"
        p.write_text("sample_id\tAl\tK\nA\t10.5\n")
        with pytest.raises(InputShapeMismatch):
            load_predictor_table(p)

    def test_write_and_load_abundance(self, tmp_path):
        table = AbundanceTable(
            sample_ids=["u1", "u2"], species_ids=["Cladina", "Pleurozium"],
            abundances=np.array([[1.5, 0.0], [0.25, 12.0]]),
        )
        path = tmp_path / "spe.tsv"
        write_abundance_table(table, path)
        loaded = load_abundance_table(path)
        assert loaded.sample_ids == table.sample_ids
        assert loaded.species_ids == table.species_ids
        np.testing.assert_allclose(loaded.abundances, table.abundances)

    def test_nan_written_as_na(self, tmp_path):
        table = AbundanceTable(sample_ids=["u1"], species_ids=["a"], abundances=np.array([[np.nan]]))
        path = tmp_path / "imputed.tsv"
        write_abundance_table(table, path)
        assert path.read_text().splitlines()[1] == "u1\tNA"
        loaded = load_abundance_table(path)
        assert np.isnan(loaded.abundances[0, 0])
