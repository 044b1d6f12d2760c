"""Data tables and loading/validation for NGNN."""

from __future__ import annotations

import csv
from dataclasses import dataclass
from pathlib import Path
from typing import Sequence

import numpy as np

from .errors import InputShapeMismatch


@dataclass
class PredictorTable:
    """Sample-unit-by-predictor matrix of environmental covariates."""

    sample_ids: list[str]
    names: list[str]
    values: np.ndarray  # shape (n_samples, n_predictors)

    def __post_init__(self) -> None:
        self.values = np.asarray(self.values, dtype=np.float64)
        if self.values.ndim != 2:
            raise InputShapeMismatch(
                f"Predictor values must be 2-D, got {self.values.ndim}-D"
            )
        n_samples, n_predictors = self.values.shape
        if n_samples != len(self.sample_ids):
            raise InputShapeMismatch(
                f"Row count {n_samples} != len(sample_ids) {len(self.sample_ids)}"
            )
        if n_predictors != len(self.names):
            raise InputShapeMismatch(
                f"Col count {n_predictors} != len(names) {len(self.names)}"
            )
        if not np.all(np.isfinite(self.values)):
            raise ValueError("Predictor values must be finite")

    @property
    def n_samples(self) -> int:
        return len(self.sample_ids)

    @property
    def n_predictors(self) -> int:
        return len(self.names)

    def select(self, names: Sequence[str]) -> PredictorTable:
        """Return a table with only the named predictors, in that order."""
        missing = [n for n in names if n not in self.names]
        if missing:
            raise InputShapeMismatch(f"Predictors not found: {missing}")
        idx = [self.names.index(n) for n in names]
        return PredictorTable(
            sample_ids=list(self.sample_ids),
            names=list(names),
            values=self.values[:, idx],
        )

    def column(self, name: str) -> np.ndarray:
        return self.select([name]).values[:, 0]


@dataclass
class AbundanceTable:
    """Sample-unit-by-species matrix.

    Holds observed reference compositions, NPMR fitted values and imputed
    compositions alike. Imputed tables may carry NaN rows for new units
    that could not be placed.
    """

    sample_ids: list[str]
    species_ids: list[str]
    abundances: np.ndarray  # shape (n_samples, n_species)

    def __post_init__(self) -> None:
        self.abundances = np.asarray(self.abundances, dtype=np.float64)
        if self.abundances.ndim != 2:
            raise InputShapeMismatch(
                f"Abundances must be 2-D, got {self.abundances.ndim}-D"
            )
        n_samples, n_species = self.abundances.shape
        if n_samples != len(self.sample_ids):
            raise InputShapeMismatch(
                f"Row count {n_samples} != len(sample_ids) {len(self.sample_ids)}"
            )
        if n_species != len(self.species_ids):
            raise InputShapeMismatch(
                f"Col count {n_species} != len(species_ids) {len(self.species_ids)}"
            )
        if np.any(self.abundances < 0):
            raise ValueError("Abundances must be nonnegative")

    @property
    def n_samples(self) -> int:
        return len(self.sample_ids)

    @property
    def n_species(self) -> int:
        return len(self.species_ids)

    def presence_absence(self) -> AbundanceTable:
        """Return a 0/1 table (1 where abundance > 0)."""
        return AbundanceTable(
            sample_ids=list(self.sample_ids),
            species_ids=list(self.species_ids),
            abundances=(self.abundances > 0).astype(np.float64),
        )

    def subset_samples(self, sample_ids: Sequence[str]) -> AbundanceTable:
        """Return table with only the specified sample units."""
        idx_map = {s: i for i, s in enumerate(self.sample_ids)}
        indices = [idx_map[s] for s in sample_ids]
        return AbundanceTable(
            sample_ids=list(sample_ids),
            species_ids=list(self.species_ids),
            abundances=self.abundances[indices],
        )

    def column(self, species_id: str) -> np.ndarray:
        return self.abundances[:, self.species_ids.index(species_id)]


def _read_matrix(path: str | Path) -> tuple[list[str], list[str], np.ndarray]:
    path = Path(path)
    with open(path, newline="") as f:
        reader = csv.reader(f, delimiter="\t")
        header = next(reader)
        columns = [c.strip() for c in header[1:]]
        row_ids: list[str] = []
        rows: list[list[float]] = []
        for row in reader:
            if not row or not row[0].strip():
                continue
            if len(row) - 1 != len(columns):
                raise InputShapeMismatch(
                    f"{path.name}: row {row[0]!r} has {len(row) - 1} values, "
                    f"expected {len(columns)}"
                )
            row_ids.append(row[0].strip())
            rows.append([np.nan if x.strip() in ("", "NA") else float(x) for x in row[1:]])
    values = np.array(rows, dtype=np.float64).reshape(len(row_ids), len(columns))
    return row_ids, columns, values


def load_predictor_table(path: str | Path) -> PredictorTable:
    """Load a tab-separated predictor table.

    First column = sample_id, remaining columns = named predictors.
    """
    sample_ids, names, values = _read_matrix(path)
    return PredictorTable(sample_ids=sample_ids, names=names, values=values)


def load_abundance_table(path: str | Path) -> AbundanceTable:
    """Load a tab-separated abundance table.

    First column = sample_id, remaining columns = species.
    """
    sample_ids, species_ids, values = _read_matrix(path)
    return AbundanceTable(sample_ids=sample_ids, species_ids=species_ids, abundances=values)


def write_abundance_table(table: AbundanceTable, path: str | Path) -> None:
    """Write a table in the format read by :func:`load_abundance_table`.

    NaN cells (imputed rows of failed units) are written as ``NA``.
    """
    with open(path, "w", newline="") as f:
        w = csv.writer(f, delimiter="\t")
        w.writerow(["sample_id"] + list(table.species_ids))
        for i, sid in enumerate(table.sample_ids):
            w.writerow(
                [sid]
                + ["NA" if np.isnan(v) else f"{v:.6g}" for v in table.abundances[i]]
            )
