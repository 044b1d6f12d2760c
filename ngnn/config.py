"""Per-stage configuration for the NGNN pipeline."""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any

from .errors import ConfigError, PredictorCountError

METRICS = ("bray", "jaccard", "kulczynski", "euclidean", "manhattan")
WEIGHTINGS = ("equal", "distance")


def _positive_int(name: str, value: int) -> None:
    if isinstance(value, bool) or not isinstance(value, int) or value < 1:
        raise ConfigError(f"{name} must be a positive integer, got {value!r}")


@dataclass
class RegressionConfig:
    """Configuration for per-species NPMR fitting.

    Attributes:
        predictors: Names of the 1 or 2 predictors shared by all models.
        n_restarts: Random starts of the bandwidth optimizer per species.
        presence_absence: Binarize abundances before regression.
        beals: Replace presence/absence by Beals smoothed probabilities
            before regression (implies presence_absence).
        n_permutations: Shuffles used for the randomization p-value
            (0 disables the test).
        max_iter: Nelder-Mead iteration cap per restart.
        random_seed: Seed for restart starting points and permutations.
        n_jobs: Parallel workers across species (1 = sequential).
    """

    predictors: list[str] = field(default_factory=list)
    n_restarts: int = 5
    presence_absence: bool = False
    beals: bool = False
    n_permutations: int = 99
    max_iter: int = 200
    random_seed: int = 42
    n_jobs: int = 1

    def __post_init__(self) -> None:
        self.predictors = list(self.predictors)
        if not 1 <= len(self.predictors) <= 2:
            raise PredictorCountError(
                f"Expected 1 or 2 predictors, got {len(self.predictors)}"
            )
        if len(set(self.predictors)) != len(self.predictors):
            raise PredictorCountError(f"Duplicate predictors: {self.predictors}")
        _positive_int("n_restarts", self.n_restarts)
        _positive_int("max_iter", self.max_iter)
        if self.n_permutations < 0:
            raise ConfigError("n_permutations must be >= 0")


@dataclass
class OrdinationConfig:
    """Configuration for NCO (NMS of fitted values).

    Attributes:
        metric: Dissimilarity measure, one of ``METRICS``.
        stepacross_threshold: Dissimilarities at or above this value are
            replaced by shortest paths (fraction of the maximum for
            unbounded metrics).
        n_axes: Embedding dimensionality.
        n_restarts: Random starting configurations.
        max_iter: SMACOF iterations per restart.
        tol: Stress improvement below which a restart has converged.
        max_stress: Largest acceptable stress-1 for the best restart.
        random_seed: Seed for starting configurations.
        n_jobs: Parallel workers across restarts.
    """

    metric: str = "bray"
    stepacross_threshold: float = 0.9
    n_axes: int = 2
    n_restarts: int = 5
    max_iter: int = 300
    tol: float = 1e-6
    max_stress: float = 0.3
    random_seed: int = 42
    n_jobs: int = 1

    def __post_init__(self) -> None:
        if self.metric not in METRICS:
            raise ConfigError(
                f"Unknown dissimilarity metric {self.metric!r}; expected one of {METRICS}"
            )
        if not 0 < self.stepacross_threshold <= 1:
            raise ConfigError("stepacross_threshold must be in (0, 1]")
        _positive_int("n_axes", self.n_axes)
        _positive_int("n_restarts", self.n_restarts)
        _positive_int("max_iter", self.max_iter)
        if self.max_stress <= 0:
            raise ConfigError("max_stress must be positive")


@dataclass
class ProjectionConfig:
    """Configuration for out-of-sample placement in NCO space.

    Attributes:
        n_neighbors: Closest reference units (in fitted-value dissimilarity)
            used to place each new unit (at least 2).
        max_iter: Placement iterations per unit.
        tol: Step size, relative to the reference score spread, that ends
            the iteration.
        match_tol: Dissimilarity at or below which a new unit is treated as
            identical to a reference unit and placed on its scores.
        n_jobs: Parallel workers across new units.
    """

    n_neighbors: int = 5
    max_iter: int = 999
    tol: float = 1e-8
    match_tol: float = 1e-10
    n_jobs: int = 1

    def __post_init__(self) -> None:
        _positive_int("n_neighbors", self.n_neighbors)
        if self.n_neighbors < 2:
            raise ConfigError(
                f"n_neighbors must be at least 2, got {self.n_neighbors}"
            )
        _positive_int("max_iter", self.max_iter)


@dataclass
class ImputationConfig:
    """Configuration for nearest-neighbor composition transfer.

    Attributes:
        k: Reference neighbors averaged per new unit.
        weighting: ``"equal"`` (arithmetic mean) or ``"distance"``
            (inverse-distance weighted mean).
        exclude_flagged: Skip units whose projection fell outside the
            reference range on any axis.
    """

    k: int = 1
    weighting: str = "equal"
    exclude_flagged: bool = False

    def __post_init__(self) -> None:
        _positive_int("k", self.k)
        if self.weighting not in WEIGHTINGS:
            raise ConfigError(
                f"Unknown weighting {self.weighting!r}; expected one of {WEIGHTINGS}"
            )


@dataclass
class NGNNConfig:
    """Configuration for the full pipeline, one block per stage."""

    regression: RegressionConfig
    ordination: OrdinationConfig = field(default_factory=OrdinationConfig)
    projection: ProjectionConfig = field(default_factory=ProjectionConfig)
    imputation: ImputationConfig = field(default_factory=ImputationConfig)

    @classmethod
    def from_dict(cls, options: dict[str, Any]) -> NGNNConfig:
        """Build a config from flat option names.

        ``restarts`` drives both regression and ordination random starts;
        ``seed`` and ``n_jobs`` apply to every stage that uses them.
        """
        unknown = set(options) - _OPTION_KEYS
        if unknown:
            raise ConfigError(f"Unknown options: {sorted(unknown)}")
        if "predictors" not in options:
            raise ConfigError("'predictors' is required")

        seed = options.get("seed", 42)
        n_jobs = options.get("n_jobs", 1)
        restarts = options.get("restarts", 5)
        return cls(
            regression=RegressionConfig(
                predictors=list(options["predictors"]),
                n_restarts=restarts,
                presence_absence=options.get("presence_absence", False),
                beals=options.get("beals", False),
                n_permutations=options.get("n_permutations", 99),
                random_seed=seed,
                n_jobs=n_jobs,
            ),
            ordination=OrdinationConfig(
                metric=options.get("dissimilarity_metric", "bray"),
                stepacross_threshold=options.get("stepacross_threshold", 0.9),
                n_axes=options.get("n_axes", 2),
                n_restarts=restarts,
                max_stress=options.get("max_stress", 0.3),
                random_seed=seed,
                n_jobs=n_jobs,
            ),
            projection=ProjectionConfig(
                n_neighbors=options.get("projection_neighbors", 5),
                max_iter=options.get("projection_iterations", 999),
                n_jobs=n_jobs,
            ),
            imputation=ImputationConfig(
                k=options.get("k", 1),
                weighting=options.get("weighting", "equal"),
                exclude_flagged=options.get("exclude_flagged", False),
            ),
        )


_OPTION_KEYS = {
    "predictors",
    "restarts",
    "presence_absence",
    "beals",
    "dissimilarity_metric",
    "stepacross_threshold",
    "projection_neighbors",
    "projection_iterations",
    "k",
    "n_axes",
    "n_permutations",
    "max_stress",
    "weighting",
    "exclude_flagged",
    "seed",
    "n_jobs",
}
