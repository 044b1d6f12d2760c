"""NGNN: Nonlinear Gradient Nearest Neighbors.

Imputes species composition at unsampled units from environmental
predictors, via per-species nonparametric regression, constrained
ordination of the fitted values, and nearest-neighbor transfer of observed
reference compositions.
"""

__version__ = "0.1.0"

from .config import (  # noqa: E402
    ImputationConfig,
    NGNNConfig,
    OrdinationConfig,
    ProjectionConfig,
    RegressionConfig,
)
from .io import AbundanceTable, PredictorTable  # noqa: E402
from .pipeline import NGNNResult, ngnn  # noqa: E402
