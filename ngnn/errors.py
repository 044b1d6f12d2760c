"""Exception types raised by the NGNN pipeline."""

from __future__ import annotations


class NGNNError(Exception):
    """Base class for all NGNN errors."""


class ConfigError(NGNNError, ValueError):
    """Invalid or unknown configuration option."""


class InputShapeMismatch(NGNNError, ValueError):
    """Row/column counts or identities disagree between input tables."""


class PredictorCountError(NGNNError, ValueError):
    """Predictor subset size outside {1, 2}."""


class NeighborSearchFailure(NGNNError, ValueError):
    """k exceeds the number of available reference units."""


class FitFailure(NGNNError, RuntimeError):
    """A species regression could not be fitted."""

    def __init__(self, message: str, species_id: str | None = None):
        super().__init__(message)
        self.species_id = species_id


class ConvergenceFailure(NGNNError, RuntimeError):
    """NMS stress did not stabilize below the acceptable bound."""


class ProjectionFailure(NGNNError, RuntimeError):
    """A new unit could not be placed in ordination space."""

    def __init__(self, message: str, sample_id: str | None = None):
        super().__init__(message)
        self.sample_id = sample_id
