from __future__ import annotations


class OptimizerError(ValueError):
    """Base class for failures of a single optimizer call."""


class InvalidSeedError(OptimizerError):
    """The seed's rotation-scale block is singular or not a valid homogeneous transform."""


class MissingOrMismatchedInputError(OptimizerError):
    """No seed or no input data for the configured optimization method."""


class ConfigValidationError(ValueError):
    """An optimizer configuration value is unknown or has the wrong type."""
