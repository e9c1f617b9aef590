from uscalopt.calibration.correspondences import NWire, PointCorrespondences, Wire, WireObservations
from uscalopt.calibration.metrics import ErrorStatistics
from uscalopt.calibration.optimizer import (
    DriverState,
    OptimizationResult,
    OptimizationStatus,
    SpatialCalibrationOptimizer,
)
from uscalopt.config import OptimizationMethod, OptimizerConfig, parse_optimizer_config
from uscalopt.errors import (
    ConfigValidationError,
    InvalidSeedError,
    MissingOrMismatchedInputError,
    OptimizerError,
)

__all__ = [
    "SpatialCalibrationOptimizer",
    "OptimizerConfig",
    "OptimizationMethod",
    "parse_optimizer_config",
    "OptimizationResult",
    "OptimizationStatus",
    "DriverState",
    "ErrorStatistics",
    "PointCorrespondences",
    "WireObservations",
    "Wire",
    "NWire",
    "OptimizerError",
    "InvalidSeedError",
    "MissingOrMismatchedInputError",
    "ConfigValidationError",
]
