from __future__ import annotations

import logging
from dataclasses import dataclass, field
from enum import Enum
from typing import AbstractSet, Iterable

import numpy as np

from uscalopt.calibration.correspondences import PointCorrespondences, WireObservations
from uscalopt.calibration.metrics import ErrorStatistics, Metric, error_statistics, make_metric
from uscalopt.config import OptimizationMethod, OptimizerConfig
from uscalopt.core.geometry import as_matrix4, describe_transform
from uscalopt.core.parameterization import SimilarityParameterization
from uscalopt.errors import MissingOrMismatchedInputError, OptimizerError

logger = logging.getLogger(__name__)

# Levenberg-Marquardt budget and tolerances (scipy `least_squares`, method="lm").
# The evaluation cap is MAX_ITERATIONS * (n_params + 1): one residual evaluation
# plus a forward-difference Jacobian per iteration.
MAX_ITERATIONS = 200
FTOL = 1e-12
XTOL = 1e-12
GTOL = 1e-12


class DriverState(str, Enum):
    IDLE = "idle"
    OPTIMIZED = "optimized"


class OptimizationStatus(str, Enum):
    CONVERGED = "converged"
    NOT_CONVERGED = "not_converged"
    DISABLED = "disabled"


@dataclass(frozen=True)
class OptimizationResult:
    image_to_probe: np.ndarray  # (4,4)
    seed: np.ndarray  # (4,4)
    status: OptimizationStatus
    message: str
    n_evaluations: int = 0
    initial_error: ErrorStatistics | None = None
    final_error: ErrorStatistics | None = None
    params: np.ndarray | None = None  # versor layout about the identity rotation
    n_retained: int = 0
    diagnostics: dict[str, float] = field(default_factory=dict)

    @property
    def converged(self) -> bool:
        return self.status is OptimizationStatus.CONVERGED


class SpatialCalibrationOptimizer:
    """
    Refines an image-to-probe transform from wire-phantom correspondences.

    Two states: IDLE (nothing optimized for the current inputs) and OPTIMIZED
    (the last `update()` succeeded). Every input or configuration setter returns
    the driver to IDLE. Correspondence collections are held by reference; the
    seed and the outlier indices are copied.

    Usage:

      opt = SpatialCalibrationOptimizer(OptimizerConfig(OptimizationMethod.MINIMIZE_3D_DISTANCE))
      opt.set_point_input(points, seed, outliers={2})
      result = opt.update()
      stats = opt.compute_error(result.image_to_probe)
    """

    def __init__(self, config: OptimizerConfig | None = None) -> None:
        config = config if config is not None else OptimizerConfig()
        self._method = OptimizationMethod.parse(config.method)
        self._isotropic_scale = bool(config.isotropic_scale)
        self._seed: np.ndarray | None = None
        self._points: PointCorrespondences | None = None
        self._wires: WireObservations | None = None
        self._outliers: AbstractSet[int] = frozenset()
        self._state = DriverState.IDLE
        self._result: OptimizationResult | None = None

    # Configuration

    @property
    def method(self) -> OptimizationMethod:
        return self._method

    @method.setter
    def method(self, value: OptimizationMethod | str) -> None:
        self._method = OptimizationMethod.parse(value)
        self._state = DriverState.IDLE

    @property
    def isotropic_scale(self) -> bool:
        return self._isotropic_scale

    @isotropic_scale.setter
    def isotropic_scale(self, value: bool) -> None:
        self._isotropic_scale = bool(value)
        self._state = DriverState.IDLE

    @property
    def config(self) -> OptimizerConfig:
        return OptimizerConfig(method=self._method, isotropic_scale=self._isotropic_scale)

    @property
    def enabled(self) -> bool:
        """True iff an optimization method other than `none` is configured."""
        return self._method is not OptimizationMethod.NONE

    @property
    def state(self) -> DriverState:
        return self._state

    @property
    def result(self) -> OptimizationResult | None:
        """Last successful result (kept across failed updates)."""
        return self._result

    @property
    def optimized_image_to_probe(self) -> np.ndarray:
        if self._result is None:
            raise OptimizerError("no optimization result available; call update() first")
        return self._result.image_to_probe.copy()

    # Inputs

    def set_seed_transform(self, image_to_probe: np.ndarray) -> None:
        self._seed = as_matrix4(image_to_probe).copy()
        self._state = DriverState.IDLE

    def set_outliers(self, outliers: Iterable[int] | None) -> None:
        """Replace the excluded indices; the iterable is read once and kept as a frozenset."""
        self._outliers = frozenset() if outliers is None else frozenset(int(i) for i in outliers)
        self._state = DriverState.IDLE

    @property
    def outliers(self) -> AbstractSet[int]:
        return self._outliers

    def set_point_input(
        self,
        points: PointCorrespondences,
        image_to_probe_seed: np.ndarray,
        outliers: Iterable[int] | None = None,
    ) -> None:
        """Inputs for `minimize-3d-distance`: middle-wire point pairs, seed and outlier indices."""
        self._points = points
        self.set_seed_transform(image_to_probe_seed)
        self.set_outliers(outliers)

    def set_wire_input(
        self,
        observations: WireObservations,
        image_to_probe_seed: np.ndarray,
        outliers: Iterable[int] | None = None,
    ) -> None:
        """Inputs for `minimize-2d-distance`: wire observations, seed and outlier indices."""
        self._wires = observations
        self.set_seed_transform(image_to_probe_seed)
        self.set_outliers(outliers)

    def _active_metric(self) -> Metric:
        points = self._points.without(self._outliers) if self._points is not None else None
        wires = self._wires.without(self._outliers) if self._wires is not None else None
        return make_metric(self._method, points, wires)

    @property
    def retained_count(self) -> int:
        """Entries of the active method's input left after outlier exclusion (0 if none)."""
        try:
            return int(self._active_metric().indices.size)
        except MissingOrMismatchedInputError:
            return 0

    # Evaluation

    def compute_residuals(self, image_to_probe: np.ndarray) -> tuple[np.ndarray, np.ndarray]:
        """Per-entry error magnitudes of the active metric: (indices, magnitudes)."""
        metric = self._active_metric()
        return metric.indices.copy(), metric.magnitudes(as_matrix4(image_to_probe))

    def compute_error(self, image_to_probe: np.ndarray) -> ErrorStatistics:
        """
        Mean, sample standard deviation and RMS of the active metric's error
        magnitudes for `image_to_probe`, over the outlier-filtered input.
        """
        metric = self._active_metric()
        if metric.indices.size == 0:
            raise MissingOrMismatchedInputError("every input entry is excluded as an outlier")
        return error_statistics(metric.magnitudes(as_matrix4(image_to_probe)))

    def update(self) -> OptimizationResult:
        """
        Run the optimization for the current inputs.

        Raises `MissingOrMismatchedInputError` (no seed, or no input for the method)
        and `InvalidSeedError` (singular seed); the driver then stays IDLE and the
        previous result is kept. Exhausting the evaluation budget is not an error: the best
        transform found is returned with status NOT_CONVERGED.
        """
        self._state = DriverState.IDLE
        if self._seed is None:
            raise MissingOrMismatchedInputError("no seed transform supplied")
        seed = self._seed.copy()

        if not self.enabled:
            logger.info("Optimization method is %s, keeping the seed transform", self._method)
            result = OptimizationResult(
                image_to_probe=seed.copy(),
                seed=seed,
                status=OptimizationStatus.DISABLED,
                message="optimization disabled",
            )
            self._result = result
            self._state = DriverState.OPTIMIZED
            return result

        metric = self._active_metric()
        n_retained = int(metric.indices.size)
        param = SimilarityParameterization.centered_on(seed, isotropic_scale=self._isotropic_scale)
        r0 = metric.residuals(seed)
        n_residuals = int(r0.size)
        if n_residuals < param.n_params:
            raise MissingOrMismatchedInputError(
                f"{n_retained} retained entries give {n_residuals} residuals, "
                f"fewer than the {param.n_params} parameters"
            )

        p0 = param.to_params(seed)
        initial_error = error_statistics(metric.magnitudes(seed))
        logger.info(
            "Before %s optimization (%d entries): mean=%.4f stdev=%.4f rms=%.4f",
            self._method,
            n_retained,
            initial_error.mean,
            initial_error.stdev,
            initial_error.rms,
        )

        from scipy.optimize import least_squares  # type: ignore

        def fun(p: np.ndarray) -> np.ndarray:
            return metric.residuals(param.to_matrix(p))

        try:
            sol = least_squares(
                fun,
                p0,
                method="lm",
                x_scale="jac",
                ftol=FTOL,
                xtol=XTOL,
                gtol=GTOL,
                max_nfev=int(MAX_ITERATIONS * (param.n_params + 1)),
            )
        except ValueError as e:
            raise OptimizerError(f"optimization failed: {e}") from e

        refined = param.to_matrix(sol.x)
        final_error = error_statistics(metric.magnitudes(refined))
        # status 0: evaluation budget exhausted; > 0: a tolerance was met.
        converged = int(sol.status) > 0
        status = OptimizationStatus.CONVERGED if converged else OptimizationStatus.NOT_CONVERGED

        if converged:
            logger.info(
                "After optimization (%d evaluations): mean=%.4f stdev=%.4f rms=%.4f",
                sol.nfev,
                final_error.mean,
                final_error.stdev,
                final_error.rms,
            )
        else:
            logger.warning("Optimization did not converge: %s; keeping best transform (rms=%.4f)", sol.message, final_error.rms)
        logger.debug("Refined image-to-probe transform: %s", describe_transform(refined))

        result = OptimizationResult(
            image_to_probe=refined,
            seed=seed,
            status=status,
            message=str(sol.message),
            n_evaluations=int(sol.nfev),
            initial_error=initial_error,
            final_error=final_error,
            params=SimilarityParameterization(isotropic_scale=self._isotropic_scale).to_params(refined),
            n_retained=n_retained,
            diagnostics={
                "initial_cost": 0.5 * float(r0 @ r0),
                "final_cost": float(sol.cost),
                "optimality": float(sol.optimality),
                "n_evaluations": float(sol.nfev),
                "n_residuals": float(n_residuals),
                "solver_status": float(sol.status),
            },
        )
        self._result = result
        self._state = DriverState.OPTIMIZED
        return result
