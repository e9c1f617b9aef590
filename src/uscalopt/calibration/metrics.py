from __future__ import annotations

from dataclasses import dataclass

import numpy as np

from uscalopt.calibration.correspondences import PointCorrespondences, WireObservations
from uscalopt.config import OptimizationMethod
from uscalopt.core.geometry import apply_transform, apply_transforms, point_to_line_distance, point_to_line_offset
from uscalopt.errors import MissingOrMismatchedInputError


@dataclass(frozen=True)
class ErrorStatistics:
    mean: float
    stdev: float  # sample standard deviation (ddof=1)
    rms: float
    count: int

    def as_dict(self) -> dict[str, float]:
        return {"mean": self.mean, "stdev": self.stdev, "rms": self.rms, "count": float(self.count)}


def error_statistics(magnitudes: np.ndarray) -> ErrorStatistics:
    e = np.asarray(magnitudes, dtype=np.float64).reshape(-1)
    if e.size == 0:
        raise ValueError("no residuals")
    stdev = float(np.std(e, ddof=1)) if e.size > 1 else 0.0
    return ErrorStatistics(
        mean=float(np.mean(e)),
        stdev=stdev,
        rms=float(np.sqrt(np.mean(e * e))),
        count=int(e.size),
    )


@dataclass(frozen=True)
class PointDistanceMetric:
    """3D distance between transformed image points and their probe-frame partners."""

    data: PointCorrespondences

    @property
    def indices(self) -> np.ndarray:
        return self.data.indices

    def residuals(self, image_to_probe: np.ndarray) -> np.ndarray:
        """Signed per-axis differences, flattened (3N,)."""
        mapped = apply_transform(image_to_probe, self.data.image_points)
        return (mapped - self.data.probe_points).reshape(-1)

    def magnitudes(self, image_to_probe: np.ndarray) -> np.ndarray:
        return np.linalg.norm(self.residuals(image_to_probe).reshape(-1, 3), axis=1)


@dataclass(frozen=True)
class WireDistanceMetric:
    """
    Distance of each image point, mapped into the phantom frame, to the wire it was
    detected on:

      p_phantom = probe_to_phantom_i @ image_to_probe @ p_image
      r_i = dist(p_phantom, line(a_i, b_i))

    The minimizer gets the perpendicular offset vectors (same sum of squares as the
    distances, but smooth at zero).
    """

    data: WireObservations

    @property
    def indices(self) -> np.ndarray:
        return self.data.indices

    def _in_phantom(self, image_to_probe: np.ndarray) -> np.ndarray:
        in_probe = apply_transform(image_to_probe, self.data.image_points)
        return apply_transforms(self.data.probe_to_phantom, in_probe)

    def residuals(self, image_to_probe: np.ndarray) -> np.ndarray:
        """Perpendicular offsets to the wires, flattened (3N,)."""
        p = self._in_phantom(image_to_probe)
        return point_to_line_offset(p, self.data.line_a, self.data.line_b).reshape(-1)

    def magnitudes(self, image_to_probe: np.ndarray) -> np.ndarray:
        p = self._in_phantom(image_to_probe)
        return point_to_line_distance(p, self.data.line_a, self.data.line_b)


Metric = PointDistanceMetric | WireDistanceMetric


def make_metric(
    method: OptimizationMethod,
    points: PointCorrespondences | None,
    wires: WireObservations | None,
) -> Metric:
    """Pick the metric for `method`; the input it needs must have been supplied."""
    if method is OptimizationMethod.MINIMIZE_3D_DISTANCE:
        if points is None:
            raise MissingOrMismatchedInputError(f"method {method} needs point correspondences; none were supplied")
        return PointDistanceMetric(points)
    if method is OptimizationMethod.MINIMIZE_2D_DISTANCE:
        if wires is None:
            raise MissingOrMismatchedInputError(f"method {method} needs wire observations; none were supplied")
        return WireDistanceMetric(wires)
    raise MissingOrMismatchedInputError(f"no cost metric for optimization method {method}")
