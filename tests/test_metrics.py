import numpy as np
import pytest

from uscalopt.calibration.correspondences import PointCorrespondences, WireObservations
from uscalopt.calibration.metrics import (
    PointDistanceMetric,
    WireDistanceMetric,
    error_statistics,
    make_metric,
)
from uscalopt.config import OptimizationMethod
from uscalopt.errors import MissingOrMismatchedInputError


def test_error_statistics_values():
    st = error_statistics(np.array([3.0, 4.0]))
    assert st.mean == pytest.approx(3.5)
    assert st.stdev == pytest.approx(np.sqrt(0.5))
    assert st.rms == pytest.approx(np.sqrt(12.5))
    assert st.count == 2


def test_error_statistics_single_value_has_zero_stdev():
    assert error_statistics(np.array([2.0])).stdev == 0.0
    with pytest.raises(ValueError):
        error_statistics(np.zeros(0))


def test_point_metric_distances():
    pc = PointCorrespondences(
        image_points=np.array([[0.0, 0.0], [1.0, 0.0]]),
        probe_points=np.array([[3.0, 4.0, 0.0], [1.0, 0.0, 2.0]]),
    )
    metric = PointDistanceMetric(pc)
    assert metric.residuals(np.eye(4)).shape == (6,)
    assert np.allclose(metric.magnitudes(np.eye(4)), [5.0, 2.0])


def test_wire_metric_maps_through_probe_to_phantom():
    # Wire along phantom z through (10, 0, *).
    probe_to_phantom = np.eye(4)
    probe_to_phantom[:3, 3] = [10.0, 0.0, 0.0]
    obs = WireObservations(
        image_points=np.array([[0.0, 0.0], [0.0, 3.0]]),
        line_a=np.array([[10.0, 0.0, -5.0], [10.0, 0.0, -5.0]]),
        line_b=np.array([[10.0, 0.0, 5.0], [10.0, 0.0, 5.0]]),
        probe_to_phantom=np.stack([probe_to_phantom, probe_to_phantom]),
    )
    metric = WireDistanceMetric(obs)
    assert np.allclose(metric.magnitudes(np.eye(4)), [0.0, 3.0])
    r = metric.residuals(np.eye(4))
    assert r.shape == (6,)
    assert np.isclose(0.5 * r @ r, 0.5 * 9.0)


def test_metrics_are_deterministic():
    rng = np.random.default_rng(5)
    pc = PointCorrespondences(image_points=rng.normal(size=(10, 2)), probe_points=rng.normal(size=(10, 3)))
    metric = PointDistanceMetric(pc)
    m = np.eye(4)
    m[:3, 3] = [0.1, 0.2, 0.3]
    assert np.array_equal(metric.residuals(m), metric.residuals(m))


def test_make_metric_dispatch_and_missing_input():
    pc = PointCorrespondences(image_points=np.zeros((1, 2)), probe_points=np.zeros((1, 3)))
    assert isinstance(make_metric(OptimizationMethod.MINIMIZE_3D_DISTANCE, pc, None), PointDistanceMetric)
    with pytest.raises(MissingOrMismatchedInputError):
        make_metric(OptimizationMethod.MINIMIZE_2D_DISTANCE, pc, None)
    with pytest.raises(MissingOrMismatchedInputError):
        make_metric(OptimizationMethod.NONE, pc, None)
