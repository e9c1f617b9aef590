from __future__ import annotations


def test_public_api_exports() -> None:
    import uscalopt as uc

    assert hasattr(uc, "SpatialCalibrationOptimizer")
    assert hasattr(uc, "OptimizerConfig")
    assert hasattr(uc, "OptimizationMethod")
    assert hasattr(uc, "PointCorrespondences")
    assert hasattr(uc, "WireObservations")
    assert hasattr(uc, "InvalidSeedError")
    assert hasattr(uc, "MissingOrMismatchedInputError")


def test_error_classes_are_documented_value_errors() -> None:
    import uscalopt as uc

    for cls in (uc.OptimizerError, uc.InvalidSeedError, uc.MissingOrMismatchedInputError, uc.ConfigValidationError):
        assert issubclass(cls, ValueError)
        assert cls.__doc__
