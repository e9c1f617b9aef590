from __future__ import annotations

from dataclasses import dataclass
from enum import Enum
from typing import Any, Mapping

from uscalopt.errors import ConfigValidationError


class OptimizationMethod(str, Enum):
    NONE = "none"
    MINIMIZE_3D_DISTANCE = "minimize-3d-distance"
    MINIMIZE_2D_DISTANCE = "minimize-2d-distance"

    def __str__(self) -> str:
        return self.value

    @classmethod
    def parse(cls, text: str | OptimizationMethod) -> OptimizationMethod:
        """
        Accepts the canonical values and the legacy attribute tokens
        (`NONE`, `3D`, `2D`, `MINIMIZE_DISTANCE_OF_MIDDLE_WIRES_IN_3D`,
        `MINIMIZE_DISTANCE_OF_ALL_WIRES_IN_2D`), case-insensitive.
        """
        if isinstance(text, cls):
            return text
        key = str(text).strip().lower().replace("_", "-")
        method = _METHOD_ALIASES.get(key)
        if method is None:
            raise ConfigValidationError(f"unknown optimization method: {text!r}")
        return method


_METHOD_ALIASES: dict[str, OptimizationMethod] = {
    "none": OptimizationMethod.NONE,
    "minimize-none": OptimizationMethod.NONE,
    "3d": OptimizationMethod.MINIMIZE_3D_DISTANCE,
    "minimize-3d-distance": OptimizationMethod.MINIMIZE_3D_DISTANCE,
    "minimize-distance-of-middle-wires-in-3d": OptimizationMethod.MINIMIZE_3D_DISTANCE,
    "2d": OptimizationMethod.MINIMIZE_2D_DISTANCE,
    "minimize-2d-distance": OptimizationMethod.MINIMIZE_2D_DISTANCE,
    "minimize-distance-of-all-wires-in-2d": OptimizationMethod.MINIMIZE_2D_DISTANCE,
}


@dataclass(frozen=True)
class OptimizerConfig:
    method: OptimizationMethod = OptimizationMethod.NONE
    isotropic_scale: bool = False


def _require(cond: bool, msg: str) -> None:
    if not cond:
        raise ConfigValidationError(msg)


def _parse_bool(value: Any, name: str) -> bool:
    if isinstance(value, bool):
        return value
    if isinstance(value, str):
        v = value.strip().upper()
        _require(v in ("TRUE", "FALSE"), f"{name} must be TRUE or FALSE, got {value!r}")
        return v == "TRUE"
    _require(isinstance(value, int) and value in (0, 1), f"{name} must be a boolean")
    return bool(value)


def parse_optimizer_config(data: Mapping[str, Any]) -> OptimizerConfig:
    """
    Build an `OptimizerConfig` from an already parsed mapping, e.g. the attributes
    of a probe calibration element:

      {"OptimizationMethod": "2D", "IsotropicPixelSpacing": "TRUE"}

    Snake-case keys (`method`, `isotropic_scale`) are accepted as well.
    Missing keys fall back to the defaults (no optimization, anisotropic scale).
    """
    _require(isinstance(data, Mapping), "optimizer config must be a mapping")

    method_raw = data.get("OptimizationMethod", data.get("method"))
    method = OptimizationMethod.NONE if method_raw is None else OptimizationMethod.parse(method_raw)

    iso_raw = data.get("IsotropicPixelSpacing", data.get("isotropic_scale"))
    isotropic = False if iso_raw is None else _parse_bool(iso_raw, "IsotropicPixelSpacing")

    return OptimizerConfig(method=method, isotropic_scale=isotropic)
