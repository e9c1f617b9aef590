from __future__ import annotations

from dataclasses import dataclass, field

import numpy as np

from uscalopt.core.geometry import closest_rotation
from uscalopt.errors import InvalidSeedError

# |det(M3)| below this fraction of ||M3||_2^3 counts as singular.
SINGULAR_DET_RTOL = 1e-12


def versor_to_matrix(versor: np.ndarray) -> np.ndarray:
    """
    Rotation matrix of a versor (vector part of a unit quaternion, scalar part >= 0).
    Vectors longer than 1 are renormalized with a zero scalar part.
    """
    from scipy.spatial.transform import Rotation as R  # type: ignore

    v = np.asarray(versor, dtype=np.float64).reshape(3)
    n2 = float(v @ v)
    if n2 > 1.0:
        v = v / np.sqrt(n2)
        w = 0.0
    else:
        w = float(np.sqrt(1.0 - n2))
    return R.from_quat([v[0], v[1], v[2], w]).as_matrix()


def matrix_to_versor(rot: np.ndarray) -> np.ndarray:
    from scipy.spatial.transform import Rotation as R  # type: ignore

    q = R.from_matrix(np.asarray(rot, dtype=np.float64)).as_quat()  # (x,y,z,w)
    if q[3] < 0:
        q = -q
    return q[:3].copy()


def check_seed_matrix(matrix: np.ndarray) -> np.ndarray:
    """
    Validate a seed transform and return it as float64 (4,4).

    Raises `InvalidSeedError` for wrong shape, non-finite entries, a bottom row other
    than [0,0,0,1] or a singular rotation-scale block.
    """
    m = np.asarray(matrix, dtype=np.float64)
    if m.shape != (4, 4):
        raise InvalidSeedError(f"seed must be a 4x4 matrix, got shape {m.shape}")
    if not np.all(np.isfinite(m)):
        raise InvalidSeedError("seed contains non-finite values")
    if not np.allclose(m[3], [0.0, 0.0, 0.0, 1.0], atol=1e-9):
        raise InvalidSeedError(f"seed bottom row must be [0,0,0,1], got {m[3].tolist()}")
    m3 = m[:3, :3]
    det = float(np.linalg.det(m3))
    norm = float(np.linalg.norm(m3, 2))
    if not np.isfinite(det) or abs(det) <= SINGULAR_DET_RTOL * max(norm**3, np.finfo(np.float64).tiny):
        raise InvalidSeedError(f"seed rotation-scale block is singular (det={det:.3e})")
    return m


@dataclass(frozen=True)
class SimilarityParameterization:
    """
    Similarity transform <-> flat parameter vector.

    Layout: [versor (3), translation (3), scale (1 if isotropic else 3)].
    The upper-left block of the matrix is R(versor) @ R_ref @ diag(scale), where
    R_ref is `reference_rotation` (identity if unset). Centering on the seed's
    rotation keeps the versor near zero during a refinement, away from the
    half-turn boundary of the versor domain.
    """

    isotropic_scale: bool = False
    reference_rotation: np.ndarray | None = field(default=None, compare=False)

    @classmethod
    def centered_on(cls, seed: np.ndarray, *, isotropic_scale: bool = False) -> SimilarityParameterization:
        """Parameterization whose zero versor is the rotation of `seed`."""
        m = check_seed_matrix(seed)
        rot, _sign = closest_rotation(m[:3, :3])
        return cls(isotropic_scale=isotropic_scale, reference_rotation=rot)

    @property
    def n_params(self) -> int:
        return 7 if self.isotropic_scale else 9

    def _reference(self) -> np.ndarray:
        if self.reference_rotation is None:
            return np.eye(3, dtype=np.float64)
        return np.asarray(self.reference_rotation, dtype=np.float64).reshape(3, 3)

    def scales(self, params: np.ndarray) -> np.ndarray:
        p = np.asarray(params, dtype=np.float64).reshape(-1)
        if self.isotropic_scale:
            return np.full((3,), p[6], dtype=np.float64)
        return p[6:9].copy()

    def to_matrix(self, params: np.ndarray) -> np.ndarray:
        p = np.asarray(params, dtype=np.float64).reshape(-1)
        if p.size != self.n_params:
            raise ValueError(f"expected {self.n_params} parameters, got {p.size}")
        out = np.eye(4, dtype=np.float64)
        out[:3, :3] = (versor_to_matrix(p[:3]) @ self._reference()) * self.scales(p).reshape(1, 3)
        out[:3, 3] = p[3:6]
        return out

    def to_params(self, matrix: np.ndarray) -> np.ndarray:
        """
        Parameters of the similarity closest to `matrix`.

        The rotation is the orthonormal polar factor of the 3x3 block, so small
        numerical drift from orthogonality in the seed is tolerated.
        """
        m = check_seed_matrix(matrix)
        m3 = m[:3, :3]
        rot, sign = closest_rotation(m3)
        if sign < 0 and self.isotropic_scale:
            raise InvalidSeedError("seed contains a reflection, which an isotropic scale cannot represent")
        scales = np.diag(rot.T @ m3)
        if self.isotropic_scale:
            # Image points are planar (z=0): only the in-plane spacing is observable.
            s = np.array([0.5 * (scales[0] + scales[1])], dtype=np.float64)
        else:
            s = scales
        versor = matrix_to_versor(rot @ self._reference().T)
        return np.concatenate([versor, m[:3, 3], s], axis=0)
