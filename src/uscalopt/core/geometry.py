from __future__ import annotations

import numpy as np


def as_points3(points: np.ndarray) -> np.ndarray:
    """
    Coerce (N,2) or (N,3) points to float64 (N,3). Image points given as (u,v)
    lie in the image plane, z = 0.
    """
    p = np.asarray(points, dtype=np.float64)
    if p.ndim == 1:
        p = p.reshape(1, -1)
    if p.ndim != 2 or p.shape[1] not in (2, 3):
        raise ValueError("points must be (N,2) or (N,3)")
    if p.shape[1] == 2:
        p = np.concatenate([p, np.zeros((p.shape[0], 1), dtype=np.float64)], axis=1)
    return p


def as_matrix4(matrix: np.ndarray) -> np.ndarray:
    m = np.asarray(matrix, dtype=np.float64)
    if m.shape != (4, 4):
        raise ValueError(f"expected a 4x4 matrix, got shape {m.shape}")
    return m


def apply_transform(matrix: np.ndarray, points: np.ndarray) -> np.ndarray:
    """Apply a 4x4 affine transform to (N,3) points."""
    return points @ matrix[:3, :3].T + matrix[:3, 3].reshape(1, 3)


def apply_transforms(matrices: np.ndarray, points: np.ndarray) -> np.ndarray:
    """Apply one 4x4 affine transform per point: matrices (N,4,4), points (N,3)."""
    return np.einsum("nij,nj->ni", matrices[:, :3, :3], points) + matrices[:, :3, 3]


def point_to_line_offset(points: np.ndarray, line_a: np.ndarray, line_b: np.ndarray) -> np.ndarray:
    """
    Perpendicular offset vectors (N,3) from the infinite lines through (a_i, b_i)
    to the points: (I - u u^T)(p - a), u = (b - a) / |b - a|.
    """
    u = line_b - line_a
    u = u / np.linalg.norm(u, axis=-1, keepdims=True)
    w = points - line_a
    return w - np.sum(w * u, axis=-1, keepdims=True) * u


def point_to_line_distance(points: np.ndarray, line_a: np.ndarray, line_b: np.ndarray) -> np.ndarray:
    """
    Perpendicular distance from each point to the infinite line through (a_i, b_i).

      d = |(p - a) x (b - a)| / |b - a|
    """
    d = line_b - line_a
    c = np.cross(points - line_a, d)
    return np.linalg.norm(c, axis=-1) / np.linalg.norm(d, axis=-1)


def closest_rotation(m3: np.ndarray) -> tuple[np.ndarray, float]:
    """
    Orthonormal factor of the polar decomposition of a 3x3 matrix (SVD based).

    Returns (R, sign) where sign = -1 if `m3` contains a reflection. In that case
    R is still a proper rotation: the flip is moved onto the axis of the smallest
    singular value, so R^T m3 keeps a negative diagonal entry there.
    """
    U, _s, Vt = np.linalg.svd(np.asarray(m3, dtype=np.float64))
    sign = float(np.sign(np.linalg.det(U @ Vt)))
    D = np.diag([1.0, 1.0, sign])
    return U @ D @ Vt, sign


def describe_transform(matrix: np.ndarray) -> dict[str, float]:
    """
    Human-readable decomposition of a similarity transform: translation, XYZ Euler
    angles (deg) of the closest rotation, per-axis scales and the orthogonality
    error of the normalized columns.
    """
    from scipy.spatial.transform import Rotation as R  # type: ignore

    m = as_matrix4(matrix)
    m3 = m[:3, :3]
    rot, _sign = closest_rotation(m3)
    scales = np.diag(rot.T @ m3)
    cols = m3 / np.where(np.abs(scales) > 0, scales, 1.0).reshape(1, 3)
    ortho_err = float(np.max(np.abs(cols.T @ cols - np.eye(3))))
    rx, ry, rz = R.from_matrix(rot).as_euler("xyz", degrees=True)
    return {
        "tx": float(m[0, 3]),
        "ty": float(m[1, 3]),
        "tz": float(m[2, 3]),
        "rx_deg": float(rx),
        "ry_deg": float(ry),
        "rz_deg": float(rz),
        "sx": float(scales[0]),
        "sy": float(scales[1]),
        "sz": float(scales[2]),
        "orthogonality_error": ortho_err,
    }
