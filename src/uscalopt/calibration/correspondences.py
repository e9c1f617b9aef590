from __future__ import annotations

from dataclasses import dataclass
from typing import Iterable, Sequence

import numpy as np

from uscalopt.core.geometry import apply_transform, as_matrix4, as_points3


@dataclass(frozen=True)
class Wire:
    """A straight phantom wire through two points (phantom frame, mm)."""

    endpoint_a: np.ndarray  # (3,)
    endpoint_b: np.ndarray  # (3,)

    def __post_init__(self) -> None:
        a = np.asarray(self.endpoint_a, dtype=np.float64).reshape(3)
        b = np.asarray(self.endpoint_b, dtype=np.float64).reshape(3)
        if not np.all(np.isfinite(a)) or not np.all(np.isfinite(b)):
            raise ValueError("wire endpoints must be finite")
        if np.linalg.norm(b - a) <= 1e-12:
            raise ValueError("wire endpoints coincide")
        object.__setattr__(self, "endpoint_a", a)
        object.__setattr__(self, "endpoint_b", b)


@dataclass(frozen=True)
class NWire:
    """
    Three wires forming an "N" in one phantom layer: `wires[1]` is the diagonal
    (middle) wire, `wires[0]` and `wires[2]` the parallel side wires.
    """

    wires: tuple[Wire, Wire, Wire]

    def __post_init__(self) -> None:
        if len(self.wires) != 3:
            raise ValueError("an N-wire has exactly three wires")


@dataclass(frozen=True)
class PointCorrespondences:
    """
    Wire-intersection points seen in the image and the same physical points in the
    probe frame (the probe-to-phantom pose has already been applied at capture).

    - `image_points`: (N,3) image coordinates (px), z = 0 for planar images
    - `probe_points`: (N,3) probe coordinates (mm)
    - `indices`: (N,) outlier identities, 0..N-1 unless given
    """

    image_points: np.ndarray
    probe_points: np.ndarray
    indices: np.ndarray | None = None

    def __post_init__(self) -> None:
        img = as_points3(self.image_points)
        prb = as_points3(self.probe_points)
        if img.shape[0] != prb.shape[0]:
            raise ValueError("image_points and probe_points must have the same length")
        object.__setattr__(self, "image_points", img)
        object.__setattr__(self, "probe_points", prb)
        object.__setattr__(self, "indices", _indices_or_range(self.indices, img.shape[0]))

    def __len__(self) -> int:
        return int(self.image_points.shape[0])

    def without(self, outliers: Iterable[int] | None) -> PointCorrespondences:
        keep = retained_mask(self.indices, outliers)
        return PointCorrespondences(
            image_points=self.image_points[keep],
            probe_points=self.probe_points[keep],
            indices=self.indices[keep],
        )

    @classmethod
    def from_nwire_frames(
        cls,
        middle_points_image: Sequence[np.ndarray],
        middle_points_phantom: Sequence[np.ndarray],
        probe_to_phantom: Sequence[np.ndarray],
    ) -> PointCorrespondences:
        """
        Middle-wire intersections per frame: `middle_points_image[f]` and
        `middle_points_phantom[f]` are (K,2|3) and (K,3) for the K N-wires of the
        phantom. Phantom points are moved into the probe frame with the inverse of
        the frame's probe-to-phantom pose. Entry (f, k) gets index f * K + k.
        """
        if not (len(middle_points_image) == len(middle_points_phantom) == len(probe_to_phantom)):
            raise ValueError("per-frame sequences must have the same length")
        img_parts: list[np.ndarray] = []
        prb_parts: list[np.ndarray] = []
        idx_parts: list[np.ndarray] = []
        n_nwires = None
        for f, (img, phantom, pose) in enumerate(zip(middle_points_image, middle_points_phantom, probe_to_phantom)):
            img = as_points3(img)
            phantom = as_points3(phantom)
            if n_nwires is None:
                n_nwires = img.shape[0]
            if img.shape[0] != n_nwires or phantom.shape[0] != n_nwires:
                raise ValueError(f"frame {f}: expected {n_nwires} middle points")
            phantom_to_probe = np.linalg.inv(as_matrix4(pose))
            img_parts.append(img)
            prb_parts.append(apply_transform(phantom_to_probe, phantom))
            idx_parts.append(f * n_nwires + np.arange(n_nwires))
        if not img_parts:
            raise ValueError("no frames")
        return cls(
            image_points=np.concatenate(img_parts, axis=0),
            probe_points=np.concatenate(prb_parts, axis=0),
            indices=np.concatenate(idx_parts, axis=0),
        )


@dataclass(frozen=True)
class WireObservations:
    """
    Image points each lying on a known phantom wire.

    - `image_points`: (N,3) image coordinates (px)
    - `line_a`, `line_b`: (N,3) two points of the wire in the phantom frame (mm)
    - `probe_to_phantom`: (N,4,4) tracker pose active when the point was captured;
      maps probe coordinates into phantom coordinates
    - `indices`: (N,) outlier identities, 0..N-1 unless given
    """

    image_points: np.ndarray
    line_a: np.ndarray
    line_b: np.ndarray
    probe_to_phantom: np.ndarray
    indices: np.ndarray | None = None

    def __post_init__(self) -> None:
        img = as_points3(self.image_points)
        a = as_points3(self.line_a)
        b = as_points3(self.line_b)
        poses = np.asarray(self.probe_to_phantom, dtype=np.float64)
        n = img.shape[0]
        if a.shape[0] != n or b.shape[0] != n:
            raise ValueError("line endpoints must match image_points length")
        if poses.shape != (n, 4, 4):
            raise ValueError(f"probe_to_phantom must be ({n},4,4), got {poses.shape}")
        if np.any(np.linalg.norm(b - a, axis=1) <= 1e-12):
            raise ValueError("degenerate wire line (coincident endpoints)")
        object.__setattr__(self, "image_points", img)
        object.__setattr__(self, "line_a", a)
        object.__setattr__(self, "line_b", b)
        object.__setattr__(self, "probe_to_phantom", poses)
        object.__setattr__(self, "indices", _indices_or_range(self.indices, n))

    def __len__(self) -> int:
        return int(self.image_points.shape[0])

    def without(self, outliers: Iterable[int] | None) -> WireObservations:
        keep = retained_mask(self.indices, outliers)
        return WireObservations(
            image_points=self.image_points[keep],
            line_a=self.line_a[keep],
            line_b=self.line_b[keep],
            probe_to_phantom=self.probe_to_phantom[keep],
            indices=self.indices[keep],
        )

    @classmethod
    def from_nwire_frames(
        cls,
        intersections_image: Sequence[np.ndarray],
        nwires: Sequence[NWire],
        probe_to_phantom: Sequence[np.ndarray],
    ) -> WireObservations:
        """
        `intersections_image[f]` is (3*K, 2|3): for each of the K N-wires, the image
        points where the plane crosses its three wires, in wire order. All three
        points of N-wire k in frame f share index f * K + k, matching
        `PointCorrespondences.from_nwire_frames`.
        """
        if len(intersections_image) != len(probe_to_phantom):
            raise ValueError("per-frame sequences must have the same length")
        k_count = len(nwires)
        if k_count == 0:
            raise ValueError("no N-wires")
        wires = [w for nw in nwires for w in nw.wires]
        wa = np.stack([w.endpoint_a for w in wires], axis=0)
        wb = np.stack([w.endpoint_b for w in wires], axis=0)
        per_wire_index = np.repeat(np.arange(k_count), 3)

        img_parts: list[np.ndarray] = []
        pose_parts: list[np.ndarray] = []
        idx_parts: list[np.ndarray] = []
        for f, (pts, pose) in enumerate(zip(intersections_image, probe_to_phantom)):
            pts = as_points3(pts)
            if pts.shape[0] != 3 * k_count:
                raise ValueError(f"frame {f}: expected {3 * k_count} intersection points, got {pts.shape[0]}")
            img_parts.append(pts)
            pose_parts.append(np.repeat(as_matrix4(pose)[None], 3 * k_count, axis=0))
            idx_parts.append(f * k_count + per_wire_index)
        if not img_parts:
            raise ValueError("no frames")
        n_frames = len(img_parts)
        return cls(
            image_points=np.concatenate(img_parts, axis=0),
            line_a=np.tile(wa, (n_frames, 1)),
            line_b=np.tile(wb, (n_frames, 1)),
            probe_to_phantom=np.concatenate(pose_parts, axis=0),
            indices=np.concatenate(idx_parts, axis=0),
        )


def _indices_or_range(indices: np.ndarray | None, n: int) -> np.ndarray:
    if indices is None:
        return np.arange(n, dtype=np.int64)
    idx = np.asarray(indices, dtype=np.int64).reshape(-1)
    if idx.size != n:
        raise ValueError(f"indices must have length {n}, got {idx.size}")
    return idx


def retained_mask(indices: np.ndarray, outliers: Iterable[int] | None) -> np.ndarray:
    """Boolean mask of the entries whose index is not in `outliers`."""
    if outliers is None:
        return np.ones(indices.shape, dtype=bool)
    excluded = np.fromiter((int(i) for i in outliers), dtype=np.int64)
    return ~np.isin(indices, excluded)
