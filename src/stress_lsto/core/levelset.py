"""
Level-set geometry engine on a structured grid.

The nodal field φ lives on the (nelx + 1) x (nely + 1) nodes of the analysis
grid and is negative inside the solid. The engine provides what the
optimisation loop needs from the geometry:

- marching-squares discretisation of the zero contour into boundary points
- element area fractions (bilinear φ sub-sampled inside each element)
- extension of boundary-point velocities to the narrow band
- first-order Godunov upwind gradients and explicit advection
- reinitialisation to a signed distance function from the discrete contour

Nodes can be killed (outside the design domain, e.g. the cut-out quadrant of an
L-beam) or fixed (never advected, e.g. material around a load point).
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import List, Optional, Sequence, Tuple

import numpy as np
from scipy.spatial import cKDTree

from stress_lsto.core.interfaces import BoundaryPoint

Region = Tuple[Tuple[float, float], Tuple[float, float]]


@dataclass
class Hole:
    """Circular void used to seed the initial design."""
    x: float
    y: float
    r: float


class LevelSetGeometry:
    """
    Narrow-band level set with boundary discretisation and area fractions.

    Parameters
    ----------
    nelx, nely : int
        Grid size in elements (unit spacing).
    holes : sequence of Hole
        Initial circular holes; without holes the domain starts fully solid.
    move_limit : float
        CFL limit enforced by `advance` (largest |V| * dt).
    band_width : float
        Half-width of the narrow band.
    area_subsamples : int
        Sub-cells per element side for the area-fraction integration.
    kill_regions : sequence of ((x0, y0), (x1, y1))
        Boxes whose nodes are removed from the design domain.
    fixed_regions : sequence of ((x0, y0), (x1, y1))
        Boxes whose nodes are never advected.
    """

    def __init__(
        self,
        nelx: int,
        nely: int,
        holes: Sequence[Hole] = (),
        move_limit: float = 0.5,
        band_width: float = 6.0,
        area_subsamples: int = 8,
        kill_regions: Sequence[Region] = (),
        fixed_regions: Sequence[Region] = (),
    ) -> None:
        self.nelx = int(nelx)
        self.nely = int(nely)
        self.width = float(self.nelx)
        self.height = float(self.nely)
        self.move_limit = float(move_limit)
        self.band_width = float(band_width)
        self.area_subsamples = int(area_subsamples)

        self._X, self._Y = np.meshgrid(
            np.arange(self.nelx + 1, dtype=float), np.arange(self.nely + 1, dtype=float)
        )
        self.active = np.ones(self._X.shape, dtype=bool)
        for region in kill_regions:
            self.active &= ~self._in_region(region)
        self.fixed = np.zeros(self._X.shape, dtype=bool)
        for region in fixed_regions:
            self.fixed |= self._in_region(region)
        self.fixed &= self.active
        self.element_active = (
            self.active[:-1, :-1] & self.active[:-1, 1:] & self.active[1:, 1:] & self.active[1:, :-1]
        )

        phi = np.full(self._X.shape, -float(max(self.nelx, self.nely)))
        for hole in holes:
            phi = np.maximum(phi, hole.r - np.hypot(self._X - hole.x, self._Y - hole.y))
        phi[~self.active] = self.band_width
        self._phi = phi

        self._band = np.zeros_like(self.active)
        self._update_band()
        self._points: Optional[np.ndarray] = None
        self._segments: Optional[np.ndarray] = None
        self._area_fractions: Optional[np.ndarray] = None
        self._area: Optional[float] = None
        self._velocity: Optional[np.ndarray] = None
        self._gradient: Optional[np.ndarray] = None

    # ------------------------------------------------------------------
    # Snapshot accessors
    # ------------------------------------------------------------------
    @property
    def phi(self) -> np.ndarray:
        """Nodal level-set values, shape (nely + 1, nelx + 1)."""
        return self._phi.copy()

    @property
    def narrow_band(self) -> np.ndarray:
        return self._band.copy()

    @property
    def area_fractions(self) -> np.ndarray:
        """Raw element area fractions of the last `compute_area_fractions` call."""
        if self._area_fractions is None:
            raise RuntimeError("Area fractions have not been computed yet")
        return self._area_fractions.copy()

    @property
    def segments(self) -> np.ndarray:
        """Boundary segments of the last discretisation, shape (n_segments, 2, 2)."""
        if self._points is None or self._segments is None:
            return np.zeros((0, 2, 2))
        return self._points[self._segments]

    @property
    def area(self) -> float:
        """Structural area of the current geometry (sum of element area fractions)."""
        if self._area is None:
            raise RuntimeError("Structural area is stale; call compute_area_fractions() on the current geometry")
        return self._area

    # ------------------------------------------------------------------
    # Geometry engine API
    # ------------------------------------------------------------------
    def discretize_boundary(self, n_constraints: int) -> List[BoundaryPoint]:
        """Boundary points of the zero contour, each with room for 1 + n_constraints sensitivities."""
        points, segments = self._contour()
        self._points, self._segments = points, segments
        if len(segments):
            seg_len = np.linalg.norm(points[segments[:, 1]] - points[segments[:, 0]], axis=1)
            lengths = 0.5 * (
                np.bincount(segments[:, 0], weights=seg_len, minlength=len(points))
                + np.bincount(segments[:, 1], weights=seg_len, minlength=len(points))
            )
        else:
            lengths = np.zeros(len(points))
        return [
            BoundaryPoint(coord=points[k].copy(), length=float(lengths[k]), sensitivities=[0.0] * (1 + n_constraints))
            for k in range(len(points))
        ]

    def compute_area_fractions(self) -> np.ndarray:
        """Element area fractions (element e = j * nelx + i) and refresh of `area`."""
        s = self.area_subsamples
        offs = (np.arange(s) + 0.5) / s
        X, Y = np.meshgrid(offs, offs)
        p = self._phi
        c0 = p[:-1, :-1, None, None]
        c1 = p[:-1, 1:, None, None]
        c2 = p[1:, 1:, None, None]
        c3 = p[1:, :-1, None, None]
        sample = c0 * (1 - X) * (1 - Y) + c1 * X * (1 - Y) + c2 * X * Y + c3 * (1 - X) * Y
        frac = np.mean(sample < 0.0, axis=(-2, -1))
        frac[~self.element_active] = 0.0
        self._area_fractions = frac.ravel()
        self._area = float(frac.sum())
        return self._area_fractions.copy()

    def extend_velocities(self, points: Sequence[BoundaryPoint]) -> None:
        """Give every narrow-band node the velocity of its nearest boundary point."""
        if len(points) == 0:
            raise ValueError("Cannot extend velocities without boundary points")
        coords = np.array([p.coord for p in points], dtype=float)
        vel = np.array([p.velocity for p in points], dtype=float)
        band = self._band & self.active
        nodes = np.column_stack([self._X[band], self._Y[band]])
        _, idx = cKDTree(coords).query(nodes)
        velocity = np.zeros_like(self._phi)
        velocity[band] = vel[idx]
        velocity[self.fixed] = 0.0
        self._velocity = velocity

    def compute_gradients(self) -> None:
        """Upwind |∇φ| for φ_t - V|∇φ| = 0 (positive V removes material)."""
        if self._velocity is None:
            raise RuntimeError("extend_velocities() must be called before compute_gradients()")
        dx_l, dx_r, dy_l, dy_r = self._one_sided_differences()
        grad_plus = np.sqrt(
            np.maximum(dx_l, 0) ** 2 + np.minimum(dx_r, 0) ** 2 + np.maximum(dy_l, 0) ** 2 + np.minimum(dy_r, 0) ** 2
        )
        grad_minus = np.sqrt(
            np.minimum(dx_l, 0) ** 2 + np.maximum(dx_r, 0) ** 2 + np.minimum(dy_l, 0) ** 2 + np.maximum(dy_r, 0) ** 2
        )
        # front speed in the φ_t + F|∇φ| = 0 convention
        F = -self._velocity
        self._gradient = np.where(F > 0, grad_plus, grad_minus)

    def advance(self, time_step: float) -> bool:
        """
        Advect φ by one explicit step. Returns True when the front reached the
        outer ring of the narrow band, in which case φ was reinitialised.
        """
        if self._velocity is None or self._gradient is None:
            raise RuntimeError("extend_velocities() and compute_gradients() must precede advance()")
        dt = float(time_step)
        if dt < 0.0:
            raise ValueError(f"Time step must be non-negative, got {dt}")
        v_max = float(np.max(np.abs(self._velocity))) if self._velocity.size else 0.0
        if dt * v_max > self.move_limit * (1.0 + 1e-9):
            raise ValueError(f"Step violates the CFL limit: {dt * v_max:.4g} > {self.move_limit:.4g}")

        movable = self._band & self.active & ~self.fixed
        old = self._phi.copy()
        self._phi[movable] = old[movable] + dt * self._velocity[movable] * self._gradient[movable]

        self._velocity = None
        self._gradient = None
        self._area = None

        outer_ring = movable & (np.abs(old) >= self.band_width - 1.0)
        crossed = outer_ring & (np.sign(old) != np.sign(self._phi))
        if np.any(crossed):
            self.reinitialize()
            return True
        return False

    def reinitialize(self) -> None:
        """Rebuild φ as the signed distance to the current zero contour."""
        points, segments = self._contour()
        inside = self._phi < 0.0
        sign = np.where(inside, -1.0, 1.0)
        if len(segments):
            samples = self._sample_segments(points[segments])
            dist, _ = cKDTree(samples).query(np.column_stack([self._X[self.active], self._Y[self.active]]))
            self._phi[self.active] = sign[self.active] * dist
        else:
            self._phi[self.active] = sign[self.active] * float(max(self.nelx, self.nely))
        self._phi[~self.active] = self.band_width
        self._update_band()
        self._area = None

    # ------------------------------------------------------------------
    # Internals
    # ------------------------------------------------------------------
    def _in_region(self, region: Region) -> np.ndarray:
        (x0, y0), (x1, y1) = region
        return (self._X >= x0) & (self._X <= x1) & (self._Y >= y0) & (self._Y <= y1)

    def _update_band(self) -> None:
        self._band = self.active & (np.abs(self._phi) <= self.band_width)

    def _one_sided_differences(self) -> Tuple[np.ndarray, np.ndarray, np.ndarray, np.ndarray]:
        """Backward/forward differences with zero slope across the grid edge and killed nodes."""
        p = self._phi
        pad = np.pad(p, 1, mode="edge")
        act = np.pad(self.active, 1, mode="constant", constant_values=False)
        left, right = pad[1:-1, :-2], pad[1:-1, 2:]
        down, up = pad[:-2, 1:-1], pad[2:, 1:-1]
        left = np.where(act[1:-1, :-2], left, p)
        right = np.where(act[1:-1, 2:], right, p)
        down = np.where(act[:-2, 1:-1], down, p)
        up = np.where(act[2:, 1:-1], up, p)
        return p - left, right - p, p - down, up - p

    def _contour(self) -> Tuple[np.ndarray, np.ndarray]:
        """Marching squares over active elements: (points (P, 2), segments (S, 2) of point ids)."""
        p = self._phi
        inside = p < 0.0
        act = self.active

        h_cross = act[:, :-1] & act[:, 1:] & (inside[:, :-1] != inside[:, 1:])
        v_cross = act[:-1, :] & act[1:, :] & (inside[:-1, :] != inside[1:, :])
        h_id = -np.ones(h_cross.shape, dtype=np.int64)
        v_id = -np.ones(v_cross.shape, dtype=np.int64)
        n_h = int(h_cross.sum())
        h_id[h_cross] = np.arange(n_h)
        v_id[v_cross] = n_h + np.arange(int(v_cross.sum()))

        hj, hi = np.nonzero(h_cross)
        a, b = p[hj, hi], p[hj, hi + 1]
        h_pts = np.column_stack([hi + a / (a - b), hj.astype(float)])
        vj, vi = np.nonzero(v_cross)
        a, b = p[vj, vi], p[vj + 1, vi]
        v_pts = np.column_stack([vi.astype(float), vj + a / (a - b)])
        points = np.vstack([h_pts, v_pts]) if (n_h or len(v_pts)) else np.zeros((0, 2))

        segments: List[Tuple[int, int]] = []
        cut = self.element_active & (
            (h_id[:-1, :] >= 0) | (h_id[1:, :] >= 0) | (v_id[:, :-1] >= 0) | (v_id[:, 1:] >= 0)
        )
        for j, i in zip(*np.nonzero(cut)):
            bottom, top = h_id[j, i], h_id[j + 1, i]
            left, right = v_id[j, i], v_id[j, i + 1]
            ids = [e for e in (bottom, right, top, left) if e >= 0]
            if len(ids) == 2:
                segments.append((ids[0], ids[1]))
            elif len(ids) == 4:
                # saddle: decide the connectivity from the cell-centre value
                centre = 0.25 * (p[j, i] + p[j, i + 1] + p[j + 1, i + 1] + p[j + 1, i])
                if (centre < 0.0) == inside[j, i]:
                    segments.extend([(bottom, right), (top, left)])
                else:
                    segments.extend([(bottom, left), (right, top)])

        if not segments:
            return np.zeros((0, 2)), np.zeros((0, 2), dtype=np.int64)
        seg = np.asarray(segments, dtype=np.int64)
        used, compact = np.unique(seg, return_inverse=True)
        return points[used], compact.reshape(seg.shape)

    @staticmethod
    def _sample_segments(seg_xy: np.ndarray, spacing: float = 0.1) -> np.ndarray:
        """Points along every segment, no more than `spacing` apart."""
        samples = [seg_xy[:, 0, :], seg_xy[:, 1, :]]
        lengths = np.linalg.norm(seg_xy[:, 1] - seg_xy[:, 0], axis=1)
        n_max = int(np.ceil(lengths.max() / spacing)) if len(lengths) else 0
        for k in range(1, n_max):
            t = k / n_max
            samples.append(seg_xy[:, 0, :] + t * (seg_xy[:, 1, :] - seg_xy[:, 0, :]))
        return np.vstack(samples)
