"""Constrained boundary-velocity sub-problem solved once per iteration.

Sensitivities follow the BoundaryPoint convention: derivatives with respect to
the normal velocity, positive velocity removing material. For the area
constraint the sentinel sensitivity -1 is the unit area change per length.

Notes
-----
- Velocity: V_i(λ) = clip(-m (ŝ0_i + λ s1_i), -m, m), ŝ0 = s0 / max|s0|.
- Predicted area change: ΔA(λ) = dt Σ s1_i V_i(λ) l_i  (non-increasing in λ).
- λ = 0 if ΔA(0) <= constraint distance, otherwise ΔA(λ) = target with the
  target clamped to the reachable range; solved by Newton-Raphson safeguarded
  with bisection.
"""

from __future__ import annotations

from typing import List, Optional, Sequence

import numpy as np

from stress_lsto.core.interfaces import BoundaryPoint, OptimizerResult


class BoundaryVelocityOptimizer:
    """Steepest-descent boundary velocities under one area constraint.

    Parameters
    ----------
    points : list of BoundaryPoint
        Current boundary with objective and constraint sensitivities.
    move_limit : float
        Global CFL move limit; the time step keeps |V| dt within it.
    max_newton_iter : int
        Iteration cap of the multiplier search.
    tol : float
        Absolute tolerance on the area mismatch, relative to the boundary length.
    """

    def __init__(self, points: List[BoundaryPoint], move_limit: float, max_newton_iter: int = 100, tol: float = 1e-10) -> None:
        self.points = points
        self.move_limit = float(move_limit)
        self.max_newton_iter = int(max_newton_iter)
        self.tol = float(tol)
        self.length_x = 0.0
        self.length_y = 0.0
        self.boundary_area = 0.0
        self.mesh_area = 0.0
        self.max_area = 1.0
        self.constraint_distances: List[float] = []
        self.lambdas: List[float] = []
        self.time_step: Optional[float] = None

    def configure(
        self,
        length_x: float,
        length_y: float,
        boundary_area: float,
        mesh_area: float,
        max_area: float,
        constraint_distances: Sequence[float],
    ) -> None:
        self.length_x = float(length_x)
        self.length_y = float(length_y)
        self.boundary_area = float(boundary_area)
        self.mesh_area = float(mesh_area)
        self.max_area = float(max_area)
        self.constraint_distances = [float(c) for c in constraint_distances]

    def solve(self, reduced_move_limit: float) -> OptimizerResult:
        if not self.points:
            raise ValueError("Velocity optimisation needs at least one boundary point")
        if len(self.constraint_distances) != 1:
            raise ValueError(
                f"Exactly one constraint distance is supported, got {len(self.constraint_distances)}; "
                "call configure() first"
            )
        m = float(reduced_move_limit)
        if m <= 0.0:
            raise ValueError(f"Reduced move limit must be positive, got {m}")

        s0 = np.array([p.sensitivities[0] for p in self.points], dtype=float)
        s1 = np.array([p.sensitivities[1] for p in self.points], dtype=float)
        lengths = np.array([p.length for p in self.points], dtype=float)
        if not (np.all(np.isfinite(s0)) and np.all(np.isfinite(s1))):
            raise ValueError("Boundary sensitivities must be finite")

        dt = 1.0 if m <= self.move_limit else self.move_limit / m
        scale = float(np.max(np.abs(s0)))
        s0_hat = s0 / scale if scale > 0.0 else np.zeros_like(s0)

        def velocities(lam: float) -> np.ndarray:
            return np.clip(-m * (s0_hat + lam * s1), -m, m)

        def area_change(lam: float) -> float:
            return float(dt * np.sum(s1 * velocities(lam) * lengths))

        target = self.constraint_distances[0]
        lam = 0.0
        if area_change(0.0) > target:
            nonzero = np.abs(s1) > 0.0
            if not np.any(nonzero):
                raise ValueError("Constraint sensitivities are all zero; the area constraint cannot be enforced")
            # every velocity saturates beyond lam_hi
            lam_hi = float(np.max((1.0 + np.abs(s0_hat[nonzero])) / np.abs(s1[nonzero])))
            target = max(target, area_change(lam_hi))
            lam = self._find_multiplier(area_change, velocities, s1, lengths, dt, m, target, lam_hi)

        vel = velocities(lam)
        for p, v in zip(self.points, vel):
            p.velocity = float(v)
        self.lambdas = [lam]
        self.time_step = dt
        return OptimizerResult(velocities=vel, lambdas=[lam], time_step=dt)

    def _find_multiplier(self, area_change, velocities, s1, lengths, dt, m, target, lam_hi) -> float:
        """Root of ΔA(λ) = target in [0, lam_hi]; ΔA(0) > target >= ΔA(lam_hi)."""
        lo, hi = 0.0, lam_hi
        tol = self.tol * max(1.0, float(np.sum(lengths)))
        lam = 0.0
        for _ in range(self.max_newton_iter):
            resid = area_change(lam) - target
            if abs(resid) <= tol:
                return lam
            if resid > 0.0:
                lo = lam
            else:
                hi = lam
            v = velocities(lam)
            unclipped = np.abs(v) < m
            slope = float(-dt * m * np.sum(s1[unclipped] ** 2 * lengths[unclipped]))
            step_ok = slope < 0.0
            if step_ok:
                lam_new = lam - resid / slope
                step_ok = lo < lam_new < hi
            lam = lam_new if step_ok else 0.5 * (lo + hi)
        return lam if area_change(lam) <= target + tol else hi
