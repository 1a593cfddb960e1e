"""Stress and compliance sensitivity analysis for the area-fraction FE model.

This module provides StressSensitivityAnalysis, which evaluates the objective
after an FE solve, computes Gauss-point sensitivities with respect to the
element area fraction (adjoint method) and interpolates them to boundary points
by weighted least squares.

Notes
-----
- Stress objective: J = (Σ_g w σvm_g^p)^(1/p) with σ_g = a_e D B_g u_e, the
  area-fraction-scaled von Mises stress at the 2x2 Gauss points.
- Adjoint: K λ = -∂J/∂u, then dJ/da_e = ∂J/∂a_e + λ_e^T K_e^0 u_e.
- Gauss-point densities s_g satisfy dJ/da_e = w Σ_g s_g.
- Compliance objective: J = f^T u, s_g = -u_e^T B_g^T D B_g u_e.
"""

from __future__ import annotations

from typing import List, Optional, Sequence

import numpy as np
from scipy.spatial import cKDTree

from stress_lsto.core.config import OBJECTIVE_TYPES
from stress_lsto.core.fem_plane import GAUSS_WEIGHT, PlaneStressFESolver

# plane-stress von Mises: σvm^2 = σ^T V σ
VON_MISES = np.array([
    [1.0, -0.5, 0.0],
    [-0.5, 1.0, 0.0],
    [0.0, 0.0, 3.0],
])


class StressSensitivityAnalysis:
    """Objective value, Gauss-point sensitivities and boundary interpolation.

    Parameters
    ----------
    solver : PlaneStressFESolver
        Solver whose last solution is analysed; also used for the adjoint solve.
    min_area_fraction : float
        Gauss points of elements below this area fraction are ignored by the
        boundary interpolation.
    """

    def __init__(self, solver: PlaneStressFESolver, min_area_fraction: float = 1e-3) -> None:
        self.solver = solver
        self.min_area_fraction = float(min_area_fraction)
        self.objective = 0.0
        self.von_mises_max = 0.0
        self.boundary_sensitivities: List[float] = []
        self.gauss_sensitivities: Optional[np.ndarray] = None
        self.element_sensitivities: Optional[np.ndarray] = None
        self._objective_type: Optional[str] = None
        self._p_norm: Optional[float] = None
        self._tree: Optional[cKDTree] = None
        self._sample_coords: Optional[np.ndarray] = None
        self._sample_values: Optional[np.ndarray] = None
        self._sample_weights: Optional[np.ndarray] = None

    def compute_element_sensitivities(self, objective_type: str, p_norm: float) -> None:
        """Evaluate the objective and the Gauss-point sensitivities of the last FE solve."""
        if objective_type not in OBJECTIVE_TYPES:
            raise ValueError(f"Unknown objective type '{objective_type}', expected one of {OBJECTIVE_TYPES}")
        fe = self.solver
        if fe.displacement is None or fe.area_fractions is None:
            raise RuntimeError("The FE model has not been solved yet")
        a = fe.area_fractions
        ue = fe.element_displacements()
        # Gauss-point strains B_g u_e and solid-material stresses
        strain = np.einsum("gik,ek->egi", fe.B_gauss, ue)
        sigma_solid = np.einsum("ij,egj->egi", fe.D, strain)

        sigma = a[:, None, None] * sigma_solid
        vm = np.sqrt(np.maximum(np.einsum("egi,ij,egj->eg", sigma, VON_MISES, sigma), 0.0))
        self.von_mises_max = float(vm.max())

        if objective_type == "compliance":
            self.objective = fe.compliance()
            gp = -fe.thickness * np.einsum("egi,egi->eg", strain, sigma_solid)
        else:
            p = float(p_norm)
            if p < 2.0:
                raise ValueError(f"p-norm exponent must be >= 2, got {p}")
            self.objective = self._p_norm_stress(vm, p)
            if self.objective <= 0.0:
                raise RuntimeError("Stress p-norm is zero; the structure carries no load")
            J = self.objective
            ratio = vm / J
            # ∂J/∂u_e = w Σ_g (σvm/J)^(p-2) / J * a_e B_g^T D V σ_g
            dvm = np.einsum("ij,jk,egk->egi", fe.D, VON_MISES, sigma)
            dJ_due = GAUSS_WEIGHT / J * np.einsum(
                "eg,gik,egi->ek", ratio ** (p - 2.0) * a[:, None], fe.B_gauss, dvm
            )
            rhs = np.bincount(fe.edof.ravel(), weights=dJ_due.ravel(), minlength=fe.ndof)
            lam = fe.solve_adjoint(-rhs)
            lam_strain = np.einsum("gik,ek->egi", fe.B_gauss, lam[fe.edof])
            explicit = J * ratio ** p / a[:, None]
            gp = explicit + fe.thickness * np.einsum("egi,egi->eg", lam_strain, sigma_solid)

        self.gauss_sensitivities = gp
        self.element_sensitivities = GAUSS_WEIGHT * gp.sum(axis=1)
        self._objective_type = objective_type
        self._p_norm = float(p_norm)

        keep = a >= self.min_area_fraction
        coords = fe.gauss_point_coords()[keep].reshape(-1, 2)
        self._sample_coords = coords
        self._sample_values = gp[keep].ravel()
        self._sample_weights = np.repeat(a[keep], gp.shape[1])
        self._tree = cKDTree(coords) if len(coords) else None

    def interpolate_at_point(self, coord: Sequence[float], radius: float, objective_type: str, p_norm: float) -> float:
        """Weighted least-squares (linear) fit of Gauss-point sensitivities evaluated at `coord`."""
        if self._objective_type is None:
            raise RuntimeError("compute_element_sensitivities() must be called before interpolation")
        if objective_type != self._objective_type or float(p_norm) != self._p_norm:
            raise ValueError(
                f"Sensitivities were computed for ({self._objective_type}, p={self._p_norm}), "
                f"not ({objective_type}, p={p_norm})"
            )
        x = np.asarray(coord, dtype=float)
        idx = self._tree.query_ball_point(x, r=float(radius)) if self._tree is not None else []
        if len(idx) == 0:
            raise RuntimeError(
                f"No Gauss points within radius {radius} of boundary point ({x[0]:.3f}, {x[1]:.3f})"
            )
        idx = np.asarray(idx, dtype=np.int64)
        d = self._sample_coords[idx] - x[None, :]
        dist = np.linalg.norm(d, axis=1)
        w = self._sample_weights[idx] / np.maximum(dist, 1e-3)
        vals = self._sample_values[idx]

        if len(idx) < 3:
            # too few samples for a plane fit
            value = float(np.dot(w, vals) / np.sum(w))
        else:
            A = np.column_stack([np.ones(len(idx)), d[:, 0], d[:, 1]])
            sw = np.sqrt(w)
            coef, _, rank, _ = np.linalg.lstsq(A * sw[:, None], vals * sw, rcond=None)
            value = float(coef[0]) if rank == 3 else float(np.dot(w, vals) / np.sum(w))

        self.boundary_sensitivities.append(value)
        return value

    def clear_boundary_sensitivities(self) -> None:
        self.boundary_sensitivities.clear()

    @staticmethod
    def _p_norm_stress(vm: np.ndarray, p: float) -> float:
        # factor out the maximum to keep σ^p in range
        vmax = float(vm.max())
        if vmax <= 0.0:
            return 0.0
        return vmax * float(np.sum(GAUSS_WEIGHT * (vm / vmax) ** p)) ** (1.0 / p)
