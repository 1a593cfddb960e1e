"""
Plane-stress FE Solver for level-set topology optimisation.

This module implements a 2D continuum FE back-end on a structured grid of unit
bilinear quadrilaterals whose stiffness is scaled by the element area fraction
computed from the level set (area-fraction / ersatz material method).
"""

from __future__ import annotations
from typing import Callable, Optional, Sequence
import numpy as np
import scipy.sparse as sps
import scipy.sparse.linalg as spla

# natural coordinates of the 2x2 Gauss points (counter-clockwise)
_GP = 1.0 / np.sqrt(3.0)
GAUSS_POINTS = np.array([[-_GP, -_GP], [_GP, -_GP], [_GP, _GP], [-_GP, _GP]])
# weight * det(J) for a unit square element
GAUSS_WEIGHT = 0.25

LINEAR_SOLVERS = ("direct", "pcg")


def plane_stress_matrix(E: float = 1.0, nu: float = 0.3) -> np.ndarray:
    """Constitutive matrix D for plane stress, Voigt order (xx, yy, xy)."""
    return E / (1.0 - nu**2) * np.array([
        [1.0, nu, 0.0],
        [nu, 1.0, 0.0],
        [0.0, 0.0, (1.0 - nu) / 2.0],
    ])


def quad4_strain_displacement(xi: float, eta: float) -> np.ndarray:
    """
    Strain-displacement matrix B (3x8) of a unit square Q4 element at (xi, eta).

    Node order: (0,0), (1,0), (1,1), (0,1); DOF order: u1, v1, u2, v2, ...
    """
    dN_dxi = 0.25 * np.array([-(1 - eta), (1 - eta), (1 + eta), -(1 + eta)])
    dN_deta = 0.25 * np.array([-(1 - xi), -(1 + xi), (1 + xi), (1 - xi)])
    # unit element: x = (1 + xi) / 2, so d/dx = 2 d/dxi
    dN_dx = 2.0 * dN_dxi
    dN_dy = 2.0 * dN_deta
    B = np.zeros((3, 8))
    B[0, 0::2] = dN_dx
    B[1, 1::2] = dN_dy
    B[2, 0::2] = dN_dy
    B[2, 1::2] = dN_dx
    return B


def compute_quad4_ke0(E: float = 1.0, nu: float = 0.3, thickness: float = 1.0) -> np.ndarray:
    """
    Compute the 8x8 reference stiffness matrix of a unit square Q4 element with
    2x2 Gauss quadrature.

    Parameters
    ----------
    E : float
        Young's modulus (default: 1.0 for reference stiffness)
    nu : float
        Poisson's ratio (default: 0.3)
    thickness : float
        Out-of-plane thickness

    Returns
    -------
    ke0 : (8, 8) ndarray
        Symmetric positive semi-definite element stiffness (3 rigid-body modes).
    """
    D = plane_stress_matrix(E, nu)
    ke0 = np.zeros((8, 8))
    for xi, eta in GAUSS_POINTS:
        B = quad4_strain_displacement(xi, eta)
        ke0 += thickness * GAUSS_WEIGHT * (B.T @ D @ B)
    return ke0


class PlaneStressFESolver:
    """
    2D plane-stress FE back-end with area-fraction stiffness scaling.
    - K(a) = Σ a_e K_e^0 on a structured grid of unit Q4 elements
    - Direct sparse LU (factorisation kept for the adjoint solve) or
      matrix-free Jacobi-preconditioned CG
    - Node/DOF lookup by coordinate boxes for supports and loads

    Parameters
    ----------
    nelx, nely : int
        Number of elements along x and y. Element e = j * nelx + i,
        node n = j * (nelx + 1) + i, DOFs (2n, 2n + 1).
    E, nu, thickness : float
        Solid material.
    linear_solver : str
        "direct" or "pcg".
    cg_tol : float
        Relative residual tolerance of the PCG path.
    cg_maxit : Optional[int]
        PCG iteration cap (default 4 * ndof).

    Notes
    -----
    - Area fractions must be strictly positive; the caller clamps void elements
      to a small floor so that K stays non-singular.
    - Stresses returned by `gauss_point_stresses` are those of the solid
      material (not scaled by the area fraction).
    """
    def __init__(
        self,
        nelx: int,
        nely: int,
        E: float = 1.0,
        nu: float = 0.3,
        thickness: float = 1.0,
        linear_solver: str = "direct",
        cg_tol: float = 1e-8,
        cg_maxit: Optional[int] = None,
    ) -> None:
        if linear_solver not in LINEAR_SOLVERS:
            raise ValueError(f"linear_solver must be one of {LINEAR_SOLVERS}, got '{linear_solver}'")
        # --- grid ---
        self.nelx = int(nelx)
        self.nely = int(nely)
        self.ne = self.nelx * self.nely
        self.n_nodes = (self.nelx + 1) * (self.nely + 1)
        self.ndof = 2 * self.n_nodes

        ii, jj = np.meshgrid(np.arange(self.nelx + 1), np.arange(self.nely + 1))
        self.node_coords = np.column_stack([ii.ravel(), jj.ravel()]).astype(float)

        ei, ej = np.meshgrid(np.arange(self.nelx), np.arange(self.nely))
        ei, ej = ei.ravel(), ej.ravel()
        n0 = ej * (self.nelx + 1) + ei
        enodes = np.column_stack([n0, n0 + 1, n0 + self.nelx + 2, n0 + self.nelx + 1])
        self.element_nodes = enodes
        self.edof = np.empty((self.ne, 8), dtype=np.int64)
        self.edof[:, 0::2] = 2 * enodes
        self.edof[:, 1::2] = 2 * enodes + 1
        self.element_origin = np.column_stack([ei, ej]).astype(float)

        # --- material ---
        self.E = float(E)
        self.nu = float(nu)
        self.thickness = float(thickness)
        self.D = plane_stress_matrix(self.E, self.nu)
        self.ke0 = compute_quad4_ke0(self.E, self.nu, self.thickness)
        self.B_gauss = np.stack([quad4_strain_displacement(xi, eta) for xi, eta in GAUSS_POINTS])

        # --- sparse pattern (row-major over ke0) ---
        self._iK = np.repeat(self.edof, 8, axis=1).ravel()
        self._jK = np.tile(self.edof, (1, 8)).ravel()

        self.linear_solver = linear_solver
        self.cg_tol = float(cg_tol)
        self.cg_maxit = int(cg_maxit) if cg_maxit is not None else 4 * self.ndof

        # --- state of the last solve ---
        self.area_fractions: Optional[np.ndarray] = None
        self.load: Optional[np.ndarray] = None
        self.displacement: Optional[np.ndarray] = None
        self._free_dofs: Optional[np.ndarray] = None
        self._solve_free: Optional[Callable[[np.ndarray], np.ndarray]] = None

    # ------------------------------------------------------------------
    # Public API expected by the optimisation loop
    # ------------------------------------------------------------------
    def solve(self, area_fractions: np.ndarray, load: np.ndarray, fixed_dofs: np.ndarray) -> np.ndarray:
        """
        Solve K(a) u = f with homogeneous Dirichlet conditions on `fixed_dofs`.
        Returns full u (including zeros at fixed DOFs).
        """
        a = np.asarray(area_fractions, dtype=float)
        f = np.asarray(load, dtype=float)
        if a.shape != (self.ne,):
            raise ValueError(f"Expected {self.ne} area fractions, got shape {a.shape}")
        if f.shape != (self.ndof,):
            raise ValueError(f"Expected load vector of size {self.ndof}, got shape {f.shape}")
        if np.any(a <= 0.0) or np.any(a > 1.0 + 1e-12):
            raise ValueError("Area fractions must lie in (0, 1]; clamp void elements before solving")

        free = np.setdiff1d(np.arange(self.ndof), np.asarray(fixed_dofs, dtype=np.int64))
        self.area_fractions = a.copy()
        self.load = f.copy()
        self._free_dofs = free

        if self.linear_solver == "direct":
            K = self.assemble_K(a)
            lu = spla.splu(K[free][:, free].tocsc())
            self._solve_free = lu.solve
        else:
            self._solve_free = self._make_pcg_solver(a, free)

        u = np.zeros(self.ndof)
        u[free] = self._solve_free(f[free])
        if not np.all(np.isfinite(u)):
            raise RuntimeError("FE solve produced a non-finite displacement field")
        self.displacement = u
        return u

    def solve_adjoint(self, rhs: np.ndarray) -> np.ndarray:
        """Solve K λ = rhs with the stiffness and supports of the last `solve` (K is symmetric)."""
        if self._solve_free is None:
            raise RuntimeError("solve() must be called before solve_adjoint()")
        rhs = np.asarray(rhs, dtype=float)
        lam = np.zeros(self.ndof)
        lam[self._free_dofs] = self._solve_free(rhs[self._free_dofs])
        if not np.all(np.isfinite(lam)):
            raise RuntimeError("Adjoint solve produced a non-finite field")
        return lam

    def assemble_K(self, area_fractions: np.ndarray) -> sps.csr_matrix:
        """Global stiffness Σ a_e K_e^0 as a sparse matrix."""
        sK = (self.ke0.ravel()[None, :] * np.asarray(area_fractions, dtype=float)[:, None]).ravel()
        return sps.coo_matrix((sK, (self._iK, self._jK)), shape=(self.ndof, self.ndof)).tocsr()

    def element_displacements(self, u: Optional[np.ndarray] = None) -> np.ndarray:
        """Element DOF values, shape (ne, 8)."""
        u = self._require_displacement(u)
        return u[self.edof]

    def gauss_point_stresses(self, u: Optional[np.ndarray] = None) -> np.ndarray:
        """Solid-material stresses (σxx, σyy, τxy) at the Gauss points, shape (ne, 4, 3)."""
        ue = self.element_displacements(u)
        return np.einsum("ij,gjk,ek->egi", self.D, self.B_gauss, ue)

    def gauss_point_coords(self) -> np.ndarray:
        """Physical Gauss point coordinates, shape (ne, 4, 2)."""
        offsets = 0.5 * (1.0 + GAUSS_POINTS)
        return self.element_origin[:, None, :] + offsets[None, :, :]

    def compliance(self, u: Optional[np.ndarray] = None) -> float:
        """Compliance C = f^T u of the last solve."""
        u = self._require_displacement(u)
        return float(np.dot(self.load, u))

    def get_nodes_by_coordinates(self, coord: Sequence[float], tol: Sequence[float]) -> np.ndarray:
        """Nodes with |x - cx| <= tol_x and |y - cy| <= tol_y."""
        c = np.asarray(coord, dtype=float)
        t = np.asarray(tol, dtype=float)
        mask = np.all(np.abs(self.node_coords - c[None, :]) <= t[None, :], axis=1)
        return np.nonzero(mask)[0]

    @staticmethod
    def dof(nodes: Sequence[int]) -> np.ndarray:
        """Interleaved (x, y) DOFs of the given nodes."""
        nodes = np.asarray(nodes, dtype=np.int64)
        return np.column_stack([2 * nodes, 2 * nodes + 1]).ravel()

    # ------------------------------------------------------------------
    # Internals
    # ------------------------------------------------------------------
    def _require_displacement(self, u: Optional[np.ndarray]) -> np.ndarray:
        if u is not None:
            return np.asarray(u, dtype=float)
        if self.displacement is None:
            raise RuntimeError("No displacement available; call solve() first")
        return self.displacement

    def _make_pcg_solver(self, a: np.ndarray, free: np.ndarray) -> Callable[[np.ndarray], np.ndarray]:
        edof_flat = self.edof.ravel()
        ndof = self.ndof

        def matvec(x_free: np.ndarray) -> np.ndarray:
            x = np.zeros(ndof)
            x[free] = x_free
            ye = (x[self.edof] @ self.ke0.T) * a[:, None]
            return np.bincount(edof_flat, weights=ye.ravel(), minlength=ndof)[free]

        diag = np.bincount(edof_flat, weights=(a[:, None] * np.diag(self.ke0)[None, :]).ravel(), minlength=ndof)
        M_inv = 1.0 / (diag[free] + 1e-30)

        def solve_free(b: np.ndarray) -> np.ndarray:
            return self._pcg(matvec, b, M_inv, tol=self.cg_tol, maxit=self.cg_maxit)

        return solve_free

    @staticmethod
    def _pcg(A, b, M_inv, tol=1e-8, maxit=500):
        """
        Preconditioned Conjugate Gradient for SPD systems.
        A : callable(x) -> y
        b : (n,)
        M_inv : (n,) Jacobi preconditioner (approx A^{-1} diagonal)
        Raises RuntimeError when the relative residual does not reach `tol`.
        """
        x = np.zeros_like(b)
        r = b - A(x)
        b_norm = max(1e-30, float(np.linalg.norm(b)))
        if np.linalg.norm(r) / b_norm < tol:
            return x
        z = M_inv * r
        p = z.copy()
        rz_old = float(np.dot(r, z))
        for k in range(maxit):
            Ap = A(p)
            alpha = rz_old / (float(np.dot(p, Ap)) + 1e-30)
            x += alpha * p
            r -= alpha * Ap
            if np.linalg.norm(r) / b_norm < tol:
                return x
            z = M_inv * r
            rz_new = float(np.dot(r, z))
            beta = rz_new / (rz_old + 1e-30)
            p = z + beta * p
            rz_old = rz_new
        raise RuntimeError(
            f"PCG did not converge in {maxit} iterations "
            f"(relative residual {np.linalg.norm(r) / b_norm:.3e} > {tol:.1e})"
        )
