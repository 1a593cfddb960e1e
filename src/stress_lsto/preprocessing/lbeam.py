"""
L-beam problem setup
====================

Builds the collaborators of the stress minimisation study on an L-shaped
domain:

- structured Q4 plane-stress mesh covering the bounding square
- top-right quadrant beyond the inner corner removed from the design domain
- top edge clamped in x and y
- downward point load shared by the nodes at the right tip, at 2/5 of the height
- small region around the load kept solid
- circular holes seeding the initial design

Mesh area is the area of the L: w * h - (w - corner_x) * (h - corner_y).
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Optional

import numpy as np

from stress_lsto.core.config import ProblemConfig
from stress_lsto.core.fem_plane import PlaneStressFESolver
from stress_lsto.core.interfaces import OptimizerFactory
from stress_lsto.core.levelset import Hole, LevelSetGeometry
from stress_lsto.optimization.sensitivity import StressSensitivityAnalysis
from stress_lsto.optimization.velocity_optimizer import BoundaryVelocityOptimizer
from stress_lsto.orchestrator import LevelSetOrchestrator
from stress_lsto.postprocessing.writers import ResultsWriter

REGION_PAD = 0.01


@dataclass
class LBeamProblem:
    """Every collaborator of the loop plus the load/boundary-condition data."""
    cfg: ProblemConfig
    solver: PlaneStressFESolver
    sensitivity: StressSensitivityAnalysis
    geometry: LevelSetGeometry
    optimizer_factory: OptimizerFactory
    load: np.ndarray
    fixed_dofs: np.ndarray
    mesh_area: float

    def orchestrator(
        self, writer: Optional[ResultsWriter] = None, logger: Optional[logging.Logger] = None
    ) -> LevelSetOrchestrator:
        return LevelSetOrchestrator(
            self.cfg,
            self.solver,
            self.sensitivity,
            self.geometry,
            self.optimizer_factory,
            self.load,
            self.fixed_dofs,
            self.mesh_area,
            writer=writer,
            logger=logger,
        )


def build_lbeam_problem(cfg: ProblemConfig) -> LBeamProblem:
    cfg.validate()
    nx, ny = cfg.mesh.num_elem_x, cfg.mesh.num_elem_y
    lb = cfg.lbeam

    solver = PlaneStressFESolver(nx, ny, E=cfg.material.E, nu=cfg.material.nu, thickness=cfg.material.thickness)

    # top edge clamped
    clamped = solver.get_nodes_by_coordinates((0.0, float(ny)), (nx + 0.1, lb.clamp_tol_y))
    fixed_dofs = solver.dof(clamped)

    # tip load shared equally by the nodes found around the load point
    load_x, load_y = float(nx), ny * lb.load_height_ratio
    loaded = solver.get_nodes_by_coordinates((load_x, load_y), lb.load_tol)
    if len(loaded) == 0:
        raise ValueError(f"No nodes found around the load point ({load_x}, {load_y})")
    load = np.zeros(solver.ndof)
    load[2 * loaded + 1] = lb.load_total / len(loaded)

    corner_x, corner_y = nx * lb.inner_corner_ratio, ny * lb.inner_corner_ratio
    kill = ((corner_x + REGION_PAD, corner_y + REGION_PAD), (nx + REGION_PAD, ny + REGION_PAD))
    tol_x, tol_y = lb.fixed_region_tol
    keep = ((nx - tol_x, load_y - tol_y), (nx + REGION_PAD, load_y + REGION_PAD))

    ls = cfg.levelset
    geometry = LevelSetGeometry(
        nx,
        ny,
        holes=[Hole(*h) for h in lb.holes],
        move_limit=ls.move_limit,
        band_width=ls.band_width,
        area_subsamples=ls.area_subsamples,
        kill_regions=[kill],
        fixed_regions=[keep],
    )
    geometry.reinitialize()

    mesh_area = float(nx * ny - (nx - corner_x) * (ny - corner_y))

    return LBeamProblem(
        cfg=cfg,
        solver=solver,
        sensitivity=StressSensitivityAnalysis(solver),
        geometry=geometry,
        optimizer_factory=BoundaryVelocityOptimizer,
        load=load,
        fixed_dofs=fixed_dofs,
        mesh_area=mesh_area,
    )
