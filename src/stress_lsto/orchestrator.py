"""High-level orchestrator for the level-set stress minimisation loop.

This module provides LevelSetOrchestrator, which sequences one optimisation
iteration over its collaborators and repeats it until the design converges or
the iteration ceiling is reached.

Workflow of one iteration
-------------------------
1. discretise the zero contour into boundary points
2. area fractions (clamped from below) -> FE solve
3. element sensitivities -> boundary-point sensitivities
4. constrained velocity sub-problem
5. velocity extension, upwind gradients, advection, reinitialisation policy
6. objective history, convergence metric, iteration record and snapshots
"""

from __future__ import annotations

import enum
import logging
from dataclasses import dataclass, field
from typing import List, Optional

import numpy as np

from stress_lsto.core.config import ProblemConfig
from stress_lsto.core.interfaces import (
    GeometryEngine,
    OptimizerFactory,
    SensitivityEngine,
    StructuralSolver,
)
from stress_lsto.optimization.convergence import ConvergenceTracker
from stress_lsto.optimization.reinit import ReinitializationScheduler
from stress_lsto.optimization.sensitivity_mapper import map_boundary_sensitivities
from stress_lsto.postprocessing.writers import IterationRecord, ResultsWriter
from stress_lsto.utils.logging_utils import get_logger

N_CONSTRAINTS = 1


class RunStatus(enum.Enum):
    RUNNING = "running"
    TERMINATED = "terminated"


@dataclass
class OptimizationRun:
    """Mutable state of one optimisation run.

    Attributes
    ----------
    convergence : ConvergenceTracker
        Objective history and windowed relative difference.
    reinit_counter : int
        Iterations since the last signed-distance reinitialisation.
    time : float
        Sum of the advection time steps.
    lambdas : list of float
        Lagrange multipliers of the last velocity sub-problem.
    records : list of IterationRecord
        One record per completed iteration.
    """
    convergence: ConvergenceTracker
    reinit_counter: int = 0
    time: float = 0.0
    lambdas: List[float] = field(default_factory=list)
    records: List[IterationRecord] = field(default_factory=list)
    status: RunStatus = RunStatus.RUNNING
    converged: bool = False
    termination_reason: Optional[str] = None

    @property
    def iteration(self) -> int:
        return self.convergence.iteration

    @property
    def history(self) -> List[float]:
        return self.convergence.history

    @property
    def relative_difference(self) -> float:
        return self.convergence.relative_difference


def clamp_area_fractions(raw: np.ndarray, floor: float = 1e-6) -> np.ndarray:
    """Element area fractions raised to at least `floor`; the input is not modified."""
    return np.maximum(np.asarray(raw, dtype=float), float(floor))


def constraint_distance(max_area: float, mesh_area: float, area: float) -> float:
    """Allowed material area minus the current structural area."""
    return float(max_area) * float(mesh_area) - float(area)


class LevelSetOrchestrator:
    """Drives the optimisation loop over injected collaborators.

    Parameters
    ----------
    cfg : ProblemConfig
        Loop, sensitivity and level-set settings.
    solver : StructuralSolver
        Solves the state equation for given area fractions.
    sensitivity : SensitivityEngine
        Objective value and sensitivities of the last solve.
    geometry : GeometryEngine
        Level-set field and its boundary.
    optimizer_factory : OptimizerFactory
        Builds the velocity optimiser of an iteration from (points, move_limit).
    load, fixed_dofs : ndarray
        Load vector and Dirichlet DOFs built at setup.
    mesh_area : float
        Total area of the design domain.
    writer : ResultsWriter, optional
        Opened history/snapshot writer; nothing is persisted without one.
    """

    def __init__(
        self,
        cfg: ProblemConfig,
        solver: StructuralSolver,
        sensitivity: SensitivityEngine,
        geometry: GeometryEngine,
        optimizer_factory: OptimizerFactory,
        load: np.ndarray,
        fixed_dofs: np.ndarray,
        mesh_area: float,
        writer: Optional[ResultsWriter] = None,
        logger: Optional[logging.Logger] = None,
    ) -> None:
        if mesh_area <= 0.0:
            raise ValueError(f"Mesh area must be positive, got {mesh_area}")
        self.cfg = cfg
        self.solver = solver
        self.sensitivity = sensitivity
        self.geometry = geometry
        self.optimizer_factory = optimizer_factory
        self.load = load
        self.fixed_dofs = fixed_dofs
        self.mesh_area = float(mesh_area)
        self.writer = writer
        self.logger = logger or get_logger(__name__, cfg.output.log_level)
        self.scheduler = ReinitializationScheduler(cfg.loop.reinit_skip_limit)

    def new_run(self) -> OptimizationRun:
        loop = self.cfg.loop
        return OptimizationRun(ConvergenceTracker(loop.convergence_window, loop.convergence_tol))

    def step(self, run: OptimizationRun) -> IterationRecord:
        """Perform one iteration and update `run`; returns the iteration record."""
        loop, sens = self.cfg.loop, self.cfg.sensitivity
        geometry = self.geometry

        points = geometry.discretize_boundary(N_CONSTRAINTS)
        area_fractions = clamp_area_fractions(geometry.compute_area_fractions(), loop.area_fraction_floor)
        area = geometry.area

        self.solver.solve(area_fractions, self.load, self.fixed_dofs)
        self.sensitivity.compute_element_sensitivities(sens.objective_type, sens.p_norm)
        map_boundary_sensitivities(
            points,
            self.sensitivity,
            sens.interpolation_radius,
            sens.objective_type,
            sens.p_norm,
            n_constraints=N_CONSTRAINTS,
            constraint_gradient=sens.constraint_gradient,
        )

        distance = constraint_distance(loop.max_area, self.mesh_area, area)
        optimizer = self.optimizer_factory(points, self.cfg.levelset.move_limit)
        optimizer.configure(geometry.width, geometry.height, area, self.mesh_area, loop.max_area, [distance])
        result = optimizer.solve(loop.reduced_move_limit)

        geometry.extend_velocities(points)
        geometry.compute_gradients()
        engine_reinitialized = geometry.advance(result.time_step)
        forced, run.reinit_counter = self.scheduler.apply(geometry, run.reinit_counter, engine_reinitialized)
        if engine_reinitialized or forced:
            self.logger.debug("Reinitialised level set (%s)", "advection" if engine_reinitialized else "scheduled")

        run.time += result.time_step
        run.lambdas = list(result.lambdas)

        area_fraction = area / self.mesh_area
        relative_difference = run.convergence.update(self.sensitivity.objective)
        record = IterationRecord(
            iteration=run.iteration,
            objective=float(self.sensitivity.objective),
            max_stress=float(self.sensitivity.von_mises_max),
            area_fraction=float(area_fraction),
            relative_difference=float(relative_difference),
        )
        run.records.append(record)
        self._emit(record, run)
        return record

    def is_converged(self, run: OptimizationRun, record: IterationRecord) -> bool:
        loop = self.cfg.loop
        return run.convergence.is_stable() and record.area_fraction <= loop.area_tol_factor * loop.max_area

    def run(self, run: Optional[OptimizationRun] = None) -> OptimizationRun:
        """Iterate until convergence or `loop.max_iter`; returns the terminated run."""
        run = run or self.new_run()
        max_iter = self.cfg.loop.max_iter
        self.logger.info(
            "Starting optimisation: max_iter=%d, max_area=%.3f, objective=%s (p=%g)",
            max_iter, self.cfg.loop.max_area, self.cfg.sensitivity.objective_type, self.cfg.sensitivity.p_norm,
        )
        if self.writer is not None and run.iteration == 0:
            self.writer.write_snapshot(0, self.geometry)

        while run.status is RunStatus.RUNNING:
            record = self.step(run)
            if self.is_converged(run, record):
                run.converged = True
                run.termination_reason = "converged"
            elif run.iteration >= max_iter:
                run.termination_reason = "max_iterations"
            if run.termination_reason is not None:
                run.status = RunStatus.TERMINATED

        if run.converged:
            self.logger.info("Converged after %d iterations (time %.4g)", run.iteration, run.time)
        else:
            self.logger.warning(
                "Stopped at the iteration ceiling (%d) without convergence; last change %.3e",
                run.iteration, run.relative_difference,
            )
        return run

    def _emit(self, record: IterationRecord, run: OptimizationRun) -> None:
        self.logger.info(
            "it=%4d  obj=%.6e  vm_max=%.6e  area=%.4f  change=%.3e  lambda=%s",
            record.iteration, record.objective, record.max_stress, record.area_fraction,
            record.relative_difference, ", ".join(f"{v:.4g}" for v in run.lambdas),
        )
        if self.writer is not None:
            self.writer.write_record(record)
            self.writer.write_snapshot(record.iteration, self.geometry)
