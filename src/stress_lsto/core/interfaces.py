"""Data records and collaborator contracts consumed by the optimisation loop.

The loop only talks to its collaborators through these protocols, so the
reference engines of this package and test stubs are interchangeable.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Callable, List, Protocol, Sequence

import numpy as np


@dataclass
class BoundaryPoint:
    """A point of the discretised zero contour.

    Attributes
    ----------
    coord : (2,) float
        Position in grid units.
    length : float
        Boundary length integrated by this point (half of each adjacent segment).
    sensitivities : list of float
        Index 0 is the objective sensitivity, index i >= 1 the sensitivity of
        constraint i. Both are derivatives with respect to the normal velocity
        (positive velocity removes material).
    velocity : float
        Normal velocity assigned by the velocity optimiser.
    """
    coord: np.ndarray
    length: float = 0.0
    sensitivities: List[float] = field(default_factory=list)
    velocity: float = 0.0


@dataclass
class OptimizerResult:
    """Outcome of one constrained velocity sub-problem."""
    velocities: np.ndarray
    lambdas: List[float]
    time_step: float


class StructuralSolver(Protocol):
    def solve(self, area_fractions: np.ndarray, load: np.ndarray, fixed_dofs: np.ndarray) -> np.ndarray:
        ...


class SensitivityEngine(Protocol):
    objective: float
    von_mises_max: float
    boundary_sensitivities: List[float]

    def compute_element_sensitivities(self, objective_type: str, p_norm: float) -> None:
        ...

    def interpolate_at_point(self, coord: Sequence[float], radius: float, objective_type: str, p_norm: float) -> float:
        ...

    def clear_boundary_sensitivities(self) -> None:
        ...


class GeometryEngine(Protocol):
    width: float
    height: float

    @property
    def area(self) -> float:
        ...

    def discretize_boundary(self, n_constraints: int) -> List[BoundaryPoint]:
        ...

    def compute_area_fractions(self) -> np.ndarray:
        ...

    def extend_velocities(self, points: Sequence[BoundaryPoint]) -> None:
        ...

    def compute_gradients(self) -> None:
        ...

    def advance(self, time_step: float) -> bool:
        ...

    def reinitialize(self) -> None:
        ...


class VelocityOptimizer(Protocol):
    def configure(
        self,
        length_x: float,
        length_y: float,
        boundary_area: float,
        mesh_area: float,
        max_area: float,
        constraint_distances: Sequence[float],
    ) -> None:
        ...

    def solve(self, reduced_move_limit: float) -> OptimizerResult:
        ...


# (points, move_limit) -> optimiser for this iteration
OptimizerFactory = Callable[[List[BoundaryPoint], float], VelocityOptimizer]
