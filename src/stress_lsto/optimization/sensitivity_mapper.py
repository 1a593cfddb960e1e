"""Projection of analysis-mesh sensitivities onto boundary points."""

from __future__ import annotations

from typing import Sequence

from stress_lsto.core.interfaces import BoundaryPoint, SensitivityEngine


def map_boundary_sensitivities(
    points: Sequence[BoundaryPoint],
    engine: SensitivityEngine,
    radius: float,
    objective_type: str,
    p_norm: float,
    n_constraints: int = 1,
    constraint_gradient: float = -1.0,
) -> None:
    """
    Assign each boundary point its objective and constraint sensitivities.

    The interpolated engine value is negated into `sensitivities[0]`;
    `sensitivities[1..n_constraints]` receive the constant constraint gradient.
    Engine errors (e.g. no samples inside `radius`) propagate. The engine's
    per-call buffer is cleared once every point has been processed.
    """
    for point in points:
        value = engine.interpolate_at_point(point.coord, radius, objective_type, p_norm)
        point.sensitivities = [-float(value)] + [float(constraint_gradient)] * n_constraints
    engine.clear_boundary_sensitivities()
