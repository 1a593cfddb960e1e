"""Optimisation loop building blocks.

Exports
-------
StressSensitivityAnalysis : p-norm stress / compliance sensitivities and boundary interpolation
BoundaryVelocityOptimizer : Constrained steepest-descent boundary velocities
ConvergenceTracker : Objective history and windowed relative difference
ReinitializationScheduler : Forced signed-distance reinitialisation policy
map_boundary_sensitivities : Analysis-mesh to boundary-point sensitivity projection
"""

from .convergence import ConvergenceTracker, windowed_relative_difference
from .reinit import ReinitializationScheduler, decide_reinitialization
from .sensitivity import StressSensitivityAnalysis
from .sensitivity_mapper import map_boundary_sensitivities
from .velocity_optimizer import BoundaryVelocityOptimizer

__all__ = [
    "ConvergenceTracker",
    "windowed_relative_difference",
    "ReinitializationScheduler",
    "decide_reinitialization",
    "StressSensitivityAnalysis",
    "map_boundary_sensitivities",
    "BoundaryVelocityOptimizer",
]
