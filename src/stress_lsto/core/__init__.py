"""Configuration, collaborator contracts, FE solver and level-set geometry."""

from .config import (
    LBeamConfig,
    LevelSetConfig,
    LoopConfig,
    MaterialConfig,
    MeshConfig,
    OutputConfig,
    ProblemConfig,
    SensitivityConfig,
    load_config,
)
from .fem_plane import PlaneStressFESolver
from .interfaces import BoundaryPoint, OptimizerResult
from .levelset import Hole, LevelSetGeometry

__all__ = [
    'LBeamConfig',
    'LevelSetConfig',
    'LoopConfig',
    'MaterialConfig',
    'MeshConfig',
    'OutputConfig',
    'ProblemConfig',
    'SensitivityConfig',
    'load_config',
    'PlaneStressFESolver',
    'BoundaryPoint',
    'OptimizerResult',
    'Hole',
    'LevelSetGeometry',
]
