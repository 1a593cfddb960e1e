"""
Configuration dataclasses for the level-set stress minimisation study.

This module contains all configuration classes for the analysis mesh, the
material, the L-beam boundary conditions, the level-set method, the
sensitivity analysis, the optimisation loop and the result output.

Defaults reproduce the reference L-beam study (100 x 100 grid, 40 % area,
p-norm 6, tip load).
"""

from __future__ import annotations

from dataclasses import asdict, dataclass, field, fields
from pathlib import Path
from typing import Any, Dict, List, Tuple

from stress_lsto.utils.io_utils import load_yaml

OBJECTIVE_TYPES = ("compliance", "stress")


@dataclass
class MeshConfig:
    """Structured grid shared by the FE and level-set meshes.

    Attributes
    ----------
    num_elem_x, num_elem_y : int
        Number of unit elements along x and y.
    """
    num_elem_x: int = 100
    num_elem_y: int = 100


@dataclass
class MaterialConfig:
    """Linear elastic, plane-stress material.

    Attributes
    ----------
    E : float
        Young's modulus.
    nu : float
        Poisson's ratio.
    thickness : float
        Out-of-plane thickness.
    """
    E: float = 1.0
    nu: float = 0.3
    thickness: float = 1.0


@dataclass
class LBeamConfig:
    """Geometry, supports and load of the L-beam.

    Attributes
    ----------
    inner_corner_ratio : float
        Inner corner of the L as a fraction of the width; the quadrant above and
        to the right of it is cut away.
    load_height_ratio : float
        Height of the tip load as a fraction of the height.
    load_total : float
        Total vertical load, shared equally by the loaded nodes (negative = down).
    load_tol : (float, float)
        Node search box half-widths around the load position.
    clamp_tol_y : float
        Half-width of the node search box along y for the clamped top edge.
    fixed_region_tol : (float, float)
        Extent of the level-set region kept solid below/left of the load point.
    holes : list of (x, y, r)
        Initial circular holes.
    """
    inner_corner_ratio: float = 0.4
    load_height_ratio: float = 0.4
    load_total: float = -3.0
    load_tol: Tuple[float, float] = (1.1, 0.1)
    clamp_tol_y: float = 0.1
    fixed_region_tol: Tuple[float, float] = (3.01, 2.01)
    holes: List[Tuple[float, float, float]] = field(default_factory=lambda: [
        (20.0, 20.0, 10.0),
        (20.0, 50.0, 10.0),
        (20.0, 80.0, 10.0),
        (50.0, 20.0, 10.0),
        (80.0, 20.0, 10.0),
    ])


@dataclass
class LevelSetConfig:
    """Level-set method settings.

    Attributes
    ----------
    move_limit : float
        CFL limit: largest boundary displacement per iteration, in grid units.
    band_width : float
        Half-width of the narrow band, in grid units.
    area_subsamples : int
        Sub-cells per element side used to integrate area fractions.
    """
    move_limit: float = 0.5
    band_width: float = 6.0
    area_subsamples: int = 8


@dataclass
class SensitivityConfig:
    """Sensitivity analysis settings.

    Attributes
    ----------
    objective_type : str
        "stress" (p-norm von Mises) or "compliance".
    p_norm : float
        Aggregation exponent of the stress p-norm.
    interpolation_radius : float
        Least-squares radius around each boundary point, in grid units.
    constraint_gradient : float
        Sentinel stored as every constraint sensitivity (unit area gradient).
    """
    objective_type: str = "stress"
    p_norm: float = 6.0
    interpolation_radius: float = 2.0
    constraint_gradient: float = -1.0


@dataclass
class LoopConfig:
    """Optimisation loop settings.

    Attributes
    ----------
    max_iter : int
        Hard iteration ceiling.
    max_area : float
        Maximum allowed material area fraction.
    area_fraction_floor : float
        Lower clamp applied to element area fractions before the solve.
    reduced_move_limit : float
        Move limit of the constrained velocity sub-problem.
    convergence_window : int
        Number of previous iterations compared with the current objective.
    convergence_tol : float
        Largest relative objective change accepted as converged.
    area_tol_factor : float
        Area fraction must not exceed `area_tol_factor * max_area` to stop.
    reinit_skip_limit : int
        Consecutive iterations without reinitialisation before one is forced.
    """
    max_iter: int = 500
    max_area: float = 0.4
    area_fraction_floor: float = 1e-6
    reduced_move_limit: float = 0.15
    convergence_window: int = 5
    convergence_tol: float = 5e-4
    area_tol_factor: float = 1.001
    reinit_skip_limit: int = 1


@dataclass
class OutputConfig:
    """Result files and logging.

    Attributes
    ----------
    results_dir : str
        Root directory of the run outputs.
    write_snapshots : bool
        Persist level set, area fractions and boundary segments every iteration.
    txt_precision : int
        Significant digits in the history file.
    log_level : str
        Logging level of the run logger.
    """
    results_dir: str = "results"
    write_snapshots: bool = True
    txt_precision: int = 16
    log_level: str = "INFO"


@dataclass
class ProblemConfig:
    """Top-level configuration holding every section.

    Attributes
    ----------
    mesh, material, lbeam, levelset, sensitivity, loop, output
        One instance per section; see each dataclass.
    """
    mesh: MeshConfig = field(default_factory=MeshConfig)
    material: MaterialConfig = field(default_factory=MaterialConfig)
    lbeam: LBeamConfig = field(default_factory=LBeamConfig)
    levelset: LevelSetConfig = field(default_factory=LevelSetConfig)
    sensitivity: SensitivityConfig = field(default_factory=SensitivityConfig)
    loop: LoopConfig = field(default_factory=LoopConfig)
    output: OutputConfig = field(default_factory=OutputConfig)

    @classmethod
    def from_dict(cls, data: Dict[str, Any] | None) -> "ProblemConfig":
        """Build a config from nested plain data, keeping defaults for missing keys."""
        data = data or {}
        sections = {}
        for f in fields(cls):
            section_cls = f.default_factory
            raw = data.get(f.name) or {}
            if not isinstance(raw, dict):
                raise ValueError(f"Config section '{f.name}' must be a mapping, got {type(raw).__name__}")
            known = {sf.name for sf in fields(section_cls)}
            unknown = set(raw) - known
            if unknown:
                raise ValueError(f"Unknown keys in config section '{f.name}': {sorted(unknown)}")
            kwargs = dict(raw)
            for key in ("load_tol", "fixed_region_tol"):
                if key in kwargs:
                    kwargs[key] = tuple(float(v) for v in kwargs[key])
            if "holes" in kwargs:
                kwargs["holes"] = [tuple(float(v) for v in h) for h in kwargs["holes"]]
            sections[f.name] = section_cls(**kwargs)
        cfg = cls(**sections)
        cfg.validate()
        return cfg

    def to_dict(self) -> Dict[str, Any]:
        """Nested plain-data view (tuples become lists) suitable for YAML."""
        out = asdict(self)
        out["lbeam"]["load_tol"] = list(self.lbeam.load_tol)
        out["lbeam"]["fixed_region_tol"] = list(self.lbeam.fixed_region_tol)
        out["lbeam"]["holes"] = [list(h) for h in self.lbeam.holes]
        return out

    def validate(self) -> None:
        """Raise ValueError for out-of-range settings."""
        if self.mesh.num_elem_x < 2 or self.mesh.num_elem_y < 2:
            raise ValueError("Mesh needs at least 2 elements per direction")
        if not 0.0 < self.loop.max_area <= 1.0:
            raise ValueError(f"loop.max_area must be in (0, 1], got {self.loop.max_area}")
        if not 0.0 < self.loop.area_fraction_floor < 1.0:
            raise ValueError(f"loop.area_fraction_floor must be in (0, 1), got {self.loop.area_fraction_floor}")
        if self.loop.max_iter < 1:
            raise ValueError("loop.max_iter must be >= 1")
        if self.loop.convergence_window < 1:
            raise ValueError("loop.convergence_window must be >= 1")
        if self.loop.reinit_skip_limit < 1:
            raise ValueError("loop.reinit_skip_limit must be >= 1")
        if self.loop.reduced_move_limit <= 0.0 or self.levelset.move_limit <= 0.0:
            raise ValueError("Move limits must be positive")
        if self.sensitivity.interpolation_radius <= 0.0:
            raise ValueError("sensitivity.interpolation_radius must be positive")
        if self.sensitivity.objective_type not in OBJECTIVE_TYPES:
            raise ValueError(
                f"sensitivity.objective_type must be one of {OBJECTIVE_TYPES}, "
                f"got '{self.sensitivity.objective_type}'"
            )
        if self.levelset.band_width < 2.0:
            raise ValueError("levelset.band_width must be at least 2 grid units")
        if not 0.0 < self.lbeam.inner_corner_ratio < 1.0:
            raise ValueError("lbeam.inner_corner_ratio must be in (0, 1)")


def load_config(path: str | Path) -> ProblemConfig:
    """Read a YAML study file into a validated ProblemConfig."""
    return ProblemConfig.from_dict(load_yaml(path))
