import numpy as np
import pytest

from stress_lsto.core.config import ProblemConfig
from stress_lsto.core.interfaces import BoundaryPoint, OptimizerResult
from stress_lsto.orchestrator import (
    LevelSetOrchestrator,
    RunStatus,
    clamp_area_fractions,
    constraint_distance,
)
from stress_lsto.postprocessing.writers import ResultsWriter, load_history

MESH_AREA = 100.0


class _Geometry:
    """Scripted geometry: area fraction and advection outcome per iteration."""

    width = 10.0
    height = 10.0

    def __init__(self, area_fraction, advance_reports=None):
        self.area_fraction = area_fraction
        self.advance_reports = advance_reports or (lambda k: False)
        self.k = 0
        self.reinit_calls = []
        self.time_steps = []
        self._area = None

    @property
    def area(self):
        if self._area is None:
            raise RuntimeError("stale area")
        return self._area

    def discretize_boundary(self, n_constraints):
        self.k += 1
        return [BoundaryPoint(coord=np.array([float(i), 0.0]), length=1.0, sensitivities=[0.0] * (1 + n_constraints))
                for i in range(3)]

    def compute_area_fractions(self):
        self._area = self.area_fraction(self.k) * MESH_AREA
        return np.array([0.0, 1e-9, 0.5, 1.0])

    def extend_velocities(self, points):
        self.velocities = [p.velocity for p in points]

    def compute_gradients(self):
        pass

    def advance(self, time_step):
        self.time_steps.append(time_step)
        self._area = None
        return self.advance_reports(self.k)

    def reinitialize(self):
        self.reinit_calls.append(self.k)


class _Solver:
    def __init__(self):
        self.received = []

    def solve(self, area_fractions, load, fixed_dofs):
        self.received.append(np.array(area_fractions))
        return np.zeros(4)


class _Sensitivity:
    def __init__(self, objective, fail_interpolation=False):
        self.objective_of = objective
        self.fail_interpolation = fail_interpolation
        self.k = 0
        self.objective = 0.0
        self.von_mises_max = 0.0
        self.boundary_sensitivities = []

    def compute_element_sensitivities(self, objective_type, p_norm):
        self.k += 1
        self.objective = self.objective_of(self.k)
        self.von_mises_max = 2.0 * self.objective

    def interpolate_at_point(self, coord, radius, objective_type, p_norm):
        if self.fail_interpolation:
            raise RuntimeError("No Gauss points within radius")
        self.boundary_sensitivities.append(1.0)
        return 1.0

    def clear_boundary_sensitivities(self):
        self.boundary_sensitivities.clear()


class _OptimizerFactory:
    def __init__(self, time_step=0.5):
        self.time_step = time_step
        self.configured = []
        self.move_limits = []

    def __call__(self, points, move_limit):
        factory = self
        factory.move_limits.append(move_limit)

        class _Optimizer:
            def configure(self, length_x, length_y, boundary_area, mesh_area, max_area, constraint_distances):
                factory.configured.append(
                    dict(boundary_area=boundary_area, mesh_area=mesh_area, max_area=max_area,
                         distances=list(constraint_distances))
                )

            def solve(self, reduced_move_limit):
                for p in points:
                    p.velocity = reduced_move_limit
                return OptimizerResult(np.full(len(points), reduced_move_limit), [0.25], factory.time_step)

        return _Optimizer()


def _decreasing_then_constant(k):
    return 1.0 + 0.1 * max(10 - k, 0)


def _settling_area(k):
    return 0.4 if k >= 8 else 0.4 + 0.01 * (8 - k)


def _orchestrator(cfg, geometry, sensitivity, solver=None, factory=None, writer=None):
    return LevelSetOrchestrator(
        cfg,
        solver or _Solver(),
        sensitivity,
        geometry,
        factory or _OptimizerFactory(),
        load=np.zeros(4),
        fixed_dofs=np.array([0]),
        mesh_area=MESH_AREA,
        writer=writer,
    )


def test_clamp_area_fractions():
    raw = np.array([0.0, 1e-9, 1e-6, 0.3, 1.0])
    clamped = clamp_area_fractions(raw, 1e-6)
    np.testing.assert_array_equal(clamped, np.maximum(raw, 1e-6))
    assert raw[0] == 0.0


def test_constraint_distance():
    assert constraint_distance(0.4, 6400.0, 3000.0) == pytest.approx(-440.0)
    assert constraint_distance(0.5, 100.0, 20.0) == pytest.approx(30.0)


def test_end_to_end_terminates_after_sustained_stability(tmp_path):
    cfg = ProblemConfig()
    geometry = _Geometry(_settling_area)
    with ResultsWriter(tmp_path, write_snapshots=False) as writer:
        run = _orchestrator(cfg, geometry, _Sensitivity(_decreasing_then_constant), writer=writer).run()

    assert run.status is RunStatus.TERMINATED
    assert run.converged
    assert run.termination_reason == "converged"
    assert run.iteration == 15
    history = load_history(tmp_path / "history" / "history.txt")
    assert list(history.index) == list(range(1, 16))
    assert history["Area"].iloc[-1] == pytest.approx(0.4)
    assert history["Change"].iloc[:5].eq(0.0).all()
    assert history["Stress"].iloc[-1] == pytest.approx(1.0)
    assert history["Tvm_max"].iloc[-1] == pytest.approx(2.0)


def test_records_match_history():
    cfg = ProblemConfig()
    run = _orchestrator(cfg, _Geometry(_settling_area), _Sensitivity(_decreasing_then_constant)).run()
    assert [r.iteration for r in run.records] == list(range(1, run.iteration + 1))
    assert [r.objective for r in run.records] == run.history
    assert run.records[-1].relative_difference == run.relative_difference


def test_ceiling_ends_run_without_convergence():
    cfg = ProblemConfig()
    cfg.loop.max_iter = 7
    oscillating = _Sensitivity(lambda k: 1.0 + 0.5 * (k % 2))
    run = _orchestrator(cfg, _Geometry(lambda k: 0.4), oscillating).run()
    assert run.iteration == 7
    assert not run.converged
    assert run.termination_reason == "max_iterations"
    assert run.status is RunStatus.TERMINATED


def test_area_above_limit_blocks_termination():
    cfg = ProblemConfig()
    cfg.loop.max_iter = 20
    run = _orchestrator(cfg, _Geometry(lambda k: 0.41), _Sensitivity(lambda k: 1.0)).run()
    assert run.iteration == 20
    assert not run.converged


def test_area_within_tolerance_allows_termination():
    cfg = ProblemConfig()
    run = _orchestrator(cfg, _Geometry(lambda k: 0.4 * 1.0005), _Sensitivity(lambda k: 1.0)).run()
    assert run.converged
    assert run.iteration == 6


def test_solver_receives_clamped_fractions():
    cfg = ProblemConfig()
    cfg.loop.max_iter = 2
    solver = _Solver()
    _orchestrator(cfg, _Geometry(lambda k: 0.5), _Sensitivity(lambda k: 1.0), solver=solver).run()
    for received in solver.received:
        np.testing.assert_array_equal(received, [1e-6, 1e-6, 0.5, 1.0])


def test_floor_is_configurable():
    cfg = ProblemConfig()
    cfg.loop.max_iter = 1
    cfg.loop.area_fraction_floor = 1e-3
    solver = _Solver()
    _orchestrator(cfg, _Geometry(lambda k: 0.5), _Sensitivity(lambda k: 1.0), solver=solver).run()
    np.testing.assert_array_equal(solver.received[0], [1e-3, 1e-3, 0.5, 1.0])


def test_constraint_distance_recomputed_every_iteration():
    cfg = ProblemConfig()
    cfg.loop.max_iter = 4
    factory = _OptimizerFactory()
    areas = {1: 0.6, 2: 0.55, 3: 0.5, 4: 0.45}
    _orchestrator(cfg, _Geometry(areas.get), _Sensitivity(lambda k: 1.0), factory=factory).run()
    distances = [c["distances"] for c in factory.configured]
    assert distances == [[pytest.approx(0.4 * MESH_AREA - areas[k] * MESH_AREA)] for k in range(1, 5)]
    assert [c["boundary_area"] for c in factory.configured] == [pytest.approx(areas[k] * MESH_AREA) for k in range(1, 5)]
    assert all(c["mesh_area"] == MESH_AREA and c["max_area"] == 0.4 for c in factory.configured)
    assert factory.move_limits == [cfg.levelset.move_limit] * 4


def test_velocities_reach_geometry_and_time_accumulates():
    cfg = ProblemConfig()
    cfg.loop.max_iter = 3
    geometry = _Geometry(lambda k: 0.5)
    run = _orchestrator(cfg, geometry, _Sensitivity(lambda k: 1.0), factory=_OptimizerFactory(0.5)).run()
    assert geometry.velocities == [cfg.loop.reduced_move_limit] * 3
    assert geometry.time_steps == [0.5, 0.5, 0.5]
    assert run.time == pytest.approx(1.5)
    assert run.lambdas == [0.25]


def test_scheduled_reinitialisation_in_loop():
    cfg = ProblemConfig()
    cfg.loop.max_iter = 4
    reports = {1: False, 2: False, 3: True, 4: False}
    geometry = _Geometry(lambda k: 0.5, advance_reports=reports.get)
    run = _orchestrator(cfg, geometry, _Sensitivity(lambda k: 1.0 + k)).run()
    assert geometry.reinit_calls == [2, 4]
    assert run.reinit_counter == 1


def test_interpolation_failure_aborts_run(tmp_path):
    cfg = ProblemConfig()
    with ResultsWriter(tmp_path, write_snapshots=False) as writer:
        orchestrator = _orchestrator(cfg, _Geometry(lambda k: 0.5), _Sensitivity(lambda k: 1.0, True), writer=writer)
        with pytest.raises(RuntimeError):
            orchestrator.run()
    rows = (tmp_path / "history" / "history.txt").read_text().splitlines()
    assert len(rows) == 1


def test_non_positive_mesh_area_is_rejected():
    with pytest.raises(ValueError):
        LevelSetOrchestrator(ProblemConfig(), _Solver(), _Sensitivity(lambda k: 1.0), _Geometry(lambda k: 0.5),
                             _OptimizerFactory(), np.zeros(4), np.array([0]), mesh_area=0.0)
