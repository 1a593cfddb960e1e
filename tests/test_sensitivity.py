import numpy as np
import pytest

from stress_lsto.core.fem_plane import PlaneStressFESolver
from stress_lsto.optimization.sensitivity import StressSensitivityAnalysis


def _cantilever(nelx=5, nely=3):
    fe = PlaneStressFESolver(nelx, nely)
    left = fe.get_nodes_by_coordinates((0.0, nely / 2), (0.1, nely / 2 + 0.1))
    tip = fe.get_nodes_by_coordinates((float(nelx), 0.0), (0.1, 0.1))
    load = np.zeros(fe.ndof)
    load[2 * tip + 1] = -1.0
    return fe, load, fe.dof(left)


def _objective(fe, load, fixed, a, objective_type, p):
    fe.solve(a, load, fixed)
    engine = StressSensitivityAnalysis(fe)
    engine.compute_element_sensitivities(objective_type, p)
    return engine


@pytest.mark.parametrize("objective_type", ["stress", "compliance"])
def test_element_sensitivities_match_finite_differences(objective_type):
    fe, load, fixed = _cantilever()
    a = np.random.default_rng(1).uniform(0.4, 0.9, fe.ne)
    engine = _objective(fe, load, fixed, a, objective_type, 6.0)
    analytic = engine.element_sensitivities.copy()

    h = 1e-6
    for e in [0, 4, 7, 14]:
        ap, am = a.copy(), a.copy()
        ap[e] += h
        am[e] -= h
        jp = _objective(fe, load, fixed, ap, objective_type, 6.0).objective
        jm = _objective(fe, load, fixed, am, objective_type, 6.0).objective
        assert analytic[e] == pytest.approx((jp - jm) / (2 * h), rel=1e-4, abs=1e-8)


def test_p_norm_bounds_maximum_stress():
    fe, load, fixed = _cantilever()
    engine = _objective(fe, load, fixed, np.ones(fe.ne), "stress", 6.0)
    n_gauss = 4 * fe.ne
    # J = (Σ 0.25 σ^p)^(1/p) lies between 0.25^(1/p) σmax and (0.25 n)^(1/p) σmax
    assert engine.objective >= 0.25 ** (1 / 6) * engine.von_mises_max
    assert engine.objective <= (0.25 * n_gauss) ** (1 / 6) * engine.von_mises_max


def _tension_bar():
    fe = PlaneStressFESolver(4, 2)
    left = fe.get_nodes_by_coordinates((0.0, 1.0), (0.1, 1.1))
    fixed = np.concatenate([2 * left, [1]])
    right = fe.get_nodes_by_coordinates((4.0, 1.0), (0.1, 1.1))
    load = np.zeros(fe.ndof)
    load[2 * right] = [0.5, 1.0, 0.5]
    fe.solve(np.ones(fe.ne), load, fixed)
    return fe


def test_compliance_of_uniform_tension():
    engine = StressSensitivityAnalysis(_tension_bar())
    engine.compute_element_sensitivities("compliance", 6.0)
    assert engine.objective == pytest.approx(8.0)
    assert engine.von_mises_max == pytest.approx(1.0)
    np.testing.assert_allclose(engine.element_sensitivities, -1.0)


def test_interpolation_reproduces_uniform_field_and_fills_buffer():
    engine = StressSensitivityAnalysis(_tension_bar())
    engine.compute_element_sensitivities("compliance", 6.0)
    assert engine.interpolate_at_point([2.0, 1.0], 1.5, "compliance", 6.0) == pytest.approx(-1.0)
    assert engine.interpolate_at_point([0.2, 0.2], 0.2, "compliance", 6.0) == pytest.approx(-1.0)
    assert len(engine.boundary_sensitivities) == 2
    engine.clear_boundary_sensitivities()
    assert engine.boundary_sensitivities == []


def test_interpolation_errors():
    engine = StressSensitivityAnalysis(_tension_bar())
    with pytest.raises(RuntimeError):
        engine.interpolate_at_point([1.0, 1.0], 1.0, "compliance", 6.0)
    engine.compute_element_sensitivities("compliance", 6.0)
    with pytest.raises(RuntimeError):
        engine.interpolate_at_point([40.0, 40.0], 1.0, "compliance", 6.0)
    with pytest.raises(ValueError):
        engine.interpolate_at_point([1.0, 1.0], 1.0, "stress", 6.0)


def test_void_elements_are_not_sampled():
    fe = PlaneStressFESolver(4, 2)
    left = fe.get_nodes_by_coordinates((0.0, 1.0), (0.1, 1.1))
    a = np.ones(fe.ne)
    a[0] = 1e-6
    fe.solve(a, np.zeros(fe.ndof), fe.dof(left))
    engine = StressSensitivityAnalysis(fe, min_area_fraction=1e-3)
    engine.compute_element_sensitivities("compliance", 6.0)
    # only the void element's Gauss points lie within 0.45 of (0.5, 0.5)
    with pytest.raises(RuntimeError):
        engine.interpolate_at_point([0.5, 0.5], 0.45, "compliance", 6.0)
    assert engine.interpolate_at_point([1.5, 0.5], 0.45, "compliance", 6.0) == pytest.approx(0.0)


def test_invalid_objective_settings():
    engine = StressSensitivityAnalysis(_tension_bar())
    with pytest.raises(ValueError):
        engine.compute_element_sensitivities("volume", 6.0)
    with pytest.raises(ValueError):
        engine.compute_element_sensitivities("stress", 1.0)
    with pytest.raises(RuntimeError):
        StressSensitivityAnalysis(PlaneStressFESolver(2, 2)).compute_element_sensitivities("stress", 6.0)
