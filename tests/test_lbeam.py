import numpy as np
import pytest

from stress_lsto.cli import build_parser, main, resolve_config, run_study
from stress_lsto.core.config import ProblemConfig
from stress_lsto.orchestrator import RunStatus
from stress_lsto.postprocessing.writers import ResultsWriter, load_history
from stress_lsto.preprocessing.lbeam import build_lbeam_problem
from stress_lsto.utils.io_utils import save_yaml


def _small_config(tmp_path=None, max_iter=3):
    cfg = ProblemConfig()
    cfg.mesh.num_elem_x = 20
    cfg.mesh.num_elem_y = 20
    cfg.lbeam.holes = [(4.0, 4.0, 2.0), (4.0, 12.0, 2.0), (12.0, 4.0, 2.0)]
    cfg.loop.max_iter = max_iter
    if tmp_path is not None:
        cfg.output.results_dir = str(tmp_path / "results")
    return cfg


def test_default_problem_setup():
    problem = build_lbeam_problem(ProblemConfig())
    assert problem.mesh_area == pytest.approx(100 * 100 - 60 * 60)
    # whole top edge clamped
    assert len(problem.fixed_dofs) == 2 * 101
    assert problem.load.sum() == pytest.approx(-3.0)
    loaded = np.nonzero(problem.load)[0]
    np.testing.assert_array_equal(loaded, [2 * (40 * 101 + 99) + 1, 2 * (40 * 101 + 100) + 1])
    geometry = problem.geometry
    assert not geometry.active[41, 41]
    assert geometry.active[40, 100]
    assert geometry.fixed[40, 100] and geometry.fixed[38, 97]
    assert not geometry.fixed[37, 100]


def test_initial_design_area():
    problem = build_lbeam_problem(ProblemConfig())
    problem.geometry.compute_area_fractions()
    holes = 5 * np.pi * 10.0 ** 2
    assert problem.geometry.area == pytest.approx(problem.mesh_area - holes, rel=5e-3)


def test_short_run_writes_history(tmp_path):
    cfg = _small_config(tmp_path)
    problem = build_lbeam_problem(cfg)
    with ResultsWriter(cfg.output.results_dir, write_snapshots=True) as writer:
        run = problem.orchestrator(writer=writer).run()
    assert run.status is RunStatus.TERMINATED
    assert run.iteration == 3
    assert run.termination_reason == "max_iterations"
    history = load_history(writer.history_path)
    assert list(history.index) == [1, 2, 3]
    assert np.all(np.isfinite(history.to_numpy()))
    assert np.all(history["Stress"] > 0.0)
    assert np.all(history["Tvm_max"] > 0.0)
    root = tmp_path / "results"
    for k in range(4):
        assert (root / "level_set" / f"level_set_{k}.txt").exists()
    assert run.time == pytest.approx(3.0)


def test_cli_run(tmp_path):
    cfg = _small_config(max_iter=2)
    config_path = tmp_path / "study.yaml"
    save_yaml(cfg.to_dict(), config_path)
    results = tmp_path / "out"
    code = main(["run", "--config", str(config_path), "--results-dir", str(results), "--plot", "--log-level", "DEBUG"])
    assert code == 0
    assert len(load_history(results / "history" / "history.txt")) == 2
    assert (results / "run.log").read_text().count("it=") == 2
    assert (results / "convergence.png").exists()
    assert (results / "boundary.png").exists()
    assert (results / "config.yaml").exists()


def test_cli_overrides(tmp_path):
    config_path = tmp_path / "study.yaml"
    save_yaml(_small_config().to_dict(), config_path)
    cfg = resolve_config(config_path, max_iter=1, results_dir=tmp_path / "r", log_level="WARNING")
    assert cfg.loop.max_iter == 1
    assert cfg.output.results_dir == str(tmp_path / "r")
    run = run_study(cfg)
    assert run.iteration == 1


def test_cli_rejects_bad_config(tmp_path):
    with pytest.raises(SystemExit) as exc:
        main(["run", "--config", str(tmp_path / "missing.yaml")])
    assert exc.value.code == 2
    bad = tmp_path / "bad.yaml"
    bad.write_text("loop:\n  max_area: 2.0\n")
    with pytest.raises(SystemExit):
        main(["run", "--config", str(bad)])


def test_parser_requires_command():
    with pytest.raises(SystemExit):
        build_parser().parse_args([])
