from __future__ import annotations

import argparse
from pathlib import Path

from stress_lsto.core.config import ProblemConfig, load_config
from stress_lsto.orchestrator import OptimizationRun
from stress_lsto.postprocessing.visualizer import ResultsVisualizer
from stress_lsto.postprocessing.writers import ResultsWriter, load_history
from stress_lsto.preprocessing.lbeam import build_lbeam_problem
from stress_lsto.utils.io_utils import save_yaml
from stress_lsto.utils.logging_utils import close_file_handlers, get_logger


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(description="Level-set stress minimisation CLI")
    subparsers = parser.add_subparsers(dest="command", required=True)

    run = subparsers.add_parser("run", help="Optimise the L-beam study")
    run.add_argument("--config", default="config/lbeam.yaml", help="Path to the study config")
    run.add_argument("--max-iter", type=int, default=None, help="Override loop.max_iter")
    run.add_argument("--results-dir", default=None, help="Override output.results_dir")
    run.add_argument("--log-level", default=None)
    run.add_argument("--plot", action="store_true", help="Write convergence and boundary PNGs at the end")
    return parser


def resolve_config(
    config_path: str | Path,
    max_iter: int | None = None,
    results_dir: str | Path | None = None,
    log_level: str | None = None,
) -> ProblemConfig:
    """Load the study config and apply command-line overrides."""
    cfg = load_config(config_path)
    if max_iter is not None:
        cfg.loop.max_iter = max_iter
    if results_dir is not None:
        cfg.output.results_dir = str(results_dir)
    if log_level:
        cfg.output.log_level = log_level
    cfg.validate()
    return cfg


def run_study(cfg: ProblemConfig, plot: bool = False) -> OptimizationRun:
    root = Path(cfg.output.results_dir)
    logger = get_logger("stress_lsto", cfg.output.log_level, log_file=root / "run.log")
    try:
        save_yaml(cfg.to_dict(), root / "config.yaml")
        problem = build_lbeam_problem(cfg)
        logger.info(
            "L-beam %dx%d, mesh area %.1f, %d clamped DOFs",
            cfg.mesh.num_elem_x, cfg.mesh.num_elem_y, problem.mesh_area, len(problem.fixed_dofs),
        )
        with ResultsWriter(root, cfg.output.txt_precision, cfg.output.write_snapshots) as writer:
            run = problem.orchestrator(writer=writer, logger=logger).run()
            history_path = writer.history_path

        if plot:
            viz = ResultsVisualizer()
            viz.plot_convergence(load_history(history_path), root / "convergence.png", max_area=cfg.loop.max_area)
            geometry = problem.geometry
            geometry.discretize_boundary(1)
            fractions = geometry.compute_area_fractions().reshape(cfg.mesh.num_elem_y, cfg.mesh.num_elem_x)
            viz.plot_boundary(geometry.segments, root / "boundary.png", fractions, title=f"iteration {run.iteration}")
            logger.info("Plots written to %s", root)
    finally:
        close_file_handlers(logger)
    return run


def main(argv: list[str] | None = None) -> int:
    parser = build_parser()
    args = parser.parse_args(argv)
    if args.command != "run":
        parser.error(f"Unknown command {args.command}")
    try:
        cfg = resolve_config(args.config, args.max_iter, args.results_dir, args.log_level)
    except (OSError, ValueError) as exc:
        parser.error(str(exc))
    run_study(cfg, plot=args.plot)
    return 0


if __name__ == "__main__":
    raise SystemExit(main())
