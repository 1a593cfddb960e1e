"""Problem setup.

Exports
-------
LBeamProblem : Collaborators and load/boundary-condition data of the L-beam study
build_lbeam_problem : Build an LBeamProblem from a ProblemConfig
"""

from .lbeam import LBeamProblem, build_lbeam_problem

__all__ = ["LBeamProblem", "build_lbeam_problem"]
