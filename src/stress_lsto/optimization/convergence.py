"""Objective history and moving-window convergence criterion."""

from __future__ import annotations

from typing import List, Sequence


def windowed_relative_difference(history: Sequence[float], window: int = 5) -> float:
    """
    max_{m = k-1 .. k-window} |(obj_k - obj_m) / obj_k| for the last entry k.

    Returns 0.0 while the history holds `window` values or fewer.
    """
    k = len(history)
    if k <= window:
        return 0.0
    current = float(history[-1])
    if current == 0.0:
        raise ValueError(f"Objective is exactly zero at iteration {k}; relative change is undefined")
    return max(abs((current - float(history[-1 - i])) / current) for i in range(1, window + 1))


class ConvergenceTracker:
    """Append-only objective history with a sustained-stability test.

    A run counts as converged only once more than `window` iterations exist and
    the windowed relative difference is at or below `tol`.
    """

    def __init__(self, window: int = 5, tol: float = 5e-4) -> None:
        if window < 1:
            raise ValueError("Convergence window must be >= 1")
        self.window = int(window)
        self.tol = float(tol)
        self._history: List[float] = []
        self.relative_difference = 0.0

    @property
    def history(self) -> List[float]:
        return list(self._history)

    @property
    def iteration(self) -> int:
        return len(self._history)

    @property
    def window_filled(self) -> bool:
        return len(self._history) > self.window

    def update(self, objective: float) -> float:
        """Append the objective of the iteration just completed and return the metric."""
        self._history.append(float(objective))
        self.relative_difference = windowed_relative_difference(self._history, self.window)
        return self.relative_difference

    def is_stable(self) -> bool:
        return self.window_filled and self.relative_difference <= self.tol
