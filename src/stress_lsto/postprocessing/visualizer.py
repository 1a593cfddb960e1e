"""Results visualisation.

This module provides the ResultsVisualizer class for plotting the convergence
history of a run and the boundary of a level-set design. All methods accept
data-only inputs and do not mutate state.
"""

from __future__ import annotations

from pathlib import Path
from typing import Optional

import matplotlib

matplotlib.use("Agg")
import matplotlib.pyplot as plt  # noqa: E402
import numpy as np  # noqa: E402
import pandas as pd  # noqa: E402
from matplotlib.collections import LineCollection  # noqa: E402


class ResultsVisualizer:
    """Plotters writing PNG files for the history and the final design."""

    def __init__(self, dpi: int = 150) -> None:
        self.dpi = dpi

    def plot_convergence(self, history: pd.DataFrame, path: str | Path, max_area: Optional[float] = None) -> Path:
        """Objective, max von Mises stress and area fraction vs iteration."""
        path = Path(path)
        fig, axes = plt.subplots(3, 1, figsize=(7, 8), sharex=True)
        it = history.index.to_numpy()
        axes[0].plot(it, history["Stress"].to_numpy(), color="tab:blue")
        axes[0].set_ylabel("p-norm stress")
        axes[1].plot(it, history["Tvm_max"].to_numpy(), color="tab:red")
        axes[1].set_ylabel("max von Mises")
        axes[2].plot(it, history["Area"].to_numpy(), color="tab:green")
        if max_area is not None:
            axes[2].axhline(max_area, color="k", linestyle="--", linewidth=0.8)
        axes[2].set_ylabel("area fraction")
        axes[2].set_xlabel("iteration")
        for ax in axes:
            ax.grid(True, alpha=0.3)
        fig.tight_layout()
        path.parent.mkdir(parents=True, exist_ok=True)
        fig.savefig(path, dpi=self.dpi)
        plt.close(fig)
        return path

    def plot_boundary(
        self,
        segments: np.ndarray,
        path: str | Path,
        area_fractions: Optional[np.ndarray] = None,
        title: Optional[str] = None,
    ) -> Path:
        """
        Boundary segments (S, 2, 2) over an optional (nely, nelx) area-fraction
        image in grid units.
        """
        path = Path(path)
        fig, ax = plt.subplots(figsize=(6, 6))
        if area_fractions is not None:
            a = np.asarray(area_fractions)
            ax.imshow(a, origin="lower", cmap="Greys", vmin=0.0, vmax=1.0,
                      extent=(0, a.shape[1], 0, a.shape[0]))
        segments = np.asarray(segments).reshape(-1, 2, 2)
        if len(segments):
            ax.add_collection(LineCollection(segments, colors="tab:red", linewidths=1.0))
            ax.autoscale()
        ax.set_aspect("equal")
        if title:
            ax.set_title(title)
        fig.tight_layout()
        path.parent.mkdir(parents=True, exist_ok=True)
        fig.savefig(path, dpi=self.dpi)
        plt.close(fig)
        return path
