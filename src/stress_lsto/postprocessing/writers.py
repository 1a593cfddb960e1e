"""Iteration history and geometry snapshot output.

Layout under the results directory:

    history/history.txt                      one tab-separated row per iteration
    level_set/level_set_<k>.txt              nodal φ grid
    area_fractions/area_fractions_<k>.txt    element area fractions (nely x nelx)
    boundary_segments/boundary_segments_<k>.txt   x0 y0 x1 y1 per segment
"""

from __future__ import annotations

from dataclasses import dataclass
from pathlib import Path
from typing import Optional, TextIO

import numpy as np
import pandas as pd

from stress_lsto.utils.io_utils import prepare_output_dirs

HISTORY_COLUMNS = ("Iteration", "Stress", "Tvm_max", "Area", "Change")
SUBDIRS = ("history", "level_set", "area_fractions", "boundary_segments")


@dataclass(frozen=True)
class IterationRecord:
    """Per-iteration summary; written once and never modified."""
    iteration: int
    objective: float
    max_stress: float
    area_fraction: float
    relative_difference: float


class ResultsWriter:
    """Run-scoped writer for the history file and per-iteration snapshots.

    Parameters
    ----------
    results_dir : str or Path
        Root of the outputs; sub-directories are created and stale `*.txt`
        files inside them removed when the writer opens.
    precision : int
        Significant digits of the history values.
    write_snapshots : bool
        Whether `write_snapshot` persists anything.
    """

    def __init__(self, results_dir: str | Path, precision: int = 16, write_snapshots: bool = True) -> None:
        self.root = Path(results_dir)
        self.precision = int(precision)
        self.write_snapshots = bool(write_snapshots)
        self._history: Optional[TextIO] = None

    @property
    def history_path(self) -> Path:
        return self.root / "history" / "history.txt"

    def open(self) -> "ResultsWriter":
        prepare_output_dirs(self.root, SUBDIRS)
        self._history = self.history_path.open("w", encoding="utf-8")
        self._history.write("\t".join(HISTORY_COLUMNS) + "\n")
        self._history.flush()
        return self

    def close(self) -> None:
        if self._history is not None:
            self._history.close()
            self._history = None

    def __enter__(self) -> "ResultsWriter":
        return self.open()

    def __exit__(self, *exc) -> None:
        self.close()

    def write_record(self, record: IterationRecord) -> None:
        if self._history is None:
            raise RuntimeError("ResultsWriter is not open")
        fmt = f"{{:.{self.precision}g}}"
        values = (record.objective, record.max_stress, record.area_fraction, record.relative_difference)
        self._history.write("\t".join([str(record.iteration)] + [fmt.format(v) for v in values]) + "\n")
        self._history.flush()

    def write_snapshot(self, iteration: int, geometry) -> None:
        """Persist level set, area fractions (when computed) and boundary segments of `geometry`."""
        if not self.write_snapshots:
            return
        np.savetxt(self.root / "level_set" / f"level_set_{iteration}.txt", geometry.phi)
        try:
            fractions = geometry.area_fractions
        except RuntimeError:
            fractions = None
        if fractions is not None:
            grid = np.asarray(fractions).reshape(geometry.phi.shape[0] - 1, geometry.phi.shape[1] - 1)
            np.savetxt(self.root / "area_fractions" / f"area_fractions_{iteration}.txt", grid)
        segments = np.asarray(geometry.segments).reshape(-1, 4)
        np.savetxt(
            self.root / "boundary_segments" / f"boundary_segments_{iteration}.txt",
            segments,
            header="x0 y0 x1 y1",
        )


def load_history(path: str | Path) -> pd.DataFrame:
    """Read a history file into a DataFrame indexed by iteration."""
    df = pd.read_csv(path, sep="\t")
    missing = set(HISTORY_COLUMNS) - set(df.columns)
    if missing:
        raise KeyError(f"History file {path} is missing columns {sorted(missing)}")
    return df.set_index("Iteration")
