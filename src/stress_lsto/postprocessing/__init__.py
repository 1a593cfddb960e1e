"""Postprocessing module for result files and plots.

Exports
-------
ResultsWriter : History and snapshot text files
IterationRecord : Per-iteration summary row
load_history : History file as a pandas DataFrame
ResultsVisualizer : Convergence and boundary plots
"""

from .visualizer import ResultsVisualizer
from .writers import IterationRecord, ResultsWriter, load_history

__all__ = ["ResultsVisualizer", "IterationRecord", "ResultsWriter", "load_history"]
