#!/usr/bin/env python
"""
Level-set stress minimisation - main entry point
================================================

Usage:
------
    python main.py run --config config/lbeam.yaml
    python main.py run --max-iter 50 --results-dir results_short --plot

Equivalent to the installed `stress-lsto` command.
"""

import sys
from pathlib import Path

# Add src to path
sys.path.insert(0, str(Path(__file__).parent / "src"))

from stress_lsto.cli import main  # noqa: E402


if __name__ == "__main__":
    sys.exit(main())
