"""Signed-distance reinitialisation policy."""

from __future__ import annotations

from typing import Tuple

from stress_lsto.core.interfaces import GeometryEngine


def decide_reinitialization(counter: int, engine_reinitialized: bool, skip_limit: int = 1) -> Tuple[bool, int]:
    """
    Decide whether to force a reinitialisation after an advection step.

    Params:
        counter: iterations since the last reinitialisation.
        engine_reinitialized: whether the advection step reinitialised on its own.
        skip_limit: counter value at which a reinitialisation is forced.

    Returns:
        (force, new_counter). The new counter already includes the
        unconditional end-of-iteration increment.
    """
    force = False
    if engine_reinitialized:
        counter = 0
    elif counter == skip_limit:
        force = True
        counter = 0
    return force, counter + 1


class ReinitializationScheduler:
    """Owns nothing but the policy; the counter lives in the run context."""

    def __init__(self, skip_limit: int = 1) -> None:
        if skip_limit < 1:
            raise ValueError("skip_limit must be >= 1")
        self.skip_limit = int(skip_limit)

    def apply(self, geometry: GeometryEngine, counter: int, engine_reinitialized: bool) -> Tuple[bool, int]:
        """Reinitialise `geometry` when the policy says so; returns (forced, new_counter)."""
        force, counter = decide_reinitialization(counter, engine_reinitialized, self.skip_limit)
        if force:
            geometry.reinitialize()
        return force, counter
