"""Nearest-strike selection over a strike ladder.

Pure computation, no I/O.
"""

from typing import Iterable


def closest_strike(target: float, available: Iterable[float]) -> float:
    """Return the strike in ``available`` nearest to ``target``.

    Ties go to the first strike encountered in iteration order; a later
    strike only wins when it is strictly closer.
    """
    best: float | None = None
    best_diff = 0.0
    for strike in available:
        diff = abs(strike - target)
        if best is None or diff < best_diff:
            best = strike
            best_diff = diff

    if best is None:
        raise ValueError("closest_strike requires at least one available strike")
    return best


def strike_ladder(strikes: Iterable[float]) -> list[float]:
    """Sorted unique strikes."""
    return sorted(set(strikes))
