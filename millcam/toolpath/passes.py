"""Depth-pass planning."""

from __future__ import annotations

import math

# Depths closer than this are the same pass (mm)
DEPTH_EPSILON = 1e-9


def target_z(depth: float) -> float:
    """Machine Z of a depth given either as positive distance or negative Z."""
    return -abs(depth)


def pass_depths(start_depth: float, cut_depth: float, step_down: float) -> list[float]:
    """Z level of every pass, shallowest first.

    Parameters
    ----------
    start_depth : float
        Depth the cut starts from (sign-insensitive).
    cut_depth : float
        Final depth (sign-insensitive).
    step_down : float
        Depth per pass; ``<= 0`` cuts everything in one pass.

    Returns
    -------
    list[float]
        ``start - step, start - 2*step, ...`` ending exactly on the
        target.  The final pass may be shallower than ``step_down``.
        Empty when the target is not below the start.

    Examples
    --------
    >>> pass_depths(0.0, 5.0, 2.0)
    [-2.0, -4.0, -5.0]
    """
    start = target_z(start_depth)
    target = target_z(cut_depth)
    if target >= start - DEPTH_EPSILON:
        return []
    if step_down <= 0.0:
        return [target]
    span = start - target
    n = max(1, math.ceil(span / step_down - 1e-9))
    depths = [start - k * step_down for k in range(1, n)]
    depths.append(target)
    return depths
