"""Ramp entry moves.

Both entries descend from ``from_z`` to ``to_z`` and finish at their
starting XY position, so the contour that follows starts unchanged.

Zigzag ramp
    Back-and-forth legs along the first contour segment.  With ``H`` the
    horizontal run needed at the requested angle and ``L`` the segment
    length, ``n = 2 * ceil(H / 2L)`` legs of length ``H / n`` give the
    exact slope ``tan(angle)``.
Helix
    Half-turn arcs around a circle, ``n`` even so the helix ends where it
    began.  The slope never exceeds ``tan(angle)``.
"""

from __future__ import annotations

import math

from millcam.geometry.point import Point
from millcam.toolpath.segments import ArcDirection, ArcMove, LinearMove

# Safety cap on ramp legs / helix turns
MAX_LEGS = 1000


def horizontal_run(depth: float, angle_deg: float) -> float:
    """XY distance needed to descend *depth* at *angle_deg*."""
    return depth / math.tan(math.radians(angle_deg))


def zigzag_ramp(
    start: Point,
    toward: Point,
    from_z: float,
    to_z: float,
    angle_deg: float,
    feed: float,
    spindle: int,
) -> list[LinearMove]:
    """Zigzag descent along the segment ``start -> toward``.

    Returns an empty list when no ramp is possible (zero angle, zero
    descent or a degenerate segment); the caller plunges instead.
    """
    drop = from_z - to_z
    seg_len = start.distance_to(toward)
    if angle_deg <= 0.0 or drop <= 0.0 or seg_len < 1e-6:
        return []
    run = horizontal_run(drop, angle_deg)
    n = min(MAX_LEGS, 2 * max(1, math.ceil(run / (2.0 * seg_len) - 1e-9)))
    leg = min(run / n, seg_len)
    direction = (toward - start) * (1.0 / seg_len)
    far = start + direction * leg

    moves: list[LinearMove] = []
    z = from_z
    here = start
    for k in range(n):
        there = far if k % 2 == 0 else start
        next_z = to_z if k == n - 1 else from_z - drop * (k + 1) / n
        moves.append(LinearMove(here, there, next_z, feed, spindle, start_z=z))
        here, z = there, next_z
    return moves


def helix_ramp(
    center: Point,
    start: Point,
    from_z: float,
    to_z: float,
    angle_deg: float,
    direction: ArcDirection,
    feed: float,
    spindle: int,
) -> list[ArcMove]:
    """Helical descent around *center* starting (and ending) at *start*."""
    drop = from_z - to_z
    radius = start.distance_to(center)
    if angle_deg <= 0.0 or drop <= 0.0 or radius < 1e-6:
        return []
    run = horizontal_run(drop, angle_deg)
    half_turn = math.pi * radius
    n = min(MAX_LEGS, 2 * max(1, math.ceil(run / (2.0 * half_turn) - 1e-9)))
    opposite = center * 2.0 - start

    moves: list[ArcMove] = []
    z = from_z
    here = start
    for k in range(n):
        there = opposite if k % 2 == 0 else start
        next_z = to_z if k == n - 1 else from_z - drop * (k + 1) / n
        moves.append(ArcMove(here, there, center, direction, next_z, feed, spindle, start_z=z))
        here, z = there, next_z
    return moves
