"""Toolpath segments and the per-pass ``Toolpath`` container.

Segments are immutable and carry their own Z so that the emitter never
needs to guess the depth of a move::

    RapidMove(start, end, z)                          traverse at rapid rate
    LinearMove(start, end, z, feed, spindle)          cutting move
    ArcMove(start, end, center, direction, z, ...)    XY circular interpolation

Cutting segments may set ``start_z`` when Z changes along the move (ramp
legs and helix turns).  Without it the move is planar at ``z``.

Z values are machine Z: negative below the stock surface.
"""

from __future__ import annotations

import math
from dataclasses import dataclass, field
from enum import Enum
from typing import Optional, Union

from millcam.geometry.point import EPSILON, Point

# Arc radius consistency tolerance (mm)
ARC_TOLERANCE = 1e-4


class ArcDirection(Enum):
    CW = "cw"
    CCW = "ccw"


@dataclass(frozen=True, slots=True)
class RapidMove:
    start: Point
    end: Point
    z: float

    @property
    def is_cutting(self) -> bool:
        return False

    def length(self) -> float:
        return self.start.distance_to(self.end)


@dataclass(frozen=True, slots=True)
class LinearMove:
    start: Point
    end: Point
    z: float
    feed: float
    spindle: int
    start_z: Optional[float] = None

    @property
    def is_cutting(self) -> bool:
        return True

    @property
    def entry_z(self) -> float:
        return self.z if self.start_z is None else self.start_z

    def length(self) -> float:
        return self.start.distance_to(self.end)


@dataclass(frozen=True, slots=True)
class ArcMove:
    """Circular arc in the XY plane.

    ``start == end`` describes a full turn; the generator never produces
    one (full circles are split into half arcs).
    """

    start: Point
    end: Point
    center: Point
    direction: ArcDirection
    z: float
    feed: float
    spindle: int
    start_z: Optional[float] = None

    @property
    def is_cutting(self) -> bool:
        return True

    @property
    def entry_z(self) -> float:
        return self.z if self.start_z is None else self.start_z

    @property
    def clockwise(self) -> bool:
        return self.direction is ArcDirection.CW

    @property
    def radius(self) -> float:
        return self.start.distance_to(self.center)

    def sweep(self) -> float:
        """Swept angle in radians, always positive."""
        a0 = math.atan2(self.start.y - self.center.y, self.start.x - self.center.x)
        a1 = math.atan2(self.end.y - self.center.y, self.end.x - self.center.x)
        delta = a0 - a1 if self.clockwise else a1 - a0
        delta %= 2.0 * math.pi
        if delta < 1e-12:
            delta = 2.0 * math.pi
        return delta

    def length(self) -> float:
        return self.radius * self.sweep()


Segment = Union[RapidMove, LinearMove, ArcMove]


# ---------------------------------------------------------------------------
# Toolpath
# ---------------------------------------------------------------------------


@dataclass
class Toolpath:
    """Ordered segments of one depth pass.

    Attributes
    ----------
    tool_diameter : float
        Cutter diameter in mm.
    depth : float
        Pass depth (machine Z, negative below the surface).
    segments : list[Segment]
        Moves in execution order.
    """

    tool_diameter: float
    depth: float
    segments: list[Segment] = field(default_factory=list)

    def add(self, segment: Segment) -> None:
        self.segments.append(segment)

    def extend(self, segments) -> None:
        self.segments.extend(segments)

    def __len__(self) -> int:
        return len(self.segments)

    @property
    def is_empty(self) -> bool:
        return not any(s.is_cutting for s in self.segments)

    def total_length(self) -> float:
        """XY length of every segment, rapids included."""
        return sum(s.length() for s in self.segments)

    def cutting_length(self) -> float:
        return sum(s.length() for s in self.segments if s.is_cutting)

    def cutting_segments(self) -> list[Segment]:
        return [s for s in self.segments if s.is_cutting]

    def validate(self) -> list[str]:
        """Check segment invariants.

        Returns
        -------
        list[str]
            One message per violation: broken continuity (> 1e-6 mm),
            inconsistent arc radii (> 1e-4 mm) or non-positive feed on a
            cutting move.  Empty when the toolpath is well formed.
        """
        problems: list[str] = []
        prev: Segment | None = None
        for i, seg in enumerate(self.segments):
            if prev is not None and not prev.end.almost_equal(seg.start, EPSILON):
                problems.append(
                    f"segment {i} starts at ({seg.start.x:.6f}, {seg.start.y:.6f}) "
                    f"but previous ends at ({prev.end.x:.6f}, {prev.end.y:.6f})"
                )
            if isinstance(seg, ArcMove):
                r0 = seg.start.distance_to(seg.center)
                r1 = seg.end.distance_to(seg.center)
                if abs(r0 - r1) > ARC_TOLERANCE:
                    problems.append(f"segment {i} arc radii differ: {r0:.6f} vs {r1:.6f}")
            if seg.is_cutting and not seg.feed > 0.0:
                problems.append(f"segment {i} has non-positive feed {seg.feed}")
            prev = seg
        return problems

    def is_valid(self) -> bool:
        return not self.validate()
