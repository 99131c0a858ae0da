"""Points, rotation and axis-aligned bounding boxes.

All coordinates are millimetres in a Y-up Cartesian frame (the G-code
frame).  Angles are degrees, positive = counter-clockwise.
"""

from __future__ import annotations

import math
from dataclasses import dataclass
from typing import Iterable

# Coordinate equality tolerance used for continuity checks (mm)
EPSILON = 1e-6


@dataclass(frozen=True, slots=True)
class Point:
    """2-D point in millimetres."""

    x: float
    y: float

    def __add__(self, other: Point) -> Point:
        return Point(self.x + other.x, self.y + other.y)

    def __sub__(self, other: Point) -> Point:
        return Point(self.x - other.x, self.y - other.y)

    def __mul__(self, k: float) -> Point:
        return Point(self.x * k, self.y * k)

    __rmul__ = __mul__

    def distance_to(self, other: Point) -> float:
        return math.hypot(self.x - other.x, self.y - other.y)

    def dot(self, other: Point) -> float:
        return self.x * other.x + self.y * other.y

    def cross(self, other: Point) -> float:
        """Z component of the 3-D cross product."""
        return self.x * other.y - self.y * other.x

    def length(self) -> float:
        return math.hypot(self.x, self.y)

    def lerp(self, other: Point, t: float) -> Point:
        return Point(
            self.x + (other.x - self.x) * t,
            self.y + (other.y - self.y) * t,
        )

    def rotate_about(self, center: Point, degrees: float) -> Point:
        """Rotate CCW about *center* by *degrees*."""
        return rotate_point(self, center, degrees)

    def almost_equal(self, other: Point, tol: float = EPSILON) -> bool:
        return abs(self.x - other.x) <= tol and abs(self.y - other.y) <= tol

    def to_tuple(self) -> tuple[float, float]:
        return (self.x, self.y)


ORIGIN = Point(0.0, 0.0)


def rotate_point(p: Point, center: Point, degrees: float) -> Point:
    """Rotate *p* counter-clockwise about *center*.

    Parameters
    ----------
    p : Point
        Point to rotate.
    center : Point
        Centre of rotation.
    degrees : float
        Rotation angle, positive = CCW.

    Returns
    -------
    Point
        The rotated point.  A zero angle returns *p* unchanged.
    """
    if degrees == 0.0:
        return p
    rad = math.radians(degrees)
    c = math.cos(rad)
    s = math.sin(rad)
    dx = p.x - center.x
    dy = p.y - center.y
    return Point(center.x + dx * c - dy * s, center.y + dx * s + dy * c)


# ---------------------------------------------------------------------------
# Bounding boxes
# ---------------------------------------------------------------------------


@dataclass(frozen=True, slots=True)
class Bounds:
    """Axis-aligned bounding box (``min <= max`` on both axes)."""

    min_x: float
    min_y: float
    max_x: float
    max_y: float

    def __post_init__(self) -> None:
        if self.min_x > self.max_x or self.min_y > self.max_y:
            raise ValueError(
                f"Bounds min must not exceed max, got "
                f"({self.min_x}, {self.min_y}, {self.max_x}, {self.max_y})"
            )

    @classmethod
    def from_points(cls, points: Iterable[Point]) -> Bounds:
        """AABB of *points*.

        Raises
        ------
        ValueError
            If *points* is empty.
        """
        pts = list(points)
        if not pts:
            raise ValueError("Bounds.from_points requires at least one point")
        xs = [p.x for p in pts]
        ys = [p.y for p in pts]
        return cls(min(xs), min(ys), max(xs), max(ys))

    @classmethod
    def at(cls, p: Point) -> Bounds:
        """Degenerate box at a single point."""
        return cls(p.x, p.y, p.x, p.y)

    @property
    def width(self) -> float:
        return self.max_x - self.min_x

    @property
    def height(self) -> float:
        return self.max_y - self.min_y

    @property
    def center(self) -> Point:
        return Point(
            (self.min_x + self.max_x) / 2.0,
            (self.min_y + self.max_y) / 2.0,
        )

    def corners(self) -> tuple[Point, Point, Point, Point]:
        """Corners in CCW order starting bottom-left."""
        return (
            Point(self.min_x, self.min_y),
            Point(self.max_x, self.min_y),
            Point(self.max_x, self.max_y),
            Point(self.min_x, self.max_y),
        )

    def contains(self, p: Point, tolerance: float = 0.0) -> bool:
        """Closed-interval containment test."""
        return (
            self.min_x - tolerance <= p.x <= self.max_x + tolerance
            and self.min_y - tolerance <= p.y <= self.max_y + tolerance
        )

    def intersects(self, other: Bounds) -> bool:
        """``True`` when the boxes overlap or touch."""
        return not (
            other.min_x > self.max_x
            or other.max_x < self.min_x
            or other.min_y > self.max_y
            or other.max_y < self.min_y
        )

    def union(self, other: Bounds) -> Bounds:
        return Bounds(
            min(self.min_x, other.min_x),
            min(self.min_y, other.min_y),
            max(self.max_x, other.max_x),
            max(self.max_y, other.max_y),
        )

    def expanded(self, margin: float) -> Bounds:
        return Bounds(
            self.min_x - margin,
            self.min_y - margin,
            self.max_x + margin,
            self.max_y + margin,
        )

    def translated(self, dx: float, dy: float) -> Bounds:
        return Bounds(
            self.min_x + dx, self.min_y + dy, self.max_x + dx, self.max_y + dy,
        )

    def rotated_about(self, center: Point, degrees: float) -> Bounds:
        """AABB of this box's four corners rotated about *center*."""
        if degrees % 360.0 == 0.0:
            return self
        return Bounds.from_points(
            rotate_point(c, center, degrees) for c in self.corners()
        )
