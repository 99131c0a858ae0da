"""Shape variants of the geometry kernel.

Every shape is an immutable dataclass that stores its defining data plus
a ``rotation`` in degrees (positive = CCW about the shape's natural
centre).  Rotation is *stored*, never applied to the defining data;
``render()`` and ``bounds()`` take it into account.

Capability set (``Shape``)
--------------------------
render()            path events with rotation applied
bounds()            AABB of the rotated shape
contains_point()    hit test with a tolerance
translate()         moved copy
scale_about()       scaled copy about an anchor
rotate_about()      copy rotated about an arbitrary point
to_polyline()       flattened subpaths
to_polygon()        shapely region (empty for open shapes)

Mutating a field goes through ``dataclasses.replace`` (``with_changes``),
which re-runs validation; rectangle corner radii are clamped there.
"""

from __future__ import annotations

import dataclasses
import math
from abc import ABC, abstractmethod
from dataclasses import dataclass
from functools import lru_cache
from typing import Iterable, Sequence

from shapely.geometry import LineString
from shapely.geometry import Point as ShapelyPoint
from shapely.geometry.base import BaseGeometry

from millcam.geometry.gears import involute_gear_outline, sprocket_outline
from millcam.geometry.path_events import (
    DEFAULT_TOLERANCE,
    KAPPA,
    ClosePath,
    CubicTo,
    LineTo,
    MoveTo,
    PathEvent,
    Subpath,
    ellipse_events,
    events_bounds,
    events_from_points,
    flatten,
    rotate_events,
    scale_events,
    signed_area,
    translate_events,
)
from millcam.geometry.point import Bounds, Point, rotate_point
from millcam.geometry.region import empty_region, rings_to_region
from millcam.geometry.text import DEFAULT_FONT_FAMILY, text_events

# Roller diameter / pitch ratio used when a sprocket gives none (ISO 08B)
DEFAULT_ROLLER_RATIO = 0.67


def _non_negative(name: str, value: float) -> None:
    if value < 0.0 or math.isnan(value):
        raise ValueError(f"{name} must be >= 0, got {value}")


def _translate(p: Point, dx: float, dy: float) -> Point:
    return Point(p.x + dx, p.y + dy)


def _scale(p: Point, anchor: Point, sx: float, sy: float) -> Point:
    return Point(anchor.x + (p.x - anchor.x) * sx, anchor.y + (p.y - anchor.y) * sy)


# ---------------------------------------------------------------------------
# Base class
# ---------------------------------------------------------------------------


class Shape(ABC):
    """Common capability set shared by all shape variants."""

    kind = "shape"
    is_closed = True

    rotation: float

    @abstractmethod
    def natural_center(self) -> Point:
        """Centre that ``rotation`` is applied about."""

    @abstractmethod
    def local_events(self) -> list[PathEvent]:
        """Path events in the un-rotated frame."""

    @abstractmethod
    def local_bounds(self) -> Bounds:
        """AABB of the un-rotated shape."""

    @abstractmethod
    def translate(self, dx: float, dy: float) -> Shape:
        """Copy moved by ``(dx, dy)``."""

    @abstractmethod
    def scale_about(self, anchor: Point, sx: float, sy: float) -> Shape:
        """Copy scaled by ``(sx, sy)`` about *anchor*.

        Dimensions scale in the shape's local frame; the natural centre
        moves as a point scaled about *anchor*.
        """

    # -- derived behaviour ---------------------------------------------

    def with_changes(self, **changes) -> Shape:
        """Validated copy with fields replaced."""
        return dataclasses.replace(self, **changes)

    def render(self) -> list[PathEvent]:
        """Path events with rotation applied (deterministic)."""
        return rotate_events(self.local_events(), self.natural_center(), self.rotation)

    def bounds(self) -> Bounds:
        """AABB of the rotated shape.

        The un-rotated AABB's corners are rotated about the natural
        centre and boxed again.
        """
        return self.local_bounds().rotated_about(self.natural_center(), self.rotation)

    def rotate_about(self, center: Point, degrees: float) -> Shape:
        """Copy rotated CCW by *degrees* about an arbitrary *center*."""
        c = self.natural_center()
        moved = rotate_point(c, center, degrees)
        shifted = self.translate(moved.x - c.x, moved.y - c.y)
        return dataclasses.replace(shifted, rotation=self.rotation + degrees)

    def to_polyline(self, tolerance: float = DEFAULT_TOLERANCE) -> list[Subpath]:
        """Flattened subpaths of the rotated shape."""
        return flatten(self.render(), tolerance)

    def to_polygon(self, tolerance: float = DEFAULT_TOLERANCE) -> BaseGeometry:
        """Enclosed region (rotation baked in); empty for open shapes."""
        if not self.is_closed:
            return empty_region()
        rings = [sp.points for sp in self.to_polyline(tolerance) if len(sp.points) >= 3]
        return rings_to_region(rings)

    def area(self) -> float:
        return float(self.to_polygon().area)

    def contains_point(self, p: Point, tolerance: float = 0.0) -> bool:
        """Hit test.

        Closed shapes hit inside their region or within *tolerance* of
        it; open shapes hit within *tolerance* of the outline.
        """
        sp = ShapelyPoint(p.x, p.y)
        region = self.to_polygon()
        if not region.is_empty:
            return bool(region.covers(sp)) or region.distance(sp) <= tolerance
        return self._outline_distance(sp) <= tolerance

    def _outline_distance(self, sp: ShapelyPoint) -> float:
        best = math.inf
        for sub in self.to_polyline():
            coords = [(q.x, q.y) for q in sub.points]
            if sub.closed:
                coords.append(coords[0])
            best = min(best, LineString(coords).distance(sp))
        return best

    def baked(self) -> Path:
        """Equivalent ``Path`` with rotation applied to the geometry."""
        return Path(events=tuple(self.render()), is_closed=self.is_closed)


# ---------------------------------------------------------------------------
# Variants
# ---------------------------------------------------------------------------


@dataclass(frozen=True)
class Rectangle(Shape):
    """Axis-aligned (before rotation) rectangle with optional round corners.

    When ``is_slot`` is set the corner radius is always ``min(w, h) / 2``.
    """

    center: Point
    width: float
    height: float
    corner_radius: float = 0.0
    is_slot: bool = False
    rotation: float = 0.0

    kind = "rectangle"

    def __post_init__(self) -> None:
        _non_negative("width", self.width)
        _non_negative("height", self.height)
        _non_negative("corner_radius", self.corner_radius)
        limit = min(self.width, self.height) / 2.0
        if self.corner_radius > limit:
            object.__setattr__(self, "corner_radius", limit)

    @classmethod
    def from_corners(cls, x: float, y: float, width: float, height: float) -> Rectangle:
        """Rectangle whose bottom-left corner is ``(x, y)``."""
        return cls(Point(x + width / 2.0, y + height / 2.0), width, height)

    @property
    def effective_corner_radius(self) -> float:
        if self.is_slot:
            return min(self.width, self.height) / 2.0
        return self.corner_radius

    def natural_center(self) -> Point:
        return self.center

    def local_bounds(self) -> Bounds:
        hw, hh = self.width / 2.0, self.height / 2.0
        return Bounds(self.center.x - hw, self.center.y - hh,
                      self.center.x + hw, self.center.y + hh)

    def local_events(self) -> list[PathEvent]:
        b = self.local_bounds()
        r = self.effective_corner_radius
        if r <= 0.0:
            return events_from_points(list(b.corners()))
        k = r * KAPPA
        x0, y0, x1, y1 = b.min_x, b.min_y, b.max_x, b.max_y
        events: list[PathEvent] = [MoveTo(Point(x0 + r, y0))]

        def line(p: Point) -> None:
            last = events[-1].to
            if not last.almost_equal(p, 1e-9):
                events.append(LineTo(p))

        line(Point(x1 - r, y0))
        events.append(CubicTo(Point(x1 - r + k, y0), Point(x1, y0 + r - k), Point(x1, y0 + r)))
        line(Point(x1, y1 - r))
        events.append(CubicTo(Point(x1, y1 - r + k), Point(x1 - r + k, y1), Point(x1 - r, y1)))
        line(Point(x0 + r, y1))
        events.append(CubicTo(Point(x0 + r - k, y1), Point(x0, y1 - r + k), Point(x0, y1 - r)))
        line(Point(x0, y0 + r))
        events.append(CubicTo(Point(x0, y0 + r - k), Point(x0 + r - k, y0), Point(x0 + r, y0)))
        events.append(ClosePath())
        return events

    def area(self) -> float:
        r = self.effective_corner_radius
        return self.width * self.height - (4.0 - math.pi) * r * r

    def translate(self, dx: float, dy: float) -> Rectangle:
        return dataclasses.replace(self, center=_translate(self.center, dx, dy))

    def scale_about(self, anchor: Point, sx: float, sy: float) -> Rectangle:
        k = min(abs(sx), abs(sy))
        return dataclasses.replace(
            self,
            center=_scale(self.center, anchor, sx, sy),
            width=self.width * abs(sx),
            height=self.height * abs(sy),
            corner_radius=self.corner_radius * k,
        )


@dataclass(frozen=True)
class Circle(Shape):
    center: Point
    radius: float
    rotation: float = 0.0

    kind = "circle"

    def __post_init__(self) -> None:
        _non_negative("radius", self.radius)

    def natural_center(self) -> Point:
        return self.center

    def local_bounds(self) -> Bounds:
        r = self.radius
        return Bounds(self.center.x - r, self.center.y - r,
                      self.center.x + r, self.center.y + r)

    def bounds(self) -> Bounds:
        return self.local_bounds()

    def local_events(self) -> list[PathEvent]:
        return ellipse_events(self.center, self.radius, self.radius)

    def area(self) -> float:
        return math.pi * self.radius * self.radius

    def contains_point(self, p: Point, tolerance: float = 0.0) -> bool:
        return p.distance_to(self.center) <= self.radius + tolerance

    def translate(self, dx: float, dy: float) -> Circle:
        return dataclasses.replace(self, center=_translate(self.center, dx, dy))

    def scale_about(self, anchor: Point, sx: float, sy: float) -> Shape:
        """Uniform scaling keeps a circle; non-uniform scaling yields an ellipse."""
        center = _scale(self.center, anchor, sx, sy)
        if abs(abs(sx) - abs(sy)) <= 1e-12:
            return Circle(center, self.radius * abs(sx), self.rotation)
        return Ellipse(center, self.radius * abs(sx), self.radius * abs(sy))


@dataclass(frozen=True)
class Ellipse(Shape):
    center: Point
    rx: float
    ry: float
    rotation: float = 0.0

    kind = "ellipse"

    def __post_init__(self) -> None:
        _non_negative("rx", self.rx)
        _non_negative("ry", self.ry)

    def natural_center(self) -> Point:
        return self.center

    def local_bounds(self) -> Bounds:
        return Bounds(self.center.x - self.rx, self.center.y - self.ry,
                      self.center.x + self.rx, self.center.y + self.ry)

    def bounds(self) -> Bounds:
        """Closed-form AABB of the rotated ellipse."""
        t = math.radians(self.rotation)
        c, s = math.cos(t), math.sin(t)
        half_w = math.sqrt((self.rx * c) ** 2 + (self.ry * s) ** 2)
        half_h = math.sqrt((self.rx * s) ** 2 + (self.ry * c) ** 2)
        return Bounds(self.center.x - half_w, self.center.y - half_h,
                      self.center.x + half_w, self.center.y + half_h)

    def local_events(self) -> list[PathEvent]:
        return ellipse_events(self.center, self.rx, self.ry)

    def area(self) -> float:
        return math.pi * self.rx * self.ry

    def contains_point(self, p: Point, tolerance: float = 0.0) -> bool:
        if tolerance > 0.0 or self.rx == 0.0 or self.ry == 0.0:
            return super().contains_point(p, tolerance)
        q = rotate_point(p, self.center, -self.rotation)
        u = (q.x - self.center.x) / self.rx
        v = (q.y - self.center.y) / self.ry
        return u * u + v * v <= 1.0

    def translate(self, dx: float, dy: float) -> Ellipse:
        return dataclasses.replace(self, center=_translate(self.center, dx, dy))

    def scale_about(self, anchor: Point, sx: float, sy: float) -> Ellipse:
        return dataclasses.replace(
            self,
            center=_scale(self.center, anchor, sx, sy),
            rx=self.rx * abs(sx),
            ry=self.ry * abs(sy),
        )


@dataclass(frozen=True)
class Line(Shape):
    """Open straight segment; its natural centre is the midpoint."""

    start: Point
    end: Point
    rotation: float = 0.0

    kind = "line"
    is_closed = False

    def natural_center(self) -> Point:
        return self.start.lerp(self.end, 0.5)

    def local_bounds(self) -> Bounds:
        return Bounds.from_points((self.start, self.end))

    def local_events(self) -> list[PathEvent]:
        return [MoveTo(self.start), LineTo(self.end)]

    def endpoints(self) -> tuple[Point, Point]:
        """Endpoints with rotation applied."""
        c = self.natural_center()
        return (rotate_point(self.start, c, self.rotation),
                rotate_point(self.end, c, self.rotation))

    def length(self) -> float:
        return self.start.distance_to(self.end)

    def area(self) -> float:
        return 0.0

    def contains_point(self, p: Point, tolerance: float = 0.0) -> bool:
        a, b = self.endpoints()
        seg = LineString([(a.x, a.y), (b.x, b.y)]) if not a.almost_equal(b) else ShapelyPoint(a.x, a.y)
        return seg.distance(ShapelyPoint(p.x, p.y)) <= max(tolerance, 1e-9)

    def translate(self, dx: float, dy: float) -> Line:
        return dataclasses.replace(
            self,
            start=_translate(self.start, dx, dy),
            end=_translate(self.end, dx, dy),
        )

    def scale_about(self, anchor: Point, sx: float, sy: float) -> Line:
        return dataclasses.replace(
            self,
            start=_scale(self.start, anchor, sx, sy),
            end=_scale(self.end, anchor, sx, sy),
        )


@dataclass(frozen=True)
class Triangle(Shape):
    """Isosceles triangle, apex up in the local frame."""

    center: Point
    width: float
    height: float
    rotation: float = 0.0

    kind = "triangle"

    def __post_init__(self) -> None:
        _non_negative("width", self.width)
        _non_negative("height", self.height)

    def natural_center(self) -> Point:
        return self.center

    def vertices(self) -> list[Point]:
        """Un-rotated vertices, CCW from bottom-left."""
        cx, cy = self.center.x, self.center.y
        hw, hh = self.width / 2.0, self.height / 2.0
        return [Point(cx - hw, cy - hh), Point(cx + hw, cy - hh), Point(cx, cy + hh)]

    def local_bounds(self) -> Bounds:
        return Bounds.from_points(self.vertices())

    def local_events(self) -> list[PathEvent]:
        return events_from_points(self.vertices())

    def area(self) -> float:
        return self.width * self.height / 2.0

    def translate(self, dx: float, dy: float) -> Triangle:
        return dataclasses.replace(self, center=_translate(self.center, dx, dy))

    def scale_about(self, anchor: Point, sx: float, sy: float) -> Triangle:
        return dataclasses.replace(
            self,
            center=_scale(self.center, anchor, sx, sy),
            width=self.width * abs(sx),
            height=self.height * abs(sy),
        )


@dataclass(frozen=True)
class RegularPolygon(Shape):
    """Regular polygon inscribed in a circle of ``radius``, flat side down."""

    center: Point
    radius: float
    sides: int
    rotation: float = 0.0

    kind = "polygon"

    def __post_init__(self) -> None:
        _non_negative("radius", self.radius)
        if self.sides < 3:
            raise ValueError(f"sides must be >= 3, got {self.sides}")

    def natural_center(self) -> Point:
        return self.center

    def vertices(self) -> list[Point]:
        n = self.sides
        start = -math.pi / 2.0 + math.pi / n
        return [
            Point(
                self.center.x + self.radius * math.cos(start + 2.0 * math.pi * k / n),
                self.center.y + self.radius * math.sin(start + 2.0 * math.pi * k / n),
            )
            for k in range(n)
        ]

    def local_bounds(self) -> Bounds:
        return Bounds.from_points(self.vertices())

    def local_events(self) -> list[PathEvent]:
        return events_from_points(self.vertices())

    def area(self) -> float:
        n = self.sides
        return 0.5 * n * self.radius ** 2 * math.sin(2.0 * math.pi / n)

    def translate(self, dx: float, dy: float) -> RegularPolygon:
        return dataclasses.replace(self, center=_translate(self.center, dx, dy))

    def scale_about(self, anchor: Point, sx: float, sy: float) -> RegularPolygon:
        return dataclasses.replace(
            self,
            center=_scale(self.center, anchor, sx, sy),
            radius=self.radius * (abs(sx) + abs(sy)) / 2.0,
        )


@lru_cache(maxsize=64)
def _gear_outline(module: float, teeth: int, pressure_angle: float) -> tuple[Point, ...]:
    return tuple(involute_gear_outline(module, teeth, pressure_angle))


@lru_cache(maxsize=64)
def _sprocket_outline(pitch: float, teeth: int, roller: float) -> tuple[Point, ...]:
    return tuple(sprocket_outline(pitch, teeth, roller))


def _centered(outline: Iterable[Point], center: Point) -> list[Point]:
    return [Point(p.x + center.x, p.y + center.y) for p in outline]


@dataclass(frozen=True)
class Gear(Shape):
    """Involute spur gear (outline synthesised on demand)."""

    center: Point
    module: float
    teeth: int
    pressure_angle: float = 20.0
    rotation: float = 0.0

    kind = "gear"

    def __post_init__(self) -> None:
        if self.module <= 0.0:
            raise ValueError(f"module must be > 0, got {self.module}")
        if self.teeth < 4:
            raise ValueError(f"teeth must be >= 4, got {self.teeth}")
        if not 0.0 < self.pressure_angle < 45.0:
            raise ValueError(
                f"pressure_angle must be in (0, 45), got {self.pressure_angle}"
            )

    @property
    def pitch_radius(self) -> float:
        return self.module * self.teeth / 2.0

    def natural_center(self) -> Point:
        return self.center

    def outline(self) -> list[Point]:
        return _centered(
            _gear_outline(self.module, self.teeth, self.pressure_angle), self.center,
        )

    def local_bounds(self) -> Bounds:
        return Bounds.from_points(self.outline())

    def local_events(self) -> list[PathEvent]:
        return events_from_points(self.outline())

    def translate(self, dx: float, dy: float) -> Gear:
        return dataclasses.replace(self, center=_translate(self.center, dx, dy))

    def scale_about(self, anchor: Point, sx: float, sy: float) -> Gear:
        return dataclasses.replace(
            self,
            center=_scale(self.center, anchor, sx, sy),
            module=self.module * (abs(sx) + abs(sy)) / 2.0,
        )


@dataclass(frozen=True)
class Sprocket(Shape):
    """Roller-chain sprocket (ISO 606 tooth form).

    ``roller_diameter`` of 0 selects ``0.67 * pitch``.
    """

    center: Point
    pitch: float
    teeth: int
    roller_diameter: float = 0.0
    rotation: float = 0.0

    kind = "sprocket"

    def __post_init__(self) -> None:
        if self.pitch <= 0.0:
            raise ValueError(f"pitch must be > 0, got {self.pitch}")
        if self.teeth < 4:
            raise ValueError(f"teeth must be >= 4, got {self.teeth}")
        _non_negative("roller_diameter", self.roller_diameter)
        if self.roller_diameter == 0.0:
            object.__setattr__(
                self, "roller_diameter", round(self.pitch * DEFAULT_ROLLER_RATIO, 4),
            )
        if self.roller_diameter >= self.pitch:
            raise ValueError(
                f"roller_diameter must be < pitch, got {self.roller_diameter}"
            )

    @property
    def pitch_radius(self) -> float:
        return self.pitch / (2.0 * math.sin(math.pi / self.teeth))

    def natural_center(self) -> Point:
        return self.center

    def outline(self) -> list[Point]:
        return _centered(
            _sprocket_outline(self.pitch, self.teeth, self.roller_diameter),
            self.center,
        )

    def local_bounds(self) -> Bounds:
        return Bounds.from_points(self.outline())

    def local_events(self) -> list[PathEvent]:
        return events_from_points(self.outline())

    def translate(self, dx: float, dy: float) -> Sprocket:
        return dataclasses.replace(self, center=_translate(self.center, dx, dy))

    def scale_about(self, anchor: Point, sx: float, sy: float) -> Sprocket:
        k = (abs(sx) + abs(sy)) / 2.0
        return dataclasses.replace(
            self,
            center=_scale(self.center, anchor, sx, sy),
            pitch=self.pitch * k,
            roller_diameter=self.roller_diameter * k,
        )


@dataclass(frozen=True)
class Text(Shape):
    """Text rendered as glyph outlines.

    ``anchor`` is the left end of the baseline; ``size`` the em height in mm.
    """

    anchor: Point
    content: str
    font_family: str = DEFAULT_FONT_FAMILY
    size: float = 10.0
    bold: bool = False
    italic: bool = False
    rotation: float = 0.0

    kind = "text"

    def __post_init__(self) -> None:
        if self.size <= 0.0:
            raise ValueError(f"size must be > 0, got {self.size}")

    def local_events(self) -> list[PathEvent]:
        return text_events(
            self.content, self.anchor, self.size, self.font_family,
            self.bold, self.italic,
        )

    def local_bounds(self) -> Bounds:
        return events_bounds(self.local_events()) or Bounds.at(self.anchor)

    def natural_center(self) -> Point:
        return self.local_bounds().center

    def translate(self, dx: float, dy: float) -> Text:
        return dataclasses.replace(self, anchor=_translate(self.anchor, dx, dy))

    def scale_about(self, anchor: Point, sx: float, sy: float) -> Text:
        return dataclasses.replace(
            self,
            anchor=_scale(self.anchor, anchor, sx, sy),
            size=self.size * abs(sy),
        )


@dataclass(frozen=True)
class Path(Shape):
    """Free path built from path events.

    When ``is_closed`` is set, every subpath is treated as a closed ring
    whether or not it ends with ``ClosePath``.
    """

    events: tuple[PathEvent, ...] = ()
    is_closed: bool = True
    rotation: float = 0.0

    kind = "path"

    def __post_init__(self) -> None:
        if not isinstance(self.events, tuple):
            object.__setattr__(self, "events", tuple(self.events))

    @classmethod
    def from_points(cls, points: Sequence[Point], closed: bool = True) -> Path:
        return cls(events=tuple(events_from_points(list(points), closed)), is_closed=closed)

    @classmethod
    def from_rings(cls, rings: Iterable[Sequence[Point]]) -> Path:
        """Closed path with one subpath per ring."""
        events: list[PathEvent] = []
        for ring in rings:
            events.extend(events_from_points(list(ring), closed=True))
        return cls(events=tuple(events), is_closed=True)

    @property
    def is_empty(self) -> bool:
        return not flatten(self.events)

    @property
    def is_ccw(self) -> bool:
        """Winding of the first subpath after rotation (True = CCW)."""
        subs = self.to_polyline()
        return bool(subs) and signed_area(subs[0].points) > 0.0

    def natural_center(self) -> Point:
        return self.local_bounds().center

    def local_events(self) -> list[PathEvent]:
        return list(self.events)

    def local_bounds(self) -> Bounds:
        b = events_bounds(self.events)
        if b is None:
            return Bounds.at(Point(0.0, 0.0))
        return b

    def to_polyline(self, tolerance: float = DEFAULT_TOLERANCE) -> list[Subpath]:
        subs = flatten(self.render(), tolerance)
        if self.is_closed:
            return [Subpath(s.points, len(s.points) >= 3) for s in subs]
        return subs

    def translate(self, dx: float, dy: float) -> Path:
        return dataclasses.replace(self, events=tuple(translate_events(self.events, dx, dy)))

    def scale_about(self, anchor: Point, sx: float, sy: float) -> Path:
        return dataclasses.replace(
            self, events=tuple(scale_events(self.events, anchor, sx, sy)),
        )


SHAPE_TYPES: dict[str, type[Shape]] = {
    cls.kind: cls
    for cls in (Rectangle, Circle, Ellipse, Line, Triangle, RegularPolygon,
                Gear, Sprocket, Text, Path)
}
