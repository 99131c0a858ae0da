"""Path events -- the rendering vocabulary shared by every shape.

A shape renders itself as a flat sequence of events::

    MoveTo(p) LineTo(p) QuadTo(ctrl, p) CubicTo(c1, c2, p) ClosePath()

Each ``MoveTo`` starts a new subpath.  ``flatten`` turns an event stream
into polylines, subdividing Bézier curves until the chordal deviation is
below a tolerance (0.01 mm by default).
"""

from __future__ import annotations

import math
import re
from dataclasses import dataclass
from typing import Callable, Iterable, Sequence, Union

import numpy as np

from millcam.geometry.point import Bounds, Point, rotate_point

DEFAULT_TOLERANCE = 0.01

# Cubic Bézier handle length for a quarter circle
KAPPA = 4.0 * (math.sqrt(2.0) - 1.0) / 3.0


# ---------------------------------------------------------------------------
# Events
# ---------------------------------------------------------------------------


@dataclass(frozen=True, slots=True)
class MoveTo:
    to: Point


@dataclass(frozen=True, slots=True)
class LineTo:
    to: Point


@dataclass(frozen=True, slots=True)
class QuadTo:
    ctrl: Point
    to: Point


@dataclass(frozen=True, slots=True)
class CubicTo:
    ctrl1: Point
    ctrl2: Point
    to: Point


@dataclass(frozen=True, slots=True)
class ClosePath:
    pass


PathEvent = Union[MoveTo, LineTo, QuadTo, CubicTo, ClosePath]


@dataclass(frozen=True, slots=True)
class Subpath:
    """One flattened subpath.

    ``points`` never repeats the first point at the end, even when
    ``closed`` is ``True``.
    """

    points: tuple[Point, ...]
    closed: bool


# ---------------------------------------------------------------------------
# Construction helpers
# ---------------------------------------------------------------------------


def events_from_points(
    points: Sequence[Point], closed: bool = True,
) -> list[PathEvent]:
    """Polyline (or polygon) as events."""
    if not points:
        return []
    events: list[PathEvent] = [MoveTo(points[0])]
    events.extend(LineTo(p) for p in points[1:])
    if closed:
        events.append(ClosePath())
    return events


def ellipse_events(center: Point, rx: float, ry: float) -> list[PathEvent]:
    """Closed ellipse as four cubic Béziers, CCW from the +X vertex."""
    cx, cy = center.x, center.y
    kx, ky = rx * KAPPA, ry * KAPPA
    return [
        MoveTo(Point(cx + rx, cy)),
        CubicTo(Point(cx + rx, cy + ky), Point(cx + kx, cy + ry), Point(cx, cy + ry)),
        CubicTo(Point(cx - kx, cy + ry), Point(cx - rx, cy + ky), Point(cx - rx, cy)),
        CubicTo(Point(cx - rx, cy - ky), Point(cx - kx, cy - ry), Point(cx, cy - ry)),
        CubicTo(Point(cx + kx, cy - ry), Point(cx + rx, cy - ky), Point(cx + rx, cy)),
        ClosePath(),
    ]


# ---------------------------------------------------------------------------
# Transforms
# ---------------------------------------------------------------------------


def map_events(
    events: Iterable[PathEvent], fn: Callable[[Point], Point],
) -> list[PathEvent]:
    """Apply a point transform to every coordinate of every event.

    Only valid for affine transforms (Bézier curves are affine-invariant).
    """
    out: list[PathEvent] = []
    for ev in events:
        if isinstance(ev, MoveTo):
            out.append(MoveTo(fn(ev.to)))
        elif isinstance(ev, LineTo):
            out.append(LineTo(fn(ev.to)))
        elif isinstance(ev, QuadTo):
            out.append(QuadTo(fn(ev.ctrl), fn(ev.to)))
        elif isinstance(ev, CubicTo):
            out.append(CubicTo(fn(ev.ctrl1), fn(ev.ctrl2), fn(ev.to)))
        else:
            out.append(ev)
    return out


def rotate_events(
    events: Iterable[PathEvent], center: Point, degrees: float,
) -> list[PathEvent]:
    if degrees % 360.0 == 0.0:
        return list(events)
    return map_events(events, lambda p: rotate_point(p, center, degrees))


def translate_events(
    events: Iterable[PathEvent], dx: float, dy: float,
) -> list[PathEvent]:
    return map_events(events, lambda p: Point(p.x + dx, p.y + dy))


def scale_events(
    events: Iterable[PathEvent], anchor: Point, sx: float, sy: float,
) -> list[PathEvent]:
    return map_events(
        events,
        lambda p: Point(
            anchor.x + (p.x - anchor.x) * sx,
            anchor.y + (p.y - anchor.y) * sy,
        ),
    )


def control_points(events: Iterable[PathEvent]) -> list[Point]:
    """Every coordinate mentioned by the events (hull of the curve)."""
    pts: list[Point] = []
    for ev in events:
        if isinstance(ev, (MoveTo, LineTo)):
            pts.append(ev.to)
        elif isinstance(ev, QuadTo):
            pts.extend((ev.ctrl, ev.to))
        elif isinstance(ev, CubicTo):
            pts.extend((ev.ctrl1, ev.ctrl2, ev.to))
    return pts


# ---------------------------------------------------------------------------
# Flattening
# ---------------------------------------------------------------------------


def _quad_steps(p0: Point, p1: Point, p2: Point, tol: float) -> int:
    # Wang's formula for degree 2
    dd = (p0 - p1 * 2.0 + p2).length()
    return max(1, math.ceil(math.sqrt(dd / (4.0 * tol))))


def _cubic_steps(p0: Point, p1: Point, p2: Point, p3: Point, tol: float) -> int:
    dd = max((p0 - p1 * 2.0 + p2).length(), (p1 - p2 * 2.0 + p3).length())
    return max(1, math.ceil(math.sqrt(0.75 * dd / tol)))


def _sample_quad(p0: Point, p1: Point, p2: Point, n: int) -> list[Point]:
    t = np.linspace(0.0, 1.0, n + 1)[1:]
    a = (1.0 - t) ** 2
    b = 2.0 * (1.0 - t) * t
    c = t ** 2
    xs = a * p0.x + b * p1.x + c * p2.x
    ys = a * p0.y + b * p1.y + c * p2.y
    return [Point(float(x), float(y)) for x, y in zip(xs, ys)]


def _sample_cubic(
    p0: Point, p1: Point, p2: Point, p3: Point, n: int,
) -> list[Point]:
    t = np.linspace(0.0, 1.0, n + 1)[1:]
    mt = 1.0 - t
    a = mt ** 3
    b = 3.0 * mt ** 2 * t
    c = 3.0 * mt * t ** 2
    d = t ** 3
    xs = a * p0.x + b * p1.x + c * p2.x + d * p3.x
    ys = a * p0.y + b * p1.y + c * p2.y + d * p3.y
    return [Point(float(x), float(y)) for x, y in zip(xs, ys)]


def flatten(
    events: Iterable[PathEvent], tolerance: float = DEFAULT_TOLERANCE,
) -> list[Subpath]:
    """Flatten events into polylines.

    Parameters
    ----------
    events : Iterable[PathEvent]
        Event stream.  A drawing event before any ``MoveTo`` starts at
        the origin.
    tolerance : float
        Maximum chordal deviation for curve subdivision (mm).

    Returns
    -------
    list[Subpath]
        Subpaths in event order.  Consecutive duplicate points are
        removed; single-point subpaths are dropped.
    """
    tol = max(tolerance, 1e-6)
    subpaths: list[Subpath] = []
    current: list[Point] = []
    start: Point | None = None

    def finish(closed: bool) -> None:
        pts = list(current)
        if closed and len(pts) > 1 and pts[-1].almost_equal(pts[0]):
            pts.pop()
        if len(pts) >= 2:
            subpaths.append(Subpath(tuple(pts), closed and len(pts) >= 3))

    for ev in events:
        if isinstance(ev, MoveTo):
            if current:
                finish(False)
            current = [ev.to]
            start = ev.to
            continue
        if isinstance(ev, ClosePath):
            if current:
                finish(True)
            # Drawing after a close continues from the subpath start
            current = []
            continue

        if not current:
            current = [start if start is not None else Point(0.0, 0.0)]
            start = current[0]
        last = current[-1]

        if isinstance(ev, LineTo):
            new_pts = [ev.to]
        elif isinstance(ev, QuadTo):
            n = _quad_steps(last, ev.ctrl, ev.to, tol)
            new_pts = _sample_quad(last, ev.ctrl, ev.to, n)
        elif isinstance(ev, CubicTo):
            n = _cubic_steps(last, ev.ctrl1, ev.ctrl2, ev.to, tol)
            new_pts = _sample_cubic(last, ev.ctrl1, ev.ctrl2, ev.to, n)
        else:
            continue

        for p in new_pts:
            if not p.almost_equal(current[-1], 1e-9):
                current.append(p)

    if current:
        finish(False)
    return subpaths


def events_bounds(
    events: Sequence[PathEvent], tolerance: float = DEFAULT_TOLERANCE,
) -> Bounds | None:
    """Tight AABB of the flattened events, ``None`` when nothing is drawn."""
    pts = [p for sp in flatten(events, tolerance) for p in sp.points]
    if not pts:
        pts = [ev.to for ev in events if isinstance(ev, MoveTo)]
    if not pts:
        return None
    return Bounds.from_points(pts)


def signed_area(points: Sequence[Point]) -> float:
    """Shoelace area of a closed ring; positive for CCW winding."""
    n = len(points)
    if n < 3:
        return 0.0
    xs = np.fromiter((p.x for p in points), dtype=float, count=n)
    ys = np.fromiter((p.y for p in points), dtype=float, count=n)
    return 0.5 * float(np.dot(xs, np.roll(ys, -1)) - np.dot(ys, np.roll(xs, -1)))


def polyline_length(points: Sequence[Point], closed: bool = False) -> float:
    if len(points) < 2:
        return 0.0
    total = sum(a.distance_to(b) for a, b in zip(points, points[1:]))
    if closed:
        total += points[-1].distance_to(points[0])
    return total


# ---------------------------------------------------------------------------
# SVG path data
# ---------------------------------------------------------------------------

_PATH_TOKEN = re.compile(r"[MmLlHhVvQqCcZz]|[-+]?(?:\d+\.?\d*|\.\d+)(?:[eE][-+]?\d+)?")

_ARITY = {"M": 2, "L": 2, "H": 1, "V": 1, "Q": 4, "C": 6, "Z": 0}


def parse_path_data(data: str) -> list[PathEvent]:
    """Parse the SVG path-data subset ``M L H V Q C Z`` (absolute and relative).

    Implicit repeats follow SVG rules: extra coordinate pairs after ``M``
    are line-tos.

    Raises
    ------
    ValueError
        On unknown commands, missing coordinates or numbers before the
        first command.
    """
    tokens = _PATH_TOKEN.findall(data)
    leftover = _PATH_TOKEN.sub("", data).replace(",", "").strip()
    if leftover:
        raise ValueError(f"Unsupported path data: {leftover[:20]!r}")

    events: list[PathEvent] = []
    cur = Point(0.0, 0.0)
    start = cur
    i = 0
    cmd = ""
    while i < len(tokens):
        tok = tokens[i]
        if tok.isalpha():
            cmd = tok
            i += 1
            if cmd in "Zz":
                events.append(ClosePath())
                cur = start
                continue
        elif not cmd or cmd in "Zz":
            raise ValueError(f"Number {tok!r} without a path command")

        upper = cmd.upper()
        n = _ARITY[upper]
        args = tokens[i:i + n]
        if len(args) < n or any(a.isalpha() for a in args):
            raise ValueError(f"Path command {cmd!r} needs {n} numbers")
        vals = [float(a) for a in args]
        i += n
        rel = cmd.islower()

        def pt(x: float, y: float) -> Point:
            return Point(cur.x + x, cur.y + y) if rel else Point(x, y)

        if upper == "M":
            cur = pt(vals[0], vals[1])
            start = cur
            events.append(MoveTo(cur))
            # Subsequent pairs are implicit line-tos
            cmd = "l" if rel else "L"
        elif upper == "L":
            cur = pt(vals[0], vals[1])
            events.append(LineTo(cur))
        elif upper == "H":
            cur = Point(cur.x + vals[0] if rel else vals[0], cur.y)
            events.append(LineTo(cur))
        elif upper == "V":
            cur = Point(cur.x, cur.y + vals[0] if rel else vals[0])
            events.append(LineTo(cur))
        elif upper == "Q":
            ctrl = pt(vals[0], vals[1])
            cur = pt(vals[2], vals[3])
            events.append(QuadTo(ctrl, cur))
        else:
            c1 = pt(vals[0], vals[1])
            c2 = pt(vals[2], vals[3])
            cur = pt(vals[4], vals[5])
            events.append(CubicTo(c1, c2, cur))
    return events


def _num(v: float) -> str:
    text = f"{v:.4f}".rstrip("0").rstrip(".")
    return "0" if text in ("-0", "") else text


def format_path_data(events: Iterable[PathEvent]) -> str:
    """Absolute SVG path data for *events* (inverse of ``parse_path_data``)."""
    parts: list[str] = []
    for ev in events:
        if isinstance(ev, MoveTo):
            parts.append(f"M {_num(ev.to.x)} {_num(ev.to.y)}")
        elif isinstance(ev, LineTo):
            parts.append(f"L {_num(ev.to.x)} {_num(ev.to.y)}")
        elif isinstance(ev, QuadTo):
            parts.append(
                f"Q {_num(ev.ctrl.x)} {_num(ev.ctrl.y)} {_num(ev.to.x)} {_num(ev.to.y)}"
            )
        elif isinstance(ev, CubicTo):
            parts.append(
                f"C {_num(ev.ctrl1.x)} {_num(ev.ctrl1.y)} "
                f"{_num(ev.ctrl2.x)} {_num(ev.ctrl2.y)} {_num(ev.to.x)} {_num(ev.to.y)}"
            )
        else:
            parts.append("Z")
    return " ".join(parts)
