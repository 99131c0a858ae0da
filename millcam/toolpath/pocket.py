"""Pocket clearing strategies and move linking.

Every strategy works on the *inset* region (the shape shrunk by the tool
radius, i.e. the locus of the tool centre) and returns cut polylines as
``(points, closed)`` pairs in cut order.  ``link_paths`` turns those into
segments for one depth pass.

Raster
    Straight cuts along the longer bbox axis, spaced by step-in, each
    clipped to the inset and optionally shortened around its centre.
Contour-parallel
    Successive inward offsets by step-in, outer ring first.
Adaptive
    Grows a cleared region outward from the inset's pole of
    inaccessibility by at most step-in per iteration and cuts only the
    new frontier, so radial engagement never exceeds step-in.
"""

from __future__ import annotations

import logging

import numpy as np
from shapely.errors import GEOSException
from shapely.geometry import LineString, Polygon
from shapely.geometry.base import BaseGeometry
from shapely.ops import linemerge, polylabel

from millcam.geometry.point import Point
from millcam.geometry.region import (
    buffer_region,
    clean_region,
    polygons_of,
    region_rings,
)
from millcam.toolpath.entry import zigzag_ramp
from millcam.toolpath.segments import LinearMove, RapidMove, Segment

logger = logging.getLogger(__name__)

# Cut polylines: (points, closed)
CutPath = tuple[list[Point], bool]

MIN_CUT_LENGTH = 1e-3
LINK_TOLERANCE = 1e-6
MAX_CONTOUR_LEVELS = 10_000
MAX_ADAPTIVE_ITERATIONS = 5_000


class AdaptiveFailure(RuntimeError):
    """Adaptive clearing could not cover the region."""

    pass


def _line_points(line: LineString) -> list[Point]:
    return [Point(float(x), float(y)) for x, y in line.coords]


def _line_parts(geom: BaseGeometry) -> list[LineString]:
    """Non-degenerate line pieces of an intersection / difference result."""
    if geom.is_empty:
        return []
    if isinstance(geom, LineString):
        return [geom] if geom.length >= MIN_CUT_LENGTH else []
    out: list[LineString] = []
    for part in getattr(geom, "geoms", []):
        out.extend(_line_parts(part))
    return out


# ---------------------------------------------------------------------------
# Raster
# ---------------------------------------------------------------------------


def raster_paths(
    inset: BaseGeometry,
    step_in: float,
    along_x: bool = True,
    fill_ratio: float = 1.0,
    bidirectional: bool = True,
) -> list[CutPath]:
    """Parallel cuts clipped to *inset*.

    Parameters
    ----------
    inset : BaseGeometry
        Tool-centre region.
    step_in : float
        Spacing between raster lines (mm).
    along_x : bool
        Cut direction; lines are spaced along the other axis.
    fill_ratio : float
        Fraction of every span that is cut, centred on the span.
    bidirectional : bool
        Reverse every other line (zig-zag) instead of always cutting in
        the positive direction.
    """
    if inset.is_empty or step_in <= 0.0 or fill_ratio <= 0.0:
        return []
    min_x, min_y, max_x, max_y = inset.bounds
    lo, hi = (min_y, max_y) if along_x else (min_x, max_x)
    positions = list(np.arange(lo, hi, step_in))
    if not positions or hi - positions[-1] > 1e-9:
        positions.append(hi)

    paths: list[CutPath] = []
    row = 0
    for pos in positions:
        if along_x:
            probe = LineString([(min_x - 1.0, pos), (max_x + 1.0, pos)])
        else:
            probe = LineString([(pos, min_y - 1.0), (pos, max_y + 1.0)])
        pieces = _line_parts(probe.intersection(inset))
        if not pieces:
            continue
        spans = []
        for piece in pieces:
            pts = _line_points(piece)
            a, b = pts[0], pts[-1]
            if (a.x, a.y) > (b.x, b.y):
                a, b = b, a
            if fill_ratio < 1.0:
                mid = a.lerp(b, 0.5)
                a, b = mid.lerp(a, fill_ratio), mid.lerp(b, fill_ratio)
            if a.distance_to(b) >= MIN_CUT_LENGTH:
                spans.append((a, b))
        spans.sort(key=lambda s: (s[0].x, s[0].y))
        if bidirectional and row % 2 == 1:
            spans = [(b, a) for a, b in reversed(spans)]
        paths.extend(([a, b], False) for a, b in spans)
        row += 1
    return paths


# ---------------------------------------------------------------------------
# Contour-parallel
# ---------------------------------------------------------------------------


def contour_paths(inset: BaseGeometry, step_in: float) -> list[CutPath]:
    """Rings of successive inward offsets, outermost level first."""
    if inset.is_empty or step_in <= 0.0:
        return []
    paths: list[CutPath] = []
    current = clean_region(inset)
    for _ in range(MAX_CONTOUR_LEVELS):
        if current.is_empty:
            break
        paths.extend((pts, True) for pts, _ in region_rings(current))
        current = clean_region(buffer_region(current, -step_in))
    else:
        logger.debug("Contour-parallel stopped after %d levels", MAX_CONTOUR_LEVELS)
    return paths


# ---------------------------------------------------------------------------
# Adaptive
# ---------------------------------------------------------------------------


def _adaptive_polygon(poly: Polygon, step_in: float) -> list[CutPath]:
    seed = polylabel(poly, tolerance=max(step_in / 10.0, 1e-3))
    cleared = clean_region(seed.buffer(step_in).intersection(poly))
    if cleared.is_empty:
        raise AdaptiveFailure("seed circle does not fit")
    paths: list[CutPath] = [(pts, True) for pts, _ in region_rings(cleared)]
    wall = poly.boundary.buffer(LINK_TOLERANCE * 100.0)
    target = poly.area

    for _ in range(MAX_ADAPTIVE_ITERATIONS):
        if target - cleared.area <= 1e-6 * max(target, 1.0):
            break
        grown = clean_region(buffer_region(cleared, step_in).intersection(poly))
        if grown.area - cleared.area <= 1e-9:
            raise AdaptiveFailure("no progress")
        frontier = grown.boundary.difference(wall)
        if not frontier.is_empty:
            merged = linemerge(frontier) if frontier.geom_type == "MultiLineString" else frontier
            for piece in _line_parts(merged):
                pts = _line_points(piece)
                closed = len(pts) > 3 and pts[0].almost_equal(pts[-1])
                if closed:
                    pts = pts[:-1]
                paths.append((pts, closed))
        cleared = grown
    else:
        raise AdaptiveFailure(f"exceeded {MAX_ADAPTIVE_ITERATIONS} iterations")

    # Finishing pass along the walls
    paths.extend((pts, True) for pts, _ in region_rings(poly))
    return paths


def adaptive_paths(inset: BaseGeometry, step_in: float) -> list[CutPath]:
    """Frontier-clearing paths for every part of *inset*.

    Raises
    ------
    AdaptiveFailure
        When the frontier stalls or the iteration cap is hit.
    """
    if inset.is_empty or step_in <= 0.0:
        return []
    paths: list[CutPath] = []
    try:
        for poly in polygons_of(clean_region(inset)):
            paths.extend(_adaptive_polygon(poly, step_in))
    except GEOSException as exc:
        raise AdaptiveFailure(str(exc)) from exc
    return paths


# ---------------------------------------------------------------------------
# Linking
# ---------------------------------------------------------------------------


def rotate_ring(ring: list[Point], near: Point | None) -> list[Point]:
    """Ring re-started at the vertex closest to *near*."""
    if near is None or len(ring) < 2:
        return list(ring)
    k = min(range(len(ring)), key=lambda i: ring[i].distance_to(near))
    return ring[k:] + ring[:k]


def _can_link(a: Point, b: Point, region: BaseGeometry) -> bool:
    if a.almost_equal(b):
        return True
    try:
        return bool(region.buffer(LINK_TOLERANCE).covers(LineString([a.to_tuple(), b.to_tuple()])))
    except GEOSException:
        return False


def link_paths(
    paths: list[CutPath],
    region: BaseGeometry,
    z: float,
    entry_z: float,
    safe_z: float,
    feed: float,
    spindle: int,
    ramp_angle: float = 0.0,
) -> list[Segment]:
    """Segments for one pass over *paths*.

    Consecutive paths are joined with a straight cut when the connecting
    line stays inside *region*; otherwise the tool retracts to *safe_z*,
    traverses and re-enters.  Every entry ramps from *entry_z* when
    *ramp_angle* is positive.  The pass ends retracted above its last
    point.
    """
    segments: list[Segment] = []
    pos: Point | None = None
    for pts, closed in paths:
        if closed:
            pts = rotate_ring(pts, pos)
            pts = pts + [pts[0]]
        if len(pts) < 2:
            continue
        first = pts[0]
        if pos is None:
            segments.append(RapidMove(first, first, safe_z))
            segments.extend(_entry(pts, z, entry_z, feed, spindle, ramp_angle))
        elif _can_link(pos, first, region):
            if not pos.almost_equal(first):
                segments.append(LinearMove(pos, first, z, feed, spindle))
        else:
            segments.append(RapidMove(pos, pos, safe_z))
            segments.append(RapidMove(pos, first, safe_z))
            segments.extend(_entry(pts, z, entry_z, feed, spindle, ramp_angle))
        for a, b in zip(pts, pts[1:]):
            if not a.almost_equal(b, 1e-9):
                segments.append(LinearMove(a, b, z, feed, spindle))
        pos = pts[-1]
    if pos is not None:
        segments.append(RapidMove(pos, pos, safe_z))
    return segments


def _entry(
    pts: list[Point], z: float, entry_z: float, feed: float, spindle: int, ramp_angle: float,
) -> list[LinearMove]:
    if ramp_angle <= 0.0:
        return []
    return zigzag_ramp(pts[0], pts[1], entry_z, z, ramp_angle, feed, spindle)


def cut_length(paths: list[CutPath]) -> float:
    total = 0.0
    for pts, closed in paths:
        ring = pts + [pts[0]] if closed and pts else pts
        total += sum(a.distance_to(b) for a, b in zip(ring, ring[1:]))
    return total

