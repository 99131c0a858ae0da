"""Conversions between point rings and shapely regions.

Closed regions are shapely ``Polygon`` / ``MultiPolygon`` objects.  Rings
coming from shapes are combined with the even-odd rule, so glyph
counters and path holes come out as holes.  Rings going back out are
oriented: exteriors CCW, holes CW.
"""

from __future__ import annotations

import logging
import math
from typing import Sequence

import shapely
from shapely.errors import GEOSException
from shapely.geometry import MultiPolygon, Polygon
from shapely.geometry.base import BaseGeometry
from shapely.geometry.polygon import orient

from millcam.geometry.point import Point

logger = logging.getLogger(__name__)

# Coincident edges collapse within this distance (mm)
CLEAN_TOLERANCE = 1e-5

MAX_QUAD_SEGS = 64


def empty_region() -> Polygon:
    return Polygon()


def polygons_of(geom: BaseGeometry | None) -> list[Polygon]:
    """Non-empty polygonal parts of *geom* (other geometry types dropped)."""
    if geom is None or geom.is_empty:
        return []
    out = []
    for part in shapely.get_parts(geom):
        if isinstance(part, Polygon) and not part.is_empty:
            out.append(part)
        elif isinstance(part, MultiPolygon):
            out.extend(p for p in part.geoms if not p.is_empty)
        elif part.geom_type == "GeometryCollection":
            out.extend(polygons_of(part))
    return out


def as_region(polys: Sequence[Polygon]) -> BaseGeometry:
    if not polys:
        return empty_region()
    if len(polys) == 1:
        return polys[0]
    return MultiPolygon(list(polys))


def ring_polygon(points: Sequence[Point]) -> BaseGeometry:
    """Valid polygonal region enclosed by one ring (self-overlaps repaired)."""
    if len(points) < 3:
        return empty_region()
    poly = Polygon([(p.x, p.y) for p in points])
    if not poly.is_valid:
        poly = shapely.make_valid(poly)
    return as_region(polygons_of(poly))


def rings_to_region(rings: Sequence[Sequence[Point]]) -> BaseGeometry:
    """Combine rings with the even-odd fill rule.

    Returns
    -------
    BaseGeometry
        Polygon or MultiPolygon; empty when no ring encloses area or
        when GEOS fails on degenerate input.
    """
    region: BaseGeometry = empty_region()
    try:
        for ring in rings:
            poly = ring_polygon(ring)
            if poly.is_empty:
                continue
            region = poly if region.is_empty else region.symmetric_difference(poly)
    except GEOSException as exc:
        logger.debug("Ring combination failed: %s", exc)
        return empty_region()
    return as_region(polygons_of(region))


def clean_region(geom: BaseGeometry, tolerance: float = CLEAN_TOLERANCE) -> BaseGeometry:
    """Snap to a *tolerance* grid and drop sliver / degenerate parts."""
    if geom is None or geom.is_empty:
        return empty_region()
    try:
        snapped = shapely.set_precision(geom, tolerance)
    except GEOSException as exc:
        logger.debug("Precision snap failed: %s", exc)
        return empty_region()
    polys = [p for p in polygons_of(snapped) if p.area > tolerance * tolerance]
    return as_region(polys)


def _ring_points(coords, tolerance: float) -> list[Point]:
    pts: list[Point] = []
    for x, y in list(coords)[:-1]:
        p = Point(float(x), float(y))
        if not pts or not p.almost_equal(pts[-1], tolerance):
            pts.append(p)
    if len(pts) > 1 and pts[-1].almost_equal(pts[0], tolerance):
        pts.pop()
    return pts


def region_rings(
    geom: BaseGeometry, tolerance: float = CLEAN_TOLERANCE,
) -> list[tuple[list[Point], bool]]:
    """Oriented rings of a region as ``(points, is_hole)`` pairs.

    Exteriors are CCW, holes CW.  Rings with fewer than three distinct
    vertices are dropped.
    """
    rings: list[tuple[list[Point], bool]] = []
    for poly in polygons_of(geom):
        poly = orient(poly, sign=1.0)
        ext = _ring_points(poly.exterior.coords, tolerance)
        if len(ext) >= 3:
            rings.append((ext, False))
        for interior in poly.interiors:
            hole = _ring_points(interior.coords, tolerance)
            if len(hole) >= 3:
                rings.append((hole, True))
    return rings


def quad_segs_for(distance: float, tolerance: float = 0.01) -> int:
    """Quarter-circle segment count keeping chordal error below *tolerance*."""
    r = abs(distance)
    if r <= tolerance:
        return 4
    half_angle = math.acos(max(-1.0, 1.0 - tolerance / r))
    n = math.ceil((math.pi / 2.0) / (2.0 * half_angle))
    return int(min(max(n, 4), MAX_QUAD_SEGS))


def buffer_region(
    geom: BaseGeometry,
    distance: float,
    join_style: str = "round",
    tolerance: float = 0.01,
) -> BaseGeometry:
    """Offset a region; positive grows, negative shrinks.

    Failures (GEOS errors on adversarial input) produce an empty region.
    """
    if geom is None or geom.is_empty:
        return empty_region()
    if distance == 0.0:
        return geom
    try:
        out = geom.buffer(
            distance,
            quad_segs=quad_segs_for(distance, tolerance),
            join_style=join_style,
            mitre_limit=5.0,
        )
    except (GEOSException, ValueError) as exc:
        logger.debug("Buffer by %.4f failed: %s", distance, exc)
        return empty_region()
    return as_region(polygons_of(out))
