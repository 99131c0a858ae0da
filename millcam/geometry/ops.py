"""Region operations: booleans, parallel offset, fillet and chamfer.

All operations accept shapes (rotation is baked in first) and return a
``Path``.  Degenerate input never raises: failures and total collapse
come back as an empty ``Path`` and are logged at DEBUG.

Sign conventions
    ``offset_shape(s, d)``   d > 0 grows the region, d < 0 shrinks it.
    ``offset_ring(r, d)``    d > 0 is outward for a CCW ring and inward
                             for a CW ring (the winding decides).

Fillet and chamfer are morphological opening operations::

    fillet(S, r)  = grow(shrink(S, r), r)             round joins
    chamfer(S, d) = grow(shrink(S, d), d)             bevel joins

A bevel join is the straight chord between the two offset edges, so a
chamfered corner is the filleted corner with its arc replaced by a line.
"""

from __future__ import annotations

import logging
from enum import Enum
from typing import Sequence

from shapely.errors import GEOSException
from shapely.geometry.base import BaseGeometry

from millcam.geometry.path_events import signed_area
from millcam.geometry.point import Point
from millcam.geometry.region import (
    buffer_region,
    clean_region,
    empty_region,
    region_rings,
    ring_polygon,
)
from millcam.geometry.shapes import Path, Shape

logger = logging.getLogger(__name__)


class BooleanOp(Enum):
    UNION = "union"
    DIFFERENCE = "difference"
    INTERSECTION = "intersection"


# ---------------------------------------------------------------------------
# Region <-> Path
# ---------------------------------------------------------------------------


def region_of(shape: Shape) -> BaseGeometry:
    """Closed region of *shape* with rotation baked in (empty when open)."""
    try:
        return shape.to_polygon()
    except (GEOSException, ValueError) as exc:
        logger.debug("Could not build region for %s: %s", shape.kind, exc)
        return empty_region()


def path_from_region(geom: BaseGeometry) -> Path:
    """Cleaned, oriented rings of *geom* as a closed ``Path``."""
    cleaned = clean_region(geom)
    return Path.from_rings(points for points, _ in region_rings(cleaned))


# ---------------------------------------------------------------------------
# Booleans
# ---------------------------------------------------------------------------


def boolean(a: Shape, b: Shape, op: BooleanOp) -> Path:
    """Boolean of two closed shapes; the result is always a ``Path``.

    Coincident edges collapse within 1e-5 mm and sliver rings with fewer
    than three vertices are dropped.  Open shapes contribute no area.
    """
    ra, rb = region_of(a), region_of(b)
    try:
        if op is BooleanOp.UNION:
            out = ra.union(rb) if not ra.is_empty else rb
        elif op is BooleanOp.DIFFERENCE:
            out = ra.difference(rb) if not rb.is_empty else ra
        else:
            out = ra.intersection(rb)
    except GEOSException as exc:
        logger.debug("Boolean %s failed: %s", op.value, exc)
        return Path()
    return path_from_region(out)


def union(a: Shape, b: Shape) -> Path:
    return boolean(a, b, BooleanOp.UNION)


def difference(a: Shape, b: Shape) -> Path:
    return boolean(a, b, BooleanOp.DIFFERENCE)


def intersection(a: Shape, b: Shape) -> Path:
    return boolean(a, b, BooleanOp.INTERSECTION)


# ---------------------------------------------------------------------------
# Offsets
# ---------------------------------------------------------------------------


def offset_ring(points: Sequence[Point], distance: float) -> list[list[Point]]:
    """Parallel offset of one closed polyline.

    Parameters
    ----------
    points : Sequence[Point]
        Closed ring (first point not repeated).
    distance : float
        Offset distance; positive is outward for CCW rings, inward for CW.

    Returns
    -------
    list[list[Point]]
        Resulting rings with the input's winding.  Several rings when the
        offset splits the region, empty on total collapse or failure.
    """
    area = signed_area(points)
    if abs(area) < 1e-12:
        return []
    ccw = area > 0.0
    region = ring_polygon(points)
    grown = buffer_region(region, distance if ccw else -distance)
    rings = [pts for pts, _ in region_rings(clean_region(grown))]
    if not ccw:
        rings = [list(reversed(r)) for r in rings]
    return rings


def offset_region(geom: BaseGeometry, distance: float) -> BaseGeometry:
    """Round-joined region offset (positive grows)."""
    return clean_region(buffer_region(geom, distance, join_style="round"))


def offset_shape(shape: Shape, distance: float) -> Path:
    """Offset a closed shape's region; positive grows, negative shrinks."""
    if distance == 0.0:
        return path_from_region(region_of(shape))
    return path_from_region(offset_region(region_of(shape), distance))


def fillet_region(geom: BaseGeometry, radius: float) -> BaseGeometry:
    if radius <= 0.0:
        return geom
    inner = buffer_region(geom, -radius, join_style="round")
    return clean_region(buffer_region(inner, radius, join_style="round"))


def chamfer_region(geom: BaseGeometry, distance: float) -> BaseGeometry:
    if distance <= 0.0:
        return geom
    inner = buffer_region(geom, -distance, join_style="bevel")
    return clean_region(buffer_region(inner, distance, join_style="bevel"))


def fillet_shape(shape: Shape, radius: float) -> Path:
    """Round every convex corner of a closed shape with *radius*."""
    return path_from_region(fillet_region(region_of(shape), radius))


def chamfer_shape(shape: Shape, distance: float) -> Path:
    """Bevel every convex corner of a closed shape by *distance*."""
    return path_from_region(chamfer_region(region_of(shape), distance))


def shape_area(shape: Shape) -> float:
    """Enclosed area of *shape* (0 for open shapes and collapsed regions)."""
    return float(region_of(shape).area)
