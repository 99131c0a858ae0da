"""Glyph outlines for text shapes via matplotlib's font engine.

``matplotlib.textpath.TextPath`` lays out a string with a real font and
exposes the outline as MOVETO / LINETO / CURVE3 / CURVE4 / CLOSEPOLY
codes, which map one-to-one onto path events.  ``size`` is the em height
in millimetres; the anchor is the left end of the baseline.

Layout is cached per (content, family, size, bold, italic) at the origin;
shapes translate the cached events to their anchor.
"""

from __future__ import annotations

import logging
from functools import lru_cache

from matplotlib.font_manager import FontProperties
from matplotlib.path import Path as MplPath
from matplotlib.textpath import TextPath

from millcam.geometry.path_events import (
    ClosePath,
    CubicTo,
    LineTo,
    MoveTo,
    PathEvent,
    QuadTo,
    translate_events,
)
from millcam.geometry.point import Point

logger = logging.getLogger(__name__)

DEFAULT_FONT_FAMILY = "DejaVu Sans"


def _font_properties(family: str, bold: bool, italic: bool) -> FontProperties:
    families = [family] if family else []
    if DEFAULT_FONT_FAMILY not in families:
        families.append(DEFAULT_FONT_FAMILY)
    return FontProperties(
        family=families,
        weight="bold" if bold else "normal",
        style="italic" if italic else "normal",
    )


@lru_cache(maxsize=256)
def _layout(
    content: str, family: str, size: float, bold: bool, italic: bool,
) -> tuple[PathEvent, ...]:
    prop = _font_properties(family, bold, italic)
    tp = TextPath((0.0, 0.0), content, size=size, prop=prop)
    logger.debug("Laid out %r at %.3f mm (%s)", content, size, family)

    events: list[PathEvent] = []
    for verts, code in tp.iter_segments(curves=True, simplify=False):
        pts = [Point(float(verts[i]), float(verts[i + 1])) for i in range(0, len(verts), 2)]
        if code == MplPath.MOVETO:
            events.append(MoveTo(pts[0]))
        elif code == MplPath.LINETO:
            events.append(LineTo(pts[0]))
        elif code == MplPath.CURVE3:
            events.append(QuadTo(pts[0], pts[1]))
        elif code == MplPath.CURVE4:
            events.append(CubicTo(pts[0], pts[1], pts[2]))
        elif code == MplPath.CLOSEPOLY:
            events.append(ClosePath())
    return tuple(events)


def text_events(
    content: str,
    anchor: Point,
    size: float,
    font_family: str = DEFAULT_FONT_FAMILY,
    bold: bool = False,
    italic: bool = False,
) -> list[PathEvent]:
    """Outline events for *content* with the baseline starting at *anchor*.

    Whitespace-only or empty content yields no events.
    """
    if not content.strip() or size <= 0.0:
        return []
    base = _layout(content, font_family, float(size), bool(bold), bool(italic))
    if anchor.x == 0.0 and anchor.y == 0.0:
        return list(base)

    return translate_events(base, anchor.x, anchor.y)
