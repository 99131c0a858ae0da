"""
Geometry kernel.

Points and bounds, path events, the shape variants (rectangle, circle,
ellipse, line, triangle, regular polygon, gear, sprocket, text, path) and
region operations (boolean, offset, fillet, chamfer).
"""

from millcam.geometry.ops import (
    BooleanOp,
    boolean,
    chamfer_shape,
    fillet_shape,
    offset_ring,
    offset_shape,
    shape_area,
)
from millcam.geometry.point import Bounds, Point, rotate_point
from millcam.geometry.shapes import (
    SHAPE_TYPES,
    Circle,
    Ellipse,
    Gear,
    Line,
    Path,
    Rectangle,
    RegularPolygon,
    Shape,
    Sprocket,
    Text,
    Triangle,
)

__all__ = [
    "BooleanOp",
    "Bounds",
    "Circle",
    "Ellipse",
    "Gear",
    "Line",
    "Path",
    "Point",
    "Rectangle",
    "RegularPolygon",
    "SHAPE_TYPES",
    "Shape",
    "Sprocket",
    "Text",
    "Triangle",
    "boolean",
    "chamfer_shape",
    "fillet_shape",
    "offset_ring",
    "offset_shape",
    "rotate_point",
    "shape_area",
]
