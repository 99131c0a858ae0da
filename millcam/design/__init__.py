"""
Shape annotation model.

Placed shapes (``DrawingObject``) with their machining annotation, the
ordered ``Design`` collection and the JSON design-document loader.
"""

from millcam.design.document import (
    DesignDocument,
    DesignFileError,
    ShapeRecord,
    ToolpathParams,
    design_to_document,
    load_design,
    parse_design,
    save_design,
)
from millcam.design.objects import (
    DEFAULT_POCKET_STRATEGY,
    Adaptive,
    ContourParallel,
    Design,
    DrawingObject,
    DrawingObjectIdAllocator,
    OperationType,
    PocketStrategy,
    Raster,
    pocket_strategy_from_name,
)

__all__ = [
    "Adaptive",
    "ContourParallel",
    "DEFAULT_POCKET_STRATEGY",
    "Design",
    "DesignDocument",
    "DesignFileError",
    "DrawingObject",
    "DrawingObjectIdAllocator",
    "OperationType",
    "PocketStrategy",
    "Raster",
    "ShapeRecord",
    "ToolpathParams",
    "design_to_document",
    "load_design",
    "parse_design",
    "save_design",
    "pocket_strategy_from_name",
]
