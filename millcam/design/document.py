"""Design-document schema and loader.

A design document is a JSON file (``.gck4`` / ``.json``) holding viewport
state, tool / stock parameters and an ordered list of shape records::

    {
      "version": "1.0",
      "metadata": {"name": "Bracket"},
      "viewport": {...},                      # ignored
      "toolpath_params": {"feed_rate": 500, "tool_diameter": 3.175, ...},
      "shapes": [
        {"id": 1, "shape_type": "rectangle", "x": 10, "y": 10,
         "width": 40, "height": 30, "operation_type": "pocket", ...}
      ]
    }

Geometry fields follow the record's bounding-box convention: ``(x, y)``
is the bottom-left corner and ``width`` / ``height`` the box size.  Text
records use ``(x, y)`` as the baseline anchor; path records carry SVG
path data (or a ``points`` polyline).

All validation goes through pydantic; any failure surfaces as
``DesignFileError`` naming the file and the offending field.
"""

from __future__ import annotations

import json
import logging
from pathlib import Path as FilePath
from typing import Any, Dict, List, Optional, Tuple, Union

from pydantic import BaseModel, ConfigDict, Field, field_validator

from millcam.design.objects import (
    DEFAULT_POCKET_STRATEGY,
    Design,
    DrawingObject,
    OperationType,
    PocketStrategy,
    Raster,
    pocket_strategy_from_name,
    pocket_strategy_name,
)
from millcam.geometry.path_events import ClosePath, format_path_data, parse_path_data
from millcam.geometry.point import Point
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
from millcam.geometry.text import DEFAULT_FONT_FAMILY
from millcam.utils import fs

logger = logging.getLogger(__name__)

DOCUMENT_VERSION = "1.0"
DESIGN_EXTENSIONS = (".gck4", ".json")


class DesignFileError(Exception):
    """Raised when a design document cannot be read or validated."""

    pass


# ============================================================================
# SCHEMA
# ============================================================================


class ToolpathParams(BaseModel):
    """Tool and stock parameters stored with a design (mm, mm/min, RPM)."""

    model_config = ConfigDict(extra="ignore")

    feed_rate: float = Field(1000.0, gt=0.0, description="Cutting feed (mm/min)")
    spindle_speed: float = Field(3000.0, ge=0.0, description="Spindle speed (RPM)")
    tool_diameter: float = Field(3.175, gt=0.0, description="Tool diameter (mm)")
    cut_depth: float = Field(-5.0, description="Target depth; sign is ignored")
    start_depth: float = Field(0.0, description="Depth of the first pass origin (mm)")
    safe_z_height: float = Field(5.0, description="Retract height (mm)")
    stock_width: Optional[float] = Field(None, ge=0.0)
    stock_height: Optional[float] = Field(None, ge=0.0)
    stock_thickness: Optional[float] = Field(None, ge=0.0)


class DocumentMetadata(BaseModel):
    model_config = ConfigDict(extra="ignore")

    name: str = "Untitled"
    created: Optional[str] = None
    modified: Optional[str] = None


class ShapeRecord(BaseModel):
    """One placed shape plus its machining annotation."""

    model_config = ConfigDict(extra="ignore")

    id: int = Field(..., ge=0)
    shape_type: str
    name: str = ""
    x: float = 0.0
    y: float = 0.0
    width: float = Field(0.0, ge=0.0)
    height: float = Field(0.0, ge=0.0)
    points: List[Tuple[float, float]] = Field(default_factory=list)
    selected: bool = False
    group_id: Optional[int] = None
    rotation: float = 0.0

    # Machining annotation
    operation_type: str = "profile"
    pocket_depth: float = 0.0
    step_down: float = Field(0.0, ge=0.0)
    step_in: float = Field(0.0, ge=0.0)
    start_depth: float = 0.0
    ramp_angle: float = Field(0.0, ge=0.0, lt=90.0)
    pocket_strategy: Union[str, Dict[str, Any]] = "contour_parallel"
    raster_fill_ratio: float = 1.0

    # Variant-specific data
    corner_radius: float = Field(0.0, ge=0.0)
    is_slot: bool = False
    text_content: str = ""
    font_size: float = 0.0
    font_family: str = ""
    font_bold: bool = False
    font_italic: bool = False
    path_data: str = ""
    sides: int = 0
    teeth: int = 0
    module: float = 0.0
    pressure_angle: float = 0.0
    pitch: float = 0.0
    roller_diameter: float = 0.0

    # Effective-shape modifiers
    offset: float = 0.0
    fillet: float = Field(0.0, ge=0.0)
    chamfer: float = Field(0.0, ge=0.0)

    @field_validator("shape_type")
    @classmethod
    def validate_shape_type(cls, v: str) -> str:
        key = v.strip().lower()
        if key == "regular_polygon":
            key = "polygon"
        if key not in SHAPE_TYPES:
            raise ValueError(f"shape_type must be one of {sorted(SHAPE_TYPES)}, got '{v}'")
        return key

    @field_validator("operation_type")
    @classmethod
    def validate_operation_type(cls, v: str) -> str:
        key = v.strip().lower()
        if key not in ("profile", "pocket"):
            raise ValueError(f"operation_type must be 'profile' or 'pocket', got '{v}'")
        return key

    @field_validator("raster_fill_ratio")
    @classmethod
    def clamp_fill_ratio(cls, v: float) -> float:
        return min(max(v, 0.0), 1.0)

    @field_validator("points", mode="before")
    @classmethod
    def coerce_points(cls, v: Any) -> Any:
        # Accept [[x, y], ...] as well as [{"x": .., "y": ..}, ...]
        if isinstance(v, list):
            return [(p["x"], p["y"]) if isinstance(p, dict) else p for p in v]
        return v

    # -- conversion ------------------------------------------------------

    @property
    def center(self) -> Point:
        return Point(self.x + self.width / 2.0, self.y + self.height / 2.0)

    def strategy(self) -> PocketStrategy:
        """Pocket strategy from its name or ``{"Name": {...}}`` form."""
        raw = self.pocket_strategy
        options: Dict[str, Any] = {}
        if isinstance(raw, dict):
            if not raw:
                return DEFAULT_POCKET_STRATEGY
            name, opts = next(iter(raw.items()))
            if isinstance(opts, dict):
                options = opts
        else:
            name = raw
        strategy = pocket_strategy_from_name(name, self.raster_fill_ratio)
        if isinstance(strategy, Raster) and "bidirectional" in options:
            strategy = Raster(strategy.fill_ratio, bool(options["bidirectional"]))
        return strategy

    def to_shape(self) -> Shape:
        """Build the shape variant this record describes.

        Raises
        ------
        ValueError
            When the variant's own invariants reject the data.
        """
        kind = self.shape_type
        c = self.center
        rot = self.rotation
        pts = [Point(px, py) for px, py in self.points]

        if kind == "rectangle":
            return Rectangle(c, self.width, self.height, self.corner_radius, self.is_slot, rot)
        if kind == "circle":
            return Circle(c, min(self.width, self.height) / 2.0, rot)
        if kind == "ellipse":
            return Ellipse(c, self.width / 2.0, self.height / 2.0, rot)
        if kind == "line":
            if len(pts) >= 2:
                return Line(pts[0], pts[-1], rot)
            return Line(Point(self.x, self.y),
                        Point(self.x + self.width, self.y + self.height), rot)
        if kind == "triangle":
            return Triangle(c, self.width, self.height, rot)
        if kind == "polygon":
            return RegularPolygon(c, min(self.width, self.height) / 2.0, self.sides or 6, rot)
        if kind == "gear":
            return Gear(c, self.module, self.teeth, self.pressure_angle or 20.0, rot)
        if kind == "sprocket":
            return Sprocket(c, self.pitch, self.teeth, self.roller_diameter, rot)
        if kind == "text":
            return Text(
                Point(self.x, self.y),
                self.text_content,
                self.font_family or DEFAULT_FONT_FAMILY,
                self.font_size or 10.0,
                self.font_bold,
                self.font_italic,
                rot,
            )
        if self.path_data:
            events = parse_path_data(self.path_data)
            closed = any(isinstance(ev, ClosePath) for ev in events)
            return Path(events=tuple(events), is_closed=closed, rotation=rot)
        return Path(events=Path.from_points(pts).events, rotation=rot)

    def to_object(self) -> DrawingObject:
        return DrawingObject(
            id=self.id,
            shape=self.to_shape(),
            group_id=self.group_id,
            selected=self.selected,
            name=self.name,
            operation=OperationType(self.operation_type),
            start_depth=abs(self.start_depth),
            cut_depth=abs(self.pocket_depth),
            step_down=self.step_down,
            step_in=self.step_in,
            ramp_angle=self.ramp_angle,
            pocket_strategy=self.strategy(),
            offset=self.offset,
            fillet=self.fillet,
            chamfer=self.chamfer,
        )


class DesignDocument(BaseModel):
    """Whole design file; ``viewport`` and unknown sections are ignored."""

    model_config = ConfigDict(extra="ignore")

    version: str = DOCUMENT_VERSION
    metadata: DocumentMetadata = Field(default_factory=DocumentMetadata)
    toolpath_params: ToolpathParams = Field(default_factory=ToolpathParams)
    shapes: List[ShapeRecord] = Field(default_factory=list)

    @field_validator("shapes")
    @classmethod
    def validate_unique_ids(cls, v: List[ShapeRecord]) -> List[ShapeRecord]:
        seen: set[int] = set()
        for rec in v:
            if rec.id in seen:
                raise ValueError(f"Duplicate shape id {rec.id}")
            seen.add(rec.id)
        return v

    def to_design(self) -> Design:
        """Convert every record, in document order, into a ``Design``.

        Raises
        ------
        DesignFileError
            If a record's geometry is rejected by its shape variant.
        """
        design = Design()
        for rec in self.shapes:
            try:
                design.add_object(rec.to_object())
            except ValueError as e:
                raise DesignFileError(
                    f"Shape {rec.id} ({rec.shape_type}) is invalid: {e}"
                ) from e
        logger.debug("Design '%s' has %d objects", self.metadata.name, len(design))
        return design


# ============================================================================
# SERIALIZATION (shape -> record)
# ============================================================================


def object_to_record(obj: DrawingObject) -> ShapeRecord:
    """Inverse of ``ShapeRecord.to_object`` for storing a design."""
    shape = obj.shape
    b = shape.local_bounds()
    data: Dict[str, Any] = dict(
        id=obj.id,
        shape_type=shape.kind,
        name=obj.name,
        x=b.min_x,
        y=b.min_y,
        width=b.width,
        height=b.height,
        selected=obj.selected,
        group_id=obj.group_id,
        rotation=shape.rotation,
        operation_type=obj.operation.value,
        pocket_depth=obj.cut_depth,
        step_down=obj.step_down,
        step_in=obj.step_in,
        start_depth=obj.start_depth,
        ramp_angle=obj.ramp_angle,
        pocket_strategy=pocket_strategy_name(obj.pocket_strategy),
        offset=obj.offset,
        fillet=obj.fillet,
        chamfer=obj.chamfer,
    )
    if isinstance(obj.pocket_strategy, Raster):
        data["raster_fill_ratio"] = obj.pocket_strategy.fill_ratio
    center = getattr(shape, "center", None)
    if center is not None:
        # Records store the box around the natural centre
        data.update(x=center.x - b.width / 2.0, y=center.y - b.height / 2.0)

    if isinstance(shape, Rectangle):
        data.update(corner_radius=shape.corner_radius, is_slot=shape.is_slot)
    elif isinstance(shape, (Circle, RegularPolygon)):
        d = 2.0 * shape.radius
        data.update(x=shape.center.x - shape.radius, y=shape.center.y - shape.radius,
                    width=d, height=d)
        if isinstance(shape, RegularPolygon):
            data["sides"] = shape.sides
    elif isinstance(shape, Line):
        data["points"] = [shape.start.to_tuple(), shape.end.to_tuple()]
    elif isinstance(shape, Gear):
        data.update(module=shape.module, teeth=shape.teeth,
                    pressure_angle=shape.pressure_angle)
    elif isinstance(shape, Sprocket):
        data.update(pitch=shape.pitch, teeth=shape.teeth,
                    roller_diameter=shape.roller_diameter)
    elif isinstance(shape, Text):
        data.update(x=shape.anchor.x, y=shape.anchor.y, text_content=shape.content,
                    font_size=shape.size, font_family=shape.font_family,
                    font_bold=shape.bold, font_italic=shape.italic)
    elif isinstance(shape, Path):
        data["path_data"] = format_path_data(shape.events)
    return ShapeRecord(**data)


def design_to_document(
    design: Design, name: str = "Untitled", params: ToolpathParams | None = None,
) -> DesignDocument:
    return DesignDocument(
        metadata=DocumentMetadata(name=name),
        toolpath_params=params or ToolpathParams(),
        shapes=[object_to_record(o) for o in design],
    )


# ============================================================================
# LOADING / SAVING
# ============================================================================


def parse_design(data: Dict[str, Any], source: str = "<memory>") -> DesignDocument:
    """Validate an already-decoded JSON object.

    Raises
    ------
    DesignFileError
        If validation fails.
    """
    if not isinstance(data, dict):
        raise DesignFileError(f"Design document at {source} must be a JSON object")
    try:
        return DesignDocument(**data)
    except ValueError as e:
        # pydantic.ValidationError subclasses ValueError
        raise DesignFileError(f"Design validation failed at {source}: {e}") from e


def load_design(path: Union[str, FilePath]) -> DesignDocument:
    """Load and validate a design document from disk.

    Raises
    ------
    DesignFileError
        If the file is missing, is not JSON or fails validation.
    """
    path = FilePath(path)
    if not path.exists():
        raise DesignFileError(f"Design file not found: {path}")
    try:
        data = fs.load_json(path)
    except (OSError, json.JSONDecodeError) as e:
        raise DesignFileError(f"Could not read design file {path}: {e}") from e
    doc = parse_design(data, str(path))
    logger.info("Loaded design '%s' (%d shapes) from %s",
                doc.metadata.name, len(doc.shapes), path)
    return doc


def save_design(document: DesignDocument, path: Union[str, FilePath]) -> None:
    """Atomically write *document* as indented JSON."""
    text = json.dumps(document.model_dump(mode="json"), indent=2)
    fs.atomic_write_text(path, text + "\n")
    logger.info("Saved design '%s' to %s", document.metadata.name, path)
