"""Toolpath generator: profile contours and pocket fills.

Turns an (effective) shape plus cutting parameters into one ``Toolpath``
per depth pass.  Generation is pure: the same shape and parameters always
produce the same segments, and no call mutates the generator.

Profile
    The tool centre follows the outline (no radius compensation).  Full
    circles are cut as two clockwise half arcs starting at ``(cx + r, cy)``;
    rounded-rectangle corners as counter-clockwise quarter arcs; every
    other curve is tessellated to 0.01 mm.  Lines are cut as open paths.
Pocket
    The interior inside a tool-radius inset is cleared with the selected
    strategy (raster / contour-parallel / adaptive).  Adaptive falls back
    to contour-parallel when it cannot finish.

Each pass starts with a rapid to safe Z above its first point, enters
(plunge, zigzag ramp or helix when ``ramp_angle > 0``), cuts, and ends
retracted to safe Z.  Degenerate geometry yields an empty list; the
public ``generate_*`` methods never raise.

Usage::

    gen = ToolpathGenerator(feed_rate=500, spindle_speed=12000,
                            tool_diameter=3.175, cut_depth=2.0)
    passes = gen.generate_profile(Rectangle(Point(30, 25), 40, 30), step_down=1.0)
"""

from __future__ import annotations

import copy
import functools
import logging
from dataclasses import dataclass, replace
from typing import Callable, Iterable, Optional, Sequence

from shapely.errors import GEOSException
from shapely.geometry.base import BaseGeometry

from millcam.design.objects import (
    DEFAULT_POCKET_STRATEGY,
    Adaptive,
    DrawingObject,
    OperationType,
    PocketStrategy,
    Raster,
)
from millcam.geometry.path_events import DEFAULT_TOLERANCE
from millcam.geometry.point import Point, rotate_point
from millcam.geometry.region import buffer_region, clean_region
from millcam.geometry.shapes import (
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
from millcam.toolpath.entry import helix_ramp, zigzag_ramp
from millcam.toolpath.passes import pass_depths, target_z
from millcam.toolpath.pocket import (
    AdaptiveFailure,
    CutPath,
    adaptive_paths,
    contour_paths,
    link_paths,
    raster_paths,
)
from millcam.toolpath.segments import (
    ArcDirection,
    ArcMove,
    LinearMove,
    RapidMove,
    Segment,
    Toolpath,
)

logger = logging.getLogger(__name__)

# Default step-in as a fraction of the tool diameter
DEFAULT_STEP_IN_RATIO = 0.4


class GenerationCancelled(Exception):
    """Raised by ``generate_design`` when its cancel check fires."""

    def __init__(self, completed: int):
        super().__init__(f"Toolpath generation cancelled after {completed} objects")
        self.completed = completed


def _never_raises(method):
    """Log geometry / arithmetic failures and return no toolpaths."""

    @functools.wraps(method)
    def wrapper(self, *args, **kwargs):
        try:
            return method(self, *args, **kwargs)
        except (ValueError, ArithmeticError, GEOSException) as exc:
            logger.warning("%s failed: %s", method.__name__, exc)
            return []

    return wrapper


@dataclass(frozen=True)
class _Contour:
    """One outline to cut, as planar template segments (Z filled per pass)."""

    segments: tuple[Segment, ...]
    helix_center: Optional[Point] = None


# ---------------------------------------------------------------------------
# Generator
# ---------------------------------------------------------------------------


class ToolpathGenerator:
    """Profile / pocket toolpath generator.

    Parameters
    ----------
    feed_rate : float
        Cutting feed in mm/min.
    spindle_speed : int
        Spindle speed in RPM.
    tool_diameter : float
        Cutter diameter in mm.
    cut_depth : float
        Target depth; sign-insensitive (the target Z is ``-abs(cut_depth)``).
    start_depth : float
        Depth the first pass steps down from (sign-insensitive).
    step_in : float
        Default pocket stepover; ``<= 0`` uses 40 % of the tool diameter.
    step_down : float
        Default depth per pass when an object gives none; ``<= 0`` cuts in
        a single pass.
    ramp_angle : float
        Entry ramp angle in degrees; 0 plunges vertically.
    pocket_strategy : PocketStrategy
        Default pocket strategy.
    safe_z : float
        Retract height in mm.
    tolerance : float
        Chordal tolerance for curve tessellation (mm).
    """

    def __init__(
        self,
        feed_rate: float = 100.0,
        spindle_speed: int = 3000,
        tool_diameter: float = 3.175,
        cut_depth: float = -5.0,
        start_depth: float = 0.0,
        step_in: float = 0.0,
        step_down: float = 0.0,
        ramp_angle: float = 0.0,
        pocket_strategy: PocketStrategy = DEFAULT_POCKET_STRATEGY,
        safe_z: float = 5.0,
        tolerance: float = DEFAULT_TOLERANCE,
    ):
        self.feed_rate = float(feed_rate)
        self.spindle_speed = int(spindle_speed)
        self.tool_diameter = float(tool_diameter)
        self.cut_depth = float(cut_depth)
        self.start_depth = float(start_depth)
        self.step_in = float(step_in)
        self.step_down = float(step_down)
        self.ramp_angle = float(ramp_angle)
        self.pocket_strategy = pocket_strategy
        self.safe_z = float(safe_z)
        self.tolerance = float(tolerance)

    @classmethod
    def from_config(cls, tool) -> ToolpathGenerator:
        """Build from a ``ToolConfig`` section."""
        return cls(
            feed_rate=tool.feed_rate,
            spindle_speed=tool.spindle_speed,
            tool_diameter=tool.tool_diameter,
            cut_depth=tool.cut_depth,
            start_depth=tool.start_depth,
            step_in=tool.step_in,
            step_down=tool.step_down,
            ramp_angle=tool.ramp_angle,
            safe_z=tool.safe_z,
        )

    # -- setters ---------------------------------------------------------

    def set_feed_rate(self, feed_rate: float) -> None:
        if feed_rate <= 0.0:
            raise ValueError(f"feed_rate must be > 0, got {feed_rate}")
        self.feed_rate = float(feed_rate)

    def set_spindle_speed(self, spindle_speed: int) -> None:
        if spindle_speed < 0:
            raise ValueError(f"spindle_speed must be >= 0, got {spindle_speed}")
        self.spindle_speed = int(spindle_speed)

    def set_tool_diameter(self, tool_diameter: float) -> None:
        if tool_diameter <= 0.0:
            raise ValueError(f"tool_diameter must be > 0, got {tool_diameter}")
        self.tool_diameter = float(tool_diameter)

    def set_cut_depth(self, cut_depth: float) -> None:
        self.cut_depth = float(cut_depth)

    def set_start_depth(self, start_depth: float) -> None:
        self.start_depth = float(start_depth)

    def set_step_in(self, step_in: float) -> None:
        self.step_in = float(step_in)

    def set_step_down(self, step_down: float) -> None:
        self.step_down = float(step_down)

    def set_ramp_angle(self, ramp_angle: float) -> None:
        if not 0.0 <= ramp_angle < 90.0:
            raise ValueError(f"ramp_angle must be in [0, 90), got {ramp_angle}")
        self.ramp_angle = float(ramp_angle)

    def set_pocket_strategy(self, strategy: PocketStrategy) -> None:
        self.pocket_strategy = strategy

    def set_safe_z(self, safe_z: float) -> None:
        self.safe_z = float(safe_z)

    # -- derived parameters ------------------------------------------------

    @property
    def tool_radius(self) -> float:
        return self.tool_diameter / 2.0

    @property
    def target_z(self) -> float:
        return target_z(self.cut_depth)

    @property
    def surface_z(self) -> float:
        return target_z(self.start_depth)

    def effective_step_in(self, step_in: float = 0.0) -> float:
        if step_in > 0.0:
            return step_in
        if self.step_in > 0.0:
            return self.step_in
        return self.tool_diameter * DEFAULT_STEP_IN_RATIO

    # -----------------------------------------------------------------------
    # Profile
    # -----------------------------------------------------------------------

    @_never_raises
    def generate_profile(self, shape: Shape, step_down: float) -> list[Toolpath]:
        """Contour passes for any shape variant (dispatches on the variant)."""
        method = getattr(self, f"generate_{shape.kind}_contour", None)
        if method is None:
            return self._profile(self._polyline_contours(shape), step_down)
        return method(shape, step_down)

    @_never_raises
    def generate_rectangle_contour(self, rect: Rectangle, step_down: float) -> list[Toolpath]:
        return self._profile(self._rectangle_contours(rect), step_down)

    @_never_raises
    def generate_circle_contour(self, circle: Circle, step_down: float) -> list[Toolpath]:
        return self._profile(self._circle_contours(circle), step_down)

    @_never_raises
    def generate_ellipse_contour(self, ellipse: Ellipse, step_down: float) -> list[Toolpath]:
        return self._profile(self._polyline_contours(ellipse), step_down)

    @_never_raises
    def generate_line_contour(self, line: Line, step_down: float) -> list[Toolpath]:
        start, end = line.endpoints()
        return self.generate_polyline_contour([start, end], step_down, closed=False)

    @_never_raises
    def generate_triangle_contour(self, triangle: Triangle, step_down: float) -> list[Toolpath]:
        return self._profile(self._polyline_contours(triangle), step_down)

    @_never_raises
    def generate_polygon_contour(self, polygon: RegularPolygon, step_down: float) -> list[Toolpath]:
        return self._profile(self._polyline_contours(polygon), step_down)

    @_never_raises
    def generate_gear_contour(self, gear: Gear, step_down: float) -> list[Toolpath]:
        return self._profile(self._polyline_contours(gear), step_down)

    @_never_raises
    def generate_sprocket_contour(self, sprocket: Sprocket, step_down: float) -> list[Toolpath]:
        return self._profile(self._polyline_contours(sprocket), step_down)

    @_never_raises
    def generate_text_contour(self, text: Text, step_down: float) -> list[Toolpath]:
        return self._profile(self._polyline_contours(text), step_down)

    @_never_raises
    def generate_path_contour(self, path: Path, step_down: float) -> list[Toolpath]:
        return self._profile(self._polyline_contours(path), step_down)

    @_never_raises
    def generate_polyline_contour(
        self, points: Sequence[Point], step_down: float, closed: bool = True,
    ) -> list[Toolpath]:
        contour = self._polyline_contour(list(points), closed)
        return self._profile([contour] if contour else [], step_down)

    # -- contour templates -------------------------------------------------

    def _line(self, a: Point, b: Point) -> LinearMove:
        return LinearMove(a, b, 0.0, self.feed_rate, self.spindle_speed)

    def _arc(self, a: Point, b: Point, c: Point, direction: ArcDirection) -> ArcMove:
        return ArcMove(a, b, c, direction, 0.0, self.feed_rate, self.spindle_speed)

    def _polyline_contour(self, points: list[Point], closed: bool) -> Optional[_Contour]:
        pts = [p for i, p in enumerate(points) if i == 0 or not p.almost_equal(points[i - 1], 1e-9)]
        if closed and len(pts) > 1 and pts[-1].almost_equal(pts[0], 1e-9):
            pts.pop()
        if len(pts) < 2:
            return None
        if closed and len(pts) >= 3:
            pts.append(pts[0])
        return _Contour(tuple(self._line(a, b) for a, b in zip(pts, pts[1:])))

    def _polyline_contours(self, shape: Shape) -> list[_Contour]:
        contours = []
        for sub in shape.to_polyline(self.tolerance):
            contour = self._polyline_contour(list(sub.points), sub.closed and shape.is_closed)
            if contour is not None:
                contours.append(contour)
        return contours

    def _rectangle_contours(self, rect: Rectangle) -> list[_Contour]:
        if rect.width <= 0.0 or rect.height <= 0.0:
            return []
        b = rect.local_bounds()
        r = rect.effective_corner_radius
        c = rect.center

        def rot(p: Point) -> Point:
            return rotate_point(p, c, rect.rotation)

        x0, y0, x1, y1 = b.min_x, b.min_y, b.max_x, b.max_y
        if r <= 0.0:
            corners = [Point(x0, y0), Point(x1, y0), Point(x1, y1), Point(x0, y1)]
            return [self._polyline_contour([rot(p) for p in corners], closed=True)]

        ccw = ArcDirection.CCW
        pieces: list[Segment] = []

        def line(a: Point, b: Point) -> None:
            if not a.almost_equal(b, 1e-9):
                pieces.append(self._line(rot(a), rot(b)))

        def arc(a: Point, b: Point, center: Point) -> None:
            pieces.append(self._arc(rot(a), rot(b), rot(center), ccw))

        line(Point(x0 + r, y0), Point(x1 - r, y0))
        arc(Point(x1 - r, y0), Point(x1, y0 + r), Point(x1 - r, y0 + r))
        line(Point(x1, y0 + r), Point(x1, y1 - r))
        arc(Point(x1, y1 - r), Point(x1 - r, y1), Point(x1 - r, y1 - r))
        line(Point(x1 - r, y1), Point(x0 + r, y1))
        arc(Point(x0 + r, y1), Point(x0, y1 - r), Point(x0 + r, y1 - r))
        line(Point(x0, y1 - r), Point(x0, y0 + r))
        arc(Point(x0, y0 + r), Point(x0 + r, y0), Point(x0 + r, y0 + r))
        return [_Contour(tuple(pieces))]

    def _circle_contours(self, circle: Circle) -> list[_Contour]:
        r = circle.radius
        if r <= 0.0:
            return []
        c = circle.center
        right, left = Point(c.x + r, c.y), Point(c.x - r, c.y)
        cw = ArcDirection.CW
        return [_Contour((self._arc(right, left, c, cw), self._arc(left, right, c, cw)), helix_center=c)]

    # -- pass assembly -----------------------------------------------------

    def _entry(self, contour: _Contour, z: float, entry_z: float) -> list[Segment]:
        if self.ramp_angle <= 0.0 or entry_z <= z:
            return []
        first = contour.segments[0]
        if contour.helix_center is not None and isinstance(first, ArcMove):
            return helix_ramp(
                contour.helix_center, first.start, entry_z, z, self.ramp_angle,
                first.direction, self.feed_rate, self.spindle_speed,
            )
        if isinstance(first, LinearMove):
            return zigzag_ramp(
                first.start, first.end, entry_z, z, self.ramp_angle,
                self.feed_rate, self.spindle_speed,
            )
        return []

    def _profile_pass(self, contours: list[_Contour], z: float, entry_z: float) -> Toolpath:
        tp = Toolpath(self.tool_diameter, z)
        pos: Optional[Point] = None
        for contour in contours:
            first = contour.segments[0].start
            if pos is None:
                tp.add(RapidMove(first, first, self.safe_z))
            else:
                tp.add(RapidMove(pos, pos, self.safe_z))
                tp.add(RapidMove(pos, first, self.safe_z))
            tp.extend(self._entry(contour, z, entry_z))
            tp.extend(replace(seg, z=z) for seg in contour.segments)
            pos = contour.segments[-1].end
        if pos is not None:
            tp.add(RapidMove(pos, pos, self.safe_z))
        return tp

    def _profile(self, contours: list[_Contour], step_down: float) -> list[Toolpath]:
        if not contours:
            return []
        toolpaths = []
        entry_z = self.surface_z
        for z in pass_depths(self.start_depth, self.cut_depth, step_down):
            toolpaths.append(self._profile_pass(contours, z, entry_z))
            entry_z = z
        return toolpaths

    # -----------------------------------------------------------------------
    # Pocket
    # -----------------------------------------------------------------------

    @_never_raises
    def generate_pocket(
        self, shape: Shape, depth: float, step_down: float, step_in: float = 0.0,
    ) -> list[Toolpath]:
        """Pocket passes for any closed shape (dispatches on the variant)."""
        method = getattr(self, f"generate_{shape.kind}_pocket", None)
        if method is None:
            return self._pocket(shape, depth, step_down, step_in)
        return method(shape, depth, step_down, step_in)

    @_never_raises
    def generate_rectangle_pocket(
        self, rect: Rectangle, depth: float, step_down: float, step_in: float = 0.0,
    ) -> list[Toolpath]:
        return self._pocket(rect, depth, step_down, step_in)

    @_never_raises
    def generate_circle_pocket(
        self, circle: Circle, depth: float, step_down: float, step_in: float = 0.0,
    ) -> list[Toolpath]:
        return self._pocket(circle, depth, step_down, step_in)

    @_never_raises
    def generate_ellipse_pocket(
        self, ellipse: Ellipse, depth: float, step_down: float, step_in: float = 0.0,
    ) -> list[Toolpath]:
        return self._pocket(ellipse, depth, step_down, step_in)

    @_never_raises
    def generate_line_pocket(
        self, line: Line, depth: float, step_down: float, step_in: float = 0.0,
    ) -> list[Toolpath]:
        logger.debug("Lines enclose no area; nothing to pocket")
        return []

    @_never_raises
    def generate_triangle_pocket(
        self, triangle: Triangle, depth: float, step_down: float, step_in: float = 0.0,
    ) -> list[Toolpath]:
        return self._pocket(triangle, depth, step_down, step_in)

    @_never_raises
    def generate_polygon_pocket(
        self, polygon: RegularPolygon, depth: float, step_down: float, step_in: float = 0.0,
    ) -> list[Toolpath]:
        return self._pocket(polygon, depth, step_down, step_in)

    @_never_raises
    def generate_gear_pocket(
        self, gear: Gear, depth: float, step_down: float, step_in: float = 0.0,
    ) -> list[Toolpath]:
        return self._pocket(gear, depth, step_down, step_in)

    @_never_raises
    def generate_sprocket_pocket(
        self, sprocket: Sprocket, depth: float, step_down: float, step_in: float = 0.0,
    ) -> list[Toolpath]:
        return self._pocket(sprocket, depth, step_down, step_in)

    @_never_raises
    def generate_text_pocket(
        self, text: Text, depth: float, step_down: float, step_in: float = 0.0,
    ) -> list[Toolpath]:
        return self._pocket(text, depth, step_down, step_in)

    @_never_raises
    def generate_path_pocket(
        self, path: Path, depth: float, step_down: float, step_in: float = 0.0,
    ) -> list[Toolpath]:
        return self._pocket(path, depth, step_down, step_in)

    def pocket_paths(self, shape: Shape, step_in: float = 0.0) -> list[CutPath]:
        """Cut polylines of one pocket pass (the same at every depth)."""
        return self._pocket_plan(shape, step_in)[1]

    def _pocket_plan(self, shape: Shape, step_in: float) -> tuple[BaseGeometry, list[CutPath]]:
        region = clean_region(shape.to_polygon(self.tolerance))
        inset = clean_region(buffer_region(region, -self.tool_radius))
        if inset.is_empty:
            logger.debug("Pocket inset of %s collapsed for tool %.3fmm",
                         shape.kind, self.tool_diameter)
            return inset, []
        return inset, self._strategy_paths(region, inset, step_in)

    def _strategy_paths(
        self, region: BaseGeometry, inset: BaseGeometry, step_in: float,
    ) -> list[CutPath]:
        step = self.effective_step_in(step_in)
        strategy = self.pocket_strategy

        if isinstance(strategy, Raster):
            min_x, min_y, max_x, max_y = region.bounds
            along_x = (max_x - min_x) >= (max_y - min_y)
            return raster_paths(inset, step, along_x, strategy.fill_ratio, strategy.bidirectional)
        if isinstance(strategy, Adaptive):
            try:
                paths = adaptive_paths(inset, step)
                if paths:
                    return paths
                logger.info("Adaptive clearing produced no moves; using contour-parallel")
            except AdaptiveFailure as exc:
                logger.info("Adaptive clearing failed (%s); using contour-parallel", exc)
        return contour_paths(inset, step)

    def _pocket(self, shape: Shape, depth: float, step_down: float, step_in: float) -> list[Toolpath]:
        if not shape.is_closed:
            return []
        inset, paths = self._pocket_plan(shape, step_in)
        if not paths:
            return []
        toolpaths = []
        entry_z = self.surface_z
        for z in pass_depths(self.start_depth, depth, step_down):
            segments = link_paths(
                paths, inset, z, entry_z, self.safe_z,
                self.feed_rate, self.spindle_speed, self.ramp_angle,
            )
            toolpaths.append(Toolpath(self.tool_diameter, z, segments))
            entry_z = z
        return toolpaths

    # -----------------------------------------------------------------------
    # Objects and designs
    # -----------------------------------------------------------------------

    def for_object(self, obj: DrawingObject) -> ToolpathGenerator:
        """Copy of this generator with the object's annotation applied.

        Zero-valued annotation fields keep the generator's defaults.
        """
        gen = copy.copy(self)
        if obj.cut_depth > 0.0:
            gen.cut_depth = obj.cut_depth
        if obj.start_depth:
            gen.start_depth = obj.start_depth
        if obj.step_in > 0.0:
            gen.step_in = obj.step_in
        if obj.step_down > 0.0:
            gen.step_down = obj.step_down
        if obj.ramp_angle > 0.0:
            gen.ramp_angle = obj.ramp_angle
        gen.pocket_strategy = obj.pocket_strategy
        return gen

    @_never_raises
    def generate_for_object(self, obj: DrawingObject) -> list[Toolpath]:
        """Passes for one annotated object, cut on its effective shape."""
        gen = self.for_object(obj)
        shape = obj.effective_shape()
        if obj.operation is OperationType.POCKET:
            return gen.generate_pocket(shape, gen.cut_depth, gen.step_down, gen.step_in)
        return gen.generate_profile(shape, gen.step_down)

    def generate_design(
        self,
        objects: Iterable[DrawingObject],
        should_cancel: Optional[Callable[[], bool]] = None,
        on_progress: Optional[Callable[[int, int], None]] = None,
    ) -> list[tuple[int, Toolpath]]:
        """Toolpaths of every object, in object order, tagged with its id.

        Raises
        ------
        GenerationCancelled
            When *should_cancel* returns true between two objects.
        """
        objs = list(objects)
        results: list[tuple[int, Toolpath]] = []
        for i, obj in enumerate(objs):
            if should_cancel is not None and should_cancel():
                raise GenerationCancelled(i)
            results.extend((obj.id, tp) for tp in self.generate_for_object(obj))
            if on_progress is not None:
                on_progress(i + 1, len(objs))
        logger.debug("Generated %d passes for %d objects", len(results), len(objs))
        return results
