"""Placed shapes and their machining annotations.

A ``DrawingObject`` pairs a shape with everything CAM needs to cut it:
operation type, depths, step-down / step-in, ramp angle, pocket strategy
and the geometric modifiers that define the *effective shape*.

Effective shape
---------------
When any of ``chamfer``, ``fillet`` or ``offset`` is non-zero the
effective shape is::

    offset(fillet(chamfer(shape)))

computed on the shape's region with rotation already baked in.  With all
three at zero it is the base shape itself.  Open shapes (lines, open
paths) ignore the modifiers.

Grouping is flat: objects sharing a ``group_id`` are peers.
"""

from __future__ import annotations

import logging
import threading
from dataclasses import dataclass, replace
from enum import Enum
from typing import Iterator, Union

from millcam.geometry.ops import chamfer_region, fillet_region, offset_region, path_from_region, region_of
from millcam.geometry.shapes import Shape

logger = logging.getLogger(__name__)


# ---------------------------------------------------------------------------
# Operation type and pocket strategies
# ---------------------------------------------------------------------------


class OperationType(Enum):
    """What the toolpath generator does with a shape."""

    PROFILE = "profile"
    POCKET = "pocket"


@dataclass(frozen=True, slots=True)
class Raster:
    """Parallel straight cuts spaced by step-in.

    Parameters
    ----------
    fill_ratio : float
        Fraction of each raster line's available span that is cut,
        centred on the span (1.0 = full span, 0.0 = no cuts).  Clamped
        to ``[0, 1]``.
    bidirectional : bool
        Alternate cut direction on successive lines (zig-zag).
    """

    fill_ratio: float = 1.0
    bidirectional: bool = True

    def __post_init__(self) -> None:
        ratio = min(max(float(self.fill_ratio), 0.0), 1.0)
        object.__setattr__(self, "fill_ratio", ratio)


@dataclass(frozen=True, slots=True)
class ContourParallel:
    """Successive inward offsets of the boundary, outer ring first."""

    pass


@dataclass(frozen=True, slots=True)
class Adaptive:
    """Bounded-engagement frontier clearing (falls back to ContourParallel)."""

    pass


PocketStrategy = Union[Raster, ContourParallel, Adaptive]

DEFAULT_POCKET_STRATEGY: PocketStrategy = ContourParallel()


def pocket_strategy_from_name(name: str, fill_ratio: float = 1.0) -> PocketStrategy:
    """Parse ``"raster"`` / ``"contour_parallel"`` / ``"adaptive"``.

    Raises
    ------
    ValueError
        For an unknown strategy name.
    """
    key = name.strip().lower().replace("-", "_").replace(" ", "_")
    if key == "raster":
        return Raster(fill_ratio=fill_ratio)
    if key in ("contour_parallel", "contourparallel", "offset", "contour"):
        return ContourParallel()
    if key == "adaptive":
        return Adaptive()
    raise ValueError(f"Unknown pocket strategy: {name!r}")


def pocket_strategy_name(strategy: PocketStrategy) -> str:
    if isinstance(strategy, Raster):
        return "raster"
    if isinstance(strategy, Adaptive):
        return "adaptive"
    return "contour_parallel"


# ---------------------------------------------------------------------------
# Drawing object
# ---------------------------------------------------------------------------


@dataclass
class DrawingObject:
    """A placed shape plus its machining annotation.

    Depth fields are positive distances below Z0; ``cut_depth`` of 0
    means "use the generator's tool default".
    """

    id: int
    shape: Shape
    group_id: int | None = None
    selected: bool = False
    name: str = ""

    operation: OperationType = OperationType.PROFILE
    start_depth: float = 0.0
    cut_depth: float = 0.0
    step_down: float = 0.0
    step_in: float = 0.0
    ramp_angle: float = 0.0
    pocket_strategy: PocketStrategy = DEFAULT_POCKET_STRATEGY

    offset: float = 0.0
    fillet: float = 0.0
    chamfer: float = 0.0

    def __post_init__(self) -> None:
        for name in ("cut_depth", "step_down", "step_in", "fillet", "chamfer"):
            if getattr(self, name) < 0.0:
                raise ValueError(f"{name} must be >= 0, got {getattr(self, name)}")
        if not 0.0 <= self.ramp_angle < 90.0:
            raise ValueError(f"ramp_angle must be in [0, 90), got {self.ramp_angle}")

    @property
    def has_modifiers(self) -> bool:
        return self.offset != 0.0 or self.fillet != 0.0 or self.chamfer != 0.0

    def effective_shape(self) -> Shape:
        """Shape used by CAM: chamfer, then fillet, then offset.

        Rotation is baked into the geometry before any modifier runs.
        A collapsed result is an empty ``Path``.
        """
        if not self.has_modifiers or not self.shape.is_closed:
            return self.shape

        region = region_of(self.shape)
        if self.chamfer > 0.0:
            region = chamfer_region(region, self.chamfer)
        if self.fillet > 0.0:
            region = fillet_region(region, self.fillet)
        if self.offset != 0.0:
            region = offset_region(region, self.offset)

        result = path_from_region(region)
        if result.is_empty:
            logger.debug("Effective shape of object %d collapsed", self.id)
        return result

    def with_shape(self, shape: Shape) -> DrawingObject:
        return replace(self, shape=shape)


# ---------------------------------------------------------------------------
# Collection
# ---------------------------------------------------------------------------


class DrawingObjectIdAllocator:
    """Thread-safe monotonic id source; ids are never handed out twice."""

    def __init__(self, start: int = 0) -> None:
        self._last = start
        self._lock = threading.Lock()

    @property
    def last(self) -> int:
        return self._last

    def allocate(self) -> int:
        with self._lock:
            self._last += 1
            return self._last

    def observe(self, used_id: int) -> None:
        """Record an externally chosen id so later allocations skip past it."""
        with self._lock:
            self._last = max(self._last, used_id)


class Design:
    """Ordered collection of drawing objects with monotonic ids.

    Ids are never reused, even after deletion.  Object order is the
    order toolpaths are generated and emitted in.
    """

    def __init__(self) -> None:
        self._objects: list[DrawingObject] = []
        self._ids = DrawingObjectIdAllocator()
        self._group_ids = DrawingObjectIdAllocator()

    def __len__(self) -> int:
        return len(self._objects)

    def __iter__(self) -> Iterator[DrawingObject]:
        return iter(list(self._objects))

    def next_id(self) -> int:
        return self._ids.allocate()

    def add_shape(self, shape: Shape, **annotation) -> DrawingObject:
        """Place *shape* and return its new object."""
        obj = DrawingObject(id=self.next_id(), shape=shape, **annotation)
        self._objects.append(obj)
        return obj

    def add_object(self, obj: DrawingObject) -> DrawingObject:
        """Insert a pre-built object, keeping id allocation monotonic."""
        if any(o.id == obj.id for o in self._objects):
            raise ValueError(f"Duplicate object id {obj.id}")
        self._ids.observe(obj.id)
        if obj.group_id is not None:
            self._group_ids.observe(obj.group_id)
        self._objects.append(obj)
        return obj

    def get(self, object_id: int) -> DrawingObject | None:
        return next((o for o in self._objects if o.id == object_id), None)

    def remove(self, object_id: int) -> bool:
        before = len(self._objects)
        self._objects = [o for o in self._objects if o.id != object_id]
        return len(self._objects) != before

    def replace_object(self, obj: DrawingObject) -> None:
        for i, existing in enumerate(self._objects):
            if existing.id == obj.id:
                self._objects[i] = obj
                return
        raise KeyError(obj.id)

    def group(self, object_ids: list[int]) -> int:
        """Put the given objects in one new flat group; returns its id."""
        gid = self._group_ids.allocate()
        wanted = set(object_ids)
        for obj in self._objects:
            if obj.id in wanted:
                obj.group_id = gid
        return gid

    def ungroup(self, group_id: int) -> None:
        for obj in self._objects:
            if obj.group_id == group_id:
                obj.group_id = None

    def group_members(self, group_id: int) -> list[DrawingObject]:
        return [o for o in self._objects if o.group_id == group_id]

    def selected(self) -> list[DrawingObject]:
        return [o for o in self._objects if o.selected]
