"""Tests for shape variants and region operations.

Covers bounds under rotation, hit testing, scaling rules, gear /
sprocket / text synthesis, boolean operations and the offset, fillet
and chamfer area properties on randomly sized rectangles.
"""

from __future__ import annotations

import math

import numpy as np
import pytest

from millcam.geometry import (
    BooleanOp,
    Circle,
    Ellipse,
    Gear,
    Line,
    Path,
    Point,
    Rectangle,
    RegularPolygon,
    Sprocket,
    Text,
    Triangle,
    boolean,
    chamfer_shape,
    fillet_shape,
    offset_ring,
    offset_shape,
    shape_area,
)
from millcam.geometry.gears import gear_radii
from millcam.geometry.path_events import signed_area
from millcam.geometry.shapes import SHAPE_TYPES


@pytest.fixture()
def rng() -> np.random.Generator:
    return np.random.default_rng(20240611)


# ---------------------------------------------------------------------------
# Basic variants
# ---------------------------------------------------------------------------


class TestRectangle:
    def test_bounds(self) -> None:
        b = Rectangle(Point(30, 25), 40, 30).bounds()
        assert (b.min_x, b.min_y, b.max_x, b.max_y) == (10, 10, 50, 40)

    def test_rotated_bounds(self) -> None:
        b = Rectangle(Point(0, 0), 40, 30, rotation=90).bounds()
        assert b.width == pytest.approx(30.0)
        assert b.height == pytest.approx(40.0)

    def test_corner_radius_clamped(self) -> None:
        r = Rectangle(Point(0, 0), 10, 4, corner_radius=5)
        assert r.corner_radius == 2.0
        assert r.with_changes(corner_radius=9).corner_radius == 2.0

    def test_slot(self) -> None:
        slot = Rectangle(Point(0, 0), 20, 6, is_slot=True)
        assert slot.effective_corner_radius == 3.0
        assert slot.area() == pytest.approx(20 * 6 - (4 - math.pi) * 9)
        assert slot.to_polygon().area == pytest.approx(slot.area(), rel=1e-3)

    def test_negative_size_rejected(self) -> None:
        with pytest.raises(ValueError):
            Rectangle(Point(0, 0), -1, 5)

    def test_from_corners(self) -> None:
        assert Rectangle.from_corners(10, 10, 40, 30).center == Point(30, 25)

    def test_contains_point(self) -> None:
        r = Rectangle(Point(0, 0), 10, 10, rotation=45)
        assert r.contains_point(Point(0, 6.5))
        assert not r.contains_point(Point(4.9, 4.9))
        assert r.contains_point(Point(4.9, 4.9), tolerance=2.0)

    def test_scale_about(self) -> None:
        r = Rectangle(Point(10, 10), 4, 2, corner_radius=1).scale_about(Point(0, 0), 2, 3)
        assert r.center == Point(20, 30)
        assert (r.width, r.height) == (8, 6)
        assert r.corner_radius == 2

    def test_rotate_about(self) -> None:
        r = Rectangle(Point(10, 0), 4, 2).rotate_about(Point(0, 0), 90)
        assert r.center.almost_equal(Point(0, 10))
        assert r.rotation == 90


class TestCircleEllipse:
    def test_circle(self) -> None:
        c = Circle(Point(25, 25), 15)
        assert c.area() == pytest.approx(math.pi * 225)
        assert c.to_polygon().area == pytest.approx(c.area(), rel=1e-3)
        assert c.contains_point(Point(39.9, 25))
        assert not c.contains_point(Point(40.5, 25))

    def test_rotation_does_not_change_circle_bounds(self) -> None:
        assert Circle(Point(0, 0), 5, rotation=33).bounds() == Circle(Point(0, 0), 5).bounds()

    def test_non_uniform_scale_gives_ellipse(self) -> None:
        e = Circle(Point(0, 0), 5).scale_about(Point(0, 0), 2, 1)
        assert isinstance(e, Ellipse)
        assert (e.rx, e.ry) == (10, 5)
        assert isinstance(Circle(Point(0, 0), 5).scale_about(Point(0, 0), 2, 2), Circle)

    def test_rotated_ellipse_bounds(self) -> None:
        b = Ellipse(Point(0, 0), 10, 4, rotation=90).bounds()
        assert b.width == pytest.approx(8.0)
        assert b.height == pytest.approx(20.0)

    def test_ellipse_contains(self) -> None:
        e = Ellipse(Point(0, 0), 10, 4, rotation=90)
        assert e.contains_point(Point(0, 9))
        assert not e.contains_point(Point(9, 0))


class TestOtherVariants:
    def test_line(self) -> None:
        line = Line(Point(0, 0), Point(10, 0), rotation=90)
        a, b = line.endpoints()
        assert a.almost_equal(Point(5, -5))
        assert b.almost_equal(Point(5, 5))
        assert line.length() == 10
        assert line.area() == 0.0
        assert line.to_polygon().is_empty
        assert line.contains_point(Point(5.05, 0), tolerance=0.1)
        assert not line.contains_point(Point(6, 0), tolerance=0.1)

    def test_triangle(self) -> None:
        t = Triangle(Point(0, 0), 10, 6)
        assert t.area() == 30.0
        assert t.to_polygon().area == pytest.approx(30.0)
        assert t.vertices()[2] == Point(0, 3)

    def test_hexagon_flat_side_down(self) -> None:
        hexagon = RegularPolygon(Point(0, 0), 10, 6)
        ys = sorted(v.y for v in hexagon.vertices())
        assert ys[0] == pytest.approx(ys[1])
        assert ys[0] == pytest.approx(-10 * math.sin(math.pi / 3))
        assert hexagon.area() == pytest.approx(hexagon.to_polygon().area)

    def test_polygon_needs_three_sides(self) -> None:
        with pytest.raises(ValueError):
            RegularPolygon(Point(0, 0), 5, 2)

    def test_path_winding(self) -> None:
        square = [Point(0, 0), Point(4, 0), Point(4, 4), Point(0, 4)]
        assert Path.from_points(square).is_ccw
        assert not Path.from_points(list(reversed(square))).is_ccw
        assert Path().is_empty

    def test_path_with_hole(self) -> None:
        outer = [Point(0, 0), Point(10, 0), Point(10, 10), Point(0, 10)]
        inner = [Point(3, 3), Point(7, 3), Point(7, 7), Point(3, 7)]
        path = Path.from_rings([outer, inner])
        assert path.area() == pytest.approx(84.0)
        assert not path.contains_point(Point(5, 5))
        assert path.contains_point(Point(1, 1))

    def test_open_path(self) -> None:
        path = Path.from_points([Point(0, 0), Point(5, 0), Point(5, 5)], closed=False)
        assert shape_area(path) == 0.0
        assert not path.to_polyline()[0].closed

    def test_translate_keeps_type(self) -> None:
        for shape in (
            Rectangle(Point(0, 0), 2, 2), Circle(Point(0, 0), 1), Triangle(Point(0, 0), 2, 2),
            Line(Point(0, 0), Point(1, 1)), Path.from_points([Point(0, 0), Point(1, 0), Point(0, 1)]),
        ):
            moved = shape.translate(5, -2)
            assert type(moved) is type(shape)
            b0, b1 = shape.bounds(), moved.bounds()
            assert b1.min_x == pytest.approx(b0.min_x + 5)
            assert b1.min_y == pytest.approx(b0.min_y - 2)

    def test_registry(self) -> None:
        assert set(SHAPE_TYPES) == {
            "rectangle", "circle", "ellipse", "line", "triangle", "polygon",
            "gear", "sprocket", "text", "path",
        }


class TestSynthesised:
    def test_gear_radii(self) -> None:
        gear = Gear(Point(0, 0), module=2.0, teeth=20)
        radii = gear_radii(2.0, 20, 20.0)
        assert gear.pitch_radius == 20.0
        pts = np.array([p.to_tuple() for p in gear.outline()])
        r = np.hypot(pts[:, 0], pts[:, 1])
        assert r.max() == pytest.approx(radii["tip"], abs=0.05)
        assert r.min() == pytest.approx(radii["root"], abs=0.05)
        assert signed_area(gear.outline()) > 0

    def test_gear_rejects_bad_input(self) -> None:
        with pytest.raises(ValueError):
            Gear(Point(0, 0), module=0, teeth=20)
        with pytest.raises(ValueError):
            Gear(Point(0, 0), module=1, teeth=3)

    def test_gear_centered(self) -> None:
        b = Gear(Point(50, 40), module=1.5, teeth=12).bounds()
        assert b.center.x == pytest.approx(50, abs=0.5)
        assert b.center.y == pytest.approx(40, abs=0.5)

    def test_sprocket_default_roller(self) -> None:
        s = Sprocket(Point(0, 0), pitch=12.7, teeth=15)
        assert s.roller_diameter == pytest.approx(12.7 * 0.67, abs=1e-4)
        assert s.to_polygon().area > 0
        assert s.pitch_radius == pytest.approx(12.7 / (2 * math.sin(math.pi / 15)))

    def test_sprocket_roller_too_large(self) -> None:
        with pytest.raises(ValueError):
            Sprocket(Point(0, 0), pitch=10, teeth=12, roller_diameter=10)

    def test_text_outline(self) -> None:
        t = Text(Point(10, 10), "Hi", size=10)
        b = t.bounds()
        assert b.min_x >= 10 - 1e-6
        assert 10 - 1e-6 <= b.min_y
        assert b.height < 12
        assert t.area() > 0

    def test_empty_text(self) -> None:
        t = Text(Point(3, 4), "  ")
        assert t.render() == []
        assert t.bounds().center == Point(3, 4)
        assert t.to_polygon().is_empty


# ---------------------------------------------------------------------------
# Region operations
# ---------------------------------------------------------------------------


class TestBooleans:
    def test_union(self) -> None:
        a = Rectangle(Point(0, 0), 10, 10)
        b = Rectangle(Point(5, 0), 10, 10)
        assert boolean(a, b, BooleanOp.UNION).area() == pytest.approx(150.0)

    def test_difference_and_intersection(self) -> None:
        a = Rectangle(Point(0, 0), 10, 10)
        b = Rectangle(Point(5, 0), 10, 10)
        assert boolean(a, b, BooleanOp.DIFFERENCE).area() == pytest.approx(50.0)
        assert boolean(a, b, BooleanOp.INTERSECTION).area() == pytest.approx(50.0)

    def test_disjoint_intersection_is_empty(self) -> None:
        out = boolean(Circle(Point(0, 0), 1), Circle(Point(10, 0), 1), BooleanOp.INTERSECTION)
        assert isinstance(out, Path)
        assert out.is_empty

    def test_hole_from_difference(self) -> None:
        out = boolean(Rectangle(Point(0, 0), 10, 10), Circle(Point(0, 0), 2), BooleanOp.DIFFERENCE)
        assert len(out.to_polyline()) == 2
        assert not out.contains_point(Point(0, 0))

    def test_open_shape_contributes_nothing(self) -> None:
        out = boolean(Rectangle(Point(0, 0), 4, 4), Line(Point(-5, 0), Point(5, 0)), BooleanOp.UNION)
        assert out.area() == pytest.approx(16.0)


class TestOffsets:
    def test_grow_square(self) -> None:
        grown = offset_shape(Rectangle(Point(0, 0), 10, 10), 1.0)
        assert grown.area() == pytest.approx(100 + 40 + math.pi, abs=0.05)

    def test_collapse(self) -> None:
        assert offset_shape(Rectangle(Point(0, 0), 10, 10), -6.0).is_empty

    def test_offset_ring_winding(self) -> None:
        ccw = [Point(0, 0), Point(10, 0), Point(10, 10), Point(0, 10)]
        out = offset_ring(ccw, 1.0)
        assert len(out) == 1
        assert signed_area(out[0]) == pytest.approx(140 + math.pi, abs=0.05)

        inward = offset_ring(list(reversed(ccw)), 1.0)
        assert signed_area(inward[0]) == pytest.approx(-64.0, abs=1e-6)

    def test_offset_ring_degenerate(self) -> None:
        assert offset_ring([Point(0, 0), Point(1, 1), Point(2, 2)], 1.0) == []

    def test_offset_round_trip(self) -> None:
        square = Rectangle(Point(0, 0), 10, 10)
        assert shape_area(offset_shape(square, 2.0)) > 100.0 > shape_area(offset_shape(square, -2.0))
        back = offset_shape(offset_shape(square, 2.0), -2.0)
        assert back.to_polygon().hausdorff_distance(square.to_polygon()) < 0.05

    def test_offset_monotonic(self, rng: np.random.Generator) -> None:
        shape = RegularPolygon(Point(0, 0), 20, 7)
        distances = np.sort(rng.uniform(-5.0, 5.0, size=8))
        areas = [shape_area(offset_shape(shape, float(d))) for d in distances]
        assert all(a < b for a, b in zip(areas, areas[1:]))

    def test_fillet_area(self, rng: np.random.Generator) -> None:
        for _ in range(10):
            w, h = rng.uniform(10.0, 50.0, size=2)
            r = rng.uniform(0.5, min(w, h) / 4.0)
            rect = Rectangle(Point(0, 0), float(w), float(h))
            expected = w * h - (4.0 - math.pi) * r * r
            assert fillet_shape(rect, float(r)).area() == pytest.approx(expected, abs=0.05 + 1e-3 * expected)

    def test_fillet_corner_radius(self, rng: np.random.Generator) -> None:
        for _ in range(10):
            w, h = rng.uniform(10.0, 50.0, size=2)
            r = float(rng.uniform(0.5, min(w, h) / 4.0))
            outline = fillet_shape(Rectangle(Point(0, 0), float(w), float(h)), r).to_polygon()
            pts = np.asarray(outline.exterior.coords)[:-1]
            prev_edge = pts - np.roll(pts, 1, axis=0)
            next_edge = np.roll(pts, -1, axis=0) - pts
            turn = np.abs(np.arctan2(
                prev_edge[:, 0] * next_edge[:, 1] - prev_edge[:, 1] * next_edge[:, 0],
                np.sum(prev_edge * next_edge, axis=1),
            ))
            span = (np.hypot(*prev_edge.T) + np.hypot(*next_edge.T)) / 2.0
            bends = turn > 1e-9
            # Local radius of curvature at every bending vertex
            assert np.min(span[bends] / turn[bends]) >= 0.98 * r

    def test_chamfer_area(self, rng: np.random.Generator) -> None:
        for _ in range(10):
            w, h = rng.uniform(10.0, 50.0, size=2)
            d = rng.uniform(0.5, min(w, h) / 4.0)
            rect = Rectangle(Point(0, 0), float(w), float(h))
            expected = w * h - 2.0 * d * d
            assert chamfer_shape(rect, float(d)).area() == pytest.approx(expected, rel=1e-4)

    def test_fillet_keeps_circle(self) -> None:
        c = Circle(Point(0, 0), 10)
        assert fillet_shape(c, 2.0).area() == pytest.approx(c.area(), rel=2e-3)

    def test_fillet_larger_than_shape_collapses(self) -> None:
        assert fillet_shape(Rectangle(Point(0, 0), 4, 4), 3.0).is_empty
