"""Tests for the G-code emitter.

Validates the header / footer layout, modal Z and feed tracking, 2D
output, arc I/J offsets, inch conversion, line numbering and that
emitted programs parse back to the toolpath positions.
"""

from __future__ import annotations

import re

import pytest

from millcam.gcode.emitter import GCodeEmitter, GCodeEmitterError, format_coord
from millcam.gcode.parser import format_program, parse_program, program_positions
from millcam.geometry.point import Point
from millcam.geometry.shapes import Circle, Rectangle
from millcam.toolpath.generator import ToolpathGenerator
from millcam.toolpath.segments import ArcDirection, ArcMove, LinearMove, RapidMove, Toolpath


# ---------------------------------------------------------------------------
# Fixtures
# ---------------------------------------------------------------------------


@pytest.fixture()
def rect_gen() -> ToolpathGenerator:
    return ToolpathGenerator(
        feed_rate=500, spindle_speed=12000, tool_diameter=3.175,
        cut_depth=2.0, safe_z=5.0,
    )


@pytest.fixture()
def rect_pass(rect_gen: ToolpathGenerator) -> Toolpath:
    passes = rect_gen.generate_profile(Rectangle(Point(30, 25), 40, 30), step_down=2.0)
    assert len(passes) == 1
    return passes[0]


@pytest.fixture()
def circle_pass() -> Toolpath:
    gen = ToolpathGenerator(
        feed_rate=400, spindle_speed=10000, tool_diameter=3.0, cut_depth=-1.5,
    )
    passes = gen.generate_profile(Circle(Point(25, 25), 15), step_down=0.0)
    assert len(passes) == 1
    return passes[0]


def _code_lines(program: str) -> list[str]:
    """Non-blank lines that are not pure comments."""
    return [
        line for line in program.splitlines()
        if line.strip() and not line.lstrip().startswith(";")
    ]


# ---------------------------------------------------------------------------
# Number formatting
# ---------------------------------------------------------------------------


class TestFormatting:
    def test_three_decimals(self) -> None:
        assert format_coord(10) == "10.000"
        assert format_coord(-2.5) == "-2.500"
        assert format_coord(1 / 3) == "0.333"

    def test_negative_zero(self) -> None:
        assert format_coord(-0.0) == "0.000"
        assert format_coord(-0.0001) == "0.000"

    def test_invalid_units(self) -> None:
        with pytest.raises(GCodeEmitterError):
            GCodeEmitter(units="furlong")

    def test_invalid_axes(self) -> None:
        with pytest.raises(GCodeEmitterError):
            GCodeEmitter(num_axes=4)


# ---------------------------------------------------------------------------
# Header / footer
# ---------------------------------------------------------------------------


class TestHeaderFooter:
    def test_header_block(self) -> None:
        header = GCodeEmitter().generate_header(18000, 800, 6.35, -3.0, 150.0)
        assert header == (
            "; Generated G-code from Designer tool\n"
            "; Tool diameter: 6.350mm\n"
            "; Cut depth: -3.000mm\n"
            "; Feed rate: 800 mm/min\n"
            "; Spindle speed: 18000 RPM\n"
            "; Total path length: 150.000mm\n"
            "\n"
            "G90         ; Absolute positioning\n"
            "G21         ; Millimeter units\n"
            "G17         ; XY plane\n"
            "M3 S18000      ; Spindle on at 18000 RPM\n"
            "\n"
        )

    def test_footer_3d_retracts(self) -> None:
        footer = GCodeEmitter(safe_z=5.0).generate_footer()
        assert footer == (
            "\n"
            "M5          ; Spindle off\n"
            "G00 Z5.000   ; Raise tool to safe height\n"
            "G00 X0 Y0   ; Return to origin\n"
            "M30         ; End program\n"
        )

    def test_footer_2d_has_no_z(self) -> None:
        footer = GCodeEmitter(num_axes=2).generate_footer()
        assert "Z" not in footer
        assert footer.rstrip().endswith("M30         ; End program")

    def test_inch_header(self) -> None:
        header = GCodeEmitter(units="inch").generate_header(10000, 254, 25.4, -2.54, 0.0)
        assert "G20         ; Inch units" in header
        assert "; Tool diameter: 1.000in" in header
        assert "; Cut depth: -0.100in" in header
        assert "; Feed rate: 10 in/min" in header


# ---------------------------------------------------------------------------
# Rectangle profile
# ---------------------------------------------------------------------------


class TestRectangleProfile:
    def test_2d_program(self, rect_pass: Toolpath) -> None:
        program = GCodeEmitter(num_axes=2).generate(rect_pass)
        body = [l for l in _code_lines(program) if l.startswith("G0")]
        assert body == [
            "G00 X10.000 Y10.000",
            "G01 X50.000 Y10.000 F500",
            "G01 X50.000 Y40.000 F500",
            "G01 X10.000 Y40.000 F500",
            "G01 X10.000 Y10.000 F500",
            "G00 X0 Y0   ; Return to origin",
        ]
        assert "Z" not in "\n".join(_code_lines(program))
        assert len(_code_lines(program)) == 12

    def test_3d_program_snapshot(self, rect_pass: Toolpath) -> None:
        program = GCodeEmitter(safe_z=5.0).generate(rect_pass)
        assert program == (
            "; Generated G-code from Designer tool\n"
            "; Tool diameter: 3.175mm\n"
            "; Cut depth: -2.000mm\n"
            "; Feed rate: 500 mm/min\n"
            "; Spindle speed: 12000 RPM\n"
            "; Total path length: 140.000mm\n"
            "\n"
            "G90         ; Absolute positioning\n"
            "G21         ; Millimeter units\n"
            "G17         ; XY plane\n"
            "M3 S12000      ; Spindle on at 12000 RPM\n"
            "\n"
            "G00 X10.000 Y10.000 Z5.000\n"
            "G01 Z-2.000 F500\n"
            "G01 X50.000 Y10.000 F500\n"
            "G01 X50.000 Y40.000 F500\n"
            "G01 X10.000 Y40.000 F500\n"
            "G01 X10.000 Y10.000 F500\n"
            "G00 Z5.000\n"
            "\n"
            "M5          ; Spindle off\n"
            "G00 Z5.000   ; Raise tool to safe height\n"
            "G00 X0 Y0   ; Return to origin\n"
            "M30         ; End program\n"
        )

    def test_deterministic(self, rect_gen: ToolpathGenerator) -> None:
        rect = Rectangle(Point(30, 25), 40, 30, corner_radius=4.0, rotation=15.0)
        first = GCodeEmitter().generate_program(rect_gen.generate_profile(rect, 1.0))
        second = GCodeEmitter().generate_program(rect_gen.generate_profile(rect, 1.0))
        assert first == second

    def test_compact_feed(self, rect_pass: Toolpath) -> None:
        program = GCodeEmitter(compact_feed=True).generate(rect_pass)
        feeds = [l for l in program.splitlines() if re.search(r"\bF\d+", l)]
        assert feeds == ["G01 Z-2.000 F500"]

    def test_inch_coordinates(self, rect_pass: Toolpath) -> None:
        program = GCodeEmitter(units="inch", num_axes=2).generate(rect_pass)
        assert "G01 X1.969 Y0.394 F20" in program.splitlines()


# ---------------------------------------------------------------------------
# Circle profile
# ---------------------------------------------------------------------------


class TestCircleProfile:
    def test_two_cw_half_arcs(self, circle_pass: Toolpath) -> None:
        program = GCodeEmitter().generate(circle_pass)
        arcs = [l for l in program.splitlines() if l.startswith("G02")]
        assert len(arcs) == 2
        assert arcs[0].startswith("G02 X10.000 Y25.000 I-15.000 J0.000")
        assert arcs[1].startswith("G02 X40.000 Y25.000 I15.000 J0.000")
        assert not any(l.startswith("G03") for l in program.splitlines())

    def test_arc_feed_only_on_change(self, circle_pass: Toolpath) -> None:
        program = GCodeEmitter().generate(circle_pass)
        lines = program.splitlines()
        plunge = lines.index("G01 Z-1.500 F400")
        assert lines[plunge + 1] == "G02 X10.000 Y25.000 I-15.000 J0.000"

    def test_2d_arcs_have_no_z(self, circle_pass: Toolpath) -> None:
        program = GCodeEmitter(num_axes=2).generate(circle_pass)
        arcs = [l for l in program.splitlines() if l.startswith("G02")]
        assert arcs[0] == "G02 X10.000 Y25.000 I-15.000 J0.000 F400"


# ---------------------------------------------------------------------------
# Modal tracking on hand-built toolpaths
# ---------------------------------------------------------------------------


class TestModalTracking:
    def test_retract_before_travel(self) -> None:
        a, b, c = Point(0, 0), Point(10, 0), Point(20, 5)
        tp = Toolpath(3.0, -1.0, [
            RapidMove(a, a, 5.0),
            LinearMove(a, b, -1.0, 300, 10000),
            RapidMove(b, c, 5.0),
        ])
        lines = GCodeEmitter().generate_body([(None, tp)]).splitlines()
        assert lines == [
            "G00 X0.000 Y0.000 Z5.000",
            "G01 Z-1.000 F300",
            "G01 X10.000 Y0.000 F300",
            "G00 Z5.000",
            "G00 X20.000 Y5.000 Z5.000",
        ]

    def test_ramp_move_carries_z(self) -> None:
        a, b = Point(0, 0), Point(10, 0)
        tp = Toolpath(3.0, -2.0, [
            RapidMove(a, a, 5.0),
            LinearMove(a, b, -2.0, 300, 10000, start_z=0.0),
        ])
        lines = GCodeEmitter().generate_body([(None, tp)]).splitlines()
        assert lines[1] == "G01 Z0.000 F300"
        assert lines[2] == "G01 X10.000 Y0.000 Z-2.000 F300"

    def test_ccw_arc(self) -> None:
        a, b, c = Point(10, 0), Point(0, 10), Point(0, 0)
        tp = Toolpath(3.0, -1.0, [
            RapidMove(a, a, 5.0),
            ArcMove(a, b, c, ArcDirection.CCW, -1.0, 250, 9000),
        ])
        lines = GCodeEmitter().generate_body([(None, tp)]).splitlines()
        assert lines[-1] == "G03 X0.000 Y10.000 I-10.000 J0.000"

    def test_shape_comments_and_line_numbers(self, rect_pass: Toolpath) -> None:
        emitter = GCodeEmitter(line_numbers=True)
        body = emitter.generate_body([(7, rect_pass)]).splitlines()
        assert body[0] == "; Shape ID=7"
        numbers = [int(l.split()[0][1:]) for l in body[1:]]
        assert numbers == list(range(10, 10 * len(numbers) + 1, 10))

    def test_numbering_restarts_per_program(self, rect_pass: Toolpath) -> None:
        emitter = GCodeEmitter(line_numbers=True)
        first = emitter.generate(rect_pass)
        second = emitter.generate(rect_pass)
        assert first == second
        assert "N10 G00" in first


# ---------------------------------------------------------------------------
# Programs
# ---------------------------------------------------------------------------


class TestProgram:
    def test_empty_pocket_program(self) -> None:
        gen = ToolpathGenerator(tool_diameter=3.0, cut_depth=1.0)
        passes = gen.generate_pocket(Rectangle(Point(0, 0), 1.0, 1.0), 1.0, 0.0)
        assert passes == []
        program = GCodeEmitter().generate_program(passes)
        assert "G90" in program and "M30" in program
        assert not re.search(r"^G0[123] ", program, re.MULTILINE)

    def test_header_values_from_toolpaths(self, rect_pass: Toolpath) -> None:
        program = GCodeEmitter().generate_program([(1, rect_pass)])
        assert "; Feed rate: 500 mm/min" in program
        assert "M3 S12000" in program
        assert "; Shape ID=1" in program

    def test_positions_round_trip(self, rect_gen: ToolpathGenerator) -> None:
        rect = Rectangle(Point(30, 25), 40, 30, corner_radius=5.0, rotation=30.0)
        passes = rect_gen.generate_profile(rect, 1.0)
        program = GCodeEmitter().generate_program(passes)
        positions = program_positions(program)

        ends = [
            (s.end.x, s.end.y, tp.depth)
            for tp in passes for s in tp.segments if s.is_cutting
        ]
        for end in ends:
            assert any(
                all(abs(p[k] - end[k]) <= 1e-3 for k in range(3)) for p in positions
            ), end

    def test_reemitted_program_is_equivalent(self, rect_pass: Toolpath, circle_pass: Toolpath) -> None:
        program = GCodeEmitter().generate_program([rect_pass, circle_pass])
        reemitted = format_program(parse_program(program))
        before = program_positions(program)
        after = program_positions(reemitted)
        assert len(before) == len(after)
        for p, q in zip(before, after):
            assert all(abs(p[k] - q[k]) <= 1e-3 for k in range(3))
