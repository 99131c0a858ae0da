"""Tests for the G-code parser and modal state tracking."""

from __future__ import annotations

import pytest

from millcam.gcode.parser import (
    Arc,
    Comment,
    Dwell,
    GCodeParseError,
    Home,
    KillAlarmLock,
    ModalState,
    Move,
    Plane,
    ProgramEnd,
    SetAbsolute,
    SetCoolant,
    SetPlane,
    SetSpindle,
    SetUnits,
    SpindleOff,
    Units,
    Unknown,
    format_command,
    parse_line,
    parse_program,
    parse_words,
    program_positions,
    strip_comments,
)


class TestParseLine:
    def test_blank_line(self) -> None:
        assert parse_line("") is None
        assert parse_line("   ") is None

    def test_comment_only(self) -> None:
        assert parse_line("; Shape ID=3") == Comment("Shape ID=3")
        assert parse_line("(setup)") == Comment("setup")

    def test_rapid(self) -> None:
        assert parse_line("G00 X10.000 Y5.000 Z5.000") == Move(True, 10.0, 5.0, 5.0)

    def test_linear_with_feed(self) -> None:
        assert parse_line("G01 X50.000 Y10.000 F500") == Move(False, 50.0, 10.0, None, 500.0)

    def test_arc(self) -> None:
        cmd = parse_line("G02 X10.000 Y25.000 I-15.000 J0.000 F400")
        assert cmd == Arc(cw=True, x=10.0, y=25.0, i=-15.0, j=0.0, z=None, f=400.0)

    def test_ccw_arc(self) -> None:
        cmd = parse_line("G3 X0 Y10 I-10 J0")
        assert isinstance(cmd, Arc) and not cmd.cw

    def test_line_number_and_inline_comment(self) -> None:
        assert parse_line("N20 G01 X1 Y2 F100 ; cut") == Move(False, 1.0, 2.0, None, 100.0)

    def test_modal_motion(self) -> None:
        assert parse_line("X5 Y6") == Move(None, 5.0, 6.0)

    def test_lowercase_words(self) -> None:
        assert parse_line("g1 x1 y2 f30") == Move(False, 1.0, 2.0, None, 30.0)

    def test_system_commands(self) -> None:
        assert parse_line("$H") == Home()
        assert parse_line("$X") == KillAlarmLock()
        assert isinstance(parse_line("$J=G91 X1 F100"), Unknown)

    def test_spindle_and_coolant(self) -> None:
        assert parse_line("M3 S18000      ; Spindle on") == SetSpindle(18000, True)
        assert parse_line("M4 S500") == SetSpindle(500, False)
        assert parse_line("M5") == SpindleOff()
        assert parse_line("M8") == SetCoolant(True)
        assert parse_line("M9") == SetCoolant(False)

    def test_program_end(self) -> None:
        assert parse_line("M30") == ProgramEnd()
        assert parse_line("M2") == ProgramEnd()

    def test_dwell(self) -> None:
        assert parse_line("G4 P1.5") == Dwell(1.5)

    def test_unknown_code(self) -> None:
        assert parse_words("G38.2 Z-10 F50")[0] == Unknown("G38.2")
        assert parse_line("M6") == Unknown("M6")

    def test_junk_raises(self) -> None:
        with pytest.raises(GCodeParseError):
            parse_line("G01 X1 hello")

    def test_strip_comments(self) -> None:
        assert strip_comments("G90 (abs) ; positioning") == "G90"


class TestParseWords:
    def test_modal_group_line(self) -> None:
        assert parse_words("G90 G21 G17") == [
            SetAbsolute(), SetUnits(Units.MM), SetPlane(Plane.XY),
        ]

    def test_inch_units(self) -> None:
        assert parse_words("G20") == [SetUnits(Units.INCH)]

    def test_program_error_has_line_number(self) -> None:
        with pytest.raises(GCodeParseError, match="Line 2"):
            parse_program("G90\nG01 X1 ???\n")


class TestModalState:
    def test_absolute_positions(self) -> None:
        text = "G90\nG00 X1 Y2 Z3\nG01 X4 F100\nY5\n"
        assert program_positions(text) == [
            (1.0, 2.0, 3.0), (4.0, 2.0, 3.0), (4.0, 5.0, 3.0),
        ]

    def test_relative_positions(self) -> None:
        text = "G91\nG00 X1 Y1\nG00 X1 Y1\n"
        assert program_positions(text) == [(1.0, 1.0, 0.0), (2.0, 2.0, 0.0)]

    def test_inch_input_converts_to_mm(self) -> None:
        positions = program_positions("G20\nG00 X1 Y0.5\n")
        assert positions[0] == pytest.approx((25.4, 12.7, 0.0))

    def test_state_tracking(self) -> None:
        state = ModalState()
        for cmd in parse_program("G91\nG18\nM3 S9000\nM8\nG01 X1 F250\n"):
            state.apply(cmd)
        assert not state.absolute
        assert state.plane is Plane.XZ
        assert state.spindle_on and state.spindle_rpm == 9000
        assert state.coolant
        assert not state.rapid
        assert state.feed_rate == 250.0

    def test_program_end_resets(self) -> None:
        state = ModalState()
        for cmd in parse_program("G91\nG00 X3\nM30\n"):
            state.apply(cmd)
        assert state.absolute
        assert state.position == (0.0, 0.0, 0.0)


class TestFormatCommand:
    @pytest.mark.parametrize("line", [
        "G00 X10.000 Y5.000 Z5.000",
        "G01 X50.000 Y10.000 F500",
        "G02 X10.000 Y25.000 I-15.000 J0.000 F400",
        "M3 S12000",
        "M5",
        "G21",
        "G90",
        "G17",
        "$H",
        "M30",
    ])
    def test_round_trip(self, line: str) -> None:
        assert format_command(parse_line(line)) == line

    def test_not_a_command(self) -> None:
        with pytest.raises(TypeError):
            format_command("G01")
