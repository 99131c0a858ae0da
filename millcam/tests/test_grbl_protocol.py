"""Tests for GRBL response parsing and command building.

Covers:
    - ok / error / alarm classification and code descriptions
    - Status reports (GRBL 1.1 ``|`` form, ``Buf`` and ``Bf`` buffers)
    - Banner, build info, settings and free-form messages
    - Real-time and system command bytes
    - Parser robustness against arbitrary input
"""

from __future__ import annotations

import random

import pytest

from millcam.hardware.grbl_protocol import (
    AlarmResponse,
    BufferState,
    BuildInfo,
    CommandCreator,
    ErrorResponse,
    Message,
    Ok,
    OverrideValues,
    Position,
    ProbeType,
    RealTimeCommand,
    Setting,
    StatusReport,
    SystemCommand,
    Version,
    alarm_description,
    error_description,
    parse_response,
    parse_status,
)


# ---------------------------------------------------------------------------
# Simple responses
# ---------------------------------------------------------------------------


class TestSimpleResponses:
    def test_ok(self) -> None:
        assert parse_response("ok") == Ok()
        assert parse_response("ok\r\n") == Ok()

    def test_blank_is_none(self) -> None:
        assert parse_response("") is None
        assert parse_response("  \r\n") is None

    def test_error_code(self) -> None:
        resp = parse_response("error:20")
        assert resp == ErrorResponse(20)
        assert resp.description == "Unsupported or invalid g-code command"
        assert str(resp) == "error:20"

    def test_alarm_code(self) -> None:
        resp = parse_response("ALARM:1")
        assert resp == AlarmResponse(1)
        assert resp.description == "Hard limit triggered"

    def test_unknown_codes(self) -> None:
        assert error_description(99) == "Unknown error"
        assert alarm_description(42) == "Unknown alarm"

    @pytest.mark.parametrize("code", [6, 7, 8, 9, 10])
    def test_homing_alarms(self, code: int) -> None:
        assert alarm_description(code) == "Homing fail"

    def test_every_error_code_described(self) -> None:
        for code in list(range(1, 18)) + list(range(20, 39)):
            assert error_description(code) != "Unknown error"

    def test_version_banner(self) -> None:
        assert parse_response("Grbl 1.1h ['$' for help]") == Version("Grbl 1.1h ['$' for help]")

    def test_build_info(self) -> None:
        assert parse_response("[VER:1.1h.20190825:]") == BuildInfo("[VER:1.1h.20190825:]")

    def test_setting(self) -> None:
        resp = parse_response("$110=5000.000")
        assert resp == Setting(110, "5000.000")
        assert str(resp) == "setting:$110=5000.000"

    def test_message(self) -> None:
        assert parse_response("hello") == Message("hello")


# ---------------------------------------------------------------------------
# Status reports
# ---------------------------------------------------------------------------


class TestStatusReport:
    def test_run_report(self) -> None:
        status = parse_response(
            "<Run|MPos:12.500,-3.200,5.000|F:1200|S:10000|Buf:15:128>"
        )
        assert isinstance(status, StatusReport)
        assert status.state == "Run"
        assert status.machine_pos == Position(12.5, -3.2, 5.0)
        assert status.feed_rate == 1200.0
        assert status.spindle_speed == 10000
        assert status.buffer == BufferState(plan=15, exec=128)

    def test_grbl11_fields(self) -> None:
        status = parse_status(
            "<Idle|WPos:1.000,2.000,3.000|Bf:15,128|FS:500,8000|"
            "WCO:0.000,0.000,-1.000|Ov:100,50,120|Pn:XZ|Ln:42>"
        )
        assert status.work_pos == Position(1.0, 2.0, 3.0)
        assert status.work_offset == Position(0.0, 0.0, -1.0)
        assert status.buffer == BufferState(15, 128)
        assert status.feed_rate == 500.0
        assert status.spindle_speed == 8000
        assert status.overrides == OverrideValues(100, 50, 120)
        assert status.pins == "XZ"
        assert status.line_number == 42

    def test_sub_state(self) -> None:
        assert parse_status("<Hold:0|MPos:0.000,0.000,0.000>").state == "Hold:0"

    def test_malformed_fields_skipped(self) -> None:
        status = parse_status("<Idle|MPos:1,2|F:fast|Buf:3>")
        assert status.state == "Idle"
        assert status.machine_pos is None
        assert status.feed_rate is None
        assert status.buffer is None

    def test_empty_state_is_message(self) -> None:
        assert parse_status("<|MPos:0,0,0>") is None
        assert parse_response("<|MPos:0,0,0>") == Message("<|MPos:0,0,0>")

    def test_non_finite_values_rejected(self) -> None:
        status = parse_status("<Run|FS:inf,nan>")
        assert status.feed_rate is None
        assert status.spindle_speed is None


class TestFuzz:
    def test_never_raises(self) -> None:
        rng = random.Random(1234)
        alphabet = "<>|:,.-+0123456789 okerrorlalarmRunIdleMPosWPosFSBufBfOvLn$=[]\r\n\x18"
        for _ in range(2000):
            line = "".join(rng.choice(alphabet) for _ in range(rng.randint(0, 40)))
            parse_response(line)

    def test_emitter_ack_parses_to_ok(self) -> None:
        for reply in ("ok", "ok\n", " ok \r\n"):
            assert isinstance(parse_response(reply), Ok)


# ---------------------------------------------------------------------------
# Commands
# ---------------------------------------------------------------------------


class TestCommands:
    def test_real_time_bytes(self) -> None:
        assert CommandCreator.query_status() == b"?"
        assert CommandCreator.feed_hold() == b"!"
        assert CommandCreator.cycle_start() == b"~"
        assert CommandCreator.soft_reset() == b"\x18"
        assert CommandCreator.real_time(RealTimeCommand.JOG_CANCEL) == b"\x85"
        assert RealTimeCommand.SOFT_RESET.description == "Soft Reset"

    def test_system_commands(self) -> None:
        assert CommandCreator.home_all() == "$H\n"
        assert CommandCreator.kill_alarm_lock() == "$X\n"
        assert CommandCreator.system(SystemCommand.VIEW_SETTINGS) == "$$\n"
        assert SystemCommand.RESET_ALL.text == "$RST=*"

    def test_machine_functions(self) -> None:
        assert CommandCreator.spindle_on(10000) == "M3 S10000\n"
        assert CommandCreator.spindle_on(500, clockwise=False) == "M4 S500\n"
        assert CommandCreator.spindle_off() == "M5\n"
        assert CommandCreator.coolant_on() == "M8\n"
        assert CommandCreator.coolant_on(mist=True) == "M7\n"
        assert CommandCreator.coolant_off() == "M9\n"
        assert CommandCreator.tool_change(1) == "T1 M6\n"
        assert CommandCreator.dwell(1.5) == "G4 P1.5\n"

    def test_motion(self) -> None:
        assert CommandCreator.rapid_move(x=10, z=5) == "G0 X10.000 Z5.000\n"
        assert CommandCreator.linear_move(1, 2, None, 150) == "G1 X1.000 Y2.000 F150\n"

    def test_jog(self) -> None:
        assert CommandCreator.jog(x=5, feed=1000) == "$J=G91 X5.000 F1000\n"
        assert CommandCreator.jog(x=5, y=5, incremental=False) == "$J=G90 X5.000 Y5.000 F500\n"
        assert CommandCreator.jog_incremental("z", -1, 200) == "$J=G91 Z-1.000 F200\n"

    def test_jog_bad_axis(self) -> None:
        with pytest.raises(ValueError):
            CommandCreator.jog_incremental("A", 1, 100)

    def test_probe(self) -> None:
        assert CommandCreator.probe(ProbeType.TOUCHING, z=-10, feed=50) == "G38.2 Z-10.000 F50\n"

    def test_work_offset(self) -> None:
        assert CommandCreator.set_work_offset() == "G10 P0 L20 X0 Y0 Z0\n"
        assert CommandCreator.set_work_offset(["z"]) == "G10 P0 L20 Z0\n"
