"""GRBL 1.1 protocol: response parsing and command construction.

Response grammar (one line per response)::

    ok                           Ok
    error:<n>                    ErrorResponse(n)
    alarm:<n> / ALARM:<n>        AlarmResponse(n)
    <State|MPos:x,y,z|...>       StatusReport
    Grbl 1.1h ['$' for help]     Version
    [VER:...] / [OPT:...]        BuildInfo
    $<n>=<value>                 Setting
    anything else                Message

``parse_response`` never raises: malformed input degrades to ``Message``
(or ``None`` for blank lines) so a noisy link cannot crash the reader.

Real-time bytes (``?``, ``!``, ``~``, ``0x18`` and the override bytes)
bypass the controller's line buffer and are sent on their own.
"""

from __future__ import annotations

import math
import re
from dataclasses import dataclass
from enum import Enum
from typing import Optional, Sequence, Union


_CODE_RE = re.compile(r"^(error|alarm):\s*(\d+)$", re.IGNORECASE)
_SETTING_RE = re.compile(r"^\$(\d+)=(.*)$")


# ---------------------------------------------------------------------------
# Code tables
# ---------------------------------------------------------------------------

ERROR_DESCRIPTIONS: dict[int, str] = {
    1: "Expected command letter",
    2: "Bad number format",
    3: "Invalid statement",
    4: "Value < 0",
    5: "Setting disabled",
    6: "Value < 3 usec",
    7: "EEPROM read fail. Using defaults",
    8: "Not idle",
    9: "G-code lock",
    10: "Homing not enabled",
    11: "Line overflow",
    12: "Step rate > 30kHz",
    13: "Check Door",
    14: "Line length exceeded",
    15: "Travel exceeded",
    16: "Invalid jog command",
    17: "Laser mode requires PWM output",
    20: "Unsupported or invalid g-code command",
    21: "Modal group violation",
    22: "Undefined feed rate",
    23: "Command value not integer",
    24: "Axis command conflict",
    25: "Repeated g-code word",
    26: "No axis words found",
    27: "Invalid line number",
    28: "Value word missing",
    29: "Work coordinate system not supported",
    30: "G53 only allowed with G0 and G1",
    31: "Axis words found with no command using them",
    32: "Arc requires an in-plane axis word",
    33: "Motion command target is invalid",
    34: "Arc radius value is invalid",
    35: "Arc requires an in-plane offset word",
    36: "Unused value words found",
    37: "Tool length offset not on configured axis",
    38: "Tool number greater than max supported value",
}

ALARM_DESCRIPTIONS: dict[int, str] = {
    1: "Hard limit triggered",
    2: "Soft limit alarm",
    3: "Reset while in motion",
    4: "Probe fail",
    5: "Probe fail",
    6: "Homing fail",
    7: "Homing fail",
    8: "Homing fail",
    9: "Homing fail",
    10: "Homing fail",
}


def error_description(code: int) -> str:
    return ERROR_DESCRIPTIONS.get(code, "Unknown error")


def alarm_description(code: int) -> str:
    return ALARM_DESCRIPTIONS.get(code, "Unknown alarm")


# ---------------------------------------------------------------------------
# Responses
# ---------------------------------------------------------------------------


@dataclass(frozen=True)
class Position:
    """Three-axis position in controller units."""

    x: float
    y: float
    z: float

    def to_tuple(self) -> tuple[float, float, float]:
        return (self.x, self.y, self.z)


@dataclass(frozen=True)
class BufferState:
    """``Buf:`` / ``Bf:`` field: planner blocks and serial bytes free."""

    plan: int
    exec: int


@dataclass(frozen=True)
class OverrideValues:
    """``Ov:`` field, percentages."""

    feed_rate: int = 100
    rapid: int = 100
    spindle_speed: int = 100


@dataclass(frozen=True)
class Ok:
    def __str__(self) -> str:
        return "ok"


@dataclass(frozen=True)
class ErrorResponse:
    code: int

    @property
    def description(self) -> str:
        return error_description(self.code)

    def __str__(self) -> str:
        return f"error:{self.code}"


@dataclass(frozen=True)
class AlarmResponse:
    code: int

    @property
    def description(self) -> str:
        return alarm_description(self.code)

    def __str__(self) -> str:
        return f"alarm:{self.code}"


@dataclass(frozen=True)
class StatusReport:
    """Parsed ``<...>`` real-time status report.

    Fields the controller did not include are ``None``.
    """

    state: str
    machine_pos: Optional[Position] = None
    work_pos: Optional[Position] = None
    work_offset: Optional[Position] = None
    feed_rate: Optional[float] = None
    spindle_speed: Optional[int] = None
    buffer: Optional[BufferState] = None
    overrides: Optional[OverrideValues] = None
    pins: Optional[str] = None
    line_number: Optional[int] = None

    def __str__(self) -> str:
        return f"status:{self.state}"


@dataclass(frozen=True)
class Version:
    text: str


@dataclass(frozen=True)
class BuildInfo:
    text: str


@dataclass(frozen=True)
class Setting:
    number: int
    value: str

    def __str__(self) -> str:
        return f"setting:${self.number}={self.value}"


@dataclass(frozen=True)
class Message:
    text: str


Response = Union[
    Ok, ErrorResponse, AlarmResponse, StatusReport, Version, BuildInfo, Setting, Message,
]


# ---------------------------------------------------------------------------
# Parsing
# ---------------------------------------------------------------------------


def _floats(text: str) -> Optional[list[float]]:
    try:
        values = [float(v) for v in text.split(",")]
    except ValueError:
        return None
    if not all(math.isfinite(v) for v in values):
        return None
    return values


def _position(text: str) -> Optional[Position]:
    values = _floats(text)
    if values is None or len(values) < 3:
        return None
    return Position(values[0], values[1], values[2])


def _int_pair(text: str, sep: str) -> Optional[tuple[int, int]]:
    parts = text.split(sep)
    if len(parts) != 2:
        return None
    try:
        return int(parts[0]), int(parts[1])
    except ValueError:
        return None


def parse_status(line: str) -> Optional[StatusReport]:
    """Parse a ``<State|field|...>`` report; ``None`` if not one.

    Unknown or malformed fields are skipped; only an empty state makes
    the whole report invalid.
    """
    line = line.strip()
    if len(line) < 2 or not (line.startswith("<") and line.endswith(">")):
        return None
    parts = line[1:-1].split("|")
    state = parts[0].strip()
    if not state or not state.replace(":", "").isalnum():
        return None

    fields: dict = {}
    for part in parts[1:]:
        key, sep, value = part.partition(":")
        if not sep:
            continue
        if key == "MPos":
            fields["machine_pos"] = _position(value)
        elif key == "WPos":
            fields["work_pos"] = _position(value)
        elif key == "WCO":
            fields["work_offset"] = _position(value)
        elif key == "F":
            values = _floats(value)
            if values:
                fields["feed_rate"] = values[0]
        elif key == "FS":
            values = _floats(value)
            if values and len(values) >= 2:
                fields["feed_rate"] = values[0]
                fields["spindle_speed"] = int(values[1])
        elif key == "S":
            values = _floats(value)
            if values:
                fields["spindle_speed"] = int(values[0])
        elif key in ("Buf", "Bf"):
            pair = _int_pair(value, ":" if key == "Buf" else ",")
            if pair is not None:
                fields["buffer"] = BufferState(*pair)
        elif key == "Ov":
            values = _floats(value)
            if values and len(values) >= 3:
                fields["overrides"] = OverrideValues(*(int(v) for v in values[:3]))
        elif key == "Pn":
            fields["pins"] = value
        elif key == "Ln":
            try:
                fields["line_number"] = int(value)
            except ValueError:
                pass
    return StatusReport(state=state, **fields)


def parse_response(line: str) -> Optional[Response]:
    """Classify one controller line.

    Returns
    -------
    Response | None
        ``None`` for an empty / whitespace line, ``Message`` for anything
        unrecognised.
    """
    text = line.strip()
    if not text:
        return None
    if text == "ok":
        return Ok()

    m = _CODE_RE.match(text)
    if m is not None:
        code = int(m.group(2))
        if m.group(1).lower() == "error":
            return ErrorResponse(code)
        return AlarmResponse(code)

    if text.startswith("<"):
        status = parse_status(text)
        return status if status is not None else Message(text)
    if text.startswith("Grbl "):
        return Version(text)
    if text.startswith("[") and text.endswith("]"):
        return BuildInfo(text)

    m = _SETTING_RE.match(text)
    if m is not None:
        return Setting(int(m.group(1)), m.group(2))
    return Message(text)


# ---------------------------------------------------------------------------
# Commands
# ---------------------------------------------------------------------------


class RealTimeCommand(Enum):
    """Single-byte commands acted on immediately by the controller."""

    QUERY_STATUS = (b"?", "Query Status")
    FEED_HOLD = (b"!", "Feed Hold")
    CYCLE_START = (b"~", "Cycle Start")
    SOFT_RESET = (b"\x18", "Soft Reset")
    SAFETY_DOOR = (b"\x84", "Safety Door")
    JOG_CANCEL = (b"\x85", "Jog Cancel")

    def __init__(self, byte: bytes, description: str) -> None:
        self.byte = byte
        self.description = description


class SystemCommand(Enum):
    """``$`` system commands (line-oriented)."""

    HOME_ALL = ("$H", "Home All Axes")
    KILL_ALARM_LOCK = ("$X", "Kill Alarm Lock")
    CHECK_MODE = ("$C", "Check Mode")
    QUERY_PARSER_STATE = ("$G", "Query Parser State")
    QUERY_BUILD_INFO = ("$I", "Query Build Info")
    VIEW_SETTINGS = ("$$", "View Settings")
    VIEW_PARAMETERS = ("$#", "View Parameters")
    RESET_EEPROM = ("$RST=$", "Reset Settings")
    RESET_PARAMETERS = ("$RST=#", "Reset Parameters")
    RESET_ALL = ("$RST=*", "Reset All")
    SLEEP = ("$SLP", "Sleep")

    def __init__(self, text: str, description: str) -> None:
        self.text = text
        self.description = description


class ProbeType(Enum):
    TOUCHING = ("G38.2", "Probe to Contact")
    TOUCHING_REQUIRED = ("G38.3", "Probe to Contact (no error)")
    BACKING = ("G38.4", "Probe Away")
    BACKING_REQUIRED = ("G38.5", "Probe Away (no error)")

    def __init__(self, gcode: str, description: str) -> None:
        self.gcode = gcode
        self.description = description


def _axis_words(x: Optional[float], y: Optional[float], z: Optional[float]) -> list[str]:
    words = []
    for letter, value in (("X", x), ("Y", y), ("Z", z)):
        if value is not None:
            words.append(f"{letter}{value:.3f}")
    return words


class CommandCreator:
    """Builders for controller command strings.

    Line commands include the trailing ``\\n``; real-time commands are
    returned as ``bytes``.
    """

    @staticmethod
    def real_time(command: RealTimeCommand) -> bytes:
        return command.byte

    @staticmethod
    def system(command: SystemCommand) -> str:
        return f"{command.text}\n"

    # Convenience wrappers

    @staticmethod
    def query_status() -> bytes:
        return RealTimeCommand.QUERY_STATUS.byte

    @staticmethod
    def feed_hold() -> bytes:
        return RealTimeCommand.FEED_HOLD.byte

    @staticmethod
    def cycle_start() -> bytes:
        return RealTimeCommand.CYCLE_START.byte

    @staticmethod
    def soft_reset() -> bytes:
        return RealTimeCommand.SOFT_RESET.byte

    @staticmethod
    def home_all() -> str:
        return CommandCreator.system(SystemCommand.HOME_ALL)

    @staticmethod
    def kill_alarm_lock() -> str:
        return CommandCreator.system(SystemCommand.KILL_ALARM_LOCK)

    # Machine functions

    @staticmethod
    def spindle_on(rpm: int, clockwise: bool = True) -> str:
        return f"{'M3' if clockwise else 'M4'} S{int(rpm)}\n"

    @staticmethod
    def spindle_off() -> str:
        return "M5\n"

    @staticmethod
    def coolant_on(mist: bool = False) -> str:
        return "M7\n" if mist else "M8\n"

    @staticmethod
    def coolant_off() -> str:
        return "M9\n"

    @staticmethod
    def program_pause() -> str:
        return "M0\n"

    @staticmethod
    def program_end() -> str:
        return "M2\n"

    @staticmethod
    def tool_change(tool: int) -> str:
        return f"T{int(tool)} M6\n"

    @staticmethod
    def dwell(seconds: float) -> str:
        return f"G4 P{float(seconds)}\n"

    # Motion

    @staticmethod
    def rapid_move(
        x: Optional[float] = None, y: Optional[float] = None, z: Optional[float] = None,
    ) -> str:
        return " ".join(["G0"] + _axis_words(x, y, z)) + "\n"

    @staticmethod
    def linear_move(
        x: Optional[float], y: Optional[float], z: Optional[float], feed: float,
    ) -> str:
        return " ".join(["G1"] + _axis_words(x, y, z) + [f"F{int(round(feed))}"]) + "\n"

    @staticmethod
    def jog(
        x: Optional[float] = None,
        y: Optional[float] = None,
        z: Optional[float] = None,
        feed: float = 500.0,
        incremental: bool = True,
    ) -> str:
        """``$J=`` jog; cancel with ``RealTimeCommand.JOG_CANCEL``."""
        mode = "G91" if incremental else "G90"
        return " ".join(
            [f"$J={mode}"] + _axis_words(x, y, z) + [f"F{int(round(feed))}"],
        ) + "\n"

    @staticmethod
    def jog_incremental(axis: str, distance: float, feed: float) -> str:
        axis = axis.upper()
        if axis not in ("X", "Y", "Z"):
            raise ValueError(f"Unknown axis '{axis}'")
        return CommandCreator.jog(**{axis.lower(): distance}, feed=feed)

    @staticmethod
    def probe(
        probe_type: ProbeType,
        x: Optional[float] = None,
        y: Optional[float] = None,
        z: Optional[float] = None,
        feed: float = 100.0,
    ) -> str:
        return " ".join(
            [probe_type.gcode] + _axis_words(x, y, z) + [f"F{int(round(feed))}"],
        ) + "\n"

    @staticmethod
    def set_work_offset(axes: Sequence[str] = ("X", "Y", "Z")) -> str:
        """Zero the active work coordinate system on *axes* (``G10 L20``)."""
        words = [f"{a.upper()}0" for a in axes]
        return " ".join(["G10 P0 L20"] + words) + "\n"
