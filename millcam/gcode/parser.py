"""G-code parser -- program text to typed commands.

Reads the dialect the emitter writes plus the common GRBL extras
(``$H`` homing, ``$X`` unlock, coolant, dwell).  Comments (``;`` to end
of line and ``( ... )``) and ``N`` line numbers are stripped.  A line
whose motion word is missing (``X10 Y5``) continues the modal motion
mode; ``ModalState`` resolves it.
"""

from __future__ import annotations

import re
from dataclasses import dataclass, field
from enum import Enum
from typing import Iterator, Optional, Union

MM_PER_INCH = 25.4

_WORD = re.compile(r"([A-Za-z])\s*([-+]?(?:\d+\.?\d*|\.\d+))")
_PAREN_COMMENT = re.compile(r"\([^)]*\)")


class GCodeParseError(ValueError):
    """Raised for malformed words in a G-code line."""

    pass


class Units(Enum):
    MM = "mm"
    INCH = "inch"


class Plane(Enum):
    XY = "G17"
    XZ = "G18"
    YZ = "G19"


# ---------------------------------------------------------------------------
# Commands
# ---------------------------------------------------------------------------


@dataclass(frozen=True)
class Move:
    """``G00`` / ``G01``.  ``rapid`` is ``None`` when the line relies on the
    modal motion mode."""

    rapid: Optional[bool]
    x: Optional[float] = None
    y: Optional[float] = None
    z: Optional[float] = None
    f: Optional[float] = None


@dataclass(frozen=True)
class Arc:
    cw: bool
    x: Optional[float] = None
    y: Optional[float] = None
    i: float = 0.0
    j: float = 0.0
    z: Optional[float] = None
    f: Optional[float] = None


@dataclass(frozen=True)
class Dwell:
    seconds: float


@dataclass(frozen=True)
class SetSpindle:
    rpm: int
    clockwise: bool = True


@dataclass(frozen=True)
class SpindleOff:
    pass


@dataclass(frozen=True)
class SetCoolant:
    on: bool


@dataclass(frozen=True)
class Home:
    pass


@dataclass(frozen=True)
class KillAlarmLock:
    pass


@dataclass(frozen=True)
class SetUnits:
    units: Units


@dataclass(frozen=True)
class SetAbsolute:
    pass


@dataclass(frozen=True)
class SetRelative:
    pass


@dataclass(frozen=True)
class SetPlane:
    plane: Plane


@dataclass(frozen=True)
class ProgramEnd:
    pass


@dataclass(frozen=True)
class Comment:
    text: str


@dataclass(frozen=True)
class Unknown:
    text: str


GCodeCommand = Union[
    Move, Arc, Dwell, SetSpindle, SpindleOff, SetCoolant, Home, KillAlarmLock,
    SetUnits, SetAbsolute, SetRelative, SetPlane, ProgramEnd, Comment, Unknown,
]


# ---------------------------------------------------------------------------
# Line parsing
# ---------------------------------------------------------------------------


def _split_comment(line: str) -> tuple[str, Optional[str]]:
    comment = None
    if ";" in line:
        line, comment = line.split(";", 1)
        comment = comment.strip()
    parens = _PAREN_COMMENT.findall(line)
    if parens and comment is None:
        comment = " ".join(p[1:-1].strip() for p in parens)
    line = _PAREN_COMMENT.sub(" ", line)
    return line.strip(), comment


def strip_comments(line: str) -> str:
    """Code part of *line*: comments removed, whitespace trimmed."""
    return _split_comment(line)[0]


def _words(code: str) -> list[tuple[str, float]]:
    words = []
    pos = 0
    for m in _WORD.finditer(code):
        gap = code[pos:m.start()].strip()
        if gap:
            raise GCodeParseError(f"Unexpected text '{gap}' in '{code}'")
        words.append((m.group(1).upper(), float(m.group(2))))
        pos = m.end()
    tail = code[pos:].strip()
    if tail:
        raise GCodeParseError(f"Unexpected text '{tail}' in '{code}'")
    return words


def _code(value: float) -> str:
    return str(int(value)) if float(value).is_integer() else str(value)


def parse_words(line: str) -> list[GCodeCommand]:
    """Every command on *line*, in word order.

    ``G90 G21`` yields two commands; axis, feed and parameter words attach
    to the motion command on the line (or form a modal ``Move``).

    Raises
    ------
    GCodeParseError
        On text that is not a ``<letter><number>`` word.
    """
    code, comment = _split_comment(line)
    if not code:
        return [Comment(comment)] if comment is not None else []

    upper = code.upper()
    if upper.startswith("$"):
        if upper == "$H":
            return [Home()]
        if upper == "$X":
            return [KillAlarmLock()]
        return [Unknown(code)]

    words = _words(code)
    params = {}
    for letter, value in words:
        if letter in "XYZIJFSP":
            params[letter] = value

    commands: list[GCodeCommand] = []
    motion_seen = False
    for letter, value in words:
        num = _code(value)
        if letter == "N":
            continue
        if letter == "G":
            if num in ("0", "1"):
                commands.append(Move(
                    rapid=num == "0",
                    x=params.get("X"), y=params.get("Y"), z=params.get("Z"), f=params.get("F"),
                ))
                motion_seen = True
            elif num in ("2", "3"):
                commands.append(Arc(
                    cw=num == "2",
                    x=params.get("X"), y=params.get("Y"),
                    i=params.get("I", 0.0), j=params.get("J", 0.0),
                    z=params.get("Z"), f=params.get("F"),
                ))
                motion_seen = True
            elif num == "4":
                commands.append(Dwell(params.get("P", 0.0)))
            elif num in ("17", "18", "19"):
                commands.append(SetPlane(Plane(f"G{num}")))
            elif num == "20":
                commands.append(SetUnits(Units.INCH))
            elif num == "21":
                commands.append(SetUnits(Units.MM))
            elif num == "28":
                commands.append(Home())
            elif num == "90":
                commands.append(SetAbsolute())
            elif num == "91":
                commands.append(SetRelative())
            else:
                commands.append(Unknown(f"G{num}"))
        elif letter == "M":
            if num in ("3", "4"):
                commands.append(SetSpindle(int(params.get("S", 0)), clockwise=num == "3"))
            elif num == "5":
                commands.append(SpindleOff())
            elif num in ("7", "8"):
                commands.append(SetCoolant(True))
            elif num == "9":
                commands.append(SetCoolant(False))
            elif num in ("2", "30"):
                commands.append(ProgramEnd())
            else:
                commands.append(Unknown(f"M{num}"))

    if not motion_seen and any(k in params for k in "XYZ"):
        commands.append(Move(
            rapid=None,
            x=params.get("X"), y=params.get("Y"), z=params.get("Z"), f=params.get("F"),
        ))
    if not commands:
        commands.append(Unknown(code))
    return commands


def parse_line(line: str) -> Optional[GCodeCommand]:
    """The primary command on *line*; ``None`` for a blank line.

    A comment-only line yields ``Comment``.  Where several commands share
    a line the motion command wins, otherwise the first one.
    """
    commands = parse_words(line)
    if not commands:
        return None
    for cmd in commands:
        if isinstance(cmd, (Move, Arc)):
            return cmd
    return commands[0]


def parse_program(text: str) -> list[GCodeCommand]:
    """All commands of a program, blank lines skipped."""
    commands: list[GCodeCommand] = []
    for line_no, line in enumerate(text.splitlines(), start=1):
        try:
            commands.extend(parse_words(line))
        except GCodeParseError as e:
            raise GCodeParseError(f"Line {line_no}: {e}") from e
    return commands


# ---------------------------------------------------------------------------
# Modal state
# ---------------------------------------------------------------------------


@dataclass
class ModalState:
    """Interpreter state after a sequence of commands.

    Positions are kept in millimetres whatever the active units.
    """

    units: Units = Units.MM
    absolute: bool = True
    plane: Plane = Plane.XY
    rapid: bool = True
    feed_rate: float = 0.0
    spindle_rpm: int = 0
    spindle_on: bool = False
    coolant: bool = False
    position: tuple[float, float, float] = field(default=(0.0, 0.0, 0.0))

    def reset(self) -> None:
        self.__init__()

    def _mm(self, value: float) -> float:
        return value * MM_PER_INCH if self.units is Units.INCH else value

    def _target(self, x, y, z) -> tuple[float, float, float]:
        cur = list(self.position)
        for axis, value in enumerate((x, y, z)):
            if value is None:
                continue
            value = self._mm(value)
            cur[axis] = value if self.absolute else cur[axis] + value
        return cur[0], cur[1], cur[2]

    def apply(self, cmd: GCodeCommand) -> Optional[tuple[float, float, float]]:
        """Update the state; return the new position for motion commands."""
        if isinstance(cmd, Move):
            if cmd.rapid is not None:
                self.rapid = cmd.rapid
            if cmd.f is not None:
                self.feed_rate = self._mm(cmd.f)
            self.position = self._target(cmd.x, cmd.y, cmd.z)
            return self.position
        if isinstance(cmd, Arc):
            self.rapid = False
            if cmd.f is not None:
                self.feed_rate = self._mm(cmd.f)
            self.position = self._target(cmd.x, cmd.y, cmd.z)
            return self.position
        if isinstance(cmd, SetUnits):
            self.units = cmd.units
        elif isinstance(cmd, SetAbsolute):
            self.absolute = True
        elif isinstance(cmd, SetRelative):
            self.absolute = False
        elif isinstance(cmd, SetPlane):
            self.plane = cmd.plane
        elif isinstance(cmd, SetSpindle):
            self.spindle_rpm = cmd.rpm
            self.spindle_on = True
        elif isinstance(cmd, SpindleOff):
            self.spindle_on = False
        elif isinstance(cmd, SetCoolant):
            self.coolant = cmd.on
        elif isinstance(cmd, ProgramEnd):
            self.reset()
        return None


def iter_positions(commands) -> Iterator[tuple[float, float, float]]:
    state = ModalState()
    for cmd in commands:
        pos = state.apply(cmd)
        if pos is not None:
            yield pos


def program_positions(text: str) -> list[tuple[float, float, float]]:
    """Machine position (mm) after every motion command of *text*."""
    return list(iter_positions(parse_program(text)))


# ---------------------------------------------------------------------------
# Formatting
# ---------------------------------------------------------------------------


def _num(value: float) -> str:
    if abs(value) < 0.0005:
        value = 0.0
    return f"{value:.3f}"


def _axes(**words: Optional[float]) -> str:
    return " ".join(f"{k}{_num(v)}" for k, v in words.items() if v is not None)


def format_command(cmd: GCodeCommand) -> str:
    """Single-line G-code for *cmd* (inverse of ``parse_line``)."""
    if isinstance(cmd, Move):
        head = {True: "G00", False: "G01", None: ""}[cmd.rapid]
        feed = f" F{int(round(cmd.f))}" if cmd.f is not None else ""
        return " ".join(p for p in (head, _axes(X=cmd.x, Y=cmd.y, Z=cmd.z)) if p) + feed
    if isinstance(cmd, Arc):
        feed = f" F{int(round(cmd.f))}" if cmd.f is not None else ""
        words = _axes(X=cmd.x, Y=cmd.y, Z=cmd.z, I=cmd.i, J=cmd.j)
        return f"{'G02' if cmd.cw else 'G03'} {words}{feed}"
    if isinstance(cmd, Dwell):
        return f"G4 P{cmd.seconds:g}"
    if isinstance(cmd, SetSpindle):
        return f"{'M3' if cmd.clockwise else 'M4'} S{cmd.rpm}"
    if isinstance(cmd, SpindleOff):
        return "M5"
    if isinstance(cmd, SetCoolant):
        return "M8" if cmd.on else "M9"
    if isinstance(cmd, Home):
        return "$H"
    if isinstance(cmd, KillAlarmLock):
        return "$X"
    if isinstance(cmd, SetUnits):
        return "G21" if cmd.units is Units.MM else "G20"
    if isinstance(cmd, SetAbsolute):
        return "G90"
    if isinstance(cmd, SetRelative):
        return "G91"
    if isinstance(cmd, SetPlane):
        return cmd.plane.value
    if isinstance(cmd, ProgramEnd):
        return "M30"
    if isinstance(cmd, Comment):
        return f"; {cmd.text}"
    if isinstance(cmd, Unknown):
        return cmd.text
    raise TypeError(f"Not a G-code command: {cmd!r}")


def format_program(commands) -> str:
    return "".join(format_command(cmd) + "\n" for cmd in commands)
