"""G-code emitter -- toolpaths to controller-ready program text.

The output is deterministic: equal input produces byte-equal text.
Numbers use a fixed, locale-independent format::

    coordinates   X10.000  (3 decimals, always a decimal point)
    arc offsets   I-15.000 J0.000  (relative to the arc start)
    feed / speed  F500 / S12000    (integers)

Program layout::

    ; header comment block
    G90 / G21|G20 / G17 / M3 S<rpm>     modal preamble
    ; Shape ID=<id>                      per toolpath, when known
    <body moves>                         optionally numbered N10, N20, ...
    M5 / [G00 Z<safe>] / G00 X0 Y0 / M30 footer

Modal tracking
    The emitter remembers the last X / Y / Z and feed it wrote.  A
    cutting move whose entry Z differs from the current Z is preceded by
    a plunge ``G01 Z<z> F<feed>``.  Rapids that only repeat the current
    position are dropped.  In 2D mode (``num_axes=2``) every Z word, the
    plunge lines and the footer retract are omitted.

Feed words
    ``G01`` lines always carry ``F``; arcs carry it when it changes.
    With ``compact_feed=True`` every cutting move carries ``F`` only when
    it changes.
"""

from __future__ import annotations

import logging
from io import StringIO
from typing import Iterable, Optional, Union

from millcam.toolpath.segments import ArcMove, LinearMove, RapidMove, Segment, Toolpath

logger = logging.getLogger(__name__)

MM_PER_INCH = 25.4

ProgramItem = Union[Toolpath, tuple[int, Toolpath]]


class GCodeEmitterError(Exception):
    """Raised for invalid emitter settings."""

    pass


def format_coord(value: float) -> str:
    """Fixed 3-decimal coordinate; negative zero prints as ``0.000``."""
    if abs(value) < 0.0005:
        value = 0.0
    return f"{value:.3f}"


def format_int(value: float) -> str:
    return str(int(round(value)))


# ---------------------------------------------------------------------------
# Emitter
# ---------------------------------------------------------------------------


class GCodeEmitter:
    """Convert toolpaths to G-code text.

    Parameters
    ----------
    units : str
        ``"mm"`` (``G21``) or ``"inch"`` (``G20``; coordinates and feeds
        divided by 25.4).  Toolpaths are always in millimetres.
    safe_z : float
        Retract height used by the footer (mm).
    num_axes : int
        3 for full XYZ output, 2 to omit every Z word.
    line_numbers : bool
        Prefix body lines with ``N10``, ``N20``, ...
    compact_feed : bool
        Emit ``F`` on cutting moves only when the feed changes.
    """

    def __init__(
        self,
        units: str = "mm",
        safe_z: float = 5.0,
        num_axes: int = 3,
        line_numbers: bool = False,
        compact_feed: bool = False,
    ) -> None:
        if units not in ("mm", "inch"):
            raise GCodeEmitterError(f"units must be 'mm' or 'inch', got '{units}'")
        if num_axes not in (2, 3):
            raise GCodeEmitterError(f"num_axes must be 2 or 3, got {num_axes}")
        self.units = units
        self.safe_z = float(safe_z)
        self.num_axes = num_axes
        self.line_numbers = line_numbers
        self.compact_feed = compact_feed
        self._reset_state()

    @classmethod
    def from_config(cls, emitter_cfg, safe_z: float) -> GCodeEmitter:
        """Build from an ``EmitterConfig`` section."""
        return cls(
            units=emitter_cfg.units,
            safe_z=safe_z,
            num_axes=emitter_cfg.num_axes,
            line_numbers=emitter_cfg.line_numbers,
        )

    @property
    def is_3d(self) -> bool:
        return self.num_axes == 3

    # ------------------------------------------------------------------
    # Public API
    # ------------------------------------------------------------------

    def generate(self, toolpath: Toolpath) -> str:
        """Complete program for a single toolpath."""
        return self.generate_program([toolpath])

    def generate_program(
        self,
        items: Iterable[ProgramItem],
        *,
        tool_diameter: Optional[float] = None,
        cut_depth: Optional[float] = None,
        feed_rate: Optional[float] = None,
        spindle_speed: Optional[int] = None,
    ) -> str:
        """Complete program (header, body, footer) for several toolpaths.

        Parameters
        ----------
        items : Iterable[Toolpath | tuple[int, Toolpath]]
            Toolpaths in cut order.  A ``(shape_id, toolpath)`` pair gets
            a ``; Shape ID=<id>`` comment before its moves.
        tool_diameter, cut_depth, feed_rate, spindle_speed
            Header / preamble values.  When omitted they come from the
            toolpaths (first tool diameter, deepest pass, first cutting
            move's feed and spindle), or 0 for an empty program.

        Returns
        -------
        str
            Program text with ``\\n`` line endings.
        """
        pairs: list[tuple[Optional[int], Toolpath]] = []
        for item in items:
            if isinstance(item, Toolpath):
                pairs.append((None, item))
            else:
                shape_id, tp = item
                pairs.append((shape_id, tp))
        toolpaths = [tp for _, tp in pairs]

        first_cut = next(
            (s for tp in toolpaths for s in tp.segments if s.is_cutting), None,
        )
        if tool_diameter is None:
            tool_diameter = toolpaths[0].tool_diameter if toolpaths else 0.0
        if cut_depth is None:
            cut_depth = min((tp.depth for tp in toolpaths), default=0.0)
        if feed_rate is None:
            feed_rate = first_cut.feed if first_cut is not None else 0.0
        if spindle_speed is None:
            spindle_speed = first_cut.spindle if first_cut is not None else 0
        total_length = sum(tp.total_length() for tp in toolpaths)

        buf = StringIO()
        buf.write(self.generate_header(
            spindle_speed, feed_rate, tool_diameter, cut_depth, total_length,
        ))
        buf.write(self.generate_body(pairs))
        buf.write(self.generate_footer())
        return buf.getvalue()

    def generate_header(
        self,
        spindle_speed: int,
        feed_rate: float,
        tool_diameter: float,
        cut_depth: float,
        total_length: float,
    ) -> str:
        """Comment block plus modal preamble (never line-numbered)."""
        unit = "mm" if self.units == "mm" else "in"
        buf = StringIO()
        buf.write("; Generated G-code from Designer tool\n")
        buf.write(f"; Tool diameter: {format_coord(self._len(tool_diameter))}{unit}\n")
        buf.write(f"; Cut depth: {format_coord(self._len(cut_depth))}{unit}\n")
        buf.write(f"; Feed rate: {format_int(self._len(feed_rate))} {unit}/min\n")
        buf.write(f"; Spindle speed: {format_int(spindle_speed)} RPM\n")
        buf.write(f"; Total path length: {format_coord(self._len(total_length))}{unit}\n")
        buf.write("\n")
        buf.write("G90         ; Absolute positioning\n")
        if self.units == "mm":
            buf.write("G21         ; Millimeter units\n")
        else:
            buf.write("G20         ; Inch units\n")
        buf.write("G17         ; XY plane\n")
        rpm = format_int(spindle_speed)
        buf.write(f"M3 S{rpm}      ; Spindle on at {rpm} RPM\n")
        buf.write("\n")
        return buf.getvalue()

    def generate_footer(self) -> str:
        buf = StringIO()
        buf.write("\n")
        buf.write("M5          ; Spindle off\n")
        if self.is_3d:
            buf.write(f"G00 Z{format_coord(self._len(self.safe_z))}   ; Raise tool to safe height\n")
        buf.write("G00 X0 Y0   ; Return to origin\n")
        buf.write("M30         ; End program\n")
        return buf.getvalue()

    def generate_body(self, items: Iterable[tuple[Optional[int], Toolpath]]) -> str:
        """Moves of every toolpath, with shape comments and line numbers."""
        self._reset_state()
        buf = StringIO()
        for shape_id, tp in items:
            if shape_id is not None:
                buf.write(f"; Shape ID={shape_id}\n")
            for seg in tp.segments:
                for line in self._segment_lines(seg):
                    self._write(buf, line)
        return buf.getvalue()

    # ------------------------------------------------------------------
    # Internal: modal state and formatting
    # ------------------------------------------------------------------

    def _reset_state(self) -> None:
        self._x: Optional[float] = None
        self._y: Optional[float] = None
        self._z: Optional[float] = None
        self._feed: Optional[float] = None
        self._line_no = 0

    def _len(self, value_mm: float) -> float:
        return value_mm / MM_PER_INCH if self.units == "inch" else value_mm

    def _xy(self, x: float, y: float) -> str:
        return f"X{format_coord(self._len(x))} Y{format_coord(self._len(y))}"

    def _zw(self, z: float) -> str:
        return f"Z{format_coord(self._len(z))}"

    def _fw(self, feed: float) -> str:
        return f"F{format_int(self._len(feed))}"

    def _write(self, buf: StringIO, line: str) -> None:
        if self.line_numbers:
            self._line_no += 10
            line = f"N{self._line_no} {line}"
        buf.write(line + "\n")

    def _at_xy(self, x: float, y: float) -> bool:
        return (
            self._x is not None
            and self._y is not None
            and format_coord(self._x) == format_coord(x)
            and format_coord(self._y) == format_coord(y)
        )

    def _same_z(self, z: float) -> bool:
        return self._z is not None and format_coord(self._z) == format_coord(z)

    def _feed_word(self, feed: float, always: bool) -> Optional[str]:
        changed = self._feed is None or format_int(self._feed) != format_int(feed)
        self._feed = feed
        if changed or (always and not self.compact_feed):
            return self._fw(feed)
        return None

    # ------------------------------------------------------------------
    # Internal: per-segment dispatch
    # ------------------------------------------------------------------

    def _segment_lines(self, seg: Segment) -> list[str]:
        if isinstance(seg, RapidMove):
            return self._rapid(seg)
        if isinstance(seg, LinearMove):
            return self._linear(seg)
        if isinstance(seg, ArcMove):
            return self._arc(seg)
        logger.warning("Unsupported segment: %s", type(seg).__name__)
        return []

    def _rapid(self, seg: RapidMove) -> list[str]:
        x, y = seg.end.x, seg.end.y
        moves_xy = not self._at_xy(x, y)
        lines: list[str] = []
        if not self.is_3d:
            if moves_xy:
                lines.append(f"G00 {self._xy(x, y)}")
        elif moves_xy:
            if self._z is not None and self._z < seg.z and not self._same_z(seg.z):
                # Clear the stock before travelling
                lines.append(f"G00 {self._zw(seg.z)}")
            lines.append(f"G00 {self._xy(x, y)} {self._zw(seg.z)}")
            self._z = seg.z
        elif not self._same_z(seg.z):
            lines.append(f"G00 {self._zw(seg.z)}")
            self._z = seg.z
        self._x, self._y = x, y
        return lines

    def _plunge(self, seg: Union[LinearMove, ArcMove]) -> list[str]:
        entry = seg.entry_z
        if not self.is_3d or self._same_z(entry):
            return []
        word = self._feed_word(seg.feed, always=True)
        self._z = entry
        return [f"G01 {self._zw(entry)}" + (f" {word}" if word else "")]

    def _linear(self, seg: LinearMove) -> list[str]:
        lines = self._plunge(seg)
        words = ["G01", self._xy(seg.end.x, seg.end.y)]
        if self.is_3d and not self._same_z(seg.z):
            words.append(self._zw(seg.z))
            self._z = seg.z
        feed = self._feed_word(seg.feed, always=True)
        if feed:
            words.append(feed)
        lines.append(" ".join(words))
        self._x, self._y = seg.end.x, seg.end.y
        return lines

    def _arc(self, seg: ArcMove) -> list[str]:
        lines = self._plunge(seg)
        i = self._len(seg.center.x - seg.start.x)
        j = self._len(seg.center.y - seg.start.y)
        words = ["G02" if seg.clockwise else "G03", self._xy(seg.end.x, seg.end.y)]
        if self.is_3d and not self._same_z(seg.z):
            words.append(self._zw(seg.z))
            self._z = seg.z
        words.append(f"I{format_coord(i)} J{format_coord(j)}")
        feed = self._feed_word(seg.feed, always=False)
        if feed:
            words.append(feed)
        lines.append(" ".join(words))
        self._x, self._y = seg.end.x, seg.end.y
        return lines
