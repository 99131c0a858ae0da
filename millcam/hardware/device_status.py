"""Machine state tracking and real-time overrides.

``DeviceStatus`` is a mutable snapshot updated from each status report.
``OverrideManager`` keeps the feed / rapid / spindle override targets and
produces the GRBL real-time byte sequences that reach them.  GRBL only
offers relative steps (+/-10 %, +/-1 %) and a reset to 100 %, so every
sequence starts with the reset byte and then steps to the target.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from enum import Enum
from typing import Optional

from millcam.hardware.grbl_protocol import (
    BufferState,
    OverrideValues,
    StatusReport,
    parse_status,
)

logger = logging.getLogger(__name__)

OVERRIDE_MIN = 10.0
OVERRIDE_MAX = 200.0

# GRBL 1.1 real-time override bytes
FEED_OVR_RESET = 0x90
FEED_OVR_COARSE_PLUS = 0x91
FEED_OVR_COARSE_MINUS = 0x92
FEED_OVR_FINE_PLUS = 0x93
FEED_OVR_FINE_MINUS = 0x94
RAPID_OVR_RESET = 0x95
RAPID_OVR_MEDIUM = 0x96
RAPID_OVR_LOW = 0x97
SPINDLE_OVR_RESET = 0x99
SPINDLE_OVR_COARSE_PLUS = 0x9A
SPINDLE_OVR_COARSE_MINUS = 0x9B
SPINDLE_OVR_FINE_PLUS = 0x9C
SPINDLE_OVR_FINE_MINUS = 0x9D
SPINDLE_OVR_STOP = 0x9E
COOLANT_FLOOD_TOGGLE = 0xA0
COOLANT_MIST_TOGGLE = 0xA1


# ---------------------------------------------------------------------------
# Machine state
# ---------------------------------------------------------------------------


class MachineStateType(Enum):
    IDLE = "Idle"
    RUN = "Run"
    HOLD = "Hold"
    JOG = "Jog"
    ALARM = "Alarm"
    DOOR = "Door"
    CHECK = "Check"
    HOME = "Home"
    SLEEP = "Sleep"
    UNKNOWN = "Unknown"

    @classmethod
    def from_grbl_state(cls, text: str) -> MachineStateType:
        """Map a report state (sub-states like ``Hold:0`` included)."""
        base = text.strip().split(":", 1)[0]
        for member in cls:
            if member.value == base:
                return member
        return cls.UNKNOWN

    @property
    def is_active(self) -> bool:
        return self in (MachineStateType.RUN, MachineStateType.JOG, MachineStateType.HOME)


@dataclass
class DeviceStatus:
    """Latest known controller state."""

    state: MachineStateType = MachineStateType.UNKNOWN
    machine_pos: tuple[float, float, float] = (0.0, 0.0, 0.0)
    work_pos: tuple[float, float, float] = (0.0, 0.0, 0.0)
    work_offset: tuple[float, float, float] = (0.0, 0.0, 0.0)
    feed_rate: Optional[float] = None
    spindle_speed: Optional[int] = None
    buffer: Optional[BufferState] = None
    overrides: Optional[OverrideValues] = None
    pins: str = ""
    line_number: Optional[int] = None
    reports: int = field(default=0)

    @classmethod
    def parse_grbl_status(cls, line: str) -> Optional[DeviceStatus]:
        report = parse_status(line)
        if report is None:
            return None
        status = cls()
        status.update(report)
        return status

    def update(self, report: StatusReport) -> None:
        """Merge *report*.

        GRBL sends ``WCO`` only every few reports, so the last offset is
        kept and used to derive whichever of MPos / WPos is missing.
        """
        self.state = MachineStateType.from_grbl_state(report.state)
        if report.work_offset is not None:
            self.work_offset = report.work_offset.to_tuple()
        wco = self.work_offset
        if report.machine_pos is not None:
            self.machine_pos = report.machine_pos.to_tuple()
            if report.work_pos is None:
                self.work_pos = tuple(m - o for m, o in zip(self.machine_pos, wco))
        if report.work_pos is not None:
            self.work_pos = report.work_pos.to_tuple()
            if report.machine_pos is None:
                self.machine_pos = tuple(w + o for w, o in zip(self.work_pos, wco))
        if report.feed_rate is not None:
            self.feed_rate = report.feed_rate
        if report.spindle_speed is not None:
            self.spindle_speed = report.spindle_speed
        if report.buffer is not None:
            self.buffer = report.buffer
        if report.overrides is not None:
            self.overrides = report.overrides
        self.pins = report.pins or ""
        if report.line_number is not None:
            self.line_number = report.line_number
        self.reports += 1


# ---------------------------------------------------------------------------
# Overrides
# ---------------------------------------------------------------------------


class RapidOverrideLevel(Enum):
    FULL = 100
    MEDIUM = 50
    SLOW = 25


def _check_percent(name: str, value: float) -> float:
    if not OVERRIDE_MIN <= value <= OVERRIDE_MAX:
        raise ValueError(
            f"{name} override must be in [{OVERRIDE_MIN:g}, {OVERRIDE_MAX:g}] %, got {value}"
        )
    return float(value)


def _step_bytes(target: float, reset: int, coarse: tuple[int, int], fine: tuple[int, int]) -> bytes:
    """Reset to 100 % then step to *target* with 10 % and 1 % bytes."""
    delta = int(round(target)) - 100
    out = [reset]
    plus, minus = coarse
    out.extend([plus if delta > 0 else minus] * (abs(delta) // 10))
    plus, minus = fine
    out.extend([plus if delta > 0 else minus] * (abs(delta) % 10))
    return bytes(out)


class OverrideManager:
    """Feed, rapid and spindle override targets.

    Setters validate the range, store the value and return the real-time
    byte sequence to send.
    """

    def __init__(self) -> None:
        self._feed = 100.0
        self._rapid = RapidOverrideLevel.FULL
        self._spindle = 100.0

    def get_feed_rate_override(self) -> float:
        return self._feed

    def get_rapid_override(self) -> RapidOverrideLevel:
        return self._rapid

    def get_spindle_override(self) -> float:
        return self._spindle

    def set_feed_rate_override(self, percent: float) -> bytes:
        self._feed = _check_percent("Feed", percent)
        logger.debug("Feed override -> %.0f%%", self._feed)
        return _step_bytes(
            self._feed, FEED_OVR_RESET,
            (FEED_OVR_COARSE_PLUS, FEED_OVR_COARSE_MINUS),
            (FEED_OVR_FINE_PLUS, FEED_OVR_FINE_MINUS),
        )

    def increase_feed_rate(self, step: float = 10.0) -> bytes:
        return self.set_feed_rate_override(self._feed + step)

    def decrease_feed_rate(self, step: float = 10.0) -> bytes:
        return self.set_feed_rate_override(self._feed - step)

    def set_rapid_override(self, level: RapidOverrideLevel) -> bytes:
        self._rapid = level
        return bytes([{
            RapidOverrideLevel.FULL: RAPID_OVR_RESET,
            RapidOverrideLevel.MEDIUM: RAPID_OVR_MEDIUM,
            RapidOverrideLevel.SLOW: RAPID_OVR_LOW,
        }[level]])

    def set_spindle_override(self, percent: float) -> bytes:
        self._spindle = _check_percent("Spindle", percent)
        logger.debug("Spindle override -> %.0f%%", self._spindle)
        return _step_bytes(
            self._spindle, SPINDLE_OVR_RESET,
            (SPINDLE_OVR_COARSE_PLUS, SPINDLE_OVR_COARSE_MINUS),
            (SPINDLE_OVR_FINE_PLUS, SPINDLE_OVR_FINE_MINUS),
        )

    def increase_spindle_speed(self, step: float = 10.0) -> bytes:
        return self.set_spindle_override(self._spindle + step)

    def decrease_spindle_speed(self, step: float = 10.0) -> bytes:
        return self.set_spindle_override(self._spindle - step)

    def reset(self) -> bytes:
        """Everything back to 100 %."""
        self._feed = 100.0
        self._rapid = RapidOverrideLevel.FULL
        self._spindle = 100.0
        return bytes([FEED_OVR_RESET, RAPID_OVR_RESET, SPINDLE_OVR_RESET])
