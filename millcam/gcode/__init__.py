"""
G-code emission and parsing.

``GCodeEmitter`` writes toolpaths as a complete program; the parser reads
programs back into typed commands for streaming, previews and tests.
"""

from millcam.gcode.emitter import GCodeEmitter, GCodeEmitterError
from millcam.gcode.parser import (
    GCodeParseError,
    ModalState,
    format_command,
    format_program,
    parse_line,
    parse_program,
    program_positions,
)

__all__ = [
    "GCodeEmitter",
    "GCodeEmitterError",
    "GCodeParseError",
    "ModalState",
    "format_command",
    "format_program",
    "parse_line",
    "parse_program",
    "program_positions",
]
