"""
millcam Package.

CAM core for 2D subtractive machining: shapes with machining annotations
become toolpaths, toolpaths become G-code, and G-code is streamed to a
GRBL-class controller with flow control.

Subpackages:
    geometry: Shape variants, path events, boolean / offset / fillet / chamfer
    design: Drawing objects, machining annotations, design documents
    toolpath: Segments, depth passes, entries, pocket strategies, generator
    gcode: G-code emitter and parser
    hardware: GRBL protocol, transports, buffered streamer
    configs: Configuration loading and validation
"""

__version__ = "0.1.0"

__all__ = ["geometry", "design", "toolpath", "gcode", "hardware", "configs", "utils"]
