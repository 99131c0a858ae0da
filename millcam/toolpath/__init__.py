"""
Toolpath generation.

Segments and per-pass toolpaths, depth-pass planning, ramp entries,
pocket strategies, the per-shape generator and its background worker.
"""

from millcam.toolpath.generator import GenerationCancelled, ToolpathGenerator
from millcam.toolpath.passes import pass_depths
from millcam.toolpath.segments import (
    ArcDirection,
    ArcMove,
    LinearMove,
    RapidMove,
    Segment,
    Toolpath,
)
from millcam.toolpath.worker import GenerationProgress, GenerationWorker

__all__ = [
    "ArcDirection",
    "ArcMove",
    "GenerationCancelled",
    "GenerationProgress",
    "GenerationWorker",
    "LinearMove",
    "RapidMove",
    "Segment",
    "Toolpath",
    "ToolpathGenerator",
    "pass_depths",
]
