#!/usr/bin/env python3
"""
Generate G-code from a design document.

Loads a design (``.gck4`` / ``.json``), generates toolpaths for every
shape in document order and writes the program atomically.

Usage:
    millcam-generate part.gck4 -o part.nc
    millcam-generate part.gck4 -o part.nc --2d --line-numbers
    millcam-generate part.gck4 -o part.nc --inch --config my_cam.yaml
"""

from __future__ import annotations

import argparse
import sys
from pathlib import Path
from typing import Optional

from millcam.configs.loader import ConfigError, load_config
from millcam.design.document import DesignFileError, load_design
from millcam.gcode.emitter import GCodeEmitter
from millcam.toolpath.generator import ToolpathGenerator
from millcam.utils import fs
from millcam.utils.logging_config import configure_from_config, get_logger, pop_context, push_context

logger = get_logger(__name__)


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        description="Generate G-code from a design document",
        formatter_class=argparse.RawDescriptionHelpFormatter,
    )
    parser.add_argument("design", type=str, help="Design file (.gck4 / .json)")
    parser.add_argument(
        "--output", "-o", type=str, required=True, help="Output G-code file (.nc / .gcode)",
    )
    parser.add_argument("--config", "-c", type=str, help="Configuration file path")
    parser.add_argument(
        "--2d", dest="two_d", action="store_true", help="Omit Z words (2-axis output)",
    )
    parser.add_argument(
        "--inch", action="store_true", help="Emit inch units (G20)",
    )
    parser.add_argument(
        "--line-numbers", action="store_true", help="Prefix body lines with N numbers",
    )
    parser.add_argument(
        "--log-level", type=str, default=None, help="Override the configured log level",
    )
    return parser


def main(argv: Optional[list[str]] = None) -> int:
    args = build_parser().parse_args(argv)

    try:
        config = load_config(args.config)
    except (ConfigError, FileNotFoundError) as e:
        print(f"Error loading config: {e}", file=sys.stderr)
        return 1

    configure_from_config(config.logging, "generate", args.log_level)
    push_context(job=Path(args.design).name)
    try:
        return _generate(args, config)
    finally:
        pop_context(["job"])


def _generate(args: argparse.Namespace, config) -> int:
    try:
        document = load_design(args.design)
        design = document.to_design()
    except DesignFileError as e:
        logger.error("%s", e)
        return 1

    params = document.toolpath_params
    generator = ToolpathGenerator.from_config(config.tool)
    try:
        generator.set_feed_rate(params.feed_rate)
        generator.set_spindle_speed(int(params.spindle_speed))
        generator.set_tool_diameter(params.tool_diameter)
        generator.set_cut_depth(params.cut_depth)
        generator.set_start_depth(params.start_depth)
        generator.set_safe_z(params.safe_z_height)
    except ValueError as e:
        logger.error("Invalid toolpath parameters: %s", e)
        return 1

    emitter = GCodeEmitter(
        units="inch" if args.inch else config.emitter.units,
        safe_z=generator.safe_z,
        num_axes=2 if args.two_d else config.emitter.num_axes,
        line_numbers=args.line_numbers or config.emitter.line_numbers,
    )

    toolpaths = generator.generate_design(design)
    program = emitter.generate_program(
        toolpaths,
        tool_diameter=generator.tool_diameter,
        cut_depth=generator.target_z,
        feed_rate=generator.feed_rate,
        spindle_speed=generator.spindle_speed,
    )
    fs.atomic_write_text(args.output, program)

    cut_ids = {sid for sid, _ in toolpaths}
    empty = [obj.id for obj in design if obj.id not in cut_ids]
    if empty:
        logger.warning("No cuts produced for shape(s): %s", ", ".join(map(str, empty)))
    logger.info(
        "Wrote %s: %d toolpaths from %d shapes", args.output, len(toolpaths), len(design),
    )
    print(f"Wrote {args.output} ({len(program.splitlines())} lines)")
    return 0


if __name__ == "__main__":
    sys.exit(main())
