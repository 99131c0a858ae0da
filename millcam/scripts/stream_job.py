#!/usr/bin/env python3
"""
Stream a G-code program to a GRBL controller.

Opens the serial or TCP link, waits for the controller banner, then
streams the program with character-counting flow control and reports
progress.  Ctrl-C sends a soft reset.

Usage:
    millcam-stream part.nc --port /dev/ttyUSB0
    millcam-stream part.nc --host 192.168.1.50 --tcp-port 23
    millcam-stream part.nc --config my_cam.yaml --no-flow-control
"""

from __future__ import annotations

import argparse
import sys
import time
from pathlib import Path
from typing import Optional

from millcam.configs.loader import ConfigError, load_config
from millcam.hardware.errors import AlarmError, CommunicationError, StreamingError
from millcam.hardware.grbl_protocol import Version
from millcam.hardware.streamer import BufferedStreamer, StreamerStats
from millcam.hardware.transport import SerialTransport, TcpTransport, Transport
from millcam.utils import fs
from millcam.utils.logging_config import configure_from_config, get_logger, pop_context, push_context

logger = get_logger(__name__)

BANNER_TIMEOUT_S = 3.0


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        description="Stream a G-code program to a GRBL controller",
        formatter_class=argparse.RawDescriptionHelpFormatter,
    )
    parser.add_argument("program", type=str, help="G-code file (.nc / .gcode / .gc)")
    link = parser.add_mutually_exclusive_group()
    link.add_argument("--port", "-p", type=str, help="Serial port (overrides config)")
    link.add_argument("--host", type=str, help="Controller host for TCP streaming")
    parser.add_argument("--tcp-port", type=int, default=None, help="TCP port")
    parser.add_argument("--baudrate", "-b", type=int, default=None, help="Serial baud rate")
    parser.add_argument("--config", "-c", type=str, help="Configuration file path")
    parser.add_argument(
        "--no-flow-control", action="store_true",
        help="Send every line without waiting for buffer space",
    )
    parser.add_argument(
        "--timeout", type=float, default=None, help="Abort after this many seconds",
    )
    parser.add_argument("--log-level", type=str, default=None)
    return parser


def _open_transport(args: argparse.Namespace, conn) -> Transport:
    if args.host:
        return TcpTransport(
            args.host, args.tcp_port or conn.tcp_port, conn.timeout_ms, conn.read_timeout_s,
        )
    if args.port:
        return SerialTransport(args.port, args.baudrate or conn.baudrate, conn.read_timeout_s)
    if conn.use_tcp:
        return TcpTransport(
            conn.host, args.tcp_port or conn.tcp_port, conn.timeout_ms, conn.read_timeout_s,
        )
    return SerialTransport(conn.port, args.baudrate or conn.baudrate, conn.read_timeout_s)


def _link_name(transport: Transport) -> str:
    if isinstance(transport, TcpTransport):
        return f"{transport.host}:{transport.port}"
    return transport.port


def _wait_for_banner(streamer: BufferedStreamer, transport: Transport) -> None:
    """Drain startup chatter until the ``Grbl`` banner or a short timeout."""
    deadline = time.monotonic() + BANNER_TIMEOUT_S
    while time.monotonic() < deadline:
        line = transport.read_line(0.1)
        if line is None:
            continue
        if isinstance(streamer.handle_response(line), Version):
            return
    logger.info("No controller banner within %.1fs, continuing", BANNER_TIMEOUT_S)


def main(argv: Optional[list[str]] = None) -> int:
    args = build_parser().parse_args(argv)

    try:
        config = load_config(args.config)
    except (ConfigError, FileNotFoundError) as e:
        print(f"Error loading config: {e}", file=sys.stderr)
        return 1

    configure_from_config(config.logging, "stream", args.log_level)

    if not fs.is_gcode_file(args.program):
        logger.warning("%s does not have a G-code extension", args.program)
    try:
        lines = fs.read_gcode_lines(args.program)
    except FileNotFoundError as e:
        logger.error("%s", e)
        return 1

    transport = _open_transport(args, config.connection)
    total = len(lines)
    last_report = [0.0]

    def on_progress(stats: StreamerStats) -> None:
        now = time.monotonic()
        if now - last_report[0] < 1.0:
            return
        last_report[0] = now
        done = stats.completed + stats.failed
        print(
            f"\r{done} acknowledged, {stats.queued} queued, "
            f"buffer {stats.buffer_usage_percent:3d}%",
            end="", flush=True,
        )

    try:
        transport.open()
    except CommunicationError as e:
        logger.error("%s", e)
        return 1

    push_context(job=Path(args.program).name, port=_link_name(transport))
    cfg = config.streamer
    streamer = BufferedStreamer(
        transport,
        buffer_size=cfg.buffer_size,
        queue_size=cfg.queue_size,
        max_retries=cfg.max_retries,
        flow_control=cfg.flow_control and not args.no_flow_control,
    )

    try:
        _wait_for_banner(streamer, transport)
        logger.info("Streaming %d lines from %s", total, args.program)
        stats = streamer.stream(
            lines, on_progress=on_progress,
            poll_interval_s=cfg.poll_interval_s, timeout=args.timeout,
        )
        print()
    except KeyboardInterrupt:
        print()
        logger.warning("Interrupted, sending soft reset")
        streamer.soft_reset()
        return 130
    except AlarmError as e:
        print()
        logger.error("%s", e)
        return 2
    except (CommunicationError, StreamingError) as e:
        print()
        logger.error("%s", e)
        return 1
    finally:
        transport.close()
        pop_context(["job", "port"])

    failed = streamer.failed_commands()
    for cmd in failed:
        logger.error("Failed: %s -> %s", cmd.command, cmd.response)
    print(
        f"Done: {stats.completed} ok, {stats.failed} failed, {stats.retries} retries"
    )
    return 0 if not failed else 3


if __name__ == "__main__":
    sys.exit(main())
