"""Configuration loader for millcam.

Loads and validates ``cam.yaml`` into typed, frozen dataclasses.
Controller link settings, streamer limits, default tool parameters and
emitter toggles all come from the config.

Feed rates are stored in **mm/min** throughout (the G-code ``F`` unit);
lengths are millimetres even when the emitter outputs inches.

Usage::

    from millcam.configs.loader import load_config
    cfg = load_config()                   # default path
    cfg = load_config("/custom/cam.yaml") # explicit path
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any

from millcam.utils.fs import load_yaml

logger = logging.getLogger(__name__)


# ---------------------------------------------------------------------------
# Exceptions
# ---------------------------------------------------------------------------


class ConfigError(Exception):
    """Raised when configuration validation fails."""

    pass


# ---------------------------------------------------------------------------
# Dataclasses -- mirror the YAML structure
# ---------------------------------------------------------------------------


@dataclass(frozen=True)
class ConnectionConfig:
    """Controller link settings.

    A non-empty ``host`` selects the TCP transport; otherwise ``port`` is
    opened as a serial device.
    """

    port: str
    baudrate: int
    host: str = ""
    tcp_port: int = 23
    timeout_ms: int = 5000
    read_timeout_s: float = 0.1

    @property
    def use_tcp(self) -> bool:
        """``True`` when the TCP transport is configured."""
        return bool(self.host)


@dataclass(frozen=True)
class StreamerConfig:
    """Buffered streamer limits."""

    buffer_size: int = 254
    queue_size: int = 200
    max_retries: int = 3
    flow_control: bool = True
    poll_interval_s: float = 0.01


@dataclass(frozen=True)
class ToolConfig:
    """Default tool and cutting parameters."""

    tool_diameter: float
    feed_rate: float
    spindle_speed: int
    cut_depth: float
    start_depth: float = 0.0
    step_down: float = 0.0
    step_in: float = 0.0
    safe_z: float = 5.0
    ramp_angle: float = 0.0

    @property
    def tool_radius(self) -> float:
        return self.tool_diameter / 2.0


@dataclass(frozen=True)
class EmitterConfig:
    """G-code output toggles."""

    units: str = "mm"
    num_axes: int = 3
    line_numbers: bool = False


@dataclass(frozen=True)
class WorkAreaConfig:
    """Machine work-area dimensions in mm."""

    width: float = 250.0
    height: float = 250.0


@dataclass(frozen=True)
class CamConfig:
    """Root configuration object."""

    connection: ConnectionConfig
    streamer: StreamerConfig
    tool: ToolConfig
    emitter: EmitterConfig
    work_area: WorkAreaConfig
    logging: dict[str, Any] = field(default_factory=dict)


# ---------------------------------------------------------------------------
# Parsing helpers
# ---------------------------------------------------------------------------


def _parse_connection(data: dict[str, Any]) -> ConnectionConfig:
    return ConnectionConfig(
        port=str(data.get("port", "")),
        baudrate=int(data.get("baudrate", 115200)),
        host=str(data.get("host") or ""),
        tcp_port=int(data.get("tcp_port", 23)),
        timeout_ms=int(data.get("timeout_ms", 5000)),
        read_timeout_s=float(data.get("read_timeout_s", 0.1)),
    )


def _parse_streamer(data: dict[str, Any]) -> StreamerConfig:
    return StreamerConfig(
        buffer_size=int(data.get("buffer_size", 254)),
        queue_size=int(data.get("queue_size", 200)),
        max_retries=int(data.get("max_retries", 3)),
        flow_control=bool(data.get("flow_control", True)),
        poll_interval_s=float(data.get("poll_interval_s", 0.01)),
    )


def _parse_tool(data: dict[str, Any]) -> ToolConfig:
    diameter = float(data["tool_diameter"])
    return ToolConfig(
        tool_diameter=diameter,
        feed_rate=float(data["feed_rate"]),
        spindle_speed=int(data["spindle_speed"]),
        cut_depth=float(data["cut_depth"]),
        start_depth=float(data.get("start_depth", 0.0)),
        step_down=float(data.get("step_down", 0.0)),
        step_in=float(data.get("step_in", diameter * 0.4)),
        safe_z=float(data.get("safe_z", 5.0)),
        ramp_angle=float(data.get("ramp_angle", 0.0)),
    )


def _parse_emitter(data: dict[str, Any]) -> EmitterConfig:
    return EmitterConfig(
        units=str(data.get("units", "mm")).lower(),
        num_axes=int(data.get("num_axes", 3)),
        line_numbers=bool(data.get("line_numbers", False)),
    )


def _validate_config(cfg: CamConfig) -> None:
    """Cross-field validation.  Raises ``ConfigError`` on the first problem."""
    c = cfg.connection
    if not c.use_tcp and not c.port:
        raise ConfigError("connection.port is required when no host is set")
    if c.baudrate <= 0:
        raise ConfigError(f"baudrate must be > 0, got {c.baudrate}")
    if c.timeout_ms <= 0:
        raise ConfigError(f"timeout_ms must be > 0, got {c.timeout_ms}")

    s = cfg.streamer
    if s.buffer_size <= 1:
        raise ConfigError(
            f"streamer.buffer_size must be > 1, got {s.buffer_size}"
        )
    if s.queue_size <= 0:
        raise ConfigError(
            f"streamer.queue_size must be > 0, got {s.queue_size}"
        )
    if s.max_retries < 0:
        raise ConfigError(
            f"streamer.max_retries must be >= 0, got {s.max_retries}"
        )

    t = cfg.tool
    if t.tool_diameter <= 0:
        raise ConfigError(
            f"tool.tool_diameter must be > 0, got {t.tool_diameter}"
        )
    if t.feed_rate <= 0:
        raise ConfigError(f"tool.feed_rate must be > 0, got {t.feed_rate}")
    if t.spindle_speed < 0:
        raise ConfigError(
            f"tool.spindle_speed must be >= 0, got {t.spindle_speed}"
        )
    if t.step_down < 0 or t.step_in < 0:
        raise ConfigError("tool.step_down and tool.step_in must be >= 0")
    if not 0.0 <= t.ramp_angle < 90.0:
        raise ConfigError(
            f"tool.ramp_angle must be in [0, 90), got {t.ramp_angle}"
        )

    e = cfg.emitter
    if e.units not in ("mm", "inch"):
        raise ConfigError(f"emitter.units must be 'mm' or 'inch', got {e.units!r}")
    if e.num_axes not in (2, 3):
        raise ConfigError(f"emitter.num_axes must be 2 or 3, got {e.num_axes}")

    if cfg.work_area.width <= 0 or cfg.work_area.height <= 0:
        raise ConfigError("work_area dimensions must be > 0")


# ---------------------------------------------------------------------------
# Public API
# ---------------------------------------------------------------------------


def load_config(path: str | Path | None = None) -> CamConfig:
    """Load and validate configuration from YAML.

    Parameters
    ----------
    path : str | Path | None
        Path to ``cam.yaml``.  ``None`` loads the default shipped
        alongside this module.

    Returns
    -------
    CamConfig
        Fully validated, frozen configuration object.

    Raises
    ------
    ConfigError
        If any field is missing or fails validation.
    FileNotFoundError
        If *path* does not exist.
    """
    if path is None:
        path = Path(__file__).parent / "cam.yaml"
    else:
        path = Path(path)

    if not path.exists():
        raise FileNotFoundError(f"Configuration file not found: {path}")

    logger.info("Loading configuration from %s", path)

    data: dict[str, Any] = load_yaml(path)
    if data is None:
        raise ConfigError(f"Empty configuration file: {path}")

    try:
        wa = data.get("work_area", {}) or {}
        config = CamConfig(
            connection=_parse_connection(data["connection"]),
            streamer=_parse_streamer(data.get("streamer", {}) or {}),
            tool=_parse_tool(data["tool"]),
            emitter=_parse_emitter(data.get("emitter", {}) or {}),
            work_area=WorkAreaConfig(
                width=float(wa.get("width", 250.0)),
                height=float(wa.get("height", 250.0)),
            ),
            logging=dict(data.get("logging", {}) or {}),
        )

        _validate_config(config)
        logger.info("Configuration loaded successfully")
        return config

    except KeyError as exc:
        raise ConfigError(
            f"Missing required configuration key: {exc}"
        ) from exc
    except (TypeError, ValueError, AttributeError) as exc:
        raise ConfigError(
            f"Invalid configuration value: {exc}"
        ) from exc
