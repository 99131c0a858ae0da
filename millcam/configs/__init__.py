"""Configuration loading and validation."""

from millcam.configs.loader import (
    CamConfig,
    ConfigError,
    ConnectionConfig,
    EmitterConfig,
    StreamerConfig,
    ToolConfig,
    WorkAreaConfig,
    load_config,
)

__all__ = [
    "CamConfig",
    "ConfigError",
    "ConnectionConfig",
    "EmitterConfig",
    "StreamerConfig",
    "ToolConfig",
    "WorkAreaConfig",
    "load_config",
]
