"""Shared utilities: logging configuration and filesystem helpers."""

from millcam.utils import fs, logging_config

__all__ = ["fs", "logging_config"]
