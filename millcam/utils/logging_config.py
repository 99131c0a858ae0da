"""Logging setup shared by ``millcam-generate`` and ``millcam-stream``.

Records go to stderr (human readable, optionally coloured) and, when a
``log_file`` is configured, to a file in either the same human format or
one JSON object per line.  Fields pushed with ``push_context`` (``app``,
``job``, ``port`` ...) are appended to every record.

Human::

    2025-10-28T13:45:12.345Z | INFO     | app=stream port=/dev/ttyUSB0 | Connected

JSON::

    {"t": "2025-10-28T13:45:12.345+00:00", "lvl": "INFO", "name": "millcam.hardware.streamer",
     "thread": "grbl-reader", "msg": "...", "app": "stream"}

Context lives in a ``contextvars.ContextVar``, so each thread carries its
own fields (a new thread starts with none).  ``setup_logging`` may be called more
than once: handlers installed by an earlier call are closed and replaced.
"""

import contextvars
import json
import logging
import logging.handlers
import sys
from datetime import datetime, timezone
from pathlib import Path
from typing import Any, Dict, List, Mapping, Optional


_context: contextvars.ContextVar = contextvars.ContextVar("millcam_log_context", default={})

# Handlers owned by the last setup_logging() call.
_installed: List[logging.Handler] = []

# Third-party loggers that are chatty at INFO/DEBUG.
NOISY_LOGGERS = ("matplotlib", "matplotlib.font_manager", "PIL", "shapely.geos")

_LEVEL_COLORS = {
    logging.DEBUG: "\033[36m",
    logging.INFO: "\033[32m",
    logging.WARNING: "\033[33m",
    logging.ERROR: "\033[31m",
    logging.CRITICAL: "\033[35m",
}
_RESET = "\033[0m"


class ContextFormatter(logging.Formatter):
    """Render records as a human line or a JSON object, with context fields."""

    def __init__(self, mode: str = "human", use_color: bool = True):
        if mode not in ("human", "json"):
            raise ValueError(f"Unknown log format: {mode!r}")
        super().__init__()
        self.mode = mode
        self.use_color = use_color and mode == "human" and sys.stderr.isatty()

    def format(self, record: logging.LogRecord) -> str:
        ts = datetime.fromtimestamp(record.created, tz=timezone.utc)
        fields = _context.get()
        if self.mode == "json":
            payload: Dict[str, Any] = {
                "t": ts.isoformat(timespec="milliseconds"),
                "lvl": record.levelname,
                "name": record.name,
                "thread": record.threadName,
                "msg": record.getMessage(),
            }
            payload.update(fields)
            if record.exc_info:
                payload["exc"] = self.formatException(record.exc_info)
            return json.dumps(payload, default=str)

        level = f"{record.levelname:<8}"
        if self.use_color:
            level = f"{_LEVEL_COLORS.get(record.levelno, '')}{level}{_RESET}"
        stamp = ts.strftime("%Y-%m-%dT%H:%M:%S.") + f"{ts.microsecond // 1000:03d}Z"
        head = [stamp, level]
        if fields:
            head.append(" ".join(f"{k}={v}" for k, v in fields.items()))
        line = " | ".join(head + [record.getMessage()])
        if record.exc_info:
            line = f"{line}\n{self.formatException(record.exc_info)}"
        return line


def _file_handler(log_file: str, rotate_bytes: int, backup_count: int) -> logging.Handler:
    path = Path(log_file)
    path.parent.mkdir(parents=True, exist_ok=True)
    if rotate_bytes > 0:
        return logging.handlers.RotatingFileHandler(
            path, maxBytes=rotate_bytes, backupCount=backup_count, encoding="utf-8",
        )
    return logging.FileHandler(path, encoding="utf-8")


def setup_logging(
    log_level: str = "INFO",
    log_file: Optional[str] = None,
    *,
    json: bool = False,
    color: bool = True,
    to_stderr: bool = True,
    rotate_bytes: int = 0,
    backup_count: int = 3,
    context: Optional[Mapping[str, Any]] = None,
) -> Dict[str, Any]:
    """Configure the root logger.

    Parameters
    ----------
    log_level : str
        Level name, case-insensitive.
    log_file : str, optional
        Also log to this file; parent directories are created.
    json : bool
        Write the file as JSON lines instead of the human format.
    color : bool
        Colour level names on stderr when it is a terminal.
    to_stderr : bool
        Install the stderr handler.
    rotate_bytes : int
        Rotate the file at this size; 0 disables rotation.
    backup_count : int
        Rotated files to keep.
    context : mapping, optional
        Fields pushed with ``push_context`` before returning.

    Returns
    -------
    dict
        ``{"handlers": [...], "level": int}``.

    Raises
    ------
    ValueError
        If ``log_level`` is not a logging level name.
    """
    level = logging.getLevelName(log_level.upper())
    if not isinstance(level, int):
        raise ValueError(f"Unknown log level: {log_level}")

    root = logging.getLogger()
    while _installed:
        handler = _installed.pop()
        root.removeHandler(handler)
        handler.close()

    root.setLevel(level)
    if to_stderr:
        console = logging.StreamHandler(sys.stderr)
        console.setFormatter(ContextFormatter("human", use_color=color))
        _installed.append(console)
    if log_file:
        handler = _file_handler(log_file, rotate_bytes, backup_count)
        handler.setFormatter(ContextFormatter("json" if json else "human", use_color=False))
        _installed.append(handler)
    for handler in _installed:
        root.addHandler(handler)

    for name in NOISY_LOGGERS:
        logging.getLogger(name).setLevel(max(level, logging.WARNING))
    logging.captureWarnings(True)

    if context:
        push_context(**context)
    return {"handlers": list(_installed), "level": level}


def configure_from_config(
    settings: Mapping[str, Any], app: str, log_level: Optional[str] = None,
) -> Dict[str, Any]:
    """Apply the ``logging`` section of ``cam.yaml`` for CLI ``app``.

    ``log_level`` (from the command line) overrides the configured level.
    Uncaught exceptions are logged from here on.
    """
    info = setup_logging(
        log_level or settings.get("log_level", "INFO"),
        settings.get("log_file"),
        json=bool(settings.get("json", False)),
        color=bool(settings.get("color", True)),
        rotate_bytes=int(settings.get("rotate_bytes", 0)),
        backup_count=int(settings.get("backup_count", 3)),
        context={"app": app},
    )
    install_excepthook()
    return info


def get_logger(name: str) -> logging.Logger:
    return logging.getLogger(name)


def push_context(**fields: Any) -> None:
    """Add fields to every subsequent record in this context."""
    _context.set({**_context.get(), **fields})


def pop_context(keys: Optional[List[str]] = None) -> None:
    """Drop ``keys`` from the context, or everything when ``keys`` is None."""
    if keys is None:
        _context.set({})
        return
    _context.set({k: v for k, v in _context.get().items() if k not in keys})


def install_excepthook() -> None:
    """Route uncaught exceptions (Ctrl+C excepted) through logging."""
    def _hook(exc_type, exc_value, tb):
        if issubclass(exc_type, KeyboardInterrupt):
            sys.__excepthook__(exc_type, exc_value, tb)
            return
        logging.getLogger("millcam").critical(
            "Uncaught exception", exc_info=(exc_type, exc_value, tb),
        )

    sys.excepthook = _hook
