"""Filesystem helpers for programs, configs and design documents.

Provides:
    - Atomic writes: tmp file → fsync → rename (a streamer tailing the
      output directory never sees a half-written ``.nc`` file)
    - YAML load for ``cam.yaml``
    - JSON load for design documents
    - G-code extension checks

All paths use pathlib.Path.

Usage:
    from millcam.utils import fs
    fs.atomic_write_text(out_dir / "part.nc", gcode)
    cfg = fs.load_yaml("cam.yaml")
"""

import json
import os
from pathlib import Path
from typing import Any, Dict, Union

import yaml

GCODE_EXTENSIONS = (".nc", ".gcode", ".gc")


def ensure_dir(p: Union[str, Path]) -> Path:
    """Create directory if it doesn't exist, return Path object.

    Parameters
    ----------
    p : Union[str, Path]
        Directory path

    Returns
    -------
    Path
        Path object (guaranteed to exist)
    """
    p = Path(p)
    p.mkdir(parents=True, exist_ok=True)
    return p


def atomic_write_bytes(
    path: Union[str, Path],
    data: bytes,
    tmp_suffix: str = ".tmp"
) -> None:
    """Write bytes to file atomically (tmp → fsync → rename).

    Parameters
    ----------
    path : Union[str, Path]
        Target file path
    data : bytes
        Data to write
    tmp_suffix : str
        Temporary file suffix, default ".tmp"

    Raises
    ------
    RuntimeError
        If the write or the rename fails; the tmp file is removed.
    """
    path = Path(path)
    ensure_dir(path.parent)

    tmp_path = path.with_suffix(path.suffix + tmp_suffix)

    try:
        with open(tmp_path, 'wb') as f:
            f.write(data)
            f.flush()
            os.fsync(f.fileno())

        # Atomic on POSIX (same filesystem)
        tmp_path.replace(path)
    except OSError as e:
        if tmp_path.exists():
            tmp_path.unlink()
        raise RuntimeError(f"Failed to write {path} atomically: {e}") from e


def atomic_write_text(path: Union[str, Path], text: str) -> None:
    """Write a G-code program (or any text) atomically as 7-bit ASCII.

    Parameters
    ----------
    path : Union[str, Path]
        Target file path
    text : str
        Program text with ``\\n`` line terminators

    Raises
    ------
    UnicodeEncodeError
        If the text contains non-ASCII characters.
    """
    atomic_write_bytes(path, text.encode('ascii'))


def load_yaml(path: Union[str, Path]) -> Dict[str, Any]:
    """Load YAML file safely.

    Parameters
    ----------
    path : Union[str, Path]
        YAML file path

    Returns
    -------
    Dict[str, Any]
        Parsed YAML content (``None`` for an empty file)

    Raises
    ------
    FileNotFoundError
        If file doesn't exist
    yaml.YAMLError
        If YAML parsing fails
    """
    path = Path(path)
    if not path.exists():
        raise FileNotFoundError(f"YAML file not found: {path}")

    with open(path, 'r', encoding='utf-8') as f:
        return yaml.safe_load(f)


def load_json(path: Union[str, Path]) -> Any:
    """Load a JSON document (design files).

    Raises
    ------
    FileNotFoundError
        If file doesn't exist
    json.JSONDecodeError
        If the document is malformed
    """
    path = Path(path)
    if not path.exists():
        raise FileNotFoundError(f"JSON file not found: {path}")

    with open(path, 'r', encoding='utf-8') as f:
        return json.load(f)


def is_gcode_file(path: Union[str, Path]) -> bool:
    """``True`` for ``.nc`` / ``.gcode`` / ``.gc`` (case-insensitive)."""
    return Path(path).suffix.lower() in GCODE_EXTENSIONS


def read_gcode_lines(path: Union[str, Path]) -> list:
    """Read a program and return its non-empty lines without terminators."""
    path = Path(path)
    if not path.exists():
        raise FileNotFoundError(f"G-code file not found: {path}")

    with open(path, 'r', encoding='ascii', errors='replace') as f:
        return [line.rstrip('\r\n') for line in f if line.strip()]
