"""Tests for configuration loading, filesystem helpers and logging setup."""

from __future__ import annotations

import json
import logging
import logging.handlers
import sys
from pathlib import Path

import pytest
import yaml

from millcam.configs.loader import CamConfig, ConfigError, load_config
from millcam.toolpath.generator import ToolpathGenerator
from millcam.utils import fs
from millcam.utils.logging_config import (
    ContextFormatter,
    configure_from_config,
    get_logger,
    pop_context,
    push_context,
    setup_logging,
)


@pytest.fixture()
def base_config() -> dict:
    with open(Path(__file__).resolve().parents[1] / "configs" / "cam.yaml") as f:
        return yaml.safe_load(f)


def _context_fields() -> dict:
    record = logging.LogRecord("millcam", logging.INFO, __file__, 1, "", (), None)
    out = json.loads(ContextFormatter("json").format(record))
    return {k: v for k, v in out.items() if k not in ("t", "lvl", "name", "thread", "msg")}


def _write(tmp_path: Path, data: dict) -> Path:
    path = tmp_path / "cam.yaml"
    path.write_text(yaml.safe_dump(data, sort_keys=False))
    return path


# ---------------------------------------------------------------------------
# Config
# ---------------------------------------------------------------------------


class TestLoadConfig:
    def test_default(self) -> None:
        cfg = load_config()
        assert isinstance(cfg, CamConfig)
        assert cfg.connection.baudrate == 115200
        assert not cfg.connection.use_tcp
        assert cfg.streamer.buffer_size == 254
        assert cfg.streamer.queue_size == 200
        assert cfg.streamer.max_retries == 3
        assert cfg.tool.tool_diameter == 3.175
        assert cfg.tool.tool_radius == pytest.approx(1.5875)
        assert cfg.emitter.units == "mm"

    def test_generator_from_config(self) -> None:
        gen = ToolpathGenerator.from_config(load_config().tool)
        assert gen.feed_rate == 500.0
        assert gen.spindle_speed == 12000
        assert gen.target_z == -2.0
        assert gen.step_in == 1.27

    def test_missing_file(self, tmp_path: Path) -> None:
        with pytest.raises(FileNotFoundError):
            load_config(tmp_path / "nope.yaml")

    def test_empty_file(self, tmp_path: Path) -> None:
        path = tmp_path / "cam.yaml"
        path.write_text("")
        with pytest.raises(ConfigError, match="Empty"):
            load_config(path)

    def test_missing_section(self, tmp_path: Path, base_config: dict) -> None:
        del base_config["tool"]
        with pytest.raises(ConfigError, match="Missing"):
            load_config(_write(tmp_path, base_config))

    def test_tcp_without_port(self, tmp_path: Path, base_config: dict) -> None:
        base_config["connection"].update(port="", host="192.168.1.40", tcp_port=8080)
        cfg = load_config(_write(tmp_path, base_config))
        assert cfg.connection.use_tcp
        assert cfg.connection.tcp_port == 8080

    def test_step_in_default(self, tmp_path: Path, base_config: dict) -> None:
        del base_config["tool"]["step_in"]
        cfg = load_config(_write(tmp_path, base_config))
        assert cfg.tool.step_in == pytest.approx(3.175 * 0.4)

    @pytest.mark.parametrize("section,key,value", [
        ("connection", "port", ""),
        ("connection", "baudrate", 0),
        ("streamer", "buffer_size", 1),
        ("streamer", "queue_size", 0),
        ("streamer", "max_retries", -1),
        ("tool", "tool_diameter", 0),
        ("tool", "feed_rate", -10),
        ("tool", "ramp_angle", 90),
        ("emitter", "units", "cubits"),
        ("emitter", "num_axes", 4),
        ("tool", "feed_rate", "fast"),
    ])
    def test_invalid(self, tmp_path: Path, base_config: dict, section: str, key: str, value) -> None:
        base_config[section][key] = value
        with pytest.raises(ConfigError):
            load_config(_write(tmp_path, base_config))


# ---------------------------------------------------------------------------
# Filesystem helpers
# ---------------------------------------------------------------------------


class TestFs:
    def test_atomic_write_text(self, tmp_path: Path) -> None:
        out = tmp_path / "jobs" / "part.nc"
        fs.atomic_write_text(out, "G21\nG90\n")
        assert out.read_bytes() == b"G21\nG90\n"
        assert not (tmp_path / "jobs" / "part.nc.tmp").exists()

    def test_non_ascii_rejected(self, tmp_path: Path) -> None:
        with pytest.raises(UnicodeEncodeError):
            fs.atomic_write_text(tmp_path / "part.nc", "; pièce\n")

    def test_read_gcode_lines(self, tmp_path: Path) -> None:
        path = tmp_path / "part.gcode"
        path.write_bytes(b"G21\r\n\r\nG90\n  \nM30\n")
        assert fs.read_gcode_lines(path) == ["G21", "G90", "M30"]
        with pytest.raises(FileNotFoundError):
            fs.read_gcode_lines(tmp_path / "missing.nc")

    @pytest.mark.parametrize("name,expected", [
        ("a.nc", True), ("a.GCODE", True), ("a.gc", True), ("a.txt", False),
    ])
    def test_gcode_extensions(self, name: str, expected: bool) -> None:
        assert fs.is_gcode_file(name) is expected

    def test_yaml_and_json(self, tmp_path: Path) -> None:
        (tmp_path / "x.yaml").write_text("b: 1\na: [1, 2]\n")
        assert list(fs.load_yaml(tmp_path / "x.yaml")) == ["b", "a"]
        (tmp_path / "x.json").write_text(json.dumps({"shapes": []}))
        assert fs.load_json(tmp_path / "x.json") == {"shapes": []}
        with pytest.raises(FileNotFoundError):
            fs.load_yaml(tmp_path / "none.yaml")


# ---------------------------------------------------------------------------
# Logging
# ---------------------------------------------------------------------------


class TestLogging:
    def test_context(self) -> None:
        pop_context()
        push_context(app="stream", port="/dev/ttyUSB0")
        push_context(job="part.nc")
        assert _context_fields() == {"app": "stream", "port": "/dev/ttyUSB0", "job": "part.nc"}
        pop_context(["port"])
        assert "port" not in _context_fields()
        pop_context()
        assert _context_fields() == {}

    def test_json_format(self) -> None:
        pop_context()
        push_context(app="generate")
        record = logging.LogRecord("millcam", logging.INFO, __file__, 1, "wrote %d lines", (12,), None)
        out = json.loads(ContextFormatter("json").format(record))
        assert out["msg"] == "wrote 12 lines"
        assert out["lvl"] == "INFO"
        assert out["app"] == "generate"
        pop_context()

    def test_human_format(self) -> None:
        pop_context()
        record = logging.LogRecord("millcam", logging.WARNING, __file__, 1, "hello", (), None)
        line = ContextFormatter("human", use_color=False).format(record)
        assert line.endswith("| WARNING  | hello")

    def test_setup_is_idempotent(self, tmp_path: Path) -> None:
        log_file = tmp_path / "logs" / "stream.log"
        root = logging.getLogger()
        first = setup_logging("DEBUG", str(log_file), json=True, to_stderr=False)
        info = setup_logging("DEBUG", str(log_file), json=True, to_stderr=False)
        try:
            assert len(info["handlers"]) == 1
            assert info["level"] == logging.DEBUG
            assert first["handlers"][0] not in root.handlers
            assert info["handlers"][0] in root.handlers
            get_logger("millcam.test").info("hello file")
            info["handlers"][0].flush()
            record = json.loads(log_file.read_text().splitlines()[-1])
            assert record["msg"] == "hello file"
            assert record["thread"] == "MainThread"
        finally:
            for handler in info["handlers"]:
                root.removeHandler(handler)
                handler.close()
            pop_context()

    def test_configure_from_config(self, tmp_path: Path) -> None:
        root = logging.getLogger()
        settings = {"log_level": "INFO", "log_file": str(tmp_path / "gen.log"), "rotate_bytes": 4096}
        pop_context()
        info = configure_from_config(settings, "generate", log_level="warning")
        try:
            assert info["level"] == logging.WARNING
            assert _context_fields() == {"app": "generate"}
            assert isinstance(info["handlers"][-1], logging.handlers.RotatingFileHandler)
            assert logging.getLogger("matplotlib.font_manager").level == logging.WARNING
        finally:
            for handler in info["handlers"]:
                root.removeHandler(handler)
                handler.close()
            pop_context()
            sys.excepthook = sys.__excepthook__

    def test_unknown_level(self) -> None:
        with pytest.raises(ValueError):
            setup_logging("LOUD")
