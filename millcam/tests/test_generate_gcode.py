"""End-to-end tests for the ``millcam-generate`` entrypoint."""

from __future__ import annotations

import json
from pathlib import Path

import pytest
import yaml

from millcam.scripts.generate_gcode import main
from millcam.utils.logging_config import pop_context, setup_logging


def _design(tmp_path: Path, shapes: list[dict], **params) -> Path:
    toolpath_params = {
        "feed_rate": 500, "spindle_speed": 12000, "tool_diameter": 3.175,
        "cut_depth": 2.0, "safe_z_height": 5.0,
    }
    toolpath_params.update(params)
    path = tmp_path / "part.gck4"
    path.write_text(json.dumps({
        "version": "1.0",
        "metadata": {"name": "Part"},
        "viewport": {"zoom": 1.0, "pan_x": 0, "pan_y": 0},
        "toolpath_params": toolpath_params,
        "shapes": shapes,
    }))
    return path


def _code(program: str) -> list[str]:
    return [ln for ln in program.splitlines() if ln and not ln.startswith(";")]


RECTANGLE = {
    "id": 1, "shape_type": "rectangle", "x": 10, "y": 10, "width": 40, "height": 30,
    "step_down": 2.0,
}


class TestGenerateGcode:
    def test_rectangle_3d(self, tmp_path: Path, capsys: pytest.CaptureFixture) -> None:
        out = tmp_path / "out" / "part.nc"
        assert main([str(_design(tmp_path, [RECTANGLE])), "-o", str(out)]) == 0
        program = out.read_text()
        assert program.startswith("; Generated G-code from Designer tool\n")
        assert "; Shape ID=1" in program
        lines = _code(program)
        assert "G01 Z-2.000 F500" in lines
        assert sum(ln.startswith("G01 X") for ln in lines) == 4
        assert lines[-1].startswith("M30")
        assert "Wrote" in capsys.readouterr().out

    def test_rectangle_2d(self, tmp_path: Path) -> None:
        out = tmp_path / "part.nc"
        assert main([str(_design(tmp_path, [RECTANGLE])), "-o", str(out), "--2d"]) == 0
        lines = _code(out.read_text())
        assert not any("Z" in ln for ln in lines)
        assert [ln for ln in lines if ln.startswith("G01")] == [
            "G01 X50.000 Y10.000 F500",
            "G01 X50.000 Y40.000 F500",
            "G01 X10.000 Y40.000 F500",
            "G01 X10.000 Y10.000 F500",
        ]

    def test_line_numbers_and_inch(self, tmp_path: Path) -> None:
        out = tmp_path / "part.nc"
        args = [str(_design(tmp_path, [RECTANGLE])), "-o", str(out), "--line-numbers", "--inch"]
        assert main(args) == 0
        program = out.read_text()
        assert "G20" in program
        assert "N10 G00" in program

    def test_document_params_override_config(self, tmp_path: Path) -> None:
        out = tmp_path / "part.nc"
        path = _design(tmp_path, [RECTANGLE], feed_rate=321, spindle_speed=9000)
        assert main([str(path), "-o", str(out)]) == 0
        program = out.read_text()
        assert "M3 S9000" in program
        assert "F321" in program

    def test_empty_pocket(self, tmp_path: Path) -> None:
        shapes = [{
            "id": 3, "shape_type": "rectangle", "x": 0, "y": 0, "width": 1.0, "height": 1.0,
            "operation_type": "pocket", "pocket_depth": 1.0,
        }]
        out = tmp_path / "part.nc"
        assert main([str(_design(tmp_path, shapes, tool_diameter=3.0)), "-o", str(out)]) == 0
        lines = _code(out.read_text())
        assert not any(ln.startswith(("G01", "G02", "G03")) for ln in lines)
        assert lines[0].startswith("G90")
        assert any(ln.startswith("M3 S12000") for ln in lines)
        assert lines[-1].startswith("M30")

    def test_log_records_carry_job(self, tmp_path: Path) -> None:
        with open(Path(__file__).resolve().parents[1] / "configs" / "cam.yaml") as f:
            config = yaml.safe_load(f)
        log_file = tmp_path / "generate.log"
        config["logging"].update(log_file=str(log_file), json=True)
        config_path = tmp_path / "cam.yaml"
        config_path.write_text(yaml.safe_dump(config))
        pop_context()
        try:
            args = [str(_design(tmp_path, [RECTANGLE])), "-o", str(tmp_path / "x.nc"),
                    "--config", str(config_path)]
            assert main(args) == 0
        finally:
            setup_logging("WARNING", to_stderr=False)
            pop_context()
        records = [json.loads(ln) for ln in log_file.read_text().splitlines()]
        wrote = [r for r in records if r["msg"].startswith("Wrote")]
        assert wrote
        assert wrote[0]["job"] == "part.gck4"
        assert wrote[0]["app"] == "generate"

    def test_missing_design(self, tmp_path: Path) -> None:
        assert main([str(tmp_path / "missing.gck4"), "-o", str(tmp_path / "x.nc")]) == 1
        assert not (tmp_path / "x.nc").exists()

    def test_bad_config(self, tmp_path: Path, capsys: pytest.CaptureFixture) -> None:
        args = [str(_design(tmp_path, [RECTANGLE])), "-o", str(tmp_path / "x.nc"),
                "--config", str(tmp_path / "none.yaml")]
        assert main(args) == 1
        assert "Error loading config" in capsys.readouterr().err

    def test_invalid_params(self, tmp_path: Path) -> None:
        path = _design(tmp_path, [RECTANGLE])
        data = json.loads(path.read_text())
        data["toolpath_params"]["feed_rate"] = -5
        path.write_text(json.dumps(data))
        assert main([str(path), "-o", str(tmp_path / "x.nc")]) == 1
