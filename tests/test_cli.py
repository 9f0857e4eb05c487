from __future__ import annotations

import json
from pathlib import Path

import pytest

from lineloc.cli.main import main


def _write_config(tmp_path: Path, data: dict) -> Path:
    path = tmp_path / "localizer.json"
    path.write_text(json.dumps(data), encoding="utf-8")
    return path


def test_cli_direct_whole_line(tmp_path, capsys, config_dict) -> None:
    cfg = _write_config(tmp_path, config_dict)
    assert main(["direct", "--config", str(cfg), "--sensor", "nadir", "--line", "0"]) == 0
    out = json.loads(capsys.readouterr().out)
    assert out["sensor"] == "nadir"
    assert len(out["points"]) == 21
    center = out["points"][10]
    assert center["pixel"] == 10.0
    assert center["latitude_deg"] == pytest.approx(0.0, abs=1e-7)
    assert center["longitude_deg"] == pytest.approx(0.0, abs=1e-7)


def test_cli_direct_then_inverse(tmp_path, capsys, config_dict) -> None:
    cfg = _write_config(tmp_path, config_dict)
    assert main(["direct", "--config", str(cfg), "--sensor", "nadir", "--line", "250", "--pixel", "3.5"]) == 0
    point = json.loads(capsys.readouterr().out)["points"][0]

    argv = [
        "inverse",
        "--config",
        str(cfg),
        "--sensor",
        "nadir",
        "--lat-deg",
        repr(point["latitude_deg"]),
        "--lon-deg",
        repr(point["longitude_deg"]),
        "--alt",
        repr(point["altitude_m"]),
        "--min-line",
        "-1000",
        "--max-line",
        "1000",
    ]
    assert main(argv) == 0
    out = json.loads(capsys.readouterr().out)
    assert out["seen"] is True
    assert out["line"] == pytest.approx(250.0, abs=1e-6)
    assert out["pixel"] == pytest.approx(3.5, abs=1e-6)

    argv[argv.index("-1000")] = "600"
    assert main(argv) == 0
    assert json.loads(capsys.readouterr().out) == {"sensor": "nadir", "seen": False}


def test_cli_reports_errors(tmp_path, capsys, config_dict) -> None:
    cfg = _write_config(tmp_path, config_dict)
    assert main(["direct", "--config", str(cfg), "--sensor", "pan", "--line", "0"]) == 2
    assert "unknown sensor" in capsys.readouterr().err

    config_dict["schema_version"] = "other"
    bad = _write_config(tmp_path, config_dict)
    assert main(["direct", "--config", str(bad), "--sensor", "nadir", "--line", "0"]) == 2
    assert "schema_version" in capsys.readouterr().err


def test_cli_direct_reports_dates(tmp_path, capsys, config_dict) -> None:
    config_dict["reference_date"] = "2024-03-01T10:00:00+00:00"
    cfg = _write_config(tmp_path, config_dict)
    assert main(["direct", "--config", str(cfg), "--sensor", "nadir", "--line", "250", "--pixel", "1"]) == 0
    out = json.loads(capsys.readouterr().out)
    assert out["date"] == pytest.approx(2.5)
    assert out["utc"] == "2024-03-01T10:00:02.500000+00:00"
