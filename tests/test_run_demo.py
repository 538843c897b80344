import sys
from pathlib import Path
import json
import re

import numpy as np
import pandas as pd
import pytest

# Ensure the package is on the path for test discovery when pytest runs directly
sys.path.append(str(Path(__file__).resolve().parents[1]))

from racing_line.line import FRAME_COLUMNS
from racing_line.run_demo import main, run
from racing_line.tracks import rounded_rectangle_track


@pytest.fixture
def track_csv(tmp_path: Path) -> Path:
    pts = rounded_rectangle_track(200.0, 100.0, 20.0)
    path = tmp_path / "track.csv"
    pd.DataFrame({"x_m": pts[:, 0], "y_m": pts[:, 1]}).to_csv(path, index=False)
    return path


@pytest.fixture
def sections_csv(tmp_path: Path) -> Path:
    path = tmp_path / "sections.csv"
    path.write_text(
        "\n".join(
            [
                "section_type,length_m,radius_m,angle_deg",
                "straight,150,,",
                "corner,,25,90",
                "straight,60,,",
                "corner,,25,90",
                "straight,150,,",
                "corner,,25,90",
                "straight,60,,",
                "corner,,25,90",
            ]
        )
    )
    return path


def test_rounded_rectangle_track(track_csv: Path, tmp_path: Path, capfd) -> None:
    summary, out_dir = run(track_csv, road_width=12.0, pro_line=True, output_root=tmp_path / "out")

    out = capfd.readouterr().out
    assert re.search(r"Racing line: \d+ samples, 4 corners, length [0-9.]+ m", out)
    assert re.search(r"Total runtime: [0-9.]+ s", out)

    with (out_dir / "summary.json").open() as f:
        stored = json.load(f)
    assert stored == summary
    assert summary["lap_time_s"] > 0
    assert summary["n_corners"] == 4
    assert summary["valid"] is True
    assert summary["fallback"] is False
    assert summary["algorithm"] == "pro_line"

    geom = pd.read_csv(out_dir / "centreline.csv")
    for col in ["x_center_m", "y_center_m", "half_width_m", "x_left_m", "y_left_m", "x_right_m", "y_right_m"]:
        assert col in geom.columns
    assert np.allclose(geom["half_width_m"], 6.0)
    left = geom[["x_left_m", "y_left_m"]].to_numpy()
    centre = geom[["x_center_m", "y_center_m"]].to_numpy()
    assert np.allclose(np.hypot(*(left - centre).T), 6.0)

    results = pd.read_csv(out_dir / "racing_line.csv")
    assert list(results.columns) == FRAME_COLUMNS
    assert len(results) == summary["n_samples"] == len(geom)
    assert np.all(np.abs(results["offset_m"]) <= 6.0)


def test_section_track_with_params(sections_csv: Path, tmp_path: Path) -> None:
    params = tmp_path / "params.csv"
    params.write_text("spacing,3.0\nspeed.speed_ceiling,40\n")
    summary, out_dir = run(sections_csv, road_width=10.0, params_file=params, output_root=tmp_path / "out")

    expected_length = 2 * 150.0 + 2 * 60.0 + 2 * np.pi * 25.0
    assert summary["length_m"] == pytest.approx(expected_length, rel=0.05)
    assert summary["n_samples"] == pytest.approx(expected_length / 3.0, abs=2)
    assert summary["max_speed_mps"] <= 40.0


def test_width_column_is_used(tmp_path: Path) -> None:
    pts = rounded_rectangle_track(150.0, 80.0, 25.0)
    path = tmp_path / "track.csv"
    pd.DataFrame({"x_m": pts[:, 0], "y_m": pts[:, 1], "width_m": 9.0}).to_csv(path, index=False)
    _, out_dir = run(path, output_root=tmp_path / "out")
    geom = pd.read_csv(out_dir / "centreline.csv")
    assert np.allclose(geom["half_width_m"], 4.5)


def test_missing_width_raises(track_csv: Path, tmp_path: Path) -> None:
    with pytest.raises(ValueError, match="road width"):
        run(track_csv, output_root=tmp_path / "out")


def test_main_cli(track_csv: Path, tmp_path: Path, capfd) -> None:
    main([str(track_csv), "--width", "12", "--spacing", "2.5", "--output", str(tmp_path / "cli")])
    out = capfd.readouterr().out
    assert re.search(r"Lap time: [0-9.]+ s", out)
    assert "Outputs written to" in out
    assert "failed validation" not in out

    main([str(track_csv), "--width", "12", "--quiet-lap-time", "--output", str(tmp_path / "cli")])
    out = capfd.readouterr().out
    assert "Lap time" not in out
